"""
Configuration and Settings Management

This module handles all application configuration using Pydantic Settings
with support for environment variables and 12-Factor App principles.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import (
    EmailStr,
    Field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings

# =============================================================================
# Base Directories
# =============================================================================

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent.parent.absolute()

# =============================================================================
# Core Application Settings
# =============================================================================

class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    All settings can be overridden via environment variables.
    """

    # =========================================================================
    # Application Core
    # =========================================================================

    # Application metadata
    APP_NAME: str = "Rescue App Backend"
    APP_VERSION: str = "1.0.0"
    APP_DESCRIPTION: str = "Animal rescue operations API: animals, adoptions, fosters and applications"

    # Environment configuration
    ENVIRONMENT: Literal["development", "testing", "staging", "production"] = "development"
    DEBUG: bool = Field(default=False, description="Debug mode")

    # API Configuration
    API_V1_PREFIX: str = "/api/v1"
    CORS_ORIGINS: List[str] = Field(
        default=["*"],  # In production, replace with the frontend origin
        description="Allowed CORS origins"
    )

    # =========================================================================
    # Database Configuration (PostgreSQL)
    # =========================================================================

    # PostgreSQL connection parameters
    POSTGRES_HOST: str = Field(default="localhost", description="PostgreSQL host")
    POSTGRES_PORT: int = Field(default=5432, description="PostgreSQL port")
    POSTGRES_DB: str = Field(default="rescue_app", description="Database name")
    POSTGRES_USER: str = Field(default="postgres", description="Database user")
    POSTGRES_PASSWORD: str = Field(default="postgres", description="Database password")

    # Connection pool settings
    DATABASE_POOL_SIZE: int = Field(default=5, description="Database connection pool size")
    DATABASE_MAX_OVERFLOW: int = Field(default=10, description="Max overflow connections")
    DATABASE_POOL_TIMEOUT: int = Field(default=30, description="Pool timeout in seconds")
    DATABASE_ECHO: bool = Field(default=False, description="Echo SQL queries")
    DATABASE_CREATE_TABLES: bool = Field(
        default=False,
        description="Create missing tables at startup (development only)"
    )

    # Computed database URL (will be set by model_validator)
    DATABASE_URL: Optional[str] = None

    @model_validator(mode='after')
    def assemble_database_url(self) -> 'Settings':
        # Respect explicit DATABASE_URL from environment if provided
        url = self.DATABASE_URL
        if not url:
            url = (
                f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
                f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
            )
        # Normalize common URL schemes to SQLAlchemy async driver
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        object.__setattr__(self, "DATABASE_URL", url)
        return self

    # =========================================================================
    # Identity Provider (OpenID Connect / Auth0)
    # =========================================================================

    AUTH0_ISSUER_BASE_URL: Optional[str] = Field(
        default=None,
        description="Token issuer, e.g. https://tenant.us.auth0.com/"
    )
    AUTH0_AUDIENCE: Optional[str] = Field(
        default=None,
        description="Expected 'aud' claim of access tokens"
    )
    AUTH_CLOCK_SKEW_SECONDS: int = Field(
        default=60,
        description="Allowed clock skew when checking exp/nbf"
    )
    AUTH_DISCOVERY_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for OpenID discovery and JWKS requests"
    )

    # =========================================================================
    # Blob Storage Configuration (S3 compatible)
    # =========================================================================

    S3_ENDPOINT_URL: Optional[str] = Field(default=None, description="S3-compatible endpoint URL")
    S3_ACCESS_KEY_ID: Optional[str] = Field(default=None)
    S3_SECRET_ACCESS_KEY: Optional[str] = Field(default=None)
    S3_REGION: str = Field(default="us-east-1", description="S3 region")

    # One flat container per asset class
    IMAGES_CONTAINER: str = Field(default="animal-images")
    DOCUMENTS_CONTAINER: str = Field(default="animal-documents")

    # Public base URL used to build image URLs (CDN or bucket website)
    PUBLIC_BLOB_BASE_URL: Optional[str] = Field(default=None)

    # Signed URL lifetimes
    UPLOAD_URL_EXPIRY_MINUTES: int = Field(default=15, description="Write-only upload URL lifetime")
    DOWNLOAD_URL_EXPIRY_MINUTES: int = Field(default=5, description="Read-only download URL lifetime")

    ALLOWED_DOCUMENT_TYPES: List[str] = Field(
        default=[
            "application/pdf",
            "image/jpeg",
            "image/png",
            "application/msword",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        ],
        description="Allowed MIME types for animal documents"
    )

    # =========================================================================
    # Email Configuration
    # =========================================================================

    # SMTP settings
    SMTP_HOST: Optional[str] = Field(default=None)
    SMTP_PORT: int = Field(default=587)
    SMTP_USER: Optional[str] = Field(default=None)
    SMTP_PASSWORD: Optional[str] = Field(default=None)
    SMTP_TLS: bool = Field(default=True)
    SMTP_TIMEOUT_SECONDS: int = Field(default=30)

    # Email addresses
    EMAILS_FROM_EMAIL: Optional[EmailStr] = Field(default=None)
    EMAILS_FROM_NAME: str = Field(default="Rescue App")

    # Link included in the adoption contract email
    ADOPTION_CONTRACT_URL: Optional[str] = Field(default=None)

    # =========================================================================
    # Logging and Monitoring
    # =========================================================================

    # Logging configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: Literal["json", "pretty"] = Field(default="json")

    # Metrics and health checks
    METRICS_ENABLED: bool = Field(default=True)
    HEALTH_CHECK_PATH: str = Field(default="/health")

    # =========================================================================
    # Development and Testing
    # =========================================================================

    SHOW_DOCS: bool = Field(default=True, description="Show API documentation")

    # =========================================================================
    # Validation and Post-Processing
    # =========================================================================

    @field_validator('CORS_ORIGINS', 'ALLOWED_DOCUMENT_TYPES', mode='before')
    def split_comma_separated(cls, v: Any) -> List[str]:
        """Parse list settings from a comma-separated string or a list."""
        if isinstance(v, str) and not v.startswith('['):
            return [i.strip() for i in v.split(',') if i.strip()]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(f"Invalid list setting: {v}")

    @model_validator(mode='after')
    def validate_email_config(self) -> 'Settings':
        """If any SMTP setting is present, require the ones needed to send."""
        email_fields = ["SMTP_HOST", "EMAILS_FROM_EMAIL"]
        if any(getattr(self, field) for field in email_fields):
            for field in email_fields:
                if not getattr(self, field):
                    raise ValueError(f"{field} is required when email is configured")
        if self.SMTP_USER and not self.SMTP_PASSWORD:
            raise ValueError("SMTP_PASSWORD is required when SMTP_USER is set")
        return self

    # =========================================================================
    # Environment-specific configurations
    # =========================================================================

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.ENVIRONMENT == "production"

    @property
    def email_enabled(self) -> bool:
        return bool(self.SMTP_HOST and self.EMAILS_FROM_EMAIL)

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def DATABASE_ENGINE_OPTIONS(self) -> Dict[str, Any]:
        """Database engine configuration options."""
        options: Dict[str, Any] = {
            "echo": self.DATABASE_ECHO and not self.is_production,
            "pool_pre_ping": True,  # Validate connections before use
        }
        # SQLite (tests, local tooling) has no server-side pool to size
        if not str(self.DATABASE_URL).startswith("sqlite"):
            options.update({
                "pool_size": self.DATABASE_POOL_SIZE,
                "max_overflow": self.DATABASE_MAX_OVERFLOW,
                "pool_timeout": self.DATABASE_POOL_TIMEOUT,
                "pool_recycle": 1800,
            })
        return options

    # =========================================================================
    # Model Configuration
    # =========================================================================

    model_config = {
        "env_file": str(PROJECT_ROOT / ".env"),
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "validate_assignment": True,
        "extra": "ignore",
    }


# =============================================================================
# Settings Instance and Cache
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    This function is cached to avoid re-parsing environment variables
    on every call. Tests clear the cache after changing the environment.
    """
    return Settings()


# Convenience alias for global access
settings = get_settings()


# =============================================================================
# Logging Configuration
# =============================================================================

def setup_logging() -> None:
    """Configure structured logging for the application."""
    import re
    import sys

    import structlog

    # Attach exc_info when logging at error level inside an except block
    def _ensure_exc_info_processor(logger, method_name, event_dict):
        if event_dict.get("exc_info"):
            return event_dict
        if method_name in ("error", "exception", "critical"):
            if sys.exc_info()[0] is not None:
                event_dict["exc_info"] = True
        return event_dict

    # Secret redaction filter
    SENSITIVE_KEYS = {"authorization", "token", "access_token", "password", "secret", "sas_url", "upload_url"}
    token_pattern = re.compile(
        r"(Bearer\s+[A-Za-z0-9._-]+"
        r"|eyJ[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]*"
        r"|X-Amz-Signature=[0-9a-f]+"
        r"|Signature=[A-Za-z0-9%/+=]+)"
    )

    def redact_secrets(_, __, event_dict):
        for key, value in list(event_dict.items()):
            if isinstance(value, str):
                event_dict[key] = token_pattern.sub("***REDACTED***", value)
            elif isinstance(value, dict):
                for k in list(value.keys()):
                    if k and str(k).lower() in SENSITIVE_KEYS:
                        value[k] = "***REDACTED***"
        # Explicitly redact configured sensitive settings
        for sensitive in ("POSTGRES_PASSWORD", "SMTP_PASSWORD", "S3_SECRET_ACCESS_KEY"):
            if sensitive in event_dict:
                event_dict[sensitive] = "***REDACTED***"
        return event_dict

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            _ensure_exc_info_processor,
            redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            (
                structlog.dev.ConsoleRenderer()
                if settings.LOG_FORMAT == "pretty"
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.LOG_LEVEL.upper())
        ),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Configure standard library logging
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper()),
        format="%(message)s" if settings.LOG_FORMAT == "json" else None,
    )

    # Redact third-party log records too (botocore and httpx log request URLs)
    class _StdlibRedactFilter(logging.Filter):
        def filter(self, record: logging.LogRecord) -> bool:
            if isinstance(record.msg, str):
                record.msg = token_pattern.sub("***REDACTED***", record.msg)
            if isinstance(record.args, tuple):
                record.args = tuple(
                    token_pattern.sub("***REDACTED***", v) if isinstance(v, str) else v
                    for v in record.args
                )
            return True

    root_logger = logging.getLogger()
    root_logger.addFilter(_StdlibRedactFilter())

    # Suppress noisy loggers in production
    if settings.is_production:
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("botocore").setLevel(logging.WARNING)
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


# =============================================================================
# Development Helpers
# =============================================================================

if __name__ == "__main__":
    # Print current configuration for debugging
    import json

    config_dict = settings.model_dump()

    for field in ("POSTGRES_PASSWORD", "SMTP_PASSWORD", "S3_SECRET_ACCESS_KEY"):
        if field in config_dict:
            config_dict[field] = "***REDACTED***"

    print(json.dumps(config_dict, indent=2, default=str))
