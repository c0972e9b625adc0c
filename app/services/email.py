"""
Email service for the Rescue App backend.

Sends adoption contracts and ad-hoc staff emails over SMTP. SMTP calls are
blocking, so they run in a small thread pool.
"""

import asyncio
import smtplib
import ssl
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import jinja2
import structlog

from app.core.config import Settings, settings
from app.core.exceptions import EmailDeliveryError, RescueAppException

logger = structlog.get_logger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates" / "emails"


@dataclass
class EmailAddress:
    """Represents an email address with optional display name."""
    email: str
    name: Optional[str] = None

    def __str__(self) -> str:
        if self.name:
            return f"{self.name} <{self.email}>"
        return self.email


@dataclass
class EmailMessage:
    """Represents an email message to be sent."""
    to: List[EmailAddress]
    subject: str
    body_text: str
    body_html: Optional[str] = None
    from_addr: Optional[EmailAddress] = None
    reply_to: Optional[EmailAddress] = None


class EmailTemplateEngine:
    """Handles email template rendering with Jinja2."""

    def __init__(self, templates_dir: Path = TEMPLATES_DIR):
        self.env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(templates_dir)),
            autoescape=jinja2.select_autoescape(['html', 'xml']),
            trim_blocks=True,
            lstrip_blocks=True
        )

    def render_template(self, template_name: str, context: Dict[str, Any]) -> tuple[str, Optional[str]]:
        """
        Render email template to text and HTML.

        Returns:
            tuple of (text_body, html_body)
        """
        context = {**context, 'app_name': settings.APP_NAME}

        try:
            html_body = self.env.get_template(f"{template_name}.html").render(**context)
        except jinja2.TemplateNotFound:
            logger.warning("HTML template not found", template=f"{template_name}.html")
            html_body = None

        try:
            text_body = self.env.get_template(f"{template_name}.txt").render(**context)
        except jinja2.TemplateNotFound:
            logger.error("Text template not found", template=f"{template_name}.txt")
            raise RescueAppException(f"Email template not found: {template_name}")

        return text_body, html_body


class EmailService:
    """SMTP email sender."""

    def __init__(self, config: Settings = settings):
        self.config = config
        self.template_engine = EmailTemplateEngine()
        self.executor = ThreadPoolExecutor(max_workers=2)

    @property
    def is_configured(self) -> bool:
        return self.config.email_enabled

    def _sender(self) -> EmailAddress:
        return EmailAddress(email=str(self.config.EMAILS_FROM_EMAIL), name=self.config.EMAILS_FROM_NAME)

    def _get_smtp_connection(self) -> smtplib.SMTP:
        if self.config.SMTP_TLS:
            smtp = smtplib.SMTP(self.config.SMTP_HOST, self.config.SMTP_PORT, timeout=self.config.SMTP_TIMEOUT_SECONDS)
            smtp.starttls(context=ssl.create_default_context())
        else:
            smtp = smtplib.SMTP_SSL(self.config.SMTP_HOST, self.config.SMTP_PORT, timeout=self.config.SMTP_TIMEOUT_SECONDS)

        if self.config.SMTP_USER:
            smtp.login(self.config.SMTP_USER, self.config.SMTP_PASSWORD)
        return smtp

    def _build_mime_message(self, message: EmailMessage) -> MIMEMultipart:
        msg = MIMEMultipart('alternative')
        msg['From'] = str(message.from_addr or self._sender())
        msg['To'] = ', '.join(str(addr) for addr in message.to)
        msg['Subject'] = message.subject
        if message.reply_to:
            msg['Reply-To'] = str(message.reply_to)

        msg.attach(MIMEText(message.body_text, 'plain', 'utf-8'))
        if message.body_html:
            msg.attach(MIMEText(message.body_html, 'html', 'utf-8'))
        return msg

    def _send_email_sync(self, message: EmailMessage) -> None:
        smtp = self._get_smtp_connection()
        try:
            smtp.send_message(self._build_mime_message(message), to_addrs=[addr.email for addr in message.to])
        finally:
            smtp.quit()

    async def send_email(self, message: EmailMessage) -> None:
        """
        Send ``message``.

        Raises:
            EmailDeliveryError: SMTP is not configured or rejected the message (503)
        """
        recipients = [addr.email for addr in message.to]
        if not self.is_configured:
            logger.error("Email requested but SMTP is not configured", to=recipients)
            raise EmailDeliveryError("Email service is not configured.")

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(self.executor, self._send_email_sync, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email", to=recipients, subject=message.subject, error=str(e))
            raise EmailDeliveryError(recipient=recipients[0] if recipients else None)

        logger.info("Email sent", to=recipients, subject=message.subject)

    def contract_url(self, *, animal_name: str, species: str, breed: str, gender: str, scars_id: str) -> Optional[str]:
        if not self.config.ADOPTION_CONTRACT_URL:
            return None
        query = urlencode({
            "animalName": animal_name,
            "animalSpecies": species,
            "animalBreed": breed,
            "animalGender": gender,
            "scarsId": scars_id,
        })
        separator = "&" if "?" in self.config.ADOPTION_CONTRACT_URL else "?"
        return f"{self.config.ADOPTION_CONTRACT_URL}{separator}{query}"

    async def send_adoption_contract(
        self,
        *,
        recipient_email: str,
        animal_name: str,
        species: str,
        breed: str,
        gender: str,
        scars_id: str,
    ) -> None:
        """Email the adopter a link to the pre-filled adoption contract."""
        context = {
            "animal_name": animal_name,
            "species": species,
            "breed": breed,
            "gender": gender,
            "scars_id": scars_id,
            "contract_url": self.contract_url(
                animal_name=animal_name, species=species, breed=breed, gender=gender, scars_id=scars_id
            ),
        }
        text_body, html_body = self.template_engine.render_template("adoption_contract", context)
        await self.send_email(EmailMessage(
            to=[EmailAddress(email=recipient_email)],
            subject=f"Adoption Contract for {animal_name}",
            body_text=text_body,
            body_html=html_body,
        ))

    async def close(self) -> None:
        self.executor.shutdown(wait=False)


@lru_cache()
def get_email_service() -> EmailService:
    """Shared email service (FastAPI dependency)."""
    return EmailService()
