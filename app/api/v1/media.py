"""
Media API Endpoints

Signed upload/download URLs and metadata for animal images and documents.
The browser uploads bytes straight to object storage with the signed URL and
then registers the blob here.
"""

from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.animals import format_image
from app.core.exceptions import ConflictError, NotFoundError, RescueAppException
from app.core.security import require_staff
from app.models.database import Animal, AnimalDocument, User, get_db_session, utcnow
from app.services.file_storage import BlobStorageService, get_blob_storage
from app.services.lifecycle import add_animal_image, remove_animal_image

# =============================================================================
# Logger
# =============================================================================

logger = structlog.get_logger(__name__)
router = APIRouter()

# =============================================================================
# Request Models
# =============================================================================

class ImageCreateRequest(BaseModel):
    """Metadata for an image already uploaded to storage."""
    image_url: str = Field(..., min_length=1, max_length=2048)
    blob_name: str = Field(..., min_length=1, max_length=500)
    file_name: Optional[str] = Field(None, max_length=255)
    caption: Optional[str] = Field(None, max_length=500)
    is_primary: bool = False
    display_order: Optional[int] = Field(None, ge=0)


class DocumentCreateRequest(BaseModel):
    """Metadata for a document already uploaded to storage."""
    document_type: str = Field(..., min_length=1, max_length=100)
    file_name: str = Field(..., min_length=1, max_length=255)
    blob_name: str = Field(..., min_length=1, max_length=500)
    blob_url: str = Field(..., min_length=1, max_length=2048)
    description: Optional[str] = None


def format_document(document: AnimalDocument, uploader: Optional[User] = None) -> Dict[str, Any]:
    return {
        "id": document.id,
        "animal_id": document.animal_id,
        "document_type": document.document_type,
        "file_name": document.file_name,
        "blob_name": document.blob_name,
        "blob_url": document.blob_url,
        "description": document.description,
        "date_uploaded": document.date_uploaded,
        "uploaded_by_user_id": str(document.uploaded_by_user_id) if document.uploaded_by_user_id else None,
        "uploader_email": uploader.email if uploader else None,
        "uploader_first_name": uploader.first_name if uploader else None,
        "uploader_last_name": uploader.last_name if uploader else None,
    }


async def ensure_animal_exists(session: AsyncSession, animal_id: int) -> None:
    if await session.get(Animal, animal_id) is None:
        raise NotFoundError("Animal", animal_id)


# =============================================================================
# Images
# =============================================================================

@router.get("/image-upload-url", response_model=Dict[str, Any])
async def get_image_upload_url(
    filename: str = Query(..., min_length=1, max_length=255),
    content_type: str = Query(..., alias="contentType", min_length=1),
    storage: BlobStorageService = Depends(get_blob_storage),
    current_user: User = Depends(require_staff),
) -> Dict[str, Any]:
    """Issue a short-lived write-only URL for a new image."""
    signed = storage.image_upload_url(filename, content_type)
    return {
        "sasUrl": signed.url,
        "blobName": signed.blob_name,
        "imageUrl": storage.public_url(signed.container, signed.blob_name),
        "expiresAt": signed.expires_at,
    }


@router.post("/animals/{animal_id}/images", response_model=Dict[str, Any], status_code=status.HTTP_201_CREATED)
async def create_animal_image(
    animal_id: int,
    request: ImageCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_staff),
) -> Dict[str, Any]:
    """
    Register an uploaded image.

    The first image of an animal becomes primary; ``is_primary`` on a later
    image demotes the current primary.
    """
    try:
        image = await add_animal_image(
            session,
            animal_id=animal_id,
            image_url=request.image_url,
            blob_name=request.blob_name,
            actor=current_user,
            file_name=request.file_name,
            caption=request.caption,
            display_order=request.display_order,
            is_primary=request.is_primary,
        )
        return format_image(image)

    except RescueAppException:
        raise

    except Exception as e:
        logger.error("Failed to save image metadata", animal_id=animal_id, error=str(e), exc_info=True)
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save image metadata"
        )


@router.delete("/images/{image_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_animal_image(
    image_id: int,
    session: AsyncSession = Depends(get_db_session),
    storage: BlobStorageService = Depends(get_blob_storage),
    current_user: User = Depends(require_staff),
):
    """Delete image metadata, then its blob (best-effort)."""
    try:
        image = await remove_animal_image(session, image_id)

    except RescueAppException:
        raise

    except Exception as e:
        logger.error("Failed to delete image", image_id=image_id, error=str(e), exc_info=True)
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete image"
        )

    await storage.delete_blob(storage.images_container, image.blob_name)


# =============================================================================
# Documents
# =============================================================================

@router.get("/animals/{animal_id}/document-upload-url", response_model=Dict[str, Any])
async def get_document_upload_url(
    animal_id: int,
    file_name: str = Query(..., min_length=1, max_length=255),
    content_type: str = Query(..., alias="contentType", min_length=1),
    session: AsyncSession = Depends(get_db_session),
    storage: BlobStorageService = Depends(get_blob_storage),
    current_user: User = Depends(require_staff),
) -> Dict[str, Any]:
    """Issue a short-lived write-only URL for a new document of an animal."""
    await ensure_animal_exists(session, animal_id)
    signed = storage.document_upload_url(animal_id, file_name, content_type)
    return {
        "sasUrl": signed.url,
        "blob_name": signed.blob_name,
        "blob_url": storage.public_url(signed.container, signed.blob_name),
        "expiresAt": signed.expires_at,
    }


@router.post("/animals/{animal_id}/documents", response_model=Dict[str, Any], status_code=status.HTTP_201_CREATED)
async def create_animal_document(
    animal_id: int,
    request: DocumentCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_staff),
) -> Dict[str, Any]:
    """Register an uploaded document."""
    try:
        await ensure_animal_exists(session, animal_id)

        document = AnimalDocument(
            animal_id=animal_id,
            document_type=request.document_type.strip(),
            file_name=request.file_name,
            blob_name=request.blob_name,
            blob_url=request.blob_url,
            description=request.description,
            uploaded_by_user_id=current_user.id,
            date_uploaded=utcnow(),
        )
        session.add(document)
        await session.commit()

        logger.info(
            "Animal document added",
            animal_id=animal_id,
            document_id=document.id,
            document_type=document.document_type,
        )
        return format_document(document, current_user)

    except IntegrityError:
        await session.rollback()
        raise ConflictError("A document with this blob name already exists.")

    except RescueAppException:
        await session.rollback()
        raise

    except Exception as e:
        logger.error("Failed to save document metadata", animal_id=animal_id, error=str(e), exc_info=True)
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save document metadata"
        )


@router.get("/animals/{animal_id}/documents", response_model=List[Dict[str, Any]])
async def list_animal_documents(
    animal_id: int,
    session: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_staff),
) -> List[Dict[str, Any]]:
    """Documents of an animal, newest first, with uploader details."""
    await ensure_animal_exists(session, animal_id)

    result = await session.execute(
        select(AnimalDocument, User)
        .outerjoin(User, AnimalDocument.uploaded_by_user_id == User.id)
        .where(AnimalDocument.animal_id == animal_id)
        .order_by(AnimalDocument.date_uploaded.desc(), AnimalDocument.id.desc())
    )
    return [format_document(document, uploader) for document, uploader in result.all()]


@router.get("/documents/{document_id}/download-url", response_model=Dict[str, Any])
async def get_document_download_url(
    document_id: int,
    session: AsyncSession = Depends(get_db_session),
    storage: BlobStorageService = Depends(get_blob_storage),
    current_user: User = Depends(require_staff),
) -> Dict[str, Any]:
    """Issue a short-lived read-only URL for a document."""
    document = await session.get(AnimalDocument, document_id)
    if document is None:
        raise NotFoundError("Document", document_id, message="Document record not found.")

    signed = storage.document_download_url(document.blob_name, document.file_name)
    logger.info("Document download URL issued", document_id=document_id, user_id=str(current_user.id))
    return {"downloadUrl": signed.url, "expiresAt": signed.expires_at}


@router.delete("/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_animal_document(
    document_id: int,
    session: AsyncSession = Depends(get_db_session),
    storage: BlobStorageService = Depends(get_blob_storage),
    current_user: User = Depends(require_staff),
):
    """Delete document metadata, then its blob (best-effort)."""
    try:
        document = await session.get(AnimalDocument, document_id)
        if document is None:
            raise NotFoundError("Document", document_id, message="Document record not found.")

        blob_name = document.blob_name
        await session.delete(document)
        await session.commit()

    except RescueAppException:
        raise

    except Exception as e:
        logger.error("Failed to delete document", document_id=document_id, error=str(e), exc_info=True)
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete document"
        )

    await storage.delete_blob(storage.documents_container, blob_name)
    logger.info("Animal document deleted", document_id=document_id, user_id=str(current_user.id))
