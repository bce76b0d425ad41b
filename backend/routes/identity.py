"""Identity document routes.

Provides endpoints for:
- Uploading a document image with its extracted fields
- Reading document metadata and verification results
- Listing a patient's documents
- Issuing short-lived download URLs for the image

Every route requires ``Authorization: Bearer <api key>`` and
``X-Tenant-ID``; the key must be registered for that tenant.
"""

import base64
import binascii
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from config import upload_rate_limit
from errors import ValidationError

from .dependencies import CallerContext, get_services, limiter, require_tenant

router = APIRouter(tags=["identity"])

DATA_URL_MARKER = ";base64,"


class UploadRequest(BaseModel):
    """Request model for a document upload."""

    patient_ref_id: str = Field(..., min_length=1, max_length=128)
    document_type: str = Field(..., min_length=1, max_length=64)
    image_base64: str = Field(..., min_length=1)
    extracted_fields: dict[str, Any] | None = None


class UploadResponse(BaseModel):
    document_id: str
    status: str


class DownloadUrlResponse(BaseModel):
    download_url: str
    expires_in: int


def decode_image(image_base64: str) -> bytes:
    """Decode a base64 image, accepting an optional ``data:`` URL prefix.

    Raises:
        ValidationError: If the value is not valid base64
    """
    encoded = image_base64.strip()
    if encoded.startswith("data:") and DATA_URL_MARKER in encoded:
        encoded = encoded.split(DATA_URL_MARKER, 1)[1]
    try:
        payload = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("image_base64 is not valid base64") from None
    if not payload:
        raise ValidationError("Document image is required")
    return payload


@router.post("/identity/upload", response_model=UploadResponse, status_code=201)
@limiter.limit(upload_rate_limit)
def upload_identity_document(
    request: Request,
    upload: UploadRequest,
    caller: CallerContext = Depends(require_tenant),
):
    """Store a document image and queue it for verification."""
    payload = decode_image(upload.image_base64)
    return get_services(request).ingest.upload_document(
        tenant_id=caller.tenant_id,
        patient_ref_id=upload.patient_ref_id,
        document_type=upload.document_type,
        payload=payload,
        extracted_fields=upload.extracted_fields,
        actor=caller.actor,
    )


@router.get("/identity/{document_id}")
def get_identity_document(
    document_id: str,
    request: Request,
    caller: CallerContext = Depends(require_tenant),
):
    """Document metadata and verification result (never the image)."""
    document = get_services(request).ingest.get_document(
        caller.tenant_id, document_id, actor=caller.actor
    )
    return document.to_public_dict()


@router.get("/identity/{document_id}/download", response_model=DownloadUrlResponse)
def get_identity_document_download_url(
    document_id: str,
    request: Request,
    caller: CallerContext = Depends(require_tenant),
):
    """Issue a short-lived signed URL for the document image."""
    return get_services(request).ingest.get_download_url(
        caller.tenant_id, document_id, actor=caller.actor
    )


@router.get("/patients/{patient_ref_id}/identity-documents")
def list_patient_identity_documents(
    patient_ref_id: str,
    request: Request,
    caller: CallerContext = Depends(require_tenant),
):
    """List a patient's documents, newest first."""
    documents = get_services(request).ingest.list_documents(
        caller.tenant_id, patient_ref_id, actor=caller.actor
    )
    return {"documents": [document.to_public_dict() for document in documents]}
