"""Download route for the local blob backend.

The URL token is the credential: it carries the blob key and is only
valid for the TTL it was issued with. With the S3 backend, download URLs
are S3 presigned URLs and this route always answers 404.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request, Response

from config import MAX_DOWNLOAD_URL_TTL_SECONDS
from errors import NotFoundError
from storage.blob_store import LocalBlobStore

from .dependencies import get_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["blobs"])


@router.get("/blobs/{token}")
def download_blob(token: str, request: Request) -> Response:
    blob_store = get_services(request).blob_store
    if not isinstance(blob_store, LocalBlobStore):
        raise NotFoundError("Not found")

    key = blob_store.resolve_download_token(token, MAX_DOWNLOAD_URL_TTL_SECONDS)
    return Response(
        content=blob_store.get(key),
        media_type="image/jpeg",
        headers={"Cache-Control": "no-store"},
    )
