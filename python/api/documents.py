"""
Document endpoints: listing, detail, metadata update, lifecycle and files
"""

import logging
import math
import re
from datetime import date
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response

from api.dependencies import (
    AuthContext,
    get_current_user,
    get_document_manager,
    get_document_policy,
    get_file_storage,
    get_metadata_service,
)
from api.models import (
    DocumentListResponse,
    DocumentResponse,
    DocumentUpdateRequest,
    ErrorResponse,
    FileUrlResponse,
    ProcessRequest,
    TrashResponse,
)
from database.models import ActionTypeName, Document
from services.access_policy import DocumentAction, DocumentPolicy
from services.audit_logger import pagination_meta
from services.document_manager import DocumentManager
from services.file_storage import FileStorage
from services.metadata_service import MetadataService, MetadataValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["documents"])

ERROR_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Missing user identity"},
    403: {"model": ErrorResponse, "description": "Action not allowed"},
    404: {"model": ErrorResponse, "description": "Document not found"},
}


def load_document(manager: DocumentManager, document_id: int) -> Document:
    """Document including trashed ones, or 404."""
    document = manager.get_document(document_id, include_trashed=True)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return document


def content_disposition(filename: str) -> str:
    """
    Inline Content-Disposition value safe for Latin-1 headers.

    Names outside printable ASCII get an underscore fallback plus an
    RFC 5987 filename* parameter carrying the UTF-8 name.
    """
    fallback = re.sub(r'[^\x20-\x7e]|["\\]', '_', filename)
    if fallback == filename:
        return f'inline; filename="{filename}"'
    return f"inline; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


def _page_url(request: Request, page: int) -> str:
    return str(request.url.include_query_params(page=page))


def _pagination_links(request: Request, page: int, last_page: int) -> dict:
    return {
        "first": _page_url(request, 1),
        "last": _page_url(request, last_page),
        "prev": _page_url(request, page - 1) if page > 1 else None,
        "next": _page_url(request, page + 1) if page < last_page else None,
    }


@router.get(
    "/documents",
    response_model=DocumentListResponse,
    summary="List documents",
    description="Filtered, sorted and paginated document list",
)
def list_documents(
    request: Request,
    status: Optional[str] = Query(default=None, pattern="^(processed|unprocessed|trashed)$"),
    policy_id: Optional[int] = None,
    loss_id: Optional[int] = None,
    claimant_id: Optional[int] = None,
    producer_id: Optional[int] = None,
    search: Optional[str] = Query(default=None, max_length=100),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    assigned_to_user: Optional[int] = None,
    assigned_to_group: Optional[int] = None,
    created_by: Optional[int] = None,
    updated_by: Optional[int] = None,
    per_page: Optional[int] = Query(default=None, ge=1),
    page: int = Query(default=1, ge=1),
    sort_by: str = "created_at",
    sort_direction: str = "desc",
    auth: AuthContext = Depends(get_current_user),
    manager: DocumentManager = Depends(get_document_manager),
    metadata_service: MetadataService = Depends(get_metadata_service),
):
    filters = {
        "status": status,
        "policy_id": policy_id,
        "loss_id": loss_id,
        "claimant_id": claimant_id,
        "producer_id": producer_id,
        "search": search,
        "date_from": date_from,
        "date_to": date_to,
        "assigned_to_user": assigned_to_user,
        "assigned_to_group": assigned_to_group,
        "created_by": created_by,
        "updated_by": updated_by,
    }
    documents, total, page, per_page = manager.get_documents(
        filters,
        per_page=per_page,
        page=page,
        sort_by=sort_by,
        sort_direction=sort_direction,
    )
    last_page = max(1, math.ceil(total / per_page))

    return {
        "data": [metadata_service.serialize_metadata(document) for document in documents],
        "links": _pagination_links(request, page, last_page),
        "meta": pagination_meta(page, per_page, total),
    }


@router.get(
    "/documents/{document_id}",
    response_model=DocumentResponse,
    responses=ERROR_RESPONSES,
    summary="Get document",
    openapi_extra={"x-audit-action": ActionTypeName.VIEW.value},
)
def get_document(
    document_id: int,
    auth: AuthContext = Depends(get_current_user),
    manager: DocumentManager = Depends(get_document_manager),
    metadata_service: MetadataService = Depends(get_metadata_service),
    policy: DocumentPolicy = Depends(get_document_policy),
):
    document = load_document(manager, document_id)
    policy.authorize(auth.user, DocumentAction.VIEW, document)
    return {"data": metadata_service.serialize_metadata(document)}


@router.put(
    "/documents/{document_id}",
    response_model=DocumentResponse,
    responses={**ERROR_RESPONSES, 422: {"model": ErrorResponse, "description": "Invalid or locked metadata"}},
    summary="Update document metadata",
)
def update_document(
    document_id: int,
    body: DocumentUpdateRequest,
    auth: AuthContext = Depends(get_current_user),
    manager: DocumentManager = Depends(get_document_manager),
    metadata_service: MetadataService = Depends(get_metadata_service),
    policy: DocumentPolicy = Depends(get_document_policy),
):
    document = load_document(manager, document_id)
    policy.authorize(auth.user, DocumentAction.UPDATE, document)
    return {"data": apply_metadata_update(manager, document, body, auth.user_id)}


def apply_metadata_update(
    manager: DocumentManager,
    document: Document,
    body: DocumentUpdateRequest,
    user_id: int,
) -> dict:
    """Validate and persist a metadata update, raising MetadataValidationError on field errors."""
    data = body.to_update_data()
    errors = manager.validate_update(document, data)
    if errors:
        raise MetadataValidationError(errors)

    result = manager.metadata_service.update_document_metadata(document.id, data, user_id)
    if not result:
        raise HTTPException(status_code=500, detail="Failed to update document metadata")
    return result


@router.post(
    "/documents/{document_id}/process",
    response_model=DocumentResponse,
    responses={**ERROR_RESPONSES, 422: {"model": ErrorResponse, "description": "Required metadata missing"}},
    summary="Mark document processed or unprocessed",
    openapi_extra={"x-audit-action": ActionTypeName.PROCESS.value},
)
def process_document(
    request: Request,
    document_id: int,
    body: ProcessRequest,
    auth: AuthContext = Depends(get_current_user),
    manager: DocumentManager = Depends(get_document_manager),
    metadata_service: MetadataService = Depends(get_metadata_service),
    policy: DocumentPolicy = Depends(get_document_policy),
):
    document = load_document(manager, document_id)
    policy.authorize(auth.user, DocumentAction.PROCESS, document)

    errors = manager.validate_processing(document, body.process_state)
    if errors:
        raise MetadataValidationError(errors)

    document = manager.process_document(document_id, body.process_state, auth.user_id)
    if document is None:
        raise HTTPException(status_code=500, detail="Failed to update document status")

    request.state.audit_action = (
        ActionTypeName.PROCESS.value if body.process_state else ActionTypeName.UNPROCESS.value
    )
    return {"data": metadata_service.serialize_metadata(document)}


@router.post(
    "/documents/{document_id}/trash",
    response_model=TrashResponse,
    responses=ERROR_RESPONSES,
    summary="Move document to trash",
    openapi_extra={"x-audit-action": ActionTypeName.TRASH.value},
)
def trash_document(
    document_id: int,
    auth: AuthContext = Depends(get_current_user),
    manager: DocumentManager = Depends(get_document_manager),
    policy: DocumentPolicy = Depends(get_document_policy),
):
    document = load_document(manager, document_id)
    policy.authorize(auth.user, DocumentAction.TRASH, document)

    if not manager.trash_document(document_id, auth.user_id):
        raise HTTPException(status_code=500, detail="Failed to move document to trash")
    return TrashResponse(success=True, message="Document moved to trash")


@router.post(
    "/documents/{document_id}/restore",
    response_model=DocumentResponse,
    responses=ERROR_RESPONSES,
    summary="Restore document from trash",
    openapi_extra={"x-audit-action": ActionTypeName.RESTORE.value},
)
def restore_document(
    document_id: int,
    auth: AuthContext = Depends(get_current_user),
    manager: DocumentManager = Depends(get_document_manager),
    metadata_service: MetadataService = Depends(get_metadata_service),
    policy: DocumentPolicy = Depends(get_document_policy),
):
    document = load_document(manager, document_id)
    policy.authorize(auth.user, DocumentAction.RESTORE, document)

    if not document.is_trashed:
        raise HTTPException(status_code=400, detail="Document is not in the trash")

    document = manager.restore_document(document_id, auth.user_id)
    if document is None:
        raise HTTPException(status_code=500, detail="Failed to restore document")
    return {"data": metadata_service.serialize_metadata(document)}


@router.get(
    "/documents/{document_id}/status",
    responses=ERROR_RESPONSES,
    summary="Document status flags",
)
def document_status(
    document_id: int,
    auth: AuthContext = Depends(get_current_user),
    manager: DocumentManager = Depends(get_document_manager),
    policy: DocumentPolicy = Depends(get_document_policy),
):
    document = load_document(manager, document_id)
    policy.authorize(auth.user, DocumentAction.VIEW, document)
    return {
        "id": document.id,
        "status_id": document.status_id,
        "is_processed": document.is_processed,
        "is_trashed": document.is_trashed,
    }


# ============================================
# FILES AND VIEWER
# ============================================

@router.get(
    "/documents/{document_id}/file",
    responses={**ERROR_RESPONSES, 200: {"content": {"application/pdf": {}}}},
    summary="Download the document's main file",
)
def document_file(
    document_id: int,
    auth: AuthContext = Depends(get_current_user),
    manager: DocumentManager = Depends(get_document_manager),
    policy: DocumentPolicy = Depends(get_document_policy),
):
    document = load_document(manager, document_id)
    policy.authorize(auth.user, DocumentAction.VIEW, document)

    file_data = manager.get_document_file(document_id)
    if file_data is None:
        raise HTTPException(status_code=404, detail="Document file not found")

    content, mime_type, filename = file_data
    return Response(
        content=content,
        media_type=mime_type,
        headers={"Content-Disposition": content_disposition(filename)},
    )


@router.get(
    "/documents/{document_id}/file-url",
    response_model=FileUrlResponse,
    responses=ERROR_RESPONSES,
    summary="Signed, expiring link to the document's file",
)
def document_file_url(
    document_id: int,
    expiration_minutes: int = Query(default=60, ge=1, le=1440),
    auth: AuthContext = Depends(get_current_user),
    manager: DocumentManager = Depends(get_document_manager),
    policy: DocumentPolicy = Depends(get_document_policy),
):
    document = load_document(manager, document_id)
    policy.authorize(auth.user, DocumentAction.VIEW, document)

    url = manager.get_document_file_url(document_id, expiration_minutes)
    if url is None:
        raise HTTPException(status_code=404, detail="Document file not found")
    return FileUrlResponse(url=url, expires_in_minutes=expiration_minutes)


@router.get(
    "/documents/{document_id}/viewer-config",
    responses=ERROR_RESPONSES,
    summary="Configuration for the embedded PDF viewer",
)
def document_viewer_config(
    document_id: int,
    auth: AuthContext = Depends(get_current_user),
    manager: DocumentManager = Depends(get_document_manager),
    policy: DocumentPolicy = Depends(get_document_policy),
):
    document = load_document(manager, document_id)
    policy.authorize(auth.user, DocumentAction.VIEW, document)

    config = manager.get_document_viewer_config(document_id)
    if config is None:
        raise HTTPException(status_code=404, detail="Document file not found")
    return config


@router.get(
    "/files/{file_id}",
    responses={403: {"model": ErrorResponse, "description": "Invalid or expired link"}},
    summary="Serve a file through a signed link",
)
def signed_file(
    file_id: int,
    expires: int = Query(...),
    signature: str = Query(..., min_length=1),
    file_storage: FileStorage = Depends(get_file_storage),
):
    if not file_storage.verify_signed_url(file_id, expires, signature):
        raise HTTPException(status_code=403, detail="Invalid or expired file link")

    content = file_storage.read_file(file_id)
    if content is None:
        raise HTTPException(status_code=404, detail="File not found")

    filename = file_storage.get_file_name(file_id) or "document"
    return Response(
        content=content,
        media_type=file_storage.get_file_mime_type(file_id) or "application/octet-stream",
        headers={"Content-Disposition": content_disposition(filename)},
    )
