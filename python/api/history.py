"""
Document history (audit trail) endpoints
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import (
    AuthContext,
    get_audit_logger,
    get_current_user,
    get_document_manager,
    get_document_policy,
)
from api.documents import ERROR_RESPONSES, load_document
from api.models import ActionTypeCountResponse, HistoryResponse, LastActionResponse
from services.access_policy import DocumentAction, DocumentPolicy
from services.audit_logger import AuditLogger
from services.document_manager import DocumentManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/documents/{document_id}/history", tags=["history"])


def _authorized_history(
    document_id: int,
    auth: AuthContext,
    manager: DocumentManager,
    policy: DocumentPolicy,
) -> None:
    document = load_document(manager, document_id)
    policy.authorize(auth.user, DocumentAction.VIEW_HISTORY, document)


def _history_page(
    manager: DocumentManager,
    document_id: int,
    per_page: Optional[int],
    direction: str,
    page: int,
    action_type_id: Optional[int] = None,
) -> dict:
    history = manager.get_document_history(
        document_id,
        per_page=per_page,
        direction=direction,
        page=page,
        action_type_id=action_type_id,
    )
    if history is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return history


@router.get(
    "",
    response_model=HistoryResponse,
    responses=ERROR_RESPONSES,
    summary="Document history",
    description="Paginated audit trail, newest first unless direction=asc",
)
def document_history(
    document_id: int,
    per_page: Optional[int] = Query(default=None, ge=1, le=100),
    direction: str = Query(default="desc", pattern="^(asc|desc)$"),
    page: int = Query(default=1, ge=1),
    auth: AuthContext = Depends(get_current_user),
    manager: DocumentManager = Depends(get_document_manager),
    policy: DocumentPolicy = Depends(get_document_policy),
):
    _authorized_history(document_id, auth, manager, policy)
    return _history_page(manager, document_id, per_page, direction, page)


@router.get(
    "/last-edited",
    response_model=LastActionResponse,
    responses=ERROR_RESPONSES,
    summary="Most recent action on the document",
)
def last_edited(
    document_id: int,
    auth: AuthContext = Depends(get_current_user),
    manager: DocumentManager = Depends(get_document_manager),
    audit_logger: AuditLogger = Depends(get_audit_logger),
    policy: DocumentPolicy = Depends(get_document_policy),
):
    _authorized_history(document_id, auth, manager, policy)
    return {"data": audit_logger.get_last_document_action(document_id)}


@router.get(
    "/action-types",
    response_model=ActionTypeCountResponse,
    responses=ERROR_RESPONSES,
    summary="Action types with counts for the document",
)
def action_types(
    document_id: int,
    auth: AuthContext = Depends(get_current_user),
    manager: DocumentManager = Depends(get_document_manager),
    audit_logger: AuditLogger = Depends(get_audit_logger),
    policy: DocumentPolicy = Depends(get_document_policy),
):
    _authorized_history(document_id, auth, manager, policy)
    counts = audit_logger.get_action_type_counts(document_id)
    if counts is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return {"data": counts}


@router.get(
    "/filter",
    response_model=HistoryResponse,
    responses={**ERROR_RESPONSES, 400: {"description": "action_type_id missing"}},
    summary="Document history filtered by action type",
)
def filtered_history(
    document_id: int,
    action_type_id: Optional[int] = None,
    per_page: Optional[int] = Query(default=None, ge=1, le=100),
    direction: str = Query(default="desc", pattern="^(asc|desc)$"),
    page: int = Query(default=1, ge=1),
    auth: AuthContext = Depends(get_current_user),
    manager: DocumentManager = Depends(get_document_manager),
    policy: DocumentPolicy = Depends(get_document_policy),
):
    if action_type_id is None:
        raise HTTPException(status_code=400, detail="Action type ID is required")

    _authorized_history(document_id, auth, manager, policy)
    return _history_page(manager, document_id, per_page, direction, page, action_type_id)
