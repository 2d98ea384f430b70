"""
Metadata panel endpoints: document metadata and the cascading dropdown options
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import (
    AuthContext,
    get_current_user,
    get_document_manager,
    get_document_policy,
    get_metadata_service,
)
from api.documents import ERROR_RESPONSES, apply_metadata_update, load_document
from api.models import DocumentResponse, DocumentUpdateRequest, ErrorResponse, OptionItem
from services.access_policy import DocumentAction, DocumentPolicy
from services.document_manager import DocumentManager
from services.metadata_service import MetadataService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["metadata"])

OPTION_LIMIT = Query(default=25, ge=1, le=100)
OPTION_SEARCH = Query(default=None, max_length=100)


# ============================================
# DOCUMENT METADATA
# ============================================

@router.get(
    "/documents/{document_id}/metadata",
    response_model=DocumentResponse,
    responses=ERROR_RESPONSES,
    summary="Document metadata",
)
@router.get(
    "/metadata/documents/{document_id}",
    response_model=DocumentResponse,
    responses=ERROR_RESPONSES,
    include_in_schema=False,
)
def get_document_metadata(
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
    "/documents/{document_id}/metadata",
    response_model=DocumentResponse,
    responses={**ERROR_RESPONSES, 422: {"model": ErrorResponse, "description": "Invalid or locked metadata"}},
    summary="Update document metadata",
)
@router.put(
    "/metadata/documents/{document_id}",
    response_model=DocumentResponse,
    responses={**ERROR_RESPONSES, 422: {"model": ErrorResponse, "description": "Invalid or locked metadata"}},
    include_in_schema=False,
)
def update_document_metadata(
    document_id: int,
    body: DocumentUpdateRequest,
    auth: AuthContext = Depends(get_current_user),
    manager: DocumentManager = Depends(get_document_manager),
    policy: DocumentPolicy = Depends(get_document_policy),
):
    document = load_document(manager, document_id)
    policy.authorize(auth.user, DocumentAction.UPDATE, document)
    return {"data": apply_metadata_update(manager, document, body, auth.user_id)}


# ============================================
# DROPDOWN OPTIONS
# ============================================

@router.get("/metadata/options/policies", response_model=List[OptionItem], summary="Policy options")
def policy_options(
    search: Optional[str] = OPTION_SEARCH,
    producer_id: Optional[int] = None,
    limit: int = OPTION_LIMIT,
    auth: AuthContext = Depends(get_current_user),
    metadata_service: MetadataService = Depends(get_metadata_service),
):
    return metadata_service.get_policy_options(search=search, producer_id=producer_id, limit=limit)


@router.get("/metadata/options/losses/{policy_id}", response_model=List[OptionItem], summary="Loss options for a policy")
@router.get("/policies/{policy_id}/losses", response_model=List[OptionItem], summary="Losses of a policy")
def loss_options(
    policy_id: int,
    search: Optional[str] = OPTION_SEARCH,
    limit: int = OPTION_LIMIT,
    auth: AuthContext = Depends(get_current_user),
    metadata_service: MetadataService = Depends(get_metadata_service),
):
    return metadata_service.get_loss_options(policy_id, search=search, limit=limit)


@router.get("/metadata/options/claimants/{loss_id}", response_model=List[OptionItem], summary="Claimant options for a loss")
@router.get("/losses/{loss_id}/claimants", response_model=List[OptionItem], summary="Claimants of a loss")
def claimant_options(
    loss_id: int,
    search: Optional[str] = OPTION_SEARCH,
    limit: int = OPTION_LIMIT,
    auth: AuthContext = Depends(get_current_user),
    metadata_service: MetadataService = Depends(get_metadata_service),
):
    return metadata_service.get_claimant_options(loss_id, search=search, limit=limit)


@router.get("/producers/{producer_id}/policies", response_model=List[OptionItem], summary="Policies of a producer")
def producer_policies(
    producer_id: int,
    search: Optional[str] = OPTION_SEARCH,
    limit: int = OPTION_LIMIT,
    auth: AuthContext = Depends(get_current_user),
    metadata_service: MetadataService = Depends(get_metadata_service),
):
    return metadata_service.get_policy_options(search=search, producer_id=producer_id, limit=limit)


@router.get("/metadata/options/producers", response_model=List[OptionItem], summary="Producer options")
def producer_options(
    search: Optional[str] = OPTION_SEARCH,
    limit: int = OPTION_LIMIT,
    auth: AuthContext = Depends(get_current_user),
    metadata_service: MetadataService = Depends(get_metadata_service),
):
    return metadata_service.get_producer_options(search=search, limit=limit)


@router.get("/metadata/options/users", response_model=List[OptionItem], summary="User options")
def user_options(
    search: Optional[str] = OPTION_SEARCH,
    limit: int = OPTION_LIMIT,
    auth: AuthContext = Depends(get_current_user),
    metadata_service: MetadataService = Depends(get_metadata_service),
):
    return metadata_service.get_user_options(search=search, limit=limit)


@router.get("/metadata/options/user-groups", response_model=List[OptionItem], summary="User group options")
def user_group_options(
    search: Optional[str] = OPTION_SEARCH,
    limit: int = OPTION_LIMIT,
    auth: AuthContext = Depends(get_current_user),
    metadata_service: MetadataService = Depends(get_metadata_service),
):
    return metadata_service.get_user_group_options(search=search, limit=limit)
