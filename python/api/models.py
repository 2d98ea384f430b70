"""
Pydantic request/response schemas for the Documents View API
"""

from typing import List, Optional, Dict, Any

from pydantic import BaseModel, Field, field_validator


# ============================================
# REQUESTS
# ============================================

class DocumentUpdateRequest(BaseModel):
    """Metadata update for a document.

    Only the fields present in the request body are applied. Empty strings
    and 0 for the id fields clear the value.
    """
    policy_id: Optional[int] = Field(default=None, description="Policy id")
    loss_id: Optional[int] = Field(default=None, description="Loss id (must belong to the policy)")
    claimant_id: Optional[int] = Field(default=None, description="Claimant id (must belong to the loss)")
    producer_id: Optional[int] = Field(default=None, description="Producer id")
    description: Optional[str] = Field(
        default=None,
        max_length=255,
        description="Document description"
    )
    assigned_users: Optional[List[int]] = Field(default=None, description="Assigned user ids")
    assigned_groups: Optional[List[int]] = Field(default=None, description="Assigned user group ids")
    signature_required: Optional[bool] = Field(default=None)

    @field_validator('policy_id', 'loss_id', 'claimant_id', 'producer_id', mode='before')
    @classmethod
    def empty_id_to_none(cls, v: Any) -> Any:
        """'' and 0 mean no selection."""
        if v in ('', 0, '0'):
            return None
        return v

    @field_validator('assigned_users', 'assigned_groups', mode='before')
    @classmethod
    def drop_non_numeric_ids(cls, v: Any) -> Any:
        if v is None:
            return v
        if not isinstance(v, (list, tuple)):
            v = [v]
        return [item for item in v if str(item).strip().isdigit() and int(item) > 0]

    @field_validator('description')
    @classmethod
    def strip_description(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return v.strip()

    def to_update_data(self) -> Dict[str, Any]:
        """Fields the client actually sent."""
        return self.model_dump(exclude_unset=True)


class ProcessRequest(BaseModel):
    """Request body for the process toggle."""
    process_state: bool = Field(..., description="True marks processed, False unprocessed")


# ============================================
# RESPONSES
# ============================================

class OptionItem(BaseModel):
    """Dropdown option."""
    id: int
    value: int
    label: str


class NamedRef(BaseModel):
    id: int
    name: str


class DocumentMetadata(BaseModel):
    """Flat document metadata as shown in the side panel."""
    id: int
    name: str
    description: Optional[str] = None
    date_received: Optional[str] = Field(default=None, description="YYYY-MM-DD")
    signature_required: bool = False
    policy_id: Optional[int] = None
    policy_number: Optional[str] = None
    loss_id: Optional[int] = None
    loss_sequence: Optional[str] = None
    claimant_id: Optional[int] = None
    claimant_name: Optional[str] = None
    producer_id: Optional[int] = None
    producer_number: Optional[str] = None
    assigned_to: str = ""
    assigned_users: List[NamedRef] = Field(default_factory=list)
    assigned_groups: List[NamedRef] = Field(default_factory=list)
    status_id: int
    is_processed: bool
    is_trashed: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    file_url: Optional[str] = None
    filename: Optional[str] = None


class DocumentResponse(BaseModel):
    data: DocumentMetadata


class PaginationMeta(BaseModel):
    current_page: int
    from_: Optional[int] = Field(default=None, alias="from")
    last_page: int
    per_page: int
    to: Optional[int] = None
    total: int

    model_config = {"populate_by_name": True}


class PaginationLinks(BaseModel):
    first: str
    last: str
    prev: Optional[str] = None
    next: Optional[str] = None


class DocumentListResponse(BaseModel):
    data: List[DocumentMetadata]
    links: PaginationLinks
    meta: PaginationMeta


class TrashResponse(BaseModel):
    success: bool
    message: str


class ActionTypeRef(BaseModel):
    id: int
    name: str


class HistoryUser(BaseModel):
    id: int
    username: str
    name: str


class HistoryEntry(BaseModel):
    """One audit trail row for a document."""
    id: int
    document_id: int
    action_id: Optional[int] = None
    action_type: Optional[ActionTypeRef] = None
    description: Optional[str] = None
    timestamp: Optional[str] = None
    user: Optional[HistoryUser] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class HistoryResponse(BaseModel):
    data: List[HistoryEntry]
    meta: PaginationMeta


class LastAction(BaseModel):
    id: int
    action_type: Optional[str] = None
    description: Optional[str] = None
    timestamp: Optional[str] = None
    user: Optional[HistoryUser] = None


class LastActionResponse(BaseModel):
    data: Optional[LastAction] = None


class ActionTypeCount(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    count: int = Field(..., ge=0)


class ActionTypeCountResponse(BaseModel):
    data: List[ActionTypeCount]


class FileUrlResponse(BaseModel):
    url: str
    expires_in_minutes: int


class HealthResponse(BaseModel):
    """Response schema for health check endpoint."""
    status: str = Field(default="healthy", description="Service status")
    version: str
    database: Dict[str, Any] = Field(default_factory=dict, description="Database health check result")
    maintenance: bool = False
    uptime_seconds: Optional[int] = Field(default=None, description="Server uptime in seconds")


class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    field: Optional[str] = Field(default=None, description="Field that caused error")
    suggestion: Optional[str] = Field(default=None, description="How to fix the error")
    errors: Optional[Dict[str, str]] = Field(default=None, description="Field -> message for validation errors")
    timestamp: str = Field(..., description="Error timestamp (ISO 8601)")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    error: ErrorDetail
