"""
Metadata panel form model

Client-side mirror of the metadata cascade: a change to a parent field
clears and disables its dependents and reloads their options filtered by
the new parent. Edits are saved through a debounced, coalesced save.
Everything runs on one asyncio event loop.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from client.api_client import ApiClientError, DocumentsApiClient

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.5

REQUIRED_MESSAGE = "This field is required"


class FieldName(str, Enum):
    """Fields of the metadata panel"""
    POLICY_NUMBER = "policyNumber"
    LOSS_SEQUENCE = "lossSequence"
    CLAIMANT = "claimant"
    DOCUMENT_DESCRIPTION = "documentDescription"
    ASSIGNED_TO = "assignedTo"
    PRODUCER_NUMBER = "producerNumber"


@dataclass(frozen=True)
class FieldDependency:
    """field depends on depends_on; its options are filtered by filter_param.

    Soft dependencies only filter options: the dependent keeps its value
    and stays enabled when the parent changes.
    """
    field: FieldName
    depends_on: FieldName
    filter_param: str
    soft: bool = False


FIELD_DEPENDENCIES = (
    FieldDependency(FieldName.LOSS_SEQUENCE, FieldName.POLICY_NUMBER, "policyId"),
    FieldDependency(FieldName.CLAIMANT, FieldName.LOSS_SEQUENCE, "lossId"),
    FieldDependency(FieldName.POLICY_NUMBER, FieldName.PRODUCER_NUMBER, "producerId", soft=True),
)

REQUIRED_FIELDS = (FieldName.POLICY_NUMBER, FieldName.DOCUMENT_DESCRIPTION)

MISSING_PARENT_MESSAGES = {
    FieldName.LOSS_SEQUENCE: "Please select a policy before selecting a loss sequence",
    FieldName.CLAIMANT: "Please select a loss sequence before selecting a claimant",
}

# Form field -> request body key
REQUEST_KEYS = {
    FieldName.POLICY_NUMBER: "policy_id",
    FieldName.LOSS_SEQUENCE: "loss_id",
    FieldName.CLAIMANT: "claimant_id",
    FieldName.PRODUCER_NUMBER: "producer_id",
    FieldName.DOCUMENT_DESCRIPTION: "description",
    FieldName.ASSIGNED_TO: "assigned_users",
}


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == 0


def get_field_dependency(field: FieldName) -> Optional[FieldDependency]:
    """The hard dependency of field, if any."""
    for dependency in FIELD_DEPENDENCIES:
        if dependency.field == field and not dependency.soft:
            return dependency
    return None


def get_dependents(field: FieldName) -> List[FieldDependency]:
    return [dependency for dependency in FIELD_DEPENDENCIES if dependency.depends_on == field]


class MetadataForm:
    """State and behaviour of the metadata panel for one document."""

    def __init__(
        self,
        api: DocumentsApiClient,
        document_id: int,
        values: Optional[Dict[FieldName, Any]] = None,
        read_only: bool = False,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS
    ):
        self.api = api
        self.document_id = document_id
        self.read_only = read_only
        self.debounce_seconds = debounce_seconds

        self.values: Dict[FieldName, Any] = {field: None for field in FieldName}
        self.values[FieldName.ASSIGNED_TO] = []
        self.values.update(values or {})

        self.options: Dict[FieldName, List[Dict[str, Any]]] = {field: [] for field in FieldName}
        self.loading: Dict[FieldName, bool] = {field: False for field in FieldName}
        self.errors: Dict[FieldName, str] = {}

        self.is_saving = False
        self.save_error: Optional[str] = None
        self.save_count = 0

        self._generations: Dict[FieldName, int] = {field: 0 for field in FieldName}
        self._tasks: Set[asyncio.Task] = set()
        self._save_task: Optional[asyncio.Task] = None

    @classmethod
    def from_metadata(cls, api: DocumentsApiClient, metadata: Dict[str, Any], **kwargs) -> 'MetadataForm':
        """Build a form from the API's document metadata."""
        values = {
            FieldName.POLICY_NUMBER: metadata.get("policy_id"),
            FieldName.LOSS_SEQUENCE: metadata.get("loss_id"),
            FieldName.CLAIMANT: metadata.get("claimant_id"),
            FieldName.PRODUCER_NUMBER: metadata.get("producer_id"),
            FieldName.DOCUMENT_DESCRIPTION: metadata.get("description"),
            FieldName.ASSIGNED_TO: [user["id"] for user in metadata.get("assigned_users") or []],
        }
        kwargs.setdefault("read_only", bool(metadata.get("is_processed")))
        return cls(api, metadata["id"], values=values, **kwargs)

    # ------------------------------------------
    # Field state
    # ------------------------------------------

    def is_field_disabled(self, field: FieldName) -> bool:
        if self.read_only:
            return True
        dependency = get_field_dependency(field)
        return dependency is not None and _is_empty(self.values[dependency.depends_on])

    def set_value(self, field: FieldName, value: Any) -> bool:
        """
        Change a field value, cascade to dependents and schedule a save.

        Returns False when the form is read-only or the field is disabled.
        """
        if self.read_only or self.is_field_disabled(field):
            return False

        if self.values[field] == value:
            return True

        self.values[field] = value
        self.errors.pop(field, None)
        self._cascade(field)
        self._schedule_save()
        return True

    def _cascade(self, field: FieldName) -> None:
        for dependency in get_dependents(field):
            if not dependency.soft:
                self._clear(dependency.field)
            self._spawn(self.load_options(dependency.field))

    def _clear(self, field: FieldName) -> None:
        """Clear field and, transitively, its hard dependents."""
        self.values[field] = [] if field == FieldName.ASSIGNED_TO else None
        self.options[field] = []
        self.errors.pop(field, None)
        for dependency in get_dependents(field):
            if not dependency.soft:
                self._clear(dependency.field)

    # ------------------------------------------
    # Options
    # ------------------------------------------

    async def _fetch_options(self, field: FieldName) -> List[Dict[str, Any]]:
        if field == FieldName.POLICY_NUMBER:
            return await self.api.get_policy_options(producer_id=self.values[FieldName.PRODUCER_NUMBER])
        if field == FieldName.LOSS_SEQUENCE:
            return await self.api.get_loss_options(self.values[FieldName.POLICY_NUMBER])
        if field == FieldName.CLAIMANT:
            return await self.api.get_claimant_options(self.values[FieldName.LOSS_SEQUENCE])
        if field == FieldName.PRODUCER_NUMBER:
            return await self.api.get_producer_options()
        if field == FieldName.ASSIGNED_TO:
            return await self.api.get_user_options()
        return []

    async def load_options(self, field: FieldName) -> List[Dict[str, Any]]:
        """
        Reload the options of field.

        A fetch that finishes after a newer fetch for the same field has
        started is discarded.
        """
        self._generations[field] += 1
        generation = self._generations[field]

        dependency = get_field_dependency(field)
        if dependency is not None and _is_empty(self.values[dependency.depends_on]):
            self.options[field] = []
            self.loading[field] = False
            return []

        self.loading[field] = True
        try:
            options = await self._fetch_options(field)
        except ApiClientError as e:
            logger.error(f"Error loading options for {field.value}: {e}")
            options = []

        if generation != self._generations[field]:
            logger.debug(f"Discarding stale options for {field.value}")
            return self.options[field]

        self.options[field] = options
        self.loading[field] = False
        return options

    async def load_initial_options(self) -> None:
        """Options for independent fields, plus dependents whose parent is set."""
        fields = [FieldName.POLICY_NUMBER, FieldName.PRODUCER_NUMBER, FieldName.ASSIGNED_TO]
        if not _is_empty(self.values[FieldName.POLICY_NUMBER]):
            fields.append(FieldName.LOSS_SEQUENCE)
        if not _is_empty(self.values[FieldName.LOSS_SEQUENCE]):
            fields.append(FieldName.CLAIMANT)
        await asyncio.gather(*(self.load_options(field) for field in fields))

    # ------------------------------------------
    # Validation
    # ------------------------------------------

    def validate_field(self, field: FieldName) -> Optional[str]:
        value = self.values[field]
        if field in REQUIRED_FIELDS and _is_empty(value):
            return REQUIRED_MESSAGE

        dependency = get_field_dependency(field)
        if dependency is not None and not _is_empty(value) and _is_empty(self.values[dependency.depends_on]):
            return MISSING_PARENT_MESSAGES.get(field, REQUIRED_MESSAGE)
        return None

    def validate_all(self) -> bool:
        """Validate every field; errors are kept on the form."""
        self.errors = {}
        for field in FieldName:
            error = self.validate_field(field)
            if error:
                self.errors[field] = error
        return not self.errors

    # ------------------------------------------
    # Saving
    # ------------------------------------------

    def to_request(self) -> Dict[str, Any]:
        data = {}
        for field, key in REQUEST_KEYS.items():
            value = self.values[field]
            if field == FieldName.ASSIGNED_TO:
                data[key] = list(value or [])
            else:
                data[key] = value or None
        return data

    def _spawn(self, coroutine) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coroutine)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _schedule_save(self) -> None:
        if self._save_task is not None and not self._save_task.done():
            self._save_task.cancel()
        self._save_task = self._spawn(self._debounced_save())

    async def _debounced_save(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        if not self.validate_all():
            logger.info(f"Skipping save of document {self.document_id}: {sorted(f.value for f in self.errors)}")
            return
        await self._save()

    async def _save(self) -> bool:
        self.is_saving = True
        self.save_error = None
        try:
            await self.api.update_document_metadata(self.document_id, self.to_request())
            self.save_count += 1
            return True
        except ApiClientError as e:
            self.save_error = str(e) or "Failed to save metadata"
            for key, message in e.errors.items():
                for field, request_key in REQUEST_KEYS.items():
                    if request_key == key:
                        self.errors[field] = message
            return False
        finally:
            self.is_saving = False

    async def submit(self) -> bool:
        """Validate and save immediately, dropping any pending debounced save."""
        if self.read_only:
            return False
        if self._save_task is not None and not self._save_task.done():
            self._save_task.cancel()
        if not self.validate_all():
            return False
        return await self._save()

    async def wait_idle(self) -> None:
        """Wait for pending option loads and saves."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
