"""
Tests for DocumentManager: listing, updates, processing rules and the
trash/restore lifecycle.
"""

import pytest

from config_manager import DocumentsConfig, PaginationConfig
from services.audit_logger import AuditLogger
from services.document_manager import PROCESSED_DOCUMENT_MESSAGE, DocumentManager
from services.file_storage import FileStorage
from services.metadata_service import LOSS_NOT_IN_POLICY, MetadataService
from services.pdf_viewer import PdfViewerService


def build_manager(session, storage_config, config=None, audit_lifecycle=True):
    audit_logger = AuditLogger(session)
    file_storage = FileStorage(session, storage_config)
    return DocumentManager(
        session,
        MetadataService(session, audit_logger, file_storage),
        audit_logger,
        file_storage,
        PdfViewerService(file_storage),
        config or DocumentsConfig(),
        audit_lifecycle=audit_lifecycle,
    )


@pytest.fixture
def manager(db_session, storage_config):
    return build_manager(db_session, storage_config)


def action_names(manager, document_id):
    history = manager.get_document_history(document_id, per_page=50, direction="asc")
    return [entry["action_type"]["name"] for entry in history["data"]]


# ============================================
# LISTING TESTS
# ============================================

class TestGetDocuments:
    """Tests for get_documents."""

    def test_per_page_is_clamped(self, db_session, storage_config, seed):
        config = DocumentsConfig(pagination=PaginationConfig(default_per_page=2, max_per_page=2))
        manager = build_manager(db_session, storage_config, config)

        documents, total, page, per_page = manager.get_documents(per_page=50)

        assert per_page == 2
        assert len(documents) == 2
        assert total == 3

    def test_default_per_page(self, manager, seed):
        _, _, page, per_page = manager.get_documents(page=0)

        assert page == 1
        assert per_page == 15

    def test_unknown_sort_column_falls_back(self, manager, seed):
        documents, _, _, _ = manager.get_documents(sort_by="drop table", sort_direction="ASC")

        assert [document.id for document in documents] == [
            seed["document"], seed["bare_document"], seed["processed_document"]
        ]

    def test_unknown_filters_ignored(self, manager, seed):
        _, total, _, _ = manager.get_documents({"color": "red", "policy_id": ""})

        assert total == 3


# ============================================
# UPDATE TESTS
# ============================================

class TestUpdates:
    """Tests for validate_update and update_document."""

    def test_validate_uses_effective_values(self, manager, db_session, seed):
        document = manager.get_document(seed["document"])

        errors = manager.validate_update(document, {"policy_id": seed["other_policy"]})

        assert errors == {"loss_id": LOSS_NOT_IN_POLICY}

    def test_processed_document_rejected(self, manager, seed):
        document = manager.get_document(seed["processed_document"])

        assert manager.validate_update(document, {"description": "x"}) == {"document": PROCESSED_DOCUMENT_MESSAGE}
        assert manager.update_document(seed["processed_document"], {"description": "x"}, seed["admin"]) is None

    def test_update_document(self, manager, seed):
        document = manager.update_document(
            seed["document"],
            {"loss_id": seed["loss_2"], "claimant_id": None},
            seed["adjuster"],
        )

        assert document.loss_id == seed["loss_2"]
        assert document.claimant_id is None
        assert action_names(manager, seed["document"]) == ["edit"]

    def test_invalid_update_returns_none(self, manager, seed):
        assert manager.update_document(seed["document"], {"loss_id": seed["other_loss"]}, seed["adjuster"]) is None
        assert action_names(manager, seed["document"]) == []


# ============================================
# LIFECYCLE TESTS
# ============================================

class TestLifecycle:
    """Tests for process, trash and restore."""

    def test_process_and_unprocess(self, manager, seed):
        document = manager.process_document(seed["document"], True, seed["adjuster"])
        assert document.is_processed
        assert manager.is_document_processed(seed["document"])

        document = manager.process_document(seed["document"], False, seed["manager"])
        assert not document.is_processed

        assert action_names(manager, seed["document"]) == ["process", "unprocess"]

    def test_processing_requires_metadata(self, manager, seed):
        document = manager.get_document(seed["bare_document"])

        errors = manager.validate_processing(document, True)

        assert set(errors) == {"policy_id", "description"}
        assert manager.process_document(seed["bare_document"], True, seed["adjuster"]) is None
        assert manager.validate_processing(document, False) == {}

    def test_processing_rules_can_be_disabled(self, db_session, storage_config, seed):
        manager = build_manager(db_session, storage_config, DocumentsConfig(require_metadata_for_processing=False))

        assert manager.process_document(seed["bare_document"], True, seed["adjuster"]).is_processed

    def test_trash_hides_document(self, manager, seed):
        assert manager.trash_document(seed["document"], seed["manager"]) is True

        assert manager.get_document(seed["document"]) is None
        assert manager.is_document_trashed(seed["document"])
        assert manager.check_document_exists(seed["document"])
        _, total, _, _ = manager.get_documents()
        assert total == 2
        _, trashed, _, _ = manager.get_documents({"status": "trashed"})
        assert trashed == 2

    def test_restore_returns_unprocessed(self, manager, seed):
        manager.process_document(seed["document"], True, seed["adjuster"])
        manager.trash_document(seed["document"], seed["manager"])

        document = manager.restore_document(seed["document"], seed["manager"])

        assert not document.is_trashed
        assert not document.is_processed
        assert manager.get_document(seed["document"]) is not None
        assert action_names(manager, seed["document"]) == ["process", "trash", "restore"]

    def test_restore_untrashed_is_a_no_op(self, manager, seed):
        document = manager.restore_document(seed["document"], seed["manager"])

        assert document.id == seed["document"]
        assert action_names(manager, seed["document"]) == []

    def test_missing_documents(self, manager, seed):
        assert manager.process_document(9999, True, seed["admin"]) is None
        assert manager.trash_document(9999, seed["admin"]) is False
        assert manager.restore_document(9999, seed["admin"]) is None
        assert manager.get_document_history(9999) is None

    def test_lifecycle_audit_can_be_disabled(self, db_session, storage_config, seed):
        manager = build_manager(db_session, storage_config, audit_lifecycle=False)

        manager.trash_document(seed["document"], seed["manager"])
        manager.restore_document(seed["document"], seed["manager"])

        assert action_names(manager, seed["document"]) == []

    def test_history_includes_trashed_documents(self, manager, seed):
        assert manager.log_document_view(seed["trashed_document"], seed["manager"]) is True

        assert action_names(manager, seed["trashed_document"]) == ["view"]


# ============================================
# ACCESS AND FILE TESTS
# ============================================

class TestAccessAndFiles:
    """Tests for validate_document_access and file helpers."""

    def test_supervisors_have_access(self, manager, seed):
        assert manager.validate_document_access(seed["bare_document"], seed["manager"])

    def test_author_has_access(self, manager, seed):
        assert manager.validate_document_access(seed["bare_document"], seed["admin"])

    def test_assignment_grants_access(self, manager, seed):
        assert not manager.validate_document_access(seed["bare_document"], seed["readonly"])

        manager.metadata_service.update_document_metadata(
            seed["bare_document"], {"assigned_users": [seed["readonly"]]}, seed["admin"]
        )

        assert manager.validate_document_access(seed["bare_document"], seed["readonly"])

    def test_group_assignment_grants_access(self, manager, seed):
        manager.metadata_service.update_document_metadata(
            seed["bare_document"], {"assigned_groups": [seed["group"]]}, seed["admin"]
        )

        assert manager.validate_document_access(seed["bare_document"], seed["support"])

    def test_document_file(self, manager, seed):
        content, mime_type, filename = manager.get_document_file(seed["document"])

        assert content.startswith(b"%PDF")
        assert mime_type == "application/pdf"
        assert filename == "claim-letter.pdf"
        assert manager.get_document_file(seed["bare_document"]) is None

    def test_viewer_url(self, manager, seed):
        url = manager.get_document_viewer_url(seed["document"])

        assert url.startswith("/documents/viewer?fileUrl=%2Fapi%2Ffiles%2F")
        assert manager.get_document_viewer_url(seed["bare_document"]) is None

    def test_viewer_config(self, manager, seed):
        config = manager.get_document_viewer_config(seed["document"])

        assert config["documentName"] == "Claim letter.pdf"
        assert config["isProcessed"] is False
        assert config["fileName"] == "claim-letter.pdf"
