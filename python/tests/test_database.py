"""
Unit tests for database models and repositories.

Tests the SQLAlchemy ORM models, display properties, pivot-ordered
sequence numbers, document list filters and the audit repository.
Uses an in-memory SQLite database.
"""

from datetime import date

import pytest
from sqlalchemy import select

from database.models import (
    ActionTypeName,
    Claimant,
    Document,
    DocumentStatus,
    File,
    Loss,
    MapUserDocument,
    Policy,
    PolicyPrefix,
    Producer,
    RecordStatus,
    User,
    UserRole,
)
from database.repositories import (
    AuditRepository,
    DocumentRepository,
    DuplicateEntityError,
    FileRepository,
    LookupRepository,
)


# ============================================
# MODEL PROPERTY TESTS
# ============================================

class TestModelProperties:
    """Tests for computed model properties."""

    def test_policy_formatted_number_with_prefix(self):
        policy = Policy(number="1001")
        policy.prefix = PolicyPrefix(name="PLCY-")
        assert policy.formatted_number == "PLCY-1001"

    def test_policy_formatted_number_without_prefix(self):
        assert Policy(number="1001").formatted_number == "1001"

    def test_loss_formatted_date(self):
        assert Loss(name="Fire", date=date(2024, 6, 1)).formatted_date == "06/01/2024"
        assert Loss(name="Fire").formatted_date == ""

    def test_claimant_full_name(self):
        assert Claimant(first_name="Jane", last_name="Doe").full_name == "Jane Doe"
        assert Claimant(last_name="Doe").full_name == "Doe"
        assert Claimant().full_name == "Unnamed Claimant"

    def test_producer_display_name(self):
        assert Producer(number="P-77", name="Acme Agency").display_name == "P-77 - Acme Agency"

    def test_user_full_name_falls_back_to_username(self):
        assert User(username="jdoe").full_name == "jdoe"
        assert User(username="jdoe", first_name="Jane", last_name="Doe").full_name == "Jane Doe"

    def test_user_roles(self):
        user = User(username="boss", user_role_id=UserRole.ADMIN)
        assert user.is_admin
        assert user.has_role(UserRole.ADMIN, UserRole.MANAGER)
        assert not User(username="reader", user_role_id=UserRole.READONLY).has_role(UserRole.ADMIN)

    def test_document_status_flags(self):
        assert Document(name="a", status_id=DocumentStatus.PROCESSED).is_processed
        assert Document(name="b", status_id=DocumentStatus.TRASHED).is_trashed
        assert Document(name="c", status_id=DocumentStatus.UNPROCESSED, is_deleted=True).is_trashed

    def test_file_formatted_size(self):
        assert File(name="a.pdf", size=512).formatted_size == "512 B"
        assert File(name="a.pdf", size=2048).formatted_size == "2.00 KB"
        assert File(name="Report.PDF").extension == "pdf"


# ============================================
# LOOKUP REPOSITORY TESTS
# ============================================

class TestLookupRepository:
    """Tests for the policy -> loss -> claimant chain."""

    def test_relationship_checks(self, db_session, seed):
        lookups = LookupRepository(db_session)

        assert lookups.policy_has_loss(seed["policy"], seed["loss"])
        assert not lookups.policy_has_loss(seed["policy"], seed["other_loss"])
        assert lookups.loss_has_claimant(seed["loss"], seed["claimant_2"])
        assert not lookups.loss_has_claimant(seed["loss_2"], seed["claimant"])

    def test_sequences_follow_link_order(self, db_session, seed):
        lookups = LookupRepository(db_session)

        assert lookups.loss_sequence(seed["loss"], seed["policy"]) == 1
        assert lookups.loss_sequence(seed["loss_2"], seed["policy"]) == 2
        assert lookups.claimant_sequence(seed["claimant_2"], seed["loss"]) == 2

    def test_loss_and_claimant_labels(self, db_session, seed):
        lookups = LookupRepository(db_session)

        loss = lookups.get_loss(seed["loss_2"])
        claimant = lookups.get_claimant(seed["claimant"])
        assert lookups.loss_label(loss, seed["policy"]) == "2 - Hail (05/01/2024)"
        assert lookups.claimant_label(claimant, seed["loss"]) == "1 - Jane Doe"

    def test_unlinked_loss_defaults_to_sequence_one(self, db_session, seed):
        loss = Loss(name="Orphan")
        db_session.add(loss)
        db_session.flush()

        assert LookupRepository(db_session).loss_sequence(loss.id) == 1

    def test_duplicate_link_raises(self, db_session, seed):
        with pytest.raises(DuplicateEntityError):
            LookupRepository(db_session).link_policy_loss(seed["policy"], seed["loss"])

    def test_search_losses_scoped_to_policy(self, db_session, seed):
        losses = LookupRepository(db_session).search_losses(seed["other_policy"])

        assert [loss.id for loss in losses] == [seed["other_loss"]]

    def test_search_claimants_by_name(self, db_session, seed):
        claimants = LookupRepository(db_session).search_claimants(seed["loss"], search="roe")

        assert [claimant.id for claimant in claimants] == [seed["claimant_2"]]

    def test_search_producers(self, db_session, seed):
        producers = LookupRepository(db_session).search_producers(search="acme")

        assert [producer.id for producer in producers] == [seed["producer"]]


# ============================================
# DOCUMENT REPOSITORY TESTS
# ============================================

class TestDocumentRepository:
    """Tests for document reads, filters and lifecycle transitions."""

    def test_get_by_id_hides_trashed(self, db_session, seed):
        repo = DocumentRepository(db_session)

        assert repo.get_by_id(seed["trashed_document"]) is None
        assert repo.get_by_id(seed["trashed_document"], include_deleted=True) is not None

    def test_list_filters_by_status(self, db_session, seed):
        repo = DocumentRepository(db_session)

        processed, total = repo.list_documents({"status": "processed"})
        assert total == 1
        assert processed[0].id == seed["processed_document"]

        unprocessed, total = repo.list_documents({"status": "unprocessed"})
        assert {document.id for document in unprocessed} == {seed["document"], seed["bare_document"]}

    def test_list_filters_by_policy_and_producer(self, db_session, seed):
        repo = DocumentRepository(db_session)

        by_policy, _ = repo.list_documents({"policy_id": seed["policy"]})
        by_producer, _ = repo.list_documents({"producer_id": seed["producer"]})

        assert {document.id for document in by_policy} == {seed["document"], seed["processed_document"]}
        assert [document.id for document in by_producer] == [seed["document"]]

    def test_list_date_range(self, db_session, seed):
        documents, total = DocumentRepository(db_session).list_documents({
            "date_from": date(2024, 3, 1),
            "date_to": date(2024, 3, 31),
        })

        assert total == 1
        assert documents[0].id == seed["document"]

    def test_list_sorting_and_paging(self, db_session, seed):
        documents, total = DocumentRepository(db_session).list_documents(
            offset=1, limit=1, sort_by="name", sort_direction="asc"
        )

        # Claim letter, Scan 002, Signed release
        assert total == 3
        assert documents[0].id == seed["bare_document"]

    def test_trash_and_restore(self, db_session, seed):
        repo = DocumentRepository(db_session)
        document = repo.get_by_id(seed["processed_document"])

        repo.move_to_trash(document, seed["manager"])
        assert document.is_trashed
        assert document.deleted_at is not None

        repo.restore(document, seed["manager"])
        assert not document.is_trashed
        assert document.status_id == DocumentStatus.UNPROCESSED
        assert document.updated_by == seed["manager"]

    def test_sync_assigned_users(self, db_session, seed):
        repo = DocumentRepository(db_session)
        document = repo.get_by_id(seed["document"])

        repo.sync_assigned_users(document, [seed["adjuster"], seed["support"]], seed["admin"])
        assert [user.id for user in document.assigned_users] == [seed["adjuster"], seed["support"]]
        assert repo.is_assigned_to_user(seed["document"], seed["support"])

        repo.sync_assigned_users(document, [seed["support"]], seed["admin"])
        assert [user.id for user in document.assigned_users] == [seed["support"]]
        assert not repo.is_assigned_to_user(seed["document"], seed["adjuster"])

    def test_inactive_assignment_is_ignored_then_reactivated(self, db_session, seed):
        repo = DocumentRepository(db_session)
        db_session.add(MapUserDocument(
            document_id=seed["document"],
            user_id=seed["adjuster"],
            status_id=RecordStatus.INACTIVE,
        ))
        db_session.flush()
        document = repo.get_by_id(seed["document"])
        db_session.expire(document, ["assigned_users"])

        assert document.assigned_users == []
        assert not repo.is_assigned_to_user(seed["document"], seed["adjuster"])

        repo.sync_assigned_users(document, [seed["adjuster"]], seed["manager"])

        assert [user.id for user in document.assigned_users] == [seed["adjuster"]]
        assert repo.is_assigned_to_user(seed["document"], seed["adjuster"])
        row = db_session.execute(
            select(MapUserDocument).where(MapUserDocument.document_id == seed["document"])
        ).scalar_one()
        assert row.status_id == RecordStatus.ACTIVE
        assert row.updated_by == seed["manager"]

    def test_filter_by_assigned_group(self, db_session, seed):
        repo = DocumentRepository(db_session)
        repo.sync_assigned_groups(repo.get_by_id(seed["bare_document"]), [seed["group"]], seed["admin"])

        documents, _ = repo.list_documents({"assigned_to_group": seed["group"]})

        assert [document.id for document in documents] == [seed["bare_document"]]

    def test_main_file(self, db_session, seed):
        document = DocumentRepository(db_session).get_by_id(seed["document"])

        assert document.main_file.id == seed["file"]
        assert document.main_file.mime_type == "application/pdf"


# ============================================
# AUDIT AND FILE REPOSITORY TESTS
# ============================================

class TestAuditRepository:
    """Tests for action types and the audit trail."""

    def test_ensure_action_types_is_idempotent(self, db_session, seed):
        repo = AuditRepository(db_session)
        before = {action_type.name for action_type in repo.list_action_types()}

        repo.ensure_action_types()

        assert len(repo.list_action_types()) == len(before)
        assert before == {name.value for name in ActionTypeName}

    def test_create_action_links_document(self, db_session, seed):
        repo = AuditRepository(db_session)
        view = repo.get_action_type(ActionTypeName.VIEW.value)

        action = repo.create_action(seed["document"], view, seed["adjuster"], "Document viewed")
        rows, total = repo.history(seed["document"])

        assert total == 1
        assert rows[0].action.id == action.id
        assert repo.last_action(seed["document"]).id == action.id

    def test_count_by_action_type_includes_zero_counts(self, db_session, seed):
        repo = AuditRepository(db_session)
        edit = repo.get_action_type(ActionTypeName.EDIT.value)
        repo.create_action(seed["document"], edit, seed["adjuster"], "x")
        repo.create_action(seed["document"], edit, seed["adjuster"], "y")

        counts = {action_type.name: count for action_type, count in repo.count_by_action_type(seed["document"])}

        assert counts["edit"] == 2
        assert counts["view"] == 0


class TestFileRepository:
    """Tests for stored file records."""

    def test_deactivated_file_is_hidden(self, db_session, seed):
        repo = FileRepository(db_session)
        file = repo.get_by_id(seed["file"])

        repo.deactivate(file, seed["admin"])

        assert repo.get_by_id(seed["file"]) is None
        assert repo.get_by_id(seed["file"], active_only=False) is not None
