"""
Tests for DocumentPolicy role and state rules.
"""

from unittest.mock import MagicMock

import pytest

from database.models import Document, DocumentStatus, RecordStatus, User, UserRole
from services.access_policy import AuthorizationError, DocumentAction, DocumentPolicy


def make_user(role, active=True):
    return User(
        id=1,
        username=role.name.lower(),
        user_role_id=role,
        status_id=RecordStatus.ACTIVE if active else RecordStatus.INACTIVE,
    )


def make_document(status=DocumentStatus.UNPROCESSED, is_deleted=False):
    return Document(id=10, name="doc.pdf", status_id=status, is_deleted=is_deleted)


@pytest.fixture
def policy():
    return DocumentPolicy()


# ============================================
# ROLE TESTS
# ============================================

class TestRoles:
    """Permission matrix for unprocessed documents."""

    @pytest.mark.parametrize("role,action,allowed", [
        (UserRole.ADMIN, DocumentAction.TRASH, True),
        (UserRole.MANAGER, DocumentAction.TRASH, True),
        (UserRole.ADJUSTER, DocumentAction.TRASH, False),
        (UserRole.MANAGER, DocumentAction.RESTORE, True),
        (UserRole.SUPPORT, DocumentAction.RESTORE, False),
        (UserRole.ADJUSTER, DocumentAction.UPDATE, True),
        (UserRole.UNDERWRITER, DocumentAction.UPDATE, True),
        (UserRole.SUPPORT, DocumentAction.UPDATE, True),
        (UserRole.READONLY, DocumentAction.UPDATE, False),
        (UserRole.ADJUSTER, DocumentAction.PROCESS, True),
        (UserRole.UNDERWRITER, DocumentAction.PROCESS, True),
        (UserRole.SUPPORT, DocumentAction.PROCESS, False),
        (UserRole.READONLY, DocumentAction.VIEW, True),
        (UserRole.READONLY, DocumentAction.VIEW_HISTORY, True),
    ])
    def test_matrix(self, policy, role, action, allowed):
        assert policy.allows(make_user(role), action, make_document()) is allowed

    def test_anonymous_user(self, policy):
        assert policy.check(None, DocumentAction.VIEW, make_document()) == "Authentication required"

    def test_inactive_user(self, policy):
        user = make_user(UserRole.ADMIN, active=False)

        assert policy.check(user, DocumentAction.VIEW, make_document()) == "User account is inactive"


# ============================================
# STATE TESTS
# ============================================

class TestDocumentState:
    """Rules driven by processed and trashed states."""

    def test_processed_locked_below_manager(self, policy):
        processed = make_document(DocumentStatus.PROCESSED)

        assert not policy.allows(make_user(UserRole.ADJUSTER), DocumentAction.UPDATE, processed)
        assert not policy.allows(make_user(UserRole.ADJUSTER), DocumentAction.PROCESS, processed)
        assert policy.allows(make_user(UserRole.MANAGER), DocumentAction.PROCESS, processed)
        assert policy.allows(make_user(UserRole.ADJUSTER), DocumentAction.VIEW, processed)

    def test_trashed_visible_to_supervisors_only(self, policy):
        trashed = make_document(DocumentStatus.TRASHED)

        assert not policy.allows(make_user(UserRole.ADJUSTER), DocumentAction.VIEW, trashed)
        assert not policy.allows(make_user(UserRole.SUPPORT), DocumentAction.VIEW_HISTORY, trashed)
        assert policy.allows(make_user(UserRole.MANAGER), DocumentAction.VIEW, trashed)

    def test_deleted_flag_counts_as_trashed(self, policy):
        deleted = make_document(is_deleted=True)

        assert not policy.allows(make_user(UserRole.ADJUSTER), DocumentAction.VIEW, deleted)

    @pytest.mark.parametrize("action,reason", [
        (DocumentAction.UPDATE, "Trashed documents cannot be edited"),
        (DocumentAction.PROCESS, "Trashed documents cannot be processed"),
        (DocumentAction.TRASH, "Document is already in the trash"),
    ])
    def test_trashed_rules_bind_admins(self, policy, action, reason):
        trashed = make_document(DocumentStatus.TRASHED)

        assert policy.check(make_user(UserRole.ADMIN), action, trashed) == reason

    def test_admin_can_restore_trashed(self, policy):
        trashed = make_document(DocumentStatus.TRASHED)

        assert policy.allows(make_user(UserRole.ADMIN), DocumentAction.RESTORE, trashed)


# ============================================
# AUTHORIZE TESTS
# ============================================

class TestAuthorize:
    """Tests for authorize and the security log."""

    def test_allowed_does_not_log(self):
        security_logger = MagicMock()
        policy = DocumentPolicy(security_logger)

        policy.authorize(make_user(UserRole.ADMIN), DocumentAction.TRASH, make_document())

        security_logger.log_access_denied.assert_not_called()

    def test_denial_raises_and_logs(self):
        security_logger = MagicMock()
        policy = DocumentPolicy(security_logger)

        with pytest.raises(AuthorizationError) as exc_info:
            policy.authorize(make_user(UserRole.ADJUSTER), DocumentAction.TRASH, make_document())

        assert exc_info.value.code == "FORBIDDEN"
        assert exc_info.value.document_id == 10
        assert exc_info.value.action == "trash"
        security_logger.log_access_denied.assert_called_once_with(
            action="trash",
            document_id=10,
            user_id=1,
            reason="Only administrators and managers can trash documents",
        )

    def test_denial_without_security_logger(self, policy):
        with pytest.raises(AuthorizationError, match="Authentication required"):
            policy.authorize(None, DocumentAction.VIEW, make_document())
