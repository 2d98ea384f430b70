"""
Shared fixtures for the Documents View test suite.

Tests run against an in-memory SQLite database (StaticPool, so every
session and the API see the same connection) installed as the global
database provider.
"""

import os
import sys
from datetime import date
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

sys.path.insert(0, str(Path(__file__).parent.parent))

# Keep the security log off disk while the API module is imported
os.environ.setdefault("SECURITY_LOG_TO_FILE", "false")

from config_manager import ConfigManager, StorageConfig
from database.connection import create_test_provider, set_db_provider
from database.models import (
    Base,
    Claimant,
    DocumentStatus,
    Loss,
    Policy,
    PolicyPrefix,
    Producer,
    RecordStatus,
    User,
    UserGroup,
    UserRole,
)
from database.repositories import AuditRepository, DocumentRepository, LookupRepository
from security_logger import SecurityLogger, reset_security_logger, set_security_logger
from services.file_storage import FileStorage

PDF_CONTENT = b"%PDF-1.4\n% test document\n"


# ============================================
# DATABASE
# ============================================

@pytest.fixture
def engine():
    """Fresh in-memory database with the full schema."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_provider(engine):
    """Test provider installed as the global database provider."""
    provider = create_test_provider(engine=engine)
    provider.init()
    set_db_provider(provider)
    yield provider
    set_db_provider(None)


@pytest.fixture
def db_session(db_provider):
    session = db_provider.session_factory()
    yield session
    session.close()


@pytest.fixture
def security_logger():
    """Console-less, file-less security logger."""
    logger = SecurityLogger(enable_file=False)
    set_security_logger(logger)
    yield logger
    reset_security_logger()


@pytest.fixture
def storage_config(tmp_path):
    return StorageConfig(root=str(tmp_path / "storage"), signing_key="test-signing-key")


# ============================================
# SEED DATA
# ============================================

@pytest.fixture
def seed(db_session, storage_config):
    """
    Reference data, users of every role and four documents.

    Returns a dict of ids:
        users: admin, manager, adjuster, support, readonly, inactive
        policy (PLCY-1001) -> loss (1, Water damage) -> claimant (1, Jane Doe), claimant_2
        policy -> loss_2 (2, Hail)
        other_policy (PLCY-2002) -> other_loss (Fire)
        producer (P-77) -> policy
        document: full metadata and a stored PDF
        bare_document: no metadata
        processed_document / trashed_document
    """
    session = db_session
    ids = {}

    group = UserGroup(name="Claims Team")
    session.add(group)
    session.flush()
    ids["group"] = group.id

    users = {
        "admin": ("admin", "Ada", "Admin", UserRole.ADMIN),
        "manager": ("manager", "Mia", "Manager", UserRole.MANAGER),
        "adjuster": ("adjuster", "Alex", "Adjuster", UserRole.ADJUSTER),
        "support": ("support", "Sam", "Support", UserRole.SUPPORT),
        "readonly": ("readonly", "Rory", "Reader", UserRole.READONLY),
        "inactive": ("inactive", "Ian", "Inactive", UserRole.ADJUSTER),
    }
    for key, (username, first_name, last_name, role) in users.items():
        user = User(
            username=username,
            first_name=first_name,
            last_name=last_name,
            email=f"{username}@example.com",
            user_role_id=role,
            user_group_id=group.id,
        )
        if key == "inactive":
            user.status_id = RecordStatus.INACTIVE
        session.add(user)
        session.flush()
        ids[key] = user.id

    prefix = PolicyPrefix(name="PLCY-")
    session.add(prefix)
    session.flush()

    policy = Policy(number="1001", policy_prefix_id=prefix.id, effective_date=date(2024, 1, 1))
    other_policy = Policy(number="2002", policy_prefix_id=prefix.id)
    loss = Loss(name="Water damage", date=date(2024, 3, 15))
    loss_2 = Loss(name="Hail", date=date(2024, 5, 1))
    other_loss = Loss(name="Fire", date=date(2024, 6, 1))
    claimant = Claimant(first_name="Jane", last_name="Doe")
    claimant_2 = Claimant(first_name="John", last_name="Roe")
    producer = Producer(number="P-77", name="Acme Agency")
    session.add_all([policy, other_policy, loss, loss_2, other_loss, claimant, claimant_2, producer])
    session.flush()

    lookups = LookupRepository(session)
    lookups.link_policy_loss(policy.id, loss.id)
    lookups.link_policy_loss(policy.id, loss_2.id)
    lookups.link_policy_loss(other_policy.id, other_loss.id)
    lookups.link_loss_claimant(loss.id, claimant.id)
    lookups.link_loss_claimant(loss.id, claimant_2.id)
    lookups.link_producer_policy(producer.id, policy.id)

    ids.update({
        "policy": policy.id,
        "other_policy": other_policy.id,
        "loss": loss.id,
        "loss_2": loss_2.id,
        "other_loss": other_loss.id,
        "claimant": claimant.id,
        "claimant_2": claimant_2.id,
        "producer": producer.id,
    })

    documents = DocumentRepository(session)
    document = documents.create({
        "name": "Claim letter.pdf",
        "date_received": date(2024, 3, 20),
        "description": "Initial claim letter",
        "policy_id": policy.id,
        "loss_id": loss.id,
        "claimant_id": claimant.id,
        "producer_id": producer.id,
    }, ids["admin"])
    bare_document = documents.create({"name": "Scan 002.pdf"}, ids["admin"])
    processed_document = documents.create({
        "name": "Signed release.pdf",
        "description": "Signed release",
        "policy_id": policy.id,
        "status_id": DocumentStatus.PROCESSED,
    }, ids["admin"])
    trashed_document = documents.create({
        "name": "Duplicate scan.pdf",
        "status_id": DocumentStatus.TRASHED,
        "is_deleted": True,
    }, ids["admin"])

    storage = FileStorage(session, storage_config)
    file = storage.store_file(PDF_CONTENT, "claim-letter.pdf", "application/pdf", ids["admin"])
    documents.attach_file(document, file, ids["admin"])

    AuditRepository(session).ensure_action_types()
    session.commit()

    ids.update({
        "document": document.id,
        "bare_document": bare_document.id,
        "processed_document": processed_document.id,
        "trashed_document": trashed_document.id,
        "file": file.id,
    })
    return ids


# ============================================
# API
# ============================================

@pytest.fixture
def client(seed, storage_config, security_logger, monkeypatch):
    """TestClient bound to the seeded database."""
    from api import server
    from fastapi.testclient import TestClient

    monkeypatch.delenv("API_KEY", raising=False)
    monkeypatch.delenv("MAINTENANCE_MODE", raising=False)
    monkeypatch.setattr(ConfigManager, "_instance", server._config)
    monkeypatch.setattr(server._config, "storage", storage_config)
    server.rate_limit_policy.reset()

    yield TestClient(server.app)

    server.rate_limit_policy.reset()
