"""Pytest fixtures and utilities for passvault tests."""

import tempfile
from pathlib import Path

import pytest

# Add src to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from passvault.audit import AuditLogger
from passvault.crypto import MIN_PBKDF2_ITERATIONS
from passvault.manager import VaultManager
from passvault.store import VaultStore

# Cheapest cost the KDF accepts, to keep the suite fast
TEST_ITERATIONS = MIN_PBKDF2_ITERATIONS
MASTER_PASSWORD = "correct-horse"


@pytest.fixture
def temp_vault_dir():
    """Create a temporary directory for vault files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def vault_path(temp_vault_dir):
    return temp_vault_dir / "vault.db"


@pytest.fixture
def store(vault_path):
    """A store on a fresh vault path; releases the file lock afterwards."""
    vault_store = VaultStore(vault_path)
    yield vault_store
    vault_store.close()


@pytest.fixture
def audit_logger(temp_vault_dir):
    """Create an audit logger with temp log path."""
    return AuditLogger(temp_vault_dir / "audit.log")


@pytest.fixture
def manager(store, audit_logger):
    """A locked manager over an empty store."""
    vault_manager = VaultManager(store, audit_logger=audit_logger, kdf_iterations=TEST_ITERATIONS)
    yield vault_manager
    vault_manager.lock()


@pytest.fixture
def unlocked_manager(manager):
    """A manager that has just created a vault with MASTER_PASSWORD."""
    assert manager.unlock(MASTER_PASSWORD) is True
    return manager


@pytest.fixture
def populated_manager(unlocked_manager):
    """An unlocked vault holding one password and one API key."""
    github_id = unlocked_manager.add_password(
        "github", "alice", "s3cr3t", notes="work account", tags=["dev"]
    )
    stripe_id = unlocked_manager.add_api_key(
        "stripe", "billing", "sk_live_123", is_active=True, tags=["prod", "payments"]
    )
    return {
        "manager": unlocked_manager,
        "github_id": github_id,
        "stripe_id": stripe_id,
    }


def assert_log_entry(audit_logger, result, action, target=None):
    """Helper to verify a log entry exists."""
    for line in audit_logger.read_recent(100):
        parts = line.strip().split()
        if len(parts) >= 5 and parts[2] == result and parts[3] == action:
            if target is None or parts[4] == target:
                return True
    return False
