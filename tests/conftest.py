"""
Shared pytest fixtures for the Blackhole Vault test suite.

Autouse fixtures below isolate tests from live application data:
  - Settings     -> re-read from a clean environment per test
  - Audit logger -> temp directory (prevents test events in ./audit_logs)
"""

import pytest

from blackhole_vault.core import Settings


@pytest.fixture(autouse=True)
def _isolate_settings(tmp_path, monkeypatch):
    """Point every path setting at the temp directory and drop the cached Settings."""
    import blackhole_vault.core.config as config_mod

    monkeypatch.setenv("BLACKHOLE_AUDIT_LOG_DIR", str(tmp_path / "audit_logs"))
    monkeypatch.setenv("BLACKHOLE_DB_PATH", str(tmp_path / "blackhole.db"))
    monkeypatch.setenv("BLACKHOLE_BCRYPT_ROUNDS", "4")
    monkeypatch.setenv("BLACKHOLE_COOKIE_SECURE", "false")

    old_settings = config_mod._settings
    config_mod._settings = None

    yield

    config_mod._settings = old_settings


@pytest.fixture(autouse=True)
def _isolate_audit_logs(_isolate_settings):
    """Reset the global AuditLogger so each test writes into its own temp directory.

    Without this, any test that (directly or indirectly) calls
    ``get_audit_logger().log_event(...)`` appends to the real
    ``./audit_logs/`` directory.
    """
    import blackhole_vault.core.audit_log as audit_mod

    old_logger = audit_mod._audit_logger
    audit_mod._audit_logger = None

    yield

    if audit_mod._audit_logger is not None:
        audit_mod._audit_logger.close()
    audit_mod._audit_logger = old_logger


@pytest.fixture
def settings(tmp_path):
    """Fast, test-friendly settings (cheap bcrypt, plain-HTTP cookies)."""
    return Settings(
        DB_PATH=tmp_path / "server.db",
        BCRYPT_ROUNDS=4,
        COOKIE_SECURE=False,
        MAX_RETRIES=1,
        RETRY_BACKOFF=0.0,
        AUDIT_LOG_DIR=tmp_path / "audit_logs",
    )
