# Core: Security Audit Log
#
# Append-only structured (JSON) log of account and vault events:
# registrations, logins, saves, locks, decryption failures.
#
# Secret-bearing keys (passcode, keys, auth bytes, ciphertext, plaintext)
# are redacted from event details by a structlog processor before
# rendering. Emails are logged; the server already knows them.

import logging
import os
import socket
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog

AUDIT_LOGGER_NAME = "blackhole_vault.audit"
REDACTED = "<redacted>"

# Lower-cased detail keys whose values never reach the log file
SECRET_FIELDS = frozenset({
    "passcode", "password", "apikey", "keyauth", "auth_key", "auth_key_bytes",
    "vault_key", "key", "ciphertext", "plaintext", "vault", "scratch",
})


class EventType(str, Enum):
    """Security-relevant account and vault events."""
    # Account / session
    ACCOUNT_REGISTERED = "account.registered"
    ACCOUNT_REGISTER_FAILED = "account.register.failed"
    LOGIN_SUCCEEDED = "auth.login.succeeded"
    LOGIN_FAILED = "auth.login.failed"
    LOGOUT = "auth.logout"
    SESSION_EXPIRED = "auth.session.expired"

    # Vault
    VAULT_CREATED = "vault.created"
    VAULT_SAVED = "vault.saved"
    VAULT_SAVE_FAILED = "vault.save.failed"
    VAULT_CONFLICT = "vault.conflict"
    VAULT_UNLOCKED = "vault.unlocked"
    VAULT_LOCKED = "vault.locked"
    VAULT_IDLE_LOCKED = "vault.idle_locked"
    VAULT_DECRYPT_FAILED = "vault.decrypt.failed"

    # Process
    SYSTEM_START = "system.start"
    SYSTEM_STOP = "system.stop"


class EventSeverity(str, Enum):
    INFO = "info"
    INVESTIGATE = "investigate"
    ALERT = "alert"
    CRITICAL = "critical"


def redact_secrets(_logger, _method_name, event_dict):
    """structlog processor: blank out secret-bearing keys in ``details``."""
    details = event_dict.get("details")
    if isinstance(details, dict):
        event_dict["details"] = {
            k: (REDACTED if str(k).lower() in SECRET_FIELDS else v)
            for k, v in details.items()
        }
    return event_dict


def _host_context() -> Dict[str, Any]:
    return {
        "os_user": os.getenv("USERNAME") or os.getenv("USER"),
        "hostname": socket.gethostname(),
        "platform": sys.platform,
    }


class AuditLogger:
    """
    JSON audit trail written to ``<log_dir>/audit_YYYY-MM-DD.log``.

    Every event gets an id, UTC timestamp, type, severity and host context.
    ``log_event`` returns the event id so callers can reference it in
    operational logs.
    """

    def __init__(self, log_dir: Optional[Path] = None):
        self.log_dir = Path(log_dir or "audit_logs")
        self.log_dir.mkdir(parents=True, exist_ok=True)

        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso", utc=True),
                redact_secrets,
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(sort_keys=True),
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=False,
        )

        day = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        self.log_file = self.log_dir / f"audit_{day}.log"
        self._file_handler = logging.FileHandler(self.log_file, mode="a", encoding="utf-8")
        self._file_handler.setFormatter(logging.Formatter("%(message)s"))

        stdlib_logger = logging.getLogger(AUDIT_LOGGER_NAME)
        stdlib_logger.setLevel(logging.INFO)
        stdlib_logger.addHandler(self._file_handler)

        self.logger = structlog.get_logger(AUDIT_LOGGER_NAME)
        self._host = _host_context()

    def close(self) -> None:
        logging.getLogger(AUDIT_LOGGER_NAME).removeHandler(self._file_handler)
        self._file_handler.close()

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        user_context: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Append one event.

        Args:
            event_type: What happened
            severity: How much attention it needs
            message: Short human-readable summary (no secrets)
            details: Extra fields; secret-bearing keys are redacted
            user_context: Overrides the host context (OS user, hostname)

        Returns:
            The event id (UUID4 string)
        """
        event_id = str(uuid4())
        self.logger.info(
            "security_event",
            event_id=event_id,
            event_type=event_type.value,
            severity=severity.value,
            message=message,
            details=dict(details or {}),
            user_context=user_context or self._host,
        )
        return event_id

    def log_vault_event(
        self,
        event_type: EventType,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> str:
        """INFO-severity vault event; message is prefixed with ``Vault:``."""
        return self.log_event(event_type, EventSeverity.INFO, f"Vault: {message}", details)


_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Process-wide AuditLogger writing under the AUDIT_LOG_DIR setting."""
    global _audit_logger
    if _audit_logger is None:
        from .config import get_settings
        _audit_logger = AuditLogger(log_dir=get_settings().AUDIT_LOG_DIR)
    return _audit_logger


def log_security_event(
    event_type: EventType,
    severity: EventSeverity,
    message: str,
    **kwargs,
) -> str:
    """Shortcut for ``get_audit_logger().log_event(...)``."""
    return get_audit_logger().log_event(event_type, severity, message, **kwargs)
