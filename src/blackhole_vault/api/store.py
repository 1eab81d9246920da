# Reference Server: Account + Vault Store
#
# SQLite-backed storage for:
#   - Accounts: email, public salt, bcrypt hash of the auth key
#   - Vaults: one opaque envelope per account plus a revision counter
#
# Security:
#   - Stores nothing that can decrypt a vault: no passcode, no vault key,
#     no raw auth key (only its bcrypt hash)
#   - Envelope fields are stored exactly as received (opaque ciphertext)
#
# Design:
#   - SQLite + WAL + context manager connections
#   - put_vault() is last-writer-wins unless expected_revision is given,
#     in which case the write is a compare-and-swap on the revision

import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base exception for store operations"""
    pass


class DuplicateEmail(StoreError):
    """Raised when an account already exists for the email"""
    pass


class RevisionMismatch(StoreError):
    """Raised when a conditional vault write sees a different revision"""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"expected revision {expected}, found {actual}")
        self.expected = expected
        self.actual = actual


class AccountStore:
    """Persistent storage for accounts and their vault envelopes.

    Usage::

        store = AccountStore("data/blackhole.db")
        user_id = store.create_user("a@x.com", salt_b64, bcrypt_hash)
        revision = store.put_vault(user_id, envelope_dict)
        record = store.get_vault(user_id)
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = Path(db_path) if db_path else Path("data/blackhole.db")
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_database()

    @contextmanager
    def _connect(self):
        """Open a WAL-mode SQLite connection; auto-closes on exit."""
        conn = sqlite3.connect(str(self.db_path), timeout=10)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_database(self):
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    auth_salt TEXT NOT NULL,
                    password_hash TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS vaults (
                    user_id TEXT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
                    version INTEGER NOT NULL,
                    kdf TEXT NOT NULL,
                    iterations INTEGER NOT NULL,
                    salt TEXT NOT NULL,
                    iv TEXT NOT NULL,
                    ciphertext TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    revision INTEGER NOT NULL DEFAULT 1,
                    stored_at TEXT NOT NULL
                )
            """)

    # ── Accounts ─────────────────────────────────────────────────────

    def create_user(self, email: str, auth_salt: str, password_hash: str) -> str:
        """Create an account. Raises DuplicateEmail if the email is taken."""
        user_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()
        try:
            with self._lock, self._connect() as conn:
                conn.execute(
                    "INSERT INTO users (id, email, auth_salt, password_hash, created_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (user_id, email, auth_salt, password_hash, now),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateEmail(email) from e
        logger.info("Created account %s", user_id)
        return user_id

    def get_user(self, email: str) -> Optional[Dict[str, Any]]:
        """Look up an account by email."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, email, auth_salt, password_hash, created_at FROM users WHERE email = ?",
                (email,),
            ).fetchone()
        return dict(row) if row else None

    # ── Vaults ───────────────────────────────────────────────────────

    def get_vault(self, user_id: str) -> Optional[Tuple[Dict[str, Any], int]]:
        """Return (envelope dict, revision) or None if the account has no vault."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM vaults WHERE user_id = ?", (user_id,)
            ).fetchone()
        if row is None:
            return None

        envelope = {
            "version": row["version"],
            "kdf": row["kdf"],
            "iterations": row["iterations"],
            "salt": row["salt"],
            "iv": row["iv"],
            "ciphertext": row["ciphertext"],
            "createdAt": row["created_at"],
            "updatedAt": row["updated_at"],
        }
        return envelope, row["revision"]

    def put_vault(
        self,
        user_id: str,
        envelope: Dict[str, Any],
        expected_revision: Optional[int] = None,
    ) -> int:
        """
        Replace the account's envelope wholesale.

        Args:
            user_id: Account id
            envelope: Envelope fields (wire names)
            expected_revision: If given, only write when the stored revision
                matches (0 means "no vault yet")

        Returns:
            The new revision (1 for the first write)

        Raises:
            RevisionMismatch: expected_revision given and stale
        """
        now = datetime.now(timezone.utc).isoformat()
        values = (
            int(envelope["version"]),
            envelope["kdf"],
            int(envelope["iterations"]),
            envelope["salt"],
            envelope["iv"],
            envelope["ciphertext"],
            envelope.get("createdAt") or now,
            envelope.get("updatedAt") or now,
        )

        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT revision FROM vaults WHERE user_id = ?", (user_id,)
            ).fetchone()
            current = row["revision"] if row else 0

            if expected_revision is not None and expected_revision != current:
                raise RevisionMismatch(expected_revision, current)

            if row is None:
                conn.execute(
                    "INSERT INTO vaults (user_id, version, kdf, iterations, salt, iv, "
                    "ciphertext, created_at, updated_at, revision, stored_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?)",
                    (user_id, *values, now),
                )
                return 1

            conn.execute(
                "UPDATE vaults SET version = ?, kdf = ?, iterations = ?, salt = ?, iv = ?, "
                "ciphertext = ?, created_at = ?, updated_at = ?, revision = revision + 1, "
                "stored_at = ? WHERE user_id = ?",
                (*values, now, user_id),
            )
            return current + 1
