"""
Client-side vault.

Handles:
- Key derivation and AES-256-GCM envelope encryption
- Vault data model and entry operations
- Session state machine (login, unlock, save, lock)
- Idle auto-lock
"""

from .encryption import EncryptionService
from .entries import (
    delete_entry,
    new_entry,
    reorder_entries,
    search_entries,
    update_scratch,
    upsert_entry,
)
from .envelope import decrypt_vault, encrypt_vault
from .exceptions import (
    AccountExists,
    CryptoProviderUnavailable,
    DecryptionFailure,
    InvalidCredentials,
    NetworkFailure,
    NotAuthenticated,
    SaveFailed,
    UnsupportedEnvelope,
    VaultError,
    VaultLocked,
    VaultNotFound,
    VersionConflict,
)
from .idle import IdleMonitor
from .keys import DualKeys, VaultKey, derive_keys
from .models import PlaintextVault, VaultEntry, VaultEnvelope
from .session import SessionState, VaultSession

__all__ = [
    "EncryptionService",
    "VaultKey",
    "DualKeys",
    "derive_keys",
    "encrypt_vault",
    "decrypt_vault",
    "PlaintextVault",
    "VaultEntry",
    "VaultEnvelope",
    "new_entry",
    "upsert_entry",
    "delete_entry",
    "reorder_entries",
    "search_entries",
    "update_scratch",
    "VaultSession",
    "SessionState",
    "IdleMonitor",
    "VaultError",
    "InvalidCredentials",
    "AccountExists",
    "VaultNotFound",
    "DecryptionFailure",
    "UnsupportedEnvelope",
    "CryptoProviderUnavailable",
    "NetworkFailure",
    "NotAuthenticated",
    "VaultLocked",
    "VersionConflict",
    "SaveFailed",
]
