# Vault: Session / Vault State Machine
#
#   LOGGED_OUT -> AUTHENTICATING -> { SETUP_NEEDED, LOCKED, UNLOCKED }
#   UNLOCKED --lock()--> LOCKED        (server session kept)
#   any      --logout()--> LOGGED_OUT  (server session invalidated)
#
# The session object is the single owner of the vault key, the account
# salt and the decrypted vault. lock()/logout() wipe the key bytes in place
# before dropping them. All PBKDF2/AES work runs in a worker thread so the
# event loop is never blocked; each call is one sequential unit and its
# partial results are never published to the session.

import asyncio
import copy
import logging
from enum import Enum
from typing import TYPE_CHECKING, Optional

from ..core import (
    EventSeverity,
    EventType,
    Settings,
    get_audit_logger,
    get_settings,
    log_security_event,
)
from .encryption import EncryptionService
from .envelope import decrypt_vault, encrypt_vault
from .exceptions import (
    DecryptionFailure,
    InvalidCredentials,
    NotAuthenticated,
    VaultError,
    VaultLocked,
    VaultNotFound,
)
from .keys import DualKeys, VaultKey, derive_keys
from .models import PlaintextVault

if TYPE_CHECKING:
    from ..sync.client import SyncClient

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """States of the client-side vault session."""
    LOGGED_OUT = "logged_out"
    AUTHENTICATING = "authenticating"
    SETUP_NEEDED = "setup_needed"
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class VaultSession:
    """
    Client-resident vault session.

    Usage::

        async with SyncClient(settings.API_URL) as client:
            session = VaultSession(client)
            await session.login("a@x.com", passcode)
            vault = session.vault
            await session.save(upsert_entry(vault, entry, "password"))
            session.lock()
    """

    def __init__(self, client: "SyncClient", settings: Optional[Settings] = None):
        self.client = client
        self.settings = settings or get_settings()
        self.state = SessionState.LOGGED_OUT
        self.email: Optional[str] = None
        self.revision: Optional[int] = None

        self._vault_key: Optional[VaultKey] = None
        self._salt_b64: Optional[str] = None
        self._vault: Optional[PlaintextVault] = None
        self._created_at: Optional[str] = None
        self._op_lock = asyncio.Lock()
        self.audit = get_audit_logger()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def is_unlocked(self) -> bool:
        return self.state == SessionState.UNLOCKED

    @property
    def vault(self) -> PlaintextVault:
        """A copy of the decrypted vault. Raises VaultLocked unless unlocked."""
        if not self.is_unlocked or self._vault is None:
            raise VaultLocked("vault is not unlocked")
        return copy.deepcopy(self._vault)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _derive(self, passcode: str, salt: bytes) -> DualKeys:
        return await asyncio.to_thread(derive_keys, passcode, salt, self.settings.KEY_SCHEME)

    def _wipe(self) -> None:
        """Overwrite and drop key material and plaintext."""
        if self._vault_key is not None:
            self._vault_key.wipe()
        self._vault_key = None
        self._vault = None

    def _forget_account(self) -> None:
        self._wipe()
        self._salt_b64 = None
        self._created_at = None
        self.revision = None
        self.email = None

    def _require_unlocked(self) -> None:
        if self.state != SessionState.UNLOCKED or self._vault_key is None:
            raise VaultLocked(f"operation requires an unlocked vault (state={self.state.value})")

    def _still_open(self, key: VaultKey) -> bool:
        """True while no lock()/logout() has replaced or wiped ``key``."""
        return self.state == SessionState.UNLOCKED and self._vault_key is key

    async def _upload(self, vault: PlaintextVault) -> None:
        """
        Encrypt and upload; local state only changes after the server ack.

        lock() and logout() do not take the op lock, so either may run while
        this is awaiting. In that case the plaintext is dropped and
        VaultLocked is raised instead of publishing it to a locked session.
        """
        key = self._vault_key
        envelope = await asyncio.to_thread(
            encrypt_vault, key, vault, self._salt_b64, self._created_at,
        )
        if not self._still_open(key):
            raise VaultLocked("vault was locked before upload")
        expected = self.revision if self.settings.CAS else None
        try:
            revision = await self.client.put_vault(envelope, expected_revision=expected)
        except VaultError as e:
            self.audit.log_event(
                event_type=EventType.VAULT_SAVE_FAILED,
                severity=EventSeverity.ALERT,
                message=f"Vault save failed: {type(e).__name__}",
                details={"email": self.email},
            )
            raise

        if not self._still_open(key):
            logger.warning("Vault locked while saving; discarding plaintext")
            raise VaultLocked("vault was locked during save")
        self._vault = vault
        self._created_at = envelope.created_at
        self.revision = revision

    async def _open_vault(self, keys: DualKeys) -> None:
        """After a successful login: fetch and decrypt, or flag setup."""
        try:
            remote = await self.client.get_vault()
        except VaultNotFound:
            self._vault_key = keys.vault_key
            self.revision = 0
            self.state = SessionState.SETUP_NEEDED
            logger.info("Authenticated without a stored vault; setup needed")
            return

        try:
            vault = await asyncio.to_thread(decrypt_vault, keys.vault_key, remote.envelope)
        except DecryptionFailure:
            self.audit.log_event(
                event_type=EventType.VAULT_DECRYPT_FAILED,
                severity=EventSeverity.ALERT,
                message="Vault envelope failed to decrypt after login",
                details={"email": self.email},
            )
            raise

        self._vault_key = keys.vault_key
        self._vault = vault
        self._created_at = remote.envelope.created_at
        self.revision = remote.revision
        self.state = SessionState.UNLOCKED

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def register(self, email: str, passcode: str) -> None:
        """
        Create an account, upload an empty vault and unlock it.

        Raises:
            AccountExists, NetworkFailure, SaveFailed
        """
        async with self._op_lock:
            self._forget_account()
            self.state = SessionState.AUTHENTICATING
            keys: Optional[DualKeys] = None
            try:
                salt = EncryptionService.generate_salt()
                keys = await self._derive(passcode, salt)
                await self.client.register(email, salt, bytes(keys.auth_key_bytes))

                self.email = email
                self._salt_b64 = EncryptionService.encode_for_storage(salt)
                self._vault_key = keys.vault_key
                self.revision = 0
                self.state = SessionState.UNLOCKED
                await self._save_locked(PlaintextVault.empty())
            except BaseException:
                if keys is not None:
                    keys.wipe()
                self._forget_account()
                self.state = SessionState.LOGGED_OUT
                raise
            finally:
                if keys is not None:
                    # auth key is never needed again after the request
                    for i in range(len(keys.auth_key_bytes)):
                        keys.auth_key_bytes[i] = 0

        self.audit.log_vault_event(
            EventType.VAULT_UNLOCKED, "registered and unlocked", details={"email": email},
        )

    async def login(self, email: str, passcode: str) -> SessionState:
        """
        Authenticate and open the vault.

        Returns:
            UNLOCKED if a vault was found and decrypted, SETUP_NEEDED if the
            account has no vault yet

        Raises:
            InvalidCredentials: unknown email or wrong passcode
            DecryptionFailure: vault does not decrypt with the derived key
            NetworkFailure
        """
        async with self._op_lock:
            self._forget_account()
            self.state = SessionState.AUTHENTICATING
            keys: Optional[DualKeys] = None
            try:
                salt = await self.client.get_salt(email)
                keys = await self._derive(passcode, salt)
                await self.client.login(email, bytes(keys.auth_key_bytes))

                self.email = email
                self._salt_b64 = EncryptionService.encode_for_storage(salt)
                await self._open_vault(keys)
            except BaseException as e:
                if keys is not None:
                    keys.wipe()
                self._forget_account()
                self.state = SessionState.LOGGED_OUT
                if isinstance(e, InvalidCredentials):
                    logger.info("Login rejected")
                raise
            finally:
                if keys is not None:
                    for i in range(len(keys.auth_key_bytes)):
                        keys.auth_key_bytes[i] = 0

        if self.state == SessionState.UNLOCKED:
            self.audit.log_vault_event(
                EventType.VAULT_UNLOCKED, "vault decrypted", details={"email": email},
            )
        return self.state

    async def unlock(self, passcode: str) -> SessionState:
        """Re-open a locked vault for the remembered account."""
        if self.state != SessionState.LOCKED or not self.email:
            raise VaultLocked(f"nothing to unlock (state={self.state.value})")
        return await self.login(self.email, passcode)

    async def initialize_vault(self) -> None:
        """From SETUP_NEEDED: upload an empty vault and unlock it."""
        async with self._op_lock:
            if self.state != SessionState.SETUP_NEEDED or self._vault_key is None:
                raise VaultLocked(f"vault setup not pending (state={self.state.value})")
            self.state = SessionState.UNLOCKED
            try:
                await self._save_locked(PlaintextVault.empty())
            except BaseException:
                if self.state == SessionState.UNLOCKED:
                    self.state = SessionState.SETUP_NEEDED
                raise

    async def save(self, new_vault: PlaintextVault) -> PlaintextVault:
        """
        Encrypt and upload a new vault version.

        meta.version is bumped past both the caller's copy and the current
        vault before encryption. On any failure the in-memory vault keeps
        its previous contents. If the session is locked while the upload is
        in flight, VaultLocked is raised and nothing is kept in memory.

        Returns:
            The saved vault (copy)
        """
        async with self._op_lock:
            return await self._save_locked(new_vault)

    async def _save_locked(self, new_vault: PlaintextVault) -> PlaintextVault:
        self._require_unlocked()
        pending = copy.deepcopy(new_vault)
        current = self._vault.version if self._vault is not None else 0
        pending.version = max(new_vault.version, current) + 1

        try:
            await self._upload(pending)
        except NotAuthenticated:
            logger.warning("Server session expired while saving; locking")
            log_security_event(
                EventType.SESSION_EXPIRED,
                EventSeverity.INVESTIGATE,
                "Server session expired during save",
                details={"email": self.email},
            )
            self.lock()
            raise

        self.audit.log_vault_event(
            EventType.VAULT_SAVED,
            "vault saved",
            details={"email": self.email, "meta_version": pending.version, "revision": self.revision},
        )
        return copy.deepcopy(pending)

    def lock(self) -> None:
        """Wipe key and plaintext; keep the server session and the email."""
        if self.state not in (SessionState.UNLOCKED, SessionState.SETUP_NEEDED):
            return
        self._wipe()
        self.state = SessionState.LOCKED
        self.audit.log_vault_event(EventType.VAULT_LOCKED, "vault locked", details={"email": self.email})

    async def logout(self) -> None:
        """Invalidate the server session and wipe everything local."""
        email = self.email
        try:
            await self.client.logout()
        except VaultError as e:
            logger.warning("Server logout failed (%s); clearing local state anyway", type(e).__name__)
        finally:
            self._forget_account()
            self.state = SessionState.LOGGED_OUT
        self.audit.log_event(
            event_type=EventType.LOGOUT,
            severity=EventSeverity.INFO,
            message="Client logged out",
            details={"email": email},
        )
