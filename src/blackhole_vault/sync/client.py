# Sync Protocol - Client
#
# Async HTTP client for the vault server:
#   get_salt / register / login / logout   (auth)
#   get_vault / put_vault                  (authenticated, cookie session)
#
# Only two secrets-adjacent things ever go over the wire: the derived auth
# key (base64) and the encrypted envelope. HTTP status codes are mapped to
# the vault exception taxonomy here so callers never see httpx types.
#
# Retry: connection failures are retried with exponential backoff for every
# call; read errors and 5xx responses only for idempotent calls.

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from ..core import Settings, get_settings
from ..vault.encryption import SALT_LENGTH, EncryptionService
from ..vault.exceptions import (
    AccountExists,
    InvalidCredentials,
    NetworkFailure,
    NotAuthenticated,
    SaveFailed,
    VaultError,
    VaultNotFound,
    VersionConflict,
)
from ..vault.models import VaultEnvelope

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 15.0
MAX_RETRIES = 3
INITIAL_BACKOFF_SEC = 0.5
BACKOFF_MULTIPLIER = 2.0

SESSION_ANONYMOUS = "anonymous"
SESSION_SETUP = "setup"
SESSION_LOCKED = "locked"

# Errors raised before the request reached the server
_PRE_SEND_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)


@dataclass
class RemoteVault:
    """Envelope as returned by the server, with its server-side revision."""
    envelope: VaultEnvelope
    revision: int


class SyncClient:
    """Client side of the sync protocol.

    Usage::

        async with SyncClient("https://vault.example.com") as client:
            salt = await client.get_salt("a@x.com")
            await client.login("a@x.com", auth_key_bytes)
            remote = await client.get_vault()
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        max_retries: int = MAX_RETRIES,
        backoff: float = INITIAL_BACKOFF_SEC,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_retries = max(1, max_retries)
        self.backoff = backoff
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs) -> "SyncClient":
        """Build a client from API_URL / REQUEST_TIMEOUT / MAX_RETRIES / RETRY_BACKOFF."""
        settings = settings or get_settings()
        return cls(
            settings.API_URL,
            timeout=settings.REQUEST_TIMEOUT,
            max_retries=settings.MAX_RETRIES,
            backoff=settings.RETRY_BACKOFF,
            **kwargs,
        )

    async def __aenter__(self) -> "SyncClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def clear_session(self) -> None:
        """Forget the session cookie locally."""
        self._client.cookies.clear()

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        idempotent: bool = True,
    ) -> httpx.Response:
        """Send a request with retry + exponential backoff."""
        backoff = self.backoff
        last_exc: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                resp = await self._client.request(method, path, json=json)
            except _PRE_SEND_ERRORS as exc:
                last_exc = exc
            except httpx.TransportError as exc:
                if not idempotent:
                    raise NetworkFailure(f"{method} {path} failed: {exc}") from exc
                last_exc = exc
            else:
                if resp.status_code < 500 or not idempotent:
                    return resp
                last_exc = None
                logger.warning(
                    "Server error %d on %s %s (attempt %d/%d)",
                    resp.status_code, method, path, attempt, self.max_retries,
                )
                if attempt == self.max_retries:
                    return resp

            if last_exc is not None:
                logger.warning(
                    "%s %s failed: %s (attempt %d/%d)",
                    method, path, last_exc, attempt, self.max_retries,
                )
            if attempt < self.max_retries:
                await asyncio.sleep(backoff)
                backoff *= BACKOFF_MULTIPLIER

        raise NetworkFailure(
            f"{method} {path} failed after {self.max_retries} attempts: {last_exc}"
        )

    @staticmethod
    def _detail(resp: httpx.Response) -> str:
        try:
            body = resp.json()
        except ValueError:
            return resp.text[:200]
        if isinstance(body, dict):
            return str(body.get("detail") or body.get("error") or "")
        return ""

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def get_salt(self, email: str) -> bytes:
        """
        Fetch the account salt.

        Raises:
            InvalidCredentials: unknown email (reported like a bad passcode)
        """
        resp = await self._request("POST", "/auth/salt", json={"email": email})
        if resp.status_code == 404:
            raise InvalidCredentials("salt lookup: account not found")
        if resp.status_code != 200:
            raise NetworkFailure(f"salt lookup failed with HTTP {resp.status_code}")

        try:
            salt = EncryptionService.decode_from_storage(resp.json()["salt"])
        except (KeyError, TypeError, ValueError) as e:
            raise VaultError("server returned a malformed salt") from e
        if len(salt) != SALT_LENGTH:
            raise VaultError("server returned a salt of the wrong length")
        return salt

    async def register(self, email: str, salt: bytes, auth_key_bytes: bytes) -> None:
        """
        Create the account. The server starts a session on success.

        Raises:
            AccountExists: email already registered
            ValueError: server rejected the request as incomplete/invalid
        """
        payload = {
            "email": email,
            "authSalt": EncryptionService.encode_for_storage(salt),
            "keyAuth": EncryptionService.encode_for_storage(auth_key_bytes),
        }
        resp = await self._request("POST", "/auth/register", json=payload, idempotent=False)

        if resp.status_code == 200:
            return
        detail = self._detail(resp)
        if resp.status_code == 400 and "exists" in detail.lower():
            raise AccountExists(email)
        if resp.status_code == 400:
            raise ValueError(detail or "registration rejected")
        raise NetworkFailure(f"registration failed with HTTP {resp.status_code}")

    async def login(self, email: str, auth_key_bytes: bytes) -> None:
        """
        Authenticate with the derived auth key; the session cookie is kept
        by the underlying client.

        Raises:
            InvalidCredentials: 401
        """
        payload = {
            "email": email,
            "keyAuth": EncryptionService.encode_for_storage(auth_key_bytes),
        }
        resp = await self._request("POST", "/auth/login", json=payload)
        if resp.status_code == 401:
            raise InvalidCredentials("login rejected")
        if resp.status_code != 200:
            raise NetworkFailure(f"login failed with HTTP {resp.status_code}")

    async def logout(self) -> None:
        """Invalidate the server session and drop the local cookie."""
        try:
            await self._request("POST", "/auth/logout")
        finally:
            self.clear_session()

    # ------------------------------------------------------------------
    # Vault
    # ------------------------------------------------------------------

    async def get_vault(self) -> RemoteVault:
        """
        Fetch the account's envelope.

        Raises:
            VaultNotFound: authenticated but no vault stored yet
            NotAuthenticated: no/expired session
        """
        resp = await self._request("GET", "/vault")
        if resp.status_code == 401:
            raise NotAuthenticated("vault read without session")
        if resp.status_code == 404:
            raise VaultNotFound("no vault stored")
        if resp.status_code != 200:
            raise NetworkFailure(f"vault read failed with HTTP {resp.status_code}")

        try:
            body = resp.json()
            envelope = VaultEnvelope.from_dict(body["vault"])
            revision = int(body.get("revision", 0))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise VaultError("server returned a malformed envelope") from e
        return RemoteVault(envelope=envelope, revision=revision)

    async def put_vault(
        self,
        envelope: VaultEnvelope,
        expected_revision: Optional[int] = None,
    ) -> int:
        """
        Upload an envelope, replacing the stored one.

        Args:
            envelope: Encrypted vault
            expected_revision: Conditional write; 409 if the server differs

        Returns:
            The server's new revision

        Raises:
            NotAuthenticated: 401
            VersionConflict: 409 (conditional write lost)
            SaveFailed: any other non-200 answer
        """
        payload: Dict[str, Any] = {"vault": envelope.to_dict()}
        if expected_revision is not None:
            payload["expectedRevision"] = expected_revision

        resp = await self._request("POST", "/vault", json=payload, idempotent=False)
        if resp.status_code == 200:
            try:
                return int(resp.json().get("revision", 0))
            except (AttributeError, TypeError, ValueError) as e:
                raise VaultError("server returned a malformed save response") from e
        if resp.status_code == 401:
            raise NotAuthenticated("vault write without session")
        if resp.status_code == 409:
            raise VersionConflict(f"expected revision {expected_revision} is stale")
        raise SaveFailed(f"vault write failed with HTTP {resp.status_code}")

    async def check_session(self) -> str:
        """
        Probe the server session after a client restart.

        Returns:
            "locked" (session + vault), "setup" (session, no vault) or
            "anonymous" (no session)
        """
        try:
            await self.get_vault()
        except NotAuthenticated:
            return SESSION_ANONYMOUS
        except VaultNotFound:
            return SESSION_SETUP
        return SESSION_LOCKED
