# Vault: Dual-Key Deriver
#
# One passcode + one stored salt -> two independent 256-bit keys:
#   - vault key: decrypts the envelope, never leaves this process
#   - auth key:  sent (base64) to the server as the login credential,
#                which stores only a bcrypt hash of it
#
# Two schemes are supported:
#   "xor-mask" (default) - PBKDF2(passcode, salt) and PBKDF2(passcode, salt ^ 0xFF).
#                          Byte-compatible with already-registered accounts.
#   "hkdf"               - one PBKDF2 master secret expanded with HKDF-SHA256
#                          under distinct info labels.

import hmac
from dataclasses import dataclass

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand

from .encryption import KEY_LENGTH, PBKDF2_ITERATIONS, EncryptionService

SCHEME_XOR_MASK = "xor-mask"
SCHEME_HKDF = "hkdf"
KEY_SCHEMES = (SCHEME_XOR_MASK, SCHEME_HKDF)

HKDF_VAULT_INFO = b"blackhole-vault-v1"
HKDF_AUTH_INFO = b"blackhole-auth-v1"


class VaultKey:
    """
    Non-exportable handle around the vault key bytes.

    No public accessor returns the key; only the envelope codec reads it
    through ``_material()``. ``wipe()`` overwrites the buffer in place.
    """

    __slots__ = ("_key",)

    def __init__(self, key: bytes):
        if len(key) != KEY_LENGTH:
            raise ValueError(f"vault key must be {KEY_LENGTH} bytes")
        self._key = bytearray(key)

    def _material(self) -> bytes:
        if self.is_wiped:
            raise ValueError("vault key has been wiped")
        return bytes(self._key)

    @property
    def is_wiped(self) -> bool:
        return not any(self._key)

    def wipe(self) -> None:
        """Zero the key material."""
        for i in range(len(self._key)):
            self._key[i] = 0

    def matches(self, other_bytes: bytes) -> bool:
        """Constant-time comparison against raw bytes (used by tests/diagnostics)."""
        return hmac.compare_digest(bytes(self._key), bytes(other_bytes))

    def __repr__(self) -> str:
        state = "wiped" if self.is_wiped else "live"
        return f"<VaultKey {state}>"

    def __reduce__(self):
        raise TypeError("VaultKey cannot be serialized")


@dataclass
class DualKeys:
    """Result of a dual-key derivation."""
    vault_key: VaultKey
    auth_key_bytes: bytearray

    @property
    def auth_key_b64(self) -> str:
        """Auth key in the base64 form the server expects."""
        return EncryptionService.encode_for_storage(bytes(self.auth_key_bytes))

    def wipe(self) -> None:
        self.vault_key.wipe()
        for i in range(len(self.auth_key_bytes)):
            self.auth_key_bytes[i] = 0

    def __repr__(self) -> str:
        return f"DualKeys(vault_key={self.vault_key!r}, auth_key_bytes=<redacted>)"


def mask_salt(salt: bytes) -> bytes:
    """Bytewise complement of the salt (salt XOR 0xFF)."""
    return bytes(b ^ 0xFF for b in salt)


def derive_dual_keys(passcode: str, salt: bytes) -> DualKeys:
    """
    Derive the vault key and auth key with the XOR-masked salt scheme.

    Args:
        passcode: User passcode
        salt: The account's 16-byte salt

    Returns:
        DualKeys(vault_key, auth_key_bytes)
    """
    vault_raw = EncryptionService.derive_raw_key(passcode, salt, PBKDF2_ITERATIONS)
    auth_raw = EncryptionService.derive_raw_key(passcode, mask_salt(salt), PBKDF2_ITERATIONS)
    return DualKeys(vault_key=VaultKey(vault_raw), auth_key_bytes=bytearray(auth_raw))


def derive_labeled_keys(passcode: str, salt: bytes) -> DualKeys:
    """
    Derive the vault key and auth key with HKDF domain separation.

    A single PBKDF2 master secret is expanded twice with distinct info
    labels. Costs one PBKDF2 run instead of two.
    """
    master = bytearray(EncryptionService.derive_raw_key(passcode, salt, PBKDF2_ITERATIONS))
    try:
        vault_raw = HKDFExpand(
            algorithm=hashes.SHA256(), length=KEY_LENGTH, info=HKDF_VAULT_INFO,
        ).derive(bytes(master))
        auth_raw = HKDFExpand(
            algorithm=hashes.SHA256(), length=KEY_LENGTH, info=HKDF_AUTH_INFO,
        ).derive(bytes(master))
    finally:
        for i in range(len(master)):
            master[i] = 0
    return DualKeys(vault_key=VaultKey(vault_raw), auth_key_bytes=bytearray(auth_raw))


def derive_keys(passcode: str, salt: bytes, scheme: str = SCHEME_XOR_MASK) -> DualKeys:
    """Dispatch to the configured key-separation scheme."""
    if scheme == SCHEME_XOR_MASK:
        return derive_dual_keys(passcode, salt)
    if scheme == SCHEME_HKDF:
        return derive_labeled_keys(passcode, salt)
    raise ValueError(f"Unknown key scheme: {scheme!r}")
