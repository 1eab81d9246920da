# Vault: Envelope Codec
#
# PlaintextVault <-> VaultEnvelope
#
# encrypt: canonical JSON -> fresh 12-byte IV -> AES-256-GCM -> envelope v1
# decrypt: dispatch on (version, kdf) -> AES-256-GCM -> JSON -> PlaintextVault
#
# Every failure after the envelope is accepted as a known format (bad tag,
# bad base64, bad UTF-8, bad JSON, bad vault shape) is reported as the same
# DecryptionFailure so callers cannot tell a wrong key from corrupted data.

import json
import logging
from typing import Callable, Dict, Optional, Tuple

from .encryption import (
    IV_LENGTH,
    PBKDF2_ITERATIONS,
    SALT_LENGTH,
    EncryptionService,
)
from .exceptions import DecryptionFailure, UnsupportedEnvelope
from .keys import VaultKey
from .models import PlaintextVault, VaultEnvelope, utc_now_iso

logger = logging.getLogger(__name__)

ENVELOPE_VERSION = 1
KDF_PBKDF2 = "PBKDF2"


def canonical_json(data: dict) -> bytes:
    """Sorted keys, compact separators, UTF-8."""
    return json.dumps(
        data, separators=(",", ":"), sort_keys=True, ensure_ascii=False
    ).encode("utf-8")


def encrypt_vault(
    vault_key: VaultKey,
    vault: PlaintextVault,
    salt_b64: str,
    existing_created_at: Optional[str] = None,
) -> VaultEnvelope:
    """
    Encrypt the plaintext vault into a version-1 envelope.

    Args:
        vault_key: Key from the dual-key deriver
        vault: Plaintext vault to encrypt
        salt_b64: The account salt (base64), recorded in the envelope
        existing_created_at: createdAt of the envelope being replaced, if any

    Returns:
        VaultEnvelope with a freshly generated IV
    """
    try:
        salt = EncryptionService.decode_from_storage(salt_b64)
    except ValueError as e:
        raise ValueError("salt must be base64") from e
    if len(salt) != SALT_LENGTH:
        raise ValueError(f"salt must be {SALT_LENGTH} bytes")

    plaintext = canonical_json(vault.to_dict())
    iv = EncryptionService.generate_iv()
    ciphertext = EncryptionService.aead_encrypt(vault_key._material(), iv, plaintext)

    now = utc_now_iso()
    return VaultEnvelope(
        version=ENVELOPE_VERSION,
        kdf=KDF_PBKDF2,
        iterations=PBKDF2_ITERATIONS,
        salt=salt_b64,
        iv=EncryptionService.encode_for_storage(iv),
        ciphertext=EncryptionService.encode_for_storage(ciphertext),
        created_at=existing_created_at or now,
        updated_at=now,
    )


def _decrypt_v1_pbkdf2(vault_key: VaultKey, envelope: VaultEnvelope) -> PlaintextVault:
    if envelope.iterations != PBKDF2_ITERATIONS:
        raise UnsupportedEnvelope(
            f"PBKDF2 iteration count {envelope.iterations} not supported"
        )

    try:
        iv = EncryptionService.decode_from_storage(envelope.iv)
        ciphertext = EncryptionService.decode_from_storage(envelope.ciphertext)
    except ValueError as e:
        raise DecryptionFailure("envelope fields are not valid base64") from e

    if len(iv) != IV_LENGTH:
        raise DecryptionFailure("iv has invalid length")

    plaintext = EncryptionService.aead_decrypt(vault_key._material(), iv, ciphertext)

    try:
        return PlaintextVault.from_dict(json.loads(plaintext.decode("utf-8")))
    except (UnicodeDecodeError, ValueError, TypeError, AttributeError) as e:
        # json.JSONDecodeError is a ValueError
        raise DecryptionFailure("decrypted payload is not a valid vault") from e


_DECODERS: Dict[Tuple[int, str], Callable[[VaultKey, VaultEnvelope], PlaintextVault]] = {
    (1, KDF_PBKDF2): _decrypt_v1_pbkdf2,
}


def supported_formats():
    """(version, kdf) pairs this client can decrypt."""
    return sorted(_DECODERS)


def decrypt_vault(vault_key: VaultKey, envelope: VaultEnvelope) -> PlaintextVault:
    """
    Decrypt an envelope back into a PlaintextVault.

    Raises:
        UnsupportedEnvelope: unknown version/KDF combination
        DecryptionFailure: wrong key, tampering, corrupted or malformed payload
    """
    decoder = _DECODERS.get((envelope.version, envelope.kdf))
    if decoder is None:
        raise UnsupportedEnvelope(
            f"envelope version={envelope.version} kdf={envelope.kdf!r} not supported"
        )

    try:
        return decoder(vault_key, envelope)
    except DecryptionFailure:
        logger.warning("Vault envelope failed to decrypt")
        raise
