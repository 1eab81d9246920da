# Vault: Primitive Layer
#
# Passcode -> key material (PBKDF2-HMAC-SHA256)
# Vault encryption (AES-256-GCM, 96-bit IV, no associated data)
#
# Format constants below are part of the stored envelope format and must
# not change without bumping the envelope version.

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .exceptions import CryptoProviderUnavailable, DecryptionFailure

PBKDF2_ITERATIONS = 250_000
SALT_LENGTH = 16  # bytes
IV_LENGTH = 12  # bytes (96 bits for AES-GCM)
KEY_LENGTH = 32  # bytes (256 bits)
TAG_LENGTH = 16  # bytes, appended to ciphertext by AES-GCM
HASH_ALGO = "SHA-256"


class EncryptionService:
    """
    Low-level crypto primitives used by the key deriver and envelope codec.

    Flow:
    1. PBKDF2 derives 256 bits from passcode + salt (deterministic)
    2. AES-256-GCM encrypts/decrypts with a fresh random IV every time
    3. Tag failures surface as DecryptionFailure, never partial plaintext
    """

    @staticmethod
    def derive_raw_key(
        passphrase,
        salt: bytes,
        iterations: int = PBKDF2_ITERATIONS,
    ) -> bytes:
        """
        Derive 256 bits of key material with PBKDF2-HMAC-SHA256.

        Args:
            passphrase: Passcode as str (UTF-8 encoded here) or raw bytes
            salt: Salt bytes
            iterations: PBKDF2 iteration count

        Returns:
            32 bytes of key material
        """
        if isinstance(passphrase, str):
            passphrase = passphrase.encode("utf-8")
        if iterations < 1:
            raise ValueError("iterations must be positive")

        try:
            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=KEY_LENGTH,
                salt=bytes(salt),
                iterations=iterations,
            )
            return kdf.derive(passphrase)
        except UnsupportedAlgorithm as e:
            raise CryptoProviderUnavailable(f"PBKDF2-HMAC-SHA256 unavailable: {e}") from e

    @staticmethod
    def generate_salt() -> bytes:
        """Generate a random 16-byte salt."""
        return os.urandom(SALT_LENGTH)

    @staticmethod
    def generate_iv() -> bytes:
        """Generate a random 12-byte IV. Never reuse one with the same key."""
        return os.urandom(IV_LENGTH)

    @staticmethod
    def aead_encrypt(key: bytes, iv: bytes, plaintext: bytes) -> bytes:
        """
        Encrypt with AES-256-GCM.

        Returns:
            ciphertext with the 16-byte tag appended
        """
        if len(key) != KEY_LENGTH:
            raise ValueError(f"key must be {KEY_LENGTH} bytes")
        if len(iv) != IV_LENGTH:
            raise ValueError(f"iv must be {IV_LENGTH} bytes")

        try:
            aesgcm = AESGCM(bytes(key))
        except UnsupportedAlgorithm as e:
            raise CryptoProviderUnavailable(f"AES-GCM unavailable: {e}") from e
        return aesgcm.encrypt(iv, plaintext, None)

    @staticmethod
    def aead_decrypt(key: bytes, iv: bytes, data: bytes) -> bytes:
        """
        Decrypt AES-256-GCM ciphertext+tag.

        Raises:
            DecryptionFailure: wrong key, bad IV, truncated or tampered data
        """
        if len(key) != KEY_LENGTH:
            raise ValueError(f"key must be {KEY_LENGTH} bytes")
        if len(iv) != IV_LENGTH or len(data) < TAG_LENGTH:
            raise DecryptionFailure("ciphertext or iv has invalid length")

        try:
            aesgcm = AESGCM(bytes(key))
        except UnsupportedAlgorithm as e:
            raise CryptoProviderUnavailable(f"AES-GCM unavailable: {e}") from e

        try:
            return aesgcm.decrypt(iv, data, None)
        except InvalidTag as e:
            raise DecryptionFailure("authentication tag mismatch") from e

    @staticmethod
    def encode_for_storage(data: bytes) -> str:
        """Encode binary data as standard base64 text."""
        return base64.b64encode(bytes(data)).decode("ascii")

    @staticmethod
    def decode_from_storage(data: str) -> bytes:
        """Decode base64 text. Malformed input raises ValueError."""
        try:
            return base64.b64decode(data.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError, AttributeError) as e:
            raise ValueError("invalid base64 data") from e


# Module-level aliases
derive_raw_key = EncryptionService.derive_raw_key
generate_salt = EncryptionService.generate_salt
generate_iv = EncryptionService.generate_iv
aead_encrypt = EncryptionService.aead_encrypt
aead_decrypt = EncryptionService.aead_decrypt
encode_for_storage = EncryptionService.encode_for_storage
decode_from_storage = EncryptionService.decode_from_storage
