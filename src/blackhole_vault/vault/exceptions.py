"""
Vault Exception Classes

Every error carries a generic ``user_message`` that is safe to show to the
end user. The exception text itself may be more specific and is meant for
internal logs only.
"""


class VaultError(Exception):
    """Base exception for vault operations"""

    user_message = "Something went wrong"
    retryable = False


class InvalidCredentials(VaultError):
    """Raised when email/passcode do not match (or the account is unknown)"""

    user_message = "Invalid credentials"


class AccountExists(VaultError):
    """Raised when registering an email that already has an account"""

    user_message = "Account already exists"


class VaultNotFound(VaultError):
    """Raised when an authenticated account has no vault yet"""

    user_message = "No vault found"


class DecryptionFailure(VaultError):
    """Raised when an envelope cannot be decrypted.

    Wrong key, tampering, truncation and malformed plaintext all map here.
    Never retried automatically.
    """

    user_message = "Invalid credentials"


class UnsupportedEnvelope(VaultError):
    """Raised when an envelope declares a version/KDF this client cannot read"""

    user_message = "Vault format not supported by this client"


class CryptoProviderUnavailable(VaultError):
    """Raised when the crypto backend cannot provide PBKDF2 or AES-GCM"""

    user_message = "Encryption is not available on this system"


class NetworkFailure(VaultError):
    """Raised when the server could not be reached. Safe to retry."""

    user_message = "Network error, please try again"
    retryable = True


class NotAuthenticated(VaultError):
    """Raised when the server session is missing or expired"""

    user_message = "Session expired, please log in again"


class VaultLocked(VaultError):
    """Raised when an operation needs the vault key but the vault is locked"""

    user_message = "Vault is locked"


class VersionConflict(VaultError):
    """Raised when a conditional save finds a newer vault on the server"""

    user_message = "Vault was changed elsewhere, reload and try again"


class SaveFailed(VaultError):
    """Raised when the server refuses or fails to store the vault"""

    user_message = "Failed to save"
