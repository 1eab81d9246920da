# Blackhole Vault - Main Package
#
# Zero-knowledge password and API-key vault: the client derives keys from
# the passcode and encrypts the whole vault locally; the server only stores
# an opaque envelope and a hash of a separately derived auth key.

__version__ = "0.1.0"
__author__ = "Blackhole Vault Team"
__description__ = "Zero-knowledge password and API-key vault"

from .core import (
    EventSeverity,
    EventType,
    get_audit_logger,
    get_settings,
)

__all__ = [
    "__version__",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
    "get_settings",
]
