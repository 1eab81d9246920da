"""
Sync protocol client.

Handles:
- Salt lookup, registration, login, logout
- Vault download/upload with optional conditional writes
"""

from .client import RemoteVault, SyncClient

__all__ = ["SyncClient", "RemoteVault"]
