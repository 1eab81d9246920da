# Vault: Data Model
#
# PlaintextVault / VaultEntry  - what the user sees once unlocked
# VaultEnvelope                - the only thing the server ever stores
#
# JSON keys use the camelCase wire names (createdAt, updatedAt, ...).

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

ENTRY_KIND_PASSWORD = "password"
ENTRY_KIND_API = "api"
ENTRY_KINDS = (ENTRY_KIND_PASSWORD, ENTRY_KIND_API)


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def _require(data: Dict[str, Any], key: str):
    if key not in data:
        raise ValueError(f"missing field: {key}")
    return data[key]


@dataclass
class VaultEntry:
    """A single stored credential (password entry or API entry)."""
    id: str
    service: str
    created_at: str
    updated_at: str
    username: Optional[str] = None
    password: Optional[str] = None
    apikey: Optional[str] = None
    remarks: Optional[str] = None
    custom: Optional[Dict[str, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "service": self.service,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        for name in ("username", "password", "apikey", "remarks"):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        if self.custom:
            data["custom"] = dict(self.custom)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VaultEntry":
        if not isinstance(data, dict):
            raise ValueError("entry must be an object")
        custom = data.get("custom")
        if custom is not None:
            if not isinstance(custom, dict) or not all(
                isinstance(k, str) and isinstance(v, str) for k, v in custom.items()
            ):
                raise ValueError("custom must map strings to strings")
        service = _require(data, "service")
        if not isinstance(service, str):
            raise ValueError("service must be a string")
        return cls(
            id=str(_require(data, "id")),
            service=service,
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
            username=data.get("username"),
            password=data.get("password"),
            apikey=data.get("apikey"),
            remarks=data.get("remarks"),
            custom=dict(custom) if custom else None,
        )


@dataclass
class PlaintextVault:
    """Decrypted vault contents."""
    passwords: List[VaultEntry] = field(default_factory=list)
    apis: List[VaultEntry] = field(default_factory=list)
    scratch: str = ""
    version: int = 0

    @classmethod
    def empty(cls) -> "PlaintextVault":
        return cls()

    def entries(self, kind: str) -> List[VaultEntry]:
        """Return the entry list for a kind ("password" or "api")."""
        if kind == ENTRY_KIND_PASSWORD:
            return self.passwords
        if kind == ENTRY_KIND_API:
            return self.apis
        raise ValueError(f"Unknown entry kind: {kind!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passwords": [e.to_dict() for e in self.passwords],
            "apis": [e.to_dict() for e in self.apis],
            "playground": {"scratch": self.scratch},
            "meta": {"version": self.version},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlaintextVault":
        if not isinstance(data, dict):
            raise ValueError("vault must be an object")
        passwords = data.get("passwords", [])
        apis = data.get("apis", [])
        if not isinstance(passwords, list) or not isinstance(apis, list):
            raise ValueError("passwords/apis must be lists")
        playground = data.get("playground") or {}
        meta = data.get("meta") or {}
        if not isinstance(playground, dict) or not isinstance(meta, dict):
            raise ValueError("playground/meta must be objects")
        version = meta.get("version", 0)
        if not isinstance(version, int) or isinstance(version, bool):
            raise ValueError("meta.version must be an integer")
        scratch = playground.get("scratch")
        if scratch is None:
            scratch = ""
        elif not isinstance(scratch, str):
            raise ValueError("playground.scratch must be a string")
        return cls(
            passwords=[VaultEntry.from_dict(e) for e in passwords],
            apis=[VaultEntry.from_dict(e) for e in apis],
            scratch=scratch,
            version=version,
        )


@dataclass
class VaultEnvelope:
    """Encrypted vault ready for upload. All binary fields are base64 text."""
    version: int
    kdf: str
    iterations: int
    salt: str
    iv: str
    ciphertext: str
    created_at: str
    updated_at: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the stable JSON wire shape."""
        return {
            "version": self.version,
            "kdf": self.kdf,
            "iterations": self.iterations,
            "salt": self.salt,
            "iv": self.iv,
            "ciphertext": self.ciphertext,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VaultEnvelope":
        """Reconstruct from the wire shape. Missing fields raise ValueError."""
        if not isinstance(data, dict):
            raise ValueError("envelope must be an object")
        try:
            return cls(
                version=int(_require(data, "version")),
                kdf=str(_require(data, "kdf")),
                iterations=int(_require(data, "iterations")),
                salt=str(_require(data, "salt")),
                iv=str(_require(data, "iv")),
                ciphertext=str(_require(data, "ciphertext")),
                created_at=str(data.get("createdAt") or ""),
                updated_at=str(data.get("updatedAt") or ""),
            )
        except TypeError as e:
            raise ValueError(f"invalid envelope field: {e}") from e
