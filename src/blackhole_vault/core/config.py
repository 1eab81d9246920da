"""
Configuration for Blackhole Vault (client and reference server).

Values come from environment variables (prefix ``BLACKHOLE_``), optionally
loaded from a ``.env`` file. Envelope format constants (salt/IV/key length,
PBKDF2 iterations) live in ``vault.encryption`` and are not configurable.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

ENV_PREFIX = "BLACKHOLE_"


def _env(name: str, default: str) -> str:
    return os.getenv(ENV_PREFIX + name, default)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Application configuration."""

    # Client settings
    API_URL: str = field(default_factory=lambda: _env("API_URL", "http://127.0.0.1:8000"))
    REQUEST_TIMEOUT: float = field(default_factory=lambda: float(_env("REQUEST_TIMEOUT", "15")))
    MAX_RETRIES: int = field(default_factory=lambda: int(_env("MAX_RETRIES", "3")))
    RETRY_BACKOFF: float = field(default_factory=lambda: float(_env("RETRY_BACKOFF", "0.5")))
    IDLE_TIMEOUT_SECONDS: float = field(default_factory=lambda: float(_env("IDLE_TIMEOUT_SECONDS", "180")))
    KEY_SCHEME: str = field(default_factory=lambda: _env("KEY_SCHEME", "xor-mask"))
    # Send expectedRevision with every save (compare-and-swap)
    CAS: bool = field(default_factory=lambda: _env_bool("CAS", False))

    # Server settings
    DB_PATH: Path = field(default_factory=lambda: Path(_env("DB_PATH", "data/blackhole.db")))
    SESSION_COOKIE: str = field(default_factory=lambda: _env("SESSION_COOKIE", "blackhole-session"))
    COOKIE_SECURE: bool = field(default_factory=lambda: _env_bool("COOKIE_SECURE", True))
    SESSION_TTL_MINUTES: int = field(default_factory=lambda: int(_env("SESSION_TTL_MINUTES", "720")))
    BCRYPT_ROUNDS: int = field(default_factory=lambda: int(_env("BCRYPT_ROUNDS", "12")))

    # Logging
    AUDIT_LOG_DIR: Path = field(default_factory=lambda: Path(_env("AUDIT_LOG_DIR", "audit_logs")))

    def __post_init__(self):
        if self.KEY_SCHEME not in ("xor-mask", "hkdf"):
            raise ValueError(f"Unsupported key scheme: {self.KEY_SCHEME!r}")
        if not 4 <= self.BCRYPT_ROUNDS <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31")


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get global settings (loads .env on first use)."""
    global _settings
    if _settings is None:
        load_dotenv()
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next get_settings() re-reads the environment."""
    global _settings
    _settings = None
