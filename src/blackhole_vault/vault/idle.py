# Vault: Idle Auto-Lock
#
# Locks an unlocked VaultSession after a period without user activity.
# The UI calls touch() on every interaction; run() polls check() until
# cancelled. The clock is injectable for tests.

import asyncio
import logging
import time
from typing import Callable, Optional

from ..core import EventType, get_audit_logger, get_settings
from .session import SessionState, VaultSession

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SEC = 5.0


class IdleMonitor:
    """Watches user activity and locks the session when idle.

    ``timeout`` defaults to the IDLE_TIMEOUT_SECONDS setting (180 s).
    """

    def __init__(
        self,
        session: VaultSession,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SEC,
    ):
        if timeout is None:
            timeout = get_settings().IDLE_TIMEOUT_SECONDS
        if timeout <= 0:
            raise ValueError("idle timeout must be positive")
        self.session = session
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._clock = clock
        self._last_activity = clock()

    def touch(self) -> None:
        """Record user activity."""
        self._last_activity = self._clock()

    @property
    def idle_for(self) -> float:
        return self._clock() - self._last_activity

    def check(self) -> bool:
        """
        Lock the session if it has been idle too long.

        Returns:
            True if this call locked the session
        """
        if self.session.state != SessionState.UNLOCKED:
            # Idle time while locked does not count toward the next unlock
            self.touch()
            return False
        if self.idle_for < self.timeout:
            return False

        logger.info("Vault idle for %.0fs; locking", self.idle_for)
        self.session.lock()
        get_audit_logger().log_vault_event(
            EventType.VAULT_IDLE_LOCKED,
            "locked after inactivity",
            details={"idle_seconds": round(self.idle_for, 1), "timeout": self.timeout},
        )
        return True

    async def run(self, stop: Optional[asyncio.Event] = None) -> None:
        """Poll until cancelled or ``stop`` is set."""
        while stop is None or not stop.is_set():
            self.check()
            if stop is None:
                await asyncio.sleep(self.poll_interval)
                continue
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
