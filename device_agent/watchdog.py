"""
Connection watchdog for the device jobs agent.

A single timer that must be kicked whenever liveness is confirmed. When it
expires the session is presumed stalled: the timer re-arms itself and the
on_expire hook decides what recovery to attempt. Also keeps the connection
health snapshot that the status log reports.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from device_agent.log_setup import get_watchdog_logger, WARN_MARK

logger = get_watchdog_logger()


class ConnectionWatchdog:
    """Self-restarting liveness timer. At most one timer is pending at any time."""

    def __init__(self, timeout: float = 30.0, on_expire: Optional[Callable[[], None]] = None,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        self.timeout = timeout
        self.on_expire = on_expire
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None
        self.status = {
            "connected": False,
            "last_kick": None,
            "last_expired": None,
            "expirations": 0,
            "error": None,
        }

    def start(self) -> None:
        """Arm the timer, cancelling any pending one first."""
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self.cancel()
        self._handle = self._loop.call_later(self.timeout, self._expire)

    def kick(self) -> None:
        """Liveness confirmed; push the deadline out by a full timeout.

        Only an armed watchdog is re-armed, so traffic that arrives after
        cancel() cannot bring it back.
        """
        self.status["last_kick"] = datetime.now(timezone.utc)
        if self.is_armed():
            self.start()

    def cancel(self) -> None:
        """Stop the timer. Safe to call when nothing is armed."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def is_armed(self) -> bool:
        return self._handle is not None

    def _expire(self) -> None:
        self._handle = None
        self.status["expirations"] += 1
        self.status["last_expired"] = datetime.now(timezone.utc)
        logger.warning(f"{WARN_MARK} No liveness confirmation for {self.timeout:.0f}s; restarting watchdog")
        # Re-arm before the hook runs so a failing hook can never leave the watchdog idle
        self.start()
        if self.on_expire is None:
            return
        try:
            self.on_expire()
        except Exception as e:
            logger.error(f"Watchdog expiry hook failed: {e}", exc_info=True)

    def update_connection_status(self, connected: bool, error: Optional[str] = None) -> None:
        """Record a transport connection change; a new connection counts as liveness."""
        self.status["connected"] = connected
        self.status["error"] = None if connected else error
        if connected:
            self.kick()

    def get_status(self) -> Dict[str, Any]:
        status = self.status.copy()
        for key in ("last_kick", "last_expired"):
            if status[key] is not None:
                status[key] = status[key].isoformat()
        status["armed"] = self.is_armed()
        return status
