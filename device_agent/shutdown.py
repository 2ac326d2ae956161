"""
Termination signal handling.
"""
import asyncio
import signal
from typing import List, Optional, Protocol

from device_agent.log_setup import logger

HANDLED_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class ShutdownCoordinator:
    """Cancels every registered timer on SIGTERM/SIGINT so the process can exit.

    In-flight handshakes are abandoned; job state is owned by the jobs service.
    """

    def __init__(self, timers: Optional[List[Cancellable]] = None):
        self._timers: List[Cancellable] = list(timers or [])
        self.stopped = asyncio.Event()
        self.shutdown_requests = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def register(self, timer: Cancellable) -> None:
        self._timers.append(timer)

    def install(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        for sig in HANDLED_SIGNALS:
            self._loop.add_signal_handler(sig, self.shutdown, sig.name)

    def uninstall(self) -> None:
        if self._loop is None:
            return
        for sig in HANDLED_SIGNALS:
            self._loop.remove_signal_handler(sig)
        self._loop = None

    def is_shutting_down(self) -> bool:
        return self.stopped.is_set()

    def shutdown(self, reason: str = "shutdown") -> None:
        """Cancel all timers synchronously. Repeated calls are harmless."""
        self.shutdown_requests += 1
        if self.stopped.is_set():
            logger.info(f"Received {reason} while already shutting down")
            return

        logger.info(f"Received {reason}, cancelling timers...")
        for timer in self._timers:
            timer.cancel()
        self.stopped.set()
