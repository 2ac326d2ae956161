"""
Device agent: owns the transport session, the watchdog and solicitation timers
and the job execution handler, and runs them in order:

connect -> watchdog -> subscribe -> pending jobs query -> solicitation loop
"""
import asyncio
from typing import Any, Dict, Optional

from device_agent.config import AgentConfig
from device_agent.jobs.handler import JobExecutionHandler
from device_agent.jobs.model import JobRequest
from device_agent.jobs.solicitor import JobSolicitor
from device_agent.jobs.state import AgentState
from device_agent.log_setup import logger, OK_MARK, WARN_MARK, FAIL_MARK
from device_agent.shutdown import ShutdownCoordinator
from device_agent.transport.factory import TransportFactory
from device_agent.transport.interface import TransportConnection, TransportError
from device_agent.watchdog import ConnectionWatchdog


class DeviceAgent:
    """Single-job-in-flight jobs agent for one thing."""

    def __init__(self, config: AgentConfig, transport: Optional[TransportConnection] = None,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        self.config = config
        self.transport = transport or TransportFactory.create_transport(config)
        self.request = JobRequest(config.client_id)
        self.state = AgentState()

        self.watchdog = ConnectionWatchdog(config.watchdog_timeout, on_expire=self._on_watchdog_expired, loop=loop)
        self.handler = JobExecutionHandler(self.transport, self.request, self.state,
                                           qos=config.qos, on_activity=self.watchdog.kick)
        self.solicitor = JobSolicitor(self.transport, self.request, self.state,
                                      interval=config.solicit_interval, qos=config.qos, loop=loop)
        self.shutdown = ShutdownCoordinator([self.watchdog, self.solicitor])

        self.transport.on_connection_change = self.watchdog.update_connection_status
        self._reconnect_task: Optional[asyncio.Task] = None

    async def start(self) -> bool:
        """Connect and start the job loop. Returns False if the session could not be established."""
        logger.info(f"clientId: {self.config.client_id}")
        try:
            connected = await asyncio.wait_for(self.transport.connect(), timeout=self.config.connect_timeout)
        except asyncio.TimeoutError:
            logger.error(f"{FAIL_MARK} Connection timed out after {self.config.connect_timeout:.0f}s")
            return False
        except TransportError as e:
            logger.error(f"{FAIL_MARK} Connection failed: {e}")
            return False

        logger.info(f"Connected? {connected}")
        if not connected or self._stop_requested():
            return False

        self.watchdog.start()

        if not await self.handler.subscribe():
            logger.warning(f"{WARN_MARK} Some job subscriptions failed; responses on them will be missed")
        if self._stop_requested():
            self.watchdog.cancel()
            return False
        self.handler.query_pending_jobs()

        self.solicitor.start()
        logger.info(f"{OK_MARK} Device agent running for {self.request.thing_name}")
        return True

    def _stop_requested(self) -> bool:
        if self.shutdown.is_shutting_down():
            logger.info("Shutdown requested during startup; not starting timers")
            return True
        return False

    def _on_watchdog_expired(self) -> None:
        if self.shutdown.is_shutting_down():
            return
        if self.transport.is_connected():
            logger.info("Watchdog expired while the transport reports connected; keeping session")
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            logger.info("Reconnect already in progress")
            return
        logger.warning(f"{WARN_MARK} Session presumed dead; reconnecting")
        self._reconnect_task = asyncio.ensure_future(self._reconnect())

    async def _reconnect(self) -> None:
        try:
            connected = await asyncio.wait_for(self.transport.reconnect(), timeout=self.config.connect_timeout)
        except (asyncio.TimeoutError, TransportError) as e:
            logger.error(f"{FAIL_MARK} Reconnect failed: {e!r}")
            return
        if connected:
            logger.info(f"{OK_MARK} Reconnected")
        else:
            logger.error(f"{FAIL_MARK} Reconnect refused; the watchdog will retry")

    async def run_until_stopped(self) -> None:
        """Block until shutdown, logging a health line every status_log_interval seconds."""
        interval = self.config.status_log_interval
        while not self.shutdown.is_shutting_down():
            try:
                await asyncio.wait_for(self.shutdown.stopped.wait(), timeout=interval)
            except asyncio.TimeoutError:
                status = self.get_status()
                logger.info(
                    f"[Health Check] Connected: {status['watchdog']['connected']}, "
                    f"Job in flight: {status['job_in_flight']}, "
                    f"Requests sent: {status['requests_sent']}, "
                    f"Updates published: {status['updates_published']}"
                )

    async def stop(self) -> None:
        """Cancel all timers and close the session."""
        self.shutdown.shutdown("stop request")
        # shutdown() is a no-op after the first signal; cancel our own timers regardless
        self.watchdog.cancel()
        self.solicitor.cancel()
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass
        try:
            await self.transport.disconnect()
        except TransportError as e:
            logger.warning(f"Error disconnecting transport: {e}")
        logger.info("Device agent stopped")

    def get_status(self) -> Dict[str, Any]:
        return {
            "thing_name": self.request.thing_name,
            "watchdog": self.watchdog.get_status(),
            "solicitor_running": self.solicitor.is_running(),
            "job_in_flight": self.state.job_in_flight,
            "current_job_id": self.state.current_job_id,
            "requests_sent": self.solicitor.requests_sent,
            "updates_published": self.handler.updates_published,
        }
