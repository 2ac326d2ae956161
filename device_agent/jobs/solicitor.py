"""
Periodic "start next pending job" solicitation.
"""
import asyncio
from typing import Optional

from device_agent.jobs.model import JobRequest
from device_agent.jobs.state import AgentState
from device_agent.jobs.topics import JobTopics
from device_agent.log_setup import get_jobs_logger
from device_agent.transport.interface import TransportConnection, TransportError

logger = get_jobs_logger()


class JobSolicitor:
    """Asks the jobs service for the next job every `interval` seconds.

    A tick is skipped while a job is in flight, so a slow service never
    accumulates duplicate outstanding requests from this device.
    """

    def __init__(self, transport: TransportConnection, request: JobRequest, state: AgentState,
                 interval: float = 10.0, qos: int = 0,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        self._transport = transport
        self._request = request
        self._state = state
        self._topics = JobTopics(request.thing_name)
        self.interval = interval
        self.qos = qos
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None
        self.requests_sent = 0
        self.ticks_skipped = 0

    def start(self) -> None:
        """Start the interval. Restarting re-arms the single timer."""
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self.cancel()
        self._arm()
        logger.info(f"Requesting jobs every {self.interval:.0f}s for {self._request.thing_name}")

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def is_running(self) -> bool:
        return self._handle is not None

    def _arm(self) -> None:
        self._handle = self._loop.call_later(self.interval, self._on_timer)

    def _on_timer(self) -> None:
        # Re-arm first: the interval only stops through cancel()
        self._arm()
        self.tick()

    def tick(self) -> None:
        if self._state.job_in_flight:
            self.ticks_skipped += 1
            logger.debug(f"Job {self._state.current_job_id} still in flight; skipping job request")
            return

        logger.info("Informing the jobs service that we're ready for another job")
        try:
            ack = self._transport.publish(self._topics.start_next, self._request.to_payload(), self.qos)
        except TransportError as e:
            logger.error(f"Job request publish failed: {e}")
            return
        self.requests_sent += 1
        ack.add_done_callback(self._log_ack)

    @staticmethod
    def _log_ack(ack: asyncio.Future) -> None:
        if ack.cancelled():
            logger.debug("Job request acknowledgement cancelled")
            return
        error = ack.exception()
        if error is not None:
            logger.error(f"Job request was not acknowledged: {error}")
        else:
            logger.debug(f"Job request acknowledged: {ack.result()}")
