"""
Job execution handler: receives job offers and drives them to completion.

The decision logic lives in pure functions that take a decoded response and
return the messages to publish, so it can be tested without a transport.
JobExecutionHandler wires those functions to the transport subscriptions.
"""
import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

from device_agent.jobs.model import (
    JobExecution,
    JobRequest,
    JobStatus,
    OutboundMessage,
    UpdateRequest,
)
from device_agent.jobs.state import AgentState
from device_agent.jobs.topics import JobTopics
from device_agent.log_setup import get_jobs_logger, OK_MARK, WARN_MARK, FAIL_MARK
from device_agent.transport.interface import TransportConnection, TransportError

logger = get_jobs_logger()


def handle_next_job_accepted(response: Dict[str, Any], request: JobRequest,
                             qos: int = 0) -> List[OutboundMessage]:
    """Accept the offered job and report it as succeeded.

    No work is performed between acceptance and completion; this is where job
    execution would go. Always returns exactly one update message.
    """
    execution = JobExecution.from_response(response)
    update = UpdateRequest.for_execution(execution, request, JobStatus.SUCCEEDED)
    topic = JobTopics(request.thing_name).update(update.job_id)
    return [OutboundMessage(topic=topic, payload=update.to_payload(), qos=qos, update=update)]


def handle_pending_jobs_accepted(response: Dict[str, Any], request: JobRequest,
                                 qos: int = 0) -> List[OutboundMessage]:
    """Observe the pending-jobs listing. No state transition."""
    in_progress = [j.get("jobId") for j in response.get("inProgressJobs") or [] if isinstance(j, dict)]
    queued = [j.get("jobId") for j in response.get("queuedJobs") or [] if isinstance(j, dict)]
    logger.info(f"Pending jobs for {request.thing_name}: in progress={in_progress}, queued={queued}")
    return []


def decode_response(topic: str, raw: bytes) -> Dict[str, Any]:
    """Decode a JSON response; anything undecodable becomes an empty document."""
    try:
        decoded = json.loads(raw.decode("utf-8")) if raw else {}
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning(f"{WARN_MARK} Malformed response on {topic}: {e}")
        return {}
    if not isinstance(decoded, dict):
        logger.warning(f"{WARN_MARK} Unexpected response on {topic}: {decoded!r}")
        return {}
    return decoded


class JobExecutionHandler:
    """Subscribes to the jobs response topics and runs the accept -> complete handshake."""

    def __init__(self, transport: TransportConnection, request: JobRequest, state: AgentState,
                 qos: int = 0, on_activity: Optional[Callable[[], None]] = None):
        self._transport = transport
        self._request = request
        self._state = state
        self._topics = JobTopics(request.thing_name)
        self.qos = qos
        self.on_activity = on_activity
        self.updates_published = 0

    async def subscribe(self) -> bool:
        """Subscribe to every response topic. Returns True if all subscriptions were granted."""
        topics = self._topics
        subscriptions = [
            (topics.start_next_accepted, self._on_next_job_accepted),
            (topics.get_pending_accepted, self._on_pending_jobs_accepted),
            (topics.start_next_rejected, self._on_rejected),
            (topics.get_pending_rejected, self._on_rejected),
            (topics.update_accepted, self._on_update_accepted),
            (topics.update_rejected, self._on_rejected),
        ]
        ok = True
        for topic, callback in subscriptions:
            try:
                granted = await self._transport.subscribe(topic, self.qos, callback)
                logger.info(f"Subscribed to {topic} - completion: {granted}")
            except TransportError as e:
                ok = False
                logger.error(f"{FAIL_MARK} Failed to subscribe to {topic}: {e}")
        return ok

    def query_pending_jobs(self) -> None:
        """Ask once for jobs that were queued while the device was away."""
        try:
            ack = self._transport.publish(self._topics.get_pending, self._request.to_payload(), self.qos)
        except TransportError as e:
            logger.error(f"Pending jobs query failed: {e}")
            return
        ack.add_done_callback(lambda f: self._log_failed_publish(f, "pending jobs query"))

    # -- subscription callbacks (event loop) -----------------------------------

    def _activity(self) -> None:
        if self.on_activity is None:
            return
        try:
            self.on_activity()
        except Exception as e:
            logger.error(f"Activity hook failed: {e}", exc_info=True)

    def _on_next_job_accepted(self, topic: str, raw: bytes) -> None:
        try:
            self._activity()
            response = decode_response(topic, raw)
            logger.info(f"Job execution received: {json.dumps(response)}")
            for message in handle_next_job_accepted(response, self._request, self.qos):
                self._publish_update(message)
        except Exception as e:
            logger.error(f"Error handling next job response: {e}", exc_info=True)

    def _on_pending_jobs_accepted(self, topic: str, raw: bytes) -> None:
        try:
            self._activity()
            response = decode_response(topic, raw)
            for message in handle_pending_jobs_accepted(response, self._request, self.qos):
                self._transport.publish(message.topic, message.payload, message.qos)
        except Exception as e:
            logger.error(f"Error handling pending jobs response: {e}", exc_info=True)

    def _on_update_accepted(self, topic: str, raw: bytes) -> None:
        try:
            self._activity()
            logger.info(f"{OK_MARK} Job status update accepted on {topic}")
        except Exception as e:
            logger.error(f"Error handling update acceptance: {e}", exc_info=True)

    def _on_rejected(self, topic: str, raw: bytes) -> None:
        try:
            self._activity()
            response = decode_response(topic, raw)
            logger.warning(
                f"{WARN_MARK} Request rejected on {topic}: "
                f"{response.get('code', 'unknown')} - {response.get('message', '')}"
            )
        except Exception as e:
            logger.error(f"Error handling rejection on {topic}: {e}", exc_info=True)

    # -- handshake -------------------------------------------------------------

    def _publish_update(self, message: OutboundMessage) -> None:
        update = message.update
        job_id = update.job_id if update else None
        self._state.begin_job(job_id)
        logger.info(f"Sending job status update: {json.dumps(message.payload)} to {message.topic}")
        ack = None
        try:
            ack = self._transport.publish(message.topic, message.payload, message.qos)
        except TransportError as e:
            logger.error(f"{FAIL_MARK} Job status update for {job_id} failed: {e}")
            return
        finally:
            # Without an ack future nothing else will ever clear the flag
            if ack is None:
                self._state.finish_job(job_id)
        self.updates_published += 1
        ack.add_done_callback(lambda f: self._update_completed(f, job_id))

    def _update_completed(self, ack: asyncio.Future, job_id: Optional[str]) -> None:
        self._state.finish_job(job_id)
        if self._log_failed_publish(ack, f"status update for job {job_id}"):
            logger.info(f"{OK_MARK} Job {job_id} reported as {JobStatus.SUCCEEDED.value}")

    @staticmethod
    def _log_failed_publish(ack: asyncio.Future, what: str) -> bool:
        """Log a failed publish; returns True when the publish was acknowledged."""
        if ack.cancelled():
            logger.warning(f"{WARN_MARK} {what} cancelled")
            return False
        error = ack.exception()
        if error is not None:
            logger.error(f"{FAIL_MARK} {what} failed: {error}")
            return False
        return True
