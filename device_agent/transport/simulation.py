"""
Simulation implementation of the jobs transport.

Plays the jobs service in-process: start-next requests hand out queued jobs,
get requests list them and update requests complete them. Responses are
delivered as separate loop callbacks, like a real broker would deliver them.
Every publish is recorded in `published` for inspection.
"""
import asyncio
import json
import time
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Tuple

from paho.mqtt.client import topic_matches_sub

from device_agent.jobs.model import JobStatus
from device_agent.jobs.topics import JobTopics
from device_agent.log_setup import get_transport_logger
from device_agent.transport.interface import MessageCallback, TransportConnection, TransportError

logger = get_transport_logger()


class SimulationTransport(TransportConnection):
    """In-process jobs service for demos and tests."""

    def __init__(self, thing_name: str, auto_respond: bool = True) -> None:
        super().__init__()
        self.topics = JobTopics(thing_name)
        self.auto_respond = auto_respond
        self.fail_publishes = False
        self.published: List[Tuple[str, Dict[str, Any], int]] = []
        self.subscriptions: Dict[str, Tuple[int, MessageCallback]] = {}
        self._connected = False
        self._queued: Deque[Dict[str, Any]] = deque()
        self._in_progress: Dict[str, Dict[str, Any]] = {}
        self._completed: Dict[str, str] = {}

    def add_job(self, job_id: str, document: Optional[Dict[str, Any]] = None) -> None:
        """Queue a job for this thing."""
        self._queued.append({
            "jobId": job_id,
            "status": JobStatus.QUEUED.value,
            "jobDocument": document or {},
            "versionNumber": 1,
            "executionNumber": 1,
        })

    def completed_jobs(self) -> Dict[str, str]:
        return dict(self._completed)

    def published_to(self, topic: str) -> List[Dict[str, Any]]:
        return [payload for t, payload, _ in self.published if t == topic]

    async def connect(self) -> bool:
        self._connected = True
        logger.info(f"Simulation transport connected as {self.topics.thing_name}")
        self._notify_connection(True, None)
        return True

    async def disconnect(self) -> bool:
        self._connected = False
        logger.info("Simulation transport disconnected")
        self._notify_connection(False, "disconnect requested")
        return True

    def is_connected(self) -> bool:
        return self._connected

    def publish(self, topic: str, payload: Dict[str, Any], qos: int = 0) -> asyncio.Future:
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        if not self._connected or self.fail_publishes:
            future.set_exception(TransportError(f"Simulated publish failure on {topic}"))
            return future

        self.published.append((topic, payload, qos))
        future.set_result(len(self.published))
        if self.auto_respond:
            loop.call_soon(self._respond, topic, payload)
        return future

    def subscribe(self, topic: str, qos: int, on_message: MessageCallback) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        if not self._connected:
            future.set_exception(TransportError(f"Cannot subscribe to {topic}: not connected"))
            return future
        self.subscriptions[topic] = (qos, on_message)
        future.set_result([qos])
        return future

    def deliver(self, topic: str, payload: Any) -> int:
        """Deliver a message to every matching subscription; returns the match count."""
        raw = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        matched = 0
        for topic_filter, (_, on_message) in list(self.subscriptions.items()):
            if topic_matches_sub(topic_filter, topic):
                on_message(topic, raw)
                matched += 1
        if not matched:
            logger.debug(f"No subscriber for simulated delivery on {topic}")
        return matched

    # -- simulated jobs service ------------------------------------------------

    def _respond(self, topic: str, payload: Dict[str, Any]) -> None:
        topics = self.topics
        base = {"timestamp": int(time.time()), "clientToken": payload.get("clientToken")}

        if topic == topics.start_next:
            response = dict(base)
            if self._queued:
                execution = self._queued.popleft()
                execution["status"] = JobStatus.IN_PROGRESS.value
                self._in_progress[execution["jobId"]] = execution
                response["execution"] = execution
            self.deliver(topics.start_next_accepted, response)
        elif topic == topics.get_pending:
            response = dict(base)
            response["inProgressJobs"] = [self._summary(e) for e in self._in_progress.values()]
            response["queuedJobs"] = [self._summary(e) for e in self._queued]
            self.deliver(topics.get_pending_accepted, response)
        elif topic.startswith(f"{topics.prefix}/") and topic.endswith("/update"):
            job_id = topic[len(topics.prefix) + 1:-len("/update")]
            if job_id in self._in_progress:
                del self._in_progress[job_id]
                self._completed[job_id] = payload.get("status")
                self.deliver(f"{topic}/accepted", base)
            else:
                rejection = dict(base, code="ResourceNotFound", message=f"Job {job_id} not found")
                self.deliver(f"{topic}/rejected", rejection)

    @staticmethod
    def _summary(execution: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "jobId": execution["jobId"],
            "versionNumber": execution.get("versionNumber"),
            "executionNumber": execution.get("executionNumber"),
        }
