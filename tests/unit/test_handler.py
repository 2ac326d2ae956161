"""
Tests for the job execution handshake.
"""
import pytest

from device_agent.jobs.handler import (
    JobExecutionHandler,
    decode_response,
    handle_next_job_accepted,
    handle_pending_jobs_accepted,
)
from device_agent.jobs.model import JobStatus, UNKNOWN_JOB_ID, UpdateRequest
from device_agent.jobs.solicitor import JobSolicitor
from device_agent.jobs.topics import JobTopics
from tests.utils.async_helpers import settle

pytestmark = pytest.mark.unit

TOPICS = JobTopics("device-1")


class TestNextJobAccepted:
    def test_update_correlates_with_offered_job(self, job_request):
        response = {"execution": {"jobId": "abc123", "status": "QUEUED"}}

        messages = handle_next_job_accepted(response, job_request)

        assert len(messages) == 1
        message = messages[0]
        assert message.update == UpdateRequest("abc123", "device-1", JobStatus.SUCCEEDED)
        assert message.topic == "$aws/things/device-1/jobs/abc123/update"
        assert message.payload["status"] == "SUCCEEDED"

    def test_missing_job_id_defaults_to_unknown(self, job_request):
        messages = handle_next_job_accepted({"execution": {"status": "QUEUED"}}, job_request)

        assert messages[0].update.job_id == UNKNOWN_JOB_ID
        assert messages[0].topic == TOPICS.update("unknown")

    @pytest.mark.parametrize("response", [{}, {"execution": None}, {"execution": "garbage"}])
    def test_missing_execution_still_reports_once(self, job_request, response):
        messages = handle_next_job_accepted(response, job_request)

        assert len(messages) == 1
        assert messages[0].update.job_id == UNKNOWN_JOB_ID
        assert messages[0].update.status is JobStatus.SUCCEEDED

    def test_qos_is_carried(self, job_request):
        messages = handle_next_job_accepted({"execution": {"jobId": "j"}}, job_request, qos=1)
        assert messages[0].qos == 1


def test_pending_jobs_listing_is_observation_only(job_request):
    response = {"inProgressJobs": [{"jobId": "a"}], "queuedJobs": [{"jobId": "b"}, "junk"]}
    assert handle_pending_jobs_accepted(response, job_request) == []


@pytest.mark.parametrize("raw, expected", [
    (b'{"execution": {"jobId": "x"}}', {"execution": {"jobId": "x"}}),
    (b"", {}),
    (b"not json", {}),
    (b"[1, 2]", {}),
    (b"\xff\xfe", {}),
])
def test_decode_response(raw, expected):
    assert decode_response("t", raw) == expected


@pytest.mark.asyncio
class TestJobExecutionHandler:
    async def _subscribed(self, transport, job_request, agent_state, **kwargs):
        handler = JobExecutionHandler(transport, job_request, agent_state, **kwargs)
        assert await handler.subscribe() is True
        return handler

    async def test_subscribes_to_response_topics(self, transport, job_request, agent_state):
        await self._subscribed(transport, job_request, agent_state)

        assert set(transport.subscriptions) == {
            TOPICS.start_next_accepted,
            TOPICS.get_pending_accepted,
            TOPICS.start_next_rejected,
            TOPICS.get_pending_rejected,
            TOPICS.update_accepted,
            TOPICS.update_rejected,
        }

    async def test_job_offer_publishes_exactly_one_update(self, transport, job_request, agent_state):
        handler = await self._subscribed(transport, job_request, agent_state)

        transport.deliver(TOPICS.start_next_accepted, {"execution": {"jobId": "abc123"}})

        updates = transport.published_to(TOPICS.update("abc123"))
        assert updates == [{"status": "SUCCEEDED", "clientToken": "device-1"}]
        assert len(transport.published) == 1
        assert handler.updates_published == 1

    async def test_in_flight_until_update_acknowledged(self, transport, job_request, agent_state):
        await self._subscribed(transport, job_request, agent_state)

        transport.deliver(TOPICS.start_next_accepted, {"execution": {"jobId": "abc123"}})
        assert agent_state.job_in_flight
        assert agent_state.current_job_id == "abc123"

        await settle()
        assert not agent_state.job_in_flight
        assert agent_state.current_job_id is None

    async def test_failed_update_clears_in_flight(self, transport, job_request, agent_state):
        handler = await self._subscribed(transport, job_request, agent_state)
        transport.fail_publishes = True

        transport.deliver(TOPICS.start_next_accepted, {"execution": {"jobId": "abc123"}})
        await settle()

        assert not agent_state.job_in_flight
        assert handler.updates_published == 1

    async def test_malformed_offer_is_defaulted_and_processing_continues(self, transport, job_request, agent_state):
        await self._subscribed(transport, job_request, agent_state)

        transport.deliver(TOPICS.start_next_accepted, b"{not json")
        await settle()
        transport.deliver(TOPICS.start_next_accepted, {"execution": {"jobId": "job-2"}})
        await settle()

        assert [t for t, _, _ in transport.published] == [TOPICS.update("unknown"), TOPICS.update("job-2")]

    async def test_rejections_and_listings_publish_nothing(self, transport, job_request, agent_state):
        await self._subscribed(transport, job_request, agent_state)

        transport.deliver(TOPICS.start_next_rejected, {"code": "InvalidRequest", "message": "bad"})
        transport.deliver(TOPICS.get_pending_rejected, b"garbage")
        transport.deliver(TOPICS.update_rejected.replace("+", "job-9"), {"code": "ResourceNotFound"})
        transport.deliver(TOPICS.update_accepted.replace("+", "job-9"), {})
        transport.deliver(TOPICS.get_pending_accepted, {"queuedJobs": [{"jobId": "q1"}]})
        await settle()

        assert transport.published == []

    async def test_inbound_traffic_reports_activity(self, transport, job_request, agent_state):
        seen = []
        await self._subscribed(transport, job_request, agent_state, on_activity=lambda: seen.append(1))

        transport.deliver(TOPICS.get_pending_accepted, {})
        transport.deliver(TOPICS.start_next_rejected, {})
        transport.deliver(TOPICS.start_next_accepted, {"execution": {"jobId": "a"}})

        assert len(seen) == 3

    async def test_failing_activity_hook_does_not_drop_job(self, transport, job_request, agent_state):
        def boom():
            raise RuntimeError("hook failed")

        await self._subscribed(transport, job_request, agent_state, on_activity=boom)

        transport.deliver(TOPICS.start_next_accepted, {"execution": {"jobId": "a"}})
        transport.deliver(TOPICS.start_next_accepted, {"execution": {"jobId": "b"}})

        assert [t for t, _, _ in transport.published] == [TOPICS.update("a"), TOPICS.update("b")]

    async def test_query_pending_jobs_publishes_once(self, transport, job_request, agent_state):
        handler = await self._subscribed(transport, job_request, agent_state)

        handler.query_pending_jobs()
        await settle()

        assert transport.published == [(TOPICS.get_pending, {"clientToken": "device-1"}, 0)]

    async def test_unexpected_publish_error_clears_in_flight(self, transport, job_request, agent_state, clock):
        await self._subscribed(transport, job_request, agent_state)

        def refuse(topic, payload, qos=0):
            raise ValueError("Publish topic cannot contain wildcards.")

        transport.publish = refuse
        transport.deliver(TOPICS.start_next_accepted, {"execution": {"jobId": "a+b"}})
        del transport.publish

        assert not agent_state.job_in_flight
        solicitor = JobSolicitor(transport, job_request, agent_state, interval=10.0, loop=clock)
        solicitor.start()
        clock.advance(30)
        assert solicitor.requests_sent == 3
        assert solicitor.ticks_skipped == 0
        solicitor.cancel()

    async def test_rejection_callback_errors_are_contained(self, transport, job_request, agent_state, monkeypatch):
        await self._subscribed(transport, job_request, agent_state)

        def broken_decode(topic, raw):
            raise RuntimeError("decoder exploded")

        monkeypatch.setattr("device_agent.jobs.handler.decode_response", broken_decode)
        transport.deliver(TOPICS.start_next_rejected, {"code": "InvalidRequest"})
        monkeypatch.undo()

        transport.deliver(TOPICS.start_next_accepted, {"execution": {"jobId": "job-2"}})
        assert transport.published_to(TOPICS.update("job-2")) == [{"status": "SUCCEEDED", "clientToken": "device-1"}]

    async def test_subscribe_failure_is_reported(self, job_request, agent_state):
        from device_agent.transport.simulation import SimulationTransport

        disconnected = SimulationTransport("device-1", auto_respond=False)
        handler = JobExecutionHandler(disconnected, job_request, agent_state)

        assert await handler.subscribe() is False
