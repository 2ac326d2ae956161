"""
Tests for the in-process jobs service and the transport factory.
"""
import pytest

from device_agent.config import AgentConfig
from device_agent.jobs.topics import JobTopics
from device_agent.transport.factory import TransportFactory
from device_agent.transport.interface import TransportError
from device_agent.transport.simulation import SimulationTransport
from tests.utils.async_helpers import settle

pytestmark = pytest.mark.unit

TOPICS = JobTopics("device-1")


async def listening(service):
    """Connect the service and capture everything it answers with."""
    received = []
    await service.connect()
    await service.subscribe(f"{TOPICS.prefix}/#", 0, lambda topic, raw: received.append(topic))
    return received


@pytest.mark.asyncio
async def test_start_next_hands_out_queued_job(jobs_service):
    received = await listening(jobs_service)
    jobs_service.add_job("job-42", {"operation": "reboot"})

    await jobs_service.publish(TOPICS.start_next, {"clientToken": "device-1"})
    await settle()

    assert received == [TOPICS.start_next_accepted]


@pytest.mark.asyncio
async def test_update_completes_in_progress_job(jobs_service):
    received = await listening(jobs_service)
    jobs_service.add_job("job-42")
    await jobs_service.publish(TOPICS.start_next, {"clientToken": "device-1"})
    await settle()

    await jobs_service.publish(TOPICS.update("job-42"), {"status": "SUCCEEDED", "clientToken": "device-1"})
    await settle()

    assert received[-1] == f"{TOPICS.update('job-42')}/accepted"
    assert jobs_service.completed_jobs() == {"job-42": "SUCCEEDED"}


@pytest.mark.asyncio
async def test_update_for_unknown_job_is_rejected(jobs_service):
    received = await listening(jobs_service)

    await jobs_service.publish(TOPICS.update("unknown"), {"status": "SUCCEEDED", "clientToken": "device-1"})
    await settle()

    assert received == [f"{TOPICS.update('unknown')}/rejected"]
    assert jobs_service.completed_jobs() == {}


@pytest.mark.asyncio
async def test_get_pending_lists_jobs(jobs_service):
    listings = []
    await jobs_service.connect()
    await jobs_service.subscribe(TOPICS.get_pending_accepted, 0, lambda topic, raw: listings.append(raw))
    jobs_service.add_job("q1")

    await jobs_service.publish(TOPICS.get_pending, {"clientToken": "device-1"})
    await settle()

    assert len(listings) == 1
    assert b'"q1"' in listings[0]


@pytest.mark.asyncio
async def test_publish_while_disconnected_fails():
    service = SimulationTransport("device-1")

    with pytest.raises(TransportError):
        await service.publish(TOPICS.start_next, {})
    assert service.published == []


@pytest.mark.asyncio
async def test_deliver_matches_wildcards(transport):
    hits = []
    await transport.subscribe(TOPICS.update_accepted, 0, lambda topic, raw: hits.append(topic))

    assert transport.deliver(f"{TOPICS.prefix}/job-1/update/accepted", {}) == 1
    assert transport.deliver(TOPICS.start_next_accepted, {}) == 0
    assert hits == [f"{TOPICS.prefix}/job-1/update/accepted"]


class TestTransportFactory:
    def test_simulation(self):
        transport = TransportFactory.create_transport(AgentConfig(client_id="device-1", transport_type="simulation"))
        assert isinstance(transport, SimulationTransport)
        assert transport.topics.thing_name == "device-1"

    def test_mqtt(self):
        from device_agent.transport.mqtt import MqttTransport

        transport = TransportFactory.create_transport(AgentConfig(client_id="device-1", transport_type="MQTT"))
        assert isinstance(transport, MqttTransport)
        assert not transport.is_connected()

    def test_invalid_type(self):
        with pytest.raises(ValueError):
            TransportFactory.create_transport(AgentConfig(transport_type="serial"))
