"""
Pytest configuration and shared fixtures for the device jobs agent tests.
"""
import os

# Keep test runs off the filesystem and deterministic before device_agent is imported
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("LOG_MARKERS_ASCII", "true")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import pytest
import pytest_asyncio

from device_agent.config import AgentConfig
from device_agent.jobs.model import JobRequest
from device_agent.jobs.state import AgentState
from device_agent.transport.simulation import SimulationTransport
from tests.utils.fake_clock import FakeClock

THING_NAME = "device-1"


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: Unit tests - fast, isolated, no broker")
    config.addinivalue_line("markers", "integration: Integration tests - full agent against the simulation transport")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def thing_name():
    return THING_NAME


@pytest.fixture
def job_request():
    return JobRequest(THING_NAME)


@pytest.fixture
def agent_state():
    return AgentState()


@pytest.fixture
def agent_config():
    return AgentConfig(
        client_id=THING_NAME,
        transport_type="simulation",
        watchdog_timeout=30.0,
        solicit_interval=10.0,
        connect_timeout=1.0,
    )


@pytest_asyncio.fixture
async def transport():
    """Connected simulation transport that only records publishes."""
    sim = SimulationTransport(THING_NAME, auto_respond=False)
    await sim.connect()
    yield sim
    await sim.disconnect()


@pytest_asyncio.fixture
async def jobs_service():
    """Simulation transport that answers like the jobs service. Not connected yet."""
    sim = SimulationTransport(THING_NAME, auto_respond=True)
    yield sim
    if sim.is_connected():
        await sim.disconnect()
