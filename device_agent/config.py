"""
Configuration settings for the device jobs agent.

Notes on validation:
- This module intentionally avoids raising on import so that tools like
  `device-agent --doctor` can run even when certificate settings are missing.
  Startup code calls `AgentConfig.validate()` when strict enforcement is
  required.
"""
import os
import random
from dataclasses import dataclass, field, replace
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_float(name: str, default: float) -> float:
    try:
        value = float(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _env_int(name: str, default: int) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


# Transport configuration
TRANSPORT_TYPE = os.getenv("TRANSPORT_TYPE", "mqtt")  # 'mqtt' or 'simulation'
AWS_IOT_ENDPOINT = os.getenv("AWS_IOT_ENDPOINT")
AWS_IOT_PORT = _env_int("AWS_IOT_PORT", 8883)
CLIENT_CERT = os.getenv("CLIENT_CERT")
CLIENT_KEY = os.getenv("CLIENT_KEY")
CA_CERT = os.getenv("CA_CERT")
KEEPALIVE = _env_int("KEEPALIVE", 60)
CONNECT_TIMEOUT = _env_float("CONNECT_TIMEOUT", 10.0)

# Device identity
DEFAULT_CLIENT_ID = "aukes-device"
CLIENT_ID = os.getenv("CLIENT_ID", DEFAULT_CLIENT_ID)
DEFAULT_TOPIC = "test-topic"
TOPIC = os.getenv("TOPIC", DEFAULT_TOPIC)

# Job loop timing (seconds)
WATCHDOG_TIMEOUT = _env_float("WATCHDOG_TIMEOUT", 30.0)
SOLICIT_INTERVAL = _env_float("SOLICIT_INTERVAL", 10.0)
STATUS_LOG_INTERVAL = _env_float("STATUS_LOG_INTERVAL", 300.0)

# QoS used for every jobs topic (0 or 1)
JOBS_QOS = 1 if os.getenv("JOBS_QOS", "0") == "1" else 0

TRANSPORT_TYPES = ("mqtt", "simulation")


class ConfigurationError(ValueError):
    """Raised when required agent settings are missing or invalid."""

    def __init__(self, missing: List[str]):
        self.missing = missing
        super().__init__(f"Missing or invalid configuration: {', '.join(missing)}")


def resolve_client_id(client_id: Optional[str]) -> str:
    """Return the client id, or a randomized test identity when it is empty."""
    if client_id:
        return client_id
    return f"test-{random.randint(0, 99999999)}"


@dataclass(frozen=True)
class AgentConfig:
    """Single validated configuration passed into connection setup."""

    client_id: str = DEFAULT_CLIENT_ID
    endpoint: Optional[str] = None
    port: int = 8883
    client_cert: Optional[str] = None
    client_key: Optional[str] = None
    ca_cert: Optional[str] = None
    transport_type: str = "mqtt"
    topic: str = DEFAULT_TOPIC
    verbosity: str = "info"
    keepalive: int = 60
    connect_timeout: float = 10.0
    watchdog_timeout: float = 30.0
    solicit_interval: float = 10.0
    status_log_interval: float = 300.0
    qos: int = JOBS_QOS
    # Session persistence across reconnects is required by the jobs service
    clean_session: bool = field(default=False, init=False)

    @classmethod
    def from_env(cls, **overrides) -> "AgentConfig":
        """Build a config from environment defaults, applying non-None overrides."""
        config = cls(
            client_id=resolve_client_id(CLIENT_ID),
            endpoint=AWS_IOT_ENDPOINT,
            port=AWS_IOT_PORT,
            client_cert=CLIENT_CERT,
            client_key=CLIENT_KEY,
            ca_cert=CA_CERT,
            transport_type=TRANSPORT_TYPE,
            topic=TOPIC,
            keepalive=KEEPALIVE,
            connect_timeout=CONNECT_TIMEOUT,
            watchdog_timeout=WATCHDOG_TIMEOUT,
            solicit_interval=SOLICIT_INTERVAL,
            status_log_interval=STATUS_LOG_INTERVAL,
        )
        overrides = {k: v for k, v in overrides.items() if v is not None}
        if "client_id" in overrides:
            overrides["client_id"] = resolve_client_id(overrides["client_id"])
        return replace(config, **overrides)

    def missing_required_keys(self) -> List[str]:
        """Return a list of missing or invalid settings for the selected transport."""
        missing = []
        if not self.client_id:
            missing.append("CLIENT_ID")
        if self.transport_type not in TRANSPORT_TYPES:
            missing.append("TRANSPORT_TYPE")
        if self.watchdog_timeout <= 0:
            missing.append("WATCHDOG_TIMEOUT")
        if self.solicit_interval <= 0:
            missing.append("SOLICIT_INTERVAL")
        if self.transport_type == "mqtt":
            if not self.endpoint:
                missing.append("AWS_IOT_ENDPOINT")
            if not self.client_cert:
                missing.append("CLIENT_CERT")
            if not self.client_key:
                missing.append("CLIENT_KEY")
            if not self.ca_cert:
                missing.append("CA_CERT")
        return missing

    def validate(self) -> "AgentConfig":
        missing = self.missing_required_keys()
        if missing:
            raise ConfigurationError(missing)
        return self

    def describe(self) -> dict:
        """Loggable view of the config; certificate paths only, never contents."""
        return {
            "client_id": self.client_id,
            "endpoint": self.endpoint,
            "port": self.port,
            "transport": self.transport_type,
            "clean_session": self.clean_session,
            "watchdog_timeout": self.watchdog_timeout,
            "solicit_interval": self.solicit_interval,
            "client_cert": self.client_cert,
            "ca_cert": self.ca_cert,
        }
