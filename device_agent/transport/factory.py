"""
Factory for creating transport instances.
"""
from device_agent.config import AgentConfig
from device_agent.log_setup import get_transport_logger
from device_agent.transport.interface import TransportConnection
from device_agent.transport.simulation import SimulationTransport

logger = get_transport_logger()


class TransportFactory:
    """Factory for creating transport instances."""

    @staticmethod
    def create_transport(config: AgentConfig) -> TransportConnection:
        """
        Create a transport for the configured type. The transport is not connected yet.

        Raises:
            ValueError: If the transport type is invalid
        """
        transport_type = config.transport_type.lower()

        if transport_type == "simulation":
            logger.info("Creating simulation transport")
            return SimulationTransport(config.client_id)

        if transport_type == "mqtt":
            logger.info(f"Creating MQTT transport - endpoint: {config.endpoint}, port: {config.port}")
            # Lazy import so simulation-only runs never touch TLS setup
            from device_agent.transport.mqtt import MqttTransport
            return MqttTransport(config)

        raise ValueError(f"Invalid transport type: {config.transport_type}. Must be 'mqtt' or 'simulation'")
