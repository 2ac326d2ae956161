"""
paho-mqtt implementation of the jobs transport.

paho runs its network loop on its own thread (loop_start). Every paho callback
is handed to the asyncio loop with call_soon_threadsafe, so subscription
callbacks, ack futures and connection state only ever change on the loop
thread.
"""
import asyncio
import json
import logging
import ssl
import threading
from typing import Any, Dict, Optional, Tuple

import paho.mqtt.client as mqtt

from device_agent.config import AgentConfig
from device_agent.log_setup import get_transport_logger, OK_MARK, WARN_MARK
from device_agent.transport.interface import MessageCallback, TransportConnection, TransportError

logger = get_transport_logger()


class MqttTransport(TransportConnection):
    """Mutual-TLS MQTT session with a persistent (clean_session=False) broker session."""

    def __init__(self, config: AgentConfig) -> None:
        super().__init__()
        self._config = config
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._client: Optional[mqtt.Client] = None
        self._connected = False
        self._connect_future: Optional[asyncio.Future] = None
        self._subscriptions: Dict[str, Tuple[int, MessageCallback]] = {}

        # mid -> ack future; acks that arrive before the future is registered park in _early_acks
        self._pending_acks: Dict[int, asyncio.Future] = {}
        self._early_acks: Dict[int, Tuple[Any, Optional[str]]] = {}
        self._ack_lock = threading.Lock()

    def _build_client(self) -> mqtt.Client:
        config = self._config
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=config.client_id,
            clean_session=config.clean_session,
            protocol=mqtt.MQTTv311,
        )
        try:
            client.tls_set(
                ca_certs=config.ca_cert,
                certfile=config.client_cert,
                keyfile=config.client_key,
                cert_reqs=ssl.CERT_REQUIRED,
                tls_version=ssl.PROTOCOL_TLS_CLIENT,
            )
        except (OSError, ValueError, ssl.SSLError) as e:
            raise TransportError(f"Failed to load TLS material: {e}") from e
        client.tls_insecure_set(False)
        client.enable_logger(logging.getLogger("paho.mqtt.client"))
        client.reconnect_delay_set(min_delay=1, max_delay=120)

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_publish = self._on_publish
        client.on_subscribe = self._on_subscribe
        return client

    # -- loop-thread bridging ------------------------------------------------

    def _dispatch(self, callback, *args) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug(f"Dropping transport callback {getattr(callback, '__name__', callback)}: loop closed")
            return
        loop.call_soon_threadsafe(callback, *args)

    @staticmethod
    def _resolve(future: asyncio.Future, result: Any, error: Optional[str]) -> None:
        if future.done():
            return
        if error:
            future.set_exception(TransportError(error))
        else:
            future.set_result(result)

    def _ack_arrived(self, mid: int, result: Any, error: Optional[str]) -> None:
        """Network thread: an ack for mid arrived."""
        with self._ack_lock:
            future = self._pending_acks.pop(mid, None)
            if future is None:
                self._early_acks[mid] = (result, error)
                return
        self._dispatch(self._resolve, future, result, error)

    def _track_ack(self, mid: int, future: asyncio.Future) -> None:
        """Loop thread: register the future for mid unless its ack already arrived."""
        with self._ack_lock:
            early = self._early_acks.pop(mid, None)
            if early is None:
                self._pending_acks[mid] = future
                return
        self._resolve(future, *early)

    # -- paho callbacks (network thread) ---------------------------------------

    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        ok = not reason_code.is_failure
        session_present = bool(getattr(flags, "session_present", False))
        self._dispatch(self._handle_connect, ok, str(reason_code), session_present)

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties) -> None:
        self._dispatch(self._handle_disconnect, str(reason_code))

    def _on_publish(self, client, userdata, mid, reason_code, properties) -> None:
        error = f"publish rejected: {reason_code}" if reason_code.is_failure else None
        self._ack_arrived(mid, mid, error)

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties) -> None:
        failures = [str(rc) for rc in reason_code_list if rc.is_failure]
        error = f"subscription refused: {', '.join(failures)}" if failures else None
        self._ack_arrived(mid, [rc.value for rc in reason_code_list], error)

    # -- loop-thread handlers --------------------------------------------------

    def _handle_connect(self, ok: bool, reason: str, session_present: bool) -> None:
        self._connected = ok
        if self._connect_future is not None and not self._connect_future.done():
            self._connect_future.set_result(ok)
        if not ok:
            logger.error(f"Connection refused by {self._config.endpoint}: {reason}")
            self._notify_connection(False, reason)
            return

        logger.info(f"{OK_MARK} Connected to {self._config.endpoint} (session present: {session_present})")
        self._notify_connection(True, None)
        if not session_present and self._subscriptions:
            logger.info(f"Broker session lost; restoring {len(self._subscriptions)} subscriptions")
            for topic, (qos, on_message) in list(self._subscriptions.items()):
                self.subscribe(topic, qos, on_message).add_done_callback(self._log_resubscribe)

    def _handle_disconnect(self, reason: str) -> None:
        was_connected = self._connected
        self._connected = False
        if self._connect_future is not None and not self._connect_future.done():
            self._connect_future.set_result(False)
        if was_connected:
            logger.warning(f"{WARN_MARK} Disconnected from {self._config.endpoint}: {reason}")
        self._notify_connection(False, reason)

    @staticmethod
    def _log_resubscribe(future: asyncio.Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Failed to restore subscription: {error}")

    # -- TransportConnection -----------------------------------------------------

    async def connect(self) -> bool:
        self._loop = asyncio.get_running_loop()
        if self._client is None:
            self._client = self._build_client()

        config = self._config
        logger.info(f"Connecting to {config.endpoint}:{config.port} as {config.client_id}")
        self._connect_future = self._loop.create_future()
        try:
            self._client.connect_async(config.endpoint, config.port, keepalive=config.keepalive)
        except (OSError, ValueError) as e:
            raise TransportError(f"Failed to start connection to {config.endpoint}: {e}") from e
        self._client.loop_start()
        return await self._connect_future

    async def disconnect(self) -> bool:
        if self._client is None:
            return True
        try:
            rc = self._client.disconnect()
        finally:
            await asyncio.get_running_loop().run_in_executor(None, self._client.loop_stop)
        self._connected = False
        if rc != mqtt.MQTT_ERR_SUCCESS:
            logger.warning(f"Disconnect returned {mqtt.error_string(rc)}")
            return False
        logger.info("Transport disconnected")
        return True

    def is_connected(self) -> bool:
        return self._connected

    def _new_future(self) -> asyncio.Future:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop.create_future()

    def publish(self, topic: str, payload: Dict[str, Any], qos: int = 0) -> asyncio.Future:
        future = self._new_future()
        if self._client is None:
            future.set_exception(TransportError(f"Cannot publish to {topic}: not connected"))
            return future

        try:
            info = self._client.publish(topic, json.dumps(payload), qos=qos)
        except (TypeError, ValueError) as e:
            # paho rejects wildcard topics and bad qos with ValueError
            future.set_exception(TransportError(f"Publish to {topic!r} refused: {e}"))
            return future
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            future.set_exception(TransportError(f"Publish to {topic} failed: {mqtt.error_string(info.rc)}"))
            return future
        logger.debug(f"Published mid={info.mid} to {topic}")
        self._track_ack(info.mid, future)
        return future

    def subscribe(self, topic: str, qos: int, on_message: MessageCallback) -> asyncio.Future:
        future = self._new_future()
        if self._client is None:
            future.set_exception(TransportError(f"Cannot subscribe to {topic}: not connected"))
            return future

        def _route(client, userdata, message) -> None:
            self._dispatch(on_message, message.topic, message.payload)

        try:
            self._client.message_callback_add(topic, _route)
            rc, mid = self._client.subscribe(topic, qos)
        except ValueError as e:
            future.set_exception(TransportError(f"Subscribe to {topic!r} refused: {e}"))
            return future
        self._subscriptions[topic] = (qos, on_message)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            future.set_exception(TransportError(f"Subscribe to {topic} failed: {mqtt.error_string(rc)}"))
            return future
        self._track_ack(mid, future)
        return future
