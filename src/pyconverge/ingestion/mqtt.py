"""MQTT telemetry runtime.

A threaded paho-mqtt client that subscribes to the telemetry topic,
decodes JSON payloads and hands them to the asyncio loop. The same
connection publishes candidate events back to the broker.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from pyconverge.config import MqttSettings
from pyconverge.exceptions import PublishError


@dataclass(frozen=True)
class TelemetryMessage:
    """Decoded MQTT telemetry message."""

    topic: str
    payload: Any


def decode_payload(payload: bytes) -> Any:
    """Decode a UTF-8 JSON MQTT payload."""
    return json.loads(payload.decode("utf-8"))


class TelemetryMqttRuntime:
    """Threaded paho-mqtt runtime feeding decoded telemetry to an asyncio loop.

    paho runs its network loop on its own thread; every decoded message
    is handed to *on_message* through ``call_soon_threadsafe`` so the
    engine only ever touches agent state from the loop thread.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_message: Callable[[TelemetryMessage], None],
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._deliver = on_message
        self._log = logger or logging.getLogger(__name__)
        self._mqtt: mqtt.Client | None = None
        self._connected_once = False
        self._telemetry_topic: str | None = None

    @property
    def is_running(self) -> bool:
        return self._mqtt is not None

    def start(self, settings: MqttSettings) -> None:
        """Connect to the broker and subscribe to the telemetry topic.

        Blocking; call it from an executor when running inside the loop.
        """
        self.stop()
        self._log.debug(
            "Starting MQTT telemetry bridge broker=%s:%s topic=%s tls=%s",
            settings.host,
            settings.port,
            settings.telemetry_topic,
            settings.tls,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=settings.client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._log)
        if settings.username:
            client.username_pw_set(settings.username, settings.password)
        if settings.tls:
            client.tls_set()
        client.on_connect = self._handle_connect
        client.on_message = self._handle_message
        client.on_disconnect = self._handle_disconnect

        self._telemetry_topic = settings.telemetry_topic
        client.connect(settings.host, settings.port, keepalive=settings.keepalive)
        client.loop_start()
        self._mqtt = client

    # paho callbacks (network thread)

    def _handle_connect(
        self, client: mqtt.Client, _userdata: Any, _flags: Any, reason_code: Any, _props: Any
    ) -> None:
        if reason_code.is_failure:
            self._log.warning("MQTT broker refused connection: %s", reason_code)
            return
        if self._connected_once:
            self._log.debug("MQTT reconnected, resubscribing")
        self._connected_once = True
        # Subscriptions do not survive a clean-start reconnect.
        if self._telemetry_topic:
            client.subscribe(self._telemetry_topic, qos=0)

    def _handle_message(self, _client: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
        try:
            payload = decode_payload(msg.payload)
        except (UnicodeDecodeError, ValueError):
            self._log.warning("Dropping undecodable telemetry on topic=%s", msg.topic)
            self._log.debug("MQTT payload decode failure", exc_info=True)
            return
        self._loop.call_soon_threadsafe(self._deliver, TelemetryMessage(topic=msg.topic, payload=payload))

    def _handle_disconnect(
        self, _client: mqtt.Client, _userdata: Any, _flags: Any, reason_code: Any, _props: Any
    ) -> None:
        if self._mqtt is not None:
            self._log.debug("MQTT connection lost (%s); paho will reconnect", reason_code)

    def publish(self, topic: str, payload: dict[str, Any]) -> None:
        """Publish a JSON payload; paho queues it from any thread."""
        client = self._mqtt
        if client is None:
            raise PublishError("MQTT runtime is not running", sink="mqtt")
        info = client.publish(topic, json.dumps(payload, separators=(",", ":")), qos=0)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(f"MQTT publish to {topic} failed rc={info.rc}", sink="mqtt")

    def stop(self) -> None:
        """Disconnect and stop the network thread. Safe to call repeatedly."""
        client, self._mqtt = self._mqtt, None
        self._telemetry_topic = None
        self._connected_once = False
        if client is None:
            return
        try:
            client.disconnect()
        finally:
            client.loop_stop()
            self._log.debug("MQTT telemetry bridge stopped")
