"""MQTT Publisher (Python 3.12).

Encapsulates the paho-mqtt client lifecycle, publishing under the root topic,
setpoint subscriptions and the hand-over of inbound messages from paho's
network thread to the asyncio event loop.
"""

from __future__ import annotations

from typing import Any
import asyncio
import time
import logging
import ssl
from enum import StrEnum

import paho.mqtt.client as mqtt

from .exceptions import TransportError


logger = logging.getLogger(__name__)


class TLSVersion(StrEnum):
    TLSv1 = "TLSv1"
    TLSv1_1 = "TLSv1.1"
    TLSv1_2 = "TLSv1.2"

    def to_protocol(self) -> int:
        # Map to ssl protocol constants
        if self is TLSVersion.TLSv1:
            return ssl.PROTOCOL_TLSv1
        if self is TLSVersion.TLSv1_1:
            return ssl.PROTOCOL_TLSv1_1
        return ssl.PROTOCOL_TLSv1_2


class VerifyMode(StrEnum):
    CERT_NONE = "CERT_NONE"
    CERT_OPTIONAL = "CERT_OPTIONAL"
    CERT_REQUIRED = "CERT_REQUIRED"

    def to_cert_reqs(self) -> int:
        if self is VerifyMode.CERT_NONE:
            return ssl.CERT_NONE
        if self is VerifyMode.CERT_OPTIONAL:
            return ssl.CERT_OPTIONAL
        return ssl.CERT_REQUIRED


InboundMessage = tuple[str, bytes]


class MQTTPublisher:
    """Publish values to an MQTT broker with optional TLS and auth."""

    def __init__(
        self,
        host: str,
        port: int,
        keepalive: int,
        clientid: str | None,
        base_topic: str,
        *,
        enable_timestamp: bool = False,
        tls_enabled: bool = False,
        tls_version: TLSVersion | str | None = None,
        verify_mode_name: VerifyMode | str | None = None,
        ca_path: str | None = None,
        tls_no_verify: bool = False,
        username: str | None = None,
        password: str | None = None,
        verbose: bool = False,
    ) -> None:
        self.host = host
        self.port = port
        self.keepalive = keepalive
        self.clientid = clientid or ""
        self.base_topic = base_topic.rstrip("/")
        self.enable_timestamp = enable_timestamp
        self.tls_enabled = tls_enabled
        self.tls_version = tls_version
        self.verify_mode_name = verify_mode_name
        self.ca_path = ca_path
        self.tls_no_verify = tls_no_verify
        self.username = username
        self.password = password
        self.verbose = verbose

        self.client: mqtt.Client | None = None
        self._connected: bool = False
        self._subscriptions: list[str] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._inbound: asyncio.Queue[InboundMessage] | None = None
        self._lost: asyncio.Future[str] | None = None
        self._pending_loss: str | None = None
        self._closing = False

    def initialize(self) -> mqtt.Client:
        """Create and configure the underlying MQTT client.

        Returns the configured `paho.mqtt.client.Client` instance. This method
        does not establish a network connection; call `connect()` followed by
        `start_loop()` to initiate the connection lifecycle.
        """
        logger.debug("Starting MQTT")
        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, self.clientid)

        if self.tls_enabled:
            cert_reqs = (
                VerifyMode(self.verify_mode_name).to_cert_reqs()
                if self.verify_mode_name
                else None
            )
            tls_ver = (
                TLSVersion(self.tls_version).to_protocol() if self.tls_version else None
            )
            self.client.tls_set(
                ca_certs=self.ca_path or None, cert_reqs=cert_reqs, tls_version=tls_ver
            )
            self.client.tls_insecure_set(self.tls_no_verify)

        if self.verbose:
            self.client.enable_logger()

        if self.username is not None and self.password is not None:
            self.client.username_pw_set(self.username, self.password)

        self.client.will_set(self.topic("info/connection"), "False", retain=True)
        self.client.reconnect_delay_set(min_delay=1, max_delay=60)

        self.client.on_connect = self._on_connect
        self.client.on_connect_fail = self._on_connect_fail
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message
        return self.client

    def connect(self) -> None:
        """Initiate a connection to the MQTT broker.

        Uses async connect so the network loop manages (re)connects. Start the
        network loop via `start_loop()` after calling this method.
        """
        if self.client is None:
            return
        try:
            self.client.connect_async(self.host, self.port, self.keepalive)
        except (OSError, ValueError) as exc:
            raise TransportError(
                f"MQTT connect to {self.host}:{self.port} failed: {exc}"
            ) from exc

    def start_loop(self) -> None:
        """Start the MQTT network loop in a background thread."""
        if self.client is not None:
            self.client.loop_start()

    def stop_loop(self) -> None:
        """Stop the MQTT network loop if running."""
        if self.client is not None:
            self.client.loop_stop()

    def disconnect(self) -> None:
        """Disconnect from the broker and emit a final connection-status message."""
        self._closing = True
        if self.client is not None:
            try:
                self.publish("info/connection", False, retain=True)
            except Exception:
                logger.debug("Publish during disconnect failed", exc_info=True)
            self.client.disconnect()

    def topic(self, topic: str = "") -> str:
        """Full topic under `base_topic`; an empty topic is the root topic."""
        return f"{self.base_topic}/{topic}" if topic else self.base_topic

    def publish(
        self, topic: str, value: str | int | float | bool, *, retain: bool = False
    ) -> None:
        """Publish a value under `base_topic` and optionally a timestamp.

        No exception is raised on failure; errors are logged and the caller
        can inspect `is_connected()` for current connection state.
        """
        if self.client is None:
            return
        try:
            full_topic = self.topic(topic)
            logger.debug("Publishing to MQTT - Topic: %s, Value: %s", full_topic, value)
            self.client.publish(full_topic, str(value), retain=retain)
            if self.enable_timestamp:
                self.client.publish(f"{full_topic}/timestamp", time.time(), retain=True)
        except Exception:
            logger.exception("MQTT publish error")

    def subscribe(self, topic: str) -> None:
        """Subscribe to `topic` under `base_topic`; kept across reconnects."""
        full_topic = self.topic(topic)
        if full_topic not in self._subscriptions:
            self._subscriptions.append(full_topic)
        if self.client is not None and self._connected:
            self.client.subscribe(full_topic)
        logger.info("Subscribed to %s", full_topic)

    def attach_inbound(
        self,
        loop: asyncio.AbstractEventLoop,
        queue: asyncio.Queue[InboundMessage],
    ) -> None:
        """Deliver inbound messages into `queue` on `loop`.

        Also arms the loss notification awaited by `wait_for_loss()`; a loss
        reported before this call is delivered immediately.
        """
        self._loop = loop
        self._inbound = queue
        self._lost = loop.create_future()
        if self._pending_loss is not None:
            self._set_lost(self._pending_loss)

    async def wait_for_loss(self) -> str:
        """Block until the broker connection is lost; return the reason."""
        if self._lost is None:
            raise RuntimeError("attach_inbound() must be called first")
        return await self._lost

    def is_connected(self) -> bool:
        """Return True if the client is currently connected to the broker."""
        return bool(self._connected and self.client and self.client.is_connected())

    def _set_lost(self, reason: str) -> None:
        if self._lost is not None and not self._lost.done():
            self._lost.set_result(reason)

    def _report_loss(self, reason: str) -> None:
        # called from paho's network thread
        if self._closing:
            return
        logger.error("MQTT connection lost: %s", reason)
        if self._loop is None or self._loop.is_closed():
            self._pending_loss = reason
            return
        self._loop.call_soon_threadsafe(self._set_lost, reason)

    def _enqueue(self, message: InboundMessage) -> None:
        if self._inbound is None:
            return
        try:
            self._inbound.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(
                "Inbound queue full, dropping message on %s",
                message[0],
                extra={"topic": message[0]},
            )

    # Internal callbacks, called from paho's network thread
    def _on_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any | None,
    ) -> None:
        """paho-mqtt on_connect callback."""
        if getattr(reason_code, "is_failure", False):
            self._report_loss(f"broker refused connection: {reason_code}")
            return
        logger.info("Connected to MQTT broker with result code %s", reason_code)
        self._connected = True
        for full_topic in self._subscriptions:
            client.subscribe(full_topic)
        try:
            self.publish("info/connection", True, retain=True)
        except Exception:
            logger.debug("Initial connection publish failed", exc_info=True)

    def _on_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any | None = None,
    ) -> None:
        """paho-mqtt on_disconnect callback."""
        logger.info("Disconnected from MQTT broker with result code %s", reason_code)
        self._connected = False
        self._report_loss(f"disconnected: {reason_code}")

    def _on_connect_fail(self, client: mqtt.Client, userdata: Any) -> None:
        """paho-mqtt on_connect_fail callback (broker unreachable)."""
        self._report_loss(f"cannot reach {self.host}:{self.port}")

    def _on_message(self, client: mqtt.Client, userdata: Any, message: Any) -> None:
        """paho-mqtt on_message callback."""
        logger.debug("MQTT message on %s: %r", message.topic, message.payload)
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(
            self._enqueue, (message.topic, bytes(message.payload))
        )
