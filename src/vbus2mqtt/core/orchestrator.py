"""Orchestration: bus event pump, timers, inbound setpoints and health (Python 3.12)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine, Protocol

from .arbiter import BusArbiter
from .bridge import MqttBridge
from .constants import (
    BUS_POLL_ATTEMPTS,
    BUS_POLL_INTERVAL,
    INBOUND_QUEUE_SIZE,
    MAX_HEALTH_FAILURES,
)
from .consolidator import ConsolidationEngine
from .exceptions import TransportError
from .field_map import FieldMap
from .fields import decode_fields
from .header_set import Header, HeaderSetSnapshot
from .interfaces import BusConnection, ConnectionState, FieldSpecification
from .mqtt_publisher import InboundMessage, MQTTPublisher
from .publish_cycle import PublishCycle
from .retry import RetryPolicy
from .settling import SettlingDetector
from .value_accessor import DEFAULT_VALUE_POLICY, ValueAccessor


logger = logging.getLogger(__name__)


class PublishFn(Protocol):
    def __call__(self, topic: str, value: int | float | bool | str) -> None: ...


async def health_check(
    mqtt_publisher: MQTTPublisher | None,
    connection_state: ConnectionState,
    publish_fn: PublishFn,
) -> bool:
    try:
        health_status = {
            "mqtt_connected": bool(mqtt_publisher and mqtt_publisher.is_connected()),
            "bus_connected": connection_state == ConnectionState.CONNECTED,
        }
        for key, value in health_status.items():
            publish_fn(f"health/{key}", value)
        overall_health = all(health_status.values())
        publish_fn("health/overall", overall_health)
        if not overall_health:
            logger.warning("Health check failed: %s", health_status)
        else:
            logger.debug("Health check passed")
        return overall_health
    except Exception:
        logger.exception("health_check error")
        publish_fn("health/overall", False)
        return False


class Orchestrator:
    """Owns the bridge components and runs them on one event loop.

    `run()` returns only by raising: a TransportError from any task cancels
    the others and propagates to the caller.
    """

    def __init__(
        self,
        connection: BusConnection,
        specification: FieldSpecification,
        publisher: MQTTPublisher,
        field_map: FieldMap,
        *,
        logging_interval: float,
        logging_ttl: float = 0,
        mqtt_interval: float = 0,
        encoding: str = "json",
        value_policy: RetryPolicy = DEFAULT_VALUE_POLICY,
        save: bool = False,
        health_check_interval: float = 0,
        bus_poll_interval: float = BUS_POLL_INTERVAL,
        bus_poll_attempts: int = BUS_POLL_ATTEMPTS,
    ) -> None:
        self.connection = connection
        self.specification = specification
        self.publisher = publisher
        self.health_check_interval = health_check_interval

        self.engine = ConsolidationEngine(logging_interval, logging_ttl)
        self.engine.add_listener(self._on_header_set)
        self.settling = SettlingDetector(self._on_settled)
        self.arbiter = BusArbiter(
            connection, poll_interval=bus_poll_interval, attempts=bus_poll_attempts
        )
        self.accessor = ValueAccessor(connection, value_policy)
        self.bridge = MqttBridge(
            publisher,
            field_map,
            self.arbiter,
            self.accessor,
            encoding=encoding,
            save=save,
            policy=value_policy,
        )
        self.cycle = PublishCycle(
            self.engine,
            specification,
            self.bridge,
            self.arbiter,
            self.accessor,
            mqtt_interval,
            policy=value_policy,
        )
        self.connection_state = ConnectionState.DISCONNECTED
        self._was_connected = False

    def _on_settled(self, snapshot: HeaderSetSnapshot) -> None:
        fields = decode_fields(self.specification, snapshot.get_headers())
        logger.debug("\n".join(f"{f.id}: {f.name}" for f in fields))

    def _on_header_set(self, snapshot: HeaderSetSnapshot) -> None:
        logger.debug("Header set consolidated: %d header(s)", len(snapshot))

    def handle_event(self, event: Header | ConnectionState) -> None:
        if isinstance(event, Header):
            self.settling.add_header(event)
            self.engine.add_header(event)
            return

        logger.debug("Connection state changed to %s", event)
        self.connection_state = event
        if event == ConnectionState.CONNECTED:
            self._was_connected = True
        elif event == ConnectionState.DISCONNECTED and self._was_connected:
            raise TransportError("Bus connection lost")

    async def connect(self) -> None:
        logger.debug("Connecting to VBus...")
        try:
            await self.connection.connect()
        except OSError as exc:
            raise TransportError(f"Bus connect failed: {exc}") from exc
        self.connection_state = ConnectionState.CONNECTED
        self._was_connected = True
        logger.debug("Connected to VBus...")

    async def pump_bus_events(self) -> None:
        async for event in self.connection.events():
            self.handle_event(event)
        raise TransportError("Bus event stream ended")

    async def watch_mqtt(self) -> None:
        reason = await self.publisher.wait_for_loss()
        raise TransportError(f"MQTT connection lost: {reason}")

    async def health_loop(self) -> None:
        failures = 0
        while True:
            await asyncio.sleep(self.health_check_interval)
            ok = await health_check(
                self.publisher, self.connection_state, self.publisher.publish
            )
            failures = 0 if ok else failures + 1
            if failures >= MAX_HEALTH_FAILURES:
                raise TransportError(f"Health check failed {failures} times in a row")

    def _tasks(self) -> list[Callable[[], Coroutine[Any, Any, None]]]:
        tasks: list[Callable[[], Coroutine[Any, Any, None]]] = [self.pump_bus_events]
        if self.cycle.enabled:
            inbound: asyncio.Queue[InboundMessage] = asyncio.Queue(maxsize=INBOUND_QUEUE_SIZE)
            self.publisher.attach_inbound(asyncio.get_running_loop(), inbound)
            self.bridge.subscribe_setpoints()
            tasks.append(self.cycle.run)
            tasks.append(lambda: self.bridge.run_inbound(inbound))
            tasks.append(self.watch_mqtt)
        if self.health_check_interval > 0 and self.cycle.enabled:
            tasks.append(self.health_loop)
        return tasks

    async def run(self) -> None:
        await self.connect()
        self.engine.start_timer()
        running = [asyncio.create_task(factory()) for factory in self._tasks()]
        try:
            done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                task.result()
        finally:
            for task in running:
                task.cancel()
            await asyncio.gather(*running, return_exceptions=True)
            await self.engine.stop_timer()

    async def close(self) -> None:
        try:
            await self.connection.disconnect()
        except Exception:
            logger.exception("Error disconnecting from VBus")
