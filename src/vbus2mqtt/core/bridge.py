"""Mapping between decoded fields and MQTT topics/payloads (Python 3.12).

Outbound, header fields are published as one root payload (JSON with a
heartbeat, or URL-encoded) and, for JSON, one topic per key. Inbound,
``<root>/<key>/set`` messages are validated and written to the controller.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Protocol
from urllib.parse import quote

from .arbiter import BusArbiter
from .constants import SET_TOPIC_SUFFIX
from .exceptions import (
    BusTimeout,
    MisconfiguredField,
    NoResponse,
    OutOfRange,
    TransportError,
)
from .field_map import FieldMap, WriteableValue
from .retry import RetryPolicy
from .value_accessor import ValueAccessor, format_value, to_physical, to_raw


logger = logging.getLogger(__name__)

# characters left unescaped by encodeURIComponent besides alphanumerics and "-_."
URI_SAFE = "!~*'()"


class Publisher(Protocol):
    base_topic: str

    def publish(self, topic: str, value: str | int | float | bool) -> None: ...

    def subscribe(self, topic: str) -> None: ...


def heartbeat(now: datetime | None = None) -> str:
    """ISO 8601 UTC timestamp with milliseconds, e.g. 2024-05-01T12:00:00.000Z."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def encode_json(params: Mapping[str, str], now: datetime | None = None) -> str:
    return json.dumps(
        {**params, "heartbeat": heartbeat(now)}, separators=(",", ":"), ensure_ascii=False
    )


def encode_urlencoded(params: Mapping[str, str]) -> str:
    return "&".join(
        f"{quote(k, safe=URI_SAFE)}={quote(v, safe=URI_SAFE)}" for k, v in params.items()
    )


class MqttBridge:
    def __init__(
        self,
        publisher: Publisher,
        field_map: FieldMap,
        arbiter: BusArbiter,
        accessor: ValueAccessor,
        *,
        encoding: str = "json",
        save: bool = False,
        policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.publisher = publisher
        self.field_map = field_map
        self.arbiter = arbiter
        self.accessor = accessor
        self.encoding = encoding
        self.save = save
        self.policy = policy
        self.clock = clock
        self._set_topics: dict[str, WriteableValue] = {}

    # Outbound

    def resolve_params(self, values: Mapping[str, str]) -> dict[str, str]:
        """Map `header` keys to stringified values; unresolved keys are left out."""
        params: dict[str, str] = {}
        for key, ref in self.field_map.header.items():
            if callable(ref):
                try:
                    value: Any = ref(values)
                except Exception:
                    logger.exception("Computed field %s failed", key, extra={"field": key})
                    continue
            else:
                value = values.get(ref)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                value = str(value)
            if isinstance(value, str):
                params[key] = value
        return params

    def publish_params(self, params: Mapping[str, str]) -> str | None:
        """Publish the root payload (and per-key topics for JSON); return the payload."""
        if self.encoding == "urlencoded":
            payload = encode_urlencoded(params)
        else:
            payload = encode_json(params, self.clock() if self.clock else None)
            for key, value in params.items():
                self.publisher.publish(key, value)
        if payload:
            self.publisher.publish("", payload)
            return payload
        return None

    def publish_value(self, key: str, value: float | int, precision: int | None) -> str:
        formatted = format_value(value, precision)
        self.publisher.publish(key, formatted)
        return formatted

    # Inbound

    def subscribe_setpoints(self) -> list[str]:
        """Subscribe ``<key>/set`` for every correctly typed writeable value."""
        for key in self.field_map.misconfigured:
            err = MisconfiguredField(
                f"{key}: writeable value needs type.precision, type.min and type.max"
            )
            logger.error("Not subscribing %s: %s", key, err, extra={"field": key})

        topics = []
        for config in self.field_map.writeable_values():
            topic = f"{config.key}/{SET_TOPIC_SUFFIX}"
            self._set_topics[self.publisher.base_topic + "/" + topic] = config
            self.publisher.subscribe(topic)
            topics.append(topic)
        return topics

    async def handle_message(self, topic: str, payload: bytes | str) -> bool:
        """Validate and write one inbound setpoint; return True if written."""
        config = self._set_topics.get(topic)
        if config is None:
            logger.debug("Ignoring message on unexpected topic %s", topic)
            return False

        text = payload.decode("utf-8", "replace") if isinstance(payload, bytes) else payload
        try:
            value = float(text.strip())
        except ValueError:
            logger.warning(
                "Invalid value %r for %s",
                text,
                config.key,
                extra={"field": config.key, "value": text},
            )
            return False

        try:
            config.validate(value)
        except OutOfRange as err:
            logger.warning(
                "Rejected %s",
                err,
                extra={
                    "field": config.key,
                    "value": value,
                    "minimum": config.minimum,
                    "maximum": config.maximum,
                },
            )
            return False

        raw_value = to_raw(value, config.precision)
        try:
            async with self.arbiter.session() as lease:
                datagram = await self.accessor.set(
                    lease, config.value_id, raw_value, self.policy, save=self.save
                )
        except BusTimeout as err:
            logger.warning(
                "Could not write %s: %s", config.key, err, extra={"field": config.key}
            )
            return False
        except NoResponse as err:
            logger.warning(
                "Write of %s failed: %s",
                config.key,
                err,
                extra={"field": config.key, "value": value},
            )
            return False

        confirmed = datagram.value if datagram.value is not None else raw_value
        logger.info(
            "Set %s to %s (raw %s)",
            config.key,
            value,
            raw_value,
            extra={"field": config.key, "value": value},
        )
        self.publish_value(config.key, to_physical(confirmed, config.precision), config.precision)
        return True

    async def run_inbound(self, queue: asyncio.Queue[tuple[str, bytes]]) -> None:
        """Consume inbound messages one at a time, in arrival order."""
        while True:
            topic, payload = await queue.get()
            try:
                await self.handle_message(topic, payload)
            except TransportError:
                raise
            except Exception:
                logger.exception("Inbound message error on %s", topic, extra={"topic": topic})
            finally:
                queue.task_done()

