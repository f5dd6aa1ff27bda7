"""Periodic MQTT publishing of passive and actively polled values (Python 3.12)."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from .arbiter import BusArbiter
from .bridge import MqttBridge
from .consolidator import ConsolidationEngine
from .exceptions import BusTimeout, NoResponse, TransportError
from .fields import decode_fields, values_by_id
from .interfaces import FieldSpecification
from .retry import RetryPolicy
from .value_accessor import ValueAccessor


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TickResult:
    params: dict[str, str] = field(default_factory=dict)
    polled: dict[str, str] = field(default_factory=dict)
    failed: list[str] = field(default_factory=list)
    bus_skipped: bool = False


class PublishCycle:
    """Every `interval` seconds publish passive header values, then poll the rest.

    Passive values come from the consolidated store and cost no bus time.
    Values that the controller does not broadcast are read over the bus when
    it is free; a busy bus skips polling for that tick instead of delaying it.
    """

    def __init__(
        self,
        engine: ConsolidationEngine,
        specification: FieldSpecification,
        bridge: MqttBridge,
        arbiter: BusArbiter,
        accessor: ValueAccessor,
        interval: float,
        *,
        policy: RetryPolicy | None = None,
    ) -> None:
        self.engine = engine
        self.specification = specification
        self.bridge = bridge
        self.arbiter = arbiter
        self.accessor = accessor
        self.interval = interval
        self.policy = policy

    @property
    def enabled(self) -> bool:
        return self.interval > 0

    async def tick(self) -> TickResult:
        result = TickResult()

        snapshot = self.engine.snapshot()
        fields = decode_fields(self.specification, snapshot.get_sorted_headers())
        result.params = self.bridge.resolve_params(values_by_id(fields))
        self.bridge.publish_params(result.params)

        pending = [
            config
            for key, config in self.bridge.field_map.values.items()
            if key not in result.params
        ]
        if not pending:
            return result
        if not self.arbiter.is_free:
            logger.debug("Bus busy, skipping active poll of %d value(s)", len(pending))
            result.bus_skipped = True
            return result

        try:
            async with self.arbiter.session() as lease:
                for config in pending:
                    try:
                        value = await self.accessor.read_value(lease, config, self.policy)
                    except NoResponse as err:
                        logger.warning(
                            "Poll of %s failed: %s", config.key, err, extra={"field": config.key}
                        )
                        result.failed.append(config.key)
                        continue
                    result.polled[config.key] = self.bridge.publish_value(
                        config.key, value, config.precision
                    )
        except BusTimeout as err:
            logger.warning("Active poll skipped: %s", err)
            result.bus_skipped = True
        return result

    async def run(self) -> None:
        if not self.enabled:
            logger.info("MQTT interval is 0, publishing disabled")
            return
        logger.debug("Starting MQTT publish cycle (interval=%ss)", self.interval)
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except TransportError:
                raise
            except Exception:
                logger.exception("Publish cycle error")
