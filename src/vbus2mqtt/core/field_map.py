"""Field map parsing: MQTT keys to controller values and packet fields.

The map has two sections::

    {
        "values": {"boilerTempTarget": {"id": 4110, "writeable": true,
                   "type": {"precision": 1, "min": 30, "max": 85}}},
        "header": {"temp1": "00_0010_5611_10_0100_000_2_0"}
    }

`values` are polled actively over the bus, `header` entries are taken from
passively observed packets. Header entries may also be callables computing a
value from the ``{field_id: value}`` map when the map is built in code.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Union

from .exceptions import ConfigError, OutOfRange


logger = logging.getLogger(__name__)

HeaderFieldRef = Union[str, Callable[[Mapping[str, str]], Any]]


@dataclass(frozen=True, slots=True)
class ReadonlyValue:
    key: str
    value_id: int
    precision: int | None = None

    writeable = False


@dataclass(frozen=True, slots=True)
class WriteableValue:
    key: str
    value_id: int
    precision: int
    minimum: float
    maximum: float

    writeable = True

    def validate(self, value: float) -> float:
        if math.isnan(value) or not (self.minimum <= value <= self.maximum):
            raise OutOfRange(self.key, value, self.minimum, self.maximum)
        return value


ValueConfig = Union[ReadonlyValue, WriteableValue]


@dataclass(slots=True)
class FieldMap:
    values: dict[str, ValueConfig] = field(default_factory=dict)
    header: dict[str, HeaderFieldRef] = field(default_factory=dict)
    # keys marked writeable but lacking a complete type
    misconfigured: list[str] = field(default_factory=list)

    def writeable_values(self) -> list[WriteableValue]:
        return [v for v in self.values.values() if isinstance(v, WriteableValue)]


def _number(key: str, name: str, raw: Any) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"values.{key}.type.{name} must be a number, got {raw!r}") from exc


def parse_value_config(key: str, raw: Mapping[str, Any]) -> tuple[ValueConfig, bool]:
    """Build the tagged config for one `values` entry.

    Returns the config and whether the entry was marked writeable without a
    complete type (it is then loaded read-only).
    """
    if not isinstance(raw, Mapping) or "id" not in raw:
        raise ConfigError(f"values.{key} must be an object with an 'id'")
    try:
        value_id = int(raw["id"])
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"values.{key}.id must be an integer, got {raw['id']!r}") from exc

    value_type = raw.get("type") or {}
    if not isinstance(value_type, Mapping):
        raise ConfigError(f"values.{key}.type must be an object")
    precision = value_type.get("precision")
    if precision is not None:
        try:
            precision = int(precision)
        except (TypeError, ValueError) as exc:
            raise ConfigError(
                f"values.{key}.type.precision must be an integer, got {precision!r}"
            ) from exc

    writeable = bool(raw.get("writeable", False))
    complete = all(value_type.get(k) is not None for k in ("precision", "min", "max"))
    if writeable and complete:
        minimum = _number(key, "min", value_type["min"])
        maximum = _number(key, "max", value_type["max"])
        if minimum > maximum:
            raise ConfigError(f"values.{key}: min {minimum} greater than max {maximum}")
        return WriteableValue(key, value_id, precision, minimum, maximum), False
    return ReadonlyValue(key, value_id, precision), writeable


def parse_field_map(raw: Mapping[str, Any]) -> FieldMap:
    if not isinstance(raw, Mapping):
        raise ConfigError("Field map must be an object with 'values' and 'header'")

    field_map = FieldMap()
    for key, entry in (raw.get("values") or {}).items():
        config, misconfigured = parse_value_config(key, entry)
        field_map.values[key] = config
        if misconfigured:
            field_map.misconfigured.append(key)

    for key, ref in (raw.get("header") or {}).items():
        if not isinstance(ref, str) and not callable(ref):
            raise ConfigError(f"header.{key} must be a packet field id")
        field_map.header[key] = ref

    logger.debug(
        "Field map: %d value(s), %d header field(s), %d writeable",
        len(field_map.values),
        len(field_map.header),
        len(field_map.writeable_values()),
    )
    return field_map
