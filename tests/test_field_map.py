from __future__ import annotations

import math

import pytest

from vbus2mqtt.core.constants import DEFAULT_FIELD_MAP
from vbus2mqtt.core.exceptions import ConfigError, OutOfRange
from vbus2mqtt.core.field_map import (
    ReadonlyValue,
    WriteableValue,
    parse_field_map,
    parse_value_config,
)


def test_default_field_map() -> None:
    field_map = parse_field_map(DEFAULT_FIELD_MAP)

    assert field_map.values["boilerTempTarget"] == WriteableValue(
        "boilerTempTarget", 4110, 1, 30.0, 85.0
    )
    assert field_map.values["counter"] == ReadonlyValue("counter", 8227, None)
    assert field_map.header["temp1"] == "00_0010_5611_10_0100_000_2_0"
    assert [v.key for v in field_map.writeable_values()] == ["boilerTempMin", "boilerTempTarget"]
    assert field_map.misconfigured == []


def test_incomplete_writeable_type_loads_readonly() -> None:
    config, misconfigured = parse_value_config(
        "boilerTempMax", {"id": 4111, "type": {"precision": 1, "min": 30}, "writeable": True}
    )
    assert config == ReadonlyValue("boilerTempMax", 4111, 1)
    assert not config.writeable
    assert misconfigured


def test_typed_but_not_writeable_is_readonly() -> None:
    config, misconfigured = parse_value_config(
        "x", {"id": "17", "type": {"precision": 2, "min": 0, "max": 1}}
    )
    assert config == ReadonlyValue("x", 17, 2)
    assert not misconfigured


@pytest.mark.parametrize(
    "entry",
    [
        {},
        {"id": "abc"},
        {"id": 1, "type": "int"},
        {"id": 1, "writeable": True, "type": {"precision": 1, "min": 5, "max": 1}},
        {"id": 1, "writeable": True, "type": {"precision": 1, "min": "low", "max": 1}},
        {"id": 1, "type": {"precision": "one"}},
    ],
)
def test_invalid_entries(entry) -> None:
    with pytest.raises(ConfigError):
        parse_value_config("bad", entry)


def test_header_must_be_field_id() -> None:
    with pytest.raises(ConfigError):
        parse_field_map({"header": {"temp1": 5}})


def test_writeable_validate() -> None:
    config = WriteableValue("boilerTempTarget", 4110, 1, 30, 85)
    assert config.validate(55.0) == 55.0
    assert config.validate(30) == 30
    assert config.validate(85) == 85
    with pytest.raises(OutOfRange) as exc_info:
        config.validate(90)
    assert exc_info.value.maximum == 85
    with pytest.raises(OutOfRange):
        config.validate(math.nan)
