"""Decoding of header snapshots into named, unit-scaled fields."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from .header_set import Header
from .interfaces import FieldSpecification, PacketField
from .value_accessor import format_value


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PublishedField:
    id: str
    name: str
    physical_value: float | int
    precision: int = 0
    unit: str = ""

    @property
    def formatted(self) -> str:
        return format_value(self.physical_value, self.precision)

    @classmethod
    def from_packet_field(cls, pf: PacketField) -> "PublishedField":
        return cls(pf.id, pf.name, pf.raw_value, pf.precision or 0, pf.unit)


def decode_fields(
    specification: FieldSpecification, headers: Iterable[Header]
) -> list[PublishedField]:
    """Packet fields followed by block type fields, skipping empty values."""
    headers = list(headers)
    packet_fields = list(specification.get_packet_fields_for_headers(headers))
    packet_fields += specification.get_block_type_fields_for_headers(headers)
    return [
        PublishedField.from_packet_field(pf)
        for pf in packet_fields
        if pf.raw_value is not None
    ]


def values_by_id(fields: Iterable[PublishedField]) -> dict[str, str]:
    result: dict[str, str] = {}
    for f in fields:
        result[f.id] = f.formatted
        logger.debug("ID = %s, Name = %s, Value = %s", f.id, f.name, result[f.id])
    return result
