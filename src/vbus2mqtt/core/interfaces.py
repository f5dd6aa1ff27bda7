"""Interfaces of the external collaborators (Python 3.12).

The bridge never decodes bus framing or packet field layouts itself. A bus
connection and a field specification are plugged in at runtime; these
protocols describe what the bridge expects from them.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import AsyncIterator, Iterable, Protocol, runtime_checkable

from .header_set import Header


class ConnectionState(StrEnum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    INTERRUPTED = "INTERRUPTED"
    RECONNECTING = "RECONNECTING"
    DISCONNECTING = "DISCONNECTING"


@dataclass(frozen=True, slots=True)
class Datagram:
    """Result of a request/response exchange on the bus."""

    value_id: int = 0
    value: int | None = None
    error: str | None = None
    source_address: int = 0


@dataclass(frozen=True, slots=True)
class PacketField:
    """One named field decoded by the specification."""

    id: str
    name: str
    raw_value: float | int | None
    precision: int = 0
    unit: str = ""


@runtime_checkable
class BusConnection(Protocol):
    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    def events(self) -> AsyncIterator[Header | ConnectionState]: ...

    async def wait_for_free_bus(self) -> Datagram | None: ...

    async def release_bus(self, master_address: int) -> Datagram | None: ...

    async def get_value_by_id(
        self, master_address: int, value_id: int, *, timeout: float
    ) -> Datagram | None: ...

    async def set_value_by_id(
        self,
        master_address: int,
        value_id: int,
        raw_value: int,
        *,
        timeout: float,
        save: bool = False,
    ) -> Datagram | None: ...


@runtime_checkable
class FieldSpecification(Protocol):
    def get_packet_fields_for_headers(
        self, headers: Iterable[Header]
    ) -> list[PacketField]: ...

    def get_block_type_fields_for_headers(
        self, headers: Iterable[Header]
    ) -> list[PacketField]: ...
