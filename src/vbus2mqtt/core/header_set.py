"""Header model and the HeaderSet store (Python 3.12).

A `Header` is one decoded bus message. A `HeaderSet` keeps only the most
recent `Header` per `HeaderKey` and is used both as the short-lived discovery
buffer of the settling detector and as the long-lived consolidated store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator


@dataclass(frozen=True, slots=True, order=True)
class HeaderKey:
    """Logical identity of a bus message."""

    channel: int
    destination_address: int
    source_address: int
    protocol_version: int
    command: int

    @property
    def id(self) -> str:
        """Canonical id, e.g. ``00_0010_7E11_10_0100``."""
        return "{:02X}_{:04X}_{:04X}_{:02X}_{:04X}".format(
            self.channel,
            self.destination_address,
            self.source_address,
            self.protocol_version,
            self.command,
        )


@dataclass(frozen=True, slots=True)
class Header:
    key: HeaderKey
    payload: bytes = b""
    timestamp: float = 0.0

    @property
    def id(self) -> str:
        return self.key.id


@dataclass(frozen=True, slots=True)
class HeaderSetSnapshot:
    """Immutable copy of a HeaderSet taken at `timestamp`."""

    headers: tuple[Header, ...] = field(default_factory=tuple)
    timestamp: float = 0.0

    def get_header_count(self) -> int:
        return len(self.headers)

    def get_headers(self) -> list[Header]:
        return list(self.headers)

    def get_sorted_headers(self) -> list[Header]:
        return sorted(self.headers, key=lambda h: h.key)

    def __iter__(self) -> Iterator[Header]:
        return iter(self.headers)

    def __len__(self) -> int:
        return len(self.headers)


class HeaderSet:
    """Mapping of HeaderKey to the single most recent Header for that key."""

    def __init__(self, headers: Iterable[Header] | None = None) -> None:
        self._headers: dict[HeaderKey, Header] = {}
        if headers is not None:
            self.add_headers(headers)

    def add_header(self, header: Header) -> None:
        self._headers[header.key] = header

    def add_headers(self, headers: Iterable[Header]) -> None:
        for header in headers:
            self.add_header(header)

    def get_header(self, key: HeaderKey) -> Header | None:
        return self._headers.get(key)

    def contains_key(self, key: HeaderKey) -> bool:
        return key in self._headers

    def get_header_count(self) -> int:
        return len(self._headers)

    def get_headers(self) -> list[Header]:
        return list(self._headers.values())

    def get_sorted_headers(self) -> list[Header]:
        return [self._headers[key] for key in sorted(self._headers)]

    def remove_headers_older_than(self, timestamp: float) -> int:
        """Drop every header received before `timestamp`; return the count removed."""
        stale = [key for key, h in self._headers.items() if h.timestamp < timestamp]
        for key in stale:
            del self._headers[key]
        return len(stale)

    def clear(self) -> None:
        self._headers.clear()

    def snapshot(self, timestamp: float = 0.0) -> HeaderSetSnapshot:
        return HeaderSetSnapshot(tuple(self.get_sorted_headers()), timestamp)

    def __len__(self) -> int:
        return len(self._headers)

    def __contains__(self, key: object) -> bool:
        return key in self._headers

    def __repr__(self) -> str:
        return f"HeaderSet({len(self._headers)} headers)"
