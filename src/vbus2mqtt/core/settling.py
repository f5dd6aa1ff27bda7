"""Detection of a settled bus population (Python 3.12)."""

from __future__ import annotations

import logging
from typing import Callable

from .header_set import Header, HeaderSet, HeaderSetSnapshot


logger = logging.getLogger(__name__)

SettledCallback = Callable[[HeaderSetSnapshot], None]


class SettlingDetector:
    """Decide when the set of distinct packet types on the bus stops growing.

    Every newly discovered key resets a countdown to twice the number of keys
    known so far. Each repeated key counts it down; when it reaches zero the
    detector is settled: `on_settled` is called once with a snapshot of
    the discovered headers and the discovery buffer is dropped. The detector
    never restarts.
    """

    def __init__(self, on_settled: SettledCallback | None = None) -> None:
        self.on_settled = on_settled
        self.settled = False
        self.countdown = 0
        self._header_set: HeaderSet | None = HeaderSet()
        self._discovered: HeaderSetSnapshot | None = None

    @property
    def discovered(self) -> HeaderSetSnapshot | None:
        """Snapshot of the discovered headers, available once settled."""
        return self._discovered

    @property
    def header_count(self) -> int:
        if self._header_set is None:
            return len(self._discovered or ())
        return self._header_set.get_header_count()

    def add_header(self, header: Header) -> bool:
        """Feed one header; return True on the call that settles the detector."""
        if self.settled or self._header_set is None:
            return False

        count_before = self._header_set.get_header_count()
        self._header_set.add_header(header)
        count_after = self._header_set.get_header_count()

        if count_before != count_after:
            self.countdown = count_after * 2
            return False
        if self.countdown > 0:
            self.countdown -= 1
        if self.countdown > 0:
            return False

        self.settled = True
        self._discovered = self._header_set.snapshot(header.timestamp)
        self._header_set = None
        logger.info("Header set settled with %d distinct packets", len(self._discovered))
        if self.on_settled is not None:
            try:
                self.on_settled(self._discovered)
            except Exception:
                logger.exception("Settled callback error")
        return True
