"""Custom exceptions for vbus2mqtt (Python 3.12).

Defines a small hierarchy to represent the error categories of the bridge:
bus arbitration, request/response exchanges, setpoint validation,
configuration and transport failures.
"""

from __future__ import annotations

from dataclasses import dataclass


class VBusBridgeError(Exception):
    """Base exception for vbus2mqtt."""


@dataclass(slots=True)
class BusTimeout(VBusBridgeError):
    """The bus could not be acquired within the retry budget."""

    message: str
    attempts: int | None = None

    def __str__(self) -> str:  # pragma: no cover - trivial
        base = self.message
        if self.attempts is not None:
            base += f" (attempts={self.attempts})"
        return base


@dataclass(slots=True)
class NoResponse(VBusBridgeError):
    """A get/set exchange exhausted its retries or was rejected."""

    value_id: int
    attempts: int = 0
    reason: str | None = None

    def __str__(self) -> str:  # pragma: no cover - trivial
        base = f"No response for value {self.value_id} after {self.attempts} attempt(s)"
        if self.reason:
            base += f": {self.reason}"
        return base


@dataclass(slots=True)
class OutOfRange(VBusBridgeError):
    """Inbound setpoint lies outside the configured [minimum, maximum]."""

    key: str
    value: float
    minimum: float
    maximum: float

    def __str__(self) -> str:  # pragma: no cover - trivial
        return (
            f"{self.key}: value {self.value} outside "
            f"[{self.minimum}, {self.maximum}]"
        )


class MisconfiguredField(VBusBridgeError):
    """Writeable field lacks a complete {precision, min, max} type."""


class TransportError(VBusBridgeError):
    """Bus connection or MQTT client failure. Fatal to the run loop."""


class ConfigError(VBusBridgeError):
    """Configuration invalid or missing required values."""


class ValidationError(VBusBridgeError):
    """Configuration value failed validation."""
