"""Domain models for relay commands and battery telemetry."""

from __future__ import annotations

from dataclasses import dataclass

from .errors import InvalidReadingError

TURN_ON = "TURN_ON"
TURN_OFF = "TURN_OFF"
TIMER_PREFIX = "TIMER:"


@dataclass(frozen=True, slots=True)
class Command:
    """An outbound payload addressed to a broker topic."""

    topic: str
    payload: str

    @classmethod
    def turn_on(cls, topic: str) -> "Command":
        return cls(topic=topic, payload=TURN_ON)

    @classmethod
    def turn_off(cls, topic: str) -> "Command":
        return cls(topic=topic, payload=TURN_OFF)

    @classmethod
    def timer(cls, topic: str, duration: str | int) -> "Command":
        return cls(topic=topic, payload=f"{TIMER_PREFIX}{duration}")

    @property
    def is_shutoff(self) -> bool:
        return self.payload == TURN_OFF


@dataclass(frozen=True, slots=True)
class TelemetryReading:
    """A point-in-time battery level as reported by the platform.

    The platform reports ``level`` out of ``scale``; either may be ``-1``
    when the value is unavailable.
    """

    level: int
    scale: int

    def __post_init__(self) -> None:
        if self.scale <= 0:
            raise InvalidReadingError(f"Battery scale must be positive (got {self.scale})")
        if self.level < 0:
            raise InvalidReadingError(f"Battery level must not be negative (got {self.level})")

    @classmethod
    def from_raw(cls, level: int, scale: int) -> "TelemetryReading":
        return cls(level=level, scale=scale)

    @property
    def percentage(self) -> float:
        return self.level * 100 / self.scale

    def format_percentage(self) -> str:
        return f"{self.percentage:g}"
