"""Battery threshold policy and user input validation."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from . import constants
from .core.errors import ValidationError
from .core.models import Command, TelemetryReading

LOGGER = logging.getLogger(__name__)

INVALID_THRESHOLD_MESSAGE = (
    f"Invalid threshold. Enter a number between {constants.THRESHOLD_MIN} "
    f"and {constants.THRESHOLD_MAX}."
)
EMPTY_TIMER_MESSAGE = "Please enter a timer duration."


def _parse_decimal(text: str) -> int:
    """Parse an optionally signed run of ASCII digits, nothing else."""

    digits = text[1:] if text.startswith(("+", "-")) else text
    if not (digits.isascii() and digits.isdigit()):
        raise ValueError(f"not a decimal integer: {text!r}")
    return int(text)


def parse_threshold(text: str) -> int:
    """Parse a user supplied shutoff percentage.

    Raises:
        ValidationError: If ``text`` is not a base-10 integer in range.
    """

    try:
        value = _parse_decimal(str(text).strip())
    except ValueError as exc:
        raise ValidationError(INVALID_THRESHOLD_MESSAGE) from exc
    if not constants.THRESHOLD_MIN <= value <= constants.THRESHOLD_MAX:
        raise ValidationError(INVALID_THRESHOLD_MESSAGE)
    return value


def parse_timer_duration(text: str, *, strict: bool = False) -> str:
    """Validate a timer duration before it is embedded in a ``TIMER:`` payload.

    Without ``strict`` any non-empty text is forwarded exactly as typed,
    surrounding whitespace included.
    """

    if not text:
        raise ValidationError(EMPTY_TIMER_MESSAGE)
    if strict:
        duration = text.strip()
        if not duration:
            raise ValidationError(EMPTY_TIMER_MESSAGE)
        try:
            seconds = _parse_decimal(duration)
        except ValueError as exc:
            raise ValidationError(
                "Invalid timer duration. Enter a whole number of seconds."
            ) from exc
        if seconds <= 0:
            raise ValidationError(
                "Invalid timer duration. Enter a whole number of seconds."
            )
        return str(seconds)
    return text


class ThresholdConfig:
    """Shutoff percentage shared by the user and telemetry control paths."""

    def __init__(self, threshold: int = constants.DEFAULT_THRESHOLD) -> None:
        if not constants.THRESHOLD_MIN <= threshold <= constants.THRESHOLD_MAX:
            raise ValidationError(INVALID_THRESHOLD_MESSAGE)
        self._lock = threading.Lock()
        self._threshold = threshold
        self._generation = 0

    @property
    def threshold(self) -> int:
        with self._lock:
            return self._threshold

    def snapshot(self) -> tuple[int, int]:
        """Return ``(threshold, generation)`` read under a single lock."""
        with self._lock:
            return self._threshold, self._generation

    def set(self, value: int) -> int:
        if not constants.THRESHOLD_MIN <= value <= constants.THRESHOLD_MAX:
            raise ValidationError(INVALID_THRESHOLD_MESSAGE)
        with self._lock:
            self._threshold = value
            self._generation += 1
        LOGGER.info("Battery threshold set to %d%%", value)
        return value

    def update(self, text: str) -> int:
        """Validate ``text`` and store it as the new threshold."""
        return self.set(parse_threshold(text))


def evaluate(
    reading: TelemetryReading, config: ThresholdConfig, topic: str
) -> Optional[Command]:
    """Return a shutoff command when the reading is at or above the threshold."""

    if reading.percentage >= config.threshold:
        return Command.turn_off(topic)
    return None


class ShutoffPolicy:
    """Stateful wrapper around :func:`evaluate`.

    Level triggered by default: every reading at or above the threshold yields
    a shutoff command. With ``edge_triggered`` the policy fires once per
    upward crossing and re-arms when a reading drops below the threshold or
    the threshold is changed.
    """

    def __init__(
        self, config: ThresholdConfig, topic: str, *, edge_triggered: bool = False
    ) -> None:
        self.config = config
        self.topic = topic
        self.edge_triggered = edge_triggered
        self._lock = threading.Lock()
        self._fired = False
        self._generation: Optional[int] = None

    def evaluate(self, reading: TelemetryReading) -> Optional[Command]:
        if not self.edge_triggered:
            return evaluate(reading, self.config, self.topic)

        threshold, generation = self.config.snapshot()
        above = reading.percentage >= threshold

        with self._lock:
            if generation != self._generation:
                self._generation = generation
                self._fired = False
            if not above:
                self._fired = False
                return None
            if self._fired:
                LOGGER.debug(
                    "Battery still above %d%%; shutoff already sent", threshold
                )
                return None
            self._fired = True
        return Command.turn_off(self.topic)
