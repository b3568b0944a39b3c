"""Microsecond-resolution timestamps used throughout the CAN drivers."""

from __future__ import annotations

import enum
import math
import time as _time
from dataclasses import dataclass

USEC_PER_SEC = 1_000_000
DEFAULT_FORMAT = "%Y%m%d-%H:%M:%S"


def _trunc_div(value: int, divisor: int) -> int:
    """Integer division rounding toward zero, like C."""
    quotient = abs(value) // abs(divisor)
    return quotient if (value >= 0) == (divisor > 0) else -quotient


def _round_half_away(value: float) -> int:
    return int(math.floor(value + 0.5)) if value >= 0 else -int(math.floor(-value + 0.5))


class Resolution(enum.IntEnum):
    """Precision of the fractional part in string conversions."""

    SECONDS = 1
    MILLISECONDS = 1000
    MICROSECONDS = 1_000_000


@dataclass(frozen=True, order=True)
class Time:
    """A point in time (or a duration) stored as integer microseconds."""

    microseconds: int = 0

    @classmethod
    def now(cls) -> Time:
        """Return the current wall-clock time."""
        return cls(_time.time_ns() // 1000)

    @classmethod
    def from_microseconds(cls, value: int) -> Time:
        return cls(int(value))

    @classmethod
    def from_milliseconds(cls, value: int) -> Time:
        return cls(int(value) * 1000)

    @classmethod
    def from_seconds(cls, value: int | float, microseconds: int | None = None) -> Time:
        """Build a time from seconds, optionally with an extra microsecond count.

        A float number of seconds is rounded to the nearest microsecond.
        """
        if microseconds is not None:
            return cls(int(value) * USEC_PER_SEC + int(microseconds))
        if isinstance(value, float):
            seconds = int(value)
            return cls(seconds * USEC_PER_SEC + _round_half_away((value - seconds) * USEC_PER_SEC))
        return cls(int(value) * USEC_PER_SEC)

    @classmethod
    def from_time_values(
        cls,
        year: int,
        month: int,
        day: int,
        hour: int,
        minute: int,
        seconds: int,
        millis: int,
        micros: int,
    ) -> Time:
        """Build a time from calendar fields interpreted in local time."""
        stamp = _time.mktime((year, month, day, hour, minute, seconds, 0, 0, -1))
        return cls(int(stamp) * USEC_PER_SEC + millis * 1000 + micros)

    @classmethod
    def from_string(
        cls,
        string_time: str,
        resolution: Resolution = Resolution.MICROSECONDS,
        main_format: str = DEFAULT_FORMAT,
    ) -> Time:
        """Parse a string as produced by :meth:`to_string`.

        Raises ValueError when the fractional field does not match the
        resolution or the main part does not match ``main_format``.
        """
        resolution = Resolution(resolution)
        main_time = string_time
        usecs = 0
        if resolution > Resolution.SECONDS:
            pos = string_time.rfind(":")
            main_time = string_time[:pos] if pos >= 0 else string_time
            fraction = string_time[pos + 1:]
            length = len(fraction)
            if length not in (3, 6) or (length == 3 and resolution > Resolution.MILLISECONDS):
                raise ValueError(
                    "Time.from_string failed - resolution does not match provided time string"
                )
            digits = fraction[:3] if resolution == Resolution.MILLISECONDS else fraction
            if not digits.isdigit():
                raise ValueError(f"Time.from_string failed - invalid fraction {fraction!r}")
            usecs = int(digits) * (1000 if resolution == Resolution.MILLISECONDS else 1)

        try:
            parsed = _time.strptime(main_time, main_format)
        except ValueError as exc:
            raise ValueError(
                f"Time.from_string failed - time string {main_time!r} did not match "
                f"the given format {main_format!r}"
            ) from exc
        stamp = _time.mktime(parsed[:8] + (-1,))
        return cls(int(stamp) * USEC_PER_SEC + usecs)

    def to_string(self, resolution: Resolution = Resolution.MICROSECONDS) -> str:
        """Format in local time as ``YYYYmmdd-HH:MM:SS[:fraction]``."""
        resolution = Resolution(resolution)
        seconds, usecs = self.to_timeval()
        main = _time.strftime(DEFAULT_FORMAT, _time.localtime(seconds))
        if resolution == Resolution.SECONDS:
            return main
        if resolution == Resolution.MILLISECONDS:
            return f"{main}:{int(usecs / 1000.0):03d}"
        return f"{main}:{usecs:06d}"

    def to_seconds(self) -> float:
        return self.microseconds / USEC_PER_SEC

    def to_milliseconds(self) -> int:
        """Whole milliseconds, truncated toward zero."""
        return _trunc_div(self.microseconds, 1000)

    def to_microseconds(self) -> int:
        return self.microseconds

    def to_timeval(self) -> tuple[int, int]:
        """Return ``(seconds, microseconds)`` with C truncation semantics."""
        seconds = _trunc_div(self.microseconds, USEC_PER_SEC)
        return seconds, self.microseconds - seconds * USEC_PER_SEC

    def is_null(self) -> bool:
        return self.microseconds == 0

    def __add__(self, other: Time) -> Time:
        if not isinstance(other, Time):
            return NotImplemented
        return Time(self.microseconds + other.microseconds)

    def __sub__(self, other: Time) -> Time:
        if not isinstance(other, Time):
            return NotImplemented
        return Time(self.microseconds - other.microseconds)

    def __truediv__(self, divider: int) -> Time:
        return Time(_trunc_div(self.microseconds, int(divider)))

    def __mul__(self, factor: float) -> Time:
        return Time(int(self.microseconds * factor))

    __rmul__ = __mul__

    def __str__(self) -> str:
        us = self.microseconds
        magnitude = abs(us)
        return f"{_trunc_div(us, USEC_PER_SEC)}.{(magnitude // 1000) % 1000:03d}.{magnitude % 1000:03d}"