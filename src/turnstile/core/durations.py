"""Human readable durations for throttling messages."""
from __future__ import annotations

import math

SECOND = 1000
MINUTE = SECOND * 60
HOUR = MINUTE * 60
DAY = HOUR * 24

_UNITS = (
    (DAY, "day"),
    (HOUR, "hour"),
    (MINUTE, "minute"),
    (SECOND, "second"),
)


def format_duration(milliseconds: int) -> str:
    """Render ``milliseconds`` in long form, e.g. ``"2 hours"`` or ``"500 ms"``.

    The largest unit not exceeding the magnitude is used. Values are rounded half
    up and the unit is pluralised from one and a half units onwards.
    """

    magnitude = abs(milliseconds)
    for unit, name in _UNITS:
        if magnitude >= unit:
            return _plural(milliseconds, magnitude, unit, name)
    return f"{milliseconds} ms"


def _plural(milliseconds: int, magnitude: int, unit: int, name: str) -> str:
    count = math.floor(milliseconds / unit + 0.5)
    suffix = "s" if magnitude >= unit * 1.5 else ""
    return f"{count} {name}{suffix}"
