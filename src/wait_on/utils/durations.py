"""Pure duration parsing and formatting utilities.

Durations are carried through the application as integer milliseconds.
User input may be a plain number of milliseconds or a string with a unit
suffix. All functions are pure with no side effects.
"""

import math
import re
from typing import Final

# Milliseconds per unit suffix
_UNIT_MS: Final[dict[str, float]] = {
    "ms": 1.0,
    "s": 1_000.0,
    "m": 60_000.0,
    "h": 3_600_000.0,
    "d": 86_400_000.0,
}

_DURATION_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^\s*(?P<amount>\d+(?:\.\d+)?|\.\d+)\s*(?P<unit>ms|s|m|h|d)?\s*$",
    re.IGNORECASE,
)

# Spellings accepted for "no deadline"
UNBOUNDED_SPELLINGS: Final[frozenset[str]] = frozenset({"unbounded", "infinity", "inf", "none"})

_SECOND = 1_000
_MINUTE = 60 * _SECOND
_HOUR = 60 * _MINUTE


def parse_duration(value: object) -> int:
    """Convert a duration value to integer milliseconds.

    Args:
        value: Non-negative number of milliseconds, or a string such as
            ``"250"``, ``"250ms"``, ``"1.5s"``, ``"2m"``, ``"1h"`` or ``"1d"``

    Returns:
        Duration in whole milliseconds (fractions are rounded up)

    Raises:
        ValueError: If the value is negative, not finite or not parseable
        TypeError: If the value is neither a number nor a string

    Examples:
        >>> parse_duration(250)
        250
        >>> parse_duration("1s")
        1000
        >>> parse_duration("1.5m")
        90000
    """
    if isinstance(value, bool):
        msg = f"Duration must be a number or string, got: {value!r}"
        raise TypeError(msg)

    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value < 0:
            msg = f"Duration must be a finite, non-negative number, got: {value!r}"
            raise ValueError(msg)
        return math.ceil(value)

    if isinstance(value, str):
        match = _DURATION_PATTERN.match(value)
        if match is None:
            msg = f"Invalid duration {value!r}; expected e.g. 500, '500ms', '2s', '1m'"
            raise ValueError(msg)
        amount = float(match.group("amount"))
        unit = (match.group("unit") or "ms").lower()
        return math.ceil(round(amount * _UNIT_MS[unit], 6))

    msg = f"Duration must be a number or string, got: {type(value).__name__}"
    raise TypeError(msg)


def parse_optional_duration(value: object) -> int | None:
    """Convert a duration that may be unbounded.

    Args:
        value: Anything accepted by ``parse_duration``, or None / an
            unbounded spelling (``"unbounded"``, ``"infinity"``, ``"inf"``)
            or ``math.inf``

    Returns:
        Duration in milliseconds, or None for unbounded

    Examples:
        >>> parse_optional_duration("unbounded") is None
        True
        >>> parse_optional_duration("30s")
        30000
    """
    if value is None:
        return None
    if isinstance(value, str) and value.strip().lower() in UNBOUNDED_SPELLINGS:
        return None
    if isinstance(value, float) and math.isinf(value) and value > 0:
        return None
    return parse_duration(value)


def format_duration_ms(milliseconds: int | None) -> str:
    """Convert milliseconds to a compact human-readable string.

    Args:
        milliseconds: Duration in milliseconds, or None for unbounded

    Returns:
        Human-readable duration

    Examples:
        >>> format_duration_ms(750)
        '750ms'
        >>> format_duration_ms(1500)
        '1.5s'
        >>> format_duration_ms(90_000)
        '1m 30s'
        >>> format_duration_ms(None)
        'unbounded'
    """
    if milliseconds is None:
        return "unbounded"
    if milliseconds < 0:
        msg = "milliseconds must be non-negative"
        raise ValueError(msg)

    if milliseconds < _SECOND:
        return f"{milliseconds}ms"

    if milliseconds < _MINUTE:
        seconds = milliseconds / _SECOND
        return f"{seconds:g}s"

    if milliseconds < _HOUR:
        minutes, remainder = divmod(milliseconds, _MINUTE)
        seconds = remainder // _SECOND
        return f"{minutes}m {seconds}s" if seconds else f"{minutes}m"

    hours, remainder = divmod(milliseconds, _HOUR)
    minutes = remainder // _MINUTE
    return f"{hours}h {minutes}m" if minutes else f"{hours}h"
