"""Parsing of duration strings such as `5s`, `1m30s` or `1.5h`.

The accepted syntax is a possibly signed sequence of decimal numbers, each with
an optional fraction and a unit suffix. Valid units are `ns`, `us` (or `µs`),
`ms`, `s`, `m` and `h`. The string `0` is accepted without a unit.
"""

import re

from .exceptions import InvalidDurationError

__all__ = [
    "parse_duration",
    "parse_interval",
]

_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(value: str) -> float:
    """Parse a duration string and return the number of seconds."""
    if not value:
        raise InvalidDurationError("invalid duration ''")
    text = value
    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if text == "0":
        return 0.0
    if not text:
        raise InvalidDurationError(f"invalid duration '{value}'")

    total = 0.0
    pos = 0
    while pos < len(text):
        if not (match := _COMPONENT.match(text, pos)):
            if re.match(r"(\d+(?:\.\d*)?|\.\d+)$", text[pos:]):
                raise InvalidDurationError(f"missing unit in duration '{value}'")
            raise InvalidDurationError(f"invalid duration '{value}'")
        total += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()
    return sign * total


def parse_interval(value: str) -> float:
    """Parse a polling interval, which must be a positive duration."""
    seconds = parse_duration(value)
    if seconds <= 0:
        raise InvalidDurationError(f"interval '{value}' must be positive")
    return seconds
