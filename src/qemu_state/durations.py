"""Go-style duration strings (``5m``, ``500ms``, ``1m30s``) for CLI options and log lines."""

from __future__ import annotations

import re

_UNIT_SECONDS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(text: str) -> float:
    """Parse a duration into seconds.

    Accepts a bare number (seconds) or a sequence of number+unit components.

    Raises:
        ValueError: Empty, negative, or malformed duration
    """
    value = text.strip()
    if not value:
        raise ValueError("empty duration")
    if value.startswith("-"):
        raise ValueError(f"duration must not be negative: {text!r}")
    value = value.removeprefix("+")

    try:
        return float(value)
    except ValueError:
        pass

    total = 0.0
    position = 0
    while position < len(value):
        match = _COMPONENT.match(value, position)
        if match is None:
            raise ValueError(f"invalid duration: {text!r}")
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        position = match.end()
    return total


def format_duration(seconds: float) -> str:
    """Render seconds compactly: ``850ms``, ``12.345s``, ``5m0s``, ``1h2m3s``."""
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:.3f}".rstrip("0").rstrip(".") + "s"
    whole = round(seconds)
    hours, remainder = divmod(whole, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h{minutes}m{secs}s"
    return f"{minutes}m{secs}s"
