"""
Command encoding for the actuator wire protocol.

Single-byte motion commands ``E``, ``R``, ``S`` and four-byte ASCII
set-point commands ``Pnnn`` / ``Vnnn`` where ``nnn`` is a zero-padded
percentage. Out-of-range inputs are clamped, never rejected.
"""

import math
from enum import Enum
from typing import Optional

from .core import (
    CMD_EXTEND,
    CMD_POSITION_PREFIX,
    CMD_RETRACT,
    CMD_SPEED_PREFIX,
    CMD_STOP,
    PERCENT_MAX,
)


class Intent(Enum):
    """High-level commands a user can issue."""

    EXTEND = "extend"
    RETRACT = "retract"
    STOP = "stop"
    SET_POSITION = "set-position"
    SET_SPEED = "set-speed"


def to_percent(normalized: float) -> int:
    """Clamp a normalized value to [0, 1] and scale it to 0-100.

    Rounds half up. NaN is treated as 0.

    Args:
        normalized: Value nominally in 0.0 .. 1.0

    Returns:
        Integer percentage 0 .. 100
    """
    if math.isnan(normalized):
        return 0
    clamped = max(0.0, min(1.0, float(normalized)))
    scaled = clamped * PERCENT_MAX
    # Compare the fraction; adding 0.5 first can round up values just below .5
    whole = math.floor(scaled)
    return int(whole) + (1 if scaled - whole >= 0.5 else 0)


def _setpoint(prefix: str, normalized: float) -> bytes:
    return f"{prefix}{to_percent(normalized):03d}".encode("ascii")


def encode_extend() -> bytes:
    return CMD_EXTEND


def encode_retract() -> bytes:
    return CMD_RETRACT


def encode_stop() -> bytes:
    return CMD_STOP


def encode_position(normalized: float) -> bytes:
    """Encode a position set-point, e.g. 0.5 -> ``b"P050"``."""
    return _setpoint(CMD_POSITION_PREFIX, normalized)


def encode_speed(normalized: float) -> bytes:
    """Encode a speed set-point, e.g. 1.0 -> ``b"V100"``."""
    return _setpoint(CMD_SPEED_PREFIX, normalized)


def encode(intent: Intent, value: Optional[float] = None) -> bytes:
    """Encode any intent into its wire payload.

    Args:
        intent: Command to encode
        value: Normalized set-point, required for SET_POSITION and SET_SPEED

    Returns:
        Payload bytes

    Raises:
        ValueError: If a set-point intent is given without a value
    """
    if intent is Intent.EXTEND:
        return encode_extend()
    if intent is Intent.RETRACT:
        return encode_retract()
    if intent is Intent.STOP:
        return encode_stop()
    if value is None:
        raise ValueError(f"{intent.value} requires a normalized value")
    if intent is Intent.SET_POSITION:
        return encode_position(value)
    return encode_speed(value)
