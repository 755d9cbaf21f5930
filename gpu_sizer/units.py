"""
Byte / GB / percentage conversions and human-readable formatting.
All units are binary (1 KB = 1024 B).
"""

import math
import numbers
import re
from typing import Optional

from .errors import InvalidArgument

UNIT_BYTES = {
    "B": 1,
    "KB": 1024,
    "MB": 1024 ** 2,
    "GB": 1024 ** 3,
    "TB": 1024 ** 4,
}

# Largest unit first, used when picking a display unit
_DISPLAY_UNITS = ("TB", "GB", "MB", "KB")

MEMORY_STRING_RE = re.compile(r"^(-?\d+(?:\.\d+)?)\s*(TB|GB|MB|KB|B)$", re.IGNORECASE)


def _check_bytes(value: float, name: str = "bytes") -> float:
    if value is None or not isinstance(value, numbers.Real) or isinstance(value, bool):
        raise InvalidArgument(f"{name} must be a number, got {value!r}")
    if math.isnan(value) or math.isinf(value):
        raise InvalidArgument(f"{name} must be finite, got {value!r}")
    if value < 0:
        raise InvalidArgument(f"{name} cannot be negative, got {value!r}")
    return value


def _clamp_precision(precision: int) -> int:
    return max(0, min(10, int(math.floor(precision))))


def convert(value: float, from_unit: str, to_unit: str) -> float:
    """Convert a non-negative quantity between B/KB/MB/GB/TB."""
    _check_bytes(value, "value")
    try:
        src = UNIT_BYTES[from_unit.upper()]
        dst = UNIT_BYTES[to_unit.upper()]
    except (KeyError, AttributeError):
        raise InvalidArgument(f"Unknown unit: {from_unit!r} -> {to_unit!r}")
    return value * src / dst


def bytes_to_gb(num_bytes: float) -> float:
    return convert(num_bytes, "B", "GB")


def gb_to_bytes(gb: float) -> float:
    return convert(gb, "GB", "B")


def bytes_to_mb(num_bytes: float) -> float:
    return convert(num_bytes, "B", "MB")


def mb_to_bytes(mb: float) -> float:
    return convert(mb, "MB", "B")


def _pick_unit(num_bytes: float) -> Optional[str]:
    for unit in _DISPLAY_UNITS:
        if num_bytes >= UNIT_BYTES[unit]:
            return unit
    return None


def format_memory_size(num_bytes: float, precision: int = 2) -> str:
    """Format bytes with the largest unit that keeps the value >= 1, e.g. '1.50 GB'."""
    _check_bytes(num_bytes)
    if num_bytes == 0:
        return "0 B"
    unit = _pick_unit(num_bytes)
    if unit is None:
        return f"{round(num_bytes)} B"
    return f"{num_bytes / UNIT_BYTES[unit]:.{_clamp_precision(precision)}f} {unit}"


def format_smart(num_bytes: float) -> str:
    """Format bytes with fewer decimals for larger values ('12.5 GB', '512 MB')."""
    _check_bytes(num_bytes)
    if num_bytes == 0:
        return "0 B"
    unit = _pick_unit(num_bytes)
    if unit is None:
        return f"{round(num_bytes)} B"
    value = num_bytes / UNIT_BYTES[unit]
    if unit in ("TB", "GB"):
        precision = 1 if value >= 10 else 2
    else:
        precision = 0 if value >= 100 else 1 if value >= 10 else 2
    return f"{value:.{precision}f} {unit}"


def parse_memory_string(text: str) -> float:
    """Parse strings like '24GB' or '512 MB' into bytes."""
    if not isinstance(text, str):
        raise InvalidArgument(f"Memory string must be str, got {type(text).__name__}")
    match = MEMORY_STRING_RE.match(text.strip())
    if not match:
        raise InvalidArgument(f"Unrecognised memory string: {text!r}")
    value = float(match.group(1))
    if value < 0:
        raise InvalidArgument(f"Memory size cannot be negative: {text!r}")
    return value * UNIT_BYTES[match.group(2).upper()]


def calculate_percentage(part: float, total: float, precision: int = 2) -> float:
    """part / total as a percentage; 0 when total is 0."""
    _check_bytes(part, "part")
    _check_bytes(total, "total")
    if total == 0:
        return 0.0
    return round(part / total * 100, _clamp_precision(precision))


def compare_memory_sizes(a: float, b: float) -> int:
    """Return -1, 0 or 1."""
    _check_bytes(a, "a")
    _check_bytes(b, "b")
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def validate_memory_size(num_bytes, max_bytes: float = float(2 ** 53 - 1)) -> bool:
    """True if num_bytes is a finite number in [0, max_bytes]."""
    if not isinstance(num_bytes, numbers.Real) or isinstance(num_bytes, bool):
        return False
    return math.isfinite(num_bytes) and 0 <= num_bytes <= max_bytes
