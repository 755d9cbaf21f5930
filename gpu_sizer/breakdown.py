"""
Memory breakdown into labelled, percentage-normalised components.

Percentages are rescaled so that they always sum to exactly 100.00 after
rounding to two decimals.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from .errors import InvalidArgument
from .validation import ValidationResult

logger = logging.getLogger(__name__)

BREAKDOWN_COLORS = [
    "#3b82f6",  # blue
    "#10b981",  # green
    "#f59e0b",  # amber
    "#ef4444",  # red
    "#8b5cf6",  # violet
    "#06b6d4",  # cyan
    "#84cc16",  # lime
    "#f97316",  # orange
]

# Well-known requirement components: key -> (label, color, description)
COMPONENT_INFO = {
    "weights": ("Model weights", "#3b82f6", "Parameters stored at the chosen precision"),
    "activations": ("Activations", "#10b981", "Hidden states, KV cache and intermediate buffers"),
    "gradients": ("Gradients", "#f59e0b", "One gradient per trainable parameter"),
    "optimizer": ("Optimizer states", "#ef4444", "Momentum / variance buffers kept by the optimizer"),
}

# GPU capacity buckets, in display order: key -> (label, color, description)
GPU_BUCKETS = [
    ("base", "Base requirement", "#3b82f6", "Memory the workload itself needs"),
    ("fragmentation", "Fragmentation loss", "#f59e0b", "Lost to allocator fragmentation"),
    ("overhead", "System overhead", "#8b5cf6", "Runtime, context and driver reservations"),
    ("safety", "Safety buffer", "#ef4444", "Headroom held back against spikes"),
    ("available", "Available", "#10b981", "Free device memory"),
]

PERCENT_TOLERANCE = 0.1
BYTES_TOLERANCE = 0.01
STEP = 0.01


@dataclass
class BreakdownItem:
    label: str
    bytes: float
    percentage: float
    color: str = ""
    description: str = ""
    key: str = ""

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "label": self.label,
            "bytes": self.bytes,
            "percentage": self.percentage,
            "color": self.color,
            "description": self.description,
        }


def normalize_percentages(values: List[float]) -> List[float]:
    """Shares of sum(values) in percent, rounded to 2 dp and summing to 100.00.

    Rounding residue is handed out in 0.01 steps to the largest entries first;
    whatever is left after that goes to the single largest entry.
    """
    if not values:
        raise InvalidArgument("cannot normalise an empty list")
    arr = np.asarray(values, dtype=float)
    if not np.all(np.isfinite(arr)) or np.any(arr < 0):
        raise InvalidArgument("values must be finite and non-negative")
    total = float(arr.sum())
    if total <= 0:
        raise InvalidArgument("values must have a positive sum")

    raw = arr / total * 100
    rounded = [round(float(r), 2) for r in raw]
    # descending by raw share, ties keep input order
    order = sorted(range(len(raw)), key=lambda i: -raw[i])
    candidates = [i for i in order if raw[i] > 0]

    steps = int(round((100 - sum(rounded)) / STEP))
    delta = STEP if steps > 0 else -STEP
    k = 0
    remaining = abs(steps)
    while remaining and k < len(candidates) * 2:
        idx = candidates[k % len(candidates)]
        k += 1
        if delta < 0 and rounded[idx] < STEP:
            continue
        rounded[idx] = round(rounded[idx] + delta, 2)
        remaining -= 1

    largest = order[0]
    residual = 100 - sum(rounded)
    if abs(residual) > 1e-12:
        rounded[largest] = round(rounded[largest] + residual, 2)
    return rounded


class MemoryBreakdownCalculator:
    """Builds and validates breakdown item lists."""

    def calculate(self, components: Dict[str, float],
                  descriptions: Optional[Dict[str, str]] = None) -> List[BreakdownItem]:
        """Breakdown of arbitrary named components (label -> bytes)."""
        if not components:
            raise InvalidArgument("components must not be empty")
        descriptions = descriptions or {}
        for key, value in components.items():
            if value is None or not math.isfinite(value) or value < 0:
                raise InvalidArgument(f"component {key!r} has invalid size {value!r}")

        keys = list(components)
        percentages = normalize_percentages([components[k] for k in keys])
        items = []
        for i, key in enumerate(keys):
            label, color, description = COMPONENT_INFO.get(
                key, (key, BREAKDOWN_COLORS[i % len(BREAKDOWN_COLORS)], "")
            )
            items.append(BreakdownItem(
                key=key,
                label=label,
                bytes=float(components[key]),
                percentage=percentages[i],
                color=color,
                description=descriptions.get(key, description),
            ))
        return items

    def from_requirement(self, requirement) -> List[BreakdownItem]:
        """Breakdown of a MemoryRequirement, skipping zero-sized components."""
        components = {k: v for k, v in requirement.components().items() if v > 0}
        if not components:
            raise InvalidArgument("requirement has no non-zero components")
        return self.calculate(components)

    def calculate_gpu_breakdown(self, capacity_bytes: float, used_bytes: float, overhead_bytes: float,
                                fragmentation_bytes: float, safety_bytes: float) -> List[BreakdownItem]:
        """Split device capacity into base need, losses, reservations and free memory.

        `used_bytes` already includes fragmentation, overhead and safety; the
        base requirement is what remains after removing them.
        """
        inputs = {
            "capacity_bytes": capacity_bytes,
            "used_bytes": used_bytes,
            "overhead_bytes": overhead_bytes,
            "fragmentation_bytes": fragmentation_bytes,
            "safety_bytes": safety_bytes,
        }
        for name, value in inputs.items():
            if value is None or not math.isfinite(value) or value < 0:
                raise InvalidArgument(f"{name} must be finite and non-negative, got {value!r}")
        if capacity_bytes <= 0:
            raise InvalidArgument(f"capacity_bytes must be positive, got {capacity_bytes!r}")

        base = used_bytes - fragmentation_bytes - overhead_bytes - safety_bytes
        if base < 0:
            logger.warning("Overheads exceed used memory; base requirement clamped to 0")
            base = 0.0
        available = max(0.0, capacity_bytes - used_bytes)
        sizes = {
            "base": base,
            "fragmentation": fragmentation_bytes,
            "overhead": overhead_bytes,
            "safety": safety_bytes,
            "available": available,
        }

        kept = [b for b in GPU_BUCKETS if b[0] == "available" or sizes[b[0]] > 0]
        if sum(sizes[b[0]] for b in kept) <= 0:
            percentages = [0.0] * (len(kept) - 1) + [100.0]
        else:
            percentages = normalize_percentages([sizes[b[0]] for b in kept])

        return [
            BreakdownItem(key=key, label=label, bytes=float(sizes[key]),
                          percentage=pct, color=color, description=description)
            for (key, label, color, description), pct in zip(kept, percentages)
        ]

    def validate(self, items: List[BreakdownItem], expected_total: Optional[float] = None) -> ValidationResult:
        """Hard errors for empty / negative / unlabelled entries; tolerance breaches are warnings."""
        errors = []
        warnings = []
        if not items:
            return ValidationResult(is_valid=False, errors=["breakdown is empty"], confidence=0.0)

        for i, item in enumerate(items):
            name = item.label or f"item {i}"
            if not item.label or not str(item.label).strip():
                errors.append(f"item {i} has no label")
            if item.bytes < 0:
                errors.append(f"{name} has negative size {item.bytes}")
            if not 0 <= item.percentage <= 100:
                errors.append(f"{name} percentage {item.percentage} outside [0, 100]")
            if not item.color:
                warnings.append(f"{name} has no color")

        pct_sum = sum(item.percentage for item in items)
        if abs(pct_sum - 100) > PERCENT_TOLERANCE:
            warnings.append(f"percentages sum to {pct_sum:.2f}, not 100")

        if expected_total is not None and expected_total > 0:
            byte_sum = sum(item.bytes for item in items)
            if abs(byte_sum - expected_total) / expected_total > BYTES_TOLERANCE:
                warnings.append(f"component sizes sum to {byte_sum:.0f} bytes, expected {expected_total:.0f}")

        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
