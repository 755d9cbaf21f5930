"""
Utilization modelling for a memory requirement on one or more devices.

Covers theoretical vs. practical utilization (reserved memory, driver overhead,
allocator fragmentation and safety margins), multi-device scaling with
communication overhead and load imbalance, a first-fit allocation simulator
and a history-based fragmentation predictor.
"""

import logging
import math
import numbers
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from .config import BYTES_PER_GB, DEFAULT_UTILIZATION_CONFIG, UtilizationConfig
from .errors import InvalidArgument

logger = logging.getLogger(__name__)

# Display clamps
MAX_DISPLAY_RATIO = 10.0
MAX_PERCENTAGE = 1000.0

# (band, low, high) checked in order; the first matching range wins
EFFICIENCY_BANDS = [
    ("excellent", 0.70, 0.85),
    ("good", 0.50, 0.95),
    ("fair", 0.30, 1.00),
]

OPTIMAL_RANGE = (0.70, 0.85)

# Devices in the group -> fraction of ideal throughput kept after imbalance
LOAD_BALANCING_STEPS = [
    (1, 1.00),
    (2, 0.95),
    (4, 0.90),
    (8, 0.85),
]
LOAD_BALANCING_FLOOR = 0.80

# Combined comm + imbalance loss above which one fewer device is preferred
MAX_PARALLEL_LOSS = 0.3

PRIORITY_ORDER = {"high": 3, "medium": 2, "low": 1}

DEFAULT_ALIGNMENT = 256
SIMULATION_HEADROOM = 1.5

# Fragmentation predictor
BASELINE_FRAGMENTATION = 0.05
MAX_FRAGMENTATION = 0.25
SPREAD_PENALTY = 0.03
PEAK_PENALTY = 0.02
RANDOM_DEALLOC_PENALTY = 0.02
HIGH_RISK_THRESHOLD = 0.15
MEDIUM_RISK_THRESHOLD = 0.08


def _require_number(name: str, value) -> float:
    if not isinstance(value, numbers.Real) or isinstance(value, bool):
        raise InvalidArgument(f"{name} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise InvalidArgument(f"{name} must be finite, got {value!r}")
    return float(value)


def _require_non_negative(name: str, value) -> float:
    value = _require_number(name, value)
    if value < 0:
        raise InvalidArgument(f"{name} cannot be negative, got {value!r}")
    return value


def _require_positive(name: str, value) -> float:
    value = _require_number(name, value)
    if value <= 0:
        raise InvalidArgument(f"{name} must be positive, got {value!r}")
    return value


def _require_count(name: str, value) -> int:
    if not isinstance(value, numbers.Integral) or isinstance(value, bool) or value < 1:
        raise InvalidArgument(f"{name} must be an integer >= 1, got {value!r}")
    return int(value)


def _bounded(ratio: float) -> float:
    if not math.isfinite(ratio):
        return MAX_DISPLAY_RATIO
    return min(MAX_DISPLAY_RATIO, max(0.0, ratio))


def efficiency_band(practical: float) -> str:
    """Map practical utilization to excellent / good / fair / poor."""
    if practical is None or not math.isfinite(practical) or practical < 0:
        return "poor"
    for band, low, high in EFFICIENCY_BANDS:
        if low <= practical <= high:
            return band
    return "poor"


def utilization_score(utilization: float) -> float:
    """Advisory 0-100 score peaking at the 70-85% band and decaying outward."""
    if not math.isfinite(utilization):
        return 0.0
    low, high = OPTIMAL_RANGE
    if low <= utilization <= high:
        return 100.0
    if utilization < low:
        return max(0.0, utilization / low * 80)
    return max(20.0, 80 - (utilization - high) * 200)


def load_balancing_efficiency(device_count: int) -> float:
    """Fraction of ideal parallel throughput kept for a device count."""
    device_count = _require_count("device_count", device_count)
    for limit, efficiency in LOAD_BALANCING_STEPS:
        if device_count <= limit:
            return efficiency
    return LOAD_BALANCING_FLOOR


@dataclass
class UtilizationResult:
    """Utilization of one requirement on one device."""
    theoretical: float
    practical: float
    percentage: float
    is_over_capacity: bool
    band: str
    needed_bytes: float = 0.0
    capacity_bytes: float = 0.0
    available_bytes: float = 0.0
    fragmentation_bytes: float = 0.0
    reserved_bytes: float = 0.0

    @property
    def theoretical_display(self) -> float:
        return _bounded(self.theoretical)

    @property
    def practical_display(self) -> float:
        return _bounded(self.practical)

    def to_dict(self) -> dict:
        return {
            "theoretical": self.theoretical,
            "practical": self.practical if math.isfinite(self.practical) else None,
            "theoretical_display": self.theoretical_display,
            "practical_display": self.practical_display,
            "percentage": self.percentage,
            "is_over_capacity": self.is_over_capacity,
            "band": self.band,
            "needed_bytes": self.needed_bytes,
            "capacity_bytes": self.capacity_bytes,
            "available_bytes": self.available_bytes,
            "fragmentation_bytes": self.fragmentation_bytes,
            "reserved_bytes": self.reserved_bytes,
        }

    def to_legacy(self) -> dict:
        """Flat view for consumers that only know the older result shape."""
        return {
            "theoreticalUtilization": self.theoretical_display,
            "practicalUtilization": self.practical_display,
            "utilizationPercentage": self.percentage,
            "isOverCapacity": self.is_over_capacity,
            "efficiencyRating": self.band,
        }


@dataclass
class SafetyMarginResult:
    """GB-level utilization with a capacity safety margin and advice."""
    theoretical: float
    practical: float
    available_gb: float
    reserved_gb: float
    fragmentation_gb: float
    safety_buffer_gb: float
    score: float
    efficiency: str  # high / medium / low
    is_over_capacity: bool
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "theoretical": self.theoretical,
            "practical": self.practical if math.isfinite(self.practical) else None,
            "available_gb": self.available_gb,
            "reserved_gb": self.reserved_gb,
            "fragmentation_gb": self.fragmentation_gb,
            "safety_buffer_gb": self.safety_buffer_gb,
            "score": self.score,
            "efficiency": self.efficiency,
            "is_over_capacity": self.is_over_capacity,
            "recommendations": list(self.recommendations),
        }


@dataclass
class UtilizationRange:
    """Best / expected / worst per-device utilization under load imbalance."""
    minimum: float
    expected: float
    maximum: float

    def to_dict(self) -> dict:
        return {"min": self.minimum, "expected": self.expected, "max": self.maximum}


@dataclass
class MultiDeviceResult:
    """Scaling estimate for a requirement split across identical devices."""
    device_count: int
    needed_gb: float
    per_device_gb: float
    total_capacity_gb: float
    communication_overhead_gb: float
    effective_capacity_gb: float
    load_balancing_efficiency: float
    scaling_factor: float
    optimal_device_count: int
    cost_efficiency: float
    per_device_utilization: UtilizationRange
    can_fit: bool
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "device_count": self.device_count,
            "needed_gb": self.needed_gb,
            "per_device_gb": self.per_device_gb,
            "total_capacity_gb": self.total_capacity_gb,
            "communication_overhead_gb": self.communication_overhead_gb,
            "effective_capacity_gb": self.effective_capacity_gb,
            "load_balancing_efficiency": self.load_balancing_efficiency,
            "scaling_factor": self.scaling_factor,
            "optimal_device_count": self.optimal_device_count,
            "cost_efficiency": self.cost_efficiency,
            "per_device_utilization": self.per_device_utilization.to_dict(),
            "can_fit": self.can_fit,
            "recommendations": list(self.recommendations),
        }


@dataclass
class AllocationRequest:
    """One buffer to place in device memory."""
    size: int
    alignment: int = DEFAULT_ALIGNMENT
    category: str = "general"
    priority: str = "medium"
    request_id: Optional[str] = None
    transient: bool = False  # released once the whole batch has been placed

    def __post_init__(self):
        _require_non_negative("size", self.size)
        if not isinstance(self.alignment, numbers.Integral) or self.alignment < 1:
            raise InvalidArgument(f"alignment must be an integer >= 1, got {self.alignment!r}")
        if self.priority not in PRIORITY_ORDER:
            raise InvalidArgument(f"Unknown priority {self.priority!r}; expected one of {list(PRIORITY_ORDER)}")

    @property
    def aligned_size(self) -> int:
        return int(math.ceil(self.size / self.alignment) * self.alignment)


@dataclass
class AllocatedBlock:
    request: AllocationRequest
    offset: int
    size: int  # aligned


@dataclass
class AllocationSimulation:
    """Outcome of placing a batch of requests into a fixed capacity."""
    capacity: int
    allocations: List[AllocatedBlock]
    failed: List[AllocationRequest]
    allocated_bytes: int
    wasted_bytes: int
    free_bytes: int
    largest_free_block: int
    fragmentation_ratio: float
    utilization_efficiency: float
    free_blocks: int = 1

    @property
    def success_count(self) -> int:
        return len(self.allocations)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    def to_dict(self) -> dict:
        return {
            "capacity": self.capacity,
            "successful": [
                {"request_id": b.request.request_id, "category": b.request.category,
                 "offset": b.offset, "size": b.size}
                for b in self.allocations
            ],
            "failed": [
                {"request_id": r.request_id, "category": r.category, "size": r.size}
                for r in self.failed
            ],
            "allocated_bytes": self.allocated_bytes,
            "wasted_bytes": self.wasted_bytes,
            "free_bytes": self.free_bytes,
            "largest_free_block": self.largest_free_block,
            "fragmentation_ratio": self.fragmentation_ratio,
            "utilization_efficiency": self.utilization_efficiency,
        }


@dataclass
class AllocationHistory:
    """Observed allocation behaviour used to predict fragmentation."""
    allocation_sizes: List[float]
    frequencies: List[float] = field(default_factory=list)
    deallocation_pattern: str = "sequential"  # or "random"
    peak_memory_ratio: float = 0.0


@dataclass
class FragmentationPrediction:
    expected_fragmentation: float
    confidence: float
    risk: str  # low / medium / high
    mitigations: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "expected_fragmentation": self.expected_fragmentation,
            "confidence": self.confidence,
            "risk": self.risk,
            "mitigations": list(self.mitigations),
        }


class _FreeList:
    """Address-ordered free blocks with coalescing on release."""

    def __init__(self, capacity: int):
        self.blocks: List[List[int]] = [[0, capacity]] if capacity > 0 else []

    def take_first_fit(self, size: int) -> Optional[int]:
        for i, (offset, length) in enumerate(self.blocks):
            if length >= size:
                if length == size:
                    del self.blocks[i]
                else:
                    self.blocks[i] = [offset + size, length - size]
                return offset
        return None

    def release(self, offset: int, size: int):
        self.blocks.append([offset, size])
        self.blocks.sort()
        merged: List[List[int]] = []
        for start, length in self.blocks:
            if merged and merged[-1][0] + merged[-1][1] == start:
                merged[-1][1] += length
            else:
                merged.append([start, length])
        self.blocks = merged

    @property
    def total(self) -> int:
        return sum(length for _, length in self.blocks)

    @property
    def largest(self) -> int:
        return max((length for _, length in self.blocks), default=0)


class UtilizationCalculator:
    """Stateless utilization calculator bound to one UtilizationConfig."""

    def __init__(self, config: UtilizationConfig = None):
        self.config = config or DEFAULT_UTILIZATION_CONFIG

    # ------------------------------------------------------------------
    # Single device
    # ------------------------------------------------------------------
    def calculate(self, needed_bytes: float, capacity_bytes: float) -> UtilizationResult:
        """Theoretical and practical utilization of needed_bytes on a device."""
        needed = _require_non_negative("needed_bytes", needed_bytes)
        capacity = _require_positive("capacity_bytes", capacity_bytes)
        cfg = self.config

        theoretical = needed / capacity
        reserved = cfg.reserved_bytes
        available = max(0.0, capacity - reserved)
        fragmentation = needed * cfg.fragmentation_factor
        total_needed = needed + fragmentation
        practical = total_needed / available if available > 0 else math.inf

        percentage = MAX_PERCENTAGE if not math.isfinite(practical) else min(MAX_PERCENTAGE, max(0.0, practical * 100))
        return UtilizationResult(
            theoretical=theoretical,
            practical=practical,
            percentage=percentage,
            is_over_capacity=practical > 1.0,
            band=efficiency_band(practical),
            needed_bytes=needed,
            capacity_bytes=capacity,
            available_bytes=available,
            fragmentation_bytes=fragmentation,
            reserved_bytes=reserved,
        )

    def calculate_gb(self, needed_gb: float, capacity_gb: float) -> UtilizationResult:
        return self.calculate(
            _require_non_negative("needed_gb", needed_gb) * BYTES_PER_GB,
            _require_positive("capacity_gb", capacity_gb) * BYTES_PER_GB,
        )

    def calculate_with_safety_margin(self, needed_gb: float, capacity_gb: float) -> SafetyMarginResult:
        """Like calculate() but in GB, also holding back capacity * safety_margin."""
        needed = _require_non_negative("needed_gb", needed_gb)
        capacity = _require_positive("capacity_gb", capacity_gb)
        cfg = self.config

        reserved = cfg.reserved_gb
        safety = capacity * cfg.safety_margin
        available = max(0.0, capacity - reserved - safety)
        fragmentation = needed * cfg.fragmentation_factor
        total_needed = needed + fragmentation

        theoretical = needed / capacity
        practical = total_needed / available if available > 0 else math.inf
        score = utilization_score(practical)

        if score >= 80 and practical <= 0.9:
            efficiency = "high"
        elif score >= 50 and practical <= 0.95:
            efficiency = "medium"
        else:
            efficiency = "low"

        return SafetyMarginResult(
            theoretical=theoretical,
            practical=practical,
            available_gb=available,
            reserved_gb=reserved,
            fragmentation_gb=fragmentation,
            safety_buffer_gb=safety,
            score=score,
            efficiency=efficiency,
            is_over_capacity=practical > 1.0,
            recommendations=self._safety_recommendations(theoretical, practical),
        )

    def _safety_recommendations(self, theoretical: float, practical: float) -> List[str]:
        cfg = self.config
        recs = []
        if practical < 0.5:
            recs.append(
                f"Utilization is low ({practical:.0%}); a smaller device or a larger batch size would use memory better"
            )
        elif practical > 0.95:
            recs.append("Utilization is above 95%, risking out-of-memory errors; use a larger device")
        if math.isfinite(practical) and practical - theoretical > 0.2:
            recs.append("Overheads add more than 20 points of utilization; review the allocation strategy")
        if cfg.fragmentation_factor > 0.1:
            recs.append("Fragmentation factor is high; a pooled allocator would reduce waste")
        if cfg.safety_margin > 0.2:
            recs.append(f"Safety margin of {cfg.safety_margin:.0%} is conservative; it can likely be lowered")
        return recs

    # ------------------------------------------------------------------
    # Multiple devices
    # ------------------------------------------------------------------
    def optimal_device_count(self, needed_gb: float, per_device_gb: float) -> int:
        needed = _require_non_negative("needed_gb", needed_gb)
        per_device = _require_positive("per_device_gb", per_device_gb)
        base = max(1, int(math.ceil(needed / per_device)))
        if base == 1:
            return 1
        loss = self.config.communication_overhead + (1 - load_balancing_efficiency(base))
        if loss > MAX_PARALLEL_LOSS and base > 2:
            return max(2, base - 1)
        return base

    def calculate_multi_device(self, needed_gb: float, per_device_gb: float, device_count: int) -> MultiDeviceResult:
        """Aggregate capacity, scaling factor and advice for device_count identical devices."""
        needed = _require_non_negative("needed_gb", needed_gb)
        per_device = _require_positive("per_device_gb", per_device_gb)
        count = _require_count("device_count", device_count)
        cfg = self.config

        total_capacity = per_device * count
        comm_overhead = total_capacity * cfg.communication_overhead
        effective = total_capacity - comm_overhead
        lb = load_balancing_efficiency(count)
        scaling = effective * lb / per_device
        optimal = self.optimal_device_count(needed, per_device)

        cost_efficiency = scaling / count * 100
        if count > 1 and needed / per_device < 1:
            # a single device would have been enough
            cost_efficiency *= 0.7
        cost_efficiency = min(100.0, cost_efficiency)

        base_util = needed / count / per_device
        imbalance = (1 - lb) / 2
        per_device_util = UtilizationRange(
            minimum=base_util * (1 - imbalance),
            expected=base_util,
            maximum=base_util * (1 + imbalance),
        )

        recs = []
        if count > optimal:
            recs.append(f"{count} devices exceed the optimal {optimal}; fewer devices would cut cost")
        elif count < optimal:
            recs.append(f"At least {optimal} devices are needed for {needed:.1f} GB")
        if scaling < count * 0.8:
            recs.append("Scaling efficiency is below 80%; a faster interconnect (e.g. NVLink) would help")
        if lb < 0.9:
            recs.append("Load imbalance is significant; revisit the model partitioning strategy")
        if count > 4:
            recs.append("Large device groups benefit from combining tensor and pipeline parallelism")

        return MultiDeviceResult(
            device_count=count,
            needed_gb=needed,
            per_device_gb=per_device,
            total_capacity_gb=total_capacity,
            communication_overhead_gb=comm_overhead,
            effective_capacity_gb=effective,
            load_balancing_efficiency=lb,
            scaling_factor=scaling,
            optimal_device_count=optimal,
            cost_efficiency=cost_efficiency,
            per_device_utilization=per_device_util,
            can_fit=effective * lb >= needed,
            recommendations=recs,
        )

    # ------------------------------------------------------------------
    # Allocation / fragmentation
    # ------------------------------------------------------------------
    def simulate_allocation(self, capacity_bytes: int, requests: List[AllocationRequest]) -> AllocationSimulation:
        """Place requests first-fit, high priority first; failures are reported, not raised."""
        capacity = int(_require_positive("capacity_bytes", capacity_bytes))
        # sorted() is stable, so equal priorities keep submission order
        ordered = sorted(requests, key=lambda r: PRIORITY_ORDER[r.priority], reverse=True)

        free = _FreeList(capacity)
        placed: List[AllocatedBlock] = []
        failed: List[AllocationRequest] = []
        for request in ordered:
            size = request.aligned_size
            offset = free.take_first_fit(size)
            if offset is None:
                logger.debug(f"Allocation failed: {request.category} {size} bytes")
                failed.append(request)
                continue
            placed.append(AllocatedBlock(request=request, offset=offset, size=size))

        for block in placed:
            if block.request.transient:
                free.release(block.offset, block.size)
        resident = [b for b in placed if not b.request.transient]

        allocated = sum(b.size for b in resident)
        wasted = sum(b.size - b.request.size for b in resident)
        total_free = free.total
        largest = free.largest
        fragmentation = 1 - largest / total_free if total_free > 0 else 0.0

        return AllocationSimulation(
            capacity=capacity,
            allocations=placed,
            failed=failed,
            allocated_bytes=allocated,
            wasted_bytes=int(wasted),
            free_bytes=total_free,
            largest_free_block=largest,
            fragmentation_ratio=fragmentation,
            utilization_efficiency=allocated / capacity,
            free_blocks=len(free.blocks),
        )

    def simulate_fragmentation(self, sizes: List[int], alignment: int = DEFAULT_ALIGNMENT) -> AllocationSimulation:
        """Simulate a batch of equal-priority allocations into 1.5x their total size."""
        if not sizes:
            raise InvalidArgument("sizes must not be empty")
        requests = [
            AllocationRequest(size=int(s), alignment=alignment, request_id=f"alloc-{i}")
            for i, s in enumerate(sizes)
        ]
        capacity = int(math.ceil(sum(r.size for r in requests) * SIMULATION_HEADROOM))
        return self.simulate_allocation(max(capacity, 1), requests)

    def predict_fragmentation(self, history: AllocationHistory) -> FragmentationPrediction:
        """Expected fragmentation, confidence and risk from allocation history."""
        sizes = np.asarray(history.allocation_sizes, dtype=float)
        if sizes.size and (not np.all(np.isfinite(sizes)) or np.any(sizes < 0)):
            raise InvalidArgument("allocation_sizes must be finite and non-negative")

        weights = None
        if len(history.frequencies) == sizes.size and sizes.size and sum(history.frequencies) > 0:
            weights = np.asarray(history.frequencies, dtype=float)

        if sizes.size:
            mean = float(np.average(sizes, weights=weights))
            std = float(np.sqrt(np.average((sizes - mean) ** 2, weights=weights)))
        else:
            mean = std = 0.0
        cv = std / mean if mean > 0 else 0.0

        expected = BASELINE_FRAGMENTATION
        if mean > 0 and std > 0.5 * mean:
            expected += SPREAD_PENALTY
        if history.peak_memory_ratio > 0.8:
            expected += PEAK_PENALTY
        if history.deallocation_pattern == "random":
            expected += RANDOM_DEALLOC_PENALTY
        expected = round(min(MAX_FRAGMENTATION, expected), 4)

        confidence = 0.8
        if sizes.size > 100:
            confidence += 0.1
        elif sizes.size < 10:
            confidence -= 0.2
        if cv < 0.3:
            confidence += 0.1
        elif cv > 1.0:
            confidence -= 0.1
        confidence = round(min(1.0, max(0.3, confidence)), 4)

        if expected > HIGH_RISK_THRESHOLD:
            risk = "high"
        elif expected > MEDIUM_RISK_THRESHOLD:
            risk = "medium"
        else:
            risk = "low"

        mitigations = []
        if risk != "low":
            if expected > HIGH_RISK_THRESHOLD:
                mitigations.append("Use a memory pool to recycle buffers of common sizes")
                mitigations.append("Schedule periodic memory compaction")
            if expected > 0.1:
                mitigations.append("Allocate large buffers first to reduce holes")
                mitigations.append("Round allocations up to fixed-size blocks")
            if history.deallocation_pattern == "random":
                mitigations.append("Release buffers in reverse allocation order where possible")
            if history.peak_memory_ratio > 0.9:
                mitigations.append("Peak usage is above 90%; provision more capacity")
            if not mitigations:
                mitigations.append("Pre-allocate buffers for the most frequent allocation sizes")

        return FragmentationPrediction(
            expected_fragmentation=expected,
            confidence=confidence,
            risk=risk,
            mitigations=mitigations,
        )


def calculate_utilization(needed_bytes: float, capacity_bytes: float,
                          config: UtilizationConfig = None) -> UtilizationResult:
    """Convenience wrapper around UtilizationCalculator.calculate."""
    return UtilizationCalculator(config).calculate(needed_bytes, capacity_bytes)


def calculate_multi_device_efficiency(needed_gb: float, per_device_gb: float, device_count: int,
                                      config: UtilizationConfig = None) -> MultiDeviceResult:
    """Convenience wrapper around UtilizationCalculator.calculate_multi_device."""
    return UtilizationCalculator(config).calculate_multi_device(needed_gb, per_device_gb, device_count)


def zero_utilization() -> UtilizationResult:
    """Placeholder result used when no real calculation is available."""
    return UtilizationResult(theoretical=0.0, practical=0.0, percentage=0.0,
                             is_over_capacity=False, band="poor")
