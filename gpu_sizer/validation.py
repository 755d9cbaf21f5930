"""
Validation of device catalog entries and of assembled results.

DeviceValidator scores how far a DeviceProfile can be trusted; ResultValidator
sanity-checks what the engine hands back to callers.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

logger = logging.getLogger(__name__)

VALID_VENDORS = ("nvidia", "amd", "intel")

# (min, max) inclusive
DEVICE_RANGES = {
    "memory_gb": (1, 512),
    "memory_bandwidth_gbps": (50, 10000),
    "tdp_watts": (10, 1500),
    "price_usd": (50, 100000),
    "fp16_tflops": (1, 5000),
}

SAMPLE_RANGES = {
    "tokens_per_second": (1, 50000),
    "memory_efficiency": (0.0, 1.0),
    "power_efficiency": (0.01, 100),
}

# Trust multiplier per catalog data source
DEVICE_SOURCE_MULTIPLIER = {
    "manufacturer_official": 1.0,
    "third_party_verified": 0.9,
    "community_reported": 0.7,
    "estimated": 0.5,
}

STALE_PRICE_DAYS = 30


@dataclass
class ValidationResult:
    """Validity flag plus structured error and warning lists."""
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    confidence: float = 1.0
    is_fallback: bool = False

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "confidence": self.confidence,
            "is_fallback": self.is_fallback,
        }


def _in_range(value, bounds) -> bool:
    low, high = bounds
    return isinstance(value, (int, float)) and math.isfinite(value) and low <= value <= high


class DeviceValidator:
    """Checks a DeviceProfile and derives a [0,1] trust confidence."""

    def __init__(self, today: Optional[date] = None):
        self.today = today or date.today()

    def validate(self, device) -> ValidationResult:
        errors: List[str] = []
        warnings: List[str] = []

        if not device.device_id or not str(device.device_id).strip():
            errors.append("device id is missing")
        if not device.name or not str(device.name).strip():
            errors.append("device name is missing")
        if device.vendor not in VALID_VENDORS:
            errors.append(f"unknown vendor {device.vendor!r}")
        if not device.architecture:
            errors.append("architecture is missing")

        for attr, bounds in DEVICE_RANGES.items():
            value = getattr(device, attr)
            if not _in_range(value, bounds):
                errors.append(f"{attr}={value!r} outside [{bounds[0]}, {bounds[1]}]")

        if device.msrp_usd and device.price_usd > device.msrp_usd * 3:
            warnings.append("current price is more than 3x MSRP")

        price_age = (self.today - device.price_updated).days if device.price_updated else None
        if price_age is not None and price_age > STALE_PRICE_DAYS:
            warnings.append(f"price data is {price_age} days old")

        sample = device.primary_sample()
        if sample is not None:
            for attr, bounds in SAMPLE_RANGES.items():
                value = getattr(sample, attr)
                if not _in_range(value, bounds):
                    errors.append(f"benchmark {attr}={value!r} outside [{bounds[0]}, {bounds[1]}]")
            if sample.bandwidth_utilization is not None and sample.bandwidth_utilization > 0.95:
                warnings.append("memory bandwidth utilization above 95% is unrealistic")
            if device.tdp_watts and sample.power_efficiency > sample.tokens_per_second / device.tdp_watts * 1.2:
                warnings.append("power efficiency looks optimistic for the device TDP")
        else:
            warnings.append("no benchmark samples; ratings use specification estimates")

        confidence = self._confidence(device, errors, warnings)
        result = ValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            confidence=confidence,
        )
        if errors:
            logger.warning(f"Device {device.device_id} failed validation: {'; '.join(errors)}")
        return result

    def _confidence(self, device, errors: List[str], warnings: List[str]) -> float:
        confidence = 1.0 - 0.15 * len(errors) - 0.03 * len(warnings)
        confidence *= DEVICE_SOURCE_MULTIPLIER.get(device.data_source, 0.5)

        if device.last_updated:
            age = (self.today - device.last_updated).days
            if age > 90:
                confidence *= 0.85
            elif age > 30:
                confidence *= 0.95
        if not device.verified:
            confidence *= 0.85
        return max(0.0, min(1.0, confidence))


class ResultValidator:
    """Sanity checks on assembled utilization results and recommendation sets."""

    def validate_utilization(self, result) -> ValidationResult:
        errors = []
        warnings = []
        if result is None:
            return ValidationResult(is_valid=False, errors=["utilization result is missing"], confidence=0.0)
        if not math.isfinite(result.theoretical) or result.theoretical < 0:
            errors.append(f"theoretical utilization {result.theoretical!r} is invalid")
        if math.isnan(result.practical) or result.practical < 0:
            errors.append(f"practical utilization {result.practical!r} is invalid")
        if not 0 <= result.percentage <= 1000:
            errors.append(f"utilization percentage {result.percentage!r} outside [0, 1000]")
        if result.band not in ("excellent", "good", "fair", "poor"):
            errors.append(f"unknown efficiency band {result.band!r}")
        if math.isfinite(result.practical) and result.practical + 1e-9 < result.theoretical:
            warnings.append("practical utilization is below theoretical; overhead settings may be wrong")
        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

    def validate_recommendations(self, rec_set, budget: Optional[float] = None) -> ValidationResult:
        errors = []
        warnings = []
        if rec_set is None:
            return ValidationResult(is_valid=False, errors=["recommendation set is missing"], confidence=0.0)

        for rec in rec_set.recommendations:
            if not 0 <= rec.efficiency_score <= 1:
                errors.append(f"{rec.device_id}: efficiency score {rec.efficiency_score!r} outside [0, 1]")
            if rec.device_count < 1:
                errors.append(f"{rec.device_id}: device count must be >= 1")
            if budget is not None and budget > 0 and rec.total_price > budget:
                errors.append(f"{rec.device_id}: price {rec.total_price} exceeds budget {budget}")
            if not rec.description:
                warnings.append(f"{rec.device_id}: empty description")
            util_check = self.validate_utilization(rec.utilization)
            errors.extend(f"{rec.device_id}: {e}" for e in util_check.errors)

        best = rec_set.best
        if best is not None:
            suitable = [r for r in rec_set.recommendations if r.suitable]
            if suitable and best.efficiency_score < max(r.efficiency_score for r in suitable):
                errors.append("best recommendation does not have the highest score among suitable devices")
        if not rec_set.recommendations:
            warnings.append("no device passed the filters")

        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
