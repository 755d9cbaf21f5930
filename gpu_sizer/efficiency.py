"""
Workload-aware efficiency rating of devices.

Each device gets four 0-100 sub-scores (compute, memory, power, cost) that are
combined with per-workload weights into an overall score and a confidence.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .benchmarks import (
    FALLBACK_MEMORY_EFFICIENCY,
    FALLBACK_POWER_EFFICIENCY,
    FALLBACK_TOKENS_PER_SECOND,
)
from .errors import InvalidArgument
from .gpu_specs import DeviceProfile

logger = logging.getLogger(__name__)

WORKLOAD_WEIGHTS = {
    "inference": {"compute": 0.45, "memory": 0.20, "power": 0.25, "cost": 0.10},
    "training": {"compute": 0.30, "memory": 0.40, "power": 0.15, "cost": 0.15},
    "mixed": {"compute": 0.37, "memory": 0.30, "power": 0.20, "cost": 0.13},
}

# RTX 4090 reference point
REFERENCE = {
    "tokens_per_second": 2847,
    "fp16_tflops": 165.2,
    "memory_bandwidth_gbps": 1008,
    "power_efficiency": 6.33,
    "price_usd": 1699,
}
REFERENCE_PRICE_PERFORMANCE = REFERENCE["tokens_per_second"] / REFERENCE["price_usd"]

# Used when a sample carries no measured bandwidth utilization
DEFAULT_BANDWIDTH_UTILIZATION = 0.85

ARCH_MEMORY_BONUS = {"Hopper": 5, "Ada Lovelace": 3, "Ampere": 2}
ARCH_POWER_BONUS = {"Hopper": 5, "Ada Lovelace": 8}

BASE_CONFIDENCE = {"compute": 0.9, "memory": 0.85, "power": 0.8, "cost": 0.75}
ESTIMATE_CONFIDENCE_FACTOR = 0.5

THERMAL_BASELINE_TDP = 200
LOW_PRICE = 2000
HIGH_PRICE = 20000
AVAILABILITY_ADJUSTMENT = {"available": 5, "limited": -3}
UNAVAILABLE_PENALTY = -10

RATING_LABELS = [(90, "excellent"), (80, "good"), (70, "medium"), (60, "fair")]


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def describe_score(score: float) -> str:
    for threshold, label in RATING_LABELS:
        if score >= threshold:
            return label
    return "poor"


@dataclass
class ScoreComponent:
    """One weighted sub-score with the factors that produced it."""
    score: float
    weight: float
    confidence: float
    factors: Dict[str, float] = field(default_factory=dict)

    @property
    def weighted(self) -> float:
        return self.score * self.weight

    def to_dict(self) -> dict:
        return {
            "score": round(self.score, 2),
            "weight": self.weight,
            "confidence": round(self.confidence, 3),
            "factors": {k: round(v, 3) for k, v in self.factors.items()},
        }


@dataclass
class EfficiencyRating:
    device_id: str
    workload: str
    overall: float
    compute: ScoreComponent
    memory: ScoreComponent
    power: ScoreComponent
    cost: ScoreComponent
    confidence: float
    reliability: float
    estimated: bool = False  # no benchmark sample, specification figures used

    @property
    def description(self) -> str:
        return describe_score(self.overall)

    def components(self) -> Dict[str, ScoreComponent]:
        return {"compute": self.compute, "memory": self.memory, "power": self.power, "cost": self.cost}

    def to_dict(self) -> dict:
        return {
            "device_id": self.device_id,
            "workload": self.workload,
            "overall": self.overall,
            "description": self.description,
            "confidence": round(self.confidence, 3),
            "reliability": self.reliability,
            "estimated": self.estimated,
            **{name: comp.to_dict() for name, comp in self.components().items()},
        }


@dataclass
class BestDevice:
    device: DeviceProfile
    rating: EfficiencyRating
    reason: str


@dataclass
class DeviceComparison:
    winner: str
    loser: str
    difference: float
    magnitude: str  # slight / clear / significant
    deltas: Dict[str, float]
    advantages: List[str]
    summary: str

    def to_dict(self) -> dict:
        return {
            "winner": self.winner,
            "loser": self.loser,
            "difference": self.difference,
            "magnitude": self.magnitude,
            "deltas": self.deltas,
            "advantages": list(self.advantages),
            "summary": self.summary,
        }


class EfficiencyRatingSystem:
    """Stateless rating engine; pass custom weights to override the presets."""

    def __init__(self, weights: Dict[str, Dict[str, float]] = None):
        self.weights = weights or WORKLOAD_WEIGHTS
        for workload, w in self.weights.items():
            if abs(sum(w.values()) - 1.0) > 0.01:
                raise InvalidArgument(f"weights for {workload!r} sum to {sum(w.values()):.3f}, expected 1.0")

    def _weights_for(self, workload: str) -> Dict[str, float]:
        if workload not in self.weights:
            raise InvalidArgument(f"Unknown workload {workload!r}; expected one of {list(self.weights)}")
        return self.weights[workload]

    # ------------------------------------------------------------------
    # Sub-scores
    # ------------------------------------------------------------------
    @staticmethod
    def _measurements(device: DeviceProfile) -> dict:
        sample = device.primary_sample()
        if sample is None:
            return {
                "tokens_per_second": FALLBACK_TOKENS_PER_SECOND,
                "memory_efficiency": FALLBACK_MEMORY_EFFICIENCY,
                "power_efficiency": FALLBACK_POWER_EFFICIENCY,
                "bandwidth_utilization": DEFAULT_BANDWIDTH_UTILIZATION,
                "model_size": 7.0,
                "standard_conditions": True,
                "estimated": True,
            }
        return {
            "tokens_per_second": sample.tokens_per_second,
            "memory_efficiency": sample.memory_efficiency,
            "power_efficiency": sample.power_efficiency,
            "bandwidth_utilization": (sample.bandwidth_utilization
                                      if sample.bandwidth_utilization is not None
                                      else DEFAULT_BANDWIDTH_UTILIZATION),
            "model_size": sample.model_size_billions,
            "standard_conditions": sample.batch_size == 1 and sample.precision == "fp16",
            "estimated": False,
        }

    def compute_score(self, device: DeviceProfile, m: dict, weight: float) -> ScoreComponent:
        throughput = min(100.0, m["tokens_per_second"] / REFERENCE["tokens_per_second"] * 100)
        tflops = min(100.0, device.fp16_tflops / REFERENCE["fp16_tflops"] * 100)
        bandwidth = min(100.0, m["bandwidth_utilization"] * 100)
        score = 0.40 * throughput + 0.35 * tflops + 0.25 * bandwidth

        confidence = BASE_CONFIDENCE["compute"]
        if m["model_size"] >= 70:
            confidence *= 0.9
        elif m["model_size"] > 13:
            confidence *= 0.95
        if not m["standard_conditions"]:
            confidence *= 0.95
        return ScoreComponent(
            score=_clamp(score), weight=weight, confidence=confidence,
            factors={"throughput": throughput, "fp16_tflops": tflops, "bandwidth_utilization": bandwidth},
        )

    def memory_score(self, device: DeviceProfile, m: dict, weight: float) -> ScoreComponent:
        bonus = ARCH_MEMORY_BONUS.get(device.architecture, 0)
        efficiency = m["memory_efficiency"] * 100
        bandwidth = m["bandwidth_utilization"] * 100
        score = round(min(100.0, efficiency * 0.6 + bandwidth * 0.4 + bonus))
        return ScoreComponent(
            score=_clamp(score), weight=weight, confidence=BASE_CONFIDENCE["memory"],
            factors={"memory_efficiency": efficiency, "bandwidth_utilization": bandwidth,
                     "architecture_bonus": bonus},
        )

    def power_score(self, device: DeviceProfile, m: dict, weight: float) -> ScoreComponent:
        per_watt = min(100.0, m["power_efficiency"] / REFERENCE["power_efficiency"] * 100)
        thermal = _clamp(100 - (device.tdp_watts - THERMAL_BASELINE_TDP) / 5)
        bonus = ARCH_POWER_BONUS.get(device.architecture, 0)
        score = min(100.0, 0.7 * per_watt + 0.3 * thermal + bonus)
        return ScoreComponent(
            score=_clamp(score), weight=weight, confidence=BASE_CONFIDENCE["power"],
            factors={"performance_per_watt": per_watt, "thermal": thermal, "architecture_bonus": bonus},
        )

    def cost_score(self, device: DeviceProfile, m: dict, weight: float) -> ScoreComponent:
        price = max(device.price_usd, 1.0)
        per_dollar = min(100.0, (m["tokens_per_second"] / price) / REFERENCE_PRICE_PERFORMANCE * 100)
        memory_per_dollar = min(100.0, device.memory_gb / price * 1000)
        score = 0.6 * per_dollar + 0.4 * memory_per_dollar

        price_adj = 10 if price < LOW_PRICE else -5 if price > HIGH_PRICE else 0
        availability_adj = AVAILABILITY_ADJUSTMENT.get(device.availability, UNAVAILABLE_PENALTY)
        score = _clamp(score + price_adj + availability_adj)
        return ScoreComponent(
            score=score, weight=weight, confidence=BASE_CONFIDENCE["cost"],
            factors={"performance_per_dollar": per_dollar, "memory_per_dollar": memory_per_dollar,
                     "price_adjustment": price_adj, "availability_adjustment": availability_adj},
        )

    def reliability_score(self, device: DeviceProfile) -> float:
        score = 85
        if device.vendor == "nvidia":
            score += 10
        if device.architecture == "Ampere":
            score += 5
        elif device.architecture == "Ada Lovelace":
            score += 3
        if device.verified:
            score += 5
        if device.data_source == "manufacturer_official":
            score += 5
        return min(100, score)

    # ------------------------------------------------------------------
    # Rating
    # ------------------------------------------------------------------
    def rate(self, device: DeviceProfile, workload: str = "inference") -> EfficiencyRating:
        """Rate one device for a workload preset."""
        weights = self._weights_for(workload)
        m = self._measurements(device)

        compute = self.compute_score(device, m, weights["compute"])
        memory = self.memory_score(device, m, weights["memory"])
        power = self.power_score(device, m, weights["power"])
        cost = self.cost_score(device, m, weights["cost"])
        if m["estimated"]:
            for comp in (compute, memory, power, cost):
                comp.confidence *= ESTIMATE_CONFIDENCE_FACTOR

        overall = _clamp(round(sum(c.weighted for c in (compute, memory, power, cost))))
        return EfficiencyRating(
            device_id=device.device_id,
            workload=workload,
            overall=overall,
            compute=compute,
            memory=memory,
            power=power,
            cost=cost,
            confidence=min(c.confidence for c in (compute, memory, power, cost)),
            reliability=self.reliability_score(device),
            estimated=m["estimated"],
        )

    def rate_all(self, devices: List[DeviceProfile], workload: str = "inference") -> List[DeviceProfile]:
        """New profiles carrying their rating for the workload."""
        return [d.with_rating(self.rate(d, workload)) for d in devices]

    def rank(self, devices: List[DeviceProfile], workload: str = "inference") -> List[DeviceProfile]:
        rated = self.rate_all(devices, workload)
        return sorted(rated, key=lambda d: (-d.rating.overall, d.device_id))

    def best_device(self, devices: List[DeviceProfile], workload: str = "inference",
                    budget: Optional[float] = None) -> Optional[BestDevice]:
        """Highest-rated device within budget, with a short reason."""
        candidates = [d for d in devices if budget is None or d.price_usd <= budget]
        if not candidates:
            logger.info(f"No device within budget {budget}")
            return None
        best = self.rank(candidates, workload)[0]
        return BestDevice(device=best, rating=best.rating, reason=self._best_reason(best.rating))

    @staticmethod
    def _best_reason(rating: EfficiencyRating) -> str:
        reasons = []
        if rating.overall >= 90:
            reasons.append("outstanding overall efficiency")
        if rating.compute.score >= 85:
            reasons.append("strong compute performance")
        if rating.power.score >= 85:
            reasons.append("excellent power efficiency")
        if rating.cost.score >= 80:
            reasons.append("good value for money")
        if rating.workload == "inference" and rating.compute.score >= 80:
            reasons.append("well suited to inference throughput")
        elif rating.workload == "training" and rating.memory.score >= 80:
            reasons.append("well suited to training memory demands")
        if not reasons:
            reasons.append("highest overall efficiency among the candidates")
        return ", ".join(reasons)

    def compare(self, a: DeviceProfile, b: DeviceProfile, workload: str = "inference") -> DeviceComparison:
        """Pairwise comparison; ties go to `a`."""
        ra = a.rating if a.rating is not None and a.rating.workload == workload else self.rate(a, workload)
        rb = b.rating if b.rating is not None and b.rating.workload == workload else self.rate(b, workload)

        if ra.overall >= rb.overall:
            winner, loser, rw, rl = a, b, ra, rb
        else:
            winner, loser, rw, rl = b, a, rb, ra
        diff = rw.overall - rl.overall
        if diff < 5:
            magnitude = "slight"
        elif diff < 15:
            magnitude = "clear"
        else:
            magnitude = "significant"

        deltas = {}
        advantages = []
        for name in ("compute", "memory", "power", "cost"):
            delta = getattr(ra, name).score - getattr(rb, name).score
            deltas[name] = round(delta, 2)
            if abs(delta) >= 10:
                leader = a if delta > 0 else b
                advantages.append(f"{leader.name} leads on {name} by {abs(delta):.0f} points")

        summary = f"{winner.name} has a {magnitude} lead over {loser.name} ({rw.overall:.0f} vs {rl.overall:.0f})"
        return DeviceComparison(
            winner=winner.device_id,
            loser=loser.device_id,
            difference=diff,
            magnitude=magnitude,
            deltas=deltas,
            advantages=advantages,
            summary=summary,
        )

    # ------------------------------------------------------------------
    # Checks and reporting
    # ------------------------------------------------------------------
    def check_consistency(self, device: DeviceProfile, rating: EfficiencyRating) -> List[str]:
        """Warnings for ratings that look implausible for the device."""
        warnings = []
        for name, comp in rating.components().items():
            if not 0 <= comp.score <= 100:
                warnings.append(f"{name} score {comp.score} outside [0, 100]")
        if not 0 <= rating.overall <= 100:
            warnings.append(f"overall score {rating.overall} outside [0, 100]")
        if rating.overall > 90 and rating.confidence < 0.7:
            warnings.append("very high overall score with low confidence")
        if rating.cost.score < 50 and device.price_usd < LOW_PRICE:
            warnings.append("low cost score for an inexpensive device")
        if rating.power.score > 90 and device.tdp_watts > 500:
            warnings.append("very high power score for a device above 500 W TDP")
        return warnings

    def efficiency_report(self, devices: List[DeviceProfile], workload: str = "inference") -> dict:
        """Average / best / worst and a label distribution across devices."""
        if not devices:
            return {"workload": workload, "count": 0, "average": 0.0, "best": None, "worst": None,
                    "distribution": {}}
        ranked = self.rank(devices, workload)
        scores = [d.rating.overall for d in ranked]
        distribution: Dict[str, int] = {}
        for d in ranked:
            label = d.rating.description
            distribution[label] = distribution.get(label, 0) + 1
        return {
            "workload": workload,
            "count": len(ranked),
            "average": round(sum(scores) / len(scores), 2),
            "best": ranked[0].device_id,
            "worst": ranked[-1].device_id,
            "distribution": distribution,
        }
