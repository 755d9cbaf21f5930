"""
Ranked hardware recommendations for a memory requirement and workload.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

from .benchmarks import BenchmarkCatalog, BenchmarkProcessor, PerformancePrediction, load_benchmark_catalog
from .config import BYTES_PER_GB, UtilizationConfig
from .efficiency import WORKLOAD_WEIGHTS, EfficiencyRating, EfficiencyRatingSystem
from .errors import AssemblyError, InvalidArgument
from .fallback import FALLBACK_VERSION, FallbackProvider
from .gpu_specs import DeviceProfile, build_device_profiles
from .memory import MemoryRequirement, ModelParameters
from .utilization import MultiDeviceResult, UtilizationCalculator, UtilizationResult
from .validation import DeviceValidator, ResultValidator, ValidationResult

logger = logging.getLogger(__name__)

ENGINE_VERSION = "1.0.0"

MIN_DEVICE_CONFIDENCE = 0.5
DEFAULT_MAX_RESULTS = 10
SORT_KEYS = ("efficiency", "price", "memory")

BAND_BONUS = {"excellent": 0.10, "good": 0.05, "fair": 0.02}
SINGLE_DEVICE_BONUS = 0.05
EXTRA_DEVICE_PENALTY = 0.05

# Largest group tried when growing a multi-device configuration
MAX_DEVICE_COUNT = 16

# Years since launch, for obsolescence risk
ARCHITECTURE_AGE = {
    "Hopper": 0.5,
    "Ada Lovelace": 1.0,
    "Ampere": 2.5,
    "Turing": 4.0,
    "Pascal": 6.0,
}
DEFAULT_ARCHITECTURE_AGE = 3.0


def legacy_efficiency_label(overall: float) -> str:
    """high / medium / low label used by older consumers."""
    if overall >= 85:
        return "high"
    if overall >= 70:
        return "medium"
    return "low"


def prediction_reliability(confidence: float, coverage: float, data_quality: float) -> str:
    score = (confidence + coverage + data_quality) / 3
    if score >= 0.8:
        return "high"
    if score >= 0.6:
        return "medium"
    return "low"


def assess_risks(device: DeviceProfile, rating: EfficiencyRating, prediction: PerformancePrediction) -> Dict[str, str]:
    """Performance, reliability and obsolescence risk as low / medium / high."""
    conf = prediction.confidence
    performance = "high" if conf < 0.7 else "medium" if conf < 0.85 else "low"
    reliability = "high" if rating.reliability < 85 else "medium" if rating.reliability < 92 else "low"
    age = ARCHITECTURE_AGE.get(device.architecture, DEFAULT_ARCHITECTURE_AGE)
    obsolescence = "high" if age > 3 else "medium" if age > 1.5 else "low"
    return {"performance": performance, "reliability": reliability, "obsolescence": obsolescence}


@dataclass
class Recommendation:
    device_id: str
    name: str
    memory_gb: float
    unit_price: float
    total_price: float
    device_count: int
    suitable: bool
    efficiency_score: float
    utilization: UtilizationResult
    rating: EfficiencyRating
    prediction: PerformancePrediction
    description: str
    multi_device: Optional[MultiDeviceResult] = None
    prediction_reliability: str = "low"
    benchmark_coverage: float = 0.0
    device_confidence: float = 0.0
    risks: Dict[str, str] = field(default_factory=dict)

    @property
    def legacy_efficiency(self) -> str:
        return legacy_efficiency_label(self.rating.overall)

    def to_dict(self) -> dict:
        return {
            "device_id": self.device_id,
            "name": self.name,
            "memory_gb": self.memory_gb,
            "unit_price": self.unit_price,
            "total_price": self.total_price,
            "device_count": self.device_count,
            "suitable": self.suitable,
            "efficiency_score": self.efficiency_score,
            "efficiency": self.legacy_efficiency,
            "description": self.description,
            "utilization": self.utilization.to_dict(),
            "multi_device": self.multi_device.to_dict() if self.multi_device else None,
            "rating": self.rating.to_dict(),
            "prediction": self.prediction.to_dict(),
            "prediction_reliability": self.prediction_reliability,
            "benchmark_coverage": self.benchmark_coverage,
            "device_confidence": round(self.device_confidence, 3),
            "risks": dict(self.risks),
        }


@dataclass
class RecommendationSet:
    workload: str
    recommendations: List[Recommendation]
    best: Optional[Recommendation]
    compatible_count: int
    validation: ValidationResult
    requirement: Optional[MemoryRequirement] = None
    version: str = ENGINE_VERSION

    @property
    def is_fallback(self) -> bool:
        return self.validation.is_fallback

    @classmethod
    def fallback(cls, workload: str, errors: List[str], requirement: MemoryRequirement = None,
                 provider: FallbackProvider = None) -> "RecommendationSet":
        provider = provider or FallbackProvider()
        return cls(
            workload=workload,
            recommendations=[],
            best=None,
            compatible_count=0,
            validation=provider.validation(errors),
            requirement=requirement,
            version=FALLBACK_VERSION,
        )

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "workload": self.workload,
            "requirement": self.requirement.to_dict() if self.requirement else None,
            "best": self.best.device_id if self.best else None,
            "compatible_count": self.compatible_count,
            "is_fallback": self.is_fallback,
            "validation": self.validation.to_dict(),
            "recommendations": [r.to_dict() for r in self.recommendations],
        }


class RecommendationEngine:
    """Combines validation, rating, utilization and prediction into a ranked list.

    All collaborators are injected and stateless; one engine can serve any
    number of requests.
    """

    def __init__(
        self,
        devices: List[DeviceProfile],
        processor: BenchmarkProcessor,
        rating_system: EfficiencyRatingSystem = None,
        calculator: UtilizationCalculator = None,
        device_validator: DeviceValidator = None,
        result_validator: ResultValidator = None,
        fallback: FallbackProvider = None,
    ):
        self.devices = list(devices)
        self.processor = processor
        self.rating_system = rating_system or EfficiencyRatingSystem()
        self.calculator = calculator or UtilizationCalculator()
        self.device_validator = device_validator or DeviceValidator(today=processor.today)
        self.result_validator = result_validator or ResultValidator()
        self.fallback = fallback or FallbackProvider()

    def eligible_devices(self) -> List[tuple]:
        """(device, validation) pairs that pass validation with enough confidence."""
        eligible = []
        for device in self.devices:
            check = self.device_validator.validate(device)
            if not check.is_valid or check.confidence <= MIN_DEVICE_CONFIDENCE:
                logger.warning(f"Skipping {device.device_id}: valid={check.is_valid}, "
                               f"confidence={check.confidence:.2f}")
                continue
            eligible.append((device, check))
        return eligible

    def recommend(
        self,
        requirement: MemoryRequirement,
        workload: str = "inference",
        budget: Optional[float] = None,
        max_results: int = DEFAULT_MAX_RESULTS,
        sort_by: str = "efficiency",
        model: Optional[ModelParameters] = None,
    ) -> RecommendationSet:
        """Ranked recommendations for `requirement`.

        `model` drives performance prediction; without it predictions use the
        standard 7B / batch 1 / 2048-token conditions.
        """
        if workload not in WORKLOAD_WEIGHTS:
            raise InvalidArgument(f"Unknown workload {workload!r}")
        if sort_by not in SORT_KEYS:
            raise InvalidArgument(f"sort_by must be one of {SORT_KEYS}, got {sort_by!r}")
        if not isinstance(max_results, int) or max_results < 1:
            raise InvalidArgument(f"max_results must be a positive integer, got {max_results!r}")
        if budget is not None and (not math.isfinite(budget) or budget < 0):
            raise InvalidArgument(f"budget must be a non-negative number, got {budget!r}")

        if requirement.total_bytes == 0:
            logger.info("Requirement is zero bytes; nothing to recommend")
            return RecommendationSet(
                workload=workload, recommendations=[], best=None, compatible_count=0,
                validation=ValidationResult(is_valid=True, warnings=["memory requirement is zero"]),
                requirement=requirement,
            )

        target = model or ModelParameters(parameter_count=7)
        return self.fallback.safe_call(
            self._assemble,
            lambda info: RecommendationSet.fallback(workload, info.errors, requirement, self.fallback),
            requirement, workload, budget, max_results, sort_by, target,
        )

    def _assemble(self, requirement: MemoryRequirement, workload: str, budget: Optional[float],
                  max_results: int, sort_by: str, target: ModelParameters) -> RecommendationSet:
        """Build and validate the set; raises AssemblyError if validation fails."""
        recs = []
        for device, check in self.eligible_devices():
            rec = self._evaluate(device, check, requirement, workload, target)
            if budget and rec.total_price > budget:
                continue
            recs.append(rec)

        by_score = sorted(recs, key=lambda r: (-r.efficiency_score, r.total_price, r.device_id))
        suitable = [r for r in by_score if r.suitable]
        best = suitable[0] if suitable else (by_score[0] if by_score else None)

        ordered = self._sort(recs, sort_by)[:max_results]
        if best is not None and best not in ordered:
            # the top pick is always part of the returned list
            ordered = [best] + ordered[:max_results - 1]

        rec_set = RecommendationSet(
            workload=workload,
            recommendations=ordered,
            best=best,
            compatible_count=len(suitable),
            validation=ValidationResult(is_valid=True),
            requirement=requirement,
        )
        check = self.result_validator.validate_recommendations(rec_set, budget)
        if not check.is_valid:
            raise AssemblyError("Recommendation set failed validation", errors=check.errors)
        rec_set.validation = check
        return rec_set

    @staticmethod
    def _sort(recs: List[Recommendation], sort_by: str) -> List[Recommendation]:
        if sort_by == "price":
            key = lambda r: (r.total_price, -r.efficiency_score, r.device_id)
        elif sort_by == "memory":
            key = lambda r: (-r.memory_gb * r.device_count, -r.efficiency_score, r.device_id)
        else:
            key = lambda r: (-r.efficiency_score, r.total_price, r.device_id)
        return sorted(recs, key=key)

    def _evaluate(self, device: DeviceProfile, check: ValidationResult, requirement: MemoryRequirement,
                  workload: str, target: ModelParameters) -> Recommendation:
        rating = self.rating_system.rate(device, workload)
        device = device.with_rating(rating)
        single = self.calculator.calculate(requirement.total_bytes, device.memory_bytes)

        suitable = device.memory_bytes >= requirement.total_bytes and not single.is_over_capacity
        multi = None
        if suitable:
            count = 1
            util = single
            score = rating.overall / 100 + BAND_BONUS.get(util.band, 0.0) + SINGLE_DEVICE_BONUS
            score = min(1.0, score)
        else:
            count, multi = self._device_group(requirement, device)
            # utilization of one card holding its share of the requirement
            util = self.calculator.calculate(requirement.total_bytes / count, device.memory_bytes)
            score = max(0.0, rating.overall / 100 - (count - 1) * EXTRA_DEVICE_PENALTY)

        prediction = self.processor.predict_performance(device.device_id, target)
        coverage = self.processor.benchmark_coverage(device.device_id)
        reliability = prediction_reliability(prediction.confidence, coverage, check.confidence)

        return Recommendation(
            device_id=device.device_id,
            name=device.name,
            memory_gb=device.memory_gb,
            unit_price=device.price_usd,
            total_price=device.price_usd * count,
            device_count=count,
            suitable=suitable,
            efficiency_score=round(score, 4),
            utilization=util,
            rating=rating,
            prediction=prediction,
            description=self._describe(device, requirement, single, count, suitable, rating, prediction, multi),
            multi_device=multi,
            prediction_reliability=reliability,
            benchmark_coverage=coverage,
            device_confidence=check.confidence,
            risks=assess_risks(device, rating, prediction),
        )

    def _device_group(self, requirement: MemoryRequirement, device: DeviceProfile):
        """Smallest group (up to MAX_DEVICE_COUNT) whose effective capacity holds the requirement."""
        count = max(2, math.ceil(requirement.total_bytes / device.memory_bytes))
        multi = self.calculator.calculate_multi_device(requirement.total_gb, device.memory_gb, count)
        while not multi.can_fit and count < MAX_DEVICE_COUNT:
            count += 1
            multi = self.calculator.calculate_multi_device(requirement.total_gb, device.memory_gb, count)
        if not multi.can_fit:
            logger.warning(f"{count}x {device.device_id} cannot hold {requirement.total_gb:.1f} GB "
                           f"after communication and load-balancing losses")
        return count, multi

    @staticmethod
    def _describe(device: DeviceProfile, requirement: MemoryRequirement, single: UtilizationResult,
                  count: int, suitable: bool, rating: EfficiencyRating,
                  prediction: PerformancePrediction, multi: Optional[MultiDeviceResult] = None) -> str:
        """`single` is the utilization of the whole requirement on one device."""
        parts = []
        need_gb = requirement.total_gb
        if suitable:
            if single.percentage > 90:
                parts.append(f"High utilization ({single.percentage:.0f}%), little headroom")
            elif single.percentage > 70:
                parts.append(f"Moderate utilization ({single.percentage:.0f}%)")
            else:
                parts.append(f"Ample headroom ({single.percentage:.0f}% utilized)")
        elif need_gb > device.memory_gb:
            parts.append(f"{device.memory_gb:g} GB is not enough for {need_gb:.1f} GB; {count} devices required")
        else:
            parts.append(f"{device.memory_gb:g} GB is nominally enough but overheads push utilization to "
                         f"{single.percentage:.0f}%; {count} devices recommended")
        if multi is not None and not multi.can_fit:
            usable = multi.effective_capacity_gb * multi.load_balancing_efficiency
            parts.append(f"even {count} devices hold only {usable:.1f} GB after parallel overheads, "
                         f"short of {need_gb:.1f} GB")

        parts.append(f"{rating.description} efficiency rating ({rating.overall:.0f}/100)")

        if prediction.is_estimate:
            parts.append(f"~{prediction.tokens_per_second:.0f} tokens/s (specification estimate)")
        else:
            parts.append(f"~{prediction.tokens_per_second:.0f} tokens/s predicted")

        per_dollar = prediction.tokens_per_second / max(device.price_usd * count, 1.0)
        if per_dollar > 2:
            parts.append("excellent cost-effectiveness")
        elif per_dollar > 1:
            parts.append("good cost-effectiveness")
        return "; ".join(parts)


def create_engine(benchmark_path=None, config: UtilizationConfig = None,
                  today: Optional[date] = None, specs: dict = None) -> RecommendationEngine:
    """Engine over the bundled device specs and benchmark catalog."""
    catalog: BenchmarkCatalog = load_benchmark_catalog(benchmark_path)
    return RecommendationEngine(
        devices=build_device_profiles(catalog, specs),
        processor=BenchmarkProcessor(catalog, today=today),
        calculator=UtilizationCalculator(config),
    )


def quick_recommend(total_gb: float, workload: str = "inference", budget: Optional[float] = None,
                    max_results: int = DEFAULT_MAX_RESULTS) -> RecommendationSet:
    """One-shot recommendation for a bare memory requirement in GB."""
    if total_gb is None or not math.isfinite(total_gb) or total_gb < 0:
        raise InvalidArgument(f"total_gb must be finite and non-negative, got {total_gb!r}")
    engine = create_engine()
    return engine.recommend(MemoryRequirement(total_bytes=total_gb * BYTES_PER_GB),
                            workload=workload, budget=budget, max_results=max_results)
