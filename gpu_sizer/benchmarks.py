"""
Benchmark samples with source credibility, and performance prediction for
configurations that were never measured.

Samples are kept in a typed (test_name, device_id) -> BenchmarkSample catalog
that is validated when it is loaded from CSV.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

import pandas as pd

from .errors import BenchmarkNotFound, CatalogError, InvalidArgument

logger = logging.getLogger(__name__)

DEFAULT_CATALOG = Path(__file__).parent / "data" / "benchmarks.csv"

# Credibility of each data source in [0, 1]
SOURCE_CREDIBILITY = {
    "nvidia_official": 0.98,
    "nvidia_research": 0.96,
    "huggingface_official": 0.95,
    "deepspeed_team": 0.94,
    "meta_research": 0.92,
    "together_ai": 0.89,
    "community_contributed": 0.75,
    "unknown": 0.5,
}

# Share of common test scenarios each device has been measured on
BENCHMARK_COVERAGE = {
    "rtx-4090": 0.95,
    "rtx-4080": 0.87,
    "rtx-3090": 0.78,
    "a100-80gb": 0.98,
    "h100": 0.92,
}
DEFAULT_COVERAGE = 0.5

# Reference device all normalised scores are relative to
REFERENCE_DEVICE = "rtx-4090"
REFERENCE_TOKENS_PER_SECOND = 2847
REFERENCE_POWER_EFFICIENCY = 5.0

# Conditions a sample is most applicable under
STANDARD_BATCH_SIZE = 1
STANDARD_SEQUENCE_LENGTH = 2048
STANDARD_PRECISION = "fp16"
STANDARD_FRAMEWORK = "PyTorch"

DEFAULT_VARIANCE = 0.1
Z_95 = 1.96
FRESHNESS_DAYS = 90
STALE_SAMPLE_DAYS = 30
MIN_MATCH_SCORE = 0.5
DEFAULT_MODEL_SIZE = 7.0

# Interpolation exponents
SIZE_EXPONENT = 0.8
BATCH_EXPONENT = 0.6
MEMORY_SIZE_EXPONENT = 0.2
POWER_TRACKING = 0.9

# Specification-based fallback
FALLBACK_TOKENS_PER_SECOND = 2000
FALLBACK_MEMORY_EFFICIENCY = 0.8
FALLBACK_POWER_EFFICIENCY = 5.0
FALLBACK_CONFIDENCE = 0.3

MODEL_SIZE_RE = re.compile(r"(\d+(?:\.\d+)?)\s*([BM])", re.IGNORECASE)

REQUIRED_COLUMNS = [
    "test_name", "device_id", "model_size",
    "tokens_per_second", "memory_efficiency", "power_efficiency",
]


def parse_model_size(text) -> float:
    """'7B' -> 7.0, '350M' -> 0.35 (billions); unknown -> 7.0."""
    if isinstance(text, (int, float)) and not isinstance(text, bool):
        return float(text)
    match = MODEL_SIZE_RE.search(str(text or ""))
    if not match:
        return DEFAULT_MODEL_SIZE
    value = float(match.group(1))
    return value / 1000 if match.group(2).upper() == "M" else value


def _ratio(a: float, b: float) -> float:
    if a <= 0 or b <= 0:
        return 0.0
    return min(a, b) / max(a, b)


@dataclass
class BenchmarkSample:
    """One measured run of a model on a device."""
    test_name: str
    device_id: str
    model_size: str
    tokens_per_second: float
    memory_efficiency: float
    power_efficiency: float
    batch_size: int = STANDARD_BATCH_SIZE
    sequence_length: int = STANDARD_SEQUENCE_LENGTH
    precision: str = STANDARD_PRECISION
    framework: str = STANDARD_FRAMEWORK
    bandwidth_utilization: Optional[float] = None
    source: str = "unknown"
    verified: bool = False
    test_date: Optional[date] = None
    variance: Optional[float] = None
    credibility: Optional[float] = None

    def __post_init__(self):
        """Validate measurements and derive credibility from the source."""
        for name in ("tokens_per_second", "memory_efficiency", "power_efficiency"):
            value = getattr(self, name)
            if value is None or not math.isfinite(value) or value < 0:
                raise InvalidArgument(f"{self.test_name}/{self.device_id}: {name}={value!r} is invalid")
        if self.batch_size < 1 or self.sequence_length < 1:
            raise InvalidArgument(f"{self.test_name}/{self.device_id}: batch and sequence length must be >= 1")
        if self.credibility is None:
            self.credibility = SOURCE_CREDIBILITY.get(self.source, SOURCE_CREDIBILITY["unknown"])

    @property
    def key(self) -> Tuple[str, str]:
        return (self.test_name, self.device_id)

    @property
    def model_size_billions(self) -> float:
        return parse_model_size(self.model_size)

    def age_days(self, today: date) -> Optional[int]:
        if self.test_date is None:
            return None
        return (today - self.test_date).days

    def to_dict(self) -> dict:
        return {
            "test_name": self.test_name,
            "device_id": self.device_id,
            "model_size": self.model_size,
            "batch_size": self.batch_size,
            "sequence_length": self.sequence_length,
            "precision": self.precision,
            "framework": self.framework,
            "tokens_per_second": self.tokens_per_second,
            "memory_efficiency": self.memory_efficiency,
            "power_efficiency": self.power_efficiency,
            "bandwidth_utilization": self.bandwidth_utilization,
            "source": self.source,
            "credibility": self.credibility,
            "verified": self.verified,
            "test_date": self.test_date.isoformat() if self.test_date else None,
        }


class BenchmarkCatalog:
    """Read-only mapping (test_name, device_id) -> BenchmarkSample."""

    def __init__(self, samples: Iterable[BenchmarkSample] = ()):
        self._samples: Dict[Tuple[str, str], BenchmarkSample] = {}
        for sample in samples:
            self._add(sample)

    def _add(self, sample: BenchmarkSample):
        if sample.key in self._samples:
            raise CatalogError(f"Duplicate benchmark sample for {sample.key}")
        self._samples[sample.key] = sample

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[BenchmarkSample]:
        return iter(self._samples.values())

    def __contains__(self, key) -> bool:
        return key in self._samples

    def get(self, test_name: str, device_id: str) -> BenchmarkSample:
        try:
            return self._samples[(test_name, device_id)]
        except KeyError:
            raise BenchmarkNotFound(test_name, device_id)

    def find(self, test_name: str, device_id: str) -> Optional[BenchmarkSample]:
        return self._samples.get((test_name, device_id))

    def for_device(self, device_id: str) -> List[BenchmarkSample]:
        return sorted(
            (s for s in self._samples.values() if s.device_id == device_id),
            key=lambda s: (s.model_size_billions, s.test_name),
        )

    def device_ids(self) -> List[str]:
        return sorted({s.device_id for s in self._samples.values()})

    def test_names(self) -> List[str]:
        return sorted({s.test_name for s in self._samples.values()})

    def coverage(self, device_id: str) -> float:
        return BENCHMARK_COVERAGE.get(device_id, DEFAULT_COVERAGE)

    def get_summary(self) -> dict:
        """Counts by device and source."""
        by_device: Dict[str, int] = {}
        by_source: Dict[str, int] = {}
        for s in self._samples.values():
            by_device[s.device_id] = by_device.get(s.device_id, 0) + 1
            by_source[s.source] = by_source.get(s.source, 0) + 1
        return {
            "total_samples": len(self._samples),
            "by_device": by_device,
            "by_source": by_source,
            "tests": self.test_names(),
        }

    @classmethod
    def from_csv(cls, path) -> "BenchmarkCatalog":
        """Load and validate a catalog CSV; malformed rows are logged and skipped."""
        path = Path(path)
        if not path.exists():
            raise CatalogError(f"Benchmark file not found: {path}")
        df = pd.read_csv(path)
        missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise CatalogError(f"{path.name} is missing columns: {missing}")

        catalog = cls()
        skipped = 0
        for idx, row in df.iterrows():
            try:
                sample = _sample_from_row(row)
            except (InvalidArgument, ValueError, TypeError) as e:
                logger.warning(f"Skipping {path.name} row {idx}: {e}")
                skipped += 1
                continue
            catalog._add(sample)

        logger.info(f"Loaded {len(catalog)} benchmark samples from {path.name}"
                    + (f" ({skipped} skipped)" if skipped else ""))
        return catalog


def _opt(row, name, cast, default=None):
    value = row.get(name)
    if value is None or pd.isna(value):
        return default
    return cast(value)


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "y")
    return bool(value)


def _sample_from_row(row) -> BenchmarkSample:
    for name in REQUIRED_COLUMNS:
        if pd.isna(row.get(name)):
            raise ValueError(f"missing {name}")
    test_date = _opt(row, "test_date", lambda v: pd.to_datetime(v).date())
    return BenchmarkSample(
        test_name=str(row["test_name"]).strip(),
        device_id=str(row["device_id"]).strip(),
        model_size=str(row["model_size"]).strip(),
        tokens_per_second=float(row["tokens_per_second"]),
        memory_efficiency=float(row["memory_efficiency"]),
        power_efficiency=float(row["power_efficiency"]),
        batch_size=_opt(row, "batch_size", int, STANDARD_BATCH_SIZE),
        sequence_length=_opt(row, "sequence_length", int, STANDARD_SEQUENCE_LENGTH),
        precision=_opt(row, "precision", str, STANDARD_PRECISION),
        framework=_opt(row, "framework", str, STANDARD_FRAMEWORK),
        bandwidth_utilization=_opt(row, "bandwidth_utilization", float),
        source=_opt(row, "source", str, "unknown"),
        verified=_opt(row, "verified", _as_bool, False),
        test_date=test_date,
        variance=_opt(row, "variance", float),
    )


def load_benchmark_catalog(path=None) -> BenchmarkCatalog:
    """Load the bundled catalog, or a CSV at `path`."""
    return BenchmarkCatalog.from_csv(path or DEFAULT_CATALOG)


@dataclass
class NormalizedSample:
    sample: BenchmarkSample
    normalized_score: float
    confidence_interval: Tuple[float, float]
    data_quality: float
    source_credibility: float
    applicability: float

    def to_dict(self) -> dict:
        return {
            "test_name": self.sample.test_name,
            "device_id": self.sample.device_id,
            "normalized_score": self.normalized_score,
            "confidence_interval": list(self.confidence_interval),
            "data_quality": self.data_quality,
            "source_credibility": self.source_credibility,
            "applicability": self.applicability,
        }


@dataclass
class PerformancePrediction:
    """Predicted performance of a device for a target configuration."""
    device_id: str
    tokens_per_second: float
    memory_efficiency: float
    power_efficiency: float
    confidence: float
    method: str  # benchmark_interpolation / specification_based
    match_score: float = 0.0
    base_sample: Optional[BenchmarkSample] = None
    limitations: List[str] = field(default_factory=list)

    @property
    def is_estimate(self) -> bool:
        return self.method == "specification_based"

    def to_dict(self) -> dict:
        return {
            "device_id": self.device_id,
            "tokens_per_second": round(self.tokens_per_second, 1),
            "memory_efficiency": round(self.memory_efficiency, 4),
            "power_efficiency": round(self.power_efficiency, 3),
            "confidence": round(self.confidence, 4),
            "method": self.method,
            "match_score": round(self.match_score, 4),
            "base_sample": self.base_sample.test_name if self.base_sample else None,
            "limitations": list(self.limitations),
        }


@dataclass
class RelativePerformance:
    score: float
    ratio: float
    confidence: float
    basis: str

    def to_dict(self) -> dict:
        return {"score": self.score, "ratio": self.ratio, "confidence": self.confidence, "basis": self.basis}


class BenchmarkProcessor:
    """Normalises samples and predicts performance from the closest ones."""

    def __init__(self, catalog: BenchmarkCatalog, today: Optional[date] = None):
        self.catalog = catalog
        self.today = today or date.today()

    # ------------------------------------------------------------------
    # Normalisation
    # ------------------------------------------------------------------
    def data_quality(self, sample: BenchmarkSample) -> float:
        age = sample.age_days(self.today)
        freshness = 0.0 if age is None else min(1.0, max(0.0, (FRESHNESS_DAYS - age) / FRESHNESS_DAYS))
        verified = 1.0 if sample.verified else 0.6
        return 0.3 * freshness + 0.4 * sample.credibility + 0.3 * verified

    def applicability(self, sample: BenchmarkSample) -> float:
        score = 1.0
        if sample.batch_size != STANDARD_BATCH_SIZE:
            score *= 0.9
        if sample.sequence_length != STANDARD_SEQUENCE_LENGTH:
            score *= 0.9
        if sample.precision != STANDARD_PRECISION:
            score *= 0.8
        if sample.framework != STANDARD_FRAMEWORK:
            score *= 0.95
        return score

    def normalize_sample(self, sample: BenchmarkSample) -> NormalizedSample:
        tps = sample.tokens_per_second
        score = tps / REFERENCE_TOKENS_PER_SECOND * 100
        score += (sample.memory_efficiency - 0.8) * 50
        if sample.power_efficiency > 0:
            score += math.log(sample.power_efficiency / REFERENCE_POWER_EFFICIENCY) * 10
        score = min(200.0, max(0.0, score))

        variance = sample.variance if sample.variance is not None else DEFAULT_VARIANCE
        margin = Z_95 * math.sqrt(variance) * tps
        return NormalizedSample(
            sample=sample,
            normalized_score=score,
            confidence_interval=(max(0.0, tps - margin), tps + margin),
            data_quality=self.data_quality(sample),
            source_credibility=sample.credibility,
            applicability=self.applicability(sample),
        )

    def normalize(self, samples: Iterable[BenchmarkSample]) -> List[NormalizedSample]:
        return [self.normalize_sample(s) for s in samples]

    # ------------------------------------------------------------------
    # Matching and prediction
    # ------------------------------------------------------------------
    def match_score(self, sample: BenchmarkSample, target) -> float:
        """Similarity of a sample's test conditions to the target parameters."""
        size = _ratio(sample.model_size_billions, float(target.parameter_count))
        batch = _ratio(sample.batch_size, target.batch_size)
        seq = _ratio(sample.sequence_length, target.sequence_length)
        precision = 1.0 if sample.precision == target.precision else 0.8
        return size * (0.7 + 0.3 * batch) * (0.8 + 0.2 * seq) * precision

    def matching_samples(self, device_id: str, target) -> List[Tuple[BenchmarkSample, float]]:
        """Qualifying samples for the device, best match first."""
        scored = [(s, self.match_score(s, target)) for s in self.catalog.for_device(device_id)]
        scored = [(s, m) for s, m in scored if m >= MIN_MATCH_SCORE]
        scored.sort(key=lambda sm: (-sm[1], -sm[0].credibility, sm[0].test_name))
        return scored

    def specification_estimate(self, device_id: str, target) -> PerformancePrediction:
        """Low-confidence estimate used when no sample is close enough."""
        params = max(float(target.parameter_count), 0.1)
        logger.warning(f"No matching benchmark for {device_id} at {params}B; using specification estimate")
        return PerformancePrediction(
            device_id=device_id,
            tokens_per_second=FALLBACK_TOKENS_PER_SECOND * (DEFAULT_MODEL_SIZE / params) ** SIZE_EXPONENT,
            memory_efficiency=FALLBACK_MEMORY_EFFICIENCY,
            power_efficiency=FALLBACK_POWER_EFFICIENCY,
            confidence=FALLBACK_CONFIDENCE,
            method="specification_based",
            limitations=[
                "Insufficient benchmark data for this device and configuration",
                "Estimate derived from generic specifications",
                "Actual performance may differ significantly",
            ],
        )

    def predict_performance(self, device_id: str, target) -> PerformancePrediction:
        """Predict throughput / efficiency of `device_id` for target model parameters.

        `target` needs parameter_count (billions), batch_size, sequence_length
        and precision, e.g. a ModelParameters.
        """
        if target.parameter_count is None or not target.parameter_count > 0:
            raise InvalidArgument(f"parameter_count must be positive, got {target.parameter_count!r}")
        candidates = self.matching_samples(device_id, target)
        if not candidates:
            return self.specification_estimate(device_id, target)

        base, match = candidates[0]
        base_size = base.model_size_billions
        target_size = float(target.parameter_count)
        size_scaling = (base_size / target_size) ** SIZE_EXPONENT
        batch_scaling = (target.batch_size / base.batch_size) ** BATCH_EXPONENT

        tokens = base.tokens_per_second * size_scaling * batch_scaling
        memory = min(1.0, base.memory_efficiency * (base_size / target_size) ** MEMORY_SIZE_EXPONENT)
        power = base.power_efficiency * size_scaling * POWER_TRACKING
        confidence = match * self.data_quality(base) * min(1.0, len(candidates) / 3)

        limitations = []
        if len(candidates) < 2:
            limitations.append("Fewer than two comparable benchmark samples")
        if abs(base_size - target_size) > base_size * 0.5:
            limitations.append(f"Model size differs by more than 50% from the measured {base.model_size}")
        if base.batch_size != target.batch_size:
            limitations.append(f"Measured at batch size {base.batch_size}, target is {target.batch_size}")
        if base.precision != target.precision:
            limitations.append(f"Measured at {base.precision}, target is {target.precision}")
        age = base.age_days(self.today)
        if age is not None and age > STALE_SAMPLE_DAYS:
            limitations.append(f"Benchmark data is {age} days old")

        return PerformancePrediction(
            device_id=device_id,
            tokens_per_second=tokens,
            memory_efficiency=memory,
            power_efficiency=power,
            confidence=confidence,
            method="benchmark_interpolation",
            match_score=match,
            base_sample=base,
            limitations=limitations,
        )

    def calculate_relative_performance(self, target_id: str, reference_id: str = REFERENCE_DEVICE,
                                       conditions=None) -> RelativePerformance:
        """Throughput of target relative to reference under the same conditions."""
        conditions = conditions or _StandardConditions()
        target = self.matching_samples(target_id, conditions)
        reference = self.matching_samples(reference_id, conditions)
        if not target or not reference or reference[0][0].tokens_per_second <= 0:
            return RelativePerformance(score=50.0, ratio=0.5, confidence=0.1, basis="insufficient_data")

        t, r = target[0][0], reference[0][0]
        ratio = t.tokens_per_second / r.tokens_per_second
        return RelativePerformance(
            score=ratio * 100,
            ratio=ratio,
            confidence=min(t.credibility, r.credibility),
            basis=f"{t.source}_vs_{r.source}",
        )

    def benchmark_coverage(self, device_id: str) -> float:
        return self.catalog.coverage(device_id)


@dataclass
class _StandardConditions:
    parameter_count: float = DEFAULT_MODEL_SIZE
    batch_size: int = STANDARD_BATCH_SIZE
    sequence_length: int = STANDARD_SEQUENCE_LENGTH
    precision: str = STANDARD_PRECISION
