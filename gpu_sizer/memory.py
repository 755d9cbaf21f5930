"""
Memory requirement of an LLM workload estimated from its architecture.
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import Dict, Optional

from .config import BYTES_PER_GB
from .errors import InvalidArgument
from .validation import ValidationResult

logger = logging.getLogger(__name__)

PRECISION_BYTES = {
    "fp32": 4,
    "fp16": 2,
    "int8": 1,
    "int4": 0.5,
}

# Optimizer state size as a multiple of the weights
OPTIMIZER_MULTIPLIERS = {
    "adam": 2,
    "adamw": 2,
    "sgd": 1,
}

KV_CACHE_FACTOR = 2
INTERMEDIATE_FACTOR = 4
ACTIVATION_SAFETY_FACTOR = 1.2
TRAINING_ACTIVATION_FACTOR = 2

COMPONENT_TOLERANCE = 0.01

VALIDATION_RANGES = {
    "parameter_count": (0.1, 1000),
    "sequence_length": (1, 32768),
    "batch_size": (1, 1024),
    "hidden_size": (64, 32768),
    "num_layers": (1, 200),
    "vocab_size": (1000, 200000),
}

MAX_BATCH_SIZE = 128

# Common model shapes (parameter count in billions)
MODEL_PRESETS = {
    "llama-7b": {"parameter_count": 7, "hidden_size": 4096, "num_layers": 32, "vocab_size": 32000},
    "llama-13b": {"parameter_count": 13, "hidden_size": 5120, "num_layers": 40, "vocab_size": 32000},
    "llama-70b": {"parameter_count": 70, "hidden_size": 8192, "num_layers": 80, "vocab_size": 32000},
    "mistral-7b": {"parameter_count": 7.3, "hidden_size": 4096, "num_layers": 32, "vocab_size": 32000},
    "gpt2-xl": {"parameter_count": 1.5, "hidden_size": 1600, "num_layers": 48, "vocab_size": 50257},
    "qwen-14b": {"parameter_count": 14, "hidden_size": 5120, "num_layers": 40, "vocab_size": 152064},
}


@dataclass
class ModelParameters:
    """Architecture and run shape of the model being sized."""
    parameter_count: float  # billions
    hidden_size: int = 4096
    num_layers: int = 32
    sequence_length: int = 2048
    batch_size: int = 1
    precision: str = "fp16"
    vocab_size: int = 32000
    optimizer: str = "adam"

    @classmethod
    def from_preset(cls, name: str, **overrides) -> "ModelParameters":
        key = name.lower()
        if key not in MODEL_PRESETS:
            raise InvalidArgument(f"Unknown model preset {name!r}; known: {sorted(MODEL_PRESETS)}")
        return cls(**{**MODEL_PRESETS[key], **overrides})


@dataclass
class MemoryRequirement:
    """Total bytes needed, optionally split into components."""
    total_bytes: float
    weights_bytes: float = 0.0
    activations_bytes: float = 0.0
    gradients_bytes: float = 0.0
    optimizer_bytes: float = 0.0
    mode: str = "inference"

    def __post_init__(self):
        for name in ("total_bytes", "weights_bytes", "activations_bytes", "gradients_bytes", "optimizer_bytes"):
            value = getattr(self, name)
            if value is None or not math.isfinite(value) or value < 0:
                raise InvalidArgument(f"{name} must be finite and non-negative, got {value!r}")
        parts = sum(self.components().values())
        if parts > 0 and abs(parts - self.total_bytes) > COMPONENT_TOLERANCE * max(self.total_bytes, 1):
            raise InvalidArgument(
                f"components sum to {parts:.0f} bytes but total is {self.total_bytes:.0f}"
            )

    @classmethod
    def from_gb(cls, total_gb: float, **components_gb) -> "MemoryRequirement":
        kwargs = {f"{k}_bytes": v * BYTES_PER_GB for k, v in components_gb.items()}
        return cls(total_bytes=total_gb * BYTES_PER_GB, **kwargs)

    @property
    def total_gb(self) -> float:
        return self.total_bytes / BYTES_PER_GB

    def components(self) -> Dict[str, float]:
        return {
            "weights": self.weights_bytes,
            "activations": self.activations_bytes,
            "gradients": self.gradients_bytes,
            "optimizer": self.optimizer_bytes,
        }

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "total_bytes": self.total_bytes,
            "total_gb": round(self.total_gb, 3),
            "components": self.components(),
        }


def _precision_bytes(precision: str) -> float:
    try:
        return PRECISION_BYTES[precision]
    except KeyError:
        raise InvalidArgument(f"Unknown precision {precision!r}; expected one of {list(PRECISION_BYTES)}")


def weights_bytes(params: ModelParameters) -> float:
    return params.parameter_count * 1e9 * _precision_bytes(params.precision)


def activations_bytes(params: ModelParameters) -> float:
    """Hidden states, KV cache and intermediate activations with a 1.2x safety factor."""
    hidden_states = params.batch_size * params.sequence_length * params.hidden_size * params.num_layers
    kv_cache = hidden_states * KV_CACHE_FACTOR
    intermediate = hidden_states * INTERMEDIATE_FACTOR
    total = (hidden_states + kv_cache + intermediate) * _precision_bytes(params.precision)
    return total * ACTIVATION_SAFETY_FACTOR


def estimate_memory(params: ModelParameters, mode: str = "inference") -> MemoryRequirement:
    """Estimate the memory requirement for inference or training."""
    if mode not in ("inference", "training"):
        raise InvalidArgument(f"mode must be 'inference' or 'training', got {mode!r}")
    check = validate_model_parameters(params)
    if not check.is_valid:
        raise InvalidArgument("; ".join(check.errors))

    weights = weights_bytes(params)
    activations = activations_bytes(params)
    if mode == "inference":
        return MemoryRequirement(
            total_bytes=weights + activations,
            weights_bytes=weights,
            activations_bytes=activations,
            mode=mode,
        )

    if params.optimizer not in OPTIMIZER_MULTIPLIERS:
        raise InvalidArgument(f"Unknown optimizer {params.optimizer!r}")
    activations *= TRAINING_ACTIVATION_FACTOR
    gradients = weights
    optimizer = weights * OPTIMIZER_MULTIPLIERS[params.optimizer]
    return MemoryRequirement(
        total_bytes=weights + activations + gradients + optimizer,
        weights_bytes=weights,
        activations_bytes=activations,
        gradients_bytes=gradients,
        optimizer_bytes=optimizer,
        mode=mode,
    )


def validate_model_parameters(params: ModelParameters) -> ValidationResult:
    """Range-check user supplied model parameters."""
    errors = []
    for name, (low, high) in VALIDATION_RANGES.items():
        value = getattr(params, name)
        if not isinstance(value, (int, float)) or not math.isfinite(value) or not low <= value <= high:
            errors.append(f"{name} must be between {low} and {high}, got {value!r}")
    if params.precision not in PRECISION_BYTES:
        errors.append(f"unknown precision {params.precision!r}")
    return ValidationResult(is_valid=not errors, errors=errors)


@dataclass
class BatchSizeResult:
    optimal_batch_size: int
    memory_gb: float
    warning: Optional[str] = None
    fits: bool = True


def optimize_batch_size(params: ModelParameters, max_memory_gb: float, mode: str = "inference") -> BatchSizeResult:
    """Largest batch size in 1..128 whose estimated total fits in max_memory_gb."""
    if max_memory_gb is None or not math.isfinite(max_memory_gb) or max_memory_gb <= 0:
        raise InvalidArgument(f"max_memory_gb must be positive, got {max_memory_gb!r}")

    best = 1
    best_gb = estimate_memory(replace(params, batch_size=1), mode).total_gb
    fits = best_gb <= max_memory_gb
    if fits:
        for batch in range(2, MAX_BATCH_SIZE + 1):
            needed = estimate_memory(replace(params, batch_size=batch), mode).total_gb
            if needed > max_memory_gb:
                break
            best, best_gb = batch, needed

    warning = None
    if not fits:
        warning = "Even batch size 1 exceeds the memory budget; quantise the model or use a larger device"
    elif best == 1 and best_gb > max_memory_gb * 0.9:
        warning = "Memory use is above 90% at batch size 1; consider quantisation or a larger device"
    if warning:
        logger.warning(warning)
    return BatchSizeResult(optimal_batch_size=best, memory_gb=best_gb, warning=warning, fits=fits)
