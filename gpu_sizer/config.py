"""
Configuration for utilization calculations and logging.

Defaults are module-level constants; every field can be overridden from the
environment with a GPU_SIZER_* variable.
"""

import math
import os
from dataclasses import dataclass, fields

from .errors import InvalidArgument

BYTES_PER_GB = 1024 ** 3

ENV_PREFIX = "GPU_SIZER_"

# Fields that are fractions of something and must stay below 1
FRACTION_FIELDS = ("fragmentation_factor", "safety_margin", "communication_overhead")


@dataclass(frozen=True)
class UtilizationConfig:
    """Overheads applied when turning a raw need into practical utilization."""
    fragmentation_factor: float = 0.08   # fraction of need lost to the allocator
    system_reserved_gb: float = 1.0      # runtime / context reservation
    driver_overhead_gb: float = 0.5
    safety_margin: float = 0.15          # fraction of capacity held back
    communication_overhead: float = 0.07  # fraction of pooled capacity (multi-device)

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, (int, float)) or not math.isfinite(value) or value < 0:
                raise InvalidArgument(f"{f.name} must be a finite non-negative number, got {value!r}")
            if f.name in FRACTION_FIELDS and value >= 1:
                raise InvalidArgument(f"{f.name} must be < 1, got {value!r}")

    @property
    def reserved_gb(self) -> float:
        return self.system_reserved_gb + self.driver_overhead_gb

    @property
    def reserved_bytes(self) -> float:
        return self.reserved_gb * BYTES_PER_GB

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_env(cls, environ=None) -> "UtilizationConfig":
        """Build a config from GPU_SIZER_* environment variables, falling back to defaults."""
        environ = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            try:
                overrides[f.name] = float(raw)
            except ValueError:
                raise InvalidArgument(f"{ENV_PREFIX}{f.name.upper()}={raw!r} is not a number")
        return cls(**overrides)


DEFAULT_UTILIZATION_CONFIG = UtilizationConfig()


def get_log_level() -> str:
    """Log level for the CLI (GPU_SIZER_LOG_LEVEL, default INFO)."""
    return os.getenv(ENV_PREFIX + "LOG_LEVEL", "INFO").upper()
