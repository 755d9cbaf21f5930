"""
GPU Sizer - memory estimation and hardware ranking for LLM workloads.

Turns a model's memory requirement into practical utilization on candidate
devices (single or multi-device), rates each device for the workload and
predicts throughput from sparse benchmark samples.
"""

from .errors import (
    GpuSizerError,
    InvalidArgument,
    CatalogError,
    BenchmarkNotFound,
    AssemblyError,
)

from .config import (
    UtilizationConfig,
    DEFAULT_UTILIZATION_CONFIG,
)

from .units import (
    convert,
    bytes_to_gb,
    gb_to_bytes,
    format_memory_size,
    format_smart,
    parse_memory_string,
    calculate_percentage,
)

from .utilization import (
    UtilizationCalculator,
    UtilizationResult,
    MultiDeviceResult,
    AllocationRequest,
    AllocationHistory,
    efficiency_band,
    calculate_utilization,
    calculate_multi_device_efficiency,
)

from .breakdown import (
    MemoryBreakdownCalculator,
    BreakdownItem,
    normalize_percentages,
)

from .memory import (
    ModelParameters,
    MemoryRequirement,
    MODEL_PRESETS,
    estimate_memory,
    optimize_batch_size,
    validate_model_parameters,
)

from .benchmarks import (
    BenchmarkSample,
    BenchmarkCatalog,
    BenchmarkProcessor,
    PerformancePrediction,
    SOURCE_CREDIBILITY,
    load_benchmark_catalog,
)

from .gpu_specs import (
    GPU_SPECS,
    DeviceProfile,
    get_gpu_spec,
    build_device_profiles,
)

from .efficiency import (
    EfficiencyRatingSystem,
    EfficiencyRating,
    WORKLOAD_WEIGHTS,
)

from .validation import (
    ValidationResult,
    DeviceValidator,
    ResultValidator,
)

from .fallback import FallbackProvider

from .recommender import (
    RecommendationEngine,
    Recommendation,
    RecommendationSet,
    create_engine,
    quick_recommend,
)

__all__ = [
    # Errors
    "GpuSizerError",
    "InvalidArgument",
    "CatalogError",
    "BenchmarkNotFound",
    "AssemblyError",
    # Config
    "UtilizationConfig",
    "DEFAULT_UTILIZATION_CONFIG",
    # Units
    "convert",
    "bytes_to_gb",
    "gb_to_bytes",
    "format_memory_size",
    "format_smart",
    "parse_memory_string",
    "calculate_percentage",
    # Utilization
    "UtilizationCalculator",
    "UtilizationResult",
    "MultiDeviceResult",
    "AllocationRequest",
    "AllocationHistory",
    "efficiency_band",
    "calculate_utilization",
    "calculate_multi_device_efficiency",
    # Breakdown
    "MemoryBreakdownCalculator",
    "BreakdownItem",
    "normalize_percentages",
    # Memory estimation
    "ModelParameters",
    "MemoryRequirement",
    "MODEL_PRESETS",
    "estimate_memory",
    "optimize_batch_size",
    "validate_model_parameters",
    # Benchmarks
    "BenchmarkSample",
    "BenchmarkCatalog",
    "BenchmarkProcessor",
    "PerformancePrediction",
    "SOURCE_CREDIBILITY",
    "load_benchmark_catalog",
    # Devices
    "GPU_SPECS",
    "DeviceProfile",
    "get_gpu_spec",
    "build_device_profiles",
    # Rating
    "EfficiencyRatingSystem",
    "EfficiencyRating",
    "WORKLOAD_WEIGHTS",
    # Validation / fallback
    "ValidationResult",
    "DeviceValidator",
    "ResultValidator",
    "FallbackProvider",
    # Recommendations
    "RecommendationEngine",
    "Recommendation",
    "RecommendationSet",
    "create_engine",
    "quick_recommend",
]

__version__ = "0.1.0"
