"""
Clearly-marked placeholder results for when a real result cannot be built.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List

from .breakdown import BreakdownItem
from .config import BYTES_PER_GB
from .errors import AssemblyError, CatalogError, GpuSizerError, InvalidArgument
from .utilization import UtilizationResult, zero_utilization
from .validation import ValidationResult

logger = logging.getLogger(__name__)

FALLBACK_VERSION = "fallback-1.0.0"
FALLBACK_COLOR = "#9ca3af"
FALLBACK_LABEL = "Unavailable"

RECOVERY_SUGGESTIONS = {
    "validation": [
        "Check that all sizes are finite and non-negative",
        "Check that device capacity is positive",
    ],
    "calculation": [
        "Retry with less extreme parameters",
        "Report the inputs if the problem persists",
    ],
    "memory": [
        "Reduce the number of devices or requests evaluated at once",
    ],
    "unknown": [
        "Retry the request",
    ],
}

# Exceptions that degrade to a placeholder instead of propagating
RECOVERABLE = (GpuSizerError, ArithmeticError, ValueError, MemoryError)


@dataclass
class ErrorInfo:
    category: str  # validation / calculation / memory / unknown
    message: str
    suggestions: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)  # individual failures behind the message

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "message": self.message,
            "suggestions": list(self.suggestions),
            "errors": list(self.errors),
        }


class FallbackProvider:
    """Builds placeholder structures so callers never receive None."""

    version = FALLBACK_VERSION

    def breakdown(self, total_bytes: float = BYTES_PER_GB) -> List[BreakdownItem]:
        return [BreakdownItem(
            key="unavailable",
            label=FALLBACK_LABEL,
            bytes=float(total_bytes),
            percentage=100.0,
            color=FALLBACK_COLOR,
            description="Memory breakdown could not be calculated",
        )]

    def utilization(self) -> UtilizationResult:
        return zero_utilization()

    def validation(self, errors: List[str] = None, warnings: List[str] = None) -> ValidationResult:
        return ValidationResult(
            is_valid=False,
            errors=list(errors or ["result unavailable"]),
            warnings=list(warnings or []),
            confidence=0.0,
            is_fallback=True,
        )

    def categorize_error(self, exc: BaseException) -> ErrorInfo:
        if isinstance(exc, (InvalidArgument, CatalogError, KeyError)):
            category = "validation"
        elif isinstance(exc, MemoryError):
            category = "memory"
        elif isinstance(exc, (ArithmeticError, AssemblyError, ValueError)):
            category = "calculation"
        else:
            category = "unknown"
        if isinstance(exc, AssemblyError) and exc.errors:
            errors = list(exc.errors)
        else:
            errors = [str(exc) or type(exc).__name__]
        return ErrorInfo(category=category, message=str(exc), suggestions=RECOVERY_SUGGESTIONS[category],
                         errors=errors)

    def safe_call(self, fn: Callable, fallback: Callable, *args, **kwargs):
        """Return fn(*args, **kwargs), or fallback(error_info) if it fails with a recoverable error."""
        try:
            return fn(*args, **kwargs)
        except RECOVERABLE as e:
            info = self.categorize_error(e)
            logger.warning(f"Falling back after {info.category} error: {info.message}")
            return fallback(info)
