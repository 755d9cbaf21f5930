"""
Exception types raised by the sizing engine.
"""


class GpuSizerError(Exception):
    """Base class for all gpu_sizer errors."""


class InvalidArgument(GpuSizerError, ValueError):
    """A raw input (bytes, capacity, count, tag) is out of its domain."""


class CatalogError(GpuSizerError):
    """Static catalog data could not be loaded or failed validation."""


class BenchmarkNotFound(GpuSizerError, KeyError):
    """No sample exists for a (test_name, device_id) key."""

    def __init__(self, test_name: str, device_id: str):
        self.test_name = test_name
        self.device_id = device_id
        super().__init__(f"No benchmark sample for test={test_name!r} device={device_id!r}")

    def __str__(self) -> str:
        # KeyError quotes its message otherwise
        return self.args[0]


class AssemblyError(GpuSizerError):
    """A fully assembled result failed validation."""

    def __init__(self, message: str, errors=None):
        super().__init__(message)
        self.errors = list(errors or [])
