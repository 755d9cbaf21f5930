"""
Tests for UtilizationConfig defaults and environment overrides.
"""

import pytest

from gpu_sizer.config import DEFAULT_UTILIZATION_CONFIG, UtilizationConfig, get_log_level
from gpu_sizer.errors import InvalidArgument


def test_defaults():
    cfg = DEFAULT_UTILIZATION_CONFIG
    assert cfg.fragmentation_factor == 0.08
    assert cfg.reserved_gb == 1.5
    assert cfg.safety_margin == 0.15
    assert cfg.communication_overhead == 0.07


def test_config_is_immutable():
    with pytest.raises(Exception):
        DEFAULT_UTILIZATION_CONFIG.safety_margin = 0.5


def test_from_env_overrides():
    cfg = UtilizationConfig.from_env({
        "GPU_SIZER_FRAGMENTATION_FACTOR": "0.1",
        "GPU_SIZER_SYSTEM_RESERVED_GB": "2",
        "GPU_SIZER_SAFETY_MARGIN": "",
    })
    assert cfg.fragmentation_factor == 0.1
    assert cfg.system_reserved_gb == 2.0
    assert cfg.safety_margin == 0.15


@pytest.mark.parametrize("env", [
    {"GPU_SIZER_SAFETY_MARGIN": "abc"},
    {"GPU_SIZER_DRIVER_OVERHEAD_GB": "-1"},
    {"GPU_SIZER_COMMUNICATION_OVERHEAD": "1.0"},
])
def test_from_env_rejects_bad_values(env):
    with pytest.raises(InvalidArgument):
        UtilizationConfig.from_env(env)


def test_log_level(monkeypatch):
    monkeypatch.setenv("GPU_SIZER_LOG_LEVEL", "debug")
    assert get_log_level() == "DEBUG"
    monkeypatch.delenv("GPU_SIZER_LOG_LEVEL")
    assert get_log_level() == "INFO"
