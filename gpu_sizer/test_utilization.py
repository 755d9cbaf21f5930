"""
Tests for the utilization calculator, multi-device scaling, the allocation
simulator and the fragmentation predictor.

Run with: python -m pytest gpu_sizer/test_utilization.py
"""

import math

import pytest

from gpu_sizer.config import BYTES_PER_GB, UtilizationConfig
from gpu_sizer.errors import InvalidArgument
from gpu_sizer.utilization import (
    AllocationHistory,
    AllocationRequest,
    UtilizationCalculator,
    calculate_multi_device_efficiency,
    calculate_utilization,
    efficiency_band,
    load_balancing_efficiency,
    utilization_score,
)

GB = BYTES_PER_GB


# ----------------------------------------------------------------------
# Single device
# ----------------------------------------------------------------------
@pytest.mark.parametrize("needed,capacity", [
    (0, 1), (1, 3), (16 * GB, 24 * GB), (100 * GB, 24 * GB), (7, 1e-3),
])
@pytest.mark.parametrize("config", [
    UtilizationConfig(),
    UtilizationConfig(fragmentation_factor=0.5, system_reserved_gb=10, driver_overhead_gb=3),
    UtilizationConfig(fragmentation_factor=0, system_reserved_gb=0, driver_overhead_gb=0),
])
def test_theoretical_is_raw_ratio(needed, capacity, config):
    """Theoretical utilization ignores every overhead."""
    result = calculate_utilization(needed, capacity, config)
    assert result.theoretical == needed / capacity


def test_practical_monotonic_in_fragmentation():
    values = []
    for ff in (0.0, 0.02, 0.08, 0.2, 0.5):
        calc = UtilizationCalculator(UtilizationConfig(fragmentation_factor=ff))
        values.append(calc.calculate(16 * GB, 24 * GB).practical)
    assert values == sorted(values)


def test_practical_monotonic_in_needed():
    calc = UtilizationCalculator()
    values = [calc.calculate(n * GB, 24 * GB).practical for n in (0, 1, 5, 12, 20, 30, 60)]
    assert values == sorted(values)


def test_practical_accounts_for_overheads():
    result = calculate_utilization(16 * GB, 24 * GB)
    assert result.available_bytes == pytest.approx(22.5 * GB)
    assert result.fragmentation_bytes == pytest.approx(16 * 0.08 * GB)
    assert result.practical == pytest.approx(16 * 1.08 / 22.5)
    assert result.percentage == pytest.approx(result.practical * 100)
    assert result.band == "excellent"
    assert not result.is_over_capacity


@pytest.mark.parametrize("practical,band", [
    (0.0, "poor"),
    (0.2999, "poor"),
    (0.30, "fair"),
    (0.4999, "fair"),
    (0.50, "good"),
    (0.6999, "good"),
    (0.70, "excellent"),
    (0.85, "excellent"),
    (0.8501, "good"),
    (0.95, "good"),
    (0.9501, "fair"),
    (1.00, "fair"),
    (1.0001, "poor"),
    (-0.1, "poor"),
    (math.inf, "poor"),
    (math.nan, "poor"),
])
def test_efficiency_band_boundaries(practical, band):
    assert efficiency_band(practical) == band


def test_no_available_memory_is_infinite():
    """A device smaller than the reserved memory can never fit anything."""
    result = calculate_utilization(1 * GB, 1 * GB)
    assert math.isinf(result.practical)
    assert result.percentage == 1000
    assert result.practical_display == 10
    assert result.is_over_capacity
    assert result.band == "poor"
    assert result.to_dict()["practical"] is None


def test_display_values_are_clamped():
    result = calculate_utilization(500 * GB, 24 * GB)
    assert result.theoretical > 10
    assert result.theoretical_display == 10
    assert result.percentage == 1000
    legacy = result.to_legacy()
    assert legacy["isOverCapacity"] is True
    assert legacy["practicalUtilization"] == 10


@pytest.mark.parametrize("needed,capacity", [
    (-1, 24), (1, 0), (1, -5), (math.nan, 24), (1, math.inf), ("1", 24),
])
def test_invalid_inputs_rejected(needed, capacity):
    with pytest.raises(InvalidArgument):
        calculate_utilization(needed, capacity)


# ----------------------------------------------------------------------
# Safety margin
# ----------------------------------------------------------------------
def test_safety_margin_reduces_available():
    result = UtilizationCalculator().calculate_with_safety_margin(10, 24)
    assert result.safety_buffer_gb == pytest.approx(3.6)
    assert result.available_gb == pytest.approx(24 - 1.5 - 3.6)
    assert result.practical == pytest.approx(10.8 / 18.9)
    assert result.efficiency == "medium"


def test_safety_margin_recommendations():
    calc = UtilizationCalculator()
    low = calc.calculate_with_safety_margin(2, 24)
    assert any("smaller device" in r for r in low.recommendations)
    high = calc.calculate_with_safety_margin(18, 24)
    assert high.is_over_capacity
    assert any("larger device" in r for r in high.recommendations)


def test_safety_margin_config_recommendations():
    calc = UtilizationCalculator(UtilizationConfig(fragmentation_factor=0.15, safety_margin=0.3))
    recs = calc.calculate_with_safety_margin(10, 48).recommendations
    assert any("pooled allocator" in r for r in recs)
    assert any("Safety margin" in r for r in recs)


def test_utilization_score_peaks_in_optimal_band():
    assert utilization_score(0.75) == 100
    assert utilization_score(0.35) == pytest.approx(40)
    assert utilization_score(0.95) == pytest.approx(60)
    assert utilization_score(3.0) == 20
    assert utilization_score(math.inf) == 0


# ----------------------------------------------------------------------
# Multiple devices
# ----------------------------------------------------------------------
def test_two_device_scaling():
    result = calculate_multi_device_efficiency(48, 24, 2)
    assert result.load_balancing_efficiency == 0.95
    assert result.communication_overhead_gb > 0
    assert result.scaling_factor < 2.0
    assert result.scaling_factor == pytest.approx(48 * 0.93 * 0.95 / 24)


@pytest.mark.parametrize("count,expected", [
    (1, 1.0), (2, 0.95), (3, 0.90), (4, 0.90), (5, 0.85), (8, 0.85), (9, 0.80), (64, 0.80),
])
def test_load_balancing_steps(count, expected):
    assert load_balancing_efficiency(count) == expected


def test_optimal_device_count():
    calc = UtilizationCalculator()
    assert calc.optimal_device_count(10, 24) == 1
    assert calc.optimal_device_count(100, 24) == 5
    lossy = UtilizationCalculator(UtilizationConfig(communication_overhead=0.2))
    assert lossy.optimal_device_count(100, 24) == 4
    assert UtilizationCalculator(UtilizationConfig(communication_overhead=0.25)).optimal_device_count(60, 24) == 2


def test_per_device_range_is_deterministic():
    """Per-device utilization is an explicit min / expected / max band."""
    first = calculate_multi_device_efficiency(40, 24, 2)
    second = calculate_multi_device_efficiency(40, 24, 2)
    band = first.per_device_utilization
    assert band == second.per_device_utilization
    assert band.expected == pytest.approx(40 / 2 / 24)
    assert band.minimum < band.expected < band.maximum
    single = calculate_multi_device_efficiency(20, 24, 1).per_device_utilization
    assert single.minimum == single.expected == single.maximum


def test_cost_efficiency_penalises_unneeded_devices():
    result = calculate_multi_device_efficiency(10, 24, 2)
    assert result.cost_efficiency == pytest.approx(result.scaling_factor / 2 * 100 * 0.7)
    assert any("exceed the optimal" in r for r in result.recommendations)


def test_large_group_recommendations():
    result = calculate_multi_device_efficiency(300, 24, 9)
    assert result.load_balancing_efficiency == 0.80
    assert any("imbalance" in r for r in result.recommendations)
    assert any("pipeline" in r for r in result.recommendations)


def test_multi_device_rejects_bad_count():
    with pytest.raises(InvalidArgument):
        calculate_multi_device_efficiency(48, 24, 0)
    with pytest.raises(InvalidArgument):
        calculate_multi_device_efficiency(48, 24, 1.5)


# ----------------------------------------------------------------------
# Allocation simulation
# ----------------------------------------------------------------------
def test_high_priority_placed_first():
    requests = [
        AllocationRequest(size=600, alignment=1, priority="low", request_id="low"),
        AllocationRequest(size=500, alignment=1, priority="high", request_id="high"),
        AllocationRequest(size=300, alignment=1, priority="medium", request_id="medium"),
    ]
    sim = UtilizationCalculator().simulate_allocation(1024, requests)
    assert [b.request.request_id for b in sim.allocations] == ["high", "medium"]
    assert [r.request_id for r in sim.failed] == ["low"]
    assert sim.allocations[0].offset == 0
    assert sim.allocations[1].offset == 500
    assert sim.free_bytes == 224


def test_alignment_waste():
    sim = UtilizationCalculator().simulate_allocation(4096, [AllocationRequest(size=100, alignment=256)])
    assert sim.allocated_bytes == 256
    assert sim.wasted_bytes == 156


def test_transient_release_fragments_free_space():
    requests = [
        AllocationRequest(size=100, alignment=1, request_id="a"),
        AllocationRequest(size=100, alignment=1, request_id="tmp", transient=True),
        AllocationRequest(size=100, alignment=1, request_id="b"),
    ]
    sim = UtilizationCalculator().simulate_allocation(1000, requests)
    assert sim.free_bytes == 800
    assert sim.largest_free_block == 700
    assert sim.fragmentation_ratio == pytest.approx(1 - 700 / 800)
    assert sim.utilization_efficiency == pytest.approx(0.2)
    assert sim.free_blocks == 2


def test_full_capacity_has_no_fragmentation():
    sim = UtilizationCalculator().simulate_allocation(512, [AllocationRequest(size=512)])
    assert sim.free_bytes == 0
    assert sim.fragmentation_ratio == 0


def test_simulate_fragmentation_headroom():
    sim = UtilizationCalculator().simulate_fragmentation([1000, 2000])
    assert sim.capacity == 4500
    assert sim.failure_count == 0
    assert sim.wasted_bytes == 24 + 48
    with pytest.raises(InvalidArgument):
        UtilizationCalculator().simulate_fragmentation([])


def test_bad_allocation_request():
    with pytest.raises(InvalidArgument):
        AllocationRequest(size=10, priority="urgent")
    with pytest.raises(InvalidArgument):
        AllocationRequest(size=-1)
    with pytest.raises(InvalidArgument):
        AllocationRequest(size=10, alignment=0)


# ----------------------------------------------------------------------
# Fragmentation prediction
# ----------------------------------------------------------------------
def test_uniform_history_is_low_risk():
    history = AllocationHistory(allocation_sizes=[100] * 200, peak_memory_ratio=0.5)
    prediction = UtilizationCalculator().predict_fragmentation(history)
    assert prediction.expected_fragmentation == pytest.approx(0.05)
    assert prediction.confidence == pytest.approx(1.0)
    assert prediction.risk == "low"
    assert prediction.mitigations == []


def test_noisy_history_is_medium_risk():
    history = AllocationHistory(
        allocation_sizes=[1, 1000] * 3,
        deallocation_pattern="random",
        peak_memory_ratio=0.95,
    )
    prediction = UtilizationCalculator().predict_fragmentation(history)
    assert prediction.expected_fragmentation == pytest.approx(0.12)
    assert prediction.risk == "medium"
    assert prediction.confidence < 0.8
    assert any("fixed-size" in m for m in prediction.mitigations)
    assert any("reverse allocation order" in m for m in prediction.mitigations)
    assert any("more capacity" in m for m in prediction.mitigations)


def test_medium_risk_always_has_mitigation():
    history = AllocationHistory(allocation_sizes=[1, 1000] * 10, peak_memory_ratio=0.85)
    prediction = UtilizationCalculator().predict_fragmentation(history)
    assert prediction.risk == "medium"
    assert prediction.mitigations


def test_confidence_bounds():
    tiny = AllocationHistory(allocation_sizes=[1, 5000, 3])
    prediction = UtilizationCalculator().predict_fragmentation(tiny)
    assert 0.3 <= prediction.confidence <= 1.0
    empty = UtilizationCalculator().predict_fragmentation(AllocationHistory(allocation_sizes=[]))
    assert empty.expected_fragmentation == pytest.approx(0.05)
