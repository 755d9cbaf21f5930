"""
Tests for memory breakdown percentages and validation.
"""

import pytest

from gpu_sizer.breakdown import BreakdownItem, MemoryBreakdownCalculator, normalize_percentages
from gpu_sizer.config import BYTES_PER_GB
from gpu_sizer.errors import InvalidArgument
from gpu_sizer.memory import MemoryRequirement

GB = BYTES_PER_GB


@pytest.mark.parametrize("values", [
    [1, 1, 1],
    [1, 2, 3, 7, 11],
    [0.1, 0.2, 0.7],
    [1e-9, 5, 5],
    [0, 1, 2],
    [3, 3, 3, 3, 3, 3, 3],
    [999999, 1],
    [5],
])
def test_percentages_sum_to_100(values):
    result = normalize_percentages(values)
    assert len(result) == len(values)
    assert abs(sum(result) - 100) < 0.001
    assert all(p >= 0 for p in result)
    assert all(round(p, 2) == p for p in result)


def test_residue_goes_to_largest_first():
    assert normalize_percentages([1, 1, 1]) == [33.34, 33.33, 33.33]


def test_zero_entries_stay_zero():
    assert normalize_percentages([0, 1, 2])[0] == 0


@pytest.mark.parametrize("values", [[], [0, 0], [-1, 2], [float("nan"), 1]])
def test_normalize_rejects_bad_input(values):
    with pytest.raises(InvalidArgument):
        normalize_percentages(values)


def test_named_components():
    items = MemoryBreakdownCalculator().calculate(
        {"weights": 14 * GB, "activations": 4 * GB, "kv_buffers": 2 * GB},
        descriptions={"kv_buffers": "Pre-allocated KV blocks"},
    )
    assert [i.key for i in items] == ["weights", "activations", "kv_buffers"]
    assert items[0].label == "Model weights"
    assert items[0].percentage == 70.0
    assert items[2].label == "kv_buffers"
    assert items[2].description == "Pre-allocated KV blocks"
    assert all(i.color for i in items)


def test_from_requirement_skips_zero_components():
    requirement = MemoryRequirement.from_gb(10, weights=6, activations=4)
    items = MemoryBreakdownCalculator().from_requirement(requirement)
    assert [i.key for i in items] == ["weights", "activations"]
    assert [i.percentage for i in items] == [60.0, 40.0]


def test_from_requirement_without_components():
    with pytest.raises(InvalidArgument):
        MemoryBreakdownCalculator().from_requirement(MemoryRequirement(total_bytes=GB))


def test_gpu_breakdown_example():
    """24 GB device, 16 GB used of which 2 overhead, 1 fragmentation, 1 safety."""
    items = MemoryBreakdownCalculator().calculate_gpu_breakdown(24 * GB, 16 * GB, 2 * GB, 1 * GB, 1 * GB)
    by_key = {i.key: i for i in items}
    assert [i.key for i in items] == ["base", "fragmentation", "overhead", "safety", "available"]
    assert by_key["base"].bytes == 12 * GB
    assert by_key["base"].percentage == 50.0
    assert by_key["available"].bytes == 8 * GB
    assert by_key["available"].percentage == 33.33
    assert abs(sum(i.percentage for i in items) - 100) < 0.001


def test_gpu_breakdown_omits_zero_buckets():
    items = MemoryBreakdownCalculator().calculate_gpu_breakdown(10 * GB, 4 * GB, 0, 0, 0)
    assert [i.key for i in items] == ["base", "available"]
    assert [i.percentage for i in items] == [40.0, 60.0]


def test_gpu_breakdown_over_capacity():
    items = MemoryBreakdownCalculator().calculate_gpu_breakdown(10 * GB, 12 * GB, 0, 0, 0)
    by_key = {i.key: i for i in items}
    assert by_key["available"].bytes == 0
    assert by_key["available"].percentage == 0
    assert by_key["base"].percentage == 100.0


def test_gpu_breakdown_clamps_negative_base():
    items = MemoryBreakdownCalculator().calculate_gpu_breakdown(10 * GB, 2 * GB, 2 * GB, 1 * GB, 0)
    assert "base" not in [i.key for i in items]
    assert abs(sum(i.percentage for i in items) - 100) < 0.001


def test_gpu_breakdown_rejects_bad_capacity():
    calc = MemoryBreakdownCalculator()
    with pytest.raises(InvalidArgument):
        calc.calculate_gpu_breakdown(0, 0, 0, 0, 0)
    with pytest.raises(InvalidArgument):
        calc.calculate_gpu_breakdown(10, -1, 0, 0, 0)


def test_validate_clean_breakdown():
    calc = MemoryBreakdownCalculator()
    items = calc.calculate({"weights": 3, "activations": 1})
    result = calc.validate(items, expected_total=4)
    assert result.is_valid
    assert result.errors == []
    assert result.warnings == []


def test_validate_errors_and_warnings():
    items = [
        BreakdownItem(label="", bytes=10, percentage=50, color="#fff"),
        BreakdownItem(label="Weights", bytes=-1, percentage=40, color=""),
    ]
    result = MemoryBreakdownCalculator().validate(items, expected_total=100)
    assert not result.is_valid
    assert any("no label" in e for e in result.errors)
    assert any("negative size" in e for e in result.errors)
    assert any("no color" in w for w in result.warnings)
    assert any("sum to 90.00" in w for w in result.warnings)
    assert any("expected 100" in w for w in result.warnings)


def test_validate_empty():
    result = MemoryBreakdownCalculator().validate([])
    assert not result.is_valid
