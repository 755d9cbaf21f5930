"""
Tests for unit conversion and formatting.

Run with: python -m pytest gpu_sizer/test_units.py
"""

import math

import pytest

from gpu_sizer.errors import InvalidArgument
from gpu_sizer.units import (
    bytes_to_gb,
    calculate_percentage,
    compare_memory_sizes,
    convert,
    format_memory_size,
    format_smart,
    gb_to_bytes,
    parse_memory_string,
    validate_memory_size,
)


@pytest.mark.parametrize("gb", [0, 0.5, 1, 24, 80, 1234.5678])
def test_gb_round_trip(gb):
    """GB -> bytes -> GB is lossless within float tolerance."""
    assert bytes_to_gb(gb_to_bytes(gb)) == pytest.approx(gb)


def test_binary_units():
    assert gb_to_bytes(1) == 1024 ** 3
    assert convert(1, "TB", "GB") == 1024
    assert convert(2048, "mb", "gb") == 2


def test_negative_and_non_finite_rejected():
    with pytest.raises(InvalidArgument):
        bytes_to_gb(-1)
    with pytest.raises(InvalidArgument):
        gb_to_bytes(math.nan)
    with pytest.raises(InvalidArgument):
        format_memory_size(math.inf)
    with pytest.raises(InvalidArgument):
        convert(1, "GB", "PB")


def test_format_memory_size():
    assert format_memory_size(0) == "0 B"
    assert format_memory_size(512) == "512 B"
    assert format_memory_size(1536) == "1.50 KB"
    assert format_memory_size(24 * 1024 ** 3) == "24.00 GB"
    assert format_memory_size(1.5 * 1024 ** 3, precision=1) == "1.5 GB"
    # precision is clamped to [0, 10]
    assert format_memory_size(1024 ** 3, precision=-3) == "1 GB"


def test_format_smart():
    assert format_smart(12.5 * 1024 ** 3) == "12.5 GB"
    assert format_smart(1.25 * 1024 ** 3) == "1.25 GB"
    assert format_smart(512 * 1024 ** 2) == "512 MB"


def test_parse_memory_string():
    assert parse_memory_string("24GB") == 24 * 1024 ** 3
    assert parse_memory_string(" 512 MB ") == 512 * 1024 ** 2
    assert parse_memory_string("1.5 tb") == 1.5 * 1024 ** 4
    with pytest.raises(InvalidArgument):
        parse_memory_string("-3 GB")
    with pytest.raises(InvalidArgument):
        parse_memory_string("lots")


def test_percentage_zero_total():
    """Percentage of a zero total is 0, not an error."""
    assert calculate_percentage(10, 0) == 0
    assert calculate_percentage(1, 3) == 33.33
    assert calculate_percentage(1, 3, precision=4) == 33.3333


def test_compare_and_validate():
    assert compare_memory_sizes(1, 2) == -1
    assert compare_memory_sizes(2, 2) == 0
    assert compare_memory_sizes(3, 2) == 1
    assert validate_memory_size(0)
    assert not validate_memory_size(-1)
    assert not validate_memory_size(math.nan)
    assert not validate_memory_size("1GB")
