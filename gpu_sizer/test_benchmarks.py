"""
Tests for the benchmark catalog, normalisation and performance prediction.

Run with: python -m pytest gpu_sizer/test_benchmarks.py
"""

import math
from datetime import date

import pytest

from gpu_sizer.benchmarks import (
    BenchmarkCatalog,
    BenchmarkProcessor,
    BenchmarkSample,
    load_benchmark_catalog,
    parse_model_size,
)
from gpu_sizer.errors import BenchmarkNotFound, CatalogError, InvalidArgument
from gpu_sizer.memory import ModelParameters

TODAY = date(2024, 2, 1)

HEADER = "test_name,device_id,model_size,tokens_per_second,memory_efficiency,power_efficiency,source\n"


@pytest.fixture(scope="module")
def catalog():
    return load_benchmark_catalog()


@pytest.fixture(scope="module")
def processor(catalog):
    return BenchmarkProcessor(catalog, today=TODAY)


# ----------------------------------------------------------------------
# Catalog
# ----------------------------------------------------------------------
def test_bundled_catalog(catalog):
    assert len(catalog) == 10
    assert ("llama-7b-inference", "rtx-4090") in catalog
    assert catalog.device_ids() == ["a100-80gb", "h100", "rtx-3090", "rtx-4080", "rtx-4090"]
    summary = catalog.get_summary()
    assert summary["total_samples"] == 10
    assert summary["by_device"]["h100"] == 3


def test_get_sample(catalog):
    sample = catalog.get("llama-7b-inference", "rtx-4090")
    assert sample.tokens_per_second == 2847
    assert sample.credibility == 0.95
    assert sample.verified is True
    assert sample.test_date == date(2024, 1, 15)


def test_missing_sample_raises_typed_error(catalog):
    with pytest.raises(BenchmarkNotFound) as exc_info:
        catalog.get("llama-7b-inference", "rtx-2060")
    assert exc_info.value.device_id == "rtx-2060"
    assert "rtx-2060" in str(exc_info.value)
    # still usable as a KeyError
    with pytest.raises(KeyError):
        catalog.get("gpt-4", "h100")
    assert catalog.find("gpt-4", "h100") is None


def test_for_device_sorted_by_size(catalog):
    sizes = [s.model_size_billions for s in catalog.for_device("h100")]
    assert sizes == [7.0, 13.0, 70.0]


def test_duplicate_rows_rejected(tmp_path):
    path = tmp_path / "dup.csv"
    path.write_text(HEADER + "t,rtx-4090,7B,100,0.8,5,unknown\n" + "t,rtx-4090,7B,120,0.8,5,unknown\n")
    with pytest.raises(CatalogError):
        BenchmarkCatalog.from_csv(path)


def test_missing_column_rejected(tmp_path):
    path = tmp_path / "bad.csv"
    path.write_text("test_name,device_id,model_size\nt,rtx-4090,7B\n")
    with pytest.raises(CatalogError):
        BenchmarkCatalog.from_csv(path)


def test_missing_file_rejected(tmp_path):
    with pytest.raises(CatalogError):
        BenchmarkCatalog.from_csv(tmp_path / "nope.csv")


def test_bad_rows_are_skipped(tmp_path):
    path = tmp_path / "mixed.csv"
    path.write_text(
        HEADER
        + "good,rtx-4090,7B,100,0.8,5,unknown\n"
        + "negative,rtx-4090,7B,-5,0.8,5,unknown\n"
        + "empty,rtx-4090,7B,,0.8,5,unknown\n"
    )
    catalog = BenchmarkCatalog.from_csv(path)
    assert len(catalog) == 1
    sample = catalog.get("good", "rtx-4090")
    assert sample.credibility == 0.5
    assert sample.batch_size == 1
    assert sample.precision == "fp16"


def test_sample_validation():
    with pytest.raises(InvalidArgument):
        BenchmarkSample("t", "d", "7B", tokens_per_second=math.nan, memory_efficiency=0.8, power_efficiency=5)
    with pytest.raises(InvalidArgument):
        BenchmarkSample("t", "d", "7B", tokens_per_second=10, memory_efficiency=0.8, power_efficiency=5,
                        batch_size=0)


@pytest.mark.parametrize("text,expected", [
    ("7B", 7.0), ("13b", 13.0), ("1.5B", 1.5), ("350M", 0.35), ("llama-70B", 70.0), ("", 7.0), (None, 7.0), (3, 3.0),
])
def test_parse_model_size(text, expected):
    assert parse_model_size(text) == pytest.approx(expected)


# ----------------------------------------------------------------------
# Normalisation
# ----------------------------------------------------------------------
def test_normalized_score(catalog, processor):
    normalized = processor.normalize_sample(catalog.get("llama-7b-inference", "rtx-4090"))
    expected = 100 + (0.87 - 0.8) * 50 + math.log(6.33 / 5.0) * 10
    assert normalized.normalized_score == pytest.approx(expected)
    assert normalized.normalized_score == pytest.approx(105.86, abs=0.01)
    low, high = normalized.confidence_interval
    assert low < 2847 < high
    assert normalized.applicability == 1.0


def test_data_quality(catalog, processor):
    sample = catalog.get("llama-7b-inference", "rtx-4090")
    freshness = (90 - 17) / 90
    assert processor.data_quality(sample) == pytest.approx(0.3 * freshness + 0.4 * 0.95 + 0.3)
    unverified = catalog.get("llama-7b-inference", "rtx-3090")
    assert processor.data_quality(unverified) < processor.data_quality(sample)


def test_applicability_penalises_non_standard_runs():
    sample = BenchmarkSample("t", "d", "7B", 100, 0.8, 5, batch_size=8, precision="int8", framework="vLLM")
    assert BenchmarkProcessor(BenchmarkCatalog(), today=TODAY).applicability(sample) == pytest.approx(0.9 * 0.8 * 0.95)


# ----------------------------------------------------------------------
# Prediction
# ----------------------------------------------------------------------
def test_exact_match_prediction(catalog, processor):
    prediction = processor.predict_performance("rtx-4090", ModelParameters(parameter_count=7))
    base = catalog.get("llama-7b-inference", "rtx-4090")
    assert prediction.method == "benchmark_interpolation"
    assert not prediction.is_estimate
    assert prediction.base_sample is base
    assert prediction.match_score == pytest.approx(1.0)
    assert prediction.tokens_per_second == pytest.approx(2847)
    # two qualifying samples (7B and 13B) out of the three wanted
    assert prediction.confidence == pytest.approx(processor.data_quality(base) * 2 / 3)
    assert 0 <= prediction.confidence <= 1


def test_unknown_device_uses_specification_estimate(processor):
    prediction = processor.predict_performance("mi300x", ModelParameters(parameter_count=7))
    assert prediction.is_estimate
    assert prediction.method == "specification_based"
    assert prediction.confidence == 0.3
    assert prediction.tokens_per_second == pytest.approx(2000)
    assert len(prediction.limitations) == 3


@pytest.mark.parametrize("device_id", ["rtx-4090", "rtx-4080", "rtx-3090", "a100-80gb", "h100", "mi300x"])
def test_throughput_decreases_with_model_size(processor, device_id):
    throughput = [
        processor.predict_performance(device_id, ModelParameters(parameter_count=size)).tokens_per_second
        for size in (1, 7, 13, 70)
    ]
    assert throughput == sorted(throughput, reverse=True)
    assert all(t > 0 for t in throughput)


def test_batch_scaling(processor):
    prediction = processor.predict_performance("rtx-4090", ModelParameters(parameter_count=7, batch_size=4))
    assert prediction.tokens_per_second == pytest.approx(2847 * 4 ** 0.6)
    assert any("batch size" in lim for lim in prediction.limitations)


def test_interpolated_size(processor):
    prediction = processor.predict_performance("rtx-4080", ModelParameters(parameter_count=13))
    assert prediction.base_sample.model_size == "7B"
    assert prediction.tokens_per_second == pytest.approx(2156 * (7 / 13) ** 0.8)
    assert prediction.memory_efficiency <= 1.0


def test_prediction_rejects_bad_target(processor):
    class Target:
        parameter_count = 0
        batch_size = 1
        sequence_length = 2048
        precision = "fp16"

    with pytest.raises(InvalidArgument):
        processor.predict_performance("rtx-4090", Target())


def test_relative_performance(processor):
    relative = processor.calculate_relative_performance("rtx-4080")
    assert relative.ratio == pytest.approx(2156 / 2847)
    assert relative.score == pytest.approx(2156 / 2847 * 100)
    assert relative.confidence == pytest.approx(0.95)
    assert relative.basis == "huggingface_official_vs_huggingface_official"

    missing = processor.calculate_relative_performance("mi300x")
    assert missing.basis == "insufficient_data"
    assert missing.score == 50.0


def test_relative_performance_with_zero_reference_throughput():
    catalog = BenchmarkCatalog([
        BenchmarkSample("llama-7b", "rtx-4090", "7B", tokens_per_second=0, memory_efficiency=0.8,
                        power_efficiency=5),
        BenchmarkSample("llama-7b", "rtx-4080", "7B", tokens_per_second=90, memory_efficiency=0.8,
                        power_efficiency=5),
    ])
    relative = BenchmarkProcessor(catalog, today=TODAY).calculate_relative_performance("rtx-4080")
    assert relative.basis == "insufficient_data"
    assert relative.score == 50.0
    assert relative.ratio == 0.5
    assert relative.confidence == 0.1


def test_benchmark_coverage(processor):
    assert processor.benchmark_coverage("a100-80gb") == 0.98
    assert processor.benchmark_coverage("mi300x") == 0.5
