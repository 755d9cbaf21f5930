#!/usr/bin/env python3
"""
Command line front end for GPU sizing recommendations.

Usage:
    python -m gpu_sizer.cli --model llama-7b --mode inference --budget 20000
    python -m gpu_sizer.cli --params 13 --hidden 5120 --layers 40 --batch-size 4 --json
"""

import argparse
import json
import logging
import sys

from .config import UtilizationConfig, get_log_level
from .errors import GpuSizerError
from .memory import MODEL_PRESETS, PRECISION_BYTES, ModelParameters, estimate_memory
from .recommender import DEFAULT_MAX_RESULTS, SORT_KEYS, create_engine
from .units import format_smart

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Estimate LLM memory needs and rank GPU configurations")
    parser.add_argument("--model", "-m", choices=sorted(MODEL_PRESETS), help="Model preset (e.g., llama-7b)")
    parser.add_argument("--params", "-p", type=float, help="Parameter count in billions (when no preset)")
    parser.add_argument("--hidden", type=int, help="Hidden size (default: preset or 4096)")
    parser.add_argument("--layers", type=int, help="Number of layers (default: preset or 32)")
    parser.add_argument("--precision", choices=list(PRECISION_BYTES), default="fp16", help="Weight precision (default: fp16)")
    parser.add_argument("--batch-size", "-b", type=int, default=1, help="Batch size (default: 1)")
    parser.add_argument("--seq-len", "-s", type=int, default=2048, help="Sequence length (default: 2048)")
    parser.add_argument("--mode", choices=["inference", "training"], default="inference", help="Memory estimation mode")
    parser.add_argument("--workload", choices=["inference", "training", "mixed"], help="Rating workload (default: same as --mode)")
    parser.add_argument("--budget", type=float, help="Maximum total price in USD")
    parser.add_argument("--max-results", type=int, default=DEFAULT_MAX_RESULTS, help="Number of devices to list")
    parser.add_argument("--sort-by", choices=list(SORT_KEYS), default="efficiency", help="Ranking order")
    parser.add_argument("--benchmarks", help="Path to a benchmark CSV (default: bundled catalog)")
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    return parser


def model_from_args(args) -> ModelParameters:
    overrides = {
        "batch_size": args.batch_size,
        "sequence_length": args.seq_len,
        "precision": args.precision,
    }
    if args.hidden is not None:
        overrides["hidden_size"] = args.hidden
    if args.layers is not None:
        overrides["num_layers"] = args.layers
    if args.model:
        if args.params is not None:
            overrides["parameter_count"] = args.params
        return ModelParameters.from_preset(args.model, **overrides)
    if args.params is None:
        raise SystemExit("error: either --model or --params is required")
    return ModelParameters(parameter_count=args.params, **overrides)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=get_log_level(), format="%(asctime)s - %(levelname)s - %(message)s")

    try:
        model = model_from_args(args)
        requirement = estimate_memory(model, args.mode)
        engine = create_engine(args.benchmarks, config=UtilizationConfig.from_env())
        result = engine.recommend(
            requirement,
            workload=args.workload or args.mode,
            budget=args.budget,
            max_results=args.max_results,
            sort_by=args.sort_by,
            model=model,
        )
    except GpuSizerError as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 2

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
        return 0

    print(f"Model: {model.parameter_count:g}B params, {model.precision}, batch={model.batch_size}, seq={model.sequence_length}")
    print(f"Memory ({args.mode}): {format_smart(requirement.total_bytes)}")
    for name, size in requirement.components().items():
        if size > 0:
            print(f"  {name:<12} {format_smart(size)}")
    print()
    print("=" * 60)
    if result.is_fallback:
        print("No recommendation available:")
        for err in result.validation.errors:
            print(f"  - {err}")
        return 1
    if result.best:
        print(f"BEST: {result.best.name} x{result.best.device_count} (${result.best.total_price:,.0f})")
    print(f"Compatible devices: {result.compatible_count}")
    print("=" * 60)
    for i, rec in enumerate(result.recommendations, 1):
        fit = "fits" if rec.suitable else f"needs {rec.device_count}x"
        print(f"{i:>2}. {rec.name:<26} {fit:<10} score={rec.efficiency_score:.2f} "
              f"util={rec.utilization.percentage:.0f}% ${rec.total_price:,.0f}")
        print(f"    {rec.description}")
    for warning in result.validation.warnings:
        print(f"Warning: {warning}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
