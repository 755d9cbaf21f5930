"""
Tests for the command line front end.
"""

import json

import pytest

from gpu_sizer.cli import build_parser, main, model_from_args


def test_json_output(capsys):
    assert main(["--model", "llama-7b", "--json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["workload"] == "inference"
    assert payload["requirement"]["mode"] == "inference"
    assert payload["recommendations"]


def test_text_output(capsys):
    assert main(["--params", "7", "--budget", "5000", "--max-results", "3"]) == 0
    out = capsys.readouterr().out
    assert "Memory (inference)" in out
    assert "BEST:" in out


def test_preset_with_overrides():
    args = build_parser().parse_args(["--model", "llama-13b", "--batch-size", "4", "--precision", "int8"])
    model = model_from_args(args)
    assert model.parameter_count == 13
    assert model.batch_size == 4
    assert model.precision == "int8"


def test_model_or_params_required():
    with pytest.raises(SystemExit):
        model_from_args(build_parser().parse_args([]))


def test_unknown_preset_rejected():
    with pytest.raises(SystemExit):
        main(["--model", "gpt-99"])


def test_invalid_parameters_exit_code(capsys):
    assert main(["--params", "0"]) == 2
    assert "Error" in capsys.readouterr().err
