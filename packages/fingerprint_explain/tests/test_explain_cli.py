from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from fingerprint_core import generate_fingerprint
from fingerprint_explain.cli import main

_ENV_VARS = (
    "FINGERPRINT_RETRY_MAX_ATTEMPTS",
    "FINGERPRINT_RETRY_BASE_DELAY_MS",
    "FINGERPRINT_RETRY_MAX_DELAY_MS",
    "FINGERPRINT_RETRY_BACKOFF_MULTIPLIER",
    "FINGERPRINT_PRIVACY_PLUGIN_PATTERN",
    "FINGERPRINT_HASH_MODE",
    "FINGERPRINT_DEBUG_LEVEL",
    "FINGERPRINT_DEBUG_MAX_ENTRIES",
    "FINGERPRINT_COMPARISON_MAX_DEPTH",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _baseline_bag() -> dict[str, Any]:
    return {
        "userAgent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/90.0.4430.93 Safari/537.36"
        ),
        "platform": "Win32",
        "screenResolution": [1920, 1080],
        "colorDepth": 24,
        "audio": 124.04347527516074,
        "webGL": {"vendor": "Google Inc. (NVIDIA)", "renderer": "NVIDIA GeForce GTX 1660 SUPER"},
        "timezone": "America/New_York",
        "fontPreferences": {"detectedFonts": ["Arial", "Courier New"]},
    }


def _write(path: Path, payload: Any) -> Path:
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_hash_prints_digest(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    bag_path = _write(tmp_path / "bag.json", _baseline_bag())

    assert main(["hash", "--in", str(bag_path)]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload == {"digest": generate_fingerprint(_baseline_bag())}


def test_hash_debug_writes_trace_to_file(tmp_path: Path) -> None:
    bag_path = _write(tmp_path / "bag.json", _baseline_bag())
    out_path = tmp_path / "out" / "trace.json"

    assert main(["hash", "--in", str(bag_path), "--debug", "--out", str(out_path)]) == 0

    payload = json.loads(out_path.read_text(encoding="utf-8"))
    assert payload["digest"] == generate_fingerprint(_baseline_bag())
    assert payload["debug_info"]["session"]["ended_at"] is not None
    assert "canvas" in payload["debug_info"]["fallbacks"]


def test_hash_strict_mode_refuses_injection(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    bag = _baseline_bag()
    bag["platform"] = "<script>alert(1)</script>"
    bag_path = _write(tmp_path / "bag.json", bag)

    assert main(["hash", "--in", str(bag_path), "--mode", "STRICT"]) == 2

    assert "FP_STRICT_VIOLATION" in capsys.readouterr().err


def test_compare_text_report(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    other = _baseline_bag()
    other["platform"] = "MacIntel"
    a_path = _write(tmp_path / "a.json", _baseline_bag())
    b_path = _write(tmp_path / "b.json", other)

    assert main(["compare", "--a", str(a_path), "--b", str(b_path), "--text"]) == 0

    out = capsys.readouterr().out
    assert "Hashes match: NO" in out
    assert "platform [CRITICAL]" in out


def test_analyze_needs_two_inputs(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    bags_path = _write(tmp_path / "bags.json", [_baseline_bag()])

    assert main(["analyze", "--in", str(bags_path)]) == 2

    assert "FP_STABILITY_INSUFFICIENT_INPUTS" in capsys.readouterr().err


def test_analyze_reports_stability(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    bags_path = _write(tmp_path / "bags.json", [_baseline_bag(), _baseline_bag()])

    assert main(["analyze", "--in", str(bags_path), "--workers", "2"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["unique_hashes"] == 1
    assert payload["variation_rate"] == 0.0


def test_analyze_rejects_non_array_input(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    bags_path = _write(tmp_path / "bags.json", {"not": "a list"})

    assert main(["analyze", "--in", str(bags_path)]) == 2

    assert "expected JSON array of objects" in capsys.readouterr().err


def test_diagnose_pretty_json(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    other = _baseline_bag()
    other["timezone"] = "Asia/Tokyo"
    a_path = _write(tmp_path / "a.json", _baseline_bag())
    b_path = _write(tmp_path / "b.json", other)

    assert main(["diagnose", "--a", str(a_path), "--b", str(b_path), "--pretty"]) == 0

    out = capsys.readouterr().out
    assert out.startswith("{\n")
    assert json.loads(out)["summary"].startswith("Hashes match")


@pytest.mark.parametrize(("should_be_stable", "exit_code"), [(True, 0), (False, 1)])
def test_run_suite_exit_code_follows_outcome(
    tmp_path: Path, should_be_stable: bool, exit_code: int
) -> None:
    document = {
        "baseline": _baseline_bag(),
        "patterns": [
            {
                "name": "cosmetic",
                "variations": [
                    {
                        "name": "timezone",
                        "modifications": [{"property": "timezone", "new_value": "UTC"}],
                        "should_be_stable": should_be_stable,
                    }
                ],
            }
        ],
    }
    doc_path = _write(tmp_path / "suite.json", document)
    out_path = tmp_path / "report.json"

    assert main(["run-suite", "--in", str(doc_path), "--out", str(out_path)]) == exit_code

    report = json.loads(out_path.read_text(encoding="utf-8"))
    assert report["overall_passed"] is (exit_code == 0)


def test_run_suite_rejects_invalid_document(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    doc_path = _write(tmp_path / "suite.json", {"patterns": []})

    assert main(["run-suite", "--in", str(doc_path)]) == 2

    assert "FP_SUITE_INVALID" in capsys.readouterr().err


def test_missing_input_file_is_reported(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["hash", "--in", str(tmp_path / "missing.json")]) == 2

    assert "fingerprint-stability:" in capsys.readouterr().err


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("FINGERPRINT_RETRY_MAX_ATTEMPTS", "zero", "must be an integer"),
        ("FINGERPRINT_PRIVACY_PLUGIN_PATTERN", "(", "must be a valid regular expression"),
    ],
)
def test_invalid_environment_is_reported(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    name: str,
    value: str,
    message: str,
) -> None:
    monkeypatch.setenv(name, value)
    bag_path = _write(tmp_path / "bag.json", _baseline_bag())

    assert main(["hash", "--in", str(bag_path)]) == 2

    assert f"{name} {message}" in capsys.readouterr().err
