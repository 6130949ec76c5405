from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Any

from fingerprint_core import FingerprintError, FingerprintSettings, HashMode
from pydantic import BaseModel

from .factory import build_comparator, build_hasher, build_recorder, build_troubleshooter
from .reports import (
    render_comparison_report,
    render_diagnosis_report,
    render_instability_report,
    render_stability_report,
    render_test_report,
)
from .suite_schema import validate_stability_suite, validate_variation_document

logger = logging.getLogger(__name__)

_PROG = "fingerprint-stability"


def _load_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def _load_bag(path: Path) -> dict[str, Any]:
    payload = _load_json(path)
    if not isinstance(payload, dict):
        raise ValueError(f"expected JSON object at {path}")
    return payload


def _load_bags(path: Path) -> list[dict[str, Any]]:
    payload = _load_json(path)
    if not isinstance(payload, list) or not all(isinstance(item, dict) for item in payload):
        raise ValueError(f"expected JSON array of objects at {path}")
    return payload


def _write_json(path: Path | None, payload: Any, *, pretty: bool) -> None:
    if pretty:
        text = json.dumps(payload, ensure_ascii=False, sort_keys=True, indent=2) + "\n"
    else:
        text = json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":")) + "\n"
    if path is None:
        sys.stdout.write(text)
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _emit(args: argparse.Namespace, model: BaseModel, text: str | None = None) -> None:
    out_path = Path(args.out_path) if args.out_path else None
    if args.text and text is not None:
        if out_path is None:
            sys.stdout.write(text + "\n")
            return
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(text + "\n", encoding="utf-8")
        return
    _write_json(out_path, model.model_dump(mode="json"), pretty=bool(args.pretty))


def _settings(args: argparse.Namespace) -> FingerprintSettings:
    settings = FingerprintSettings.from_env()
    if args.mode:
        settings = dataclasses.replace(settings, hash_mode=HashMode(args.mode))
    return settings


def _add_output_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--out", dest="out_path", help="Path to write output")
    parser.add_argument(
        "--pretty",
        action="store_true",
        help="Pretty-print output JSON (still key-sorted).",
    )
    parser.add_argument("--text", action="store_true", help="Render a text report instead of JSON")
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in HashMode],
        help="Override FINGERPRINT_HASH_MODE",
    )


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog=_PROG,
        description="Deterministic fingerprint hashing, comparison and stability analysis.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Stdlib logging level",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    hash_cmd = subparsers.add_parser("hash", help="Hash one attribute bag")
    hash_cmd.add_argument("--in", dest="in_path", required=True, help="Path to bag JSON")
    hash_cmd.add_argument("--debug", action="store_true", help="Include the debug trace")
    _add_output_args(hash_cmd)

    compare = subparsers.add_parser("compare", help="Explain differences between two bags")
    compare.add_argument("--a", dest="a_path", required=True, help="Path to first bag JSON")
    compare.add_argument("--b", dest="b_path", required=True, help="Path to second bag JSON")
    _add_output_args(compare)

    analyze = subparsers.add_parser("analyze", help="Measure hash stability across many bags")
    analyze.add_argument("--in", dest="in_path", required=True, help="Path to JSON array of bags")
    analyze.add_argument("--workers", type=int, help="Thread pool size for pairwise comparisons")
    analyze.add_argument(
        "--factors",
        action="store_true",
        help="Report per-property instability factors instead of the stability summary",
    )
    _add_output_args(analyze)

    diagnose = subparsers.add_parser("diagnose", help="Diagnose why two bags hash differently")
    diagnose.add_argument("--a", dest="a_path", required=True, help="Path to first bag JSON")
    diagnose.add_argument("--b", dest="b_path", required=True, help="Path to second bag JSON")
    _add_output_args(diagnose)

    run_suite = subparsers.add_parser("run-suite", help="Run a stability suite")
    run_suite.add_argument(
        "--in",
        dest="in_path",
        required=True,
        help="Path to a variation document or a generated suite JSON",
    )
    run_suite.add_argument(
        "--no-comparisons",
        action="store_true",
        help="Skip per-variation comparison details",
    )
    _add_output_args(run_suite)

    return parser.parse_args(argv)


def _run_hash(args: argparse.Namespace, settings: FingerprintSettings) -> int:
    bag = _load_bag(Path(args.in_path))
    hasher = build_hasher(settings)
    if args.debug:
        result = hasher.generate_with_debug(bag, recorder=build_recorder(settings))
        _write_json(
            Path(args.out_path) if args.out_path else None,
            result.model_dump(mode="json"),
            pretty=bool(args.pretty),
        )
        return 0
    digest = hasher.generate(bag)
    if args.text:
        sys.stdout.write(digest + "\n")
        return 0
    _write_json(
        Path(args.out_path) if args.out_path else None,
        {"digest": digest},
        pretty=bool(args.pretty),
    )
    return 0


def _run_compare(args: argparse.Namespace, settings: FingerprintSettings) -> int:
    comparator = build_comparator(settings)
    result = comparator.compare(_load_bag(Path(args.a_path)), _load_bag(Path(args.b_path)))
    _emit(args, result, render_comparison_report(result))
    return 0


def _run_analyze(args: argparse.Namespace, settings: FingerprintSettings) -> int:
    troubleshooter = build_troubleshooter(settings, max_workers=args.workers)
    bags = _load_bags(Path(args.in_path))
    if args.factors:
        factors = troubleshooter.identify_instability_factors(bags)
        _emit(args, factors, render_instability_report(factors))
        return 0
    report = troubleshooter.analyzer.analyze_variations(bags)
    _emit(args, report, render_stability_report(report))
    return 0


def _run_diagnose(args: argparse.Namespace, settings: FingerprintSettings) -> int:
    troubleshooter = build_troubleshooter(settings)
    report = troubleshooter.diagnose(_load_bag(Path(args.a_path)), _load_bag(Path(args.b_path)))
    _emit(args, report, render_diagnosis_report(report))
    return 0


def _run_suite(args: argparse.Namespace, settings: FingerprintSettings) -> int:
    troubleshooter = build_troubleshooter(settings)
    payload = _load_json(Path(args.in_path))
    if isinstance(payload, dict) and "test_cases" in payload:
        suite = validate_stability_suite(payload)
    else:
        document = validate_variation_document(payload)
        suite = troubleshooter.generate_stability_test_suite(
            document.baseline,
            document.patterns,
            name=document.name,
            description=document.description,
        )
    report = troubleshooter.run_stability_tests(
        suite,
        include_comparisons=not args.no_comparisons,
    )
    _emit(args, report, render_test_report(report))
    return 0 if report.overall_passed else 1


_COMMANDS = {
    "hash": _run_hash,
    "compare": _run_compare,
    "analyze": _run_analyze,
    "diagnose": _run_diagnose,
    "run-suite": _run_suite,
}


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    handler = _COMMANDS.get(args.command)
    if handler is None:
        raise RuntimeError(f"unsupported {_PROG} command")

    try:
        return handler(args, _settings(args))
    except FingerprintError as exc:
        logger.debug("command %s failed with %s", args.command, exc.code)
        print(f"{_PROG}: [{exc.code}] {exc}", file=sys.stderr)
        return 2
    except (json.JSONDecodeError, OSError, ValueError, RuntimeError) as exc:
        print(f"{_PROG}: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
