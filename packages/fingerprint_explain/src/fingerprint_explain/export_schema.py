from __future__ import annotations

import argparse
import json
from pathlib import Path

from .suite_schema import (
    STABILITY_SUITE_SCHEMA,
    VARIATION_DOCUMENT_SCHEMA,
    stability_suite_schema,
    variation_document_schema,
)

_ROOT_MARKERS: tuple[str, str] = ("pyproject.toml", "packages/fingerprint_explain")


def _repo_root(anchor: Path) -> Path:
    start = anchor.expanduser().resolve()
    for candidate in (start, *start.parents):
        if (candidate / _ROOT_MARKERS[0]).is_file() and (candidate / _ROOT_MARKERS[1]).is_dir():
            return candidate
    raise RuntimeError(
        f"repo_root resolution failed: could not locate repository root from {start}"
    )


def _write_schema(path: Path, schema: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(schema, indent=2, sort_keys=True) + "\n", encoding="utf-8")


def write_schemas(schema_dir: Path) -> list[Path]:
    written = [
        schema_dir / f"{VARIATION_DOCUMENT_SCHEMA}.json",
        schema_dir / f"{STABILITY_SUITE_SCHEMA}.json",
    ]
    _write_schema(written[0], variation_document_schema())
    _write_schema(written[1], stability_suite_schema())
    return written


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Export stability suite JSON schemas.")
    parser.add_argument("--out-dir", dest="out_dir", help="Directory to write schemas into")
    args = parser.parse_args(argv)

    if args.out_dir:
        schema_dir = Path(args.out_dir)
    else:
        schema_dir = _repo_root(Path(__file__)) / "packages" / "fingerprint_explain" / "schema"
    write_schemas(schema_dir)


if __name__ == "__main__":
    main()
