from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from fingerprint_core import SUITE_INVALID_CODE, FingerprintConfigError
from jsonschema import Draft202012Validator
from jsonschema import ValidationError as JsonSchemaValidationError
from pydantic import ValidationError

from .models import StabilityTestSuite, VariationDocument

VARIATION_DOCUMENT_SCHEMA = "fingerprint.variations.v1"
STABILITY_SUITE_SCHEMA = "fingerprint.stability_suite.v1"


def variation_document_schema() -> dict[str, Any]:
    return VariationDocument.model_json_schema()


def stability_suite_schema() -> dict[str, Any]:
    return StabilityTestSuite.model_json_schema()


def _error_path(error: JsonSchemaValidationError) -> str:
    return "/" + "/".join(str(part) for part in error.absolute_path)


def _check_schema(document: Any, schema: dict[str, Any], *, description: str) -> None:
    validator = Draft202012Validator(schema)
    errors = sorted(
        validator.iter_errors(document),
        key=lambda error: ([str(part) for part in error.absolute_path], error.message),
    )
    if errors:
        first = errors[0]
        raise FingerprintConfigError(
            f"{description} failed schema validation at {_error_path(first)}: {first.message}",
            code=SUITE_INVALID_CODE,
            context={
                "path": _error_path(first),
                "error": first.message,
                "error_count": len(errors),
            },
        )


def validate_variation_document(document: Any) -> VariationDocument:
    _check_schema(document, variation_document_schema(), description="variation document")
    try:
        return VariationDocument.model_validate(document)
    except ValidationError as exc:
        raise FingerprintConfigError(
            "variation document is invalid",
            code=SUITE_INVALID_CODE,
            context={"error": str(exc)},
        ) from exc


def validate_stability_suite(document: Any) -> StabilityTestSuite:
    _check_schema(document, stability_suite_schema(), description="stability suite")
    try:
        return StabilityTestSuite.model_validate(document)
    except ValidationError as exc:
        raise FingerprintConfigError(
            "stability suite is invalid",
            code=SUITE_INVALID_CODE,
            context={"error": str(exc)},
        ) from exc


def _load_json(path: Path, *, description: str) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise FingerprintConfigError(
            f"could not read {description}",
            code=SUITE_INVALID_CODE,
            context={"path": str(path), "error": str(exc)},
        ) from exc
    except json.JSONDecodeError as exc:
        raise FingerprintConfigError(
            f"{description} is not valid JSON",
            code=SUITE_INVALID_CODE,
            context={"path": str(path), "error": str(exc)},
        ) from exc


def load_variation_document(path: Path) -> VariationDocument:
    return validate_variation_document(_load_json(path, description="variation document"))


def load_stability_suite(path: Path) -> StabilityTestSuite:
    return validate_stability_suite(_load_json(path, description="stability suite"))
