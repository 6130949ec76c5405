from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import MAX_EMAX, MIN_EMIN, Context, Decimal
from typing import Any, Mapping, Sequence

from fingerprint_core import (
    ComparisonConfig,
    FingerprintConfigError,
    FingerprintHasher,
    PreparedFingerprint,
    deep_sort,
    encode,
    normalize_string,
    stable_id,
)
from fingerprint_core.canonical import as_mapping
from fingerprint_core.normalization import is_number

from .models import (
    SEVERITY_RANK,
    ComparisonMetadata,
    ComparisonResult,
    Difference,
    DifferenceSeverity,
    DifferenceType,
    ImpactAnalysis,
)

logger = logging.getLogger(__name__)

PathSegment = str | int

# Raw bag paths and their canonical-form counterparts.
CRITICAL_PROPERTIES = frozenset(
    {
        "userAgent",
        "platform",
        "screenResolution",
        "webGL.vendor",
        "webGL.renderer",
        "webGL.imageHash",
        "canvas.geometry",
        "audio",
        "user_agent",
        "screen_resolution",
        "webgl_vendor",
        "webgl_renderer",
        "webgl_image_hash",
        "canvas_geometry",
        "audio_fingerprint",
    }
)

_TYPE_SEVERITY: dict[DifferenceType, DifferenceSeverity] = {
    DifferenceType.WHITESPACE_DIFFERENCE: DifferenceSeverity.NEGLIGIBLE,
    DifferenceType.ENCODING_DIFFERENCE: DifferenceSeverity.NEGLIGIBLE,
    DifferenceType.PRECISION_DIFFERENCE: DifferenceSeverity.LOW,
    DifferenceType.ARRAY_ORDER: DifferenceSeverity.MEDIUM,
    DifferenceType.ARRAY_LENGTH: DifferenceSeverity.MEDIUM,
    DifferenceType.OBJECT_STRUCTURE: DifferenceSeverity.MEDIUM,
    DifferenceType.TYPE_CHANGE: DifferenceSeverity.HIGH,
    DifferenceType.MISSING_PROPERTY: DifferenceSeverity.HIGH,
    DifferenceType.ADDED_PROPERTY: DifferenceSeverity.HIGH,
    DifferenceType.VALUE_CHANGE: DifferenceSeverity.MEDIUM,
}

_CRITICAL_ELIGIBLE_TYPES = frozenset({DifferenceType.VALUE_CHANGE, DifferenceType.ARRAY_LENGTH})
_INDEX_RE = re.compile(r"\[\d+\]")
_MOST_SIGNIFICANT_LIMIT = 5
_LOW_STABILITY_SCORE = 0.7
_ABSENT = object()
_WIDE_CONTEXT = Context(Emax=MAX_EMAX, Emin=MIN_EMIN)


@dataclass(frozen=True)
class _Mismatch:
    path: tuple[PathSegment, ...]
    type: DifferenceType
    value_a: Any
    value_b: Any
    truncated: bool = False


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, (list, tuple)):
        return "array"
    return type(value).__name__


def _is_nan(value: Any) -> bool:
    return value != value


def _same(left: Any, right: Any) -> bool:
    kind = _kind(left)
    if kind != _kind(right):
        return False
    if kind == "number":
        return left == right or (_is_nan(left) and _is_nan(right))
    if kind == "object":
        return set(left) == set(right) and all(_same(left[key], right[key]) for key in left)
    if kind == "array":
        return len(left) == len(right) and all(
            _same(item_a, item_b) for item_a, item_b in zip(left, right)
        )
    return left == right


def _identity_key(value: Any) -> str:
    return json.dumps(plain_value(value), sort_keys=True, default=str)


def _same_multiset(left: Sequence[Any], right: Sequence[Any]) -> bool:
    return sorted(_identity_key(item) for item in left) == sorted(
        _identity_key(item) for item in right
    )


def plain_value(value: Any) -> Any:
    if value is _ABSENT:
        return None
    if isinstance(value, BaseException):
        return f"{type(value).__name__}: {value}"
    if isinstance(value, Mapping):
        return {str(key): plain_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [plain_value(item) for item in value]
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_thaw(item) for item in value]
    return value


def format_path(path: Sequence[PathSegment]) -> str:
    text = ""
    for segment in path:
        if isinstance(segment, int):
            text += f"[{segment}]"
        elif text:
            text += f".{segment}"
        else:
            text = segment
    return text


def base_property(property_path: str) -> str:
    return _INDEX_RE.sub("", property_path)


def _container_key(container: Mapping[Any, Any], segment: PathSegment) -> Any:
    if segment in container:
        return segment
    for key in container:
        if str(key) == segment:
            return key
    return segment


def _apply(root: dict[str, Any], path: Sequence[PathSegment], value: Any, *, remove: bool) -> None:
    parent: Any = root
    for segment in path[:-1]:
        if isinstance(parent, dict):
            parent = parent[_container_key(parent, segment)]
        else:
            parent = parent[segment]
    last = path[-1]
    if isinstance(parent, dict):
        key = _container_key(parent, last)
        if remove:
            parent.pop(key, None)
        else:
            parent[key] = _thaw(value)
        return
    parent[last] = _thaw(value)


def _format_value(value: Any) -> str:
    if value is _ABSENT:
        return "undefined"
    if value is None:
        return "null"
    if isinstance(value, str):
        return f'"{value[:47]}..."' if len(value) > 50 else f'"{value}"'
    if isinstance(value, (Mapping, list, tuple)):
        text = json.dumps(plain_value(value), sort_keys=True, default=str)
        return f"{text[:97]}..." if len(text) > 100 else text
    return str(value)


def _describe(mismatch: _Mismatch, property_path: str) -> str:
    value_a, value_b = mismatch.value_a, mismatch.value_b
    if mismatch.type == DifferenceType.VALUE_CHANGE:
        return f"Value changed from {_format_value(value_a)} to {_format_value(value_b)}"
    if mismatch.type == DifferenceType.TYPE_CHANGE:
        return f"Type changed from {_kind(value_a)} to {_kind(value_b)}"
    if mismatch.type == DifferenceType.MISSING_PROPERTY:
        return "Property missing in second input"
    if mismatch.type == DifferenceType.ADDED_PROPERTY:
        return "Property added in second input"
    if mismatch.type == DifferenceType.ARRAY_LENGTH:
        return f"Array length changed from {len(value_a)} to {len(value_b)}"
    if mismatch.type == DifferenceType.ARRAY_ORDER:
        return "Array elements reordered"
    if mismatch.type == DifferenceType.WHITESPACE_DIFFERENCE:
        return "Whitespace differences detected"
    if mismatch.type == DifferenceType.ENCODING_DIFFERENCE:
        return "Text encoding differences detected"
    if mismatch.type == DifferenceType.PRECISION_DIFFERENCE:
        return f"Numeric precision difference: {abs(float(value_a) - float(value_b)):.2e}"
    if mismatch.truncated:
        return f"Subtree at {property_path} exceeds the comparison depth and differs"
    return f"Difference detected in {property_path}"


class Comparator:
    """
    Explains why two input bags hash the same or differently.

    The walk mirrors a structural diff: sorted key union for mappings, index-wise
    for lists. `affects_hash` is never guessed; each difference is substituted
    into `a` alone and the result is re-serialized.
    """

    def __init__(
        self,
        *,
        hasher: FingerprintHasher | None = None,
        config: ComparisonConfig | None = None,
    ) -> None:
        self.hasher = hasher or FingerprintHasher()
        self.config = config or ComparisonConfig()
        self._overrides = self._parse_overrides(self.config.severity_overrides)

    @staticmethod
    def _parse_overrides(raw: Mapping[str, str]) -> dict[str, DifferenceSeverity]:
        overrides: dict[str, DifferenceSeverity] = {}
        for property_path, severity in raw.items():
            try:
                overrides[property_path] = DifferenceSeverity(severity)
            except ValueError as exc:
                raise FingerprintConfigError(
                    f"severity_overrides[{property_path!r}] must be one of "
                    + ", ".join(level.value for level in DifferenceSeverity),
                    context={"property": property_path, "severity": str(severity)},
                ) from exc
        return overrides

    def prepare(self, bag: Any) -> PreparedFingerprint:
        return self.hasher.prepare(bag)

    def compare(
        self,
        a: Any,
        b: Any,
        *,
        prepared_a: PreparedFingerprint | None = None,
        prepared_b: PreparedFingerprint | None = None,
    ) -> ComparisonResult:
        started = time.perf_counter()
        bag_a = as_mapping(a)
        bag_b = as_mapping(b)
        first = prepared_a or self.prepare(bag_a)
        second = prepared_b or self.prepare(bag_b)

        differences = self.diff(bag_a, bag_b, baseline_serialized=first.serialized)
        normalized_differences = self._canonical_differences(first, second)
        hashes_match = first.digest == second.digest
        impact = analyze_impact(differences, hashes_match=hashes_match)

        result = ComparisonResult(
            identical=not differences,
            hashes_match=hashes_match,
            hash_a=first.digest,
            hash_b=second.digest,
            differences=differences,
            normalized_differences=normalized_differences,
            impact_analysis=impact,
            metadata=ComparisonMetadata(
                comparison_id=stable_id(first.digest, second.digest, prefix="cmp"),
                compared_at=_utc_now(),
                processing_time_ms=round((time.perf_counter() - started) * 1000.0, 3),
                max_depth=self.config.max_depth,
                ignored_properties=sorted(self.config.ignored_properties),
            ),
        )
        logger.debug(
            "compared %s: %d differences, %d affect the hash",
            result.metadata.comparison_id,
            impact.total_differences,
            impact.hash_affecting_differences,
        )
        return result

    def diff(
        self,
        a: Any,
        b: Any,
        *,
        baseline_serialized: str | None = None,
    ) -> list[Difference]:
        bag_a = as_mapping(a)
        bag_b = as_mapping(b)
        mismatches: list[_Mismatch] = []
        self._walk(bag_a, bag_b, (), 0, mismatches)
        if not mismatches:
            return []
        baseline = baseline_serialized or self._serialized(bag_a)
        return [
            self._build(
                mismatch,
                affects_hash=self._affects_hash(bag_a, mismatch, baseline),
            )
            for mismatch in mismatches
        ]

    def _canonical_differences(
        self,
        first: PreparedFingerprint,
        second: PreparedFingerprint,
    ) -> list[Difference]:
        if first.serialized == second.serialized:
            return []
        mismatches: list[_Mismatch] = []
        self._walk(first.canonical.payload(), second.canonical.payload(), (), 0, mismatches)
        # Canonical equality and digest equality coincide, so every surviving difference counts.
        return [self._build(mismatch, affects_hash=True) for mismatch in mismatches]

    def _walk(
        self,
        a: Any,
        b: Any,
        path: tuple[PathSegment, ...],
        depth: int,
        out: list[_Mismatch],
    ) -> None:
        if _same(a, b):
            return

        kind_a, kind_b = _kind(a), _kind(b)
        if kind_a != kind_b:
            out.append(_Mismatch(path, DifferenceType.TYPE_CHANGE, a, b))
            return

        if kind_a in ("object", "array") and depth >= self.config.max_depth:
            out.append(_Mismatch(path, DifferenceType.OBJECT_STRUCTURE, a, b, truncated=True))
            return

        if kind_a == "object":
            for key in sorted(set(a) | set(b), key=str):
                child_path = path + (str(key),)
                if self._ignored(child_path):
                    continue
                if key not in b:
                    out.append(
                        _Mismatch(child_path, DifferenceType.MISSING_PROPERTY, a[key], _ABSENT)
                    )
                    continue
                if key not in a:
                    out.append(
                        _Mismatch(child_path, DifferenceType.ADDED_PROPERTY, _ABSENT, b[key])
                    )
                    continue
                self._walk(a[key], b[key], child_path, depth + 1, out)
            return

        if kind_a == "array":
            if len(a) != len(b):
                out.append(_Mismatch(path, DifferenceType.ARRAY_LENGTH, a, b))
                return
            if _same_multiset(a, b):
                out.append(_Mismatch(path, DifferenceType.ARRAY_ORDER, a, b))
                return
            for index, (item_a, item_b) in enumerate(zip(a, b)):
                self._walk(item_a, item_b, path + (index,), depth + 1, out)
            return

        out.append(_Mismatch(path, _leaf_type(kind_a, a, b, self.config.precision_tolerance), a, b))

    def _ignored(self, path: tuple[PathSegment, ...]) -> bool:
        ignored = self.config.ignored_properties
        if not ignored:
            return False
        property_path = format_path(path)
        return (
            property_path in ignored
            or base_property(property_path) in ignored
            or str(path[-1]) in ignored
        )

    def severity_for(
        self,
        property_path: str,
        difference_type: DifferenceType,
    ) -> DifferenceSeverity:
        """
        Overrides win, then identity properties escalate to critical for value and
        length changes. A length change on an identity list such as the screen
        resolution alters the device as much as a value change does.
        """
        base = base_property(property_path)
        override = self._overrides.get(property_path) or self._overrides.get(base)
        if override is not None:
            return override
        if difference_type in _CRITICAL_ELIGIBLE_TYPES and base in CRITICAL_PROPERTIES:
            return DifferenceSeverity.CRITICAL
        return _TYPE_SEVERITY[difference_type]

    def _build(self, mismatch: _Mismatch, *, affects_hash: bool) -> Difference:
        property_path = format_path(mismatch.path)
        include_normalized = self.config.include_normalized_values
        return Difference(
            property_path=property_path,
            path=list(mismatch.path),
            value_a=plain_value(mismatch.value_a),
            value_b=plain_value(mismatch.value_b),
            normalized_a=_normalized(mismatch.value_a) if include_normalized else None,
            normalized_b=_normalized(mismatch.value_b) if include_normalized else None,
            type=mismatch.type,
            severity=self.severity_for(property_path, mismatch.type),
            affects_hash=affects_hash,
            truncated=mismatch.truncated,
            description=_describe(mismatch, property_path),
        )

    def _affects_hash(self, bag_a: Mapping[str, Any], mismatch: _Mismatch, baseline: str) -> bool:
        candidate = _thaw(bag_a)
        _apply(
            candidate,
            mismatch.path,
            mismatch.value_b,
            remove=mismatch.type == DifferenceType.MISSING_PROPERTY,
        )
        return self._serialized(candidate) != baseline

    def _serialized(self, bag: Mapping[str, Any]) -> str:
        return self.hasher.serializer.serialize(self.hasher.canonicalize(bag).form.payload())


def _leaf_type(kind: str, a: Any, b: Any, tolerance: float) -> DifferenceType:
    if kind == "string":
        if " ".join(a.split()) == " ".join(b.split()):
            return DifferenceType.WHITESPACE_DIFFERENCE
        if normalize_string(a) == normalize_string(b):
            return DifferenceType.ENCODING_DIFFERENCE
        return DifferenceType.VALUE_CHANGE
    if kind == "number":
        delta = _numeric_delta(a, b)
        if delta is not None and delta < Decimal(repr(tolerance)):
            return DifferenceType.PRECISION_DIFFERENCE
    return DifferenceType.VALUE_CHANGE


def _numeric_delta(a: Any, b: Any) -> Decimal | None:
    """Exact distance between two numbers; None when either is NaN or infinite."""
    left = Decimal(repr(a)) if isinstance(a, float) else Decimal(a)
    right = Decimal(repr(b)) if isinstance(b, float) else Decimal(b)
    if not (left.is_finite() and right.is_finite()):
        return None
    return _WIDE_CONTEXT.subtract(left, right).copy_abs()


def _normalized(value: Any) -> Any:
    if value is _ABSENT:
        return None
    return encode(deep_sort(value))


def _significance_key(difference: Difference) -> tuple[int, str, str]:
    return (SEVERITY_RANK[difference.severity], difference.property_path, difference.type.value)


def analyze_impact(differences: Sequence[Difference], *, hashes_match: bool) -> ImpactAnalysis:
    total = len(differences)
    critical = sum(1 for item in differences if item.severity == DifferenceSeverity.CRITICAL)
    affecting = sum(1 for item in differences if item.affects_hash)
    normalized_away = total - affecting

    score = 1.0 if total == 0 else max(0.0, 1.0 - affecting / total)
    if not hashes_match:
        score *= 0.5

    most_significant = sorted(
        (item for item in differences if item.affects_hash),
        key=_significance_key,
    )[:_MOST_SIGNIFICANT_LIMIT]

    recommendations: list[str] = []
    if not hashes_match:
        recommendations.append("Hashes do not match - investigate critical differences")
    if score < _LOW_STABILITY_SCORE:
        recommendations.append("Low stability score - consider improving input normalization")
    if critical:
        recommendations.append(
            f"{critical} critical differences found - review core fingerprint properties"
        )
    if normalized_away:
        recommendations.append(
            f"{normalized_away} differences normalized away - normalization is working effectively"
        )
    types = {item.type for item in differences}
    if DifferenceType.PRECISION_DIFFERENCE in types:
        recommendations.append(
            "Numeric precision differences detected - ensure consistent rounding"
        )
    if DifferenceType.WHITESPACE_DIFFERENCE in types:
        recommendations.append(
            "Whitespace differences detected - ensure consistent string normalization"
        )

    return ImpactAnalysis(
        total_differences=total,
        critical_differences=critical,
        hash_affecting_differences=affecting,
        normalized_away_differences=normalized_away,
        most_significant_differences=most_significant,
        hash_stability_score=score,
        recommendations=recommendations,
    )
