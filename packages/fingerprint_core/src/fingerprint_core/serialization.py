from __future__ import annotations

import json
import time
from decimal import Decimal
from typing import Any, Mapping

from .debug import DebugSession
from .models import SerializationResult, SerializationStats
from .normalization import is_bounded_number, is_number, normalize_string, round_number

_SEQUENCE_TYPES = (list, tuple, set, frozenset)
_BINARY_TYPES = (bytes, bytearray, memoryview)


def canonical_json(value: Any) -> str:
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def _sort_key(value: Any) -> str:
    return canonical_json(encode(value))


def deep_sort(value: Any) -> Any:
    """Recursively order sequences by each element's serialized text and mappings by key."""
    if isinstance(value, Mapping):
        return {key: deep_sort(value[key]) for key in sorted(value, key=str)}
    if isinstance(value, _SEQUENCE_TYPES):
        return sorted((deep_sort(item) for item in value), key=_sort_key)
    return value


def encode(value: Any) -> Any:
    if isinstance(value, _BINARY_TYPES):
        return ""
    if value is None or isinstance(value, bool):
        return value
    if is_bounded_number(value):
        return round_number(value)
    if is_number(value):
        return f"{Decimal(value):E}"
    if isinstance(value, str):
        return normalize_string(value)
    if isinstance(value, Mapping):
        return {normalize_string(str(key)): encode(item) for key, item in value.items()}
    if isinstance(value, _SEQUENCE_TYPES):
        return [encode(item) for item in value]
    return normalize_string(str(value))


def serialize(value: Any) -> str:
    return canonical_json(encode(deep_sort(value)))


def _collect_stats(value: Any, stats: SerializationStats, depth: int = 0) -> None:
    stats.max_depth_reached = max(stats.max_depth_reached, depth)
    if isinstance(value, Mapping):
        stats.sorted_objects += 1
        for item in value.values():
            stats.total_properties += 1
            _collect_stats(item, stats, depth + 1)
        return
    if isinstance(value, _SEQUENCE_TYPES):
        stats.sorted_arrays += 1
        for item in value:
            _collect_stats(item, stats, depth + 1)
        return
    if isinstance(value, (str, *_BINARY_TYPES)) or is_number(value):
        stats.normalized_values += 1


class Serializer:
    """Deterministic serializer with optional statistics for debug runs."""

    def serialize(self, value: Any) -> str:
        return serialize(value)

    def serialize_with_details(
        self,
        value: Any,
        *,
        session: DebugSession | None = None,
    ) -> SerializationResult:
        started = time.perf_counter()
        normalized = encode(deep_sort(value))
        serialized = canonical_json(normalized)
        stats = SerializationStats()
        _collect_stats(value, stats)
        stats.processing_time_ms = round((time.perf_counter() - started) * 1000.0, 3)
        if session is not None:
            session.log_serialization(
                stats.total_properties,
                len(serialized),
                {
                    "sorted_arrays": stats.sorted_arrays,
                    "sorted_objects": stats.sorted_objects,
                    "max_depth_reached": stats.max_depth_reached,
                },
            )
        return SerializationResult(serialized=serialized, normalized=normalized, stats=stats)
