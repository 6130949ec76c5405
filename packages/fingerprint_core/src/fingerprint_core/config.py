from __future__ import annotations

import os
import re
from dataclasses import asdict, dataclass, field
from typing import Any

from .errors import FingerprintConfigError
from .mode import HashMode
from .models import DebugLevel, ErrorCategory

DEFAULT_RETRY_MAX_ATTEMPTS = 3
DEFAULT_RETRY_BASE_DELAY_MS = 100
DEFAULT_RETRY_MAX_DELAY_MS = 2000
DEFAULT_RETRY_BACKOFF_MULTIPLIER = 2.0
DEFAULT_PRIVACY_PLUGIN_PATTERN = "Brave"
DEFAULT_NUMERIC_PRECISION = 3
DEFAULT_HISTORY_LIMIT = 100
DEFAULT_DEBUG_MAX_ENTRIES = 1000
DEFAULT_COMPARISON_MAX_DEPTH = 10
DEFAULT_PRECISION_TOLERANCE = 1e-3


def _env_int(
    name: str,
    default: int,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        value = default
    else:
        try:
            value = int(raw)
        except ValueError as exc:
            raise RuntimeError(f"{name} must be an integer") from exc
    if minimum is not None and value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}")
    if maximum is not None and value > maximum:
        raise RuntimeError(f"{name} must be <= {maximum}")
    return value


def _env_float(name: str, default: float, *, minimum: float | None = None) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        value = default
    else:
        try:
            value = float(raw)
        except ValueError as exc:
            raise RuntimeError(f"{name} must be a number") from exc
    if minimum is not None and value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}")
    return value


def _env_pattern(name: str, default: str) -> str:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        re.compile(raw)
    except re.error as exc:
        raise RuntimeError(f"{name} must be a valid regular expression: {exc}") from exc
    return raw


def _env_choice(name: str, default: str, *, choices: tuple[str, ...]) -> str:
    raw = os.environ.get(name, "").strip().upper()
    if not raw:
        return default
    if raw not in choices:
        raise RuntimeError(f"{name} must be one of {', '.join(choices)}")
    return raw


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = DEFAULT_RETRY_MAX_ATTEMPTS
    base_delay_ms: int = DEFAULT_RETRY_BASE_DELAY_MS
    max_delay_ms: int = DEFAULT_RETRY_MAX_DELAY_MS
    backoff_multiplier: float = DEFAULT_RETRY_BACKOFF_MULTIPLIER
    retryable: frozenset[ErrorCategory] = frozenset({ErrorCategory.TEMPORARY})

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise FingerprintConfigError(
                "max_attempts must be >= 1",
                context={"max_attempts": self.max_attempts},
            )
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise FingerprintConfigError(
                "retry delays must be >= 0",
                context={"base_delay_ms": self.base_delay_ms, "max_delay_ms": self.max_delay_ms},
            )
        if self.backoff_multiplier < 1:
            raise FingerprintConfigError(
                "backoff_multiplier must be >= 1",
                context={"backoff_multiplier": self.backoff_multiplier},
            )


@dataclass(frozen=True)
class CanonicalizerConfig:
    privacy_plugin_pattern: str = DEFAULT_PRIVACY_PLUGIN_PATTERN
    numeric_precision: int = DEFAULT_NUMERIC_PRECISION

    def __post_init__(self) -> None:
        if not 0 <= self.numeric_precision <= 10:
            raise FingerprintConfigError(
                "numeric_precision must be between 0 and 10",
                context={"numeric_precision": self.numeric_precision},
            )
        try:
            re.compile(self.privacy_plugin_pattern)
        except re.error as exc:
            raise FingerprintConfigError(
                f"privacy_plugin_pattern is not a valid regular expression: {exc}",
                context={"privacy_plugin_pattern": self.privacy_plugin_pattern},
            ) from exc


@dataclass(frozen=True)
class DebugConfig:
    enabled: bool = True
    level: DebugLevel = DebugLevel.INFO
    max_entries: int = DEFAULT_DEBUG_MAX_ENTRIES
    include_timings: bool = True
    include_values: bool = True

    def __post_init__(self) -> None:
        if self.max_entries < 1:
            raise FingerprintConfigError(
                "max_entries must be >= 1",
                context={"max_entries": self.max_entries},
            )

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["level"] = self.level.name
        return payload


@dataclass(frozen=True)
class ComparisonConfig:
    max_depth: int = DEFAULT_COMPARISON_MAX_DEPTH
    precision_tolerance: float = DEFAULT_PRECISION_TOLERANCE
    ignored_properties: frozenset[str] = frozenset()
    severity_overrides: dict[str, str] = field(default_factory=dict)
    include_normalized_values: bool = True

    def __post_init__(self) -> None:
        if self.max_depth < 1:
            raise FingerprintConfigError(
                "max_depth must be >= 1",
                context={"max_depth": self.max_depth},
            )
        if self.precision_tolerance <= 0:
            raise FingerprintConfigError(
                "precision_tolerance must be > 0",
                context={"precision_tolerance": self.precision_tolerance},
            )


@dataclass(frozen=True)
class FingerprintSettings:
    retry: RetryPolicy
    canonicalizer: CanonicalizerConfig
    debug: DebugConfig
    comparison: ComparisonConfig
    hash_mode: HashMode

    @classmethod
    def from_env(cls) -> "FingerprintSettings":
        level_name = _env_choice(
            "FINGERPRINT_DEBUG_LEVEL",
            DebugLevel.INFO.name,
            choices=tuple(level.name for level in DebugLevel),
        )
        mode_name = _env_choice(
            "FINGERPRINT_HASH_MODE",
            HashMode.LAX.value,
            choices=tuple(mode.value for mode in HashMode),
        )
        base_delay_ms = _env_int(
            "FINGERPRINT_RETRY_BASE_DELAY_MS",
            DEFAULT_RETRY_BASE_DELAY_MS,
            minimum=0,
        )
        return cls(
            retry=RetryPolicy(
                max_attempts=_env_int(
                    "FINGERPRINT_RETRY_MAX_ATTEMPTS",
                    DEFAULT_RETRY_MAX_ATTEMPTS,
                    minimum=1,
                    maximum=20,
                ),
                base_delay_ms=base_delay_ms,
                max_delay_ms=_env_int(
                    "FINGERPRINT_RETRY_MAX_DELAY_MS",
                    DEFAULT_RETRY_MAX_DELAY_MS,
                    minimum=base_delay_ms,
                ),
                backoff_multiplier=_env_float(
                    "FINGERPRINT_RETRY_BACKOFF_MULTIPLIER",
                    DEFAULT_RETRY_BACKOFF_MULTIPLIER,
                    minimum=1.0,
                ),
            ),
            canonicalizer=CanonicalizerConfig(
                privacy_plugin_pattern=_env_pattern(
                    "FINGERPRINT_PRIVACY_PLUGIN_PATTERN",
                    DEFAULT_PRIVACY_PLUGIN_PATTERN,
                ),
            ),
            debug=DebugConfig(
                level=DebugLevel[level_name],
                max_entries=_env_int(
                    "FINGERPRINT_DEBUG_MAX_ENTRIES",
                    DEFAULT_DEBUG_MAX_ENTRIES,
                    minimum=1,
                ),
            ),
            comparison=ComparisonConfig(
                max_depth=_env_int(
                    "FINGERPRINT_COMPARISON_MAX_DEPTH",
                    DEFAULT_COMPARISON_MAX_DEPTH,
                    minimum=1,
                    maximum=64,
                ),
            ),
            hash_mode=HashMode(mode_name),
        )
