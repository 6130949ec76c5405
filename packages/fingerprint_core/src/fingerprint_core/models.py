from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class FallbackReason(str, Enum):
    TEMPORARY_FAILURE = "temporary_failure"
    PERMANENT_FAILURE = "permanent_failure"
    MALFORMED_DATA = "malformed_data"
    MISSING_PROPERTY = "missing_property"
    VALIDATION_FAILED = "validation_failed"


class ErrorCategory(str, Enum):
    TEMPORARY = "temporary"
    PERMANENT = "permanent"
    MALFORMED = "malformed"
    SECURITY = "security"
    UNKNOWN = "unknown"


class DebugLevel(IntEnum):
    TRACE = 0
    DEBUG = 1
    INFO = 2
    WARN = 3
    ERROR = 4


class StepType(str, Enum):
    NUMERIC_ROUND = "numeric_round"
    STRING_NORMALIZE = "string_normalize"
    GPU_NORMALIZE = "gpu_normalize"
    ARRAY_SORT = "array_sort"
    OBJECT_KEY_SORT = "object_key_sort"
    PLUGIN_FILTER = "plugin_filter"
    FALLBACK_APPLIED = "fallback_applied"
    VALIDATION_SANITIZE = "validation_sanitize"
    SERIALIZATION = "serialization"


class FallbackRecord(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    property: str
    reason: FallbackReason
    original_value: Any = None
    fallback_value: Any = None
    timestamp: datetime


class ErrorRecord(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    property: str
    category: ErrorCategory
    error_type: str
    message: str
    timestamp: datetime


@dataclass(frozen=True)
class Ok:
    value: Any

    @property
    def is_fallback(self) -> bool:
        return False


@dataclass(frozen=True)
class Fallback:
    value: Any
    reason: FallbackReason
    record: FallbackRecord

    @property
    def is_fallback(self) -> bool:
        return True


FieldOutcome = Union[Ok, Fallback]


class CanonicalPlugin(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    types: list[str] = Field(default_factory=list)


class CanonicalForm(BaseModel):
    """Rule-normalized projection of an attribute bag; the only hash input."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    user_agent: str
    platform: str
    screen_resolution: list[str]
    color_depth: str
    color_gamut: str
    os: dict[str, str]
    webgl_vendor: str
    webgl_renderer: str
    webgl_image_hash: str
    fonts: str
    canvas_geometry: str
    audio_fingerprint: str
    math_constants: dict[str, str] | str
    plugins: list[CanonicalPlugin] = Field(default_factory=list)

    def payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


SecuritySeverity = Literal["critical", "warning"]


class SecurityViolation(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    field: str
    code: str
    severity: SecuritySeverity
    message: str


class NormalizationStep(BaseModel):
    model_config = ConfigDict(extra="forbid")

    step_id: str
    type: StepType
    property: str
    before: Any = None
    after: Any = None
    elapsed_ms: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class DebugLogEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entry_id: str
    elapsed_ms: float
    level: DebugLevel
    category: str
    message: str
    data: Any = None


class DebugSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total_steps: int = 0
    steps_by_type: dict[str, int] = Field(default_factory=dict)
    fallbacks_applied: int = 0
    validation_errors: int = 0
    dropped_entries: int = 0
    processing_time_ms: float = 0.0


class DebugSessionRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: str
    started_at: datetime
    ended_at: datetime | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    log_entries: list[DebugLogEntry] = Field(default_factory=list)
    normalization_steps: list[NormalizationStep] = Field(default_factory=list)
    summary: DebugSummary = Field(default_factory=DebugSummary)


class SerializationStats(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total_properties: int = 0
    normalized_values: int = 0
    sorted_arrays: int = 0
    sorted_objects: int = 0
    max_depth_reached: int = 0
    processing_time_ms: float = 0.0


class SerializationResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    serialized: str
    normalized: Any = None
    stats: SerializationStats


class HashDebugInfo(BaseModel):
    model_config = ConfigDict(extra="forbid")

    processing_time_ms: float
    canonical_form: CanonicalForm
    serialized: str
    serialization_stats: SerializationStats
    fallbacks: dict[str, list[FallbackRecord]] = Field(default_factory=dict)
    security_violations: list[SecurityViolation] = Field(default_factory=list)
    session: DebugSessionRecord | None = None


class HashResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    digest: str
    debug_info: HashDebugInfo
