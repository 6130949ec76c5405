from .canonical import CANONICAL_FIELDS, NO_FONTS_DETECTED, CanonicalResult, Canonicalizer
from .config import (
    CanonicalizerConfig,
    ComparisonConfig,
    DebugConfig,
    FingerprintSettings,
    RetryPolicy,
)
from .debug import DebugRecorder, DebugSession, render_session_summary
from .errors import (
    CONFIG_INVALID_CODE,
    DEBUG_SESSION_ACTIVE_CODE,
    STABILITY_INSUFFICIENT_INPUTS_CODE,
    STRICT_VIOLATION_CODE,
    SUITE_INVALID_CODE,
    DebugSessionError,
    FingerprintConfigError,
    FingerprintError,
    FingerprintErrorDetail,
    StrictModeViolationError,
)
from .fallback import DEFAULT_SENTINELS, FallbackResolver
from .gates import InjectionPatternGate, SecurityGate
from .hashing import FingerprintHasher, PreparedFingerprint, generate_fingerprint, sha256_text
from .ids import stable_id
from .mode import HashMode
from .models import (
    CanonicalForm,
    CanonicalPlugin,
    DebugLevel,
    DebugSessionRecord,
    ErrorCategory,
    ErrorRecord,
    Fallback,
    FallbackReason,
    FallbackRecord,
    FieldOutcome,
    HashDebugInfo,
    HashResult,
    Ok,
    SecurityViolation,
    SerializationResult,
    SerializationStats,
    StepType,
)
from .normalization import normalize_gpu_string, normalize_string, round_number
from .serialization import Serializer, canonical_json, deep_sort, encode, serialize

__all__ = [
    "CANONICAL_FIELDS",
    "CONFIG_INVALID_CODE",
    "CanonicalForm",
    "CanonicalPlugin",
    "CanonicalResult",
    "Canonicalizer",
    "CanonicalizerConfig",
    "ComparisonConfig",
    "DEBUG_SESSION_ACTIVE_CODE",
    "DEFAULT_SENTINELS",
    "DebugConfig",
    "DebugLevel",
    "DebugRecorder",
    "DebugSession",
    "DebugSessionError",
    "DebugSessionRecord",
    "ErrorCategory",
    "ErrorRecord",
    "Fallback",
    "FallbackReason",
    "FallbackRecord",
    "FallbackResolver",
    "FieldOutcome",
    "FingerprintConfigError",
    "FingerprintError",
    "FingerprintErrorDetail",
    "FingerprintHasher",
    "FingerprintSettings",
    "HashDebugInfo",
    "HashMode",
    "HashResult",
    "InjectionPatternGate",
    "NO_FONTS_DETECTED",
    "Ok",
    "PreparedFingerprint",
    "RetryPolicy",
    "STABILITY_INSUFFICIENT_INPUTS_CODE",
    "STRICT_VIOLATION_CODE",
    "SUITE_INVALID_CODE",
    "SecurityGate",
    "SecurityViolation",
    "SerializationResult",
    "SerializationStats",
    "Serializer",
    "StepType",
    "StrictModeViolationError",
    "canonical_json",
    "deep_sort",
    "encode",
    "generate_fingerprint",
    "normalize_gpu_string",
    "normalize_string",
    "render_session_summary",
    "round_number",
    "serialize",
    "sha256_text",
    "stable_id",
]

__version__ = "0.1.0"
