from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

FINGERPRINT_ERROR_CODE = "FP_ERROR"
CONFIG_INVALID_CODE = "FP_CONFIG_INVALID"
STABILITY_INSUFFICIENT_INPUTS_CODE = "FP_STABILITY_INSUFFICIENT_INPUTS"
SUITE_INVALID_CODE = "FP_SUITE_INVALID"
STRICT_VIOLATION_CODE = "FP_STRICT_VIOLATION"
DEBUG_SESSION_ACTIVE_CODE = "FP_DEBUG_SESSION_ACTIVE"


class FingerprintErrorDetail(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: str
    message: str
    context: dict[str, Any] = Field(default_factory=dict)


class FingerprintError(ValueError):
    """Base class for caller-facing fingerprint errors."""

    def __init__(
        self,
        message: str,
        *,
        code: str = FINGERPRINT_ERROR_CODE,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.context = context or {}

    def to_detail(self) -> FingerprintErrorDetail:
        return FingerprintErrorDetail(code=self.code, message=str(self), context=self.context)


class FingerprintConfigError(FingerprintError):
    """Raised on caller misuse: invalid configuration or unusable inputs."""

    def __init__(
        self,
        message: str,
        *,
        code: str = CONFIG_INVALID_CODE,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code=code, context=context)


class StrictModeViolationError(FingerprintError):
    """Raised when strict hashing is vetoed by a critical security violation."""

    def __init__(self, *, field: str, violation_code: str, message: str) -> None:
        super().__init__(
            f"strict mode refused to hash: {field}: {message}",
            code=STRICT_VIOLATION_CODE,
            context={"field": field, "violation_code": violation_code},
        )
        self.field = field
        self.violation_code = violation_code


class DebugSessionError(FingerprintError):
    """Raised when a recorder is asked to open a second concurrent session."""

    def __init__(self, *, active_session_id: str) -> None:
        super().__init__(
            f"debug session already active: {active_session_id}",
            code=DEBUG_SESSION_ACTIVE_CODE,
            context={"active_session_id": active_session_id},
        )
        self.active_session_id = active_session_id
