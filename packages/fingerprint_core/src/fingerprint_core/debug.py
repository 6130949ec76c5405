from __future__ import annotations

import json
import logging
import threading
import time
from collections import Counter
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from .config import DebugConfig
from .errors import DebugSessionError
from .ids import session_id as new_session_id
from .models import (
    DebugLevel,
    DebugLogEntry,
    DebugSessionRecord,
    DebugSummary,
    FallbackRecord,
    NormalizationStep,
    StepType,
)
from .normalization import safe_text

logger = logging.getLogger(__name__)

_STDLIB_LEVELS = {
    DebugLevel.TRACE: logging.DEBUG,
    DebugLevel.DEBUG: logging.DEBUG,
    DebugLevel.INFO: logging.INFO,
    DebugLevel.WARN: logging.WARNING,
    DebugLevel.ERROR: logging.ERROR,
}


def _clone(value: Any) -> Any:
    try:
        return json.loads(json.dumps(value, default=str))
    except (TypeError, ValueError):
        return safe_text(value)


class DebugSession:
    """
    One recording window over the hashing pipeline.
    Writes after `end()` are ignored; the exported record is frozen at that point.
    """

    def __init__(
        self,
        *,
        session_id: str,
        config: DebugConfig,
        recorder: DebugRecorder | None = None,
    ) -> None:
        self.session_id = session_id
        self.config = config
        self._recorder = recorder
        self._started_at = datetime.now(tz=timezone.utc)
        self._started = time.perf_counter()
        self._ended_at: datetime | None = None
        self._entries: list[DebugLogEntry] = []
        self._steps: list[NormalizationStep] = []
        self._steps_by_type: Counter[str] = Counter()
        self._total_steps = 0
        self._fallbacks = 0
        self._validation_errors = 0
        self._dropped = 0
        self._processing_time_ms = 0.0
        self._record: DebugSessionRecord | None = None

    @property
    def active(self) -> bool:
        return self._record is None

    def _elapsed_ms(self) -> float:
        if not self.config.include_timings:
            return 0.0
        return round((time.perf_counter() - self._started) * 1000.0, 3)

    def _value(self, value: Any) -> Any:
        return _clone(value) if self.config.include_values else None

    def log(self, level: DebugLevel, category: str, message: str, data: Any = None) -> None:
        if not self.active or not self.config.enabled or level < self.config.level:
            return
        if len(self._entries) >= self.config.max_entries:
            self._dropped += 1
            return
        entry = DebugLogEntry(
            entry_id=f"log_{len(self._entries) + 1:04d}",
            elapsed_ms=self._elapsed_ms(),
            level=level,
            category=category,
            message=message,
            data=self._value(data),
        )
        self._entries.append(entry)
        logger.log(
            _STDLIB_LEVELS[level],
            "[%s] %s: %s",
            self.session_id,
            category,
            message,
        )

    def log_step(
        self,
        step_type: StepType,
        property: str,
        before: Any,
        after: Any,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if not self.active or not self.config.enabled:
            return
        self._total_steps += 1
        self._steps_by_type[step_type.value] += 1
        if len(self._steps) >= self.config.max_entries:
            self._dropped += 1
            return
        self._steps.append(
            NormalizationStep(
                step_id=f"step_{len(self._steps) + 1:04d}",
                type=step_type,
                property=property,
                before=self._value(before),
                after=self._value(after),
                elapsed_ms=self._elapsed_ms(),
                metadata=_clone(metadata or {}),
            )
        )
        self.log(
            DebugLevel.TRACE,
            "normalization",
            f"{step_type.value} applied to {property}",
        )

    def log_fallback(self, record: FallbackRecord) -> None:
        if not self.active or not self.config.enabled:
            return
        self._fallbacks += 1
        self.log_step(
            StepType.FALLBACK_APPLIED,
            record.property,
            record.original_value,
            record.fallback_value,
            {"reason": record.reason.value},
        )
        self.log(
            DebugLevel.WARN,
            "fallback",
            f"fallback applied for {record.property}: {record.reason.value}",
            {"reason": record.reason.value},
        )

    def log_validation(
        self,
        property: str,
        issue: str,
        original: Any = None,
        sanitized: Any = None,
    ) -> None:
        if not self.active or not self.config.enabled:
            return
        self._validation_errors += 1
        self.log_step(
            StepType.VALIDATION_SANITIZE,
            property,
            original,
            sanitized,
            {"issue": issue},
        )
        self.log(DebugLevel.WARN, "validation", f"{property}: {issue}")

    def log_serialization(
        self,
        input_size: int,
        output_size: int,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if not self.active or not self.config.enabled:
            return
        details = {"input_size": input_size, "output_size": output_size}
        details.update(metadata or {})
        self.log_step(StepType.SERIALIZATION, "serialization", input_size, output_size, details)
        self.log(
            DebugLevel.DEBUG,
            "serialization",
            f"serialized {input_size} properties into {output_size} characters",
            details,
        )

    def summary(self) -> DebugSummary:
        return DebugSummary(
            total_steps=self._total_steps,
            steps_by_type=dict(sorted(self._steps_by_type.items())),
            fallbacks_applied=self._fallbacks,
            validation_errors=self._validation_errors,
            dropped_entries=self._dropped,
            processing_time_ms=(
                self._processing_time_ms if self._ended_at is not None else self._elapsed_ms()
            ),
        )

    def snapshot(self) -> DebugSessionRecord:
        if self._record is not None:
            return self._record
        return DebugSessionRecord(
            session_id=self.session_id,
            started_at=self._started_at,
            ended_at=self._ended_at,
            config=self.config.to_dict(),
            log_entries=list(self._entries),
            normalization_steps=list(self._steps),
            summary=self.summary(),
        )

    def end(self) -> DebugSessionRecord:
        if self._record is not None:
            return self._record
        self._ended_at = datetime.now(tz=timezone.utc)
        self._processing_time_ms = self._elapsed_ms()
        self.log(
            DebugLevel.INFO,
            "session",
            f"debug session ended after {self._processing_time_ms}ms",
        )
        self._record = self.snapshot()
        if self._recorder is not None:
            self._recorder._release(self)
        return self._record

    def export(self) -> dict[str, Any]:
        return self.snapshot().model_dump(mode="json")


class DebugRecorder:
    """Hands out debug sessions, at most one active at a time."""

    def __init__(self, config: DebugConfig | None = None) -> None:
        self.config = config or DebugConfig()
        self._lock = threading.Lock()
        self._active: DebugSession | None = None

    @property
    def active_session(self) -> DebugSession | None:
        return self._active

    def start(self, session_id: str | None = None) -> DebugSession:
        with self._lock:
            if self._active is not None:
                raise DebugSessionError(active_session_id=self._active.session_id)
            session = DebugSession(
                session_id=session_id or new_session_id(),
                config=self.config,
                recorder=self,
            )
            self._active = session
        session.log(DebugLevel.INFO, "session", f"debug session started: {session.session_id}")
        return session

    @contextmanager
    def session(self, session_id: str | None = None) -> Iterator[DebugSession]:
        active = self.start(session_id)
        try:
            yield active
        finally:
            active.end()

    def _release(self, session: DebugSession) -> None:
        with self._lock:
            if self._active is session:
                self._active = None


def render_session_summary(record: DebugSessionRecord) -> str:
    summary = record.summary
    lines = [
        f"Debug session {record.session_id}",
        f"Processing time: {summary.processing_time_ms}ms",
        f"Total steps: {summary.total_steps}",
        f"Fallbacks applied: {summary.fallbacks_applied}",
        f"Validation errors: {summary.validation_errors}",
    ]
    if summary.dropped_entries:
        lines.append(f"Dropped entries: {summary.dropped_entries}")
    if summary.steps_by_type:
        lines.append("Steps by type:")
        for step_type, count in summary.steps_by_type.items():
            lines.append(f"  {step_type}: {count}")
    warnings = [entry for entry in record.log_entries if entry.level >= DebugLevel.WARN]
    if warnings:
        lines.append("Warnings:")
        for entry in warnings:
            lines.append(f"  [{entry.level.name}] {entry.category}: {entry.message}")
    return "\n".join(lines)
