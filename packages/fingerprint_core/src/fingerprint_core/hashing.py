from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Mapping

from .canonical import Canonicalizer, CanonicalResult, as_mapping
from .debug import DebugRecorder, DebugSession
from .errors import StrictModeViolationError
from .gates import SecurityGate
from .mode import HashMode
from .models import (
    CanonicalForm,
    DebugLevel,
    FallbackRecord,
    HashDebugInfo,
    HashResult,
    SecurityViolation,
)
from .serialization import Serializer

logger = logging.getLogger(__name__)


def sha256_text(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class PreparedFingerprint:
    canonical: CanonicalForm
    serialized: str
    digest: str
    fallbacks: dict[str, list[FallbackRecord]] = field(default_factory=dict)
    violations: list[SecurityViolation] = field(default_factory=list)


class FingerprintHasher:
    """
    Canonicalize -> deep sort -> encode -> SHA-256.
    Strict mode refuses to hash when the security gate reports a critical violation.
    """

    def __init__(
        self,
        *,
        canonicalizer: Canonicalizer | None = None,
        serializer: Serializer | None = None,
        mode: HashMode = HashMode.LAX,
        security_gate: SecurityGate | None = None,
    ) -> None:
        self.canonicalizer = canonicalizer or Canonicalizer()
        self.serializer = serializer or Serializer()
        self.mode = mode
        self.security_gate = security_gate

    def canonicalize(self, bag: Any, *, session: DebugSession | None = None) -> CanonicalResult:
        return self.canonicalizer.canonicalize(bag, session=session)

    def generate(self, bag: Any) -> str:
        return self.prepare(bag).digest

    def prepare(self, bag: Any, *, session: DebugSession | None = None) -> PreparedFingerprint:
        source = as_mapping(bag)
        violations = self._screen(source, session)
        result = self.canonicalize(source, session=session)
        serialized = self.serializer.serialize(result.form.payload())
        return PreparedFingerprint(
            canonical=result.form,
            serialized=serialized,
            digest=sha256_text(serialized),
            fallbacks=result.fallbacks,
            violations=violations,
        )

    def generate_with_debug(
        self,
        bag: Any,
        *,
        recorder: DebugRecorder | None = None,
    ) -> HashResult:
        started = time.perf_counter()
        active_recorder = recorder or DebugRecorder()
        with active_recorder.session() as session:
            session.log(DebugLevel.INFO, "hash", "fingerprint generation started")
            source = as_mapping(bag)
            violations = self._screen(source, session)
            result = self.canonicalize(source, session=session)
            details = self.serializer.serialize_with_details(
                result.form.payload(),
                session=session,
            )
            digest = sha256_text(details.serialized)
            session.log(
                DebugLevel.INFO,
                "hash",
                "fingerprint generation completed",
                {"digest": digest},
            )
        return HashResult(
            digest=digest,
            debug_info=HashDebugInfo(
                processing_time_ms=round((time.perf_counter() - started) * 1000.0, 3),
                canonical_form=result.form,
                serialized=details.serialized,
                serialization_stats=details.stats,
                fallbacks=result.fallbacks,
                security_violations=violations,
                session=session.snapshot(),
            ),
        )

    def _screen(
        self,
        bag: Mapping[str, Any],
        session: DebugSession | None,
    ) -> list[SecurityViolation]:
        if self.security_gate is None:
            return []
        violations = sorted(
            self.security_gate.inspect(bag),
            key=lambda violation: (violation.field, violation.code),
        )
        if self.mode == HashMode.STRICT:
            for violation in violations:
                if violation.severity == "critical":
                    raise StrictModeViolationError(
                        field=violation.field,
                        violation_code=violation.code,
                        message=violation.message,
                    )
        for violation in violations:
            logger.warning(
                "security gate flagged %s (%s): %s",
                violation.field,
                violation.code,
                violation.message,
            )
            if session is not None:
                session.log_validation(
                    violation.field,
                    f"{violation.code}: {violation.message}",
                )
        return violations


def generate_fingerprint(bag: Any, *, mode: HashMode = HashMode.LAX) -> str:
    return FingerprintHasher(mode=mode).generate(bag)
