from __future__ import annotations

import re
from typing import Any, Iterator, Mapping, Protocol, Sequence

from .models import SecurityViolation

_INJECTION_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("SCRIPT_TAG", re.compile(r"<\s*/?\s*script\b", re.IGNORECASE)),
    ("JAVASCRIPT_URL", re.compile(r"javascript\s*:", re.IGNORECASE)),
    ("EVENT_HANDLER", re.compile(r"\bon[a-z]+\s*=", re.IGNORECASE)),
    ("MARKUP_IFRAME", re.compile(r"<\s*iframe\b", re.IGNORECASE)),
)
_CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
DEFAULT_MAX_STRING_LENGTH = 4096


class SecurityGate(Protocol):
    def inspect(self, bag: Mapping[str, Any]) -> Sequence[SecurityViolation]: ...


def _iter_strings(value: Any, path: str) -> Iterator[tuple[str, str]]:
    if isinstance(value, str):
        yield path, value
    elif isinstance(value, Mapping):
        for key in sorted(value, key=str):
            child = f"{path}.{key}" if path else str(key)
            yield from _iter_strings(value[key], child)
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            yield from _iter_strings(item, f"{path}[{index}]")


class InjectionPatternGate:
    """Flags script or markup injection (critical) and oversized or control-laden strings."""

    def __init__(self, *, max_string_length: int = DEFAULT_MAX_STRING_LENGTH) -> None:
        self.max_string_length = max_string_length

    def inspect(self, bag: Mapping[str, Any]) -> list[SecurityViolation]:
        violations: list[SecurityViolation] = []
        for path, text in _iter_strings(bag, ""):
            for code, pattern in _INJECTION_PATTERNS:
                if pattern.search(text):
                    violations.append(
                        SecurityViolation(
                            field=path,
                            code=code,
                            severity="critical",
                            message=f"value matches {code.lower()} pattern",
                        )
                    )
                    break
            if len(text) > self.max_string_length:
                violations.append(
                    SecurityViolation(
                        field=path,
                        code="OVERSIZED_VALUE",
                        severity="warning",
                        message=f"value exceeds {self.max_string_length} characters",
                    )
                )
            if _CONTROL_CHAR_RE.search(text):
                violations.append(
                    SecurityViolation(
                        field=path,
                        code="CONTROL_CHARACTERS",
                        severity="warning",
                        message="value contains control characters",
                    )
                )
        return violations
