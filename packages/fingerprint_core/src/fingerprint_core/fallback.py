from __future__ import annotations

import copy
import json
import logging
import re
import threading
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, TypeVar

from .config import DEFAULT_HISTORY_LIMIT, RetryPolicy
from .models import (
    ErrorCategory,
    ErrorRecord,
    Fallback,
    FallbackReason,
    FallbackRecord,
    FieldOutcome,
    Ok,
)
from .normalization import safe_text

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SENTINELS: dict[str, Any] = {
    "userAgent": "ua_unavailable",
    "platform": "platform_unavailable",
    "languages": ["lang_unavailable"],
    "cookiesEnabled": False,
    "doNotTrack": "dnt_unavailable",
    "screenResolution": [0, 0],
    "colorDepth": 0,
    "colorGamut": "gamut_unavailable",
    "hardwareConcurrency": 0,
    "deviceMemory": 0,
    "os": {"os": "os_unavailable", "version": "version_unavailable"},
    "audio": "audio_fp_unavailable",
    "localStorage": False,
    "sessionStorage": False,
    "indexedDB": False,
    "webGL": {
        "vendor": "webgl_vendor_unavailable",
        "renderer": "webgl_renderer_unavailable",
        "imageHash": "webgl_hash_unavailable",
    },
    "canvas": {
        "winding": False,
        "geometry": "canvas_geo_unavailable",
        "text": "canvas_text_unavailable",
    },
    "plugins": [],
    "timezone": "timezone_unavailable",
    "touchSupport": {"maxTouchPoints": 0, "touchEvent": False, "touchStart": False},
    "vendor": "vendor_unavailable",
    "vendorFlavors": ["vendor_flavor_unavailable"],
    "mathConstants": "math_constants_unavailable",
    "fontPreferences": {"detectedFonts": []},
    "incognito": {"isPrivate": False, "browserName": "incognito_unavailable"},
    "bot": {"isBot": False, "signals": ["bot_signals_unavailable"], "confidence": 0},
    "confidenceScore": 0.1,
}

_SECURITY_RE = re.compile(
    r"permission|security|blocked|cors|cross-origin|unauthorized",
    re.IGNORECASE,
)
_MALFORMED_RE = re.compile(r"invalid|malformed|parse|syntax|format|corrupt", re.IGNORECASE)
_TEMPORARY_RE = re.compile(
    r"timeout|network|connection|temporary|unavailable|busy|retry|throttle",
    re.IGNORECASE,
)
_PERMANENT_RE = re.compile(
    r"not supported|not implemented|not available|disabled|missing|undefined",
    re.IGNORECASE,
)
_CATEGORY_PATTERNS: tuple[tuple[ErrorCategory, re.Pattern[str]], ...] = (
    (ErrorCategory.SECURITY, _SECURITY_RE),
    (ErrorCategory.MALFORMED, _MALFORMED_RE),
    (ErrorCategory.TEMPORARY, _TEMPORARY_RE),
    (ErrorCategory.PERMANENT, _PERMANENT_RE),
)
_TEMPORARY_PRONE_FIELDS = frozenset({"webGL", "canvas", "audio", "fontPreferences"})


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseException):
        return f"{type(value).__name__}: {value}"
    try:
        return json.loads(json.dumps(value, default=str))
    except (TypeError, ValueError):
        return safe_text(value)


def _top_level_field(field: str) -> str:
    return field.split(".", 1)[0]


def reason_for_category(category: ErrorCategory) -> FallbackReason:
    if category == ErrorCategory.TEMPORARY:
        return FallbackReason.TEMPORARY_FAILURE
    if category == ErrorCategory.MALFORMED:
        return FallbackReason.MALFORMED_DATA
    return FallbackReason.PERMANENT_FAILURE


class FallbackResolver:
    """
    Supplies deterministic substitutes for unusable fields and wraps flaky
    collectors in bounded exponential-backoff retries.
    """

    def __init__(
        self,
        *,
        sentinels: Mapping[str, Any] | None = None,
        retry: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = _utc_now,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self._sentinels: dict[str, Any] = copy.deepcopy(DEFAULT_SENTINELS)
        if sentinels:
            self._sentinels.update(copy.deepcopy(dict(sentinels)))
        self.retry = retry or RetryPolicy()
        self._sleep = sleep
        self._clock = clock
        self._history_limit = history_limit
        self._lock = threading.Lock()
        self._fallback_history: dict[str, deque[FallbackRecord]] = {}
        self._error_history: dict[str, deque[ErrorRecord]] = {}

    def sentinel(self, field: str) -> Any:
        node: Any = self._sentinels
        for part in field.split("."):
            if not isinstance(node, Mapping) or part not in node:
                leaf = field.rsplit(".", 1)[-1]
                return f"{leaf}_unavailable"
            node = node[part]
        return copy.deepcopy(node)

    def substitute(self, field: str, reason: FallbackReason, original: Any = None) -> Fallback:
        value = self.sentinel(field)
        record = FallbackRecord(
            property=field,
            reason=reason,
            original_value=_jsonable(original),
            fallback_value=_jsonable(value),
            timestamp=self._clock(),
        )
        self._append(self._fallback_history, field, record)
        return Fallback(value=value, reason=reason, record=record)

    def categorize_error(self, err: BaseException | str, field: str) -> ErrorCategory:
        if isinstance(err, BaseException):
            message = str(err)
            name = type(err).__name__
        else:
            message = str(err)
            name = ""
        for category, pattern in _CATEGORY_PATTERNS:
            if pattern.search(message) or pattern.search(name):
                return category
        if _top_level_field(field) in _TEMPORARY_PRONE_FIELDS:
            return ErrorCategory.TEMPORARY
        return ErrorCategory.UNKNOWN

    def is_temporary_failure(self, err: BaseException | str, field: str) -> bool:
        return self.categorize_error(err, field) == ErrorCategory.TEMPORARY

    def should_retry(self, err: BaseException, field: str, attempt: int) -> bool:
        category = self.categorize_error(err, field)
        self._track_error(err, field, category)
        if attempt >= self.retry.max_attempts:
            return False
        return category in self.retry.retryable

    def retry_delay_ms(self, attempt: int) -> float:
        delay = self.retry.base_delay_ms * self.retry.backoff_multiplier ** max(attempt - 1, 0)
        return min(delay, self.retry.max_delay_ms)

    def execute_with_retry(self, fn: Callable[[], T], field: str) -> FieldOutcome:
        last_error: Exception | None = None
        for attempt in range(1, self.retry.max_attempts + 1):
            try:
                value = fn()
            except Exception as exc:  # collector failures are absorbed into a fallback
                last_error = exc
                if not self.should_retry(exc, field, attempt):
                    break
                delay_ms = self.retry_delay_ms(attempt)
                logger.debug(
                    "retrying %s after %sms (attempt %d/%d)",
                    field,
                    delay_ms,
                    attempt,
                    self.retry.max_attempts,
                )
                self._sleep(delay_ms / 1000.0)
                continue
            if attempt > 1:
                logger.debug("%s recovered after %d attempts", field, attempt)
            return Ok(value)

        assert last_error is not None
        category = self.categorize_error(last_error, field)
        reason = (
            FallbackReason.TEMPORARY_FAILURE
            if category == ErrorCategory.TEMPORARY
            else FallbackReason.PERMANENT_FAILURE
        )
        logger.warning(
            "all retry attempts failed for %s, using fallback: %s",
            field,
            last_error,
        )
        return self.substitute(field, reason, last_error)

    def collect(
        self, probes: Mapping[str, Callable[[], Any]]
    ) -> tuple[dict[str, Any], dict[str, FieldOutcome]]:
        bag: dict[str, Any] = {}
        outcomes: dict[str, FieldOutcome] = {}
        for field in sorted(probes):
            outcome = self.execute_with_retry(probes[field], field)
            outcomes[field] = outcome
            bag[field] = outcome.value
        return bag, outcomes

    def fallback_history(self, field: str) -> list[FallbackRecord]:
        with self._lock:
            return list(self._fallback_history.get(field, ()))

    def error_history(self, field: str) -> list[ErrorRecord]:
        with self._lock:
            return list(self._error_history.get(field, ()))

    def fields_with_fallbacks(self) -> list[str]:
        with self._lock:
            return sorted(self._fallback_history)

    def error_statistics(self) -> dict[str, dict[str, int]]:
        with self._lock:
            snapshot = {field: list(records) for field, records in self._error_history.items()}
        stats: dict[str, dict[str, int]] = {}
        for field in sorted(snapshot):
            counts = {category.value: 0 for category in ErrorCategory}
            for record in snapshot[field]:
                counts[record.category.value] += 1
            stats[field] = counts
        return stats

    def clear_history(self) -> None:
        with self._lock:
            self._fallback_history.clear()
            self._error_history.clear()

    def validate_fallback_consistency(self, field: str, expected: Any) -> bool:
        generated = self.sentinel(field)
        return json.dumps(generated, sort_keys=True, default=str) == json.dumps(
            expected, sort_keys=True, default=str
        )

    def _track_error(self, err: BaseException, field: str, category: ErrorCategory) -> None:
        record = ErrorRecord(
            property=field,
            category=category,
            error_type=type(err).__name__,
            message=str(err),
            timestamp=self._clock(),
        )
        self._append(self._error_history, field, record)

    def _append(self, store: dict[str, deque[Any]], field: str, record: Any) -> None:
        with self._lock:
            history = store.get(field)
            if history is None:
                history = deque(maxlen=self._history_limit)
                store[field] = history
            history.append(record)
