from __future__ import annotations

import math
import re
import unicodedata
from decimal import ROUND_HALF_UP, Context, Decimal
from typing import Any

from .config import DEFAULT_NUMERIC_PRECISION

MAX_NUMBER_DIGITS = 4300
_ZERO_WIDTH_RE = re.compile(r"[\u200b-\u200d\ufeff]")
_PAREN_GROUP_RE = re.compile(r"\(([^()]*)\)")
_GPU_METADATA_TOKEN_RE = re.compile(
    r"0x[0-9a-f]+|v?\d+(?:\.\d+)+|\b\d+\b|\b(?:driver|build|version|ver|rev|revision)\b",
    re.IGNORECASE,
)
_GPU_METADATA_FILLER_RE = re.compile(r"[\s,;:/_\-.#]+")
_GPU_STANDALONE_TOKEN_RE = re.compile(
    r"\b0x[0-9a-f]+\b|\bv?\d+(?:\.\d+)+\b",
    re.IGNORECASE,
)
_GPU_DANGLING_CLOSE_RE = re.compile(r"\s+([,)])")
_GPU_DANGLING_OPEN_RE = re.compile(r"\(\s+")


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _exact(value: int | float | Decimal) -> Decimal:
    return Decimal(repr(value)) if isinstance(value, float) else Decimal(value)


def is_bounded_number(value: Any) -> bool:
    """Numbers whose integer part fits in MAX_NUMBER_DIGITS digits; floats always do."""
    if not is_number(value):
        return False
    if isinstance(value, float):
        return True
    exact = Decimal(value)
    return not exact.is_finite() or exact.adjusted() < MAX_NUMBER_DIGITS


def safe_text(value: Any) -> str:
    """str() that survives integers past the interpreter's digit limit."""
    if is_number(value) and not is_bounded_number(value):
        return f"{_exact(value):E}"
    try:
        return str(value)
    except ValueError:
        return f"<unprintable {type(value).__name__}>"


def _non_finite_text(value: float | Decimal) -> str | None:
    if isinstance(value, Decimal):
        if value.is_nan():
            return "NaN"
        if value.is_infinite():
            return "-Infinity" if value.is_signed() else "Infinity"
        return None
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    return None


def round_number(
    value: int | float | Decimal,
    precision: int = DEFAULT_NUMERIC_PRECISION,
) -> str:
    """
    Fixed-precision text for a number, rounding half away from zero.
    Negative zero collapses to positive zero; non-finite values keep a named form.
    Raises ValueError past MAX_NUMBER_DIGITS integer digits.
    """
    if isinstance(value, (float, Decimal)):
        named = _non_finite_text(value)
        if named is not None:
            return named
    digits = max(0, min(precision, 10))
    exact = _exact(value)
    if exact.adjusted() >= MAX_NUMBER_DIGITS:
        raise ValueError(f"number has more than {MAX_NUMBER_DIGITS} integer digits")
    context = Context(prec=max(28, exact.adjusted() + digits + 2), rounding=ROUND_HALF_UP)
    rounded = exact.quantize(Decimal(1).scaleb(-digits), context=context)
    if rounded.is_zero():
        rounded = abs(rounded)
    return format(rounded, "f")


def normalize_string(value: Any) -> str:
    text = value if isinstance(value, str) else str(value)
    text = unicodedata.normalize("NFC", text)
    text = _ZERO_WIDTH_RE.sub("", text)
    return " ".join(text.split())


def _is_gpu_metadata(content: str) -> bool:
    residue = _GPU_METADATA_TOKEN_RE.sub(" ", content)
    return _GPU_METADATA_FILLER_RE.sub("", residue) == ""


def _strip_metadata_groups(text: str) -> str:
    # Innermost groups first so nested metadata collapses outward.
    while True:
        changed = False

        def _replace(match: re.Match[str]) -> str:
            nonlocal changed
            if _is_gpu_metadata(match.group(1)):
                changed = True
                return " "
            return match.group(0)

        updated = _PAREN_GROUP_RE.sub(_replace, text)
        if not changed:
            return updated
        text = updated


def normalize_gpu_string(value: Any) -> str:
    """Drop driver/build metadata from a GPU vendor or renderer string."""
    text = normalize_string(value)
    text = _strip_metadata_groups(text)
    text = _GPU_STANDALONE_TOKEN_RE.sub(" ", text)
    text = _GPU_DANGLING_OPEN_RE.sub("(", text)
    text = _GPU_DANGLING_CLOSE_RE.sub(r"\1", text)
    return normalize_string(text)


def normalize_font_list(fonts: Any) -> list[str]:
    if isinstance(fonts, str) or not isinstance(fonts, (list, tuple, set, frozenset)):
        return []
    names = {normalize_string(font) for font in fonts if isinstance(font, str)}
    return sorted(name for name in names if name)
