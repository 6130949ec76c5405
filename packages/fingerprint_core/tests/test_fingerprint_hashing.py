from __future__ import annotations

import json
import re
from typing import Any

import pytest
from fingerprint_core import (
    DebugRecorder,
    DebugSessionError,
    FingerprintHasher,
    HashMode,
    InjectionPatternGate,
    StrictModeViolationError,
    generate_fingerprint,
)

_HEX_DIGEST_RE = re.compile(r"^[0-9a-f]{64}$")


def _baseline_bag() -> dict[str, Any]:
    return {
        "userAgent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/90.0.4430.93 Safari/537.36"
        ),
        "platform": "Win32",
        "languages": ["en-US", "en"],
        "screenResolution": [1920, 1080],
        "colorDepth": 24,
        "colorGamut": "srgb",
        "os": {"os": "Windows", "version": "10"},
        "audio": 124.04347527516074,
        "webGL": {
            "vendor": "Google Inc. (NVIDIA)",
            "renderer": "NVIDIA GeForce GTX 1660 SUPER (driver 27.21.14.5671)",
            "imageHash": "a1b2c3d4",
        },
        "canvas": {"winding": True, "geometry": "canvas-geometry-hash", "text": "canvas-text"},
        "plugins": [
            {
                "name": "PDF Viewer",
                "mimeTypes": [{"type": "application/pdf"}, {"type": "text/pdf"}],
            },
            {"name": "Native Client", "mimeTypes": [{"type": "application/x-nacl"}]},
        ],
        "timezone": "America/New_York",
        "mathConstants": {"acos": 1.2345, "asin": 0.5236},
        "fontPreferences": {"detectedFonts": ["Arial", "Courier New", "Times New Roman"]},
        "confidenceScore": 0.9,
    }


def _reordered_bag() -> dict[str, Any]:
    bag = _baseline_bag()
    reordered = {key: bag[key] for key in reversed(list(bag))}
    reordered["fontPreferences"] = {"detectedFonts": ["Times New Roman", "Arial", "Courier New"]}
    reordered["plugins"] = [
        {"mimeTypes": [{"type": "application/x-nacl"}], "name": "Native Client"},
        {
            "name": "PDF Viewer",
            "mimeTypes": [{"type": "text/pdf"}, {"type": "application/pdf"}],
        },
    ]
    reordered["mathConstants"] = {"asin": 0.5236, "acos": 1.2345}
    return reordered


def test_digest_is_lowercase_sha256_hex_and_deterministic() -> None:
    hasher = FingerprintHasher()
    first = hasher.generate(_baseline_bag())
    second = hasher.generate(_baseline_bag())

    assert _HEX_DIGEST_RE.match(first)
    assert first == second
    assert generate_fingerprint(_baseline_bag()) == first


def test_digest_ignores_key_and_array_order() -> None:
    assert generate_fingerprint(_reordered_bag()) == generate_fingerprint(_baseline_bag())


def test_digest_absorbs_sub_precision_noise() -> None:
    noisy = _baseline_bag()
    noisy["mathConstants"]["acos"] = 1.23451
    noisy["audio"] = 124.0434

    assert generate_fingerprint(noisy) == generate_fingerprint(_baseline_bag())


def test_digest_changes_at_precision_boundary() -> None:
    shifted = _baseline_bag()
    shifted["mathConstants"]["acos"] = 1.2365

    assert generate_fingerprint(shifted) != generate_fingerprint(_baseline_bag())


def test_irrelevant_fields_do_not_change_digest() -> None:
    bag = _baseline_bag()
    bag["timezone"] = "Asia/Tokyo"
    bag["languages"] = ["ja-JP"]
    bag["confidenceScore"] = 0.2

    assert generate_fingerprint(bag) == generate_fingerprint(_baseline_bag())


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("userAgent", "Mozilla/5.0 (Macintosh) Safari/605.1.15"),
        ("platform", "MacIntel"),
        ("screenResolution", [2560, 1440]),
    ],
)
def test_identity_fields_change_digest(field: str, value: Any) -> None:
    bag = _baseline_bag()
    bag[field] = value

    assert generate_fingerprint(bag) != generate_fingerprint(_baseline_bag())


def test_gpu_driver_updates_keep_digest_but_model_changes_do_not() -> None:
    updated = _baseline_bag()
    updated["webGL"]["renderer"] = "NVIDIA GeForce GTX 1660 SUPER (driver 31.0.15.3623)"
    swapped = _baseline_bag()
    swapped["webGL"]["renderer"] = "NVIDIA GeForce RTX 3070 (driver 27.21.14.5671)"

    assert generate_fingerprint(updated) == generate_fingerprint(_baseline_bag())
    assert generate_fingerprint(swapped) != generate_fingerprint(_baseline_bag())


def test_fallbacks_hash_deterministically() -> None:
    missing = _baseline_bag()
    del missing["webGL"]
    erroring = _baseline_bag()
    erroring["webGL"] = {"error": "WebGL context lost"}

    assert generate_fingerprint(missing) == generate_fingerprint(missing)
    assert generate_fingerprint(missing) == generate_fingerprint(erroring)
    assert generate_fingerprint(missing) != generate_fingerprint(_baseline_bag())


def test_canonical_equality_matches_digest_equality() -> None:
    hasher = FingerprintHasher()
    variants = [_baseline_bag(), _reordered_bag()]
    changed = _baseline_bag()
    changed["platform"] = "Linux x86_64"
    variants.append(changed)

    prepared = [hasher.prepare(bag) for bag in variants]
    for left in prepared:
        for right in prepared:
            assert (left.canonical == right.canonical) == (left.digest == right.digest)


def test_generate_with_debug_matches_plain_digest() -> None:
    hasher = FingerprintHasher()
    bag = _baseline_bag()
    del bag["canvas"]

    result = hasher.generate_with_debug(bag)

    assert result.digest == hasher.generate(bag)
    assert json.loads(result.debug_info.serialized)["canvas_geometry"] == "canvas_geo_unavailable"
    assert list(result.debug_info.fallbacks) == ["canvas"]
    assert result.debug_info.session is not None
    assert result.debug_info.session.ended_at is not None
    assert result.debug_info.session.summary.fallbacks_applied == 1
    assert result.debug_info.serialization_stats.total_properties > 0
    assert result.model_dump(mode="json")["digest"] == result.digest


def test_generate_with_debug_refuses_busy_recorder() -> None:
    recorder = DebugRecorder()
    recorder.start()

    with pytest.raises(DebugSessionError):
        FingerprintHasher().generate_with_debug(_baseline_bag(), recorder=recorder)


def test_strict_mode_refuses_injected_values() -> None:
    bag = _baseline_bag()
    bag["userAgent"] = "<script>alert(1)</script>"
    hasher = FingerprintHasher(mode=HashMode.STRICT, security_gate=InjectionPatternGate())

    with pytest.raises(StrictModeViolationError, match="userAgent") as excinfo:
        hasher.generate(bag)
    assert excinfo.value.field == "userAgent"
    assert excinfo.value.code == "FP_STRICT_VIOLATION"


def test_strict_mode_ends_debug_session_on_violation() -> None:
    bag = _baseline_bag()
    bag["platform"] = "javascript:alert(1)"
    recorder = DebugRecorder()
    hasher = FingerprintHasher(mode=HashMode.STRICT, security_gate=InjectionPatternGate())

    with pytest.raises(StrictModeViolationError):
        hasher.generate_with_debug(bag, recorder=recorder)
    assert recorder.active_session is None


def test_lax_mode_records_violations_and_hashes() -> None:
    bag = _baseline_bag()
    bag["userAgent"] = "<script>alert(1)</script>"
    hasher = FingerprintHasher(mode=HashMode.LAX, security_gate=InjectionPatternGate())

    result = hasher.generate_with_debug(bag)

    assert _HEX_DIGEST_RE.match(result.digest)
    assert [violation.field for violation in result.debug_info.security_violations] == [
        "userAgent"
    ]
    assert result.debug_info.session.summary.validation_errors == 1


def test_clean_bag_passes_strict_gate() -> None:
    hasher = FingerprintHasher(mode=HashMode.STRICT, security_gate=InjectionPatternGate())
    assert hasher.generate(_baseline_bag()) == generate_fingerprint(_baseline_bag())


def test_cookie_flags_do_not_change_digest() -> None:
    bag = _baseline_bag()
    bag["cookiesEnabled"] = False
    bag["doNotTrack"] = "1"

    assert generate_fingerprint(bag) == generate_fingerprint(_baseline_bag())


def test_browser_version_bump_changes_digest() -> None:
    bag = _baseline_bag()
    bag["userAgent"] = bag["userAgent"].replace("Chrome/90.0.4430.93", "Chrome/91.0.4472.77")

    assert generate_fingerprint(bag) != generate_fingerprint(_baseline_bag())


def test_canvas_geometry_change_changes_digest() -> None:
    bag = _baseline_bag()
    bag["canvas"]["geometry"] = "other-geometry-hash"

    assert generate_fingerprint(bag) != generate_fingerprint(_baseline_bag())


def test_privacy_shield_plugin_does_not_change_digest() -> None:
    bag = _baseline_bag()
    bag["plugins"].append(
        {"name": "Brave PDF Shield", "mimeTypes": [{"type": "application/x-brave"}]}
    )

    assert generate_fingerprint(bag) == generate_fingerprint(_baseline_bag())


@pytest.mark.parametrize(("value", "same"), [(1.2345000001, True), (1.238, False)])
def test_math_constant_rounding_boundary(value: float, same: bool) -> None:
    bag = _baseline_bag()
    bag["mathConstants"]["acos"] = value

    assert (generate_fingerprint(bag) == generate_fingerprint(_baseline_bag())) is same
