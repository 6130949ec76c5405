from __future__ import annotations

from fingerprint_core import (
    Canonicalizer,
    DebugRecorder,
    FallbackResolver,
    FingerprintHasher,
    FingerprintSettings,
    InjectionPatternGate,
    Serializer,
)

from .comparison import Comparator
from .stability import StabilityAnalyzer
from .troubleshoot import Troubleshooter


def build_hasher(settings: FingerprintSettings) -> FingerprintHasher:
    resolver = FallbackResolver(retry=settings.retry)
    return FingerprintHasher(
        canonicalizer=Canonicalizer(resolver=resolver, config=settings.canonicalizer),
        serializer=Serializer(),
        mode=settings.hash_mode,
        security_gate=InjectionPatternGate(),
    )


def build_recorder(settings: FingerprintSettings) -> DebugRecorder:
    return DebugRecorder(settings.debug)


def build_comparator(
    settings: FingerprintSettings,
    *,
    hasher: FingerprintHasher | None = None,
) -> Comparator:
    return Comparator(hasher=hasher or build_hasher(settings), config=settings.comparison)


def build_analyzer(
    settings: FingerprintSettings,
    *,
    max_workers: int | None = None,
) -> StabilityAnalyzer:
    return StabilityAnalyzer(comparator=build_comparator(settings), max_workers=max_workers)


def build_troubleshooter(
    settings: FingerprintSettings,
    *,
    max_workers: int | None = None,
) -> Troubleshooter:
    analyzer = build_analyzer(settings, max_workers=max_workers)
    return Troubleshooter(comparator=analyzer.comparator, analyzer=analyzer)
