from __future__ import annotations

import logging
import math
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from itertools import combinations
from typing import Any, Sequence

from fingerprint_core import STABILITY_INSUFFICIENT_INPUTS_CODE, FingerprintConfigError
from fingerprint_core.canonical import as_mapping

from .comparison import Comparator
from .models import (
    SEVERITY_RANK,
    CommonDifference,
    ComparisonResult,
    Difference,
    DifferenceSeverity,
    DifferenceType,
    StabilityMetrics,
    StabilityReport,
)

logger = logging.getLogger(__name__)

DEFAULT_TOP_N = 10
_HIGH_VARIATION_RATE = 0.5
_LOW_CONSISTENCY = 0.8
_LOW_ROBUSTNESS = 0.7
_MINOR_SEVERITIES = frozenset({DifferenceSeverity.LOW, DifferenceSeverity.NEGLIGIBLE})


@dataclass(frozen=True)
class PairwiseAnalysis:
    report: StabilityReport
    comparisons: list[ComparisonResult] = field(default_factory=list)
    differences: list[Difference] = field(default_factory=list)


def compute_stability_metrics(
    input_hashes: Sequence[str],
    differences: Sequence[Difference],
) -> StabilityMetrics:
    total = len(input_hashes)
    counts = Counter(input_hashes)
    consistency = 1.0 - (len(counts) - 1) / (total - 1) if total > 1 else 1.0

    entropy = 0.0
    for count in counts.values():
        probability = count / total
        entropy -= probability * math.log2(probability)
    max_entropy = math.log2(total) if total > 1 else 0.0
    normalized_entropy = entropy / max_entropy if max_entropy > 0 else 0.0

    minor = sum(1 for item in differences if item.severity in _MINOR_SEVERITIES)
    robustness = 1.0 - minor / len(differences) if differences else 1.0

    return StabilityMetrics(
        consistency=consistency,
        entropy=normalized_entropy,
        predictability=consistency,
        robustness=robustness,
    )


def summarize_differences(differences: Sequence[Difference]) -> list[CommonDifference]:
    counts: Counter[tuple[str, DifferenceType]] = Counter()
    affecting: Counter[tuple[str, DifferenceType]] = Counter()
    severities: dict[tuple[str, DifferenceType], DifferenceSeverity] = {}
    for item in differences:
        key = (item.property_path, item.type)
        counts[key] += 1
        if item.affects_hash:
            affecting[key] += 1
        current = severities.get(key)
        if current is None or SEVERITY_RANK[item.severity] < SEVERITY_RANK[current]:
            severities[key] = item.severity

    ordered = sorted(counts.items(), key=lambda entry: (-entry[1], entry[0][0], entry[0][1].value))
    return [
        CommonDifference(
            property_path=property_path,
            type=difference_type,
            severity=severities[(property_path, difference_type)],
            count=count,
            hash_affecting_count=affecting[(property_path, difference_type)],
        )
        for (property_path, difference_type), count in ordered
    ]


def _recommendations(
    variation_rate: float,
    common: Sequence[CommonDifference],
    metrics: StabilityMetrics,
) -> list[str]:
    recommendations: list[str] = []
    if variation_rate > _HIGH_VARIATION_RATE:
        recommendations.append("High variation rate detected - review input consistency")
    if metrics.consistency < _LOW_CONSISTENCY:
        recommendations.append("Low consistency - investigate common difference patterns")
    if common:
        top = common[0]
        recommendations.append(f"Most common difference: {top.property_path} ({top.type.value})")
    if metrics.robustness < _LOW_ROBUSTNESS:
        recommendations.append("Low robustness - minor input changes significantly affect hashes")
    return recommendations


class StabilityAnalyzer:
    """Hashes every input, compares all pairs, and scores how stable the hash is."""

    def __init__(
        self,
        *,
        comparator: Comparator | None = None,
        top_n: int = DEFAULT_TOP_N,
        max_workers: int | None = None,
    ) -> None:
        if top_n < 1:
            raise FingerprintConfigError("top_n must be >= 1", context={"top_n": top_n})
        if max_workers is not None and max_workers < 1:
            raise FingerprintConfigError(
                "max_workers must be >= 1",
                context={"max_workers": max_workers},
            )
        self.comparator = comparator or Comparator()
        self.top_n = top_n
        self.max_workers = max_workers

    def analyze_variations(self, bags: Sequence[Any]) -> StabilityReport:
        return self.analyze_pairs(bags).report

    def analyze_pairs(self, bags: Sequence[Any]) -> PairwiseAnalysis:
        if len(bags) < 2:
            raise FingerprintConfigError(
                "stability analysis needs at least 2 inputs",
                code=STABILITY_INSUFFICIENT_INPUTS_CODE,
                context={"input_count": len(bags)},
            )

        sources = [as_mapping(bag) for bag in bags]
        prepared = [self.comparator.prepare(source) for source in sources]
        input_hashes = [item.digest for item in prepared]
        pairs = list(combinations(range(len(sources)), 2))

        def compare_pair(pair: tuple[int, int]) -> ComparisonResult:
            left, right = pair
            return self.comparator.compare(
                sources[left],
                sources[right],
                prepared_a=prepared[left],
                prepared_b=prepared[right],
            )

        if self.max_workers is not None and self.max_workers > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                comparisons = list(executor.map(compare_pair, pairs))
        else:
            comparisons = [compare_pair(pair) for pair in pairs]

        differences = [item for comparison in comparisons for item in comparison.differences]
        unique_hashes = len(set(input_hashes))
        total = len(input_hashes)
        variation_rate = (unique_hashes - 1) / (total - 1)
        metrics = compute_stability_metrics(input_hashes, differences)
        common = summarize_differences(differences)[: self.top_n]

        report = StabilityReport(
            input_count=total,
            input_hashes=input_hashes,
            unique_hashes=unique_hashes,
            variation_rate=variation_rate,
            unique_hash_ratio=unique_hashes / total,
            pair_count=len(pairs),
            common_differences=common,
            stability_metrics=metrics,
            recommendations=_recommendations(variation_rate, common, metrics),
        )
        logger.info(
            "analyzed %d inputs: %d unique hashes across %d pairs",
            total,
            unique_hashes,
            len(pairs),
        )
        return PairwiseAnalysis(report=report, comparisons=comparisons, differences=differences)
