from __future__ import annotations

import copy
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from fingerprint_core import canonical_json, stable_id
from fingerprint_core.canonical import as_mapping

from .comparison import Comparator, plain_value
from .models import (
    SEVERITY_RANK,
    CaseSummary,
    ComparisonResult,
    DiagnosisReport,
    DifferenceSeverity,
    DifferenceType,
    ExpectedResults,
    FixRecommendation,
    InputVariation,
    InstabilityReport,
    PropertyInstability,
    RegressionCase,
    RootCause,
    StabilityTestCase,
    StabilityTestReport,
    StabilityTestResult,
    StabilityTestSuite,
    StabilityVariation,
    SuiteMetadata,
    SuiteSummary,
    VariationOutcome,
    VariationPattern,
)
from .stability import StabilityAnalyzer

logger = logging.getLogger(__name__)

MAX_REGRESSION_CASES = 10
MAX_INSTABILITY_FACTORS = 10
_HIGH_IMPACT_SCORE = 15
_RATE_EPSILON = 1e-9

_IMPACT_WEIGHTS: dict[DifferenceSeverity, int] = {
    DifferenceSeverity.CRITICAL: 5,
    DifferenceSeverity.HIGH: 4,
    DifferenceSeverity.MEDIUM: 3,
    DifferenceSeverity.LOW: 2,
    DifferenceSeverity.NEGLIGIBLE: 1,
}

_FIXES: tuple[FixRecommendation, ...] = (
    FixRecommendation(
        priority="high",
        difference_type=DifferenceType.PRECISION_DIFFERENCE,
        title="Improve numeric precision handling",
        description="Implement consistent rounding for floating-point numbers",
        implementation="Use round_number() with consistent precision (3 decimal places)",
        estimated_impact="high",
    ),
    FixRecommendation(
        priority="medium",
        difference_type=DifferenceType.WHITESPACE_DIFFERENCE,
        title="Enhance string normalization",
        description="Improve whitespace normalization",
        implementation="Use normalize_string() consistently",
        estimated_impact="medium",
    ),
    FixRecommendation(
        priority="medium",
        difference_type=DifferenceType.ENCODING_DIFFERENCE,
        title="Normalize text encoding",
        description="Apply Unicode NFC and strip zero-width characters before hashing",
        implementation="Use normalize_string() consistently",
        estimated_impact="medium",
    ),
    FixRecommendation(
        priority="medium",
        difference_type=DifferenceType.ARRAY_ORDER,
        title="Implement deterministic array sorting",
        description="Ensure arrays are sorted consistently",
        implementation="Use deep_sort() for all array properties",
        estimated_impact="high",
    ),
    FixRecommendation(
        priority="high",
        difference_type=DifferenceType.TYPE_CHANGE,
        title="Validate input types",
        description="Reject or coerce values whose type differs from the collector contract",
        implementation="Route malformed values through the fallback resolver",
        estimated_impact="high",
    ),
)


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _diagnosis_summary(comparison: ComparisonResult) -> str:
    if comparison.hashes_match:
        return "Hashes match despite input differences. Normalization is working correctly."
    critical = [
        item for item in comparison.differences if item.severity == DifferenceSeverity.CRITICAL
    ]
    if critical:
        return (
            f"Hashes differ due to {len(critical)} critical difference(s) "
            "in core fingerprint properties."
        )
    affecting = [item for item in comparison.differences if item.affects_hash]
    return f"Hashes differ due to {len(affecting)} difference(s) that survived normalization."


def _affected(paths: Sequence[str]) -> list[str]:
    return sorted(set(paths))


def _root_causes(comparison: ComparisonResult) -> list[RootCause]:
    differences = comparison.differences
    causes: list[RootCause] = []

    critical = [
        item.property_path
        for item in differences
        if item.severity == DifferenceSeverity.CRITICAL
    ]
    if critical:
        causes.append(
            RootCause(
                category="critical_properties",
                description="Critical fingerprint properties have different values",
                affected_properties=_affected(critical),
                severity="high",
                likelihood=0.9,
            )
        )

    gaps = [
        item.property_path
        for item in differences
        if item.affects_hash
        and item.severity
        in (DifferenceSeverity.MEDIUM, DifferenceSeverity.LOW, DifferenceSeverity.NEGLIGIBLE)
    ]
    if gaps:
        causes.append(
            RootCause(
                category="normalization_gap",
                description="Some differences were not normalized away as expected",
                affected_properties=_affected(gaps),
                severity="medium",
                likelihood=0.7,
            )
        )

    type_changes = [
        item.property_path for item in differences if item.type == DifferenceType.TYPE_CHANGE
    ]
    if type_changes:
        causes.append(
            RootCause(
                category="type_inconsistency",
                description="Data types are inconsistent between inputs",
                affected_properties=_affected(type_changes),
                severity="high",
                likelihood=0.6,
            )
        )
    return causes


def _fix_recommendations(comparison: ComparisonResult) -> list[FixRecommendation]:
    present = {item.type for item in comparison.differences}
    return [fix.model_copy() for fix in _FIXES if fix.difference_type in present]


def _instability_recommendations(factors: Sequence[PropertyInstability]) -> list[str]:
    if not factors:
        return ["No significant instability factors detected"]
    recommendations = [
        f"Focus on stabilizing '{factors[0].property_path}' - highest impact factor"
    ]
    high_impact = sum(1 for item in factors if item.impact_score >= _HIGH_IMPACT_SCORE)
    if high_impact > 3:
        recommendations.append(
            f"{high_impact} properties have high instability - consider systematic review"
        )
    critical = sum(item.severity_distribution.get("critical", 0) for item in factors)
    if critical:
        recommendations.append(
            f"{critical} critical variations detected - immediate attention required"
        )
    return recommendations


def _path_segments(property_path: str) -> list[str]:
    return [segment for segment in property_path.split(".") if segment]


def apply_modifications(baseline: Mapping[str, Any], variation: InputVariation) -> dict[str, Any]:
    """Deep-copies the baseline and applies each dotted-path edit in order."""
    variant = copy.deepcopy(dict(baseline))
    for modification in variation.modifications:
        segments = _path_segments(modification.property)
        if not segments:
            continue
        parent: Any = variant
        for segment in segments[:-1]:
            if isinstance(parent, list) and segment.isdigit() and int(segment) < len(parent):
                parent = parent[int(segment)]
                continue
            if not isinstance(parent, dict):
                break
            child = parent.get(segment)
            if not isinstance(child, (dict, list)):
                if modification.remove:
                    break
                child = {}
                parent[segment] = child
            parent = child
        else:
            _set_leaf(parent, segments[-1], modification.new_value, remove=modification.remove)
    return variant


def _set_leaf(parent: Any, key: str, value: Any, *, remove: bool) -> None:
    if isinstance(parent, list):
        if not key.isdigit() or int(key) >= len(parent):
            return
        if remove:
            del parent[int(key)]
        else:
            parent[int(key)] = copy.deepcopy(value)
        return
    if not isinstance(parent, dict):
        return
    if remove:
        parent.pop(key, None)
    else:
        parent[key] = copy.deepcopy(value)


class Troubleshooter:
    """Diagnoses hash differences and runs declarative stability suites."""

    def __init__(
        self,
        *,
        comparator: Comparator | None = None,
        analyzer: StabilityAnalyzer | None = None,
    ) -> None:
        if comparator is None:
            comparator = analyzer.comparator if analyzer is not None else Comparator()
        self.comparator = comparator
        self.analyzer = analyzer or StabilityAnalyzer(comparator=comparator)

    def diagnose(self, a: Any, b: Any) -> DiagnosisReport:
        comparison = self.comparator.compare(a, b)
        report = DiagnosisReport(
            summary=_diagnosis_summary(comparison),
            root_causes=_root_causes(comparison),
            fix_recommendations=_fix_recommendations(comparison),
            regression_cases=self._regression_cases(comparison, as_mapping(a), as_mapping(b)),
            comparison=comparison,
        )
        logger.info(
            "diagnosed %s: %d root causes",
            comparison.metadata.comparison_id,
            len(report.root_causes),
        )
        return report

    def _regression_cases(
        self,
        comparison: ComparisonResult,
        bag_a: Mapping[str, Any],
        bag_b: Mapping[str, Any],
    ) -> list[RegressionCase]:
        significant = sorted(
            (
                item
                for item in comparison.differences
                if item.severity != DifferenceSeverity.NEGLIGIBLE
            ),
            key=lambda item: (SEVERITY_RANK[item.severity], item.property_path, item.type.value),
        )

        cases: list[RegressionCase] = []
        seen: set[tuple[str, str, str]] = set()
        hasher = self.comparator.hasher
        for difference in significant:
            if len(cases) >= MAX_REGRESSION_CASES:
                break
            top = str(difference.path[0]) if difference.path else difference.property_path
            input_a = {top: plain_value(bag_a[top])} if top in bag_a else {}
            input_b = {top: plain_value(bag_b[top])} if top in bag_b else {}
            # Sibling differences inside one block isolate to the same pair.
            key = (top, canonical_json(input_a), canonical_json(input_b))
            if key in seen:
                continue
            seen.add(key)
            # The expectation is what the isolated pair actually hashes to.
            same = hasher.generate(input_a) == hasher.generate(input_b)
            cases.append(
                RegressionCase(
                    id=stable_id(
                        comparison.metadata.comparison_id,
                        difference.property_path,
                        difference.type.value,
                        prefix="regression",
                    ),
                    name=f"{difference.property_path} stability",
                    description=(
                        f"Verify that {difference.type.value} in "
                        f"{difference.property_path} is handled correctly"
                    ),
                    input_a=input_a,
                    input_b=input_b,
                    expected_result="same_hashes" if same else "different_hashes",
                )
            )
        return cases

    def identify_instability_factors(self, bags: Sequence[Any]) -> InstabilityReport:
        analysis = self.analyzer.analyze_pairs(bags)

        counts: dict[str, int] = defaultdict(int)
        severities: dict[str, dict[str, int]] = {}
        types: dict[str, set[DifferenceType]] = defaultdict(set)
        for difference in analysis.differences:
            path = difference.property_path
            counts[path] += 1
            distribution = severities.setdefault(
                path, {severity.value: 0 for severity in DifferenceSeverity}
            )
            distribution[difference.severity.value] += 1
            types[path].add(difference.type)

        factors = [
            PropertyInstability(
                property_path=path,
                variation_count=count,
                severity_distribution=severities[path],
                common_types=sorted(types[path], key=lambda item: item.value),
                impact_score=sum(
                    _IMPACT_WEIGHTS[DifferenceSeverity(severity)] * hits
                    for severity, hits in severities[path].items()
                ),
            )
            for path, count in counts.items()
        ]
        factors.sort(key=lambda item: (-item.impact_score, item.property_path))

        report = analysis.report
        return InstabilityReport(
            total_inputs=report.input_count,
            unique_hashes=report.unique_hashes,
            variation_rate=report.variation_rate,
            top_instability_factors=factors[:MAX_INSTABILITY_FACTORS],
            stability_metrics=report.stability_metrics,
            recommendations=_instability_recommendations(factors),
        )

    def generate_stability_test_suite(
        self,
        baseline: Any,
        patterns: Sequence[VariationPattern | Mapping[str, Any]],
        *,
        name: str = "Hash Stability Test Suite",
        description: str = "Automated tests for hash stability across input variations",
    ) -> StabilityTestSuite:
        source = dict(as_mapping(baseline))
        parsed = [VariationPattern.model_validate(pattern) for pattern in patterns]
        suite_key = canonical_json(
            {
                "baseline": plain_value(source),
                "patterns": [pattern.model_dump(mode="json") for pattern in parsed],
            }
        )

        cases: list[StabilityTestCase] = []
        for index, pattern in enumerate(parsed):
            variations = [
                StabilityVariation(
                    name=variation.name,
                    description=variation.description,
                    input=apply_modifications(source, variation),
                    expected_stable=variation.should_be_stable,
                )
                for variation in pattern.variations
            ]
            unstable = sum(1 for variation in variations if not variation.expected_stable)
            max_rate = pattern.max_variation_rate
            if max_rate is None:
                max_rate = unstable / len(variations)
            cases.append(
                StabilityTestCase(
                    id=stable_id(suite_key, str(index), pattern.name, prefix="stability_test"),
                    name=pattern.name,
                    description=pattern.description,
                    baseline_input=copy.deepcopy(source),
                    variations=variations,
                    expected_results=ExpectedResults(
                        all_hashes_identical=unstable == 0,
                        max_variation_rate=max_rate,
                    ),
                )
            )

        return StabilityTestSuite(
            id=stable_id(suite_key, prefix="suite"),
            name=name,
            description=description,
            baseline_input=source,
            test_cases=cases,
            metadata=SuiteMetadata(
                total_cases=len(cases),
                total_variations=sum(len(case.variations) for case in cases),
                expected_stable_variations=sum(
                    1
                    for case in cases
                    for variation in case.variations
                    if variation.expected_stable
                ),
            ),
        )

    def run_stability_tests(
        self,
        suite: StabilityTestSuite,
        *,
        include_comparisons: bool = True,
    ) -> StabilityTestReport:
        hasher = self.comparator.hasher
        results: list[StabilityTestResult] = []
        for case in suite.test_cases:
            baseline = hasher.prepare(case.baseline_input)
            outcomes: list[VariationOutcome] = []
            for variation in case.variations:
                prepared = hasher.prepare(variation.input)
                hashes_match = prepared.digest == baseline.digest
                comparison = None
                if include_comparisons:
                    comparison = self.comparator.compare(
                        case.baseline_input,
                        variation.input,
                        prepared_a=baseline,
                        prepared_b=prepared,
                    )
                outcomes.append(
                    VariationOutcome(
                        variation_name=variation.name,
                        baseline_hash=baseline.digest,
                        variation_hash=prepared.digest,
                        hashes_match=hashes_match,
                        expected_stable=variation.expected_stable,
                        passed=hashes_match == variation.expected_stable,
                        comparison=comparison,
                    )
                )

            total = len(outcomes)
            matching = sum(1 for outcome in outcomes if outcome.hashes_match)
            passed_variations = sum(1 for outcome in outcomes if outcome.passed)
            variation_rate = (total - matching) / total if total else 0.0
            max_rate = case.expected_results.max_variation_rate
            results.append(
                StabilityTestResult(
                    test_case_id=case.id,
                    test_case_name=case.name,
                    passed=passed_variations == total
                    and variation_rate <= max_rate + _RATE_EPSILON,
                    variation_results=outcomes,
                    summary=CaseSummary(
                        total_variations=total,
                        matching_variations=matching,
                        passed_variations=passed_variations,
                        variation_rate=variation_rate,
                        max_variation_rate=max_rate,
                    ),
                )
            )

        total_variations = sum(result.summary.total_variations for result in results)
        passed_variations = sum(result.summary.passed_variations for result in results)
        report = StabilityTestReport(
            suite_id=suite.id,
            suite_name=suite.name,
            overall_passed=all(result.passed for result in results),
            executed_at=_utc_now(),
            results=results,
            summary=SuiteSummary(
                total_cases=len(results),
                passed_cases=sum(1 for result in results if result.passed),
                total_variations=total_variations,
                passed_variations=passed_variations,
                pass_rate=passed_variations / total_variations if total_variations else 1.0,
            ),
        )
        logger.info(
            "suite %s: %d/%d variations passed",
            suite.id,
            passed_variations,
            total_variations,
        )
        return report
