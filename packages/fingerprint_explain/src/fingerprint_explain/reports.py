from __future__ import annotations

import json
from typing import Any

from .models import (
    ComparisonResult,
    DiagnosisReport,
    InstabilityReport,
    StabilityReport,
    StabilityTestReport,
)


def _yes_no(flag: bool) -> str:
    return "YES" if flag else "NO"


def _percent(value: float) -> str:
    return f"{value * 100:.1f}%"


def _format_value(value: Any) -> str:
    text = json.dumps(value, sort_keys=True, ensure_ascii=False, default=str)
    return f"{text[:97]}..." if len(text) > 100 else text


def render_comparison_report(result: ComparisonResult) -> str:
    impact = result.impact_analysis
    lines = [
        f"Comparison {result.metadata.comparison_id}",
        f"Processing time: {result.metadata.processing_time_ms}ms",
        f"Hash A: {result.hash_a}",
        f"Hash B: {result.hash_b}",
        f"Hashes match: {_yes_no(result.hashes_match)}",
        f"Inputs identical: {_yes_no(result.identical)}",
        f"Total differences: {impact.total_differences}",
        f"Critical differences: {impact.critical_differences}",
        f"Hash-affecting differences: {impact.hash_affecting_differences}",
        f"Normalized away: {impact.normalized_away_differences}",
        f"Stability score: {_percent(impact.hash_stability_score)}",
    ]
    if impact.recommendations:
        lines.append("Recommendations:")
        lines.extend(f"  - {item}" for item in impact.recommendations)
    if result.differences:
        lines.append("Differences:")
        for difference in result.differences:
            lines.append(f"  {difference.property_path} [{difference.severity.value.upper()}]")
            lines.append(f"    Type: {difference.type.value}")
            lines.append(f"    A: {_format_value(difference.value_a)}")
            lines.append(f"    B: {_format_value(difference.value_b)}")
            lines.append(f"    Affects hash: {_yes_no(difference.affects_hash)}")
            lines.append(f"    {difference.description}")
    return "\n".join(lines)


def render_stability_report(report: StabilityReport) -> str:
    metrics = report.stability_metrics
    lines = [
        f"Inputs: {report.input_count}",
        f"Unique hashes: {report.unique_hashes}",
        f"Variation rate: {_percent(report.variation_rate)}",
        f"Consistency: {metrics.consistency:.3f}",
        f"Entropy: {metrics.entropy:.3f}",
        f"Predictability: {metrics.predictability:.3f}",
        f"Robustness: {metrics.robustness:.3f}",
    ]
    if report.common_differences:
        lines.append("Common differences:")
        for item in report.common_differences:
            lines.append(
                f"  {item.property_path} ({item.type.value}) x{item.count}, "
                f"{item.hash_affecting_count} affecting hash"
            )
    if report.recommendations:
        lines.append("Recommendations:")
        lines.extend(f"  - {item}" for item in report.recommendations)
    return "\n".join(lines)


def render_diagnosis_report(report: DiagnosisReport) -> str:
    lines = [report.summary]
    if report.root_causes:
        lines.append("Root causes:")
        for cause in report.root_causes:
            lines.append(
                f"  [{cause.severity}] {cause.category} ({cause.likelihood:.0%}): "
                f"{cause.description}"
            )
            lines.append(f"    Properties: {', '.join(cause.affected_properties)}")
    if report.fix_recommendations:
        lines.append("Fixes:")
        for fix in report.fix_recommendations:
            lines.append(f"  [{fix.priority}] {fix.title}: {fix.implementation}")
    if report.regression_cases:
        lines.append("Regression cases:")
        for case in report.regression_cases:
            lines.append(f"  {case.name}: expect {case.expected_result}")
    return "\n".join(lines)


def render_instability_report(report: InstabilityReport) -> str:
    lines = [
        f"Inputs: {report.total_inputs}",
        f"Unique hashes: {report.unique_hashes}",
        f"Variation rate: {_percent(report.variation_rate)}",
    ]
    if report.top_instability_factors:
        lines.append("Instability factors:")
        for factor in report.top_instability_factors:
            types = ", ".join(item.value for item in factor.common_types)
            lines.append(
                f"  {factor.property_path}: impact {factor.impact_score}, "
                f"{factor.variation_count} variations ({types})"
            )
    lines.append("Recommendations:")
    lines.extend(f"  - {item}" for item in report.recommendations)
    return "\n".join(lines)


def render_test_report(report: StabilityTestReport) -> str:
    summary = report.summary
    lines = [
        f"Suite {report.suite_name} ({report.suite_id})",
        f"Overall: {'PASSED' if report.overall_passed else 'FAILED'}",
        f"Cases passed: {summary.passed_cases}/{summary.total_cases}",
        f"Variations passed: {summary.passed_variations}/{summary.total_variations}",
        f"Pass rate: {_percent(summary.pass_rate)}",
    ]
    for result in report.results:
        status = "PASS" if result.passed else "FAIL"
        lines.append(f"[{status}] {result.test_case_name}")
        for outcome in result.variation_results:
            expected = "stable" if outcome.expected_stable else "unstable"
            actual = "stable" if outcome.hashes_match else "unstable"
            marker = "ok" if outcome.passed else "MISMATCH"
            lines.append(
                f"  {outcome.variation_name}: expected {expected}, got {actual} ({marker})"
            )
    return "\n".join(lines)
