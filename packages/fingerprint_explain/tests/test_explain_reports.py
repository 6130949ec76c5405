from __future__ import annotations

from typing import Any

from fingerprint_explain import (
    Comparator,
    StabilityAnalyzer,
    Troubleshooter,
    render_comparison_report,
    render_diagnosis_report,
    render_instability_report,
    render_stability_report,
    render_test_report,
)


def _baseline_bag() -> dict[str, Any]:
    return {
        "userAgent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) Safari/605.1.15",
        "platform": "MacIntel",
        "screenResolution": [1512, 982],
        "colorDepth": 30,
        "timezone": "America/Los_Angeles",
        "fontPreferences": {"detectedFonts": ["Helvetica", "Menlo"]},
    }


def _changed_bag() -> dict[str, Any]:
    bag = _baseline_bag()
    bag["platform"] = "iPad"
    bag["fontPreferences"]["detectedFonts"].reverse()
    return bag


def test_comparison_report_lists_differences() -> None:
    result = Comparator().compare(_baseline_bag(), _changed_bag())

    text = render_comparison_report(result)

    assert text.splitlines()[0] == f"Comparison {result.metadata.comparison_id}"
    assert "Hashes match: NO" in text
    assert "Total differences: 2" in text
    assert "Stability score: 25.0%" in text
    assert "  platform [CRITICAL]" in text
    assert '    A: "MacIntel"' in text
    assert "  - Hashes do not match - investigate critical differences" in text


def test_stability_report_summarizes_metrics() -> None:
    report = StabilityAnalyzer().analyze_variations([_baseline_bag(), _baseline_bag()])

    text = render_stability_report(report)

    assert "Unique hashes: 1" in text
    assert "Variation rate: 0.0%" in text
    assert "Consistency: 1.000" in text
    assert "Common differences:" not in text


def test_diagnosis_report_lists_causes_and_cases() -> None:
    report = Troubleshooter().diagnose(_baseline_bag(), _changed_bag())

    text = render_diagnosis_report(report)

    assert text.splitlines()[0] == report.summary
    assert "  [high] critical_properties (90%)" in text
    assert "    Properties: platform" in text
    assert "  platform stability: expect different_hashes" in text


def test_instability_report_lists_factors() -> None:
    report = Troubleshooter().identify_instability_factors([_baseline_bag(), _changed_bag()])

    text = render_instability_report(report)

    assert "  platform: impact 5, 1 variations (value_change)" in text
    assert "  - Focus on stabilizing 'platform' - highest impact factor" in text


def test_test_report_marks_mismatches() -> None:
    troubleshooter = Troubleshooter()
    suite = troubleshooter.generate_stability_test_suite(
        _baseline_bag(),
        [
            {
                "name": "platform swap",
                "variations": [
                    {
                        "name": "ipad",
                        "modifications": [{"property": "platform", "new_value": "iPad"}],
                        "should_be_stable": True,
                    }
                ],
            }
        ],
    )

    text = render_test_report(troubleshooter.run_stability_tests(suite))

    assert "Overall: FAILED" in text
    assert "[FAIL] platform swap" in text
    assert "  ipad: expected stable, got unstable (MISMATCH)" in text
