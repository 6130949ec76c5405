from __future__ import annotations

from typing import Any

from fingerprint_core import generate_fingerprint
from fingerprint_explain import InputVariation, Troubleshooter, apply_modifications


def _baseline_bag() -> dict[str, Any]:
    return {
        "userAgent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/90.0.4430.93 Safari/537.36"
        ),
        "platform": "Win32",
        "screenResolution": [1920, 1080],
        "colorDepth": 24,
        "os": {"os": "Windows", "version": "10"},
        "audio": 124.04347527516074,
        "webGL": {
            "vendor": "Google Inc. (NVIDIA)",
            "renderer": "NVIDIA GeForce GTX 1660 SUPER (driver 27.21.14.5671)",
            "imageHash": "a1b2c3d4",
        },
        "canvas": {"geometry": "canvas-geometry-hash"},
        "plugins": [
            {"name": "PDF Viewer", "mimeTypes": [{"type": "application/pdf"}]},
            {"name": "Native Client", "mimeTypes": [{"type": "application/x-nacl"}]},
        ],
        "timezone": "America/New_York",
        "mathConstants": {"acos": 1.2345},
        "fontPreferences": {"detectedFonts": ["Arial", "Courier New", "Times New Roman"]},
    }


_BROWSER_91 = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.77 Safari/537.36"
)


def _patterns() -> list[dict[str, Any]]:
    return [
        {
            "name": "cosmetic",
            "description": "Changes the hash must absorb",
            "variations": [
                {
                    "name": "fonts reordered",
                    "modifications": [
                        {
                            "property": "fontPreferences.detectedFonts",
                            "new_value": ["Times New Roman", "Arial", "Courier New"],
                        }
                    ],
                    "should_be_stable": True,
                },
                {
                    "name": "timezone",
                    "modifications": [{"property": "timezone", "new_value": "Asia/Tokyo"}],
                    "should_be_stable": True,
                },
                {
                    "name": "driver update",
                    "modifications": [
                        {
                            "property": "webGL.renderer",
                            "new_value": "NVIDIA GeForce GTX 1660 SUPER (driver 31.0.15.3623)",
                        }
                    ],
                    "should_be_stable": True,
                },
            ],
        },
        {
            "name": "identity",
            "variations": [
                {
                    "name": "browser update",
                    "modifications": [{"property": "userAgent", "new_value": _BROWSER_91}],
                    "should_be_stable": False,
                },
                {
                    "name": "canvas removed",
                    "modifications": [{"property": "canvas", "remove": True}],
                    "should_be_stable": False,
                },
            ],
        },
    ]


def test_diagnose_reports_normalized_differences() -> None:
    other = _baseline_bag()
    other["platform"] = "  Win32 "

    report = Troubleshooter().diagnose(_baseline_bag(), other)

    assert report.summary == (
        "Hashes match despite input differences. Normalization is working correctly."
    )
    assert report.root_causes == []
    assert [fix.title for fix in report.fix_recommendations] == ["Enhance string normalization"]
    assert report.regression_cases == []


def test_diagnose_ranks_root_causes() -> None:
    other = _baseline_bag()
    other["userAgent"] = _BROWSER_91
    other["colorDepth"] = "24"

    report = Troubleshooter().diagnose(_baseline_bag(), other)

    assert report.summary == (
        "Hashes differ due to 1 critical difference(s) in core fingerprint properties."
    )
    assert [cause.category for cause in report.root_causes] == [
        "critical_properties",
        "type_inconsistency",
    ]
    assert report.root_causes[0].affected_properties == ["userAgent"]
    assert report.root_causes[0].likelihood > report.root_causes[1].likelihood
    assert [fix.title for fix in report.fix_recommendations] == ["Validate input types"]

    cases = report.regression_cases
    assert [case.name for case in cases] == ["userAgent stability", "colorDepth stability"]
    assert all(case.expected_result == "different_hashes" for case in cases)
    assert cases[1].input_a == {"colorDepth": 24}
    assert cases[1].input_b == {"colorDepth": "24"}
    assert all(case.id.startswith("regression_") for case in cases)


def test_diagnose_flags_normalization_gaps() -> None:
    other = _baseline_bag()
    other["plugins"][0]["name"] = "Chromium PDF Viewer"

    report = Troubleshooter().diagnose(_baseline_bag(), other)

    assert report.summary == (
        "Hashes differ due to 1 difference(s) that survived normalization."
    )
    [cause] = report.root_causes
    assert cause.category == "normalization_gap"
    assert cause.affected_properties == ["plugins[0].name"]
    [case] = report.regression_cases
    assert case.expected_result == "different_hashes"
    assert generate_fingerprint(case.input_a) != generate_fingerprint(case.input_b)


def test_regression_case_expectation_matches_isolated_pair() -> None:
    other = _baseline_bag()
    other["webGL"]["renderer"] = "NVIDIA GeForce GTX 1660 SUPER (driver 31.0.15.3623)"

    report = Troubleshooter().diagnose(_baseline_bag(), other)

    [case] = report.regression_cases
    assert case.name == "webGL.renderer stability"
    assert case.expected_result == "same_hashes"
    assert generate_fingerprint(case.input_a) == generate_fingerprint(case.input_b)


def test_regression_cases_collapse_sibling_differences() -> None:
    other = _baseline_bag()
    other["webGL"] = {"error": "WebGL context lost"}

    report = Troubleshooter().diagnose(_baseline_bag(), other)

    assert len(report.comparison.differences) == 4
    [case] = report.regression_cases
    assert case.name == "webGL.error stability"
    assert case.input_b == {"webGL": {"error": "WebGL context lost"}}
    assert case.expected_result == "different_hashes"


def test_instability_factors_are_ranked_by_impact() -> None:
    browser = _baseline_bag()
    browser["userAgent"] = _BROWSER_91
    travelled = _baseline_bag()
    travelled["userAgent"] = _BROWSER_91
    travelled["timezone"] = "Asia/Tokyo"

    report = Troubleshooter().identify_instability_factors([_baseline_bag(), browser, travelled])

    assert report.total_inputs == 3
    assert report.unique_hashes == 2
    first, second = report.top_instability_factors
    assert first.property_path == "userAgent"
    assert first.impact_score == 10
    assert first.severity_distribution == {
        "critical": 2,
        "high": 0,
        "medium": 0,
        "low": 0,
        "negligible": 0,
    }
    assert second.property_path == "timezone"
    assert second.impact_score == 6
    assert report.recommendations == [
        "Focus on stabilizing 'userAgent' - highest impact factor",
        "2 critical variations detected - immediate attention required",
    ]


def test_identical_inputs_have_no_instability_factors() -> None:
    report = Troubleshooter().identify_instability_factors([_baseline_bag(), _baseline_bag()])

    assert report.top_instability_factors == []
    assert report.recommendations == ["No significant instability factors detected"]


def test_generated_suite_deep_copies_variants() -> None:
    baseline = _baseline_bag()

    suite = Troubleshooter().generate_stability_test_suite(baseline, _patterns())

    assert baseline == _baseline_bag()
    cosmetic, identity = suite.test_cases
    assert cosmetic.expected_results.all_hashes_identical
    assert cosmetic.expected_results.max_variation_rate == 0.0
    assert not identity.expected_results.all_hashes_identical
    assert identity.expected_results.max_variation_rate == 1.0
    assert cosmetic.variations[1].input["timezone"] == "Asia/Tokyo"
    assert "canvas" not in identity.variations[1].input
    assert suite.metadata.total_cases == 2
    assert suite.metadata.total_variations == 5
    assert suite.metadata.expected_stable_variations == 3


def test_generated_suite_ids_are_deterministic() -> None:
    first = Troubleshooter().generate_stability_test_suite(_baseline_bag(), _patterns())
    second = Troubleshooter().generate_stability_test_suite(_baseline_bag(), _patterns())

    assert first.id == second.id
    assert first.id.startswith("suite_")
    assert [case.id for case in first.test_cases] == [case.id for case in second.test_cases]
    assert first.test_cases[0].id != first.test_cases[1].id


def test_run_stability_tests_passes_when_expectations_hold() -> None:
    troubleshooter = Troubleshooter()
    suite = troubleshooter.generate_stability_test_suite(_baseline_bag(), _patterns())

    report = troubleshooter.run_stability_tests(suite)

    assert report.overall_passed
    assert report.summary.pass_rate == 1.0
    assert report.summary.passed_cases == 2
    cosmetic, identity = report.results
    assert cosmetic.summary.variation_rate == 0.0
    assert identity.summary.variation_rate == 1.0
    assert all(outcome.comparison is not None for outcome in cosmetic.variation_results)


def test_run_stability_tests_reports_broken_expectations() -> None:
    troubleshooter = Troubleshooter()
    patterns = [
        {
            "name": "wrong expectation",
            "variations": [
                {
                    "name": "browser update",
                    "modifications": [{"property": "userAgent", "new_value": _BROWSER_91}],
                    "should_be_stable": True,
                },
                {
                    "name": "timezone",
                    "modifications": [{"property": "timezone", "new_value": "Asia/Tokyo"}],
                    "should_be_stable": True,
                },
            ],
        }
    ]
    suite = troubleshooter.generate_stability_test_suite(_baseline_bag(), patterns)

    report = troubleshooter.run_stability_tests(suite, include_comparisons=False)

    assert not report.overall_passed
    assert report.summary.pass_rate == 0.5
    [result] = report.results
    assert [outcome.passed for outcome in result.variation_results] == [False, True]
    assert result.variation_results[0].comparison is None


def test_explicit_max_variation_rate_fails_case() -> None:
    troubleshooter = Troubleshooter()
    patterns = [
        {
            "name": "strict budget",
            "max_variation_rate": 0.0,
            "variations": [
                {
                    "name": "browser update",
                    "modifications": [{"property": "userAgent", "new_value": _BROWSER_91}],
                    "should_be_stable": False,
                }
            ],
        }
    ]
    suite = troubleshooter.generate_stability_test_suite(_baseline_bag(), patterns)

    report = troubleshooter.run_stability_tests(suite)

    [result] = report.results
    assert result.variation_results[0].passed
    assert not result.passed
    assert report.summary.pass_rate == 1.0


def test_apply_modifications_creates_and_removes_nested_paths() -> None:
    variation = InputVariation.model_validate(
        {
            "name": "nested",
            "modifications": [
                {"property": "bot.isBot", "new_value": True},
                {"property": "webGL.imageHash", "remove": True},
                {"property": "plugins.1.name", "new_value": "Renamed"},
            ],
            "should_be_stable": False,
        }
    )

    variant = apply_modifications(_baseline_bag(), variation)

    assert variant["bot"] == {"isBot": True}
    assert "imageHash" not in variant["webGL"]
    assert variant["plugins"][1]["name"] == "Renamed"
    assert "bot" not in _baseline_bag()
