from .comparison import CRITICAL_PROPERTIES, Comparator, analyze_impact, format_path
from .factory import (
    build_analyzer,
    build_comparator,
    build_hasher,
    build_recorder,
    build_troubleshooter,
)
from .models import (
    CaseSummary,
    CommonDifference,
    ComparisonMetadata,
    ComparisonResult,
    DiagnosisReport,
    Difference,
    DifferenceSeverity,
    DifferenceType,
    ExpectedResults,
    FixRecommendation,
    ImpactAnalysis,
    InputVariation,
    InstabilityReport,
    PropertyInstability,
    PropertyModification,
    RegressionCase,
    RootCause,
    StabilityMetrics,
    StabilityReport,
    StabilityTestCase,
    StabilityTestReport,
    StabilityTestResult,
    StabilityTestSuite,
    StabilityVariation,
    SuiteMetadata,
    SuiteSummary,
    VariationDocument,
    VariationOutcome,
    VariationPattern,
)
from .reports import (
    render_comparison_report,
    render_diagnosis_report,
    render_instability_report,
    render_stability_report,
    render_test_report,
)
from .stability import PairwiseAnalysis, StabilityAnalyzer, compute_stability_metrics
from .suite_schema import (
    load_stability_suite,
    load_variation_document,
    stability_suite_schema,
    validate_stability_suite,
    validate_variation_document,
    variation_document_schema,
)
from .troubleshoot import Troubleshooter, apply_modifications

__all__ = [
    "CRITICAL_PROPERTIES",
    "CaseSummary",
    "CommonDifference",
    "Comparator",
    "ComparisonMetadata",
    "ComparisonResult",
    "DiagnosisReport",
    "Difference",
    "DifferenceSeverity",
    "DifferenceType",
    "ExpectedResults",
    "FixRecommendation",
    "ImpactAnalysis",
    "InputVariation",
    "InstabilityReport",
    "PairwiseAnalysis",
    "PropertyInstability",
    "PropertyModification",
    "RegressionCase",
    "RootCause",
    "StabilityAnalyzer",
    "StabilityMetrics",
    "StabilityReport",
    "StabilityTestCase",
    "StabilityTestReport",
    "StabilityTestResult",
    "StabilityTestSuite",
    "StabilityVariation",
    "SuiteMetadata",
    "SuiteSummary",
    "Troubleshooter",
    "VariationDocument",
    "VariationOutcome",
    "VariationPattern",
    "analyze_impact",
    "apply_modifications",
    "build_analyzer",
    "build_comparator",
    "build_hasher",
    "build_recorder",
    "build_troubleshooter",
    "compute_stability_metrics",
    "format_path",
    "load_stability_suite",
    "load_variation_document",
    "render_comparison_report",
    "render_diagnosis_report",
    "render_instability_report",
    "render_stability_report",
    "render_test_report",
    "stability_suite_schema",
    "validate_stability_suite",
    "validate_variation_document",
    "variation_document_schema",
]

__version__ = "0.1.0"
