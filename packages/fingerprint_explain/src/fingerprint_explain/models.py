from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class DifferenceType(str, Enum):
    VALUE_CHANGE = "value_change"
    TYPE_CHANGE = "type_change"
    MISSING_PROPERTY = "missing_property"
    ADDED_PROPERTY = "added_property"
    ARRAY_ORDER = "array_order"
    ARRAY_LENGTH = "array_length"
    OBJECT_STRUCTURE = "object_structure"
    PRECISION_DIFFERENCE = "precision_difference"
    WHITESPACE_DIFFERENCE = "whitespace_difference"
    ENCODING_DIFFERENCE = "encoding_difference"


class DifferenceSeverity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NEGLIGIBLE = "negligible"


SEVERITY_RANK: dict[DifferenceSeverity, int] = {
    DifferenceSeverity.CRITICAL: 0,
    DifferenceSeverity.HIGH: 1,
    DifferenceSeverity.MEDIUM: 2,
    DifferenceSeverity.LOW: 3,
    DifferenceSeverity.NEGLIGIBLE: 4,
}


class Difference(BaseModel):
    model_config = ConfigDict(extra="forbid")
    property_path: str
    path: list[str | int] = Field(default_factory=list)
    value_a: Any = None
    value_b: Any = None
    normalized_a: Any = None
    normalized_b: Any = None
    type: DifferenceType
    severity: DifferenceSeverity
    affects_hash: bool
    truncated: bool = False
    description: str


class ImpactAnalysis(BaseModel):
    model_config = ConfigDict(extra="forbid")
    total_differences: int
    critical_differences: int
    hash_affecting_differences: int
    normalized_away_differences: int
    most_significant_differences: list[Difference] = Field(default_factory=list)
    hash_stability_score: float
    recommendations: list[str] = Field(default_factory=list)


class ComparisonMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid")
    comparison_id: str
    compared_at: datetime
    processing_time_ms: float
    max_depth: int
    ignored_properties: list[str] = Field(default_factory=list)


class ComparisonResult(BaseModel):
    model_config = ConfigDict(extra="forbid")
    identical: bool
    hashes_match: bool
    hash_a: str
    hash_b: str
    differences: list[Difference] = Field(default_factory=list)
    normalized_differences: list[Difference] = Field(default_factory=list)
    impact_analysis: ImpactAnalysis
    metadata: ComparisonMetadata


class CommonDifference(BaseModel):
    model_config = ConfigDict(extra="forbid")
    property_path: str
    type: DifferenceType
    severity: DifferenceSeverity
    count: int
    hash_affecting_count: int


class StabilityMetrics(BaseModel):
    model_config = ConfigDict(extra="forbid")
    consistency: float
    entropy: float
    predictability: float
    robustness: float


class StabilityReport(BaseModel):
    model_config = ConfigDict(extra="forbid")
    input_count: int
    input_hashes: list[str] = Field(default_factory=list)
    unique_hashes: int
    variation_rate: float
    unique_hash_ratio: float
    pair_count: int
    common_differences: list[CommonDifference] = Field(default_factory=list)
    stability_metrics: StabilityMetrics
    recommendations: list[str] = Field(default_factory=list)


RootCauseCategory = Literal["critical_properties", "normalization_gap", "type_inconsistency"]


class RootCause(BaseModel):
    model_config = ConfigDict(extra="forbid")
    category: RootCauseCategory
    description: str
    affected_properties: list[str] = Field(default_factory=list)
    severity: Literal["high", "medium", "low"]
    likelihood: float


class FixRecommendation(BaseModel):
    model_config = ConfigDict(extra="forbid")
    priority: Literal["high", "medium", "low"]
    difference_type: DifferenceType
    title: str
    description: str
    implementation: str
    estimated_impact: str


ExpectedHashOutcome = Literal["same_hashes", "different_hashes"]


class RegressionCase(BaseModel):
    model_config = ConfigDict(extra="forbid")
    id: str
    name: str
    description: str
    input_a: dict[str, Any] = Field(default_factory=dict)
    input_b: dict[str, Any] = Field(default_factory=dict)
    expected_result: ExpectedHashOutcome
    category: str = "regression"


class DiagnosisReport(BaseModel):
    model_config = ConfigDict(extra="forbid")
    summary: str
    root_causes: list[RootCause] = Field(default_factory=list)
    fix_recommendations: list[FixRecommendation] = Field(default_factory=list)
    regression_cases: list[RegressionCase] = Field(default_factory=list)
    comparison: ComparisonResult


class PropertyInstability(BaseModel):
    model_config = ConfigDict(extra="forbid")
    property_path: str
    variation_count: int
    severity_distribution: dict[str, int] = Field(default_factory=dict)
    common_types: list[DifferenceType] = Field(default_factory=list)
    impact_score: int


class InstabilityReport(BaseModel):
    model_config = ConfigDict(extra="forbid")
    total_inputs: int
    unique_hashes: int
    variation_rate: float
    top_instability_factors: list[PropertyInstability] = Field(default_factory=list)
    stability_metrics: StabilityMetrics
    recommendations: list[str] = Field(default_factory=list)


class PropertyModification(BaseModel):
    model_config = ConfigDict(extra="forbid")
    property: str = Field(min_length=1)
    new_value: Any = None
    remove: bool = False


class InputVariation(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str = Field(min_length=1)
    description: str = ""
    modifications: list[PropertyModification] = Field(default_factory=list)
    should_be_stable: bool


class VariationPattern(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str = Field(min_length=1)
    description: str = ""
    variations: list[InputVariation] = Field(min_length=1)
    max_variation_rate: float | None = Field(default=None, ge=0.0, le=1.0)


class VariationDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str = "stability-suite"
    description: str = ""
    baseline: dict[str, Any]
    patterns: list[VariationPattern] = Field(min_length=1)


class StabilityVariation(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str
    description: str = ""
    input: dict[str, Any] = Field(default_factory=dict)
    expected_stable: bool


class ExpectedResults(BaseModel):
    model_config = ConfigDict(extra="forbid")
    all_hashes_identical: bool
    max_variation_rate: float


class StabilityTestCase(BaseModel):
    model_config = ConfigDict(extra="forbid")
    id: str
    name: str
    description: str = ""
    baseline_input: dict[str, Any] = Field(default_factory=dict)
    variations: list[StabilityVariation] = Field(default_factory=list)
    expected_results: ExpectedResults


class SuiteMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid")
    total_cases: int
    total_variations: int
    expected_stable_variations: int


class StabilityTestSuite(BaseModel):
    model_config = ConfigDict(extra="forbid")
    id: str
    name: str
    description: str = ""
    baseline_input: dict[str, Any] = Field(default_factory=dict)
    test_cases: list[StabilityTestCase] = Field(default_factory=list)
    metadata: SuiteMetadata


class VariationOutcome(BaseModel):
    model_config = ConfigDict(extra="forbid")
    variation_name: str
    baseline_hash: str
    variation_hash: str
    hashes_match: bool
    expected_stable: bool
    passed: bool
    comparison: ComparisonResult | None = None


class CaseSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")
    total_variations: int
    matching_variations: int
    passed_variations: int
    variation_rate: float
    max_variation_rate: float


class StabilityTestResult(BaseModel):
    model_config = ConfigDict(extra="forbid")
    test_case_id: str
    test_case_name: str
    passed: bool
    variation_results: list[VariationOutcome] = Field(default_factory=list)
    summary: CaseSummary


class SuiteSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")
    total_cases: int
    passed_cases: int
    total_variations: int
    passed_variations: int
    pass_rate: float


class StabilityTestReport(BaseModel):
    model_config = ConfigDict(extra="forbid")
    suite_id: str
    suite_name: str
    overall_passed: bool
    executed_at: datetime
    results: list[StabilityTestResult] = Field(default_factory=list)
    summary: SuiteSummary
