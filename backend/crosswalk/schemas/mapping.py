"""Pydantic schemas for the crosswalk mapper and gap analysis."""
from datetime import date, datetime

from pydantic import BaseModel, Field

from crosswalk.models.enums import (
    ComplianceStatus,
    EffortEstimate,
    GapStatus,
    GapType,
    MappingReviewStatus,
    RecommendedActionType,
    RequirementCategory,
    RiskLevel,
)


class MappingLinkIn(BaseModel):
    control_id: str = Field(..., min_length=1, max_length=100)
    contribution_weight: int = 100
    coverage_aspects: list[str] = []


class MappingLinkOut(BaseModel):
    control_id: str
    contribution_weight: int
    coverage_aspects: list[str] = []
    model_config = {"from_attributes": True}


class MappingCreate(BaseModel):
    framework_id: str
    version_id: str
    requirement_id: str
    links: list[MappingLinkIn] = []
    not_applicable: bool = False
    coverage_justification: str | None = None
    notes: str | None = None
    created_by: str | None = Field(None, max_length=200)


class MappingUpdate(BaseModel):
    expected_version: int
    links: list[MappingLinkIn] | None = None
    not_applicable: bool | None = None
    review_status: MappingReviewStatus | None = None
    coverage_justification: str | None = None
    notes: str | None = None


class MappingOut(BaseModel):
    id: int
    requirement_pk: int
    framework_id: str | None = None
    version_id: str | None = None
    requirement_id: str | None = None
    category: RequirementCategory | None = None
    not_applicable: bool
    coverage_score: float
    compliance_status: ComplianceStatus
    review_status: MappingReviewStatus
    carried_from_mapping_id: int | None = None
    coverage_justification: str | None = None
    notes: str | None = None
    created_by: str | None = None
    last_computed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    version: int
    links: list[MappingLinkOut] = []
    model_config = {"from_attributes": True}


class MappingGapOut(BaseModel):
    id: int
    mapping_id: int
    control_id: str | None = None
    gap_type: GapType
    severity: RiskLevel
    description: str
    status: GapStatus
    created_at: datetime
    resolved_at: datetime | None = None
    model_config = {"from_attributes": True}


class RecommendedActionOut(BaseModel):
    action_type: RecommendedActionType
    description: str
    control_id: str | None = None
    model_config = {"from_attributes": True}


class GapAnalysisOut(BaseModel):
    mapping_id: int | None = None
    requirement_id: str
    coverage_score: float
    missing_aspects: list[str] = []
    priority: RiskLevel
    estimated_effort: EffortEstimate | None = None
    recommended_actions: list[RecommendedActionOut] = []
    due_date: date | None = None
    model_config = {"from_attributes": True}


class RecomputeResult(BaseModel):
    total: int = 0
    changed: int = 0
    conflicts: int = 0


# ═══════════════════ Summary ═══════════════════

class FrameworkScore(BaseModel):
    framework_id: str
    mapping_count: int = 0
    average_score: float = 0.0
    compliant: int = 0
    partial: int = 0
    non_compliant: int = 0
    not_applicable: int = 0


class CategoryScore(BaseModel):
    category: RequirementCategory
    mapping_count: int = 0
    average_score: float = 0.0


class CrosswalkSummary(BaseModel):
    total_mappings: int = 0
    by_status: dict[str, int] = {}
    overall_score: float = 0.0
    pending_review_mappings: int = 0
    frameworks: list[FrameworkScore] = []
    categories: list[CategoryScore] = []
    open_drifts: int = 0
    critical_gaps: int = 0
    high_gaps: int = 0
    open_gap_records: int = 0
    controls_needing_update: list[str] = []
