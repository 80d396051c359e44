"""Pydantic schemas for compliance drift."""
from datetime import date, datetime

from pydantic import BaseModel, Field

from crosswalk.models.enums import (
    ActionStatus,
    DriftChangeType,
    DriftStatus,
    RequiredActionType,
    RequirementUpdateDecision,
    RiskLevel,
    Significance,
)


class DriftScanRequest(BaseModel):
    framework_id: str
    old_version_id: str
    new_version_id: str


class DriftScanResult(BaseModel):
    framework_id: str
    old_version_id: str
    new_version_id: str
    compared: int = 0
    unchanged: int = 0
    created: int = 0
    existing: int = 0
    auto_resolved: int = 0
    new_requirements: int = 0
    cancelled: bool = False
    drift_ids: list[int] = []


class RequiredActionIn(BaseModel):
    action_type: RequiredActionType
    description: str = Field(..., min_length=1)
    priority: RiskLevel = RiskLevel.MEDIUM
    deadline: date | None = None
    assigned_to: str | None = Field(None, max_length=200)


class RequiredActionOut(BaseModel):
    id: int
    action_type: RequiredActionType
    description: str
    priority: RiskLevel
    deadline: date | None = None
    assigned_to: str | None = None
    status: ActionStatus
    created_at: datetime
    model_config = {"from_attributes": True}


class SuggestedMapping(BaseModel):
    control_id: str
    title: str
    confidence: float
    matched_terms: list[str] = []


class DriftTransitionOut(BaseModel):
    from_status: DriftStatus | None = None
    to_status: DriftStatus
    actor: str | None = None
    note: str | None = None
    created_at: datetime
    model_config = {"from_attributes": True}


class DriftOut(BaseModel):
    id: int
    framework_id: str
    requirement_id: str
    requirement_pk: int
    previous_requirement_pk: int | None = None
    previous_version_id: str
    new_version_id: str
    change_type: DriftChangeType
    significance: Significance
    impact_level: RiskLevel
    change_summary: str
    comparison: dict = {}
    affected_control_ids: list[str] = []
    suggested_mappings: list[SuggestedMapping] = []
    compliance_deadline: date | None = None
    days_remaining: int | None = None
    status: DriftStatus
    assigned_to: str | None = None
    due_date: date | None = None
    resolution_notes: str | None = None
    detected_at: datetime
    acknowledged_by: str | None = None
    acknowledged_at: datetime | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    updated_at: datetime
    version: int
    required_actions: list[RequiredActionOut] = []
    transitions: list[DriftTransitionOut] = []
    model_config = {"from_attributes": True}


class DriftActionRequest(BaseModel):
    actor: str | None = Field(None, max_length=200)
    note: str | None = None
    expected_version: int | None = None


class DriftPlanRequest(DriftActionRequest):
    actions: list[RequiredActionIn] = []
    assigned_to: str | None = Field(None, max_length=200)
    due_date: date | None = None


class DriftAcceptRiskRequest(BaseModel):
    actor: str | None = Field(None, max_length=200)
    reason: str
    expected_version: int | None = None


class DriftRecommendation(BaseModel):
    action_type: RequiredActionType
    description: str
    priority: RiskLevel
    control_id: str | None = None


class DriftNotification(BaseModel):
    drift_id: int
    framework_id: str
    requirement_id: str
    new_version_id: str
    change_type: DriftChangeType
    significance: Significance
    impact_level: RiskLevel
    status: DriftStatus
    change_summary: str
    affected_control_ids: list[str] = []
    suggested_mappings: list[SuggestedMapping] = []
    compliance_deadline: date | None = None
    days_remaining: int | None = None
    detected_at: datetime
    recommended_actions: list[DriftRecommendation] = []


class DriftStats(BaseModel):
    total: int = 0
    open: int = 0
    by_status: dict[str, int] = {}
    by_impact: dict[str, int] = {}
    by_framework: dict[str, int] = {}
    frameworks_affected: int = 0
    # Mean over open drifts that carry a compliance deadline
    average_days_remaining: float | None = None


class RequirementUpdateRequest(BaseModel):
    actor: str | None = Field(None, max_length=200)
    note: str | None = None


class RequirementUpdateResult(BaseModel):
    decision: RequirementUpdateDecision
    drift: DriftOut
    carried_mapping_id: int | None = None
