"""Pydantic schemas for controls and evidence."""
from datetime import date, datetime

from pydantic import BaseModel, Field

from crosswalk.models.enums import (
    ComplianceStatus,
    ControlStatus,
    EvidenceState,
    MappingReviewStatus,
)


class EvidenceCreate(BaseModel):
    evidence_type: str = Field("other", max_length=50)
    title: str = Field(..., min_length=1, max_length=300)
    description: str | None = None
    file_url: str | None = Field(None, max_length=1000)
    collected_date: date
    expiration_date: date | None = None
    collected_by: str | None = Field(None, max_length=200)
    state: EvidenceState = EvidenceState.PENDING


class EvidenceOut(BaseModel):
    id: int
    control_id: str
    evidence_type: str
    title: str
    description: str | None = None
    file_url: str | None = None
    collected_date: date
    expiration_date: date | None = None
    collected_by: str | None = None
    state: EvidenceState
    verified_by: str | None = None
    verified_at: datetime | None = None
    created_at: datetime
    model_config = {"from_attributes": True}


class EvidenceStateUpdate(BaseModel):
    state: EvidenceState
    actor: str | None = Field(None, max_length=200)


class EvidenceExpireRequest(BaseModel):
    as_of: date | None = None


class EvidenceExpireResult(BaseModel):
    as_of: date
    expired_evidence_ids: list[int] = []
    recomputed_mappings: int = 0


class ControlUpsert(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)
    control_number: str | None = Field(None, max_length=50)
    description: str | None = None
    control_family: str | None = Field(None, max_length=200)
    owner: str | None = Field(None, max_length=200)
    status: ControlStatus = ControlStatus.NOT_STARTED
    effectiveness_rating: int = 3
    # When given, replaces the evidence list of the control
    evidence: list[EvidenceCreate] | None = None
    expected_version: int | None = None


class ControlOut(BaseModel):
    id: str
    control_number: str | None = None
    title: str
    description: str | None = None
    control_family: str | None = None
    owner: str | None = None
    status: ControlStatus
    effectiveness_rating: int
    deprecated_at: datetime | None = None
    has_verified_evidence: bool = False
    evidence: list[EvidenceOut] = []
    created_at: datetime
    updated_at: datetime
    version: int
    model_config = {"from_attributes": True}


class ControlDeprecateRequest(BaseModel):
    reason: str | None = None
    expected_version: int | None = None


class ControlRequirementOut(BaseModel):
    """A requirement covered by a control, seen from the control side."""
    mapping_id: int
    requirement_pk: int
    framework_id: str
    version_id: str
    requirement_id: str
    section_title: str | None = None
    contribution_weight: int
    coverage_aspects: list[str] = []
    compliance_status: ComplianceStatus
    review_status: MappingReviewStatus
