"""Pydantic schemas for frameworks, versions and requirements."""
from datetime import date, datetime

from pydantic import BaseModel, Field

from crosswalk.models.enums import (
    DriftChangeType,
    FrameworkVersionStatus,
    RequirementCategory,
    RiskLevel,
    SegmentKind,
    Significance,
)


# ═══════════════════ Framework ═══════════════════

class FrameworkCreate(BaseModel):
    id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=300)
    description: str | None = None
    provider: str | None = Field(None, max_length=200)


class FrameworkOut(BaseModel):
    id: str
    name: str
    description: str | None = None
    provider: str | None = None
    created_at: datetime
    active_version_id: str | None = None
    model_config = {"from_attributes": True}


# ═══════════════════ Requirements ═══════════════════

class RequirementCreate(BaseModel):
    requirement_id: str = Field(..., min_length=1, max_length=150)
    section_code: str = Field(..., min_length=1, max_length=100)
    section_title: str | None = Field(None, max_length=500)
    requirement_text: str = Field(..., min_length=1)
    requirement_summary: str | None = None
    category: RequirementCategory = RequirementCategory.TRADITIONAL
    control_family: str | None = Field(None, max_length=200)
    risk_level: RiskLevel = RiskLevel.MEDIUM
    implementation_guidance: list[str] = []
    evidence_examples: list[str] = []
    keywords: list[str] = []
    related_requirements: list[str] = []
    parent_requirement_id: str | None = None
    supersedes: str | None = None


class RequirementOut(BaseModel):
    id: int
    framework_id: str
    version_id: str
    requirement_id: str
    section_code: str
    section_title: str | None = None
    requirement_text: str
    requirement_summary: str | None = None
    category: RequirementCategory
    control_family: str | None = None
    risk_level: RiskLevel
    implementation_guidance: list[str] = []
    evidence_examples: list[str] = []
    keywords: list[str] = []
    related_requirements: list[str] = []
    parent_requirement_id: str | None = None
    supersedes: str | None = None
    superseded_by: str | None = None
    created_at: datetime
    model_config = {"from_attributes": True}


# ═══════════════════ Versions ═══════════════════

class FrameworkVersionCreate(BaseModel):
    id: str | None = Field(None, max_length=150)
    version_code: str = Field(..., min_length=1, max_length=50)
    effective_date: date
    sunset_date: date | None = None
    status: FrameworkVersionStatus = FrameworkVersionStatus.FINAL
    source_url: str | None = Field(None, max_length=1000)
    published_by: str | None = Field(None, max_length=200)
    requirements: list[RequirementCreate] = []


class FrameworkVersionOut(BaseModel):
    id: str
    framework_id: str
    version_code: str
    effective_date: date
    sunset_date: date | None = None
    status: FrameworkVersionStatus
    source_url: str | None = None
    published_by: str | None = None
    published_at: datetime
    updated_at: datetime
    version: int
    requirement_count: int = 0
    model_config = {"from_attributes": True}


class VersionStatusUpdate(BaseModel):
    status: FrameworkVersionStatus
    expected_version: int | None = None


# ═══════════════════ Comparison ═══════════════════

class TextDiffSegmentOut(BaseModel):
    kind: SegmentKind
    old_text: str = ""
    new_text: str = ""
    significance: Significance
    model_config = {"from_attributes": True}


class RequirementComparisonOut(BaseModel):
    requirement_id: str
    framework_id: str
    old_version_id: str
    new_version_id: str
    has_changes: bool
    significance: Significance
    change_type: DriftChangeType | None = None
    added_words: int = 0
    removed_words: int = 0
    keywords_added: list[str] = []
    keywords_removed: list[str] = []
    segments: list[TextDiffSegmentOut] = []
