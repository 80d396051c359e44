"""
Requirement/Framework Store models: the immutable, versioned "law".

Tables: frameworks, framework_versions, requirements

Requirement rows are append-only. A newer version never edits an older row;
it adds its own rows and points back with ``supersedes`` (a requirement_id in
the immediately prior version). The reverse link is resolved by query.
"""
from datetime import date, datetime

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, enum_type
from .enums import FrameworkVersionStatus, RequirementCategory, RiskLevel


class Framework(Base):
    """Named regulatory standard, e.g. HIPAA_SECURITY or ISO_27001."""
    __tablename__ = "frameworks"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    provider: Mapped[str | None] = mapped_column(String(200))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class FrameworkVersion(Base):
    __tablename__ = "framework_versions"
    __table_args__ = (
        UniqueConstraint("framework_id", "version_code", name="uq_fwver_code"),
        Index("ix_fwver_framework_effective", "framework_id", "effective_date"),
    )

    id: Mapped[str] = mapped_column(String(150), primary_key=True)
    framework_id: Mapped[str] = mapped_column(
        ForeignKey("frameworks.id", ondelete="RESTRICT"), nullable=False,
    )
    version_code: Mapped[str] = mapped_column(String(50), nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    sunset_date: Mapped[date | None] = mapped_column(Date)
    status: Mapped[FrameworkVersionStatus] = mapped_column(
        enum_type(FrameworkVersionStatus, "fw_version_status_enum"),
        default=FrameworkVersionStatus.FINAL, nullable=False,
    )
    source_url: Mapped[str | None] = mapped_column(String(1000))
    published_by: Mapped[str | None] = mapped_column(String(200))
    published_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class Requirement(Base):
    """One obligation within a specific framework version."""
    __tablename__ = "requirements"
    __table_args__ = (
        UniqueConstraint("version_id", "requirement_id", name="uq_req_version_rid"),
        Index("ix_req_framework_rid", "framework_id", "requirement_id"),
        Index("ix_req_supersedes", "version_id", "supersedes"),
    )

    # Surrogate key used by mappings and drifts; requirement_id is the
    # framework-scoped identifier shown to operators.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    framework_id: Mapped[str] = mapped_column(
        ForeignKey("frameworks.id", ondelete="RESTRICT"), nullable=False,
    )
    version_id: Mapped[str] = mapped_column(
        ForeignKey("framework_versions.id", ondelete="RESTRICT"), nullable=False,
    )
    requirement_id: Mapped[str] = mapped_column(String(150), nullable=False)

    section_code: Mapped[str] = mapped_column(String(100), nullable=False)
    section_title: Mapped[str | None] = mapped_column(String(500))
    requirement_text: Mapped[str] = mapped_column(Text, nullable=False)
    requirement_summary: Mapped[str | None] = mapped_column(Text)

    category: Mapped[RequirementCategory] = mapped_column(
        enum_type(RequirementCategory, "req_category_enum"),
        default=RequirementCategory.TRADITIONAL, nullable=False,
    )
    control_family: Mapped[str | None] = mapped_column(String(200))
    risk_level: Mapped[RiskLevel] = mapped_column(
        enum_type(RiskLevel, "risk_level_enum"), default=RiskLevel.MEDIUM, nullable=False,
    )

    implementation_guidance: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    evidence_examples: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    keywords: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    related_requirements: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    parent_requirement_id: Mapped[str | None] = mapped_column(String(150))
    supersedes: Mapped[str | None] = mapped_column(String(150))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
