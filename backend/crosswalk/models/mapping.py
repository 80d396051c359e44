"""
Crosswalk models: N:N links between requirement rows and controls.

Tables: mappings, mapping_controls, mapping_gaps

A mapping belongs to exactly one requirement row (one framework version).
When a requirement is superseded the mapping is carried forward as a new row
for the superseding requirement; the old row is kept and marked deprecated.
"""
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, enum_type
from .enums import ComplianceStatus, GapStatus, GapType, MappingReviewStatus, RiskLevel


class Mapping(Base):
    __tablename__ = "mappings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    requirement_pk: Mapped[int] = mapped_column(
        ForeignKey("requirements.id", ondelete="RESTRICT"), nullable=False, unique=True,
    )

    not_applicable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    coverage_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    compliance_status: Mapped[ComplianceStatus] = mapped_column(
        enum_type(ComplianceStatus, "compliance_status_enum"),
        default=ComplianceStatus.NON_COMPLIANT, nullable=False,
    )
    review_status: Mapped[MappingReviewStatus] = mapped_column(
        enum_type(MappingReviewStatus, "mapping_review_status_enum"),
        default=MappingReviewStatus.ACTIVE, nullable=False,
    )
    carried_from_mapping_id: Mapped[int | None] = mapped_column(
        ForeignKey("mappings.id", ondelete="SET NULL"),
    )

    coverage_justification: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String(200))
    last_computed_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    links: Mapped[list["MappingControl"]] = relationship(
        back_populates="mapping", cascade="all, delete-orphan",
        lazy="selectin", order_by="MappingControl.control_id",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def control_ids(self) -> list[str]:
        return [link.control_id for link in self.links]


class MappingControl(Base):
    """One control's contribution to a mapping."""
    __tablename__ = "mapping_controls"
    __table_args__ = (
        UniqueConstraint("mapping_id", "control_id", name="uq_mapping_control"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mapping_id: Mapped[int] = mapped_column(
        ForeignKey("mappings.id", ondelete="CASCADE"), nullable=False,
    )
    control_id: Mapped[str] = mapped_column(
        ForeignKey("controls.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    contribution_weight: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    coverage_aspects: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    mapping: Mapped["Mapping"] = relationship(back_populates="links")


class MappingGap(Base):
    """A flagged coverage problem on a mapping, e.g. a deprecated control."""
    __tablename__ = "mapping_gaps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mapping_id: Mapped[int] = mapped_column(
        ForeignKey("mappings.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    control_id: Mapped[str | None] = mapped_column(String(100))
    gap_type: Mapped[GapType] = mapped_column(enum_type(GapType, "gap_type_enum"), nullable=False)
    severity: Mapped[RiskLevel] = mapped_column(
        enum_type(RiskLevel, "gap_severity_enum"), default=RiskLevel.MEDIUM, nullable=False,
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[GapStatus] = mapped_column(
        enum_type(GapStatus, "gap_status_enum"), default=GapStatus.OPEN, nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime)
