"""
Compliance drift models.

Tables: compliance_drifts, drift_required_actions, drift_transitions

One drift row per (requirement_id, previous_version_id, new_version_id),
enforced by a unique constraint. Rows in a terminal status are only touched
through audit fields (resolution_notes, transitions).
"""
from datetime import date, datetime

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, enum_type
from .enums import (
    ActionStatus,
    DriftChangeType,
    DriftStatus,
    RequiredActionType,
    RiskLevel,
    Significance,
)


class ComplianceDrift(Base):
    __tablename__ = "compliance_drifts"
    __table_args__ = (
        UniqueConstraint(
            "requirement_id", "previous_version_id", "new_version_id", name="uq_drift_req_versions",
        ),
        Index("ix_drift_framework_status", "framework_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    framework_id: Mapped[str] = mapped_column(ForeignKey("frameworks.id"), nullable=False)
    requirement_id: Mapped[str] = mapped_column(String(150), nullable=False)
    requirement_pk: Mapped[int] = mapped_column(ForeignKey("requirements.id"), nullable=False)
    # None for a requirement that is new in new_version_id
    previous_requirement_pk: Mapped[int | None] = mapped_column(ForeignKey("requirements.id"))
    previous_version_id: Mapped[str] = mapped_column(ForeignKey("framework_versions.id"), nullable=False)
    new_version_id: Mapped[str] = mapped_column(ForeignKey("framework_versions.id"), nullable=False)

    change_type: Mapped[DriftChangeType] = mapped_column(
        enum_type(DriftChangeType, "drift_change_type_enum"), nullable=False,
    )
    significance: Mapped[Significance] = mapped_column(
        enum_type(Significance, "significance_enum"), nullable=False,
    )
    impact_level: Mapped[RiskLevel] = mapped_column(
        enum_type(RiskLevel, "drift_impact_enum"), nullable=False,
    )
    change_summary: Mapped[str] = mapped_column(Text, nullable=False)
    comparison: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    affected_control_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    suggested_mappings: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    compliance_deadline: Mapped[date | None] = mapped_column(Date)

    status: Mapped[DriftStatus] = mapped_column(
        enum_type(DriftStatus, "drift_status_enum"), default=DriftStatus.DETECTED, nullable=False,
    )
    assigned_to: Mapped[str | None] = mapped_column(String(200))
    due_date: Mapped[date | None] = mapped_column(Date)
    resolution_notes: Mapped[str | None] = mapped_column(Text)

    detected_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    acknowledged_by: Mapped[str | None] = mapped_column(String(200))
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime)
    resolved_by: Mapped[str | None] = mapped_column(String(200))
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    required_actions: Mapped[list["RequiredAction"]] = relationship(
        back_populates="drift", cascade="all, delete-orphan",
        lazy="selectin", order_by="RequiredAction.id",
    )
    transitions: Mapped[list["DriftTransition"]] = relationship(
        back_populates="drift", cascade="all, delete-orphan",
        lazy="selectin", order_by="DriftTransition.id",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def days_remaining(self) -> int | None:
        if self.compliance_deadline is None:
            return None
        return (self.compliance_deadline - date.today()).days


class RequiredAction(Base):
    __tablename__ = "drift_required_actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    drift_id: Mapped[int] = mapped_column(
        ForeignKey("compliance_drifts.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    action_type: Mapped[RequiredActionType] = mapped_column(
        enum_type(RequiredActionType, "required_action_type_enum"), nullable=False,
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[RiskLevel] = mapped_column(
        enum_type(RiskLevel, "action_priority_enum"), default=RiskLevel.MEDIUM, nullable=False,
    )
    deadline: Mapped[date | None] = mapped_column(Date)
    assigned_to: Mapped[str | None] = mapped_column(String(200))
    status: Mapped[ActionStatus] = mapped_column(
        enum_type(ActionStatus, "action_status_enum"), default=ActionStatus.PENDING, nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    drift: Mapped["ComplianceDrift"] = relationship(back_populates="required_actions")


class DriftTransition(Base):
    """Audit trail of drift status changes."""
    __tablename__ = "drift_transitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    drift_id: Mapped[int] = mapped_column(
        ForeignKey("compliance_drifts.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    from_status: Mapped[DriftStatus | None] = mapped_column(enum_type(DriftStatus, "drift_from_status_enum"))
    to_status: Mapped[DriftStatus] = mapped_column(
        enum_type(DriftStatus, "drift_to_status_enum"), nullable=False,
    )
    actor: Mapped[str | None] = mapped_column(String(200))
    note: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    drift: Mapped["ComplianceDrift"] = relationship(back_populates="transitions")
