"""
Control Store models: the organization's mutable implementation record.

Tables: controls, control_evidence
"""
from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, enum_type
from .enums import ControlStatus, EvidenceState


class Control(Base):
    __tablename__ = "controls"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    control_number: Mapped[str | None] = mapped_column(String(50))
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    control_family: Mapped[str | None] = mapped_column(String(200))
    owner: Mapped[str | None] = mapped_column(String(200))

    status: Mapped[ControlStatus] = mapped_column(
        enum_type(ControlStatus, "control_status_enum"),
        default=ControlStatus.NOT_STARTED, nullable=False,
    )
    effectiveness_rating: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    deprecated_at: Mapped[datetime | None] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    evidence: Mapped[list["Evidence"]] = relationship(
        back_populates="control", cascade="all, delete-orphan",
        lazy="selectin", order_by="Evidence.id",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def has_verified_evidence(self) -> bool:
        return any(e.state == EvidenceState.VERIFIED for e in self.evidence)


class Evidence(Base):
    """Proof attached to a control (policy document, config export, audit log...)."""
    __tablename__ = "control_evidence"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    control_id: Mapped[str] = mapped_column(
        ForeignKey("controls.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    evidence_type: Mapped[str] = mapped_column(String(50), default="other", nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    file_url: Mapped[str | None] = mapped_column(String(1000))

    collected_date: Mapped[date] = mapped_column(Date, nullable=False)
    expiration_date: Mapped[date | None] = mapped_column(Date)
    collected_by: Mapped[str | None] = mapped_column(String(200))

    state: Mapped[EvidenceState] = mapped_column(
        enum_type(EvidenceState, "evidence_state_enum"),
        default=EvidenceState.PENDING, nullable=False,
    )
    verified_by: Mapped[str | None] = mapped_column(String(200))
    verified_at: Mapped[datetime | None] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    control: Mapped["Control"] = relationship(back_populates="evidence")
