"""
Control Store: the organization's mutable implementation record.

Every write that can change coverage (control fields, status, evidence)
recomputes the mappings linking the affected control in the same transaction.
"""
import logging
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from crosswalk.exceptions import (
    ConcurrentModificationError,
    InvalidStateTransition,
    NotFoundError,
    ValidationError,
)
from crosswalk.models.control import Control, Evidence
from crosswalk.models.enums import (
    CONTROL_TRANSITIONS,
    ControlStatus,
    EvidenceState,
    GapType,
    MappingReviewStatus,
    RiskLevel,
)
from crosswalk.models.framework import Requirement
from crosswalk.models.mapping import Mapping, MappingControl, MappingGap
from crosswalk.schemas.control import ControlRequirementOut, ControlUpsert, EvidenceCreate
from crosswalk.services.crosswalk import (
    mappings_for_control,
    recompute_mapping,
    recompute_mappings_for_control,
)

log = logging.getLogger(__name__)


async def get_control(s: AsyncSession, control_id: str) -> Control:
    control = await s.get(Control, control_id)
    if not control:
        raise NotFoundError(f"Control '{control_id}' not found", control_id=control_id)
    return control


async def list_controls(s: AsyncSession, status: ControlStatus | None = None) -> list[Control]:
    q = select(Control)
    if status:
        q = q.where(Control.status == status)
    return list((await s.execute(q.order_by(Control.id))).scalars().all())


def _validate_evidence(items: list[EvidenceCreate]) -> None:
    for item in items:
        if item.expiration_date and item.expiration_date <= item.collected_date:
            raise ValidationError(
                "Evidence expiration_date must be after collected_date",
                title=item.title,
                collected_date=item.collected_date.isoformat(),
                expiration_date=item.expiration_date.isoformat(),
            )


def _evidence_row(item: EvidenceCreate) -> Evidence:
    row = Evidence(**item.model_dump())
    if item.state == EvidenceState.VERIFIED:
        row.verified_at = datetime.utcnow()
    return row


async def _commit(s: AsyncSession, control_id: str) -> None:
    try:
        await s.commit()
    except StaleDataError as exc:
        await s.rollback()
        raise ConcurrentModificationError("Control was modified concurrently", control_id=control_id) from exc


async def upsert_control(s: AsyncSession, control_id: str, data: ControlUpsert) -> Control:
    """Create or replace a control, then recompute every mapping that links it."""
    if not 1 <= data.effectiveness_rating <= 5:
        raise ValidationError(
            "effectiveness_rating must be between 1 and 5", effectiveness_rating=data.effectiveness_rating,
        )
    if data.evidence is not None:
        _validate_evidence(data.evidence)

    control = await s.get(Control, control_id)
    fields = data.model_dump(exclude={"evidence", "expected_version", "status"})

    if control is None:
        if data.expected_version is not None:
            raise NotFoundError(f"Control '{control_id}' not found", control_id=control_id)
        if data.status == ControlStatus.DEPRECATED:
            raise ValidationError("A new control cannot start deprecated", control_id=control_id)
        control = Control(id=control_id, status=data.status, **fields)
        control.evidence = [_evidence_row(e) for e in data.evidence or []]
        s.add(control)
        await _commit(s, control_id)
        log.info("Control %s created (%s)", control_id, data.status.value)
        return control

    if data.expected_version is not None and control.version != data.expected_version:
        raise ConcurrentModificationError(
            "Control was modified concurrently",
            control_id=control_id, expected=data.expected_version, actual=control.version,
        )
    if control.status == ControlStatus.DEPRECATED:
        raise ValidationError("Deprecated controls are read-only", control_id=control_id)
    if data.status != control.status and data.status not in CONTROL_TRANSITIONS[control.status]:
        raise ValidationError(
            f"Illegal control status transition '{control.status.value}' -> '{data.status.value}'",
            control_id=control_id, current=control.status.value, requested=data.status.value,
        )

    for key, value in fields.items():
        setattr(control, key, value)
    if data.evidence is not None:
        control.evidence = [_evidence_row(e) for e in data.evidence]
    # Force a row update so evidence-only edits move the version stamp
    control.updated_at = datetime.utcnow()

    if data.status == ControlStatus.DEPRECATED:
        await _deprecate(s, control, reason=None)
    else:
        control.status = data.status
        await s.flush()
        await recompute_mappings_for_control(s, control_id)

    await _commit(s, control_id)
    log.info("Control %s updated (v%d, %s)", control_id, control.version, control.status.value)
    return control


async def _deprecate(s: AsyncSession, control: Control, reason: str | None) -> list[MappingGap]:
    control.status = ControlStatus.DEPRECATED
    control.deprecated_at = datetime.utcnow()
    await s.flush()

    gaps = []
    for mapping in await mappings_for_control(s, control.id):
        if mapping.review_status == MappingReviewStatus.ACTIVE:
            mapping.review_status = MappingReviewStatus.PENDING_REVIEW
        gap = MappingGap(
            mapping_id=mapping.id,
            control_id=control.id,
            gap_type=GapType.CONTROL_DEPRECATED,
            severity=RiskLevel.HIGH,
            description=reason or f"Control {control.id} was deprecated; mapping needs review",
        )
        s.add(gap)
        gaps.append(gap)
        await recompute_mapping(s, mapping)
    return gaps


async def deprecate_control(
    s: AsyncSession,
    control_id: str,
    reason: str | None = None,
    expected_version: int | None = None,
) -> tuple[Control, list[MappingGap]]:
    """One-way. Linked mappings go to pending_review with a high-severity gap each."""
    control = await get_control(s, control_id)
    if control.status == ControlStatus.DEPRECATED:
        raise InvalidStateTransition(f"Control '{control_id}' is already deprecated", control_id=control_id)
    if expected_version is not None and control.version != expected_version:
        raise ConcurrentModificationError(
            "Control was modified concurrently",
            control_id=control_id, expected=expected_version, actual=control.version,
        )

    gaps = await _deprecate(s, control, reason)
    await _commit(s, control_id)
    log.info("Control %s deprecated, %d mappings flagged for review", control_id, len(gaps))
    return control, gaps


# ═══════════════════ Evidence ═══════════════════

async def add_evidence(s: AsyncSession, control_id: str, data: EvidenceCreate) -> Evidence:
    control = await get_control(s, control_id)
    _validate_evidence([data])
    row = _evidence_row(data)
    control.evidence.append(row)
    await s.flush()
    await recompute_mappings_for_control(s, control_id)
    await _commit(s, control_id)
    log.info("Evidence %s added to control %s (%s)", row.id, control_id, row.state.value)
    return row


async def set_evidence_state(
    s: AsyncSession, evidence_id: int, state: EvidenceState, actor: str | None = None,
) -> Evidence:
    row = await s.get(Evidence, evidence_id)
    if not row:
        raise NotFoundError(f"Evidence {evidence_id} not found", evidence_id=evidence_id)
    if (
        state == EvidenceState.VERIFIED
        and row.expiration_date is not None
        and row.expiration_date < date.today()
    ):
        raise ValidationError("Expired evidence cannot be verified", evidence_id=evidence_id)

    row.state = state
    if state == EvidenceState.VERIFIED:
        row.verified_by = actor
        row.verified_at = datetime.utcnow()
    await s.flush()
    await recompute_mappings_for_control(s, row.control_id)
    await _commit(s, row.control_id)
    log.info("Evidence %s of control %s set to %s by %s", evidence_id, row.control_id, state.value, actor)
    return row


async def expire_evidence(s: AsyncSession, as_of: date | None = None) -> tuple[list[int], int]:
    """Mark evidence past its expiration date as expired and recompute coverage.

    Returns the expired evidence ids and the number of mappings recomputed.
    """
    as_of = as_of or date.today()
    rows = (await s.execute(
        select(Evidence).where(
            Evidence.expiration_date.is_not(None),
            Evidence.expiration_date < as_of,
            Evidence.state.in_([EvidenceState.PENDING, EvidenceState.VERIFIED]),
        ).order_by(Evidence.id)
    )).scalars().all()

    for row in rows:
        row.state = EvidenceState.EXPIRED
    await s.flush()

    recomputed = 0
    for control_id in sorted({row.control_id for row in rows}):
        recomputed += len(await recompute_mappings_for_control(s, control_id))
    await s.commit()

    if rows:
        log.info("Expired %d evidence items as of %s, %d mappings recomputed", len(rows), as_of, recomputed)
    return [row.id for row in rows], recomputed


# ═══════════════════ Inverse lookup ═══════════════════

async def requirements_for_control(s: AsyncSession, control_id: str) -> list[ControlRequirementOut]:
    await get_control(s, control_id)
    q = (
        select(MappingControl, Mapping, Requirement)
        .join(Mapping, MappingControl.mapping_id == Mapping.id)
        .join(Requirement, Mapping.requirement_pk == Requirement.id)
        .where(MappingControl.control_id == control_id)
        .order_by(Requirement.framework_id, Requirement.version_id, Requirement.requirement_id)
    )
    return [
        ControlRequirementOut(
            mapping_id=m.id,
            requirement_pk=r.id,
            framework_id=r.framework_id,
            version_id=r.version_id,
            requirement_id=r.requirement_id,
            section_title=r.section_title,
            contribution_weight=link.contribution_weight,
            coverage_aspects=link.coverage_aspects,
            compliance_status=m.compliance_status,
            review_status=m.review_status,
        )
        for link, m, r in (await s.execute(q)).all()
    ]
