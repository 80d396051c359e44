"""
Crosswalk Mapper: N:N links between requirement rows and controls.

Coverage is recomputed after every change to a mapping's links or to a linked
control. A recomputation that yields the same score and status writes nothing,
so the mapping's version stamp only moves on real changes.
"""
import asyncio
import logging
from collections import Counter, defaultdict
from collections.abc import Iterable
from datetime import date, datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from crosswalk.exceptions import ConcurrentModificationError, NotFoundError, ValidationError
from crosswalk.models.control import Control
from crosswalk.models.drift import ComplianceDrift
from crosswalk.models.enums import (
    DRIFT_TERMINAL,
    ComplianceStatus,
    ControlStatus,
    GapStatus,
    MappingReviewStatus,
    RiskLevel,
)
from crosswalk.models.framework import Requirement
from crosswalk.models.mapping import Mapping, MappingControl, MappingGap
from crosswalk.schemas.mapping import (
    CategoryScore,
    CrosswalkSummary,
    FrameworkScore,
    MappingCreate,
    MappingLinkIn,
    MappingUpdate,
    RecomputeResult,
)
from crosswalk.services.coverage import aspect_set, compute_coverage
from crosswalk.services.framework_store import get_requirement
from crosswalk.services.gap_analysis import GapAnalysis, analyze_gap

log = logging.getLogger(__name__)


async def load_controls(s: AsyncSession, control_ids: Iterable[str]) -> dict[str, Control]:
    ids = sorted(set(control_ids))
    if not ids:
        return {}
    rows = (await s.execute(select(Control).where(Control.id.in_(ids)))).scalars().all()
    return {c.id: c for c in rows}


async def get_mapping(s: AsyncSession, mapping_id: int) -> Mapping:
    mapping = await s.get(Mapping, mapping_id)
    if not mapping:
        raise NotFoundError(f"Mapping {mapping_id} not found", mapping_id=mapping_id)
    return mapping


async def find_mapping_for_requirement(s: AsyncSession, requirement_pk: int) -> Mapping | None:
    q = select(Mapping).where(Mapping.requirement_pk == requirement_pk)
    return (await s.execute(q)).scalars().first()


async def list_mappings(
    s: AsyncSession,
    framework_id: str | None = None,
    version_id: str | None = None,
    compliance_status: ComplianceStatus | None = None,
    review_status: MappingReviewStatus | None = None,
) -> list[tuple[Mapping, Requirement]]:
    q = select(Mapping, Requirement).join(Requirement, Mapping.requirement_pk == Requirement.id)
    if framework_id:
        q = q.where(Requirement.framework_id == framework_id)
    if version_id:
        q = q.where(Requirement.version_id == version_id)
    if compliance_status:
        q = q.where(Mapping.compliance_status == compliance_status)
    if review_status:
        q = q.where(Mapping.review_status == review_status)
    rows = (await s.execute(q.order_by(Mapping.id))).all()
    return [(m, r) for m, r in rows]


# ═══════════════════ Coverage ═══════════════════

async def recompute_mapping(s: AsyncSession, mapping: Mapping, now: datetime | None = None) -> bool:
    """Refresh score and status in the session. Returns True if anything changed."""
    requirement = await s.get(Requirement, mapping.requirement_pk)
    controls = await load_controls(s, mapping.control_ids)
    result = compute_coverage(mapping.links, requirement.keywords, controls, mapping.not_applicable)

    if (
        mapping.coverage_score == result.coverage_score
        and mapping.compliance_status == result.compliance_status
        and mapping.last_computed_at is not None
    ):
        return False

    mapping.coverage_score = result.coverage_score
    mapping.compliance_status = result.compliance_status
    mapping.last_computed_at = now or datetime.utcnow()
    return True


async def mappings_for_control(s: AsyncSession, control_id: str, include_deprecated: bool = False) -> list[Mapping]:
    q = (
        select(Mapping)
        .join(MappingControl, MappingControl.mapping_id == Mapping.id)
        .where(MappingControl.control_id == control_id)
        .order_by(Mapping.id)
    )
    if not include_deprecated:
        q = q.where(Mapping.review_status != MappingReviewStatus.DEPRECATED)
    return list((await s.execute(q)).scalars().unique().all())


async def recompute_mappings_for_control(s: AsyncSession, control_id: str) -> list[Mapping]:
    mappings = await mappings_for_control(s, control_id)
    now = datetime.utcnow()
    for mapping in mappings:
        await recompute_mapping(s, mapping, now)
    return mappings


async def recompute_all(
    session_factory: async_sessionmaker[AsyncSession], concurrency: int = 4,
) -> RecomputeResult:
    """Recompute every live mapping, one session per mapping, bounded in parallel."""
    async with session_factory() as s:
        ids = list((await s.execute(
            select(Mapping.id)
            .where(Mapping.review_status != MappingReviewStatus.DEPRECATED)
            .order_by(Mapping.id)
        )).scalars().all())

    result = RecomputeResult(total=len(ids))
    sem = asyncio.Semaphore(max(1, concurrency))

    async def _one(mapping_id: int) -> None:
        async with sem, session_factory() as s:
            mapping = await s.get(Mapping, mapping_id)
            if mapping is None:
                return
            try:
                if await recompute_mapping(s, mapping):
                    await s.commit()
                    result.changed += 1
            except StaleDataError:
                await s.rollback()
                result.conflicts += 1
                log.warning("Mapping %s changed during recomputation, skipped", mapping_id)

    await asyncio.gather(*(_one(mid) for mid in ids))
    log.info("Recomputed %d mappings (%d changed, %d conflicts)", result.total, result.changed, result.conflicts)
    return result


# ═══════════════════ Create / update ═══════════════════

async def _validate_links(s: AsyncSession, links: list[MappingLinkIn]) -> None:
    ids = [link.control_id for link in links]
    duplicates = sorted({cid for cid in ids if ids.count(cid) > 1})
    if duplicates:
        raise ValidationError("A control is linked more than once", control_ids=duplicates)

    out_of_range = sorted(link.control_id for link in links if not 0 <= link.contribution_weight <= 100)
    if out_of_range:
        raise ValidationError("contribution_weight must be between 0 and 100", control_ids=out_of_range)

    controls = await load_controls(s, ids)
    missing = sorted(set(ids) - set(controls))
    if missing:
        raise NotFoundError("Unknown control", control_ids=missing)
    deprecated = sorted(cid for cid, c in controls.items() if c.status == ControlStatus.DEPRECATED)
    if deprecated:
        raise ValidationError("Deprecated controls cannot be linked", control_ids=deprecated)


async def create_mapping(s: AsyncSession, data: MappingCreate) -> Mapping:
    requirement = await get_requirement(s, data.framework_id, data.requirement_id, data.version_id)
    existing = await find_mapping_for_requirement(s, requirement.id)
    if existing:
        raise ValidationError(
            f"Requirement '{data.requirement_id}' is already mapped", mapping_id=existing.id,
        )
    await _validate_links(s, data.links)

    mapping = Mapping(
        requirement_pk=requirement.id,
        not_applicable=data.not_applicable,
        coverage_justification=data.coverage_justification,
        notes=data.notes,
        created_by=data.created_by,
        links=[
            MappingControl(
                control_id=link.control_id,
                contribution_weight=link.contribution_weight,
                coverage_aspects=list(link.coverage_aspects),
            )
            for link in data.links
        ],
    )
    s.add(mapping)
    await recompute_mapping(s, mapping)
    await s.commit()
    log.info(
        "Mapping %s created for %s/%s (%d controls, score %.2f)",
        mapping.id, data.version_id, data.requirement_id, len(mapping.links), mapping.coverage_score,
    )
    return mapping


def _replace_links(mapping: Mapping, links: list[MappingLinkIn]) -> None:
    # Edit in place: a delete-and-reinsert of the same control would hit the
    # (mapping_id, control_id) unique constraint inside one flush.
    wanted = {link.control_id: link for link in links}
    for existing in list(mapping.links):
        if existing.control_id not in wanted:
            mapping.links.remove(existing)
    current = {link.control_id: link for link in mapping.links}
    for cid, link in wanted.items():
        row = current.get(cid)
        if row is None:
            mapping.links.append(MappingControl(
                control_id=cid,
                contribution_weight=link.contribution_weight,
                coverage_aspects=list(link.coverage_aspects),
            ))
        else:
            row.contribution_weight = link.contribution_weight
            row.coverage_aspects = list(link.coverage_aspects)


async def update_mapping(s: AsyncSession, mapping_id: int, data: MappingUpdate) -> Mapping:
    mapping = await get_mapping(s, mapping_id)
    if mapping.version != data.expected_version:
        raise ConcurrentModificationError(
            "Mapping was modified concurrently",
            mapping_id=mapping_id, expected=data.expected_version, actual=mapping.version,
        )
    if mapping.review_status == MappingReviewStatus.DEPRECATED:
        raise ValidationError("Deprecated mappings are read-only", mapping_id=mapping_id)
    if data.review_status == MappingReviewStatus.DEPRECATED:
        raise ValidationError("Mappings are deprecated by carry-forward only", mapping_id=mapping_id)

    if data.links is not None:
        await _validate_links(s, data.links)
        _replace_links(mapping, data.links)
    if data.not_applicable is not None:
        mapping.not_applicable = data.not_applicable
    if data.review_status is not None:
        mapping.review_status = data.review_status
    if data.coverage_justification is not None:
        mapping.coverage_justification = data.coverage_justification
    if data.notes is not None:
        mapping.notes = data.notes

    # Link-only edits must still move the version stamp
    mapping.updated_at = datetime.utcnow()
    await recompute_mapping(s, mapping)
    try:
        await s.commit()
    except StaleDataError as exc:
        await s.rollback()
        raise ConcurrentModificationError("Mapping was modified concurrently", mapping_id=mapping_id) from exc

    log.info("Mapping %s updated (v%d, score %.2f)", mapping.id, mapping.version, mapping.coverage_score)
    return mapping


async def carry_forward(
    s: AsyncSession, old: Mapping, new_requirement: Requirement, actor: str | None = None,
) -> Mapping:
    """Copy a mapping onto the superseding requirement and retire the old one.

    Links to deprecated controls are not copied. Idempotent: an existing
    mapping for the new requirement is reused. The caller commits.
    """
    mapping = await find_mapping_for_requirement(s, new_requirement.id)
    if mapping is None:
        controls = await load_controls(s, old.control_ids)
        mapping = Mapping(
            requirement_pk=new_requirement.id,
            not_applicable=old.not_applicable,
            coverage_justification=old.coverage_justification,
            notes=old.notes,
            created_by=actor,
            carried_from_mapping_id=old.id,
            links=[
                MappingControl(
                    control_id=link.control_id,
                    contribution_weight=link.contribution_weight,
                    coverage_aspects=list(link.coverage_aspects),
                )
                for link in old.links
                if link.control_id in controls and controls[link.control_id].status != ControlStatus.DEPRECATED
            ],
        )
        s.add(mapping)
        await s.flush()
        log.info(
            "Mapping %s carried forward to %s/%s as mapping %s",
            old.id, new_requirement.version_id, new_requirement.requirement_id, mapping.id,
        )
    await recompute_mapping(s, mapping)
    if old.review_status != MappingReviewStatus.DEPRECATED:
        old.review_status = MappingReviewStatus.DEPRECATED
    return mapping


async def map_from_suggestions(
    s: AsyncSession, requirement: Requirement, suggestions: list[dict], actor: str | None = None,
) -> Mapping | None:
    """Map a new requirement to the controls a drift scan suggested for it.

    Each live suggested control becomes a link weighted by its match confidence,
    declaring the matched requirement keywords as its aspects. An existing
    mapping is reused; nothing is created when no suggested control is live.
    The caller commits.
    """
    mapping = await find_mapping_for_requirement(s, requirement.id)
    if mapping is not None:
        return mapping

    controls = await load_controls(s, [sg["control_id"] for sg in suggestions])
    keywords = aspect_set(requirement.keywords)
    links = [
        MappingControl(
            control_id=sg["control_id"],
            contribution_weight=round(sg["confidence"]),
            coverage_aspects=[term for term in sg.get("matched_terms", []) if term in keywords],
        )
        for sg in suggestions
        if sg["control_id"] in controls and controls[sg["control_id"]].status != ControlStatus.DEPRECATED
    ]
    if not links:
        return None

    mapping = Mapping(
        requirement_pk=requirement.id,
        created_by=actor,
        notes="Mapped from drift scan suggestions",
        links=links,
    )
    s.add(mapping)
    await s.flush()
    await recompute_mapping(s, mapping)
    log.info(
        "Mapping %s created for new requirement %s/%s from %d suggested controls",
        mapping.id, requirement.version_id, requirement.requirement_id, len(links),
    )
    return mapping


# ═══════════════════ Gap analysis ═══════════════════

async def gap_analysis(s: AsyncSession, mapping_id: int, as_of: date | None = None) -> GapAnalysis:
    mapping = await get_mapping(s, mapping_id)
    requirement = await s.get(Requirement, mapping.requirement_pk)
    controls = await load_controls(s, mapping.control_ids)
    return analyze_gap(mapping, requirement, controls, as_of)


async def list_gap_records(
    s: AsyncSession, status: GapStatus | None = GapStatus.OPEN, mapping_id: int | None = None,
) -> list[MappingGap]:
    q = select(MappingGap)
    if status:
        q = q.where(MappingGap.status == status)
    if mapping_id:
        q = q.where(MappingGap.mapping_id == mapping_id)
    return list((await s.execute(q.order_by(MappingGap.id))).scalars().all())


# ═══════════════════ Summary ═══════════════════

async def crosswalk_summary(s: AsyncSession) -> CrosswalkSummary:
    rows = await list_mappings(s)
    live = [(m, r) for m, r in rows if m.review_status != MappingReviewStatus.DEPRECATED]

    summary = CrosswalkSummary(total_mappings=len(live))
    status_counts = Counter(m.compliance_status.value for m, _ in live)
    summary.by_status = {st.value: status_counts.get(st.value, 0) for st in ComplianceStatus}
    summary.pending_review_mappings = sum(
        1 for m, _ in live if m.review_status == MappingReviewStatus.PENDING_REVIEW
    )

    applicable = [(m, r) for m, r in live if not m.not_applicable]
    if applicable:
        summary.overall_score = round(sum(m.coverage_score for m, _ in applicable) / len(applicable), 2)

    by_fw: dict[str, list[Mapping]] = defaultdict(list)
    for m, r in live:
        by_fw[r.framework_id].append(m)
    for fid in sorted(by_fw):
        ms = by_fw[fid]
        scored = [m.coverage_score for m in ms if not m.not_applicable]
        counts = Counter(m.compliance_status for m in ms)
        summary.frameworks.append(FrameworkScore(
            framework_id=fid,
            mapping_count=len(ms),
            average_score=round(sum(scored) / len(scored), 2) if scored else 0.0,
            compliant=counts[ComplianceStatus.COMPLIANT],
            partial=counts[ComplianceStatus.PARTIAL],
            non_compliant=counts[ComplianceStatus.NON_COMPLIANT],
            not_applicable=counts[ComplianceStatus.NOT_APPLICABLE],
        ))

    by_cat: dict = defaultdict(list)
    for m, r in applicable:
        by_cat[r.category].append(m.coverage_score)
    for cat in sorted(by_cat, key=lambda c: c.value):
        scores = by_cat[cat]
        summary.categories.append(CategoryScore(
            category=cat, mapping_count=len(scores), average_score=round(sum(scores) / len(scores), 2),
        ))

    all_control_ids = {cid for m, _ in applicable for cid in m.control_ids}
    controls = await load_controls(s, all_control_ids)
    for m, r in applicable:
        if m.compliance_status == ComplianceStatus.COMPLIANT:
            continue
        priority = analyze_gap(m, r, controls).priority
        if priority == RiskLevel.CRITICAL:
            summary.critical_gaps += 1
        elif priority == RiskLevel.HIGH:
            summary.high_gaps += 1

    summary.open_gap_records = (await s.execute(
        select(func.count(MappingGap.id)).where(MappingGap.status == GapStatus.OPEN)
    )).scalar() or 0

    open_drifts = (await s.execute(
        select(ComplianceDrift).where(ComplianceDrift.status.notin_(list(DRIFT_TERMINAL)))
    )).scalars().all()
    summary.open_drifts = len(open_drifts)

    needing_update = {cid for d in open_drifts for cid in d.affected_control_ids}
    needing_update |= set((await s.execute(
        select(Control.id).where(Control.status == ControlStatus.NEEDS_REVIEW)
    )).scalars().all())
    summary.controls_needing_update = sorted(needing_update)
    return summary
