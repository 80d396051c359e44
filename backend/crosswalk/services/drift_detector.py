"""
Drift Detector: finds requirement changes between two adjacent framework
versions and tracks each one through the resolution state machine:

    detected -> acknowledged -> remediation_planned -> in_remediation -> resolved
                    \\------------------------------------------------> resolved
    any non-terminal state -> risk_accepted

A scan commits one requirement at a time. Cancelling it keeps what was already
committed and a re-run continues where it stopped, because drifts that already
exist for the (requirement, old version, new version) tuple are reused.

A requirement with no predecessor is recorded as a new-requirement drift with
the controls whose wording overlaps it as suggested mappings. Every drift is
due by the new version's effective date.
"""
import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from crosswalk.exceptions import (
    ConcurrentModificationError,
    DuplicateDriftError,
    InvalidStateTransition,
    NotFoundError,
    ValidationError,
)
from crosswalk.models.control import Control
from crosswalk.models.drift import ComplianceDrift, DriftTransition, RequiredAction
from crosswalk.models.enums import (
    DRIFT_TERMINAL,
    DRIFT_TRANSITIONS,
    SEVERITY_RANK,
    ControlStatus,
    DriftChangeType,
    DriftStatus,
    MappingReviewStatus,
    RequiredActionType,
    RequirementCategory,
    RequirementUpdateDecision,
    RiskLevel,
    Significance,
)
from crosswalk.models.framework import Requirement
from crosswalk.models.mapping import Mapping, MappingControl
from crosswalk.schemas.drift import (
    DriftNotification,
    DriftRecommendation,
    DriftScanResult,
    DriftStats,
    RequiredActionIn,
)
from crosswalk.schemas.framework import RequirementComparisonOut, TextDiffSegmentOut
from crosswalk.services import framework_store
from crosswalk.services.coverage import aspect_set, normalize_aspect
from crosswalk.services.crosswalk import (
    carry_forward,
    find_mapping_for_requirement,
    map_from_suggestions,
    recompute_mapping,
)
from crosswalk.services.scan_locks import ScanLockRegistry
from crosswalk.services.text_diff import MODAL_TOKENS, TextDiff, diff, words

log = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
AUTO_RESOLVE_NOTE = "Auto-resolved: no active controls were mapped to the superseded requirement"
DEFAULT_REJECT_REASON = "Requirement update rejected by operator"

MIN_SUGGESTION_CONFIDENCE = 30.0
MAX_SUGGESTIONS = 5
_STOP_WORDS = frozenset({
    "and", "for", "the", "with", "from", "into", "that", "this", "are", "all", "any", "its", "their",
})

IMPACT_BY_SIGNIFICANCE: dict[Significance, RiskLevel] = {
    Significance.BREAKING: RiskLevel.HIGH,
    Significance.SUBSTANTIVE: RiskLevel.MEDIUM,
    Significance.CLARIFICATION: RiskLevel.LOW,
    Significance.COSMETIC: RiskLevel.LOW,
}

_ESCALATE: dict[RiskLevel, RiskLevel] = {
    RiskLevel.LOW: RiskLevel.MEDIUM,
    RiskLevel.MEDIUM: RiskLevel.HIGH,
    RiskLevel.HIGH: RiskLevel.CRITICAL,
    RiskLevel.CRITICAL: RiskLevel.CRITICAL,
}


# ═══════════════════ Comparison rules ═══════════════════

@dataclass
class RequirementComparison:
    old: Requirement
    new: Requirement
    text: TextDiff
    keywords_added: list[str] = field(default_factory=list)
    keywords_removed: list[str] = field(default_factory=list)
    change_type: DriftChangeType | None = None

    @property
    def has_changes(self) -> bool:
        return self.text.has_changes

    def as_dict(self) -> dict:
        return {
            "significance": self.text.significance.value,
            "added_words": self.text.added_words,
            "removed_words": self.text.removed_words,
            "keywords_added": self.keywords_added,
            "keywords_removed": self.keywords_removed,
            "segments": [
                {
                    "kind": seg.kind.value,
                    "old_text": seg.old_text,
                    "new_text": seg.new_text,
                    "significance": seg.significance.value,
                }
                for seg in self.text.segments
            ],
        }


def classify_change(text: TextDiff, old_text: str, new_text: str) -> DriftChangeType:
    """strengthened: substantive/breaking and the new text adds more than it drops."""
    if (
        text.significance in (Significance.SUBSTANTIVE, Significance.BREAKING)
        and len(new_text) > len(old_text)
        and text.added_words > text.removed_words
    ):
        return DriftChangeType.REQUIREMENT_STRENGTHENED
    if text.significance == Significance.CLARIFICATION:
        return DriftChangeType.REQUIREMENT_CLARIFIED
    return DriftChangeType.REQUIREMENT_MODIFIED


def impact_for(significance: Significance, risk_level: RiskLevel) -> RiskLevel:
    impact = IMPACT_BY_SIGNIFICANCE[significance]
    if (
        risk_level in (RiskLevel.CRITICAL, RiskLevel.HIGH)
        and significance in (Significance.BREAKING, Significance.SUBSTANTIVE)
    ):
        impact = _ESCALATE[impact]
    return impact


def compare_requirements(old: Requirement, new: Requirement) -> RequirementComparison:
    text = diff(old.requirement_text, new.requirement_text)
    old_kw, new_kw = aspect_set(old.keywords), aspect_set(new.keywords)
    comparison = RequirementComparison(
        old=old,
        new=new,
        text=text,
        keywords_added=sorted(new_kw - old_kw),
        keywords_removed=sorted(old_kw - new_kw),
    )
    if text.has_changes:
        comparison.change_type = classify_change(text, old.requirement_text, new.requirement_text)
    return comparison


def summarize(comparison: RequirementComparison) -> str:
    text = comparison.text
    parts = [
        f"{comparison.new.requirement_id}: {text.significance.value} change "
        f"(+{text.added_words}/-{text.removed_words} words)"
    ]
    if comparison.keywords_added:
        parts.append("new keywords: " + ", ".join(comparison.keywords_added))
    if comparison.keywords_removed:
        parts.append("dropped keywords: " + ", ".join(comparison.keywords_removed))
    return "; ".join(parts)


# ═══════════════════ New requirements ═══════════════════

def _terms(text: str) -> set[str]:
    return {normalize_aspect(w) for w in words(text) if len(w) > 2 and w not in _STOP_WORDS}


def requirement_terms(requirement: Requirement) -> set[str]:
    return aspect_set(requirement.keywords) | _terms(requirement.section_title or "")


def suggest_controls(
    requirement: Requirement, controls: list[Control], declared_aspects: dict[str, set[str]],
) -> list[dict]:
    """Controls whose wording overlaps the keywords and title of a new requirement.

    A control's wording is its title, description and family plus every aspect
    it covers in a live mapping. ``confidence`` is the share of requirement
    terms the control matches, in percent. Matches under
    ``MIN_SUGGESTION_CONFIDENCE`` are dropped; the best ``MAX_SUGGESTIONS`` are kept.
    """
    wanted = requirement_terms(requirement)
    if not wanted:
        return []

    suggestions = []
    for control in controls:
        text = " ".join(filter(None, [control.title, control.description, control.control_family]))
        have = _terms(text) | declared_aspects.get(control.id, set())
        phrase = f" {normalize_aspect(' '.join(words(text)))} "
        matched = sorted(t for t in wanted if t in have or (" " in t and f" {t} " in phrase))
        confidence = round(len(matched) / len(wanted) * 100, 2)
        if confidence >= MIN_SUGGESTION_CONFIDENCE:
            suggestions.append({
                "control_id": control.id,
                "title": control.title,
                "confidence": confidence,
                "matched_terms": matched,
            })
    suggestions.sort(key=lambda sg: (-sg["confidence"], sg["control_id"]))
    return suggestions[:MAX_SUGGESTIONS]


def new_requirement_impact(requirement: Requirement) -> RiskLevel:
    """Mandatory wording plus high risk is critical; mandatory or emerging-tech alone is high."""
    mandatory = bool(set(words(requirement.requirement_text)) & MODAL_TOKENS)
    high_risk = requirement.risk_level in (RiskLevel.CRITICAL, RiskLevel.HIGH)
    if mandatory and high_risk:
        return RiskLevel.CRITICAL
    if mandatory or requirement.category != RequirementCategory.TRADITIONAL:
        return RiskLevel.HIGH
    if high_risk:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


async def _declared_aspects(s: AsyncSession) -> dict[str, set[str]]:
    rows = (await s.execute(
        select(MappingControl.control_id, MappingControl.coverage_aspects)
        .join(Mapping, MappingControl.mapping_id == Mapping.id)
        .where(Mapping.review_status != MappingReviewStatus.DEPRECATED)
    )).all()
    declared: dict[str, set[str]] = {}
    for control_id, aspects in rows:
        declared.setdefault(control_id, set()).update(aspect_set(aspects))
    return declared


async def compare_requirement_versions(
    s: AsyncSession, framework_id: str, new_version_id: str, requirement_id: str, old_version_id: str,
) -> RequirementComparisonOut:
    new = await framework_store.get_requirement(s, framework_id, requirement_id, new_version_id)
    old_rid = new.supersedes or requirement_id
    old = await framework_store.get_requirement(s, framework_id, old_rid, old_version_id)
    comparison = compare_requirements(old, new)
    return RequirementComparisonOut(
        requirement_id=requirement_id,
        framework_id=framework_id,
        old_version_id=old_version_id,
        new_version_id=new_version_id,
        has_changes=comparison.has_changes,
        significance=comparison.text.significance,
        change_type=comparison.change_type,
        added_words=comparison.text.added_words,
        removed_words=comparison.text.removed_words,
        keywords_added=comparison.keywords_added,
        keywords_removed=comparison.keywords_removed,
        segments=[TextDiffSegmentOut.model_validate(seg) for seg in comparison.text.segments],
    )


# ═══════════════════ Scan ═══════════════════

async def affected_control_ids(s: AsyncSession, requirement_pk: int) -> list[str]:
    mapping = await find_mapping_for_requirement(s, requirement_pk)
    if mapping is None or mapping.review_status == MappingReviewStatus.DEPRECATED:
        return []
    ids = mapping.control_ids
    if not ids:
        return []
    live = (await s.execute(
        select(Control.id).where(Control.id.in_(ids), Control.status != ControlStatus.DEPRECATED)
    )).scalars().all()
    return sorted(live)


async def find_drift(
    s: AsyncSession, requirement_id: str, previous_version_id: str, new_version_id: str,
) -> ComplianceDrift | None:
    q = select(ComplianceDrift).where(
        ComplianceDrift.requirement_id == requirement_id,
        ComplianceDrift.previous_version_id == previous_version_id,
        ComplianceDrift.new_version_id == new_version_id,
    )
    return (await s.execute(q)).scalars().first()


def _transition(
    drift: ComplianceDrift,
    to_status: DriftStatus,
    actor: str | None,
    note: str | None = None,
    enforce: bool = True,
) -> None:
    current = drift.status
    if enforce and to_status not in DRIFT_TRANSITIONS[current]:
        raise InvalidStateTransition(
            f"Drift {drift.id} cannot move from '{current.value}' to '{to_status.value}'",
            drift_id=drift.id, current=current.value, requested=to_status.value,
        )
    drift.status = to_status
    drift.transitions.append(DriftTransition(
        from_status=current, to_status=to_status, actor=actor, note=note,
    ))
    log.info("Drift %s: %s -> %s by %s", drift.id, current.value, to_status.value, actor)


async def _record_drift(s: AsyncSession, drift: ComplianceDrift, key: tuple[str, str, str]) -> ComplianceDrift:
    """Insert ``drift``; the unique (requirement, old version, new version) key guards races."""
    s.add(drift)
    try:
        await s.flush()
    except IntegrityError as exc:
        # Expires everything loaded in the session; callers only use ``key`` afterwards.
        await s.rollback()
        requirement_id, previous_version_id, new_version_id = key
        raise DuplicateDriftError(
            "Drift already recorded",
            requirement_id=requirement_id,
            previous_version_id=previous_version_id,
            new_version_id=new_version_id,
        ) from exc
    return drift


async def _insert_or_observe(
    s: AsyncSession, drift: ComplianceDrift, key: tuple[str, str, str], result: DriftScanResult,
) -> bool:
    """Record ``drift``, or count the one a concurrent scan recorded first."""
    try:
        await _record_drift(s, drift, key)
    except DuplicateDriftError:
        existing = await find_drift(s, *key)
        result.existing += 1
        result.drift_ids.append(existing.id)
        log.info("Drift for %s was recorded concurrently as %s", key[0], existing.id)
        return False
    return True


async def _scan_new_requirement(
    s: AsyncSession, new: Requirement, old_version_id: str, deadline: date | None, result: DriftScanResult,
) -> None:
    key = (new.requirement_id, old_version_id, new.version_id)
    controls = list((await s.execute(
        select(Control).where(Control.status != ControlStatus.DEPRECATED).order_by(Control.id)
    )).scalars().all())
    suggestions = suggest_controls(new, controls, await _declared_aspects(s))

    summary = f"{new.requirement_id}: new requirement"
    if new.section_title:
        summary += f" ({new.section_title})"
    if suggestions:
        summary += "; suggested controls: " + ", ".join(sg["control_id"] for sg in suggestions)
    drift = ComplianceDrift(
        framework_id=new.framework_id,
        requirement_id=new.requirement_id,
        requirement_pk=new.id,
        previous_requirement_pk=None,
        previous_version_id=old_version_id,
        new_version_id=new.version_id,
        change_type=DriftChangeType.NEW_REQUIREMENT,
        significance=Significance.SUBSTANTIVE,
        impact_level=new_requirement_impact(new),
        change_summary=summary,
        comparison={
            "significance": Significance.SUBSTANTIVE.value,
            "added_words": len(words(new.requirement_text)),
            "removed_words": 0,
            "keywords_added": sorted(aspect_set(new.keywords)),
            "keywords_removed": [],
            "segments": [],
        },
        affected_control_ids=[],
        suggested_mappings=suggestions,
        compliance_deadline=deadline,
        status=DriftStatus.DETECTED,
        transitions=[DriftTransition(from_status=None, to_status=DriftStatus.DETECTED, actor=SYSTEM_ACTOR)],
    )
    if not await _insert_or_observe(s, drift, key, result):
        return

    await s.commit()
    result.created += 1
    result.new_requirements += 1
    result.drift_ids.append(drift.id)
    log.info(
        "Drift %s recorded for new requirement %s (impact %s, %d suggested controls)",
        drift.id, key[0], drift.impact_level.value, len(suggestions),
    )


async def _scan_requirement(
    s: AsyncSession,
    new_pk: int,
    old_version_id: str,
    new_version_id: str,
    result: DriftScanResult,
    deadline: date | None = None,
) -> None:
    new = await s.get(Requirement, new_pk)
    key = (new.requirement_id, old_version_id, new_version_id)
    result.compared += 1

    existing = await find_drift(s, *key)
    if existing:
        result.existing += 1
        result.drift_ids.append(existing.id)
        return

    old = (await s.execute(
        select(Requirement).where(
            Requirement.version_id == old_version_id,
            Requirement.requirement_id == (new.supersedes or new.requirement_id),
        )
    )).scalars().first()
    if old is None and new.supersedes:
        log.warning("Requirement %s supersedes unknown %s in %s", new.requirement_id, new.supersedes, old_version_id)
        return
    if old is None:
        await _scan_new_requirement(s, new, old_version_id, deadline, result)
        return

    comparison = compare_requirements(old, new)
    if not comparison.has_changes:
        result.unchanged += 1
        return

    old_pk = old.id
    affected = await affected_control_ids(s, old_pk)
    drift = ComplianceDrift(
        framework_id=new.framework_id,
        requirement_id=new.requirement_id,
        requirement_pk=new.id,
        previous_requirement_pk=old_pk,
        previous_version_id=old_version_id,
        new_version_id=new_version_id,
        change_type=comparison.change_type,
        significance=comparison.text.significance,
        impact_level=impact_for(comparison.text.significance, new.risk_level),
        change_summary=summarize(comparison),
        comparison=comparison.as_dict(),
        affected_control_ids=affected,
        compliance_deadline=deadline,
        status=DriftStatus.DETECTED,
        transitions=[DriftTransition(from_status=None, to_status=DriftStatus.DETECTED, actor=SYSTEM_ACTOR)],
    )
    if not await _insert_or_observe(s, drift, key, result):
        return

    if not affected:
        _transition(drift, DriftStatus.RESOLVED, SYSTEM_ACTOR, AUTO_RESOLVE_NOTE, enforce=False)
        drift.resolution_notes = AUTO_RESOLVE_NOTE
        drift.resolved_by = SYSTEM_ACTOR
        drift.resolved_at = datetime.utcnow()
        result.auto_resolved += 1
    else:
        mapping = await find_mapping_for_requirement(s, old_pk)
        if mapping.review_status == MappingReviewStatus.ACTIVE:
            mapping.review_status = MappingReviewStatus.PENDING_REVIEW

    await s.commit()
    result.created += 1
    result.drift_ids.append(drift.id)
    log.info(
        "Drift %s recorded for %s (%s, %s, impact %s, %d controls)",
        drift.id, drift.requirement_id, drift.change_type.value, drift.significance.value,
        drift.impact_level.value, len(affected),
    )


async def scan_for_drift(
    session_factory: async_sessionmaker[AsyncSession],
    locks: ScanLockRegistry,
    framework_id: str,
    old_version_id: str,
    new_version_id: str,
    cancel: asyncio.Event | None = None,
) -> DriftScanResult:
    """Compare every requirement of ``new_version_id`` with its predecessor.

    ``old_version_id`` must be the version immediately before ``new_version_id``.
    Requirements without a predecessor become new-requirement drifts.
    Concurrent calls for the same tuple run one after the other; the later one
    finds the drifts recorded by the first.
    """
    result = DriftScanResult(
        framework_id=framework_id, old_version_id=old_version_id, new_version_id=new_version_id,
    )
    async with locks.hold((framework_id, old_version_id, new_version_id)):
        async with session_factory() as s:
            old = await framework_store.get_version(s, old_version_id, framework_id)
            new = await framework_store.get_version(s, new_version_id, framework_id)
            prior = await framework_store.prior_version(s, framework_id, new.effective_date)
            if prior is None or prior.id != old.id:
                raise ValidationError(
                    "Drift is scanned between adjacent versions only",
                    old_version_id=old_version_id,
                    new_version_id=new_version_id,
                    expected_old_version_id=prior.id if prior else None,
                )
            deadline = new.effective_date
            pks = list((await s.execute(
                select(Requirement.id)
                .where(Requirement.version_id == new_version_id)
                .order_by(Requirement.requirement_id)
            )).scalars().all())

        log.info("Drift scan %s: %s -> %s (%d requirements)", framework_id, old_version_id, new_version_id, len(pks))
        for pk in pks:
            if cancel is not None and cancel.is_set():
                result.cancelled = True
                log.info("Drift scan %s -> %s cancelled after %d requirements", old_version_id, new_version_id, result.compared)
                break
            async with session_factory() as s:
                await _scan_requirement(s, pk, old_version_id, new_version_id, result, deadline)

    return result


# ═══════════════════ Operator actions ═══════════════════

async def get_drift(s: AsyncSession, drift_id: int) -> ComplianceDrift:
    drift = await s.get(ComplianceDrift, drift_id)
    if not drift:
        raise NotFoundError(f"Drift {drift_id} not found", drift_id=drift_id)
    return drift


def _check_version(drift: ComplianceDrift, expected_version: int | None) -> None:
    if expected_version is not None and drift.version != expected_version:
        raise ConcurrentModificationError(
            "Drift was modified concurrently",
            drift_id=drift.id, expected=expected_version, actual=drift.version,
        )


def _append_note(drift: ComplianceDrift, note: str | None) -> None:
    if note:
        drift.resolution_notes = f"{drift.resolution_notes}\n{note}" if drift.resolution_notes else note


async def _commit(s: AsyncSession, drift: ComplianceDrift) -> ComplianceDrift:
    drift_id = drift.id
    try:
        await s.commit()
    except StaleDataError as exc:
        await s.rollback()
        raise ConcurrentModificationError("Drift was modified concurrently", drift_id=drift_id) from exc
    return drift


async def _carry_forward_for(s: AsyncSession, drift: ComplianceDrift, actor: str | None) -> Mapping | None:
    if drift.previous_requirement_pk is None:
        new_requirement = await s.get(Requirement, drift.requirement_pk)
        return await map_from_suggestions(s, new_requirement, drift.suggested_mappings, actor)
    old_mapping = await find_mapping_for_requirement(s, drift.previous_requirement_pk)
    if old_mapping is None:
        return await find_mapping_for_requirement(s, drift.requirement_pk)
    new_requirement = await s.get(Requirement, drift.requirement_pk)
    return await carry_forward(s, old_mapping, new_requirement, actor)


async def acknowledge(
    s: AsyncSession, drift_id: int, actor: str | None = None, note: str | None = None,
    expected_version: int | None = None,
) -> ComplianceDrift:
    drift = await get_drift(s, drift_id)
    _check_version(drift, expected_version)
    _transition(drift, DriftStatus.ACKNOWLEDGED, actor, note)
    drift.acknowledged_by = actor
    drift.acknowledged_at = datetime.utcnow()
    return await _commit(s, drift)


async def plan_remediation(
    s: AsyncSession,
    drift_id: int,
    actions: list[RequiredActionIn],
    actor: str | None = None,
    note: str | None = None,
    assigned_to: str | None = None,
    due_date: date | None = None,
    expected_version: int | None = None,
) -> ComplianceDrift:
    drift = await get_drift(s, drift_id)
    _check_version(drift, expected_version)
    if not actions:
        raise ValidationError("A remediation plan needs at least one required action", drift_id=drift_id)
    _transition(drift, DriftStatus.REMEDIATION_PLANNED, actor, note)
    for action in actions:
        drift.required_actions.append(RequiredAction(**action.model_dump()))
    if assigned_to:
        drift.assigned_to = assigned_to
    if due_date:
        drift.due_date = due_date
    return await _commit(s, drift)


async def start_remediation(
    s: AsyncSession, drift_id: int, actor: str | None = None, note: str | None = None,
    expected_version: int | None = None,
) -> ComplianceDrift:
    drift = await get_drift(s, drift_id)
    _check_version(drift, expected_version)
    _transition(drift, DriftStatus.IN_REMEDIATION, actor, note)
    return await _commit(s, drift)


async def resolve(
    s: AsyncSession, drift_id: int, actor: str | None = None, note: str | None = None,
    expected_version: int | None = None,
) -> ComplianceDrift:
    """Close the drift and carry the old mapping forward to the new requirement."""
    drift = await get_drift(s, drift_id)
    _check_version(drift, expected_version)
    _transition(drift, DriftStatus.RESOLVED, actor, note)
    drift.resolved_by = actor
    drift.resolved_at = datetime.utcnow()
    _append_note(drift, note)
    await _carry_forward_for(s, drift, actor)
    return await _commit(s, drift)


async def accept_risk(
    s: AsyncSession, drift_id: int, reason: str, actor: str | None = None,
    expected_version: int | None = None,
) -> ComplianceDrift:
    """Close the drift without remediation. The old mapping goes back to active."""
    drift = await get_drift(s, drift_id)
    _check_version(drift, expected_version)
    if not (reason or "").strip():
        raise ValidationError("Accepting risk requires a reason", drift_id=drift_id)
    _transition(drift, DriftStatus.RISK_ACCEPTED, actor, reason)
    drift.resolved_by = actor
    drift.resolved_at = datetime.utcnow()
    _append_note(drift, reason)

    old_mapping = None
    if drift.previous_requirement_pk is not None:
        old_mapping = await find_mapping_for_requirement(s, drift.previous_requirement_pk)
    if old_mapping and old_mapping.review_status == MappingReviewStatus.PENDING_REVIEW:
        old_mapping.review_status = MappingReviewStatus.ACTIVE
        await recompute_mapping(s, old_mapping)
    return await _commit(s, drift)


async def apply_requirement_update(
    s: AsyncSession,
    framework_id: str,
    version_id: str,
    requirement_id: str,
    decision: RequirementUpdateDecision,
    actor: str | None = None,
    note: str | None = None,
) -> tuple[ComplianceDrift, Mapping | None]:
    """Operator decision on a changed requirement: accept, reject or defer.

    accept  acknowledges a detected drift and carries the mapping forward;
    reject  closes the drift as risk_accepted;
    defer   acknowledges a detected drift with a note and changes nothing else.
    """
    q = select(ComplianceDrift).where(
        ComplianceDrift.framework_id == framework_id,
        ComplianceDrift.new_version_id == version_id,
        ComplianceDrift.requirement_id == requirement_id,
    )
    drift = (await s.execute(q)).scalars().first()
    if drift is None:
        raise NotFoundError(
            f"No drift recorded for {requirement_id} in {version_id}",
            framework_id=framework_id, version_id=version_id, requirement_id=requirement_id,
        )

    if decision == RequirementUpdateDecision.ACCEPT:
        if drift.status == DriftStatus.RISK_ACCEPTED:
            raise InvalidStateTransition(
                "Drift was closed as risk accepted", drift_id=drift.id, current=drift.status.value,
            )
        if drift.status == DriftStatus.DETECTED:
            _transition(drift, DriftStatus.ACKNOWLEDGED, actor, note or "Requirement update accepted")
            drift.acknowledged_by = actor
            drift.acknowledged_at = datetime.utcnow()
        mapping = await _carry_forward_for(s, drift, actor)
        await _commit(s, drift)
        return drift, mapping

    if decision == RequirementUpdateDecision.REJECT:
        drift = await accept_risk(s, drift.id, note or DEFAULT_REJECT_REASON, actor)
        return drift, None

    # defer
    if drift.status in DRIFT_TERMINAL:
        raise InvalidStateTransition(
            "Closed drifts cannot be deferred", drift_id=drift.id, current=drift.status.value,
        )
    deferred = f"Deferred by {actor or 'operator'}" + (f": {note}" if note else "")
    if drift.status == DriftStatus.DETECTED:
        _transition(drift, DriftStatus.ACKNOWLEDGED, actor, deferred)
        drift.acknowledged_by = actor
        drift.acknowledged_at = datetime.utcnow()
    _append_note(drift, deferred)
    await _commit(s, drift)
    return drift, None


# ═══════════════════ Reporting ═══════════════════

async def list_drifts(
    s: AsyncSession,
    framework_id: str | None = None,
    status: DriftStatus | None = None,
    impact_level: RiskLevel | None = None,
    open_only: bool = False,
) -> list[ComplianceDrift]:
    q = select(ComplianceDrift)
    if framework_id:
        q = q.where(ComplianceDrift.framework_id == framework_id)
    if status:
        q = q.where(ComplianceDrift.status == status)
    if impact_level:
        q = q.where(ComplianceDrift.impact_level == impact_level)
    if open_only:
        q = q.where(ComplianceDrift.status.notin_(list(DRIFT_TERMINAL)))
    return list((await s.execute(q.order_by(ComplianceDrift.id))).scalars().all())


def recommend_actions(drift: ComplianceDrift) -> list[DriftRecommendation]:
    """Suggested next steps for an open drift, most specific first."""
    priority = drift.impact_level
    if drift.change_type == DriftChangeType.NEW_REQUIREMENT:
        return _new_requirement_actions(drift)
    comparison = drift.comparison or {}
    recs = [
        DriftRecommendation(
            action_type=RequiredActionType.UPDATE_CONTROL,
            description=f"Review control {cid} against the updated text of {drift.requirement_id}",
            priority=priority,
            control_id=cid,
        )
        for cid in drift.affected_control_ids
    ]
    new_keywords = comparison.get("keywords_added") or []
    if drift.significance == Significance.BREAKING and (new_keywords or not drift.affected_control_ids):
        scope = ", ".join(new_keywords) if new_keywords else drift.requirement_id
        recs.append(DriftRecommendation(
            action_type=RequiredActionType.IMPLEMENT_NEW,
            description=f"Implement controls for: {scope}",
            priority=priority,
        ))
    if drift.significance in (Significance.BREAKING, Significance.SUBSTANTIVE):
        recs.append(DriftRecommendation(
            action_type=RequiredActionType.ADD_EVIDENCE,
            description=f"Collect evidence showing compliance with the new text of {drift.requirement_id}",
            priority=priority,
        ))
    recs.append(DriftRecommendation(
        action_type=RequiredActionType.REASSESS,
        description=f"Reassess the mapping coverage for {drift.requirement_id}",
        priority=priority,
    ))
    if priority == RiskLevel.LOW:
        recs.append(DriftRecommendation(
            action_type=RequiredActionType.ACCEPT_RISK,
            description="Accept the change if current controls already satisfy it",
            priority=priority,
        ))
    return recs


def _new_requirement_actions(drift: ComplianceDrift) -> list[DriftRecommendation]:
    priority = drift.impact_level
    recs = [
        DriftRecommendation(
            action_type=RequiredActionType.UPDATE_CONTROL,
            description=(
                f"Map control {sg['control_id']} ({sg['confidence']:g}% keyword match) "
                f"to {drift.requirement_id}"
            ),
            priority=priority,
            control_id=sg["control_id"],
        )
        for sg in drift.suggested_mappings or []
    ]
    recs.append(DriftRecommendation(
        action_type=RequiredActionType.IMPLEMENT_NEW,
        description=f"Implement controls for new requirement {drift.requirement_id}",
        priority=priority,
    ))
    recs.append(DriftRecommendation(
        action_type=RequiredActionType.ADD_EVIDENCE,
        description=f"Collect evidence showing compliance with {drift.requirement_id}",
        priority=priority,
    ))
    return recs


def _planned_actions(drift: ComplianceDrift) -> list[DriftRecommendation]:
    return [
        DriftRecommendation(action_type=a.action_type, description=a.description, priority=a.priority)
        for a in drift.required_actions
    ]


async def drift_notifications(s: AsyncSession, framework_id: str | None = None) -> list[DriftNotification]:
    drifts = await list_drifts(s, framework_id=framework_id, open_only=True)
    drifts.sort(key=lambda d: (-SEVERITY_RANK[d.impact_level], d.detected_at, d.id))
    return [
        DriftNotification(
            drift_id=d.id,
            framework_id=d.framework_id,
            requirement_id=d.requirement_id,
            new_version_id=d.new_version_id,
            change_type=d.change_type,
            significance=d.significance,
            impact_level=d.impact_level,
            status=d.status,
            change_summary=d.change_summary,
            affected_control_ids=d.affected_control_ids,
            suggested_mappings=d.suggested_mappings or [],
            compliance_deadline=d.compliance_deadline,
            days_remaining=d.days_remaining,
            detected_at=d.detected_at,
            recommended_actions=_planned_actions(d) or recommend_actions(d),
        )
        for d in drifts
    ]


async def drift_stats(s: AsyncSession, framework_id: str | None = None) -> DriftStats:
    drifts = await list_drifts(s, framework_id=framework_id)
    open_drifts = [d for d in drifts if d.status not in DRIFT_TERMINAL]
    by_status = Counter(d.status.value for d in drifts)
    by_impact = Counter(d.impact_level.value for d in open_drifts)
    by_framework = Counter(d.framework_id for d in open_drifts)
    remaining = [d.days_remaining for d in open_drifts if d.compliance_deadline is not None]
    return DriftStats(
        total=len(drifts),
        open=len(open_drifts),
        by_status={st.value: by_status.get(st.value, 0) for st in DriftStatus},
        by_impact={lvl.value: by_impact.get(lvl.value, 0) for lvl in RiskLevel},
        by_framework=dict(sorted(by_framework.items())),
        frameworks_affected=len(by_framework),
        average_days_remaining=round(sum(remaining) / len(remaining), 1) if remaining else None,
    )
