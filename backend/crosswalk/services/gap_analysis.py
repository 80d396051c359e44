"""
Gap analysis for one mapping.

``missing_aspects`` lists the implementation-guidance items of the requirement
that no linked control appears to cover. Matching is a heuristic: an item is
covered when a control's coverage aspect and the item contain one another as
whole words, or when the item mentions a requirement keyword or evidence
example that a control declares. Requirements without guidance fall back to
their uncovered keywords.
"""
from dataclasses import dataclass, field
from datetime import date, timedelta

from crosswalk.models.enums import (
    ControlStatus,
    EffortEstimate,
    RecommendedActionType,
    RiskLevel,
)
from crosswalk.services.coverage import aspect_set, clamp_weight, compute_coverage, normalize_aspect

DUE_OFFSET_DAYS: dict[RiskLevel, int] = {
    RiskLevel.CRITICAL: 30,
    RiskLevel.HIGH: 60,
    RiskLevel.MEDIUM: 90,
    RiskLevel.LOW: 180,
}


@dataclass
class RecommendedAction:
    action_type: RecommendedActionType
    description: str
    control_id: str | None = None


@dataclass
class GapAnalysis:
    mapping_id: int | None
    requirement_id: str
    coverage_score: float
    missing_aspects: list[str] = field(default_factory=list)
    priority: RiskLevel = RiskLevel.LOW
    estimated_effort: EffortEstimate | None = None
    recommended_actions: list[RecommendedAction] = field(default_factory=list)
    due_date: date | None = None


def _mentions(haystack: str, needle: str) -> bool:
    return bool(needle) and f" {needle} " in f" {haystack} "


def is_item_covered(item: str, control_aspects: set[str], terms: set[str]) -> bool:
    normalized = normalize_aspect(item)
    candidates = {normalized} | {t for t in terms if _mentions(normalized, t)}
    return any(
        _mentions(candidate, aspect) or _mentions(aspect, candidate)
        for candidate in candidates
        for aspect in control_aspects
    )


def priority_for(risk_level: RiskLevel, score: float, missing_count: int) -> RiskLevel:
    if risk_level == RiskLevel.CRITICAL and score < 50:
        return RiskLevel.CRITICAL
    if risk_level == RiskLevel.HIGH or score < 80:
        return RiskLevel.HIGH
    if score < 95 or missing_count:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def effort_for(missing_count: int) -> EffortEstimate | None:
    if missing_count <= 0:
        return None
    if missing_count == 1:
        return EffortEstimate.HOURS
    if missing_count <= 3:
        return EffortEstimate.DAYS
    if missing_count <= 6:
        return EffortEstimate.WEEKS
    return EffortEstimate.MONTHS


def analyze_gap(mapping, requirement, controls: dict, as_of: date | None = None) -> GapAnalysis:
    coverage = compute_coverage(mapping.links, requirement.keywords, controls, mapping.not_applicable)
    analysis = GapAnalysis(
        mapping_id=mapping.id,
        requirement_id=requirement.requirement_id,
        coverage_score=coverage.coverage_score,
    )
    if mapping.not_applicable:
        return analysis

    counted = [
        link for link in mapping.links
        if link.control_id in coverage.counted_control_ids
    ]
    control_aspects = aspect_set(a for link in counted for a in link.coverage_aspects)
    terms = aspect_set(list(requirement.keywords or []) + list(requirement.evidence_examples or []))

    guidance = [g for g in requirement.implementation_guidance or [] if normalize_aspect(g)]
    if guidance:
        missing = [g for g in guidance if not is_item_covered(g, control_aspects, terms)]
    else:
        missing = list(coverage.missing_aspects)

    analysis.missing_aspects = missing
    analysis.priority = priority_for(requirement.risk_level, coverage.coverage_score, len(missing))
    analysis.estimated_effort = effort_for(len(missing))
    if as_of is not None:
        analysis.due_date = as_of + timedelta(days=DUE_OFFSET_DAYS[analysis.priority])

    if not counted:
        analysis.recommended_actions.append(RecommendedAction(
            RecommendedActionType.CREATE_CONTROL,
            f"Create a control addressing {requirement.requirement_id}",
        ))
    elif missing:
        strongest = max(counted, key=lambda link: (clamp_weight(link.contribution_weight), link.control_id))
        analysis.recommended_actions.append(RecommendedAction(
            RecommendedActionType.UPDATE_CONTROL,
            "Extend control scope to cover: " + "; ".join(missing),
            control_id=strongest.control_id,
        ))

    for link in counted:
        control = controls[link.control_id]
        if control.status != ControlStatus.DEPRECATED and not control.has_verified_evidence:
            analysis.recommended_actions.append(RecommendedAction(
                RecommendedActionType.ADD_EVIDENCE,
                f"Collect and verify evidence for control {link.control_id}",
                control_id=link.control_id,
            ))

    return analysis
