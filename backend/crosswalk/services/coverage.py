"""
Coverage calculation for a single mapping.

Pure: takes the mapping links, the requirement's keywords and the linked
controls, returns a score and a compliance status. Calling it twice with the
same inputs returns the same result.

Aspects are aggregated as a union. When the requirement declares keywords,
those are the aspect set to cover and each aspect is credited with the best
weight among the controls that declare it. Without keywords, controls are
taken in descending weight and each one adds only the share of its weight
that falls on aspects not already covered.
"""
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from crosswalk.models.enums import ComplianceStatus, ControlStatus

COMPLIANT_THRESHOLD = 95.0


@dataclass
class CoverageResult:
    coverage_score: float
    compliance_status: ComplianceStatus
    covered_aspects: list[str] = field(default_factory=list)
    missing_aspects: list[str] = field(default_factory=list)
    counted_control_ids: list[str] = field(default_factory=list)


def normalize_aspect(value: str) -> str:
    return re.sub(r"[\s_\-]+", " ", (value or "").strip().lower()).strip()


def aspect_set(values: Iterable[str] | None) -> set[str]:
    return {a for a in (normalize_aspect(v) for v in values or []) if a}


def clamp_weight(weight) -> float:
    return float(max(0, min(100, weight or 0)))


def compute_coverage(
    links: Iterable,
    requirement_keywords: Iterable[str] | None,
    controls: Mapping[str, object],
    not_applicable: bool = False,
) -> CoverageResult:
    """Score a mapping from its links.

    ``links`` are objects with ``control_id``, ``contribution_weight`` and
    ``coverage_aspects``; ``controls`` maps control id to the control record.
    Links to deprecated or unknown controls do not count.
    """
    counted = []
    for link in links:
        control = controls.get(link.control_id)
        if control is None or control.status == ControlStatus.DEPRECATED:
            continue
        counted.append((link.control_id, clamp_weight(link.contribution_weight), aspect_set(link.coverage_aspects)))

    required = aspect_set(requirement_keywords)
    declared = set().union(*(aspects for _, _, aspects in counted)) if counted else set()

    if required:
        best: dict[str, float] = {}
        for _, weight, aspects in counted:
            for aspect in aspects & required:
                best[aspect] = max(best.get(aspect, 0.0), weight)
        score = sum(best.values()) / len(required)
        covered = sorted(best)
        missing = sorted(required - set(best))
    else:
        score = 0.0
        seen: set[str] = set()
        for _, weight, aspects in sorted(counted, key=lambda c: (-c[1], c[0])):
            if not aspects:
                score += weight
                continue
            fresh = aspects - seen
            score += weight * len(fresh) / len(aspects)
            seen |= fresh
        covered = sorted(declared)
        missing = []

    score = round(min(100.0, max(0.0, score)), 2)
    counted_ids = [cid for cid, _, _ in counted]

    if not_applicable:
        status = ComplianceStatus.NOT_APPLICABLE
    elif not counted or score == 0:
        status = ComplianceStatus.NON_COMPLIANT
    elif score >= COMPLIANT_THRESHOLD and all(
        controls[cid].has_verified_evidence for cid in counted_ids
    ):
        status = ComplianceStatus.COMPLIANT
    else:
        status = ComplianceStatus.PARTIAL

    return CoverageResult(
        coverage_score=score,
        compliance_status=status,
        covered_aspects=covered,
        missing_aspects=missing,
        counted_control_ids=counted_ids,
    )
