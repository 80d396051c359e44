"""
Tagged status/category values shared by the ORM models, schemas and services.

Each enum subclasses ``str`` so values serialize as plain strings in JSON and
in the database while call sites still dispatch on members.
"""
import enum


class FrameworkVersionStatus(str, enum.Enum):
    DRAFT = "draft"
    FINAL = "final"
    ACTIVE = "active"
    SUPERSEDED = "superseded"


# Forward-only lifecycle: draft -> final -> active -> superseded
VERSION_STATUS_ORDER: dict[FrameworkVersionStatus, int] = {
    FrameworkVersionStatus.DRAFT: 0,
    FrameworkVersionStatus.FINAL: 1,
    FrameworkVersionStatus.ACTIVE: 2,
    FrameworkVersionStatus.SUPERSEDED: 3,
}


class RiskLevel(str, enum.Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


SEVERITY_RANK: dict[RiskLevel, int] = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


class RequirementCategory(str, enum.Enum):
    AI_TRANSPARENCY = "ai_transparency"
    AI_RISK_CLASSIFICATION = "ai_risk_classification"
    QUANTUM_READINESS = "quantum_readiness"
    ZERO_TRUST = "zero_trust"
    DATA_RESIDENCY = "data_residency"
    SUPPLY_CHAIN = "supply_chain"
    ALGORITHMIC_AUDIT = "algorithmic_audit"
    HUMAN_OVERSIGHT = "human_oversight"
    TRADITIONAL = "traditional"


class ControlStatus(str, enum.Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    IMPLEMENTED = "implemented"
    VERIFIED = "verified"
    NEEDS_REVIEW = "needs_review"
    DEPRECATED = "deprecated"


# Deprecated is terminal: a control is never resurrected.
CONTROL_TRANSITIONS: dict[ControlStatus, frozenset[ControlStatus]] = {
    ControlStatus.NOT_STARTED: frozenset({ControlStatus.IN_PROGRESS, ControlStatus.DEPRECATED}),
    ControlStatus.IN_PROGRESS: frozenset({
        ControlStatus.NOT_STARTED, ControlStatus.IMPLEMENTED, ControlStatus.DEPRECATED,
    }),
    ControlStatus.IMPLEMENTED: frozenset({
        ControlStatus.IN_PROGRESS, ControlStatus.VERIFIED, ControlStatus.NEEDS_REVIEW,
        ControlStatus.DEPRECATED,
    }),
    ControlStatus.VERIFIED: frozenset({ControlStatus.NEEDS_REVIEW, ControlStatus.DEPRECATED}),
    ControlStatus.NEEDS_REVIEW: frozenset({
        ControlStatus.IN_PROGRESS, ControlStatus.IMPLEMENTED, ControlStatus.VERIFIED,
        ControlStatus.DEPRECATED,
    }),
    ControlStatus.DEPRECATED: frozenset(),
}


class EvidenceState(str, enum.Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"
    EXPIRED = "expired"


class ComplianceStatus(str, enum.Enum):
    COMPLIANT = "compliant"
    PARTIAL = "partial"
    NON_COMPLIANT = "non_compliant"
    NOT_APPLICABLE = "not_applicable"


class MappingReviewStatus(str, enum.Enum):
    ACTIVE = "active"
    PENDING_REVIEW = "pending_review"
    DEPRECATED = "deprecated"


class GapType(str, enum.Enum):
    NO_CONTROL_MAPPED = "no_control_mapped"
    INSUFFICIENT_COVERAGE = "insufficient_coverage"
    CONTROL_DEPRECATED = "control_deprecated"
    EVIDENCE_MISSING = "evidence_missing"


class GapStatus(str, enum.Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    ACCEPTED_RISK = "accepted_risk"


class EffortEstimate(str, enum.Enum):
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"


class RecommendedActionType(str, enum.Enum):
    CREATE_CONTROL = "create_control"
    UPDATE_CONTROL = "update_control"
    ADD_EVIDENCE = "add_evidence"


class SegmentKind(str, enum.Enum):
    UNCHANGED = "unchanged"
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"


class Significance(str, enum.Enum):
    COSMETIC = "cosmetic"
    CLARIFICATION = "clarification"
    SUBSTANTIVE = "substantive"
    BREAKING = "breaking"


SIGNIFICANCE_RANK: dict[Significance, int] = {
    Significance.COSMETIC: 0,
    Significance.CLARIFICATION: 1,
    Significance.SUBSTANTIVE: 2,
    Significance.BREAKING: 3,
}


class DriftChangeType(str, enum.Enum):
    REQUIREMENT_STRENGTHENED = "requirement_strengthened"
    REQUIREMENT_CLARIFIED = "requirement_clarified"
    REQUIREMENT_MODIFIED = "requirement_modified"
    NEW_REQUIREMENT = "new_requirement"


class DriftStatus(str, enum.Enum):
    DETECTED = "detected"
    ACKNOWLEDGED = "acknowledged"
    REMEDIATION_PLANNED = "remediation_planned"
    IN_REMEDIATION = "in_remediation"
    RESOLVED = "resolved"
    RISK_ACCEPTED = "risk_accepted"


DRIFT_STATUS_RANK: dict[DriftStatus, int] = {
    DriftStatus.DETECTED: 0,
    DriftStatus.ACKNOWLEDGED: 1,
    DriftStatus.REMEDIATION_PLANNED: 2,
    DriftStatus.IN_REMEDIATION: 3,
    DriftStatus.RESOLVED: 4,
    DriftStatus.RISK_ACCEPTED: 5,
}

DRIFT_TERMINAL: frozenset[DriftStatus] = frozenset({DriftStatus.RESOLVED, DriftStatus.RISK_ACCEPTED})


class RequirementUpdateDecision(str, enum.Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    DEFER = "defer"

# Operator transitions. risk_accepted is reachable from every non-terminal state.
DRIFT_TRANSITIONS: dict[DriftStatus, frozenset[DriftStatus]] = {
    DriftStatus.DETECTED: frozenset({DriftStatus.ACKNOWLEDGED, DriftStatus.RISK_ACCEPTED}),
    DriftStatus.ACKNOWLEDGED: frozenset({
        DriftStatus.REMEDIATION_PLANNED, DriftStatus.RESOLVED, DriftStatus.RISK_ACCEPTED,
    }),
    DriftStatus.REMEDIATION_PLANNED: frozenset({DriftStatus.IN_REMEDIATION, DriftStatus.RISK_ACCEPTED}),
    DriftStatus.IN_REMEDIATION: frozenset({DriftStatus.RESOLVED, DriftStatus.RISK_ACCEPTED}),
    DriftStatus.RESOLVED: frozenset(),
    DriftStatus.RISK_ACCEPTED: frozenset(),
}


class RequiredActionType(str, enum.Enum):
    UPDATE_CONTROL = "update_control"
    ADD_EVIDENCE = "add_evidence"
    UPDATE_POLICY = "update_policy"
    IMPLEMENT_NEW = "implement_new"
    REASSESS = "reassess"
    ACCEPT_RISK = "accept_risk"


class ActionStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
