"""
Compliance drift -- /api/v1/drifts

Scans compare two adjacent framework versions. Each drift then moves through
detected -> acknowledged -> remediation_planned -> in_remediation -> resolved,
or to risk_accepted from any open state.
"""
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from crosswalk.database import get_session, get_session_factory
from crosswalk.middleware.audit_auto import get_audit_actor
from crosswalk.models.enums import DriftStatus, RiskLevel
from crosswalk.schemas.drift import (
    DriftAcceptRiskRequest,
    DriftActionRequest,
    DriftNotification,
    DriftOut,
    DriftPlanRequest,
    DriftScanRequest,
    DriftScanResult,
    DriftStats,
)
from crosswalk.services import drift_detector

router = APIRouter(prefix="/api/v1/drifts", tags=["Compliance Drift"])


@router.post("/scan", response_model=DriftScanResult)
async def scan(
    body: DriftScanRequest,
    request: Request,
    session_factory=Depends(get_session_factory),
):
    return await drift_detector.scan_for_drift(
        session_factory,
        request.app.state.scan_locks,
        body.framework_id,
        body.old_version_id,
        body.new_version_id,
    )


@router.get("", response_model=list[DriftOut])
async def list_drifts(
    framework_id: str | None = Query(None),
    status: DriftStatus | None = Query(None),
    impact_level: RiskLevel | None = Query(None),
    open_only: bool = Query(False),
    s: AsyncSession = Depends(get_session),
):
    return await drift_detector.list_drifts(s, framework_id, status, impact_level, open_only)


@router.get("/stats", response_model=DriftStats)
async def stats(framework_id: str | None = Query(None), s: AsyncSession = Depends(get_session)):
    return await drift_detector.drift_stats(s, framework_id)


@router.get("/notifications", response_model=list[DriftNotification])
async def notifications(framework_id: str | None = Query(None), s: AsyncSession = Depends(get_session)):
    return await drift_detector.drift_notifications(s, framework_id)


@router.get("/{drift_id}", response_model=DriftOut)
async def get_drift(drift_id: int, s: AsyncSession = Depends(get_session)):
    return await drift_detector.get_drift(s, drift_id)


@router.post("/{drift_id}/acknowledge", response_model=DriftOut)
async def acknowledge(drift_id: int, body: DriftActionRequest, s: AsyncSession = Depends(get_session)):
    return await drift_detector.acknowledge(
        s, drift_id, body.actor or get_audit_actor(), body.note, body.expected_version,
    )


@router.post("/{drift_id}/plan", response_model=DriftOut)
async def plan(drift_id: int, body: DriftPlanRequest, s: AsyncSession = Depends(get_session)):
    return await drift_detector.plan_remediation(
        s,
        drift_id,
        body.actions,
        actor=body.actor or get_audit_actor(),
        note=body.note,
        assigned_to=body.assigned_to,
        due_date=body.due_date,
        expected_version=body.expected_version,
    )


@router.post("/{drift_id}/start", response_model=DriftOut)
async def start(drift_id: int, body: DriftActionRequest, s: AsyncSession = Depends(get_session)):
    return await drift_detector.start_remediation(
        s, drift_id, body.actor or get_audit_actor(), body.note, body.expected_version,
    )


@router.post("/{drift_id}/resolve", response_model=DriftOut)
async def resolve(drift_id: int, body: DriftActionRequest, s: AsyncSession = Depends(get_session)):
    return await drift_detector.resolve(
        s, drift_id, body.actor or get_audit_actor(), body.note, body.expected_version,
    )


@router.post("/{drift_id}/accept-risk", response_model=DriftOut)
async def accept_risk(drift_id: int, body: DriftAcceptRiskRequest, s: AsyncSession = Depends(get_session)):
    return await drift_detector.accept_risk(
        s, drift_id, body.reason, body.actor or get_audit_actor(), body.expected_version,
    )
