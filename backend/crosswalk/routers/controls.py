"""
Control Store -- /api/v1/controls

Controls are keyed by the organization's own id and written with PUT (upsert).
Deprecation is one-way and flags every mapping that links the control.
"""
from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from crosswalk.database import get_session
from crosswalk.middleware.audit_auto import get_audit_actor
from crosswalk.models.enums import ControlStatus
from crosswalk.schemas.control import (
    ControlDeprecateRequest,
    ControlOut,
    ControlRequirementOut,
    ControlUpsert,
    EvidenceCreate,
    EvidenceExpireRequest,
    EvidenceExpireResult,
    EvidenceOut,
    EvidenceStateUpdate,
)
from crosswalk.services import control_store

router = APIRouter(prefix="/api/v1/controls", tags=["Controls"])


@router.get("", response_model=list[ControlOut])
async def list_controls(
    status: ControlStatus | None = Query(None),
    s: AsyncSession = Depends(get_session),
):
    return await control_store.list_controls(s, status)


# Fixed paths before /{control_id}

@router.post("/evidence/expire", response_model=EvidenceExpireResult)
async def expire_evidence(body: EvidenceExpireRequest, s: AsyncSession = Depends(get_session)):
    expired, recomputed = await control_store.expire_evidence(s, body.as_of)
    return EvidenceExpireResult(
        as_of=body.as_of or date.today(), expired_evidence_ids=expired, recomputed_mappings=recomputed,
    )


@router.put("/evidence/{evidence_id}/state", response_model=EvidenceOut)
async def set_evidence_state(
    evidence_id: int, body: EvidenceStateUpdate, s: AsyncSession = Depends(get_session),
):
    return await control_store.set_evidence_state(s, evidence_id, body.state, body.actor or get_audit_actor())


@router.get("/{control_id}", response_model=ControlOut)
async def get_control(control_id: str, s: AsyncSession = Depends(get_session)):
    return await control_store.get_control(s, control_id)


@router.put("/{control_id}", response_model=ControlOut)
async def upsert_control(control_id: str, body: ControlUpsert, s: AsyncSession = Depends(get_session)):
    return await control_store.upsert_control(s, control_id, body)


@router.post("/{control_id}/deprecate", response_model=ControlOut)
async def deprecate_control(
    control_id: str, body: ControlDeprecateRequest, s: AsyncSession = Depends(get_session),
):
    control, _ = await control_store.deprecate_control(s, control_id, body.reason, body.expected_version)
    return control


@router.post("/{control_id}/evidence", response_model=EvidenceOut, status_code=201)
async def add_evidence(control_id: str, body: EvidenceCreate, s: AsyncSession = Depends(get_session)):
    return await control_store.add_evidence(s, control_id, body)


@router.get("/{control_id}/requirements", response_model=list[ControlRequirementOut])
async def control_requirements(control_id: str, s: AsyncSession = Depends(get_session)):
    return await control_store.requirements_for_control(s, control_id)
