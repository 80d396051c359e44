"""
Requirement update decisions -- /api/v1/requirement-updates

Operator answer to a changed requirement in a newly published version:
accept (carry the mapping forward), reject (accept the risk) or defer.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from crosswalk.database import get_session
from crosswalk.middleware.audit_auto import get_audit_actor
from crosswalk.models.enums import RequirementUpdateDecision
from crosswalk.schemas.drift import DriftOut, RequirementUpdateRequest, RequirementUpdateResult
from crosswalk.services import drift_detector

router = APIRouter(prefix="/api/v1/requirement-updates", tags=["Requirement Updates"])


@router.post(
    "/{framework_id}/{version_id}/{requirement_id}/{decision}",
    response_model=RequirementUpdateResult,
)
async def decide(
    framework_id: str,
    version_id: str,
    requirement_id: str,
    decision: RequirementUpdateDecision,
    body: RequirementUpdateRequest | None = None,
    s: AsyncSession = Depends(get_session),
):
    body = body or RequirementUpdateRequest()
    drift, mapping = await drift_detector.apply_requirement_update(
        s,
        framework_id,
        version_id,
        requirement_id,
        decision,
        actor=body.actor or get_audit_actor(),
        note=body.note,
    )
    return RequirementUpdateResult(
        decision=decision.value,
        drift=DriftOut.model_validate(drift),
        carried_mapping_id=mapping.id if mapping else None,
    )
