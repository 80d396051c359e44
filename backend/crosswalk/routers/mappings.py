"""
Crosswalk Mapper -- /api/v1/mappings

One mapping per requirement row, linking it to any number of controls.
Every create/update recomputes coverage; PATCH requires the version stamp
the caller last read.
"""
from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from crosswalk.config import Settings, get_app_settings
from crosswalk.database import get_session, get_session_factory
from crosswalk.models.enums import ComplianceStatus, GapStatus, MappingReviewStatus
from crosswalk.models.framework import Requirement
from crosswalk.models.mapping import Mapping
from crosswalk.schemas.mapping import (
    GapAnalysisOut,
    MappingCreate,
    MappingGapOut,
    MappingOut,
    MappingUpdate,
    RecomputeResult,
)
from crosswalk.services import crosswalk as mapper

router = APIRouter(prefix="/api/v1/mappings", tags=["Mappings"])


def _mapping_out(m: Mapping, r: Requirement) -> MappingOut:
    out = MappingOut.model_validate(m)
    out.framework_id = r.framework_id
    out.version_id = r.version_id
    out.requirement_id = r.requirement_id
    out.category = r.category
    return out


async def _load_out(s: AsyncSession, m: Mapping) -> MappingOut:
    return _mapping_out(m, await s.get(Requirement, m.requirement_pk))


@router.get("", response_model=list[MappingOut])
async def list_mappings(
    framework_id: str | None = Query(None),
    version_id: str | None = Query(None),
    compliance_status: ComplianceStatus | None = Query(None),
    review_status: MappingReviewStatus | None = Query(None),
    s: AsyncSession = Depends(get_session),
):
    rows = await mapper.list_mappings(s, framework_id, version_id, compliance_status, review_status)
    return [_mapping_out(m, r) for m, r in rows]


@router.post("", response_model=MappingOut, status_code=201)
async def create_mapping(body: MappingCreate, s: AsyncSession = Depends(get_session)):
    mapping = await mapper.create_mapping(s, body)
    return await _load_out(s, mapping)


@router.get("/gaps", response_model=list[MappingGapOut])
async def list_gap_records(
    status: GapStatus | None = Query(GapStatus.OPEN),
    mapping_id: int | None = Query(None),
    s: AsyncSession = Depends(get_session),
):
    return await mapper.list_gap_records(s, status, mapping_id)


@router.post("/recompute", response_model=RecomputeResult)
async def recompute_all(
    session_factory=Depends(get_session_factory),
    settings: Settings = Depends(get_app_settings),
):
    return await mapper.recompute_all(session_factory, settings.RECOMPUTE_CONCURRENCY)


@router.get("/{mapping_id}", response_model=MappingOut)
async def get_mapping(mapping_id: int, s: AsyncSession = Depends(get_session)):
    return await _load_out(s, await mapper.get_mapping(s, mapping_id))


@router.patch("/{mapping_id}", response_model=MappingOut)
async def update_mapping(mapping_id: int, body: MappingUpdate, s: AsyncSession = Depends(get_session)):
    mapping = await mapper.update_mapping(s, mapping_id, body)
    return await _load_out(s, mapping)


@router.get("/{mapping_id}/gap-analysis", response_model=GapAnalysisOut)
async def gap_analysis(
    mapping_id: int,
    as_of: date | None = Query(None),
    s: AsyncSession = Depends(get_session),
):
    return await mapper.gap_analysis(s, mapping_id, as_of or date.today())
