"""
Requirement/Framework Store -- /api/v1/frameworks

Frameworks, their versions and the append-only requirements of each version.
Versions are published as a whole (JSON body or YAML catalog upload) and then
moved forward through draft -> final -> active -> superseded.
"""
from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from crosswalk.database import get_session
from crosswalk.middleware.audit_auto import get_audit_actor
from crosswalk.models.enums import RequirementCategory
from crosswalk.models.framework import FrameworkVersion, Requirement
from crosswalk.schemas.framework import (
    FrameworkCreate,
    FrameworkOut,
    FrameworkVersionCreate,
    FrameworkVersionOut,
    RequirementComparisonOut,
    RequirementOut,
    VersionStatusUpdate,
)
from crosswalk.services import framework_store
from crosswalk.services.drift_detector import compare_requirement_versions
from crosswalk.services.framework_import import import_version_yaml

router = APIRouter(prefix="/api/v1/frameworks", tags=["Frameworks"])


# ─── Helpers ───────────────────────────────────────────────────

async def _version_out(s: AsyncSession, v: FrameworkVersion) -> FrameworkVersionOut:
    out = FrameworkVersionOut.model_validate(v)
    out.requirement_count = await framework_store.count_requirements(s, v.id)
    return out


async def _requirement_out(s: AsyncSession, r: Requirement) -> RequirementOut:
    out = RequirementOut.model_validate(r)
    successor = await framework_store.find_successor(s, r)
    out.superseded_by = successor.requirement_id if successor else None
    return out


# ─── Frameworks ────────────────────────────────────────────────

@router.get("", response_model=list[FrameworkOut])
async def list_frameworks(s: AsyncSession = Depends(get_session)):
    result = []
    for fw in await framework_store.list_frameworks(s):
        out = FrameworkOut.model_validate(fw)
        active = await framework_store.find_active_version(s, fw.id)
        out.active_version_id = active.id if active else None
        result.append(out)
    return result


@router.post("", response_model=FrameworkOut, status_code=201)
async def create_framework(body: FrameworkCreate, s: AsyncSession = Depends(get_session)):
    return await framework_store.create_framework(s, body)


@router.get("/{framework_id}", response_model=FrameworkOut)
async def get_framework(framework_id: str, s: AsyncSession = Depends(get_session)):
    fw = await framework_store.get_framework(s, framework_id)
    out = FrameworkOut.model_validate(fw)
    active = await framework_store.find_active_version(s, framework_id)
    out.active_version_id = active.id if active else None
    return out


# ─── Versions ──────────────────────────────────────────────────

@router.get("/{framework_id}/versions", response_model=list[FrameworkVersionOut])
async def list_versions(framework_id: str, s: AsyncSession = Depends(get_session)):
    return [await _version_out(s, v) for v in await framework_store.list_versions(s, framework_id)]


@router.post("/{framework_id}/versions", response_model=FrameworkVersionOut, status_code=201)
async def publish_version(
    framework_id: str, body: FrameworkVersionCreate, s: AsyncSession = Depends(get_session),
):
    if body.published_by is None:
        body.published_by = get_audit_actor()
    version = await framework_store.publish_version(s, framework_id, body)
    return await _version_out(s, version)


@router.post("/{framework_id}/versions/import", response_model=FrameworkVersionOut, status_code=201)
async def import_version(
    framework_id: str,
    file: UploadFile = File(...),
    s: AsyncSession = Depends(get_session),
):
    if not file.filename or not file.filename.endswith((".yaml", ".yml")):
        raise HTTPException(400, "File must have a .yaml or .yml extension")
    version = await import_version_yaml(s, framework_id, file.file, published_by=get_audit_actor())
    return await _version_out(s, version)


@router.get("/{framework_id}/active-version", response_model=FrameworkVersionOut)
async def get_active_version(framework_id: str, s: AsyncSession = Depends(get_session)):
    version = await framework_store.get_active_version(s, framework_id)
    return await _version_out(s, version)


@router.put("/{framework_id}/versions/{version_id}/status", response_model=FrameworkVersionOut)
async def change_version_status(
    framework_id: str, version_id: str, body: VersionStatusUpdate, s: AsyncSession = Depends(get_session),
):
    await framework_store.get_version(s, version_id, framework_id)
    version = await framework_store.transition_version(s, version_id, body.status, body.expected_version)
    return await _version_out(s, version)


# ─── Requirements ──────────────────────────────────────────────

@router.get("/{framework_id}/versions/{version_id}/requirements", response_model=list[RequirementOut])
async def list_requirements(
    framework_id: str,
    version_id: str,
    category: RequirementCategory | None = Query(None),
    s: AsyncSession = Depends(get_session),
):
    reqs = await framework_store.list_requirements(s, framework_id, version_id, category)
    return [await _requirement_out(s, r) for r in reqs]


@router.get("/{framework_id}/versions/{version_id}/requirements/{requirement_id}", response_model=RequirementOut)
async def get_requirement(
    framework_id: str, version_id: str, requirement_id: str, s: AsyncSession = Depends(get_session),
):
    req = await framework_store.get_requirement(s, framework_id, requirement_id, version_id)
    return await _requirement_out(s, req)


@router.get(
    "/{framework_id}/versions/{version_id}/requirements/{requirement_id}/compare/{old_version_id}",
    response_model=RequirementComparisonOut,
)
async def compare_requirement(
    framework_id: str,
    version_id: str,
    requirement_id: str,
    old_version_id: str,
    s: AsyncSession = Depends(get_session),
):
    return await compare_requirement_versions(s, framework_id, version_id, requirement_id, old_version_id)
