"""
Requirement/Framework Store: versioned, append-only regulatory text.

Publishing validates the whole version before anything is added to the
session, so a rejected version leaves no rows behind. Publishing never
touches mappings; drift scans and operator decisions do that.
"""
import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from crosswalk.exceptions import (
    ConcurrentModificationError,
    InvalidStateTransition,
    NotFoundError,
    StoreIntegrityError,
    ValidationError,
)
from crosswalk.models.enums import VERSION_STATUS_ORDER, FrameworkVersionStatus
from crosswalk.models.framework import Framework, FrameworkVersion, Requirement
from crosswalk.schemas.framework import FrameworkCreate, FrameworkVersionCreate

log = logging.getLogger(__name__)


# ═══════════════════ Frameworks ═══════════════════

async def create_framework(s: AsyncSession, data: FrameworkCreate) -> Framework:
    if await s.get(Framework, data.id):
        raise ValidationError(f"Framework '{data.id}' already exists", framework_id=data.id)
    fw = Framework(**data.model_dump())
    s.add(fw)
    await s.commit()
    log.info("Framework %s created", fw.id)
    return fw


async def get_framework(s: AsyncSession, framework_id: str) -> Framework:
    fw = await s.get(Framework, framework_id)
    if not fw:
        raise NotFoundError(f"Framework '{framework_id}' not found", framework_id=framework_id)
    return fw


async def list_frameworks(s: AsyncSession) -> list[Framework]:
    return list((await s.execute(select(Framework).order_by(Framework.id))).scalars().all())


# ═══════════════════ Versions ═══════════════════

async def get_version(s: AsyncSession, version_id: str, framework_id: str | None = None) -> FrameworkVersion:
    version = await s.get(FrameworkVersion, version_id)
    if not version or (framework_id is not None and version.framework_id != framework_id):
        raise NotFoundError(
            f"Framework version '{version_id}' not found", framework_id=framework_id, version_id=version_id,
        )
    return version


async def list_versions(s: AsyncSession, framework_id: str) -> list[FrameworkVersion]:
    await get_framework(s, framework_id)
    q = (
        select(FrameworkVersion)
        .where(FrameworkVersion.framework_id == framework_id)
        .order_by(FrameworkVersion.effective_date, FrameworkVersion.id)
    )
    return list((await s.execute(q)).scalars().all())


async def find_active_version(s: AsyncSession, framework_id: str) -> FrameworkVersion | None:
    q = select(FrameworkVersion).where(
        FrameworkVersion.framework_id == framework_id,
        FrameworkVersion.status == FrameworkVersionStatus.ACTIVE,
    )
    return (await s.execute(q)).scalars().first()


async def get_active_version(s: AsyncSession, framework_id: str) -> FrameworkVersion:
    await get_framework(s, framework_id)
    version = await find_active_version(s, framework_id)
    if not version:
        raise NotFoundError(f"Framework '{framework_id}' has no active version", framework_id=framework_id)
    return version


async def prior_version(s: AsyncSession, framework_id: str, effective_date) -> FrameworkVersion | None:
    """Latest version of the framework effective strictly before ``effective_date``."""
    q = (
        select(FrameworkVersion)
        .where(
            FrameworkVersion.framework_id == framework_id,
            FrameworkVersion.effective_date < effective_date,
        )
        .order_by(FrameworkVersion.effective_date.desc(), FrameworkVersion.id.desc())
        .limit(1)
    )
    return (await s.execute(q)).scalars().first()


async def latest_version(s: AsyncSession, framework_id: str) -> FrameworkVersion | None:
    q = (
        select(FrameworkVersion)
        .where(FrameworkVersion.framework_id == framework_id)
        .order_by(FrameworkVersion.effective_date.desc(), FrameworkVersion.id.desc())
        .limit(1)
    )
    return (await s.execute(q)).scalars().first()


async def count_requirements(s: AsyncSession, version_id: str) -> int:
    q = select(func.count(Requirement.id)).where(Requirement.version_id == version_id)
    return (await s.execute(q)).scalar() or 0


async def publish_version(s: AsyncSession, framework_id: str, data: FrameworkVersionCreate) -> FrameworkVersion:
    """Validate and persist a new framework version with all its requirements.

    Raises ValidationError when:
      - the effective date is not strictly after every existing version of
        the framework, so a version never lands between two published ones,
      - a ``supersedes`` id does not exist in the immediately prior version,
      - requirement ids repeat within the version,
      - a ``parent_requirement_id`` is not part of the version.
    """
    await get_framework(s, framework_id)

    if data.status not in (FrameworkVersionStatus.DRAFT, FrameworkVersionStatus.FINAL):
        raise ValidationError(
            "A version is published as draft or final and activated afterwards",
            status=data.status.value,
        )
    if data.sunset_date and data.sunset_date <= data.effective_date:
        raise ValidationError("sunset_date must be after effective_date")

    version_id = data.id or f"{framework_id}_{data.version_code}"
    if await s.get(FrameworkVersion, version_id):
        raise ValidationError(f"Framework version '{version_id}' already exists", version_id=version_id)
    dup_code = (await s.execute(
        select(FrameworkVersion.id).where(
            FrameworkVersion.framework_id == framework_id,
            FrameworkVersion.version_code == data.version_code,
        )
    )).scalar_one_or_none()
    if dup_code:
        raise ValidationError(
            f"Version code '{data.version_code}' already published", version_id=dup_code,
        )

    latest = await latest_version(s, framework_id)
    if latest and data.effective_date <= latest.effective_date:
        active = await find_active_version(s, framework_id)
        raise ValidationError(
            "effective_date must be after the latest version's effective_date",
            latest_version_id=latest.id,
            latest_effective_date=latest.effective_date.isoformat(),
            active_version_id=active.id if active else None,
        )

    rids = [r.requirement_id for r in data.requirements]
    duplicates = sorted({rid for rid in rids if rids.count(rid) > 1})
    if duplicates:
        raise ValidationError("Duplicate requirement ids in version", requirement_ids=duplicates)

    orphans = sorted({
        r.parent_requirement_id for r in data.requirements
        if r.parent_requirement_id and r.parent_requirement_id not in rids
    })
    if orphans:
        raise ValidationError("Unknown parent_requirement_id in version", requirement_ids=orphans)

    superseding = [r for r in data.requirements if r.supersedes]
    if superseding:
        prior = await prior_version(s, framework_id, data.effective_date)
        prior_rids: set[str] = set()
        if prior:
            prior_rids = set((await s.execute(
                select(Requirement.requirement_id).where(Requirement.version_id == prior.id)
            )).scalars().all())
        dangling = sorted({r.supersedes for r in superseding if r.supersedes not in prior_rids})
        if dangling:
            raise ValidationError(
                "supersedes does not resolve to a requirement in the prior version",
                prior_version_id=prior.id if prior else None,
                supersedes=dangling,
            )

    version = FrameworkVersion(
        id=version_id,
        framework_id=framework_id,
        version_code=data.version_code,
        effective_date=data.effective_date,
        sunset_date=data.sunset_date,
        status=data.status,
        source_url=data.source_url,
        published_by=data.published_by,
    )
    s.add(version)
    for req in data.requirements:
        s.add(Requirement(framework_id=framework_id, version_id=version_id, **req.model_dump()))

    try:
        await s.commit()
    except IntegrityError as exc:
        await s.rollback()
        raise ValidationError("Version could not be stored", error=str(exc.orig)) from exc

    log.info(
        "Published %s version %s (%d requirements, effective %s)",
        framework_id, version_id, len(data.requirements), data.effective_date,
    )
    return version


async def transition_version(
    s: AsyncSession,
    version_id: str,
    new_status: FrameworkVersionStatus,
    expected_version: int | None = None,
) -> FrameworkVersion:
    """Move a version forward in draft -> final -> active -> superseded.

    Activating a version supersedes the framework's current active version,
    which must be older.
    """
    version = await get_version(s, version_id)
    if expected_version is not None and version.version != expected_version:
        raise ConcurrentModificationError(
            "Framework version was modified concurrently",
            version_id=version_id, expected=expected_version, actual=version.version,
        )

    current = version.status
    if VERSION_STATUS_ORDER[new_status] <= VERSION_STATUS_ORDER[current]:
        raise InvalidStateTransition(
            f"Cannot move version from '{current.value}' to '{new_status.value}'",
            current=current.value, requested=new_status.value,
        )

    if new_status == FrameworkVersionStatus.ACTIVE:
        previous = await find_active_version(s, version.framework_id)
        if previous and previous.effective_date >= version.effective_date:
            raise InvalidStateTransition(
                "Only a version newer than the active one can be activated",
                active_version_id=previous.id,
            )
        if previous:
            previous.status = FrameworkVersionStatus.SUPERSEDED
            log.info("Version %s superseded by %s", previous.id, version.id)

    version.status = new_status
    try:
        await s.commit()
    except StaleDataError as exc:
        await s.rollback()
        raise ConcurrentModificationError("Framework version was modified concurrently", version_id=version_id) from exc

    log.info("Version %s moved %s -> %s", version.id, current.value, new_status.value)
    return version


# ═══════════════════ Requirements ═══════════════════

async def get_requirement(s: AsyncSession, framework_id: str, requirement_id: str, version_id: str) -> Requirement:
    q = select(Requirement).where(
        Requirement.framework_id == framework_id,
        Requirement.version_id == version_id,
        Requirement.requirement_id == requirement_id,
    )
    req = (await s.execute(q)).scalars().first()
    if not req:
        raise NotFoundError(
            f"Requirement '{requirement_id}' not found in {version_id}",
            framework_id=framework_id, version_id=version_id, requirement_id=requirement_id,
        )
    return req


async def list_requirements(
    s: AsyncSession, framework_id: str, version_id: str, category=None,
) -> list[Requirement]:
    await get_version(s, version_id, framework_id)
    q = select(Requirement).where(Requirement.version_id == version_id)
    if category:
        q = q.where(Requirement.category == category)
    return list((await s.execute(q.order_by(Requirement.section_code, Requirement.requirement_id))).scalars().all())


async def find_successor(s: AsyncSession, requirement: Requirement) -> Requirement | None:
    """The requirement in the next version that declares ``supersedes`` = this one."""
    current = await s.get(FrameworkVersion, requirement.version_id)
    q = (
        select(Requirement)
        .join(FrameworkVersion, Requirement.version_id == FrameworkVersion.id)
        .where(
            Requirement.framework_id == requirement.framework_id,
            Requirement.supersedes == requirement.requirement_id,
            FrameworkVersion.effective_date > current.effective_date,
        )
        .order_by(FrameworkVersion.effective_date)
        .limit(1)
    )
    successor = (await s.execute(q)).scalars().first()
    if successor is None:
        return None
    # Only the immediately following version may supersede
    successor_version = await s.get(FrameworkVersion, successor.version_id)
    prior = await prior_version(s, requirement.framework_id, successor_version.effective_date)
    return successor if prior and prior.id == requirement.version_id else None


async def find_predecessor(s: AsyncSession, requirement: Requirement) -> Requirement | None:
    if not requirement.supersedes:
        return None
    current = await s.get(FrameworkVersion, requirement.version_id)
    prior = await prior_version(s, requirement.framework_id, current.effective_date)
    if not prior:
        return None
    q = select(Requirement).where(
        Requirement.version_id == prior.id,
        Requirement.requirement_id == requirement.supersedes,
    )
    return (await s.execute(q)).scalars().first()


# ═══════════════════ Integrity ═══════════════════

async def _broken_supersedes(s: AsyncSession) -> list[str]:
    """``supersedes`` ids that do not resolve in the version immediately before."""
    versions = (await s.execute(
        select(FrameworkVersion.id, FrameworkVersion.framework_id)
        .order_by(FrameworkVersion.framework_id, FrameworkVersion.effective_date, FrameworkVersion.id)
    )).all()
    rows = (await s.execute(
        select(Requirement.version_id, Requirement.requirement_id, Requirement.supersedes)
    )).all()
    rids_by_version: dict[str, set[str]] = {}
    for vid, rid, _ in rows:
        rids_by_version.setdefault(vid, set()).add(rid)

    prior_of: dict[str, str | None] = {}
    previous: tuple[str, str] | None = None
    for vid, fid in versions:
        prior_of[vid] = previous[0] if previous and previous[1] == fid else None
        previous = (vid, fid)

    problems = []
    for vid, rid, supersedes in rows:
        if not supersedes or vid not in prior_of:
            continue
        prior = prior_of[vid]
        if prior is None or supersedes not in rids_by_version.get(prior, set()):
            problems.append(
                f"requirement {rid} in {vid} supersedes {supersedes}, "
                f"which is missing from prior version {prior}"
            )
    return problems


async def verify_store_integrity(s: AsyncSession) -> None:
    """Raise StoreIntegrityError if the store references missing records."""
    problems: list[str] = []

    orphan_versions = (await s.execute(
        select(FrameworkVersion.id, FrameworkVersion.framework_id)
        .outerjoin(Framework, FrameworkVersion.framework_id == Framework.id)
        .where(Framework.id.is_(None))
    )).all()
    for vid, fid in orphan_versions:
        problems.append(f"version {vid} references missing framework {fid}")

    orphan_reqs = (await s.execute(
        select(Requirement.id, Requirement.requirement_id, Requirement.version_id)
        .outerjoin(FrameworkVersion, Requirement.version_id == FrameworkVersion.id)
        .where(FrameworkVersion.id.is_(None))
    )).all()
    for pk, rid, vid in orphan_reqs:
        problems.append(f"requirement {rid} (#{pk}) references missing version {vid}")

    mismatched = (await s.execute(
        select(Requirement.id, Requirement.requirement_id, Requirement.framework_id, FrameworkVersion.framework_id)
        .join(FrameworkVersion, Requirement.version_id == FrameworkVersion.id)
        .where(Requirement.framework_id != FrameworkVersion.framework_id)
    )).all()
    for pk, rid, req_fid, ver_fid in mismatched:
        problems.append(f"requirement {rid} (#{pk}) belongs to {req_fid} but its version to {ver_fid}")

    multi_active = (await s.execute(
        select(FrameworkVersion.framework_id, func.count(FrameworkVersion.id))
        .where(FrameworkVersion.status == FrameworkVersionStatus.ACTIVE)
        .group_by(FrameworkVersion.framework_id)
        .having(func.count(FrameworkVersion.id) > 1)
    )).all()
    for fid, cnt in multi_active:
        problems.append(f"framework {fid} has {cnt} active versions")

    problems.extend(await _broken_supersedes(s))

    if problems:
        for problem in problems:
            log.error("Store integrity: %s", problem)
        raise StoreIntegrityError(problems)
    log.info("Store integrity verified")
