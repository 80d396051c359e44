"""
Requirement/Framework Store.

Covers:
- framework + version publish (JSON), requirement reads
- publish validation leaves nothing behind (dangling supersedes, duplicate ids,
  unknown parent, effective date not after the latest version)
- forward-only version lifecycle, activation supersedes the previous version
- successor/predecessor lookup across adjacent versions
- store integrity check
"""
from datetime import date

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from crosswalk.exceptions import StoreIntegrityError
from crosswalk.models.enums import FrameworkVersionStatus
from crosswalk.models.framework import FrameworkVersion, Requirement
from crosswalk.schemas.framework import FrameworkVersionCreate
from crosswalk.services import framework_store
from hipaa_data import FRAMEWORK_ID, V2024, V2026, v2024_requirements, v2026_requirements


def _version_body(code: str, effective: str, requirements: list) -> dict:
    return {
        "version_code": code,
        "effective_date": effective,
        "requirements": [r.model_dump(mode="json") for r in requirements],
    }


async def _requirement_count(session_factory, version_id: str) -> int:
    async with session_factory() as s:
        return (await s.execute(
            select(func.count(Requirement.id)).where(Requirement.version_id == version_id)
        )).scalar()


# ─── Publish ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_framework_and_publish_version(client: AsyncClient):
    r = await client.post("/api/v1/frameworks", json={"id": FRAMEWORK_ID, "name": "HIPAA Security Rule"})
    assert r.status_code == 201

    r = await client.post(
        f"/api/v1/frameworks/{FRAMEWORK_ID}/versions",
        json=_version_body("v2024", "2024-01-01", v2024_requirements()),
        headers={"X-Actor": "compliance@example.com"},
    )
    assert r.status_code == 201
    data = r.json()
    assert data["id"] == V2024
    assert data["status"] == "final"
    assert data["requirement_count"] == 3
    assert data["published_by"] == "compliance@example.com"

    r = await client.get(f"/api/v1/frameworks/{FRAMEWORK_ID}/versions/{V2024}/requirements")
    assert r.status_code == 200
    assert [req["requirement_id"] for req in r.json()] == ["164.312(a)(1)", "164.312(b)", "164.312(d)"]


@pytest.mark.asyncio
async def test_duplicate_framework_rejected(client: AsyncClient, hipaa):
    r = await client.post("/api/v1/frameworks", json={"id": FRAMEWORK_ID, "name": "Again"})
    assert r.status_code == 422
    assert r.json()["error"] == "ValidationError"


@pytest.mark.asyncio
async def test_dangling_supersedes_persists_nothing(client: AsyncClient, session_factory, hipaa):
    reqs = v2026_requirements()
    reqs[0].supersedes = "164.999(z)"
    r = await client.post(
        f"/api/v1/frameworks/{FRAMEWORK_ID}/versions",
        json=_version_body("v2026", "2026-01-01", reqs),
    )
    assert r.status_code == 422
    data = r.json()
    assert data["error"] == "ValidationError"
    assert data["supersedes"] == ["164.999(z)"]
    assert data["prior_version_id"] == V2024

    async with session_factory() as s:
        assert await s.get(FrameworkVersion, V2026) is None
    assert await _requirement_count(session_factory, V2026) == 0


@pytest.mark.asyncio
async def test_effective_date_must_follow_active_version(client: AsyncClient, hipaa):
    r = await client.post(
        f"/api/v1/frameworks/{FRAMEWORK_ID}/versions",
        json=_version_body("v2023", "2023-06-01", []),
    )
    assert r.status_code == 422
    assert r.json()["active_version_id"] == V2024


@pytest.mark.asyncio
async def test_version_cannot_land_between_published_versions(client: AsyncClient, session_factory, hipaa_v2026):
    r = await client.post(
        f"/api/v1/frameworks/{FRAMEWORK_ID}/versions",
        json=_version_body("v2025", "2025-01-01", []),
    )
    assert r.status_code == 422
    data = r.json()
    assert data["latest_version_id"] == V2026
    assert data["latest_effective_date"] == "2026-01-01"

    async with session_factory() as s:
        assert await s.get(FrameworkVersion, f"{FRAMEWORK_ID}_v2025") is None
        requirement = await framework_store.get_requirement(s, FRAMEWORK_ID, "164.312(d)", V2026)
        predecessor = await framework_store.find_predecessor(s, requirement)
        assert predecessor.version_id == V2024


@pytest.mark.asyncio
async def test_duplicate_requirement_ids_rejected(client: AsyncClient, hipaa):
    reqs = v2026_requirements()
    reqs[1].requirement_id = reqs[0].requirement_id
    r = await client.post(
        f"/api/v1/frameworks/{FRAMEWORK_ID}/versions",
        json=_version_body("v2026", "2026-01-01", reqs),
    )
    assert r.status_code == 422
    assert r.json()["requirement_ids"] == ["164.312(d)"]


@pytest.mark.asyncio
async def test_unknown_parent_rejected(client: AsyncClient, hipaa):
    reqs = v2026_requirements()
    reqs[0].parent_requirement_id = "164.312"
    r = await client.post(
        f"/api/v1/frameworks/{FRAMEWORK_ID}/versions",
        json=_version_body("v2026", "2026-01-01", reqs),
    )
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_version_cannot_be_published_active(client: AsyncClient, hipaa):
    body = _version_body("v2026", "2026-01-01", [])
    body["status"] = "active"
    r = await client.post(f"/api/v1/frameworks/{FRAMEWORK_ID}/versions", json=body)
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_unknown_framework_is_404(client: AsyncClient):
    r = await client.get("/api/v1/frameworks/NOPE/versions")
    assert r.status_code == 404
    assert r.json()["error"] == "NotFoundError"


# ─── Lifecycle ─────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_lifecycle_is_forward_only(client: AsyncClient, hipaa):
    r = await client.put(
        f"/api/v1/frameworks/{FRAMEWORK_ID}/versions/{V2024}/status", json={"status": "final"},
    )
    assert r.status_code == 409
    assert r.json()["error"] == "InvalidStateTransition"


@pytest.mark.asyncio
async def test_activation_supersedes_previous_active(client: AsyncClient, hipaa_v2026):
    r = await client.put(
        f"/api/v1/frameworks/{FRAMEWORK_ID}/versions/{V2026}/status", json={"status": "active"},
    )
    assert r.status_code == 200
    assert r.json()["status"] == "active"

    r = await client.get(f"/api/v1/frameworks/{FRAMEWORK_ID}/active-version")
    assert r.json()["id"] == V2026

    r = await client.get(f"/api/v1/frameworks/{FRAMEWORK_ID}/versions")
    statuses = {v["id"]: v["status"] for v in r.json()}
    assert statuses == {V2024: "superseded", V2026: "active"}


@pytest.mark.asyncio
async def test_stale_version_stamp_rejected(client: AsyncClient, hipaa_v2026):
    r = await client.put(
        f"/api/v1/frameworks/{FRAMEWORK_ID}/versions/{V2026}/status",
        json={"status": "active", "expected_version": 99},
    )
    assert r.status_code == 409
    assert r.json()["error"] == "ConcurrentModificationError"


@pytest.mark.asyncio
async def test_draft_version_can_be_finalized(session_factory, hipaa):
    async with session_factory() as s:
        version = await framework_store.publish_version(s, FRAMEWORK_ID, FrameworkVersionCreate(
            version_code="v2025-draft",
            effective_date=date(2025, 6, 1),
            status=FrameworkVersionStatus.DRAFT,
        ))
        version = await framework_store.transition_version(s, version.id, FrameworkVersionStatus.FINAL)
        assert version.status == FrameworkVersionStatus.FINAL


# ─── Requirement lookups ───────────────────────────────────────

@pytest.mark.asyncio
async def test_successor_and_predecessor(session_factory, hipaa_v2026):
    async with session_factory() as s:
        old = await framework_store.get_requirement(s, FRAMEWORK_ID, "164.312(d)", V2024)
        new = await framework_store.get_requirement(s, FRAMEWORK_ID, "164.312(d)", V2026)

        successor = await framework_store.find_successor(s, old)
        assert successor is not None and successor.id == new.id
        predecessor = await framework_store.find_predecessor(s, new)
        assert predecessor is not None and predecessor.id == old.id
        assert await framework_store.find_successor(s, new) is None


@pytest.mark.asyncio
async def test_requirement_shows_superseded_by(client: AsyncClient, hipaa_v2026):
    r = await client.get(f"/api/v1/frameworks/{FRAMEWORK_ID}/versions/{V2024}/requirements/164.312(d)")
    assert r.status_code == 200
    assert r.json()["superseded_by"] == "164.312(d)"

    r = await client.get(f"/api/v1/frameworks/{FRAMEWORK_ID}/versions/{V2026}/requirements/164.312(d)")
    assert r.json()["superseded_by"] is None
    assert r.json()["supersedes"] == "164.312(d)"


@pytest.mark.asyncio
async def test_compare_requirement_versions(client: AsyncClient, hipaa_v2026):
    r = await client.get(
        f"/api/v1/frameworks/{FRAMEWORK_ID}/versions/{V2026}/requirements/164.312(d)/compare/{V2024}"
    )
    assert r.status_code == 200
    data = r.json()
    assert data["has_changes"] is True
    assert data["significance"] == "breaking"
    assert data["change_type"] == "requirement_strengthened"
    assert data["keywords_added"] == ["phishing resistant", "privileged access"]
    assert "".join(seg["new_text"] for seg in data["segments"]).startswith("implement MFA")


# ─── Integrity ─────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_integrity_check_passes_on_clean_store(session_factory, hipaa_v2026):
    async with session_factory() as s:
        await framework_store.verify_store_integrity(s)


@pytest.mark.asyncio
async def test_integrity_check_detects_two_active_versions(session_factory, hipaa_v2026):
    async with session_factory() as s:
        version = await s.get(FrameworkVersion, V2026)
        version.status = FrameworkVersionStatus.ACTIVE
        await s.commit()

    async with session_factory() as s:
        with pytest.raises(StoreIntegrityError) as exc_info:
            await framework_store.verify_store_integrity(s)
    assert "2 active versions" in exc_info.value.problems[0]


@pytest.mark.asyncio
async def test_integrity_check_detects_broken_supersedes_chain(session_factory, hipaa_v2026):
    async with session_factory() as s:
        s.add(Requirement(
            framework_id=FRAMEWORK_ID,
            version_id=V2026,
            requirement_id="164.312(e)(1)",
            section_code="164.312(e)(1)",
            requirement_text="Implement transmission security measures.",
            supersedes="164.312(e)(9)",
        ))
        await s.commit()

    async with session_factory() as s:
        with pytest.raises(StoreIntegrityError) as exc_info:
            await framework_store.verify_store_integrity(s)
    assert exc_info.value.problems == [
        f"requirement 164.312(e)(1) in {V2026} supersedes 164.312(e)(9), "
        f"which is missing from prior version {V2024}"
    ]
