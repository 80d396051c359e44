"""
Crosswalk Mapper.

Covers:
- mapping create with coverage computed on write
- link validation (unknown/duplicate controls, weight range, one mapping per requirement)
- PATCH with optimistic version stamp
- gap analysis endpoint
- bulk recomputation
"""
import pytest
from httpx import AsyncClient

from crosswalk.models.enums import ComplianceStatus
from crosswalk.models.mapping import Mapping
from hipaa_data import FRAMEWORK_ID, V2024


def _mapping_body(requirement_id="164.312(d)", links=None, **extra) -> dict:
    body = {
        "framework_id": FRAMEWORK_ID,
        "version_id": V2024,
        "requirement_id": requirement_id,
        "links": links if links is not None else [
            {"control_id": "CTRL-MFA", "contribution_weight": 60, "coverage_aspects": ["mfa"]},
        ],
    }
    body.update(extra)
    return body


# ─── Create ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_mapping_computes_coverage(client: AsyncClient, hipaa, mfa_control):
    r = await client.post("/api/v1/mappings", json=_mapping_body(created_by="grc@example.com"))
    assert r.status_code == 201
    data = r.json()
    assert data["requirement_id"] == "164.312(d)"
    assert data["framework_id"] == FRAMEWORK_ID
    assert data["coverage_score"] == 60.0
    assert data["compliance_status"] == "partial"
    assert data["review_status"] == "active"
    assert data["last_computed_at"] is not None
    assert data["links"][0]["coverage_aspects"] == ["mfa"]


@pytest.mark.asyncio
async def test_unmapped_links_give_non_compliant(client: AsyncClient, hipaa):
    r = await client.post("/api/v1/mappings", json=_mapping_body("164.312(b)", links=[]))
    assert r.status_code == 201
    assert r.json()["compliance_status"] == "non_compliant"


@pytest.mark.asyncio
async def test_one_mapping_per_requirement(client: AsyncClient, mfa_mapping):
    r = await client.post("/api/v1/mappings", json=_mapping_body())
    assert r.status_code == 422
    assert r.json()["mapping_id"] == mfa_mapping


@pytest.mark.asyncio
async def test_unknown_control_is_404(client: AsyncClient, hipaa):
    r = await client.post("/api/v1/mappings", json=_mapping_body(links=[{"control_id": "CTRL-NOPE"}]))
    assert r.status_code == 404
    assert r.json()["control_ids"] == ["CTRL-NOPE"]


@pytest.mark.asyncio
async def test_duplicate_control_link_rejected(client: AsyncClient, hipaa, mfa_control):
    link = {"control_id": mfa_control, "contribution_weight": 30}
    r = await client.post("/api/v1/mappings", json=_mapping_body(links=[link, link]))
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_weight_out_of_range(client: AsyncClient, hipaa, mfa_control):
    r = await client.post(
        "/api/v1/mappings", json=_mapping_body(links=[{"control_id": mfa_control, "contribution_weight": 150}]),
    )
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_unknown_requirement_is_404(client: AsyncClient, hipaa):
    r = await client.post("/api/v1/mappings", json=_mapping_body("164.999(z)", links=[]))
    assert r.status_code == 404


# ─── Update ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_patch_links_and_version_stamp(client: AsyncClient, mfa_mapping):
    r = await client.get(f"/api/v1/mappings/{mfa_mapping}")
    version = r.json()["version"]

    r = await client.patch(f"/api/v1/mappings/{mfa_mapping}", json={
        "expected_version": version,
        "links": [{"control_id": "CTRL-MFA", "contribution_weight": 100, "coverage_aspects": ["mfa"]}],
    })
    assert r.status_code == 200
    data = r.json()
    assert data["coverage_score"] == 100.0
    assert data["compliance_status"] == "compliant"
    assert data["version"] == version + 1

    r = await client.patch(f"/api/v1/mappings/{mfa_mapping}", json={
        "expected_version": version,
        "notes": "stale write",
    })
    assert r.status_code == 409
    assert r.json()["actual"] == version + 1

    r = await client.get(f"/api/v1/mappings/{mfa_mapping}")
    assert r.json()["notes"] is None


@pytest.mark.asyncio
async def test_patch_not_applicable(client: AsyncClient, mfa_mapping):
    r = await client.get(f"/api/v1/mappings/{mfa_mapping}")
    r = await client.patch(f"/api/v1/mappings/{mfa_mapping}", json={
        "expected_version": r.json()["version"],
        "not_applicable": True,
        "coverage_justification": "No remote access to ePHI systems",
    })
    assert r.status_code == 200
    assert r.json()["compliance_status"] == "not_applicable"


@pytest.mark.asyncio
async def test_patch_cannot_deprecate(client: AsyncClient, mfa_mapping):
    r = await client.get(f"/api/v1/mappings/{mfa_mapping}")
    r = await client.patch(f"/api/v1/mappings/{mfa_mapping}", json={
        "expected_version": r.json()["version"],
        "review_status": "deprecated",
    })
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_patch_requires_version(client: AsyncClient, mfa_mapping):
    r = await client.patch(f"/api/v1/mappings/{mfa_mapping}", json={"notes": "x"})
    assert r.status_code == 422


# ─── Reads ─────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_filters(client: AsyncClient, mfa_mapping):
    r = await client.get("/api/v1/mappings", params={"framework_id": FRAMEWORK_ID})
    assert [m["id"] for m in r.json()] == [mfa_mapping]

    r = await client.get("/api/v1/mappings", params={"compliance_status": "compliant"})
    assert r.json() == []


@pytest.mark.asyncio
async def test_gap_analysis_endpoint(client: AsyncClient, mfa_mapping):
    r = await client.get(f"/api/v1/mappings/{mfa_mapping}/gap-analysis", params={"as_of": "2026-01-01"})
    assert r.status_code == 200
    data = r.json()
    assert data["requirement_id"] == "164.312(d)"
    assert data["coverage_score"] == 60.0
    # high-risk requirement: 60 days
    assert data["priority"] == "high"
    assert data["due_date"] == "2026-03-02"
    assert data["missing_aspects"] == []


@pytest.mark.asyncio
async def test_unknown_mapping_is_404(client: AsyncClient):
    r = await client.get("/api/v1/mappings/999")
    assert r.status_code == 404


# ─── Recompute ─────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_recompute_is_idempotent(client: AsyncClient, mfa_mapping):
    r = await client.post("/api/v1/mappings/recompute")
    assert r.status_code == 200
    assert r.json() == {"total": 1, "changed": 0, "conflicts": 0}


@pytest.mark.asyncio
async def test_recompute_repairs_drifted_score(client: AsyncClient, session_factory, mfa_mapping):
    async with session_factory() as s:
        mapping = await s.get(Mapping, mfa_mapping)
        mapping.coverage_score = 0.0
        mapping.compliance_status = ComplianceStatus.NON_COMPLIANT
        await s.commit()

    r = await client.post("/api/v1/mappings/recompute")
    assert r.json()["changed"] == 1

    r = await client.get(f"/api/v1/mappings/{mfa_mapping}")
    assert r.json()["coverage_score"] == 60.0
    assert r.json()["compliance_status"] == "partial"
