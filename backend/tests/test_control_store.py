"""
Control Store.

Covers:
- upsert validation (rating, evidence dates, status transitions, version stamp)
- coverage recomputed when a control or its evidence changes
- one-way deprecation flags linked mappings and records gaps
- evidence verification and expiry
- inverse lookup control -> requirements
"""
from datetime import date

import pytest
from httpx import AsyncClient

from crosswalk.schemas.mapping import MappingCreate, MappingLinkIn
from crosswalk.services import crosswalk as mapper
from hipaa_data import FRAMEWORK_ID, V2024


def _control_body(**overrides) -> dict:
    body = {
        "title": "Centralized audit logging",
        "control_family": "Audit and Accountability",
        "status": "implemented",
        "effectiveness_rating": 4,
        "evidence": [{
            "title": "SIEM retention settings",
            "evidence_type": "config_export",
            "collected_date": "2024-02-01",
            "expiration_date": "2025-01-01",
            "state": "verified",
        }],
    }
    body.update(overrides)
    return body


async def _map_audit_requirement(session_factory, control_id: str) -> int:
    async with session_factory() as s:
        mapping = await mapper.create_mapping(s, MappingCreate(
            framework_id=FRAMEWORK_ID,
            version_id=V2024,
            requirement_id="164.312(b)",
            links=[MappingLinkIn(control_id=control_id, contribution_weight=100, coverage_aspects=["audit logging"])],
        ))
    return mapping.id


# ─── Upsert ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_and_get_control(client: AsyncClient):
    r = await client.put("/api/v1/controls/CTRL-LOG", json=_control_body())
    assert r.status_code == 200
    data = r.json()
    assert data["id"] == "CTRL-LOG"
    assert data["has_verified_evidence"] is True
    assert data["evidence"][0]["verified_at"] is not None

    r = await client.get("/api/v1/controls/CTRL-LOG")
    assert r.status_code == 200
    assert r.json()["title"] == "Centralized audit logging"


@pytest.mark.asyncio
async def test_rating_out_of_range(client: AsyncClient):
    r = await client.put("/api/v1/controls/CTRL-LOG", json=_control_body(effectiveness_rating=7))
    assert r.status_code == 422
    assert r.json()["error"] == "ValidationError"


@pytest.mark.asyncio
async def test_evidence_must_expire_after_collection(client: AsyncClient):
    body = _control_body()
    body["evidence"][0]["expiration_date"] = "2024-01-01"
    r = await client.put("/api/v1/controls/CTRL-LOG", json=body)
    assert r.status_code == 422

    r = await client.get("/api/v1/controls/CTRL-LOG")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_illegal_status_transition(client: AsyncClient):
    await client.put("/api/v1/controls/CTRL-LOG", json=_control_body(status="not_started"))
    r = await client.put("/api/v1/controls/CTRL-LOG", json=_control_body(status="verified"))
    assert r.status_code == 422
    assert r.json()["current"] == "not_started"


@pytest.mark.asyncio
async def test_stale_expected_version(client: AsyncClient):
    r = await client.put("/api/v1/controls/CTRL-LOG", json=_control_body())
    version = r.json()["version"]

    r = await client.put("/api/v1/controls/CTRL-LOG", json=_control_body(title="v2", expected_version=version))
    assert r.status_code == 200
    assert r.json()["version"] > version

    r = await client.put("/api/v1/controls/CTRL-LOG", json=_control_body(title="v3", expected_version=version))
    assert r.status_code == 409
    assert r.json()["error"] == "ConcurrentModificationError"


@pytest.mark.asyncio
async def test_evidence_change_recomputes_mapping(client: AsyncClient, session_factory, hipaa):
    await client.put("/api/v1/controls/CTRL-LOG", json=_control_body())
    mapping_id = await _map_audit_requirement(session_factory, "CTRL-LOG")

    r = await client.get(f"/api/v1/mappings/{mapping_id}")
    assert r.json()["compliance_status"] == "compliant"

    body = _control_body()
    body["evidence"][0]["state"] = "pending"
    await client.put("/api/v1/controls/CTRL-LOG", json=body)

    r = await client.get(f"/api/v1/mappings/{mapping_id}")
    assert r.json()["coverage_score"] == 100.0
    assert r.json()["compliance_status"] == "partial"


# ─── Deprecation ───────────────────────────────────────────────

@pytest.mark.asyncio
async def test_deprecation_flags_mappings(client: AsyncClient, mfa_mapping):
    r = await client.post("/api/v1/controls/CTRL-MFA/deprecate", json={"reason": "Replaced by FIDO2 rollout"})
    assert r.status_code == 200
    assert r.json()["status"] == "deprecated"
    assert r.json()["deprecated_at"] is not None

    r = await client.get(f"/api/v1/mappings/{mfa_mapping}")
    data = r.json()
    assert data["review_status"] == "pending_review"
    assert data["coverage_score"] == 0.0
    assert data["compliance_status"] == "non_compliant"

    r = await client.get("/api/v1/mappings/gaps", params={"mapping_id": mfa_mapping})
    gaps = r.json()
    assert len(gaps) == 1
    assert gaps[0]["gap_type"] == "control_deprecated"
    assert gaps[0]["severity"] == "high"
    assert gaps[0]["description"] == "Replaced by FIDO2 rollout"


@pytest.mark.asyncio
async def test_deprecation_is_one_way(client: AsyncClient, mfa_control):
    r = await client.post(f"/api/v1/controls/{mfa_control}/deprecate", json={})
    assert r.status_code == 200

    r = await client.post(f"/api/v1/controls/{mfa_control}/deprecate", json={})
    assert r.status_code == 409

    r = await client.put(f"/api/v1/controls/{mfa_control}", json=_control_body(status="implemented"))
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_deprecated_control_cannot_be_linked(client: AsyncClient, hipaa, mfa_control):
    await client.post(f"/api/v1/controls/{mfa_control}/deprecate", json={})
    r = await client.post("/api/v1/mappings", json={
        "framework_id": FRAMEWORK_ID,
        "version_id": V2024,
        "requirement_id": "164.312(d)",
        "links": [{"control_id": mfa_control, "contribution_weight": 50}],
    })
    assert r.status_code == 422
    assert r.json()["control_ids"] == [mfa_control]


# ─── Evidence ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_add_and_verify_evidence(client: AsyncClient, mfa_control):
    r = await client.post(f"/api/v1/controls/{mfa_control}/evidence", json={
        "title": "Quarterly access review",
        "collected_date": date.today().isoformat(),
    })
    assert r.status_code == 201
    evidence_id = r.json()["id"]
    assert r.json()["state"] == "pending"

    r = await client.put(
        f"/api/v1/controls/evidence/{evidence_id}/state",
        json={"state": "verified", "actor": "auditor@example.com"},
    )
    assert r.status_code == 200
    assert r.json()["verified_by"] == "auditor@example.com"


@pytest.mark.asyncio
async def test_expired_evidence_cannot_be_verified(client: AsyncClient, mfa_control):
    r = await client.post(f"/api/v1/controls/{mfa_control}/evidence", json={
        "title": "Old pen test",
        "collected_date": "2020-01-01",
        "expiration_date": "2021-01-01",
    })
    r = await client.put(f"/api/v1/controls/evidence/{r.json()['id']}/state", json={"state": "verified"})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_expire_evidence_downgrades_mapping(client: AsyncClient, session_factory, hipaa):
    await client.put("/api/v1/controls/CTRL-LOG", json=_control_body())
    mapping_id = await _map_audit_requirement(session_factory, "CTRL-LOG")

    r = await client.post("/api/v1/controls/evidence/expire", json={"as_of": "2024-12-01"})
    assert r.json()["expired_evidence_ids"] == []

    r = await client.post("/api/v1/controls/evidence/expire", json={"as_of": "2025-06-01"})
    data = r.json()
    assert len(data["expired_evidence_ids"]) == 1
    assert data["recomputed_mappings"] == 1

    r = await client.get("/api/v1/controls/CTRL-LOG")
    assert r.json()["evidence"][0]["state"] == "expired"
    assert r.json()["has_verified_evidence"] is False

    r = await client.get(f"/api/v1/mappings/{mapping_id}")
    assert r.json()["compliance_status"] == "partial"


# ─── Inverse lookup ────────────────────────────────────────────

@pytest.mark.asyncio
async def test_requirements_for_control(client: AsyncClient, mfa_mapping):
    r = await client.get("/api/v1/controls/CTRL-MFA/requirements")
    assert r.status_code == 200
    data = r.json()
    assert len(data) == 1
    assert data[0]["requirement_id"] == "164.312(d)"
    assert data[0]["version_id"] == V2024
    assert data[0]["contribution_weight"] == 60
    assert data[0]["compliance_status"] == "partial"


@pytest.mark.asyncio
async def test_unknown_control_requirements_is_404(client: AsyncClient):
    r = await client.get("/api/v1/controls/NOPE/requirements")
    assert r.status_code == 404
