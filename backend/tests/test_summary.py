"""Crosswalk summary endpoint."""
import pytest
from httpx import AsyncClient

from hipaa_data import FRAMEWORK_ID, V2024, V2026


@pytest.mark.asyncio
async def test_empty_summary(client: AsyncClient):
    r = await client.get("/api/v1/crosswalk/summary")
    assert r.status_code == 200
    data = r.json()
    assert data["total_mappings"] == 0
    assert data["overall_score"] == 0.0
    assert data["frameworks"] == []


@pytest.mark.asyncio
async def test_summary_with_one_partial_mapping(client: AsyncClient, mfa_mapping):
    r = await client.get("/api/v1/crosswalk/summary")
    data = r.json()
    assert data["total_mappings"] == 1
    assert data["by_status"] == {"compliant": 0, "partial": 1, "non_compliant": 0, "not_applicable": 0}
    assert data["overall_score"] == 60.0
    assert data["frameworks"] == [{
        "framework_id": FRAMEWORK_ID,
        "mapping_count": 1,
        "average_score": 60.0,
        "compliant": 0,
        "partial": 1,
        "non_compliant": 0,
        "not_applicable": 0,
    }]
    assert data["categories"] == [{"category": "traditional", "mapping_count": 1, "average_score": 60.0}]
    assert data["high_gaps"] == 1
    assert data["critical_gaps"] == 0
    assert data["open_drifts"] == 0
    assert data["controls_needing_update"] == []


@pytest.mark.asyncio
async def test_summary_tracks_drift_and_gaps(client: AsyncClient, mfa_mapping, hipaa_v2026):
    await client.post("/api/v1/drifts/scan", json={
        "framework_id": FRAMEWORK_ID, "old_version_id": V2024, "new_version_id": V2026,
    })
    r = await client.get("/api/v1/crosswalk/summary")
    data = r.json()
    assert data["open_drifts"] == 1
    assert data["pending_review_mappings"] == 1
    assert data["controls_needing_update"] == ["CTRL-MFA"]

    await client.post("/api/v1/controls/CTRL-MFA/deprecate", json={})
    r = await client.get("/api/v1/crosswalk/summary")
    data = r.json()
    assert data["open_gap_records"] == 1
    assert data["by_status"]["non_compliant"] == 1
