"""
Shared test fixtures: a fresh application per test on a temporary SQLite file.

Strategy:
1. Build the app with create_app(Settings(...)) pointing at tmp_path
2. Run its lifespan so the engine, session factory and scan locks exist
3. Drive HTTP through httpx ASGITransport, services through app.state.session_factory
"""
from collections.abc import AsyncGenerator
from datetime import date

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crosswalk.config import Settings
from crosswalk.main import create_app
from crosswalk.models.enums import FrameworkVersionStatus
from crosswalk.schemas.control import ControlUpsert, EvidenceCreate
from crosswalk.schemas.framework import FrameworkCreate, FrameworkVersionCreate
from crosswalk.schemas.mapping import MappingCreate, MappingLinkIn
from crosswalk.services import control_store, framework_store
from crosswalk.services import crosswalk as mapper
from hipaa_data import FRAMEWORK_ID, V2024, V2026, v2024_requirements, v2026_requirements


# ── Fixtures ──

@pytest_asyncio.fixture
async def app(tmp_path):
    settings = Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'crosswalk.db'}",
        LOG_LEVEL="WARNING",
        RECOMPUTE_CONCURRENCY=1,
    )
    application = create_app(settings)
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def session_factory(app) -> async_sessionmaker[AsyncSession]:
    return app.state.session_factory


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ── Seed data helpers ──

@pytest_asyncio.fixture
async def hipaa(session_factory):
    """HIPAA_SECURITY with v2024 published and active."""
    async with session_factory() as s:
        await framework_store.create_framework(s, FrameworkCreate(id=FRAMEWORK_ID, name="HIPAA Security Rule"))
        await framework_store.publish_version(s, FRAMEWORK_ID, FrameworkVersionCreate(
            version_code="v2024",
            effective_date=date(2024, 1, 1),
            requirements=v2024_requirements(),
        ))
        await framework_store.transition_version(s, V2024, FrameworkVersionStatus.ACTIVE)
    return FRAMEWORK_ID


@pytest_asyncio.fixture
async def hipaa_v2026(session_factory, hipaa):
    """v2026 published (final) on top of the active v2024."""
    async with session_factory() as s:
        await framework_store.publish_version(s, FRAMEWORK_ID, FrameworkVersionCreate(
            version_code="v2026",
            effective_date=date(2026, 1, 1),
            requirements=v2026_requirements(),
        ))
    return V2026


@pytest_asyncio.fixture
async def mfa_control(session_factory):
    async with session_factory() as s:
        await control_store.upsert_control(s, "CTRL-MFA", ControlUpsert(
            title="Multi-factor authentication",
            control_family="Identification and Authentication",
            status="implemented",
            effectiveness_rating=4,
            evidence=[EvidenceCreate(
                title="IdP MFA policy export",
                evidence_type="config_export",
                collected_date=date(2024, 3, 1),
                state="verified",
            )],
        ))
    return "CTRL-MFA"


@pytest_asyncio.fixture
async def mfa_mapping(session_factory, hipaa, mfa_control):
    """164.312(d) v2024 covered by CTRL-MFA at weight 60 on aspect 'mfa'."""
    async with session_factory() as s:
        mapping = await mapper.create_mapping(s, MappingCreate(
            framework_id=FRAMEWORK_ID,
            version_id=V2024,
            requirement_id="164.312(d)",
            links=[MappingLinkIn(control_id=mfa_control, contribution_weight=60, coverage_aspects=["mfa"])],
        ))
    return mapping.id
