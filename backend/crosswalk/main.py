import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from crosswalk.config import Settings, get_settings
from crosswalk.database import build_engine, build_session_factory, check_db_connection
from crosswalk.exceptions import CrosswalkError
from crosswalk.middleware.audit_auto import install_audit_listeners, set_audit_context
from crosswalk.models import Base
from crosswalk.routers.controls import router as controls_router
from crosswalk.routers.crosswalk import router as crosswalk_router
from crosswalk.routers.drifts import router as drifts_router
from crosswalk.routers.frameworks import router as frameworks_router
from crosswalk.routers.mappings import router as mappings_router
from crosswalk.routers.requirement_updates import router as requirement_updates_router
from crosswalk.services.framework_store import verify_store_integrity
from crosswalk.services.scan_locks import ScanLockRegistry

logger = logging.getLogger(__name__)


class AuditContextMiddleware(BaseHTTPMiddleware):
    """Make the X-Actor header the actor of every change journaled by this request."""

    async def dispatch(self, request: Request, call_next):
        set_audit_context(actor=request.headers.get("X-Actor"))
        return await call_next(request)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.scan_locks = ScanLockRegistry()
    try:
        if settings.AUTO_CREATE_SCHEMA:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        if settings.VERIFY_STORE_ON_STARTUP:
            async with app.state.session_factory() as s:
                await verify_store_integrity(s)
        logger.info("%s %s started (%s)", settings.APP_NAME, settings.APP_VERSION, engine.url.render_as_string())
        yield
    finally:
        await engine.dispose()


async def crosswalk_error_handler(request: Request, exc: CrosswalkError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__, **exc.details},
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # ── Install automatic audit logging ──
    install_audit_listeners()

    app.add_exception_handler(CrosswalkError, crosswalk_error_handler)
    app.add_middleware(AuditContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(frameworks_router)
    app.include_router(controls_router)
    app.include_router(mappings_router)
    app.include_router(crosswalk_router)
    app.include_router(drifts_router)
    app.include_router(requirement_updates_router)

    @app.get("/health")
    async def health(request: Request):
        """Health check: verifies API is running and database is reachable."""
        try:
            await check_db_connection(request.app.state.engine)
            db_status = "connected"
        except Exception as exc:
            db_status = f"error: {exc}"

        return {
            "status": "ok" if db_status == "connected" else "degraded",
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "database": db_status,
        }

    return app


app = create_app()
