"""GeoAttend Backend — attendance session API entry point.

Device-bound, geofenced work sessions: login admission, heartbeats,
logout, and server-side reconciliation of abandoned sessions.
"""
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional
import logging

from dotenv import load_dotenv
from fastapi import FastAPI, APIRouter, Request
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError
from starlette.middleware.cors import CORSMiddleware

# Load env before anything else
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / ".env")

from api import attendance, internal, sessions as session_routes
from config.settings import Settings, get_settings
from config.validators import validate_startup_config
from core.database import get_db, init_indexes, close_db
from core.exceptions import ErrorKind, GeoAttendError
from core.logging_config import setup_logging
from lifecycle.engine import SessionLifecycleEngine, utc_now
from observability.metrics import SweepMetrics
from observability.redaction import redact_dict
from reconciliation.scheduler import ReconciliationScheduler
from reconciliation.sweeps import ReconciliationService
from reporting.query import SessionQueryService
from store.directory import DirectoryStore
from store.sessions import SessionStore

logger = logging.getLogger(__name__)


def build_services(
    app: FastAPI,
    settings: Settings,
    sessions: SessionStore,
    directory: DirectoryStore,
    clock: Callable[[], datetime],
) -> None:
    """Wire engine, reconciliation and queries onto ``app.state``."""
    config = settings.engine_config()
    metrics = SweepMetrics()
    reconciliation = ReconciliationService(config, sessions, metrics, clock)

    app.state.settings = settings
    app.state.engine = SessionLifecycleEngine(config, sessions, directory, clock=clock)
    app.state.metrics = metrics
    app.state.reconciliation = reconciliation
    app.state.query = SessionQueryService(config, sessions, clock)
    app.state.scheduler = ReconciliationScheduler(
        reconciliation,
        auto_logout_minutes=settings.AUTO_LOGOUT_CHECK_MINUTES,
        stale_sweep_minutes=settings.STALE_SWEEP_MINUTES,
        clock=clock,
    )


def create_app(
    settings: Optional[Settings] = None,
    db: Optional[AsyncIOMotorDatabase] = None,
    clock: Callable[[], datetime] = utc_now,
) -> FastAPI:
    """Build the API. Tests pass their own ``db`` (no indexes, no teardown)."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("GeoAttend BE starting — env=%s", settings.ENV)
        validate_startup_config(settings)
        logger.info(
            "Config: %s",
            redact_dict(settings.model_dump(include={
                "DB_NAME", "MONGO_URL", "SESSION_TIMEOUT_HOURS", "HEARTBEAT_MINUTES",
                "HEARTBEAT_GRACE_FACTOR", "LOCATION_PROXIMITY_METERS", "REPORTING_TIMEZONE",
            })),
        )
        owns_db = db is None
        database = get_db() if owns_db else db
        if owns_db:
            await init_indexes(database)
        build_services(app, settings, SessionStore(database), DirectoryStore(database), clock)
        if settings.SCHEDULER_ENABLED:
            app.state.scheduler.start()
        logger.info("GeoAttend BE ready")
        yield
        await app.state.scheduler.stop()
        if owns_db:
            await close_db()
        logger.info("GeoAttend BE shutdown complete")

    app = FastAPI(
        title="GeoAttend Session API",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(GeoAttendError)
    async def geoattend_error_handler(request: Request, exc: GeoAttendError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(PyMongoError)
    async def store_error_handler(request: Request, exc: PyMongoError):
        logger.error("Store failure on %s", request.url.path, exc_info=exc)
        body = GeoAttendError("Internal server error.", ErrorKind.INTERNAL_ERROR, 500).to_body()
        return JSONResponse(status_code=500, content=body)

    api_router = APIRouter(prefix="/api")

    @api_router.get("/health")
    async def health(request: Request):
        scheduler = getattr(request.app.state, "scheduler", None)
        return {
            "status": "ok",
            "env": settings.ENV,
            "version": app.version,
            "scheduler_running": bool(scheduler and scheduler.running),
        }

    api_router.include_router(attendance.router)
    api_router.include_router(session_routes.router)
    app.include_router(api_router)
    app.include_router(internal.router)
    return app


# ---- Setup logging ----
setup_logging()

app = create_app()
