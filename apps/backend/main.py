"""Bonus Engine backend: FastAPI application."""

import os
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env", override=False)

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from database import async_session_factory, check_db_health, get_session, init_db
from dependencies import get_draft_autosaver
from exceptions import BonusEngineError
from observability import get_logger
from observability.health import run_health_checks
from observability.middleware import ObservabilityMiddleware
from observability.sentry_config import init_sentry
from routes.discounts import router as discounts_router
from routes.drafts import router as drafts_router
from routes.purchases import router as purchases_router
from routes.queue import router as queue_router
from routes.settings import router as settings_router
from services.draft_autosave import DraftAutosaver
from services.settings import ensure_settings

logger = get_logger(__name__)

VERSION = "0.1.0"
INIT_DB_ON_STARTUP = os.getenv("INIT_DB_ON_STARTUP", "false").lower() == "true"
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

init_sentry()

app = FastAPI(
    title="Bonus Engine Backend",
    description="Customer loyalty bonus groups: bundling, queueing and redemption",
    version=VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=CORS_ORIGINS != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ObservabilityMiddleware)

app.include_router(discounts_router)
app.include_router(drafts_router)
app.include_router(queue_router)
app.include_router(settings_router)
app.include_router(purchases_router)


@app.exception_handler(BonusEngineError)
async def bonus_engine_error_handler(request: Request, exc: BonusEngineError):
    """Domain errors carry their own status code and a caller-facing message."""
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "Request rejected",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "status_code": exc.status_code,
        },
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log the traceback with an error id; the client only sees the id."""
    error_id = f"ERR-{datetime.utcnow().strftime('%Y%m%d%H%M%S')}-{id(exc)}"
    logger.error(
        "Unhandled exception",
        extra={"error_id": error_id, "path": request.url.path, "method": request.method},
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "InternalServerError",
            "error_id": error_id,
            "message": "An unexpected error occurred. Please try again.",
        },
    )


@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": VERSION}


@app.get("/health/ready")
async def readiness_check(
    session: AsyncSession = Depends(get_session),
    autosaver=Depends(get_draft_autosaver),
):
    """Readiness check: 503 when the database is unreachable."""
    report = await run_health_checks(session, autosaver)
    report["checks"]["database"]["details"]["pool"] = await check_db_health()
    return JSONResponse(
        status_code=503 if report["status"] == "unhealthy" else 200,
        content=report,
    )


@app.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.on_event("startup")
async def startup_event():
    logger.info(
        "Bonus engine starting",
        extra={"environment": os.getenv("ENVIRONMENT", "development"), "version": VERSION},
    )
    if INIT_DB_ON_STARTUP:
        await init_db()
    try:
        async with async_session_factory() as session:
            await ensure_settings(session)
    except (BonusEngineError, SQLAlchemyError, OSError) as e:
        # requests still create the row on first use
        logger.warning("Could not create bonus settings at startup", extra={"error": str(e)})
    app.state.draft_autosaver = DraftAutosaver(async_session_factory)


@app.on_event("shutdown")
async def shutdown_event():
    autosaver = getattr(app.state, "draft_autosaver", None)
    if autosaver is not None:
        unsaved = await autosaver.flush()
        if unsaved:
            logger.error("Shutting down with unsaved drafts", extra={"unsaved_drafts": unsaved})
    logger.info("Bonus engine shutting down")
