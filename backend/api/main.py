"""
EDI Exchange API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from core.config import get_settings
from core.errors import ConfigurationError, EdiError, FormatError, InvalidStateError, NotFoundError

settings = get_settings()
logger = structlog.get_logger()

ERROR_STATUS_CODES = [
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (FormatError, 422),
    (ConfigurationError, 400),
]


def _build_scheduler():
    from db.session import AsyncSessionLocal
    from services.inbox_polling import SftpInboxPoller
    from services.transactions import EdiTransactionService
    from workers.sftp_scheduler import PollingScheduler

    poller = SftpInboxPoller(EdiTransactionService(AsyncSessionLocal, app_settings=settings))
    return PollingScheduler(
        AsyncSessionLocal,
        poller.poll_partner,
        default_interval_minutes=settings.sftp_default_poll_minutes,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("EDI Exchange API starting up", version=settings.app_version)
    scheduler = None
    if settings.sftp_scheduler_enabled:
        scheduler = _build_scheduler()
        try:
            await scheduler.refresh_schedules()
        except Exception:
            logger.exception("scheduler.startup_failed")
    app.state.scheduler = scheduler
    yield
    if scheduler is not None:
        scheduler.stop_all()
    logger.info("EDI Exchange API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="EDI document exchange: X12 / CSV / XML / JSON over AS2 and SFTP",
    lifespan=lifespan,
)


@app.exception_handler(EdiError)
async def edi_error_handler(request: Request, exc: EdiError):
    status_code = 400
    for error_type, code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            status_code = code
            break
    logger.info("api.edi_error", path=request.url.path, status_code=status_code, error=exc.message)
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import as2, edi

app.include_router(edi.router)
app.include_router(as2.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for Cloud Run / load balancers."""
    return {"status": "healthy", "version": settings.app_version}
