import uuid
from contextlib import asynccontextmanager
import structlog
from fastapi import FastAPI, Request, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import text
from sqlalchemy.orm import Session
from helpdesk.api.tickets import router as tickets_router
from helpdesk.api.sessions import router as sessions_router
from helpdesk.api.time_tracking import router as time_tracking_router
from helpdesk.api.automation import router as automation_router
from helpdesk.api.analytics import router as analytics_router
from helpdesk.api.notifications import router as notifications_router
from helpdesk.api.audit import router as audit_router
from helpdesk.core.config import settings
from helpdesk.core.db import get_db, init_db
from helpdesk.core.errors import HelpdeskError
from helpdesk.core.logging import configure_logging
from helpdesk.scheduler import build_scheduler

configure_logging()
logger = structlog.get_logger()

@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = build_scheduler()
        scheduler.start()
        logger.info("scheduler_started")
    yield
    if scheduler is not None:
        scheduler.shutdown()
        logger.info("scheduler_stopped")

app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Ticket lifecycle state machine, time-based automation and agent contribution scoring.",
    version="1.0.0",
    lifespan=lifespan,
)

@app.middleware("http")
async def add_correlation_id(request: Request, call_next):
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response

@app.exception_handler(HelpdeskError)
async def helpdesk_exception_handler(request: Request, exc: HelpdeskError):
    logger.info("request_rejected", error=type(exc).__name__, detail=exc.message, path=request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "context": exc.context, "request_id": getattr(request.state, "request_id", None)},
    )

@app.exception_handler(SQLAlchemyError)
async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.error("database_error", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=503,
        content={"detail": "Service Unavailable: Database connection or operational failure", "request_id": getattr(request.state, "request_id", None)},
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("unhandled_error", error=str(exc), path=request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal Server Error", "request_id": getattr(request.state, "request_id", None)},
    )

@app.get("/health", tags=["system"])
def health_check(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        db_status = "ok"
    except SQLAlchemyError:
        db_status = "error"
    return {"status": "ok", "database": db_status}

app.include_router(tickets_router)
app.include_router(sessions_router)
app.include_router(time_tracking_router)
app.include_router(automation_router)
app.include_router(analytics_router)
app.include_router(notifications_router)
app.include_router(audit_router)
