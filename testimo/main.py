"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import SQLModel

from testimo.api.reminders import router as reminders_router
from testimo.api.triggers import router as triggers_router
from testimo.config import get_settings
from testimo.db.session import get_engine
from testimo.workers.runner import SchedulerRunner

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create database tables and start the reminder processor with the server."""
    # Import models to register them with SQLModel
    from testimo.models import Client, Project, Reminder  # noqa: F401
    SQLModel.metadata.create_all(get_engine())

    runner: SchedulerRunner | None = None
    if settings.REMINDER_SCHEDULER_ENABLED:
        runner = SchedulerRunner()
        runner.start_background()
        logger.info("Reminder scheduler started")
    app.state.scheduler = runner

    yield

    if runner is not None:
        runner.stop(timeout=settings.REMINDER_SEND_TIMEOUT_SECONDS * 2)
        runner.scheduler.close()
        logger.info("Reminder scheduler stopped")

app = FastAPI(
    title="Testimonial Reminder API",
    description="Scheduling, dispatch and lifecycle of testimonial reminders",
    version="1.0.0",
    lifespan=lifespan,
)

cors_origins = [origin for origin in {settings.FRONTEND_URL, "http://localhost:5000"} if origin]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(reminders_router)
app.include_router(triggers_router)


@app.get("/health")
def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}
