"""Circulation API: FastAPI entry point.

Builds the engine, starts the notification dispatcher and the sweep
scheduler, and mounts the circulation router under /api/circulation/.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.database import DATABASE_URL, create_engine, create_session_factory, init_db
from core.observability.otel_setup import setup_otel
from verticals.circulation.config import config
from verticals.circulation.engine import build_engine
from verticals.circulation.scheduler import SweepScheduler

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS", "http://localhost:3000,http://localhost:3001"
).split(",")
CREATE_TABLES = os.getenv("CREATE_TABLES", "false").lower() == "true"
RUN_SWEEPS = os.getenv("RUN_SWEEPS", "true").lower() == "true"


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown hooks."""
    setup_otel(service_name="circulation")

    db_engine = create_engine(DATABASE_URL)
    if CREATE_TABLES:
        await init_db(db_engine)

    engine = build_engine(create_session_factory(db_engine), config)
    engine.dispatcher.start()
    scheduler = SweepScheduler(engine)
    if RUN_SWEEPS:
        scheduler.start()

    app.state.engine = engine
    app.state.scheduler = scheduler
    logger.info("circulation API started")
    yield

    await scheduler.stop()
    await engine.dispatcher.stop(drain=True)
    await db_engine.dispose()
    logger.info("circulation API shut down")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Circulation",
    description="Library circulation engine: loans, returns, hold queues and overdue reminders",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

from verticals.circulation.router import router as circulation_router  # noqa: E402

app.include_router(circulation_router, prefix="/api/circulation", tags=["Circulation"])


# ---------------------------------------------------------------------------
# Health & root
# ---------------------------------------------------------------------------

@app.get("/health")
async def health():
    engine = getattr(app.state, "engine", None)
    return {
        "status": "healthy",
        "version": "0.1.0",
        "dispatcher_running": bool(engine and engine.dispatcher.running),
        "pending_notifications": engine.dispatcher.pending if engine else 0,
    }


@app.get("/")
async def root():
    return {
        "name": "Circulation",
        "version": "0.1.0",
        "docs": "/docs",
        "verticals": ["circulation"],
    }
