"""
Team Pulse — Main FastAPI Application

Team sentiment monitoring: Slack ingestion, sentiment scoring, daily moods,
burnout warnings and weekly reports.
"""
from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from pulse.core.config import get_settings
from pulse.core.log import configure_logging

settings = get_settings()

# ── Logging ──────────────────────────────────────────────────────────────

configure_logging(settings.log_level)
logger = structlog.get_logger()


# ── Lifespan ─────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hooks."""
    logger.info("Starting Team Pulse", version=settings.app_version)

    if getattr(app.state, "container", None) is None:
        from pulse.core.container import build_container
        from pulse.workers.tasks import CeleryJobQueue

        app.state.container = build_container(settings, CeleryJobQueue())

    container = app.state.container
    await container.database.init_db()
    logger.info("Team Pulse ready", model=container.settings.openai_model)

    yield

    await container.close()
    logger.info("Shutting down Team Pulse")


# ── App ──────────────────────────────────────────────────────────────────

app = FastAPI(
    title="Team Pulse",
    description="Team sentiment monitoring and burnout early warning",
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Prometheus metrics
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── Routes ───────────────────────────────────────────────────────────────

from pulse.api.routes import channels, dashboard, members, reports, slack  # noqa: E402

app.include_router(slack.router, prefix=settings.api_prefix)
app.include_router(channels.router, prefix=settings.api_prefix)
app.include_router(members.router, prefix=settings.api_prefix)
app.include_router(dashboard.router, prefix=settings.api_prefix)
app.include_router(reports.router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "description": "Team sentiment monitoring",
        "version": settings.app_version,
        "features": [
            "slack_ingestion", "sentiment_analysis", "daily_moods",
            "burnout_warnings", "weekly_reports",
        ],
    }


@app.get("/health")
async def health():
    container = getattr(app.state, "container", None)
    database = "unavailable"
    if container is not None:
        try:
            await container.database.ping()
            database = "ok"
        except Exception as e:
            logger.warning("Database health check failed", error=str(e))
    return {
        "status": "healthy" if database == "ok" else "degraded",
        "version": settings.app_version,
        "database": database,
    }
