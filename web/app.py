"""HTTP API for triggering and inspecting pipeline runs."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from lldap_ci import __version__
from lldap_ci.db import init_db
from web.routers import config, health, runs, webhooks


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the run database before serving requests."""
    app.state.session_factory = init_db()
    yield


def create_app() -> FastAPI:
    """Build the API application with every router mounted."""
    application = FastAPI(
        title="lldap CI API",
        description="Trigger lldap build pipelines and inspect their runs",
        version=__version__,
        lifespan=lifespan,
    )

    application.include_router(health.router, tags=["health"])
    application.include_router(config.router, prefix="/config", tags=["config"])
    application.include_router(runs.router, prefix="/runs", tags=["runs"])
    application.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])

    return application


app = create_app()
