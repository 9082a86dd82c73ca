"""Router modules for FastAPI web API."""

from web.routers import config, health, runs, webhooks

__all__ = ["config", "health", "runs", "webhooks"]
