"""Liveness endpoints."""

from fastapi import APIRouter

from lldap_ci import __version__

router = APIRouter()


@router.get("/health")
def health() -> dict[str, str]:
    """Report that the service is up, with its version."""
    return {"status": "ok", "version": __version__}


@router.get("/")
def root() -> dict[str, str]:
    return {"name": "lldap CI API", "version": __version__}
