"""FastAPI dependencies.

The request session commits when the handler returns and rolls back when
it raises. Handlers that hand work to a background task commit
explicitly first, because the task opens its own session.
"""

from __future__ import annotations

import logging
from collections.abc import Generator

import yaml
from fastapi import Depends, HTTPException, Request
from fastapi import status as http_status
from sqlalchemy.orm import Session, sessionmaker

from lldap_ci.config import Settings, get_settings
from lldap_ci.db import get_session
from lldap_ci.pipeline.io import resolve_pipeline
from lldap_ci.pipeline.schema import PipelineSchema

logger = logging.getLogger(__name__)


def get_session_factory(request: Request) -> sessionmaker[Session]:
    """Session factory opened by the application lifespan."""
    factory: sessionmaker[Session] = request.app.state.session_factory
    return factory


def get_db(
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
) -> Generator[Session, None, None]:
    with get_session(session_factory) as session:
        yield session


def get_app_settings() -> Settings:
    """Settings for the current request."""
    return get_settings()


def get_pipeline(settings: Settings = Depends(get_app_settings)) -> PipelineSchema:
    """Pipeline definition configured for the service.

    Raises:
        HTTPException: 500 with code invalid_pipeline if the configured
            definition is missing or does not load.
    """
    try:
        return resolve_pipeline(settings.pipeline_file)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error("Cannot load pipeline definition: %s", e)
        raise HTTPException(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": "invalid_pipeline", "message": str(e)},
        ) from None
