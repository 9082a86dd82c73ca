"""GitHub webhook endpoint.

- POST /webhooks/github - Start a run for a push, pull request or release

Deliveries are verified against X-Hub-Signature-256 when a webhook
secret is configured. Events outside the trigger surface are accepted
and ignored.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request
from fastapi import status as http_status
from sqlalchemy.orm import Session, sessionmaker

from lldap_ci.config import Settings
from lldap_ci.db import get_session
from lldap_ci.events import (
    EventContext,
    EventNotTriggeredError,
    InvalidVersionError,
    check_triggered,
    event_from_payload,
)
from lldap_ci.orchestrator import checkout_lock, create_run, get_run, run_pipeline
from lldap_ci.pipeline.schema import PipelineSchema
from web.deps import get_app_settings, get_db, get_pipeline, get_session_factory

logger = logging.getLogger(__name__)

router = APIRouter()


def compute_signature(secret: str, body: bytes) -> str:
    """Signature header value GitHub sends for a body."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(secret: str, body: bytes, signature: str | None) -> bool:
    """Check a delivery signature in constant time."""
    if not signature:
        return False
    return hmac.compare_digest(compute_signature(secret, body), signature)


def execute_run(
    session_factory: sessionmaker[Session],
    run_id: int,
    event: EventContext,
    pipeline: PipelineSchema,
    settings: Settings,
) -> None:
    """Execute a recorded run in its own session."""
    with get_session(session_factory) as session:
        run = get_run(session, run_id)
        with checkout_lock(settings.work_dir / "locks", settings.source_dir):
            run_pipeline(session, run, pipeline, event, settings)


async def raw_body(request: Request) -> bytes:
    """Delivery body exactly as received, for signature checks."""
    return await request.body()


def _bad_request(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=http_status.HTTP_400_BAD_REQUEST,
        detail={"code": code, "message": message},
    )


@router.post("/github", status_code=http_status.HTTP_202_ACCEPTED)
def github_webhook(
    background_tasks: BackgroundTasks,
    body: bytes = Depends(raw_body),
    x_github_event: str | None = Header(None),
    x_hub_signature_256: str | None = Header(None),
    db: Session = Depends(get_db),
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    settings: Settings = Depends(get_app_settings),
    pipeline: PipelineSchema = Depends(get_pipeline),
) -> dict[str, Any]:
    """Receive a GitHub delivery and start a run if it triggers one.

    Returns:
        {"triggered": false, "reason": ...} for ignored events, or
        {"triggered": true, "run_id": ...} once the run is queued.

    Raises:
        HTTPException: 401 on a bad signature, 400 on a malformed
            delivery, 422 on a release tag that is not a semantic version.
    """
    if settings.webhook_secret and not verify_signature(
        settings.webhook_secret, body, x_hub_signature_256
    ):
        raise HTTPException(
            status_code=http_status.HTTP_401_UNAUTHORIZED,
            detail={"code": "invalid_signature", "message": "Invalid webhook signature"},
        )
    if not x_github_event:
        raise _bad_request("missing_event", "X-GitHub-Event header is required")
    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise _bad_request("invalid_payload", "Body is not valid JSON") from None
    if not isinstance(payload, dict):
        raise _bad_request("invalid_payload", "Body must be a JSON object")

    try:
        event = event_from_payload(x_github_event, payload)
        check_triggered(event, pipeline.branch)
    except EventNotTriggeredError as e:
        logger.info("Ignoring %s delivery: %s", x_github_event, e)
        return {"triggered": False, "reason": str(e)}
    except InvalidVersionError as e:
        raise HTTPException(
            status_code=http_status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": e.code, "message": str(e)},
        ) from None

    run = create_run(db, event, pipeline)
    db.commit()
    background_tasks.add_task(
        execute_run, session_factory, run.id, event, pipeline, settings
    )
    logger.info("Queued run %d for %s", run.id, event.describe())
    return {"triggered": True, "run_id": run.id, "event": event.describe()}
