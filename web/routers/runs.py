"""Pipeline run endpoints.

- GET /runs - List runs
- GET /runs/{id} - Get a run with its jobs
- GET /runs/{id}/jobs - Get the jobs of a run
- POST /runs/plan - Plan the jobs and image tags of an event
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi import status as http_status
from sqlalchemy.orm import Session

from lldap_ci.config import Settings
from lldap_ci.events import (
    EventContext,
    EventNotTriggeredError,
    InvalidVersionError,
    check_triggered,
)
from lldap_ci.images.tags import compute_image_tags
from lldap_ci.orchestrator import (
    RunNotFoundError,
    get_run,
    job_to_dict,
    list_runs,
    run_to_dict,
)
from lldap_ci.pipeline.graph import build_job_graph
from lldap_ci.pipeline.schema import PipelineSchema
from lldap_ci.types import RunStatus
from web.deps import get_app_settings, get_db, get_pipeline

router = APIRouter()


def _not_found(run_id: int) -> HTTPException:
    return HTTPException(
        status_code=http_status.HTTP_404_NOT_FOUND,
        detail={"code": "run_not_found", "message": f"Run not found: {run_id}"},
    )


@router.get("")
def list_runs_endpoint(
    status: str | None = Query(None, description="Filter by status"),
    event: str | None = Query(None, description="Filter by event kind"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum results"),
    db: Session = Depends(get_db),
) -> list[dict[str, Any]]:
    """List pipeline runs, newest first."""
    status_filter: RunStatus | None = None
    if status:
        try:
            status_filter = RunStatus(status)
        except ValueError:
            raise HTTPException(
                status_code=http_status.HTTP_400_BAD_REQUEST,
                detail={
                    "code": "invalid_status",
                    "message": f"Invalid status: {status}. "
                    "Valid values: pending, running, succeeded, failed",
                },
            ) from None
    runs = list_runs(db, status=status_filter, event_kind=event, limit=limit)
    return [run_to_dict(r) for r in runs]


@router.get("/{run_id}")
def get_run_endpoint(run_id: int, db: Session = Depends(get_db)) -> dict[str, Any]:
    """Get a run with its jobs.

    Raises:
        HTTPException: If the run is not found.
    """
    try:
        return run_to_dict(get_run(db, run_id), include_jobs=True)
    except RunNotFoundError:
        raise _not_found(run_id) from None


@router.get("/{run_id}/jobs")
def get_run_jobs_endpoint(
    run_id: int, db: Session = Depends(get_db)
) -> list[dict[str, Any]]:
    """Get the jobs of a run.

    Raises:
        HTTPException: If the run is not found.
    """
    try:
        run = get_run(db, run_id)
    except RunNotFoundError:
        raise _not_found(run_id) from None
    return [job_to_dict(j) for j in run.jobs]


@router.post("/plan")
def plan_endpoint(
    event: EventContext,
    pipeline: PipelineSchema = Depends(get_pipeline),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    """Plan the jobs and image tags of an event without running anything.

    Raises:
        HTTPException: If a release tag is not a semantic version.
    """
    triggered = True
    reason = None
    try:
        check_triggered(event, pipeline.branch)
        tags = compute_image_tags(
            event, pipeline.image, pipeline.flavors, settings.include_sha_tags
        )
    except InvalidVersionError as e:
        raise HTTPException(
            status_code=http_status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": e.code, "message": str(e)},
        ) from None
    except EventNotTriggeredError as e:
        triggered = False
        reason = str(e)
        tags = {}

    jobs = [
        {
            "name": p.name,
            "kind": p.kind.value,
            "needs": p.needs,
            "will_run": p.will_run and triggered,
            "skip_reason": p.skip_reason,
        }
        for p in build_job_graph(pipeline).plan(event)
    ]
    return {
        "triggered": triggered,
        "reason": reason,
        "push": event.should_push,
        "jobs": jobs,
        "tags": tags,
    }
