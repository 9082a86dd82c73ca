"""Pipeline run orchestration.

This module provides the high-level run API:
- start_run(): Main entry point - check triggers, record and execute a run
- Run and job record creation from the job graph plan
- Fan-in scheduling of jobs on a bounded thread pool
- Run lookup helpers

Jobs execute on worker threads; every database write happens on the
calling thread.
"""

from __future__ import annotations

import fcntl
import logging
import os
import time
from collections.abc import Iterator, Mapping
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from lldap_ci.builds.artifacts import ArtifactStore
from lldap_ci.builds.models import ArtifactRecord, JobRecord, PipelineRun
from lldap_ci.builds.service import run_binary_job, run_frontend_job
from lldap_ci.config import Settings
from lldap_ci.events import EventContext, check_triggered
from lldap_ci.images.service import run_image_job
from lldap_ci.jobs import JobContext, JobFunction, JobOutcome, error_code
from lldap_ci.pipeline.graph import JobGraph, build_job_graph
from lldap_ci.pipeline.schema import PipelineSchema
from lldap_ci.release.service import run_release_job
from lldap_ci.types import JobKind, JobStatus, RunStatus

logger = logging.getLogger(__name__)

DEFAULT_JOB_FUNCTIONS: Mapping[JobKind, JobFunction] = {
    JobKind.FRONTEND: run_frontend_job,
    JobKind.BINARY: run_binary_job,
    JobKind.IMAGE: run_image_job,
    JobKind.RELEASE: run_release_job,
}


class RunNotFoundError(Exception):
    """Raised when a pipeline run is not found."""

    def __init__(self, run_id: int, code: str = "run_not_found") -> None:
        super().__init__(f"Pipeline run not found: {run_id}")
        self.run_id = run_id
        self.code = code


class MissingJobFunctionError(Exception):
    """Raised when no implementation is registered for a job kind."""

    def __init__(self, kind: JobKind, code: str = "missing_job_function") -> None:
        super().__init__(f"No job function registered for kind: {kind.value}")
        self.kind = kind
        self.code = code


class JobRecordNotFoundError(Exception):
    """Raised when a run has no record for a job of its graph."""

    def __init__(self, run_id: int, name: str, code: str = "job_record_not_found") -> None:
        super().__init__(f"Run {run_id} has no job record named {name}")
        self.run_id = run_id
        self.name = name
        self.code = code


@contextmanager
def checkout_lock(
    lock_dir: Path,
    source_dir: Path,
    timeout: float | None = None,
) -> Iterator[None]:
    """Serialize runs that build in the same checkout.

    Args:
        lock_dir: Directory for lock files.
        source_dir: Checkout the run builds in.
        timeout: Lock acquisition timeout in seconds (None = blocking).

    Yields:
        None when lock is acquired.

    Raises:
        TimeoutError: If lock cannot be acquired within timeout.
    """
    lock_dir.mkdir(parents=True, exist_ok=True)
    safe_name = str(source_dir.resolve()).strip("/").replace("/", "_")[-64:]
    lock_file = lock_dir / f"checkout_{safe_name or 'root'}.lock"

    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    lock_acquired = False
    try:
        if timeout is not None:
            start = time.monotonic()
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    lock_acquired = True
                    break
                except BlockingIOError:
                    if time.monotonic() - start >= timeout:
                        raise TimeoutError(
                            f"Timeout waiting for checkout lock on {source_dir}"
                        ) from None
                    time.sleep(0.1)
        else:
            fcntl.flock(fd, fcntl.LOCK_EX)
            lock_acquired = True

        logger.debug("Checkout lock acquired for %s", source_dir)
        yield
    finally:
        if lock_acquired:
            fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)


def create_run(
    session: Session,
    event: EventContext,
    pipeline: PipelineSchema,
) -> PipelineRun:
    """Create a run record with one job record per planned job.

    Jobs inactive for the event are recorded as skipped right away.

    Args:
        session: Database session.
        event: Triggering event.
        pipeline: Pipeline definition.

    Returns:
        Flushed PipelineRun with its jobs.
    """
    graph = build_job_graph(pipeline)
    run = PipelineRun(
        event_kind=event.kind.value,
        ref=event.ref,
        sha=event.sha,
        tag=event.tag,
        message=event.message,
        status=RunStatus.PENDING.value,
        event_snapshot=event.model_dump(mode="json"),
    )
    for planned in graph.plan(event):
        job = JobRecord(
            name=planned.name,
            kind=planned.kind.value,
            needs=planned.needs,
            status=JobStatus.PENDING.value,
        )
        if not planned.will_run:
            job.mark_skipped(planned.skip_reason)
        run.jobs.append(job)
    session.add(run)
    session.flush()
    logger.info("Created run %d for %s", run.id, event.describe())
    return run


def _run_dir(base: Path, run_id: int) -> Path:
    return base / f"run-{run_id:08d}"


def _record_outcome(session: Session, record: JobRecord, outcome: JobOutcome) -> None:
    record.cache_key = outcome.cache_key
    record.cache_hit = outcome.cache_hit
    record.outputs = outcome.outputs or None
    for name, files in outcome.uploaded.items():
        for info in files:
            session.add(
                ArtifactRecord(
                    job=record,
                    name=name,
                    filename=info.filename,
                    relative_path=f"{name}/{info.relative_path}",
                    size_bytes=info.size_bytes,
                    sha256=info.sha256,
                )
            )
    record.mark_succeeded()


def get_job_record(run: PipelineRun, name: str) -> JobRecord:
    """Get the record of a job of a run.

    Raises:
        JobRecordNotFoundError: If the run has no job of that name.
    """
    record = run.get_job(name)
    if record is None:
        raise JobRecordNotFoundError(run.id, name)
    return record


def _skip_jobs(
    run: PipelineRun,
    statuses: dict[str, JobStatus],
    skipped: Mapping[str, str],
) -> None:
    for name, reason in skipped.items():
        record = get_job_record(run, name)
        record.mark_skipped(reason)
        statuses[name] = JobStatus.SKIPPED
        logger.warning("Skipping %s: %s", name, reason)


def _fail_job(record: JobRecord, statuses: dict[str, JobStatus], exc: BaseException) -> None:
    code = error_code(exc)
    if code == "internal_error":
        logger.error("Job %s crashed", record.name, exc_info=exc)
    else:
        logger.error("Job %s failed: %s", record.name, exc)
    record.mark_failed(code, str(exc))
    statuses[record.name] = JobStatus.FAILED


def run_pipeline(
    session: Session,
    run: PipelineRun,
    pipeline: PipelineSchema,
    event: EventContext,
    settings: Settings,
    job_functions: Mapping[JobKind, JobFunction] | None = None,
    graph: JobGraph | None = None,
) -> PipelineRun:
    """Execute the jobs of a run.

    Jobs whose needs all succeeded are submitted to a thread pool bounded
    by max_concurrent_jobs. A job with a failed or skipped need is
    skipped. The run fails if any job fails.

    Args:
        session: Database session; committed after every state change.
        run: Run created by create_run.
        pipeline: Pipeline definition.
        event: Triggering event.
        settings: Effective settings.
        job_functions: Implementation per job kind (defaults to the real jobs).
        graph: Job graph (derived from the pipeline if omitted).

    Returns:
        The finished PipelineRun.
    """
    functions = job_functions or DEFAULT_JOB_FUNCTIONS
    graph = graph or build_job_graph(pipeline)
    store = ArtifactStore.for_run(settings.artifacts_dir, run.id)
    logs_dir = _run_dir(settings.logs_dir, run.id)
    work_dir = _run_dir(settings.work_dir, run.id)

    statuses = {job.name: JobStatus(job.status) for job in run.jobs}
    run.mark_running()
    session.commit()

    with ThreadPoolExecutor(
        max_workers=settings.max_concurrent_jobs, thread_name_prefix="job"
    ) as pool:
        futures: dict[Future[JobOutcome], str] = {}
        while True:
            ready, skipped = graph.schedule(statuses)
            _skip_jobs(run, statuses, skipped)

            for name in ready:
                record = get_job_record(run, name)
                spec = graph.jobs[name]
                function = functions.get(spec.kind)
                if function is None:
                    _fail_job(record, statuses, MissingJobFunctionError(spec.kind))
                    continue
                log_path = logs_dir / f"{name}.log"
                record.log_path = str(log_path)
                record.mark_running()
                statuses[name] = JobStatus.RUNNING
                ctx = JobContext(
                    run_id=run.id,
                    job=spec,
                    pipeline=pipeline,
                    event=event,
                    settings=settings,
                    store=store,
                    log_path=log_path,
                    work_dir=work_dir / name,
                )
                logger.info("Starting job %s", name)
                futures[pool.submit(function, ctx)] = name
            session.commit()

            if not futures:
                if ready or skipped:
                    continue
                break

            done, _ = wait(futures, return_when=FIRST_COMPLETED)
            for future in done:
                name = futures.pop(future)
                record = get_job_record(run, name)
                try:
                    outcome = future.result()
                except Exception as e:
                    _fail_job(record, statuses, e)
                else:
                    _record_outcome(session, record, outcome)
                    statuses[name] = JobStatus.SUCCEEDED
                    logger.info("Job %s succeeded", name)
            session.commit()

    success = all(s != JobStatus.FAILED for s in statuses.values())
    run.mark_finished(success)
    session.commit()
    logger.info("Run %d %s", run.id, run.status)
    return run


def start_run(
    session: Session,
    event: EventContext,
    pipeline: PipelineSchema,
    settings: Settings,
    job_functions: Mapping[JobKind, JobFunction] | None = None,
) -> PipelineRun:
    """Check the event against the triggers, then record and execute a run.

    Raises:
        EventNotTriggeredError: If the event does not start a run.
        InvalidVersionError: If a release tag is not a semantic version.
    """
    check_triggered(event, pipeline.branch)
    run = create_run(session, event, pipeline)
    session.commit()
    with checkout_lock(settings.work_dir / "locks", settings.source_dir):
        return run_pipeline(
            session, run, pipeline, event, settings, job_functions=job_functions
        )


def get_run(session: Session, run_id: int) -> PipelineRun:
    """Get a run by ID.

    Raises:
        RunNotFoundError: If the run does not exist.
    """
    run = session.get(PipelineRun, run_id)
    if run is None:
        raise RunNotFoundError(run_id)
    return run


def list_runs(
    session: Session,
    status: RunStatus | None = None,
    event_kind: str | None = None,
    limit: int = 100,
) -> list[PipelineRun]:
    """List runs, newest first, with optional filters."""
    stmt = select(PipelineRun)
    if status is not None:
        stmt = stmt.where(PipelineRun.status == status.value)
    if event_kind is not None:
        stmt = stmt.where(PipelineRun.event_kind == event_kind)
    stmt = stmt.order_by(PipelineRun.id.desc()).limit(limit)
    return list(session.execute(stmt).scalars().all())


def _iso(value: Any) -> str | None:
    return value.isoformat() if value else None


def artifact_to_dict(artifact: ArtifactRecord) -> dict[str, Any]:
    """Convert an artifact record to a dictionary."""
    return {
        "name": artifact.name,
        "filename": artifact.filename,
        "relative_path": artifact.relative_path,
        "size_bytes": artifact.size_bytes,
        "sha256": artifact.sha256,
    }


def job_to_dict(job: JobRecord) -> dict[str, Any]:
    """Convert a job record to a dictionary."""
    return {
        "name": job.name,
        "kind": job.kind,
        "needs": job.needs or [],
        "status": job.status,
        "started_at": _iso(job.started_at),
        "finished_at": _iso(job.finished_at),
        "cache_key": job.cache_key,
        "cache_hit": job.cache_hit,
        "log_path": job.log_path,
        "error_type": job.error_type,
        "error_message": job.error_message,
        "outputs": job.outputs,
        "artifacts": [artifact_to_dict(a) for a in job.artifacts],
    }


def run_to_dict(run: PipelineRun, include_jobs: bool = False) -> dict[str, Any]:
    """Convert a run record to a dictionary."""
    data: dict[str, Any] = {
        "id": run.id,
        "event": run.event_kind,
        "ref": run.ref,
        "sha": run.sha,
        "tag": run.tag,
        "message": run.message,
        "status": run.status,
        "requested_at": _iso(run.requested_at),
        "started_at": _iso(run.started_at),
        "finished_at": _iso(run.finished_at),
    }
    if include_jobs:
        data["jobs"] = [job_to_dict(j) for j in run.jobs]
    return data


__all__ = [
    "DEFAULT_JOB_FUNCTIONS",
    "JobRecordNotFoundError",
    "MissingJobFunctionError",
    "RunNotFoundError",
    "artifact_to_dict",
    "checkout_lock",
    "create_run",
    "get_job_record",
    "get_run",
    "job_to_dict",
    "list_runs",
    "run_pipeline",
    "run_to_dict",
    "start_run",
]
