"""Job graph construction, validation and planning.

This module handles:
- Deriving the job graph from a pipeline definition
- Rejecting unknown dependencies and cycles
- Deciding which jobs run for a given event
- Fan-in scheduling decisions: which jobs are ready and which are skipped
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from lldap_ci.events import EventContext
from lldap_ci.pipeline.schema import PipelineSchema
from lldap_ci.types import EventKind, JobKind, JobStatus

FRONTEND_JOB = "build-ui"
IMAGE_JOB = "build-docker-image"
RELEASE_JOB = "create-release-artifacts"


class PipelineGraphError(Exception):
    """Raised when the job graph is malformed."""

    def __init__(self, message: str, code: str = "invalid_graph") -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class JobSpec:
    """A job in the pipeline graph.

    Attributes:
        name: Unique job name.
        kind: What the job does.
        needs: Jobs that must succeed before this one starts.
        target: Architecture name for binary jobs.
        events: Events the job runs on (None = all events).
    """

    name: str
    kind: JobKind
    needs: tuple[str, ...] = ()
    target: str | None = None
    events: frozenset[EventKind] | None = None

    def runs_on(self, event: EventContext) -> bool:
        """Whether the job is active for the event."""
        return self.events is None or event.kind in self.events


@dataclass
class PlannedJob:
    """Planning decision for one job."""

    name: str
    kind: JobKind
    needs: list[str]
    will_run: bool
    skip_reason: str | None = None


@dataclass
class JobGraph:
    """Directed acyclic graph of jobs keyed by name."""

    jobs: dict[str, JobSpec] = field(default_factory=dict)

    def add(self, job: JobSpec) -> None:
        """Add a job to the graph.

        Raises:
            PipelineGraphError: If a job with the same name exists.
        """
        if job.name in self.jobs:
            raise PipelineGraphError(f"Duplicate job name: {job.name}")
        self.jobs[job.name] = job

    def validate(self) -> None:
        """Check that all dependencies exist and there are no cycles.

        Raises:
            PipelineGraphError: If the graph is malformed.
        """
        for job in self.jobs.values():
            for need in job.needs:
                if need not in self.jobs:
                    raise PipelineGraphError(
                        f"Job '{job.name}' needs unknown job '{need}'",
                        code="unknown_dependency",
                    )
        self.topological_order()

    def topological_order(self) -> list[str]:
        """Return job names so that every job follows its needs.

        Ties keep insertion order, so output is deterministic.

        Raises:
            PipelineGraphError: If the graph contains a cycle.
        """
        remaining = {name: set(job.needs) for name, job in self.jobs.items()}
        order: list[str] = []
        while remaining:
            ready = [name for name, needs in remaining.items() if not needs]
            if not ready:
                cycle = ", ".join(sorted(remaining))
                raise PipelineGraphError(
                    f"Dependency cycle among jobs: {cycle}", code="cycle"
                )
            for name in ready:
                order.append(name)
                del remaining[name]
            for needs in remaining.values():
                needs.difference_update(ready)
        return order

    def leaves(self) -> list[str]:
        """Jobs without dependencies."""
        return [name for name, job in self.jobs.items() if not job.needs]

    def plan(self, event: EventContext) -> list[PlannedJob]:
        """Decide which jobs run for an event, in topological order."""
        planned: dict[str, PlannedJob] = {}
        for name in self.topological_order():
            job = self.jobs[name]
            will_run = job.runs_on(event)
            reason = None
            if not will_run:
                kinds = ", ".join(sorted(k.value for k in job.events or ()))
                reason = f"runs only on: {kinds}"
            else:
                inactive = [n for n in job.needs if not planned[n].will_run]
                if inactive:
                    will_run = False
                    reason = f"needs inactive job(s): {', '.join(inactive)}"
            planned[name] = PlannedJob(
                name=name,
                kind=job.kind,
                needs=list(job.needs),
                will_run=will_run,
                skip_reason=reason,
            )
        return list(planned.values())

    def schedule(
        self,
        statuses: Mapping[str, JobStatus],
    ) -> tuple[list[str], dict[str, str]]:
        """Compute the next scheduling step from current job statuses.

        A pending job becomes ready when all of its needs succeeded. A
        pending job with a failed or skipped need is skipped. Jobs whose
        needs are still pending or running stay pending.

        Args:
            statuses: Current status of every job.

        Returns:
            Tuple of (ready job names, {skipped job name: reason}).
        """
        ready: list[str] = []
        skipped: dict[str, str] = {}
        for name in self.topological_order():
            if statuses.get(name) != JobStatus.PENDING:
                continue
            needs = self.jobs[name].needs
            need_statuses = {n: statuses.get(n, JobStatus.SKIPPED) for n in needs}
            blocked = [
                n
                for n, s in need_statuses.items()
                if s in (JobStatus.FAILED, JobStatus.SKIPPED) or n in skipped
            ]
            if blocked:
                skipped[name] = f"dependency not successful: {', '.join(blocked)}"
            elif all(s == JobStatus.SUCCEEDED for s in need_statuses.values()):
                ready.append(name)
        return ready, skipped


def _build_needs(pipeline: PipelineSchema) -> tuple[str, ...]:
    return (FRONTEND_JOB, *(binary_job_name(t.name) for t in pipeline.targets))


def binary_job_name(target: str) -> str:
    """Name of the build job for an architecture."""
    return f"build-{target}"


def build_job_graph(pipeline: PipelineSchema) -> JobGraph:
    """Derive the job graph from a pipeline definition.

    Four kinds of jobs are produced: one frontend build, one binary build
    per target, the image publisher and (if enabled) the release packager.
    Both terminal jobs need every build job.

    Args:
        pipeline: Validated pipeline definition.

    Returns:
        Validated JobGraph.
    """
    graph = JobGraph()
    graph.add(JobSpec(name=FRONTEND_JOB, kind=JobKind.FRONTEND))
    for target in pipeline.targets:
        graph.add(
            JobSpec(
                name=binary_job_name(target.name),
                kind=JobKind.BINARY,
                target=target.name,
            )
        )

    needs = _build_needs(pipeline)
    if pipeline.flavors:
        graph.add(JobSpec(name=IMAGE_JOB, kind=JobKind.IMAGE, needs=needs))
    if pipeline.release.enabled:
        graph.add(
            JobSpec(
                name=RELEASE_JOB,
                kind=JobKind.RELEASE,
                needs=needs,
                events=frozenset({EventKind.RELEASE}),
            )
        )

    graph.validate()
    return graph


def graph_from_specs(specs: Iterable[JobSpec]) -> JobGraph:
    """Build and validate a graph from explicit job specs."""
    graph = JobGraph()
    for spec in specs:
        graph.add(spec)
    graph.validate()
    return graph


__all__ = [
    "FRONTEND_JOB",
    "IMAGE_JOB",
    "RELEASE_JOB",
    "JobGraph",
    "JobSpec",
    "PipelineGraphError",
    "PlannedJob",
    "binary_job_name",
    "build_job_graph",
    "graph_from_specs",
]
