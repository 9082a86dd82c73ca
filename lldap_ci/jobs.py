"""Job execution context shared by the job implementations.

Each job receives a JobContext describing the run it belongs to and
returns a JobOutcome. Exceptions raised by a job carry a `code`
attribute that is recorded as the job's error type.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from lldap_ci.types import ArtifactInfo

if TYPE_CHECKING:
    from lldap_ci.builds.artifacts import ArtifactStore
    from lldap_ci.config import Settings
    from lldap_ci.events import EventContext
    from lldap_ci.pipeline.graph import JobSpec
    from lldap_ci.pipeline.schema import PipelineSchema


@dataclass
class JobContext:
    """Everything a job needs to run.

    Attributes:
        run_id: ID of the pipeline run.
        job: Job being executed.
        pipeline: Pipeline definition.
        event: Triggering event.
        settings: Effective settings.
        store: Artifact store of the run.
        log_path: Log file of the job.
        work_dir: Scratch directory private to the job.
    """

    run_id: int
    job: JobSpec
    pipeline: PipelineSchema
    event: EventContext
    settings: Settings
    store: ArtifactStore
    log_path: Path
    work_dir: Path

    @property
    def source_dir(self) -> Path:
        return self.settings.source_dir

    @property
    def workspace(self) -> Path:
        """Copy of the checkout that only this job builds in."""
        return self.work_dir / "checkout"


@dataclass
class JobOutcome:
    """Result of a successful job.

    Attributes:
        cache_key: Build cache key, for build jobs.
        cache_hit: Whether the exact cache key was restored.
        uploaded: Files uploaded, keyed by artifact name.
        outputs: Job-specific outputs (pushed tags, release assets).
    """

    cache_key: str | None = None
    cache_hit: bool = False
    uploaded: dict[str, list[ArtifactInfo]] = field(default_factory=dict)
    outputs: dict[str, Any] = field(default_factory=dict)


JobFunction = Callable[[JobContext], JobOutcome]


def error_code(exc: BaseException, default: str = "internal_error") -> str:
    """Stable error code of an exception raised by a job."""
    code = getattr(exc, "code", None)
    return code if isinstance(code, str) else default


__all__ = ["JobContext", "JobFunction", "JobOutcome", "error_code"]
