"""Shared type definitions for lldap_ci.

This module contains enums and dataclasses shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass
from enum import Enum


class EventKind(str, Enum):
    """Kind of event that triggered a pipeline run."""

    PUSH = "push"
    PULL_REQUEST = "pull_request"
    WORKFLOW_DISPATCH = "workflow_dispatch"
    RELEASE = "release"


class RunStatus(str, Enum):
    """Status of a pipeline run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class JobStatus(str, Enum):
    """Status of a single job within a run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        """Whether the job will not change state anymore."""
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.SKIPPED)


class JobKind(str, Enum):
    """What a job produces or consumes."""

    FRONTEND = "frontend"
    BINARY = "binary"
    IMAGE = "image"
    RELEASE = "release"


@dataclass
class ArtifactInfo:
    """Information about a file stored under an artifact name."""

    filename: str
    relative_path: str
    size_bytes: int
    sha256: str


__all__ = [
    "ArtifactInfo",
    "EventKind",
    "JobKind",
    "JobStatus",
    "RunStatus",
]
