"""Pipeline run ORM models.

This module defines the PipelineRun, JobRecord and ArtifactRecord models
for storing run executions, per-job outcomes and uploaded artifacts.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lldap_ci.db import Base
from lldap_ci.types import JobStatus, RunStatus


class PipelineRun(Base):
    """ORM model for one execution of the pipeline.

    Attributes:
        id: Primary key.
        event_kind: Trigger kind (push, pull_request, ...).
        ref: Git ref of the event.
        sha: Commit hash.
        tag: Release tag, for release events.
        message: Manual trigger message.
        status: Run status (pending, running, succeeded, failed).
        requested_at: Timestamp when the run was created.
        started_at: Timestamp when the first job started.
        finished_at: Timestamp when the last job finished.
        event_snapshot: JSON representation of the event context.
    """

    __tablename__ = "pipeline_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    event_kind: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sha: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tag: Mapped[str | None] = mapped_column(String(255), nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RunStatus.PENDING.value, index=True
    )
    requested_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    event_snapshot: Mapped[dict[str, object] | None] = mapped_column(
        JSON, nullable=True
    )

    jobs: Mapped[list["JobRecord"]] = relationship(
        "JobRecord",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="JobRecord.id",
    )

    def __repr__(self) -> str:
        """Return string representation of PipelineRun."""
        return (
            f"<PipelineRun(id={self.id}, event='{self.event_kind}', "
            f"status='{self.status}')>"
        )

    def mark_running(self) -> None:
        """Mark this run as running."""
        self.status = RunStatus.RUNNING.value
        self.started_at = datetime.now()

    def mark_finished(self, success: bool) -> None:
        """Mark this run as succeeded or failed."""
        self.status = RunStatus.SUCCEEDED.value if success else RunStatus.FAILED.value
        self.finished_at = datetime.now()

    def get_job(self, name: str) -> "JobRecord | None":
        """Return the job record with the given name, if any."""
        for job in self.jobs:
            if job.name == name:
                return job
        return None


class JobRecord(Base):
    """ORM model for one job of a pipeline run.

    Attributes:
        id: Primary key.
        run_id: Foreign key to PipelineRun.
        name: Job name (unique within a run).
        kind: Job kind (frontend, binary, image, release).
        needs: JSON array of job names this job waits for.
        status: Job status (pending, running, succeeded, failed, skipped).
        started_at: Timestamp when the job started.
        finished_at: Timestamp when the job finished.
        cache_key: Build cache key, for build jobs.
        cache_hit: Whether the exact cache key was restored.
        log_path: Path to the job log file.
        error_type: Error code if the job failed.
        error_message: Error message if the job failed or was skipped.
        outputs: JSON outputs (pushed tags, release assets, ...).
    """

    __tablename__ = "job_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    run_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("pipeline_runs.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    needs: Mapped[list[str] | None] = mapped_column(JSON, nullable=True, default=list)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JobStatus.PENDING.value, index=True
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    cache_key: Mapped[str | None] = mapped_column(String(200), nullable=True)
    cache_hit: Mapped[bool] = mapped_column(nullable=False, default=False)
    log_path: Mapped[str | None] = mapped_column(String(500), nullable=True)

    error_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    outputs: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)

    run: Mapped["PipelineRun"] = relationship("PipelineRun", back_populates="jobs")
    artifacts: Mapped[list["ArtifactRecord"]] = relationship(
        "ArtifactRecord", back_populates="job", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("ix_job_records_run_name", "run_id", "name", unique=True),)

    def __repr__(self) -> str:
        """Return string representation of JobRecord."""
        return f"<JobRecord(id={self.id}, name='{self.name}', status='{self.status}')>"

    def mark_running(self) -> None:
        """Mark this job as running."""
        self.status = JobStatus.RUNNING.value
        self.started_at = datetime.now()

    def mark_succeeded(self) -> None:
        """Mark this job as succeeded."""
        self.status = JobStatus.SUCCEEDED.value
        self.finished_at = datetime.now()

    def mark_failed(
        self, error_type: str | None = None, message: str | None = None
    ) -> None:
        """Mark this job as failed.

        Args:
            error_type: Type/category of the error.
            message: Error message details.
        """
        self.status = JobStatus.FAILED.value
        self.finished_at = datetime.now()
        if error_type:
            self.error_type = error_type
        if message:
            self.error_message = message

    def mark_skipped(self, reason: str | None = None) -> None:
        """Mark this job as skipped."""
        self.status = JobStatus.SKIPPED.value
        self.finished_at = datetime.now()
        if reason:
            self.error_message = reason

    def is_succeeded(self) -> bool:
        """Check if this job succeeded."""
        return self.status == JobStatus.SUCCEEDED.value


class ArtifactRecord(Base):
    """ORM model for a file uploaded to the artifact store.

    Attributes:
        id: Primary key.
        job_id: Foreign key to the uploading JobRecord.
        name: Artifact name the file was uploaded under.
        filename: File name.
        relative_path: Path relative to the artifact root.
        size_bytes: File size in bytes.
        sha256: SHA-256 hash of the file.
    """

    __tablename__ = "artifact_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    job_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("job_records.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    relative_path: Mapped[str] = mapped_column(String(500), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False)

    job: Mapped["JobRecord"] = relationship("JobRecord", back_populates="artifacts")

    def __repr__(self) -> str:
        """Return string representation of ArtifactRecord."""
        return (
            f"<ArtifactRecord(id={self.id}, name='{self.name}', "
            f"filename='{self.filename}', size={self.size_bytes})>"
        )


__all__ = ["ArtifactRecord", "JobRecord", "PipelineRun"]
