"""Build job service.

This module provides the frontend and binary build jobs:
- A private copy of the checkout per job
- Cache restore by lockfile-derived key before building
- Step execution, in the target's toolchain container or on the host
- Artifact upload of the build outputs
- Cache save after a successful build

Concurrent build jobs never touch the shared checkout: each one restores,
compiles and saves its cache inside its own workspace.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from lldap_ci.builds.cache import BuildCache
from lldap_ci.builds.cache_key import compute_cache_key
from lldap_ci.builds.runner import (
    ContainerExecutor,
    LocalExecutor,
    Step,
    binary_output_path,
    compose_binary_steps,
    compose_frontend_steps,
    compose_target_env,
    run_steps,
)
from lldap_ci.jobs import JobContext, JobOutcome

logger = logging.getLogger(__name__)


class BuildServiceError(Exception):
    """Base error for build job operations."""

    def __init__(self, message: str, code: str = "build_service_error") -> None:
        super().__init__(message)
        self.code = code


def prepare_workspace(ctx: JobContext) -> Path:
    """Copy the checkout into the job's private workspace.

    Cache paths are left out; they are restored from the job's own cache
    entry. The work directory is left out when it lives inside the
    checkout.

    Raises:
        BuildServiceError: If the checkout cannot be copied.
    """
    source = ctx.source_dir
    workspace = ctx.workspace
    cached = {Path(p) for p in ctx.pipeline.cache_paths}
    work_root = ctx.settings.work_dir.resolve()

    def ignore(directory: str, names: list[str]) -> set[str]:
        parent = Path(directory)
        relative = parent.relative_to(source)
        resolved = parent.resolve()
        return {
            name
            for name in names
            if relative / name in cached or resolved / name == work_root
        }

    if workspace.exists():
        shutil.rmtree(workspace)
    workspace.parent.mkdir(parents=True, exist_ok=True)
    try:
        shutil.copytree(source, workspace, symlinks=True, ignore=ignore)
    except (shutil.Error, OSError) as e:
        raise BuildServiceError(
            f"Failed to copy checkout {source}: {e}", code="workspace_error"
        ) from e
    logger.debug("Prepared workspace %s for %s", workspace, ctx.job.name)
    return workspace


def _execute(
    ctx: JobContext,
    workspace: Path,
    steps: list[Step],
    image: str | None,
    env: dict[str, str],
) -> None:
    """Run steps in the job container when enabled, else on the host."""
    settings = ctx.settings
    if settings.use_containers and image:
        with ContainerExecutor(
            image=image,
            workspace=workspace,
            env=env,
            docker=settings.docker_binary,
        ) as executor:
            run_steps(steps, executor, ctx.log_path, timeout=settings.step_timeout)
    else:
        executor = LocalExecutor(workspace, env=env)
        run_steps(steps, executor, ctx.log_path, timeout=settings.step_timeout)


def _build_with_cache(
    ctx: JobContext,
    target: str | None,
    steps: list[Step],
    image: str | None,
    env: dict[str, str],
) -> tuple[JobOutcome, Path]:
    workspace = prepare_workspace(ctx)
    cache = BuildCache(ctx.settings.cache_dir)
    key = compute_cache_key(ctx.pipeline, workspace, target=target)
    restored = cache.restore(key.key, workspace, restore_keys=key.restore_keys)

    _execute(ctx, workspace, steps, image, env)

    outcome = JobOutcome(cache_key=key.key, cache_hit=restored.exact)
    if not restored.exact:
        cache.save(key.key, workspace, ctx.pipeline.cache_paths)
    return outcome, workspace


def run_frontend_job(ctx: JobContext) -> JobOutcome:
    """Build the web frontend and upload it as the 'ui' artifact.

    Raises:
        StepFailedError: If any build step fails.
        BuildServiceError: If the build produced no output directory.
    """
    frontend = ctx.pipeline.frontend
    outcome, workspace = _build_with_cache(
        ctx,
        target=None,
        steps=compose_frontend_steps(frontend),
        image=frontend.container_image,
        env=frontend.env,
    )

    output_dir = workspace / frontend.output_dir
    if not output_dir.is_dir():
        raise BuildServiceError(
            f"Frontend output directory missing: {output_dir}",
            code="missing_output",
        )
    outcome.uploaded[frontend.artifact] = ctx.store.upload(
        frontend.artifact, output_dir, job=ctx.job.name
    )
    return outcome


def run_binary_job(ctx: JobContext) -> JobOutcome:
    """Cross-compile the binaries for one target and upload each one.

    Every binary is uploaded under its own name, <target>-<binary>-bin.

    Raises:
        StepFailedError: If any build step fails.
        BuildServiceError: If the job has no target or a binary is missing.
    """
    if ctx.job.target is None:
        raise BuildServiceError(
            f"Job {ctx.job.name} has no target", code="invalid_job"
        )
    target = ctx.pipeline.get_target(ctx.job.target)
    binaries = ctx.pipeline.binaries

    outcome, workspace = _build_with_cache(
        ctx,
        target=target.name,
        steps=compose_binary_steps(target, binaries),
        image=target.container_image,
        env=compose_target_env(target),
    )

    outputs: dict[str, Path] = {}
    for binary in binaries:
        path = binary_output_path(workspace, target.rust_target, binary)
        if not path.is_file():
            raise BuildServiceError(
                f"Binary {binary} missing after build: {path}",
                code="missing_output",
            )
        outputs[binary] = path

    for binary, path in outputs.items():
        name = ctx.pipeline.binary_artifact(target.name, binary)
        outcome.uploaded[name] = ctx.store.upload(name, path, job=ctx.job.name)

    logger.info("Built %s for %s", ", ".join(binaries), target.name)
    return outcome


__all__ = [
    "BuildServiceError",
    "prepare_workspace",
    "run_binary_job",
    "run_frontend_job",
]
