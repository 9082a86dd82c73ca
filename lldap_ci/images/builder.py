"""Container image builds with docker buildx.

This module handles:
- Registry login
- Optional builder setup (QEMU binfmt handlers, buildx builder)
- Composing and running one multi-platform build per image flavor
- Rotating the local layer cache
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path

from lldap_ci.builds.runner import (
    LocalExecutor,
    Step,
    StepFailedError,
    run_step,
)
from lldap_ci.pipeline.schema import ImageFlavorSchema

logger = logging.getLogger(__name__)

BINFMT_IMAGE = "tonistiigi/binfmt"


class ImageBuildError(Exception):
    """Raised when an image build or push fails."""

    def __init__(
        self,
        message: str,
        flavor: str | None = None,
        code: str = "image_build_failed",
    ) -> None:
        super().__init__(message)
        self.flavor = flavor
        self.code = code


class RegistryLoginError(Exception):
    """Raised when logging in to the registry fails."""

    def __init__(self, message: str, code: str = "registry_login_failed") -> None:
        super().__init__(message)
        self.code = code


def new_cache_dir(cache_dir: Path) -> Path:
    """Directory buildx exports the refreshed cache to."""
    return cache_dir.with_name(cache_dir.name + "-new")


def compose_buildx_command(
    flavor: ImageFlavorSchema,
    tags: list[str],
    context: Path,
    push: bool,
    cache_dir: Path | None = None,
    docker: str = "docker",
    dockerfile_root: Path | None = None,
) -> list[str]:
    """Compose the `docker buildx build` command for one flavor.

    One invocation covers every platform of the flavor, so the pushed
    manifest list is complete or not pushed at all.

    Args:
        flavor: Image flavor.
        tags: Fully qualified image references.
        context: Build context directory.
        push: Push the result to the registry.
        cache_dir: Local layer cache (read from cache_dir, written to
            cache_dir-new).
        docker: Docker CLI executable.
        dockerfile_root: Directory the flavor Dockerfile is relative to
            (defaults to the context).

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [
        docker,
        "buildx",
        "build",
        "--platform",
        ",".join(flavor.platforms),
        "--file",
        str((dockerfile_root or context) / flavor.dockerfile),
    ]
    for tag in tags:
        cmd.extend(["--tag", tag])
    if cache_dir is not None:
        cmd.extend(["--cache-from", f"type=local,src={cache_dir}"])
        cmd.extend(["--cache-to", f"type=local,dest={new_cache_dir(cache_dir)}"])
    if push:
        cmd.append("--push")
    cmd.append(str(context))
    return cmd


def compose_login_command(
    username: str, registry: str | None = None, docker: str = "docker"
) -> list[str]:
    """Compose `docker login` reading the secret from stdin."""
    cmd = [docker, "login", "--username", username, "--password-stdin"]
    if registry:
        cmd.append(registry)
    return cmd


def registry_login(
    username: str | None,
    token: str | None,
    registry: str | None = None,
    docker: str = "docker",
) -> None:
    """Log in to the registry.

    Raises:
        RegistryLoginError: If credentials are missing or login fails.
    """
    if not username or not token:
        raise RegistryLoginError(
            "Registry username and token are required to push images",
            code="missing_credentials",
        )
    cmd = compose_login_command(username, registry=registry, docker=docker)
    logger.info("Logging in to %s as %s", registry or "Docker Hub", username)
    try:
        subprocess.run(
            cmd, input=token, capture_output=True, text=True, check=True, timeout=120
        )
    except subprocess.CalledProcessError as e:
        raise RegistryLoginError(f"docker login failed: {e.stderr.strip()}") from e
    except (subprocess.TimeoutExpired, OSError) as e:
        raise RegistryLoginError(f"docker login failed: {e}") from e


def setup_builder_steps(docker: str = "docker") -> list[Step]:
    """Steps enabling cross-platform builds on the host."""
    return [
        Step(
            name="setup qemu",
            command=(docker, "run", "--privileged", "--rm", BINFMT_IMAGE, "--install", "all"),
        ),
        Step(
            name="setup buildx",
            command=(docker, "buildx", "create", "--use"),
        ),
    ]


def build_flavor(
    flavor: ImageFlavorSchema,
    tags: list[str],
    context: Path,
    push: bool,
    log_path: Path,
    cache_dir: Path | None = None,
    docker: str = "docker",
    timeout: int | None = None,
    dockerfile_root: Path | None = None,
) -> None:
    """Build (and optionally push) one multi-platform image flavor.

    Raises:
        ImageBuildError: If the build fails.
    """
    cmd = compose_buildx_command(
        flavor,
        tags,
        context,
        push=push,
        cache_dir=cache_dir,
        docker=docker,
        dockerfile_root=dockerfile_root,
    )
    action = "Build and push" if push else "Build"
    step = Step(name=f"{action} {flavor.name}", command=tuple(cmd))
    try:
        run_step(step, LocalExecutor(context), log_path, timeout=timeout)
    except StepFailedError as e:
        raise ImageBuildError(
            f"Image build for {flavor.name} failed: {e}", flavor=flavor.name
        ) from e


def rotate_layer_cache(cache_dir: Path) -> bool:
    """Replace the layer cache with the one exported by the last build.

    Returns:
        True if the cache was rotated, False if no new cache exists.
    """
    fresh = new_cache_dir(cache_dir)
    if not fresh.is_dir():
        return False
    if cache_dir.exists():
        shutil.rmtree(cache_dir)
    fresh.rename(cache_dir)
    logger.info("Rotated layer cache %s", cache_dir)
    return True


__all__ = [
    "ImageBuildError",
    "RegistryLoginError",
    "build_flavor",
    "compose_buildx_command",
    "compose_login_command",
    "new_cache_dir",
    "registry_login",
    "rotate_layer_cache",
    "setup_builder_steps",
]
