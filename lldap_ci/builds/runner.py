"""Step runner for build jobs.

This module handles:
- Composing cargo and frontend build steps from the pipeline definition
- Executing steps strictly in order, locally or inside a job container
- Capturing stdout/stderr of every step to the job log file
- Enforcing optional per-step timeouts
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Protocol

from lldap_ci.pipeline.schema import ArchTargetSchema, FrontendSchema

logger = logging.getLogger(__name__)

# Mount point of the checkout inside job containers
CONTAINER_WORKSPACE = "/workspace"

# Placeholder in env values replaced with the checkout path
WORKSPACE_PLACEHOLDER = "{workspace}"


class StepFailedError(Exception):
    """Raised when a step exits non-zero or cannot be run."""

    def __init__(
        self,
        message: str,
        step: str | None = None,
        exit_code: int | None = None,
        log_path: Path | None = None,
        code: str = "step_failed",
    ) -> None:
        super().__init__(message)
        self.step = step
        self.exit_code = exit_code
        self.log_path = log_path
        self.code = code


class StepTimeoutError(StepFailedError):
    """Raised when a step exceeds its timeout."""

    def __init__(
        self,
        message: str,
        step: str | None = None,
        log_path: Path | None = None,
    ) -> None:
        super().__init__(
            message, step=step, exit_code=-1, log_path=log_path, code="step_timeout"
        )


@dataclass(frozen=True)
class Step:
    """A single command inside a job.

    Attributes:
        name: Display name.
        command: Argument vector.
        env: Extra environment for this step only.
        cwd: Working directory relative to the checkout.
    """

    name: str
    command: tuple[str, ...]
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None


@dataclass
class StepResult:
    """Result of one executed step."""

    name: str
    command: str
    exit_code: int
    started_at: datetime
    finished_at: datetime

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


def shell(command: str) -> tuple[str, ...]:
    """Wrap a shell command line in an argument vector."""
    return ("sh", "-c", command)


def expand_env(env: dict[str, str], workspace: str) -> dict[str, str]:
    """Replace the workspace placeholder in env values."""
    return {k: v.replace(WORKSPACE_PLACEHOLDER, workspace) for k, v in env.items()}


def linker_env_var(rust_target: str) -> str:
    """Cargo's linker variable for a target triple.

    'armv7-unknown-linux-gnueabihf' maps to
    'CARGO_TARGET_ARMV7_UNKNOWN_LINUX_GNUEABIHF_LINKER'.
    """
    return f"CARGO_TARGET_{rust_target.upper().replace('-', '_')}_LINKER"


def compose_target_env(target: ArchTargetSchema) -> dict[str, str]:
    """Compose the job environment for a binary build.

    Args:
        target: Architecture target.

    Returns:
        Environment mapping; values may contain the workspace placeholder.
    """
    env = {
        "CARGO_TERM_COLOR": "always",
        "RUSTFLAGS": target.rustflags,
        "CARGO_HOME": f"{WORKSPACE_PLACEHOLDER}/.cargo",
    }
    if target.linker:
        env[linker_env_var(target.rust_target)] = target.linker
    env.update(target.env)
    return env


def compose_cargo_command(target: ArchTargetSchema, binaries: list[str]) -> list[str]:
    """Compose the cargo release build command for a target.

    Args:
        target: Architecture target.
        binaries: Cargo packages to build.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = ["cargo", "build", f"--target={target.rust_target}", "--release"]
    for binary in binaries:
        cmd.extend(["-p", binary])
    return cmd


def compose_binary_steps(target: ArchTargetSchema, binaries: list[str]) -> list[Step]:
    """Compose the ordered steps of a binary build job."""
    steps = [
        Step(name=f"setup {i + 1}", command=shell(cmd))
        for i, cmd in enumerate(target.setup_commands)
    ]
    steps.append(Step(name="smoke test", command=("rustc", "--version")))
    steps.append(
        Step(
            name=f"add {target.name} target",
            command=("rustup", "target", "add", target.rust_target),
        )
    )
    steps.append(
        Step(
            name=f"compile {target.name}",
            command=tuple(compose_cargo_command(target, binaries)),
        )
    )
    return steps


def compose_frontend_steps(frontend: FrontendSchema) -> list[Step]:
    """Compose the ordered steps of the frontend build job."""
    steps = [
        Step(name=f"setup {i + 1}", command=shell(cmd))
        for i, cmd in enumerate(frontend.setup_commands)
    ]
    steps.append(Step(name="smoke test", command=("rustc", "--version")))
    steps.append(Step(name="build frontend", command=shell(frontend.build_command)))
    return steps


def binary_output_path(source_dir: Path, rust_target: str, binary: str) -> Path:
    """Path of a compiled release binary inside the checkout."""
    return source_dir / "target" / rust_target / "release" / binary


class Executor(Protocol):
    """Turns a step into a process invocation."""

    def prepare(self, step: Step) -> tuple[list[str], Path | None, dict[str, str] | None]:
        """Return (argv, cwd, env) for running the step."""
        ...


class LocalExecutor:
    """Runs steps directly on the host, inside the checkout."""

    def __init__(self, workspace: Path, env: dict[str, str] | None = None) -> None:
        self.workspace = workspace
        self.env = expand_env(env or {}, str(workspace))

    def prepare(self, step: Step) -> tuple[list[str], Path | None, dict[str, str] | None]:
        env = dict(os.environ)
        env.update(self.env)
        env.update(expand_env(step.env, str(self.workspace)))
        cwd = self.workspace / step.cwd if step.cwd else self.workspace
        return list(step.command), cwd, env


class ContainerExecutor:
    """Runs steps with `docker exec` inside a long-lived job container.

    The checkout is bind-mounted at /workspace. Tools installed by setup
    steps persist for later steps because the container lives as long as
    the job. Use as a context manager.
    """

    def __init__(
        self,
        image: str,
        workspace: Path,
        env: dict[str, str] | None = None,
        docker: str = "docker",
        name: str | None = None,
    ) -> None:
        self.image = image
        self.workspace = workspace
        self.env = expand_env(env or {}, CONTAINER_WORKSPACE)
        self.docker = docker
        self.name = name or f"lldap-ci-{uuid.uuid4().hex[:12]}"
        self.started = False

    def start_command(self) -> list[str]:
        """Compose the `docker run` command starting the job container."""
        cmd = [
            self.docker,
            "run",
            "--detach",
            "--rm",
            "--name",
            self.name,
            "--volume",
            f"{self.workspace.resolve()}:{CONTAINER_WORKSPACE}",
            "--workdir",
            CONTAINER_WORKSPACE,
        ]
        for key, value in self.env.items():
            cmd.extend(["--env", f"{key}={value}"])
        cmd.extend([self.image, "sleep", "infinity"])
        return cmd

    def prepare(self, step: Step) -> tuple[list[str], Path | None, dict[str, str] | None]:
        workdir = CONTAINER_WORKSPACE
        if step.cwd:
            workdir = f"{CONTAINER_WORKSPACE}/{step.cwd}"
        cmd = [self.docker, "exec", "--workdir", workdir]
        for key, value in expand_env(step.env, CONTAINER_WORKSPACE).items():
            cmd.extend(["--env", f"{key}={value}"])
        cmd.append(self.name)
        cmd.extend(step.command)
        return cmd, None, None

    def __enter__(self) -> ContainerExecutor:
        cmd = self.start_command()
        logger.info("Starting job container: %s", shlex.join(cmd))
        try:
            subprocess.run(cmd, capture_output=True, text=True, check=True)
        except subprocess.CalledProcessError as e:
            raise StepFailedError(
                f"Failed to start container {self.image}: {e.stderr.strip()}",
                step="start container",
                exit_code=e.returncode,
                code="container_error",
            ) from e
        except OSError as e:
            raise StepFailedError(
                f"Failed to run {self.docker}: {e}",
                step="start container",
                code="execution_error",
            ) from e
        self.started = True
        return self

    def __exit__(self, *exc_info: object) -> None:
        if not self.started:
            return
        result = subprocess.run(
            [self.docker, "rm", "--force", self.name],
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            logger.warning(
                "Failed to remove container %s: %s", self.name, result.stderr.strip()
            )
        self.started = False


def _write_header(log_file: IO[str], step: Step, cmd_str: str, started_at: datetime) -> None:
    log_file.write(f"# Step: {step.name}\n")
    log_file.write(f"# Command: {cmd_str}\n")
    log_file.write(f"# Started: {started_at.isoformat()}\n")
    log_file.write("# " + "=" * 70 + "\n")
    log_file.flush()


def run_step(
    step: Step,
    executor: Executor,
    log_path: Path,
    timeout: int | None = None,
) -> StepResult:
    """Execute one step, appending its output to the log file.

    Args:
        step: Step to run.
        executor: Executor preparing the process invocation.
        log_path: Job log file (appended to).
        timeout: Step timeout in seconds (None = no timeout).

    Returns:
        StepResult of a successful step.

    Raises:
        StepFailedError: If the step exits non-zero or cannot start.
        StepTimeoutError: If the step exceeds the timeout.
    """
    argv, cwd, env = executor.prepare(step)
    cmd_str = shlex.join(argv)
    logger.info("Running step '%s': %s", step.name, cmd_str)

    log_path.parent.mkdir(parents=True, exist_ok=True)
    started_at = datetime.now(timezone.utc)

    with log_path.open("a") as log_file:
        _write_header(log_file, step, cmd_str, started_at)
        try:
            result = subprocess.run(
                argv,
                cwd=cwd,
                env=env,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
            message = f"Step '{step.name}' timed out after {timeout} seconds"
            logger.error("%s. See log: %s", message, log_path)
            raise StepTimeoutError(message, step=step.name, log_path=log_path) from e
        except OSError as e:
            log_file.write(f"\n# Failed to execute: {e}\n")
            message = f"Failed to execute step '{step.name}': {e}"
            logger.error(message)
            raise StepFailedError(
                message, step=step.name, log_path=log_path, code="execution_error"
            ) from e

        finished_at = datetime.now(timezone.utc)
        duration = (finished_at - started_at).total_seconds()
        log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
        log_file.write(f"# Exit code: {result.returncode}\n")
        log_file.write(f"# Duration: {duration:.1f}s\n\n")

    if result.returncode != 0:
        message = f"Step '{step.name}' failed with exit code {result.returncode}"
        logger.error("%s. See log: %s", message, log_path)
        raise StepFailedError(
            message, step=step.name, exit_code=result.returncode, log_path=log_path
        )

    return StepResult(
        name=step.name,
        command=cmd_str,
        exit_code=result.returncode,
        started_at=started_at,
        finished_at=finished_at,
    )


def run_steps(
    steps: list[Step],
    executor: Executor,
    log_path: Path,
    timeout: int | None = None,
) -> list[StepResult]:
    """Execute steps in order, stopping at the first failure.

    Raises:
        StepFailedError: From the first failing step; later steps do not run.
    """
    return [run_step(step, executor, log_path, timeout=timeout) for step in steps]


__all__ = [
    "CONTAINER_WORKSPACE",
    "ContainerExecutor",
    "Executor",
    "LocalExecutor",
    "Step",
    "StepFailedError",
    "StepResult",
    "StepTimeoutError",
    "binary_output_path",
    "compose_binary_steps",
    "compose_cargo_command",
    "compose_frontend_steps",
    "compose_target_env",
    "expand_env",
    "linker_env_var",
    "run_step",
    "run_steps",
    "shell",
]
