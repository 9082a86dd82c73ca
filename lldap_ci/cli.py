"""Thin CLI wrapper for lldap_ci.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import os
from pathlib import Path
from typing import Annotated, Any

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from lldap_ci import __version__
from lldap_ci.config import Settings, get_settings, print_settings_json
from lldap_ci.events import (
    DEFAULT_DISPATCH_MESSAGE,
    EventContext,
    EventNotTriggeredError,
    InvalidVersionError,
    event_from_github_env,
)
from lldap_ci.logs import configure_logging
from lldap_ci.pipeline.schema import PipelineSchema
from lldap_ci.types import EventKind

app = typer.Typer(
    name="lldap-ci",
    help="lldap CI - build, package and publish lldap for every architecture",
    no_args_is_help=True,
)
console = Console()

STATUS_COLORS = {
    "succeeded": "green",
    "failed": "red",
    "running": "blue",
    "pending": "yellow",
    "skipped": "bright_black",
}

EventOpt = Annotated[
    str,
    typer.Option(
        "--event",
        "-e",
        help="Event kind (push/pull_request/workflow_dispatch/release)",
    ),
]
BranchOpt = Annotated[
    str | None,
    typer.Option("--branch", "-b", help="Pushed branch or pull request base branch"),
]
PrOpt = Annotated[
    int | None,
    typer.Option("--pr", help="Pull request number"),
]
TagOpt = Annotated[
    str | None,
    typer.Option("--tag", "-t", help="Release tag (e.g. v0.4.1)"),
]
ShaOpt = Annotated[
    str | None,
    typer.Option("--sha", help="Commit hash"),
]
MessageOpt = Annotated[
    str | None,
    typer.Option("--message", "-m", help="Manual trigger message"),
]
FromEnvOpt = Annotated[
    bool,
    typer.Option("--from-env", help="Read the event from the GitHub Actions environment"),
]
PipelineOpt = Annotated[
    Path | None,
    typer.Option("--pipeline", "-p", help="Pipeline definition (YAML/JSON)"),
]
JsonOpt = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"lldap-ci version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Override the configured log level"),
    ] = None,
) -> None:
    """lldap CI - build, package and publish lldap for every architecture."""
    configure_logging(log_level or get_settings().log_level)


def _print_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2))


def _load_pipeline(path: Path | None, settings: Settings) -> PipelineSchema:
    from lldap_ci.pipeline.io import resolve_pipeline

    try:
        return resolve_pipeline(path or settings.pipeline_file)
    except FileNotFoundError as e:
        console.print(f"[red]Pipeline definition not found: {e.filename or path}[/red]")
        raise typer.Exit(code=1) from None
    except (ValidationError, yaml.YAMLError) as e:
        console.print("[red]Invalid pipeline definition:[/red]")
        console.print(str(e))
        raise typer.Exit(code=1) from None
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None


def build_event(
    event: str = "push",
    branch: str | None = None,
    pr: int | None = None,
    tag: str | None = None,
    sha: str | None = None,
    message: str | None = None,
    from_env: bool = False,
    default_branch: str = "main",
) -> EventContext:
    """Build an event context from command-line options.

    Raises:
        EventNotTriggeredError: If the event kind is unknown or --from-env
            finds no GitHub Actions event.
        ValueError: If required options are missing.
    """
    if from_env:
        return event_from_github_env(os.environ)

    try:
        kind = EventKind(event)
    except ValueError:
        raise EventNotTriggeredError(
            f"Unsupported event: {event}", code="unsupported_event"
        ) from None

    if kind == EventKind.RELEASE:
        if not tag:
            raise ValueError("--tag is required for release events")
        return EventContext(
            kind=kind, ref=f"refs/tags/{tag}", tag=tag, sha=sha, action="published"
        )
    branch = branch or default_branch
    if kind == EventKind.PULL_REQUEST:
        if pr is None:
            raise ValueError("--pr is required for pull_request events")
        return EventContext(
            kind=kind, ref=f"refs/pull/{pr}/merge", branch=branch, pr_number=pr, sha=sha
        )
    if kind == EventKind.WORKFLOW_DISPATCH:
        return EventContext(
            kind=kind,
            ref=f"refs/heads/{branch}",
            branch=branch,
            sha=sha,
            message=message or DEFAULT_DISPATCH_MESSAGE,
        )
    return EventContext(kind=kind, ref=f"refs/heads/{branch}", branch=branch, sha=sha)


def _event_or_exit(pipeline: PipelineSchema, **options: Any) -> EventContext:
    try:
        return build_event(default_branch=pipeline.branch, **options)
    except (EventNotTriggeredError, ValidationError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None


@app.command()
def config(json_output: JsonOpt = False) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        typer.echo(print_settings_json(settings))
        return

    pipeline_display = (
        str(settings.pipeline_file) if settings.pipeline_file else "(built-in)"
    )
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Source directory:    {settings.source_dir}")
    console.print(f"  Work directory:      {settings.work_dir}")
    console.print(f"  Artifacts directory: {settings.artifacts_dir}")
    console.print(f"  Cache directory:     {settings.cache_dir}")
    console.print(f"  Layer cache:         {settings.buildx_cache_dir}")
    console.print(f"  Logs directory:      {settings.logs_dir}")
    console.print(f"  Database URL:        {settings.db_url}")
    console.print(f"  Pipeline:            {pipeline_display}")
    console.print()
    console.print("[bold]Execution:[/bold]")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Max jobs:            {settings.max_concurrent_jobs}")
    console.print(f"  Step timeout:        {settings.step_timeout or '(none)'}")
    console.print(f"  Use containers:      {settings.use_containers}")
    console.print(f"  Setup builder:       {settings.setup_builder}")
    console.print(f"  SHA tags:            {settings.include_sha_tags}")
    console.print()
    console.print("[bold]Publishing:[/bold]")
    console.print(f"  Registry user:       {settings.registry_username or '(unset)'}")
    console.print(f"  Registry token:      {'***' if settings.registry_token else '(unset)'}")
    console.print(f"  GitHub repository:   {settings.github_repository or '(unset)'}")
    console.print(f"  GitHub token:        {'***' if settings.github_token else '(unset)'}")


pipeline_app = typer.Typer(help="Inspect pipeline definitions")
app.add_typer(pipeline_app, name="pipeline")


@pipeline_app.command("show")
def pipeline_show(
    pipeline_file: PipelineOpt = None,
    json_output: JsonOpt = False,
) -> None:
    """Show the effective pipeline definition."""
    from lldap_ci.pipeline.io import pipeline_to_json_string, pipeline_to_yaml_string

    pipeline = _load_pipeline(pipeline_file, get_settings())
    if json_output:
        typer.echo(pipeline_to_json_string(pipeline))
    else:
        typer.echo(pipeline_to_yaml_string(pipeline))


@pipeline_app.command("validate")
def pipeline_validate(
    path: Annotated[Path, typer.Argument(help="Pipeline definition (YAML/JSON)")],
) -> None:
    """Validate a pipeline definition and its job graph."""
    from lldap_ci.pipeline.graph import PipelineGraphError, build_job_graph

    pipeline = _load_pipeline(path, get_settings())
    try:
        graph = build_job_graph(pipeline)
    except PipelineGraphError as e:
        console.print(f"[red]Invalid job graph: {e}[/red]")
        raise typer.Exit(code=1) from None
    console.print(
        f"[green]Valid:[/green] {path} "
        f"({len(pipeline.targets)} target(s), {len(graph.jobs)} job(s))"
    )


@app.command()
def plan(
    event: EventOpt = "push",
    branch: BranchOpt = None,
    pr: PrOpt = None,
    tag: TagOpt = None,
    sha: ShaOpt = None,
    message: MessageOpt = None,
    from_env: FromEnvOpt = False,
    pipeline_file: PipelineOpt = None,
    json_output: JsonOpt = False,
) -> None:
    """Show which jobs would run for an event, in dependency order."""
    from lldap_ci.events import check_triggered
    from lldap_ci.pipeline.graph import build_job_graph

    pipeline = _load_pipeline(pipeline_file, get_settings())
    ctx = _event_or_exit(
        pipeline,
        event=event,
        branch=branch,
        pr=pr,
        tag=tag,
        sha=sha,
        message=message,
        from_env=from_env,
    )
    triggered = True
    reason = None
    try:
        check_triggered(ctx, pipeline.branch)
    except (EventNotTriggeredError, InvalidVersionError) as e:
        triggered = False
        reason = str(e)

    planned = build_job_graph(pipeline).plan(ctx)

    if json_output:
        _print_json(
            {
                "event": ctx.model_dump(mode="json", exclude_none=True),
                "triggered": triggered,
                "reason": reason,
                "jobs": [
                    {
                        "name": p.name,
                        "kind": p.kind.value,
                        "needs": p.needs,
                        "will_run": p.will_run and triggered,
                        "skip_reason": p.skip_reason,
                    }
                    for p in planned
                ],
            }
        )
        return

    console.print(f"[bold]Event:[/bold] {ctx.describe()}")
    if not triggered:
        console.print(f"[yellow]Not triggered: {reason}[/yellow]")
    table = Table("Job", "Kind", "Needs", "Runs")
    for p in planned:
        runs = "[green]yes[/green]" if p.will_run and triggered else "[yellow]no[/yellow]"
        if p.skip_reason:
            runs += f" ({p.skip_reason})"
        table.add_row(p.name, p.kind.value, ", ".join(p.needs) or "-", runs)
    console.print(table)


@app.command()
def tags(
    event: EventOpt = "push",
    branch: BranchOpt = None,
    pr: PrOpt = None,
    tag: TagOpt = None,
    sha: ShaOpt = None,
    message: MessageOpt = None,
    from_env: FromEnvOpt = False,
    pipeline_file: PipelineOpt = None,
    json_output: JsonOpt = False,
) -> None:
    """Show the image tags an event would publish, per flavor."""
    from lldap_ci.images.tags import compute_image_tags

    settings = get_settings()
    pipeline = _load_pipeline(pipeline_file, settings)
    ctx = _event_or_exit(
        pipeline,
        event=event,
        branch=branch,
        pr=pr,
        tag=tag,
        sha=sha,
        message=message,
        from_env=from_env,
    )
    try:
        result = compute_image_tags(
            ctx, pipeline.image, pipeline.flavors, settings.include_sha_tags
        )
    except InvalidVersionError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        _print_json({"push": ctx.should_push, "tags": result})
        return

    console.print(f"[bold]Event:[/bold] {ctx.describe()}")
    if not ctx.should_push:
        console.print("[yellow]Images are built but not pushed[/yellow]")
    for flavor, refs in result.items():
        console.print(f"[bold]{flavor}:[/bold]")
        for ref in refs:
            console.print(f"  {ref}")


@app.command()
def run(
    event: EventOpt = "push",
    branch: BranchOpt = None,
    pr: PrOpt = None,
    tag: TagOpt = None,
    sha: ShaOpt = None,
    message: MessageOpt = None,
    from_env: FromEnvOpt = False,
    pipeline_file: PipelineOpt = None,
    source: Annotated[
        Path | None,
        typer.Option("--source", "-s", help="Checkout to build (default: cwd)"),
    ] = None,
    max_jobs: Annotated[
        int | None,
        typer.Option("--max-jobs", "-j", min=1, help="Maximum parallel jobs"),
    ] = None,
    no_containers: Annotated[
        bool,
        typer.Option("--no-containers", help="Run build steps on the host"),
    ] = False,
    json_output: JsonOpt = False,
) -> None:
    """Run the pipeline for an event.

    Exits with code 1 if any job fails. Events outside the trigger
    surface are reported and exit with code 0.
    """
    from lldap_ci.db import init_db
    from lldap_ci.orchestrator import run_to_dict, start_run

    settings = get_settings()
    overrides: dict[str, Any] = {}
    if source is not None:
        overrides["source_dir"] = source.resolve()
    if max_jobs is not None:
        overrides["max_concurrent_jobs"] = max_jobs
    if no_containers:
        overrides["use_containers"] = False
    if overrides:
        settings = settings.model_copy(update=overrides)

    pipeline = _load_pipeline(pipeline_file, settings)
    ctx = _event_or_exit(
        pipeline,
        event=event,
        branch=branch,
        pr=pr,
        tag=tag,
        sha=sha,
        message=message,
        from_env=from_env,
    )

    factory = init_db(settings.db_url)

    with factory() as session:
        try:
            pipeline_run = start_run(session, ctx, pipeline, settings)
        except EventNotTriggeredError as e:
            if json_output:
                _print_json({"triggered": False, "reason": str(e)})
            else:
                console.print(f"[yellow]Not triggered: {e}[/yellow]")
            return
        except InvalidVersionError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(code=1) from None

        if json_output:
            _print_json(run_to_dict(pipeline_run, include_jobs=True))
        else:
            _print_run(pipeline_run)

        if pipeline_run.status != "succeeded":
            raise typer.Exit(code=1)


def _print_run(pipeline_run: Any) -> None:
    color = STATUS_COLORS.get(pipeline_run.status, "white")
    console.print(
        f"[bold]Run #{pipeline_run.id}[/bold] ({pipeline_run.event_kind}): "
        f"[{color}]{pipeline_run.status}[/{color}]"
    )
    table = Table("Job", "Status", "Cache", "Details")
    for job in pipeline_run.jobs:
        job_color = STATUS_COLORS.get(job.status, "white")
        cache = "-"
        if job.cache_key:
            cache = "hit" if job.cache_hit else "miss"
        details = job.error_message or ""
        if job.log_path and job.status == "failed":
            details += f" (log: {job.log_path})"
        table.add_row(job.name, f"[{job_color}]{job.status}[/{job_color}]", cache, details)
    console.print(table)


runs_app = typer.Typer(help="Inspect pipeline runs")
app.add_typer(runs_app, name="runs")


@runs_app.command("list")
def runs_list(
    status: Annotated[
        str | None,
        typer.Option(
            "--status", help="Filter by status (pending/running/succeeded/failed)"
        ),
    ] = None,
    event: Annotated[
        str | None,
        typer.Option("--event", "-e", help="Filter by event kind"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Maximum number of records to return"),
    ] = 100,
    json_output: JsonOpt = False,
) -> None:
    """List pipeline runs."""
    from lldap_ci.db import init_db
    from lldap_ci.orchestrator import list_runs, run_to_dict
    from lldap_ci.types import RunStatus

    status_filter: RunStatus | None = None
    if status:
        try:
            status_filter = RunStatus(status)
        except ValueError:
            console.print(f"[red]Invalid status: {status}[/red]")
            console.print("Valid values: pending, running, succeeded, failed")
            raise typer.Exit(code=1) from None

    factory = init_db()

    with factory() as session:
        runs = list_runs(session, status=status_filter, event_kind=event, limit=limit)

        if json_output:
            _print_json([run_to_dict(r) for r in runs])
            return
        if not runs:
            console.print("[yellow]No runs found[/yellow]")
            return

        console.print(f"[bold]Found {len(runs)} run(s):[/bold]")
        console.print()
        for r in runs:
            color = STATUS_COLORS.get(r.status, "white")
            console.print(f"  [{color}]Run #{r.id}[/{color}]")
            console.print(f"    Event: {r.event_kind} {r.tag or r.ref or ''}")
            console.print(f"    Status: {r.status}")
            console.print(
                f"    Requested: {r.requested_at.isoformat() if r.requested_at else 'N/A'}"
            )


@runs_app.command("show")
def runs_show(
    run_id: Annotated[int, typer.Argument(help="Run ID")],
    json_output: JsonOpt = False,
) -> None:
    """Show a run and its jobs."""
    from lldap_ci.db import init_db
    from lldap_ci.orchestrator import RunNotFoundError, get_run, run_to_dict

    factory = init_db()

    with factory() as session:
        try:
            pipeline_run = get_run(session, run_id)
        except RunNotFoundError:
            console.print(f"[red]Run not found: {run_id}[/red]")
            raise typer.Exit(code=1) from None

        if json_output:
            _print_json(run_to_dict(pipeline_run, include_jobs=True))
        else:
            _print_run(pipeline_run)


artifacts_app = typer.Typer(help="Inspect artifacts passed between jobs")
app.add_typer(artifacts_app, name="artifacts")


@artifacts_app.command("list")
def artifacts_list(
    run_id: Annotated[int, typer.Argument(help="Run ID")],
    json_output: JsonOpt = False,
) -> None:
    """List the artifacts uploaded during a run."""
    from lldap_ci.builds.artifacts import ArtifactStore

    store = ArtifactStore.for_run(get_settings().artifacts_dir, run_id)
    manifests = [store.manifest(name) for name in store.names()]

    if json_output:
        _print_json(manifests)
        return
    if not manifests:
        console.print(f"[yellow]No artifacts for run {run_id}[/yellow]")
        return

    table = Table("Artifact", "Job", "Files", "Size (bytes)")
    for m in manifests:
        table.add_row(
            m["name"],
            m.get("job", "-"),
            str(m["summary"]["total_files"]),
            str(m["summary"]["total_size_bytes"]),
        )
    console.print(table)


if __name__ == "__main__":
    app()
