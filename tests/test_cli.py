"""Smoke tests for the CLI.

These tests verify basic CLI functionality without requiring
network access or external tools.
"""

from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from lldap_ci import __version__
from lldap_ci.cli import app, build_event
from lldap_ci.events import EventNotTriggeredError
from lldap_ci.jobs import JobOutcome
from lldap_ci.types import EventKind, JobKind

runner = CliRunner()


@pytest.fixture
def isolated_env(tmp_path, monkeypatch):
    """Point every directory and the database into tmp_path."""
    source = tmp_path / "src"
    source.mkdir()
    monkeypatch.setenv("LLDAP_CI_DB_URL", f"sqlite:///{tmp_path / 'db.sqlite'}")
    monkeypatch.setenv("LLDAP_CI_SOURCE_DIR", str(source))
    monkeypatch.setenv("LLDAP_CI_WORK_DIR", str(tmp_path / "work"))
    monkeypatch.setenv("LLDAP_CI_ARTIFACTS_DIR", str(tmp_path / "artifacts"))
    monkeypatch.setenv("LLDAP_CI_LOGS_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("LLDAP_CI_CACHE_DIR", str(tmp_path / "cache"))
    return tmp_path


def _succeed(ctx):
    return JobOutcome()


def _fail_armhf(ctx):
    if ctx.job.name == "build-armhf":
        raise RuntimeError("linker not found")
    return JobOutcome()


class TestCLIHelp:
    """Test CLI help and version commands."""

    def test_help_returns_zero(self) -> None:
        """CLI --help should return exit code 0."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "lldap CI" in result.stdout

    def test_version_flag(self) -> None:
        """CLI --version should print version and exit 0."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_short_version_flag(self) -> None:
        """CLI -V should print version and exit 0."""
        result = runner.invoke(app, ["-V"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_no_args_shows_help(self) -> None:
        """CLI with no args should show help."""
        result = runner.invoke(app, [])
        assert "Usage:" in result.stdout

    def test_subcommand_help(self) -> None:
        """Every command group has help."""
        for group in ("pipeline", "runs", "artifacts"):
            result = runner.invoke(app, [group, "--help"])
            assert result.exit_code == 0


class TestCLIConfig:
    """Test CLI config command."""

    def test_config_command(self) -> None:
        """CLI config should show configuration sections."""
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "Paths:" in result.stdout
        assert "Execution:" in result.stdout
        assert "Publishing:" in result.stdout
        assert "Artifacts directory" in result.stdout

    def test_config_masks_secrets(self, monkeypatch) -> None:
        """Tokens are never printed."""
        monkeypatch.setenv("LLDAP_CI_GITHUB_TOKEN", "ghs_very_secret")
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "ghs_very_secret" not in result.stdout


class TestBuildEvent:
    """Tests for build_event helper."""

    def test_push(self) -> None:
        event = build_event("push", branch="main", sha="abc")
        assert event.kind == EventKind.PUSH
        assert event.ref == "refs/heads/main"

    def test_default_branch(self) -> None:
        """The pipeline branch is used when --branch is omitted."""
        event = build_event("push", default_branch="develop")
        assert event.branch == "develop"

    def test_pull_request_requires_number(self) -> None:
        with pytest.raises(ValueError):
            build_event("pull_request")

    def test_pull_request(self) -> None:
        event = build_event("pull_request", pr=12)
        assert event.ref == "refs/pull/12/merge"
        assert event.pr_number == 12

    def test_release_requires_tag(self) -> None:
        with pytest.raises(ValueError):
            build_event("release")

    def test_release(self) -> None:
        event = build_event("release", tag="v0.5.0")
        assert event.tag == "v0.5.0"
        assert event.action == "published"

    def test_dispatch_message(self) -> None:
        event = build_event("workflow_dispatch")
        assert event.message

    def test_unknown_event(self) -> None:
        with pytest.raises(EventNotTriggeredError):
            build_event("schedule")

    def test_from_env(self, monkeypatch) -> None:
        """--from-env reads the GitHub Actions variables."""
        monkeypatch.setenv("GITHUB_EVENT_NAME", "push")
        monkeypatch.setenv("GITHUB_REF", "refs/heads/main")
        monkeypatch.setenv("GITHUB_SHA", "deadbeef")
        monkeypatch.delenv("GITHUB_EVENT_PATH", raising=False)
        event = build_event(from_env=True)
        assert event.branch == "main"
        assert event.sha == "deadbeef"


class TestCLIPipeline:
    """Test pipeline commands."""

    def test_show_builtin(self) -> None:
        """pipeline show prints the built-in definition as YAML."""
        result = runner.invoke(app, ["pipeline", "show"])
        assert result.exit_code == 0
        assert "nitnelave/lldap" in result.stdout
        assert "armv7-unknown-linux-gnueabihf" in result.stdout

    def test_validate_valid(self, tmp_path) -> None:
        """A valid file validates."""
        path = tmp_path / "pipeline.yaml"
        path.write_text(
            "targets:\n"
            "  - name: amd64\n"
            "    rust_target: x86_64-unknown-linux-musl\n"
            "    platform: linux/amd64\n"
        )
        result = runner.invoke(app, ["pipeline", "validate", str(path)])
        assert result.exit_code == 0
        assert "Valid" in result.stdout

    def test_validate_invalid(self, tmp_path) -> None:
        """Schema errors exit 1."""
        path = tmp_path / "pipeline.yaml"
        path.write_text("targets: []\n")
        result = runner.invoke(app, ["pipeline", "validate", str(path)])
        assert result.exit_code == 1

    def test_validate_missing_file(self, tmp_path) -> None:
        result = runner.invoke(app, ["pipeline", "validate", str(tmp_path / "nope.yaml")])
        assert result.exit_code == 1

    def test_validate_malformed_yaml(self, tmp_path) -> None:
        """A YAML syntax error is reported, not raised."""
        path = tmp_path / "pipeline.yaml"
        path.write_text("targets: [unclosed\n")
        result = runner.invoke(app, ["pipeline", "validate", str(path)])
        assert result.exit_code == 1
        assert result.exception is None or isinstance(result.exception, SystemExit)
        assert "Invalid pipeline definition" in result.stdout


class TestCLIPlanAndTags:
    """Test plan and tags commands."""

    def test_plan_push(self) -> None:
        result = runner.invoke(app, ["plan", "--event", "push"])
        assert result.exit_code == 0
        assert "push to main" in result.stdout

    def test_plan_not_triggered(self) -> None:
        """A push to another branch is reported as not triggered."""
        result = runner.invoke(app, ["plan", "--branch", "feature"])
        assert result.exit_code == 0
        assert "Not triggered" in result.stdout

    def test_tags_pull_request(self) -> None:
        result = runner.invoke(app, ["tags", "--event", "pull_request", "--pr", "5"])
        assert result.exit_code == 0
        assert "pr-5" in result.stdout
        assert "not pushed" in result.stdout

    def test_tags_invalid_release(self) -> None:
        """A non-semantic release tag exits 1."""
        result = runner.invoke(app, ["tags", "--event", "release", "--tag", "nightly"])
        assert result.exit_code == 1

    def test_missing_pr_number(self) -> None:
        result = runner.invoke(app, ["plan", "--event", "pull_request"])
        assert result.exit_code == 1


class TestCLIRun:
    """Test the run command with job implementations replaced."""

    def test_run_succeeds(self, isolated_env) -> None:
        """A successful run exits 0 and is listed afterwards."""
        with patch.dict(
            "lldap_ci.orchestrator.DEFAULT_JOB_FUNCTIONS",
            {kind: _succeed for kind in JobKind},
        ):
            result = runner.invoke(app, ["run", "--event", "push"])
        assert result.exit_code == 0
        assert "succeeded" in result.stdout

        listed = runner.invoke(app, ["runs", "list"])
        assert listed.exit_code == 0
        assert "Run #1" in listed.stdout

    def test_run_failure_exits_one(self, isolated_env) -> None:
        """A failed job makes the command exit 1."""
        with patch.dict(
            "lldap_ci.orchestrator.DEFAULT_JOB_FUNCTIONS",
            {kind: _fail_armhf for kind in JobKind},
        ):
            result = runner.invoke(app, ["run", "--event", "push", "-j", "1"])
        assert result.exit_code == 1

    def test_run_not_triggered(self, isolated_env) -> None:
        """Events outside the triggers exit 0 without a run."""
        with patch("lldap_ci.orchestrator.run_pipeline") as mock_run:
            result = runner.invoke(app, ["run", "--branch", "feature"])
        assert result.exit_code == 0
        assert "Not triggered" in result.stdout
        mock_run.assert_not_called()

    def test_run_invalid_release(self, isolated_env) -> None:
        result = runner.invoke(app, ["run", "--event", "release", "--tag", "latest"])
        assert result.exit_code == 1

    def test_runs_show_missing(self, isolated_env) -> None:
        result = runner.invoke(app, ["runs", "show", "42"])
        assert result.exit_code == 1

    def test_runs_list_invalid_status(self, isolated_env) -> None:
        result = runner.invoke(app, ["runs", "list", "--status", "done"])
        assert result.exit_code == 1

    def test_runs_list_empty(self, isolated_env) -> None:
        result = runner.invoke(app, ["runs", "list"])
        assert result.exit_code == 0
        assert "No runs found" in result.stdout

    def test_artifacts_list_empty(self, isolated_env) -> None:
        result = runner.invoke(app, ["artifacts", "list", "1"])
        assert result.exit_code == 0
        assert "No artifacts" in result.stdout

