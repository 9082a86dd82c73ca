"""Tests for release/github.py and release/service.py modules.

These tests use mocked HTTP responses for the GitHub REST API.
"""

import json
from unittest.mock import patch

import httpx
import pytest
import respx

from lldap_ci.builds.artifacts import ArtifactStore
from lldap_ci.config import Settings
from lldap_ci.events import EventContext
from lldap_ci.jobs import JobContext
from lldap_ci.pipeline.graph import JobSpec
from lldap_ci.pipeline.schema import default_pipeline
from lldap_ci.release.github import GitHubReleaseClient, ReleaseAPIError
from lldap_ci.release.packager import ReleaseAssets
from lldap_ci.release.service import run_release_job
from lldap_ci.types import EventKind, JobKind

API = "https://api.github.test"
UPLOADS = "https://uploads.github.test"
REPO_URL = f"{API}/repos/lldap/lldap"


def _client() -> GitHubReleaseClient:
    return GitHubReleaseClient(
        token="ghs_token", repository="lldap/lldap", api_url=API, uploads_url=UPLOADS
    )


class TestClientSetup:
    """Tests for GitHubReleaseClient construction."""

    def test_requires_token(self):
        with pytest.raises(ReleaseAPIError) as exc_info:
            GitHubReleaseClient(token="", repository="lldap/lldap")
        assert exc_info.value.code == "missing_credentials"

    def test_requires_repository(self):
        with pytest.raises(ReleaseAPIError) as exc_info:
            GitHubReleaseClient(token="t", repository="")
        assert exc_info.value.code == "missing_repository"


class TestEnsureRelease:
    """Tests for release lookup and creation."""

    @respx.mock
    def test_existing_release(self):
        """An existing release is returned without creating one."""
        respx.get(f"{REPO_URL}/releases/tags/v1.0.0").mock(
            return_value=httpx.Response(200, json={"id": 5, "tag_name": "v1.0.0"})
        )
        create = respx.post(f"{REPO_URL}/releases")
        with _client() as client:
            release = client.ensure_release("v1.0.0")
        assert release["id"] == 5
        assert not create.called

    @respx.mock
    def test_creates_missing_release(self):
        """A 404 on the tag creates the release."""
        respx.get(f"{REPO_URL}/releases/tags/v1.0.0").mock(
            return_value=httpx.Response(404, json={"message": "Not Found"})
        )
        create = respx.post(f"{REPO_URL}/releases").mock(
            return_value=httpx.Response(201, json={"id": 9})
        )
        with _client() as client:
            release = client.ensure_release("v1.0.0")
        assert release["id"] == 9
        assert json.loads(create.calls[0].request.content) == {
            "tag_name": "v1.0.0",
            "name": "v1.0.0",
        }

    @respx.mock
    def test_auth_headers(self):
        """Requests carry the bearer token and API version."""
        route = respx.get(f"{REPO_URL}/releases/tags/v1.0.0").mock(
            return_value=httpx.Response(200, json={"id": 1})
        )
        with _client() as client:
            client.get_release_by_tag("v1.0.0")
        headers = route.calls[0].request.headers
        assert headers["Authorization"] == "Bearer ghs_token"
        assert headers["X-GitHub-Api-Version"] == "2022-11-28"

    @respx.mock
    def test_server_error(self):
        """Error responses raise ReleaseAPIError with the status code."""
        respx.get(f"{REPO_URL}/releases/tags/v1.0.0").mock(
            return_value=httpx.Response(500, text="oops")
        )
        with _client() as client:
            with pytest.raises(ReleaseAPIError) as exc_info:
                client.ensure_release("v1.0.0")
        assert exc_info.value.status_code == 500

    @respx.mock
    def test_network_error(self):
        """Connection failures raise network_error."""
        respx.get(f"{REPO_URL}/releases/tags/v1.0.0").mock(
            side_effect=httpx.ConnectError("refused")
        )
        with _client() as client:
            with pytest.raises(ReleaseAPIError) as exc_info:
                client.get_release_by_tag("v1.0.0")
        assert exc_info.value.code == "network_error"

    @respx.mock
    def test_create_not_found_raises(self):
        """Only tag lookups treat 404 as absent; a failed create raises."""
        respx.get(f"{REPO_URL}/releases/tags/v1.0.0").mock(
            return_value=httpx.Response(404, json={"message": "Not Found"})
        )
        respx.post(f"{REPO_URL}/releases").mock(
            return_value=httpx.Response(404, json={"message": "Not Found"})
        )
        with _client() as client:
            with pytest.raises(ReleaseAPIError) as exc_info:
                client.ensure_release("v1.0.0")
        assert exc_info.value.status_code == 404

    @respx.mock
    def test_delete_missing_asset(self):
        """Deleting an asset that is already gone is not an error."""
        route = respx.delete(f"{REPO_URL}/releases/assets/7").mock(
            return_value=httpx.Response(404, json={"message": "Not Found"})
        )
        with _client() as client:
            client.delete_asset(7)
        assert route.called


class TestListAssets:
    """Tests for list_assets pagination."""

    @respx.mock
    def test_paginates(self):
        """Full pages are followed by the next page."""
        first = [{"id": i, "name": f"a{i}"} for i in range(100)]
        route = respx.get(f"{REPO_URL}/releases/3/assets").mock(
            side_effect=[
                httpx.Response(200, json=first),
                httpx.Response(200, json=[{"id": 100, "name": "last"}]),
            ]
        )
        with _client() as client:
            assets = client.list_assets(3)
        assert len(assets) == 101
        assert route.call_count == 2
        assert route.calls[1].request.url.params["page"] == "2"

    @respx.mock
    def test_missing_release_raises(self):
        """Listing the assets of an unknown release fails."""
        respx.get(f"{REPO_URL}/releases/3/assets").mock(
            return_value=httpx.Response(404, json={"message": "Not Found"})
        )
        with _client() as client:
            with pytest.raises(ReleaseAPIError) as exc_info:
                client.list_assets(3)
        assert exc_info.value.status_code == 404


class TestUpsertAssets:
    """Tests for upsert_assets function."""

    @respx.mock
    def test_replaces_existing(self, tmp_path):
        """Same-name assets are deleted before uploading; others are untouched."""
        lldap = tmp_path / "lldap-amd64"
        lldap.write_bytes(b"ELF")
        web = tmp_path / "web.zip"
        web.write_bytes(b"PK")

        respx.get(f"{REPO_URL}/releases/tags/v1.0.0").mock(
            return_value=httpx.Response(200, json={"id": 7})
        )
        respx.get(f"{REPO_URL}/releases/7/assets").mock(
            return_value=httpx.Response(
                200,
                json=[
                    {"id": 70, "name": "lldap-amd64"},
                    {"id": 71, "name": "unrelated.txt"},
                ],
            )
        )
        delete = respx.delete(f"{REPO_URL}/releases/assets/70").mock(
            return_value=httpx.Response(204)
        )
        other_delete = respx.delete(f"{REPO_URL}/releases/assets/71")
        upload = respx.post(f"{UPLOADS}/repos/lldap/lldap/releases/7/assets").mock(
            return_value=httpx.Response(201, json={"id": 99})
        )

        with _client() as client:
            uploaded = client.upsert_assets("v1.0.0", [lldap, web])

        assert uploaded == ["lldap-amd64", "web.zip"]
        assert delete.called
        assert not other_delete.called
        assert upload.call_count == 2
        first = upload.calls[0].request
        assert first.url.params["name"] == "lldap-amd64"
        assert first.content == b"ELF"
        assert first.headers["Content-Type"] == "application/octet-stream"
        assert upload.calls[1].request.headers["Content-Type"] == "application/zip"

    @respx.mock
    def test_upload_failure(self, tmp_path):
        """A failed upload raises ReleaseAPIError."""
        path = tmp_path / "lldap-amd64"
        path.write_bytes(b"ELF")
        respx.get(f"{REPO_URL}/releases/tags/v1.0.0").mock(
            return_value=httpx.Response(200, json={"id": 7})
        )
        respx.get(f"{REPO_URL}/releases/7/assets").mock(
            return_value=httpx.Response(200, json=[])
        )
        respx.post(f"{UPLOADS}/repos/lldap/lldap/releases/7/assets").mock(
            return_value=httpx.Response(422, json={"message": "already_exists"})
        )
        with _client() as client:
            with pytest.raises(ReleaseAPIError) as exc_info:
                client.upsert_assets("v1.0.0", [path])
        assert exc_info.value.status_code == 422


def _ctx(tmp_path, event, **overrides) -> JobContext:
    settings = Settings(
        source_dir=tmp_path,
        work_dir=tmp_path / "work",
        artifacts_dir=tmp_path / "artifacts",
        logs_dir=tmp_path / "logs",
        github_api_url=API,
        github_uploads_url=UPLOADS,
        **overrides,
    )
    return JobContext(
        run_id=1,
        job=JobSpec(name="create-release-artifacts", kind=JobKind.RELEASE),
        pipeline=default_pipeline(),
        event=event,
        settings=settings,
        store=ArtifactStore(tmp_path / "store"),
        log_path=tmp_path / "logs" / "release.log",
        work_dir=tmp_path / "work" / "create-release-artifacts",
    )


class TestRunReleaseJob:
    """Tests for run_release_job function."""

    def test_not_a_release(self, tmp_path):
        """Non-release events are refused."""
        ctx = _ctx(tmp_path, EventContext(kind=EventKind.PUSH, branch="main"))
        with pytest.raises(ReleaseAPIError) as exc_info:
            run_release_job(ctx)
        assert exc_info.value.code == "not_a_release"

    def test_uploads_assets(self, tmp_path):
        """Packaged assets are upserted on the tag's release."""
        asset = tmp_path / "lldap-amd64"
        asset.write_bytes(b"ELF")
        ctx = _ctx(
            tmp_path,
            EventContext(kind=EventKind.RELEASE, tag="v1.0.0"),
            github_token="ghs_token",
            github_repository="lldap/lldap",
        )
        with (
            patch(
                "lldap_ci.release.service.package_release",
                return_value=ReleaseAssets(binaries=[asset]),
            ) as mock_package,
            patch.object(
                GitHubReleaseClient, "upsert_assets", return_value=["lldap-amd64"]
            ) as mock_upsert,
        ):
            outcome = run_release_job(ctx)

        assert mock_package.call_args.args[2] == ctx.work_dir / "release"
        mock_upsert.assert_called_once_with("v1.0.0", [asset])
        assert outcome.outputs == {"release": "v1.0.0", "assets": ["lldap-amd64"]}

    def test_token_from_environment(self, tmp_path, monkeypatch):
        """GITHUB_TOKEN and GITHUB_REPOSITORY are used when not configured."""
        monkeypatch.setenv("GITHUB_TOKEN", "env-token")
        monkeypatch.setenv("GITHUB_REPOSITORY", "env/repo")
        ctx = _ctx(tmp_path, EventContext(kind=EventKind.RELEASE, tag="v1.0.0"))
        with (
            patch(
                "lldap_ci.release.service.package_release",
                return_value=ReleaseAssets(),
            ),
            patch.object(GitHubReleaseClient, "upsert_assets", return_value=[]),
            patch.object(GitHubReleaseClient, "__init__", return_value=None) as mock_init,
            patch.object(GitHubReleaseClient, "close"),
        ):
            run_release_job(ctx)

        assert mock_init.call_args.kwargs["token"] == "env-token"
        assert mock_init.call_args.kwargs["repository"] == "env/repo"

    def test_missing_token(self, tmp_path, monkeypatch):
        """Without any token the job fails with missing_credentials."""
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.delenv("LLDAP_CI_GITHUB_TOKEN", raising=False)
        ctx = _ctx(
            tmp_path,
            EventContext(kind=EventKind.RELEASE, tag="v1.0.0"),
            github_repository="lldap/lldap",
        )
        with patch(
            "lldap_ci.release.service.package_release", return_value=ReleaseAssets()
        ):
            with pytest.raises(ReleaseAPIError) as exc_info:
                run_release_job(ctx)
        assert exc_info.value.code == "missing_credentials"
