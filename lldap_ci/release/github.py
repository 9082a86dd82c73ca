"""GitHub release client.

Wraps the handful of REST calls needed to attach assets to a release.
Uploading is an upsert: an existing asset with the same name is deleted
first, so re-running a release leaves exactly one asset per name.
"""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Any

import httpx

logger = logging.getLogger(__name__)

# Timeout for API requests (seconds)
API_TIMEOUT = 30

# Timeout for asset uploads (seconds)
UPLOAD_TIMEOUT = 600


class ReleaseAPIError(Exception):
    """Raised when a GitHub release API call fails."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str = "release_api_error",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class GitHubReleaseClient:
    """Small httpx wrapper for the release endpoints."""

    def __init__(
        self,
        token: str,
        repository: str,
        api_url: str = "https://api.github.com",
        uploads_url: str = "https://uploads.github.com",
        client: httpx.Client | None = None,
    ) -> None:
        if not token:
            raise ReleaseAPIError("GitHub token is required", code="missing_credentials")
        if not repository:
            raise ReleaseAPIError(
                "GitHub repository is required", code="missing_repository"
            )
        self.repository = repository
        self._api_url = api_url.rstrip("/")
        self._uploads_url = uploads_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.Client(follow_redirects=True)
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "lldap-ci",
        }

    def __enter__(self) -> GitHubReleaseClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _repo_url(self, path: str) -> str:
        return f"{self._api_url}/repos/{self.repository}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        url: str,
        allow_404: bool = False,
        timeout: float = API_TIMEOUT,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request and raise ReleaseAPIError on failure.

        With allow_404, a 404 response is returned instead of raising.
        """
        headers = dict(self._headers)
        headers.update(kwargs.pop("headers", {}))
        try:
            response = self._client.request(
                method, url, headers=headers, timeout=timeout, **kwargs
            )
        except httpx.TimeoutException as e:
            raise ReleaseAPIError(f"Timeout calling {method} {url}", code="timeout") from e
        except httpx.RequestError as e:
            raise ReleaseAPIError(
                f"Network error calling {method} {url}: {e}", code="network_error"
            ) from e
        if allow_404 and response.status_code == 404:
            return response
        if response.is_error:
            raise ReleaseAPIError(
                f"{method} {url} failed: {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    def get_release_by_tag(self, tag: str) -> dict[str, Any] | None:
        """Return the release for a tag, or None if there is none."""
        response = self._request("GET", self._repo_url(f"releases/tags/{tag}"), allow_404=True)
        if response.status_code == 404:
            return None
        data: dict[str, Any] = response.json()
        return data

    def create_release(self, tag: str, name: str | None = None) -> dict[str, Any]:
        """Create a release for an existing tag."""
        response = self._request(
            "POST",
            self._repo_url("releases"),
            json={"tag_name": tag, "name": name or tag},
        )
        logger.info("Created release %s", tag)
        data: dict[str, Any] = response.json()
        return data

    def ensure_release(self, tag: str) -> dict[str, Any]:
        """Return the release for a tag, creating it when absent."""
        release = self.get_release_by_tag(tag)
        if release is not None:
            return release
        return self.create_release(tag)

    def list_assets(self, release_id: int) -> list[dict[str, Any]]:
        """List every asset of a release."""
        assets: list[dict[str, Any]] = []
        page = 1
        while True:
            response = self._request(
                "GET",
                self._repo_url(f"releases/{release_id}/assets"),
                params={"per_page": 100, "page": page},
            )
            batch = response.json()
            assets.extend(batch)
            if len(batch) < 100:
                return assets
            page += 1

    def delete_asset(self, asset_id: int) -> None:
        """Delete one release asset."""
        self._request("DELETE", self._repo_url(f"releases/assets/{asset_id}"), allow_404=True)

    def upload_asset(self, release_id: int, path: Path) -> dict[str, Any]:
        """Upload a file as a release asset named after the file."""
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        url = f"{self._uploads_url}/repos/{self.repository}/releases/{release_id}/assets"
        response = self._request(
            "POST",
            url,
            timeout=UPLOAD_TIMEOUT,
            params={"name": path.name},
            content=path.read_bytes(),
            headers={"Content-Type": content_type},
        )
        data: dict[str, Any] = response.json()
        return data

    def upsert_assets(self, tag: str, files: list[Path]) -> list[str]:
        """Attach files to the release of a tag, replacing same-name assets.

        Args:
            tag: Release tag.
            files: Files to upload; asset names are the file names.

        Returns:
            Names of the uploaded assets.

        Raises:
            ReleaseAPIError: If any API call fails.
        """
        release = self.ensure_release(tag)
        release_id = int(release["id"])
        existing = {a["name"]: a["id"] for a in self.list_assets(release_id)}

        uploaded = []
        for path in files:
            if path.name in existing:
                logger.info("Replacing existing asset %s", path.name)
                self.delete_asset(int(existing[path.name]))
            self.upload_asset(release_id, path)
            uploaded.append(path.name)
            logger.info("Uploaded %s to release %s", path.name, tag)
        return uploaded


__all__ = ["GitHubReleaseClient", "ReleaseAPIError"]
