"""Docker Hub repository description updates.

The registry repository page shows the project README. Docker Hub has no
token-scoped API for this, so the update logs in with the account
password to obtain a JWT and then patches the repository.
"""

from __future__ import annotations

import logging
from pathlib import Path

import httpx

logger = logging.getLogger(__name__)

# Timeout for Docker Hub API requests (seconds)
API_TIMEOUT = 30

# Docker Hub rejects full descriptions above this size
MAX_DESCRIPTION_BYTES = 25_000


class DescriptionUpdateError(Exception):
    """Raised when the repository description cannot be updated."""

    def __init__(self, message: str, code: str = "description_update_failed") -> None:
        super().__init__(message)
        self.code = code


def hub_login(
    client: httpx.Client,
    api_url: str,
    username: str,
    password: str,
    timeout: float = API_TIMEOUT,
) -> str:
    """Obtain a Docker Hub JWT.

    Raises:
        DescriptionUpdateError: If login fails.
    """
    url = f"{api_url.rstrip('/')}/users/login"
    try:
        response = client.post(
            url, json={"username": username, "password": password}, timeout=timeout
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise DescriptionUpdateError(
            f"Docker Hub login failed: {e.response.status_code}",
            code="registry_auth_failed",
        ) from e
    except httpx.RequestError as e:
        raise DescriptionUpdateError(
            f"Network error logging in to Docker Hub: {e}", code="network_error"
        ) from e

    token = response.json().get("token")
    if not token:
        raise DescriptionUpdateError(
            "Docker Hub login returned no token", code="registry_auth_failed"
        )
    return str(token)


def update_description(
    client: httpx.Client,
    api_url: str,
    token: str,
    repository: str,
    full_description: str,
    timeout: float = API_TIMEOUT,
) -> None:
    """Replace the full description of a repository.

    Args:
        client: HTTPX client instance.
        api_url: Docker Hub API base URL.
        token: JWT from hub_login.
        repository: Repository, e.g. 'nitnelave/lldap'.
        full_description: Markdown shown on the repository page.
        timeout: Request timeout in seconds.

    Raises:
        DescriptionUpdateError: If the update fails.
    """
    if len(full_description.encode("utf-8")) > MAX_DESCRIPTION_BYTES:
        raise DescriptionUpdateError(
            f"Description exceeds {MAX_DESCRIPTION_BYTES} bytes",
            code="description_too_long",
        )
    url = f"{api_url.rstrip('/')}/repositories/{repository}/"
    try:
        response = client.patch(
            url,
            json={"full_description": full_description},
            headers={"Authorization": f"JWT {token}"},
            timeout=timeout,
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise DescriptionUpdateError(
            f"HTTP error updating {repository} description: "
            f"{e.response.status_code}",
            code="http_error",
        ) from e
    except httpx.RequestError as e:
        raise DescriptionUpdateError(
            f"Network error updating {repository} description: {e}",
            code="network_error",
        ) from e
    logger.info("Updated description of %s", repository)


def push_readme(
    client: httpx.Client,
    api_url: str,
    username: str | None,
    password: str | None,
    repository: str,
    readme: Path,
) -> None:
    """Log in and publish the README as the repository description.

    Raises:
        DescriptionUpdateError: If credentials or the README are missing,
            or an API call fails.
    """
    if not username or not password:
        raise DescriptionUpdateError(
            "Registry username and password are required to update the description",
            code="missing_credentials",
        )
    if not readme.is_file():
        raise DescriptionUpdateError(f"README not found: {readme}", code="missing_readme")
    token = hub_login(client, api_url, username, password)
    update_description(
        client, api_url, token, repository, readme.read_text(encoding="utf-8")
    )


__all__ = [
    "DescriptionUpdateError",
    "hub_login",
    "push_readme",
    "update_description",
]
