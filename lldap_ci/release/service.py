"""Release packager job."""

from __future__ import annotations

import logging
import os

from lldap_ci.jobs import JobContext, JobOutcome
from lldap_ci.release.github import GitHubReleaseClient, ReleaseAPIError
from lldap_ci.release.packager import package_release

logger = logging.getLogger(__name__)


def run_release_job(ctx: JobContext) -> JobOutcome:
    """Package the build artifacts and attach them to the GitHub release.

    Raises:
        ArtifactNotFoundError: If a build artifact is missing.
        ReleaseCollisionError: If two assets share a filename.
        ReleaseAPIError: If the event has no tag or an API call fails.
    """
    tag = ctx.event.tag
    if not ctx.event.is_release or not tag:
        raise ReleaseAPIError(
            "Release assets can only be published for release events",
            code="not_a_release",
        )
    settings = ctx.settings
    assets = package_release(ctx.store, ctx.pipeline, ctx.work_dir / "release")

    with GitHubReleaseClient(
        token=settings.github_token or os.environ.get("GITHUB_TOKEN", ""),
        repository=settings.github_repository
        or os.environ.get("GITHUB_REPOSITORY", ""),
        api_url=settings.github_api_url,
        uploads_url=settings.github_uploads_url,
    ) as client:
        uploaded = client.upsert_assets(tag, assets.files)

    return JobOutcome(outputs={"release": tag, "assets": uploaded})


__all__ = ["run_release_job"]
