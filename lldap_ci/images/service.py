"""Image publisher job.

Downloads every build artifact into the layout the Dockerfiles expect,
builds one multi-platform image per flavor with the tags computed from
the event, and pushes them unless the event is a pull request.
"""

from __future__ import annotations

import logging
import shutil

import httpx

from lldap_ci.builds.runner import LocalExecutor, run_steps
from lldap_ci.images.builder import (
    ImageBuildError,
    build_flavor,
    registry_login,
    rotate_layer_cache,
    setup_builder_steps,
)
from lldap_ci.images.hub import push_readme
from lldap_ci.images.layout import assemble_layout
from lldap_ci.images.tags import compute_image_tags
from lldap_ci.jobs import JobContext, JobOutcome

logger = logging.getLogger(__name__)


def run_image_job(ctx: JobContext) -> JobOutcome:
    """Build and publish the container images of every flavor.

    A failed flavor does not stop the remaining flavors, but the job
    fails once all of them were attempted.

    Raises:
        ArtifactNotFoundError: If a build artifact is missing.
        InvalidVersionError: If a release tag is not a semantic version.
        RegistryLoginError: If pushing and the registry login fails.
        ImageBuildError: If any flavor failed to build.
        DescriptionUpdateError: If the repository description update fails.
    """
    settings = ctx.settings
    pipeline = ctx.pipeline
    push = ctx.event.should_push

    tags = compute_image_tags(
        ctx.event, pipeline.image, pipeline.flavors, settings.include_sha_tags
    )

    context = ctx.work_dir / "image"
    if context.exists():
        shutil.rmtree(context)
    assemble_layout(ctx.store, pipeline, context)

    if settings.setup_builder:
        run_steps(
            setup_builder_steps(settings.docker_binary),
            LocalExecutor(context),
            ctx.log_path,
            timeout=settings.step_timeout,
        )

    if push:
        registry_login(
            settings.registry_username,
            settings.registry_token,
            docker=settings.docker_binary,
        )
    else:
        logger.info("Pull request build: images will not be pushed")

    built: list[str] = []
    failed: list[ImageBuildError] = []
    for flavor in pipeline.flavors:
        try:
            build_flavor(
                flavor,
                tags[flavor.name],
                context,
                push=push,
                log_path=ctx.log_path,
                cache_dir=settings.buildx_cache_dir,
                docker=settings.docker_binary,
                timeout=settings.step_timeout,
                dockerfile_root=ctx.source_dir,
            )
        except ImageBuildError as e:
            logger.error("%s", e)
            failed.append(e)
            continue
        built.append(flavor.name)
        logger.info(
            "%s %s: %s",
            "Pushed" if push else "Built",
            flavor.name,
            ", ".join(tags[flavor.name]),
        )

    rotate_layer_cache(settings.buildx_cache_dir)

    if failed:
        names = ", ".join(e.flavor or "?" for e in failed)
        raise ImageBuildError(f"Image build failed for flavor(s): {names}")

    if push and pipeline.readme:
        with httpx.Client(follow_redirects=True) as client:
            push_readme(
                client,
                settings.dockerhub_api_url,
                settings.registry_username,
                settings.registry_password,
                pipeline.image,
                ctx.source_dir / pipeline.readme,
            )

    return JobOutcome(
        outputs={
            "image": pipeline.image,
            "pushed": push,
            "flavors": built,
            "tags": {name: tags[name] for name in built},
        }
    )


__all__ = ["run_image_job"]
