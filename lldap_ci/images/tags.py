"""Image tag computation.

Tags are a pure function of the event context and the image flavor:

- Non-release events get floating tags: ``latest``, the pushed branch,
  ``pr-<N>`` for pull requests and, optionally, ``sha-<commit>``.
- Release events get ``stable`` and version tags: ``v<semantic>``,
  ``v<major>``, ``v<major>.<minor>`` and ``v<major>.<minor>.<patch>``.
  Prereleases only get ``v<semantic>``.

The default flavor receives every tag both bare and with a ``-<flavor>``
suffix; other flavors only receive suffixed tags.
"""

from __future__ import annotations

import re

from lldap_ci.events import EventContext, Version
from lldap_ci.pipeline.schema import ImageFlavorSchema
from lldap_ci.types import EventKind

LATEST_TAG = "latest"
STABLE_TAG = "stable"
SHA_LENGTH = 7

# Docker tags: [A-Za-z0-9_][A-Za-z0-9_.-]{0,127}
MAX_TAG_LENGTH = 128


def sanitize_tag(value: str) -> str:
    """Turn an arbitrary ref name into a valid Docker tag.

    Invalid characters become '-', leading '.' and '-' are stripped,
    and the result is truncated to the maximum tag length.
    """
    tag = re.sub(r"[^A-Za-z0-9_.\-]", "-", value)
    tag = tag.lstrip(".-")
    return tag[:MAX_TAG_LENGTH]


def release_base_tags(version: Version) -> list[str]:
    """Unsuffixed tags of a release."""
    if version.is_prerelease:
        return [sanitize_tag(f"v{version.semantic}")]
    return [
        STABLE_TAG,
        sanitize_tag(f"v{version.semantic}"),
        f"v{version.major}",
        f"v{version.major}.{version.minor}",
        f"v{version.major}.{version.minor}.{version.patch}",
    ]


def floating_base_tags(event: EventContext, include_sha: bool = False) -> list[str]:
    """Unsuffixed tags of a non-release event."""
    tags = [LATEST_TAG]
    if event.kind == EventKind.PUSH and event.branch:
        branch = sanitize_tag(event.branch)
        if branch and not _looks_like_release_tag(branch):
            tags.append(branch)
    if event.kind == EventKind.PULL_REQUEST and event.pr_number:
        tags.append(f"pr-{event.pr_number}")
    if include_sha and event.sha:
        tags.append(f"sha-{event.sha[:SHA_LENGTH]}")
    return tags


def _looks_like_release_tag(tag: str) -> bool:
    # A branch named 'stable' or 'v2' would leak into the release namespace
    return tag.startswith(STABLE_TAG) or bool(re.match(r"^v\d", tag))


def base_tags(event: EventContext, include_sha: bool = False) -> list[str]:
    """Unsuffixed tags for an event.

    Raises:
        InvalidVersionError: If a release tag is not a semantic version.
    """
    version = event.version
    if version is not None:
        return release_base_tags(version)
    return floating_base_tags(event, include_sha=include_sha)


def _dedupe(tags: list[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for tag in tags:
        if tag not in seen:
            seen.add(tag)
            result.append(tag)
    return result


def flavor_tags(
    event: EventContext,
    flavor: ImageFlavorSchema,
    include_sha: bool = False,
) -> list[str]:
    """Tags (without repository) of one flavor for an event.

    For the default flavor, 'latest' becomes ['latest', 'latest-alpine'];
    for other flavors only 'latest-debian'.

    Raises:
        InvalidVersionError: If a release tag is not a semantic version.
    """
    tags: list[str] = []
    for tag in base_tags(event, include_sha=include_sha):
        if flavor.default:
            tags.append(tag)
        tags.append(f"{tag}-{flavor.name}")
    return _dedupe(tags)


def image_refs(image: str, tags: list[str]) -> list[str]:
    """Qualify tags with the image repository."""
    return [f"{image}:{tag}" for tag in tags]


def compute_image_tags(
    event: EventContext,
    image: str,
    flavors: list[ImageFlavorSchema],
    include_sha: bool = False,
) -> dict[str, list[str]]:
    """Fully qualified image references for every flavor.

    Args:
        event: Triggering event.
        image: Image repository, e.g. 'nitnelave/lldap'.
        flavors: Image flavors.
        include_sha: Add sha-<commit> tags to non-release events.

    Returns:
        Mapping of flavor name to image references.

    Raises:
        InvalidVersionError: If a release tag is not a semantic version.
    """
    return {
        flavor.name: image_refs(image, flavor_tags(event, flavor, include_sha))
        for flavor in flavors
    }


__all__ = [
    "LATEST_TAG",
    "STABLE_TAG",
    "base_tags",
    "compute_image_tags",
    "flavor_tags",
    "floating_base_tags",
    "image_refs",
    "release_base_tags",
    "sanitize_tag",
]
