"""Event context for pipeline runs.

This module handles:
- The read-only description of what triggered a run
- Parsing events from the GitHub Actions environment or webhook payloads
- Semantic version parsing of release tags
- Deciding whether an event matches the pipeline's trigger surface
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from lldap_ci.types import EventKind

DEFAULT_DISPATCH_MESSAGE = "Manual trigger"

# Optional leading "v", MAJOR.MINOR.PATCH, optional -prerelease and +build
SEMVER_PATTERN = re.compile(
    r"^v?(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>[0-9A-Za-z.-]+))?"
    r"(?:\+(?P<build>[0-9A-Za-z.-]+))?$"
)


class InvalidVersionError(ValueError):
    """Raised when a release tag is not a semantic version."""

    def __init__(self, tag: str, code: str = "invalid_version") -> None:
        super().__init__(f"Release tag is not a semantic version: {tag!r}")
        self.tag = tag
        self.code = code


class EventNotTriggeredError(Exception):
    """Raised when an event does not match the pipeline triggers."""

    def __init__(self, message: str, code: str = "event_not_triggered") -> None:
        super().__init__(message)
        self.code = code


class Version(BaseModel):
    """Semantic version parsed from a release tag."""

    model_config = ConfigDict(frozen=True)

    major: int
    minor: int
    patch: int
    prerelease: str | None = None
    build: str | None = None

    @property
    def semantic(self) -> str:
        """Full version without the leading 'v' (e.g. 1.2.3-rc.1)."""
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += f"-{self.prerelease}"
        if self.build:
            text += f"+{self.build}"
        return text

    @property
    def is_prerelease(self) -> bool:
        """Whether this is a prerelease version."""
        return self.prerelease is not None


def parse_version(tag: str) -> Version:
    """Parse a release tag into a Version.

    Args:
        tag: Tag name such as 'v0.4.1' or '1.0.0-rc.2'.

    Returns:
        Parsed Version.

    Raises:
        InvalidVersionError: If the tag is not a semantic version.
    """
    match = SEMVER_PATTERN.match(tag.strip())
    if match is None:
        raise InvalidVersionError(tag)
    return Version(
        major=int(match.group("major")),
        minor=int(match.group("minor")),
        patch=int(match.group("patch")),
        prerelease=match.group("prerelease"),
        build=match.group("build"),
    )


class EventContext(BaseModel):
    """Read-only context of the event that triggered a run.

    Attributes:
        kind: Trigger kind.
        ref: Full git ref (refs/heads/main, refs/tags/v1.0.0, ...).
        branch: Pushed branch, or base branch of a pull request.
        pr_number: Pull request number.
        tag: Release tag name.
        sha: Commit hash.
        message: Free-text message of a manual trigger.
        action: Event action (release: 'published').
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: EventKind
    ref: str | None = None
    branch: str | None = None
    pr_number: int | None = Field(default=None, ge=1)
    tag: str | None = None
    sha: str | None = None
    message: str | None = None
    action: str | None = None

    @property
    def is_release(self) -> bool:
        return self.kind == EventKind.RELEASE

    @property
    def is_pull_request(self) -> bool:
        return self.kind == EventKind.PULL_REQUEST

    @property
    def should_push(self) -> bool:
        """Whether images may be pushed to the registry."""
        return not self.is_pull_request

    @property
    def version(self) -> Version | None:
        """Semantic version of the release tag, if this is a release.

        Raises:
            InvalidVersionError: If the release tag is not a semantic version.
        """
        if not self.is_release:
            return None
        if not self.tag:
            raise InvalidVersionError("")
        return parse_version(self.tag)

    def describe(self) -> str:
        """Return a short human-readable description."""
        if self.kind == EventKind.PUSH:
            return f"push to {self.branch}"
        if self.kind == EventKind.PULL_REQUEST:
            return f"pull request #{self.pr_number} into {self.branch}"
        if self.kind == EventKind.RELEASE:
            return f"release {self.tag}"
        return f"manual trigger: {self.message}"


def _branch_from_ref(ref: str | None) -> str | None:
    if ref and ref.startswith("refs/heads/"):
        return ref.removeprefix("refs/heads/")
    return None


def _tag_from_ref(ref: str | None) -> str | None:
    if ref and ref.startswith("refs/tags/"):
        return ref.removeprefix("refs/tags/")
    return None


def _pr_from_ref(ref: str | None) -> int | None:
    if ref:
        match = re.match(r"^refs/pull/(\d+)/", ref)
        if match:
            return int(match.group(1))
    return None


def event_from_payload(
    event_name: str,
    payload: Mapping[str, Any],
    ref: str | None = None,
    sha: str | None = None,
) -> EventContext:
    """Build an EventContext from a GitHub event name and payload.

    Args:
        event_name: GitHub event name (push, pull_request, release,
            workflow_dispatch).
        payload: Event payload as delivered by webhook or GITHUB_EVENT_PATH.
        ref: Git ref, if known from outside the payload.
        sha: Commit hash, if known from outside the payload.

    Returns:
        EventContext for the event.

    Raises:
        EventNotTriggeredError: If the event kind is not supported.
    """
    try:
        kind = EventKind(event_name)
    except ValueError:
        raise EventNotTriggeredError(
            f"Unsupported event: {event_name}", code="unsupported_event"
        ) from None

    ref = ref or payload.get("ref")
    sha = sha or payload.get("after") or payload.get("sha")

    if kind == EventKind.PULL_REQUEST:
        pr = payload.get("pull_request") or {}
        head = pr.get("head") or {}
        base = pr.get("base") or {}
        return EventContext(
            kind=kind,
            ref=ref,
            branch=base.get("ref"),
            pr_number=payload.get("number") or pr.get("number") or _pr_from_ref(ref),
            sha=sha or head.get("sha"),
            action=payload.get("action"),
        )

    if kind == EventKind.RELEASE:
        release = payload.get("release") or {}
        tag = release.get("tag_name") or _tag_from_ref(ref)
        return EventContext(
            kind=kind,
            ref=ref or (f"refs/tags/{tag}" if tag else None),
            tag=tag,
            sha=sha,
            action=payload.get("action"),
        )

    if kind == EventKind.WORKFLOW_DISPATCH:
        inputs = payload.get("inputs") or {}
        return EventContext(
            kind=kind,
            ref=ref,
            branch=_branch_from_ref(ref),
            sha=sha,
            message=inputs.get("msg") or DEFAULT_DISPATCH_MESSAGE,
        )

    return EventContext(kind=kind, ref=ref, branch=_branch_from_ref(ref), sha=sha)


def event_from_github_env(environ: Mapping[str, str]) -> EventContext:
    """Build an EventContext from the GitHub Actions environment.

    Reads GITHUB_EVENT_NAME, GITHUB_REF, GITHUB_SHA and, when present,
    the JSON payload at GITHUB_EVENT_PATH.

    Args:
        environ: Environment mapping (usually os.environ).

    Returns:
        EventContext for the current workflow run.

    Raises:
        EventNotTriggeredError: If GITHUB_EVENT_NAME is missing or unsupported.
    """
    event_name = environ.get("GITHUB_EVENT_NAME")
    if not event_name:
        raise EventNotTriggeredError(
            "GITHUB_EVENT_NAME is not set", code="missing_event"
        )

    payload: dict[str, Any] = {}
    event_path = environ.get("GITHUB_EVENT_PATH")
    if event_path and Path(event_path).is_file():
        with open(event_path, encoding="utf-8") as f:
            payload = json.load(f)

    return event_from_payload(
        event_name,
        payload,
        ref=environ.get("GITHUB_REF"),
        sha=environ.get("GITHUB_SHA"),
    )


def check_triggered(event: EventContext, branch: str) -> None:
    """Check that an event matches the trigger surface.

    Args:
        event: Event to check.
        branch: Designated branch of the pipeline.

    Raises:
        EventNotTriggeredError: If the event should not start a run.
    """
    if event.kind == EventKind.PUSH and event.branch != branch:
        raise EventNotTriggeredError(
            f"Push to {event.branch or event.ref!r} does not trigger; "
            f"only pushes to {branch!r} do"
        )
    if event.kind == EventKind.PULL_REQUEST and event.branch != branch:
        raise EventNotTriggeredError(
            f"Pull request into {event.branch!r} does not trigger; "
            f"only pull requests into {branch!r} do"
        )
    if event.kind == EventKind.RELEASE:
        if event.action not in (None, "published"):
            raise EventNotTriggeredError(
                f"Release action {event.action!r} does not trigger; "
                "only 'published' does"
            )
        # Surfaces InvalidVersionError before any job starts
        _ = event.version


__all__ = [
    "DEFAULT_DISPATCH_MESSAGE",
    "EventContext",
    "EventNotTriggeredError",
    "InvalidVersionError",
    "Version",
    "check_triggered",
    "event_from_github_env",
    "event_from_payload",
    "parse_version",
]
