"""Cache key computation for build jobs.

Cache keys combine the project, the job's target and a hash over every
lockfile in the checkout, so any dependency change produces a new key.
Restore keys are the key prefixes used for fallback restores.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path

from lldap_ci.pipeline.schema import PipelineSchema

# Directories never searched for lockfiles
EXCLUDED_DIRS = {".git", "target", ".cargo", "node_modules"}


@dataclass(frozen=True)
class CacheKey:
    """Exact cache key plus ordered fallback prefixes.

    Attributes:
        key: Exact key saved after a successful job.
        restore_keys: Prefixes tried, in order, when the exact key misses.
        lockfiles: Lockfiles (relative paths) that were hashed.
    """

    key: str
    restore_keys: tuple[str, ...] = ()
    lockfiles: tuple[str, ...] = field(default=(), compare=False)


def find_lockfiles(source_dir: Path, pattern: str) -> list[Path]:
    """Find lockfiles matching a glob, ignoring build output directories.

    Args:
        source_dir: Root of the checkout.
        pattern: Glob relative to source_dir (e.g. '**/Cargo.lock').

    Returns:
        Matching files sorted by relative path.
    """
    matches = []
    for path in source_dir.glob(pattern):
        if not path.is_file():
            continue
        relative = path.relative_to(source_dir)
        if any(part in EXCLUDED_DIRS for part in relative.parts[:-1]):
            continue
        matches.append(path)
    return sorted(matches, key=lambda p: p.relative_to(source_dir).as_posix())


def hash_files(files: list[Path]) -> str:
    """Hash the contents of files into one SHA-256 hex digest.

    Each file is hashed separately and the per-file digests are hashed
    together, so the result depends on content and order only.
    Returns an empty string when no files are given.
    """
    if not files:
        return ""
    combined = hashlib.sha256()
    for path in files:
        combined.update(hashlib.sha256(path.read_bytes()).digest())
    return combined.hexdigest()


def compute_cache_key(
    pipeline: PipelineSchema,
    source_dir: Path,
    target: str | None = None,
) -> CacheKey:
    """Compute the cache key of a build job.

    Args:
        pipeline: Pipeline definition (project and lockfile glob).
        source_dir: Root of the checkout.
        target: Architecture name, or None for the frontend job.

    Returns:
        CacheKey such as 'lldap-bin-armhf-<hash>' with restore
        prefix 'lldap-bin-armhf-'.
    """
    if target is None:
        prefix = f"{pipeline.project}-ui-"
    else:
        prefix = f"{pipeline.project}-bin-{target}-"

    lockfiles = find_lockfiles(source_dir, pipeline.lockfile_glob)
    return CacheKey(
        key=prefix + hash_files(lockfiles),
        restore_keys=(prefix,),
        lockfiles=tuple(p.relative_to(source_dir).as_posix() for p in lockfiles),
    )


__all__ = [
    "CacheKey",
    "compute_cache_key",
    "find_lockfiles",
    "hash_files",
]
