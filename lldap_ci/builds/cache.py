"""Tarball build cache keyed by lockfile hashes.

Entries are write-once: saving an existing key is a no-op. Restores try
the exact key first, then the newest entry matching a restore prefix.
"""

from __future__ import annotations

import logging
import os
import re
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")
ENTRY_SUFFIX = ".tar.gz"


class CacheError(Exception):
    """Raised when a cache entry cannot be saved or restored."""

    def __init__(self, message: str, code: str = "cache_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class CacheRestoreResult:
    """Outcome of a restore attempt.

    Attributes:
        matched_key: Key of the restored entry, or None on a miss.
        exact: Whether the exact key was restored.
    """

    matched_key: str | None = None
    exact: bool = False

    @property
    def hit(self) -> bool:
        return self.matched_key is not None


class BuildCache:
    """Directory of cache entries, one tarball per key."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def entry_path(self, key: str) -> Path:
        """Path of the tarball for a key.

        Raises:
            CacheError: If the key contains unsafe characters.
        """
        if not KEY_PATTERN.match(key):
            raise CacheError(f"Invalid cache key: {key!r}", code="invalid_key")
        return self.root / f"{key}{ENTRY_SUFFIX}"

    def keys(self) -> list[str]:
        """All stored keys, newest first."""
        if not self.root.is_dir():
            return []
        entries = sorted(
            self.root.glob(f"*{ENTRY_SUFFIX}"),
            key=lambda p: p.stat().st_mtime,
            reverse=True,
        )
        return [p.name.removesuffix(ENTRY_SUFFIX) for p in entries]

    def lookup(self, key: str, restore_keys: tuple[str, ...] = ()) -> str | None:
        """Find the key to restore: exact match, else newest prefix match."""
        if self.entry_path(key).is_file():
            return key
        stored = self.keys()
        for prefix in restore_keys:
            for candidate in stored:
                if candidate.startswith(prefix):
                    return candidate
        return None

    def restore(
        self,
        key: str,
        dest_dir: Path,
        restore_keys: tuple[str, ...] = (),
    ) -> CacheRestoreResult:
        """Extract the best matching entry into dest_dir.

        Raises:
            CacheError: If the entry exists but cannot be extracted.
        """
        matched = self.lookup(key, restore_keys)
        if matched is None:
            logger.info("Cache miss for key %s", key)
            return CacheRestoreResult()

        path = self.entry_path(matched)
        try:
            with tarfile.open(path, "r:gz") as tar:
                tar.extractall(dest_dir, filter="data")
        except (tarfile.TarError, OSError) as e:
            raise CacheError(
                f"Failed to restore cache {matched}: {e}", code="restore_failed"
            ) from e

        exact = matched == key
        logger.info(
            "Restored cache %s (%s)", matched, "exact" if exact else "restore key"
        )
        return CacheRestoreResult(matched_key=matched, exact=exact)

    def save(self, key: str, source_dir: Path, paths: list[str]) -> bool:
        """Archive existing paths (relative to source_dir) under key.

        Returns:
            True if an entry was written, False if the key already existed
            or none of the paths exist.

        Raises:
            CacheError: If the archive cannot be written.
        """
        dest = self.entry_path(key)
        if dest.exists():
            logger.info("Cache entry %s already exists, not saving", key)
            return False

        existing = [p for p in paths if (source_dir / p).exists()]
        if not existing:
            logger.info("No cache paths exist for %s, not saving", key)
            return False

        self.root.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.root, suffix=".partial")
        os.close(fd)
        tmp_path = Path(tmp_name)
        try:
            with tarfile.open(tmp_path, "w:gz") as tar:
                for relative in existing:
                    tar.add(source_dir / relative, arcname=relative)
            tmp_path.replace(dest)
        except (tarfile.TarError, OSError) as e:
            tmp_path.unlink(missing_ok=True)
            raise CacheError(
                f"Failed to save cache {key}: {e}", code="save_failed"
            ) from e

        logger.info("Saved cache %s (%s)", key, ", ".join(existing))
        return True


__all__ = ["BuildCache", "CacheError", "CacheRestoreResult"]
