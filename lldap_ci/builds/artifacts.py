"""Artifact store for passing outputs between jobs.

This module handles:
- Uploading files or directories under a name (write-once per run)
- Downloading artifacts into a destination directory (read-many)
- Computing checksums
- Generating per-artifact manifests
"""

from __future__ import annotations

import hashlib
import json
import logging
import shutil
import threading
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from lldap_ci.types import ArtifactInfo

logger = logging.getLogger(__name__)

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB

MANIFEST_DIR = ".manifests"


class ArtifactExistsError(Exception):
    """Raised when uploading under a name that is already taken."""

    def __init__(self, name: str, code: str = "artifact_exists") -> None:
        super().__init__(f"Artifact already uploaded: {name}")
        self.name = name
        self.code = code


class ArtifactNotFoundError(Exception):
    """Raised when downloading an artifact that was never uploaded."""

    def __init__(self, name: str, code: str = "artifact_not_found") -> None:
        super().__init__(f"Artifact not found: {name}")
        self.name = name
        self.code = code


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def describe_files(root: Path) -> list[ArtifactInfo]:
    """List every file below root with size and checksum."""
    infos = []
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        infos.append(
            ArtifactInfo(
                filename=path.name,
                relative_path=path.relative_to(root).as_posix(),
                size_bytes=path.stat().st_size,
                sha256=compute_file_hash(path),
            )
        )
    return infos


def generate_manifest(
    name: str,
    files: list[ArtifactInfo],
    run_id: int | None = None,
    job: str | None = None,
) -> dict[str, Any]:
    """Generate the manifest of one artifact.

    Args:
        name: Artifact name.
        files: Files stored under the name.
        run_id: Optional pipeline run ID.
        job: Optional name of the uploading job.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    manifest: dict[str, Any] = {
        "version": "1.0",
        "name": name,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "files": [asdict(f) for f in files],
        "summary": {
            "total_files": len(files),
            "total_size_bytes": sum(f.size_bytes for f in files),
        },
    }
    if run_id is not None:
        manifest["run_id"] = run_id
    if job:
        manifest["job"] = job
    return manifest


class ArtifactStore:
    """Filesystem artifact store scoped to one pipeline run.

    Uploading a file stores it as <name>/<filename>; uploading a directory
    stores its contents under <name>/. Names are write-once.
    """

    def __init__(self, root: Path, run_id: int | None = None) -> None:
        self.root = root
        self.run_id = run_id
        self._lock = threading.Lock()

    @classmethod
    def for_run(cls, artifacts_dir: Path, run_id: int) -> ArtifactStore:
        """Store rooted at <artifacts_dir>/run-<id>."""
        return cls(artifacts_dir / f"run-{run_id:08d}", run_id=run_id)

    def _path(self, name: str) -> Path:
        if not name or "/" in name or name.startswith("."):
            raise ValueError(f"Invalid artifact name: {name!r}")
        return self.root / name

    def exists(self, name: str) -> bool:
        return self._path(name).is_dir()

    def names(self) -> list[str]:
        """Names of all uploaded artifacts."""
        if not self.root.is_dir():
            return []
        return sorted(
            p.name
            for p in self.root.iterdir()
            if p.is_dir() and not p.name.startswith(".")
        )

    def upload(self, name: str, source: Path, job: str | None = None) -> list[ArtifactInfo]:
        """Upload a file or directory under name.

        Args:
            name: Artifact name, unique within the run.
            source: File or directory to store.
            job: Name of the uploading job, recorded in the manifest.

        Returns:
            Stored files with checksums.

        Raises:
            ArtifactExistsError: If the name was already uploaded.
            FileNotFoundError: If source does not exist.
        """
        if not source.exists():
            raise FileNotFoundError(f"Artifact source not found: {source}")

        dest = self._path(name)
        with self._lock:
            if dest.exists():
                raise ArtifactExistsError(name)
            self.root.mkdir(parents=True, exist_ok=True)
            staging = self.root / f".{name}.partial"
            if staging.exists():
                shutil.rmtree(staging)
            if source.is_dir():
                shutil.copytree(source, staging)
            else:
                staging.mkdir()
                shutil.copy2(source, staging / source.name)
            staging.rename(dest)

        files = describe_files(dest)
        manifest = generate_manifest(name, files, run_id=self.run_id, job=job)
        manifest_path = self.root / MANIFEST_DIR / f"{name}.json"
        manifest_path.parent.mkdir(parents=True, exist_ok=True)
        with manifest_path.open("w", encoding="utf-8") as f:
            json.dump(manifest, f, indent=2, sort_keys=True)

        logger.info(
            "Uploaded artifact %s (%d files, %d bytes)",
            name,
            len(files),
            manifest["summary"]["total_size_bytes"],
        )
        return files

    def download(self, name: str, dest_dir: Path) -> list[Path]:
        """Copy the contents of an artifact into dest_dir.

        Args:
            name: Artifact name.
            dest_dir: Destination directory (created if missing).

        Returns:
            Paths of the copied files.

        Raises:
            ArtifactNotFoundError: If the artifact does not exist.
        """
        src = self._path(name)
        if not src.is_dir():
            raise ArtifactNotFoundError(name)
        dest_dir.mkdir(parents=True, exist_ok=True)
        shutil.copytree(src, dest_dir, dirs_exist_ok=True)
        copied = [dest_dir / p.relative_to(src) for p in src.rglob("*") if p.is_file()]
        logger.info("Downloaded artifact %s to %s", name, dest_dir)
        return sorted(copied)

    def manifest(self, name: str) -> dict[str, Any]:
        """Load the manifest written at upload time.

        Raises:
            ArtifactNotFoundError: If the artifact does not exist.
        """
        path = self.root / MANIFEST_DIR / f"{name}.json"
        if not path.is_file():
            raise ArtifactNotFoundError(name)
        with path.open(encoding="utf-8") as f:
            data: dict[str, Any] = json.load(f)
        return data


__all__ = [
    "HASH_CHUNK_SIZE",
    "ArtifactExistsError",
    "ArtifactNotFoundError",
    "ArtifactStore",
    "compute_file_hash",
    "describe_files",
    "generate_manifest",
]
