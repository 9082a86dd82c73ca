"""Release asset packaging.

This module handles:
- Downloading the binaries and renaming each to <binary>-<arch>
- Moving the frontend entries under the archive root
- Zipping the frontend into the web archive
"""

from __future__ import annotations

import logging
import shutil
import zipfile
from dataclasses import dataclass, field
from pathlib import Path

from lldap_ci.builds.artifacts import ArtifactStore
from lldap_ci.images.layout import assemble_layout
from lldap_ci.pipeline.schema import PipelineSchema

logger = logging.getLogger(__name__)


class ReleaseCollisionError(Exception):
    """Raised when two release assets would share a filename."""

    def __init__(self, filename: str, code: str = "release_collision") -> None:
        super().__init__(f"Release asset name collision: {filename}")
        self.filename = filename
        self.code = code


class ReleasePackagingError(Exception):
    """Raised when the downloaded artifacts cannot be packaged."""

    def __init__(self, message: str, code: str = "release_packaging_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class ReleaseAssets:
    """Files to attach to a release.

    Attributes:
        binaries: Renamed binaries, in target then binary order.
        web_archive: Zipped frontend, if packaged.
    """

    binaries: list[Path] = field(default_factory=list)
    web_archive: Path | None = None

    @property
    def files(self) -> list[Path]:
        files = list(self.binaries)
        if self.web_archive is not None:
            files.append(self.web_archive)
        return files


def release_binary_name(binary: str, target: str) -> str:
    """Release filename of a binary, e.g. 'lldap-armhf'."""
    return f"{binary}-{target}"


def prepare_binaries(
    store: ArtifactStore, pipeline: PipelineSchema, root: Path
) -> list[Path]:
    """Download the binaries and give each a per-architecture name.

    Raises:
        ArtifactNotFoundError: If a binary artifact is missing.
        ReleaseCollisionError: If two binaries map to the same filename.
    """
    layout = assemble_layout(store, pipeline, root, include_web=False)
    seen: set[str] = set()
    renamed = []
    for target in pipeline.targets:
        bin_dir = layout.bin_dirs[target.name]
        for binary in pipeline.binaries:
            name = release_binary_name(binary, target.name)
            if name in seen:
                raise ReleaseCollisionError(name)
            seen.add(name)
            src = bin_dir / binary
            dest = bin_dir / name
            if not src.is_file():
                raise ReleasePackagingError(
                    f"Binary missing from artifact: {src}", code="missing_binary"
                )
            if dest.exists():
                raise ReleaseCollisionError(name)
            src.rename(dest)
            renamed.append(dest)
    return renamed


def zip_directory(source: Path, archive: Path) -> Path:
    """Zip a directory; entries are prefixed with the directory name."""
    base = source.parent
    with zipfile.ZipFile(archive, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.write(source, source.name)
        for path in sorted(source.rglob("*")):
            zf.write(path, path.relative_to(base).as_posix())
    return archive


def prepare_web_archive(
    store: ArtifactStore, pipeline: PipelineSchema, root: Path
) -> Path:
    """Download the frontend, keep the served entries and zip them.

    Raises:
        ArtifactNotFoundError: If the frontend artifact is missing.
        ReleasePackagingError: If an expected entry is missing.
    """
    release = pipeline.release
    web_dir = root / "web"
    store.download(pipeline.frontend.artifact, web_dir)

    app_dir = root / release.archive_root
    app_dir.mkdir(parents=True, exist_ok=True)
    for entry in release.web_entries:
        src = web_dir / entry
        if not src.exists():
            raise ReleasePackagingError(
                f"Frontend entry missing: {entry}", code="missing_web_entry"
            )
        shutil.move(str(src), app_dir / entry)

    archive = zip_directory(app_dir, root / release.web_archive)
    logger.info("Packaged %s", archive.name)
    return archive


def package_release(
    store: ArtifactStore, pipeline: PipelineSchema, root: Path
) -> ReleaseAssets:
    """Prepare every release asset below root.

    Raises:
        ArtifactNotFoundError: If an artifact is missing.
        ReleaseCollisionError: If two assets share a filename.
        ReleasePackagingError: If the artifacts do not have the expected shape.
    """
    if root.exists():
        shutil.rmtree(root)
    root.mkdir(parents=True)
    assets = ReleaseAssets(binaries=prepare_binaries(store, pipeline, root))
    assets.web_archive = prepare_web_archive(store, pipeline, root)

    names = [p.name for p in assets.files]
    duplicates = {n for n in names if names.count(n) > 1}
    if duplicates:
        raise ReleaseCollisionError(sorted(duplicates)[0])
    return assets


__all__ = [
    "ReleaseAssets",
    "ReleaseCollisionError",
    "ReleasePackagingError",
    "package_release",
    "prepare_binaries",
    "prepare_web_archive",
    "release_binary_name",
    "zip_directory",
]
