"""Filesystem layout of downloaded build artifacts.

The image Dockerfiles and the release packager expect:

    bin/<arch>-bin/<binary>   one directory per architecture
    web/                      the bundled frontend
"""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path

from lldap_ci.builds.artifacts import ArtifactStore
from lldap_ci.pipeline.schema import PipelineSchema

logger = logging.getLogger(__name__)


@dataclass
class ArtifactLayout:
    """Where downloaded artifacts were placed.

    Attributes:
        root: Root of the layout.
        bin_dirs: Binary directory per architecture name.
        web_dir: Frontend directory.
    """

    root: Path
    bin_dirs: dict[str, Path] = field(default_factory=dict)
    web_dir: Path | None = None


def bin_dir_for(root: Path, target: str) -> Path:
    """Binary directory of one architecture."""
    return root / "bin" / f"{target}-bin"


def _make_executable(path: Path) -> None:
    mode = path.stat().st_mode
    os.chmod(path, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def assemble_layout(
    store: ArtifactStore,
    pipeline: PipelineSchema,
    root: Path,
    include_web: bool = True,
) -> ArtifactLayout:
    """Download every build artifact into the expected layout.

    Args:
        store: Artifact store of the run.
        pipeline: Pipeline definition.
        root: Directory receiving bin/ and web/.
        include_web: Also download the frontend bundle.

    Returns:
        ArtifactLayout describing the downloaded files.

    Raises:
        ArtifactNotFoundError: If a build artifact is missing.
    """
    layout = ArtifactLayout(root=root)
    for target in pipeline.targets:
        dest = bin_dir_for(root, target.name)
        for binary in pipeline.binaries:
            name = pipeline.binary_artifact(target.name, binary)
            for path in store.download(name, dest):
                _make_executable(path)
        layout.bin_dirs[target.name] = dest

    if include_web:
        layout.web_dir = root / "web"
        store.download(pipeline.frontend.artifact, layout.web_dir)

    logger.info(
        "Assembled %d architecture(s) into %s", len(layout.bin_dirs), root / "bin"
    )
    return layout


__all__ = ["ArtifactLayout", "assemble_layout", "bin_dir_for"]
