"""Tests for builds/artifacts.py module.

Tests the write-once artifact store, checksums and manifests.
"""

import hashlib
import os
import threading

import pytest

from lldap_ci.builds.artifacts import (
    ArtifactExistsError,
    ArtifactNotFoundError,
    ArtifactStore,
    compute_file_hash,
    describe_files,
    generate_manifest,
)
from lldap_ci.types import ArtifactInfo


@pytest.fixture
def store(tmp_path):
    """Artifact store of run 7."""
    return ArtifactStore.for_run(tmp_path / "artifacts", 7)


@pytest.fixture
def binary(tmp_path):
    """An executable file to upload."""
    path = tmp_path / "build" / "lldap"
    path.parent.mkdir()
    path.write_bytes(b"\x7fELF binary")
    path.chmod(0o755)
    return path


class TestHelpers:
    """Tests for hashing and manifest helpers."""

    def test_compute_file_hash(self, binary):
        """Should match hashlib's SHA-256."""
        assert compute_file_hash(binary) == hashlib.sha256(binary.read_bytes()).hexdigest()

    def test_describe_files(self, tmp_path):
        """Should list files recursively with relative paths."""
        (tmp_path / "a" / "b").mkdir(parents=True)
        (tmp_path / "a" / "b" / "c.txt").write_text("x")
        infos = describe_files(tmp_path / "a")
        assert [i.relative_path for i in infos] == ["b/c.txt"]
        assert infos[0].size_bytes == 1

    def test_generate_manifest(self):
        """Manifest summarizes files and records the job."""
        files = [ArtifactInfo("a", "a", 3, "0" * 64), ArtifactInfo("b", "b", 4, "1" * 64)]
        manifest = generate_manifest("ui", files, run_id=1, job="build-ui")
        assert manifest["summary"] == {"total_files": 2, "total_size_bytes": 7}
        assert manifest["job"] == "build-ui"
        assert manifest["run_id"] == 1


class TestArtifactStore:
    """Tests for ArtifactStore."""

    def test_root_per_run(self, store, tmp_path):
        """Each run has its own store root."""
        assert store.root == tmp_path / "artifacts" / "run-00000007"

    def test_upload_file(self, store, binary):
        """A file is stored under <name>/<filename>."""
        files = store.upload("amd64-lldap-bin", binary, job="build-amd64")
        assert [f.relative_path for f in files] == ["lldap"]
        assert (store.root / "amd64-lldap-bin" / "lldap").is_file()
        assert store.exists("amd64-lldap-bin")
        assert store.manifest("amd64-lldap-bin")["job"] == "build-amd64"

    def test_upload_directory(self, store, tmp_path):
        """A directory's contents are stored under <name>/."""
        app = tmp_path / "app"
        (app / "static").mkdir(parents=True)
        (app / "index.html").write_text("<html/>")
        (app / "static" / "main.css").write_text("body{}")
        files = store.upload("ui", app)
        assert sorted(f.relative_path for f in files) == ["index.html", "static/main.css"]

    def test_write_once(self, store, binary):
        """A second upload under the same name fails."""
        store.upload("amd64-lldap-bin", binary)
        with pytest.raises(ArtifactExistsError) as exc_info:
            store.upload("amd64-lldap-bin", binary)
        assert exc_info.value.code == "artifact_exists"

    def test_concurrent_uploads_single_winner(self, store, binary):
        """Concurrent uploads under one name leave exactly one success."""
        errors = []

        def upload():
            try:
                store.upload("ui", binary)
            except ArtifactExistsError as e:
                errors.append(e)

        threads = [threading.Thread(target=upload) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(errors) == 4

    def test_download_many_times(self, store, binary, tmp_path):
        """Artifacts can be downloaded any number of times, modes preserved."""
        store.upload("amd64-lldap-bin", binary)
        for i in range(2):
            dest = tmp_path / f"dest{i}"
            paths = store.download("amd64-lldap-bin", dest)
            assert paths == [dest / "lldap"]
            assert os.access(dest / "lldap", os.X_OK)

    def test_download_merges_into_directory(self, store, tmp_path):
        """Several artifacts can be downloaded into one directory."""
        for name in ("lldap", "migration-tool"):
            src = tmp_path / name
            src.write_text(name)
            store.upload(f"amd64-{name}-bin", src)
        dest = tmp_path / "bin" / "amd64-bin"
        store.download("amd64-lldap-bin", dest)
        store.download("amd64-migration-tool-bin", dest)
        assert sorted(p.name for p in dest.iterdir()) == ["lldap", "migration-tool"]

    def test_download_unknown(self, store, tmp_path):
        """Downloading a name never uploaded fails."""
        with pytest.raises(ArtifactNotFoundError):
            store.download("ui", tmp_path / "dest")

    def test_names(self, store, binary):
        """names() lists uploaded artifacts but not manifests."""
        store.upload("b", binary)
        store.upload("a", binary)
        assert store.names() == ["a", "b"]

    def test_invalid_name(self, store, binary):
        """Names cannot escape the store."""
        with pytest.raises(ValueError):
            store.upload("../x", binary)

    def test_missing_source(self, store, tmp_path):
        """Uploading a missing path fails."""
        with pytest.raises(FileNotFoundError):
            store.upload("ui", tmp_path / "missing")
