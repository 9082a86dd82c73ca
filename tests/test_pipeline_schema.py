"""Tests for pipeline/schema.py and pipeline/io.py modules.

Tests validation of pipeline definitions, the built-in default, and
YAML/JSON loading and export.
"""

import json

import pytest
import yaml
from pydantic import ValidationError

from lldap_ci.pipeline.io import (
    load_pipeline,
    pipeline_to_json_string,
    pipeline_to_yaml_string,
    resolve_pipeline,
)
from lldap_ci.pipeline.schema import (
    ArchTargetSchema,
    ImageFlavorSchema,
    PipelineSchema,
    default_pipeline,
)


def _target(name: str, platform: str) -> dict:
    return {"name": name, "rust_target": f"{name}-unknown-linux-musl", "platform": platform}


class TestDefaultPipeline:
    """Tests for the built-in pipeline definition."""

    def test_targets(self):
        """Should build for the three architectures."""
        pipeline = default_pipeline()
        assert [t.name for t in pipeline.targets] == ["armhf", "aarch64", "amd64"]
        assert pipeline.get_target("armhf").rust_target == "armv7-unknown-linux-gnueabihf"

    def test_armhf_links_dynamically(self):
        """armhf disables crt-static and sets the cross linker."""
        armhf = default_pipeline().get_target("armhf")
        assert armhf.rustflags == "-Ctarget-feature=-crt-static"
        assert armhf.linker == "arm-linux-gnueabihf-gcc"

    def test_flavors(self):
        """alpine is the default flavor; debian also covers arm/v7."""
        pipeline = default_pipeline()
        flavors = {f.name: f for f in pipeline.flavors}
        assert flavors["alpine"].default
        assert not flavors["debian"].default
        assert "linux/arm/v7" in flavors["debian"].platforms
        assert "linux/arm/v7" not in flavors["alpine"].platforms

    def test_binary_artifacts(self):
        """Every binary of every target gets its own artifact name."""
        names = default_pipeline().binary_artifacts()
        assert "armhf-lldap-bin" in names
        assert "amd64-migration-tool-bin" in names
        assert len(names) == len(set(names)) == 6


class TestPipelineValidation:
    """Tests for cross-field validation."""

    def test_minimal(self):
        """A single target is enough."""
        pipeline = PipelineSchema.model_validate(
            {"targets": [_target("amd64", "linux/amd64")]}
        )
        assert pipeline.image == "nitnelave/lldap"
        assert pipeline.branch == "main"

    def test_targets_required(self):
        """At least one target is required."""
        with pytest.raises(ValidationError):
            PipelineSchema.model_validate({"targets": []})

    def test_duplicate_targets(self):
        """Target names must be unique."""
        with pytest.raises(ValidationError, match="target names must be unique"):
            PipelineSchema.model_validate(
                {
                    "targets": [
                        _target("amd64", "linux/amd64"),
                        _target("amd64", "linux/arm64"),
                    ]
                }
            )

    def test_two_default_flavors(self):
        """Only one flavor can receive unsuffixed tags."""
        with pytest.raises(ValidationError, match="at most one flavor"):
            PipelineSchema(
                targets=[ArchTargetSchema(**_target("amd64", "linux/amd64"))],
                flavors=[
                    ImageFlavorSchema(
                        name="a", dockerfile="A", platforms=["linux/amd64"], default=True
                    ),
                    ImageFlavorSchema(
                        name="b", dockerfile="B", platforms=["linux/amd64"], default=True
                    ),
                ],
            )

    def test_flavor_platform_without_target(self):
        """Every flavor platform must be built by some target."""
        with pytest.raises(ValidationError, match="linux/arm64"):
            PipelineSchema(
                targets=[ArchTargetSchema(**_target("amd64", "linux/amd64"))],
                flavors=[
                    ImageFlavorSchema(
                        name="a", dockerfile="A", platforms=["linux/amd64", "linux/arm64"]
                    )
                ],
            )

    def test_invalid_platform(self):
        """Platforms must look like os/arch[/variant]."""
        with pytest.raises(ValidationError):
            ArchTargetSchema(**_target("amd64", "amd64"))

    def test_invalid_name(self):
        """Names must be filename-safe."""
        with pytest.raises(ValidationError):
            ArchTargetSchema(**_target("Arm HF", "linux/arm/v7"))

    def test_duplicate_binaries(self):
        """Binary names must be unique."""
        with pytest.raises(ValidationError):
            PipelineSchema(
                targets=[ArchTargetSchema(**_target("amd64", "linux/amd64"))],
                binaries=["lldap", "lldap"],
            )

    def test_unknown_field(self):
        """Unknown keys are rejected."""
        with pytest.raises(ValidationError):
            PipelineSchema.model_validate(
                {"targets": [_target("amd64", "linux/amd64")], "bogus": 1}
            )

    def test_get_target_unknown(self):
        """get_target raises KeyError for unknown names."""
        with pytest.raises(KeyError):
            default_pipeline().get_target("riscv")


class TestPipelineIO:
    """Tests for loading and exporting definitions."""

    def test_yaml_roundtrip(self, tmp_path):
        """Exported YAML loads back into an equal definition."""
        path = tmp_path / "pipeline.yaml"
        path.write_text(pipeline_to_yaml_string(default_pipeline()))
        assert load_pipeline(path) == default_pipeline()

    def test_roundtrip_keeps_unset_optionals(self, tmp_path):
        """Fields cleared on purpose stay cleared after export and reload."""
        pipeline = default_pipeline()
        pipeline.readme = None
        pipeline.frontend.container_image = None
        pipeline.targets[0].container_image = None

        yaml_path = tmp_path / "pipeline.yaml"
        yaml_path.write_text(pipeline_to_yaml_string(pipeline))
        json_path = tmp_path / "pipeline.json"
        json_path.write_text(pipeline_to_json_string(pipeline))

        for path in (yaml_path, json_path):
            loaded = load_pipeline(path)
            assert loaded.readme is None
            assert loaded.frontend.container_image is None
            assert loaded.targets[0].container_image is None
            assert loaded == pipeline

    def test_malformed_yaml(self, tmp_path):
        """Syntax errors surface as yaml.YAMLError."""
        path = tmp_path / "pipeline.yaml"
        path.write_text("targets: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_pipeline(path)

    def test_load_json(self, tmp_path):
        """Should load JSON definitions."""
        path = tmp_path / "pipeline.json"
        path.write_text(
            json.dumps({"branch": "dev", "targets": [_target("amd64", "linux/amd64")]})
        )
        assert load_pipeline(path).branch == "dev"

    def test_json_export(self):
        """JSON export is valid JSON with every target."""
        data = json.loads(pipeline_to_json_string(default_pipeline()))
        assert len(data["targets"]) == 3

    def test_unsupported_extension(self, tmp_path):
        """Only .yaml, .yml and .json are accepted."""
        path = tmp_path / "pipeline.toml"
        path.write_text("")
        with pytest.raises(ValueError, match="Unsupported file extension"):
            load_pipeline(path)

    def test_yaml_not_mapping(self, tmp_path):
        """A YAML list is not a definition."""
        path = tmp_path / "pipeline.yml"
        path.write_text(yaml.dump(["a", "b"]))
        with pytest.raises(ValueError, match="mapping"):
            load_pipeline(path)

    def test_missing_file(self, tmp_path):
        """Missing files raise FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_pipeline(tmp_path / "missing.yaml")

    def test_resolve_default(self):
        """No path means the built-in definition."""
        assert resolve_pipeline(None) == default_pipeline()
