"""Pydantic models for the pipeline definition.

The pipeline definition describes what gets built (frontend and one job
per CPU architecture), which container image flavors are published from
the results, and how release assets are packaged. The built-in default
reproduces lldap's "Docker Static" workflow.
"""

import re
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_.\-]*$")

DEFAULT_RUSTFLAGS = "-Ctarget-feature=+crt-static"


def _check_name(v: str) -> str:
    if not NAME_PATTERN.match(v):
        raise ValueError(f"name must match pattern {NAME_PATTERN.pattern}, got '{v}'")
    return v


class FrontendSchema(BaseModel):
    """Schema for the web frontend build.

    Attributes:
        artifact: Artifact name the bundled frontend is uploaded under.
        container_image: Toolchain image the job runs in.
        setup_commands: Shell commands installing build tools.
        build_command: Command producing the static assets.
        output_dir: Directory (relative to the checkout) holding the assets.
        env: Extra environment for every step.
    """

    model_config = ConfigDict(extra="forbid")

    artifact: str = "ui"
    container_image: str | None = "rust:1.65"
    setup_commands: list[str] = Field(default_factory=list)
    build_command: str = "./app/build.sh"
    output_dir: str = "app"
    env: dict[str, str] = Field(default_factory=dict)

    @field_validator("artifact")
    @classmethod
    def validate_artifact(cls, v: str) -> str:
        """Validate the artifact name is filename-safe."""
        return _check_name(v)


class ArchTargetSchema(BaseModel):
    """Schema for one cross-compilation target.

    Attributes:
        name: Short architecture name used in artifact and file names.
        rust_target: Rust target triple.
        platform: Docker platform served by these binaries.
        container_image: Toolchain image the job runs in.
        linker: Linker for the target (sets CARGO_TARGET_<TRIPLE>_LINKER).
        rustflags: RUSTFLAGS for the build.
        setup_commands: Shell commands installing the cross toolchain.
        env: Extra environment for every step.
    """

    model_config = ConfigDict(extra="forbid")

    name: Annotated[str, Field(min_length=1, max_length=50)]
    rust_target: Annotated[str, Field(min_length=1)]
    platform: Annotated[str, Field(min_length=1)]
    container_image: str | None = "rust:1.65"
    linker: str | None = None
    rustflags: str = DEFAULT_RUSTFLAGS
    setup_commands: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate the architecture name is filename-safe."""
        return _check_name(v)

    @field_validator("platform")
    @classmethod
    def validate_platform(cls, v: str) -> str:
        """Validate platform looks like os/arch[/variant]."""
        if not re.match(r"^[a-z0-9]+/[a-z0-9_]+(/[a-z0-9]+)?$", v):
            raise ValueError(f"platform must look like 'linux/arm64', got '{v}'")
        return v


class ImageFlavorSchema(BaseModel):
    """Schema for one container image flavor (base OS).

    Attributes:
        name: Flavor name, used as tag suffix.
        dockerfile: Dockerfile path relative to the build context.
        platforms: Platforms included in the multi-arch image.
        default: Whether the flavor also receives unsuffixed tags.
    """

    model_config = ConfigDict(extra="forbid")

    name: Annotated[str, Field(min_length=1, max_length=50)]
    dockerfile: Annotated[str, Field(min_length=1)]
    platforms: Annotated[list[str], Field(min_length=1)]
    default: bool = False

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate the flavor name is tag-safe."""
        return _check_name(v)


class ReleaseSchema(BaseModel):
    """Schema for release asset packaging.

    Attributes:
        enabled: Whether release events package and upload assets.
        web_archive: Filename of the frontend archive.
        archive_root: Top-level directory inside the archive.
        web_entries: Entries of the frontend bundle kept in the archive.
    """

    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    web_archive: str = "web.zip"
    archive_root: str = "app"
    web_entries: list[str] = Field(
        default_factory=lambda: ["index.html", "static", "pkg"]
    )


class PipelineSchema(BaseModel):
    """Complete pipeline definition.

    Attributes:
        name: Display name.
        project: Project name, used in cache keys.
        branch: Designated branch for push and pull request triggers.
        image: Image repository (e.g. 'nitnelave/lldap').
        binaries: Cargo packages built and shipped for every architecture.
        lockfile_glob: Glob of lockfiles hashed into cache keys.
        cache_paths: Paths (relative to the checkout) saved in build caches.
        frontend: Frontend build settings.
        targets: Cross-compilation targets.
        flavors: Container image flavors.
        release: Release packaging settings.
        readme: README pushed as the registry repository description.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = "Docker Static"
    project: str = "lldap"
    branch: str = "main"
    image: Annotated[str, Field(min_length=1)] = "nitnelave/lldap"
    binaries: Annotated[list[str], Field(min_length=1)] = Field(
        default_factory=lambda: ["lldap", "migration-tool"]
    )
    lockfile_glob: str = "**/Cargo.lock"
    cache_paths: list[str] = Field(
        default_factory=lambda: [
            ".cargo/bin",
            ".cargo/registry/index",
            ".cargo/registry/cache",
            ".cargo/git/db",
            "target",
        ]
    )
    frontend: FrontendSchema = Field(default_factory=FrontendSchema)
    targets: Annotated[list[ArchTargetSchema], Field(min_length=1)]
    flavors: list[ImageFlavorSchema] = Field(default_factory=list)
    release: ReleaseSchema = Field(default_factory=ReleaseSchema)
    readme: str | None = "README.md"

    @field_validator("project")
    @classmethod
    def validate_project(cls, v: str) -> str:
        """Validate project name is key-safe."""
        return _check_name(v)

    @field_validator("binaries")
    @classmethod
    def validate_binaries(cls, v: list[str]) -> list[str]:
        """Validate binary names are unique and filename-safe."""
        for name in v:
            _check_name(name)
        if len(set(v)) != len(v):
            raise ValueError("binaries must be unique")
        return v

    @model_validator(mode="after")
    def validate_consistency(self) -> "PipelineSchema":
        """Validate cross-field consistency."""
        names = [t.name for t in self.targets]
        if len(set(names)) != len(names):
            raise ValueError("target names must be unique")

        flavor_names = [f.name for f in self.flavors]
        if len(set(flavor_names)) != len(flavor_names):
            raise ValueError("flavor names must be unique")
        if sum(1 for f in self.flavors if f.default) > 1:
            raise ValueError("at most one flavor can be the default")

        built = {t.platform for t in self.targets}
        for flavor in self.flavors:
            missing = [p for p in flavor.platforms if p not in built]
            if missing:
                raise ValueError(
                    f"flavor '{flavor.name}' needs platforms with no target: "
                    f"{', '.join(missing)}"
                )
        return self

    def get_target(self, name: str) -> ArchTargetSchema:
        """Return the target with the given name.

        Raises:
            KeyError: If no target has that name.
        """
        for target in self.targets:
            if target.name == name:
                return target
        raise KeyError(name)

    def binary_artifact(self, target: str, binary: str) -> str:
        """Artifact name of one binary built for one target."""
        return f"{target}-{binary}-bin"

    def binary_artifacts(self) -> list[str]:
        """All binary artifact names, grouped by target."""
        return [
            self.binary_artifact(t.name, b) for t in self.targets for b in self.binaries
        ]


def default_pipeline() -> PipelineSchema:
    """Return the built-in pipeline definition for lldap."""
    return PipelineSchema(
        frontend=FrontendSchema(
            container_image="rust:1.65",
            setup_commands=[
                "apt update && apt install -y gcc-x86-64-linux-gnu "
                "g++-x86-64-linux-gnu libc6-dev ca-certificates",
                "curl -fsSL https://deb.nodesource.com/setup_lts.x | bash -",
                "apt install -y nodejs && npm -g install npm",
                "npm install -g rollup",
                'RUSTFLAGS="" cargo install wasm-pack || true',
            ],
            env={"RUSTFLAGS": DEFAULT_RUSTFLAGS},
        ),
        targets=[
            ArchTargetSchema(
                name="armhf",
                rust_target="armv7-unknown-linux-gnueabihf",
                platform="linux/arm/v7",
                container_image="rust:1.65",
                linker="arm-linux-gnueabihf-gcc",
                rustflags="-Ctarget-feature=-crt-static",
                setup_commands=[
                    "dpkg --add-architecture armhf",
                    "apt update && apt install -y gcc-arm-linux-gnueabihf "
                    "g++-arm-linux-gnueabihf libc6-armhf-cross "
                    "libc6-dev-armhf-cross tar ca-certificates",
                ],
            ),
            ArchTargetSchema(
                name="aarch64",
                rust_target="aarch64-unknown-linux-musl",
                platform="linux/arm64",
                container_image="nitnelave/rust-dev:latest",
                linker="aarch64-linux-musl-gcc",
            ),
            ArchTargetSchema(
                name="amd64",
                rust_target="x86_64-unknown-linux-musl",
                platform="linux/amd64",
                container_image="nitnelave/rust-dev:latest",
                linker="x86_64-linux-musl-gcc",
                setup_commands=["apt update && apt install -y musl-tools tar wget"],
            ),
        ],
        flavors=[
            ImageFlavorSchema(
                name="alpine",
                dockerfile=".github/workflows/Dockerfile.ci.alpine",
                platforms=["linux/amd64", "linux/arm64"],
                default=True,
            ),
            ImageFlavorSchema(
                name="debian",
                dockerfile=".github/workflows/Dockerfile.ci.debian",
                platforms=["linux/amd64", "linux/arm64", "linux/arm/v7"],
            ),
        ],
    )


__all__ = [
    "ArchTargetSchema",
    "FrontendSchema",
    "ImageFlavorSchema",
    "PipelineSchema",
    "ReleaseSchema",
    "default_pipeline",
]
