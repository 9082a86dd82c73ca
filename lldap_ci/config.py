"""Configuration settings for lldap_ci.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_data_dir() -> Path:
    """Return the default data directory."""
    return Path.home() / ".local" / "share" / "lldap-ci"


def _default_cache_dir() -> Path:
    """Return the default build cache directory."""
    return Path.home() / ".cache" / "lldap-ci" / "build"


def _default_buildx_cache_dir() -> Path:
    """Return the default buildx layer cache directory."""
    return Path("/tmp/.buildx-cache")


def _default_db_url() -> str:
    """Return the default database URL (SQLite)."""
    db_path = _default_data_dir() / "db.sqlite"
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the LLDAP_CI_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="LLDAP_CI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    source_dir: Path = Field(
        default_factory=Path.cwd,
        description="Checkout of the project being built",
    )
    work_dir: Path = Field(
        default_factory=lambda: _default_data_dir() / "work",
        description="Scratch directory for image and release jobs",
    )
    artifacts_dir: Path = Field(
        default_factory=lambda: _default_data_dir() / "artifacts",
        description="Root directory of the artifact store",
    )
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Root directory for lockfile-keyed build caches",
    )
    buildx_cache_dir: Path = Field(
        default_factory=_default_buildx_cache_dir,
        description="Local buildx layer cache",
    )
    logs_dir: Path = Field(
        default_factory=lambda: _default_data_dir() / "logs",
        description="Directory for per-job log files",
    )
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database connection URL",
    )
    pipeline_file: Path | None = Field(
        default=None,
        description="YAML/JSON pipeline definition (built-in default if unset)",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Execution
    max_concurrent_jobs: int = Field(
        default=4,
        ge=1,
        le=16,
        description="Maximum jobs executed in parallel",
    )
    step_timeout: int | None = Field(
        default=None,
        ge=60,
        description="Per-step timeout in seconds (no timeout if unset)",
    )
    use_containers: bool = Field(
        default=True,
        description="Run build jobs inside their toolchain container image",
    )
    setup_builder: bool = Field(
        default=False,
        description="Register QEMU binfmt handlers and create a buildx builder",
    )
    docker_binary: str = Field(default="docker", description="Docker CLI executable")

    # Tagging
    include_sha_tags: bool = Field(
        default=False,
        description="Also tag non-release images with sha-<commit>",
    )

    # Credentials
    registry_username: str | None = Field(default=None)
    registry_token: str | None = Field(
        default=None, description="Registry access token used for docker login"
    )
    registry_password: str | None = Field(
        default=None, description="Docker Hub password used for description updates"
    )
    github_token: str | None = Field(default=None)
    github_repository: str | None = Field(
        default=None, description="owner/name of the repository receiving releases"
    )
    github_api_url: str = Field(default="https://api.github.com")
    github_uploads_url: str = Field(default="https://uploads.github.com")
    dockerhub_api_url: str = Field(default="https://hub.docker.com/v2")
    webhook_secret: str | None = Field(
        default=None, description="Secret for validating webhook signatures"
    )


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON, with secrets masked.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    masked = {
        name: "***"
        for name in (
            "registry_token",
            "registry_password",
            "github_token",
            "webhook_secret",
        )
        if getattr(settings, name)
    }
    return settings.model_copy(update=masked).model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
