"""Tests for configuration module."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from lldap_ci.config import Settings, get_settings, print_settings_json


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Settings should have sensible defaults."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.cache_dir == Path.home() / ".cache" / "lldap-ci" / "build"
        assert (
            settings.artifacts_dir
            == Path.home() / ".local" / "share" / "lldap-ci" / "artifacts"
        )
        assert settings.buildx_cache_dir == Path("/tmp/.buildx-cache")
        assert "sqlite" in settings.db_url
        assert settings.log_level == "INFO"
        assert settings.max_concurrent_jobs == 4
        assert settings.use_containers is True
        assert settings.setup_builder is False
        assert settings.include_sha_tags is False
        assert settings.pipeline_file is None
        assert settings.github_api_url == "https://api.github.com"
        assert settings.dockerhub_api_url == "https://hub.docker.com/v2"

    def test_settings_from_env(self) -> None:
        """Settings should be loadable from environment variables."""
        with patch.dict(
            os.environ,
            {
                "LLDAP_CI_LOG_LEVEL": "DEBUG",
                "LLDAP_CI_MAX_CONCURRENT_JOBS": "2",
                "LLDAP_CI_USE_CONTAINERS": "false",
                "LLDAP_CI_SOURCE_DIR": "/tmp/lldap",
            },
        ):
            settings = Settings()
            assert settings.log_level == "DEBUG"
            assert settings.max_concurrent_jobs == 2
            assert settings.use_containers is False
            assert settings.source_dir == Path("/tmp/lldap")

    def test_pipeline_file_from_env(self) -> None:
        with patch.dict(os.environ, {"LLDAP_CI_PIPELINE_FILE": "/etc/lldap-ci.yaml"}):
            assert Settings().pipeline_file == Path("/etc/lldap-ci.yaml")

    def test_max_jobs_bounds(self) -> None:
        """The job pool must hold at least one job."""
        with pytest.raises(ValidationError):
            Settings(max_concurrent_jobs=0)

    def test_step_timeout_minimum(self) -> None:
        with pytest.raises(ValidationError):
            Settings(step_timeout=5)


class TestGetSettings:
    """Test get_settings function."""

    def test_returns_settings(self) -> None:
        assert isinstance(get_settings(), Settings)


class TestPrintSettingsJson:
    """Test print_settings_json function."""

    def test_valid_json(self) -> None:
        """Output should be valid JSON with every field."""
        data = json.loads(print_settings_json(Settings()))
        assert "db_url" in data
        assert "registry_username" in data

    def test_masks_secrets(self) -> None:
        """Secrets are replaced by a mask; unset ones stay null."""
        settings = Settings(
            registry_username="nitnelave",
            registry_token="dckr_pat",
            registry_password="hunter2",
            github_token="ghs_x",
        )
        data = json.loads(print_settings_json(settings))
        assert data["registry_username"] == "nitnelave"
        assert data["registry_token"] == "***"
        assert data["registry_password"] == "***"
        assert data["github_token"] == "***"
        assert data["webhook_secret"] is None

    def test_does_not_modify_settings(self) -> None:
        settings = Settings(github_token="ghs_x")
        print_settings_json(settings)
        assert settings.github_token == "ghs_x"
