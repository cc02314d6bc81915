"""Tests for the unified config schema.

Covers the Pydantic section models, the build_config() factory and the
fallbacks() view that feeds load_config().
"""

import pytest
from pydantic import ValidationError

from redmine_gitlab_sync.config import load_config
from redmine_gitlab_sync.config_schema import (
    GitLabConfig,
    LoggingConfig,
    StorageConfig,
    SyncSettings,
    UnifiedConfig,
    build_config,
)

# ---------------------------------------------------------------------------
# UnifiedConfig tests
# ---------------------------------------------------------------------------


class TestUnifiedConfig:
    """Tests for the top-level UnifiedConfig model."""

    def test_defaults(self):
        config = UnifiedConfig()
        assert config.gitlab.url is None
        assert config.gitlab.identity_provider == "openid_connect"
        assert config.redmine.api_key is None
        assert config.storage.gitlab_root is None
        assert config.sync.workers == 2
        assert config.sync.manage_badges is False
        assert config.logging.level == "INFO"

    def test_unknown_sections_ignored(self):
        config = UnifiedConfig(**{"jira": {"url": "x"}, "sync": {"workers": 3}})
        assert not hasattr(config, "jira")
        assert config.sync.workers == 3

    def test_frozen_model_prevents_mutation(self):
        config = UnifiedConfig()
        with pytest.raises(ValidationError):
            config.sync = SyncSettings(workers=4)


class TestSectionModels:
    def test_gitlab_frozen(self):
        section = GitLabConfig(url="https://gitlab.example.com")
        with pytest.raises(ValidationError):
            section.url = "https://other.example.com"

    @pytest.mark.parametrize("workers", [0, 33])
    def test_worker_bounds(self, workers):
        with pytest.raises(ValidationError):
            SyncSettings(workers=workers)

    def test_storage_roots_optional(self):
        assert StorageConfig().model_dump() == {"gitlab_root": None, "redmine_root": None}

    def test_logging_custom_values(self):
        section = LoggingConfig(level="DEBUG", file="/tmp/sync.log")
        assert (section.level, section.file) == ("DEBUG", "/tmp/sync.log")


# ---------------------------------------------------------------------------
# build_config() and fallbacks()
# ---------------------------------------------------------------------------


class TestBuildConfig:
    def test_empty_dict_returns_defaults(self):
        assert build_config({}) == UnifiedConfig()

    def test_partial_sections_fill_defaults(self):
        config = build_config({"redmine": {"url": "https://redmine.example.com"}})
        assert config.redmine.url == "https://redmine.example.com"
        assert config.gitlab.insecure is False
        assert config.sync.state_dir == ".gitlab_sync"

    def test_invalid_section_value(self):
        with pytest.raises(ValidationError):
            build_config({"sync": {"workers": "lots"}})


class TestFallbacks:
    def test_drops_none_values_and_logging(self):
        fallbacks = build_config(
            {
                "gitlab": {"url": "https://gitlab.example.com"},
                "logging": {"level": "DEBUG"},
            }
        ).fallbacks()
        assert set(fallbacks) == {"gitlab", "redmine", "storage", "sync"}
        assert fallbacks["gitlab"] == {
            "url": "https://gitlab.example.com",
            "insecure": False,
            "identity_provider": "openid_connect",
        }
        assert fallbacks["redmine"] == {}
        assert fallbacks["storage"] == {}

    def test_feeds_load_config(self, monkeypatch):
        for name in ("GITLAB_API_URL", "GITLAB_API_TOKEN", "REDMINE_URL", "REDMINE_API_KEY",
                     "GITLAB_SYNC_WORKERS", "GITLAB_STORAGE_ROOT", "REDMINE_REPOSITORY_ROOT"):
            monkeypatch.delenv(name, raising=False)
        unified = build_config(
            {
                "gitlab": {"url": "https://gitlab.example.com", "token": "t"},
                "redmine": {"url": "https://redmine.example.com", "api_key": "k"},
                "storage": {"gitlab_root": "/srv/gitlab"},
                "sync": {"workers": 5, "manage_badges": True},
            }
        )
        config = load_config(yaml_fallbacks=unified.fallbacks())
        assert config.gitlab_url == "https://gitlab.example.com"
        assert config.storage_root == "/srv/gitlab"
        assert config.repository_root == "/srv/gitlab"
        assert config.workers == 5
        assert config.manage_badges is True
