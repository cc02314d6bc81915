"""Unified configuration schema for redmine_gitlab_sync.

Defines Pydantic models for the YAML config structure with dedicated
sections for GitLab, Redmine, repository storage, sync behaviour and
logging.  ``UnifiedConfig.fallbacks()`` feeds the file values into
``load_config()`` beneath env vars and CLI args.

Usage:
    from redmine_gitlab_sync.config_schema import (
        UnifiedConfig, build_config,
    )

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = load_config(yaml_fallbacks=unified.fallbacks())
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class GitLabConfig(BaseModel):
    """GitLab API connection settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    url: str | None = Field(default=None, description="GitLab base URL")
    token: str | None = Field(default=None, description="GitLab access token")
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    identity_provider: str = Field(
        default="openid_connect",
        description="GitLab identity provider used for extern_uid lookups",
    )

    model_config = {"frozen": True}


class RedmineConfig(BaseModel):
    """Redmine connection settings."""

    url: str | None = Field(default=None, description="Redmine base URL")
    api_key: str | None = Field(default=None, description="REST API key")
    sys_api_key: str | None = Field(
        default=None, description="Repository web-service (sys) API key"
    )
    external_url: str | None = Field(
        default=None, description="Redmine URL as end users reach it"
    )
    external_uid_field: str | None = Field(
        default=None,
        description="User custom field holding the single-sign-on uid",
    )

    model_config = {"frozen": True}


class StorageConfig(BaseModel):
    """Where GitLab's hashed repository storage is mounted.

    Attributes:
        gitlab_root: Path as seen by this process (scanned for candidates).
        redmine_root: Path as seen by Redmine (written into repository
            records).  Defaults to ``gitlab_root``.
    """

    gitlab_root: str | None = None
    redmine_root: str | None = None

    model_config = {"frozen": True}


class SyncSettings(BaseModel):
    """Engine behaviour."""

    state_dir: str = Field(default=".gitlab_sync", description="JSON state directory")
    workers: int = Field(
        default=2, ge=1, le=32, description="Queue worker threads (1-32)"
    )
    manage_badges: bool = Field(
        default=False, description="Add a Redmine badge to mapped groups"
    )
    configure_integration: bool = Field(
        default=False,
        description="Configure GitLab's Redmine integration on new projects",
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has defaults, so ``UnifiedConfig()`` is always valid.
    """

    gitlab: GitLabConfig = Field(default_factory=GitLabConfig)
    redmine: RedmineConfig = Field(default_factory=RedmineConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}

    def fallbacks(self) -> dict[str, dict]:
        """Non-``None`` values per section, as ``load_config`` expects."""
        return {
            name: {
                k: v
                for k, v in getattr(self, name).model_dump().items()
                if v is not None
            }
            for name in ("gitlab", "redmine", "storage", "sync")
        }


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


