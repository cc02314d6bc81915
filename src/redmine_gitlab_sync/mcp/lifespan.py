"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv

from ..config import load_config
from ..config_loader import (
    discover_config_files,
    load_hierarchical_config,
)
from ..config_schema import build_config
from ..core.async_utils import init_semaphore, run_sync
from ..core.gitlab_client import GitLabClient
from ..sync.engine import build_engine

logger = logging.getLogger(__name__)

REQUIRED_ENV_HINT = "GITLAB_API_URL, GITLAB_API_TOKEN, REDMINE_URL, REDMINE_API_KEY"


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config file if present (as fallback values)
    - Merge all sources via load_config(): CLI > env vars > .env > YAML > defaults
    - Validate the GitLab connection; fail fast if GitLab is unreachable
    - Build the sync engine and start its worker queue

    On shutdown:
    - Stop the worker queue (jobs still waiting are dropped)

    Args:
        config_overrides: Optional dict with config values from CLI
            (gitlab_url, gitlab_token, redmine_url, redmine_api_key, insecure, debug)

    Yields:
        Dict with 'engine' key containing the running SyncEngine

    Raises:
        RuntimeError: If configuration is invalid or GitLab is unreachable.
    """
    logger.info("MCP server starting...")
    _stderr_print("Redmine GitLab Sync starting...")

    try:
        # 1. Load .env early (before YAML, so ${VAR} interpolation can use .env values)
        load_dotenv()

        # 2. Load YAML config if present, as fallbacks
        yaml_fallbacks: dict[str, Any] | None = None
        config_files = discover_config_files()
        sources = []

        if config_files:
            config_path = config_files[0]
            unified = build_config(load_hierarchical_config())
            yaml_fallbacks = unified.fallbacks()
            sources.append(f"config file: {config_path}")

        # 3. Single call to load_config with all sources merged
        overrides = config_overrides or {}
        config = load_config(
            gitlab_url=overrides.get("gitlab_url"),
            gitlab_token=overrides.get("gitlab_token"),
            redmine_url=overrides.get("redmine_url"),
            redmine_api_key=overrides.get("redmine_api_key"),
            insecure=overrides.get("insecure", False),
            debug=overrides.get("debug", False),
            yaml_fallbacks=yaml_fallbacks,
        )

        if overrides:
            sources.append("CLI arguments")
        sources.append("environment variables")
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
        logger.info("GitLab URL: %s, Redmine URL: %s", config.gitlab_url, config.redmine_url)
        _stderr_print(f"  GitLab URL: {config.gitlab_url}")
        _stderr_print(f"  Redmine URL: {config.redmine_url}")
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        _stderr_print(f"  Ensure {REQUIRED_ENV_HINT} are set.")
        raise RuntimeError(
            f"Configuration error: {e}. Ensure {REQUIRED_ENV_HINT} are set."
        ) from e

    logger.info("Validating GitLab connection...")
    _stderr_print("  Validating GitLab connection...")
    try:
        gitlab = GitLabClient(config)
        version = await run_sync(gitlab.get_version)
        logger.info("Successfully connected to GitLab version %s", version)
        _stderr_print(f"  Connected to GitLab version {version}")
    except Exception as e:
        logger.error("Failed to connect to GitLab: %s", e)
        _stderr_print("ERROR: GitLab connection failed.")
        _stderr_print(f"  {e}")
        _stderr_print("  Check GITLAB_API_URL and GITLAB_API_TOKEN.")
        raise RuntimeError(
            f"GitLab connection failed: {e}. Check GITLAB_API_URL and GITLAB_API_TOKEN."
        ) from e

    engine = build_engine(config, gitlab=gitlab)
    init_semaphore(config.workers)
    engine.start()
    _stderr_print(f"  Workers: {config.workers}, state: {engine.store.path}")
    _stderr_print("Server ready. Waiting for MCP client connection...")

    try:
        yield {"engine": engine}
    finally:
        engine.stop()
        logger.info("MCP server shutting down")
        _stderr_print("Redmine GitLab Sync shutting down.")
