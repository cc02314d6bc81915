"""
Hierarchical configuration loader for redmine_gitlab_sync.

Provides convention-based config file discovery, YAML !include support,
env var interpolation, and hierarchical merge with "project wins" semantics.

Usage:
    from redmine_gitlab_sync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "GITLAB_SYNC_CONFIG"
PROJECT_CONFIG_DIR = ".gitlab_sync"

# ---------------------------------------------------------------------------
# 1. Env var interpolation
# ---------------------------------------------------------------------------

# Matches ${VAR} and ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` with environment values.

    ``${VAR}`` becomes ``""`` when VAR is unset; ``${VAR:-default}`` uses
    *default* when VAR is unset or empty.  An unterminated ``${`` is left
    as is.
    """

    def _replace(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val:
            return env_val
        return match.group(2) or ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _interpolate_recursive(obj: Any) -> Any:
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _interpolate_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# 2. YAML !include support (dedicated SafeLoader subclass)
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """SafeLoader with ``!include``; the global ``yaml.SafeLoader`` stays untouched.

    Each load carries an include stack used to reject circular includes.
    """


def _include_constructor(loader: ConfigLoader, node: yaml.ScalarNode) -> Any:
    """Handle ``!include path/to/file.yml`` relative to the including file."""
    target = Path(loader.construct_scalar(node))
    if not target.is_absolute():
        target = Path(loader.name).resolve().parent / target
    target = target.resolve()

    stack: list[Path] = getattr(loader, "_include_stack", [])
    if target in stack:
        chain = " -> ".join(str(p) for p in [*stack, target])
        raise ValueError(f"Circular include detected: {chain}")

    if not target.exists():
        raise FileNotFoundError(
            f"Include file not found: {target} "
            f"(referenced from {Path(loader.name).resolve()})"
        )

    return _load_yaml_with_includes(target, _include_stack=[*stack, target])


ConfigLoader.add_constructor("!include", _include_constructor)


def _load_yaml_with_includes(
    path: Path,
    *,
    _include_stack: list[Path] | None = None,
) -> Any:
    path = path.resolve()
    with open(path, "r", encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader._include_stack = _include_stack or [path]  # type: ignore[attr-defined]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# 3. Convention-based file discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Return existing config file paths in precedence order (highest first).

    Search order:
        1. ``GITLAB_SYNC_CONFIG`` env var (explicit single path)
        2. ``.gitlab_sync/config.yml`` in CWD (project-level)
        3. ``.gitlab_sync/config.yaml`` in CWD (alternate extension)
        4. ``~/.config/gitlab_sync/config.yml`` (XDG global)

    Only paths that exist on disk are returned.
    """
    candidates: list[Path] = []

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        candidates.append(Path(env_path).expanduser().resolve())

    cwd = Path.cwd()
    candidates.append(cwd / PROJECT_CONFIG_DIR / "config.yml")
    candidates.append(cwd / PROJECT_CONFIG_DIR / "config.yaml")
    candidates.append(Path.home() / ".config" / "gitlab_sync" / "config.yml")

    return [p for p in candidates if p.exists()]


# ---------------------------------------------------------------------------
# 3a. Config bootstrapping
# ---------------------------------------------------------------------------

_STARTER_CONFIG = """\
# redmine-gitlab-sync configuration
#
# Connection settings can also be set via environment variables:
#   GITLAB_API_URL, GITLAB_API_TOKEN, REDMINE_URL, REDMINE_API_KEY,
#   REDMINE_SYS_API_KEY, REDMINE_EXTERNAL_URL
#
# gitlab:
#   url: https://gitlab.example.com
#   token: ${GITLAB_API_TOKEN}
#   identity_provider: openid_connect
#
# redmine:
#   url: http://redmine:3000
#   api_key: ${REDMINE_API_KEY}
#   external_url: https://redmine.example.com
#   external_uid_field: SSO UID
#
# storage:
#   gitlab_root: /var/opt/gitlab/git-data/repositories/repositories
#   redmine_root: /var/opt/gitlab/git-data/repositories/repositories
#
# sync:
#   state_dir: .gitlab_sync
#   workers: 2
#   manage_badges: false
#   configure_integration: false
#
# logging:
#   level: INFO
#   file: null
"""


def resolve_config_path() -> Path:
    """Return the config file that is (or would be) used.

    The highest-precedence existing file, else
    ``CWD / .gitlab_sync / config.yml``.  Nothing is created.
    """
    existing = discover_config_files()
    if existing:
        return existing[0]
    return Path.cwd() / PROJECT_CONFIG_DIR / "config.yml"


def ensure_config(target: Path | None = None) -> Path:
    """Ensure a config file exists, writing a commented starter file if not.

    Args:
        target: Explicit path to create.  Defaults to
            ``resolve_config_path()``.

    Returns:
        Path to the config file (existing or newly created).
    """
    existing = discover_config_files()
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    config_path = target or resolve_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", config_path)
    return config_path


# ---------------------------------------------------------------------------
# 4. Hierarchical merge
# ---------------------------------------------------------------------------


def load_hierarchical_config() -> dict[str, Any]:
    """Load and merge all discovered config files.

    Files load from lowest precedence to highest; each file's top-level
    keys replace (not deep-merge) earlier ones.  Env var interpolation
    runs after the merge.

    Returns an empty dict when no config files exist (zero-config).
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using zero-config defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        try:
            data = _load_yaml_with_includes(path)
        except Exception:
            logger.exception("Failed to load config file %s", path)
            raise

        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Config file %s has non-dict root (%s), skipping",
                path,
                type(data).__name__,
            )

    return _interpolate_recursive(merged)
