"""Runtime configuration for the GitLab sync engine.

Reads GitLab and Redmine connection settings from CLI args, environment
variables, .env files, and YAML config file fallbacks.  The result is
assembled once at startup and passed to every component's constructor.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    GITLAB_API_URL: GitLab base URL (required)
    GITLAB_API_TOKEN: GitLab personal/admin access token (required)
    REDMINE_URL: Redmine base URL for REST calls (required)
    REDMINE_API_KEY: Redmine REST API key (required)
    REDMINE_SYS_API_KEY: Redmine repository web-service key (optional)
    REDMINE_EXTERNAL_URL: Redmine URL as users see it, used in badges and
        GitLab integration links (optional, default: http://localhost:8087)
    GITLAB_STORAGE_ROOT: GitLab repository storage as mounted here
    REDMINE_REPOSITORY_ROOT: Same storage as mounted on the Redmine host
    GITLAB_SYNC_STATE_DIR: Directory for the JSON state store
    GITLAB_SYNC_WORKERS: Number of queue worker threads (1-32, default: 2)
    GITLAB_INSECURE: Skip SSL verification (optional, default: false)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_ROOT = "/var/opt/gitlab/git-data/repositories/repositories"
DEFAULT_REDMINE_EXTERNAL_URL = "http://localhost:8087"


@dataclass
class Config:
    gitlab_url: str
    gitlab_token: str
    redmine_url: str
    redmine_api_key: str
    redmine_sys_api_key: str | None = None
    redmine_external_url: str = DEFAULT_REDMINE_EXTERNAL_URL
    identity_provider: str = "openid_connect"
    external_uid_field: str | None = None
    storage_root: str = DEFAULT_STORAGE_ROOT
    repository_root: str = DEFAULT_STORAGE_ROOT
    state_dir: str = ".gitlab_sync"
    workers: int = 2
    manage_badges: bool = False
    configure_integration: bool = False
    insecure: bool = False
    debug: bool = False


def _validate_url(name: str, value: str) -> str:
    value = value.strip()
    if not value.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid {name} '{value}': must start with http:// or https://"
        )
    if not urlparse(value).hostname:
        raise ValueError(f"Invalid {name} '{value}': URL must include a hostname")
    return value.removesuffix("/")


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Normalises URLs (strips whitespace and a trailing slash) in place.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If a URL is malformed, a credential is empty, or the
            worker count is out of range.
    """
    config.gitlab_url = _validate_url("GitLab URL", config.gitlab_url)
    config.redmine_url = _validate_url("Redmine URL", config.redmine_url)
    config.redmine_external_url = _validate_url(
        "Redmine external URL", config.redmine_external_url
    )

    if not config.gitlab_token.strip():
        raise ValueError(
            "GitLab token cannot be empty. Set GITLAB_API_TOKEN environment variable."
        )
    if not config.redmine_api_key.strip():
        raise ValueError(
            "Redmine API key cannot be empty. Set REDMINE_API_KEY environment variable."
        )

    if not (1 <= config.workers <= 32):
        raise ValueError(
            f"Invalid worker count {config.workers}: must be between 1 and 32"
        )

    config.storage_root = config.storage_root.rstrip("/") or "/"
    config.repository_root = config.repository_root.rstrip("/") or "/"

    if config.insecure:
        logger.warning(
            "WARNING: SSL verification disabled (insecure=True). Use only for development."
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _required(cli: str | None, env_key: str, fallback, label: str, yaml_key: str) -> str:
    value = cli or os.getenv(env_key) or fallback
    if not value:
        raise ValueError(
            f"{label} not found. Set {env_key} environment variable, "
            f"pass the CLI argument, or add '{yaml_key}' to config.yml."
        )
    return str(value).strip()


def load_config(
    gitlab_url: str | None = None,
    gitlab_token: str | None = None,
    redmine_url: str | None = None,
    redmine_api_key: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        gitlab_url: Override GitLab URL.
        gitlab_token: Override GitLab token.
        redmine_url: Override Redmine URL.
        redmine_api_key: Override Redmine API key.
        insecure: Skip SSL verification (CLI flag).
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Sections from the YAML config (``gitlab``,
            ``redmine``, ``storage``, ``sync``).  Used when CLI arg and env
            var are both unset.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If required config is missing after checking all sources,
            or a value is invalid.
    """
    fb = yaml_fallbacks or {}
    gl = fb.get("gitlab") or {}
    rm = fb.get("redmine") or {}
    st = fb.get("storage") or {}
    sy = fb.get("sync") or {}

    # --- Required strings: CLI > env > YAML > error ---

    final_gitlab_url = _required(
        gitlab_url, "GITLAB_API_URL", gl.get("url"), "GitLab URL", "gitlab.url"
    )
    final_gitlab_token = _required(
        gitlab_token, "GITLAB_API_TOKEN", gl.get("token"), "GitLab token", "gitlab.token"
    )
    final_redmine_url = _required(
        redmine_url, "REDMINE_URL", rm.get("url"), "Redmine URL", "redmine.url"
    )
    final_redmine_key = _required(
        redmine_api_key,
        "REDMINE_API_KEY",
        rm.get("api_key"),
        "Redmine API key",
        "redmine.api_key",
    )

    # --- Optional strings: env > YAML > default ---

    sys_key = os.getenv("REDMINE_SYS_API_KEY") or rm.get("sys_api_key")
    external_url = (
        os.getenv("REDMINE_EXTERNAL_URL")
        or rm.get("external_url")
        or DEFAULT_REDMINE_EXTERNAL_URL
    )
    storage_root = (
        os.getenv("GITLAB_STORAGE_ROOT") or st.get("gitlab_root") or DEFAULT_STORAGE_ROOT
    )
    repository_root = (
        os.getenv("REDMINE_REPOSITORY_ROOT") or st.get("redmine_root") or storage_root
    )
    state_dir = os.getenv("GITLAB_SYNC_STATE_DIR") or sy.get("state_dir") or ".gitlab_sync"

    # --- Boolean fields: CLI > env > YAML > default ---

    if insecure:
        final_insecure = True
    else:
        env_insecure = _get_bool_env("GITLAB_INSECURE")
        final_insecure = (
            env_insecure if env_insecure is not None else bool(gl.get("insecure", False))
        )

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("GITLAB_SYNC_DEBUG")
        final_debug = env_debug if env_debug is not None else bool(sy.get("debug", False))

    # --- Numeric fields: env > YAML > default ---

    workers_raw = os.getenv("GITLAB_SYNC_WORKERS")
    if workers_raw is not None:
        try:
            final_workers = int(workers_raw)
        except ValueError:
            raise ValueError(
                f"Invalid GITLAB_SYNC_WORKERS '{workers_raw}': must be a number between 1 and 32"
            ) from None
    elif "workers" in sy:
        final_workers = int(sy["workers"])
    else:
        final_workers = 2

    config = Config(
        gitlab_url=final_gitlab_url,
        gitlab_token=final_gitlab_token,
        redmine_url=final_redmine_url,
        redmine_api_key=final_redmine_key,
        redmine_sys_api_key=sys_key,
        redmine_external_url=external_url,
        identity_provider=gl.get("identity_provider") or "openid_connect",
        external_uid_field=rm.get("external_uid_field"),
        storage_root=storage_root,
        repository_root=repository_root,
        state_dir=state_dir,
        workers=final_workers,
        manage_badges=bool(sy.get("manage_badges", False)),
        configure_integration=bool(sy.get("configure_integration", False)),
        insecure=final_insecure,
        debug=final_debug,
    )

    validate_config(config)

    return config
