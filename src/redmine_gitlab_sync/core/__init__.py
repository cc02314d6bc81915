"""HTTP clients for GitLab and Redmine shared by the engine and MCP server."""

from .async_utils import run_sync
from .gitlab_client import GitLabClient
from .redmine_client import RedmineClient

__all__ = ["GitLabClient", "RedmineClient", "run_sync"]
