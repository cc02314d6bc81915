"""Smoke tests against real GitLab and Redmine instances.

Run with ``pytest --run-live`` after exporting GITLAB_API_URL,
GITLAB_API_TOKEN, REDMINE_URL and REDMINE_API_KEY.  Read-only.
"""

import pytest
from dotenv import load_dotenv

from redmine_gitlab_sync.config import load_config
from redmine_gitlab_sync.core import GitLabClient, RedmineClient

pytestmark = pytest.mark.live


@pytest.fixture(scope="module")
def live_config():
    load_dotenv()
    return load_config()


def test_gitlab_version(live_config):
    version = GitLabClient(live_config).get_version()
    assert version and version != "unknown"


def test_gitlab_groups_listable(live_config):
    groups = GitLabClient(live_config).list_groups()
    assert all({"id", "name", "path"} <= set(g) for g in groups)


def test_redmine_missing_project_is_none(live_config):
    assert RedmineClient(live_config).get_project(2**31 - 1) is None
