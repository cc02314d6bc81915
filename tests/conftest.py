"""Shared pytest fixtures for redmine-gitlab-sync tests."""

from __future__ import annotations

import pytest

from redmine_gitlab_sync.config import Config
from redmine_gitlab_sync.errors import HostingApiError
from redmine_gitlab_sync.sync.access import AccessLevelCalculator
from redmine_gitlab_sync.sync.identity import IdentityResolver
from redmine_gitlab_sync.sync.mapping import GroupMappingIndex
from redmine_gitlab_sync.sync.membership import MembershipReconciler
from redmine_gitlab_sync.sync.models import (
    TrackerMembership,
    TrackerProject,
    TrackerUser,
)
from redmine_gitlab_sync.sync.store import JsonStateStore


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require live GitLab and Redmine instances",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring live GitLab and Redmine instances"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeGitLab:
    """In-memory GitLab with the endpoints the engine uses.

    Membership endpoints behave like GitLab: adding an existing member is a
    409, updating or removing a non-member is a 404.  ``fail`` maps a method
    name to an exception raised on its next call.
    """

    def __init__(self) -> None:
        self.users: list[dict] = []
        self.groups: dict[int, dict] = {}
        self.projects: dict[int, dict] = {}
        self.members: dict[int, dict[int, int]] = {}
        self.badges: dict[int, list[dict]] = {}
        self.integrations: dict[int, dict] = {}
        self.calls: list[tuple] = []
        self.fail: dict[str, Exception] = {}
        self._next_badge_id = 1

    def add_user(
        self,
        user_id: int,
        username: str,
        email: str | None = None,
        extern_uid: str | None = None,
        provider: str = "openid_connect",
    ) -> dict:
        user = {"id": user_id, "username": username, "email": email, "identities": []}
        if extern_uid:
            user["identities"].append({"extern_uid": extern_uid, "provider": provider})
        self.users.append(user)
        return user

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        error = self.fail.pop(name, None)
        if error is not None:
            raise error

    def calls_to(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    # Server, groups, projects

    def get_version(self) -> str:
        self._record("get_version")
        return "16.11.0"

    def list_groups(self) -> list[dict]:
        self._record("list_groups")
        return list(self.groups.values())

    def list_group_projects(self, group_id: int) -> list[dict]:
        self._record("list_group_projects", group_id)
        return [p for p in self.projects.values() if p.get("namespace_id") == group_id]

    # Members

    def add_group_member(self, group_id: int, user_id: int, access_level: int) -> dict:
        self._record("add_group_member", group_id, user_id, access_level)
        group = self.members.setdefault(group_id, {})
        if user_id in group:
            raise HostingApiError(
                "GitLab POST returned HTTP 409",
                status_code=409,
                body='{"message":"Member already exists"}',
            )
        group[user_id] = access_level
        return {"id": user_id, "access_level": access_level}

    def update_group_member(self, group_id: int, user_id: int, access_level: int) -> dict:
        self._record("update_group_member", group_id, user_id, access_level)
        group = self.members.setdefault(group_id, {})
        if user_id not in group:
            raise HostingApiError(
                "GitLab PUT returned HTTP 404", status_code=404, body="404 Not found"
            )
        group[user_id] = access_level
        return {"id": user_id, "access_level": access_level}

    def remove_group_member(self, group_id: int, user_id: int) -> None:
        self._record("remove_group_member", group_id, user_id)
        group = self.members.setdefault(group_id, {})
        if user_id not in group:
            raise HostingApiError(
                "GitLab DELETE returned HTTP 404", status_code=404, body="404 Not found"
            )
        del group[user_id]

    # Users

    def find_user_by_external_identity(self, extern_uid: str, provider: str) -> dict | None:
        self._record("find_user_by_external_identity", extern_uid, provider)
        for user in self.users:
            for identity in user["identities"]:
                if identity == {"extern_uid": extern_uid, "provider": provider}:
                    return user
        return None

    def find_user_by_username(self, username: str) -> dict | None:
        self._record("find_user_by_username", username)
        for user in self.users:
            if user["username"] == username:
                return user
        return None

    def find_users_by_email(self, email: str) -> list[dict]:
        self._record("find_users_by_email", email)
        needle = email.lower()
        return [
            u
            for u in self.users
            if needle in (u.get("email") or "").lower() or needle in u["username"]
        ]

    # Badges

    def list_group_badges(self, group_id: int) -> list[dict]:
        self._record("list_group_badges", group_id)
        return list(self.badges.get(group_id, []))

    def add_group_badge(self, group_id: int, name: str, link_url: str, image_url: str) -> dict:
        self._record("add_group_badge", group_id, name, link_url, image_url)
        # duplicates are accepted, as GitLab does
        badges = self.badges.setdefault(group_id, [])
        badge = {
            "id": self._next_badge_id,
            "name": name,
            "link_url": link_url,
            "image_url": image_url,
        }
        self._next_badge_id += 1
        badges.append(badge)
        return badge

    def delete_group_badge(self, group_id: int, badge_id: int) -> None:
        self._record("delete_group_badge", group_id, badge_id)
        badges = self.badges.get(group_id, [])
        self.badges[group_id] = [b for b in badges if b["id"] != badge_id]

    # Integrations

    def configure_redmine_integration(
        self, project_id: int, project_url: str, issues_url: str, new_issue_url: str
    ) -> dict:
        self._record(
            "configure_redmine_integration",
            project_id,
            project_url,
            issues_url,
            new_issue_url,
        )
        settings = {
            "project_url": project_url,
            "issues_url": issues_url,
            "new_issue_url": new_issue_url,
        }
        self.integrations[project_id] = settings
        return settings


class FakeRedmine:
    """In-memory Redmine directory.

    ``memberships`` maps ``(user_id, project_id)`` to role names.
    """

    def __init__(self) -> None:
        self.projects: dict[int, TrackerProject] = {}
        self.users: dict[int, TrackerUser] = {}
        self.memberships: dict[tuple[int, int], list[str]] = {}
        self.imports: list[tuple[int, str]] = []
        self.import_error: Exception | None = None

    def add_project(self, project_id: int, identifier: str, parent_id: int | None = None) -> TrackerProject:
        project = TrackerProject(
            id=project_id, identifier=identifier, name=identifier.title(), parent_id=parent_id
        )
        self.projects[project_id] = project
        return project

    def add_user(self, user_id: int, login: str, mail: str | None = None, active: bool = True, external_uid: str | None = None) -> TrackerUser:
        user = TrackerUser(
            id=user_id, login=login, mail=mail, active=active, external_uid=external_uid
        )
        self.users[user_id] = user
        return user

    def add_member(self, user_id: int, project_id: int, *roles: str) -> None:
        self.memberships[(user_id, project_id)] = list(roles)

    def get_project(self, project_id: int) -> TrackerProject | None:
        return self.projects.get(project_id)

    def get_user(self, user_id: int) -> TrackerUser | None:
        return self.users.get(user_id)

    def list_memberships(self, project_id: int) -> list[TrackerMembership]:
        return [
            TrackerMembership(project_id=pid, user=self.users[uid], roles=roles)
            for (uid, pid), roles in sorted(self.memberships.items())
            if pid == project_id and uid in self.users
        ]

    def member_role_names(self, user_id: int, project_ids) -> set[str]:
        wanted = set(project_ids)
        names: set[str] = set()
        for (uid, pid), roles in self.memberships.items():
            if uid == user_id and pid in wanted:
                names.update(roles)
        return names

    def has_membership(self, user_id: int, project_ids) -> bool:
        wanted = set(project_ids)
        return any(uid == user_id and pid in wanted for uid, pid in self.memberships)

    def import_repository(self, project_id: int, url: str) -> None:
        if self.import_error is not None:
            raise self.import_error
        self.imports.append((project_id, url))


class RecordingQueue:
    """TaskQueue that records ``(job, delay)`` pairs instead of running them."""

    def __init__(self) -> None:
        self.items: list[tuple[object, float]] = []

    def enqueue(self, job, delay: float = 0.0) -> None:
        self.items.append((job, delay))

    def jobs(self, kind: type | None = None) -> list:
        return [j for j, _ in self.items if kind is None or isinstance(j, kind)]

    def clear(self) -> None:
        self.items.clear()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def config(tmp_path):
    """A valid Config pointing storage and state at ``tmp_path``."""
    return Config(
        gitlab_url="https://gitlab.example.com",
        gitlab_token="glpat-test",
        redmine_url="https://redmine.example.com",
        redmine_api_key="redmine-key",
        redmine_external_url="https://redmine.example.com",
        storage_root=str(tmp_path / "repositories"),
        repository_root="/srv/git/repositories",
        state_dir=str(tmp_path / "state"),
    )


@pytest.fixture
def store(tmp_path):
    return JsonStateStore(tmp_path / "state")


@pytest.fixture
def gitlab():
    return FakeGitLab()


@pytest.fixture
def redmine():
    return FakeRedmine()


@pytest.fixture
def queue():
    return RecordingQueue()


@pytest.fixture
def mapping_index(store, redmine):
    return GroupMappingIndex(store, redmine)


@pytest.fixture
def identity(gitlab, store):
    return IdentityResolver(gitlab, store)


@pytest.fixture
def calculator(mapping_index, redmine):
    return AccessLevelCalculator(mapping_index, redmine)


@pytest.fixture
def reconciler(gitlab, identity, calculator, redmine):
    return MembershipReconciler(gitlab, identity, calculator, redmine)
