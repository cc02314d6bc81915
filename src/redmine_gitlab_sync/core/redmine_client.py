"""Redmine REST access: the engine's source of truth for projects and members."""

import logging
import threading
from typing import Any, Iterable

import requests

from ..config import Config
from ..errors import StorageError
from ..sync.models import TrackerMembership, TrackerProject, TrackerUser

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30
PAGE_SIZE = 100
STATUS_ACTIVE = 1


class RedmineClient:
    """Read projects, users and memberships from Redmine.

    Failures raise :class:`StorageError`; a 404 on a single-object lookup
    returns ``None`` instead.
    """

    def __init__(self, config: Config):
        self.config = config
        self.base_url = config.redmine_url.rstrip("/")
        self._thread_local = threading.local()

    def _get_session(self) -> requests.Session:
        if not hasattr(self._thread_local, "session"):
            session = requests.Session()
            session.headers["X-Redmine-API-Key"] = self.config.redmine_api_key
            session.verify = not self.config.insecure
            self._thread_local.session = session
        return self._thread_local.session

    def _request(
        self, method: str, path: str, allow_404: bool = False, **kwargs
    ) -> Any:
        try:
            response = self._get_session().request(
                method, f"{self.base_url}{path}", timeout=REQUEST_TIMEOUT, **kwargs
            )
        except requests.RequestException as e:
            raise StorageError(f"Redmine {method} {path} failed: {e}") from e
        if allow_404 and response.status_code == 404:
            return None
        if not response.ok:
            raise StorageError(
                f"Redmine {method} {path} returned HTTP {response.status_code}"
            )
        if not response.content.strip():
            return {}
        return response.json()

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def get_project(self, project_id: int) -> TrackerProject | None:
        data = self._request("GET", f"/projects/{project_id}.json", allow_404=True)
        if data is None:
            return None
        project = data["project"]
        return TrackerProject(
            id=project["id"],
            identifier=project["identifier"],
            name=project.get("name", ""),
            parent_id=(project.get("parent") or {}).get("id"),
        )

    def list_memberships(self, project_id: int) -> list[TrackerMembership]:
        """Active and locked user memberships of a project (groups skipped)."""
        memberships = []
        users: dict[int, TrackerUser | None] = {}
        for row in self._paginate(f"/projects/{project_id}/memberships.json", "memberships"):
            user_ref = row.get("user")
            if not user_ref:
                continue
            user_id = user_ref["id"]
            if user_id not in users:
                users[user_id] = self.get_user(user_id)
            user = users[user_id]
            if user is None:
                continue
            memberships.append(
                TrackerMembership(
                    project_id=project_id,
                    user=user,
                    roles=[r["name"] for r in row.get("roles", [])],
                )
            )
        return memberships

    def _paginate(self, path: str, key: str) -> Iterable[dict]:
        offset = 0
        while True:
            data = self._request(
                "GET", path, params={"limit": PAGE_SIZE, "offset": offset}
            )
            rows = data.get(key, [])
            yield from rows
            offset += len(rows)
            if not rows or offset >= data.get("total_count", 0):
                return

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_user(self, user_id: int) -> TrackerUser | None:
        data = self._request(
            "GET",
            f"/users/{user_id}.json",
            allow_404=True,
            params={"include": "memberships"},
        )
        if data is None:
            return None
        return self._to_user(data["user"])

    def _to_user(self, user: dict) -> TrackerUser:
        external_uid = None
        field_name = self.config.external_uid_field
        if field_name:
            for field in user.get("custom_fields", []):
                if field.get("name") == field_name and field.get("value"):
                    external_uid = str(field["value"])
                    break
        return TrackerUser(
            id=user["id"],
            login=user["login"],
            mail=user.get("mail"),
            active=user.get("status", STATUS_ACTIVE) == STATUS_ACTIVE,
            external_uid=external_uid,
        )

    def _user_memberships(self, user_id: int) -> list[dict]:
        data = self._request(
            "GET",
            f"/users/{user_id}.json",
            allow_404=True,
            params={"include": "memberships"},
        )
        if data is None:
            return []
        return data["user"].get("memberships", [])

    def member_role_names(self, user_id: int, project_ids: Iterable[int]) -> set[str]:
        """Union of role names the user holds across ``project_ids``."""
        wanted = set(project_ids)
        names: set[str] = set()
        for membership in self._user_memberships(user_id):
            if membership.get("project", {}).get("id") in wanted:
                names.update(r["name"] for r in membership.get("roles", []))
        return names

    def has_membership(self, user_id: int, project_ids: Iterable[int]) -> bool:
        wanted = set(project_ids)
        return any(
            m.get("project", {}).get("id") in wanted
            for m in self._user_memberships(user_id)
        )

    # ------------------------------------------------------------------
    # Repositories (sys web service)
    # ------------------------------------------------------------------

    def import_repository(self, project_id: int, url: str) -> None:
        """Register ``url`` as the project's Git repository and fetch history.

        Needs ``redmine_sys_api_key``; without it the import is skipped.
        """
        key = self.config.redmine_sys_api_key
        if not key:
            logger.warning(
                "REDMINE_SYS_API_KEY not set, skipping repository import for project %s",
                project_id,
            )
            return
        project = self.get_project(project_id)
        if project is None:
            raise StorageError(f"Redmine project {project_id} not found")
        self._request(
            "POST",
            f"/sys/projects/{project.identifier}/repository.json",
            params={"key": key},
            data={"vendor": "Git", "repository[url]": url},
        )
        self._request(
            "GET",
            "/sys/fetch_changesets",
            params={"key": key, "id": project.identifier},
        )
        logger.info("Imported repository %s into project %s", url, project.identifier)
