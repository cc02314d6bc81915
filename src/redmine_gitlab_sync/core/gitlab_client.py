import logging
import re
import threading
from typing import Any

import requests

from ..config import Config
from ..errors import HostingApiError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30
MAX_BODY_LOG = 500


class GitLabClient:
    """Thin wrapper over the GitLab REST API (v4).

    Every call uses a fixed 30-second timeout.  Non-2xx answers raise
    :class:`HostingApiError` carrying the status and body; transport
    failures raise it with ``status_code=None``.  Callers decide which
    statuses mean "already done".
    """

    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.api_url = f"{config.gitlab_url.rstrip('/')}/api/v4"

    @property
    def session(self) -> requests.Session:
        """The current thread's session."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers["Private-Token"] = self.config.gitlab_token
        session.verify = not self.config.insecure
        return session

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.api_url}{path}"
        try:
            response = self._get_session().request(
                method, url, timeout=REQUEST_TIMEOUT, **kwargs
            )
        except requests.RequestException as e:
            raise HostingApiError(f"GitLab {method} {path} failed: {e}") from e

        logger.debug("GitLab %s %s -> %s", method, path, response.status_code)
        if not 200 <= response.status_code < 300:
            body = response.text[:MAX_BODY_LOG]
            raise HostingApiError(
                f"GitLab {method} {path} returned HTTP {response.status_code}: {body}",
                status_code=response.status_code,
                body=body,
            )
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    def get_version(self) -> str:
        """Return the GitLab version string (also a connectivity check)."""
        return self._request("GET", "/version").get("version", "unknown")

    # ------------------------------------------------------------------
    # Groups and projects
    # ------------------------------------------------------------------

    def list_groups(self) -> list[dict]:
        groups = self._request(
            "GET", "/groups", params={"per_page": 100, "all_available": True}
        )
        return [
            {"id": g["id"], "name": g["name"], "path": g["path"]} for g in groups
        ]

    def create_group(self, name: str, path: str | None = None) -> dict:
        path = path or re.sub(r"[^a-z0-9\-_]", "-", name.lower())
        return self._request(
            "POST",
            "/groups",
            json={"name": name, "path": path, "visibility": "internal"},
        )

    def get_project(self, project_id: int) -> dict:
        return self._request("GET", f"/projects/{project_id}")

    def list_group_projects(self, group_id: int) -> list[dict]:
        return self._request(
            "GET", f"/groups/{group_id}/projects", params={"per_page": 100}
        )

    def create_project_in_group(
        self,
        group_id: int,
        name: str,
        description: str = "",
        init_with_readme: bool = False,
        is_public: bool = False,
    ) -> dict:
        return self._request(
            "POST",
            "/projects",
            json={
                "name": name,
                "description": description,
                "visibility": "public" if is_public else "internal",
                "initialize_with_readme": init_with_readme,
                "namespace_id": group_id,
            },
        )

    # ------------------------------------------------------------------
    # Group members
    # ------------------------------------------------------------------

    def add_group_member(self, group_id: int, user_id: int, access_level: int) -> dict:
        """Add a member.  409 means the user is already a member."""
        return self._request(
            "POST",
            f"/groups/{group_id}/members",
            json={"user_id": user_id, "access_level": access_level},
        )

    def update_group_member(
        self, group_id: int, user_id: int, access_level: int
    ) -> dict:
        return self._request(
            "PUT",
            f"/groups/{group_id}/members/{user_id}",
            json={"access_level": access_level},
        )

    def remove_group_member(self, group_id: int, user_id: int) -> None:
        """Remove a member.  404 means the user was not a member."""
        self._request("DELETE", f"/groups/{group_id}/members/{user_id}")

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def find_user_by_external_identity(
        self, extern_uid: str, provider: str
    ) -> dict | None:
        users = self._request(
            "GET", "/users", params={"extern_uid": extern_uid, "provider": provider}
        )
        return users[0] if users else None

    def find_user_by_username(self, username: str) -> dict | None:
        users = self._request("GET", "/users", params={"username": username})
        return users[0] if users else None

    def find_users_by_email(self, email: str) -> list[dict]:
        """Search users by email.  GitLab's search is fuzzy; filter the result."""
        return self._request("GET", "/users", params={"search": email}) or []

    # ------------------------------------------------------------------
    # Badges
    # ------------------------------------------------------------------

    def list_group_badges(self, group_id: int) -> list[dict]:
        return self._request("GET", f"/groups/{group_id}/badges") or []

    def add_group_badge(
        self, group_id: int, name: str, link_url: str, image_url: str
    ) -> dict:
        return self._request(
            "POST",
            f"/groups/{group_id}/badges",
            json={"name": name, "link_url": link_url, "image_url": image_url},
        )

    def delete_group_badge(self, group_id: int, badge_id: int) -> None:
        self._request("DELETE", f"/groups/{group_id}/badges/{badge_id}")

    # ------------------------------------------------------------------
    # Integrations
    # ------------------------------------------------------------------

    def configure_redmine_integration(
        self,
        project_id: int,
        project_url: str,
        issues_url: str,
        new_issue_url: str,
    ) -> dict:
        return self._request(
            "PUT",
            f"/projects/{project_id}/integrations/redmine",
            json={
                "project_url": project_url,
                "issues_url": issues_url,
                "new_issue_url": new_issue_url,
            },
        )
