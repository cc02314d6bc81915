"""GitLab group badges linking back to the Redmine project."""

from __future__ import annotations

import logging
from typing import Protocol

from ..errors import HostingApiError
from .models import BadgeAction, BadgeJob, TrackerProject

logger = logging.getLogger(__name__)

BADGE_NAME = "Redmine Project"


class _BadgeApi(Protocol):
    def list_group_badges(self, group_id: int) -> list[dict]: ...

    def add_group_badge(
        self, group_id: int, name: str, link_url: str, image_url: str
    ) -> dict: ...

    def delete_group_badge(self, group_id: int, badge_id: int) -> None: ...


class _ProjectSource(Protocol):
    def get_project(self, project_id: int) -> TrackerProject | None: ...


class GroupBadgeManager:
    """Add, remove and move the "Redmine Project" badge on GitLab groups.

    Args:
        client: GitLab badge endpoints.
        tracker: Resolves Redmine project ids to identifiers.
        redmine_external_url: Redmine base URL as users see it.
    """

    def __init__(self, client: _BadgeApi, tracker: _ProjectSource, redmine_external_url: str):
        self._client = client
        self._tracker = tracker
        self._redmine_url = redmine_external_url.rstrip("/")

    def badge_link(self, project: TrackerProject) -> str:
        return f"{self._redmine_url}/projects/{project.identifier}"

    def apply(self, job: BadgeJob) -> None:
        logger.info(
            "Badge %s for GitLab group %s", job.action.value, job.hosting_group_id
        )
        match job.action:
            case BadgeAction.ADD | BadgeAction.UPDATE:
                project = self._project(job.tracker_project_id)
                if project is not None:
                    self.add(job.hosting_group_id, project)
            case BadgeAction.REMOVE:
                self.remove(job.hosting_group_id)
            case BadgeAction.MIGRATE:
                if job.old_group_id is not None:
                    self.remove(job.old_group_id)
                project = self._project(job.tracker_project_id)
                if project is not None:
                    self.add(job.hosting_group_id, project)

    def add(self, group_id: int, project: TrackerProject) -> str:
        """Add the badge; an existing badge counts as success.

        GitLab accepts duplicate group badges, so the group is checked
        first.  A badge pointing at another project is replaced.

        Returns:
            The badge link URL.
        """
        link = self.badge_link(project)
        existing = self.find(group_id)
        if existing is not None:
            if existing.get("link_url") == link:
                logger.info("Badge already present on group %s", group_id)
                return link
            logger.info(
                "Replacing badge %s on group %s (was %s)",
                existing["id"],
                group_id,
                existing.get("link_url"),
            )
            self._client.delete_group_badge(group_id, existing["id"])
        try:
            self._client.add_group_badge(
                group_id,
                name=BADGE_NAME,
                link_url=link,
                image_url=f"{self._redmine_url}/favicon.ico",
            )
        except HostingApiError as e:
            if e.status_code == 400 and "already exists" in e.body.lower():
                logger.info("Badge already present on group %s", group_id)
                return link
            raise
        logger.info("Added badge %s to group %s", link, group_id)
        return link

    def remove(self, group_id: int) -> bool:
        """Delete the badge if present.  Returns ``False`` when none was found."""
        badge = self.find(group_id)
        if badge is None:
            logger.info("No Redmine badge on group %s", group_id)
            return False
        try:
            self._client.delete_group_badge(group_id, badge["id"])
        except HostingApiError as e:
            if not e.is_not_found:
                raise
        logger.info("Removed badge %s from group %s", badge["id"], group_id)
        return True

    def find(self, group_id: int, name: str = BADGE_NAME) -> dict | None:
        for badge in self._client.list_group_badges(group_id):
            if badge.get("name") == name:
                return badge
        return None

    def _project(self, project_id: int | None) -> TrackerProject | None:
        project = self._tracker.get_project(project_id) if project_id else None
        if project is None:
            logger.error("Redmine project %s not found", project_id)
        return project
