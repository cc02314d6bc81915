"""Configure GitLab's built-in Redmine issue-tracker integration."""

from __future__ import annotations

import logging
from typing import Protocol

from .models import IntegrationJob, TrackerProject

logger = logging.getLogger(__name__)


class _IntegrationApi(Protocol):
    def configure_redmine_integration(
        self,
        project_id: int,
        project_url: str,
        issues_url: str,
        new_issue_url: str,
    ) -> dict: ...


class _ProjectSource(Protocol):
    def get_project(self, project_id: int) -> TrackerProject | None: ...


def integration_urls(redmine_url: str, identifier: str) -> dict[str, str]:
    base = redmine_url.rstrip("/")
    return {
        "project_url": f"{base}/projects/{identifier}",
        "issues_url": f"{base}/issues/:id",
        "new_issue_url": f"{base}/projects/{identifier}/issues/new",
    }


class RedmineIntegrationConfigurator:
    """Point a GitLab project's issue links at its Redmine project."""

    def __init__(
        self, client: _IntegrationApi, tracker: _ProjectSource, redmine_external_url: str
    ):
        self._client = client
        self._tracker = tracker
        self._redmine_url = redmine_external_url

    def apply(self, job: IntegrationJob) -> dict | None:
        """Configure the integration.  Returns ``None`` if the project is gone.

        Raises:
            HostingApiError: GitLab rejected the configuration.
        """
        project = self._tracker.get_project(job.tracker_project_id)
        if project is None:
            logger.error("Redmine project %s not found", job.tracker_project_id)
            return None
        urls = integration_urls(self._redmine_url, project.identifier)
        self._client.configure_redmine_integration(job.hosting_project_id, **urls)
        logger.info(
            "Configured Redmine integration on GitLab project %s -> %s",
            job.hosting_project_id,
            urls["project_url"],
        )
        return urls
