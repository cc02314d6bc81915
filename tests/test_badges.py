"""Tests for GroupBadgeManager and RedmineIntegrationConfigurator."""

import pytest

from redmine_gitlab_sync.errors import HostingApiError
from redmine_gitlab_sync.sync.badges import BADGE_NAME, GroupBadgeManager
from redmine_gitlab_sync.sync.integration import (
    RedmineIntegrationConfigurator,
    integration_urls,
)
from redmine_gitlab_sync.sync.models import BadgeAction, BadgeJob, IntegrationJob

REDMINE = "https://redmine.example.com"


@pytest.fixture
def badges(gitlab, redmine):
    redmine.add_project(5, "alpha")
    return GroupBadgeManager(gitlab, redmine, REDMINE + "/")


class TestBadges:
    def test_add(self, badges, gitlab, redmine):
        badges.apply(BadgeJob(action=BadgeAction.ADD, hosting_group_id=10, tracker_project_id=5))
        (badge,) = gitlab.badges[10]
        assert badge["name"] == BADGE_NAME
        assert badge["link_url"] == f"{REDMINE}/projects/alpha"
        assert badge["image_url"] == f"{REDMINE}/favicon.ico"

    def test_add_twice_is_success(self, badges, gitlab, redmine):
        project = redmine.get_project(5)
        badges.add(10, project)
        assert badges.add(10, project) == f"{REDMINE}/projects/alpha"
        assert len(gitlab.badges[10]) == 1

    def test_redelivered_add_job_keeps_one_badge(self, badges, gitlab):
        job = BadgeJob(action=BadgeAction.ADD, hosting_group_id=10, tracker_project_id=5)
        badges.apply(job)
        badges.apply(job)
        assert len(gitlab.badges[10]) == 1
        assert len(gitlab.calls_to("add_group_badge")) == 1

    def test_badge_for_other_project_is_replaced(self, badges, gitlab, redmine):
        redmine.add_project(6, "beta")
        badges.add(10, redmine.get_project(5))
        badges.apply(BadgeJob(action=BadgeAction.UPDATE, hosting_group_id=10, tracker_project_id=6))
        (badge,) = gitlab.badges[10]
        assert badge["link_url"] == f"{REDMINE}/projects/beta"

    def test_already_exists_answer_is_success(self, badges, gitlab, redmine):
        gitlab.fail["add_group_badge"] = HostingApiError(
            "dup", status_code=400, body='{"message":"Badge already exists"}'
        )
        assert badges.add(10, redmine.get_project(5)) == f"{REDMINE}/projects/alpha"

    def test_other_400_propagates(self, badges, gitlab, redmine):
        gitlab.fail["add_group_badge"] = HostingApiError(
            "bad", status_code=400, body='{"message":"link_url is invalid"}'
        )
        with pytest.raises(HostingApiError):
            badges.add(10, redmine.get_project(5))

    def test_remove(self, badges, gitlab, redmine):
        badges.add(10, redmine.get_project(5))
        assert badges.remove(10) is True
        assert gitlab.badges[10] == []

    def test_remove_without_badge(self, badges):
        assert badges.remove(10) is False

    def test_remove_tolerates_404(self, badges, gitlab, redmine):
        badges.add(10, redmine.get_project(5))
        gitlab.fail["delete_group_badge"] = HostingApiError("gone", status_code=404)
        assert badges.remove(10) is True

    def test_migrate(self, badges, gitlab, redmine):
        badges.add(10, redmine.get_project(5))
        badges.apply(
            BadgeJob(
                action=BadgeAction.MIGRATE,
                hosting_group_id=20,
                tracker_project_id=5,
                old_group_id=10,
            )
        )
        assert gitlab.badges[10] == []
        assert len(gitlab.badges[20]) == 1

    def test_missing_project_is_skipped(self, badges, gitlab):
        badges.apply(BadgeJob(action=BadgeAction.ADD, hosting_group_id=10, tracker_project_id=404))
        assert gitlab.calls_to("add_group_badge") == []


class TestIntegration:
    def test_urls(self):
        assert integration_urls(REDMINE + "/", "alpha") == {
            "project_url": f"{REDMINE}/projects/alpha",
            "issues_url": f"{REDMINE}/issues/:id",
            "new_issue_url": f"{REDMINE}/projects/alpha/issues/new",
        }

    def test_apply(self, gitlab, redmine):
        redmine.add_project(5, "alpha")
        configurator = RedmineIntegrationConfigurator(gitlab, redmine, REDMINE)
        urls = configurator.apply(IntegrationJob(hosting_project_id=555, tracker_project_id=5))
        assert gitlab.integrations[555] == urls

    def test_missing_project(self, gitlab, redmine):
        configurator = RedmineIntegrationConfigurator(gitlab, redmine, REDMINE)
        assert configurator.apply(IntegrationJob(hosting_project_id=555, tracker_project_id=5)) is None
        assert gitlab.integrations == {}
