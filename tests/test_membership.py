"""Tests for MembershipReconciler."""

import pytest

from redmine_gitlab_sync.errors import HostingApiError, IdentityNotFound
from redmine_gitlab_sync.sync.models import (
    AccessLevel,
    MembershipAction,
    MembershipChangeEvent,
)

GROUP = 100


def _event(action, user_id=7, level=None, exclude=None):
    return MembershipChangeEvent(
        action=action,
        hosting_group_id=GROUP,
        tracker_user_id=user_id,
        requested_access_level=level,
        exclude_project_id=exclude,
    )


@pytest.fixture
def jdoe(redmine, gitlab):
    gitlab.add_user(50, "jdoe")
    return redmine.add_user(7, "jdoe", mail="jdoe@example.com")


class TestAdd:
    def test_adds_member(self, reconciler, gitlab, jdoe):
        outcome = reconciler.apply(_event(MembershipAction.ADD, level=AccessLevel.DEVELOPER))
        assert gitlab.members[GROUP] == {50: 30}
        assert outcome.action is MembershipAction.ADD
        assert outcome.applied
        assert outcome.hosting_user_id == 50

    def test_conflict_becomes_update(self, reconciler, gitlab, jdoe):
        gitlab.members[GROUP] = {50: 20}
        outcome = reconciler.apply(_event(MembershipAction.ADD, level=AccessLevel.OWNER))
        assert gitlab.members[GROUP] == {50: 50}
        assert outcome.action is MembershipAction.UPDATE
        assert [c[0] for c in gitlab.calls[-2:]] == [
            "add_group_member",
            "update_group_member",
        ]

    def test_repeated_add_is_idempotent(self, reconciler, gitlab, jdoe):
        event = _event(MembershipAction.ADD, level=AccessLevel.REPORTER)
        reconciler.apply(event)
        reconciler.apply(event)
        assert gitlab.members[GROUP] == {50: 20}

    def test_unresolved_user_raises(self, reconciler, redmine):
        redmine.add_user(8, "nobody")
        with pytest.raises(IdentityNotFound) as exc:
            reconciler.apply(_event(MembershipAction.ADD, user_id=8, level=AccessLevel.DEVELOPER))
        assert exc.value.tracker_user_id == 8

    def test_other_errors_propagate(self, reconciler, gitlab, jdoe):
        gitlab.fail["add_group_member"] = HostingApiError("forbidden", status_code=403)
        with pytest.raises(HostingApiError):
            reconciler.apply(_event(MembershipAction.ADD, level=AccessLevel.DEVELOPER))

    def test_inactive_user_is_skipped(self, reconciler, gitlab, redmine):
        gitlab.add_user(51, "locked")
        redmine.add_user(9, "locked", active=False)
        outcome = reconciler.apply(
            _event(MembershipAction.ADD, user_id=9, level=AccessLevel.DEVELOPER)
        )
        assert not outcome.applied
        assert gitlab.calls_to("add_group_member") == []

    def test_missing_user_is_skipped(self, reconciler, gitlab):
        outcome = reconciler.apply(
            _event(MembershipAction.ADD, user_id=404, level=AccessLevel.DEVELOPER)
        )
        assert not outcome.applied
        assert gitlab.calls == []


class TestUpdateAndRemove:
    def test_update_sets_level(self, reconciler, gitlab, jdoe):
        gitlab.members[GROUP] = {50: 30}
        reconciler.apply(_event(MembershipAction.UPDATE, level=AccessLevel.REPORTER))
        assert gitlab.members[GROUP] == {50: 20}

    def test_update_requires_level(self):
        with pytest.raises(ValueError):
            _event(MembershipAction.UPDATE)

    def test_remove(self, reconciler, gitlab, jdoe):
        gitlab.members[GROUP] = {50: 30}
        outcome = reconciler.apply(_event(MembershipAction.REMOVE))
        assert gitlab.members[GROUP] == {}
        assert outcome.applied

    def test_remove_non_member_is_success(self, reconciler, gitlab, jdoe):
        outcome = reconciler.apply(_event(MembershipAction.REMOVE))
        assert outcome.applied
        assert outcome.action is MembershipAction.REMOVE

    def test_remove_unresolved_user_is_noop(self, reconciler, gitlab, redmine):
        redmine.add_user(8, "nobody")
        outcome = reconciler.apply(_event(MembershipAction.REMOVE, user_id=8))
        assert not outcome.applied
        assert gitlab.calls_to("remove_group_member") == []

    def test_remove_server_error_propagates(self, reconciler, gitlab, jdoe):
        gitlab.members[GROUP] = {50: 30}
        gitlab.fail["remove_group_member"] = HostingApiError("down", status_code=502)
        with pytest.raises(HostingApiError):
            reconciler.apply(_event(MembershipAction.REMOVE))


class TestRecalculate:
    def test_downgrades_to_remaining_roles(self, reconciler, gitlab, redmine, mapping_index, jdoe):
        mapping_index.upsert_mapping(1, hosting_group_id=GROUP)
        mapping_index.upsert_mapping(2, hosting_group_id=GROUP)
        redmine.add_member(7, 1, "Manager")
        redmine.add_member(7, 2, "Reporter")
        gitlab.members[GROUP] = {50: 50}

        outcome = reconciler.apply(_event(MembershipAction.RECALCULATE, exclude=1))
        assert gitlab.members[GROUP] == {50: 20}
        assert outcome.action is MembershipAction.UPDATE
        assert outcome.access_level is AccessLevel.REPORTER

    def test_no_remaining_access_removes(self, reconciler, gitlab, redmine, mapping_index, jdoe):
        mapping_index.upsert_mapping(1, hosting_group_id=GROUP)
        redmine.add_member(7, 1, "Developer")
        gitlab.members[GROUP] = {50: 30}

        outcome = reconciler.apply(_event(MembershipAction.RECALCULATE, exclude=1))
        assert gitlab.members[GROUP] == {}
        assert outcome.action is MembershipAction.REMOVE

    def test_role_change_without_exclusion(self, reconciler, gitlab, redmine, mapping_index, jdoe):
        mapping_index.upsert_mapping(1, hosting_group_id=GROUP)
        redmine.add_member(7, 1, "Manager")
        gitlab.members[GROUP] = {50: 30}

        reconciler.apply(_event(MembershipAction.RECALCULATE))
        assert gitlab.members[GROUP] == {50: 50}

    def test_unrecognised_roles_only_removes(self, reconciler, gitlab, redmine, mapping_index, jdoe):
        mapping_index.upsert_mapping(1, hosting_group_id=GROUP)
        redmine.add_member(7, 1, "Watcher")
        gitlab.members[GROUP] = {50: 30}

        reconciler.apply(_event(MembershipAction.RECALCULATE))
        assert gitlab.members[GROUP] == {}


class TestSyncProjectMembers:
    def test_counts_added_updated_failed(self, reconciler, gitlab, redmine):
        gitlab.add_user(50, "alice")
        gitlab.add_user(51, "bob")
        redmine.add_user(1, "alice")
        redmine.add_user(2, "bob")
        redmine.add_user(3, "carol")
        redmine.add_user(4, "dave", active=False)
        for uid, role in ((1, "Manager"), (2, "Reporter"), (3, "Developer"), (4, "Developer")):
            redmine.add_member(uid, 5, role)
        gitlab.members[GROUP] = {51: 30}

        report = reconciler.sync_project_members(GROUP, 5)

        assert (report.total, report.added, report.updated, report.failed) == (3, 1, 1, 1)
        assert gitlab.members[GROUP] == {50: 50, 51: 20}
        assert "carol" in report.errors[0]
        assert "1 added, 1 updated, 1 failed" in report.summary()

    def test_unrecognised_roles_get_default_level(self, reconciler, gitlab, redmine):
        gitlab.add_user(50, "alice")
        redmine.add_user(1, "alice")
        redmine.add_member(1, 5, "Watcher")
        reconciler.sync_project_members(GROUP, 5)
        assert gitlab.members[GROUP] == {50: 30}

    def test_api_errors_are_counted_not_raised(self, reconciler, gitlab, redmine):
        gitlab.add_user(50, "alice")
        redmine.add_user(1, "alice")
        redmine.add_member(1, 5, "Developer")
        gitlab.fail["add_group_member"] = HostingApiError("down", status_code=503)

        report = reconciler.sync_project_members(GROUP, 5)
        assert report.failed == 1
        assert report.added == 0

    def test_keeps_higher_access_from_sibling_project(
        self, reconciler, gitlab, redmine, mapping_index, jdoe
    ):
        mapping_index.upsert_mapping(1, hosting_group_id=GROUP)
        mapping_index.upsert_mapping(2, hosting_group_id=GROUP)
        redmine.add_member(7, 1, "Manager")
        redmine.add_member(7, 2, "Reporter")
        gitlab.members[GROUP] = {50: 50}

        report = reconciler.sync_project_members(GROUP, 2)

        assert gitlab.members[GROUP] == {50: 50}
        assert report.updated == 1

    def test_raises_to_group_wide_level_on_first_add(
        self, reconciler, gitlab, redmine, mapping_index, jdoe
    ):
        mapping_index.upsert_mapping(1, hosting_group_id=GROUP)
        mapping_index.upsert_mapping(2, hosting_group_id=GROUP)
        redmine.add_member(7, 1, "Developer")
        redmine.add_member(7, 2, "Reporter")

        reconciler.sync_project_members(GROUP, 2)

        assert gitlab.members[GROUP] == {50: 30}
