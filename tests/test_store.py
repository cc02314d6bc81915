"""Tests for JsonStateStore: upserts, deletes, atomic writes and corruption."""

import json
import os
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from redmine_gitlab_sync.errors import StorageError
from redmine_gitlab_sync.sync.models import (
    IdentityMapping,
    MappingKind,
    MatchMethod,
    ProjectMapping,
)
from redmine_gitlab_sync.sync.store import STATE_FILENAME, JsonStateStore


def _identity(user_id: int, method: MatchMethod = MatchMethod.USERNAME) -> IdentityMapping:
    return IdentityMapping(
        tracker_user_id=user_id,
        hosting_user_id=user_id + 1000,
        hosting_username=f"user{user_id}",
        match_method=method,
        last_synced_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


class TestProjectMappings:
    def test_missing_state_reads_empty(self, store):
        assert store.get_project_mapping(1) is None
        assert store.list_project_mappings() == []
        assert not store.path.exists()

    def test_save_and_get(self, store):
        mapping = ProjectMapping(tracker_project_id=1, hosting_group_id=10)
        store.save_project_mapping(mapping)
        assert store.get_project_mapping(1) == mapping

    def test_upsert_replaces_by_key(self, store):
        store.save_project_mapping(ProjectMapping(tracker_project_id=1, hosting_group_id=10))
        store.save_project_mapping(
            ProjectMapping(
                tracker_project_id=1,
                hosting_group_id=10,
                hosting_project_id=55,
                mapping_kind=MappingKind.PROJECT,
            )
        )
        mappings = store.list_project_mappings()
        assert len(mappings) == 1
        assert mappings[0].hosting_project_id == 55

    def test_persists_across_instances(self, tmp_path):
        JsonStateStore(tmp_path / "s").save_project_mapping(
            ProjectMapping(tracker_project_id=3, hosting_group_id=30)
        )
        reopened = JsonStateStore(tmp_path / "s")
        assert reopened.get_project_mapping(3).hosting_group_id == 30


class TestIdentities:
    def test_save_get_list(self, store):
        store.save_identity(_identity(1))
        store.save_identity(_identity(2, MatchMethod.EMAIL))
        assert store.get_identity(1).hosting_user_id == 1001
        assert {i.tracker_user_id for i in store.list_identities()} == {1, 2}

    def test_timestamp_round_trips_timezone(self, store):
        store.save_identity(_identity(1))
        assert store.get_identity(1).last_synced_at.tzinfo is not None

    def test_delete_identity(self, store):
        store.save_identity(_identity(1))
        assert store.delete_identity(1) is True
        assert store.delete_identity(1) is False
        assert store.get_identity(1) is None

    def test_delete_all_identities(self, store):
        store.save_identity(_identity(1))
        store.save_identity(_identity(2))
        assert store.delete_all_identities() == 2
        assert store.list_identities() == []
        assert store.delete_all_identities() == 0

    def test_delete_all_keeps_other_sections(self, store):
        store.save_project_mapping(ProjectMapping(tracker_project_id=1, hosting_group_id=10))
        store.save_identity(_identity(1))
        store.delete_all_identities()
        assert store.get_project_mapping(1) is not None


class TestRepositoryUrls:
    def test_save_and_list(self, store):
        store.save_repository_url(1, "/srv/git/@hashed/ab/cd/x.git")
        store.save_repository_url(2, "/srv/git/@hashed/ef/01/y.git")
        assert store.get_repository_url(1) == "/srv/git/@hashed/ab/cd/x.git"
        assert store.list_repository_urls() == {
            1: "/srv/git/@hashed/ab/cd/x.git",
            2: "/srv/git/@hashed/ef/01/y.git",
        }

    def test_missing_url_is_none(self, store):
        assert store.get_repository_url(9) is None


class TestAtomicityAndErrors:
    def test_no_temp_files_left_after_save(self, store):
        store.save_repository_url(1, "/x.git")
        assert [p.name for p in store.path.parent.iterdir()] == [STATE_FILENAME]

    def test_failed_replace_keeps_old_state_and_cleans_up(self, store):
        store.save_repository_url(1, "/old.git")
        with patch("os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StorageError, match="disk full"):
                store.save_repository_url(1, "/new.git")
        assert store.get_repository_url(1) == "/old.git"
        assert [p.name for p in store.path.parent.iterdir()] == [STATE_FILENAME]

    def test_corrupt_json_raises_storage_error(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text("{not json")
        with pytest.raises(StorageError):
            store.get_project_mapping(1)

    def test_non_object_raises_storage_error(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text("[]")
        with pytest.raises(StorageError):
            store.list_repository_urls()

    def test_invalid_record_raises_storage_error(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text(
            json.dumps({"project_mappings": {"1": {"tracker_project_id": "abc"}}})
        )
        with pytest.raises(StorageError, match="ProjectMapping"):
            store.get_project_mapping(1)

    def test_missing_sections_are_filled(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text(json.dumps({"version": 1}))
        assert store.list_identities() == []
        store.save_repository_url(1, "/x.git")
        assert store.get_repository_url(1) == "/x.git"

    @pytest.mark.skipif(os.name != "posix" or os.geteuid() == 0, reason="needs non-root POSIX")
    def test_unwritable_directory_raises_storage_error(self, tmp_path):
        locked = tmp_path / "locked"
        locked.mkdir()
        locked.chmod(0o500)
        try:
            with pytest.raises(StorageError):
                JsonStateStore(locked / "state").save_repository_url(1, "/x.git")
        finally:
            locked.chmod(0o700)
