"""Redmine project to GitLab group/project associations.

Wraps the persistence store with the queries the reconcilers need,
including the upward walk over the Redmine project tree that finds the
group a sub-project inherits.
"""

from __future__ import annotations

import logging
from typing import Iterable, Protocol

from .models import InheritedGroup, MappingKind, ProjectMapping, TrackerProject
from .store import PersistenceStore

logger = logging.getLogger(__name__)


class _ProjectSource(Protocol):
    def get_project(self, project_id: int) -> TrackerProject | None: ...


class GroupMappingIndex:
    """Query and upsert project mappings.

    Reads always go to the store; nothing is cached between calls.

    Args:
        store: Persistence backend.  ``StorageError`` propagates untouched.
        tracker: Used to fetch parent projects during the inheritance walk.
    """

    def __init__(self, store: PersistenceStore, tracker: _ProjectSource):
        self._store = store
        self._tracker = tracker

    def find_mapping(self, tracker_project_id: int) -> ProjectMapping | None:
        return self._store.get_project_mapping(tracker_project_id)

    def find_inherited_group(self, project: TrackerProject) -> InheritedGroup | None:
        """Find the nearest project (self included) mapped to a GitLab group.

        Walks ``parent_id`` links upward.  A project seen twice means the
        chain is cyclic; the walk stops and reports no match.

        Returns:
            The group id and the project it was found on, or ``None``.
        """
        visited: set[int] = set()
        current: TrackerProject | None = project
        while current is not None:
            if current.id in visited:
                logger.warning(
                    "Cycle in project ancestry at project %s (started from %s)",
                    current.id,
                    project.id,
                )
                return None
            visited.add(current.id)

            mapping = self._store.get_project_mapping(current.id)
            if mapping is not None and mapping.hosting_group_id is not None:
                return InheritedGroup(
                    hosting_group_id=mapping.hosting_group_id,
                    inherited_from=current,
                )

            if current.parent_id is None:
                return None
            current = self._tracker.get_project(current.parent_id)
        return None

    def projects_mapped_to_group(self, hosting_group_id: int) -> set[int]:
        return {
            m.tracker_project_id
            for m in self._store.list_project_mappings()
            if m.hosting_group_id == hosting_group_id
        }

    def upsert_mapping(
        self,
        tracker_project_id: int,
        hosting_group_id: int | None = None,
        hosting_project_id: int | None = None,
        mapping_kind: MappingKind | str = MappingKind.GROUP,
    ) -> ProjectMapping:
        """Create or replace the mapping for one Redmine project.

        Raises:
            ValueError: If ``mapping_kind`` is ``inherited``, which is only
                ever derived at query time.
        """
        kind = MappingKind(mapping_kind)
        if kind is MappingKind.INHERITED:
            raise ValueError("'inherited' mappings are derived, not stored")

        mapping = ProjectMapping(
            tracker_project_id=tracker_project_id,
            hosting_group_id=hosting_group_id,
            hosting_project_id=hosting_project_id,
            mapping_kind=kind,
        )
        existing = self._store.get_project_mapping(tracker_project_id)
        if existing == mapping:
            return existing
        self._store.save_project_mapping(mapping)
        logger.info(
            "Mapped Redmine project %s -> group=%s project=%s (%s)",
            tracker_project_id,
            hosting_group_id,
            hosting_project_id,
            kind.value,
        )
        return mapping

    def orphan_projects(
        self, hosting_group_id: int, hosting_projects: Iterable[dict]
    ) -> list[dict]:
        """Return the group's GitLab projects no Redmine project is mapped to.

        Args:
            hosting_group_id: Group the projects were listed from.
            hosting_projects: Project dicts as returned by GitLab (need ``id``).
        """
        mapped = {
            m.hosting_project_id
            for m in self._store.list_project_mappings()
            if m.hosting_project_id is not None
        }
        orphans = [p for p in hosting_projects if p.get("id") not in mapped]
        logger.debug(
            "Group %s has %d unmapped project(s)", hosting_group_id, len(orphans)
        )
        return orphans
