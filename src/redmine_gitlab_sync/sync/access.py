"""Role-name to GitLab access-level translation.

Redmine roles are free-form names, so recognition is by case-insensitive
substring containment against a small set of canonical tokens.  Highest
recognised rank wins.
"""

from __future__ import annotations

import logging
from typing import Iterable, Protocol

from .models import AccessLevel

logger = logging.getLogger(__name__)

# Checked in descending rank order; the first token family that matches wins.
ROLE_TOKENS: tuple[tuple[AccessLevel, tuple[str, ...]], ...] = (
    (AccessLevel.OWNER, ("manager", "admin")),
    (AccessLevel.DEVELOPER, ("developer",)),
    (AccessLevel.REPORTER, ("reporter",)),
)

DEFAULT_ACCESS_LEVEL = AccessLevel.DEVELOPER


def recognised_rank(role_names: Iterable[str]) -> AccessLevel | None:
    """Return the highest rank whose token appears in any role name.

    Unlike :func:`rank_for_roles` there is no default: an unrecognised
    set yields ``None``.
    """
    lowered = [name.lower() for name in role_names if name]
    for level, tokens in ROLE_TOKENS:
        if any(token in name for name in lowered for token in tokens):
            return level
    return None


def rank_for_roles(role_names: Iterable[str]) -> AccessLevel | None:
    """Map a set of Redmine role names to a GitLab access level.

    Args:
        role_names: Role names held by a user (any iterable of strings).

    Returns:
        ``None`` for an empty set, the highest recognised level otherwise,
        or :data:`DEFAULT_ACCESS_LEVEL` when no name is recognised.
    """
    names = {name for name in role_names if name}
    if not names:
        return None
    level = recognised_rank(names)
    if level is None:
        logger.debug(
            "No recognised role in %s, defaulting to %s",
            sorted(names),
            DEFAULT_ACCESS_LEVEL.name.lower(),
        )
        return DEFAULT_ACCESS_LEVEL
    return level


class _MappedProjects(Protocol):
    def projects_mapped_to_group(self, hosting_group_id: int) -> set[int]: ...


class _RoleSource(Protocol):
    def member_role_names(
        self, user_id: int, project_ids: Iterable[int]
    ) -> set[str]: ...


class AccessLevelCalculator:
    """Aggregates a user's roles across every project mapped to a group.

    Args:
        mapping_index: Anything with ``projects_mapped_to_group``.
        tracker: Anything with ``member_role_names(user_id, project_ids)``.
    """

    def __init__(self, mapping_index: _MappedProjects, tracker: _RoleSource):
        self._mapping_index = mapping_index
        self._tracker = tracker

    def aggregate_rank_for_group(
        self,
        tracker_user_id: int,
        hosting_group_id: int,
        exclude_project_id: int | None = None,
    ) -> AccessLevel | None:
        """Compute the access level a user should hold in a group.

        Returns ``None`` when no mapped project remains after the exclusion,
        when the user has no membership in any of them, or when none of the
        roles held there is recognised.  All three mean "remove".
        """
        project_ids = set(
            self._mapping_index.projects_mapped_to_group(hosting_group_id)
        )
        if exclude_project_id is not None:
            project_ids.discard(exclude_project_id)
        if not project_ids:
            return None

        roles = self._tracker.member_role_names(tracker_user_id, project_ids)
        level = recognised_rank(roles)
        logger.debug(
            "User %s in group %s: roles=%s across %d project(s) -> %s",
            tracker_user_id,
            hosting_group_id,
            sorted(roles),
            len(project_ids),
            level.name.lower() if level is not None else None,
        )
        return level
