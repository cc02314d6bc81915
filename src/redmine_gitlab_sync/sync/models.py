"""Pydantic models for the reconciliation engine.

Defines the data contracts shared across the sync modules:

- ``ProjectMapping`` / ``IdentityMapping``: persisted associations.
- ``MembershipChangeEvent`` / ``RepositoryLinkTask``: transient units of work.
- Job envelopes (``MembershipJob``, ``MemberSyncJob``, ``BadgeJob``,
  ``IntegrationJob``) carried by the task queue.
- ``TrackerProject`` / ``TrackerUser``: read-only views of Redmine data.
- Reports returned to the admin surface.

All models are frozen (immutable).
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum, IntEnum

from pydantic import BaseModel, Field, model_validator


class AccessLevel(IntEnum):
    """GitLab group access levels granted by this engine."""

    REPORTER = 20
    DEVELOPER = 30
    OWNER = 50


class MappingKind(str, Enum):
    """How a Redmine project is attached to GitLab."""

    GROUP = "group"
    PROJECT = "project"
    INHERITED = "inherited"


class MatchMethod(str, Enum):
    """Strategy that resolved a Redmine user to a GitLab user."""

    EXTERNAL_IDENTITY = "external_identity"
    USERNAME = "username"
    EMAIL = "email"


class MembershipAction(str, Enum):
    """Membership reconciliation actions."""

    ADD = "add"
    UPDATE = "update"
    REMOVE = "remove"
    RECALCULATE = "recalculate"


class BadgeAction(str, Enum):
    """Group badge operations."""

    ADD = "add"
    UPDATE = "update"
    REMOVE = "remove"
    MIGRATE = "migrate"


# ---------------------------------------------------------------------------
# Tracker-side views
# ---------------------------------------------------------------------------


class TrackerProject(BaseModel):
    """A Redmine project as seen by the engine."""

    id: int
    identifier: str
    name: str = ""
    parent_id: int | None = None

    model_config = {"frozen": True}


class TrackerUser(BaseModel):
    """A Redmine user as seen by the engine.

    Attributes:
        external_uid: Opaque id of the user's single-sign-on identity,
            when one is linked.
    """

    id: int
    login: str
    mail: str | None = None
    active: bool = True
    external_uid: str | None = None

    model_config = {"frozen": True}


class TrackerMembership(BaseModel):
    """A user's membership in one Redmine project with its role names."""

    project_id: int
    user: TrackerUser
    roles: list[str] = []

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Persisted mappings
# ---------------------------------------------------------------------------


class ProjectMapping(BaseModel):
    """Association between one Redmine project and GitLab.

    At most one mapping exists per ``tracker_project_id``.
    """

    tracker_project_id: int
    hosting_group_id: int | None = None
    hosting_project_id: int | None = None
    mapping_kind: MappingKind = MappingKind.GROUP

    model_config = {"frozen": True}


class IdentityMapping(BaseModel):
    """Cached resolution of a Redmine user to a GitLab user."""

    tracker_user_id: int
    hosting_user_id: int
    hosting_username: str | None = None
    match_method: MatchMethod
    last_synced_at: datetime

    model_config = {"frozen": True}


class InheritedGroup(BaseModel):
    """Result of walking a project's ancestry for a GitLab group."""

    hosting_group_id: int
    inherited_from: TrackerProject

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Units of work
# ---------------------------------------------------------------------------


class MembershipChangeEvent(BaseModel):
    """One membership reconciliation request.

    ``requested_access_level`` is required for ``add`` and ``update``;
    ``exclude_project_id`` is only meaningful for ``recalculate``.
    """

    action: MembershipAction
    hosting_group_id: int
    tracker_user_id: int
    requested_access_level: AccessLevel | None = None
    exclude_project_id: int | None = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _level_required(self) -> "MembershipChangeEvent":
        if (
            self.action in (MembershipAction.ADD, MembershipAction.UPDATE)
            and self.requested_access_level is None
        ):
            raise ValueError(
                f"requested_access_level is required for '{self.action.value}'"
            )
        return self


class RepositoryLinkTask(BaseModel):
    """One repository-link attempt.

    ``not_before_timestamp`` (Unix seconds) is fixed when the task is first
    created and copied verbatim into every retry.
    """

    tracker_project_id: int
    hosting_project_id: int | None = None
    attempt: int = Field(default=1, ge=1)
    not_before_timestamp: float

    model_config = {"frozen": True}

    def next_attempt(self) -> "RepositoryLinkTask":
        """Return the follow-up task with the same cutoff timestamp."""
        return self.model_copy(update={"attempt": self.attempt + 1})


class MembershipJob(BaseModel):
    """Queue envelope for a membership event."""

    event: MembershipChangeEvent
    attempt: int = Field(default=1, ge=1)

    model_config = {"frozen": True}


class MemberSyncJob(BaseModel):
    """Queue envelope for a bulk member sync of one project into a group."""

    hosting_group_id: int
    tracker_project_id: int
    attempt: int = Field(default=1, ge=1)

    model_config = {"frozen": True}


class BadgeJob(BaseModel):
    """Queue envelope for a group badge operation."""

    action: BadgeAction
    hosting_group_id: int
    tracker_project_id: int | None = None
    old_group_id: int | None = None
    attempt: int = Field(default=1, ge=1)

    model_config = {"frozen": True}


class IntegrationJob(BaseModel):
    """Queue envelope for configuring GitLab's Redmine integration."""

    hosting_project_id: int
    tracker_project_id: int
    attempt: int = Field(default=1, ge=1)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Outcomes and reports
# ---------------------------------------------------------------------------


class MembershipOutcome(BaseModel):
    """What a reconciliation actually did.

    Attributes:
        action: The action that reached GitLab (``recalculate`` resolves to
            ``update`` or ``remove``; ``add`` may resolve to ``update``).
        applied: ``False`` when nothing needed doing (unresolved user on
            remove, inactive user).
        access_level: Level sent to GitLab, if any.
    """

    action: MembershipAction
    hosting_group_id: int
    tracker_user_id: int
    hosting_user_id: int | None = None
    access_level: AccessLevel | None = None
    applied: bool = True
    detail: str | None = None

    model_config = {"frozen": True}


class MemberSyncReport(BaseModel):
    """Aggregate result of a bulk project member sync."""

    hosting_group_id: int
    tracker_project_id: int
    total: int = 0
    added: int = 0
    updated: int = 0
    failed: int = 0
    errors: list[str] = []

    model_config = {"frozen": True}

    def summary(self) -> str:
        return (
            f"Member sync for project {self.tracker_project_id} -> group "
            f"{self.hosting_group_id}: {self.added} added, {self.updated} "
            f"updated, {self.failed} failed (of {self.total})"
        )


class IdentityCacheStats(BaseModel):
    """Statistics about the identity cache."""

    total: int
    by_method: dict[str, int]
    recent_count: int

    model_config = {"frozen": True}
