"""GitLab group membership reconciliation.

Each :class:`MembershipChangeEvent` makes at most one membership call to
GitLab (plus identity lookups).  ``add`` and ``remove`` absorb the
"already satisfied" answers (409 on add, 404 on remove) so redelivery of
the same event is harmless.  ``recalculate`` recomputes the user's level
from every Redmine project mapped to the group, which makes it safe to
apply out of order.
"""

from __future__ import annotations

import logging
from typing import Iterable, Protocol

from ..errors import HostingApiError, IdentityNotFound
from .access import DEFAULT_ACCESS_LEVEL, AccessLevelCalculator, rank_for_roles
from .identity import IdentityResolver
from .models import (
    AccessLevel,
    MembershipAction,
    MembershipChangeEvent,
    MembershipOutcome,
    MemberSyncReport,
    TrackerMembership,
    TrackerUser,
)

logger = logging.getLogger(__name__)


class _MembershipApi(Protocol):
    def add_group_member(self, group_id: int, user_id: int, access_level: int) -> dict: ...

    def update_group_member(self, group_id: int, user_id: int, access_level: int) -> dict: ...

    def remove_group_member(self, group_id: int, user_id: int) -> None: ...


class _UserDirectory(Protocol):
    def get_user(self, user_id: int) -> TrackerUser | None: ...

    def list_memberships(self, project_id: int) -> Iterable[TrackerMembership]: ...


class MembershipReconciler:
    """Apply membership change events to GitLab groups.

    Args:
        client: GitLab membership endpoints.
        identity: Resolves Redmine users to GitLab user ids.
        calculator: Computes group-wide access for ``recalculate``.
        tracker: Looks up Redmine users and project memberships.
    """

    def __init__(
        self,
        client: _MembershipApi,
        identity: IdentityResolver,
        calculator: AccessLevelCalculator,
        tracker: _UserDirectory,
    ):
        self._client = client
        self._identity = identity
        self._calculator = calculator
        self._tracker = tracker

    def apply(self, event: MembershipChangeEvent) -> MembershipOutcome:
        """Reconcile one event.

        Raises:
            IdentityNotFound: ``add``/``update`` (or a ``recalculate`` that
                resolves to ``update``) for a user with no GitLab account.
            HostingApiError: GitLab rejected the call.
        """
        logger.info(
            "%s member %s in GitLab group %s",
            event.action.value,
            event.tracker_user_id,
            event.hosting_group_id,
        )
        user = self._tracker.get_user(event.tracker_user_id)
        if user is None or not user.active:
            logger.warning(
                "Redmine user %s not found or inactive, skipping %s",
                event.tracker_user_id,
                event.action.value,
            )
            return MembershipOutcome(
                action=event.action,
                hosting_group_id=event.hosting_group_id,
                tracker_user_id=event.tracker_user_id,
                applied=False,
                detail="user missing or inactive",
            )

        match event.action:
            case MembershipAction.ADD:
                return self._add(event.hosting_group_id, user, event.requested_access_level)
            case MembershipAction.UPDATE:
                return self._update(event.hosting_group_id, user, event.requested_access_level)
            case MembershipAction.REMOVE:
                return self._remove(event.hosting_group_id, user)
            case MembershipAction.RECALCULATE:
                return self._recalculate(
                    event.hosting_group_id, user, event.exclude_project_id
                )
        raise ValueError(f"Unknown membership action: {event.action!r}")

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _require_identity(self, user: TrackerUser) -> int:
        hosting_user_id = self._identity.resolve(user)
        if hosting_user_id is None:
            raise IdentityNotFound(user.id, user.login)
        return hosting_user_id

    def _add(
        self, group_id: int, user: TrackerUser, level: AccessLevel
    ) -> MembershipOutcome:
        hosting_user_id = self._require_identity(user)
        try:
            self._client.add_group_member(group_id, hosting_user_id, int(level))
        except HostingApiError as e:
            if not e.is_conflict:
                logger.error(
                    "Failed to add %s to group %s: %s", user.login, group_id, e
                )
                raise
            logger.info(
                "%s already in group %s, updating access level instead",
                user.login,
                group_id,
            )
            return self._set_level(group_id, user, hosting_user_id, level)
        logger.info(
            "Added %s to group %s as %s", user.login, group_id, level.name.lower()
        )
        return MembershipOutcome(
            action=MembershipAction.ADD,
            hosting_group_id=group_id,
            tracker_user_id=user.id,
            hosting_user_id=hosting_user_id,
            access_level=level,
        )

    def _update(
        self, group_id: int, user: TrackerUser, level: AccessLevel
    ) -> MembershipOutcome:
        hosting_user_id = self._require_identity(user)
        return self._set_level(group_id, user, hosting_user_id, level)

    def _set_level(
        self,
        group_id: int,
        user: TrackerUser,
        hosting_user_id: int,
        level: AccessLevel,
    ) -> MembershipOutcome:
        try:
            self._client.update_group_member(group_id, hosting_user_id, int(level))
        except HostingApiError as e:
            logger.error(
                "Failed to update %s in group %s: %s", user.login, group_id, e
            )
            raise
        logger.info(
            "Set %s to %s in group %s", user.login, level.name.lower(), group_id
        )
        return MembershipOutcome(
            action=MembershipAction.UPDATE,
            hosting_group_id=group_id,
            tracker_user_id=user.id,
            hosting_user_id=hosting_user_id,
            access_level=level,
        )

    def _remove(self, group_id: int, user: TrackerUser) -> MembershipOutcome:
        hosting_user_id = self._identity.resolve(user)
        if hosting_user_id is None:
            logger.info(
                "%s has no GitLab account, nothing to remove from group %s",
                user.login,
                group_id,
            )
            return MembershipOutcome(
                action=MembershipAction.REMOVE,
                hosting_group_id=group_id,
                tracker_user_id=user.id,
                applied=False,
                detail="no GitLab account",
            )
        try:
            self._client.remove_group_member(group_id, hosting_user_id)
        except HostingApiError as e:
            if not e.is_not_found:
                logger.error(
                    "Failed to remove %s from group %s: %s", user.login, group_id, e
                )
                raise
            logger.info("%s was not in group %s", user.login, group_id)
        else:
            logger.info("Removed %s from group %s", user.login, group_id)
        return MembershipOutcome(
            action=MembershipAction.REMOVE,
            hosting_group_id=group_id,
            tracker_user_id=user.id,
            hosting_user_id=hosting_user_id,
        )

    def _recalculate(
        self, group_id: int, user: TrackerUser, exclude_project_id: int | None
    ) -> MembershipOutcome:
        level = self._calculator.aggregate_rank_for_group(
            user.id, group_id, exclude_project_id
        )
        if level is None:
            logger.info(
                "%s has no remaining access to group %s, removing",
                user.login,
                group_id,
            )
            return self._remove(group_id, user)
        return self._update(group_id, user, level)

    # ------------------------------------------------------------------
    # Bulk sync
    # ------------------------------------------------------------------

    def sync_project_members(
        self, hosting_group_id: int, tracker_project_id: int
    ) -> MemberSyncReport:
        """Add every active member of a Redmine project to a GitLab group.

        Per-member failures are counted in the report and never raised.
        """
        total = added = updated = failed = 0
        errors: list[str] = []

        for membership in self._tracker.list_memberships(tracker_project_id):
            user = membership.user
            if not user.active:
                continue
            total += 1
            level = rank_for_roles(membership.roles) or DEFAULT_ACCESS_LEVEL
            try:
                group_level = self._calculator.aggregate_rank_for_group(
                    user.id, hosting_group_id
                )
                if group_level is not None:
                    level = max(level, group_level)
                outcome = self._add(hosting_group_id, user, level)
            except IdentityNotFound as e:
                failed += 1
                errors.append(str(e))
                continue
            except HostingApiError as e:
                failed += 1
                errors.append(f"Failed to add {user.login}: {e}")
                continue
            if outcome.action is MembershipAction.UPDATE:
                updated += 1
            else:
                added += 1

        report = MemberSyncReport(
            hosting_group_id=hosting_group_id,
            tracker_project_id=tracker_project_id,
            total=total,
            added=added,
            updated=updated,
            failed=failed,
            errors=errors,
        )
        logger.info(report.summary())
        return report
