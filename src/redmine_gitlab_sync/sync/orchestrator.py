"""Event entry points and job execution.

Redmine lifecycle hooks call the ``on_*`` methods (or the project-keyed
``member_*`` conveniences).  Each call turns into one queued job; the
queue's workers hand jobs back to :meth:`Orchestrator.run`, which executes
them and owns retry accounting:

- membership jobs: 3 attempts, waiting ``attempt**4 + 2`` seconds between
  them; ``IdentityNotFound`` is never retried.
- repository-link tasks: the linker's 10-step schedule.
- member-sync, badge and integration jobs: 3 attempts, 5 seconds apart.

Retrying always means re-enqueueing with a delay.  Nothing sleeps.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Protocol

from ..errors import (
    IdentityNotFound,
    MaxAttemptsExceeded,
    RepositoryNotReady,
    StorageError,
    SyncError,
)
from .access import AccessLevelCalculator, rank_for_roles
from .badges import GroupBadgeManager
from .identity import IdentityResolver
from .integration import RedmineIntegrationConfigurator
from .linker import RepositoryLinker
from .mapping import GroupMappingIndex
from .membership import MembershipReconciler
from .models import (
    BadgeAction,
    BadgeJob,
    IdentityCacheStats,
    IntegrationJob,
    MappingKind,
    MembershipAction,
    MembershipChangeEvent,
    MembershipJob,
    MemberSyncJob,
    RepositoryLinkTask,
)
from .queue import TaskQueue

logger = logging.getLogger(__name__)

MEMBERSHIP_MAX_ATTEMPTS = 3
FIXED_RETRY_ATTEMPTS = 3
FIXED_RETRY_WAIT = 5


def membership_retry_delay(attempt: int) -> int:
    """Seconds to wait after failed ``attempt`` (1 -> 3, 2 -> 18)."""
    return attempt**4 + 2


class _MembershipLookup(Protocol):
    def has_membership(self, user_id: int, project_ids: Iterable[int]) -> bool: ...


class Orchestrator:
    """Turns Redmine events into queued jobs and runs them.

    Args:
        reconciler: Applies membership events.
        linker: Links repositories.
        mapping_index: Project mapping queries and upserts.
        calculator: Group-wide access aggregation for ``on_member_added``.
        identity: Identity cache administration.
        tracker: Membership lookups for ``member_destroyed``.
        queue: Where jobs go.
        badges: Optional; enables badge jobs when ``manage_badges`` is set.
        integration: Optional; enables integration jobs when
            ``configure_integration`` is set.
        clock: Wall-clock source for default cutoff timestamps.
    """

    def __init__(
        self,
        reconciler: MembershipReconciler,
        linker: RepositoryLinker,
        mapping_index: GroupMappingIndex,
        calculator: AccessLevelCalculator,
        identity: IdentityResolver,
        tracker: _MembershipLookup,
        queue: TaskQueue,
        badges: GroupBadgeManager | None = None,
        integration: RedmineIntegrationConfigurator | None = None,
        manage_badges: bool = False,
        configure_integration: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self.reconciler = reconciler
        self.linker = linker
        self.mapping_index = mapping_index
        self.calculator = calculator
        self.identity = identity
        self.tracker = tracker
        self.queue = queue
        self.badges = badges
        self.integration = integration
        self.manage_badges = manage_badges and badges is not None
        self.configure_integration = configure_integration and integration is not None
        self._clock = clock

    # ------------------------------------------------------------------
    # Event interface
    # ------------------------------------------------------------------

    def on_project_created(
        self,
        tracker_project_id: int,
        hosting_group_id: int | None,
        hosting_project_id: int | None = None,
        not_before_timestamp: float | None = None,
    ) -> RepositoryLinkTask | None:
        """Record the mapping and queue the follow-up work.

        Returns:
            The first repository-link task, or ``None`` when there is no
            GitLab project to link.
        """
        kind = MappingKind.PROJECT if hosting_project_id else MappingKind.GROUP
        self.mapping_index.upsert_mapping(
            tracker_project_id,
            hosting_group_id=hosting_group_id,
            hosting_project_id=hosting_project_id,
            mapping_kind=kind,
        )

        task = None
        if hosting_project_id is not None:
            task = self.schedule_repository_link(
                tracker_project_id, hosting_project_id, not_before_timestamp
            )
            if self.configure_integration:
                self.queue.enqueue(
                    IntegrationJob(
                        hosting_project_id=hosting_project_id,
                        tracker_project_id=tracker_project_id,
                    )
                )

        if hosting_group_id is not None:
            self.queue.enqueue(
                MemberSyncJob(
                    hosting_group_id=hosting_group_id,
                    tracker_project_id=tracker_project_id,
                )
            )
            if self.manage_badges:
                self.queue.enqueue(
                    BadgeJob(
                        action=BadgeAction.ADD,
                        hosting_group_id=hosting_group_id,
                        tracker_project_id=tracker_project_id,
                    )
                )

        logger.info(
            "Project %s created: group=%s project=%s",
            tracker_project_id,
            hosting_group_id,
            hosting_project_id,
        )
        return task

    def schedule_repository_link(
        self,
        tracker_project_id: int,
        hosting_project_id: int | None,
        not_before_timestamp: float | None = None,
    ) -> RepositoryLinkTask:
        """Queue the first attempt of a repository link.

        The cutoff defaults to now, so only repositories created after this
        call can be linked.
        """
        task = RepositoryLinkTask(
            tracker_project_id=tracker_project_id,
            hosting_project_id=hosting_project_id,
            attempt=1,
            not_before_timestamp=(
                not_before_timestamp
                if not_before_timestamp is not None
                else self._clock()
            ),
        )
        self.queue.enqueue(task, delay=self.linker.retry_delay(1))
        return task

    def on_member_added(
        self, hosting_group_id: int, tracker_user_id: int, roles: Iterable[str]
    ) -> MembershipJob | None:
        """Queue an ``add`` at the higher of the new roles and group-wide access."""
        candidates = [
            level
            for level in (
                rank_for_roles(roles),
                self.calculator.aggregate_rank_for_group(
                    tracker_user_id, hosting_group_id
                ),
            )
            if level is not None
        ]
        if not candidates:
            logger.info(
                "User %s has no roles granting access to group %s, skipping add",
                tracker_user_id,
                hosting_group_id,
            )
            return None
        return self._enqueue_membership(
            MembershipChangeEvent(
                action=MembershipAction.ADD,
                hosting_group_id=hosting_group_id,
                tracker_user_id=tracker_user_id,
                requested_access_level=max(candidates),
            )
        )

    def on_member_role_changed(
        self,
        hosting_group_id: int,
        tracker_user_id: int,
        roles: Iterable[str] | None = None,
    ) -> MembershipJob:
        """Queue a full-group ``recalculate``.

        ``roles`` is accepted for symmetry with :meth:`on_member_added`; the
        level is recomputed from every mapped project when the job runs.
        """
        return self._enqueue_membership(
            MembershipChangeEvent(
                action=MembershipAction.RECALCULATE,
                hosting_group_id=hosting_group_id,
                tracker_user_id=tracker_user_id,
            )
        )

    def on_member_removed(
        self,
        hosting_group_id: int,
        tracker_user_id: int,
        tracker_project_id: int | None,
        still_has_sibling_access: bool,
    ) -> MembershipJob:
        if still_has_sibling_access:
            event = MembershipChangeEvent(
                action=MembershipAction.RECALCULATE,
                hosting_group_id=hosting_group_id,
                tracker_user_id=tracker_user_id,
                exclude_project_id=tracker_project_id,
            )
        else:
            event = MembershipChangeEvent(
                action=MembershipAction.REMOVE,
                hosting_group_id=hosting_group_id,
                tracker_user_id=tracker_user_id,
            )
        return self._enqueue_membership(event)

    # ------------------------------------------------------------------
    # Project-keyed hooks
    # ------------------------------------------------------------------

    def member_created(
        self, tracker_project_id: int, tracker_user_id: int, roles: Iterable[str]
    ) -> MembershipJob | None:
        group_id = self._group_for(tracker_project_id)
        if group_id is None:
            return None
        return self.on_member_added(group_id, tracker_user_id, roles)

    def member_updated(
        self,
        tracker_project_id: int,
        tracker_user_id: int,
        roles: Iterable[str] | None = None,
    ) -> MembershipJob | None:
        group_id = self._group_for(tracker_project_id)
        if group_id is None:
            return None
        return self.on_member_role_changed(group_id, tracker_user_id, roles)

    def member_destroyed(
        self, tracker_project_id: int, tracker_user_id: int
    ) -> MembershipJob | None:
        group_id = self._group_for(tracker_project_id)
        if group_id is None:
            return None
        siblings = self.mapping_index.projects_mapped_to_group(group_id)
        siblings.discard(tracker_project_id)
        still = bool(siblings) and self.tracker.has_membership(
            tracker_user_id, siblings
        )
        return self.on_member_removed(
            group_id, tracker_user_id, tracker_project_id, still
        )

    def _group_for(self, tracker_project_id: int) -> int | None:
        mapping = self.mapping_index.find_mapping(tracker_project_id)
        if mapping is None or mapping.hosting_group_id is None:
            logger.debug(
                "Project %s has no GitLab group, skipping", tracker_project_id
            )
            return None
        return mapping.hosting_group_id

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def invalidate_identity_cache(self, tracker_user_id: int | None = None) -> int:
        """Drop one cached identity, or all of them when no id is given.

        Returns:
            Number of cache rows removed.
        """
        if tracker_user_id is None:
            return self.identity.invalidate_all()
        return int(self.identity.invalidate(tracker_user_id))

    def get_identity_cache_stats(self) -> IdentityCacheStats:
        return self.identity.stats()

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    def run(self, job) -> None:
        """Execute one queued job, re-enqueueing it on retryable failure."""
        match job:
            case MembershipJob():
                self._run_membership(job)
            case RepositoryLinkTask():
                self._run_link(job)
            case MemberSyncJob():
                self._run_fixed(
                    job,
                    lambda: self.reconciler.sync_project_members(
                        job.hosting_group_id, job.tracker_project_id
                    ),
                )
            case BadgeJob():
                if self.badges is None:
                    logger.warning("Badge job dropped: badges not configured")
                    return
                self._run_fixed(job, lambda: self.badges.apply(job))
            case IntegrationJob():
                if self.integration is None:
                    logger.warning("Integration job dropped: integration not configured")
                    return
                self._run_fixed(job, lambda: self.integration.apply(job))
            case _:
                raise TypeError(f"Unknown job type: {type(job).__name__}")

    def _enqueue_membership(self, event: MembershipChangeEvent) -> MembershipJob:
        job = MembershipJob(event=event)
        self.queue.enqueue(job)
        logger.info(
            "Queued %s for user %s in group %s",
            event.action.value,
            event.tracker_user_id,
            event.hosting_group_id,
        )
        return job

    def _run_membership(self, job: MembershipJob) -> None:
        event = job.event
        try:
            self.reconciler.apply(event)
        except IdentityNotFound as e:
            logger.warning("%s; giving up on %s", e, event.action.value)
        except SyncError as e:
            if job.attempt >= MEMBERSHIP_MAX_ATTEMPTS:
                logger.error(
                    "Membership %s for user %s in group %s failed after %d "
                    "attempts: %s",
                    event.action.value,
                    event.tracker_user_id,
                    event.hosting_group_id,
                    job.attempt,
                    e,
                )
                return
            delay = membership_retry_delay(job.attempt)
            logger.warning(
                "Membership %s for user %s in group %s failed (attempt %d), "
                "retrying in %ds: %s",
                event.action.value,
                event.tracker_user_id,
                event.hosting_group_id,
                job.attempt,
                delay,
                e,
            )
            self.queue.enqueue(
                job.model_copy(update={"attempt": job.attempt + 1}), delay=delay
            )

    def _run_link(self, task: RepositoryLinkTask) -> None:
        try:
            self.linker.link(task)
            return
        except RepositoryNotReady:
            reason = "repository not ready"
        except StorageError as e:
            reason = f"storage error: {e}"

        try:
            follow_up = self.linker.next_task(task)
        except MaxAttemptsExceeded as e:
            logger.error("%s", e)
            return
        delay = self.linker.retry_delay(follow_up.attempt)
        logger.info(
            "Project %s: %s, retrying in %ds (attempt %d)",
            task.tracker_project_id,
            reason,
            delay,
            follow_up.attempt,
        )
        self.queue.enqueue(follow_up, delay=delay)

    def _run_fixed(self, job, action: Callable[[], object]) -> None:
        name = type(job).__name__
        try:
            action()
        except SyncError as e:
            if job.attempt >= FIXED_RETRY_ATTEMPTS:
                logger.error(
                    "%s failed after %d attempts: %s", name, job.attempt, e
                )
                return
            logger.warning(
                "%s failed (attempt %d), retrying in %ds: %s",
                name,
                job.attempt,
                FIXED_RETRY_WAIT,
                e,
            )
            self.queue.enqueue(
                job.model_copy(update={"attempt": job.attempt + 1}),
                delay=FIXED_RETRY_WAIT,
            )
