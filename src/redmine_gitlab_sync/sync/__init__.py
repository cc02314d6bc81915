"""Redmine -> GitLab reconciliation engine.

Keeps GitLab group membership and repository links consistent with
Redmine, which is always authoritative.  Delivery is at-least-once, so
every action is idempotent.

Architecture
------------
Modules, leaf-first:

- ``models``       -- Pydantic data contracts (mappings, events, job
  envelopes, reports).
- ``store``        -- ``PersistenceStore`` protocol and ``JsonStateStore``.
- ``probe``        -- ``FilesystemProbe`` protocol and ``LocalFilesystemProbe``.
- ``access``       -- ``rank_for_roles`` and ``AccessLevelCalculator``.
- ``mapping``      -- ``GroupMappingIndex``: mapping queries, inherited-group
  lookup, orphan projects.
- ``identity``     -- ``IdentityResolver``: cached multi-strategy user lookup.
- ``membership``   -- ``MembershipReconciler``: add/update/remove/recalculate.
- ``linker``       -- ``RepositoryLinker``: finds the hashed-storage
  repository for a new GitLab project.
- ``badges``       -- ``GroupBadgeManager``.
- ``integration``  -- ``RedmineIntegrationConfigurator``.
- ``queue``        -- ``TaskQueue`` protocol and ``ScheduledTaskQueue``.
- ``orchestrator`` -- ``Orchestrator``: event entry points, job execution
  and retry accounting.

Usage example
-------------
::

    from redmine_gitlab_sync.sync.engine import build_engine

    engine = build_engine(config, gitlab_client, redmine_client)
    engine.queue.start()
    engine.orchestrator.member_created(12, 5, ["Developer"])
"""

from .access import AccessLevelCalculator, rank_for_roles
from .badges import GroupBadgeManager
from .identity import IdentityResolver
from .integration import RedmineIntegrationConfigurator
from .linker import RepositoryLinker
from .mapping import GroupMappingIndex
from .membership import MembershipReconciler
from .models import (
    AccessLevel,
    IdentityMapping,
    MappingKind,
    MatchMethod,
    MembershipAction,
    MembershipChangeEvent,
    ProjectMapping,
    RepositoryLinkTask,
)
from .orchestrator import Orchestrator
from .probe import LocalFilesystemProbe
from .queue import ScheduledTaskQueue
from .store import JsonStateStore

__all__ = [
    "AccessLevel",
    "AccessLevelCalculator",
    "GroupBadgeManager",
    "GroupMappingIndex",
    "IdentityMapping",
    "IdentityResolver",
    "JsonStateStore",
    "LocalFilesystemProbe",
    "MappingKind",
    "MatchMethod",
    "MembershipAction",
    "MembershipChangeEvent",
    "MembershipReconciler",
    "Orchestrator",
    "ProjectMapping",
    "RedmineIntegrationConfigurator",
    "RepositoryLinkTask",
    "RepositoryLinker",
    "ScheduledTaskQueue",
    "rank_for_roles",
]
