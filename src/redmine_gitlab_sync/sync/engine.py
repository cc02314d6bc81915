"""Wire the reconciliation components into one running engine.

``build_engine`` is the single place where configuration meets
constructors: it creates the store, the resolvers, the reconcilers, the
queue and the orchestrator, and returns them bundled in a ``SyncEngine``.
The queue's handler is the orchestrator's ``run``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from ..config import Config
from ..core.gitlab_client import GitLabClient
from ..core.redmine_client import RedmineClient
from .access import AccessLevelCalculator
from .badges import GroupBadgeManager
from .identity import IdentityResolver
from .integration import RedmineIntegrationConfigurator
from .linker import RepositoryLinker
from .mapping import GroupMappingIndex
from .membership import MembershipReconciler
from .orchestrator import Orchestrator
from .probe import LocalFilesystemProbe
from .queue import ScheduledTaskQueue
from .store import JsonStateStore

logger = logging.getLogger(__name__)


@dataclass
class SyncEngine:
    """Every long-lived component of a running engine."""

    config: Config
    gitlab: GitLabClient
    redmine: RedmineClient
    store: JsonStateStore
    mapping_index: GroupMappingIndex
    identity: IdentityResolver
    calculator: AccessLevelCalculator
    reconciler: MembershipReconciler
    linker: RepositoryLinker
    badges: GroupBadgeManager
    integration: RedmineIntegrationConfigurator
    queue: ScheduledTaskQueue
    orchestrator: Orchestrator

    def start(self) -> None:
        self.queue.start()

    def stop(self) -> None:
        self.queue.stop()


def build_engine(
    config: Config,
    gitlab: GitLabClient | None = None,
    redmine: RedmineClient | None = None,
) -> SyncEngine:
    """Assemble a :class:`SyncEngine` from configuration.

    Args:
        config: Validated configuration.
        gitlab: Pre-built GitLab client (tests pass fakes here).
        redmine: Pre-built Redmine client.

    Returns:
        An engine whose queue has not been started yet.
    """
    gitlab = gitlab or GitLabClient(config)
    redmine = redmine or RedmineClient(config)

    store = JsonStateStore(Path(config.state_dir))
    mapping_index = GroupMappingIndex(store, redmine)
    identity = IdentityResolver(gitlab, store, provider=config.identity_provider)
    calculator = AccessLevelCalculator(mapping_index, redmine)
    reconciler = MembershipReconciler(gitlab, identity, calculator, redmine)
    linker = RepositoryLinker(store, LocalFilesystemProbe(), redmine, config)
    badges = GroupBadgeManager(gitlab, redmine, config.redmine_external_url)
    integration = RedmineIntegrationConfigurator(
        gitlab, redmine, config.redmine_external_url
    )

    # The queue needs the orchestrator's run() and the orchestrator needs
    # the queue, so the handler is bound late.
    holder: dict[str, Orchestrator] = {}
    queue = ScheduledTaskQueue(
        handler=lambda job: holder["orchestrator"].run(job),
        workers=config.workers,
    )
    orchestrator = Orchestrator(
        reconciler=reconciler,
        linker=linker,
        mapping_index=mapping_index,
        calculator=calculator,
        identity=identity,
        tracker=redmine,
        queue=queue,
        badges=badges,
        integration=integration,
        manage_badges=config.manage_badges,
        configure_integration=config.configure_integration,
    )
    holder["orchestrator"] = orchestrator

    logger.info(
        "Engine built: state=%s storage=%s workers=%d",
        config.state_dir,
        config.storage_root,
        config.workers,
    )
    return SyncEngine(
        config=config,
        gitlab=gitlab,
        redmine=redmine,
        store=store,
        mapping_index=mapping_index,
        identity=identity,
        calculator=calculator,
        reconciler=reconciler,
        linker=linker,
        badges=badges,
        integration=integration,
        queue=queue,
        orchestrator=orchestrator,
    )
