"""Link newly created GitLab repositories to their Redmine project.

GitLab provisions repositories asynchronously under hashed storage, so the
directory backing a just-created project cannot be looked up by name.  The
linker instead scans hashed storage for repositories that appeared after
the task's cutoff timestamp and claims the oldest unclaimed one:

1. Enumerate ``@hashed/*/*/*.git``, dropping wiki and design repositories.
2. Drop directories already linked to a *different* Redmine project.
3. Keep directories whose mtime is strictly after ``not_before_timestamp``.
4. Sort oldest first.
5. Return the first one with ``HEAD`` and ``config`` present.

No match raises :class:`RepositoryNotReady`; the orchestrator re-enqueues
the task per :data:`RETRY_DELAYS` until :data:`MAX_ATTEMPTS` is reached.
"""

from __future__ import annotations

import logging
import posixpath
from typing import Protocol

from ..errors import MaxAttemptsExceeded, RepositoryNotReady, SyncError
from .models import RepositoryLinkTask
from .probe import FilesystemProbe
from .store import PersistenceStore

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 10
RETRY_DELAYS = (0, 5, 10, 20, 40, 80, 80, 80, 80, 80)

HASHED_DIR = "@hashed"
REPOSITORY_GLOB = f"{HASHED_DIR}/*/*/*.git"
AUXILIARY_SUFFIXES = (".wiki.git", ".design.git")


class _RepositoryImporter(Protocol):
    def import_repository(self, project_id: int, url: str) -> None: ...


class _StorageSettings(Protocol):
    storage_root: str
    repository_root: str


class RepositoryLinker:
    """Discover and record the on-disk repository for a Redmine project.

    Args:
        store: Holds repository links (read for exclusion, written on success).
        probe: Filesystem access.
        tracker: Receives the best-effort history import.
        storage: ``storage_root`` is GitLab's repository storage as seen
            by this process; ``repository_root`` is the same storage as
            Redmine sees it.
    """

    def __init__(
        self,
        store: PersistenceStore,
        probe: FilesystemProbe,
        tracker: _RepositoryImporter,
        storage: _StorageSettings,
    ):
        self._store = store
        self._probe = probe
        self._tracker = tracker
        self._storage_root = storage.storage_root.rstrip("/")
        self._repository_root = storage.repository_root.rstrip("/")

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def find_candidate(self, task: RepositoryLinkTask) -> str | None:
        """Return the disk path (``@hashed/ab/cd/<hash>``) to link, or ``None``.

        Filesystem errors are logged and reported as ``None``.
        """
        try:
            return self._scan(task)
        except OSError as e:
            logger.warning(
                "Filesystem error scanning for project %s (attempt %d): %s",
                task.tracker_project_id,
                task.attempt,
                e,
            )
            return None

    def _scan(self, task: RepositoryLinkTask) -> str | None:
        claimed = self._claimed_disk_paths(exclude=task.tracker_project_id)
        git_dirs = [
            d
            for d in self._probe.glob(self._storage_root, REPOSITORY_GLOB)
            if not d.endswith(AUXILIARY_SUFFIXES)
        ]
        logger.debug(
            "Scanning %d repositories, %d already claimed",
            len(git_dirs),
            len(claimed),
        )

        dated = []
        for git_dir in git_dirs:
            if not self._probe.is_dir(git_dir):
                continue
            mtime = self._probe.mtime(git_dir)
            if mtime > task.not_before_timestamp:
                dated.append((mtime, git_dir))
        dated.sort()

        for mtime, git_dir in dated:
            disk_path = self.disk_path_for(git_dir)
            if disk_path in claimed:
                logger.info("Skipping already-linked repository %s", disk_path)
                continue
            if self._probe.exists(posixpath.join(git_dir, "HEAD")) and (
                self._probe.exists(posixpath.join(git_dir, "config"))
            ):
                logger.info(
                    "Found candidate %s for project %s (%.2fs after cutoff)",
                    disk_path,
                    task.tracker_project_id,
                    mtime - task.not_before_timestamp,
                )
                return disk_path
        return None

    def _claimed_disk_paths(self, exclude: int) -> set[str]:
        prefix = self._repository_root + "/"
        claimed = set()
        for project_id, url in self._store.list_repository_urls().items():
            if project_id == exclude or not url.startswith(prefix):
                continue
            claimed.add(url[len(prefix):].removesuffix(".git"))
        return claimed

    def disk_path_for(self, git_dir: str) -> str:
        """``<storage_root>/@hashed/ab/cd/x.git`` -> ``@hashed/ab/cd/x``."""
        relative = posixpath.relpath(git_dir, self._storage_root)
        return relative.removesuffix(".git")

    def repository_url(self, disk_path: str) -> str:
        """Path Redmine uses for a disk path."""
        return f"{self._repository_root}/{disk_path}.git"

    # ------------------------------------------------------------------
    # Linking
    # ------------------------------------------------------------------

    def link(self, task: RepositoryLinkTask) -> str:
        """Run one attempt and record the link on success.

        Returns:
            The repository URL recorded for the Redmine project.

        Raises:
            RepositoryNotReady: No qualifying repository yet.
            StorageError: The link could not be persisted.
        """
        logger.info(
            "Attempt %d/%d: linking repository for Redmine project %s, "
            "GitLab project %s",
            task.attempt,
            MAX_ATTEMPTS,
            task.tracker_project_id,
            task.hosting_project_id,
        )
        disk_path = self.find_candidate(task)
        if disk_path is None:
            raise RepositoryNotReady(task.tracker_project_id, task.attempt)

        url = self.repository_url(disk_path)
        self._store.save_repository_url(task.tracker_project_id, url)
        logger.info(
            "Linked Redmine project %s to %s", task.tracker_project_id, url
        )

        try:
            self._tracker.import_repository(task.tracker_project_id, url)
        except SyncError as e:
            logger.error(
                "History import failed for project %s (link kept): %s",
                task.tracker_project_id,
                e,
            )
        return url

    # ------------------------------------------------------------------
    # Retry schedule
    # ------------------------------------------------------------------

    @staticmethod
    def retry_delay(attempt: int) -> int:
        """Seconds to wait before running ``attempt`` (1-based)."""
        index = min(max(attempt, 1), len(RETRY_DELAYS)) - 1
        return RETRY_DELAYS[index]

    @staticmethod
    def next_task(task: RepositoryLinkTask) -> RepositoryLinkTask:
        """Return the follow-up attempt.

        Raises:
            MaxAttemptsExceeded: ``task`` was the last allowed attempt.
        """
        if task.attempt >= MAX_ATTEMPTS:
            raise MaxAttemptsExceeded(
                task.tracker_project_id, task.hosting_project_id, task.attempt
            )
        return task.next_attempt()
