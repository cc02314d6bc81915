"""Exception taxonomy for the reconciliation engine.

Every failure the engine can surface derives from ``SyncError`` so the
orchestrator can decide between *retry later* and *give up* with a single
``except`` ladder:

- ``IdentityNotFound``: terminal for one action instance.
- ``HostingApiError``: GitLab answered with a non-2xx status that is not a
  whitelisted "already satisfied" signal, or the request never completed.
  Retryable within the component's budget.
- ``StorageError``: the persistence layer or the Redmine directory failed.
  Retryable by the orchestrator's outer loop.
- ``RepositoryNotReady``: not a failure; the repository has not appeared
  on disk yet.  Drives the linker's own backoff schedule.
- ``MaxAttemptsExceeded``: the linker gave up.  Terminal.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all engine errors."""


class IdentityNotFound(SyncError):
    """A Redmine user has no matching GitLab account."""

    def __init__(self, tracker_user_id: int, login: str | None = None):
        self.tracker_user_id = tracker_user_id
        self.login = login
        who = f"'{login}' (id {tracker_user_id})" if login else str(tracker_user_id)
        super().__init__(f"No GitLab user found for Redmine user {who}")


class HostingApiError(SyncError):
    """GitLab API call failed.

    Attributes:
        status_code: HTTP status, or ``None`` for transport failures
            (connection refused, timeout).
        body: Response body text (truncated by the client).
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str = "",
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(message)

    @property
    def is_conflict(self) -> bool:
        return self.status_code == 409

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @property
    def retryable(self) -> bool:
        """Transport failures, throttling and server errors may succeed later."""
        return (
            self.status_code is None
            or self.status_code == 429
            or self.status_code >= 500
        )


class StorageError(SyncError):
    """Persistence or tracker-directory failure."""


class RepositoryNotReady(SyncError):
    """No qualifying on-disk repository yet; retry later."""

    def __init__(self, tracker_project_id: int, attempt: int):
        self.tracker_project_id = tracker_project_id
        self.attempt = attempt
        super().__init__(
            f"Repository for Redmine project {tracker_project_id} "
            f"not ready (attempt {attempt})"
        )


class MaxAttemptsExceeded(SyncError):
    """Repository linking exhausted its retry schedule."""

    def __init__(
        self,
        tracker_project_id: int,
        hosting_project_id: int | None,
        attempts: int,
    ):
        self.tracker_project_id = tracker_project_id
        self.hosting_project_id = hosting_project_id
        self.attempts = attempts
        super().__init__(
            f"Failed to link GitLab repository after {attempts} attempts "
            f"for Redmine project {tracker_project_id}, "
            f"GitLab project {hosting_project_id}"
        )
