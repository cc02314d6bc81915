"""Redmine user to GitLab user resolution.

Strategies run in a fixed order and stop at the first hit:

1. Cached ``IdentityMapping`` (no GitLab call).
2. External single-sign-on identity (only when the user has one linked).
3. Exact username.
4. Email, filtered to exact equality over GitLab's search results.

Every hit from 2-4 is cached before returning.  Misses are never cached
so a GitLab account created later is found on the next call.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from ..errors import HostingApiError
from .models import IdentityCacheStats, IdentityMapping, MatchMethod, TrackerUser
from .store import PersistenceStore

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "openid_connect"
RECENT_WINDOW = timedelta(days=1)


class _UserLookup(Protocol):
    def find_user_by_external_identity(
        self, extern_uid: str, provider: str
    ) -> dict | None: ...

    def find_user_by_username(self, username: str) -> dict | None: ...

    def find_users_by_email(self, email: str) -> list[dict]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IdentityResolver:
    """Resolve Redmine users to GitLab user ids with a persistent cache.

    Args:
        client: GitLab user lookups.
        store: Where ``IdentityMapping`` rows live.
        provider: GitLab identity provider name for external-uid lookups.
        clock: Returns "now"; injectable for tests.
    """

    def __init__(
        self,
        client: _UserLookup,
        store: PersistenceStore,
        provider: str = DEFAULT_PROVIDER,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._client = client
        self._store = store
        self._provider = provider
        self._clock = clock

    def resolve(self, user: TrackerUser) -> int | None:
        """Return the GitLab user id for ``user``, or ``None`` if not found."""
        cached = self._store.get_identity(user.id)
        if cached is not None:
            logger.debug(
                "Identity cache hit: %s -> %s (%s)",
                user.login,
                cached.hosting_user_id,
                cached.match_method.value,
            )
            return cached.hosting_user_id

        for method, lookup in self._strategies(user):
            try:
                found = lookup()
            except HostingApiError as e:
                logger.warning(
                    "Identity lookup by %s failed for %s: %s",
                    method.value,
                    user.login,
                    e,
                )
                continue
            if found:
                return self.cache_mapping(
                    user.id, found["id"], found.get("username"), method
                ).hosting_user_id

        logger.warning("No GitLab user found for Redmine user %s", user.login)
        return None

    def cache_mapping(
        self,
        tracker_user_id: int,
        hosting_user_id: int,
        hosting_username: str | None,
        method: MatchMethod,
    ) -> IdentityMapping:
        """Upsert one identity row stamped with the current time."""
        mapping = IdentityMapping(
            tracker_user_id=tracker_user_id,
            hosting_user_id=hosting_user_id,
            hosting_username=hosting_username,
            match_method=method,
            last_synced_at=self._clock(),
        )
        self._store.save_identity(mapping)
        logger.info(
            "Cached identity %s -> %s (%s) via %s",
            tracker_user_id,
            hosting_user_id,
            hosting_username,
            method.value,
        )
        return mapping

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def invalidate(self, tracker_user_id: int) -> bool:
        removed = self._store.delete_identity(tracker_user_id)
        logger.info(
            "Invalidated identity cache for user %s (%s)",
            tracker_user_id,
            "removed" if removed else "not cached",
        )
        return removed

    def invalidate_all(self) -> int:
        count = self._store.delete_all_identities()
        logger.info("Invalidated %d cached identities", count)
        return count

    def stats(self, now: datetime | None = None) -> IdentityCacheStats:
        """Summarise the cache.

        ``recent_count`` counts rows synced within the last 24 hours of ``now``.
        """
        now = now or self._clock()
        rows = self._store.list_identities()
        by_method = Counter(row.match_method.value for row in rows)
        recent = sum(1 for row in rows if row.last_synced_at > now - RECENT_WINDOW)
        return IdentityCacheStats(
            total=len(rows), by_method=dict(by_method), recent_count=recent
        )

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _strategies(self, user: TrackerUser):
        if user.external_uid:
            yield MatchMethod.EXTERNAL_IDENTITY, lambda: (
                self._client.find_user_by_external_identity(
                    user.external_uid, self._provider
                )
            )
        yield MatchMethod.USERNAME, lambda: self._client.find_user_by_username(
            user.login
        )
        if user.mail:
            yield MatchMethod.EMAIL, lambda: self._match_email(user.mail)

    def _match_email(self, email: str) -> dict | None:
        # GitLab's search is fuzzy; only an exact address counts.
        for candidate in self._client.find_users_by_email(email):
            if candidate.get("email") == email:
                return candidate
        return None
