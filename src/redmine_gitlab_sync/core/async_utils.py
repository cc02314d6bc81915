"""Async utilities for calling the blocking HTTP clients from MCP handlers."""

import asyncio
import logging
from typing import Any, Callable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

# Module-level semaphore, initialized at server startup
_semaphore: asyncio.Semaphore | None = None


def init_semaphore(max_parallel: int = 2) -> None:
    """Initialize the concurrency semaphore. Call once at server startup."""
    global _semaphore
    _semaphore = asyncio.Semaphore(max_parallel)
    logger.info("API request semaphore initialized: max_parallel=%d", max_parallel)


async def run_sync(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a synchronous function in a worker thread without blocking the loop.

    Example:
        # In an MCP tool handler:
        groups = await run_sync(engine.gitlab.list_groups)
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def run_sync_limited(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Like :func:`run_sync`, bounded by the concurrency semaphore.

    Falls back to unbounded if the semaphore is not initialized.  Used for
    calls that fan out to many GitLab or Redmine requests.
    """
    if _semaphore is None:
        return await asyncio.to_thread(func, *args, **kwargs)
    async with _semaphore:
        return await asyncio.to_thread(func, *args, **kwargs)
