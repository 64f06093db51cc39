"""Deadlines, bounded fan-out and per-project write serialization.

Every call into an external capability (vector search, summarize, compress,
embed, count tokens) goes through :func:`with_deadline`, so a slow or broken
upstream surfaces as an :class:`UpstreamServiceError` for that one sub-task
and never as a hang or an unrelated exception type.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

from membank.exceptions import LLMError, MembankError, UpstreamServiceError

logger = logging.getLogger("membank.concurrency")

T = TypeVar("T")


async def with_deadline(awaitable: Awaitable[T], timeout: float, operation: str) -> T:
    """Await `awaitable` with a deadline, wrapping failures with context.

    Validation and lookup errors pass through untouched; timeouts, provider
    errors and foreign exceptions become UpstreamServiceError.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"{operation} timed out after {timeout}s")
        raise UpstreamServiceError(
            f"{operation} timed out after {timeout}s", operation=operation
        ) from None
    except UpstreamServiceError:
        raise
    except LLMError as e:
        raise UpstreamServiceError(f"{operation} failed: {e}", operation=operation) from e
    except MembankError:
        raise
    except Exception as e:
        raise UpstreamServiceError(f"{operation} failed: {e}", operation=operation) from e


async def gather_bounded(
    factories: Iterable[Callable[[], Awaitable[T]]],
    limit: int,
) -> list[T | BaseException]:
    """Run coroutine factories with at most `limit` in flight.

    Results keep the input order. Exceptions are returned in place of
    results so one failing sub-task cannot cancel its siblings.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def _run(factory: Callable[[], Awaitable[T]]) -> T:
        async with semaphore:
            return await factory()

    return await asyncio.gather(
        *(_run(f) for f in factories), return_exceptions=True
    )


class ProjectLocks:
    """One asyncio.Lock per project: a single writer per summary tree."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, project_name: str) -> asyncio.Lock:
        """Get or create the lock for a project."""
        if project_name not in self._locks:
            self._locks[project_name] = asyncio.Lock()
        return self._locks[project_name]

    def is_locked(self, project_name: str) -> bool:
        lock = self._locks.get(project_name)
        return lock is not None and lock.locked()
