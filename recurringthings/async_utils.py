"""Async helpers for recurringthings.

The engine fetches from storage in two concurrent phases. Each phase is a
plain ``asyncio.gather`` optionally bounded by a timeout; on timeout the
pending fetches are cancelled and ``FetchTimeoutError`` is raised.
"""

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator, Awaitable
from typing import Any, Optional, TypeVar

from .exceptions import FetchTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AsyncOrchestrator:
    """Runs concurrent collaborator fetches with an optional timeout.

    Holds only its configured timeout, so one instance can serve any number
    of concurrent queries.
    """

    def __init__(self, default_timeout: Optional[float] = None):
        """Initialize async orchestrator.

        Args:
            default_timeout: Timeout in seconds applied to each gather, None for no limit
        """
        self.default_timeout = default_timeout

        logger.debug("AsyncOrchestrator initialized: default_timeout=%s", default_timeout)

    async def gather_with_timeout(
        self,
        *awaitables: Awaitable[Any],
        timeout: Optional[float] = None,
    ) -> list[Any]:
        """Gather multiple awaitables with timeout.

        The first collaborator failure propagates unchanged and the remaining
        fetches are cancelled.

        Args:
            *awaitables: Coroutines to run concurrently
            timeout: Timeout in seconds (falls back to default_timeout)

        Returns:
            List of results in argument order

        Raises:
            FetchTimeoutError: If timeout occurs
        """
        effective_timeout = timeout if timeout is not None else self.default_timeout
        tasks = [asyncio.ensure_future(a) for a in awaitables]

        try:
            if effective_timeout is None:
                return list(await asyncio.gather(*tasks))
            return list(await asyncio.wait_for(asyncio.gather(*tasks), timeout=effective_timeout))
        except asyncio.TimeoutError as e:
            logger.warning(
                "Fetch phase timed out after %.2fs (%d fetches)", effective_timeout, len(tasks)
            )
            raise FetchTimeoutError(
                f"Fetch phase exceeded timeout of {effective_timeout}s"
            ) from e
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

async def collect(source: AsyncIterable[T]) -> list[T]:
    """Drain an async iterable into a list."""
    return [item async for item in source]


async def materialize(source: AsyncIterator[T], limit: Optional[int] = None) -> list[T]:
    """Collect up to ``limit`` items from an async iterator.

    Stops consuming as soon as the limit is reached so the producer can be
    abandoned early.
    """
    results: list[T] = []
    async for item in source:
        results.append(item)
        if limit is not None and len(results) >= limit:
            break
    return results
