"""Exactly-once release tracking for transient export resources."""

import inspect
from typing import Any, Callable

from loguru import logger

# Plain callable or coroutine function
Releaser = Callable[[], Any]


class ResourceTracker:
    """Registry of acquired resources and their release callbacks.

    Resources are released in reverse acquisition order. Each one is released
    at most once, no matter how many exit paths call :meth:`release_all`.
    """

    def __init__(self):
        self._entries: list[tuple[str, Releaser]] = []
        self._released: list[str] = []

    def track(self, name: str, releaser: Releaser) -> None:
        """Register a resource under a unique name."""
        if any(existing == name for existing, _ in self._entries):
            raise ValueError(f"Resource already tracked: {name}")
        self._entries.append((name, releaser))
        logger.debug(f"Tracking resource: {name}")

    def is_tracked(self, name: str) -> bool:
        return any(existing == name for existing, _ in self._entries)

    @property
    def released(self) -> list[str]:
        """Names released so far, in release order."""
        return list(self._released)

    @property
    def pending(self) -> list[str]:
        return [name for name, _ in self._entries]

    async def release(self, name: str) -> bool:
        """Release a single resource early. Returns False if it was not tracked."""
        for i, (existing, releaser) in enumerate(self._entries):
            if existing == name:
                del self._entries[i]
                await self._call(existing, releaser)
                return True
        return False

    async def release_all(self) -> None:
        """Release everything still tracked, newest first."""
        while self._entries:
            name, releaser = self._entries.pop()
            await self._call(name, releaser)

    async def _call(self, name: str, releaser: Releaser) -> None:
        try:
            result = releaser()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            # Release must continue for the remaining resources
            logger.warning(f"Failed to release {name}: {e}")
        finally:
            self._released.append(name)
            logger.debug(f"Released resource: {name}")
