"""In-process coordination of structural operations.

There is no cross-process locking: one cooperating process is assumed per
data root.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Literal

from .config import LOCK_TIMEOUT_SECONDS
from .errors import ConcurrentModificationError
from .paths import normalize_path, paths_overlap

log = logging.getLogger(__name__)

ConflictPolicy = Literal["queue", "reject"]

# Sentinel prefix covering every topic of a scope (reorders at the root level)
SCOPE_WIDE = ""


def _overlaps(a: str, b: str) -> bool:
    if a == SCOPE_WIDE or b == SCOPE_WIDE:
        return True
    return paths_overlap(a, b)


class PathLocks:
    """Registry of topic-path prefixes held by running structural operations.

    Two prefixes conflict when one equals or is an ancestor of the other, so
    operations on unrelated subtrees run concurrently. Conflicting callers
    queue on a condition variable (``on_conflict="queue"``) or fail fast with
    ConcurrentModificationError (``on_conflict="reject"``).
    """

    def __init__(self, on_conflict: ConflictPolicy = "queue", timeout: float | None = LOCK_TIMEOUT_SECONDS):
        self.on_conflict = on_conflict
        self.timeout = timeout
        self._held: list[str] = []
        self._condition: asyncio.Condition | None = None

    @property
    def condition(self) -> asyncio.Condition:
        # Created lazily so the registry binds to the running event loop
        if self._condition is None:
            self._condition = asyncio.Condition()
        return self._condition

    def conflict(self, paths: list[str]) -> str | None:
        """First held prefix overlapping any of ``paths``, if any."""
        for wanted in paths:
            for held in self._held:
                if _overlaps(wanted, held):
                    return held
        return None

    def is_locked(self, path: str) -> bool:
        return self.conflict([normalize_path(path)]) is not None

    @property
    def held(self) -> list[str]:
        return list(self._held)

    @asynccontextmanager
    async def hold(self, *paths: str | None) -> AsyncIterator[None]:
        """Hold every prefix in ``paths`` for the duration of the block.

        ``None`` stands for the scope root and conflicts with everything.
        """
        wanted = [SCOPE_WIDE if p is None else normalize_path(p) for p in paths]
        condition = self.condition

        async with condition:
            held = self.conflict(wanted)
            if held is not None:
                if self.on_conflict == "reject":
                    raise ConcurrentModificationError(wanted[0], held)
                log.debug("Waiting for %s (held: %s)", wanted, held)
                try:
                    await asyncio.wait_for(
                        condition.wait_for(lambda: self.conflict(wanted) is None),
                        timeout=self.timeout,
                    )
                except TimeoutError as e:
                    raise ConcurrentModificationError(wanted[0], self.conflict(wanted) or held) from e
            self._held.extend(wanted)

        try:
            yield
        finally:
            async with condition:
                for path in wanted:
                    self._held.remove(path)
                condition.notify_all()


class KeyedLocks:
    """One asyncio.Lock per key, serializing read-modify-write per item path."""

    def __init__(self):
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def get(self, key: str) -> asyncio.Lock:
        return self._locks[key]

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        async with self._locks[key]:
            yield
