from __future__ import annotations

from collections import deque
from typing import Protocol

from academy.models.audit import FailedSignIn

# The in-memory log forgets the oldest entries past this size.
IN_MEMORY_CAPACITY = 1000


class FailedSignInRepo(Protocol):
    async def record(self, entry: FailedSignIn) -> None: ...
    async def recent(self, limit: int) -> list[FailedSignIn]: ...


class InMemoryFailedSignInRepo:
    def __init__(self, capacity: int = IN_MEMORY_CAPACITY) -> None:
        self._entries: deque[FailedSignIn] = deque(maxlen=capacity)

    async def record(self, entry: FailedSignIn) -> None:
        self._entries.append(entry)

    async def recent(self, limit: int) -> list[FailedSignIn]:
        """Newest first, in the order entries were recorded."""
        return list(reversed(self._entries))[:limit]
