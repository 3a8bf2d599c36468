"""
Waiter registry: the futures suspended callers are awaiting, keyed by request id.

A waiter is inserted when its caller suspends and removed exactly once,
when the request is answered or cancelled. Removed ids are remembered so a
retired id can never be registered again.
"""
import asyncio
from typing import Dict, List, Optional, Set

from .models import UserResponse


class WaiterRegistry:

    def __init__(self):
        self._waiters: Dict[str, asyncio.Future] = {}
        self._retired: Set[str] = set()

    def __contains__(self, request_id: str) -> bool:
        return request_id in self._waiters

    def __len__(self) -> int:
        return len(self._waiters)

    def ids(self) -> List[str]:
        return list(self._waiters)

    def add(self, request_id: str) -> asyncio.Future:
        """Register a waiter for a fresh request id and return its future."""
        if request_id in self._waiters or request_id in self._retired:
            raise RuntimeError(f"Waiter {request_id} was already registered")
        future = asyncio.get_running_loop().create_future()
        self._waiters[request_id] = future
        return future

    def resolve(self, request_id: str, result: UserResponse) -> bool:
        """Hand ``result`` to the caller. False if the id has no live waiter."""
        future = self._pop(request_id)
        if future is None:
            return False
        if not future.done():
            future.set_result(result)
        return True

    def discard(self, request_id: str) -> bool:
        """Retire a waiter without resolving it (its caller went away)."""
        return self._pop(request_id) is not None

    def _pop(self, request_id: str) -> Optional[asyncio.Future]:
        future = self._waiters.pop(request_id, None)
        if future is not None:
            self._retired.add(request_id)
        return future
