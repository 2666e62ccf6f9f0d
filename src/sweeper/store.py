"""In-memory de-duplication of sidecar shutdown dispatches."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Dict, Iterable, Optional

from src.common.workload import WorkloadIdentity

# Marks an entry whose dispatch has not concluded yet.
_IN_FLIGHT = None


class DedupStore:
    """Identities that were handed to the dispatcher and must not be re-sent.

    An entry is in flight from the moment its job is queued until the
    dispatch concludes. Successful dispatches then linger for ``ttl_seconds``
    so re-delivered events for a pod that is already shutting down are
    suppressed; failed ones are released at once. All mutation goes through
    one lock, which callers never see.
    """

    def __init__(
        self,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[WorkloadIdentity, Optional[float]] = {}
        self._lock = asyncio.Lock()

    def __contains__(self, identity: object) -> bool:
        if not isinstance(identity, WorkloadIdentity) or identity not in self._entries:
            return False
        expires_at = self._entries[identity]
        if expires_at is not _IN_FLIGHT and expires_at <= self._clock():
            del self._entries[identity]
            return False
        return True

    def __len__(self) -> int:
        self._evict_expired()
        return len(self._entries)

    def in_flight(self, identity: WorkloadIdentity) -> bool:
        return identity in self._entries and self._entries[identity] is _IN_FLIGHT

    async def insert_after(
        self,
        identity: WorkloadIdentity,
        handoff: Callable[[], Awaitable[bool]],
    ) -> bool:
        """Run ``handoff`` and record ``identity`` only if it succeeded.

        The presence check, the handoff and the insert form one critical
        section, so two callers racing on the same identity produce a single
        handoff.
        """

        async with self._lock:
            if identity in self:
                return False
            if not await handoff():
                return False
            self._entries[identity] = _IN_FLIGHT
            return True

    async def release(self, identity: WorkloadIdentity, succeeded: bool) -> None:
        async with self._lock:
            if identity not in self._entries:
                return
            if succeeded and self.ttl_seconds > 0:
                self._entries[identity] = self._clock() + self.ttl_seconds
            else:
                del self._entries[identity]

    async def discard(self, identity: WorkloadIdentity) -> None:
        async with self._lock:
            self._entries.pop(identity, None)

    async def retain_only(self, identities: Iterable[WorkloadIdentity]) -> int:
        keep = set(identities)
        async with self._lock:
            stale = [identity for identity in self._entries if identity not in keep]
            for identity in stale:
                del self._entries[identity]
        return len(stale)

    def _evict_expired(self) -> None:
        now = self._clock()
        expired = [
            identity
            for identity, expires_at in self._entries.items()
            if expires_at is not _IN_FLIGHT and expires_at <= now
        ]
        for identity in expired:
            del self._entries[identity]


__all__ = ["DedupStore"]
