"""Send ``POST /shutdown`` to the proxy of every finished workload."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set

import httpx

from .events import SweepJob
from .store import DedupStore

LOG = logging.getLogger(__name__)

SHUTDOWN_PATH = "/shutdown"


class DispatchError(Exception):
    """Raised when a sidecar did not acknowledge the shutdown request."""


class SweepDispatcher:
    """Bounded queue of sweep jobs, each sent by its own task.

    Shutdown calls are at most once: failures are logged and the identity is
    released from the store, never retried.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        store: DedupStore,
        queue_size: int = 100,
    ) -> None:
        self.client = client
        self.store = store
        self._queue: "asyncio.Queue[Optional[SweepJob]]" = asyncio.Queue(maxsize=queue_size)
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def submit(self, job: SweepJob) -> bool:
        """Queue ``job``, waiting for capacity. False once the dispatcher is closed."""

        if self._closed:
            return False
        await self._queue.put(job)
        return True

    async def send_shutdown(self, job: SweepJob) -> httpx.Response:
        url = f"http://{job.sidecar_address}{SHUTDOWN_PATH}"
        try:
            response = await self.client.post(url)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise DispatchError(f"shutdown request to {url} failed: {exc}") from exc
        if not response.is_success:
            raise DispatchError(f"shutdown request to {url} returned {response.status_code}")
        return response

    async def dispatch(self, job: SweepJob) -> bool:
        succeeded = False
        try:
            LOG.info("sending shutdown request pod=%s address=%s", job.identity, job.sidecar_address)
            response = await self.send_shutdown(job)
            succeeded = True
            LOG.info("shutdown sent pod=%s status=%s", job.identity, response.status_code)
        except DispatchError as exc:
            LOG.warning("shutdown failed pod=%s: %s", job.identity, exc)
        finally:
            await self.store.release(job.identity, succeeded)
        return succeeded

    async def run(self) -> None:
        while True:
            job = await self._queue.get()
            if job is None:
                break
            task = asyncio.create_task(self.dispatch(job), name=f"sweep:{job.identity}")
            self._tasks.add(task)
            task.add_done_callback(self._finished)
        LOG.debug("dispatcher stopped accepting jobs")

    def _finished(self, task: "asyncio.Task[bool]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOG.error("shutdown dispatch %s crashed", task.get_name(), exc_info=exc)

    async def close(self) -> None:
        """Stop accepting jobs; already queued jobs are still dispatched."""

        if self._closed:
            return
        self._closed = True
        await self._queue.put(None)

    async def drain(self, timeout: float) -> int:
        """Wait up to ``timeout`` seconds for in-flight dispatches.

        Returns how many had to be cancelled.
        """

        pending = set(self._tasks)
        if not pending:
            return 0
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            LOG.warning("cancelled %d shutdown request(s) after %.1fs drain", len(still_running), timeout)
        return len(still_running)


__all__ = ["DispatchError", "SHUTDOWN_PATH", "SweepDispatcher"]
