from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, Optional

from src.common.settings import SweepSettings

from .detector import Failed, Terminated, detect_termination
from .dispatcher import SweepDispatcher
from .events import (
    Applied,
    Deleted,
    PodEvent,
    Restarted,
    SweepJob,
    container_statuses,
    pod_annotations,
    pod_identity,
    pod_ip,
    sidecar_address,
)
from .store import DedupStore

LOG = logging.getLogger(__name__)


class PodEventConsumer:
    """Turns pod watch events into sweep jobs, at most one per pod at a time."""

    def __init__(
        self,
        store: DedupStore,
        dispatcher: SweepDispatcher,
        settings: SweepSettings,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.settings = settings

    async def run(self, events: AsyncIterator[PodEvent]) -> None:
        async for event in events:
            try:
                await self.handle(event)
            except Exception:  # noqa: BLE001 - one bad event must not stop the sweep
                LOG.exception("failed to handle pod event %s", type(event).__name__)
        LOG.info("pod event stream ended")

    async def handle(self, event: PodEvent) -> None:
        if isinstance(event, Applied):
            await self.handle_applied(event.pod)
        elif isinstance(event, Deleted):
            await self.store.discard(event.identity)
        elif isinstance(event, Restarted):
            identities = []
            for pod in event.pods:
                identity = pod_identity(pod)
                if identity is not None:
                    identities.append(identity)
                await self.handle_applied(pod)
            pruned = await self.store.retain_only(identities)
            LOG.debug("watch restarted with %d pods, pruned %d entries", len(event.pods), pruned)

    async def handle_applied(self, pod: Dict[str, Any]) -> Optional[SweepJob]:
        identity = pod_identity(pod)
        if identity is None:
            LOG.debug("skipping pod without name or namespace")
            return None

        injected = pod_annotations(pod).get(self.settings.inject_annotation) == self.settings.inject_value
        if identity in self.store or not injected:
            LOG.debug("skipping pod update %s", identity)
            return None

        result = detect_termination(container_statuses(pod), self.settings.sidecar_name)
        if isinstance(result, Failed):
            LOG.info(
                "container %s of %s exited with %d, leaving the proxy running",
                result.container_name,
                identity,
                result.exit_code,
            )
            return None
        if not isinstance(result, Terminated):
            return None

        ip = pod_ip(pod)
        if not ip:
            LOG.debug("pod %s has terminated but has no IP", identity)
            return None

        job = SweepJob(identity=identity, sidecar_address=sidecar_address(ip, self.settings.admin_port))

        async def handoff() -> bool:
            return await self.dispatcher.submit(job)

        if not await self.store.insert_after(identity, handoff):
            LOG.debug("pod %s was not handed to the sweeper", identity)
            return None
        LOG.info("sent pod %s (%s) to the sweeper", identity, ip)
        return job


__all__ = ["PodEventConsumer"]
