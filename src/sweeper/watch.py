"""List-then-watch pods through the Kubernetes API as an async event stream."""

from __future__ import annotations

import asyncio
import functools
import logging
import random
import threading
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from .events import Applied, Deleted, PodEvent, Restarted, pod_identity

LOG = logging.getLogger(__name__)

_AUTH_FAILURES = {401, 403}
_MAX_BACKOFF_SECONDS = 30

# Posted to the event queue when a watch stream ends.
_END = object()


def load_core_api() -> client.CoreV1Api:
    """In-cluster config first, then the local kubeconfig.

    Raises :class:`ConfigException` when neither is available.
    """

    try:
        config.load_incluster_config()
        LOG.info("Loaded in-cluster Kubernetes config")
    except ConfigException:
        config.load_kube_config()
        LOG.info("Loaded kubeconfig")
    return client.CoreV1Api()


class PodWatchSource:
    """Turns the blocking kubernetes watch into :class:`PodEvent` values.

    The initial list, and every re-list after the resource version expires,
    is emitted as a single ``Restarted`` event. The list call runs in a worker
    thread bounded by ``request_timeout``. Watch streams are read by a daemon
    thread that feeds an asyncio queue, so :meth:`stop` ends the event stream
    at once and a read blocked on an idle watch never holds up process exit.
    """

    def __init__(
        self,
        core_api: Any,
        label_selector: str,
        *,
        timeout_seconds: int = 60,
        request_timeout: float = 5.0,
        serializer: Optional[client.ApiClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.core_api = core_api
        self.label_selector = label_selector
        self.timeout_seconds = timeout_seconds
        self.request_timeout = request_timeout
        self.serializer = serializer or client.ApiClient()
        self._sleep = sleep
        self._stopped = False
        self._watcher: Optional[watch.Watch] = None
        self._queue: Optional[asyncio.Queue] = None
        self._response: Any = None
        self._response_lock = threading.Lock()

    def stop(self) -> None:
        self._stopped = True
        if self._watcher is not None:
            self._watcher.stop()
        self._close_response()
        if self._queue is not None:
            self._queue.put_nowait(_END)

    def to_dict(self, obj: Any) -> Dict[str, Any]:
        data = self.serializer.sanitize_for_serialization(obj)
        return data if isinstance(data, dict) else {}

    async def _backoff(self, seconds: int) -> int:
        jittered = seconds * (0.5 + random.random())  # noqa: S311
        await self._sleep(jittered)
        return min(seconds * 2, _MAX_BACKOFF_SECONDS)

    async def _list(self) -> Any:
        return await asyncio.to_thread(
            self.core_api.list_pod_for_all_namespaces,
            label_selector=self.label_selector,
            _request_timeout=self.request_timeout,
        )

    def _watch_call(self) -> Callable[..., Any]:
        """``list_pod_for_all_namespaces`` that keeps the streaming response so stop() can close it."""

        list_pods = self.core_api.list_pod_for_all_namespaces

        # wraps() keeps the docstring the watch parses for the return type.
        @functools.wraps(list_pods)
        def call(*args: Any, **kwargs: Any) -> Any:
            response = list_pods(*args, **kwargs)
            with self._response_lock:
                self._response = response
            if self._stopped:
                self._close_response()
            return response

        return call

    def _close_response(self) -> None:
        with self._response_lock:
            response, self._response = self._response, None
        if response is None:
            return
        # urllib3 >= 2.3 can interrupt a read blocked in another thread.
        shutdown = getattr(response, "shutdown", None)
        if shutdown is not None:
            shutdown()
        response.close()

    def _read_stream(
        self,
        loop: asyncio.AbstractEventLoop,
        queue: asyncio.Queue,
        watcher: watch.Watch,
        resource_version: Optional[str],
    ) -> None:
        def post(item: Any) -> None:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, item)
            except RuntimeError:
                LOG.debug("event loop closed, dropping watch item")

        try:
            stream = watcher.stream(
                self._watch_call(),
                label_selector=self.label_selector,
                resource_version=resource_version or None,
                timeout_seconds=self.timeout_seconds,
                _request_timeout=(self.request_timeout, None),
            )
            for event in stream:
                if self._stopped:
                    break
                post(event)
        except Exception as exc:  # noqa: BLE001 - re-raised on the event loop
            if self._stopped:
                LOG.debug("pod watch closed during shutdown: %s", exc)
            else:
                post(exc)
        finally:
            post(_END)

    def _convert(self, event: Dict[str, Any]) -> Optional[PodEvent]:
        obj = event.get("object")
        if obj is None:
            return None
        pod = self.to_dict(obj)
        event_type = str(event.get("type", ""))
        if event_type in {"ADDED", "MODIFIED"}:
            return Applied(pod)
        if event_type == "DELETED":
            identity = pod_identity(pod)
            return Deleted(identity) if identity is not None else None
        return None

    async def events(self) -> AsyncIterator[PodEvent]:
        resource_version: Optional[str] = None
        backoff_seconds = 1

        while not self._stopped:
            if resource_version is None:
                try:
                    listing = await self._list()
                except ApiException as exc:
                    if exc.status in _AUTH_FAILURES:
                        LOG.error(
                            "Kubernetes API access denied while listing pods (status=%s). "
                            "Check RBAC and service account permissions.",
                            exc.status,
                        )
                        return
                    LOG.exception("Listing pods failed")
                    backoff_seconds = await self._backoff(backoff_seconds)
                    continue
                metadata = getattr(listing, "metadata", None)
                resource_version = getattr(metadata, "resource_version", None) or ""
                pods = tuple(self.to_dict(pod) for pod in (listing.items or []))
                LOG.info("Starting pod watch from resourceVersion %s", resource_version)
                yield Restarted(pods)
                if self._stopped:
                    return

            watcher = watch.Watch()
            queue: asyncio.Queue = asyncio.Queue()
            self._watcher = watcher
            self._queue = queue
            reader = threading.Thread(
                target=self._read_stream,
                args=(asyncio.get_running_loop(), queue, watcher, resource_version),
                name="pod-watch",
                daemon=True,
            )
            reader.start()
            try:
                while not self._stopped:
                    item = await queue.get()
                    if item is _END:
                        break
                    if isinstance(item, Exception):
                        raise item
                    obj = item.get("object")
                    version = getattr(getattr(obj, "metadata", None), "resource_version", None)
                    if version:
                        resource_version = version
                    converted = self._convert(item)
                    if converted is not None:
                        yield converted
                backoff_seconds = 1
            except ApiException as exc:
                if exc.status == 410:
                    LOG.warning("Watch resource version expired, re-listing")
                    resource_version = None
                    continue
                if exc.status in _AUTH_FAILURES:
                    LOG.error("Kubernetes API watch denied (status=%s)", exc.status)
                    return
                LOG.exception("Kubernetes API watch error")
                backoff_seconds = await self._backoff(backoff_seconds)
            except Exception:  # noqa: BLE001 - reconnect on any transport failure
                LOG.exception("Unexpected watch error")
                backoff_seconds = await self._backoff(backoff_seconds)
            finally:
                watcher.stop()
                self._close_response()
                self._watcher = None
                self._queue = None


__all__ = ["PodWatchSource", "load_core_api"]
