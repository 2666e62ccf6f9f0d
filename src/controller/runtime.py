"""Wire the admission and sweep pipelines under one shutdown signal."""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass
from typing import Any, Awaitable, List, Optional

import httpx

from src.admission.server import AppServer, create_admin_app, create_app
from src.admission.tls import TlsMaterial
from src.common.settings import SweepSettings
from src.sweeper.consumer import PodEventConsumer
from src.sweeper.dispatcher import SweepDispatcher
from src.sweeper.store import DedupStore
from src.sweeper.watch import PodWatchSource

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookOptions:
    tls: TlsMaterial
    host: str = "0.0.0.0"
    port: int = 8443


@dataclass(frozen=True)
class AdminOptions:
    host: str = "0.0.0.0"
    port: int = 8080


def install_signal_handlers(shutdown: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def _signaled(signum: int) -> None:
        LOG.info("received signal %s, shutting down", signal.Signals(signum).name)
        shutdown.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, _signaled, signum)


async def run_webhook(settings: SweepSettings, options: WebhookOptions, shutdown: asyncio.Event) -> None:
    server = AppServer(
        create_app(settings),
        options.tls,
        name="admission",
        host=options.host,
        port=options.port,
        drain_timeout=settings.drain_timeout_seconds,
    )
    try:
        await server.run(shutdown)
    finally:
        shutdown.set()


async def run_admin(settings: SweepSettings, options: AdminOptions, shutdown: asyncio.Event) -> None:
    server = AppServer(
        create_admin_app(),
        name="admin",
        host=options.host,
        port=options.port,
        drain_timeout=settings.drain_timeout_seconds,
    )
    try:
        await server.run(shutdown)
    finally:
        shutdown.set()


async def run_sweeper(
    settings: SweepSettings,
    source: Any,
    shutdown: asyncio.Event,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> DedupStore:
    """Consume ``source.events()`` until it ends or shutdown is raised.

    In-flight shutdown requests get ``drain_timeout_seconds`` to finish.
    """

    store = DedupStore(ttl_seconds=settings.dedup_ttl_seconds)
    async with httpx.AsyncClient(timeout=settings.shutdown_timeout_seconds, transport=transport) as http:
        dispatcher = SweepDispatcher(http, store, queue_size=settings.queue_size)
        consumer = PodEventConsumer(store, dispatcher, settings)

        dispatch_task = asyncio.create_task(dispatcher.run())
        consume_task = asyncio.create_task(consumer.run(source.events()))
        stop_task = asyncio.create_task(shutdown.wait())
        try:
            await asyncio.wait({consume_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            source.stop()
            stop_task.cancel()
            if not consume_task.done():
                consume_task.cancel()
                try:
                    await consume_task
                except asyncio.CancelledError:
                    pass
            await dispatcher.close()
            await dispatch_task
            await dispatcher.drain(settings.drain_timeout_seconds)
            shutdown.set()
    LOG.info("sweeper stopped")
    return store


async def run(
    settings: SweepSettings,
    *,
    webhook: Optional[WebhookOptions] = None,
    source: Any = None,
    admin: Optional[AdminOptions] = None,
) -> None:
    shutdown = asyncio.Event()
    install_signal_handlers(shutdown)

    pipelines: List[Awaitable[Any]] = []
    if webhook is not None:
        pipelines.append(run_webhook(settings, webhook, shutdown))
    if source is not None:
        pipelines.append(run_sweeper(settings, source, shutdown))
    if not pipelines:
        LOG.warning("nothing to run")
        return
    if admin is not None:
        pipelines.append(run_admin(settings, admin, shutdown))
    await asyncio.gather(*pipelines)


def watch_source(settings: SweepSettings, core_api: Any) -> PodWatchSource:
    return PodWatchSource(
        core_api,
        settings.watch_selector,
        timeout_seconds=settings.watch_timeout_seconds,
        request_timeout=settings.api_timeout_seconds,
    )


__all__ = [
    "AdminOptions",
    "WebhookOptions",
    "install_signal_handlers",
    "run",
    "run_admin",
    "run_sweeper",
    "run_webhook",
    "watch_source",
]
