from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from hypercorn.asyncio import serve
from hypercorn.config import Config

from src.common.settings import SweepSettings

from .response import review_response
from .tls import ALPN_PROTOCOLS, TlsMaterial

LOG = logging.getLogger(__name__)


@lru_cache()
def get_settings() -> SweepSettings:
    return SweepSettings.load()


def add_health_routes(app: FastAPI) -> FastAPI:
    @app.get("/healthz", response_class=PlainTextResponse)
    def healthz() -> str:
        return "ok"

    @app.get("/readyz", response_class=PlainTextResponse)
    def readyz() -> str:
        return "ok"

    return app


def create_app(settings: Optional[SweepSettings] = None) -> FastAPI:
    app = FastAPI(
        title="linkerd-sweep admission",
        description="Wraps batch workload entrypoints so their proxy sidecar can be shut down.",
        version="0.1.0",
    )
    if settings is not None:
        app.dependency_overrides[get_settings] = lambda: settings

    @app.post("/mutate")
    async def mutate(
        request: Request,
        current: SweepSettings = Depends(get_settings),
    ) -> JSONResponse:
        # Read the raw body so malformed reviews are denied instead of 422'd.
        body = await request.body()
        return JSONResponse(review_response(body, current))

    return add_health_routes(app)


def create_admin_app() -> FastAPI:
    """Plain-HTTP liveness and readiness for processes without the webhook."""

    app = FastAPI(title="linkerd-sweep admin", version="0.1.0", docs_url=None, redoc_url=None, openapi_url=None)
    return add_health_routes(app)


class AppServer:
    """Serves an ASGI app on hypercorn until the shutdown event is set.

    With TLS material the listener negotiates ``h2`` or ``http/1.1`` through
    ALPN. Without it the app is served over plain HTTP.
    """

    def __init__(
        self,
        app: FastAPI,
        tls: Optional[TlsMaterial] = None,
        *,
        name: str = "admission",
        host: str = "0.0.0.0",
        port: int = 8443,
        drain_timeout: float = 10.0,
    ) -> None:
        self.app = app
        self.tls = tls
        self.name = name
        self.host = host
        self.port = port
        self.drain_timeout = drain_timeout

    def build_config(self) -> Config:
        config = Config()
        config.bind = [f"{self.host}:{self.port}"]
        config.graceful_timeout = self.drain_timeout
        config.errorlog = logging.getLogger("hypercorn.error")
        if self.tls is not None:
            config.certfile = str(self.tls.cert_path)
            config.keyfile = str(self.tls.key_path)
            config.alpn_protocols = list(ALPN_PROTOCOLS)
        return config

    async def run(self, shutdown: asyncio.Event) -> None:
        config = self.build_config()
        scheme = "https" if config.ssl_enabled else "http"
        LOG.info("Serving %s on %s://%s:%s", self.name, scheme, self.host, self.port)
        await serve(self.app, config, shutdown_trigger=shutdown.wait)
        LOG.info("%s server stopped", self.name.capitalize())


app = create_app()


__all__ = ["AppServer", "add_health_routes", "app", "create_admin_app", "create_app", "get_settings"]
