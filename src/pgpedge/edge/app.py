"""HTTP surface serving public keys, WKD entries and policy documents."""

from __future__ import annotations

import argparse
import sys
import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import structlog
import uvicorn
from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..common.observability import configure_logging, configure_tracing, instrument_fastapi_app
from ..common.settings import EdgeSettings
from .origin import MirrorClient
from .router import CORS_HEADERS, AssetRouter, CachePopulator
from .store import AssetStore, build_store


LOGGER = structlog.get_logger("pgpedge.edge")

ROUTED_METHODS = ["GET", "HEAD", "OPTIONS", "POST", "PUT", "PATCH", "DELETE"]


class EdgeState:
    def __init__(
        self,
        settings: EdgeSettings,
        store: AssetStore,
        http_client: httpx.AsyncClient,
    ) -> None:
        self.settings = settings
        self.store = store
        self.http = http_client
        self.populator = CachePopulator(store)
        self.router = AssetRouter(
            settings=settings,
            store=store,
            origin=MirrorClient(settings.github_mirror_base, http_client),
            populator=self.populator,
        )
        self.logger = LOGGER.bind(backend=store.status().get("backend"))


def get_state(request: Request) -> EdgeState:
    return request.app.state.edge  # type: ignore[attr-defined]


def create_app(
    settings: Optional[EdgeSettings] = None,
    *,
    store: Optional[AssetStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the ASGI app.

    ``store`` and ``transport`` replace the configured cache backend and the
    mirror's network transport; callers that pass a store keep ownership of it.
    """

    settings = settings or EdgeSettings()
    configure_logging("pgpedge.edge", settings.log_level)
    configure_tracing(
        service_name="pgpedge.edge",
        endpoint=settings.otel_exporter_endpoint,
        headers=settings.otel_exporter_headers,
        sampler_ratio=settings.otel_sampler_ratio,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.origin_timeout_seconds),
            follow_redirects=True,
            transport=transport,
        )
        asset_store = store if store is not None else build_store(settings)
        state = EdgeState(settings, asset_store, http_client)
        app.state.edge = state
        state.logger.info(
            "edge_started",
            mirror=settings.github_mirror_base,
            root_object=settings.resolve_root_object(),
            host_allow_list=bool(settings.allowed_hosts),
        )
        try:
            yield
        finally:
            await state.populator.drain()
            await http_client.aclose()
            if store is None:
                await asset_store.close()

    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    instrument_fastapi_app(app)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            LOGGER.exception(
                "http_request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            raise

        log_kwargs = {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round((time.perf_counter() - start) * 1000, 2),
        }
        if response.status_code >= 500:
            LOGGER.error("http_request", **log_kwargs)
        else:
            LOGGER.info("http_request", **log_kwargs)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> PlainTextResponse:
        headers = {**(exc.headers or {}), **CORS_HEADERS}
        if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
            headers = {name: value for name, value in headers.items() if name.lower() != "allow"}
            headers["Allow"] = CORS_HEADERS["Access-Control-Allow-Methods"]
        body = "" if request.method == "HEAD" else str(exc.detail)
        return PlainTextResponse(body, status_code=exc.status_code, headers=headers)

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> PlainTextResponse:
        body = "" if request.method == "HEAD" else "Internal Server Error"
        return PlainTextResponse(
            body,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            headers=dict(CORS_HEADERS),
        )

    @app.api_route("/{asset_path:path}", methods=ROUTED_METHODS)
    async def serve_asset(request: Request, state: EdgeState = Depends(get_state)) -> Response:
        result = await state.router.handle(request.method, request.headers.get("host"), request.scope["path"])
        return Response(content=result.body, status_code=result.status_code, headers=result.headers)

    return app


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve cached PGP key material over HTTP")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind")
    parser.add_argument("--port", type=int, default=8787, help="Port to listen on")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    uvicorn.run(create_app(), host=args.host, port=args.port, log_config=None)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
