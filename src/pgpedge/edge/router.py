"""Per-request orchestration: authorise, normalise, look up, fall back, populate."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional

import structlog
from fastapi import HTTPException, status
from opentelemetry import trace

from ..common.schemas import AssetMetadata, AssetRecord
from ..common.settings import ASSET_CACHE_TTL_SECONDS, EdgeSettings
from .content_types import TEXT_PLAIN, resolve_content_type
from .hosts import is_allowed_host, parse_allowed_hosts
from .origin import MirrorClient, OriginNotFound, OriginUnavailable
from .paths import ROOT, InvalidAssetPath, normalize_path
from .store import AssetStore, CacheStoreUnavailable


LOGGER = structlog.get_logger("pgpedge.edge.router")
TRACER = trace.get_tracer("pgpedge.edge.router")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, HEAD, OPTIONS",
    "Access-Control-Allow-Headers": "Accept, Accept-Encoding, Origin",
}
ASSET_CACHE_CONTROL = "public, max-age=300, immutable"
SERVED_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


@dataclass
class AssetResponse:
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""


class CachePopulator:
    """Runs cache writes outside the request path and keeps them alive until done."""

    def __init__(self, store: AssetStore, ttl_seconds: int = ASSET_CACHE_TTL_SECONDS) -> None:
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def schedule(self, key: str, body: bytes, metadata: AssetMetadata) -> asyncio.Task:
        task = asyncio.create_task(self._write(key, body, metadata), name=f"populate:{key}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _write(self, key: str, body: bytes, metadata: AssetMetadata) -> None:
        try:
            await self._store.put(key, body, metadata, self._ttl_seconds)
        except Exception:  # noqa: BLE001
            LOGGER.exception("cache_populate_failed", key=key)
            return
        LOGGER.info("cache_populated", key=key, bytes=len(body), content_type=metadata.content_type)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class AssetRouter:
    def __init__(
        self,
        settings: EdgeSettings,
        store: AssetStore,
        origin: MirrorClient,
        populator: CachePopulator,
    ) -> None:
        self._store = store
        self._origin = origin
        self._populator = populator
        self._allowed_hosts = parse_allowed_hosts(settings.allowed_hosts)
        self._root_object = settings.resolve_root_object()

    async def handle(self, method: str, host: Optional[str], path: str) -> AssetResponse:
        method = method.upper()
        if method not in SERVED_METHODS:
            raise HTTPException(
                status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
                detail="Method Not Allowed",
                headers={"Allow": CORS_HEADERS["Access-Control-Allow-Methods"]},
            )
        if method == "OPTIONS":
            return AssetResponse(status_code=status.HTTP_204_NO_CONTENT, headers=dict(CORS_HEADERS))

        if not is_allowed_host(host, self._allowed_hosts):
            LOGGER.info("host_rejected", host=host)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden host")

        key, is_root = self._resolve_key(path)

        record = await self._lookup(key)
        if record is not None:
            return self._asset_response(method, record.body, record.metadata.content_type, is_root)

        return await self._fallback(method, key, is_root)

    def _resolve_key(self, path: str) -> tuple[str, bool]:
        try:
            normalized = normalize_path(path)
        except InvalidAssetPath:
            LOGGER.info("invalid_asset_path", path=path)
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found") from None
        if normalized is not ROOT:
            return normalized, False
        if not self._root_object:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
        return self._root_object, True

    async def _lookup(self, key: str) -> Optional[AssetRecord]:
        with TRACER.start_as_current_span("router.cache_lookup", attributes={"pgpedge.asset_key": key}) as span:
            try:
                record = await self._store.get(key)
            except CacheStoreUnavailable as exc:
                LOGGER.warning("cache_read_failed", key=key, error=str(exc))
                record = None
            span.set_attribute("pgpedge.cache_hit", record is not None)
        if record is None:
            LOGGER.info("cache_miss", key=key)
        else:
            LOGGER.info("cache_hit", key=key, bytes=len(record.body))
        return record

    async def _fallback(self, method: str, key: str, is_root: bool) -> AssetResponse:
        try:
            fetched = await self._origin.fetch(key)
        except OriginNotFound:
            if not is_root:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found") from None
            LOGGER.error("root_object_missing", key=key)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Root object missing",
            ) from None
        except OriginUnavailable as exc:
            LOGGER.warning("origin_fetch_failed", key=key, status=exc.status_code, reason=exc.reason)
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Upstream failure") from None

        metadata = AssetMetadata(content_type=resolve_content_type(key, fetched.content_type))
        response = self._asset_response(method, fetched.body, metadata.content_type, is_root)
        self._populator.schedule(key, fetched.body, metadata)
        return response

    @staticmethod
    def _asset_response(method: str, body: bytes, content_type: str, is_root: bool) -> AssetResponse:
        headers = {
            "Content-Type": TEXT_PLAIN if is_root else content_type,
            "Cache-Control": ASSET_CACHE_CONTROL,
            **CORS_HEADERS,
        }
        if method == "HEAD":
            headers["Content-Length"] = str(len(body))
            return AssetResponse(status_code=status.HTTP_200_OK, headers=headers)
        return AssetResponse(status_code=status.HTTP_200_OK, headers=headers, body=body)
