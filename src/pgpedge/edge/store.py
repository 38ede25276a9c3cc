"""Durable asset cache backed by Redis, with an in-process variant for development."""

from __future__ import annotations

import time
from typing import Optional

import structlog
from redis.asyncio import Redis, from_url as redis_from_url
from redis.exceptions import RedisError

from ..common.schemas import AssetMetadata, AssetRecord
from ..common.settings import EdgeSettings


LOGGER = structlog.get_logger("pgpedge.edge.store")

_VALUE_FIELD = b"value"
_CONTENT_TYPE_FIELD = b"content_type"


class CacheStoreUnavailable(RuntimeError):
    """The cache backend could not be reached."""


class AssetStore:
    async def get(self, key: str) -> Optional[AssetRecord]:  # pragma: no cover - interface
        raise NotImplementedError

    async def put(self, key: str, body: bytes, metadata: AssetMetadata, ttl_seconds: int) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None

    def status(self) -> dict[str, object]:
        raise NotImplementedError


class MemoryAssetStore(AssetStore):
    """Process-local store honouring TTLs against the monotonic clock."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[AssetRecord, float]] = {}

    async def get(self, key: str) -> Optional[AssetRecord]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        record, expires_at = entry
        if time.monotonic() >= expires_at:
            self._entries.pop(key, None)
            return None
        return record

    async def put(self, key: str, body: bytes, metadata: AssetMetadata, ttl_seconds: int) -> None:
        record = AssetRecord(body=bytes(body), metadata=metadata)
        self._entries[key] = (record, time.monotonic() + ttl_seconds)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and time.monotonic() < entry[1]

    def status(self) -> dict[str, object]:
        return {"backend": "memory", "entries": len(self._entries)}


class RedisAssetStore(AssetStore):
    """Stores each asset as a hash so payload and metadata are read in one round trip."""

    def __init__(self, redis: Redis, prefix: str = "pgp-edge:asset:") -> None:
        self._redis = redis
        self._prefix = prefix

    def _name(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Optional[AssetRecord]:
        try:
            fields = await self._redis.hgetall(self._name(key))
        except RedisError as exc:
            raise CacheStoreUnavailable(str(exc)) from exc
        if not fields or _VALUE_FIELD not in fields:
            return None
        content_type = fields.get(_CONTENT_TYPE_FIELD)
        if not content_type:
            LOGGER.debug("cache_record_missing_metadata", key=key)
            return None
        if isinstance(content_type, bytes):
            content_type = content_type.decode("utf-8")
        return AssetRecord(body=fields[_VALUE_FIELD], metadata=AssetMetadata(content_type=content_type))

    async def put(self, key: str, body: bytes, metadata: AssetMetadata, ttl_seconds: int) -> None:
        name = self._name(key)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.delete(name)
                pipe.hset(
                    name,
                    mapping={
                        _VALUE_FIELD: bytes(body),
                        _CONTENT_TYPE_FIELD: metadata.content_type.encode("utf-8"),
                    },
                )
                pipe.expire(name, ttl_seconds)
                await pipe.execute()
        except RedisError as exc:
            raise CacheStoreUnavailable(str(exc)) from exc

    async def close(self) -> None:
        await self._redis.aclose()

    def status(self) -> dict[str, object]:
        return {"backend": "redis", "prefix": self._prefix}


def build_store(settings: EdgeSettings) -> AssetStore:
    if settings.redis_url:
        redis = redis_from_url(settings.redis_url, decode_responses=False)
        return RedisAssetStore(redis, prefix=settings.cache_prefix)
    LOGGER.warning("cache_store_in_memory", reason="PGP_EDGE_REDIS_URL not set")
    return MemoryAssetStore()
