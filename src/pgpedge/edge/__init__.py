"""Edge service that serves key material from cache with mirror fallback."""

from .app import create_app
from .router import AssetResponse, AssetRouter, CachePopulator
from .store import AssetStore, MemoryAssetStore, RedisAssetStore

__all__ = [
    "create_app",
    "AssetResponse",
    "AssetRouter",
    "CachePopulator",
    "AssetStore",
    "MemoryAssetStore",
    "RedisAssetStore",
]
