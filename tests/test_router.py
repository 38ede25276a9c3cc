from __future__ import annotations

import httpx
import pytest
import pytest_asyncio
from fastapi import HTTPException, status

from pgpedge.common.schemas import AssetMetadata
from pgpedge.common.settings import ASSET_CACHE_TTL_SECONDS
from pgpedge.edge.content_types import TEXT_PLAIN
from pgpedge.edge.origin import MirrorClient
from pgpedge.edge.router import ASSET_CACHE_CONTROL, CORS_HEADERS, AssetRouter, CachePopulator
from pgpedge.edge.store import CacheStoreUnavailable, MemoryAssetStore, RedisAssetStore
from tests.utils.fakes import FakeMirror, FakeRedis


@pytest_asyncio.fixture
async def http_client(mirror: FakeMirror):
    async with httpx.AsyncClient(transport=mirror.transport) as client:
        yield client


@pytest.fixture
def build_router(make_settings, mirror: FakeMirror, http_client):
    def _build(store=None, **overrides):
        settings = make_settings(**overrides)
        store = store if store is not None else MemoryAssetStore()
        populator = CachePopulator(store)
        router = AssetRouter(
            settings=settings,
            store=store,
            origin=MirrorClient(settings.github_mirror_base, http_client),
            populator=populator,
        )
        return router, store, populator

    return _build


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["POST", "PUT", "DELETE", "PATCH"])
async def test_rejects_unsupported_methods(build_router, method: str) -> None:
    router, _, _ = build_router()
    with pytest.raises(HTTPException) as exc:
        await router.handle(method, "example.com", "/shaquille.asc")
    assert exc.value.status_code == status.HTTP_405_METHOD_NOT_ALLOWED


@pytest.mark.asyncio
async def test_method_check_precedes_host_check(build_router) -> None:
    router, _, _ = build_router(allowed_hosts="example.com")
    with pytest.raises(HTTPException) as exc:
        await router.handle("POST", "other.com", "/")
    assert exc.value.status_code == status.HTTP_405_METHOD_NOT_ALLOWED


@pytest.mark.asyncio
async def test_options_short_circuits_before_host_check(build_router, mirror: FakeMirror) -> None:
    router, _, _ = build_router(allowed_hosts="example.com")
    response = await router.handle("OPTIONS", None, "/anything")
    assert response.status_code == status.HTTP_204_NO_CONTENT
    assert response.headers == CORS_HEADERS
    assert response.body == b""
    assert mirror.requests == []


@pytest.mark.asyncio
async def test_rejects_host_outside_allow_list(build_router, mirror: FakeMirror) -> None:
    router, _, _ = build_router(allowed_hosts="example.com")
    with pytest.raises(HTTPException) as exc:
        await router.handle("GET", "other.com", "/shaquille.asc")
    assert exc.value.status_code == status.HTTP_403_FORBIDDEN
    assert mirror.requests == []


@pytest.mark.asyncio
async def test_invalid_path_is_not_found(build_router, mirror: FakeMirror) -> None:
    router, _, _ = build_router()
    with pytest.raises(HTTPException) as exc:
        await router.handle("GET", "example.com", "/a/../public-masterkey.asc")
    assert exc.value.status_code == status.HTTP_404_NOT_FOUND
    assert mirror.requests == []


@pytest.mark.asyncio
async def test_root_without_root_object_is_not_found(build_router, mirror: FakeMirror) -> None:
    router, _, _ = build_router(root_object="  ")
    with pytest.raises(HTTPException) as exc:
        await router.handle("GET", "example.com", "/")
    assert exc.value.status_code == status.HTTP_404_NOT_FOUND
    assert mirror.requests == []


@pytest.mark.asyncio
async def test_cache_hit_skips_origin(build_router, mirror: FakeMirror) -> None:
    store = MemoryAssetStore()
    await store.put("/shaquille.asc", b"cached", AssetMetadata(content_type="application/pgp-keys"), 60)
    router, _, _ = build_router(store=store)

    response = await router.handle("GET", "example.com", "/shaquille.asc")

    assert response.status_code == 200
    assert response.body == b"cached"
    assert response.headers["Content-Type"] == "application/pgp-keys"
    assert response.headers["Cache-Control"] == ASSET_CACHE_CONTROL
    assert mirror.requests == []


@pytest.mark.asyncio
async def test_root_hit_forces_plain_text(build_router) -> None:
    store = MemoryAssetStore()
    await store.put("/public-masterkey.asc", b"master", AssetMetadata(content_type="application/pgp-keys"), 60)
    router, _, _ = build_router(store=store)

    response = await router.handle("GET", "example.com", "/")

    assert response.body == b"master"
    assert response.headers["Content-Type"] == TEXT_PLAIN


@pytest.mark.asyncio
async def test_custom_root_object_gets_leading_slash(build_router, mirror: FakeMirror) -> None:
    mirror.add("/keys/main.asc", b"main", "application/pgp-keys")
    router, _, populator = build_router(root_object="keys/main.asc")

    response = await router.handle("GET", "example.com", "")
    await populator.drain()

    assert response.body == b"main"
    assert response.headers["Content-Type"] == TEXT_PLAIN
    assert mirror.calls_for("/keys/main.asc") == 1


@pytest.mark.asyncio
async def test_miss_fetches_and_populates(build_router, mirror: FakeMirror) -> None:
    mirror.add("/shaquille.asc", b"armored", "application/pgp-keys")
    router, store, populator = build_router()

    response = await router.handle("GET", "example.com", "/shaquille.asc")
    await populator.drain()

    assert response.status_code == 200
    assert response.body == b"armored"
    assert response.headers["Content-Type"] == "application/pgp-keys"
    record = await store.get("/shaquille.asc")
    assert record is not None
    assert record.body == b"armored"
    assert record.metadata.content_type == "application/pgp-keys"


@pytest.mark.asyncio
async def test_population_uses_fixed_ttl(build_router, mirror: FakeMirror) -> None:
    mirror.add("/policy", b"", "text/html")
    redis = FakeRedis()
    router, _, populator = build_router(store=RedisAssetStore(redis))  # type: ignore[arg-type]

    await router.handle("GET", "example.com", "/policy")
    await populator.drain()

    assert redis.ttls["pgp-edge:asset:/policy"] == ASSET_CACHE_TTL_SECONDS
    assert redis.hashes["pgp-edge:asset:/policy"][b"content_type"] == TEXT_PLAIN.encode()


@pytest.mark.asyncio
async def test_root_miss_stores_resolved_type_but_serves_plain_text(build_router, mirror: FakeMirror) -> None:
    mirror.add("/public-masterkey.asc", b"master", "application/pgp-keys")
    router, store, populator = build_router()

    response = await router.handle("GET", "example.com", "/")
    await populator.drain()

    assert response.headers["Content-Type"] == TEXT_PLAIN
    record = await store.get("/public-masterkey.asc")
    assert record is not None
    assert record.metadata.content_type == "application/pgp-keys"


@pytest.mark.asyncio
async def test_origin_404_is_not_found_and_not_cached(build_router, mirror: FakeMirror) -> None:
    router, store, populator = build_router()

    for _ in range(2):
        with pytest.raises(HTTPException) as exc:
            await router.handle("GET", "example.com", "/missing.asc")
        assert exc.value.status_code == status.HTTP_404_NOT_FOUND

    assert populator.pending == 0
    assert "/missing.asc" not in store
    assert mirror.calls_for("/missing.asc") == 2


@pytest.mark.asyncio
async def test_missing_root_object_is_server_error(build_router) -> None:
    router, store, populator = build_router()
    with pytest.raises(HTTPException) as exc:
        await router.handle("GET", "example.com", "/")
    assert exc.value.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert populator.pending == 0
    assert "/public-masterkey.asc" not in store


@pytest.mark.asyncio
async def test_origin_failure_is_bad_gateway(build_router, mirror: FakeMirror) -> None:
    mirror.add("/shaquille.asc", b"oops", "text/html", status_code=500)
    router, store, _ = build_router()

    with pytest.raises(HTTPException) as exc:
        await router.handle("GET", "example.com", "/shaquille.asc")

    assert exc.value.status_code == status.HTTP_502_BAD_GATEWAY
    assert "/shaquille.asc" not in store


@pytest.mark.asyncio
async def test_origin_unreachable_is_bad_gateway(build_router, mirror: FakeMirror) -> None:
    mirror.fail_with = httpx.ReadTimeout("timed out")
    router, _, _ = build_router()

    with pytest.raises(HTTPException) as exc:
        await router.handle("HEAD", "example.com", "/shaquille.asc")

    assert exc.value.status_code == status.HTTP_502_BAD_GATEWAY
    assert len(mirror.requests) == 1


@pytest.mark.asyncio
async def test_cache_read_failure_falls_back_to_origin(build_router, mirror: FakeMirror) -> None:
    mirror.add("/shaquille.asc", b"armored", "application/pgp-keys")
    redis = FakeRedis()
    redis.fail = True
    router, _, populator = build_router(store=RedisAssetStore(redis))  # type: ignore[arg-type]

    response = await router.handle("GET", "example.com", "/shaquille.asc")
    await populator.drain()

    assert response.status_code == 200
    assert response.body == b"armored"
    assert redis.hashes == {}


@pytest.mark.asyncio
async def test_head_omits_body_but_keeps_headers(build_router, mirror: FakeMirror) -> None:
    mirror.add("/shaquille.asc", b"armored", "application/pgp-keys")
    router, _, populator = build_router()

    head = await router.handle("HEAD", "example.com", "/shaquille.asc")
    await populator.drain()
    get = await router.handle("GET", "example.com", "/shaquille.asc")

    assert head.body == b""
    assert head.headers["Content-Length"] == str(len(b"armored"))
    for name in ("Content-Type", "Cache-Control", *CORS_HEADERS):
        assert head.headers[name] == get.headers[name]
    assert mirror.calls_for("/shaquille.asc") == 1


@pytest.mark.asyncio
async def test_populate_failure_does_not_affect_response(build_router, mirror: FakeMirror) -> None:
    class BrokenStore(MemoryAssetStore):
        async def put(self, key, body, metadata, ttl_seconds):
            raise CacheStoreUnavailable("read-only replica")

    mirror.add("/shaquille.asc", b"armored", "application/pgp-keys")
    router, _, populator = build_router(store=BrokenStore())

    response = await router.handle("GET", "example.com", "/shaquille.asc")
    await populator.drain()

    assert response.status_code == 200
    assert populator.pending == 0
