from __future__ import annotations

from contextlib import ExitStack

import pytest
from fastapi.testclient import TestClient

from pgpedge.common.settings import EdgeSettings
from pgpedge.edge.app import create_app
from pgpedge.edge.store import MemoryAssetStore
from tests.utils.fakes import MIRROR_BASE, FakeMirror


@pytest.fixture
def mirror() -> FakeMirror:
    return FakeMirror()


@pytest.fixture
def store() -> MemoryAssetStore:
    return MemoryAssetStore()


@pytest.fixture
def make_settings():
    def _make(**overrides) -> EdgeSettings:
        values = {"github_mirror_base": MIRROR_BASE, "redis_url": None, "allowed_hosts": None}
        values.update(overrides)
        return EdgeSettings(_env_file=None, **values)

    return _make


@pytest.fixture
def make_client(make_settings, store, mirror):
    with ExitStack() as stack:

        def _make(**overrides) -> TestClient:
            app = create_app(make_settings(**overrides), store=store, transport=mirror.transport)
            return stack.enter_context(TestClient(app))

        yield _make


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()
