"""Single-shot fetches from the upstream mirror."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

import httpx
import structlog
from opentelemetry import trace


LOGGER = structlog.get_logger("pgpedge.edge.origin")
TRACER = trace.get_tracer("pgpedge.edge.origin")

USER_AGENT = "pgp-edge/1.0"


class OriginNotFound(Exception):
    """The mirror has no object for the requested key."""

    def __init__(self, key: str) -> None:
        super().__init__(f"origin has no object for {key}")
        self.key = key


class OriginUnavailable(Exception):
    """The mirror answered with a non-404 failure or could not be reached."""

    def __init__(self, key: str, status_code: Optional[int] = None, reason: str = "") -> None:
        super().__init__(f"origin fetch failed for {key}: {status_code or reason}")
        self.key = key
        self.status_code = status_code
        self.reason = reason


@dataclass(frozen=True)
class OriginAsset:
    status_code: int
    content_type: Optional[str]
    body: bytes


class MirrorClient:
    """Fetches assets from ``base_url + key`` with exactly one request per call."""

    def __init__(self, base_url: str, http_client: httpx.AsyncClient) -> None:
        self._base_url = base_url.rstrip("/")
        self._http = http_client

    def url_for(self, key: str) -> str:
        return self._base_url + quote(key, safe="/")

    async def fetch(self, key: str) -> OriginAsset:
        url = self.url_for(key)
        with TRACER.start_as_current_span("origin.fetch", attributes={"pgpedge.asset_key": key}) as span:
            try:
                response = await self._http.get(
                    url,
                    headers={"User-Agent": USER_AGENT, "Accept": "application/octet-stream"},
                )
            except httpx.HTTPError as exc:
                raise OriginUnavailable(key, reason=exc.__class__.__name__) from exc
            span.set_attribute("http.status_code", response.status_code)

            if response.status_code == httpx.codes.NOT_FOUND:
                raise OriginNotFound(key)
            if not response.is_success:
                raise OriginUnavailable(key, status_code=response.status_code, reason=response.reason_phrase)

            body = response.content
            span.set_attribute("pgpedge.bytes", len(body))
            LOGGER.debug("origin_fetched", key=key, url=url, bytes=len(body))
            return OriginAsset(
                status_code=response.status_code,
                content_type=response.headers.get("content-type"),
                body=body,
            )
