"""Application configuration models shared by services."""

from __future__ import annotations

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_ROOT_OBJECT = "/public-masterkey.asc"
DEFAULT_GITHUB_MIRROR_BASE = "https://raw.githubusercontent.com/kareemlukitomo/pgp/main"
ASSET_CACHE_TTL_SECONDS = 60 * 60 * 24 * 30  # 30 days


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


class EdgeSettings(BaseSettings):
    """Runtime settings for the key edge service."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)

    root_object: Optional[str] = env_field(DEFAULT_ROOT_OBJECT, "ROOT_OBJECT")
    github_mirror_base: str = env_field(DEFAULT_GITHUB_MIRROR_BASE, "GITHUB_MIRROR_BASE")
    allowed_hosts: Optional[str] = env_field(None, "ALLOWED_HOSTS")
    redis_url: Optional[str] = env_field(None, "PGP_EDGE_REDIS_URL")
    cache_prefix: str = env_field("pgp-edge:asset:", "PGP_EDGE_CACHE_PREFIX")
    origin_timeout_seconds: float = env_field(10.0, "PGP_EDGE_ORIGIN_TIMEOUT")
    log_level: str = env_field("INFO", "PGP_EDGE_LOG_LEVEL")
    otel_exporter_endpoint: Optional[str] = env_field(None, "PGP_EDGE_OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "PGP_EDGE_OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "PGP_EDGE_OTEL_SAMPLER_RATIO")

    @field_validator("github_mirror_base", mode="before")
    @classmethod
    def _normalize_mirror_base(cls, value):
        if value is None:
            return DEFAULT_GITHUB_MIRROR_BASE
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return DEFAULT_GITHUB_MIRROR_BASE
            return value.rstrip("/")
        return value

    @field_validator("redis_url", "otel_exporter_endpoint", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def resolve_root_object(self) -> Optional[str]:
        """Return the asset key served for ``/``, or ``None`` when the root route is unset."""

        if self.root_object is None:
            return None
        root = self.root_object.strip()
        if not root:
            return None
        if not root.startswith("/"):
            return f"/{root}"
        return root
