"""Shared data models for cached key material."""

from __future__ import annotations

import base64
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AssetMetadata(BaseModel):
    """Metadata stored alongside every cached asset."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    content_type: str = Field(alias="contentType")


class AssetRecord(BaseModel):
    """A cached payload together with the metadata computed when it was written."""

    model_config = ConfigDict(frozen=True)

    body: bytes
    metadata: AssetMetadata


class SeedRecord(BaseModel):
    """One entry of a bulk-upload manifest produced by the seeder."""

    model_config = ConfigDict(populate_by_name=True)

    key: str
    value: str
    metadata: AssetMetadata
    base64: Optional[bool] = None

    def payload(self) -> bytes:
        if self.base64:
            return base64.b64decode(self.value)
        return self.value.encode("utf-8")
