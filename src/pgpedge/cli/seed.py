"""Build a bulk-upload manifest of key material for pre-populating the cache."""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from redis.asyncio import from_url as redis_from_url

from ..common.schemas import AssetMetadata, SeedRecord
from ..common.settings import ASSET_CACHE_TTL_SECONDS
from ..edge.content_types import resolve_content_type
from ..edge.store import CacheStoreUnavailable, RedisAssetStore


@dataclass(frozen=True)
class SeedSource:
    path: str
    key: Optional[str] = None
    prefix: Optional[str] = None


DEFAULT_SOURCES: tuple[SeedSource, ...] = (
    SeedSource("public-masterkey.asc", key="/public-masterkey.asc"),
    SeedSource("shaquille.asc", key="/shaquille.asc"),
    SeedSource("policy", key="/policy"),
    SeedSource(".well-known/openpgpkey", prefix="/.well-known/openpgpkey"),
)


def load_record(path: Path, key: str) -> SeedRecord:
    raw = path.read_bytes()
    metadata = AssetMetadata(content_type=resolve_content_type(key))
    try:
        return SeedRecord(key=key, value=raw.decode("utf-8"), metadata=metadata)
    except UnicodeDecodeError:
        return SeedRecord(key=key, value=base64.b64encode(raw).decode("ascii"), metadata=metadata, base64=True)


def load_directory(directory: Path, prefix: str) -> list[SeedRecord]:
    records: list[SeedRecord] = []
    for entry in sorted(directory.iterdir(), key=lambda item: item.name):
        if entry.is_dir():
            records.extend(load_directory(entry, f"{prefix}/{entry.name}"))
        elif entry.is_file():
            records.append(load_record(entry, f"{prefix}/{entry.name}"))
    return records


def collect_records(source_root: Path, sources: Iterable[SeedSource] = DEFAULT_SOURCES) -> list[SeedRecord]:
    """Read every configured source below ``source_root``; missing sources are skipped."""

    records: list[SeedRecord] = []
    for source in sources:
        absolute = source_root / source.path
        if not absolute.exists():
            continue
        if source.key is not None:
            records.append(load_record(absolute, source.key))
        elif source.prefix is not None:
            records.extend(load_directory(absolute, source.prefix))
    return records


def render_manifest(records: Iterable[SeedRecord]) -> str:
    payload = [record.model_dump(by_alias=True, exclude_none=True) for record in records]
    return json.dumps(payload, indent=2)


async def push_records(records: Iterable[SeedRecord], redis_url: str, prefix: str) -> int:
    store = RedisAssetStore(redis_from_url(redis_url, decode_responses=False), prefix=prefix)
    count = 0
    try:
        for record in records:
            await store.put(record.key, record.payload(), record.metadata, ASSET_CACHE_TTL_SECONDS)
            count += 1
    finally:
        await store.close()
    return count


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate a cache seed manifest from local key material")
    parser.add_argument("--source", default=".", help="Directory holding the published key files")
    parser.add_argument("--out", help="Write the manifest to this file instead of stdout")
    parser.add_argument("--redis-url", help="Also write every record into this Redis cache store")
    parser.add_argument("--prefix", default="pgp-edge:asset:", help="Redis key namespace")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    records = collect_records(Path(args.source).expanduser().resolve())
    manifest = render_manifest(records)

    if args.out:
        dest = Path(args.out).expanduser().resolve()
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_text(manifest, encoding="utf-8")
        except OSError as exc:
            print(f"Failed to write manifest: {exc}", file=sys.stderr)
            return 1
        print(f"Wrote {len(records)} assets to {dest}")
    else:
        sys.stdout.write(manifest)

    if args.redis_url:
        try:
            pushed = asyncio.run(push_records(records, args.redis_url, args.prefix))
        except (CacheStoreUnavailable, ValueError) as exc:
            print(f"Failed to seed cache store: {exc}", file=sys.stderr)
            return 1
        print(f"Seeded {pushed} assets into {args.prefix}*", file=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
