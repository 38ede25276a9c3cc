"""Hostname allow-list enforcement."""

from __future__ import annotations

from typing import Optional


def parse_allowed_hosts(raw: Optional[str]) -> Optional[list[str]]:
    """Split a comma separated allow-list; ``None`` means every host is admitted."""

    if not raw:
        return None
    return [entry.strip().lower() for entry in raw.split(",") if entry.strip()]


def is_allowed_host(host: Optional[str], allowed_hosts: Optional[list[str]]) -> bool:
    if allowed_hosts is None:
        return True
    if not host:
        return False
    if not allowed_hosts:
        return True
    return host.lower() in allowed_hosts
