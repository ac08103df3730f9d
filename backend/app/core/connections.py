"""Per-site device connection state, as published by the connectivity layer."""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Protocol

from redis.asyncio import Redis


@dataclass(frozen=True)
class SiteClient:
    site_code: str
    is_connected: bool


class ConnectionManager(Protocol):

    async def get_client(self, site_code: str) -> SiteClient | None:
        ...


class InMemoryConnectionManager:

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._clients: dict[str, SiteClient] = {}

    def set_connected(self, site_code: str, connected: bool = True) -> None:
        with self._lock:
            self._clients[site_code] = SiteClient(site_code, connected)

    def forget(self, site_code: str) -> None:
        with self._lock:
            self._clients.pop(site_code, None)

    async def get_client(self, site_code: str) -> SiteClient | None:
        with self._lock:
            return self._clients.get(site_code)


class RedisConnectionManager:
    """Reads ``opcua:{site_code}:connected`` ("1"/"true" means connected)."""

    def __init__(self, redis: Redis, prefix: str = "opcua"):
        self.redis = redis
        self.prefix = prefix

    async def get_client(self, site_code: str) -> SiteClient | None:
        raw = await self.redis.get(f"{self.prefix}:{site_code}:connected")
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return SiteClient(site_code, raw.strip().lower() in ("1", "true", "yes"))
