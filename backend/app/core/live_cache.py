"""Live value cache: latest value per (site code, node id).

The cache is populated by the device connectivity layer; the services here
only read it. Two backends:

- InMemoryLiveValueCache: dict guarded by a threading.Lock (demo mode, tests)
- RedisLiveValueCache: hash ``opcua:{site_code}:nodes``, field = node id,
  value = JSON {"value", "status", "timestamp"}
"""
from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Protocol

from redis.asyncio import Redis

logger = logging.getLogger("pumproom.live_cache")

GOOD_STATUSES = {"", "good"}


@dataclass(frozen=True)
class NodeSnapshot:
    value: Any
    status: str = "Good"
    timestamp: str = ""

    @property
    def is_good(self) -> bool:
        return self.status.lower() in GOOD_STATUSES

    @property
    def quality(self) -> int:
        return 100 if self.is_good else 0


def cache_key(site_code: str, node_id: str) -> str:
    return f"{site_code}:{node_id}"


class LiveValueCache(Protocol):

    async def try_get(self, site_code: str, node_id: str) -> NodeSnapshot | None:
        ...


class InMemoryLiveValueCache:

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._nodes: dict[str, NodeSnapshot] = {}

    def put(self, site_code: str, node_id: str, value: Any,
            status: str = "Good", timestamp: str = "") -> None:
        with self._lock:
            self._nodes[cache_key(site_code, node_id)] = NodeSnapshot(value, status, timestamp)

    def remove(self, site_code: str, node_id: str) -> None:
        with self._lock:
            self._nodes.pop(cache_key(site_code, node_id), None)

    async def try_get(self, site_code: str, node_id: str) -> NodeSnapshot | None:
        with self._lock:
            return self._nodes.get(cache_key(site_code, node_id))


class RedisLiveValueCache:

    def __init__(self, redis: Redis, prefix: str = "opcua"):
        self.redis = redis
        self.prefix = prefix

    def _hash_name(self, site_code: str) -> str:
        return f"{self.prefix}:{site_code}:nodes"

    async def try_get(self, site_code: str, node_id: str) -> NodeSnapshot | None:
        raw = await self.redis.hget(self._hash_name(site_code), node_id)
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Unparseable cache entry %s:%s", site_code, node_id)
            return None
        if not isinstance(data, dict):
            return NodeSnapshot(value=data)
        return NodeSnapshot(
            value=data.get("value"),
            status=str(data.get("status") or "Good"),
            timestamp=str(data.get("timestamp") or ""),
        )
