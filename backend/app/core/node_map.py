"""Logical node key -> OPC UA node id mapping.

Loaded once from nodes.json ({"PlcData": {"actLevel": "ns=4;s=..."}}) and
read-only afterwards. A missing key is a ConfigurationError; resolve()
logs it and returns None so callers can skip gracefully.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path

from core.errors import ConfigurationError

logger = logging.getLogger("pumproom.node_map")


class NodeMap:

    def __init__(self, mapping: dict[str, str] | None = None):
        self._mapping: dict[str, str] = dict(mapping or {})

    @classmethod
    def load(cls, path: str | Path) -> "NodeMap":
        path = Path(path)
        if not path.exists():
            logger.warning("Node config file not found: %s", path)
            return cls()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Failed to read node config %s: %s", path, exc)
            return cls()

        # Key lookup is case-insensitive ("PlcData" / "plcData")
        plc_data = next(
            (v for k, v in data.items() if k.lower() == "plcdata" and isinstance(v, dict)),
            {},
        )
        logger.info("Loaded node config: %d nodes", len(plc_data))
        return cls({str(k): str(v) for k, v in plc_data.items()})

    def __len__(self) -> int:
        return len(self._mapping)

    def __contains__(self, node_key: str) -> bool:
        return node_key in self._mapping

    def node_id(self, node_key: str) -> str:
        try:
            return self._mapping[node_key]
        except KeyError:
            raise ConfigurationError(node_key) from None

    def resolve(self, node_key: str) -> str | None:
        try:
            return self.node_id(node_key)
        except ConfigurationError as exc:
            logger.error("%s", exc)
            return None
