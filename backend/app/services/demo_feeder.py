"""
Demo Feeder: emulates the PLC of one or more pump rooms.

Writes realistic live values into the in-memory cache and marks the sites
connected, so acquisition and alarm evaluation run without field devices.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
from datetime import datetime

from config import settings
from core.connections import InMemoryConnectionManager
from core.live_cache import InMemoryLiveValueCache
from core.node_map import NodeMap

logger = logging.getLogger("pumproom.demo_feeder")


class DemoFeeder:
    """Generates values for every mapped node key and pushes them to the cache."""

    def __init__(
        self,
        cache: InMemoryLiveValueCache,
        connections: InMemoryConnectionManager,
        node_map: NodeMap,
        site_codes: list[str] | None = None,
        interval: float | None = None,
    ):
        self.cache = cache
        self.connections = connections
        self.node_map = node_map
        self.site_codes = site_codes or [
            c.strip() for c in settings.DEMO_SITE_CODES.split(",") if c.strip()
        ]
        self.interval = settings.DEMO_INTERVAL if interval is None else interval
        self._stop = asyncio.Event()
        self._tick = 0

    async def start(self) -> None:
        self._stop.clear()
        logger.info("DemoFeeder started: emulating sites %s", ", ".join(self.site_codes))
        for code in self.site_codes:
            self.connections.set_connected(code, True)

        while not self._stop.is_set():
            for phase, code in enumerate(self.site_codes):
                self.publish(code, self.generate(phase))
            self._tick += 1
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def stop(self) -> None:
        self._stop.set()
        for code in self.site_codes:
            self.connections.set_connected(code, False)
        logger.info("DemoFeeder stopped")

    def publish(self, site_code: str, values: dict[str, object]) -> None:
        stamp = datetime.now().isoformat(timespec="seconds")
        for key, value in values.items():
            if key in self.node_map:
                self.cache.put(site_code, self.node_map.node_id(key), value, "Good", stamp)

    # ------------------------------------------------------------------
    def generate(self, phase: float = 0.0) -> dict[str, object]:
        t = self._tick
        noise = lambda amp=1.0: random.uniform(-amp, amp)

        level = 3.5 + 1.5 * math.sin(t * 0.01 + phase) + noise(0.05)
        flow = 45 + 20 * math.sin(t * 0.02 + phase) + noise(1.5)
        freq = 42 + 6 * math.sin(t * 0.02 + phase) + noise(0.3)
        current = 18 + freq * 0.35 + noise(0.5)

        return {
            "actLevel": round(level, 2),
            "actLevelDoppler": round(max(0.0, level - 1.2 + noise(0.05)), 2),
            "actFlow": round(max(0.0, flow), 1),
            "actFlowVelocity": round(max(0.0, flow / 60), 2),
            "actTemp": round(14 + 2 * math.sin(t * 0.005) + noise(0.1), 1),
            "actNetWeight": round(1200 + 50 * math.sin(t * 0.003) + noise(5)),
            "actFreq": round(freq, 1),
            "actCurrent": round(current, 1),
            "actMotorColiTemp": round(55 + current * 0.4 + noise(0.5), 1),
            "actExtTemp": round(20 + 4 * math.sin(t * 0.004) + noise(0.2), 1),
            "actIntTemp": round(26 + 3 * math.sin(t * 0.004) + noise(0.2), 1),
            "actExtRH": round(60 + 10 * math.sin(t * 0.003) + noise(1)),
            "actIntRH": round(45 + 5 * math.sin(t * 0.003) + noise(1)),
            # Alarm word: bit 0 = high level
            "alarmWord": 1 if level > 4.9 else 0,
        }
