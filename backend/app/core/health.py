"""Consecutive-failure counters so sustained outages stay visible."""
from __future__ import annotations

import threading
from collections import defaultdict


class HealthCounters:

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._consecutive: dict[str, int] = defaultdict(int)
        self._total_failures: dict[str, int] = defaultdict(int)

    def success(self, key: str) -> None:
        with self._lock:
            self._consecutive[key] = 0

    def failure(self, key: str) -> int:
        with self._lock:
            self._consecutive[key] += 1
            self._total_failures[key] += 1
            return self._consecutive[key]

    def consecutive(self, key: str) -> int:
        with self._lock:
            return self._consecutive.get(key, 0)

    def snapshot(self) -> dict[str, dict[str, int]]:
        with self._lock:
            return {
                key: {
                    "consecutive_failures": self._consecutive.get(key, 0),
                    "total_failures": self._total_failures.get(key, 0),
                }
                for key in set(self._consecutive) | set(self._total_failures)
            }
