"""In-memory trigger state per (site, alarm rule).

Owned by one AlarmEvaluator and passed to it explicitly. Process memory
only: a restart forgets in-flight edges. Callers hold ``lock`` for the
whole read-compare-update of one key.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime


@dataclass(frozen=True)
class AlarmState:
    is_triggered: bool
    alarm_record_id: int | None
    last_check_time: datetime


class AlarmStateTracker:

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self._states: dict[str, AlarmState] = {}

    @staticmethod
    def key(site_code: str, alarm_code: str) -> str:
        return f"{site_code}:{alarm_code}"

    def get(self, key: str) -> AlarmState | None:
        return self._states.get(key)

    def set(self, key: str, state: AlarmState) -> None:
        self._states[key] = state

    def touch(self, key: str, now: datetime) -> None:
        state = self._states.get(key)
        if state is not None:
            self._states[key] = replace(state, last_check_time=now)

    def triggered_keys(self) -> list[str]:
        return [k for k, s in self._states.items() if s.is_triggered]

    def __len__(self) -> int:
        return len(self._states)
