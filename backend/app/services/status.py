"""StatusClassifier: raw value + thresholds -> MetricStatus.

Pure function, no I/O. Order of precedence: offline, alarm, warning, normal.
"""
from __future__ import annotations

from dataclasses import dataclass

from models.metric_sample import MetricStatus


@dataclass(frozen=True)
class Thresholds:
    offline_below: float | None = None
    alarm_above: float | None = None
    warning_above: float | None = None
    warning_below: float | None = None


NO_THRESHOLDS = Thresholds()


def classify(value: float, thresholds: Thresholds = NO_THRESHOLDS) -> MetricStatus:
    if thresholds.offline_below is not None and value < thresholds.offline_below:
        return MetricStatus.offline
    if thresholds.alarm_above is not None and value > thresholds.alarm_above:
        return MetricStatus.alarm
    if thresholds.warning_above is not None and value > thresholds.warning_above:
        return MetricStatus.warning
    if thresholds.warning_below is not None and value < thresholds.warning_below:
        return MetricStatus.warning
    return MetricStatus.normal
