"""Metric catalog: one entry per acquired time series.

Each AcquisitionScheduler is parameterized by one MetricDefinition, so adding
a metric means adding a row here, not a new collector.
"""
from __future__ import annotations

from dataclasses import dataclass

from services.status import NO_THRESHOLDS, Thresholds

LEVEL_THRESHOLDS = Thresholds(offline_below=0.0, warning_above=8.0, alarm_above=10.0)
DOWNSTREAM_LEVEL_THRESHOLDS = Thresholds(warning_above=8.0, alarm_above=10.0, warning_below=0.5)
FLOW_THRESHOLDS = Thresholds(warning_above=80.0, alarm_above=100.0, warning_below=0.1)


@dataclass(frozen=True)
class MetricDefinition:
    metric_type: str
    node_key: str
    unit: str = ""
    thresholds: Thresholds = NO_THRESHOLDS
    fallback_keys: tuple[str, ...] = ()

    @property
    def node_keys(self) -> tuple[str, ...]:
        return (self.node_key, *self.fallback_keys)


METRIC_CATALOG: tuple[MetricDefinition, ...] = (
    MetricDefinition("upstream_level", "actLevel", "m", LEVEL_THRESHOLDS,
                     fallback_keys=("actLevelDoppler",)),
    MetricDefinition("downstream_level", "actLevelDoppler", "m", DOWNSTREAM_LEVEL_THRESHOLDS),
    MetricDefinition("instantaneous_flow", "actFlow", "m3/h", FLOW_THRESHOLDS),
    MetricDefinition("flow_velocity", "actFlowVelocity", "m/s"),
    MetricDefinition("water_temperature", "actTemp", "°C"),
    MetricDefinition("net_weight", "actNetWeight", "kg"),
    MetricDefinition("speed", "actFreq", "Hz"),
    MetricDefinition("electric_current", "actCurrent", "A"),
    MetricDefinition("winding_temperature", "actMotorColiTemp", "°C"),
    MetricDefinition("cabinet_outer_temperature", "actExtTemp", "°C"),
    MetricDefinition("cabinet_inner_temperature", "actIntTemp", "°C"),
    MetricDefinition("cabinet_outer_humidity", "actExtRH", "%"),
    MetricDefinition("cabinet_inner_humidity", "actIntRH", "%"),
)

METRICS_BY_TYPE: dict[str, MetricDefinition] = {m.metric_type: m for m in METRIC_CATALOG}


def get_metric(metric_type: str) -> MetricDefinition | None:
    return METRICS_BY_TYPE.get(metric_type)
