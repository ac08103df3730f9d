from models.base import Base, async_session, engine, get_session
from models.site import Site
from models.user import User, SiteUser
from models.metric_sample import MetricSample, MetricStatus
from models.alarm_rule import AlarmRule
from models.alarm_record import AlarmRecord, AlarmSeverity, AlarmStatus

__all__ = [
    "Base",
    "async_session",
    "engine",
    "get_session",
    "Site",
    "User",
    "SiteUser",
    "MetricSample",
    "MetricStatus",
    "AlarmRule",
    "AlarmRecord",
    "AlarmSeverity",
    "AlarmStatus",
]
