"""Error taxonomy shared by the acquisition, alarm and query services."""


class PumpRoomError(Exception):
    """Base class for errors raised by the core services."""


class ConfigurationError(PumpRoomError):
    """A logical node key has no device address in the node map."""

    def __init__(self, node_key: str):
        self.node_key = node_key
        super().__init__(f"No node mapping configured for '{node_key}'")


class EvaluationError(PumpRoomError):
    """A single alarm rule could not be evaluated for a site."""

    def __init__(self, site_code: str, alarm_code: str, message: str):
        self.site_code = site_code
        self.alarm_code = alarm_code
        super().__init__(f"[{site_code}] {alarm_code}: {message}")


class InvalidQueryError(PumpRoomError, ValueError):
    """A time-series read request was rejected before touching the database."""
