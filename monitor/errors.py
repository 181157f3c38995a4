"""
Exception types raised by the monitoring engine and its collaborators.
"""


class MonitorError(Exception):
    """Base class for all monitoring errors."""
    pass


class ProbeValidationError(MonitorError):
    """Raised when a probe cannot be resolved or validated."""
    pass


class TransportError(MonitorError):
    """Raised when an echo transport cannot be constructed."""
    pass


class DuplicateProbeError(MonitorError):
    """Raised when adding a probe for an already registered destination."""
    pass


class UnknownProbeError(MonitorError):
    """Raised when a destination is not registered."""
    pass


class EngineNotRunning(MonitorError):
    """Raised when a request is made to an engine that is not running."""
    pass
