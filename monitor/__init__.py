"""
Monitor module for Lite Failover Monitor.
Handles probe scheduling, loss aggregation and failover hooks.
"""

from monitor.window import SlidingWindowTracker
from monitor.runner import ProbeRunner, ProbeResult, RunnerFailed
from monitor.registry import Registry
from monitor.engine import Engine, EngineState
from monitor.hooks import UpdateHooks, CompositeHooks, FailoverHooks, WebhookHooks
from monitor.selector import PathSelector, lowest_loss
from monitor.errors import (
    MonitorError,
    ProbeValidationError,
    TransportError,
    DuplicateProbeError,
    UnknownProbeError,
    EngineNotRunning,
)

__all__ = [
    'SlidingWindowTracker',
    'ProbeRunner',
    'ProbeResult',
    'RunnerFailed',
    'Registry',
    'Engine',
    'EngineState',
    'UpdateHooks',
    'CompositeHooks',
    'FailoverHooks',
    'WebhookHooks',
    'PathSelector',
    'lowest_loss',
    'MonitorError',
    'ProbeValidationError',
    'TransportError',
    'DuplicateProbeError',
    'UnknownProbeError',
    'EngineNotRunning',
]
