"""
Configuration loading for Lite Failover Monitor.
"""

from config.parser import MonitorConfig, ConfigurationError

__all__ = [
    'MonitorConfig',
    'ConfigurationError',
]
