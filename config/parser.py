"""
Configuration parser for Lite Failover Monitor.
"""

import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional

from models import Probe
from monitor.hooks import check_command_template


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


# Probe periods and update intervals below this are raised to it
MIN_INTERVAL = 1.0
DEFAULT_WINDOW_SECONDS = 10


class MonitorConfig:
    """Monitor daemon configuration parser and validator."""

    REQUIRED_FIELDS = {
        'probes': list,
        'update.interval': (int, float),
    }

    OPTIONAL_FIELDS = {
        'probe.period': (int, float),
        'probe.window_seconds': int,
        'probe.privileged': bool,
        'failover.command': list,
        'failover.shutdown_command': list,
        'failover.hysteresis': (int, float),
        'webhook.url': str,
        'webhook.timeout': (int, float),
        'webhook.retry_attempts': int,
        'webhook.retry_backoff': list,
        'webhook.each_probe': bool,
        'api.enabled': bool,
        'api.listen_address': str,
        'api.port': int,
        'logging.level': str,
    }

    def __init__(self, config_dict: Dict[str, Any]):
        self._config = config_dict
        self._validate()

    def _validate(self):
        """Validate field presence and types, the probe list and the failover command."""
        for field_path, expected_type in self.REQUIRED_FIELDS.items():
            value = self._get_nested_value(field_path)
            if value is None:
                raise ConfigurationError(f"Missing required field: {field_path}")
            self._check_type(field_path, value, expected_type)

        for field_path, expected_type in self.OPTIONAL_FIELDS.items():
            value = self._get_nested_value(field_path)
            if value is not None:
                self._check_type(field_path, value, expected_type)

        self._probes = [self._parse_probe(i, item) for i, item in enumerate(self._config['probes'])]

        command = self._section('failover').get('command')
        if command:
            try:
                check_command_template(command)
            except ValueError as e:
                raise ConfigurationError(f"Field failover.command is invalid: {e}")

    def _check_type(self, field_path: str, value: Any, expected_type) -> None:
        if not isinstance(value, expected_type):
            raise ConfigurationError(
                f"Field {field_path} has incorrect type. "
                f"Expected {expected_type}, got {type(value)}"
            )

    def _get_nested_value(self, field_path: str) -> Any:
        """Get value from nested dictionary using dot notation."""
        keys = field_path.split('.')
        value = self._config
        for key in keys:
            if isinstance(value, dict):
                value = value.get(key)
            else:
                return None
        return value

    def _parse_probe(self, index: int, item: Any) -> Probe:
        """Parse a probe entry: a destination string or {destination, source}."""
        if isinstance(item, str):
            if not item.strip():
                raise ConfigurationError(f"probes[{index}] must be a non-empty string")
            return Probe(destination=item.strip())

        if isinstance(item, dict):
            destination = item.get('destination')
            source = item.get('source')
            if not isinstance(destination, str) or not destination:
                raise ConfigurationError(f"probes[{index}].destination must be a non-empty string")
            if source is not None and not isinstance(source, str):
                raise ConfigurationError(f"probes[{index}].source must be a string")
            return Probe(destination=destination, source=source)

        raise ConfigurationError(
            f"probes[{index}] must be a string or a mapping, not {type(item).__name__}"
        )

    def _section(self, name: str) -> Dict[str, Any]:
        return self._config.get(name) or {}

    @property
    def probes(self) -> List[Probe]:
        return list(self._probes)

    @property
    def probe_period(self) -> float:
        return max(float(self._section('probe').get('period', MIN_INTERVAL)), MIN_INTERVAL)

    @property
    def window_seconds(self) -> int:
        value = self._section('probe').get('window_seconds', DEFAULT_WINDOW_SECONDS)
        return value if value >= 1 else DEFAULT_WINDOW_SECONDS

    @property
    def privileged(self) -> bool:
        return self._section('probe').get('privileged', False)

    @property
    def update_interval(self) -> float:
        return max(float(self._config['update']['interval']), MIN_INTERVAL)

    @property
    def failover_command(self) -> Optional[List[str]]:
        command = self._section('failover').get('command')
        return [str(part) for part in command] if command else None

    @property
    def failover_shutdown_command(self) -> Optional[List[str]]:
        command = self._section('failover').get('shutdown_command')
        return [str(part) for part in command] if command else None

    @property
    def failover_hysteresis(self) -> float:
        return float(self._section('failover').get('hysteresis', 5.0))

    @property
    def webhook_url(self) -> Optional[str]:
        return self._section('webhook').get('url')

    @property
    def webhook_timeout(self) -> int:
        return self._section('webhook').get('timeout', 5)

    @property
    def webhook_retry_attempts(self) -> int:
        return self._section('webhook').get('retry_attempts', 3)

    @property
    def webhook_retry_backoff(self) -> List[int]:
        return self._section('webhook').get('retry_backoff', [1, 2, 4])

    @property
    def webhook_each_probe(self) -> bool:
        return self._section('webhook').get('each_probe', False)

    @property
    def api_enabled(self) -> bool:
        return self._section('api').get('enabled', False)

    @property
    def api_listen_address(self) -> str:
        return self._section('api').get('listen_address', '127.0.0.1')

    @property
    def api_port(self) -> int:
        return self._section('api').get('port', 8080)

    @property
    def log_level(self) -> str:
        return self._section('logging').get('level', 'INFO').upper()

    @classmethod
    def from_file(cls, config_path: str) -> 'MonitorConfig':
        """Load configuration from YAML file."""
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with open(path, 'r') as f:
                config_dict = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML: {e}")

        if config_dict is None:
            raise ConfigurationError("Configuration file is empty")

        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a mapping")

        return cls(config_dict)
