"""
Application configuration manager.
Stores settings in a JSON file under Application Support.
"""

import json
import logging
from pathlib import Path

from dayflow.core.constants import (
    CONFIG_PATH, ProviderName, LOCAL_ENDPOINT, LOCAL_MODEL, GEMINI_MODEL,
    RETENTION_DAYS, SWEEP_INTERVAL_MINUTES, REQUEST_TIMEOUT_SEC,
)

# Validation bounds
_RETENTION_DAYS_MIN = 1
_RETENTION_DAYS_MAX = 30
_SWEEP_INTERVAL_MIN = 5        # minutes
_SWEEP_INTERVAL_MAX = 1440     # one day
_TIMEOUT_MIN = 10
_TIMEOUT_MAX = 600

logger = logging.getLogger(__name__)

_DEFAULTS = {
    'provider': ProviderName.GEMINI,
    'local_endpoint': LOCAL_ENDPOINT,
    'local_model': LOCAL_MODEL,
    'gemini_model': GEMINI_MODEL,
    'retention_days': RETENTION_DAYS,
    'sweep_interval_minutes': SWEEP_INTERVAL_MINUTES,
    'request_timeout_sec': REQUEST_TIMEOUT_SEC,
}


class AppConfig:
    """Manages application configuration stored as JSON."""

    def __init__(self, config_path: Path | None = None):
        self.path = config_path or CONFIG_PATH
        self._data: dict = {}
        self.load()

    def load(self):
        """Load config from disk, merging with defaults."""
        self._data = dict(_DEFAULTS)
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Failed to load config: %s", e)
                return
            if not isinstance(saved, dict):
                logger.warning("Ignoring config file %s: not a JSON object", self.path)
                return
            for key, value in saved.items():
                self._data[key] = self._validate(key, value)

    def save(self):
        """Persist config to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(self._data, f, indent=2)

    def get(self, key: str, default=None):
        return self._data.get(key, default)

    def set(self, key: str, value):
        value = self._validate(key, value)
        self._data[key] = value
        self.save()

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key == 'provider':
            if value not in (ProviderName.LOCAL, ProviderName.GEMINI):
                logger.warning("Invalid provider %r — using %s", value, _DEFAULTS['provider'])
                return _DEFAULTS['provider']

        if key == 'retention_days':
            return _clamp_int(key, value, _RETENTION_DAYS_MIN, _RETENTION_DAYS_MAX)

        if key == 'sweep_interval_minutes':
            return _clamp_int(key, value, _SWEEP_INTERVAL_MIN, _SWEEP_INTERVAL_MAX)

        if key == 'request_timeout_sec':
            return _clamp_int(key, value, _TIMEOUT_MIN, _TIMEOUT_MAX)

        if key == 'local_endpoint':
            value = str(value).strip().rstrip('/')
            if not value.startswith(('http://', 'https://')):
                logger.warning("Invalid local_endpoint %r — using default", value)
                return LOCAL_ENDPOINT

        return value

    def as_dict(self) -> dict:
        return dict(self._data)

    @property
    def provider(self) -> str:
        return self._data.get('provider', _DEFAULTS['provider'])

    @property
    def retention_days(self) -> int:
        return self._data.get('retention_days', RETENTION_DAYS)

    @property
    def sweep_interval_minutes(self) -> int:
        return self._data.get('sweep_interval_minutes', SWEEP_INTERVAL_MINUTES)


def _clamp_int(key: str, value, low: int, high: int) -> int:
    try:
        value = int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid %s %r — using default", key, value)
        return _DEFAULTS[key]
    return max(low, min(high, value))
