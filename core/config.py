from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlsplit

import yaml


DEFAULT_URL = 'http://localhost:9091/transmission/rpc'
DEFAULT_CONFIG_PATH = '/app/config.yaml'
DEFAULT_ALLOWED_LABELS = ('radarr', 'sonarr')

LOG_LEVELS = {
    'fatal': logging.CRITICAL,
    'error': logging.ERROR,
    'warn': logging.WARNING,
    'info': logging.INFO,
    'debug': logging.DEBUG,
    'trace': logging.DEBUG,
}

_TRUE = {'true', '1', 'yes'}
_FALSE = {'false', '0', 'no'}


class ConfigurationError(Exception):
    pass


@dataclass(frozen=True)
class Config:
    transmission_url: str = DEFAULT_URL
    username: Optional[str] = None
    password: Optional[str] = None
    allowed_labels: Tuple[str, ...] = DEFAULT_ALLOWED_LABELS
    excluded_trackers: Tuple[str, ...] = ()
    max_ratio: float = 2.0
    dead_retention_hours: float = 12.0
    max_age_hours: float = 120.0
    log_level: str = 'info'
    debug_logging: bool = False
    structured_logs: bool = True
    dry_run: bool = False
    schedule: Optional[str] = None
    request_timeout: float = 10.0

    @property
    def logging_level(self) -> int:
        return logging.DEBUG if self.debug_logging else LOG_LEVELS[self.log_level]


def load_yaml(path: str) -> Dict[str, Any]:
    if not path or not os.path.exists(path):
        return {}
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f'Invalid YAML in {path}: {e}') from e
    return data if isinstance(data, dict) else {}


def parse_url(value: Any) -> str:
    url = str(value).strip() if value not in (None, '') else DEFAULT_URL
    try:
        parts = urlsplit(url)
        _ = parts.port
    except ValueError as e:
        raise ConfigurationError(f'Invalid URL: {value}') from e
    if parts.scheme not in ('http', 'https') or not parts.hostname:
        raise ConfigurationError(f'Invalid URL: {value}')
    return url


def parse_auth(value: Any) -> Tuple[Optional[str], Optional[str]]:
    if not value:
        return None, None
    username, _, password = str(value).partition(':')
    if not username:
        raise ConfigurationError('Invalid auth: missing username')
    return username, password


def parse_list(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    items: List[Any]
    if isinstance(value, (list, tuple)):
        items = list(value)
    else:
        text = str(value)
        try:
            parsed = json.loads(text)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            items = parsed
        else:
            sep = ',' if ',' in text else None
            items = text.split(sep)
    return tuple(s for s in (str(i).strip().lower() for i in items) if s)


def parse_num(value: Any, default: float, name: str = 'number') -> float:
    if value in (None, ''):
        return float(default)
    try:
        n = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f'Invalid {name}: {value}') from e
    if n != n or n <= 0:
        raise ConfigurationError(f'Invalid {name}: {value}')
    return n


def parse_bool(value: Any, default: bool = False, name: str = 'boolean') -> bool:
    if value in (None, ''):
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigurationError(f'Invalid {name}: {value}')


def parse_level(value: Any) -> str:
    if value in (None, ''):
        return 'info'
    level = str(value).strip().lower()
    if level not in LOG_LEVELS:
        raise ConfigurationError(f'Invalid log level: {value}')
    return level


def load_config(env: Optional[Mapping[str, str]] = None, path: Optional[str] = None) -> Config:
    """Resolve settings from the environment, with YAML ``general`` values taking precedence."""
    env = os.environ if env is None else env
    cfg = load_yaml(path if path is not None else env.get('CONFIG_PATH', DEFAULT_CONFIG_PATH))
    general = cfg.get('general') if isinstance(cfg.get('general'), dict) else {}

    def _get(key: str) -> Any:
        if key in general and general[key] is not None:
            return general[key]
        return env.get(key.upper())

    username, password = parse_auth(_get('transmission_auth'))
    labels_raw = _get('allowed_labels')
    schedule = _get('schedule')
    schedule = str(schedule).strip() if schedule is not None else ''
    return Config(
        transmission_url=parse_url(_get('transmission_url')),
        username=username,
        password=password,
        allowed_labels=DEFAULT_ALLOWED_LABELS if labels_raw is None else parse_list(labels_raw),
        excluded_trackers=parse_list(_get('excluded_trackers')),
        max_ratio=parse_num(_get('max_ratio'), 2.0, 'MAX_RATIO'),
        dead_retention_hours=parse_num(_get('dead_retention_hours'), 12, 'DEAD_RETENTION_HOURS'),
        max_age_hours=parse_num(_get('max_age_hours'), 120, 'MAX_AGE_HOURS'),
        log_level=parse_level(_get('log_level')),
        debug_logging=parse_bool(_get('debug_logging'), False, 'DEBUG_LOGGING'),
        structured_logs=parse_bool(_get('structured_logs'), True, 'STRUCTURED_LOGS'),
        dry_run=parse_bool(_get('dry_run'), False, 'DRY_RUN'),
        schedule=schedule or None,
        request_timeout=parse_num(_get('request_timeout'), 10, 'REQUEST_TIMEOUT'),
    )


def describe_config(config: Config) -> List[str]:
    return [
        f'  URL: {config.transmission_url}',
        f"  Labels: {', '.join(config.allowed_labels) or '(none)'}",
        f"  Excluded trackers: {', '.join(config.excluded_trackers) or '(none)'}",
        f'  Max Ratio: {config.max_ratio}',
        f'  Max Age: {config.max_age_hours}h',
        f'  Dead Retention: {config.dead_retention_hours}h',
        f"  Dry Run: {'YES' if config.dry_run else 'NO'}",
        f"  Schedule: {config.schedule or '(one-shot)'}",
    ]
