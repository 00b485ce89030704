"""
Sync configuration loading.

Environment variables (``TIMESHEET_<FIELD>``) take precedence over settings
saved in the local store with ``save_setting``. Missing or invalid settings
never stop the client; it falls back to the local-only backend.
"""

import os
from dataclasses import fields
from typing import Mapping, Optional

from client.local_store import LocalStore
from shared.logging_config import get_client_logger
from shared.models import BACKENDS, SyncConfig
from shared.utils import to_float_optional, to_int_optional

logger = get_client_logger()

ENV_PREFIX = 'TIMESHEET_'

CONFIG_FIELDS = {f.name: f for f in fields(SyncConfig)}


def env_name(field_name: str) -> str:
    return f"{ENV_PREFIX}{field_name.upper()}"


def _convert(field_name: str, raw: str):
    field_type = CONFIG_FIELDS[field_name].type
    if field_type is int:
        return to_int_optional(raw)
    if field_type is float:
        return to_float_optional(raw)
    return raw.strip()


def _infer_backend(config: SyncConfig) -> str:
    if config.api_url:
        return 'rest'
    if config.github_owner and config.github_repo and config.github_token:
        return 'github'
    return 'local'


def load_config(store: Optional[LocalStore] = None, environ: Optional[Mapping[str, str]] = None) -> SyncConfig:
    """Build the sync configuration from the environment and saved settings"""
    environ = os.environ if environ is None else environ

    values = {}
    for name in CONFIG_FIELDS:
        raw = environ.get(env_name(name))
        if not raw and store is not None:
            raw = store.get_setting(name)
        if not raw:
            continue

        value = _convert(name, raw)
        if value is None or value == '':
            logger.warning(f"Ignoring invalid value for {env_name(name)}: {raw!r}")
            continue
        values[name] = value

    backend = values.pop('backend', None)
    if backend is not None and backend not in BACKENDS:
        logger.warning(f"Unknown backend {backend!r}; using local storage only")
        backend = 'local'

    try:
        config = SyncConfig(**values)
    except ValueError as e:
        logger.warning(f"Invalid sync configuration ({e}); using local storage only")
        return SyncConfig()

    config.backend = backend or _infer_backend(config)
    if config.backend != 'local' and not config.is_configured():
        logger.warning(f"Backend {config.backend!r} selected but not fully configured; using local storage only")
        config.backend = 'local'

    logger.debug(f"Sync backend: {config.backend}")
    return config


def save_setting(store: LocalStore, name: str, value: str) -> None:
    """Persist one configuration value in the local store"""
    if name not in CONFIG_FIELDS:
        raise KeyError(f"Unknown setting {name!r}; expected one of {', '.join(CONFIG_FIELDS)}")
    store.set_setting(name, value)


def describe_config(config: SyncConfig) -> dict:
    """Configuration for display, with secrets masked"""
    data = config.to_dict()
    for secret in ('api_key', 'github_token'):
        if data.get(secret):
            data[secret] = f"{data[secret][:4]}..."
    return data
