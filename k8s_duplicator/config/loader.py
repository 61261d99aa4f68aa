"""
Config Loader - Load controller settings from a file, a master key or env vars.

Sources, lowest priority first:
1. YAML file: ``--config PATH`` or ``DUPLICATOR_CONFIG_FILE``
2. Master JSON key: a single ``DUPLICATOR_CONFIG`` env var
3. Individual env vars (``DUPLICATOR_WORKERS``, ``KUBECONFIG``, ...)

Keys in the file and the master JSON use the field names below, either
lower-case or as their env var spelling.

## Usage

    # Option 1: Master config (one deployment env var)
    export DUPLICATOR_CONFIG='{"workers": 4, "leader_elect": true, "lease_id": "prod"}'

    # Option 2: Individual keys
    export DUPLICATOR_WORKERS=4
    export DUPLICATOR_LEADER_ELECT=true

    settings = load_settings()
    settings.validate()
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

MASTER_ENV = "DUPLICATOR_CONFIG"
FILE_ENV = "DUPLICATOR_CONFIG_FILE"

# field name -> env var names, first match wins
ENV_VARS: Dict[str, Tuple[str, ...]] = {
    "workers": ("DUPLICATOR_WORKERS",),
    "leader_elect": ("DUPLICATOR_LEADER_ELECT",),
    "lease_id": ("DUPLICATOR_LEASE_ID",),
    "lease_namespace": ("DUPLICATOR_LEASE_NAMESPACE", "POD_NAMESPACE"),
    "lease_duration_seconds": ("DUPLICATOR_LEASE_DURATION",),
    "renew_deadline_seconds": ("DUPLICATOR_RENEW_DEADLINE",),
    "retry_period_seconds": ("DUPLICATOR_RETRY_PERIOD",),
    "probe_bind_address": ("DUPLICATOR_PROBE_ADDRESS",),
    "metrics_bind_address": ("DUPLICATOR_METRICS_ADDRESS",),
    "request_timeout_seconds": ("DUPLICATOR_REQUEST_TIMEOUT",),
    "resync_period_seconds": ("DUPLICATOR_RESYNC_PERIOD",),
    "backoff_base_seconds": ("DUPLICATOR_BACKOFF_BASE",),
    "backoff_max_seconds": ("DUPLICATOR_BACKOFF_MAX",),
    "kubeconfig": ("KUBECONFIG",),
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass
class ControllerSettings:
    """Every tunable of the controller in one place."""

    # Concurrency
    workers: int = 1

    # Leader election
    leader_elect: bool = False
    lease_id: str = ""
    lease_namespace: str = "default"
    lease_duration_seconds: float = 15
    renew_deadline_seconds: float = 10
    retry_period_seconds: float = 2

    # Endpoints ("0" disables metrics)
    probe_bind_address: str = ":8081"
    metrics_bind_address: str = ":8080"

    # API and scheduling
    request_timeout_seconds: float = 30
    resync_period_seconds: float = 36000
    backoff_base_seconds: float = 0.005
    backoff_max_seconds: float = 1000

    kubeconfig: Optional[str] = None

    @property
    def lock_name(self) -> str:
        return f"k8s-duplicator-{self.lease_id}" if self.lease_id else "k8s-duplicator"

    @property
    def metrics_enabled(self) -> bool:
        return self.metrics_bind_address not in ("", "0")

    def validate(self) -> None:
        """Raise ConfigurationError if settings are inconsistent."""
        problems = []
        if self.workers < 1:
            problems.append(f"workers must be at least 1, got {self.workers}")
        if self.request_timeout_seconds <= 0:
            problems.append("request_timeout_seconds must be positive")
        if self.resync_period_seconds < 0:
            problems.append("resync_period_seconds must not be negative")
        if not 0 < self.backoff_base_seconds <= self.backoff_max_seconds:
            problems.append("backoff requires 0 < backoff_base_seconds <= backoff_max_seconds")
        if self.leader_elect:
            if self.retry_period_seconds <= 0:
                problems.append("retry_period_seconds must be positive")
            if not self.renew_deadline_seconds > self.retry_period_seconds:
                problems.append("renew_deadline_seconds must exceed retry_period_seconds")
            if not self.lease_duration_seconds > self.renew_deadline_seconds:
                problems.append("lease_duration_seconds must exceed renew_deadline_seconds")
            if not self.lease_namespace:
                problems.append("lease_namespace is required for leader election")
        for address in (self.probe_bind_address, self.metrics_bind_address):
            if address not in ("", "0"):
                try:
                    parse_bind_address(address)
                except ValueError as e:
                    problems.append(str(e))

        if problems:
            raise ConfigurationError("Invalid configuration: " + "; ".join(problems))

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def parse_bind_address(address: str) -> Tuple[str, int]:
    """Split ``host:port`` (host optional) into a tuple. ``:8080`` binds all interfaces."""
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"Invalid bind address '{address}', expected [host]:port")
    return host or "0.0.0.0", int(port)


def load_settings(
    config_file: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ControllerSettings:
    """
    Load settings from every source.

    Args:
        config_file: YAML file to read; defaults to ``DUPLICATOR_CONFIG_FILE``
        environ: Environment to read from; defaults to ``os.environ``

    Returns:
        ControllerSettings, not yet validated
    """
    env = os.environ if environ is None else environ
    values: Dict[str, Any] = {}

    path = config_file or (Path(env[FILE_ENV]) if env.get(FILE_ENV) else None)
    if path is not None:
        values.update(_load_file(path))

    master_config = env.get(MASTER_ENV)
    if master_config:
        try:
            data = json.loads(master_config)
            values.update(_normalize_keys(data, source=MASTER_ENV))
            logger.info(f"Loaded configuration from {MASTER_ENV}")
        except json.JSONDecodeError as e:
            logger.error(f"Invalid {MASTER_ENV} JSON: {e}")

    values.update(_load_individual_vars(env))

    return _build(values)


def _load_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    logger.info(f"Loaded configuration from {path}")
    return _normalize_keys(data, source=str(path))


def _normalize_keys(data: Any, source: str) -> Dict[str, Any]:
    """Accept field names and env var spellings; drop unknown keys with a warning."""
    if not isinstance(data, dict):
        raise ConfigurationError(f"{source} must contain a mapping, got {type(data).__name__}")

    by_env = {env_name: field_name for field_name, names in ENV_VARS.items() for env_name in names}
    values: Dict[str, Any] = {}
    for key, value in data.items():
        name = str(key)
        if name.lower() in ENV_VARS:
            values[name.lower()] = value
        elif name.upper() in by_env:
            values[by_env[name.upper()]] = value
        else:
            logger.warning(f"Ignoring unknown setting '{key}' in {source}")
    return values


def _load_individual_vars(env: Mapping[str, str]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for field_name, names in ENV_VARS.items():
        for env_name in names:
            if env.get(env_name) not in (None, ""):
                values[field_name] = env[env_name]
                break
    return values


def _build(values: Dict[str, Any]) -> ControllerSettings:
    settings = ControllerSettings()
    types = {f.name: f.type for f in fields(ControllerSettings)}
    for name, raw in values.items():
        setattr(settings, name, _coerce(name, types[name], raw))
    return settings


def _coerce(name: str, annotation: Any, raw: Any) -> Any:
    if raw is None:
        return None
    kind = str(annotation)
    try:
        if kind == "bool":
            if isinstance(raw, bool):
                return raw
            text = str(raw).strip().lower()
            if text in _TRUE:
                return True
            if text in _FALSE:
                return False
            raise ValueError(raw)
        if kind == "int":
            return int(raw)
        if kind == "float":
            return float(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value for {name}: {raw!r}") from e
    return str(raw)
