"""Controller configuration: defaults, optional YAML file, environment overrides."""

from __future__ import annotations

import os
import logging
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional

import yaml

logger = logging.getLogger(__name__)

# env var -> Config field
ENV_VARS = {
    "GPUDRA_NAMESPACE": "namespace",
    "GPUDRA_LOG_LEVEL": "log_level",
    "GPUDRA_REQUEST_TIMEOUT": "request_timeout_s",
    "GPUDRA_HOST": "bind_host",
    "GPUDRA_PORT": "bind_port",
    "KUBECONFIG": "kubeconfig",
}


@dataclass
class Config:
    namespace: str = "default"
    log_level: str = "INFO"
    request_timeout_s: float = 10.0
    bind_host: str = "0.0.0.0"
    bind_port: int = 8080
    kubeconfig: Optional[str] = None


def _coerce(name: str, value: Any) -> Any:
    if name == "request_timeout_s":
        return float(value)
    if name == "bind_port":
        return int(value)
    if name == "log_level":
        return str(value).upper()
    return value


def load_config(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Config:
    """
    Build the configuration.

    Args:
        path: YAML file with Config field names as keys (defaults to $GPUDRA_CONFIG)
        environ: environment mapping, os.environ if None

    Returns:
        Config with file values applied over defaults and env values over both
    """
    environ = os.environ if environ is None else environ
    path = path or environ.get("GPUDRA_CONFIG")
    known = {f.name for f in fields(Config)}
    values: Dict[str, Any] = {}

    if path:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        for key, value in data.items():
            if key not in known:
                logger.warning(f"Ignoring unknown config key '{key}' in {path}")
                continue
            values[key] = _coerce(key, value)
        logger.info(f"Loaded config file {path}")

    for env_name, field_name in ENV_VARS.items():
        raw = environ.get(env_name)
        if raw:
            values[field_name] = _coerce(field_name, raw)

    return Config(**values)
