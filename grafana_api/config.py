"""
Grafana API client configuration.

Configuration lives in a YAML file with a `grafana` section:

    grafana:
      token: "secret"
      cluster_id: 0
      cluster_count: 4
      path: "ws://localhost:3000/connect"   # optional
      auto_reconnect: true                  # optional
      reconnect_base_delay: 3               # optional, seconds
      eval_timeout: 30                      # optional, seconds, default none
      log_level: "INFO"                     # optional: NONE, ERROR, WARN, LOG, INFO, DEBUG
      print_traffic: false                  # optional
"""

import re
from dataclasses import dataclass, fields
from typing import Any, Optional, Self

import yaml

from .api.types import Const
from .exceptions import GrafanaConfigurationError


@dataclass(frozen=True)
class ClientConfig:
    token: str
    cluster_id: int
    cluster_count: int
    path: str = Const.DEFAULT_PATH
    auto_reconnect: bool = True
    reconnect_base_delay: float = Const.BASE_WAIT_TIME
    eval_timeout: Optional[float] = None
    log_level: str | int = "LOG"
    print_traffic: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        if not isinstance(data, dict):
            raise GrafanaConfigurationError("grafana config must be a mapping")

        required = ['token', 'cluster_id', 'cluster_count']
        missing = [f for f in required if f not in data]
        if missing:
            raise GrafanaConfigurationError(f"Missing grafana config fields: {', '.join(missing)}")

        known = {f.name for f in fields(cls)}
        unknown = [k for k in data if k not in known]
        if unknown:
            raise GrafanaConfigurationError(f"Unknown grafana config fields: {', '.join(unknown)}")

        if not isinstance(data['token'], str) or not data['token']:
            raise GrafanaConfigurationError("token must be a non-empty string")

        for key in ('cluster_id', 'cluster_count'):
            if not isinstance(data[key], int) or isinstance(data[key], bool) or data[key] < 0:
                raise GrafanaConfigurationError(f"{key} must be a non-negative integer: {data[key]!r}")
        if data['cluster_id'] >= data['cluster_count']:
            raise GrafanaConfigurationError(f"cluster_id {data['cluster_id']} is out of range for cluster_count {data['cluster_count']}")

        path = data.get('path', Const.DEFAULT_PATH)
        if not isinstance(path, str) or not re.match(r'^wss?://', path):
            raise GrafanaConfigurationError(f"path must be a ws:// or wss:// URI: {path!r}")

        for key in ('reconnect_base_delay', 'eval_timeout'):
            value = data.get(key)
            if value is None:
                continue
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
                raise GrafanaConfigurationError(f"{key} must be a positive number of seconds: {value!r}")

        for key in ('auto_reconnect', 'print_traffic'):
            if key in data and not isinstance(data[key], bool):
                raise GrafanaConfigurationError(f"{key} must be true or false: {data[key]!r}")

        log_level = data.get('log_level', "LOG")
        if not isinstance(log_level, (str, int)) or isinstance(log_level, bool):
            raise GrafanaConfigurationError(f"log_level must be a level name: {log_level!r}")

        return cls(
            token=data['token'],
            cluster_id=data['cluster_id'],
            cluster_count=data['cluster_count'],
            path=path,
            auto_reconnect=data.get('auto_reconnect', True),
            reconnect_base_delay=float(data.get('reconnect_base_delay') or Const.BASE_WAIT_TIME),
            eval_timeout=float(data['eval_timeout']) if data.get('eval_timeout') is not None else None,
            log_level=log_level,
            print_traffic=data.get('print_traffic', False),
        )


def load_config(path: str, section: str = "grafana") -> ClientConfig:
    """Load a ClientConfig from a YAML file"""
    try:
        with open(path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except FileNotFoundError:
        raise GrafanaConfigurationError(f"Config file not found: {path}") from None
    except yaml.YAMLError as e:
        raise GrafanaConfigurationError(f"Config file {path} is not valid YAML: {e}") from e

    if not isinstance(config, dict) or section not in config:
        raise GrafanaConfigurationError(f"Missing required config section: {section}")
    return ClientConfig.from_dict(config[section])
