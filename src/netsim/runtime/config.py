from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from netsim.control.errors import ConfigError

DEFAULT_ROUTER_TAG = "patriotframework/patriot-router:latest"
DEFAULT_CONFIG_FILE = "netsim.yaml"

ENV_BACKEND = "NETSIM_BACKEND"
ENV_ROUTER_TAG = "NETSIM_ROUTER_TAG"
ENV_MONITORING_ADDR = "NETSIM_MONITORING_ADDR"
ENV_MONITORING_PORT = "NETSIM_MONITORING_PORT"
ENV_DOCKER_SUDO = "NETSIM_DOCKER_SUDO"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}
_KNOWN_KEYS = {"backend", "router_tag", "monitoring", "docker", "events"}


@dataclass(frozen=True)
class MonitoringEndpoint:
    address: str
    port: int


@dataclass(frozen=True)
class DockerSettings:
    binary: str = "docker"
    sudo: bool = False
    command_timeout: Optional[float] = 120.0


@dataclass(frozen=True)
class HubConfig:
    backend: str = "docker"
    router_tag: str = DEFAULT_ROUTER_TAG
    monitoring: Optional[MonitoringEndpoint] = None
    docker: DockerSettings = field(default_factory=DockerSettings)
    events: Optional[Path] = None


def load_hub_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> HubConfig:
    """
    Defaults, then the YAML file, then NETSIM_* environment variables.

    path defaults to ./netsim.yaml and is skipped when that file is absent.
    An explicit path that does not exist is an error.
    """

    env = os.environ if environ is None else environ
    raw: Dict[str, Any] = {}
    if path is not None:
        cfg_path = Path(path).expanduser()
        if not cfg_path.is_file():
            raise ConfigError(f"config file not found: {cfg_path}")
        raw = _read_config_file(cfg_path)
    elif Path(DEFAULT_CONFIG_FILE).is_file():
        raw = _read_config_file(Path(DEFAULT_CONFIG_FILE))

    raw = _overlay(raw, _env_overrides(env))
    return _parse(raw)


def _read_config_file(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(f"{path}: invalid YAML: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    unknown = sorted(set(data) - _KNOWN_KEYS)
    if unknown:
        raise ConfigError(f"{path}: unknown config keys: {unknown}")
    return data


def _overlay(file_values: Dict[str, Any], env_values: Dict[str, Any]) -> Dict[str, Any]:
    # monitoring and docker are tables; an env var replaces one key, not the table
    out = dict(file_values)
    for key, value in env_values.items():
        current = out.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            out[key] = {**current, **value}
        else:
            out[key] = value
    return out


def _env_overrides(env: Mapping[str, str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if env.get(ENV_BACKEND):
        out["backend"] = env[ENV_BACKEND]
    if env.get(ENV_ROUTER_TAG):
        out["router_tag"] = env[ENV_ROUTER_TAG]
    monitoring: Dict[str, Any] = {}
    if env.get(ENV_MONITORING_ADDR):
        monitoring["address"] = env[ENV_MONITORING_ADDR]
    if env.get(ENV_MONITORING_PORT):
        monitoring["port"] = env[ENV_MONITORING_PORT]
    if monitoring:
        out["monitoring"] = monitoring
    if ENV_DOCKER_SUDO in env:
        out["docker"] = {"sudo": _parse_bool(env[ENV_DOCKER_SUDO], ENV_DOCKER_SUDO)}
    return out


def _parse_bool(value: Any, where: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"{where}: expected a boolean, got {value!r}")


def _parse_monitoring(raw: Any) -> Optional[MonitoringEndpoint]:
    if not raw:
        return None
    if not isinstance(raw, dict):
        raise ConfigError("monitoring must be a table/object")
    address = raw.get("address")
    port = raw.get("port")
    if not address or port in (None, ""):
        raise ConfigError("monitoring requires both address and port")
    try:
        port_num = int(port)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"monitoring.port must be an integer, got {port!r}") from exc
    if port_num < 1 or port_num > 65535:
        raise ConfigError(f"monitoring.port out of range: {port_num}")
    return MonitoringEndpoint(address=str(address), port=port_num)


def _parse(raw: Dict[str, Any]) -> HubConfig:
    docker_raw = dict(raw.get("docker", {}) or {})
    timeout_raw = docker_raw.get("command_timeout", 120.0)
    try:
        timeout = float(timeout_raw) if timeout_raw is not None else None
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"docker.command_timeout must be a number, got {timeout_raw!r}") from exc
    if timeout is not None and timeout <= 0:
        timeout = None

    router_tag = str(raw.get("router_tag", DEFAULT_ROUTER_TAG)).strip()
    if not router_tag:
        raise ConfigError("router_tag must be a non-empty string")

    events = raw.get("events")
    return HubConfig(
        backend=str(raw.get("backend", "docker")).strip().lower(),
        router_tag=router_tag,
        monitoring=_parse_monitoring(raw.get("monitoring")),
        docker=DockerSettings(
            binary=str(docker_raw.get("binary", "docker")),
            sudo=_parse_bool(docker_raw.get("sudo", False), "docker.sudo"),
            command_timeout=timeout,
        ),
        events=Path(str(events)) if events else None,
    )
