from __future__ import annotations

from pathlib import Path

import pytest

from netsim.backends.docker import DockerController
from netsim.backends.memory import InMemoryController
from netsim.backends.registry import available_backends, build_controller, load_backend, register_backend
from netsim.control.errors import ConfigError
from netsim.hub.hub import Hub
from netsim.runtime.config import DEFAULT_ROUTER_TAG, HubConfig, MonitoringEndpoint, load_hub_config


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "netsim.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_without_file_or_environment(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.chdir(tmp_path)
    cfg = load_hub_config(environ={})
    assert cfg.backend == "docker"
    assert cfg.router_tag == DEFAULT_ROUTER_TAG
    assert cfg.monitoring is None
    assert cfg.docker.sudo is False
    assert cfg.docker.command_timeout == 120.0


def test_yaml_file_is_loaded(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
backend: memory
router_tag: my/router:2
monitoring:
  address: 10.9.9.9
  port: 9090
docker:
  sudo: yes
  command_timeout: 0
events: out/events.jsonl
""",
    )
    cfg = load_hub_config(path, environ={})
    assert cfg.backend == "memory"
    assert cfg.router_tag == "my/router:2"
    assert cfg.monitoring == MonitoringEndpoint("10.9.9.9", 9090)
    assert cfg.docker.sudo is True
    assert cfg.docker.command_timeout is None
    assert cfg.events == Path("out/events.jsonl")


def test_default_file_picked_up_from_working_directory(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    _write(tmp_path, "backend: memory\n")
    monkeypatch.chdir(tmp_path)
    assert load_hub_config(environ={}).backend == "memory"


def test_environment_overrides_file(tmp_path: Path) -> None:
    path = _write(tmp_path, "backend: docker\nrouter_tag: file/router:1\nmonitoring: {address: 1.1.1.1, port: 1}\n")
    cfg = load_hub_config(
        path,
        environ={
            "NETSIM_BACKEND": "memory",
            "NETSIM_ROUTER_TAG": "env/router:1",
            "NETSIM_MONITORING_PORT": "9100",
            "NETSIM_DOCKER_SUDO": "true",
        },
    )
    assert cfg.backend == "memory"
    assert cfg.router_tag == "env/router:1"
    assert cfg.monitoring == MonitoringEndpoint("1.1.1.1", 9100)
    assert cfg.docker.sudo is True


def test_missing_explicit_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_hub_config(tmp_path / "nope.yaml", environ={})


@pytest.mark.parametrize(
    "env",
    [
        {"NETSIM_MONITORING_ADDR": "10.0.0.1"},
        {"NETSIM_MONITORING_ADDR": "10.0.0.1", "NETSIM_MONITORING_PORT": "abc"},
        {"NETSIM_MONITORING_ADDR": "10.0.0.1", "NETSIM_MONITORING_PORT": "70000"},
        {"NETSIM_DOCKER_SUDO": "maybe"},
    ],
)
def test_invalid_values_rejected(tmp_path: Path, monkeypatch, env) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ConfigError):
        load_hub_config(environ=env)


def test_backend_registry() -> None:
    assert available_backends() == ["docker", "memory"]
    assert isinstance(build_controller(HubConfig(backend="memory")), InMemoryController)
    docker = build_controller(HubConfig(backend="docker"))
    assert isinstance(docker, DockerController)
    assert docker.get_identifier() == "docker"
    with pytest.raises(KeyError):
        load_backend("kubernetes")


def test_register_backend(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    import netsim.backends.registry as registry_mod

    monkeypatch.setattr(registry_mod, "_REGISTRY", dict(registry_mod._REGISTRY))
    sentinel = InMemoryController()
    register_backend("fake", lambda cfg: sentinel)
    assert "fake" in available_backends()
    assert build_controller(HubConfig(backend="fake")) is sentinel


def test_hub_from_config_uses_backend_and_router_tag(tmp_path: Path) -> None:
    cfg = HubConfig(backend="memory", router_tag="cfg/router:1", events=tmp_path / "events.jsonl")
    with Hub.from_config(cfg) as hub:
        assert hub.controller.get_identifier() == "memory"
        assert hub.config.router_tag == "cfg/router:1"
    assert (tmp_path / "events.jsonl").read_text(encoding="utf-8").strip()


@pytest.mark.parametrize(
    "text",
    [
        "backend: [unclosed\n",
        "- just\n- a list\n",
        "backend: memory\nmonitor: {address: 1.2.3.4, port: 1}\n",
    ],
)
def test_malformed_config_file_is_a_config_error(tmp_path: Path, text: str) -> None:
    with pytest.raises(ConfigError):
        load_hub_config(_write(tmp_path, text), environ={})


def test_empty_config_file_means_defaults(tmp_path: Path) -> None:
    cfg = load_hub_config(_write(tmp_path, ""), environ={})
    assert cfg.backend == "docker"


def test_environment_replaces_single_docker_key(tmp_path: Path) -> None:
    path = _write(tmp_path, "docker: {binary: /opt/docker, sudo: false}\n")
    cfg = load_hub_config(path, environ={"NETSIM_DOCKER_SUDO": "1"})
    assert cfg.docker.binary == "/opt/docker"
    assert cfg.docker.sudo is True
