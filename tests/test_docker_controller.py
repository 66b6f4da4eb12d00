from __future__ import annotations

import ipaddress
import json
import subprocess
from typing import Dict, List, Tuple

import pytest

import netsim.backends.docker as docker_mod
from netsim.backends.docker import DockerController, classify_error
from netsim.control.errors import (
    AddressNotResolved,
    BackendUnavailable,
    DeployFailed,
    DeviceNotFound,
    ExecFailed,
    ImageNotFound,
    NetworkBusy,
    NetworkConflict,
    NetworkNotFound,
    NotConnected,
    OperationTimedOut,
)
from netsim.model.devices import Host, Router
from netsim.model.topology import Network
from netsim.utils.proc import CommandTimeout


class FakeDocker:
    def __init__(self) -> None:
        self.cmds: List[List[str]] = []
        self.responses: Dict[Tuple[str, ...], Tuple[int, str, str]] = {}

    def respond(self, prefix: Tuple[str, ...], returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        self.responses[prefix] = (returncode, stdout, stderr)

    def __call__(self, cmd, timeout=None):  # type: ignore[no-untyped-def]
        del timeout
        self.cmds.append(list(cmd))
        args = tuple(cmd[1:])
        for prefix, (rc, out, err) in self.responses.items():
            if args[: len(prefix)] == prefix:
                return subprocess.CompletedProcess(cmd, rc, out, err)
        return subprocess.CompletedProcess(cmd, 0, "", "")


@pytest.fixture
def fake(monkeypatch) -> FakeDocker:  # type: ignore[no-untyped-def]
    monkeypatch.setattr(docker_mod, "resolve_bin", lambda preferred: "/usr/bin/docker")
    return FakeDocker()


def _lan() -> Network:
    return Network("lan1", ipaddress.IPv4Network("10.0.0.0/24"))


def test_create_network_builds_bridge_with_subnet_and_gateway(fake: FakeDocker) -> None:
    ctl = DockerController(runner=fake)
    ctl.create_network(_lan())
    cmd = fake.cmds[-1]
    assert cmd[:3] == ["/usr/bin/docker", "network", "create"]
    assert cmd[cmd.index("--subnet") + 1] == "10.0.0.0/24"
    assert cmd[cmd.index("--gateway") + 1] == "10.0.0.1"
    assert cmd[-1] == "lan1"


def test_sudo_prefix(fake: FakeDocker) -> None:
    ctl = DockerController(use_sudo=True, runner=fake)
    ctl.stop_device(Host("h1"))
    assert fake.cmds[-1][:3] == ["sudo", "/usr/bin/docker", "stop"]


def test_deploy_passes_env_monitoring_and_tag(fake: FakeDocker) -> None:
    ctl = DockerController(runner=fake)
    ctl.deploy_device(Router("router1", env=["A=1"]), "img:1", "10.9.9.9", 9090)
    cmd = fake.cmds[-1]
    assert cmd[1:3] == ["run", "-d"]
    assert cmd[cmd.index("--name") + 1] == "router1"
    assert "A=1" in cmd
    assert "MONITORING_ADDR=10.9.9.9" in cmd
    assert "MONITORING_PORT=9090" in cmd
    assert "netsim.kind=router" in cmd
    assert cmd[-1] == "img:1"


@pytest.mark.parametrize(
    "prefix, stderr, call, expected",
    [
        (("network", "create"), "Error response from daemon: network with name lan1 already exists", "create", NetworkConflict),
        (("network", "rm"), "Error response from daemon: error while removing network: network lan1 id 1 has active endpoints", "destroy", NetworkBusy),
        (("network", "rm"), "Error response from daemon: network lan1 not found", "destroy", NetworkNotFound),
        (("run",), "Unable to find image 'nope:1' locally\npull access denied for nope", "deploy", ImageNotFound),
        (("run",), "Cannot connect to the Docker daemon at unix:///var/run/docker.sock.", "deploy", BackendUnavailable),
        (("run",), "Conflict. The container name is already in use", "deploy_other", DeployFailed),
        (("network", "disconnect"), "Error response from daemon: container abc is not connected to network lan1", "disconnect", NotConnected),
    ],
)
def test_errors_are_classified(fake: FakeDocker, prefix, stderr, call, expected) -> None:  # type: ignore[no-untyped-def]
    fake.respond(prefix, returncode=1, stderr=stderr)
    ctl = DockerController(runner=fake)
    host = Host("h1")
    with pytest.raises(expected):
        if call == "create":
            ctl.create_network(_lan())
        elif call == "destroy":
            ctl.destroy_network(_lan())
        elif call == "disconnect":
            ctl.disconnect_device(host, _lan())
        else:
            ctl.deploy_device(host, "nope:1")


def test_classify_falls_back_to_default() -> None:
    assert classify_error("something odd", DeployFailed) is DeployFailed


def test_destroy_device_stops_then_removes(fake: FakeDocker) -> None:
    ctl = DockerController(runner=fake)
    ctl.destroy_device(Host("h1"))
    assert [c[1] for c in fake.cmds] == ["stop", "rm"]


def test_destroy_device_forces_removal_when_stop_fails(fake: FakeDocker) -> None:
    fake.respond(("stop",), returncode=1, stderr="tried to kill container, but did not receive an exit event")
    ctl = DockerController(runner=fake)
    ctl.destroy_device(Host("h1"))
    assert fake.cmds[-1][1:] == ["rm", "-f", "h1"]


def test_destroy_missing_device_raises_not_found(fake: FakeDocker) -> None:
    fake.respond(("stop",), returncode=1, stderr="Error response from daemon: No such container: h1")
    ctl = DockerController(runner=fake)
    with pytest.raises(DeviceNotFound):
        ctl.destroy_device(Host("h1"))


def test_execute_command_returns_output_and_maps_missing_container(fake: FakeDocker) -> None:
    fake.respond(("exec", "h1"), stdout="ok\n")
    fake.respond(("exec", "h2"), returncode=1, stderr="Error response from daemon: No such container: h2")
    ctl = DockerController(runner=fake)
    assert ctl.execute_command(Host("h1"), "echo ok") == "ok\n"
    assert fake.cmds[-1][1:] == ["exec", "h1", "sh", "-c", "echo ok"]
    with pytest.raises(ExecFailed):
        ctl.execute_command(Host("h2"), "true")


def test_gateway_uses_attached_networks_only(fake: FakeDocker) -> None:
    inspect = {
        "bridge": {"Gateway": "172.17.0.1", "IPAddress": "172.17.0.2", "IPPrefixLen": 16},
        "lan1": {"Gateway": "10.0.0.1", "IPAddress": "10.0.0.2", "IPPrefixLen": 24},
    }
    fake.respond(("inspect",), stdout=json.dumps(inspect))
    ctl = DockerController(runner=fake)
    router = Router("router1")
    ctl.deploy_device(router, "img")

    with pytest.raises(AddressNotResolved):
        ctl.find_gateway(router)

    ctl.connect_device_to_network(router, _lan())
    gw = ctl.find_gateway(router)
    assert gw.address == "10.0.0.1"
    assert gw.network_address == "10.0.0.0"
    assert gw.mask == 24
    assert ctl.find_gw_ip_address(router) == "10.0.0.1"


def test_timeout_is_reported_as_operation_timed_out(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setattr(docker_mod, "resolve_bin", lambda preferred: "/usr/bin/docker")

    def slow(cmd, timeout=None):  # type: ignore[no-untyped-def]
        raise CommandTimeout(cmd, timeout or 0)

    ctl = DockerController(command_timeout=1.0, runner=slow)
    with pytest.raises(OperationTimedOut):
        ctl.create_network(_lan())


def test_missing_binary_is_backend_unavailable(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    def missing(preferred):  # type: ignore[no-untyped-def]
        raise RuntimeError(f"Cannot find `{preferred}` in PATH.")

    monkeypatch.setattr(docker_mod, "resolve_bin", missing)
    ctl = DockerController(runner=FakeDocker())
    with pytest.raises(BackendUnavailable):
        ctl.start_device(Host("h1"))
    assert ctl.get_identifier() == "docker"
