"""
Docker controller.

Drives the docker CLI through subprocess. Every call goes through one runner
so tests can replace it, and every non zero exit is mapped onto the error
taxonomy by matching the daemon's message.

Gateway discovery only looks at networks attached through this controller,
in attachment order; the default bridge a container starts on is ignored.
"""

from __future__ import annotations

import ipaddress
import json
import logging
import re
import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional, Type

from netsim.control.base import Controller, GatewayInfo
from netsim.control.errors import (
    AddressNotResolved,
    BackendUnavailable,
    BuildFailed,
    DeployFailed,
    DeviceNotFound,
    ExecFailed,
    ImageNotFound,
    NetsimError,
    NetworkBusy,
    NetworkConflict,
    NetworkNotFound,
    NotConnected,
    OperationTimedOut,
)
from netsim.model.devices import Device
from netsim.model.topology import Network
from netsim.utils.proc import CommandTimeout, resolve_bin, run_command, with_sudo

Runner = Callable[..., "subprocess.CompletedProcess[str]"]

LABEL_MANAGED = "netsim.managed"
LABEL_DEVICE = "netsim.device"
LABEL_KIND = "netsim.kind"

_ERROR_PATTERNS = [
    (re.compile(r"Cannot connect to the Docker daemon|permission denied while trying to connect", re.I), BackendUnavailable),
    (re.compile(r"has active endpoints", re.I), NetworkBusy),
    (re.compile(r"network with name .* already exists|already exists", re.I), NetworkConflict),
    (re.compile(r"network \S+ not found|No such network", re.I), NetworkNotFound),
    (re.compile(r"is not connected to (the )?network", re.I), NotConnected),
    (re.compile(r"No such container|No such object", re.I), DeviceNotFound),
    (re.compile(r"Unable to find image|pull access denied|manifest unknown|No such image", re.I), ImageNotFound),
    (re.compile(r"is not running", re.I), ExecFailed),
]


def classify_error(output: str, default: Type[NetsimError]) -> Type[NetsimError]:
    for pattern, err_cls in _ERROR_PATTERNS:
        if pattern.search(output):
            return err_cls
    return default


class DockerController(Controller):
    def __init__(
        self,
        binary: str = "docker",
        use_sudo: bool = False,
        command_timeout: float | None = 120.0,
        runner: Runner | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(logger)
        self._preferred_bin = binary
        self._bin: Optional[str] = None
        self._use_sudo = use_sudo
        self._timeout = command_timeout
        self._runner = runner or run_command
        self._attachments: Dict[str, List[str]] = {}

    def get_identifier(self) -> str:
        return "docker"

    def _binary(self) -> str:
        if self._bin is None:
            try:
                self._bin = resolve_bin(self._preferred_bin)
            except RuntimeError as exc:
                raise BackendUnavailable(str(exc)) from exc
        return self._bin

    def _docker(
        self,
        args: List[str],
        default: Type[NetsimError],
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        cmd = with_sudo([self._binary(), *args], self._use_sudo)
        self._log.debug("run: %s", " ".join(cmd))
        try:
            proc = self._runner(cmd, timeout=timeout if timeout is not None else self._timeout)
        except CommandTimeout as exc:
            raise OperationTimedOut(str(exc)) from exc
        if proc.returncode != 0:
            output = "\n".join(part.strip() for part in (proc.stderr, proc.stdout) if part)
            err_cls = classify_error(output, default)
            raise err_cls(f"docker {args[0]} failed ({proc.returncode}): {output or 'no output'}")
        return proc

    def create_network(self, network: Network) -> None:
        gateway = next(network.subnet.hosts())
        self._docker(
            [
                "network",
                "create",
                "--driver",
                "bridge",
                "--subnet",
                str(network.subnet),
                "--gateway",
                str(gateway),
                "--label",
                f"{LABEL_MANAGED}=true",
                "--label",
                f"netsim.internet={str(network.internet).lower()}",
                network.name,
            ],
            default=DeployFailed,
        )
        self._log.info("network %s created (%s)", network.name, network.subnet)

    def destroy_network(self, network: Network) -> None:
        self._docker(["network", "rm", network.name], default=DeployFailed)
        self._log.info("network %s removed", network.name)

    def deploy_device(
        self,
        device: Device,
        tag: str,
        monitoring_addr: Optional[str] = None,
        monitoring_port: Optional[int] = None,
    ) -> None:
        args = [
            "run",
            "-d",
            "--name",
            device.name,
            "--hostname",
            device.name,
            "--cap-add",
            "NET_ADMIN",
            "--label",
            f"{LABEL_MANAGED}=true",
            "--label",
            f"{LABEL_DEVICE}={device.name}",
            "--label",
            f"{LABEL_KIND}={device.kind}",
        ]
        for item in device.env:
            args += ["-e", item]
        if monitoring_addr is not None:
            args += ["-e", f"MONITORING_ADDR={monitoring_addr}", "-e", f"MONITORING_PORT={monitoring_port}"]
        args.append(tag)
        self._docker(args, default=DeployFailed)
        self._attachments[device.name] = []
        self._log.info("device %s deployed from %s", device.name, tag)

    def build_image(self, path: Path, tag: str) -> None:
        context = Path(path)
        if not context.exists():
            raise BuildFailed(f"build context not found: {context}")
        self._docker(["build", "-t", tag, str(context)], default=BuildFailed)
        self._log.info("image %s built from %s", tag, context)

    def connect_device_to_network(self, device: Device, network: Network) -> None:
        self._docker(["network", "connect", network.name, device.name], default=DeployFailed)
        self._attachments.setdefault(device.name, []).append(network.name)

    def disconnect_device(self, device: Device, network: Network) -> None:
        self._docker(["network", "disconnect", network.name, device.name], default=DeployFailed)
        attached = self._attachments.get(device.name, [])
        if network.name in attached:
            attached.remove(network.name)

    def stop_device(self, device: Device) -> None:
        self._docker(["stop", device.name], default=DeployFailed)

    def start_device(self, device: Device) -> None:
        self._docker(["start", device.name], default=DeployFailed)

    def destroy_device(self, device: Device) -> None:
        force = False
        try:
            self.stop_device(device)
        except DeviceNotFound:
            raise
        except NetsimError as exc:
            self._log.warning("stop %s failed before removal, forcing: %s", device.name, exc)
            force = True
        self._docker(["rm", "-f", device.name] if force else ["rm", device.name], default=DeployFailed)
        self._attachments.pop(device.name, None)
        self._log.info("device %s destroyed", device.name)

    def execute_command(self, device: Device, command: str) -> str:
        try:
            proc = self._docker(["exec", device.name, "sh", "-c", command], default=ExecFailed)
        except DeviceNotFound as exc:
            raise ExecFailed(f"device is not running: {device.name}") from exc
        return proc.stdout or ""

    def find_gateway(self, device: Device) -> GatewayInfo:
        proc = self._docker(
            ["inspect", "--format", "{{json .NetworkSettings.Networks}}", device.name],
            default=DeployFailed,
        )
        try:
            networks = json.loads(proc.stdout or "{}") or {}
        except json.JSONDecodeError as exc:
            raise AddressNotResolved(f"unreadable inspect output for {device.name}") from exc

        for net_name in self._attachments.get(device.name, []):
            entry = networks.get(net_name) or {}
            gateway = str(entry.get("Gateway") or "")
            prefix = int(entry.get("IPPrefixLen") or 0)
            if not gateway or prefix <= 0:
                continue
            iface = ipaddress.ip_interface(f"{gateway}/{prefix}")
            return GatewayInfo(
                network_address=str(iface.network.network_address),
                address=gateway,
                mask=prefix,
            )
        raise AddressNotResolved(f"{device.name} has no gateway capable network")
