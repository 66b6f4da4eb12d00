"""
In memory controller.

This controller is used for tests and dry runs.
It behaves like a tiny container engine: networks, units, attachments and
addresses live in dictionaries.

Features
- Records every call in order, including calls that fail
- Allocates addresses from each network subnet; the first host is the gateway
- Can inject failures per operation and resource name
"""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set, Tuple, Type

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
)
from netsim.model.devices import Device
from netsim.model.topology import Network

_INJECTED: Dict[str, Type[NetsimError]] = {
    "create_network": NetworkConflict,
    "destroy_network": NetworkBusy,
    "deploy_device": DeployFailed,
    "build_image": BuildFailed,
    "stop_device": DeviceNotFound,
    "start_device": DeviceNotFound,
    "execute_command": ExecFailed,
}


@dataclass
class _NetworkState:
    network: Network
    gateway: ipaddress.IPv4Address
    free: Iterator[ipaddress.IPv4Address]
    released: List[ipaddress.IPv4Address] = field(default_factory=list)

    def allocate(self) -> ipaddress.IPv4Address:
        if self.released:
            return self.released.pop(0)
        try:
            return next(self.free)
        except StopIteration:
            raise DeployFailed(f"network {self.network.name}: address pool exhausted") from None


@dataclass
class _Unit:
    tag: str
    env: Dict[str, str]
    running: bool = True
    attachments: Dict[str, ipaddress.IPv4Address] = field(default_factory=dict)


class InMemoryController(Controller):
    """
    known_images
    When set, deploying a tag outside this set raises ImageNotFound.
    Built images are added to it.

    fail_on
    Mapping of operation name to resource names that fail, for example
    {"deploy_device": {"router1"}}.
    """

    def __init__(
        self,
        known_images: Optional[Set[str]] = None,
        fail_on: Optional[Dict[str, Set[str]]] = None,
        exec_output: Optional[Dict[str, str]] = None,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(logger)
        self.known_images = set(known_images) if known_images is not None else None
        self.fail_on: Dict[str, Set[str]] = {k: set(v) for k, v in (fail_on or {}).items()}
        self.exec_output: Dict[str, str] = dict(exec_output or {})
        self.available = True
        self.calls: List[Tuple[str, ...]] = []
        self.networks: Dict[str, _NetworkState] = {}
        self.units: Dict[str, _Unit] = {}

    def get_identifier(self) -> str:
        return "memory"

    def _enter(self, op: str, *names: str) -> None:
        self.calls.append((op, *names))
        if not self.available:
            raise BackendUnavailable(f"{op}: backend unavailable")
        for name in names:
            if name in self.fail_on.get(op, set()):
                err_cls = _INJECTED.get(op, DeployFailed)
                raise err_cls(f"{op} {' '.join(names)}: injected failure")

    def _unit(self, device: Device) -> _Unit:
        unit = self.units.get(device.name)
        if unit is None:
            raise DeviceNotFound(f"no such device: {device.name}")
        return unit

    def calls_of(self, op: str) -> List[Tuple[str, ...]]:
        return [c for c in self.calls if c[0] == op]

    def create_network(self, network: Network) -> None:
        self._enter("create_network", network.name)
        if network.name in self.networks:
            raise NetworkConflict(f"network already exists: {network.name}")
        hosts = network.subnet.hosts()
        gateway = next(hosts)
        self.networks[network.name] = _NetworkState(network=network, gateway=gateway, free=hosts)
        self._log.debug("network %s created (%s)", network.name, network.subnet)

    def destroy_network(self, network: Network) -> None:
        self._enter("destroy_network", network.name)
        if network.name not in self.networks:
            raise NetworkNotFound(f"no such network: {network.name}")
        members = [name for name, unit in self.units.items() if network.name in unit.attachments]
        if members:
            raise NetworkBusy(f"network {network.name} has attached devices: {sorted(members)}")
        del self.networks[network.name]

    def deploy_device(
        self,
        device: Device,
        tag: str,
        monitoring_addr: Optional[str] = None,
        monitoring_port: Optional[int] = None,
    ) -> None:
        self._enter("deploy_device", device.name)
        if self.known_images is not None and tag not in self.known_images:
            raise ImageNotFound(f"image not found: {tag}")
        if device.name in self.units:
            raise DeployFailed(f"device already exists: {device.name}")
        env = device.env_map()
        if monitoring_addr is not None:
            env["MONITORING_ADDR"] = monitoring_addr
            env["MONITORING_PORT"] = str(monitoring_port)
        self.units[device.name] = _Unit(tag=tag, env=env)

    def build_image(self, path: Path, tag: str) -> None:
        self._enter("build_image", tag)
        if not Path(path).exists():
            raise BuildFailed(f"build context not found: {path}")
        if self.known_images is not None:
            self.known_images.add(tag)

    def connect_device_to_network(self, device: Device, network: Network) -> None:
        self._enter("connect_device_to_network", device.name, network.name)
        unit = self._unit(device)
        state = self.networks.get(network.name)
        if state is None:
            raise NetworkNotFound(f"no such network: {network.name}")
        if network.name in unit.attachments:
            raise NetworkConflict(f"{device.name} already attached to {network.name}")
        unit.attachments[network.name] = state.allocate()

    def disconnect_device(self, device: Device, network: Network) -> None:
        self._enter("disconnect_device", device.name, network.name)
        unit = self._unit(device)
        if network.name not in unit.attachments:
            raise NotConnected(f"{device.name} is not attached to {network.name}")
        addr = unit.attachments.pop(network.name)
        state = self.networks.get(network.name)
        if state is not None:
            state.released.append(addr)

    def stop_device(self, device: Device) -> None:
        self._enter("stop_device", device.name)
        self._unit(device).running = False

    def start_device(self, device: Device) -> None:
        self._enter("start_device", device.name)
        self._unit(device).running = True

    def destroy_device(self, device: Device) -> None:
        self._enter("destroy_device", device.name)
        unit = self._unit(device)
        unit.running = False
        for net_name, addr in unit.attachments.items():
            state = self.networks.get(net_name)
            if state is not None:
                state.released.append(addr)
        del self.units[device.name]

    def execute_command(self, device: Device, command: str) -> str:
        self._enter("execute_command", device.name)
        unit = self.units.get(device.name)
        if unit is None or not unit.running:
            raise ExecFailed(f"device is not running: {device.name}")
        return self.exec_output.get(command, "")

    def address_of(self, device: Device, network: Network) -> Optional[str]:
        unit = self.units.get(device.name)
        if unit is None or network.name not in unit.attachments:
            return None
        return str(unit.attachments[network.name])

    def find_gateway(self, device: Device) -> GatewayInfo:
        self._enter("find_gateway", device.name)
        unit = self._unit(device)
        for net_name in unit.attachments:
            state = self.networks.get(net_name)
            if state is None:
                continue
            subnet = state.network.subnet
            return GatewayInfo(
                network_address=str(subnet.network_address),
                address=str(state.gateway),
                mask=subnet.prefixlen,
            )
        raise AddressNotResolved(f"{device.name} has no gateway capable network")
