"""
Backend controller contract.

A controller turns topology intent into running backend resources.
There is one implementation per virtualization backend; the orchestrator
only depends on this class.

No operation retries. Failures are raised as netsim.control.errors types so
callers can tell recoverable conditions (not found, conflict) from fatal ones
(backend unreachable).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from netsim.control.errors import ConnectFailed, NetsimError
from netsim.model.devices import Device
from netsim.model.topology import Network


@dataclass(frozen=True)
class GatewayInfo:
    network_address: str
    address: str
    mask: int

    @property
    def cidr(self) -> str:
        return f"{self.network_address}/{self.mask}"


def default_image_tag(device: Device) -> str:
    return device.image or f"netsim/{device.name.lower()}:latest"


class Controller(ABC):
    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._log = logger or logging.getLogger(f"netsim.backends.{self.get_identifier()}")

    @abstractmethod
    def create_network(self, network: Network) -> None:
        """Provision the segment. Raises NetworkConflict if it already exists."""

    @abstractmethod
    def destroy_network(self, network: Network) -> None:
        """Remove the segment. Raises NetworkBusy while devices are attached."""

    @abstractmethod
    def deploy_device(
        self,
        device: Device,
        tag: str,
        monitoring_addr: Optional[str] = None,
        monitoring_port: Optional[int] = None,
    ) -> None:
        """
        Instantiate and start a unit from an image reference.

        When monitoring coordinates are given they are exported to the unit as
        MONITORING_ADDR and MONITORING_PORT.
        """

    @abstractmethod
    def build_image(self, path: Path, tag: str) -> None:
        """Build and tag an image from a local build context."""

    @abstractmethod
    def connect_device_to_network(self, device: Device, network: Network) -> None:
        pass

    @abstractmethod
    def disconnect_device(self, device: Device, network: Network) -> None:
        """Raises NotConnected if the device is not attached to network."""

    @abstractmethod
    def stop_device(self, device: Device) -> None:
        pass

    @abstractmethod
    def start_device(self, device: Device) -> None:
        pass

    @abstractmethod
    def destroy_device(self, device: Device) -> None:
        """Stop the unit if it is running, then remove it."""

    @abstractmethod
    def execute_command(self, device: Device, command: str) -> str:
        """Run command inside a running device and return its output."""

    @abstractmethod
    def find_gateway(self, device: Device) -> GatewayInfo:
        """Raises AddressNotResolved when no attached network has a gateway."""

    @abstractmethod
    def get_identifier(self) -> str:
        pass

    def deploy_device_from_file(self, device: Device, path: Path | str) -> str:
        tag = default_image_tag(device)
        self.build_image(Path(path), tag)
        self.deploy_device(device, tag)
        return tag

    def connect_device_to_networks(self, device: Device, networks: Sequence[Network]) -> None:
        """
        Attach a device to several networks as one step.

        On the first failure the networks attached by this call are detached
        again and ConnectFailed is raised. attached on the error lists the
        networks that could not be detached.
        """

        attached: List[Network] = []
        for network in networks:
            try:
                self.connect_device_to_network(device, network)
            except NetsimError as exc:
                still_attached: List[str] = []
                for done in reversed(attached):
                    try:
                        self.disconnect_device(device, done)
                    except NetsimError as undo_exc:
                        self._log.warning(
                            "detach %s from %s failed during connect unwind: %s",
                            device.name,
                            done.name,
                            undo_exc,
                        )
                        still_attached.append(done.name)
                raise ConnectFailed(
                    f"connect {device.name} to {network.name} failed: {exc}",
                    network=network.name,
                    attached=still_attached,
                ) from exc
            attached.append(network)

    def find_gw_network_ip_address(self, device: Device) -> str:
        return self.find_gateway(device).network_address

    def find_gw_ip_address(self, device: Device) -> str:
        return self.find_gateway(device).address

    def find_gw_mask(self, device: Device) -> int:
        return self.find_gateway(device).mask
