from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set, Tuple, Union

from netsim.control.errors import DuplicateDevice, NetworkConflict, TopologyFrozen
from netsim.model.devices import Device


@dataclass(eq=False)
class Network:
    name: str
    subnet: ipaddress.IPv4Network
    internet: bool = False
    members: Set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("network name must be a non-empty string")
        if not isinstance(self.subnet, ipaddress.IPv4Network):
            self.subnet = ipaddress.IPv4Network(str(self.subnet), strict=True)
        if self.subnet.num_addresses < 4:
            raise ValueError(f"network {self.name}: subnet too small: {self.subnet}")

    @property
    def mask(self) -> int:
        return self.subnet.prefixlen

    def __repr__(self) -> str:
        return f"Network({self.name!r}, {self.subnet})"


class Topology:
    """
    Desired end state: networks plus the devices attached to them.

    Insertion order is kept so deployment is deterministic.
    After freeze() the topology is read only.
    """

    def __init__(self, name: str = "topology") -> None:
        self.name = name
        self._networks: Dict[str, Network] = {}
        self._devices: Dict[str, Device] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def _check_mutable(self) -> None:
        if self._frozen:
            raise TopologyFrozen(f"topology {self.name} is deployed and cannot be modified")

    def add_network(
        self,
        network: Union[Network, str],
        subnet: Optional[str] = None,
        internet: bool = False,
    ) -> Network:
        self._check_mutable()
        if not isinstance(network, Network):
            if subnet is None:
                raise ValueError(f"network {network}: subnet is required")
            network = Network(name=network, subnet=ipaddress.IPv4Network(subnet), internet=internet)
        if network.name in self._networks:
            raise NetworkConflict(f"duplicate network name: {network.name}")
        for other in self._networks.values():
            if other.subnet.overlaps(network.subnet):
                raise NetworkConflict(
                    f"network {network.name} subnet {network.subnet} overlaps {other.name} ({other.subnet})"
                )
        self._networks[network.name] = network
        for device in self._devices.values():
            if network.name in device.networks:
                network.members.add(device.name)
        return network

    def add_device(self, device: Device) -> Device:
        self._check_mutable()
        if device.name in self._devices:
            raise DuplicateDevice(f"duplicate device name: {device.name}")
        self._devices[device.name] = device
        for name in device.networks:
            net = self._networks.get(name)
            if net is not None:
                net.members.add(device.name)
        return device

    def network(self, name: str) -> Optional[Network]:
        return self._networks.get(name)

    def device(self, name: str) -> Optional[Device]:
        return self._devices.get(name)

    @property
    def networks(self) -> List[Network]:
        return list(self._networks.values())

    @property
    def devices(self) -> List[Device]:
        return list(self._devices.values())

    def network_names(self) -> List[str]:
        return list(self._networks.keys())

    def resolve_networks(self, device: Device) -> Tuple[List[Network], List[str]]:
        """Split a device's references into known networks and unknown names."""
        resolved: List[Network] = []
        missing: List[str] = []
        for name in device.networks:
            net = self._networks.get(name)
            if net is None:
                missing.append(name)
            else:
                resolved.append(net)
        return resolved, missing

    def __iter__(self) -> Iterator[Network]:
        return iter(self._networks.values())

    def __len__(self) -> int:
        return len(self._networks)

    def __repr__(self) -> str:
        return f"Topology({self.name!r}, networks={len(self._networks)}, devices={len(self._devices)})"
