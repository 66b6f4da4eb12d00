"""Topology model: networks, devices and the file loader."""

from netsim.model.devices import Application, Device, DeviceState, Host, Router
from netsim.model.loader import build_topology, load_topology
from netsim.model.topology import Network, Topology

__all__ = [
    "Application",
    "Device",
    "DeviceState",
    "Host",
    "Network",
    "Router",
    "Topology",
    "build_topology",
    "load_topology",
]
