"""
Control plane facade.

The hub is the single entry point a test harness talks to. It owns one
controller, one active topology at most, and the device and application
registries. Callers construct and hold it explicitly; independent hubs do not
share state.

Lifecycle
  uninitialized --deploy_topology--> active --destroy_hub--> uninitialized

All public operations run under one re-entrant lock per hub, so concurrent
callers see each deploy or destroy sequence as a single critical section.
"""

from __future__ import annotations

import logging
import threading
from typing import List, Optional, Sequence

from netsim.backends.registry import build_controller
from netsim.control.base import Controller, GatewayInfo
from netsim.control.errors import DeviceNotFound, NoActiveTopology, TopologyAlreadyDeployed
from netsim.core.journal import EventJournal
from netsim.model.devices import Application, Device, normalize_env
from netsim.model.topology import Topology
from netsim.runtime.config import HubConfig, load_hub_config
from netsim.runtime.orchestrator import DeploymentReport, Orchestrator
from netsim.runtime.registry import ApplicationRegistry, DeviceRegistry


class Hub:
    def __init__(
        self,
        controller: Controller,
        config: HubConfig | None = None,
        logger: logging.Logger | None = None,
        journal: EventJournal | None = None,
    ) -> None:
        self._config = config or HubConfig()
        self._controller = controller
        self._log = logger or logging.getLogger("netsim.hub")
        self._journal = journal if journal is not None else EventJournal(self._config.events)
        self._lock = threading.RLock()
        self._devices = DeviceRegistry()
        self._apps = ApplicationRegistry()
        self._topology: Optional[Topology] = None
        self._orchestrator = Orchestrator(
            controller,
            self._devices,
            self._apps,
            router_tag=self._config.router_tag,
            monitoring=self._config.monitoring,
            logger=logging.getLogger("netsim.orchestrator"),
            journal=self._journal,
        )
        self._log.info(
            "hub ready: backend=%s router_tag=%s monitoring=%s",
            controller.get_identifier(),
            self._config.router_tag,
            self._config.monitoring,
        )

    @classmethod
    def from_config(cls, config: HubConfig | None = None, logger: logging.Logger | None = None) -> "Hub":
        cfg = config or load_hub_config()
        return cls(build_controller(cfg), cfg, logger=logger)

    @property
    def controller(self) -> Controller:
        return self._controller

    @property
    def config(self) -> HubConfig:
        return self._config

    @property
    def topology(self) -> Optional[Topology]:
        return self._topology

    @property
    def is_active(self) -> bool:
        return self._topology is not None

    @property
    def devices(self) -> DeviceRegistry:
        return self._devices

    @property
    def applications(self) -> ApplicationRegistry:
        return self._apps

    def deploy_topology(self, topology: Topology) -> DeploymentReport:
        with self._lock:
            if self._topology is not None:
                raise TopologyAlreadyDeployed(
                    f"topology {self._topology.name} already deployed; call destroy_hub first"
                )
            report = self._orchestrator.deploy_topology(topology)
            topology.freeze()
            self._topology = topology
            return report

    def deploy_application(
        self,
        app: Application,
        network_name: str,
        tag: str,
        env_vars: Optional[Sequence[str]] = None,
    ) -> bool:
        """
        Deploy app attached to network_name of the active topology.

        Returns False, without touching the backend, when the network is not
        part of the active topology.
        """

        with self._lock:
            if self._topology is None:
                raise NoActiveTopology(f"cannot deploy {app.name}: no topology deployed")
            network = self._topology.network(network_name)
            if network is None:
                self._log.warning(
                    "application %s not deployed: network %s is not in topology %s",
                    app.name,
                    network_name,
                    self._topology.name,
                )
                self._journal.connection_skipped(app, network_name)
                return False
            self._orchestrator.deploy_device_to_network(app, network, tag, normalize_env(env_vars))
            return True

    def get_application(self, name: str) -> Optional[Application]:
        return self._apps.get(name)

    def get_device(self, name: str) -> Optional[Device]:
        return self._devices.get(name)

    def _require_device(self, name: str) -> Device:
        device = self._devices.get(name)
        if device is None:
            raise DeviceNotFound(f"no deployed device named {name}")
        return device

    def destroy_device(self, name: str) -> bool:
        with self._lock:
            device = self._devices.get(name)
            if device is None:
                return False
            self._orchestrator.destroy_device(device)
            return True

    def execute_command(self, name: str, command: str) -> str:
        with self._lock:
            return self._controller.execute_command(self._require_device(name), command)

    def gateway(self, name: str) -> GatewayInfo:
        with self._lock:
            return self._controller.find_gateway(self._require_device(name))

    def destroy_hub(self) -> List[Exception]:
        """
        Tear everything down and return to the uninitialized state.

        Cleanup errors are returned, never raised. The hub is reset even when
        the cleanup is interrupted (KeyboardInterrupt); the interrupt
        propagates after the reset.
        """
        with self._lock:
            name = self._topology.name if self._topology is not None else None
            errors: List[Exception] = []
            try:
                errors = self._orchestrator.cleanup(self._topology)
            finally:
                self._devices.clear()
                self._apps.clear()
                self._topology = None
                self._journal.hub_destroyed(name, errors)
                self._log.info("hub destroyed (topology=%s, cleanup errors=%d)", name, len(errors))
            return errors

    def close(self) -> None:
        self._journal.close()

    def __enter__(self) -> "Hub":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            self.destroy_hub()
        finally:
            self.close()
