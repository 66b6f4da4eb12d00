"""
Topology deployment sequencing.

Order of operations for deploy_topology
1) every network is created before any device is touched
2) each device is deployed, then connected, then registered
3) a device reaches the registries only after deploy and connect succeeded

Every successful step records its compensating action. When a step fails the
compensation log is unwound newest first. Taxonomy errors are raised again as
DeploymentFailed with the original error as cause and the rollback failures
attached; anything else (KeyboardInterrupt, OSError from the runtime) is
raised unchanged once the unwind is done.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from netsim.control.base import Controller
from netsim.control.errors import (
    DeploymentFailed,
    DeviceNotFound,
    DuplicateDevice,
    InvalidReference,
    NetsimError,
    NetworkNotFound,
    OperationTimedOut,
)
from netsim.core.journal import EventJournal
from netsim.model.devices import Application, Device, DeviceState
from netsim.model.topology import Network, Topology
from netsim.runtime.compensation import CompensationLog
from netsim.runtime.config import DEFAULT_ROUTER_TAG, MonitoringEndpoint
from netsim.runtime.registry import ApplicationRegistry, DeviceRegistry


@dataclass
class DeploymentReport:
    """
    Outcome of a successful deployment.

    skipped lists (device, network) pairs whose network is not part of the
    topology. Routers and hosts are deployed without that connection; an
    application whose only network is missing is not deployed at all.
    """

    topology: str
    backend: str
    networks: List[str] = field(default_factory=list)
    devices: List[str] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["skipped"] = [list(pair) for pair in self.skipped]
        return out


def _in_flight_unknown(exc: BaseException) -> bool:
    # the runtime may or may not have created the unit
    return isinstance(exc, OperationTimedOut) or not isinstance(exc, NetsimError)


class Orchestrator:
    def __init__(
        self,
        controller: Controller,
        devices: DeviceRegistry,
        applications: ApplicationRegistry,
        router_tag: str = DEFAULT_ROUTER_TAG,
        monitoring: Optional[MonitoringEndpoint] = None,
        logger: logging.Logger | None = None,
        journal: Optional[EventJournal] = None,
    ) -> None:
        self._controller = controller
        self._devices = devices
        self._apps = applications
        self._router_tag = router_tag
        self._monitoring = monitoring
        self._log = logger or logging.getLogger("netsim.orchestrator")
        self._journal = journal or EventJournal()

    @property
    def controller(self) -> Controller:
        return self._controller

    def _compensations(self) -> CompensationLog:
        return CompensationLog(self._log, self._journal)

    def _check(self, topology: Topology) -> None:
        taken = [d.name for d in topology.devices if d.name in self._devices]
        if taken:
            raise DuplicateDevice(f"devices already registered: {sorted(taken)}")
        for device in topology.devices:
            if isinstance(device, Application) and len(device.networks) != 1:
                raise InvalidReference(
                    f"application {device.name} must name exactly one network, got {device.networks}"
                )

    def deploy_topology(self, topology: Topology) -> DeploymentReport:
        self._check(topology)

        report = DeploymentReport(topology=topology.name, backend=self._controller.get_identifier())
        comp = self._compensations()
        self._log.info(
            "deploying topology %s: networks=%s devices=%s backend=%s",
            topology.name,
            topology.network_names(),
            [d.name for d in topology.devices],
            report.backend,
        )

        try:
            self._create_networks(topology.networks, comp, report)
        except DeploymentFailed:
            raise
        except BaseException as exc:
            self._log.error("network creation aborted: %r; rolling back %d step(s)", exc, len(comp))
            comp.unwind()
            raise

        for device in topology.devices:
            resolved, missing = topology.resolve_networks(device)
            for name in missing:
                self._log.warning(
                    "device %s references network %s which is not in topology %s; not connecting",
                    device.name,
                    name,
                    topology.name,
                )
                self._journal.connection_skipped(device, name)
                report.skipped.append((device.name, name))
            if isinstance(device, Application) and not resolved:
                self._log.warning("application %s not deployed: its network is not in the topology", device.name)
                continue
            try:
                self._deploy_one(device, resolved, comp)
            except NetsimError as exc:
                self._log.error("device %s failed: %s; rolling back %d step(s)", device.name, exc, len(comp))
                rollback_errors = comp.unwind()
                raise DeploymentFailed(
                    f"deployment of topology {topology.name} failed at device {device.name}",
                    cause=exc,
                    rollback_errors=rollback_errors,
                ) from exc
            except BaseException as exc:
                self._log.error("device %s aborted: %r; rolling back %d step(s)", device.name, exc, len(comp))
                comp.unwind()
                raise
            report.devices.append(device.name)

        comp.clear()
        self._log.info(
            "topology %s deployed: %d network(s), %d device(s), %d skipped connection(s)",
            topology.name,
            len(report.networks),
            len(report.devices),
            len(report.skipped),
        )
        return report

    def _create_networks(self, networks: Sequence[Network], comp: CompensationLog, report: DeploymentReport) -> None:
        failures: List[NetsimError] = []
        for network in networks:
            try:
                self._controller.create_network(network)
            except NetsimError as exc:
                self._log.error("create network %s failed: %s", network.name, exc)
                failures.append(exc)
                if isinstance(exc, OperationTimedOut):
                    comp.record(f"destroy network {network.name} (state unknown)", self._destroy_network_action(network))
                if not exc.recoverable:
                    break
                continue
            except BaseException:
                comp.record(f"destroy network {network.name} (state unknown)", self._destroy_network_action(network))
                raise
            comp.record(f"destroy network {network.name}", self._destroy_network_action(network))
            self._journal.network_created(network)
            report.networks.append(network.name)

        if failures:
            rollback_errors = comp.unwind()
            raise DeploymentFailed(
                f"creating {len(failures)} network(s) failed",
                cause=failures[0],
                failures=failures,
                rollback_errors=rollback_errors,
            ) from failures[0]

    def _destroy_network_action(self, network: Network):
        def action() -> None:
            self._controller.destroy_network(network)

        return action

    def _destroy_device_action(self, device: Device):
        def action() -> None:
            self._controller.destroy_device(device)
            device.state = DeviceState.destroyed

        return action

    def _unregister_action(self, device: Device):
        def action() -> None:
            self._devices.remove(device.name)
            self._apps.remove(device.name)

        return action

    def _deploy_one(
        self,
        device: Device,
        networks: Sequence[Network],
        comp: CompensationLog,
        tag: Optional[str] = None,
    ) -> None:
        try:
            if tag is None and device.build_context is not None:
                used_tag = self._controller.deploy_device_from_file(device, device.build_context)
            else:
                used_tag = tag or device.image or self._router_tag
                if self._monitoring is not None:
                    self._controller.deploy_device(
                        device,
                        used_tag,
                        self._monitoring.address,
                        self._monitoring.port,
                    )
                else:
                    self._controller.deploy_device(device, used_tag)
        except BaseException as exc:
            if _in_flight_unknown(exc):
                comp.record(f"destroy device {device.name} (state unknown)", self._destroy_device_action(device))
            raise
        comp.record(f"destroy device {device.name}", self._destroy_device_action(device))
        self._journal.device_deployed(device, used_tag)

        if len(networks) == 1:
            self._controller.connect_device_to_network(device, networks[0])
        elif networks:
            self._controller.connect_device_to_networks(device, list(networks))

        self._devices.put(device)
        if isinstance(device, Application):
            try:
                self._apps.put(device)
            except DuplicateDevice:
                self._devices.remove(device.name)
                raise
        comp.record(f"unregister {device.name}", self._unregister_action(device))
        device.state = DeviceState.deployed
        self._journal.device_registered(device, networks)
        self._log.info("device %s deployed and connected to %s", device.name, [n.name for n in networks])

    def deploy_device_to_network(
        self,
        device: Device,
        network: Network,
        tag: str,
        env: Sequence[str] = (),
    ) -> None:
        """
        Deploy one device attached to exactly one network, then register it.

        image, env and networks on the device are replaced for the deploy and
        restored if it fails.
        """
        if device.name in self._devices:
            raise DuplicateDevice(f"{device.name} is already registered")
        saved = (device.image, device.env, device.networks)
        device.image = tag
        device.env = list(env)
        device.networks = [network.name]

        comp = self._compensations()
        try:
            self._deploy_one(device, [network], comp, tag=tag)
        except NetsimError as exc:
            self._log.error("deploy %s to %s failed: %s", device.name, network.name, exc)
            rollback_errors = comp.unwind()
            device.image, device.env, device.networks = saved
            raise DeploymentFailed(
                f"deployment of {device.name} to {network.name} failed",
                cause=exc,
                rollback_errors=rollback_errors,
            ) from exc
        except BaseException as exc:
            self._log.error("deploy %s to %s aborted: %r", device.name, network.name, exc)
            comp.unwind()
            device.image, device.env, device.networks = saved
            raise
        comp.clear()

    def destroy_device(self, device: Device) -> None:
        """Tear down a unit and drop it from the registries. A missing unit is not an error."""
        try:
            self._controller.destroy_device(device)
        except DeviceNotFound as exc:
            self._log.warning("device %s already gone from backend: %s", device.name, exc)
        self._devices.remove(device.name)
        self._apps.remove(device.name)
        device.state = DeviceState.destroyed
        self._journal.device_destroyed(device)

    def cleanup(self, topology: Optional[Topology]) -> List[Exception]:
        """Best effort teardown of every registered device, then the topology networks."""
        errors: List[Exception] = []
        for device in reversed(self._devices.all()):
            try:
                self.destroy_device(device)
            except Exception as exc:
                self._log.warning("cleanup: destroy device %s failed: %s", device.name, exc)
                errors.append(exc)

        if topology is not None:
            for network in reversed(topology.networks):
                try:
                    self._controller.destroy_network(network)
                except NetworkNotFound:
                    self._log.debug("cleanup: network %s already removed", network.name)
                except Exception as exc:
                    self._log.warning("cleanup: destroy network %s failed: %s", network.name, exc)
                    errors.append(exc)
                else:
                    self._journal.network_destroyed(network)

        if errors:
            self._log.warning("cleanup finished with %d error(s)", len(errors))
        return errors
