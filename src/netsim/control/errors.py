"""
Error taxonomy.

Callers branch on the class, not on message text.
recoverable is True for not-found and conflict conditions, False when the
backend itself is unusable.
"""

from __future__ import annotations

from typing import List, Optional


class NetsimError(Exception):
    """Base class for all control plane errors."""

    recoverable = True


class ResourceConflict(NetsimError):
    pass


class NetworkConflict(ResourceConflict):
    pass


class NetworkBusy(ResourceConflict):
    """Network still has attached devices."""


class DuplicateDevice(ResourceConflict):
    pass


class TopologyAlreadyDeployed(ResourceConflict):
    pass


class TopologyFrozen(ResourceConflict):
    """Deployed topologies cannot gain or lose networks or devices."""


class ResourceNotFound(NetsimError):
    pass


class NetworkNotFound(ResourceNotFound):
    pass


class DeviceNotFound(ResourceNotFound):
    pass


class ImageNotFound(ResourceNotFound):
    pass


class NotConnected(ResourceNotFound):
    pass


class NoActiveTopology(ResourceNotFound):
    pass


class BackendError(NetsimError):
    recoverable = False


class BackendUnavailable(BackendError):
    pass


class DeployFailed(BackendError):
    pass


class BuildFailed(BackendError):
    pass


class ExecFailed(BackendError):
    pass


class OperationTimedOut(BackendError):
    """The backend call exceeded its deadline; resource state is unknown."""


class ConnectFailed(BackendError):
    def __init__(self, message: str, network: str, attached: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.network = network
        self.attached = list(attached or [])


class AddressNotResolved(NetsimError):
    pass


class InvalidReference(NetsimError):
    """A device's network references cannot be honored, e.g. an application not naming exactly one network."""


class DeploymentFailed(NetsimError):
    """
    A multi step deployment aborted.

    cause is the error that triggered the abort.
    failures holds every collected failure, cause first.
    rollback_errors holds failures of compensating actions.
    """

    def __init__(
        self,
        message: str,
        cause: NetsimError,
        failures: Optional[List[NetsimError]] = None,
        rollback_errors: Optional[List[Exception]] = None,
    ) -> None:
        super().__init__(message)
        self.cause = cause
        self.failures = list(failures or [cause])
        self.rollback_errors = list(rollback_errors or [])
        self.recoverable = cause.recoverable

    def __str__(self) -> str:
        text = f"{self.args[0]}: {self.cause}"
        if self.rollback_errors:
            text += f" (rollback errors: {'; '.join(str(e) for e in self.rollback_errors)})"
        return text


class ConfigError(ValueError):
    pass
