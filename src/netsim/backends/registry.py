from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Dict

from netsim.backends.docker import DockerController
from netsim.backends.memory import InMemoryController
from netsim.control.base import Controller

if TYPE_CHECKING:
    from netsim.runtime.config import HubConfig

BackendFactory = Callable[["HubConfig"], Controller]


def _docker_factory(config: "HubConfig") -> Controller:
    return DockerController(
        binary=config.docker.binary,
        use_sudo=config.docker.sudo,
        command_timeout=config.docker.command_timeout,
        logger=logging.getLogger("netsim.backends.docker"),
    )


def _memory_factory(config: "HubConfig") -> Controller:
    del config
    return InMemoryController()


_REGISTRY: Dict[str, BackendFactory] = {
    "docker": _docker_factory,
    "memory": _memory_factory,
}


def register_backend(name: str, factory: BackendFactory) -> None:
    _REGISTRY[name] = factory


def load_backend(name: str) -> BackendFactory:
    if name not in _REGISTRY:
        raise KeyError(f"Unknown backend: {name}. Available: {sorted(_REGISTRY.keys())}")
    return _REGISTRY[name]


def available_backends() -> list[str]:
    return sorted(_REGISTRY.keys())


def build_controller(config: "HubConfig") -> Controller:
    return load_backend(config.backend)(config)
