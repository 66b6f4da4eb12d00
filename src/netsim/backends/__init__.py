"""Controller implementations, one per virtualization backend."""

from netsim.backends.docker import DockerController
from netsim.backends.memory import InMemoryController
from netsim.backends.registry import available_backends, build_controller, load_backend, register_backend

__all__ = [
    "DockerController",
    "InMemoryController",
    "available_backends",
    "build_controller",
    "load_backend",
    "register_backend",
]
