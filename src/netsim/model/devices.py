from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Optional


class DeviceState(str, Enum):
    created = "created"
    deployed = "deployed"
    destroyed = "destroyed"


def normalize_env(env: Optional[object]) -> List[str]:
    """Accept None, a mapping or a list of KEY=VALUE strings."""
    if env is None:
        return []
    if isinstance(env, Mapping):
        return [f"{k}={v}" for k, v in env.items()]
    out: List[str] = []
    for item in env:  # type: ignore[attr-defined]
        text = str(item)
        if "=" not in text:
            raise ValueError(f"Invalid env entry: {text!r}, expected KEY=VALUE")
        out.append(text)
    return out


@dataclass(eq=False)
class Device:
    """
    A unit of compute realized as one backend instance.

    image is a pre built image reference. build_context points at a local
    directory with a Dockerfile; when set the image is built before deploy.
    networks holds network names, resolved against the topology at deploy
    time.
    """

    name: str
    image: Optional[str] = None
    build_context: Optional[Path] = None
    env: List[str] = field(default_factory=list)
    networks: List[str] = field(default_factory=list)
    state: DeviceState = DeviceState.created

    kind = "device"

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("device name must be a non-empty string")
        self.env = normalize_env(self.env)
        if self.build_context is not None:
            self.build_context = Path(self.build_context)

    @property
    def is_deployed(self) -> bool:
        return self.state is DeviceState.deployed

    def env_map(self) -> Dict[str, str]:
        out: Dict[str, str] = {}
        for item in self.env:
            key, value = item.split("=", maxsplit=1)
            out[key] = value
        return out

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, state={self.state.value})"


class Router(Device):
    kind = "router"


class Host(Device):
    kind = "host"


class Application(Device):
    """Workload container attached to exactly one network when deployed."""

    kind = "application"


DEVICE_KINDS = {
    cls.kind: cls for cls in (Device, Router, Host, Application)
}
