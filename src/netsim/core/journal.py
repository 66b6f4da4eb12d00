"""
Deployment event journal.

Each control plane step appends one JSON object per line:

  {"event": "device_deployed", "ts": "...", "device": "router1", "tag": "..."}

A journal without a path records nothing, so callers never check for one.
"""

from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from netsim.model.devices import Device
from netsim.model.topology import Network

EVENTS = (
    "network_created",
    "network_destroyed",
    "device_deployed",
    "device_registered",
    "device_destroyed",
    "connection_skipped",
    "rollback_step",
    "hub_destroyed",
)


class EventJournal:
    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path else None
        self._fh = None
        self._lock = threading.Lock()
        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = self._path.open("a", encoding="utf-8")

    @property
    def path(self) -> Optional[Path]:
        return self._path

    @property
    def enabled(self) -> bool:
        return self._fh is not None

    def record(self, event: str, **fields: Any) -> None:
        if event not in EVENTS:
            raise ValueError(f"unknown journal event: {event}")
        if self._fh is None:
            return
        row = {"event": event, "ts": datetime.now(timezone.utc).isoformat(), **fields}
        with self._lock:
            self._fh.write(json.dumps(row, sort_keys=True, default=str) + "\n")
            self._fh.flush()

    def network_created(self, network: Network) -> None:
        self.record("network_created", network=network.name, subnet=str(network.subnet))

    def network_destroyed(self, network: Network) -> None:
        self.record("network_destroyed", network=network.name)

    def device_deployed(self, device: Device, tag: str) -> None:
        self.record("device_deployed", device=device.name, kind=device.kind, tag=tag)

    def device_registered(self, device: Device, networks: Iterable[Network]) -> None:
        self.record("device_registered", device=device.name, networks=[n.name for n in networks])

    def device_destroyed(self, device: Device) -> None:
        self.record("device_destroyed", device=device.name)

    def connection_skipped(self, device: Device, network_name: str) -> None:
        self.record("connection_skipped", device=device.name, network=network_name)

    def rollback_step(self, description: str, error: Optional[BaseException] = None) -> None:
        if error is None:
            self.record("rollback_step", step=description, ok=True)
        else:
            self.record("rollback_step", step=description, ok=False, error=str(error))

    def hub_destroyed(self, topology: Optional[str], errors: Iterable[BaseException]) -> None:
        self.record("hub_destroyed", topology=topology, errors=[str(e) for e in errors])

    def close(self) -> None:
        with self._lock:
            if self._fh is not None:
                self._fh.close()
                self._fh = None


def read_journal(path: str | Path) -> List[Dict[str, Any]]:
    """Load every event of a journal file, oldest first."""
    with Path(path).open("r", encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]
