from __future__ import annotations

import ipaddress
import json
from pathlib import Path
from typing import Any, Dict, List

import yaml

from netsim.model.devices import DEVICE_KINDS, normalize_env
from netsim.model.topology import Network, Topology


def _require(obj: Dict[str, Any], key: str, typ, where: str):
    if key not in obj:
        raise ValueError(f"{where}: missing required field: {key}")
    if not isinstance(obj[key], typ):
        raise ValueError(f"{where}: field '{key}' must be {typ.__name__}")
    return obj[key]


def _optional(obj: Dict[str, Any], key: str, typ, default=None, where: str = "topology"):
    if key not in obj or obj[key] is None:
        return default
    if not isinstance(obj[key], typ):
        raise ValueError(f"{where}: field '{key}' must be {typ.__name__}")
    return obj[key]


def load_topology_data(path: str | Path) -> Dict[str, Any]:
    source = Path(path).expanduser()
    text = source.read_text(encoding="utf-8")
    if source.suffix == ".json":
        data = json.loads(text)
    elif source.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(text) or {}
    else:
        raise ValueError(f"topology file must be .yaml, .yml or .json: {source}")
    if not isinstance(data, dict):
        raise ValueError(f"Expected mapping in topology file: {source}")
    return data


def _resolve_build(build: str | None, base_dir: Path | None) -> Path | None:
    if not build:
        return None
    path = Path(build).expanduser()
    if path.is_absolute() or base_dir is None:
        return path
    return (base_dir / path).resolve()


def build_topology(
    data: Dict[str, Any],
    default_name: str = "topology",
    base_dir: Path | None = None,
) -> Topology:
    name = _optional(data, "name", str, default_name)
    topology = Topology(name=name.strip() or default_name)

    networks = _optional(data, "networks", list, [])
    devices = _optional(data, "devices", list, [])

    for idx, raw in enumerate(networks):
        where = f"networks[{idx}]"
        if not isinstance(raw, dict):
            raise ValueError(f"{where}: each network must be a table/object")
        net_name = _require(raw, "name", str, where)
        subnet = _require(raw, "subnet", str, where)
        try:
            parsed = ipaddress.IPv4Network(subnet, strict=True)
        except ValueError as exc:
            raise ValueError(f"{where}: invalid subnet {subnet!r}: {exc}") from exc
        topology.add_network(
            Network(
                name=net_name,
                subnet=parsed,
                internet=bool(_optional(raw, "internet", bool, False, where)),
            )
        )

    for idx, raw in enumerate(devices):
        where = f"devices[{idx}]"
        if not isinstance(raw, dict):
            raise ValueError(f"{where}: each device must be a table/object")
        dev_name = _require(raw, "name", str, where)
        kind = _optional(raw, "kind", str, "host", where)
        if kind not in DEVICE_KINDS:
            raise ValueError(f"{where}: unknown device kind {kind!r}, expected one of {sorted(DEVICE_KINDS)}")
        nets = _optional(raw, "networks", list, [], where)
        if not all(isinstance(x, str) for x in nets):
            raise ValueError(f"{where}: networks must be a list of strings")
        env_raw = raw.get("env")
        if env_raw is not None and not isinstance(env_raw, (dict, list)):
            raise ValueError(f"{where}: env must be a table or a list of KEY=VALUE strings")
        build = _optional(raw, "build", str, None, where)
        topology.add_device(
            DEVICE_KINDS[kind](
                name=dev_name,
                image=_optional(raw, "image", str, None, where),
                build_context=_resolve_build(build, base_dir),
                env=normalize_env(env_raw),
                networks=list(nets),
            )
        )

    return topology


def load_topology(path: str | Path) -> Topology:
    source = Path(path)
    default_name = source.name.split(".", 1)[0] or "topology"
    return build_topology(
        load_topology_data(source),
        default_name=default_name,
        base_dir=source.expanduser().resolve().parent,
    )


def summarize(topology: Topology) -> List[str]:
    lines = [f"topology: {topology.name}"]
    for net in topology.networks:
        flag = " internet" if net.internet else ""
        lines.append(f"  network {net.name} {net.subnet}{flag} members={sorted(net.members)}")
    for dev in topology.devices:
        resolved, missing = topology.resolve_networks(dev)
        line = f"  {dev.kind} {dev.name} image={dev.image or '-'} networks={[n.name for n in resolved]}"
        if missing:
            line += f" unresolved={missing}"
        lines.append(line)
    return lines
