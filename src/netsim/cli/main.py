from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import signal
import time
from pathlib import Path
from typing import List

from netsim.backends.memory import InMemoryController
from netsim.backends.registry import available_backends, build_controller
from netsim.control.errors import AddressNotResolved, ConfigError, NetsimError
from netsim.hub.hub import Hub
from netsim.model.loader import load_topology, summarize
from netsim.runtime.config import load_hub_config
from netsim.runtime.orchestrator import DeploymentReport

LOG = logging.getLogger("netsim.cli")


def parse_args(argv: List[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="netsim",
        description="Deploy virtual network topologies on a container backend.",
    )
    parser.add_argument("--config", default=None, help="YAML config path (default: ./netsim.yaml if present).")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_validate = sub.add_parser("validate", help="Load a topology file and print a summary.")
    p_validate.add_argument("topology", help="Topology file (.yaml/.yml/.json).")

    p_up = sub.add_parser("up", help="Deploy a topology, optionally run commands, then tear it down.")
    p_up.add_argument("topology", help="Topology file (.yaml/.yml/.json).")
    p_up.add_argument(
        "--hold",
        type=float,
        default=0.0,
        help="Seconds to keep the topology up before teardown; negative waits for Ctrl-C.",
    )
    p_up.add_argument(
        "--exec",
        dest="execs",
        nargs=2,
        action="append",
        default=[],
        metavar=("DEVICE", "COMMAND"),
        help="Run COMMAND in DEVICE after deployment. Repeatable.",
    )
    p_up.add_argument("--report", default="", help="Write the deployment report as JSON to this path.")
    p_up.add_argument("--dry-run", action="store_true", help="Use the in-memory backend.")

    sub.add_parser("backends", help="List available backends.")
    return parser.parse_args(argv)


def _wait(hold: float) -> None:
    if hold == 0:
        return
    if hold > 0:
        time.sleep(hold)
        return
    stop = {"flag": False}

    def _handler(signum, frame) -> None:  # type: ignore[no-untyped-def]
        del signum, frame
        stop["flag"] = True

    signal.signal(signal.SIGTERM, _handler)
    try:
        while not stop["flag"]:
            time.sleep(0.5)
    except KeyboardInterrupt:
        pass


def _write_report(path: Path, report: DeploymentReport) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report.to_dict(), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    LOG.info("deployment report written to %s", path)


def cmd_validate(args: argparse.Namespace) -> int:
    topology = load_topology(Path(args.topology))
    for line in summarize(topology):
        print(line)
    return 0


def cmd_up(args: argparse.Namespace) -> int:
    config = load_hub_config(args.config)
    if args.dry_run:
        config = dataclasses.replace(config, backend="memory")
        controller = InMemoryController()
    else:
        controller = build_controller(config)
    topology = load_topology(Path(args.topology))

    with Hub(controller, config) as hub:
        report = hub.deploy_topology(topology)
        print(f"backend: {report.backend}")
        print(f"networks: {', '.join(report.networks) or '-'}")
        print(f"devices: {', '.join(report.devices) or '-'}")
        for device, network in report.skipped:
            print(f"skipped: {device} -> {network} (not in topology)")
        for name in report.devices:
            try:
                gw = hub.gateway(name)
            except AddressNotResolved:
                print(f"gateway {name}: -")
                continue
            print(f"gateway {name}: {gw.address} ({gw.cidr})")
        if args.report:
            _write_report(Path(args.report), report)
        for device, command in args.execs:
            output = hub.execute_command(device, command)
            print(f"--- {device}: {command}")
            if output:
                print(output.rstrip("\n"))
        _wait(args.hold)
    return 0


def cmd_backends(args: argparse.Namespace) -> int:
    del args
    for name in available_backends():
        print(name)
    return 0


def main(argv: List[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    handlers = {"validate": cmd_validate, "up": cmd_up, "backends": cmd_backends}
    try:
        return handlers[args.command](args)
    except (NetsimError, ConfigError, ValueError, KeyError, FileNotFoundError) as exc:
        LOG.error("%s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
