from __future__ import annotations

import ipaddress
from pathlib import Path

import pytest

from netsim.control.errors import NetworkBusy
from netsim.core.journal import EventJournal, read_journal
from netsim.model.devices import Router
from netsim.model.topology import Network
from netsim.runtime.compensation import CompensationLog


def test_typed_events_are_written_in_order(tmp_path: Path) -> None:
    path = tmp_path / "run" / "events.jsonl"
    journal = EventJournal(path)
    lan = Network("lan1", ipaddress.IPv4Network("10.0.0.0/24"))
    router = Router("router1")

    journal.network_created(lan)
    journal.device_deployed(router, "router:1")
    journal.device_registered(router, [lan])
    journal.hub_destroyed("demo", [NetworkBusy("lan1 busy")])
    journal.close()

    rows = read_journal(path)
    assert [r["event"] for r in rows] == ["network_created", "device_deployed", "device_registered", "hub_destroyed"]
    assert rows[0]["subnet"] == "10.0.0.0/24"
    assert rows[1]["kind"] == "router"
    assert rows[2]["networks"] == ["lan1"]
    assert rows[3]["errors"] == ["lan1 busy"]
    assert all("ts" in r for r in rows)


def test_journal_without_path_records_nothing() -> None:
    journal = EventJournal()
    assert journal.enabled is False
    journal.device_destroyed(Router("r1"))
    journal.close()


def test_unknown_event_rejected(tmp_path: Path) -> None:
    journal = EventJournal(tmp_path / "events.jsonl")
    with pytest.raises(ValueError):
        journal.record("device_exploded", device="r1")
    journal.close()


def test_rollback_steps_journaled_and_unwind_continues(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    journal = EventJournal(path)
    comp = CompensationLog(journal=journal)
    done = []

    def fail() -> None:
        raise OSError("socket closed")

    comp.record("first", lambda: done.append("first"))
    comp.record("second", fail)
    errors = comp.unwind()
    journal.close()

    assert done == ["first"]
    assert len(errors) == 1
    assert len(comp) == 0
    steps = [(r["step"], r["ok"]) for r in read_journal(path)]
    assert steps == [("second", False), ("first", True)]
