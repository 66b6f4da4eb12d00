"""
Compensating actions.

The backend has no multi resource transaction, so every successful step of a
deployment records the action that undoes it. On failure the log is unwound
in reverse order. A failing compensation is collected and the unwind goes on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from netsim.core.journal import EventJournal


@dataclass(frozen=True)
class Compensation:
    description: str
    action: Callable[[], None]


class CompensationLog:
    def __init__(self, logger: logging.Logger | None = None, journal: Optional[EventJournal] = None) -> None:
        self._steps: List[Compensation] = []
        self._log = logger or logging.getLogger("netsim.compensation")
        self._journal = journal or EventJournal()

    def record(self, description: str, action: Callable[[], None]) -> None:
        self._steps.append(Compensation(description=description, action=action))

    def __len__(self) -> int:
        return len(self._steps)

    def descriptions(self) -> List[str]:
        return [step.description for step in self._steps]

    def clear(self) -> None:
        self._steps.clear()

    def unwind(self) -> List[Exception]:
        """Run recorded actions newest first and return the failures."""
        errors: List[Exception] = []
        while self._steps:
            step = self._steps.pop()
            try:
                step.action()
            except Exception as exc:
                self._log.warning("rollback step failed: %s: %s", step.description, exc)
                errors.append(exc)
                self._journal.rollback_step(step.description, exc)
                continue
            self._log.info("rolled back: %s", step.description)
            self._journal.rollback_step(step.description)
        return errors
