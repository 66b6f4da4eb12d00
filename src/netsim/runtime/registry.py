"""
Name keyed registries of deployed entities.

A name is present only while the entity is live in the backend; nothing
else in the system answers that question.
"""

from __future__ import annotations

from typing import Dict, Generic, Iterator, List, Optional, TypeVar

from netsim.control.errors import DuplicateDevice
from netsim.model.devices import Application, Device

T = TypeVar("T", bound=Device)


class Registry(Generic[T]):
    def __init__(self) -> None:
        self._items: Dict[str, T] = {}

    def put(self, item: T) -> None:
        """Insert item. A duplicate name is rejected and the first entry kept."""
        if item.name in self._items:
            raise DuplicateDevice(f"{item.name} is already registered")
        self._items[item.name] = item

    def get(self, name: str) -> Optional[T]:
        return self._items.get(name)

    def remove(self, name: str) -> Optional[T]:
        return self._items.pop(name, None)

    def names(self) -> List[str]:
        return sorted(self._items.keys())

    def all(self) -> List[T]:
        return list(self._items.values())

    def clear(self) -> None:
        self._items.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items.values()))


class DeviceRegistry(Registry[Device]):
    pass


class ApplicationRegistry(Registry[Application]):
    pass
