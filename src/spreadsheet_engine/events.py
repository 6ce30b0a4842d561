"""Change notifications and the per-call change batch."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from spreadsheet_engine.types import Value
from spreadsheet_engine.utils import cell_name

Listener = Callable[..., Any]


class Event(Enum):
    """Notification channels, with the arguments each listener receives."""

    CELL_VALUE_UPDATED = "cell_value_updated"  # (row, column, value)
    CELL_FORMULA_UPDATED = "cell_formula_updated"  # (row, column, source)
    CELL_FORMULA_ERROR = "cell_formula_error"  # (row, column, error)
    CELL_CIRCULAR_DEPENDENCY_DETECTED = "cell_circular_dependency_detected"  # (row, column)


class EventManager:
    """Synchronous listener registry.

    Listeners run in subscription order, from inside the call that
    triggered them.
    """

    def __init__(self) -> None:
        self._listeners: dict[Event, list[Listener]] = {event: [] for event in Event}

    def subscribe(self, event: Event, listener: Listener) -> None:
        self._listeners[event].append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        """Remove `listener` from every event it is subscribed to."""
        for listeners in self._listeners.values():
            while listener in listeners:
                listeners.remove(listener)

    def trigger(self, event: Event, *args: Any) -> None:
        for listener in list(self._listeners[event]):
            listener(*args)


@dataclass(frozen=True)
class CellDelta:
    """A single cell's recomputation.

    `new_value` is the cell's FormulaError when it ended up in error, and
    None when it is empty.
    """

    row: int
    column: int
    old_value: Optional[Value]
    new_value: Optional[Value]
    formula: Optional[str] = None  # the formula that produced new_value

    @property
    def cell_ref(self) -> str:
        return cell_name(self.row, self.column)

    @property
    def changed(self) -> bool:
        return self.old_value != self.new_value


@dataclass(frozen=True)
class RecalcResult:
    """Every cell recomputed by one engine call, in recompute order."""

    deltas: tuple[CellDelta, ...] = ()
    circular: tuple[tuple[int, int], ...] = ()  # members of detected cycles

    @property
    def recomputed_cells(self) -> int:
        return len(self.deltas)

    @property
    def changed_cells(self) -> tuple[CellDelta, ...]:
        return tuple(delta for delta in self.deltas if delta.changed)
