import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Iterable, Iterator, Optional

import pandas as pd

from spreadsheet_engine.ast import ASTNode, Constant
from spreadsheet_engine.errors import (
    CircularDependencyError,
    FormulaError,
    FormulaSyntaxError,
)
from spreadsheet_engine.events import (
    CellDelta,
    Event,
    EventManager,
    Listener,
    RecalcResult,
)
from spreadsheet_engine.graph import Cell as CellKey
from spreadsheet_engine.graph import DependencyGraph
from spreadsheet_engine.interpreter import FormulaEvaluator, referenced_cells
from spreadsheet_engine.parser import parse_formula
from spreadsheet_engine.translator import translate
from spreadsheet_engine.types import (
    ScalarValue,
    Table,
    Value,
    ValueType,
    to_text,
    sniff_literal,
    value_type,
)
from spreadsheet_engine.utils import cell_name, column_as_str, format_formula

logger = logging.getLogger(__name__)

DEFAULT_ROWS = 100
DEFAULT_COLUMNS = 26


class CellState(Enum):
    EMPTY = auto()
    LITERAL = auto()
    FORMULA = auto()  # parsed, not evaluated yet
    EVALUATED = auto()
    ERRORED = auto()
    CIRCULAR = auto()


@dataclass
class Cell:
    source: str = ""
    ast: Optional[ASTNode] = None
    is_formula: bool = False
    value: Optional[Value] = None
    error: Optional[FormulaError] = None
    state: CellState = CellState.EMPTY
    # Kept apart from `error` so recomputation does not clear it
    syntax_error: Optional[FormulaSyntaxError] = None

    @property
    def result(self) -> Optional[Value]:
        """The value, or the error when the cell is in error."""
        return self.error if self.error is not None else self.value


@dataclass(frozen=True)
class BufferCell:
    source: str = ""
    is_formula: bool = False
    ast: Optional[ASTNode] = None
    # A range result is frozen into rows of values
    value: Optional[Value | tuple] = None


@dataclass(frozen=True)
class Buffer:
    """A detached snapshot of a rectangle of cells, for copy and paste."""

    top: int
    left: int
    cells: tuple[tuple[BufferCell, ...], ...] = field(default=())

    @property
    def rows(self) -> int:
        return len(self.cells)

    @property
    def columns(self) -> int:
        return len(self.cells[0]) if self.cells else 0

    def __iter__(self) -> Iterator[tuple[int, int, BufferCell]]:
        """Yield (row offset, column offset, cell) for every cell."""
        for i, row in enumerate(self.cells):
            for j, cell in enumerate(row):
                yield i, j, cell

    def to_frame(self) -> pd.DataFrame:
        """The snapshot's values as a DataFrame labelled in A1 notation."""
        return pd.DataFrame(
            [[cell.value for cell in row] for row in self.cells],
            index=[str(self.top + i + 1) for i in range(self.rows)],
            columns=[column_as_str(self.left + j) for j in range(self.columns)],
            dtype=object,
        )


class Spreadsheet:
    """A grid of cells whose formulas are kept up to date.

    Every mutating call parses, rewires the dependency graph, recomputes the
    affected cells in dependency order and notifies listeners, all before it
    returns. Listeners must not call back into a mutating method.
    """

    def __init__(self, rows: int = DEFAULT_ROWS, columns: int = DEFAULT_COLUMNS):
        if rows <= 0 or columns <= 0:
            raise ValueError(f"Invalid grid size {rows}x{columns}")
        self.rows = rows
        self.columns = columns
        self.graph = DependencyGraph()
        self.events = EventManager()
        self._cells: dict[CellKey, Cell] = {}
        self._evaluator = FormulaEvaluator(self._resolve_cell, rows, columns)
        self._busy = False

    # Notifications

    def subscribe(self, event: Event, listener: Listener) -> None:
        self.events.subscribe(event, listener)

    def unsubscribe(self, listener: Listener) -> None:
        self.events.unsubscribe(listener)

    # Readers

    def get_formula(self, row: int, column: int) -> str:
        self._check_bounds(row, column)
        cell = self._cells.get((row, column))
        return cell.source if cell else ""

    def get_value(self, row: int, column: int) -> Optional[Value]:
        """The computed value, or None for empty and errored cells."""
        self._check_bounds(row, column)
        cell = self._cells.get((row, column))
        return cell.value if cell else None

    def get_error(self, row: int, column: int) -> Optional[FormulaError]:
        self._check_bounds(row, column)
        cell = self._cells.get((row, column))
        return cell.error if cell else None

    def get_state(self, row: int, column: int) -> CellState:
        self._check_bounds(row, column)
        cell = self._cells.get((row, column))
        return cell.state if cell else CellState.EMPTY

    def get_display(self, row: int, column: int) -> str:
        """The text a grid shows for the cell."""
        self._check_bounds(row, column)
        cell = self._cells.get((row, column))
        if cell is None or cell.state is CellState.EMPTY:
            return ""
        if cell.error is not None:
            return cell.error.description
        if isinstance(cell.value, Table):
            return f"<{cell.value.rows}x{cell.value.columns} range>"
        return to_text(cell.value) if cell.value is not None else ""

    # Mutations

    def set_formula(self, row: int, column: int, source: str) -> RecalcResult:
        """Assign a formula (without its leading "=") and recalculate.

        An empty `source` clears the cell. A syntax error leaves the cell
        holding the source in the Errored state, updates its dependents and
        then raises FormulaSyntaxError.
        """
        self._check_bounds(row, column)
        with self._mutating():
            try:
                node = parse_formula(source)
            except FormulaSyntaxError as error:
                logger.debug("Syntax error in %s: %s", cell_name(row, column), error)
                self._assign((row, column), source, None, True, syntax_error=error)
                self._recalculate(self.graph.affected_cells([(row, column)]))
                raise
            self._assign((row, column), source, node, node is not None)
            return self._recalculate(self.graph.affected_cells([(row, column)]))

    def set_input(self, row: int, column: int, text: str) -> RecalcResult:
        """Enter text as a user would: "=..." is a formula, the rest a literal."""
        if text.startswith("="):
            return self.set_formula(row, column, text[1:])
        self._check_bounds(row, column)
        literal = sniff_literal(text)
        with self._mutating():
            node = Constant(literal) if literal is not None else None
            self._assign((row, column), text if node else "", node, False)
            return self._recalculate(self.graph.affected_cells([(row, column)]))

    def set_value(self, row: int, column: int, value: Optional[ScalarValue]) -> RecalcResult:
        """Store a Python number, string or bool as a literal (None clears)."""
        self._check_bounds(row, column)
        if value_type(value) not in (
            ValueType.EMPTY,
            ValueType.NUMBER,
            ValueType.TEXT,
            ValueType.BOOLEAN,
        ):
            raise TypeError(f"Cannot store {value!r} in a cell")
        if value_type(value) is ValueType.NUMBER:
            value = float(value)  # type: ignore[arg-type]
        with self._mutating():
            if value is None:
                self._assign((row, column), "", None, False)
            else:
                self._assign((row, column), to_text(value), Constant(value), False)
            return self._recalculate(self.graph.affected_cells([(row, column)]))

    def clear(self, row: int, column: int) -> RecalcResult:
        return self.set_formula(row, column, "")

    def resize(self, rows: int, columns: int) -> RecalcResult:
        """Change the grid size, dropping cells that fall outside it.

        Every remaining cell is recalculated, so formulas that now point
        outside the grid end up with a ReferenceOutOfRangeError.
        """
        if rows <= 0 or columns <= 0:
            raise ValueError(f"Invalid grid size {rows}x{columns}")
        with self._mutating():
            logger.info(
                "Resizing grid from %dx%d to %dx%d",
                self.rows,
                self.columns,
                rows,
                columns,
            )
            self.rows = rows
            self.columns = columns
            self._evaluator.rows = rows
            self._evaluator.columns = columns

            for key in [k for k in self._cells if not self._in_grid(*k)]:
                self.graph.remove_cell(key)
                del self._cells[key]

            for key, cell in list(self._cells.items()):
                if cell.is_formula:
                    self._link(key, cell.ast)

            return self._recalculate(list(self._cells))

    # Copy and paste

    def bufferize(
        self, row_start: int, col_start: int, row_end: int, col_end: int
    ) -> Buffer:
        """Snapshot the rectangle between two corners, inclusive."""
        self._check_bounds(row_start, col_start)
        self._check_bounds(row_end, col_end)
        top, bottom = sorted((row_start, row_end))
        left, right = sorted((col_start, col_end))

        cells = []
        for row in range(top, bottom + 1):
            line = []
            for column in range(left, right + 1):
                cell = self._cells.get((row, column))
                if cell is None:
                    line.append(BufferCell())
                else:
                    line.append(
                        BufferCell(
                            cell.source,
                            cell.is_formula,
                            cell.ast,
                            self._snapshot(cell.result),
                        )
                    )
            cells.append(tuple(line))
        return Buffer(top, left, tuple(cells))

    def paste(self, buffer: Buffer, row: int, column: int) -> RecalcResult:
        """Write a buffer with its top-left corner at (row, column).

        Formulas are translated by the distance they moved; literals are
        copied as they are. Cells that would land outside the grid are
        skipped.
        """
        row_offset = row - buffer.top
        column_offset = column - buffer.left
        changed: list[CellKey] = []

        with self._mutating():
            for i, j, source_cell in buffer:
                key = (row + i, column + j)
                if not self._in_grid(*key):
                    logger.warning(
                        "Skipping paste destination %s outside the %dx%d grid",
                        cell_name(*key),
                        self.rows,
                        self.columns,
                    )
                    continue

                if source_cell.is_formula and source_cell.ast is not None:
                    node = translate(source_cell.ast, row_offset, column_offset)
                    self._assign(key, format_formula(node), node, True)
                elif source_cell.is_formula:
                    # A formula that did not parse is copied verbatim
                    error = source_cell.value
                    assert isinstance(error, FormulaSyntaxError)
                    self._assign(key, source_cell.source, None, True, syntax_error=error)
                else:
                    self._assign(key, source_cell.source, source_cell.ast, False)
                changed.append(key)

            return self._recalculate(self.graph.affected_cells(changed))

    # Internals

    def _in_grid(self, row: int, column: int) -> bool:
        return 0 <= row < self.rows and 0 <= column < self.columns

    def _check_bounds(self, row: int, column: int) -> None:
        if not self._in_grid(row, column):
            raise IndexError(
                f"Cell ({row}, {column}) is outside the {self.rows}x{self.columns} grid"
            )

    @contextmanager
    def _mutating(self) -> Iterator[None]:
        if self._busy:
            raise RuntimeError("Spreadsheet modified from inside a listener")
        self._busy = True
        try:
            yield
        finally:
            self._busy = False

    def _resolve_cell(self, row: int, column: int) -> Optional[Value]:
        cell = self._cells.get((row, column))
        if cell is None:
            return None
        return cell.result

    def _snapshot(self, value: Optional[Value]) -> Optional[Value | tuple]:
        if not isinstance(value, Table):
            return value
        return tuple(
            tuple(
                self._snapshot(self._resolve_cell(row, column))
                for column in range(value.left, value.right + 1)
            )
            for row in range(value.top, value.bottom + 1)
        )

    def _link(self, key: CellKey, node: Optional[ASTNode]) -> None:
        references = (
            referenced_cells(node, self.rows, self.columns) if node is not None else set()
        )
        for ref in references:
            # Cells are created the first time they are addressed
            self._cells.setdefault(ref, Cell())
        self.graph.set_dependencies(key, references)

    def _assign(
        self,
        key: CellKey,
        source: str,
        node: Optional[ASTNode],
        is_formula: bool,
        syntax_error: Optional[FormulaSyntaxError] = None,
    ) -> None:
        """Store a cell's new content and rewire its outgoing edges."""
        cell = self._cells.setdefault(key, Cell())
        cell.source = source
        cell.ast = node
        cell.is_formula = is_formula
        cell.syntax_error = syntax_error
        if is_formula and syntax_error is None:
            cell.state = CellState.FORMULA
        self._link(key, node if is_formula else None)
        self.events.trigger(Event.CELL_FORMULA_UPDATED, key[0], key[1], source)

    def _recalculate(self, cells: Iterable[CellKey]) -> RecalcResult:
        """Recompute `cells` in dependency order and notify listeners."""
        deltas: list[CellDelta] = []
        circular: list[CellKey] = []

        for component in self.graph.evaluation_order(cells):
            if self.graph.is_cyclic(component):
                logger.warning(
                    "Circular dependency between %s",
                    ", ".join(cell_name(*key) for key in component),
                )
                for key in component:
                    error = CircularDependencyError(cell_name(*key))
                    deltas.append(self._store(key, None, error, CellState.CIRCULAR))
                    circular.append(key)
                    self.events.trigger(
                        Event.CELL_CIRCULAR_DEPENDENCY_DETECTED, key[0], key[1]
                    )
                continue

            key = component[0]
            deltas.append(self._recompute(key))

        return RecalcResult(tuple(deltas), tuple(circular))

    def _upstream_cycle(self, key: CellKey) -> Optional[FormulaError]:
        for dep in sorted(self.graph.dependencies_of(key)):
            cell = self._cells.get(dep)
            if cell is not None and cell.state is CellState.CIRCULAR:
                return cell.error
        return None

    def _recompute(self, key: CellKey) -> CellDelta:
        cell = self._cells[key]
        row, column = key

        if cell.syntax_error is not None:
            delta = self._store(key, None, cell.syntax_error, CellState.ERRORED)
        elif cell.ast is None:
            delta = self._store(key, None, None, CellState.EMPTY)
        elif not cell.is_formula:
            assert isinstance(cell.ast, Constant)
            delta = self._store(key, cell.ast.value, None, CellState.LITERAL)
        elif (upstream := self._upstream_cycle(key)) is not None:
            delta = self._store(key, None, upstream, CellState.CIRCULAR)
        else:
            try:
                value = self._evaluator.evaluate(cell.ast)
            except CircularDependencyError as error:
                delta = self._store(key, None, error, CellState.CIRCULAR)
            except FormulaError as error:
                delta = self._store(key, None, error, CellState.ERRORED)
            else:
                delta = self._store(key, value, None, CellState.EVALUATED)

        if cell.error is not None:
            logger.debug("%s -> %s", cell_name(row, column), cell.error)
            self.events.trigger(Event.CELL_FORMULA_ERROR, row, column, cell.error)
        else:
            logger.debug("%s = %r", cell_name(row, column), cell.value)
            self.events.trigger(Event.CELL_VALUE_UPDATED, row, column, cell.value)
        return delta

    def _store(
        self,
        key: CellKey,
        value: Optional[Value],
        error: Optional[FormulaError],
        state: CellState,
    ) -> CellDelta:
        cell = self._cells[key]
        old = cell.result
        cell.value = value
        cell.error = error
        cell.state = state
        return CellDelta(
            key[0],
            key[1],
            old,
            cell.result,
            cell.source if cell.is_formula else None,
        )
