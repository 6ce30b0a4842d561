import logging
import math
from typing import Optional

from spreadsheet_engine.ast import (
    ASTNode,
    BinaryOperation,
    CellRange,
    CellReference,
    Constant,
    ExcelFunction,
    UnaryOperation,
)
from spreadsheet_engine.errors import (
    ArgumentTypeError,
    EmptyCellReferenceError,
    FormulaError,
    ReferenceOutOfRangeError,
)
from spreadsheet_engine.functions import EXCEL_FUNCTIONS, accepts_tables, check_arity
from spreadsheet_engine.operators import BINARY_OPERATORS, UNARY_OPERATORS
from spreadsheet_engine.types import CellResolver, Table, Value, is_number

logger = logging.getLogger(__name__)


class FormulaEvaluator:
    """Evaluates formula ASTs against already-computed cell values.

    `resolve_cell(row, column)` returns a cell's value, the FormulaError it is
    in, or None when the cell is empty. It must only read values; the
    evaluator never parses or recurses into other formulas.

    `rows` and `columns` bound the addressable grid. References outside it
    evaluate to a ReferenceOutOfRangeError instead of reaching the resolver.
    """

    def __init__(
        self,
        resolve_cell: CellResolver,
        rows: Optional[int] = None,
        columns: Optional[int] = None,
    ):
        self.resolve_cell = resolve_cell
        self.rows = rows
        self.columns = columns

    def evaluate(self, node: ASTNode) -> Value:
        """Evaluate an AST node, raising a FormulaError on failure."""
        match node:
            case Constant():
                return node.value
            case CellReference():
                return self._evaluate_cell_ref(node)
            case CellRange():
                return self._evaluate_cell_range(node)
            case UnaryOperation():
                return self._call(
                    UNARY_OPERATORS[node.operator], (node.operand,), node.position
                )
            case BinaryOperation():
                return self._call(
                    BINARY_OPERATORS[node.operator],
                    (node.left, node.right),
                    node.position,
                )
            case ExcelFunction():
                return self._call(node.name, node.arguments, node.position)
        raise ValueError(f"Unknown node type: {type(node)}")

    def in_grid(self, row: int, column: int) -> bool:
        return (
            row >= 0
            and column >= 0
            and (self.rows is None or row < self.rows)
            and (self.columns is None or column < self.columns)
        )

    def _evaluate_cell_ref(self, node: CellReference) -> Value:
        if not self.in_grid(node.row, node.column):
            raise ReferenceOutOfRangeError(node.coords(), node.position)

        value = self.resolve_cell(node.row, node.column)
        if value is None:
            raise EmptyCellReferenceError(node.coords(), node.position)
        if isinstance(value, FormulaError):
            # The dependency's own error, unchanged
            raise value
        return value

    def _evaluate_cell_range(self, node: CellRange) -> Table:
        for ref in (node.start, node.end):
            if not self.in_grid(ref.row, ref.column):
                raise ReferenceOutOfRangeError(ref.coords(), ref.position)
        return Table(
            self.resolve_cell,
            node.start.row,
            node.start.column,
            node.end.row,
            node.end.column,
        )

    def _call(self, name: str, arguments: tuple[ASTNode, ...], position: int) -> Value:
        """Evaluate the arguments, then run a catalog function on them.

        Errors raised by the function itself carry no position and are
        stamped with the call site. Errors coming out of the arguments
        propagate as they are.
        """
        if name not in EXCEL_FUNCTIONS:
            raise ValueError(f"Unknown function: {name}")
        fn = EXCEL_FUNCTIONS[name]

        try:
            check_arity(fn, len(arguments))
        except FormulaError as error:
            raise error.with_position(position)

        args = [self.evaluate(arg) for arg in arguments]

        try:
            if not accepts_tables(fn) and any(isinstance(a, Table) for a in args):
                raise ArgumentTypeError()
            result = fn(*args)
        except FormulaError as error:
            if error.position is None:
                logger.debug("%s failed at %d: %s", name, position, error.reason)
                raise error.with_position(position)
            raise
        except OverflowError:
            raise FormulaError(f"Numeric overflow in {name}", position)

        if is_number(result) and not math.isfinite(result):  # type: ignore[arg-type]
            raise FormulaError(f"Numeric overflow in {name}", position)
        return result


def evaluate(
    node: ASTNode,
    resolve_cell: CellResolver,
    rows: Optional[int] = None,
    columns: Optional[int] = None,
) -> Value:
    """Evaluate `node` with a one-off FormulaEvaluator."""
    return FormulaEvaluator(resolve_cell, rows, columns).evaluate(node)


def referenced_cells(
    node: ASTNode, rows: Optional[int] = None, columns: Optional[int] = None
) -> set[tuple[int, int]]:
    """Every cell a formula reads, with ranges expanded to their cells.

    Coordinates are clipped to the grid when its size is given. "#REF!"
    references, and ranges with a "#REF!" corner, read nothing.
    """
    row_limit = rows if rows is not None else math.inf
    column_limit = columns if columns is not None else math.inf

    def span(first: int, last: int, limit: float) -> range:
        low, high = min(first, last), max(first, last)
        return range(max(low, 0), int(min(high + 1, limit)))

    cells: set[tuple[int, int]] = set()
    stack = [node]
    while stack:
        match stack.pop():
            case CellReference(row=row, column=column):
                cells.update(
                    (r, c)
                    for r in span(row, row, row_limit)
                    for c in span(column, column, column_limit)
                )
            case CellRange(start=start, end=end) if min(
                start.row, start.column, end.row, end.column
            ) >= 0:
                cells.update(
                    (r, c)
                    for r in span(start.row, end.row, row_limit)
                    for c in span(start.column, end.column, column_limit)
                )
            case UnaryOperation(operand=operand):
                stack.append(operand)
            case BinaryOperation(left=left, right=right):
                stack.extend((left, right))
            case ExcelFunction(arguments=arguments):
                stack.extend(arguments)
    return cells
