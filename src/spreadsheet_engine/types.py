import math
import re
from enum import IntEnum, auto
from typing import Callable, Iterator, Optional, Union

from spreadsheet_engine.errors import (
    ArgumentTypeError,
    EmptyCellReferenceError,
    FormulaError,
)


class ValueType(IntEnum):
    EMPTY = auto()
    NUMBER = auto()
    TEXT = auto()
    BOOLEAN = auto()
    TABLE = auto()
    ERROR = auto()


ScalarValue = Union[float, str, bool]
Value = Union[ScalarValue, "Table", FormulaError]

# What the engine hands to the evaluator for a cell: its value, its stored
# error, or None when the cell is empty.
CellResolver = Callable[[int, int], Optional[Value]]

NUMBER_REGEX = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")


def value_type(value: Optional[Value]) -> ValueType:
    """Return the ValueType for a runtime value."""
    if value is None:
        return ValueType.EMPTY
    # bool before numbers: bool is an int subclass
    if isinstance(value, bool):
        return ValueType.BOOLEAN
    if isinstance(value, (int, float)):
        return ValueType.NUMBER
    if isinstance(value, str):
        return ValueType.TEXT
    if isinstance(value, Table):
        return ValueType.TABLE
    if isinstance(value, FormulaError):
        return ValueType.ERROR
    raise TypeError(f"Unknown value type: {value!r}")


def is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_number(val: str) -> float:
    """Parse standard decimal notation, raising ValueError otherwise."""
    if not NUMBER_REGEX.fullmatch(val.strip()):
        raise ValueError(f"Not a number: {val!r}")
    return float(val)


def format_number(num: float) -> str:
    if math.isfinite(num) and float(num).is_integer():
        return str(int(num))
    return repr(float(num))


def sniff_literal(text: str) -> Optional[ScalarValue]:
    """Type a literal cell's content: boolean keyword, number, else text."""
    stripped = text.strip()
    if not stripped:
        return None
    if stripped.upper() in ("TRUE", "FALSE"):
        return stripped.upper() == "TRUE"
    try:
        return parse_number(stripped)
    except ValueError:
        return text


def to_number(value: Value) -> float:
    """Convert a value to a number; text must be numeric."""
    if isinstance(value, bool):
        return float(value)
    if is_number(value):
        return float(value)  # type: ignore[arg-type]
    if isinstance(value, str):
        try:
            return parse_number(value)
        except ValueError:
            raise ArgumentTypeError(f"Cannot convert text '{value}' to number")
    raise ArgumentTypeError(f"Cannot convert {value_type(value).name} to number")


def to_boolean(value: Value) -> bool:
    """Convert a value to boolean.

    Text is false only when empty, "0" or (case-insensitively) "false".
    """
    if isinstance(value, bool):
        return value
    if is_number(value):
        return value != 0
    if isinstance(value, str):
        return not (value == "" or value == "0" or value.lower() == "false")
    raise ArgumentTypeError(f"Cannot convert {value_type(value).name} to boolean")


def to_text(value: Value) -> str:
    """Convert a value to its text form."""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if is_number(value):
        return format_number(value)  # type: ignore[arg-type]
    if isinstance(value, str):
        return value
    raise ArgumentTypeError(f"Cannot convert {value_type(value).name} to text")


class Table:
    """A read-only rectangular view over a block of cells.

    The table owns nothing: every read goes through the resolver, so it
    always reflects the cells' current values. Reading a cell that is in
    error raises that error.
    """

    __slots__ = ("_resolve", "top", "left", "bottom", "right")

    def __init__(
        self, resolve: CellResolver, top: int, left: int, bottom: int, right: int
    ):
        self._resolve = resolve
        self.top = min(top, bottom)
        self.left = min(left, right)
        self.bottom = max(top, bottom)
        self.right = max(left, right)

    @property
    def rows(self) -> int:
        return self.bottom - self.top + 1

    @property
    def columns(self) -> int:
        return self.right - self.left + 1

    @property
    def shape(self) -> tuple[int, int]:
        return (self.rows, self.columns)

    def get(self, row: int, column: int) -> Optional[ScalarValue]:
        """Return the value at a 0-based offset inside the table."""
        if not (0 <= row < self.rows and 0 <= column < self.columns):
            raise IndexError(f"({row}, {column}) is outside a {self.shape} table")
        value = self._resolve(self.top + row, self.left + column)
        if isinstance(value, FormulaError):
            raise value
        if isinstance(value, Table):
            raise ArgumentTypeError("Nested tables are not supported")
        return value

    def values(self) -> Iterator[Optional[ScalarValue]]:
        """Yield every cell value, row-major, without building a list."""
        for row in range(self.rows):
            for column in range(self.columns):
                yield self.get(row, column)

    def __iter__(self) -> Iterator[Optional[ScalarValue]]:
        return self.values()

    def require(self, row: int, column: int, cell_name: str) -> ScalarValue:
        """Like get(), but an empty cell is an error."""
        value = self.get(row, column)
        if value is None:
            raise EmptyCellReferenceError(cell_name)
        return value

    def _bounds(self) -> tuple[int, int, int, int]:
        return (self.top, self.left, self.bottom, self.right)

    def __eq__(self, other: object) -> bool:
        # Same rectangle through the same resolver is the same view
        if not isinstance(other, Table):
            return NotImplemented
        return self._resolve == other._resolve and self._bounds() == other._bounds()

    def __hash__(self) -> int:
        return hash(self._bounds())

    def __repr__(self) -> str:
        return (
            f"Table(top={self.top}, left={self.left}, "
            f"bottom={self.bottom}, right={self.right})"
        )
