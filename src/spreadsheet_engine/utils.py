import re

from openpyxl.utils import column_index_from_string, get_column_letter

import spreadsheet_engine.ast as ast
from spreadsheet_engine.operators import (
    COMPARISON_PRECEDENCE,
    PRIMARY_PRECEDENCE,
    UNARY_PRECEDENCE,
    binary_precedence,
)
from spreadsheet_engine.types import format_number

# Constants
CELL_REF_REGEX = re.compile(r"(\$?)([A-Z]+)(\$?)(\d+)$")
INVALID_REFERENCE = "#REF!"

# openpyxl converts column letters up to "ZZZ"
MAX_COLUMN_INDEX = 18278


def column_as_str(column: int) -> str:
    """0-based column index to letters: 0 -> "A", 27 -> "AB"."""
    return get_column_letter(column + 1)


def column_as_int(column: str) -> int:
    """Column letters to a 0-based index: "A" -> 0."""
    return column_index_from_string(column) - 1


def cell_name(row: int, column: int) -> str:
    """Render 0-based coordinates in A1 notation."""
    if row < 0 or column < 0 or column >= MAX_COLUMN_INDEX:
        return INVALID_REFERENCE
    return f"{column_as_str(column)}{row + 1}"


def extract_cell_reference(ref: str, position: int = 0) -> ast.CellReference | None:
    """Parse a cell reference like "B3" or "$B$3", returning None if invalid."""
    match = CELL_REF_REGEX.match(ref)
    if not match:
        return None
    col_marker, col, row_marker, row = match.groups()
    if int(row) < 1:
        return None
    try:
        column = column_as_int(col)
    except ValueError:
        return None
    return ast.CellReference(
        row=int(row) - 1,
        column=column,
        absolute_row=bool(row_marker),
        absolute_col=bool(col_marker),
        position=position,
    )


def parse_cell_name(name: str) -> tuple[int, int]:
    """A1 notation to 0-based (row, column)."""
    ref = extract_cell_reference(name.strip().upper())
    if ref is None:
        raise ValueError(f"Invalid cell name: {name!r}")
    return ref.row, ref.column


def _precedence(node: ast.ASTNode) -> int:
    if isinstance(node, ast.BinaryOperation):
        return binary_precedence(node.operator)
    if isinstance(node, ast.UnaryOperation):
        return UNARY_PRECEDENCE
    return PRIMARY_PRECEDENCE


def _format_reference(node: ast.CellReference) -> str:
    name = cell_name(node.row, node.column)
    if name == INVALID_REFERENCE:
        return name
    col_prefix = "$" if node.absolute_col else ""
    row_prefix = "$" if node.absolute_row else ""
    return f"{col_prefix}{column_as_str(node.column)}{row_prefix}{node.row + 1}"


def format_formula(node: ast.ASTNode) -> str:
    """Render an AST back to formula text (without a leading "=")."""
    if isinstance(node, ast.ExcelFunction):
        return f"{node.name}({', '.join(format_formula(a) for a in node.arguments)})"

    elif isinstance(node, ast.BinaryOperation):
        precedence = binary_precedence(node.operator)
        left = format_formula(node.left)
        right = format_formula(node.right)
        left_precedence = _precedence(node.left)
        # Comparisons don't chain, so an equal-precedence left side needs
        # parentheses too; everything else is left-associative.
        if left_precedence < precedence or (
            precedence == COMPARISON_PRECEDENCE and left_precedence == precedence
        ):
            left = f"({left})"
        if _precedence(node.right) <= precedence:
            right = f"({right})"
        return f"{left}{node.operator}{right}"

    elif isinstance(node, ast.UnaryOperation):
        operand = format_formula(node.operand)
        if _precedence(node.operand) < UNARY_PRECEDENCE:
            operand = f"({operand})"
        return f"{node.operator}{operand}"

    elif isinstance(node, ast.CellReference):
        return _format_reference(node)

    elif isinstance(node, ast.CellRange):
        return f"{_format_reference(node.start)}:{_format_reference(node.end)}"

    elif isinstance(node, ast.Constant):
        if isinstance(node.value, bool):
            return "TRUE" if node.value else "FALSE"
        if isinstance(node.value, str):
            return '"' + node.value.replace('"', '""') + '"'
        return format_number(node.value)

    raise ValueError(f"Unknown node type: {type(node)}")
