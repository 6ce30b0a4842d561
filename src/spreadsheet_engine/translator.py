"""Shifting relative references when a formula is copied elsewhere."""

from spreadsheet_engine.ast import (
    ASTNode,
    BinaryOperation,
    CellRange,
    CellReference,
    Constant,
    ExcelFunction,
    UnaryOperation,
)
from spreadsheet_engine.parser import parse_formula
from spreadsheet_engine.utils import MAX_COLUMN_INDEX, format_formula


def _shift(ref: CellReference, row_offset: int, column_offset: int) -> CellReference:
    row = ref.row if ref.absolute_row else ref.row + row_offset
    column = ref.column if ref.absolute_col else ref.column + column_offset
    if row == ref.row and column == ref.column:
        return ref
    if row < 0 or column < 0 or column >= MAX_COLUMN_INDEX:
        return CellReference.invalid(ref.position)
    return ref._replace(row=row, column=column)


def translate(node: ASTNode, row_offset: int, column_offset: int) -> ASTNode:
    """Return `node` with every relative reference moved by the offsets.

    `$`-marked axes stay put. The input tree is never modified, and
    subtrees without anything to shift are returned as they are. A
    reference moved off the addressable grid becomes "#REF!", which
    fails to evaluate and stays put on later copies.
    """
    match node:
        case CellReference():
            return _shift(node, row_offset, column_offset)

        case CellRange(start=start, end=end):
            new_start = _shift(start, row_offset, column_offset)
            new_end = _shift(end, row_offset, column_offset)
            if new_start is start and new_end is end:
                return node
            return node._replace(start=new_start, end=new_end)

        case UnaryOperation(operand=operand):
            new_operand = translate(operand, row_offset, column_offset)
            if new_operand is operand:
                return node
            return node._replace(operand=new_operand)

        case BinaryOperation(left=left, right=right):
            new_left = translate(left, row_offset, column_offset)
            new_right = translate(right, row_offset, column_offset)
            if new_left is left and new_right is right:
                return node
            return node._replace(left=new_left, right=new_right)

        case ExcelFunction(arguments=arguments):
            new_arguments = tuple(
                translate(arg, row_offset, column_offset) for arg in arguments
            )
            if all(new is old for new, old in zip(new_arguments, arguments)):
                return node
            return node._replace(arguments=new_arguments)

        case Constant():
            return node

    raise ValueError(f"Unknown node type: {type(node)}")


def translate_formula(formula: str, row_offset: int, column_offset: int) -> str:
    """Translate formula text, e.g. "A1+B2" by (1, 1) gives "B2+C3"."""
    node = parse_formula(formula)
    if node is None:
        return ""
    return format_formula(translate(node, row_offset, column_offset))
