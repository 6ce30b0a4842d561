from typing import NamedTuple


class ExcelFunction(NamedTuple):
    name: str
    arguments: "tuple[ASTNode, ...]"
    position: int = 0


class BinaryOperation(NamedTuple):
    left: "ASTNode"
    operator: str
    right: "ASTNode"
    position: int = 0


class UnaryOperation(NamedTuple):
    operator: str
    operand: "ASTNode"
    position: int = 0


class CellReference(NamedTuple):
    # 0-based; A1 is (0, 0)
    row: int
    column: int
    absolute_row: bool = False
    absolute_col: bool = False
    position: int = 0

    @classmethod
    def invalid(cls, position: int = 0) -> "CellReference":
        """The "#REF!" reference; pinned on both axes so copies keep it."""
        return cls(-1, -1, True, True, position)

    def coords(self) -> str:
        # Avoid circular imports
        from spreadsheet_engine.utils import cell_name

        return cell_name(self.row, self.column)


class CellRange(NamedTuple):
    start: CellReference
    end: CellReference
    position: int = 0


class Constant(NamedTuple):
    value: float | str | bool
    position: int = 0


# Type alias for all possible AST nodes
ASTNode = (
    ExcelFunction
    | BinaryOperation
    | UnaryOperation
    | CellReference
    | CellRange
    | Constant
)
