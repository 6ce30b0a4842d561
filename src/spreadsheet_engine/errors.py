import copy
from typing import Optional

from typing_extensions import Self


class FormulaError(Exception):
    """An error tied to a character offset in a formula.

    `position` is None while the error travels out of a catalog function;
    the evaluator stamps the call site on it before it leaves the call.
    """

    description = "Formula Error"

    def __init__(self, reason: str, position: Optional[int] = None):
        self.reason = reason
        self.position = position
        super().__init__(self._message())

    def _message(self) -> str:
        if self.position is None:
            return self.reason
        return f"{self.reason} at character {self.position}"

    def with_position(self, position: int) -> Self:
        """Return a copy of this error located at `position`."""
        located = copy.copy(self)
        located.position = position
        located.args = (located._message(),)
        return located

    def __eq__(self, other: object) -> bool:
        return (
            type(self) is type(other)
            and self.reason == other.reason  # type: ignore[attr-defined]
            and self.position == other.position  # type: ignore[attr-defined]
        )

    def __hash__(self) -> int:
        return hash((type(self), self.reason, self.position))


class FormulaSyntaxError(FormulaError):
    description = "Formula Syntax Error"


class ArgumentTypeError(FormulaError):
    description = "Type of Argument Error"

    def __init__(self, reason: str = "Invalid type of argument(s)", position=None):
        super().__init__(reason, position)


class QuantityOfArgumentsError(FormulaError):
    description = "Quantity of Arguments Error"

    def __init__(
        self, reason: str = "Invalid quantity of arguments", position=None
    ):
        super().__init__(reason, position)


class EmptyCellReferenceError(FormulaError):
    description = "Cell Value Error"

    def __init__(self, cell_name: str, position=None):
        self.cell_name = cell_name
        super().__init__(f"Uninitialized cell {cell_name}", position)


class ReferenceOutOfRangeError(FormulaError):
    description = "Reference Error"

    def __init__(self, cell_name: str, position=None):
        self.cell_name = cell_name
        super().__init__(f"Reference {cell_name} is outside the grid", position)


class CircularDependencyError(FormulaError):
    """Raised by the dependency graph, never by evaluation itself."""

    description = "Circular Dependency Error"

    def __init__(self, cell_name: str, position=None):
        self.cell_name = cell_name
        super().__init__(f"Circular dependency involving {cell_name}", position)
