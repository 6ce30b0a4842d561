"""Dependency graph for formula cells with topological ordering."""

from collections import deque
from enum import IntEnum
from typing import Iterable, Iterator

Cell = tuple[int, int]


class Color(IntEnum):
    WHITE = 0  # not visited yet
    GRAY = 1  # visited, its strongly connected component is still open
    BLACK = 2  # finished, assigned to a component


class DependencyGraph:
    """Tracks which cells each formula reads, with a reverse index.

    Cells are (row, column) pairs. An edge source -> target means "source
    reads target's value".
    """

    __slots__ = ("dependencies", "dependents")

    def __init__(self) -> None:
        # cell -> set of cells it reads from
        self.dependencies: dict[Cell, set[Cell]] = {}
        # cell -> set of cells that read from it (reverse edges)
        self.dependents: dict[Cell, set[Cell]] = {}

    def __contains__(self, cell: object) -> bool:
        return cell in self.dependencies or cell in self.dependents

    def set_dependencies(self, cell: Cell, references: Iterable[Cell]) -> None:
        """Replace the outgoing edges of `cell`."""
        self.remove_dependencies(cell)
        refs = set(references)
        if not refs:
            return
        self.dependencies[cell] = refs
        for ref in refs:
            self.dependents.setdefault(ref, set()).add(cell)

    def remove_dependencies(self, cell: Cell) -> None:
        """Drop the outgoing edges of `cell`, keeping edges pointing at it."""
        for ref in self.dependencies.pop(cell, set()):
            readers = self.dependents.get(ref)
            if readers is None:
                continue
            readers.discard(cell)
            if not readers:
                del self.dependents[ref]

    def remove_cell(self, cell: Cell) -> None:
        """Drop `cell` and every edge touching it."""
        self.remove_dependencies(cell)
        for reader in self.dependents.pop(cell, set()):
            refs = self.dependencies.get(reader)
            if refs is None:
                continue
            refs.discard(cell)
            if not refs:
                del self.dependencies[reader]

    def dependencies_of(self, cell: Cell) -> set[Cell]:
        return self.dependencies.get(cell, set())

    def dependents_of(self, cell: Cell) -> set[Cell]:
        return self.dependents.get(cell, set())

    def affected_cells(self, changed_cells: Iterable[Cell]) -> set[Cell]:
        """The changed cells plus everything that transitively reads them.

        Uses BFS on the dependents graph.
        """
        visited: set[Cell] = set(changed_cells)
        queue: deque[Cell] = deque(visited)

        while queue:
            cell = queue.popleft()
            for dep in self.dependents.get(cell, ()):
                if dep not in visited:
                    visited.add(dep)
                    queue.append(dep)

        return visited

    def is_cyclic(self, component: tuple[Cell, ...]) -> bool:
        """Whether a component returned by evaluation_order is a cycle."""
        if len(component) > 1:
            return True
        cell = component[0]
        return cell in self.dependencies.get(cell, ())

    def evaluation_order(self, cells: Iterable[Cell]) -> list[tuple[Cell, ...]]:
        """Group `cells` into strongly connected components, dependencies first.

        Only edges between members of `cells` are followed. Every acyclic
        cell comes back as a component of its own, after every component it
        reads from; a cycle of any length (a self-reference included) comes
        back as one component, see is_cyclic().

        This is a single depth-first pass with white/gray/black coloring
        (Tarjan's algorithm): an edge to a gray cell closes a cycle. The
        walk keeps its own stack, so long dependency chains do not hit the
        interpreter's recursion limit.
        """
        members = set(cells)
        color: dict[Cell, Color] = {}
        index: dict[Cell, int] = {}
        lowlink: dict[Cell, int] = {}
        open_cells: list[Cell] = []
        components: list[tuple[Cell, ...]] = []

        def children(cell: Cell) -> Iterator[Cell]:
            return iter(sorted(self.dependencies.get(cell, set()) & members))

        def visit(cell: Cell) -> None:
            color[cell] = Color.GRAY
            index[cell] = lowlink[cell] = len(index)
            open_cells.append(cell)

        for root in sorted(members):
            if color.get(root, Color.WHITE) is not Color.WHITE:
                continue
            visit(root)
            path = [(root, children(root))]

            while path:
                cell, pending = path[-1]
                for child in pending:
                    child_color = color.get(child, Color.WHITE)
                    if child_color is Color.WHITE:
                        visit(child)
                        path.append((child, children(child)))
                        break
                    if child_color is Color.GRAY:
                        lowlink[cell] = min(lowlink[cell], index[child])
                else:
                    path.pop()
                    if path:
                        parent = path[-1][0]
                        lowlink[parent] = min(lowlink[parent], lowlink[cell])
                    if lowlink[cell] == index[cell]:
                        component = []
                        while True:
                            member = open_cells.pop()
                            color[member] = Color.BLACK
                            component.append(member)
                            if member == cell:
                                break
                        components.append(tuple(sorted(component)))

        return components
