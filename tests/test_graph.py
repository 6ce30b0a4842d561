import pytest
from spreadsheet_engine.graph import DependencyGraph

A1, B1, C1, D1, E1 = (0, 0), (0, 1), (0, 2), (0, 3), (0, 4)


@pytest.fixture
def chain():
    """B1 reads A1, C1 reads B1, D1 reads B1 and C1."""
    graph = DependencyGraph()
    graph.set_dependencies(B1, [A1])
    graph.set_dependencies(C1, [B1])
    graph.set_dependencies(D1, [B1, C1])
    return graph


class TestEdges:
    def test_reverse_index(self, chain):
        assert chain.dependents_of(B1) == {C1, D1}
        assert chain.dependencies_of(D1) == {B1, C1}
        assert chain.dependents_of(D1) == set()

    def test_replace_dependencies(self, chain):
        chain.set_dependencies(C1, [A1])
        assert chain.dependents_of(B1) == {D1}
        assert chain.dependents_of(A1) == {B1, C1}

    def test_remove_dependencies(self, chain):
        chain.remove_dependencies(D1)
        assert D1 not in chain.dependencies
        assert chain.dependents_of(C1) == set()
        assert C1 not in chain.dependents

    def test_remove_cell(self, chain):
        chain.remove_cell(B1)
        assert B1 not in chain
        assert chain.dependencies_of(C1) == set()
        assert chain.dependencies_of(D1) == {C1}
        assert chain.dependents_of(A1) == set()


class TestAffectedCells:
    def test_transitive_dependents(self, chain):
        assert chain.affected_cells([A1]) == {A1, B1, C1, D1}
        assert chain.affected_cells([C1]) == {C1, D1}

    def test_unrelated_cell(self, chain):
        assert chain.affected_cells([E1]) == {E1}


class TestEvaluationOrder:
    def test_dependencies_first(self, chain):
        order = chain.evaluation_order(chain.affected_cells([A1]))
        assert order == [(A1,), (B1,), (C1,), (D1,)]
        assert not any(chain.is_cyclic(component) for component in order)

    def test_only_given_cells(self, chain):
        assert chain.evaluation_order([C1, D1]) == [(C1,), (D1,)]

    def test_self_reference(self):
        graph = DependencyGraph()
        graph.set_dependencies(A1, [A1])
        order = graph.evaluation_order([A1])
        assert order == [(A1,)]
        assert graph.is_cyclic(order[0])

    def test_cycle_with_downstream(self):
        graph = DependencyGraph()
        graph.set_dependencies(A1, [C1])
        graph.set_dependencies(B1, [A1])
        graph.set_dependencies(C1, [B1])
        graph.set_dependencies(D1, [C1])
        order = graph.evaluation_order(graph.affected_cells([A1]))
        assert order == [(A1, B1, C1), (D1,)]
        assert graph.is_cyclic(order[0])
        assert not graph.is_cyclic(order[1])

    def test_cycle_reached_through_several_paths(self):
        """Every member of a cycle is found, however the walk enters it."""
        graph = DependencyGraph()
        graph.set_dependencies(A1, [B1, C1])
        graph.set_dependencies(B1, [C1])
        graph.set_dependencies(C1, [A1])
        order = graph.evaluation_order([A1, B1, C1])
        assert order == [(A1, B1, C1)]

    def test_upstream_of_cycle(self):
        graph = DependencyGraph()
        graph.set_dependencies(B1, [A1, C1])
        graph.set_dependencies(C1, [B1])
        order = graph.evaluation_order([A1, B1, C1])
        assert order == [(A1,), (B1, C1)]

    def test_long_chain(self):
        """Deep chains are walked without recursion."""
        graph = DependencyGraph()
        cells = [(row, 0) for row in range(5000)]
        # Each cell reads the one below it, so the walk from A1 goes 5000 deep
        for cell, below in zip(cells, cells[1:]):
            graph.set_dependencies(cell, [below])
        order = graph.evaluation_order(cells)
        assert order == [(cell,) for cell in reversed(cells)]
