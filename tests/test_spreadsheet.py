import logging

import pandas as pd
import pytest
from spreadsheet_engine.errors import (
    ArgumentTypeError,
    CircularDependencyError,
    EmptyCellReferenceError,
    FormulaSyntaxError,
    ReferenceOutOfRangeError,
)
from spreadsheet_engine.events import Event
from spreadsheet_engine.spreadsheet import (
    DEFAULT_COLUMNS,
    DEFAULT_ROWS,
    CellState,
    Spreadsheet,
)
from spreadsheet_engine.types import Table


@pytest.fixture
def sheet():
    return Spreadsheet()


@pytest.fixture
def events(sheet):
    """Every notification, as (event, *args) tuples."""
    received = []
    for event in Event:
        sheet.subscribe(event, lambda *args, event=event: received.append((event, *args)))
    return received


class TestLiterals:
    def test_formula_literals(self, sheet):
        sheet.set_formula(0, 0, "5")
        assert sheet.get_value(0, 0) == 5
        assert isinstance(sheet.get_value(0, 0), float)
        sheet.set_formula(0, 0, "TRUE")
        assert sheet.get_value(0, 0) is True
        sheet.set_formula(0, 0, '"x"')
        assert sheet.get_value(0, 0) == "x"

    def test_set_input_sniffs_literals(self, sheet):
        sheet.set_input(0, 0, "42")
        sheet.set_input(0, 1, "false")
        sheet.set_input(0, 2, "hello")
        sheet.set_input(0, 3, "=A1*2")
        assert sheet.get_value(0, 0) == 42.0
        assert sheet.get_value(0, 1) is False
        assert sheet.get_value(0, 2) == "hello"
        assert sheet.get_value(0, 3) == 84.0
        assert sheet.get_formula(0, 3) == "A1*2"
        assert sheet.get_formula(0, 2) == "hello"
        assert sheet.get_state(0, 0) is CellState.LITERAL
        assert sheet.get_state(0, 3) is CellState.EVALUATED

    def test_set_value(self, sheet):
        sheet.set_value(0, 0, 3)
        sheet.set_formula(0, 1, "A1 + 1")
        assert sheet.get_value(0, 1) == 4.0
        sheet.set_value(0, 0, None)
        assert sheet.get_state(0, 0) is CellState.EMPTY
        assert isinstance(sheet.get_error(0, 1), EmptyCellReferenceError)
        with pytest.raises(TypeError):
            sheet.set_value(0, 0, [1, 2])

    def test_empty_cell(self, sheet):
        assert sheet.get_value(5, 5) is None
        assert sheet.get_formula(5, 5) == ""
        assert sheet.get_state(5, 5) is CellState.EMPTY
        assert sheet.get_display(5, 5) == ""


class TestRecalculation:
    def test_chain_recomputed_once_per_cell(self, sheet, events):
        sheet.set_formula(0, 0, "1")
        sheet.set_formula(0, 1, "A1+1")
        sheet.set_formula(0, 2, "B1+1")
        events.clear()

        result = sheet.set_formula(0, 0, "10")

        assert sheet.get_value(0, 1) == 11
        assert sheet.get_value(0, 2) == 12
        assert events == [
            (Event.CELL_FORMULA_UPDATED, 0, 0, "10"),
            (Event.CELL_VALUE_UPDATED, 0, 0, 10.0),
            (Event.CELL_VALUE_UPDATED, 0, 1, 11.0),
            (Event.CELL_VALUE_UPDATED, 0, 2, 12.0),
        ]
        assert [delta.cell_ref for delta in result.deltas] == ["A1", "B1", "C1"]
        assert [(d.old_value, d.new_value) for d in result.deltas] == [
            (1.0, 10.0),
            (2.0, 11.0),
            (3.0, 12.0),
        ]
        assert result.recomputed_cells == len(result.changed_cells) == 3

    def test_diamond(self, sheet):
        sheet.set_formula(0, 0, "2")
        sheet.set_formula(1, 0, "A1*10")
        sheet.set_formula(1, 1, "A1+1")
        sheet.set_formula(2, 0, "A2+B2")
        result = sheet.set_formula(0, 0, "3")
        assert sheet.get_value(2, 0) == 34
        # A3 waits for both of its inputs
        refs = [delta.cell_ref for delta in result.deltas]
        assert refs.index("A3") > refs.index("A2")
        assert refs.index("A3") > refs.index("B2")
        assert len(refs) == len(set(refs)) == 4

    def test_unrelated_cells_untouched(self, sheet):
        sheet.set_formula(0, 0, "1")
        sheet.set_formula(5, 5, "A1+1")
        result = sheet.set_formula(3, 3, "7")
        assert [delta.cell_ref for delta in result.deltas] == ["D4"]

    def test_range_dependencies(self, sheet):
        for row, value in enumerate(["1", "2", "3"]):
            sheet.set_formula(row, 0, value)
        sheet.set_formula(0, 1, "SUM(A1:A3)")
        assert sheet.get_value(0, 1) == 6
        sheet.set_formula(1, 0, "20")
        assert sheet.get_value(0, 1) == 24

    def test_sum_with_text_in_range(self, sheet):
        for row, value in enumerate(["1", "2", "3"]):
            sheet.set_formula(row, 0, value)
        sheet.set_formula(0, 1, "1 + SUM(A1:A3)")
        sheet.set_formula(1, 0, '"two"')
        error = sheet.get_error(0, 1)
        assert isinstance(error, ArgumentTypeError)
        # The SUM call, not the offending cell
        assert error.position == 4
        assert sheet.get_value(0, 1) is None
        assert sheet.get_state(0, 1) is CellState.ERRORED

    def test_formula_returning_table(self, sheet):
        sheet.set_formula(0, 0, "1")
        sheet.set_formula(0, 1, "A1:A2")
        assert isinstance(sheet.get_value(0, 1), Table)
        assert sheet.get_display(0, 1) == "<2x1 range>"

    def test_same_range_is_not_a_change(self, sheet):
        sheet.set_formula(0, 0, "1")
        sheet.set_formula(0, 1, "A1:A2")
        result = sheet.set_formula(0, 0, "2")
        assert [delta.cell_ref for delta in result.deltas] == ["A1", "B1"]
        assert [delta.cell_ref for delta in result.changed_cells] == ["A1"]


class TestErrorPropagation:
    def test_type_error_propagates(self, sheet, events):
        sheet.set_formula(0, 0, "1")
        sheet.set_formula(0, 1, "A1+1")
        events.clear()
        sheet.set_formula(0, 0, '"x"')

        error = sheet.get_error(0, 1)
        assert isinstance(error, ArgumentTypeError)
        assert sheet.get_value(0, 1) is None
        assert (Event.CELL_FORMULA_ERROR, 0, 1, error) in events

    def test_downstream_gets_the_same_error(self, sheet):
        sheet.set_formula(0, 0, "SQRT(-1)")
        sheet.set_formula(0, 1, "A1 * 2")
        sheet.set_formula(0, 2, "B1 + 1")
        assert sheet.get_error(0, 2) is sheet.get_error(0, 0)
        assert sheet.get_display(0, 2) == "Formula Error"

    def test_recovery(self, sheet):
        sheet.set_formula(0, 0, "SQRT(-1)")
        sheet.set_formula(0, 1, "A1 * 2")
        sheet.set_formula(0, 0, "4")
        assert sheet.get_error(0, 1) is None
        assert sheet.get_value(0, 1) == 8

    @pytest.mark.parametrize(
        "formula", ["RANDBETWEEN(0, 1e19)", "FACT(1e9)", "RANDBETWEEN(-1e300, 1)"]
    )
    def test_numeric_limits_stay_in_the_cell(self, sheet, formula):
        sheet.set_formula(1, 0, "A1 + 1")
        sheet.set_formula(0, 0, formula)
        assert sheet.get_state(0, 0) is CellState.ERRORED
        assert sheet.get_error(1, 0) is sheet.get_error(0, 0)

    def test_empty_reference(self, sheet):
        sheet.set_formula(0, 0, "B1 + 1")
        error = sheet.get_error(0, 0)
        assert isinstance(error, EmptyCellReferenceError)
        sheet.set_formula(0, 1, "1")
        assert sheet.get_value(0, 0) == 2


class TestSyntaxErrors:
    def test_raises_and_keeps_source(self, sheet, events):
        with pytest.raises(FormulaSyntaxError) as exc_info:
            sheet.set_formula(0, 0, "1 +")
        assert exc_info.value.position == 3
        assert sheet.get_formula(0, 0) == "1 +"
        assert sheet.get_state(0, 0) is CellState.ERRORED
        assert sheet.get_error(0, 0) == exc_info.value
        assert events[0] == (Event.CELL_FORMULA_UPDATED, 0, 0, "1 +")
        assert events[1] == (Event.CELL_FORMULA_ERROR, 0, 0, exc_info.value)

    def test_non_ascii_digit(self, sheet):
        with pytest.raises(FormulaSyntaxError) as exc_info:
            sheet.set_formula(0, 0, "1+²")
        assert exc_info.value.position == 2
        assert sheet.get_state(0, 0) is CellState.ERRORED

    def test_dependents_see_the_syntax_error(self, sheet):
        sheet.set_formula(1, 0, "1")
        sheet.set_formula(0, 0, "A2 * 2")
        sheet.set_formula(0, 1, "A1 + 1")
        with pytest.raises(FormulaSyntaxError):
            sheet.set_formula(0, 0, "SUM(A2")
        assert isinstance(sheet.get_error(0, 1), FormulaSyntaxError)
        # A1 no longer reads A2
        result = sheet.set_formula(1, 0, "5")
        assert [delta.cell_ref for delta in result.deltas] == ["A2"]
        assert sheet.get_state(0, 0) is CellState.ERRORED

    def test_listener_can_read_state(self, sheet):
        seen = []
        sheet.subscribe(
            Event.CELL_FORMULA_ERROR, lambda row, column, error: seen.append(
                sheet.get_formula(row, column)
            )
        )
        with pytest.raises(FormulaSyntaxError):
            sheet.set_formula(0, 0, "2A")
        assert seen == ["2A"]


class TestCircularDependencies:
    def test_self_reference(self, sheet, events):
        result = sheet.set_formula(0, 0, "A1")
        error = sheet.get_error(0, 0)
        assert isinstance(error, CircularDependencyError)
        assert sheet.get_state(0, 0) is CellState.CIRCULAR
        assert (Event.CELL_CIRCULAR_DEPENDENCY_DETECTED, 0, 0) in events
        assert result.circular == ((0, 0),)

    def test_breaking_a_self_reference(self, sheet):
        sheet.set_formula(0, 0, "A1 + 1")
        sheet.set_formula(0, 0, "5")
        assert sheet.get_value(0, 0) == 5
        assert sheet.get_error(0, 0) is None
        assert sheet.get_state(0, 0) is CellState.EVALUATED

    def test_cycle_and_downstream(self, sheet, events):
        sheet.set_formula(0, 0, "B1")
        sheet.set_formula(0, 2, "A1 + 1")
        events.clear()
        sheet.set_formula(0, 1, "A1")

        for column in (0, 1):
            assert sheet.get_state(0, column) is CellState.CIRCULAR
            assert (Event.CELL_CIRCULAR_DEPENDENCY_DETECTED, 0, column) in events

        # C1 reads the cycle but is not part of it
        assert sheet.get_state(0, 2) is CellState.CIRCULAR
        assert sheet.get_error(0, 2) is sheet.get_error(0, 0)
        assert (Event.CELL_FORMULA_ERROR, 0, 2, sheet.get_error(0, 2)) in events
        assert (Event.CELL_CIRCULAR_DEPENDENCY_DETECTED, 0, 2) not in events

    def test_breaking_a_cycle(self, sheet):
        sheet.set_formula(0, 0, "B1 + 1")
        sheet.set_formula(0, 1, "C1")
        sheet.set_formula(0, 2, "A1")
        sheet.set_formula(0, 3, "A1 * 2")
        assert sheet.get_state(0, 3) is CellState.CIRCULAR

        sheet.set_formula(0, 2, "3")

        assert sheet.get_value(0, 1) == 3
        assert sheet.get_value(0, 0) == 4
        assert sheet.get_value(0, 3) == 8
        for column in range(4):
            assert sheet.get_error(0, column) is None
            assert sheet.get_state(0, column) is not CellState.CIRCULAR

    def test_cycle_through_range(self, sheet):
        sheet.set_formula(0, 0, "1")
        sheet.set_formula(1, 0, "SUM(A1:A3)")
        assert sheet.get_state(1, 0) is CellState.CIRCULAR

    def test_cycle_is_logged(self, sheet, caplog):
        with caplog.at_level(logging.WARNING, logger="spreadsheet_engine.spreadsheet"):
            sheet.set_formula(0, 0, "A1")
        assert "Circular dependency between A1" in caplog.text


class TestClear:
    def test_clear(self, sheet):
        sheet.set_formula(0, 0, "1")
        sheet.set_formula(0, 1, "A1")
        sheet.clear(0, 0)
        assert sheet.get_formula(0, 0) == ""
        assert sheet.get_state(0, 0) is CellState.EMPTY
        assert isinstance(sheet.get_error(0, 1), EmptyCellReferenceError)

    def test_clear_with_blank_formula(self, sheet):
        sheet.set_formula(0, 0, "1")
        sheet.set_formula(0, 0, "   ")
        assert sheet.get_value(0, 0) is None


class TestEvents:
    def test_unsubscribe(self, sheet):
        received = []
        listener = received.append
        sheet.subscribe(Event.CELL_FORMULA_UPDATED, listener)
        sheet.subscribe(Event.CELL_VALUE_UPDATED, listener)
        sheet.unsubscribe(listener)
        sheet.set_formula(0, 0, "1")
        assert received == []

    def test_listener_cannot_reenter(self, sheet):
        def listener(row, column, value):
            sheet.set_formula(5, 5, "1")

        sheet.subscribe(Event.CELL_VALUE_UPDATED, listener)
        with pytest.raises(RuntimeError):
            sheet.set_formula(0, 0, "1")
        # The engine is usable again afterwards
        sheet.unsubscribe(listener)
        sheet.set_formula(0, 0, "2")
        assert sheet.get_value(0, 0) == 2


class TestGrid:
    def test_defaults(self, sheet):
        assert (sheet.rows, sheet.columns) == (DEFAULT_ROWS, DEFAULT_COLUMNS)

    def test_out_of_bounds(self, sheet):
        with pytest.raises(IndexError):
            sheet.set_formula(DEFAULT_ROWS, 0, "1")
        with pytest.raises(IndexError):
            sheet.get_value(0, -1)

    def test_reference_outside_grid(self):
        sheet = Spreadsheet(rows=5, columns=5)
        sheet.set_formula(0, 0, "F1 + 1")
        assert isinstance(sheet.get_error(0, 0), ReferenceOutOfRangeError)

    def test_resize(self, caplog):
        sheet = Spreadsheet(rows=10, columns=10)
        sheet.set_formula(8, 8, "4")
        sheet.set_formula(0, 0, "I9 * 2")
        assert sheet.get_value(0, 0) == 8

        with caplog.at_level(logging.INFO, logger="spreadsheet_engine.spreadsheet"):
            sheet.resize(5, 5)
        assert "Resizing grid" in caplog.text
        assert isinstance(sheet.get_error(0, 0), ReferenceOutOfRangeError)
        with pytest.raises(IndexError):
            sheet.get_value(8, 8)

        sheet.resize(10, 10)
        assert sheet.get_value(8, 8) is None
        assert isinstance(sheet.get_error(0, 0), EmptyCellReferenceError)
        sheet.set_formula(8, 8, "1")
        assert sheet.get_value(0, 0) == 2


class TestCopyPaste:
    def test_bufferize(self, sheet):
        sheet.set_formula(0, 0, "1")
        sheet.set_formula(0, 1, "A1 + 1")
        buffer = sheet.bufferize(0, 0, 1, 1)
        assert (buffer.rows, buffer.columns) == (2, 2)
        assert buffer.cells[0][1].source == "A1 + 1"
        assert buffer.cells[0][1].is_formula
        assert buffer.cells[0][1].value == 2
        assert buffer.cells[1][0].source == ""

        # Detached from later edits
        sheet.set_formula(0, 0, "5")
        assert buffer.cells[0][1].value == 2

    def test_paste_translates_references(self, sheet):
        sheet.set_formula(0, 0, "1")
        sheet.set_formula(1, 0, "2")
        sheet.set_formula(0, 1, "A1 * 10")
        buffer = sheet.bufferize(0, 1, 0, 1)

        sheet.paste(buffer, 1, 1)

        assert sheet.get_formula(1, 1) == "A2*10"
        assert sheet.get_value(1, 1) == 20

    def test_paste_absolute_reference(self, sheet):
        sheet.set_formula(0, 0, "3")
        sheet.set_formula(0, 1, "$A$1 + A1")
        sheet.paste(sheet.bufferize(0, 1, 0, 1), 0, 2)
        assert sheet.get_formula(0, 2) == "$A$1+B1"
        assert sheet.get_value(0, 2) == 9

    def test_paste_literals(self, sheet):
        sheet.set_input(0, 0, "hello")
        sheet.paste(sheet.bufferize(0, 0, 0, 0), 4, 4)
        assert sheet.get_value(4, 4) == "hello"
        assert sheet.get_state(4, 4) is CellState.LITERAL

    def test_paste_updates_dependents(self, sheet):
        sheet.set_formula(0, 0, "7")
        sheet.set_formula(3, 3, "C3 + 1")
        sheet.paste(sheet.bufferize(0, 0, 0, 0), 2, 2)
        assert sheet.get_value(3, 3) == 8

    def test_paste_off_the_grid_edge(self, sheet, caplog):
        sheet.set_formula(0, 0, "1")
        sheet.set_formula(0, 1, "2")
        buffer = sheet.bufferize(0, 0, 0, 1)
        with caplog.at_level(logging.WARNING, logger="spreadsheet_engine.spreadsheet"):
            sheet.paste(buffer, 0, DEFAULT_COLUMNS - 1)
        assert sheet.get_value(0, DEFAULT_COLUMNS - 1) == 1
        assert "Skipping paste destination" in caplog.text

    def test_paste_reference_before_a1(self, sheet):
        sheet.set_formula(1, 1, "1")
        sheet.set_formula(1, 2, "B2 + 1")
        sheet.paste(sheet.bufferize(1, 2, 1, 2), 0, 0)
        assert sheet.get_formula(0, 0) == "#REF!+1"
        assert isinstance(sheet.get_error(0, 0), ReferenceOutOfRangeError)

        # The stored text can be entered again
        sheet.set_formula(2, 2, sheet.get_formula(0, 0))
        assert isinstance(sheet.get_error(2, 2), ReferenceOutOfRangeError)

    def test_invalid_reference_survives_another_paste(self, sheet):
        sheet.set_formula(1, 1, "1")
        sheet.set_formula(1, 2, "B2 + 1")
        sheet.paste(sheet.bufferize(1, 2, 1, 2), 0, 0)
        sheet.paste(sheet.bufferize(0, 0, 0, 0), 4, 4)
        assert sheet.get_formula(4, 4) == "#REF!+1"
        assert isinstance(sheet.get_error(4, 4), ReferenceOutOfRangeError)

    def test_buffer_freezes_ranges(self, sheet):
        sheet.set_formula(0, 0, "1")
        sheet.set_formula(1, 0, "2")
        sheet.set_formula(0, 1, "A1:A2")
        buffer = sheet.bufferize(0, 1, 0, 1)
        sheet.set_formula(0, 0, "10")
        assert buffer.cells[0][0].value == ((1.0,), (2.0,))
        assert buffer.to_frame().loc["1", "B"] == ((1.0,), (2.0,))

    def test_to_frame(self, sheet):
        sheet.set_formula(0, 0, "1")
        sheet.set_formula(0, 1, '"a"')
        sheet.set_formula(1, 1, "A1 + 1")
        frame = sheet.bufferize(0, 0, 1, 1).to_frame()
        assert isinstance(frame, pd.DataFrame)
        assert list(frame.columns) == ["A", "B"]
        assert list(frame.index) == ["1", "2"]
        assert frame.loc["2", "B"] == 2
        assert frame.loc["1", "B"] == "a"
        assert frame.loc["2", "A"] is None
