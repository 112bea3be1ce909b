"""Tests for markdown table discovery, directives, rendering and document processing."""

from __future__ import annotations

import pytest

from mdtable.config import DEFAULT_CONFIG
from mdtable.logging import EventSink, set_log_dir
from mdtable.tables import (
    create_table,
    extract_directive_items,
    find_tables,
    format_error_marker,
    is_error_marker,
    is_separator_cell,
    is_table_row,
    parse_directive,
    parse_table_row,
    parse_table_spec,
    process_document,
    render_table,
    table_dependencies,
)


def _doc(*lines: str) -> str:
    return "\n".join(lines) + "\n"


DIV_BY_ZERO_MARKER = (
    "<!-- md-table-error: Failed to evaluate expression: | "
    "division by zero in scalar operation: 5 / 0 | A1 / 0 | ^^^^^^ -->"
)


# ────────────────────────────────────────────────────────────────
# Line helpers
# ────────────────────────────────────────────────────────────────


class TestLines:
    def test_is_table_row(self) -> None:
        assert is_table_row("| a | b |")
        assert is_table_row("  | a |")
        assert not is_table_row("| lonely")
        assert not is_table_row("a | b")
        assert not is_table_row("")

    def test_parse_table_row(self) -> None:
        assert parse_table_row("| a |  b  | |") == ["a", "b", ""]
        assert parse_table_row("|1|2|") == ["1", "2"]

    def test_separator_cell(self) -> None:
        assert is_separator_cell("---")
        assert is_separator_cell(":--:")
        assert not is_separator_cell("")
        assert not is_separator_cell("-x-")

    def test_error_marker(self) -> None:
        assert is_error_marker("<!-- md-table-error: boom -->")
        assert not is_error_marker("<!-- md-table: A1 = 1 -->")
        assert is_error_marker("<!-- calc-error: boom -->", "calc-error")


# ────────────────────────────────────────────────────────────────
# Directives
# ────────────────────────────────────────────────────────────────


class TestDirectives:
    def test_items(self) -> None:
        line = '<!-- md-table: id="sales"; C1 = A1 + B1;  ; D_ = A_ -->'
        assert extract_directive_items(line) == ['id="sales"', "C1 = A1 + B1", "D_ = A_"]

    def test_continuation_items(self) -> None:
        assert extract_directive_items("<!-- let x = 2 -->") == ["let x = 2"]

    def test_id_and_formulas(self) -> None:
        directive = parse_directive(['<!-- md-table: id="sales"; C1 = A1 + B1 -->'])
        assert directive.table_id == "sales"
        assert directive.formulas == ["C1 = A1 + B1"]
        assert directive.errors == []

    def test_single_quoted_id(self) -> None:
        assert parse_directive(["<!-- md-table: id='q1' -->"]).table_id == "q1"

    def test_empty_id(self) -> None:
        directive = parse_directive(['<!-- md-table: id="" -->'])
        assert directive.table_id is None
        assert directive.errors == ["table id must not be empty"]

    def test_second_id_is_ignored(self) -> None:
        directive = parse_directive(['<!-- md-table: id="a" -->', '<!-- id="b" -->'])
        assert directive.table_id == "a"
        assert directive.errors == ["table already has id 'a', ignoring id 'b'"]


class TestFindTables:
    def test_table_with_directive_and_continuation(self) -> None:
        lines = [
            "intro",
            "| A |",
            "| - |",
            "| 1 |",
            "<!-- md-table: A1 = 2 -->",
            "<!-- A1 = A1 + 1 -->",
            "outro",
        ]
        (block,) = find_tables(lines)
        assert block.start == 1
        assert block.end == 6
        assert block.line_number == 2
        assert block.directive.formulas == ["A1 = 2", "A1 = A1 + 1"]
        assert block.grid() == [["A"], ["-"], ["1"]]

    def test_plain_comment_is_not_a_directive(self) -> None:
        (block,) = find_tables(["| A |", "| - |", "<!-- just a note -->"])
        assert block.comments == []
        assert block.end == 2

    def test_skips_fenced_code(self) -> None:
        lines = ["```", "| A |", "| - |", "```", "~~~md", "| B |", "~~~", "| C |"]
        (block,) = find_tables(lines)
        assert block.rows == ["| C |"]

    def test_stale_markers_are_consumed(self) -> None:
        lines = ["| A |", "| - |", "<!-- md-table: A1 = 1 -->", "<!-- md-table-error: old -->", "after"]
        (block,) = find_tables(lines)
        assert block.comments == ["<!-- md-table: A1 = 1 -->"]
        assert block.end == 4


# ────────────────────────────────────────────────────────────────
# Rendering
# ────────────────────────────────────────────────────────────────


class TestRender:
    def test_pads_columns(self) -> None:
        grid = [["A", "B", "C"], ["---", "---", "---"], ["5", "10", "15"]]
        assert render_table(grid) == [
            "| A   | B   | C   |",
            "| --- | --- | --- |",
            "| 5   | 10  | 15  |",
        ]

    def test_alignment_markers(self) -> None:
        grid = [["Left", "Right", "Mid"], [":-", "-:", ":-:"], ["a", "b", "c"]]
        assert render_table(grid) == [
            "| Left | Right | Mid |",
            "| :--- | ----: | :-: |",
            "| a    | b     | c   |",
        ]

    def test_dash_in_data_row_is_data(self) -> None:
        grid = [["Name"], ["---"], ["-"]]
        assert render_table(grid) == ["| Name |", "| ---- |", "| -    |"]

    def test_create_table(self) -> None:
        assert create_table(2, 3) == "\n".join(
            [
                "|     |     |     |",
                "| --- | --- | --- |",
                "|     |     |     |",
                "|     |     |     |",
            ]
        )

    @pytest.mark.parametrize("rows,cols", [(0, 3), (3, 0), (-1, 2)])
    def test_create_empty(self, rows: int, cols: int) -> None:
        assert create_table(rows, cols) == ""

    def test_parse_table_spec(self) -> None:
        assert parse_table_spec("table:3:2") == (3, 2)
        assert parse_table_spec(" table:10:1 ") == (10, 1)

    @pytest.mark.parametrize("spec", ["table:3", "table:a:b", "3:2", "table:-1:2", "table:3:2:1"])
    def test_parse_table_spec_invalid(self, spec: str) -> None:
        with pytest.raises(ValueError, match="expected table:ROWS:COLS"):
            parse_table_spec(spec)

    def test_parse_table_spec_zero(self) -> None:
        with pytest.raises(ValueError, match="must be at least 1"):
            parse_table_spec("table:0:2")

    def test_error_marker_is_one_line(self) -> None:
        assert format_error_marker("first\nsecond  \nthird") == "<!-- md-table-error: first | second | third -->"


# ────────────────────────────────────────────────────────────────
# Document processing
# ────────────────────────────────────────────────────────────────


class TestProcessDocument:
    def test_evaluates_and_aligns(self) -> None:
        text = _doc(
            "| A | B | C |",
            "|---|---|---|",
            "| 5 | 10 | 0 |",
            "<!-- md-table: C1 = A1 + B1 -->",
        )
        result = process_document(text)
        assert not result.has_errors
        assert result.output == _doc(
            "| A   | B   | C   |",
            "| --- | --- | --- |",
            "| 5   | 10  | 15  |",
            "<!-- md-table: C1 = A1 + B1 -->",
        )

    def test_text_without_tables_is_unchanged(self) -> None:
        text = "# Title\n\nSome text.\n"
        assert process_document(text).output == text

    def test_missing_trailing_newline_is_kept(self) -> None:
        assert process_document("| A |\n| - |\n| 1 |").output == "| A |\n| - |\n| 1 |"

    def test_surrounding_text_is_preserved(self) -> None:
        text = _doc("before", "", "| A |", "| - |", "| 1 |", "", "after")
        assert process_document(text).output == text

    def test_continuation_formulas(self) -> None:
        text = _doc(
            "| A | B | C |",
            "| - | - | - |",
            "| 2 |   |   |",
            "<!-- md-table: B1 = A1 * 2 -->",
            "<!-- C1 = B1 + 1 -->",
        )
        result = process_document(text)
        assert result.output.splitlines()[2] == "| 2 | 4 | 5 |"

    def test_fenced_tables_are_untouched(self) -> None:
        text = _doc("```", "| A | B |", "|---|---|", "| 1 |   |", "<!-- md-table: B1 = A1 -->", "```")
        assert process_document(text).output == text

    def test_error_marker_written(self) -> None:
        text = _doc("| A | B |", "| - | - |", "| 5 | 1 |", "<!-- md-table: B1 = A1 / 0 -->")
        result = process_document(text)
        assert result.output == _doc(
            "| A | B |",
            "| - | - |",
            "| 5 | 1 |",
            "<!-- md-table: B1 = A1 / 0 -->",
            DIV_BY_ZERO_MARKER,
        )
        (err,) = result.errors
        assert err.line == 1
        assert err.message.startswith("Failed to evaluate expression:\ndivision by zero")

    def test_processing_is_idempotent(self) -> None:
        text = _doc(
            "| Item | Qty | Price | Total |",
            "|:-----|----:|------:|-------|",
            "| Tea | 10 | 1.50 | |",
            "| Cake | 2 | 3.25 | |",
            "<!-- md-table: D_ = B_ * C_; A3 = 1 / 0 -->",
        )
        once = process_document(text).output
        twice = process_document(once).output
        assert twice == once
        assert once.count("md-table-error") == 1

    def test_stale_marker_removed_after_fix(self) -> None:
        text = _doc("| A | B |", "| - | - |", "| 5 | 1 |", "<!-- md-table: B1 = A1 / 0 -->")
        broken = process_document(text).output
        fixed = broken.replace("<!-- md-table: B1 = A1 / 0 -->", "<!-- md-table: B1 = A1 / 5 -->")
        result = process_document(fixed)
        assert "md-table-error" not in result.output
        assert result.output.splitlines()[2] == "| 5 | 1 |"

    def test_inline_errors_disabled(self) -> None:
        text = _doc("| A | B |", "| - | - |", "| 5 | 1 |", "<!-- md-table: B1 = A1 / 0 -->")
        result = process_document(text, {**DEFAULT_CONFIG, "inline_errors": False})
        assert "md-table-error" not in result.output
        assert result.has_errors

    def test_custom_error_marker(self) -> None:
        text = _doc("| A |", "| - |", "| 1 |", "<!-- md-table: A1 = nope -->")
        config = {**DEFAULT_CONFIG, "error_marker": "calc-error"}
        once = process_document(text, config).output
        assert "<!-- calc-error: " in once
        assert process_document(once, config).output == once


class TestCrossTable:
    PRICES = (
        "| Item | Price |",
        "| ---- | ----- |",
        "| a    | 2     |",
        "| b    | 3     |",
    )

    def test_from_other_table(self) -> None:
        text = _doc(
            *self.PRICES,
            '<!-- md-table: id="prices" -->',
            "",
            "| Total |",
            "| ----- |",
            "|       |",
            '<!-- md-table: A1 = sum(from("prices", B_)) -->',
        )
        result = process_document(text)
        assert not result.has_errors
        assert result.output.splitlines()[8] == "| 5     |"

    COMPUTED = (
        "| A | B | C |",
        "| - | - | - |",
        "| 1 | 2 |   |",
        "| 3 | 4 |   |",
        '<!-- md-table: id="t"; C_ = A_ + B_ -->',
    )
    TOTAL = (
        "| Total |",
        "| ----- |",
        "|       |",
        '<!-- md-table: A1 = sum(from("t", C_)) -->',
    )

    def test_lookup_sees_computed_table(self) -> None:
        text = _doc(*self.COMPUTED, "", *self.TOTAL)
        first = process_document(text)
        assert not first.has_errors
        lines = first.output.splitlines()
        assert lines[2:4] == ["| 1 | 2 | 3 |", "| 3 | 4 | 7 |"]
        assert lines[8] == "| 10    |"
        assert process_document(first.output).output == first.output

    def test_lookup_before_definition(self) -> None:
        text = _doc(*self.TOTAL, "", *self.COMPUTED)
        result = process_document(text)
        assert not result.has_errors
        assert result.output.splitlines()[2] == "| 10    |"
        assert process_document(result.output).output == result.output

    def test_cycle_between_tables(self) -> None:
        text = _doc(
            "| A |", "| - |", "| 1 |", '<!-- md-table: id="a"; A1 = from("b", A1) + 1 -->',
            "",
            "| A |", "| - |", "| 5 |", '<!-- md-table: id="b"; A1 = from("a", A1) * 2 -->',
        )
        result = process_document(text)
        assert [e.line for e in result.errors] == [1, 6]
        message = "circular table reference: a -> b -> a (formulas not evaluated)"
        assert [e.message for e in result.errors] == [message, message]
        lines = result.output.splitlines()
        assert lines[2] == "| 1 |"
        assert lines[4] == f"<!-- md-table-error: {message} -->"
        assert lines[8] == "| 5 |"
        assert process_document(result.output).output == result.output

    def test_self_reference_is_a_cycle(self) -> None:
        text = _doc("| A |", "| - |", "| 1 |", '<!-- md-table: id="t"; A1 = from("t", A1) + 1 -->')
        (err,) = process_document(text).errors
        assert err.message == "circular table reference: t -> t (formulas not evaluated)"

    def test_table_outside_cycle_still_evaluated(self) -> None:
        text = _doc(
            "| A |", "| - |", "| 1 |", '<!-- md-table: id="a"; A1 = from("a", A1) -->',
            "",
            "| B |", "| - |", "|   |", '<!-- md-table: A1 = from("a", A1) + 1 -->',
        )
        result = process_document(text)
        assert [e.line for e in result.errors] == [1]
        lines = result.output.splitlines()
        assert lines[lines.index("| B |") + 2] == "| 2 |"

    def test_missing_table(self) -> None:
        text = _doc("| A |", "| - |", "|   |", '<!-- md-table: A1 = sum(from("nope")) -->')
        (err,) = process_document(text).errors
        assert "table 'nope' not found" in err.message

    def test_duplicate_ids(self) -> None:
        text = _doc(
            "| A |", "| - |", "| 1 |", '<!-- md-table: id="t" -->',
            "",
            "| B |", "| - |", "| 2 |", '<!-- md-table: id="t" -->',
            "",
            "| C |", "| - |", "|   |", '<!-- md-table: A1 = from("t", A1) -->',
        )
        result = process_document(text)
        (err,) = result.errors
        assert err.line == 6
        assert err.table_id == "t"
        assert err.message == "duplicate table id 't' (first defined at line 1)"
        # The first definition wins
        lines = result.output.splitlines()
        assert lines[lines.index("| C |") + 2] == "| 1 |"

    def test_empty_id_reported(self) -> None:
        text = _doc("| A |", "| - |", "| 1 |", '<!-- md-table: id="" -->')
        (err,) = process_document(text).errors
        assert err.message == "table id must not be empty"


class TestDocumentEvents:
    def test_events(self, tmp_path) -> None:
        set_log_dir(tmp_path)
        text = _doc(
            "| A |", "| - |", "| 1 |", '<!-- md-table: id="t" -->',
            "",
            "| B |", "| - |", "| 2 |", '<!-- md-table: id="t" -->',
        )
        process_document(text)

        sink = EventSink(tmp_path)
        assert len(sink.read_events(event_type="table_processed")) == 2
        (dup,) = sink.read_events(event_type="duplicate_table_id")
        assert dup["error_code"] == "table_id_error"
        assert dup["context"] == {"table_id": "t", "line": 6}
        (doc,) = sink.read_events(event_type="document_processed")
        assert doc["context"] == {"tables": 2, "errors": 1}

    def test_cycle_event(self, tmp_path) -> None:
        set_log_dir(tmp_path)
        text = _doc(
            "| A |", "| - |", "| 1 |", '<!-- md-table: id="a"; A1 = from("b", A1) -->',
            "",
            "| A |", "| - |", "| 2 |", '<!-- md-table: id="b"; A1 = from("a", A1) -->',
        )
        process_document(text)

        (cycle,) = EventSink(tmp_path).read_events(event_type="table_cycle")
        assert cycle["level"] == "error"
        assert cycle["error_code"] == "table_cycle_error"
        assert cycle["context"] == {"tables": ["a", "b"]}
        assert cycle["message"] == "circular table reference: a -> b -> a"


class TestTableDependencies:
    def test_string_ids_in_first_use_order(self) -> None:
        formulas = [
            'C_ = from("b", A_) + FROM("a", B1)',
            'let x = from("b", A1)',
            "D_ = C_ * 2",
        ]
        assert table_dependencies(formulas) == ["b", "a"]

    def test_variable_lookups_ignored(self) -> None:
        assert table_dependencies(['let m = A1:B2', 'C1 = from(m, A1)']) == []

    def test_untokenizable_formula_skipped(self) -> None:
        assert table_dependencies(['A1 = "open', 'B1 = from("t", A1)']) == ["t"]
