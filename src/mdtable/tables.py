"""Markdown tables with formula directives.

A table is a run of lines starting with ``|``.  The HTML comment directly
below it carries its directive, and any comment lines right after that
continue it::

    | Item | Price | Qty | Total |
    |------|-------|-----|-------|
    | Tea  | 1.50  | 10  |       |
    <!-- md-table: id="orders"; D_ = B_ * C_ -->

Directive items are separated by ``;``.  ``id="..."`` names the table for
``from("...")`` lookups in other tables, every other item is a formula.

:func:`process_document` evaluates every table's formulas, re-renders the
tables with aligned columns and writes failed formulas back as marker
comments below the directive.  Markers from an earlier run are replaced, so
processing a processed document changes nothing.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from mdtable.config import DEFAULT_CONFIG
from mdtable.formulas.errors import FormulaParseError
from mdtable.formulas.statements import apply_formulas
from mdtable.formulas.tokenizer import TokenKind, tokenize
from mdtable.logging import EventType, emit_error, emit_info, emit_warning
from mdtable.logging.events import TABLE_CYCLE_ERROR, TABLE_ID_ERROR

DIRECTIVE_MARKER = "md-table:"

_ID_RE = re.compile(r"""^id\s*=\s*(?:"([^"]*)"|'([^']*)')$""")
_TABLE_SPEC_RE = re.compile(r"table:(\d+):(\d+)\Z")


# ---------------------------------------------------------------------------
# Line classification
# ---------------------------------------------------------------------------


def is_table_row(line: str) -> bool:
    """A table row starts with ``|`` and has at least two pipes."""
    trimmed = line.strip()
    return trimmed.startswith("|") and trimmed.count("|") >= 2


def parse_table_row(line: str) -> list[str]:
    """Split ``| a | b |`` into ``["a", "b"]``."""
    content = line.strip()
    if content.startswith("|"):
        content = content[1:]
    if content.endswith("|"):
        content = content[:-1]
    return [cell.strip() for cell in content.split("|")]


def is_separator_cell(cell: str) -> bool:
    return bool(cell) and all(c in "-: " for c in cell)


def is_comment_line(line: str) -> bool:
    trimmed = line.strip()
    return trimmed.startswith("<!--") and trimmed.endswith("-->")


def is_directive_comment(line: str) -> bool:
    trimmed = line.strip()
    return trimmed.startswith("<!--") and DIRECTIVE_MARKER in trimmed


def is_error_marker(line: str, marker: str = "md-table-error") -> bool:
    trimmed = line.strip()
    return is_comment_line(trimmed) and trimmed[4:].lstrip().startswith(f"{marker}:")


def _fence_of(line: str) -> str | None:
    trimmed = line.lstrip()
    for fence in ("```", "~~~"):
        if trimmed.startswith(fence):
            return fence
    return None


# ---------------------------------------------------------------------------
# Directives
# ---------------------------------------------------------------------------


@dataclass
class Directive:
    table_id: str | None = None
    formulas: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def extract_directive_items(line: str) -> list[str]:
    """Return the ``;``-separated items of one comment line."""
    content = line.strip()
    if content.startswith("<!--"):
        content = content[4:]
    if content.endswith("-->"):
        content = content[:-3]
    content = content.strip()
    if content.startswith(DIRECTIVE_MARKER):
        content = content[len(DIRECTIVE_MARKER):]
    return [item.strip() for item in content.split(";") if item.strip()]


def parse_directive(lines: list[str]) -> Directive:
    """Collect the table id and formulas from directive comment lines."""
    directive = Directive()
    for line in lines:
        for item in extract_directive_items(line):
            m = _ID_RE.match(item)
            if m is None:
                directive.formulas.append(item)
                continue
            table_id = m.group(1) if m.group(1) is not None else m.group(2)
            if not table_id.strip():
                directive.errors.append("table id must not be empty")
            elif directive.table_id is not None:
                directive.errors.append(
                    f"table already has id '{directive.table_id}', ignoring id '{table_id}'"
                )
            else:
                directive.table_id = table_id
    return directive


# ---------------------------------------------------------------------------
# Locating tables
# ---------------------------------------------------------------------------


@dataclass
class TableBlock:
    """One table found in a document.

    Attributes:
        start: Index of the first table row in the document's lines.
        end: Index just past the table's directive and marker lines.
        rows: The raw table rows.
        comments: Directive and continuation comment lines.
    """

    start: int
    end: int
    rows: list[str]
    comments: list[str]
    directive: Directive

    @property
    def line_number(self) -> int:
        return self.start + 1

    def grid(self) -> list[list[str]]:
        return [parse_table_row(row) for row in self.rows]


def find_tables(lines: list[str], error_marker: str = "md-table-error") -> list[TableBlock]:
    """Locate tables outside fenced code blocks."""
    blocks: list[TableBlock] = []
    fence: str | None = None
    i = 0
    n = len(lines)

    while i < n:
        line = lines[i]
        line_fence = _fence_of(line)
        if fence is not None:
            if line_fence == fence:
                fence = None
            i += 1
            continue
        if line_fence is not None:
            fence = line_fence
            i += 1
            continue
        if not is_table_row(line):
            i += 1
            continue

        start = i
        while i < n and is_table_row(lines[i]):
            i += 1
        rows = lines[start:i]

        comments: list[str] = []
        if i < n and is_directive_comment(lines[i]):
            comments.append(lines[i])
            i += 1
            while i < n and is_comment_line(lines[i]) and not is_error_marker(lines[i], error_marker):
                comments.append(lines[i])
                i += 1
        while i < n and is_error_marker(lines[i], error_marker):
            i += 1

        blocks.append(TableBlock(start, i, rows, comments, parse_directive(comments)))

    return blocks


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def format_separator_cell(cell: str, width: int) -> str:
    left = cell.startswith(":")
    right = cell.endswith(":")
    if left and right:
        return ":" + "-" * max(width - 2, 0) + ":"
    if left:
        return ":" + "-" * max(width - 1, 0)
    if right:
        return "-" * max(width - 1, 0) + ":"
    return "-" * width


def render_table(grid: list[list[str]]) -> list[str]:
    """Render a grid as markdown lines, each column padded to its widest cell.

    Cells of the separator row (row 1) are redrawn as dashes at full width,
    keeping their ``:`` alignment markers.
    """
    num_cols = max((len(row) for row in grid), default=0)
    widths = [0] * num_cols
    for row in grid:
        for col, cell in enumerate(row):
            widths[col] = max(widths[col], len(cell))

    lines = []
    for row_idx, row in enumerate(grid):
        cells = []
        for col, cell in enumerate(row):
            if row_idx == 1 and is_separator_cell(cell):
                cells.append(format_separator_cell(cell, widths[col]))
            else:
                cells.append(cell.ljust(widths[col]))
        lines.append("| " + " | ".join(cells) + " |")
    return lines


def create_table(rows: int, cols: int) -> str:
    """Render an empty table with *rows* data rows and *cols* columns."""
    if rows <= 0 or cols <= 0:
        return ""
    grid = [[""] * cols, ["---"] * cols]
    grid.extend([""] * cols for _ in range(rows))
    return "\n".join(render_table(grid))


def parse_table_spec(spec: str) -> tuple[int, int]:
    """Parse ``table:ROWS:COLS``.

    Raises:
        ValueError: If *spec* is malformed or a dimension is zero.
    """
    m = _TABLE_SPEC_RE.match(spec.strip())
    if m is None:
        raise ValueError(f"invalid table spec {spec!r} (expected table:ROWS:COLS)")
    rows, cols = int(m.group(1)), int(m.group(2))
    if rows == 0 or cols == 0:
        raise ValueError(f"invalid table spec {spec!r}: rows and columns must be at least 1")
    return rows, cols


def format_error_marker(message: str, marker: str = "md-table-error") -> str:
    """One-line comment for a failed formula; newlines become `` | ``."""
    flat = " | ".join(part.rstrip() for part in message.splitlines())
    return f"<!-- {marker}: {flat} -->"


# ---------------------------------------------------------------------------
# Document processing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProcessingError:
    line: int  # 1-based line of the table's first row
    message: str
    table_id: str | None = None


@dataclass
class ProcessingResult:
    output: str
    errors: list[ProcessingError] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


def build_registry(blocks: list[TableBlock]) -> tuple[dict[str, list[list[str]]], dict[int, list[str]]]:
    """Map table ids to their grids as written in the document.

    Returns:
        ``(registry, id_errors)`` where *id_errors* maps a block's start
        index to messages about its id.  The first table with an id keeps it.
    """
    registry: dict[str, list[list[str]]] = {}
    first_line: dict[str, int] = {}
    id_errors: dict[int, list[str]] = {}

    for block in blocks:
        errors = list(block.directive.errors)
        table_id = block.directive.table_id
        if table_id is not None:
            if table_id in registry:
                errors.append(
                    f"duplicate table id '{table_id}' (first defined at line {first_line[table_id]})"
                )
                emit_warning(
                    EventType.duplicate_table_id,
                    f"duplicate table id '{table_id}'",
                    {"table_id": table_id, "line": block.line_number},
                    error_code=TABLE_ID_ERROR,
                )
            else:
                registry[table_id] = block.grid()
                first_line[table_id] = block.line_number
        if errors:
            id_errors[block.start] = errors

    return registry, id_errors


def table_dependencies(formulas: list[str]) -> list[str]:
    """Ids named by ``from("...")`` calls in *formulas*, in first-use order.

    Formulas that do not tokenize are skipped; evaluating them reports the
    error.
    """
    deps: list[str] = []
    for formula in formulas:
        _, sep, expr = formula.partition("=")
        try:
            tokens = tokenize(expr if sep else formula)
        except FormulaParseError:
            continue
        for i in range(len(tokens) - 2):
            word, paren, arg = tokens[i], tokens[i + 1], tokens[i + 2]
            if (
                word.kind is TokenKind.WORD
                and word.value.lower() == "from"
                and paren.kind is TokenKind.LPAREN
                and arg.kind is TokenKind.STRING
                and arg.value not in deps
            ):
                deps.append(arg.value)
    return deps


class TableEvaluator:
    """Evaluates tables so that ``from("id")`` sees the named table computed.

    A table's formulas run after those of every table it reads from.
    Tables that read from each other, directly or through a chain, form a
    cycle; their formulas are not run and each of them gets an error.
    Results are memoized per table, so each table is evaluated once.

    Attributes:
        registry: Table id to grid.  Holds the written grid until the
            owning table has been evaluated, then the computed one.
        grids: Evaluated grid per block start index.
        messages: Error messages per block start index.
    """

    def __init__(self, blocks: list[TableBlock], *, precision: int | None = None) -> None:
        self.blocks = blocks
        self.precision = precision
        self.registry, id_errors = build_registry(blocks)
        self.grids: dict[int, list[list[str]]] = {}
        self.messages: dict[int, list[str]] = {
            block.start: list(id_errors.get(block.start, [])) for block in blocks
        }
        self._by_start = {block.start: block for block in blocks}
        self._owners: dict[str, int] = {}
        for block in blocks:
            table_id = block.directive.table_id
            if table_id is not None:
                self._owners.setdefault(table_id, block.start)
        self._cyclic: set[int] = set()
        self._stack: list[int] = []

    def evaluate(self, block: TableBlock) -> list[list[str]]:
        """Evaluate *block* and the tables it depends on; return its grid."""
        if block.start in self.grids:
            return self.grids[block.start]

        self._stack.append(block.start)
        for dep in table_dependencies(block.directive.formulas):
            owner = self._owners.get(dep)
            if owner is None or owner in self.grids:
                continue
            if owner in self._stack:
                self._mark_cycle(self._stack[self._stack.index(owner):])
            else:
                self.evaluate(self._by_start[owner])
        self._stack.pop()

        grid = block.grid()
        if block.directive.formulas and block.start not in self._cyclic:
            results = apply_formulas(
                grid, block.directive.formulas, self.registry, precision=self.precision
            )
            self.messages[block.start].extend(msg for msg in results if msg is not None)

        self.grids[block.start] = grid
        table_id = block.directive.table_id
        if table_id is not None and self._owners.get(table_id) == block.start:
            self.registry[table_id] = grid
        return grid

    def evaluate_all(self) -> dict[str, list[list[str]]]:
        """Evaluate every block and return the registry of computed grids."""
        for block in self.blocks:
            self.evaluate(block)
        return self.registry

    def _mark_cycle(self, starts: list[int]) -> None:
        ids = [self._by_start[start].directive.table_id for start in starts]
        path = " -> ".join(ids + [ids[0]])
        for start in starts:
            if start not in self._cyclic:
                self._cyclic.add(start)
                self.messages[start].append(
                    f"circular table reference: {path} (formulas not evaluated)"
                )
        emit_error(
            EventType.table_cycle,
            f"circular table reference: {path}",
            {"tables": ids},
            error_code=TABLE_CYCLE_ERROR,
        )


def process_document(text: str, config: dict[str, Any] | None = None) -> ProcessingResult:
    """Evaluate and re-render every table in a markdown document.

    Tables are evaluated in dependency order, so ``from("id")`` sees the
    named table with its formulas applied wherever it sits in the document.

    Args:
        text: The document.
        config: Settings from :func:`mdtable.config.load_config`.

    Returns:
        The rewritten document and one error per failed formula, bad id or
        table caught in a reference cycle.
    """
    config = config or DEFAULT_CONFIG
    marker = config.get("error_marker", DEFAULT_CONFIG["error_marker"])
    inline_errors = config.get("inline_errors", DEFAULT_CONFIG["inline_errors"])
    precision = config.get("precision", DEFAULT_CONFIG["precision"])

    lines = text.split("\n")
    blocks = find_tables(lines, marker)
    evaluator = TableEvaluator(blocks, precision=precision)

    output: list[str] = []
    errors: list[ProcessingError] = []
    pos = 0
    for block in blocks:
        output.extend(lines[pos:block.start])
        pos = block.end

        grid = evaluator.evaluate(block)
        messages = evaluator.messages[block.start]

        output.extend(render_table(grid))
        output.extend(block.comments)
        if inline_errors:
            output.extend(format_error_marker(msg, marker) for msg in messages)

        table_id = block.directive.table_id
        errors.extend(ProcessingError(block.line_number, msg, table_id) for msg in messages)
        emit_info(
            EventType.table_processed,
            f"processed table at line {block.line_number}",
            {
                "line": block.line_number,
                "table_id": table_id,
                "formulas": len(block.directive.formulas),
                "errors": len(messages),
            },
        )

    output.extend(lines[pos:])
    emit_info(
        EventType.document_processed,
        f"processed {len(blocks)} tables",
        {"tables": len(blocks), "errors": len(errors)},
    )
    return ProcessingResult("\n".join(output), errors)
