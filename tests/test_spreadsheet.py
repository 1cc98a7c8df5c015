"""
Unit tests for the spreadsheet document model.

Covers cell addressing, regions, worksheets and workbooks, and the reduction of
a workbook to publishing operations.
"""

from datetime import date

import pytest

from gridfill.spreadsheet.model import (
    CellRef,
    Region,
    Size,
    col_to_letter,
    letter_to_col,
    parse_a1,
    quote_sheet_name,
)
from gridfill.spreadsheet.operations import (
    CreateSheet,
    MergeCells,
    SetFormula,
    SetValues,
    op_from_dict,
    workbook_to_operations,
)
from gridfill.spreadsheet.workbook import Cell, Workbook, Worksheet


class TestColumnLetterConversion:
    """Test conversion between column indices and letters."""

    @pytest.mark.parametrize("col, letters", [(0, "A"), (25, "Z"), (26, "AA"), (701, "ZZ"), (702, "AAA")])
    def test_round_trip(self, col, letters):
        """Columns convert to letters and back."""
        assert col_to_letter(col) == letters
        assert letter_to_col(letters) == col

    def test_lowercase_letters(self):
        """Lowercase column letters are accepted."""
        assert letter_to_col("ab") == 27


class TestParseA1:
    """Test cell address parsing."""

    def test_plain_cell(self):
        """An unqualified address has no sheet and 0-indexed coordinates."""
        assert parse_a1("C5") == (None, 4, 2)

    def test_absolute_markers_are_ignored(self):
        """Dollar signs do not change the position."""
        assert parse_a1("$B$3") == (None, 2, 1)

    def test_sheet_qualified(self):
        """Sheet-qualified addresses carry the sheet name."""
        assert parse_a1("Data!A1") == ("Data", 0, 0)

    def test_quoted_sheet_with_apostrophe(self):
        """Quoted sheet names may contain doubled apostrophes."""
        assert parse_a1("'Bob''s Sheet'!B2") == ("Bob's Sheet", 1, 1)

    @pytest.mark.parametrize("notation", ["", "A0", "11", "A", "!A1", "A1:B2"])
    def test_invalid(self, notation):
        """Malformed addresses raise ValueError."""
        with pytest.raises(ValueError):
            parse_a1(notation)


class TestQuoteSheetName:
    """Test sheet name quoting for formulas."""

    def test_simple_name_is_not_quoted(self):
        """Identifier-like names are used as is."""
        assert quote_sheet_name("Sheet1") == "Sheet1"

    def test_name_with_space_is_quoted(self):
        """Names with spaces are quoted."""
        assert quote_sheet_name("My Sheet") == "'My Sheet'"

    def test_apostrophe_is_doubled(self):
        """Apostrophes inside quoted names are doubled."""
        assert quote_sheet_name("Bob's") == "'Bob''s'"


class TestCellRef:
    """Test the CellRef value type."""

    def test_from_a1_uses_default_sheet(self):
        """Unqualified addresses take the given sheet."""
        assert CellRef.from_a1("B2", "Report") == CellRef("Report", 1, 1)

    def test_from_a1_keeps_explicit_sheet(self):
        """Explicit sheet names win over the default."""
        assert CellRef.from_a1("Other!B2", "Report") == CellRef("Other", 1, 1)

    def test_str_is_sheet_qualified(self):
        """String form includes the sheet."""
        assert str(CellRef("My Sheet", 2, 3)) == "'My Sheet'!D3"

    def test_to_a1(self):
        """to_a1 omits the sheet by default."""
        assert CellRef("Sheet1", 9, 0).to_a1() == "A10"


class TestRegion:
    """Test rectangular regions."""

    def test_single_cell_defaults(self):
        """Without end coordinates the region is one cell."""
        region = Region("Sheet1", 2, 3)
        assert region.size == Size(1, 1)
        assert region.to_a1() == "D3"

    def test_from_a1_range(self):
        """A1:C3 parses to a 3x3 region."""
        region = Region.from_a1("A1:C3", "Sheet1")
        assert (region.row, region.col, region.row_end, region.col_end) == (0, 0, 2, 2)
        assert region.area == 9

    def test_from_a1_qualified(self):
        """A sheet prefix on the start cell sets the sheet."""
        assert Region.from_a1("Data!B2:C4", "Sheet1").sheet == "Data"

    def test_to_a1_with_sheet(self):
        """to_a1 can qualify the range."""
        assert Region("Sheet1", 0, 0, 1, 1).to_a1(include_sheet=True) == "Sheet1!A1:B2"

    def test_negative_start_rejected(self):
        """Negative coordinates raise ValueError."""
        with pytest.raises(ValueError):
            Region("Sheet1", -1, 0)

    def test_inverted_rejected(self):
        """End before start raises ValueError."""
        with pytest.raises(ValueError):
            Region("Sheet1", 5, 0, 2, 0)

    def test_spanning(self):
        """spanning builds the rectangle between two cells."""
        region = Region.spanning(CellRef("S", 1, 1), CellRef("S", 3, 4))
        assert region == Region("S", 1, 1, 3, 4)

    def test_contains(self):
        """contains requires the same sheet and full inclusion."""
        outer = Region("S", 0, 0, 4, 4)
        assert outer.contains(Region("S", 1, 1, 2, 2))
        assert not outer.contains(Region("S", 3, 3, 5, 5))
        assert not outer.contains(Region("T", 1, 1, 2, 2))

    def test_intersect(self):
        """Overlapping regions intersect in the shared block."""
        first = Region("S", 0, 0, 2, 2)
        second = Region("S", 1, 1, 3, 3)
        assert first.intersect(second) == Region("S", 1, 1, 2, 2)
        assert first.intersect(Region("S", 5, 5)) is None

    def test_offset(self):
        """offset moves both corners."""
        assert Region("S", 0, 0, 1, 1).offset(2, 3) == Region("S", 2, 3, 3, 4)

    def test_hashable(self):
        """Equal regions hash alike."""
        assert len({Region("S", 0, 0), Region("S", 0, 0)}) == 1


class TestWorksheet:
    """Test worksheet cell storage."""

    def test_value_of_formula_cell(self):
        """value() returns formulas with a leading '='."""
        sheet = Worksheet("Sheet1")
        sheet.set_cell(0, 0, Cell(formula="SUM(A2:A3)"))
        assert sheet.value(0, 0) == "=SUM(A2:A3)"
        assert sheet.value(5, 5) is None

    def test_empty_name_rejected(self):
        """Sheets need a name."""
        with pytest.raises(ValueError):
            Worksheet("")

    def test_set_value_keeps_style(self):
        """set_value replaces content but not the style."""
        sheet = Worksheet("Sheet1")
        sheet.set_cell(0, 0, Cell(value="old", style="bold"))
        sheet.set_value(0, 0, "new")
        assert sheet.cell(0, 0).value == "new"
        assert sheet.cell(0, 0).style == "bold"

    def test_iter_cells_row_major(self):
        """Cells are yielded row by row, left to right."""
        sheet = Worksheet("Sheet1")
        sheet.set_cell(1, 0, Cell(value="c"))
        sheet.set_cell(0, 1, Cell(value="b"))
        sheet.set_cell(0, 0, Cell(value="a"))
        assert [cell.value for _, _, cell in sheet.iter_cells()] == ["a", "b", "c"]

    def test_iter_cells_in_region(self):
        """A region restricts iteration."""
        sheet = Worksheet("Sheet1")
        sheet.set_cell(0, 0, Cell(value="in"))
        sheet.set_cell(3, 3, Cell(value="out"))
        assert [cell.value for _, _, cell in sheet.iter_cells(Region("Sheet1", 0, 0, 1, 1))] == ["in"]

    def test_clear_region(self):
        """clear_region drops cells, merges and auto-height rows inside the block."""
        sheet = Worksheet("Sheet1")
        sheet.set_cell(0, 0, Cell(value="x"))
        sheet.set_cell(5, 0, Cell(value="kept"))
        sheet.add_merge(Region("Sheet1", 0, 0, 0, 1))
        sheet.auto_height_rows.add(1)
        sheet.clear_region(Region("Sheet1", 0, 0, 2, 2))
        assert sheet.cell(0, 0) is None
        assert sheet.cell(5, 0).value == "kept"
        assert sheet.merges == []
        assert sheet.auto_height_rows == set()

    def test_add_merge_replaces_overlap(self):
        """A new merge replaces merges it overlaps."""
        sheet = Worksheet("Sheet1")
        sheet.add_merge(Region("Sheet1", 0, 0, 0, 1))
        sheet.add_merge(Region("Sheet1", 0, 1, 1, 2))
        assert sheet.merges == [Region("Sheet1", 0, 1, 1, 2)]

    def test_max_row_and_col(self):
        """Extent includes merges."""
        sheet = Worksheet("Sheet1")
        assert (sheet.max_row, sheet.max_col) == (-1, -1)
        sheet.set_cell(1, 1, Cell(value=1))
        sheet.add_merge(Region("Sheet1", 2, 0, 3, 4))
        assert (sheet.max_row, sheet.max_col) == (3, 4)

    def test_copy_is_independent(self):
        """Copies do not share cells."""
        sheet = Worksheet("Sheet1")
        sheet.set_cell(0, 0, Cell(value="a"))
        clone = sheet.copy("Other")
        clone.cell(0, 0).value = "b"
        assert sheet.cell(0, 0).value == "a"
        assert clone.name == "Other"


class TestWorkbook:
    """Test sheet management."""

    def test_insert_and_order(self):
        """Sheets keep tab order; insert honours the index."""
        workbook = Workbook([Worksheet("A"), Worksheet("C")])
        workbook.insert_sheet(Worksheet("B"), 1)
        assert workbook.sheet_names == ["A", "B", "C"]

    def test_duplicate_rejected(self):
        """Duplicate names raise ValueError."""
        workbook = Workbook([Worksheet("A")])
        with pytest.raises(ValueError):
            workbook.add_sheet("A")

    def test_unknown_sheet(self):
        """Looking up a missing sheet raises KeyError."""
        with pytest.raises(KeyError):
            Workbook().sheet("Nope")

    def test_rename_updates_merges(self):
        """Renaming a sheet renames its merges."""
        workbook = Workbook([Worksheet("A")])
        workbook.sheet("A").add_merge(Region("A", 0, 0, 1, 1))
        workbook.rename_sheet("A", "B")
        assert workbook.sheet("B").merges[0].sheet == "B"

    def test_move_and_remove(self):
        """Sheets can be moved and removed."""
        workbook = Workbook([Worksheet("A"), Worksheet("B"), Worksheet("C")])
        workbook.move_sheet("C", 0)
        workbook.remove_sheet("A")
        assert workbook.sheet_names == ["C", "B"]

    def test_copy_shares_native(self):
        """Workbook copies share the adapter handle but not the sheets."""
        native = object()
        workbook = Workbook([Worksheet("A")], native=native)
        clone = workbook.copy()
        assert clone.native is native
        assert clone.sheets[0] is not workbook.sheets[0]


class TestWorkbookToOperations:
    """Test reduction of a workbook to publishing operations."""

    def test_values_formulas_and_merges(self):
        """Each sheet yields CreateSheet, SetValues, SetFormula and MergeCells."""
        sheet = Worksheet("Report")
        sheet.set_cell(0, 0, Cell(value="Total"))
        sheet.set_cell(0, 1, Cell(formula="SUM(B2:B3)"))
        sheet.set_cell(1, 1, Cell(value=date(2024, 1, 31)))
        sheet.add_merge(Region("Report", 2, 0, 2, 1))
        ops = workbook_to_operations(Workbook([sheet]))

        assert ops[0] == CreateSheet(name="Report", rows=100, cols=26)
        assert ops[1] == SetValues(
            sheet="Report", row=0, col=0,
            values=[["Total", ""], ["", "2024-01-31"], ["", ""]],
        )
        assert ops[2] == SetFormula(sheet="Report", row=0, col=1, formula="SUM(B2:B3)")
        assert ops[3] == MergeCells(sheet="Report", row_start=2, col_start=0, row_end=2, col_end=1)

    def test_hidden_sheets_skipped(self):
        """Hidden sheets are not published."""
        hidden = Worksheet("Template")
        hidden.hidden = True
        ops = workbook_to_operations(Workbook([hidden, Worksheet("Out")]))
        assert [op.name for op in ops if isinstance(op, CreateSheet)] == ["Out"]

    def test_empty_sheet_only_created(self):
        """An empty sheet produces only its CreateSheet."""
        ops = workbook_to_operations(Workbook([Worksheet("Empty")]))
        assert len(ops) == 1

    @pytest.mark.parametrize("op", [
        CreateSheet(name="S", rows=10, cols=3),
        SetValues(sheet="S", row=0, col=0, values=[[1, "a"]]),
        SetFormula(sheet="S", row=1, col=1, formula="A1*2"),
        MergeCells(sheet="S", row_start=0, col_start=0, row_end=1, col_end=1),
    ])
    def test_dict_round_trip(self, op):
        """Operations survive to_dict / op_from_dict."""
        assert op_from_dict(op.to_dict()) == op

    def test_unknown_type(self):
        """Unknown operation types raise ValueError."""
        with pytest.raises(ValueError):
            op_from_dict({"type": "Explode"})
