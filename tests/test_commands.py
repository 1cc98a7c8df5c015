"""
Unit tests for command parsing and command tree construction.
"""

import pytest

from gridfill.commands.nodes import (
    AreaCommand,
    Direction,
    EachCommand,
    FormulaParams,
    FormulaStrategy,
    GroupOrder,
    IfCommand,
    ImageCommand,
)
from gridfill.commands.parser import (
    parse_annotation,
    parse_attributes,
    parse_declaration,
    parse_formula_params,
    parse_params,
    parse_template,
    split_annotation,
    strip_commands,
)
from gridfill.commands.tree import build_tree
from gridfill.exceptions import (
    EmptyEachRegionError,
    InvalidAttributeError,
    MalformedCommandError,
    MissingAttributeError,
    OverlappingCommandsError,
    RegionOutOfBoundsError,
    UnknownCommandError,
)
from gridfill.spreadsheet.model import CellRef, Region
from tests.helpers.templates import make_sheet, make_workbook

A1 = CellRef("Sheet1", 0, 0)


def _command(text: str, anchor: str = "A1", sequence: int = 0):
    return parse_declaration(text, CellRef.from_a1(anchor, "Sheet1"), sequence)


class TestParseAttributes:
    """Test key="value" parsing."""

    def test_double_and_single_quotes(self):
        """Both quote styles are accepted."""
        assert parse_attributes('a="1" b=\'2\'') == {"a": "1", "b": "2"}

    def test_nested_quotes(self):
        """A value quoted one way may contain the other quote."""
        assert parse_attributes('select="e.city == \'Rome\'"') == {"select": "e.city == 'Rome'"}

    def test_typographic_quotes(self):
        """Curly quotes pasted from word processors work."""
        assert parse_attributes("items=“employees”") == {"items": "employees"}

    def test_bare_values_and_commas(self):
        """Unquoted values run to the next separator; commas separate pairs."""
        assert parse_attributes("cols=2, rows=3") == {"cols": "2", "rows": "3"}

    def test_unterminated(self):
        """A missing closing quote is malformed."""
        with pytest.raises(MalformedCommandError):
            parse_attributes('items="employees')

    def test_bracket_list(self):
        """A bracketed list value is returned as the text between the brackets."""
        attrs = parse_attributes('condition="ok" areas=["A2:C2","A3:C3"] lastCell="C2"')
        assert attrs == {"condition": "ok", "areas": '"A2:C2","A3:C3"', "lastCell": "C2"}

    def test_unterminated_list(self):
        """A missing closing bracket is malformed."""
        with pytest.raises(MalformedCommandError, match="Unterminated list"):
            parse_attributes('areas=["A2:C2"')

    def test_duplicate_key(self):
        """Keys may appear only once."""
        with pytest.raises(MalformedCommandError):
            parse_attributes('a="1" a="2"')

    def test_stray_text(self):
        """Text that is not key=value is malformed."""
        with pytest.raises(MalformedCommandError):
            parse_attributes('items="x" oops')


class TestParseDeclaration:
    """Test parsing single jx: declarations."""

    def test_area(self):
        """An area needs only lastCell."""
        command = _command('jx:area(lastCell="C5")')
        assert isinstance(command, AreaCommand)
        assert command.region == Region("Sheet1", 0, 0, 4, 2)

    def test_each_with_all_attributes(self):
        """Optional each attributes are converted to their types."""
        command = _command(
            'jx:each(items="employees" var="e" varIndex="i" direction="right" '
            'select="e.salary > 10" orderBy="e.name DESC" groupBy="department" '
            'groupOrder="desc" multisheet="names" lastCell="B2")',
            anchor="A2",
        )
        assert isinstance(command, EachCommand)
        assert command.items == "employees"
        assert command.var == "e"
        assert command.var_index == "i"
        assert command.direction is Direction.RIGHT
        assert command.select == "e.salary > 10"
        assert command.order_by == "e.name DESC"
        assert command.group_by == "department"
        assert command.group_order is GroupOrder.DESC
        assert command.multisheet == "names"
        assert command.region == Region("Sheet1", 1, 0, 1, 1)

    def test_each_defaults(self):
        """Direction defaults to DOWN."""
        command = _command('jx:each(items="xs" var="x" lastCell="A1")')
        assert command.direction is Direction.DOWN
        assert command.select is None

    def test_image_type_normalized(self):
        """imageType is upper-cased and scales are floats."""
        command = _command('jx:image(src="logo" imageType="png" scaleX="0.5" lastCell="B2")')
        assert isinstance(command, ImageCommand)
        assert command.image_type == "PNG"
        assert command.scale_x == 0.5
        assert command.scale_y == 1.0

    def test_whitespace_tolerated(self):
        """Spaces around the name and parentheses are allowed."""
        command = _command('  jx:if ( condition="x" lastCell="A1" )  ')
        assert isinstance(command, IfCommand)

    def test_unknown_command(self):
        """Unknown names are rejected with the anchor as location."""
        with pytest.raises(UnknownCommandError) as exc_info:
            _command('jx:loop(lastCell="A1")', anchor="B3")
        assert exc_info.value.location == "Sheet1!B3"

    def test_missing_last_cell(self):
        """Every command requires lastCell."""
        with pytest.raises(MissingAttributeError):
            _command('jx:area()')

    def test_missing_required(self):
        """each requires items and var."""
        with pytest.raises(MissingAttributeError):
            _command('jx:each(items="xs" lastCell="A1")')

    def test_invalid_direction(self):
        """direction must be DOWN or RIGHT."""
        with pytest.raises(InvalidAttributeError):
            _command('jx:each(items="xs" var="x" direction="UP" lastCell="A1")')

    def test_invalid_last_cell(self):
        """lastCell must be an address."""
        with pytest.raises(InvalidAttributeError):
            _command('jx:area(lastCell="nowhere")')

    def test_last_cell_on_other_sheet(self):
        """lastCell must stay on the anchor's sheet."""
        with pytest.raises(InvalidAttributeError):
            _command('jx:area(lastCell="Other!C3")')

    def test_empty_required_value(self):
        """Required expressions may not be blank."""
        with pytest.raises(InvalidAttributeError):
            _command('jx:if(condition=" " lastCell="A1")')

    def test_malformed(self):
        """Missing parentheses are malformed."""
        with pytest.raises(MalformedCommandError):
            _command('jx:area lastCell="A1"')

    def test_if_else_area(self):
        """The second entry of areas is the else block."""
        command = _command('jx:if(condition="ok" lastCell="C2" areas=["A2:C2","A4:C4"])', anchor="A2")
        assert command.else_area == Region.from_a1("A4:C4", "Sheet1")

    def test_if_single_area(self):
        """An areas list restating only the if block has no else block."""
        command = _command('jx:if(condition="ok" lastCell="C2" areas=["A2:C2"])', anchor="A2")
        assert command.else_area is None

    @pytest.mark.parametrize("areas", [
        '["A2:C2","A4:C4","A6:C6"]',
        '["A2:C2","nope"]',
        '["A2:C2","Other!A4:C4"]',
    ])
    def test_if_invalid_areas(self, areas):
        """Too many ranges, bad ranges and ranges on other sheets are rejected."""
        with pytest.raises(InvalidAttributeError):
            _command(f'jx:if(condition="ok" lastCell="C2" areas={areas})', anchor="A2")

    def test_unknown_attribute_ignored(self):
        """Unknown attributes only produce a warning."""
        command = _command('jx:area(lastCell="A1" color="red")')
        assert isinstance(command, AreaCommand)


class TestAnnotations:
    """Test multi-line annotations."""

    def test_split_annotation(self):
        """Command lines are separated from ordinary text."""
        commands, other = split_annotation('Author note\njx:area(lastCell="A1")')
        assert commands == ['jx:area(lastCell="A1")']
        assert other == ["Author note"]

    def test_strip_commands(self):
        """Only non-command text survives."""
        assert strip_commands('jx:area(lastCell="A1")\nkeep me') == "keep me"
        assert strip_commands('jx:area(lastCell="A1")') is None
        assert strip_commands(None) is None

    def test_parse_annotation_sequences(self):
        """Declarations are numbered from sequence_start in order."""
        commands = parse_annotation(
            'jx:area(lastCell="B2")\njx:each(items="xs" var="x" lastCell="B2")', A1, 5
        )
        assert [c.sequence for c in commands] == [5, 6]
        assert isinstance(commands[0], AreaCommand)

    def test_parse_template_reading_order(self):
        """Commands are collected sheet by sheet, row by row."""
        first = make_sheet("First", comments={
            "A2": 'jx:each(items="xs" var="x" lastCell="A2")',
            "A1": 'jx:area(lastCell="A2")',
        })
        second = make_sheet("Second", comments={"A1": 'jx:area(lastCell="A1")'})
        commands = parse_template(make_workbook(first, second))
        assert [(c.anchor.sheet, c.anchor.row, c.sequence) for c in commands] == [
            ("First", 0, 0), ("First", 1, 1), ("Second", 0, 2),
        ]


class TestParams:
    """Test jx:params declarations on formula cells."""

    def test_parse_params(self):
        """defaultValue and formulaStrategy are read; case of the strategy is ignored."""
        params = parse_params('jx:params(defaultValue="1" formulaStrategy="by_row")', A1)
        assert params == FormulaParams(default_value="1", strategy=FormulaStrategy.BY_ROW)

    def test_no_params(self):
        """Annotations without jx:params give None."""
        assert parse_params('jx:area(lastCell="A1")', A1) is None
        assert parse_params(None, A1) is None

    def test_invalid_strategy(self):
        """Unknown strategies are invalid attributes."""
        with pytest.raises(InvalidAttributeError):
            parse_params('jx:params(formulaStrategy="DIAGONAL")', A1)

    def test_duplicate_declaration(self):
        """A cell may carry one jx:params declaration."""
        with pytest.raises(MalformedCommandError):
            parse_params('jx:params(defaultValue="1")\njx:params(defaultValue="2")', A1)

    def test_params_are_not_commands(self):
        """jx:params lines next to commands are skipped by the command parser."""
        commands = parse_annotation('jx:area(lastCell="B2")\njx:params(defaultValue="0")', A1)
        assert [type(c) for c in commands] == [AreaCommand]

    def test_parse_formula_params(self):
        """Params are collected for formula cells only."""
        sheet = make_sheet(
            "Sheet1",
            {"A1": "=SUM(B1)", "A2": "text"},
            {"A1": 'jx:params(defaultValue="")', "A2": 'jx:params(defaultValue="1")'},
        )
        assert parse_formula_params(make_workbook(sheet)) == {A1: FormulaParams(default_value="")}


class TestBuildTree:
    """Test nesting of commands by containment."""

    def test_each_nested_in_area(self):
        """Commands attach to the area holding them."""
        area = _command('jx:area(lastCell="C4")')
        each = _command('jx:each(items="xs" var="x" lastCell="C2")', anchor="A2", sequence=1)
        roots = build_tree([each, area])
        assert len(roots) == 1
        assert roots[0].command is area
        assert [child.command for child in roots[0].children] == [each]

    def test_innermost_container_wins(self):
        """A command nests in the smallest container holding its anchor."""
        area = _command('jx:area(lastCell="D6")')
        outer = _command('jx:each(items="ds" var="d" lastCell="D4")', anchor="A2", sequence=1)
        inner = _command('jx:each(items="d.xs" var="x" lastCell="D3")', anchor="B3", sequence=2)
        roots = build_tree([area, outer, inner])
        outer_node = roots[0].children[0]
        assert outer_node.command is outer
        assert outer_node.children[0].command is inner

    def test_same_region_declaration_order(self):
        """For identical regions the earlier declaration is the outer one."""
        area = _command('jx:area(lastCell="B2")')
        each = _command('jx:each(items="xs" var="x" lastCell="B2")', anchor="A2", sequence=1)
        cond = _command('jx:if(condition="x > 1" lastCell="B2")', anchor="A2", sequence=2)
        roots = build_tree([area, cond, each])
        each_node = roots[0].children[0]
        assert each_node.command is each
        assert each_node.children[0].command is cond

    def test_children_sorted(self):
        """Siblings are ordered top to bottom, then left to right."""
        area = _command('jx:area(lastCell="D4")')
        right = _command('jx:if(condition="true" lastCell="D1")', anchor="C1", sequence=1)
        left = _command('jx:if(condition="true" lastCell="B1")', anchor="A1", sequence=2)
        below = _command('jx:if(condition="true" lastCell="A3")', anchor="A3", sequence=3)
        roots = build_tree([area, below, right, left])
        assert [child.command for child in roots[0].children] == [left, right, below]

    def test_roots_sorted_by_sheet_order(self):
        """Areas are ordered by tab order when it is given."""
        first = parse_declaration('jx:area(lastCell="A1")', CellRef("B", 0, 0), 0)
        second = parse_declaration('jx:area(lastCell="A1")', CellRef("A", 0, 0), 1)
        roots = build_tree([first, second], ["B", "A"])
        assert [root.command for root in roots] == [first, second]

    def test_outside_area(self):
        """Commands outside every area are rejected."""
        area = _command('jx:area(lastCell="A1")')
        each = _command('jx:each(items="xs" var="x" lastCell="A5")', anchor="A5", sequence=1)
        with pytest.raises(RegionOutOfBoundsError):
            build_tree([area, each])

    def test_extends_past_parent(self):
        """A child region must fit inside its parent."""
        area = _command('jx:area(lastCell="B2")')
        each = _command('jx:each(items="xs" var="x" lastCell="C2")', anchor="A2", sequence=1)
        with pytest.raises(RegionOutOfBoundsError):
            build_tree([area, each])

    def test_overlapping_siblings(self):
        """Siblings may not share cells."""
        area = _command('jx:area(lastCell="D4")')
        first = _command('jx:grid(headers="h" data="d" lastCell="B2")', anchor="A1", sequence=1)
        second = _command('jx:grid(headers="h" data="d" lastCell="C3")', anchor="B2", sequence=2)
        with pytest.raises(OverlappingCommandsError):
            build_tree([area, first, second])

    def test_overlapping_areas(self):
        """Areas on the same sheet may not overlap."""
        first = _command('jx:area(lastCell="B2")')
        second = _command('jx:area(lastCell="C3")', anchor="B2", sequence=1)
        with pytest.raises(OverlappingCommandsError):
            build_tree([first, second])

    def test_negative_each_extent(self):
        """An each whose lastCell precedes its anchor is empty."""
        area = _command('jx:area(lastCell="D4")')
        each = _command('jx:each(items="xs" var="x" lastCell="A1")', anchor="B2", sequence=1)
        with pytest.raises(EmptyEachRegionError):
            build_tree([area, each])

    def test_walk_depth(self):
        """walk yields parents before children with their depth."""
        area = _command('jx:area(lastCell="B2")')
        each = _command('jx:each(items="xs" var="x" lastCell="B2")', anchor="A2", sequence=1)
        roots = build_tree([area, each])
        assert [(depth, node.command) for depth, node in roots[0].walk()] == [(0, area), (1, each)]

    def test_else_branch(self):
        """An if with an else block carries it as else_branch; commands inside nest there."""
        area = _command('jx:area(lastCell="C6")')
        cond = _command('jx:if(condition="ok" lastCell="C2" areas=["A2:C2","A5:C5"])', anchor="A2", sequence=1)
        inner = _command('jx:if(condition="more" lastCell="A5")', anchor="A5", sequence=2)
        roots = build_tree([area, cond, inner])
        if_node = roots[0].children[0]
        assert if_node.command is cond
        assert if_node.else_branch.is_else
        assert if_node.else_branch.region == Region.from_a1("A5:C5", "Sheet1")
        assert [child.command for child in if_node.else_branch.children] == [inner]
        assert [child.command for child in roots[0].children] == [cond]
        assert [depth for depth, _ in roots[0].walk()] == [0, 1, 2, 3]

    def test_else_overlaps_if_block(self):
        """The else block may not share cells with its if block."""
        area = _command('jx:area(lastCell="C6")')
        cond = _command('jx:if(condition="ok" lastCell="C3" areas=["A2:C3","A3:C4"])', anchor="A2", sequence=1)
        with pytest.raises(OverlappingCommandsError, match="else block"):
            build_tree([area, cond])
