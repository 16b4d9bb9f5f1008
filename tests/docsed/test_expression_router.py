"""
Unit tests for expression routing and dry-run descriptions.
"""
from docsed.managers.expression_router import (
    can_batch_cell,
    classify_expression,
    classify_for_batch,
    describe_expression,
    dry_run_line,
    dry_run_lines,
    group_cell_expressions,
    is_merge_op,
    partition_expressions,
    pattern_validity,
)
from docsed.sed_expression import ExprKind
from docsed.sed_parser import parse_expression, parse_expressions


def kind(raw):
    return classify_expression(parse_expression(raw))


class TestClassifyExpression:
    """Tests for single-expression routing."""

    def test_commands(self):
        assert kind("d/x/") is ExprKind.COMMAND
        assert kind("y/ab/cd/") is ExprKind.COMMAND

    def test_table_and_cells(self):
        assert kind("s/|1|//") is ExprKind.TABLE
        assert kind("s/|1|[1,1]/x/") is ExprKind.CELL
        assert kind("s/{T=1!A1}/merge/") is ExprKind.CELL

    def test_positional(self):
        assert kind("s/^/x/") is ExprKind.POSITIONAL
        assert kind("s/^$/x/") is ExprKind.POSITIONAL

    def test_table_create(self):
        assert kind("s/TABLE/|2x2|/") is ExprKind.TABLE_CREATE

    def test_image_reference(self):
        assert kind("s/!(1)//") is ExprKind.IMAGE
        assert kind("s/{img=*}//") is ExprKind.IMAGE

    def test_native_needs_global_plain_text(self):
        assert kind("s/a/b/g") is ExprKind.NATIVE
        assert kind("s/a/b/") is ExprKind.MANUAL
        assert kind("s/a/**b**/g") is ExprKind.MANUAL
        assert kind("s/a/b/2") is ExprKind.MANUAL
        assert kind("s/(a)/\\1!/g") is ExprKind.MANUAL


class TestClassifyForBatch:
    """Tests for multi-expression routing."""

    def test_image_insert_has_own_queue(self):
        expr = parse_expression("s#LOGO#![a](http://i/a.png)#")
        assert classify_for_batch(expr) is ExprKind.IMAGE_INSERT

    def test_image_reference_with_image_replacement(self):
        """Swapping an existing image is not an image insertion."""
        expr = parse_expression("s#!(1)#![new](https://x/b.png)#")
        assert classify_for_batch(expr) is ExprKind.IMAGE
        assert partition_expressions([expr, parse_expression("s/a/b/g")]).manual == [(0, expr)]

    def test_slashes_with_alternate_delimiter_stay_native(self):
        expr = parse_expression("s#/path#/newpath#g")
        assert (expr.pattern, expr.replacement) == ("/path", "/newpath")
        assert classify_for_batch(expr) is ExprKind.NATIVE
        assert classify_expression(expr) is ExprKind.NATIVE

    def test_table_ops_share_cell_queue(self):
        assert classify_for_batch(parse_expression("s/|1|//")) is ExprKind.CELL

    def test_positional_first(self):
        assert classify_for_batch(parse_expression("s/$/end/")) is ExprKind.POSITIONAL


class TestPartition:
    """Tests for partition_expressions."""

    def test_queues(self):
        exprs = parse_expressions([
            "s/^/T/",
            "s/a/b/g",
            "s/c/d/",
            "d/e/",
            "s/{img=1}//",
            "s/|1|[1,1]/x/",
            "s/X/|2x2|/",
            "s/y/![a](http://i/a.png)/",
        ])
        partition = partition_expressions(exprs)
        assert [i for i, _ in partition.positional] == [0]
        assert [i for i, _ in partition.native] == [1]
        assert [i for i, _ in partition.manual] == [2, 3, 4]
        assert [i for i, _ in partition.cell] == [5]
        assert [i for i, _ in partition.table_create] == [6]
        assert [i for i, _ in partition.images] == [7]


class TestCellGrouping:
    """Tests for can_batch_cell and group_cell_expressions."""

    def test_can_batch_single_cell(self):
        assert can_batch_cell(parse_expression("s/|1|[1,1]/x/"))

    def test_cannot_batch(self):
        assert not can_batch_cell(parse_expression("s/|1|[1,1]:old/x/"))
        assert not can_batch_cell(parse_expression("s/|1|[1,1:2,2]/x/"))
        assert not can_batch_cell(parse_expression("s/|1|[row:2]//"))
        assert not can_batch_cell(parse_expression("s/|1|[1,1]/merge/"))
        assert not can_batch_cell(parse_expression("s/|1|[*,1]/x/"))

    def test_merge_op_detection(self):
        assert is_merge_op(" Unmerge ")
        assert not is_merge_op("merged")

    def test_units(self):
        raws = [
            "s/|1|[1,1]/a/",
            "s/|1|[1,2]/b/",
            "s/|2|[1,1]/c/",
            "s/|1|[row:2]//",
            "s/|1|[1,1]/d/",
            "s/|1|//",
        ]
        indexed = list(enumerate(parse_expressions(raws)))
        units = group_cell_expressions(indexed)
        assert [[i for i, _ in unit] for unit in units] == [[0, 1], [2], [3], [4], [5]]


class TestDescribeExpression:
    """Tests for dry-run kind labels."""

    def describe(self, raw):
        return describe_expression(parse_expression(raw))

    def test_commands(self):
        assert self.describe("d/x/") == "delete"
        assert self.describe("a/x/y/") == "append-after"
        assert self.describe("i/x/y/") == "insert-before"
        assert self.describe("y/a/b/") == "transliterate"

    def test_cells(self):
        assert self.describe("s/|1|[2,3]/x/") == "cell |1|[2,3]"
        assert self.describe("s/|1|[*,2]/x/") == "cell |1|[0,2] (wildcard)"

    def test_tables(self):
        assert self.describe("s/|1|//") == "delete table 1"
        assert self.describe("s/{T=-1}/x/") == "table -1 op"
        assert self.describe("s/X/|2x2|/") == "create table"

    def test_other_kinds(self):
        assert self.describe("s/!(2)//") == "image"
        assert self.describe("s/^/x/") == "positional"
        assert self.describe("s/a/{b}x/g") == "brace"
        assert self.describe("s/a/b/g") == "native"
        assert self.describe("s/a/b/") == "manual"


class TestDryRun:
    """Tests for dry-run output lines."""

    def test_pattern_validity(self):
        assert pattern_validity(parse_expression("s/ok/x/")) == "ok"
        assert pattern_validity(parse_expression("s/(x/y/")).startswith("ERROR: invalid regex")
        assert pattern_validity(parse_expression("s/^/x/")) == "ok"

    def test_native_line(self):
        assert dry_run_line(1, parse_expression("s/foo/bar/g")) == "1\tnative\tok\ts/foo/bar/g"

    def test_nth_flag(self):
        assert dry_run_line(2, parse_expression("s/a/b/3")) == "2\tmanual\tok\ts/a/b/3"

    def test_brace_flags_column(self):
        assert dry_run_line(1, parse_expression("s/a/{b}x/g")) == "1\tbrace\tok\ts/a/x/g\t{b}"

    def test_long_replacement_truncated(self):
        line = dry_run_line(1, parse_expression("s/a/" + "x" * 50 + "/g"))
        assert line.endswith("/" + "x" * 37 + ".../g")

    def test_summary(self):
        lines = dry_run_lines(parse_expressions(["s/a/b/g", "d/c/"]))
        assert len(lines) == 4
        assert lines[-2:] == ["---", "dry-run: 2 expressions parsed, no changes made"]

    def test_without_summary(self):
        assert len(dry_run_lines(parse_expressions(["s/a/b/g"]), summary=False)) == 1
