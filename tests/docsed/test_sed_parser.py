"""
Unit tests for the sed expression parser.
"""
import pytest

from docsed.errors import ErrorCode, SedParseError, SedPatternError
from docsed.sed_expression import Command, TableSelector
from docsed.sed_parser import (
    apply_regex_flags,
    convert_replacement,
    extract_nth,
    parse_expression,
    parse_expressions,
    split_by_delim,
)
from docsed.sed_refs import OP_APPEND, OP_DELETE, OP_INSERT


class TestSplitByDelim:
    """Tests for split_by_delim."""

    def test_plain_split(self):
        assert split_by_delim("foo/bar/g", "/") == ["foo", "bar", "g"]

    def test_escaped_delimiter_is_literal(self):
        assert split_by_delim("a\\/b/c/", "/") == ["a/b", "c", ""]

    def test_other_escapes_are_kept(self):
        assert split_by_delim("a\\d+/x/", "/") == ["a\\d+", "x", ""]

    def test_custom_delimiter(self):
        assert split_by_delim("http://x#y#", "#") == ["http://x", "y", ""]


class TestConvertReplacement:
    """Tests for convert_replacement."""

    def test_backslash_backreference(self):
        assert convert_replacement("\\1-\\2") == "${1}-${2}"

    def test_dollar_backreference(self):
        assert convert_replacement("$1") == "${1}"

    def test_ampersand_is_whole_match(self):
        assert convert_replacement("[&]") == "[${0}]"

    def test_escaped_ampersand_is_literal(self):
        assert convert_replacement("a\\&b") == "a&b"

    def test_bare_dollar_is_escaped(self):
        assert convert_replacement("cost $5.00") == "cost ${5}.00"
        assert convert_replacement("$ sign") == "$$ sign"

    def test_escaped_dollar_is_literal(self):
        assert convert_replacement("\\$") == "$$"

    def test_newline_escape_is_kept(self):
        assert convert_replacement("a\\nb") == "a\\nb"

    def test_regex_literal_escapes_are_unescaped(self):
        assert convert_replacement("\\.\\(x\\)") == ".(x)"


class TestFlags:
    """Tests for flag helpers."""

    def test_case_insensitive_prefix(self):
        assert apply_regex_flags("foo", "gi") == "(?i)foo"

    def test_combined_inline_flags(self):
        assert apply_regex_flags("foo", "im") == "(?im)foo"

    def test_no_flags(self):
        assert apply_regex_flags("foo", "g") == "foo"

    def test_brace_block_is_ignored(self):
        assert apply_regex_flags("foo", "{i}") == "foo"

    def test_extract_nth(self):
        assert extract_nth("3") == 3
        assert extract_nth("g") == 0
        assert extract_nth("0") == 0


class TestParseSubstitute:
    """Tests for parse_expression with s commands."""

    def test_basic(self):
        expr = parse_expression("s/foo/bar/")
        assert expr.command is Command.SUBSTITUTE
        assert expr.pattern == "foo"
        assert expr.replacement == "bar"
        assert expr.global_ is False
        assert expr.raw == "s/foo/bar/"

    def test_global_and_nth(self):
        expr = parse_expression("s/a/b/g")
        assert expr.global_ is True
        assert parse_expression("s/a/b/2").nth_match == 2

    def test_missing_trailing_delimiter(self):
        expr = parse_expression("s/foo/bar")
        assert expr.pattern == "foo"
        assert expr.replacement == "bar"

    def test_alternate_delimiter(self):
        expr = parse_expression("s#a/b#c#g")
        assert expr.pattern == "a/b"
        assert expr.replacement == "c"

    def test_too_short_is_error(self):
        with pytest.raises(SedParseError):
            parse_expression("s/a")

    def test_empty_is_error(self):
        with pytest.raises(SedParseError):
            parse_expression("")

    def test_positional_pattern(self):
        assert parse_expression("s/^/Title\\n/").is_positional
        assert parse_expression("s/$/end/").is_positional
        assert not parse_expression("s/^foo/bar/").is_positional

    def test_invalid_regex_is_deferred(self):
        expr = parse_expression("s/(unclosed/x/")
        with pytest.raises(SedPatternError):
            expr.compile_pattern()

    def test_escaped_braces_stay_literal(self):
        expr = parse_expression("s/x/\\{literal\\}/")
        assert expr.replacement == "{literal}"
        assert expr.brace is None


class TestParseCommands:
    """Tests for d, a, i and y commands."""

    def test_delete(self):
        expr = parse_expression("d/^DRAFT/")
        assert expr.command is Command.DELETE
        assert expr.pattern == "^DRAFT"

    def test_delete_requires_pattern(self):
        with pytest.raises(SedParseError):
            parse_expression("d//")

    def test_append_keeps_raw_text(self):
        expr = parse_expression("a/^Intro/New line\\n/")
        assert expr.command is Command.APPEND
        assert expr.replacement == "New line\\n"

    def test_insert(self):
        expr = parse_expression("i/Summary/Note/")
        assert expr.command is Command.INSERT
        assert expr.pattern == "Summary"

    def test_transliterate(self):
        expr = parse_expression("y/abc/xyz/")
        assert expr.command is Command.TRANSLITERATE
        assert expr.pattern == "abc"
        assert expr.replacement == "xyz"

    def test_transliterate_length_mismatch(self):
        with pytest.raises(SedParseError, match="same length"):
            parse_expression("y/ab/x/")

    def test_word_starting_with_command_letter_is_not_a_command(self):
        with pytest.raises(SedParseError):
            parse_expression("delete")


class TestParseTableReferences:
    """Tests for table and cell reference patterns."""

    def test_legacy_cell(self):
        expr = parse_expression("s/|1|[2,3]/new/")
        assert expr.cell_ref.table == TableSelector(1)
        assert (expr.cell_ref.row, expr.cell_ref.col) == (2, 3)
        assert expr.pattern == ""

    def test_legacy_excel_cell_with_sub_pattern(self):
        expr = parse_expression("s/|2|[B1]:old/new/")
        assert (expr.cell_ref.row, expr.cell_ref.col) == (1, 2)
        assert expr.cell_ref.sub_pattern == "old"
        assert expr.pattern == "old"

    def test_legacy_row_delete(self):
        expr = parse_expression("s/|1|[row:2]//")
        assert expr.cell_ref.row_op.kind == OP_DELETE
        assert expr.cell_ref.row_op.target == 2

    def test_legacy_column_append(self):
        expr = parse_expression("s/|1|[col:$+]//")
        assert expr.cell_ref.col_op.kind == OP_APPEND

    def test_bare_table_reference(self):
        expr = parse_expression("s/|-1|//")
        assert expr.table_ref == TableSelector(-1)
        assert expr.cell_ref is None
        assert expr.pattern == ""

    def test_brace_table_cell(self):
        expr = parse_expression("s/{T=1!A1}/Name/")
        assert expr.cell_ref.table == TableSelector(1)
        assert (expr.cell_ref.row, expr.cell_ref.col) == (1, 1)

    def test_brace_table_range(self):
        expr = parse_expression("s/{T=1!A1:B2}/x/")
        assert expr.cell_ref.is_range
        assert (expr.cell_ref.end_row, expr.cell_ref.end_col) == (2, 2)

    def test_brace_row_insert(self):
        expr = parse_expression("s/{T=1!row=+2}//")
        assert expr.cell_ref.row_op.kind == OP_INSERT
        assert expr.cell_ref.row_op.target == 2

    def test_brace_whole_table(self):
        expr = parse_expression("s/{T=*}//")
        assert expr.table_ref.is_all
        assert expr.cell_ref is None

    def test_brace_create_becomes_pipe_replacement(self):
        expr = parse_expression("s/{T=3x2:header}PLACEHOLDER//")
        assert expr.replacement == "|3x2:header|"

    def test_table_index_zero_is_error(self):
        with pytest.raises(SedParseError) as exc_info:
            parse_expression("s/{T=0}//")
        assert "table index cannot be 0; use * for all" in str(exc_info.value)

    def test_invalid_create_size(self):
        with pytest.raises(SedParseError):
            parse_expression("s/{T=0x3}//")


class TestParseImageReferences:
    """Tests for image reference patterns."""

    def test_brace_image_position(self):
        expr = parse_expression("s/{img=2}//")
        assert expr.pattern == "!(2)"

    def test_brace_image_zero_is_error(self):
        with pytest.raises(SedParseError) as exc_info:
            parse_expression("s/{img=0}//")
        assert exc_info.value.code == ErrorCode.INVALID_IMAGE_REFERENCE

    def test_brace_image_all(self):
        assert parse_expression("s/{img=*}//").pattern == "!(*)"


class TestParseExpressions:
    """Tests for parse_expressions."""

    def test_all_parsed_in_order(self):
        exprs = parse_expressions(["s/a/b/", "d/c/"])
        assert [e.command for e in exprs] == [Command.SUBSTITUTE, Command.DELETE]

    def test_error_names_position_and_raw(self):
        with pytest.raises(SedParseError) as exc_info:
            parse_expressions(["s/a/b/", "bogus"])
        assert exc_info.value.message.startswith('expression 2 ("bogus"): ')
