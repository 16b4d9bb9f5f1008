"""
Unit tests for the markdown replacement layer.
"""
from docsed.sed_markdown import (
    can_use_native_replace,
    literal_replacement,
    parse_image_shorthand,
    parse_image_syntax,
    parse_markdown_replacement,
    parse_table_create,
    parse_table_from_pipes,
    parse_table_spec,
)


class TestParseMarkdownReplacement:
    """Tests for parse_markdown_replacement."""

    def test_plain_text(self):
        assert parse_markdown_replacement("hello") == ("hello", [])

    def test_bold(self):
        assert parse_markdown_replacement("**Done**") == ("Done", ["bold"])

    def test_bold_italic(self):
        assert parse_markdown_replacement("***Both***") == ("Both", ["bold", "italic"])

    def test_italic_and_strike_and_code(self):
        assert parse_markdown_replacement("*soft*") == ("soft", ["italic"])
        assert parse_markdown_replacement("~~gone~~") == ("gone", ["strikethrough"])
        assert parse_markdown_replacement("`x()`") == ("x()", ["code"])

    def test_heading(self):
        assert parse_markdown_replacement("## Summary") == ("Summary", ["heading2"])

    def test_heading_level_is_capped(self):
        _, formats = parse_markdown_replacement("####### Deep")
        assert formats == ["heading6"]

    def test_link(self):
        assert parse_markdown_replacement("[docs](https://x.io)") == ("docs", ["link:https://x.io"])

    def test_bullet(self):
        assert parse_markdown_replacement("- item") == ("item", ["bullet"])
        assert parse_markdown_replacement("+ item") == ("item", ["bullet"])

    def test_nested_bullet_carries_tabs(self):
        assert parse_markdown_replacement("    - deep") == ("\t\tdeep", ["bullet"])

    def test_bullet_with_inline_format(self):
        assert parse_markdown_replacement("- **key**") == ("key", ["bullet", "bold"])

    def test_numbered(self):
        assert parse_markdown_replacement("1. first") == ("first", ["numbered"])

    def test_hrule(self):
        assert parse_markdown_replacement("---") == ("\n", ["hrule"])

    def test_code_block_drops_language_line(self):
        assert parse_markdown_replacement("```python\\nx = 1```") == ("x = 1", ["codeblock"])

    def test_blockquote(self):
        assert parse_markdown_replacement("> quoted") == ("quoted", ["blockquote"])

    def test_footnote(self):
        assert parse_markdown_replacement("[^see appendix]") == ("see appendix", ["footnote"])

    def test_escaped_markers_are_literal(self):
        assert parse_markdown_replacement("\\*\\*not bold\\*\\*") == ("**not bold**", [])

    def test_newline_escape(self):
        assert parse_markdown_replacement("line1\\nline2") == ("line1\nline2", [])


class TestCanUseNativeReplace:
    """Tests for can_use_native_replace."""

    def test_plain_text(self):
        assert can_use_native_replace("plain words")
        assert can_use_native_replace("")

    def test_markdown_needs_manual(self):
        assert not can_use_native_replace("**b**")
        assert not can_use_native_replace("## Title")
        assert not can_use_native_replace("---")
        assert not can_use_native_replace("1. one")

    def test_backreference_needs_manual(self):
        assert not can_use_native_replace("${1}")

    def test_newline_escape_needs_manual(self):
        assert not can_use_native_replace("a\\nb")

    def test_link_and_image_need_manual(self):
        assert not can_use_native_replace("see [x](y)")
        assert not can_use_native_replace("![a](http://x/y.png)")
        assert not can_use_native_replace("!(https://x/y.png)")

    def test_brace_needs_manual(self):
        assert not can_use_native_replace("{b}x")


class TestImageSyntax:
    """Tests for image parsing."""

    def test_full_syntax(self):
        spec = parse_image_syntax('![logo](https://x/a.png "Logo"){width=100px h=50}')
        assert spec.url == "https://x/a.png"
        assert spec.alt == "logo"
        assert spec.caption == "Logo"
        assert (spec.width, spec.height) == (100, 50)

    def test_minimal(self):
        spec = parse_image_syntax("![](https://x/a.png)")
        assert spec.url == "https://x/a.png"
        assert spec.alt == ""
        assert (spec.width, spec.height) == (0, 0)

    def test_not_an_image(self):
        assert parse_image_syntax("plain") is None
        assert parse_image_syntax("![no url]") is None

    def test_shorthand(self):
        assert parse_image_shorthand("!(https://x/y.png)").url == "https://x/y.png"
        assert parse_image_shorthand("!(3)") is None


class TestTableSpecs:
    """Tests for table creation specs."""

    def test_create_with_header(self):
        spec = parse_table_create("|3x4:header|")
        assert (spec.rows, spec.cols, spec.header) == (3, 4, True)

    def test_create_rejects_bad_sizes(self):
        assert parse_table_create("|0x4|") is None
        assert parse_table_create("|3x4:foo|") is None
        assert parse_table_create("|3x99|") is None

    def test_pipe_table(self):
        spec = parse_table_from_pipes("| A | B |\\n|---|:-:|\\n| 1 | 2 |")
        assert (spec.rows, spec.cols) == (2, 2)
        assert spec.cells == (("A", "B"), ("1", "2"))

    def test_pipe_table_pads_short_rows(self):
        spec = parse_table_from_pipes("| A | B |\\n| 1 |")
        assert spec.cells == (("A", "B"), ("1", ""))

    def test_table_spec_prefers_create_form(self):
        spec = parse_table_spec("|2x2|")
        assert spec.cells is None
        assert parse_table_spec("not a table") is None


class TestLiteralReplacement:
    """Tests for literal_replacement."""

    def test_dollar_unescaped(self):
        assert literal_replacement("$$5") == "$5"
