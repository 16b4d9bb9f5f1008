"""
Unit tests for the formatting translator and request helpers.
"""
import re

from docsed import docs_helpers as helpers
from docsed.sed_brace import find_brace_exprs, parse_brace_expr
from docsed.sed_format import (
    RESET_TEXT_FIELDS,
    build_brace_break_requests,
    build_brace_inline_requests,
    build_brace_paragraph_style_requests,
    build_brace_text_style_requests,
    build_paragraph_reset_requests,
    build_paragraph_style_requests,
    build_structural_requests,
    build_text_style_requests,
    expand_template,
    has_brace_structural_features,
    has_paragraph_format,
    person_chip_email,
    render_brace_text,
    resolve_chip_url,
)


class TestExpandTemplate:
    """Tests for expand_template."""

    def test_groups_and_whole_match(self):
        match = re.search(r"(a)b", "xab")
        assert expand_template("${1}-${0}", match) == "a-ab"

    def test_literal_dollar(self):
        assert expand_template("$$5", None) == "$5"

    def test_missing_group_is_empty(self):
        match = re.search(r"(a)|(z)", "a")
        assert expand_template("[${2}]", match) == "[]"
        assert expand_template("[${7}]", match) == "[]"

    def test_no_match(self):
        assert expand_template("x${1}", None) == "x"

    def test_render_brace_text_decodes_newlines(self):
        assert render_brace_text("a\\nb", None) == "a\nb"


class TestBuildTextStyleRequests:
    """Tests for build_text_style_requests."""

    def test_bold_italic(self):
        requests = build_text_style_requests(["bold", "italic"], 1, 5)
        assert len(requests) == 1
        update = requests[0]['updateTextStyle']
        assert update['range'] == {'startIndex': 1, 'endIndex': 5}
        assert update['textStyle'] == {'bold': True, 'italic': True}
        assert update['fields'] == 'bold,italic'

    def test_code(self):
        update = build_text_style_requests(["code"], 1, 5)[0]['updateTextStyle']
        assert update['textStyle']['weightedFontFamily'] == {'fontFamily': 'Courier New'}
        assert 'backgroundColor' in update['textStyle']

    def test_color(self):
        update = build_text_style_requests(["color:#FF0000"], 1, 5)[0]['updateTextStyle']
        assert update['textStyle']['foregroundColor'] == {
            'color': {'rgbColor': {'red': 1.0, 'green': 0.0, 'blue': 0.0}}
        }

    def test_bookmark_chip_link(self):
        update = build_text_style_requests(["link:chip://bookmark/intro"], 1, 5)[0]['updateTextStyle']
        assert update['textStyle']['link'] == {'bookmarkId': 'intro'}

    def test_paragraph_formats_produce_nothing(self):
        assert build_text_style_requests(["heading2", "bullet"], 1, 5) == []


class TestBuildParagraphStyleRequests:
    """Tests for paragraph-level markdown formats."""

    def test_heading_and_bullet(self):
        requests = build_paragraph_style_requests(["heading2", "bullet"], 1, 10)
        assert requests[0]['updateParagraphStyle']['paragraphStyle'] == {'namedStyleType': 'HEADING_2'}
        assert requests[1]['createParagraphBullets']['bulletPreset'] == helpers.BULLET_PRESET_DISC

    def test_numbered(self):
        requests = build_paragraph_style_requests(["numbered"], 1, 10)
        assert requests[0]['createParagraphBullets']['bulletPreset'] == helpers.NUMBERED_PRESET

    def test_blockquote(self):
        requests = build_paragraph_style_requests(["blockquote"], 1, 10)
        style = requests[0]['updateParagraphStyle']['paragraphStyle']
        assert style['indentStart'] == {'magnitude': 36.0, 'unit': 'PT'}
        assert 'borderLeft' in style

    def test_reset(self):
        requests = build_paragraph_reset_requests(3, 8)
        assert [helpers.request_kind(r) for r in requests] == ['updateParagraphStyle', 'deleteParagraphBullets']

    def test_has_paragraph_format(self):
        assert has_paragraph_format(["bullet"])
        assert has_paragraph_format(["heading3"])
        assert not has_paragraph_format(["bold"])


class TestBraceRequests:
    """Tests for brace directive request builders."""

    def test_implicit_reset_then_flags(self):
        requests = build_brace_text_style_requests(parse_brace_expr("b"), 1, 4)
        assert len(requests) == 2
        assert requests[0]['updateTextStyle']['textStyle'] == {}
        assert requests[0]['updateTextStyle']['fields'] == ','.join(RESET_TEXT_FIELDS)
        assert requests[1]['updateTextStyle']['textStyle'] == {'bold': True}

    def test_no_reset(self):
        requests = build_brace_text_style_requests(parse_brace_expr("!0 b"), 1, 4)
        assert len(requests) == 1
        assert requests[0]['updateTextStyle']['textStyle'] == {'bold': True}

    def test_negated_flag_sets_false(self):
        requests = build_brace_text_style_requests(parse_brace_expr("!0 !i"), 1, 4)
        assert requests[0]['updateTextStyle']['textStyle'] == {'italic': False}

    def test_superscript(self):
        requests = build_brace_text_style_requests(parse_brace_expr("!0 ^"), 1, 4)
        assert requests[0]['updateTextStyle']['textStyle'] == {'baselineOffset': 'SUPERSCRIPT'}

    def test_paragraph_style(self):
        requests = build_brace_paragraph_style_requests(parse_brace_expr("h=2 a=center n=1"), 1, 5)
        update = requests[0]['updateParagraphStyle']
        assert update['paragraphStyle']['namedStyleType'] == 'HEADING_2'
        assert update['paragraphStyle']['alignment'] == 'CENTER'
        assert update['paragraphStyle']['indentStart'] == {'magnitude': 36.0, 'unit': 'PT'}
        assert update['fields'] == 'namedStyleType,alignment,indentStart'

    def test_inline_span_offsets(self):
        template, spans = find_brace_exprs("H{,=2}O")
        requests = build_brace_inline_requests(spans, 10, template)
        styled = requests[-1]['updateTextStyle']
        assert styled['range'] == {'startIndex': 11, 'endIndex': 12}
        assert styled['textStyle'] == {'baselineOffset': 'SUBSCRIPT'}

    def test_inline_span_offsets_follow_backreferences(self):
        template, spans = find_brace_exprs("${1} {b=x}")
        match = re.search(r"(\w+)", "hello")
        requests = build_brace_inline_requests(spans, 1, template, match)
        assert requests[-1]['updateTextStyle']['range'] == {'startIndex': 7, 'endIndex': 8}

    def test_page_break(self):
        assert build_brace_break_requests(parse_brace_expr("+=p"), 7) == [
            {'insertPageBreak': {'location': {'index': 7}}}
        ]

    def test_hrule_break(self):
        requests = build_brace_break_requests(parse_brace_expr("+"), 7)
        assert requests[0] == {'insertText': {'location': {'index': 7}, 'text': '\n'}}
        assert 'borderBottom' in requests[1]['updateParagraphStyle']['paragraphStyle']

    def test_no_break(self):
        assert build_brace_break_requests(parse_brace_expr("b"), 7) == []


class TestChips:
    """Tests for chip URI handling."""

    def test_place(self):
        assert resolve_chip_url("chip://place/Eiffel Tower") == (
            "https://maps.google.com/?q=Eiffel+Tower", "Eiffel Tower"
        )

    def test_plain_url_passes_through(self):
        assert resolve_chip_url("https://x.io") == ("https://x.io", "")

    def test_person(self):
        assert resolve_chip_url("chip://person/a@b.c") == ("", "")
        assert person_chip_email("chip://person/a@b.c") == "a@b.c"

    def test_unknown_kind(self):
        assert resolve_chip_url("chip://rocket/x") == ("", "")


class TestStructuralRequests:
    """Tests for build_structural_requests."""

    def test_all_features(self):
        brace = parse_brace_expr("cols=2 check @=intro u=chip://person/a@b.c")
        result = build_structural_requests(brace, 5, 10, 1, 20)
        assert result.columns[0]['updateSectionStyle']['range'] == {'startIndex': 1, 'endIndex': 20}
        assert len(result.columns[0]['updateSectionStyle']['sectionStyle']['columnProperties']) == 2
        assert result.bullets == [
            helpers.create_bullet_list_request(5, 11, helpers.BULLET_PRESET_CHECKBOX)
        ]
        assert result.anchors == [helpers.create_named_range_request("intro", 5, 10)]
        assert result.chips == [helpers.create_insert_person_request(5, "a@b.c")]

    def test_feature_detection(self):
        assert not has_brace_structural_features(parse_brace_expr("b"))
        assert has_brace_structural_features(parse_brace_expr("cols=2"))
        assert has_brace_structural_features(parse_brace_expr('"=review this'))


class TestHelpers:
    """Tests for docs_helpers."""

    def test_parse_hex_color(self):
        assert helpers.parse_hex_color("#F00") == (1.0, 0.0, 0.0)
        assert helpers.parse_hex_color("zz") is None

    def test_link_style(self):
        assert helpers.link_style("#intro") == {'bookmarkId': 'intro'}
        assert helpers.link_style("https://x") == {'url': 'https://x'}

    def test_pin_header_rows(self):
        assert helpers.create_pin_header_rows_request(5) == {
            'pinTableHeaderRows': {'tableStartLocation': {'index': 5}, 'pinnedHeaderRowsCount': 1}
        }

    def test_insert_image_size(self):
        request = helpers.create_insert_image_request(3, "https://x/a.png", width=100)
        assert request['insertInlineImage']['objectSize'] == {'width': {'magnitude': 100, 'unit': 'PT'}}
