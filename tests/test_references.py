# ============================================================================
# REFERENCE PARSER TESTS
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Tests - {{...}} token grammar
# PURPOSE: Verify token extraction, classification and dependency lists
# CREATED: 17 OCT 2026
# ============================================================================
"""
Reference Parser Tests

Covers:
1. Cell reference classification (prefixes, sheet qualifiers, generation specs)
2. Literal placeholders vs. cell references
3. Token extraction including references nested in conditions
4. Same-sheet dependency lists

Run with:
    pytest tests/test_references.py -v
"""

import pytest

from core.contracts import ReturnType
from orchestrator.engine.references import (
    GenerationSpec,
    extract_tokens,
    is_cell_reference,
    parse_reference,
    parse_references,
    same_sheet_dependencies,
)


# ============================================================================
# CLASSIFICATION
# ============================================================================

class TestParseReference:

    def test_plain_cell(self):
        ref = parse_reference("A1")
        assert ref.cell_id == "A1"
        assert ref.return_type is None
        assert ref.sheet_name is None
        assert ref.generation is None
        assert ref.effective_return_type == ReturnType.OUTPUT

    def test_explicit_prompt_prefix(self):
        ref = parse_reference("prompt:B12")
        assert ref.cell_id == "B12"
        assert ref.return_type == ReturnType.PROMPT

    def test_cross_sheet_defaults_to_prompt(self):
        ref = parse_reference("Research!C3")
        assert ref.sheet_name == "Research"
        assert ref.is_cross_sheet
        assert ref.effective_return_type == ReturnType.PROMPT

    def test_cross_sheet_with_output_prefix(self):
        ref = parse_reference("output:Research!C3")
        assert ref.sheet_name == "Research"
        assert ref.effective_return_type == ReturnType.OUTPUT

    def test_sheet_name_with_spaces(self):
        ref = parse_reference("Sheet 2!A1")
        assert ref.sheet_name == "Sheet 2"
        assert ref.cell_id == "A1"

    @pytest.mark.parametrize("token,expected", [
        ("A1-2", GenerationSpec(start=2)),
        ("A1:2", GenerationSpec(start=2)),
        ("A1:1-3", GenerationSpec(start=1, end=3)),
    ])
    def test_generation_specs(self, token, expected):
        ref = parse_reference(token)
        assert ref.cell_id == "A1"
        assert ref.generation == expected

    def test_range_flag(self):
        assert parse_reference("A1:1-3").generation.is_range
        assert not parse_reference("A1-3").generation.is_range

    @pytest.mark.parametrize("token", ["genre", "1A", "A", "foo bar", "!A1", "A1-x"])
    def test_literals_are_not_references(self, token):
        assert parse_reference(token) is None
        assert not is_cell_reference(token)

    def test_whitespace_is_trimmed(self):
        ref = parse_reference("  A1  ")
        assert ref.cell_id == "A1"
        assert ref.raw == "A1"


# ============================================================================
# EXTRACTION
# ============================================================================

class TestExtractTokens:

    def test_mixed_template(self):
        text = "Use {{A1}} and {{prompt:Sheet2!B2}} for {{genre}}"
        assert extract_tokens(text) == ["A1", "prompt:Sheet2!B2", "genre"]
        assert parse_references(text) == ["A1", "prompt:Sheet2!B2"]

    def test_deduplicates_in_order(self):
        assert parse_references("{{B1}} {{A1}} {{B1}} {{ A1 }}") == ["B1", "A1"]

    def test_idempotent(self):
        text = "{{A1}} then {{C2:1-2}}"
        assert parse_references(text) == parse_references(text)

    def test_no_tokens(self):
        assert extract_tokens("") == []
        assert extract_tokens(None) == []
        assert extract_tokens("no braces here") == []

    def test_conditional_syntax_excluded(self):
        text = '{{if:A1 == "yes"}}then:good{{else:bad}}'
        tokens = extract_tokens(text)
        assert "A1" in tokens
        assert not any(t.startswith(("if:", "then:", "else:")) for t in tokens)

    def test_references_inside_condition_and_branches(self):
        text = '{{if:{{B2}} contains "x"}}then:{{C3}}{{else:{{D4}}}}'
        refs = parse_references(text)
        assert set(refs) == {"B2", "C3", "D4"}

    def test_quoted_condition_operand_is_literal(self):
        text = '{{if:A1 == "B2"}}then:yes'
        assert parse_references(text) == ["A1"]


class TestSameSheetDependencies:

    def test_cross_sheet_references_excluded(self):
        text = "{{A1}} {{Research!B1}} {{output:C1}} {{C1-2}}"
        assert same_sheet_dependencies(text) == ["A1", "C1"]

    def test_empty(self):
        assert same_sheet_dependencies(None) == []
