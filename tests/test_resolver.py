# ============================================================================
# DEPENDENCY RESOLVER TESTS
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Tests - Reference and template resolution
# PURPOSE: Verify lookups, fallbacks, generation indexing and error text
# CREATED: 17 OCT 2026
# ============================================================================
"""
Dependency Resolver Tests

Covers:
1. Same-sheet output references with prompt fallback
2. Cross-sheet references (case-insensitive names, prompt default)
3. Generation indexing (1-based oldest-first over newest-first storage)
4. Error sentinels and strict mode
5. Media URL extraction and markup stripping
6. Full templates with conditionals

All scenarios run against an InMemoryCellStore behind a real SheetCache.

Run with:
    pytest tests/test_resolver.py -v
"""

import asyncio
import pytest

from core.errors import ReferenceResolutionError, ResolutionErrorKind
from core.models import Cell, Generation, Sheet
from orchestrator.engine.resolver import (
    GENERATION_SEPARATOR,
    DependencyResolver,
    ResolutionContext,
    extract_output_value,
)
from repositories.memory_store import InMemoryCellStore
from services.sheet_cache import SheetCache


# ============================================================================
# HELPERS
# ============================================================================

def _make_sheet(sheet_id, name, *cells):
    return Sheet(sheet_id=sheet_id, name=name, cells={c.cell_id: c for c in cells})


def _make_main_sheet():
    history = [
        Generation(output="third"),
        Generation(output="second"),
        Generation(output="first"),
    ]
    return _make_sheet(
        "s1", "Main",
        Cell(cell_id="A1", prompt="Write a haiku", output="Leaves fall"),
        Cell(cell_id="B1", prompt="Fallback prompt", output=""),
        Cell(cell_id="C1", prompt="", output=""),
        Cell(cell_id="D1", prompt="history", output="third", generations=history),
        Cell(cell_id="E1", prompt="img", output='<p><img src="https://cdn.example.com/cat.png"></p>'),
        Cell(cell_id="F1", prompt="html", output="<p>Hello &amp; <b>welcome</b></p>"),
        Cell(cell_id="G1", prompt="never run", output="No generations yet"),
    )


def _make_research_sheet():
    return _make_sheet(
        "s2", "Research",
        Cell(cell_id="A1", prompt="Collect facts", output="Fact list"),
    )


def _resolve(scenario):
    """Run scenario(resolver, context) against a seeded cache."""
    async def run():
        store = InMemoryCellStore()
        store.add_sheet("u1", "p1", _make_main_sheet())
        store.add_sheet("u1", "p1", _make_research_sheet())
        cache = SheetCache(store, "u1", "p1")
        await cache.refresh_sheets()

        async def load_generations(sheet_id, cell_id):
            return await store.get_generations("u1", "p1", sheet_id, cell_id)

        context = ResolutionContext(cache=cache, sheet_id="s1", load_generations=load_generations)
        return await scenario(DependencyResolver(), context)
    return asyncio.run(run())


def _reference(token):
    async def scenario(resolver, context):
        return await resolver.resolve_reference(token, context)
    return _resolve(scenario)


def _template(text, strict=False):
    async def scenario(resolver, context):
        return await resolver.resolve_template(text, context, strict=strict)
    return _resolve(scenario)


# ============================================================================
# SINGLE REFERENCES
# ============================================================================

class TestResolveReference:

    def test_output(self):
        assert _reference("A1").value == "Leaves fall"

    def test_prompt_prefix(self):
        assert _reference("prompt:A1").value == "Write a haiku"

    def test_empty_output_falls_back_to_prompt(self):
        assert _reference("B1").value == "Fallback prompt"

    def test_placeholder_output_falls_back_to_prompt(self):
        assert _reference("G1").value == "never run"

    def test_empty_cell_is_error(self):
        resolution = _reference("C1")
        assert not resolution.ok
        assert resolution.error.kind == ResolutionErrorKind.EMPTY_VALUE
        assert resolution.render() == "[ERROR: Cell C1 has no output or prompt available]"

    def test_empty_prompt_is_error(self):
        resolution = _reference("prompt:C1")
        assert resolution.render() == "[ERROR: Cell C1 has no prompt text available]"

    def test_missing_cell(self):
        resolution = _reference("Z9")
        assert resolution.error.kind == ResolutionErrorKind.REFERENCE_NOT_FOUND
        assert resolution.render() == "[ERROR: Cell Z9 not found]"

    def test_literal_placeholder_returned_unchanged(self):
        resolution = _reference("genre")
        assert resolution.ok
        assert resolution.value == "genre"


class TestCrossSheet:

    def test_defaults_to_prompt(self):
        assert _reference("Research!A1").value == "Collect facts"

    def test_sheet_name_case_insensitive(self):
        assert _reference("output:research!A1").value == "Fact list"

    def test_missing_sheet(self):
        resolution = _reference("Nope!A1")
        assert resolution.error.kind == ResolutionErrorKind.SHEET_NOT_FOUND
        assert resolution.render() == '[Sheet "Nope" not found]'

    def test_missing_cell_in_other_sheet(self):
        resolution = _reference("Research!B7")
        assert resolution.render() == '[ERROR: Cell B7 not found in sheet "Research"]'


class TestGenerations:

    def test_first_generation_is_oldest(self):
        assert _reference("D1-1").value == "first"
        assert _reference("D1:3").value == "third"

    def test_range_joined_oldest_first(self):
        assert _reference("D1:1-2").value == GENERATION_SEPARATOR.join(["first", "second"])

    def test_out_of_range(self):
        resolution = _reference("D1-5")
        assert resolution.error.kind == ResolutionErrorKind.GENERATION_RANGE_OUT_OF_BOUNDS
        assert resolution.render() == "[ERROR: Cell D1 generation 5 not found (has 3 generations)]"

    def test_bad_range(self):
        resolution = _reference("D1:2-9")
        assert resolution.render() == (
            "[ERROR: Cell D1 generation range 2-9 not found (has 3 generations)]"
        )

    def test_no_generations(self):
        assert _reference("A1-1").render() == "[ERROR: Cell A1 has no generations]"


# ============================================================================
# OUTPUT EXTRACTION
# ============================================================================

class TestOutputExtraction:

    def test_image_tag_yields_url(self):
        assert _reference("E1").value == "https://cdn.example.com/cat.png"

    def test_markup_stripped(self):
        assert _reference("F1").value == "Hello & welcome"

    @pytest.mark.parametrize("output", [
        "https://cdn.example.com/clip.mp4",
        "https://cdn.example.com/cat.png?sig=abc",
        "data:image/png;base64,AAAA",
    ])
    def test_media_urls_pass_through(self, output):
        assert extract_output_value(output) == output

    def test_plain_text_trimmed(self):
        assert extract_output_value("  hello  ") == "hello"


# ============================================================================
# TEMPLATES
# ============================================================================

class TestResolveTemplate:

    def test_substitution(self):
        assert _template("Summarize: {{A1}}") == "Summarize: Leaves fall"

    def test_literal_placeholder_renders_inner_text(self):
        assert _template("A story about {{genre}}") == "A story about genre"

    def test_errors_embedded_inline(self):
        assert _template("See {{Z9}}") == "See [ERROR: Cell Z9 not found]"

    def test_strict_mode_raises(self):
        with pytest.raises(ReferenceResolutionError) as exc_info:
            _template("See {{Nope!A1}}", strict=True)
        assert exc_info.value.kind == ResolutionErrorKind.SHEET_NOT_FOUND

    def test_conditional_then_reference(self):
        text = '{{if:A1 contains "leaves"}}then:{{Research!A1}}{{else:nothing}}'
        assert _template(text) == "Collect facts"

    def test_conditional_else_reference(self):
        text = '{{if:A1 == "x"}}then:yes{{else:{{prompt:A1}}}}'
        assert _template(text) == "Write a haiku"

    def test_missing_operand_reads_empty(self):
        assert _template("{{if:Z9}}then:shown{{else:hidden}}") == "hidden"

    def test_empty_template(self):
        assert _template("") == ""

    def test_numeric_operands_compare_as_numbers(self):
        # "10" vs "9" orders differently as strings and as numbers
        async def scenario(resolver, context):
            context.cache.put_cell("s1", Cell(cell_id="H1", prompt="score", output="10"))
            return [
                await resolver.evaluate_condition("H1 > 9", context),
                await resolver.evaluate_condition("H1 < 9", context),
                await resolver.evaluate_condition("H1 <= 10.5", context),
            ]
        assert _resolve(scenario) == [True, False, True]
