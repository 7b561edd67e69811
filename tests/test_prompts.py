# ============================================================================
# PROMPT SHAPING TESTS
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Tests - Final prompt assembly
# PURPOSE: Verify format instructions, condensing, image prompts, limits
# CREATED: 17 OCT 2026
# ============================================================================
"""
Prompt Shaping Tests

Run with:
    pytest tests/test_prompts.py -v
"""

import pytest

from core.config import GenerationDefaults
from core.contracts import GenerationType
from core.models import Cell
from orchestrator.prompts import (
    REFERENCED_IMAGE,
    PromptShaper,
    character_limit_instruction,
    format_instruction,
    max_tokens_for,
    optimize_prompt,
    sanitize_image_prompt,
    should_optimize,
)


# ============================================================================
# TRANSFORMS
# ============================================================================

class TestTransforms:

    def test_format_instruction(self):
        assert format_instruction("JSON") == "Format your response as valid JSON."
        assert format_instruction("unknown") is None
        assert format_instruction(None) is None

    def test_should_optimize_threshold(self):
        assert not should_optimize("short")
        assert should_optimize("x" * 101)
        assert not should_optimize(None)

    def test_optimize_removes_filler(self):
        prompt = "Could you please write a short story about a dragon in order to entertain kids"
        assert optimize_prompt(prompt) == "Write short story about a dragon to entertain kids"

    def test_optimize_collapses_punctuation(self):
        assert optimize_prompt("wow!!! that is great... ok??") == "Wow! that is great. ok?"

    def test_sanitize_image_prompt(self):
        prompt = "Make a poster like https://cdn.example.com/a.png and https://cdn.example.com/b.jpg"
        assert sanitize_image_prompt(prompt) == (
            f"Make a poster like {REFERENCED_IMAGE} and {REFERENCED_IMAGE}"
        )

    def test_sanitize_collapses_repeats(self):
        prompt = "https://x.io/a.png https://x.io/b.png in watercolor"
        assert sanitize_image_prompt(prompt) == f"{REFERENCED_IMAGE} in watercolor"

    def test_max_tokens(self):
        assert max_tokens_for(100) == 25
        assert max_tokens_for(101) == 26
        assert max_tokens_for(None) is None
        assert max_tokens_for(0) is None


# ============================================================================
# SHAPER
# ============================================================================

class TestPromptShaper:

    @pytest.fixture
    def shaper(self):
        return PromptShaper(GenerationDefaults(optimize_prompts=False))

    def test_text_format_and_limit(self, shaper):
        cell = Cell(cell_id="A1", output_format="markdown", character_limit=280)
        shaped = shaper.shape("Describe Paris", cell, GenerationType.TEXT)
        assert shaped.prompt.startswith("Describe Paris\n\nFormat your response as Markdown")
        assert shaped.prompt.endswith(character_limit_instruction(280))
        assert shaped.max_tokens == 70

    def test_image_model_ignores_text_options(self, shaper):
        cell = Cell(cell_id="A1", output_format="json", character_limit=50)
        shaped = shaper.shape("A cat like https://x.io/cat.png", cell, GenerationType.IMAGE)
        assert shaped.prompt == f"A cat like {REFERENCED_IMAGE}"
        assert shaped.max_tokens is None

    def test_long_prompts_condensed_when_enabled(self):
        shaper = PromptShaper(GenerationDefaults(optimize_prompts=True, optimize_threshold_chars=20))
        cell = Cell(cell_id="A1")
        shaped = shaper.shape("I would like you to   write a poem about the sea", cell, GenerationType.TEXT)
        assert shaped.prompt == "Write poem about the sea"

    def test_video_settings_fallbacks(self, shaper):
        cell = Cell(cell_id="A1", video_seconds="5", video_aspect_ratio="16:9")
        settings = shaper.video_settings(cell)
        assert settings.seconds == "8"
        assert settings.resolution == "720p"
        assert settings.aspect_ratio == "16:9"

    def test_video_seconds_allowed(self, shaper):
        assert shaper.video_settings(Cell(cell_id="A1", video_seconds="12")).seconds == "12"

    def test_audio_settings(self, shaper):
        settings = shaper.audio_settings(Cell(cell_id="A1", audio_voice="nova", audio_speed=0.0))
        assert settings.voice == "nova"
        assert settings.speed == 0.0
        assert settings.format == "mp3"
