# ============================================================================
# PROMPT SHAPING
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - Final prompt assembly before generation
# PURPOSE: Format instructions, condensing, image-safe prompts, length caps
# CREATED: 17 OCT 2026
# ============================================================================
"""
Prompt Shaping

Turns a resolved template into the prompt actually sent to the model.

Steps (in order):
1. Text models: append the output-format instruction for cell.output_format
2. Prompts longer than the threshold are condensed (whitespace, filler
   phrases, verbose openers, repeated punctuation)
3. Image models: media URLs pulled in from other cells become
   "the referenced image"
4. Text models with a character limit: append the limit instruction and
   cap max_tokens at ceil(limit / chars_per_token)

Also builds the per-type video and audio settings from cell configuration.
"""

import math
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from core.config import GenerationDefaults, get_defaults
from core.contracts import GenerationType
from core.models import AudioSettings, Cell, VideoSettings

FORMAT_INSTRUCTIONS = {
    "markdown": "Format your response as Markdown with proper headings, lists, and formatting.",
    "json": "Format your response as valid JSON.",
    "html": "Format your response as HTML.",
    "plain": "Format your response as plain text without any special formatting.",
    "bullet-list": "Format your response as a bulleted list.",
    "numbered-list": "Format your response as a numbered list.",
    "code": "Format your response as code with proper syntax highlighting.",
}

REFERENCED_IMAGE = "the referenced image"

_FILLER_PHRASES = [
    r"\b(?:please\s+)?(?:kindly\s+)?(?:can|could|would)\s+you\s+(?:please\s+)?",
    r"\bi\s+(?:would\s+like|want|need)\s+you\s+to\s+",
    r"\b(?:make|be)\s+sure\s+to\s+",
    r"\bensure\s+that\s+",
    r"\b(?:really|quite|extremely|incredibly)\s+",
    r"\bi\s+(?:think|believe|feel)\s+(?:that\s+)?",
    r"\bin\s+my\s+opinion,?\s+",
    r"\bbut\s+however\b",
    r"\band\s+also\b",
]

_SIMPLIFICATIONS: List[Tuple[str, str]] = [
    (r"\bin\s+order\s+to\b", "to"),
    (r"\bcreate\s+a\s+", "create "),
    (r"\bwrite\s+a\s+", "write "),
    (r"\bgenerate\s+a\s+", "generate "),
    (r"\bprovide\s+me\s+with\s+", "provide "),
    (r"\bgive\s+me\s+a\s+", "give "),
    (r"\bshow\s+me\s+a\s+", "show "),
    (r"\btell\s+me\s+about\s+", "describe "),
    (r"\bexplain\s+to\s+me\s+", "explain "),
    (r"\bhelp\s+me\s+(?:to\s+)?", ""),
    (r"\bi\s+am\s+looking\s+for\s+", "find "),
    (r"\bwith\s+the\s+following\s+requirements?\s*:", ":"),
    (r"\bhere\s+are\s+the\s+details?\s*:", ""),
    (r"\bdetails?\s+are\s+as\s+follows?\s*:", ":"),
]

_IMAGE_URL = re.compile(
    r"https?://[^\s]+\.(?:jpg|jpeg|png|gif|webp|svg|bmp)(?:\?[^\s]*)?",
    re.IGNORECASE,
)
_LONG_URL = re.compile(r"https?://[^\s]{100,}")
_IMAGE_HINTS = ("image", "img", "photo", "blob.core.windows.net")


# ============================================================================
# TEXT TRANSFORMS
# ============================================================================

def format_instruction(output_format: Optional[str]) -> Optional[str]:
    if not output_format:
        return None
    return FORMAT_INSTRUCTIONS.get(output_format.strip().lower())


def should_optimize(prompt: Optional[str], threshold: int = 100) -> bool:
    return bool(prompt) and len(prompt.strip()) > threshold


def optimize_prompt(prompt: str) -> str:
    """
    Condense a prompt without changing what it asks for.

    {{...}} tokens are never produced or consumed here; the prompt is
    already resolved.
    """
    if not prompt:
        return prompt

    optimized = re.sub(r"\s+", " ", prompt.strip())

    for pattern in _FILLER_PHRASES:
        optimized = re.sub(pattern, " ", optimized, flags=re.IGNORECASE)

    for pattern, replacement in _SIMPLIFICATIONS:
        optimized = re.sub(pattern, replacement, optimized, flags=re.IGNORECASE)

    optimized = re.sub(r"\.{2,}", ".", optimized)
    optimized = re.sub(r"!{2,}", "!", optimized)
    optimized = re.sub(r"\?{2,}", "?", optimized)
    optimized = re.sub(r",{2,}", ",", optimized)
    optimized = re.sub(r"\(\s*\)|\[\s*\]", "", optimized)
    optimized = re.sub(r"\s+([,.!?:;])", r"\1", optimized)
    optimized = re.sub(r"\s+", " ", optimized).strip()
    optimized = re.sub(r"^[,\s]+", "", optimized)
    optimized = re.sub(r"^(?:so|and|but|then|now)\s+", "", optimized, flags=re.IGNORECASE)

    if optimized and optimized[0].islower():
        optimized = optimized[0].upper() + optimized[1:]

    return optimized


def sanitize_image_prompt(prompt: str) -> str:
    """Replace media URLs so image models do not receive raw links."""
    sanitized = _IMAGE_URL.sub(REFERENCED_IMAGE, prompt)

    def replace_long(match: "re.Match[str]") -> str:
        url = match.group(0)
        if any(hint in url.lower() for hint in _IMAGE_HINTS):
            return REFERENCED_IMAGE
        return url

    sanitized = _LONG_URL.sub(replace_long, sanitized)
    sanitized = re.sub(
        rf"(?:{REFERENCED_IMAGE}\s+){{2,}}",
        f"{REFERENCED_IMAGE} ",
        sanitized + " ",
        flags=re.IGNORECASE,
    )
    return re.sub(r"\s+", " ", sanitized).strip()


def character_limit_instruction(limit: int) -> str:
    return (
        f"IMPORTANT: Your response must be exactly {limit} characters or less. "
        "Generate your complete response within this character limit. Do not exceed it."
    )


def max_tokens_for(limit: Optional[int], chars_per_token: int = 4) -> Optional[int]:
    if not limit or limit <= 0:
        return None
    return math.ceil(limit / chars_per_token)


# ============================================================================
# SHAPER
# ============================================================================

@dataclass(frozen=True)
class ShapedPrompt:
    """Final prompt plus the token cap derived from it."""
    prompt: str
    max_tokens: Optional[int] = None


class PromptShaper:
    """Applies the shaping steps for one cell run."""

    def __init__(self, defaults: Optional[GenerationDefaults] = None):
        self.defaults = defaults or get_defaults().generation

    def shape(self, resolved: str, cell: Cell, model_type: GenerationType) -> ShapedPrompt:
        prompt = resolved

        if model_type == GenerationType.TEXT:
            instruction = format_instruction(cell.output_format)
            if instruction:
                prompt = f"{prompt}\n\n{instruction}"

        if self.defaults.optimize_prompts and should_optimize(
            prompt, self.defaults.optimize_threshold_chars
        ):
            prompt = optimize_prompt(prompt)

        if model_type == GenerationType.IMAGE:
            prompt = sanitize_image_prompt(prompt)

        max_tokens = None
        if model_type == GenerationType.TEXT and cell.character_limit:
            prompt = f"{prompt}\n\n{character_limit_instruction(cell.character_limit)}"
            max_tokens = max_tokens_for(cell.character_limit, self.defaults.chars_per_token)

        return ShapedPrompt(prompt=prompt, max_tokens=max_tokens)

    def video_settings(self, cell: Cell) -> VideoSettings:
        """Video seconds must be one of the allowed strings; others fall back."""
        seconds = str(cell.video_seconds or self.defaults.video_seconds)
        if seconds not in self.defaults.video_seconds_allowed:
            seconds = self.defaults.video_seconds
        return VideoSettings(
            seconds=seconds,
            resolution=cell.video_resolution or self.defaults.video_resolution,
            aspect_ratio=cell.video_aspect_ratio or self.defaults.video_aspect_ratio,
        )

    def audio_settings(self, cell: Cell) -> AudioSettings:
        return AudioSettings(
            voice=cell.audio_voice or self.defaults.audio_voice,
            speed=cell.audio_speed if cell.audio_speed is not None else self.defaults.audio_speed,
            format=cell.audio_format or self.defaults.audio_format,
        )


__all__ = [
    "FORMAT_INSTRUCTIONS",
    "REFERENCED_IMAGE",
    "format_instruction",
    "should_optimize",
    "optimize_prompt",
    "sanitize_image_prompt",
    "character_limit_instruction",
    "max_tokens_for",
    "ShapedPrompt",
    "PromptShaper",
]
