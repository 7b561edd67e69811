# ============================================================================
# DEPENDENCY RESOLVER
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - Reference and template resolution
# PURPOSE: Turn {{...}} references into concrete values from other cells
# CREATED: 17 OCT 2026
# ============================================================================
"""
Dependency Resolver

Resolves references against the sheet cache and expands whole templates.

Resolution rules:
- Literal placeholders ({{genre}}) resolve to their own text
- {{A1}} reads A1's output; an empty output falls back to A1's prompt
- {{Research!A1}} reads A1's prompt in sheet "Research" (case-insensitive)
- {{A1-2}}, {{A1:1-3}} read generation outputs, 1-based oldest-first
- Image tags and bare media URLs in an output resolve to the raw URL so
  media can be chained; other markup is stripped

Resolution never waits for a running cell; it reads whatever state the
cache holds. Failures come back as a tagged Resolution. resolve_template
renders them inline as sentinel text, or raises in strict mode.

Usage:
    resolver = get_resolver()
    context = ResolutionContext(cache=cache, sheet_id="sheet-1")
    prompt = await resolver.resolve_template("Summarize {{A1}}", context)
"""

import html
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, FrozenSet, List, Optional

from core.contracts import ReturnType
from core.errors import ReferenceResolutionError, ResolutionError
from core.models import Cell, Generation
from orchestrator.engine.conditions import ConditionEvaluator, get_condition_evaluator
from orchestrator.engine.references import (
    TOKEN_PATTERN,
    Reference,
    is_conditional_token,
    parse_reference,
)

if TYPE_CHECKING:
    from services.sheet_cache import SheetCache

logger = logging.getLogger(__name__)

GenerationLoader = Callable[[str, str], Awaitable[List[Generation]]]

GENERATION_SEPARATOR = "\n\n---\n\n"

_IMG_TAG = re.compile(r"<img[^>]+src=[\"']([^\"']+)[\"']", re.IGNORECASE)
_MEDIA_URL = re.compile(
    r"^https?://\S+\.(?:jpg|jpeg|png|gif|webp|svg|mp4|webm|mov|mp3|wav|ogg)(?:\?\S*)?$",
    re.IGNORECASE,
)
_DATA_URL = re.compile(r"^data:(?:image|video|audio)/", re.IGNORECASE)
_HTML_TAG = re.compile(r"<[^>]+>")
_LEFTOVER_TOKEN = re.compile(r"\{\{(?!\s*(?:if|then|else):)[^{}]*\}\}")
_WHITESPACE = re.compile(r"\s+")


# ============================================================================
# RESULT AND CONTEXT
# ============================================================================

@dataclass(frozen=True)
class Resolution:
    """Tagged result of resolving one reference."""
    value: str = ""
    error: Optional[ResolutionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def render(self) -> str:
        """Value on success, sentinel text on failure."""
        return self.error.render() if self.error else self.value

    @classmethod
    def success(cls, value: str) -> "Resolution":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ResolutionError) -> "Resolution":
        return cls(error=error)


@dataclass
class ResolutionContext:
    """
    Everything a resolution needs to look cells up.

    running is advisory: references to running cells are logged, never
    awaited.
    """
    cache: "SheetCache"
    sheet_id: str
    running: FrozenSet[str] = field(default_factory=frozenset)
    load_generations: Optional[GenerationLoader] = None


def extract_output_value(output: str) -> str:
    """
    Reduce a stored output to the value a template should see.

    Image tag -> src URL, bare media/data URL -> itself, otherwise the text
    with markup removed.
    """
    match = _IMG_TAG.search(output)
    if match:
        return match.group(1)
    stripped = output.strip()
    if _MEDIA_URL.match(stripped) or _DATA_URL.match(stripped):
        return stripped
    if "<" in stripped:
        stripped = html.unescape(_HTML_TAG.sub("", stripped)).strip()
    return stripped


# ============================================================================
# RESOLVER
# ============================================================================

class DependencyResolver:
    """
    Resolves single references and whole templates.

    Stateless; safe to share across runs.
    """

    def __init__(self, evaluator: Optional[ConditionEvaluator] = None):
        self.evaluator = evaluator or get_condition_evaluator()

    async def resolve_reference(self, token: str, context: ResolutionContext) -> Resolution:
        """
        Resolve one token (without braces).

        Args:
            token: Raw token text, e.g. "output:Research!B2"
            context: Cache, current sheet and advisory running set

        Returns:
            Resolution carrying the value or a tagged error
        """
        ref = parse_reference(token)
        if ref is None:
            return Resolution.success(token)

        sheet_id = context.sheet_id
        if ref.is_cross_sheet:
            found = context.cache.find_sheet_id(ref.sheet_name)
            if found is None:
                return Resolution.failure(ResolutionError.sheet_not_found(ref.sheet_name, token))
            sheet_id = found

        snapshot = await context.cache.get_or_load(sheet_id)
        if snapshot is None:
            return Resolution.failure(ResolutionError.sheet_not_found(ref.sheet_name or sheet_id, token))

        cell = snapshot.get(ref.cell_id)
        if cell is None:
            return Resolution.failure(
                ResolutionError.reference_not_found(ref.cell_id, ref.sheet_name, token)
            )

        if sheet_id == context.sheet_id and ref.cell_id in context.running:
            logger.debug(f"Reference {token} targets running cell; using current state")

        if ref.generation is not None:
            return await self._resolve_generations(ref, cell, sheet_id, context)

        if ref.effective_return_type == ReturnType.PROMPT:
            if cell.prompt.strip():
                return Resolution.success(cell.prompt)
            return Resolution.failure(ResolutionError.empty_value(ref.cell_id, "prompt", token))

        return self._resolve_output(ref, cell)

    def _resolve_output(self, ref: Reference, cell: Cell) -> Resolution:
        if not cell.has_valid_output():
            if cell.prompt.strip():
                return Resolution.success(cell.prompt)
            return Resolution.failure(ResolutionError.empty_value(ref.cell_id, "output", ref.raw))
        return Resolution.success(extract_output_value(cell.output))

    async def _resolve_generations(
        self,
        ref: Reference,
        cell: Cell,
        sheet_id: str,
        context: ResolutionContext,
    ) -> Resolution:
        """Map a 1-based oldest-first selector onto newest-first storage."""
        generations = list(cell.generations)
        if not generations and context.load_generations is not None:
            generations = await context.load_generations(sheet_id, cell.cell_id)

        count = len(generations)
        if count == 0:
            return Resolution.failure(ResolutionError.no_generations(ref.cell_id, ref.raw))

        spec = ref.generation

        def output_at(user_index: int) -> str:
            return generations[count - 1 - (user_index - 1)].output

        if not spec.is_range:
            if spec.start < 1 or spec.start > count:
                return Resolution.failure(
                    ResolutionError.out_of_range(ref.cell_id, spec.start, None, count, ref.raw)
                )
            return Resolution.success(output_at(spec.start))

        if spec.start < 1 or spec.end > count or spec.start > spec.end:
            return Resolution.failure(
                ResolutionError.out_of_range(ref.cell_id, spec.start, spec.end, count, ref.raw)
            )
        outputs = [output_at(i) for i in range(spec.start, spec.end + 1)]
        return Resolution.success(GENERATION_SEPARATOR.join(outputs))

    async def resolve_operand(self, operand: str, context: ResolutionContext) -> str:
        """Condition operand value; a failed reference reads as empty."""
        resolution = await self.resolve_reference(operand, context)
        if not resolution.ok:
            logger.info(f"Condition operand {operand} unresolved: {resolution.error.message}")
            return ""
        return resolution.value

    async def evaluate_condition(self, condition: str, context: ResolutionContext) -> bool:
        """Evaluate an execution or branch condition against live cells."""
        async def resolve(operand: str) -> str:
            return await self.resolve_operand(operand, context)
        return await self.evaluator.evaluate(condition, resolve)

    async def resolve_template(
        self,
        text: Optional[str],
        context: ResolutionContext,
        strict: bool = False,
    ) -> str:
        """
        Expand conditionals, substitute references, drop leftovers.

        Args:
            text: Template text
            context: Resolution context
            strict: Raise on the first failed reference instead of
                embedding its sentinel text

        Returns:
            Fully resolved text

        Raises:
            ReferenceResolutionError: In strict mode only
        """
        if not text:
            return ""

        async def resolve(operand: str) -> str:
            return await self.resolve_operand(operand, context)

        expanded = await self.evaluator.expand(text, resolve)

        values: Dict[str, str] = {}
        for match in TOKEN_PATTERN.finditer(expanded):
            token = match.group(1).strip()
            if token in values or is_conditional_token(token):
                continue
            resolution = await self.resolve_reference(token, context)
            if not resolution.ok:
                if strict:
                    raise ReferenceResolutionError(resolution.error)
                logger.warning(f"Unresolved reference {{{{{token}}}}}: {resolution.error.message}")
            values[token] = resolution.render()

        def substitute(match: "re.Match[str]") -> str:
            return values.get(match.group(1).strip(), match.group(0))

        resolved = TOKEN_PATTERN.sub(substitute, expanded)

        cleaned = _LEFTOVER_TOKEN.sub("", resolved)
        if cleaned != resolved:
            cleaned = _WHITESPACE.sub(" ", cleaned).strip()
        return cleaned


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

_resolver: Optional[DependencyResolver] = None


def get_resolver() -> DependencyResolver:
    """Get singleton resolver instance."""
    global _resolver
    if _resolver is None:
        _resolver = DependencyResolver()
    return _resolver


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "GENERATION_SEPARATOR",
    "Resolution",
    "ResolutionContext",
    "DependencyResolver",
    "extract_output_value",
    "get_resolver",
]
