# ============================================================================
# REFERENCE PARSER
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - {{...}} token extraction and classification
# PURPOSE: Find the cells a template depends on
# CREATED: 17 OCT 2026
# ============================================================================
"""
Reference Parser

Extracts {{...}} tokens from a template and classifies them.

Supported reference forms:
- {{A1}}                          same-sheet output (prompt fallback)
- {{prompt:A1}} / {{output:A1}}   explicit field
- {{Research!A1}}                 cross-sheet, defaults to prompt
- {{output:Research!A1}}          cross-sheet with explicit field
- {{A1-2}} / {{A1:2}}             second generation, oldest-first
- {{A1:1-3}}                      generations 1..3, inclusive

Anything else ({{genre}}) is a literal placeholder. Conditional syntax
(if:/then:/else:) is never a token itself, but cell references inside
conditions are reported.

Examples:
    parse_references("Use {{A1}} and {{prompt:Sheet2!B2}} for {{genre}}")
    # ['A1', 'prompt:Sheet2!B2']
"""

import re
from dataclasses import dataclass
from typing import List, Optional

from core.contracts import ReturnType
from orchestrator.engine.conditions import (
    CONDITIONAL_PREFIXES,
    iter_condition_texts,
    normalize_operand,
    parse_condition,
)

TOKEN_PATTERN = re.compile(r"\{\{([^{}]+)\}\}")
CELL_ID_PATTERN = re.compile(r"^[A-Za-z]+[0-9]+$")
_CELL_WITH_SPEC = re.compile(r"^([A-Za-z]+[0-9]+)(?:-(\d+)|:(\d+)(?:-(\d+))?)?$")


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True)
class GenerationSpec:
    """
    1-based, oldest-first generation selector.

    end is None for a single index; otherwise start..end inclusive.
    """
    start: int
    end: Optional[int] = None

    @property
    def is_range(self) -> bool:
        return self.end is not None


@dataclass(frozen=True)
class Reference:
    """Parsed view of a cell-reference token."""
    raw: str
    cell_id: str
    return_type: Optional[ReturnType] = None
    sheet_name: Optional[str] = None
    generation: Optional[GenerationSpec] = None

    @property
    def is_cross_sheet(self) -> bool:
        return self.sheet_name is not None

    @property
    def effective_return_type(self) -> ReturnType:
        """Explicit prefix, else prompt across sheets and output within one."""
        if self.return_type is not None:
            return self.return_type
        return ReturnType.PROMPT if self.is_cross_sheet else ReturnType.OUTPUT


# ============================================================================
# PARSING
# ============================================================================

def parse_reference(token: str) -> Optional[Reference]:
    """
    Parse a token (without braces) as a cell reference.

    Returns:
        Reference, or None for literal placeholders
    """
    raw = token.strip()
    text = raw

    return_type = None
    for candidate in ReturnType:
        prefix = f"{candidate.value}:"
        if text.startswith(prefix):
            return_type = candidate
            text = text[len(prefix):]
            break

    sheet_name = None
    if "!" in text:
        sheet_name, text = text.split("!", 1)
        sheet_name = sheet_name.strip()
        if not sheet_name:
            return None

    match = _CELL_WITH_SPEC.match(text.strip())
    if not match:
        return None

    cell_id, single, start, end = match.groups()
    generation = None
    if single is not None:
        generation = GenerationSpec(start=int(single))
    elif start is not None:
        generation = GenerationSpec(
            start=int(start),
            end=int(end) if end is not None else None,
        )

    return Reference(
        raw=raw,
        cell_id=cell_id,
        return_type=return_type,
        sheet_name=sheet_name,
        generation=generation,
    )


def is_cell_reference(token: str) -> bool:
    """True when the token addresses a cell rather than a literal."""
    return parse_reference(token) is not None


def is_conditional_token(token: str) -> bool:
    return token.strip().startswith(CONDITIONAL_PREFIXES)


def _dedupe(items: List[str]) -> List[str]:
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def extract_tokens(text: Optional[str]) -> List[str]:
    """
    Every non-conditional token, plus cell references inside conditions.

    Returns:
        Stripped token texts, deduplicated, in order of first appearance
    """
    if not text or "{{" not in text:
        return []

    tokens: List[str] = []

    for condition in iter_condition_texts(text):
        for operand in parse_condition(condition).operands():
            value, is_literal = normalize_operand(operand)
            if not is_literal and is_cell_reference(value):
                tokens.append(value)

    for match in TOKEN_PATTERN.finditer(text):
        inner = match.group(1).strip()
        if inner and not is_conditional_token(inner):
            tokens.append(inner)

    return _dedupe(tokens)


def parse_references(text: Optional[str]) -> List[str]:
    """Cell-reference tokens only; literal placeholders are dropped."""
    return [token for token in extract_tokens(text) if is_cell_reference(token)]


def same_sheet_dependencies(text: Optional[str]) -> List[str]:
    """Cell ids referenced without a sheet qualifier."""
    cell_ids = []
    for token in parse_references(text):
        ref = parse_reference(token)
        if ref is not None and not ref.is_cross_sheet:
            cell_ids.append(ref.cell_id)
    return _dedupe(cell_ids)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "TOKEN_PATTERN",
    "CELL_ID_PATTERN",
    "GenerationSpec",
    "Reference",
    "parse_reference",
    "is_cell_reference",
    "is_conditional_token",
    "extract_tokens",
    "parse_references",
    "same_sheet_dependencies",
]
