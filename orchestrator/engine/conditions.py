# ============================================================================
# CONDITIONAL EVALUATOR
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - {{if:...}} parsing and evaluation
# PURPOSE: Select then/else branches and gate cell execution
# CREATED: 17 OCT 2026
# ============================================================================
"""
Conditional Evaluator

Parses and evaluates conditional blocks embedded in cell templates.

Grammar:
    {{if:<condition>}}then:<value>{{else:<value>}}     value selection
    {{if:<condition>}}run{{else:skip}}                 execution directive

<condition> is "<left> <op> <right>" or a bare "<left>" (truthy check).
Operators: ==, !=, >, <, >=, <=, contains, startsWith, endsWith
(a lone "=" is read as "==").

Branch boundaries:
- the then-value runs until "{{else:", the next "{{if:", a newline or the
  end of the text
- the else-value is brace-balanced, so {{else:{{C1}}}} selects "{{C1}}"

Operands are resolved through a caller-supplied coroutine, which keeps
this module independent of how cells are looked up.

Usage:
    evaluator = get_condition_evaluator()
    ok = await evaluator.evaluate('A1 == "yes"', resolve_operand)
    text = await evaluator.expand(template, resolve_operand)
"""

import logging
import operator
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

OperandResolver = Callable[[str], Awaitable[str]]

IF_OPEN = "{{if:"
ELSE_OPEN = "{{else:"
THEN_PREFIX = "then:"
CONDITIONAL_PREFIXES = ("if:", "then:", "else:")

# Leftmost match wins; at equal positions the alternation order prefers
# the two-character operators over "=", ">" and "<".
_OPERATOR_PATTERN = re.compile(
    r"(!=|==|>=|<=|\s+(?:contains|startswith|endswith)\s+|>|<|=)",
    re.IGNORECASE,
)

_EXECUTION_DIRECTIVE = re.compile(
    r"\{\{if:([^{}]+)\}\}\s*run\s*(?:\{\{else:\s*skip\s*\}\})?",
    re.IGNORECASE,
)

_FALSY_VALUES = ("", "null", "undefined")


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True)
class ParsedCondition:
    """A condition split into operands and operator."""
    left: str
    operator: Optional[str] = None
    right: Optional[str] = None

    @property
    def is_truthy_check(self) -> bool:
        return self.operator is None

    def operands(self) -> List[str]:
        if self.right is None:
            return [self.left]
        return [self.left, self.right]


@dataclass(frozen=True)
class ConditionalBlock:
    """One {{if:...}}then:...{{else:...}} occurrence and its span."""
    start: int
    end: int
    condition: str
    then_value: str
    else_value: Optional[str] = None


# ============================================================================
# PARSING
# ============================================================================

def _match_braces(text: str, start: int) -> int:
    """
    Find the end of a brace-balanced {{...}} group.

    Args:
        text: Full text
        start: Index of the opening "{{"

    Returns:
        Index just past the matching "}}", or -1 if unbalanced
    """
    depth = 0
    i = start
    length = len(text)
    while i < length - 1:
        if text.startswith("{{", i):
            depth += 1
            i += 2
        elif text.startswith("}}", i):
            depth -= 1
            i += 2
            if depth == 0:
                return i
        else:
            i += 1
    return -1


def parse_condition(condition: str) -> ParsedCondition:
    """
    Split a condition into left operand, operator and right operand.

    Word operators are normalized to lower case ("startswith"), "=" to "==".
    A condition without an operator is a truthy check on its left side.
    """
    text = condition.strip()
    match = _OPERATOR_PATTERN.search(text)
    if not match or match.start() == 0:
        return ParsedCondition(left=text)

    op = match.group(1).strip().lower()
    if op == "=":
        op = "=="
    left = text[:match.start()].strip()
    right = text[match.end():].strip()
    return ParsedCondition(left=left, operator=op, right=right)


def normalize_operand(operand: str) -> Tuple[str, bool]:
    """
    Strip braces and quotes from an operand.

    Returns:
        (text, is_literal) where is_literal is True for quoted operands
    """
    text = operand.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1], True
    if text.startswith("{{") and text.endswith("}}"):
        text = text[2:-2].strip()
    return text, False


def iter_condition_texts(text: str) -> Iterator[str]:
    """Yield the condition of every {{if:...}} opener, in order."""
    pos = 0
    while True:
        start = text.find(IF_OPEN, pos)
        if start < 0:
            return
        end = _match_braces(text, start)
        if end < 0:
            return
        yield text[start + len(IF_OPEN):end - 2]
        pos = end


def find_conditional_blocks(text: str) -> List[ConditionalBlock]:
    """
    Locate value-selection blocks, left to right, non-overlapping.

    Openers not followed by "then:" (execution directives, malformed
    blocks) are skipped.
    """
    blocks: List[ConditionalBlock] = []
    pos = 0
    while True:
        start = text.find(IF_OPEN, pos)
        if start < 0:
            break
        cond_end = _match_braces(text, start)
        if cond_end < 0:
            break
        if not text.startswith(THEN_PREFIX, cond_end):
            pos = cond_end
            continue

        value_start = cond_end + len(THEN_PREFIX)
        stops = [
            i for i in (
                text.find(ELSE_OPEN, value_start),
                text.find(IF_OPEN, value_start),
                text.find("\n", value_start),
            )
            if i >= 0
        ]
        value_end = min(stops) if stops else len(text)
        end = value_end
        else_value = None

        if text.startswith(ELSE_OPEN, value_end):
            else_end = _match_braces(text, value_end)
            if else_end >= 0:
                else_value = text[value_end + len(ELSE_OPEN):else_end - 2].strip()
                end = else_end

        blocks.append(ConditionalBlock(
            start=start,
            end=end,
            condition=text[start + len(IF_OPEN):cond_end - 2],
            then_value=text[value_start:value_end].strip(),
            else_value=else_value,
        ))
        pos = end
    return blocks


def find_execution_condition(text: str) -> Optional[str]:
    """Condition of an in-prompt {{if:...}}run{{else:skip}} directive."""
    match = _EXECUTION_DIRECTIVE.search(text or "")
    return match.group(1).strip() if match else None


def strip_execution_directive(text: str) -> str:
    """Remove execution directives so they never reach the model."""
    return _EXECUTION_DIRECTIVE.sub("", text or "").strip()


# ============================================================================
# EVALUATION
# ============================================================================

def _to_number(value: str) -> Optional[float]:
    try:
        return float(value.strip())
    except (ValueError, AttributeError):
        return None


def _ordered(op: Callable[[object, object], bool]) -> Callable[[str, str], bool]:
    """Numeric comparison when both sides parse, string comparison otherwise."""
    def compare(left: str, right: str) -> bool:
        left_num = _to_number(left)
        right_num = _to_number(right)
        if left_num is not None and right_num is not None:
            return op(left_num, right_num)
        return op(left, right)
    return compare


class ConditionEvaluator:
    """
    Evaluates conditions against resolved cell values.

    String semantics for equality; contains/startsWith/endsWith ignore case;
    ordering operators compare numerically when both sides are numbers.
    """

    OPERATORS = {
        "==": lambda a, b: a == b,
        "!=": lambda a, b: a != b,
        ">": _ordered(operator.gt),
        "<": _ordered(operator.lt),
        ">=": _ordered(operator.ge),
        "<=": _ordered(operator.le),
        "contains": lambda a, b: b.lower() in a.lower(),
        "startswith": lambda a, b: a.lower().startswith(b.lower()),
        "endswith": lambda a, b: a.lower().endswith(b.lower()),
    }

    async def evaluate(self, condition: str, resolve: OperandResolver) -> bool:
        """
        Evaluate a condition expression.

        Args:
            condition: Condition string (e.g., 'A1 >= 10')
            resolve: Coroutine turning an unquoted operand into its value

        Returns:
            True if the condition holds; evaluation errors count as False
        """
        if not condition or not condition.strip():
            return True

        try:
            parsed = parse_condition(condition)
            left = await self._operand_value(parsed.left, resolve)

            if parsed.is_truthy_check:
                return left.strip().lower() not in _FALSY_VALUES

            right = await self._operand_value(parsed.right or "", resolve)
            op_func = self.OPERATORS[parsed.operator]
            return bool(op_func(left.strip(), right.strip()))

        except Exception as e:
            logger.warning(f"Failed to evaluate condition '{condition}': {e}")
            return False

    async def expand(self, text: str, resolve: OperandResolver) -> str:
        """
        Replace every value-selection block by its chosen branch.

        Branch text is inserted as written; {{...}} tokens inside it are
        left for the template resolver's substitution pass.
        """
        blocks = find_conditional_blocks(text)
        if not blocks:
            return text

        pieces: List[str] = []
        pos = 0
        for block in blocks:
            pieces.append(text[pos:block.start])
            if await self.evaluate(block.condition, resolve):
                pieces.append(block.then_value)
            else:
                pieces.append(block.else_value or "")
            pos = block.end
        pieces.append(text[pos:])
        return "".join(pieces)

    async def _operand_value(self, operand: str, resolve: OperandResolver) -> str:
        text, is_literal = normalize_operand(operand)
        if is_literal:
            return text
        return await resolve(text)


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

_evaluator: Optional[ConditionEvaluator] = None


def get_condition_evaluator() -> ConditionEvaluator:
    """Get singleton condition evaluator."""
    global _evaluator
    if _evaluator is None:
        _evaluator = ConditionEvaluator()
    return _evaluator


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "CONDITIONAL_PREFIXES",
    "ParsedCondition",
    "ConditionalBlock",
    "ConditionEvaluator",
    "parse_condition",
    "normalize_operand",
    "iter_condition_texts",
    "find_conditional_blocks",
    "find_execution_condition",
    "strip_execution_directive",
    "get_condition_evaluator",
]
