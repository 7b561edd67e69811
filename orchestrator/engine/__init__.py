# ============================================================================
# ORCHESTRATOR ENGINE
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - Engine components
# PURPOSE: Reference grammar, conditions, resolution and scheduling
# CREATED: 17 OCT 2026
# ============================================================================
"""
Orchestrator Engine Components

- references: {{...}} token grammar
- conditions: {{if:...}}then:...{{else:...}} evaluation
- resolver: reference substitution against sheet state
- scheduler: dependency graph, execution order, cycle detection
"""

from orchestrator.engine.references import (
    Reference,
    GenerationSpec,
    parse_reference,
    parse_references,
    extract_tokens,
    same_sheet_dependencies,
)
from orchestrator.engine.conditions import (
    ParsedCondition,
    ConditionEvaluator,
    parse_condition,
    find_execution_condition,
    strip_execution_directive,
    get_condition_evaluator,
)
from orchestrator.engine.resolver import (
    Resolution,
    ResolutionContext,
    DependencyResolver,
    get_resolver,
)
from orchestrator.engine.scheduler import (
    DependencyGraph,
    SchedulePlan,
    DependencyScheduler,
    build_graph,
    get_scheduler,
)

__all__ = [
    # References
    "Reference",
    "GenerationSpec",
    "parse_reference",
    "parse_references",
    "extract_tokens",
    "same_sheet_dependencies",
    # Conditions
    "ParsedCondition",
    "ConditionEvaluator",
    "parse_condition",
    "find_execution_condition",
    "strip_execution_directive",
    "get_condition_evaluator",
    # Resolver
    "Resolution",
    "ResolutionContext",
    "DependencyResolver",
    "get_resolver",
    # Scheduler
    "DependencyGraph",
    "SchedulePlan",
    "DependencyScheduler",
    "build_graph",
    "get_scheduler",
]
