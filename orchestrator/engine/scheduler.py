# ============================================================================
# TOPOLOGICAL SCHEDULER
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - Batch ordering and dependency queries
# PURPOSE: Run producers before consumers; detect cycles without failing
# CREATED: 17 OCT 2026
# ============================================================================
"""
Topological Scheduler

Orders a batch of cells so that every cell runs after the same-sheet cells
its template (and execution condition) reference.

Behavior:
- Depth-first, visiting the batch in the order given
- Only dependencies inside the batch are followed
- Cross-sheet references are never followed
- Cycles are detected and reported, never raised: a node met again while
  still on the DFS stack is treated as already resolved, which yields a
  deterministic order for any input

Also answers graph questions for the runner: direct dependents of a cell
and whether a cell's dependencies have all finished.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Set

from core.contracts import CellStatus, GenerationStatus
from core.models import Cell
from orchestrator.engine.references import same_sheet_dependencies

logger = logging.getLogger(__name__)


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class DependencyGraph:
    """
    Same-sheet dependency graph.

    A -> B means "B references A" (A must run before B).
    """
    # Cell ID -> cells that reference it
    forward_edges: Dict[str, List[str]] = field(default_factory=lambda: defaultdict(list))

    # Cell ID -> cells it references
    backward_edges: Dict[str, List[str]] = field(default_factory=lambda: defaultdict(list))

    nodes: Set[str] = field(default_factory=set)

    def add_node(self, cell_id: str) -> None:
        self.nodes.add(cell_id)

    def add_edge(self, from_cell: str, to_cell: str) -> None:
        """Add a dependency edge: to_cell depends on from_cell."""
        self.forward_edges[from_cell].append(to_cell)
        self.backward_edges[to_cell].append(from_cell)
        self.nodes.add(from_cell)
        self.nodes.add(to_cell)

    def get_dependencies(self, cell_id: str) -> List[str]:
        return self.backward_edges.get(cell_id, [])

    def get_dependents(self, cell_id: str) -> List[str]:
        return self.forward_edges.get(cell_id, [])


@dataclass
class SchedulePlan:
    """Batch order plus any cycles met while ordering."""
    order: List[str] = field(default_factory=list)
    cycles: List[List[str]] = field(default_factory=list)

    @property
    def has_cycles(self) -> bool:
        return bool(self.cycles)


# ============================================================================
# DEPENDENCY EXTRACTION
# ============================================================================

def cell_dependencies(cell: Cell) -> List[str]:
    """Same-sheet cell ids referenced by a cell's template and condition."""
    deps = same_sheet_dependencies(cell.effective_template())
    if cell.condition:
        # Conditions may name cells bare ("A1 == 'x'"); wrap so the parser sees them
        for dep in same_sheet_dependencies("{{if:" + cell.condition + "}}"):
            if dep not in deps:
                deps.append(dep)
    return [dep for dep in deps if dep != cell.cell_id]


def build_graph(cells: Mapping[str, Cell]) -> DependencyGraph:
    """Build the dependency graph for every cell of a sheet."""
    graph = DependencyGraph()
    for cell_id, cell in cells.items():
        graph.add_node(cell_id)
        for dep in cell_dependencies(cell):
            if dep in cells:
                graph.add_edge(dep, cell_id)
    return graph


# ============================================================================
# SCHEDULER
# ============================================================================

class DependencyScheduler:
    """Depth-first batch ordering with explicit cycle reporting."""

    def plan(self, cell_ids: Iterable[str], cells: Mapping[str, Cell]) -> SchedulePlan:
        """
        Order a batch.

        Args:
            cell_ids: Cells to run (order breaks ties)
            cells: The sheet's cell map

        Returns:
            SchedulePlan whose order is a permutation of the unique cell_ids
        """
        batch = list(dict.fromkeys(cell_ids))
        in_batch = set(batch)
        plan = SchedulePlan()
        visited: Set[str] = set()
        visiting: List[str] = []

        def visit(cell_id: str) -> None:
            if cell_id in visited:
                return
            if cell_id in visiting:
                cycle = visiting[visiting.index(cell_id):] + [cell_id]
                plan.cycles.append(cycle)
                logger.warning(f"Dependency cycle detected: {' -> '.join(cycle)}")
                return

            visiting.append(cell_id)
            cell = cells.get(cell_id)
            if cell is not None:
                for dep in cell_dependencies(cell):
                    if dep in in_batch:
                        visit(dep)
            visiting.pop()
            visited.add(cell_id)
            plan.order.append(cell_id)

        for cell_id in batch:
            visit(cell_id)

        return plan

    def order(self, cell_ids: Iterable[str], cells: Mapping[str, Cell]) -> List[str]:
        """Batch order only; see plan() for cycle details."""
        return self.plan(cell_ids, cells).order

    def find_cycles(self, cells: Mapping[str, Cell]) -> List[List[str]]:
        return self.plan(list(cells.keys()), cells).cycles

    def has_cycle(self, cells: Mapping[str, Cell]) -> bool:
        return bool(self.find_cycles(cells))

    def find_dependents(self, cell_id: str, cells: Mapping[str, Cell]) -> List[str]:
        """Cells whose template or condition references cell_id directly."""
        return [
            other_id
            for other_id, cell in cells.items()
            if other_id != cell_id and cell_id in cell_dependencies(cell)
        ]

    def dependencies_complete(
        self,
        cell: Cell,
        cells: Mapping[str, Cell],
        running: FrozenSet[str] = frozenset(),
    ) -> bool:
        """
        Non-blocking readiness check.

        A dependency is complete when it is not running and has finished at
        least once (completed, errored or skipped), or holds a usable output.
        Missing dependencies count as complete; resolution reports them.
        """
        for dep_id in cell_dependencies(cell):
            dep = cells.get(dep_id)
            if dep is None:
                continue
            if dep_id in running:
                return False
            if not _is_finished(dep):
                return False
        return True


def _is_finished(cell: Cell) -> bool:
    if cell.status is not None and cell.status.is_in_flight():
        return False
    if cell.status in (CellStatus.COMPLETED, CellStatus.ERROR, CellStatus.SKIPPED):
        return True
    latest = cell.latest_generation
    if latest is not None and latest.status != GenerationStatus.PENDING:
        return True
    return cell.has_valid_output()


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

_scheduler = None


def get_scheduler() -> DependencyScheduler:
    """Get singleton scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = DependencyScheduler()
    return _scheduler


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "DependencyGraph",
    "SchedulePlan",
    "DependencyScheduler",
    "cell_dependencies",
    "build_graph",
    "get_scheduler",
]
