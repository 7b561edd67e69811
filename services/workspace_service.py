# ============================================================================
# WORKSPACE SERVICE
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Service - Per-project wiring of cache, runner and poller
# PURPOSE: Single entry point used by the API
# CREATED: 17 OCT 2026
# ============================================================================
"""
Workspace Service

A workspace is one (user_id, project_id) pair with its own SheetCache,
CellLockService, JobPoller and CellRunner. Workspaces are created on first
use; opening one registers the project's sheets and resumes polling for
cells left in flight. close_workspace() drops an idle project so the
registry stays bounded by the projects currently in use.

Usage:
    service = WorkspaceService(store, billing, backend, media_storage)
    result = await service.run_cell(user_id, project_id, "Sheet 1", "B2")
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from core.config import Defaults, get_defaults
from core.interfaces import BillingStore, CellStore, GenerationBackend, MediaStorage
from core.models import CreditLedger
from infrastructure.locking import CellLockService
from orchestrator.engine.resolver import ResolutionContext, get_resolver
from orchestrator.engine.references import parse_references
from orchestrator.engine.scheduler import SchedulePlan, build_graph, get_scheduler
from orchestrator.media import MediaFinalizer
from orchestrator.poller import JobPoller, Sleep
from orchestrator.runner import CellRunner, RunResult
from services.credit_service import CreditService
from services.sheet_cache import SheetCache

logger = logging.getLogger(__name__)

ProjectKey = Tuple[str, str]


class SheetNotFound(Exception):
    """Raised when a sheet id or name does not exist in the project."""
    def __init__(self, sheet: str):
        self.sheet = sheet
        super().__init__(f"Sheet '{sheet}' not found")


@dataclass
class Workspace:
    """Engine components bound to one project."""
    user_id: str
    project_id: str
    cache: SheetCache
    locks: CellLockService
    poller: JobPoller
    runner: CellRunner


@dataclass
class OrderResult:
    """Batch order plus the sheet's dependency edges."""
    plan: SchedulePlan
    edges: Dict[str, List[str]]


@dataclass
class PreviewResult:
    """A template resolved without running anything."""
    resolved: str
    references: List[str]
    errors: List[str]


class WorkspaceService:
    """Creates and caches workspaces; delegates engine operations."""

    def __init__(
        self,
        store: CellStore,
        billing: BillingStore,
        backend: GenerationBackend,
        media_storage: Optional[MediaStorage] = None,
        defaults: Optional[Defaults] = None,
        sleep: Sleep = asyncio.sleep,
        resume_on_open: bool = True,
    ):
        self.store = store
        self.billing = billing
        self.backend = backend
        self.defaults = defaults or get_defaults()
        self.credits = CreditService(billing, self.defaults.credits)
        self.media = MediaFinalizer(media_storage)
        self.sleep = sleep
        self.resume_on_open = resume_on_open
        self._workspaces: Dict[ProjectKey, Workspace] = {}
        self._open_locks: Dict[ProjectKey, asyncio.Lock] = {}

    # =========================================================================
    # WORKSPACES
    # =========================================================================

    async def get_workspace(self, user_id: str, project_id: str) -> Workspace:
        """Open (once) and return the workspace for a project."""
        key = (user_id, project_id)
        workspace = self._workspaces.get(key)
        if workspace is not None:
            return workspace

        lock = self._open_locks.setdefault(key, asyncio.Lock())
        async with lock:
            workspace = self._workspaces.get(key)
            if workspace is not None:
                return workspace

            cache = SheetCache(self.store, user_id, project_id)
            await cache.refresh_sheets()
            locks = CellLockService()
            poller = JobPoller(
                backend=self.backend,
                store=self.store,
                cache=cache,
                locks=locks,
                media=self.media,
                credits=self.credits,
                defaults=self.defaults.polling,
                sleep=self.sleep,
            )
            runner = CellRunner(
                store=self.store,
                cache=cache,
                backend=self.backend,
                credits=self.credits,
                locks=locks,
                poller=poller,
                media=self.media,
                defaults=self.defaults.generation,
            )
            workspace = Workspace(user_id, project_id, cache, locks, poller, runner)
            self._workspaces[key] = workspace
            logger.info(f"Opened workspace for project {project_id} ({len(cache.snapshots())} sheets)")

        if self.resume_on_open:
            resumed = await workspace.poller.resume()
            if resumed:
                logger.info(f"Resumed {len(resumed)} polls for project {project_id}")
        return workspace

    async def _sheet_id(self, workspace: Workspace, sheet: str) -> str:
        """Accept a sheet id or a (case-insensitive) sheet name."""
        if workspace.cache.peek(sheet) is not None:
            return sheet
        sheet_id = workspace.cache.find_sheet_id(sheet)
        if sheet_id is None:
            await workspace.cache.refresh_sheets()
            sheet_id = workspace.cache.find_sheet_id(sheet)
            if sheet_id is None and workspace.cache.peek(sheet) is not None:
                sheet_id = sheet
        if sheet_id is None:
            raise SheetNotFound(sheet)
        return sheet_id

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    async def run_cell(
        self,
        user_id: str,
        project_id: str,
        sheet: str,
        cell_id: str,
        cascade: bool = False,
    ) -> List[RunResult]:
        """
        Run one cell; with cascade, ready auto_run dependents follow.

        Raises:
            SheetNotFound: If the sheet does not exist
        """
        workspace = await self.get_workspace(user_id, project_id)
        sheet_id = await self._sheet_id(workspace, sheet)
        if cascade:
            return await workspace.runner.run_many(sheet_id, [cell_id])
        return [await workspace.runner.run_cell(sheet_id, cell_id)]

    async def run_many(
        self,
        user_id: str,
        project_id: str,
        sheet: str,
        cell_ids: Optional[List[str]] = None,
    ) -> List[RunResult]:
        """Run a batch (default: every cell of the sheet) in dependency order."""
        workspace = await self.get_workspace(user_id, project_id)
        sheet_id = await self._sheet_id(workspace, sheet)
        if cell_ids is None:
            snapshot = await workspace.cache.get_or_load(sheet_id)
            cell_ids = list(snapshot.cells.keys()) if snapshot is not None else []
        return await workspace.runner.run_many(sheet_id, cell_ids)

    async def cancel(self, user_id: str, project_id: str, sheet: str, cell_id: str) -> bool:
        workspace = await self.get_workspace(user_id, project_id)
        sheet_id = await self._sheet_id(workspace, sheet)
        return workspace.runner.cancel(sheet_id, cell_id)

    async def order(
        self,
        user_id: str,
        project_id: str,
        sheet: str,
        cell_ids: Optional[List[str]] = None,
    ) -> OrderResult:
        """Execution order for a batch, plus the sheet's dependency graph."""
        workspace = await self.get_workspace(user_id, project_id)
        sheet_id = await self._sheet_id(workspace, sheet)
        snapshot = await workspace.cache.get_or_load(sheet_id)
        cells = snapshot.cells if snapshot is not None else {}
        if cell_ids is None:
            cell_ids = list(cells.keys())

        plan = get_scheduler().plan(cell_ids, cells)
        graph = build_graph(cells)
        edges = {node: list(graph.get_dependencies(node)) for node in sorted(graph.nodes)}
        return OrderResult(plan=plan, edges=edges)

    async def preview(
        self,
        user_id: str,
        project_id: str,
        sheet: str,
        template: str,
    ) -> PreviewResult:
        """Resolve a template against current values without running it."""
        workspace = await self.get_workspace(user_id, project_id)
        sheet_id = await self._sheet_id(workspace, sheet)
        resolver = get_resolver()

        async def load_generations(gen_sheet_id: str, cell_id: str):
            return await self.store.get_generations(user_id, project_id, gen_sheet_id, cell_id)

        context = ResolutionContext(
            cache=workspace.cache,
            sheet_id=sheet_id,
            running=workspace.locks.running_cells(sheet_id),
            load_generations=load_generations,
        )

        references = parse_references(template)
        errors: List[str] = []
        for token in references:
            resolution = await resolver.resolve_reference(token, context)
            if not resolution.ok:
                errors.append(resolution.render())

        resolved = await resolver.resolve_template(template, context)
        return PreviewResult(
            resolved=resolved,
            references=references,
            errors=errors,
        )

    async def get_credits(self, user_id: str) -> Optional[CreditLedger]:
        """Current ledger (after any due monthly reset)."""
        return await self.credits.get_current_ledger(user_id)

    async def close_workspace(self, user_id: str, project_id: str) -> bool:
        """
        Drop a project's workspace, stopping its polls.

        Stopped polls leave their cells pending; the next open resumes them.

        Returns:
            True if a workspace was open
        """
        key = (user_id, project_id)
        workspace = self._workspaces.pop(key, None)
        self._open_locks.pop(key, None)
        if workspace is None:
            return False
        await workspace.poller.shutdown()
        logger.info(f"Closed workspace for project {project_id}")
        return True

    async def shutdown(self) -> None:
        """Stop every workspace's polls."""
        for user_id, project_id in list(self._workspaces.keys()):
            await self.close_workspace(user_id, project_id)


__all__ = [
    "SheetNotFound",
    "Workspace",
    "OrderResult",
    "PreviewResult",
    "WorkspaceService",
]
