# ============================================================================
# CELL RUNNER
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - Execution orchestrator
# PURPOSE: Run one cell (or a batch) from template to persisted result
# CREATED: 17 OCT 2026
# ============================================================================
"""
Cell Runner

Drives a single cell through its run:

    resolving -> skip check -> generating -> saving -> complete
                                          -> pending -> (poller) -> complete | error

Steps:
1. Resolve: evaluate the execution condition; false appends a skipped
   generation and stops without calling the backend
2. Expand the effective template (conditionals, references)
3. Shape the prompt (format instruction, condensing, image-safe URLs,
   character limit)
4. Admission: reset the ledger if due, reject with InsufficientCredits
5. Generate
   - synchronous output: finalize media, persist a completed generation,
     charge credits
   - job handle: persist a pending generation, hand off to the JobPoller;
     credits are charged when the job completes
6. Any failure becomes an error generation plus status "error"; no
   exception leaves run_cell()

Each run holds the cell's lock from start to finish. run_many() orders a
batch with the scheduler and cascades into ready auto_run dependents.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Set

from core.config import GenerationDefaults, get_defaults
from core.contracts import CellStatus, GenerationStatus, GenerationType, RunPhase
from core.errors import CellExecutionError, GenerationFailure, InsufficientCredits
from core.interfaces import CellStore, GenerationBackend
from core.logging import ComponentType, log_checkpoint, log_context
from core.models import SKIPPED_OUTPUT, Cell, Generation, GenerationRequest
from infrastructure.locking import CellLockService
from orchestrator.engine.conditions import find_execution_condition, strip_execution_directive
from orchestrator.engine.resolver import DependencyResolver, ResolutionContext, get_resolver
from orchestrator.engine.scheduler import DependencyScheduler, get_scheduler
from orchestrator.media import MediaFinalizer
from orchestrator.poller import JobPoller, PollRequest
from orchestrator.prompts import PromptShaper
from services.credit_service import AdmissionTicket, CreditService
from services.sheet_cache import SheetCache

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, RunPhase], None]


# ============================================================================
# RESULT
# ============================================================================

@dataclass
class RunResult:
    """Outcome of one run_cell() call."""
    cell_id: str
    success: bool = False
    output: Optional[str] = None
    skipped: bool = False
    job_id: Optional[str] = None
    status: Optional[CellStatus] = None
    needs_polling: bool = False
    error: Optional[str] = None
    error_type: Optional[str] = None
    not_found: bool = False
    warnings: List[str] = field(default_factory=list)

    @property
    def insufficient_credits(self) -> bool:
        return self.error_type == InsufficientCredits.__name__

    def to_dict(self) -> dict:
        return {
            "cell_id": self.cell_id,
            "success": self.success,
            "output": self.output,
            "skipped": self.skipped,
            "job_id": self.job_id,
            "status": self.status.value if self.status else None,
            "needs_polling": self.needs_polling,
            "error": self.error,
            "error_type": self.error_type,
            "warnings": list(self.warnings),
        }


@dataclass
class _Attempt:
    """Working state of a run, kept for error recording."""
    cell: Cell
    model: str
    temperature: float
    model_type: GenerationType
    resolved_prompt: str = ""
    ticket: Optional[AdmissionTicket] = None
    poll: Optional[PollRequest] = None


# ============================================================================
# RUNNER
# ============================================================================

class CellRunner:
    """Execution orchestrator for one project's cells."""

    def __init__(
        self,
        store: CellStore,
        cache: SheetCache,
        backend: GenerationBackend,
        credits: CreditService,
        locks: CellLockService,
        poller: JobPoller,
        resolver: Optional[DependencyResolver] = None,
        scheduler: Optional[DependencyScheduler] = None,
        shaper: Optional[PromptShaper] = None,
        media: Optional[MediaFinalizer] = None,
        defaults: Optional[GenerationDefaults] = None,
    ):
        self.store = store
        self.cache = cache
        self.backend = backend
        self.credits = credits
        self.locks = locks
        self.poller = poller
        self.resolver = resolver or get_resolver()
        self.scheduler = scheduler or get_scheduler()
        self.defaults = defaults or get_defaults().generation
        self.shaper = shaper or PromptShaper(self.defaults)
        self.media = media or MediaFinalizer()

    @property
    def user_id(self) -> str:
        return self.cache.user_id

    @property
    def project_id(self) -> str:
        return self.cache.project_id

    # =========================================================================
    # SINGLE CELL
    # =========================================================================

    async def run_cell(
        self,
        sheet_id: str,
        cell_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RunResult:
        """
        Run one cell.

        Args:
            sheet_id: Sheet owning the cell
            cell_id: Cell to run
            on_progress: Optional callback(cell_id, phase)

        Returns:
            RunResult; failures are reported, never raised
        """
        def progress(phase: RunPhase) -> None:
            if on_progress:
                on_progress(cell_id, phase)

        with log_context(
            user_id=self.user_id,
            project_id=self.project_id,
            sheet_id=sheet_id,
            cell_id=cell_id,
            component=ComponentType.ORCHESTRATOR.value,
        ):
            async with self.locks.cell_lock(sheet_id, cell_id):
                snapshot = await self.cache.get_or_load(sheet_id)
                stored = snapshot.get(cell_id) if snapshot is not None else None
                if stored is None:
                    logger.warning(f"Cell {cell_id} not found in sheet {sheet_id}")
                    return RunResult(
                        cell_id=cell_id,
                        error=f"Cell {cell_id} not found",
                        not_found=True,
                    )

                # A rerun supersedes any job still being polled
                self.poller.cancel(sheet_id, cell_id)

                model = stored.model or self.defaults.default_model
                attempt = _Attempt(
                    cell=stored.model_copy(deep=True),
                    model=model,
                    temperature=(
                        stored.temperature if stored.temperature is not None
                        else self.defaults.default_temperature
                    ),
                    model_type=GenerationType.for_model(model),
                )
                log_checkpoint("cell_run_started", {"model": model}, logger)

                try:
                    result = await self._execute(sheet_id, attempt, progress)
                except CellExecutionError as e:
                    result = await self._fail(sheet_id, attempt, e)
                    progress(RunPhase.ERROR)
                except Exception as e:
                    logger.exception(f"Unexpected error running cell {cell_id}: {e}")
                    result = await self._fail(sheet_id, attempt, e)
                    progress(RunPhase.ERROR)

            if attempt.poll is not None:
                def poll_progress(phase: RunPhase, _detail: Optional[str]) -> None:
                    progress(phase)

                self.poller.start(attempt.poll, poll_progress)

            log_checkpoint("cell_run_finished", {
                "success": result.success,
                "skipped": result.skipped,
                "needs_polling": result.needs_polling,
            }, logger)
        return result

    async def _execute(
        self,
        sheet_id: str,
        attempt: _Attempt,
        progress: Callable[[RunPhase], None],
    ) -> RunResult:
        cell = attempt.cell
        progress(RunPhase.RESOLVING)

        running = self.locks.running_cells(sheet_id) - {cell.cell_id}
        context = ResolutionContext(
            cache=self.cache,
            sheet_id=sheet_id,
            running=running,
            load_generations=self._load_generations,
        )

        template = cell.effective_template()
        condition = cell.condition or find_execution_condition(template)
        if condition and not await self.resolver.evaluate_condition(condition, context):
            return await self._skip(sheet_id, attempt, progress)

        resolved = await self.resolver.resolve_template(
            strip_execution_directive(template), context
        )
        attempt.resolved_prompt = resolved
        if not resolved.strip():
            raise GenerationFailure("Prompt is empty after resolving references", attempt.model)

        shaped = self.shaper.shape(resolved, cell, attempt.model_type)
        attempt.ticket = await self.credits.admit(self.user_id, attempt.model)

        request = GenerationRequest(
            prompt=shaped.prompt,
            model=attempt.model,
            temperature=attempt.temperature,
            max_tokens=shaped.max_tokens,
            video=(
                self.shaper.video_settings(cell)
                if attempt.model_type == GenerationType.VIDEO else None
            ),
            audio=(
                self.shaper.audio_settings(cell)
                if attempt.model_type == GenerationType.AUDIO else None
            ),
        )

        progress(RunPhase.GENERATING)
        logger.info(f"Generating with {attempt.model} ({attempt.model_type.value})")
        response = await self.backend.generate(request)

        if not response.success:
            raise GenerationFailure(response.error or "Generation failed", attempt.model)

        if response.is_async:
            return await self._hand_off(sheet_id, attempt, response.job_id, progress)

        return await self._complete(sheet_id, attempt, response.output or "", progress)

    # =========================================================================
    # OUTCOMES
    # =========================================================================

    def _generation(self, attempt: _Attempt, status: GenerationStatus, **fields) -> Generation:
        return Generation(
            prompt=attempt.cell.prompt,
            resolved_prompt=attempt.resolved_prompt,
            model=attempt.model,
            temperature=attempt.temperature,
            type=attempt.model_type,
            status=status,
            **fields,
        )

    async def _save(self, sheet_id: str, cell: Cell, generation: Generation) -> None:
        await self.store.save_cell(self.user_id, self.project_id, sheet_id, cell)
        await self.store.save_generation(
            self.user_id, self.project_id, sheet_id, cell.cell_id, generation
        )
        self.cache.put_cell(sheet_id, cell)

    async def _skip(
        self,
        sheet_id: str,
        attempt: _Attempt,
        progress: Callable[[RunPhase], None],
    ) -> RunResult:
        cell = attempt.cell
        logger.info(f"Cell {cell.cell_id} skipped due to condition")
        progress(RunPhase.SKIPPED)

        generation = self._generation(attempt, GenerationStatus.SKIPPED, output=SKIPPED_OUTPUT)
        cell.append_generation(generation)
        cell.mark_skipped()
        await self._save(sheet_id, cell, generation)

        return RunResult(
            cell_id=cell.cell_id,
            success=True,
            skipped=True,
            output=SKIPPED_OUTPUT,
            status=CellStatus.SKIPPED,
        )

    async def _hand_off(
        self,
        sheet_id: str,
        attempt: _Attempt,
        job_id: str,
        progress: Callable[[RunPhase], None],
    ) -> RunResult:
        cell = attempt.cell
        generation = self._generation(attempt, GenerationStatus.PENDING, job_id=job_id)
        cell.append_generation(generation)
        cell.mark_pending(job_id)
        await self._save(sheet_id, cell, generation)

        attempt.poll = PollRequest(
            sheet_id=sheet_id,
            cell_id=cell.cell_id,
            job_id=job_id,
            model_type=attempt.model_type,
            ticket=attempt.ticket,
        )
        logger.info(f"Job {job_id} created for cell {cell.cell_id}; polling")
        progress(RunPhase.POLLING)

        return RunResult(
            cell_id=cell.cell_id,
            success=True,
            job_id=job_id,
            status=CellStatus.PENDING,
            needs_polling=True,
        )

    async def _complete(
        self,
        sheet_id: str,
        attempt: _Attempt,
        output: str,
        progress: Callable[[RunPhase], None],
    ) -> RunResult:
        cell = attempt.cell
        owner_path = "/".join([self.user_id, self.project_id, sheet_id, cell.cell_id])
        finalized = await self.media.finalize(output, attempt.model_type, owner_path, progress)

        progress(RunPhase.SAVING)
        generation = self._generation(
            attempt, GenerationStatus.COMPLETED, output=finalized.output
        )
        cell.append_generation(generation)
        cell.mark_completed(finalized.output)
        await self._save(sheet_id, cell, generation)

        if attempt.ticket is not None:
            await self.credits.charge(attempt.ticket)

        progress(RunPhase.COMPLETE)
        result = RunResult(
            cell_id=cell.cell_id,
            success=True,
            output=finalized.output,
            status=CellStatus.COMPLETED,
        )
        if finalized.warning:
            result.warnings.append(finalized.warning)
        return result

    async def _fail(self, sheet_id: str, attempt: _Attempt, error: Exception) -> RunResult:
        """Record an error generation; persistence failures are logged."""
        cell = attempt.cell
        message = str(error) or error.__class__.__name__
        logger.warning(f"Cell {cell.cell_id} failed: {message}")

        # A failed run never leaves a job behind
        attempt.poll = None

        generation = self._generation(
            attempt, GenerationStatus.ERROR, output=f"Error: {message}", error=message[:2000]
        )
        cell.append_generation(generation)
        cell.mark_error()
        try:
            await self._save(sheet_id, cell, generation)
        except Exception as e:
            logger.exception(f"Failed to save error generation for cell {cell.cell_id}: {e}")

        return RunResult(
            cell_id=cell.cell_id,
            success=False,
            status=CellStatus.ERROR,
            error=message,
            error_type=error.__class__.__name__,
        )

    async def _load_generations(self, sheet_id: str, cell_id: str) -> List[Generation]:
        return await self.store.get_generations(
            self.user_id, self.project_id, sheet_id, cell_id
        )

    # =========================================================================
    # BATCH
    # =========================================================================

    async def run_many(
        self,
        sheet_id: str,
        cell_ids: Iterable[str],
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[RunResult]:
        """
        Run a batch in dependency order.

        Cells missing from the sheet or with an empty prompt are skipped.
        A successful auto_run cell cascades into auto_run dependents whose
        dependencies are complete; dependents still queued in this batch
        are left for their own turn.

        Returns:
            Results in execution order (cascaded runs included)
        """
        snapshot = await self.cache.get_or_load(sheet_id)
        if snapshot is None:
            logger.warning(f"Sheet {sheet_id} not found; nothing to run")
            return []

        plan = self.scheduler.plan(cell_ids, snapshot.cells)
        if plan.has_cycles:
            logger.warning(f"Running sheet {sheet_id} batch with {len(plan.cycles)} cycle(s)")

        queued: Set[str] = set(plan.order)
        visited: Set[str] = set()
        results: List[RunResult] = []

        for cell_id in plan.order:
            queued.discard(cell_id)
            if cell_id in visited:
                continue
            cell = (self.cache.peek(sheet_id) or snapshot).get(cell_id)
            if cell is None or not cell.prompt.strip():
                logger.debug(f"Skipping cell {cell_id}: missing or empty prompt")
                continue

            visited.add(cell_id)
            result = await self.run_cell(sheet_id, cell_id, on_progress)
            results.append(result)

            if cell.auto_run and result.success:
                await self._cascade(sheet_id, cell_id, queued, visited, results, on_progress)

        return results

    async def _cascade(
        self,
        sheet_id: str,
        cell_id: str,
        queued: Set[str],
        visited: Set[str],
        results: List[RunResult],
        on_progress: Optional[ProgressCallback],
    ) -> None:
        current = self.cache.peek(sheet_id)
        if current is None:
            return

        for dependent_id in self.scheduler.find_dependents(cell_id, current.cells):
            if dependent_id in visited or dependent_id in queued:
                continue
            current = self.cache.peek(sheet_id)
            dependent = current.get(dependent_id)
            if dependent is None or not dependent.auto_run:
                continue
            running = self.locks.running_cells(sheet_id)
            if not self.scheduler.dependencies_complete(dependent, current.cells, running):
                logger.debug(f"Auto-run of {dependent_id} deferred: dependencies not complete")
                continue

            logger.info(f"Auto-running {dependent_id} after {cell_id}")
            visited.add(dependent_id)
            result = await self.run_cell(sheet_id, dependent_id, on_progress)
            results.append(result)
            if result.success:
                await self._cascade(sheet_id, dependent_id, queued, visited, results, on_progress)

    # =========================================================================
    # CANCELLATION
    # =========================================================================

    def cancel(self, sheet_id: str, cell_id: str) -> bool:
        """Stop polling for a cell's outstanding job."""
        return self.poller.cancel(sheet_id, cell_id)


__all__ = [
    "RunResult",
    "CellRunner",
]
