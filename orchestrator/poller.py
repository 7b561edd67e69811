# ============================================================================
# ASYNC JOB POLLER
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - Drives async generation jobs to a terminal state
# PURPOSE: Poll job status, persist progress, finalize results
# CREATED: 17 OCT 2026
# ============================================================================
"""
Async Job Poller

Takes over a cell after the backend answered with a job handle.

Each poll runs in its own asyncio task and owns a CancellationToken. The
poller keeps a registry of live handles only so cancel() can reach them;
a finished poll removes itself.

Per tick:
    1. Token cancelled?          -> stop, no further writes
    2. Attempts exhausted?       -> JobTimeout
    3. check_job_status(job_id)
       - success=False           -> JobFailed (status check failure)
       - completed/succeeded or any output
                                 -> finalize media, complete the pending
                                    generation, persist, charge credits
       - failed/error            -> JobFailed
       - anything else           -> persist cell status, sleep, repeat

Failures are recorded as an error generation plus cell status "error";
nothing escapes the task.

Every write re-reads the cell under its lock and stops (as cancelled) when
the token is set or the cell's job_id is no longer this poll's job, so a
rerun's outstanding job is never overwritten by the poll it replaced.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from core.config import PollingDefaults, get_defaults
from core.contracts import CellStatus, GenerationStatus, GenerationType, RunPhase
from core.errors import Cancelled, CellExecutionError, JobFailed, JobTimeout
from core.interfaces import CellStore, GenerationBackend
from core.logging import ComponentType, log_checkpoint, log_context
from core.models import Cell, Generation
from infrastructure.locking import CellLockService
from orchestrator.media import MediaFinalizer
from services.credit_service import AdmissionTicket, CreditService
from services.sheet_cache import SheetCache

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
PollCallback = Callable[[RunPhase, Optional[str]], None]
CellKey = Tuple[str, str]


# ============================================================================
# DATA STRUCTURES
# ============================================================================

class CancellationToken:
    """Cooperative cancellation flag owned by one poll."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class PollRequest:
    """Everything needed to follow one async job."""
    sheet_id: str
    cell_id: str
    job_id: str
    model_type: GenerationType = GenerationType.VIDEO
    ticket: Optional[AdmissionTicket] = None


@dataclass
class PollOutcome:
    """Terminal result of a poll."""
    cell_id: str
    job_id: str
    success: bool = False
    output: Optional[str] = None
    error: Optional[str] = None
    cancelled: bool = False
    attempts: int = 0
    warnings: List[str] = field(default_factory=list)


@dataclass
class PollHandle:
    """A live poll: its task and the token that stops it."""
    request: PollRequest
    token: CancellationToken
    task: "asyncio.Task[PollOutcome]"

    @property
    def done(self) -> bool:
        return self.task.done()


# ============================================================================
# POLLER
# ============================================================================

class JobPoller:
    """Polls async jobs for one project's cells."""

    def __init__(
        self,
        backend: GenerationBackend,
        store: CellStore,
        cache: SheetCache,
        locks: CellLockService,
        media: Optional[MediaFinalizer] = None,
        credits: Optional[CreditService] = None,
        defaults: Optional[PollingDefaults] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        """
        Initialize the poller.

        Args:
            backend: Source of job status
            store: Persistence for cells and generations
            cache: Project sheet cache (kept in sync with writes)
            locks: Per-cell write serialization
            media: Media finalizer for completed results
            credits: Charged when a job completes
            defaults: Interval and attempt limit
            sleep: Injectable sleep (tests pass a no-op)
        """
        self.backend = backend
        self.store = store
        self.cache = cache
        self.locks = locks
        self.media = media or MediaFinalizer()
        self.credits = credits
        self.defaults = defaults or get_defaults().polling
        self.sleep = sleep
        self._handles: Dict[CellKey, PollHandle] = {}

    # =========================================================================
    # TASK MANAGEMENT
    # =========================================================================

    def start(
        self,
        request: PollRequest,
        on_progress: Optional[PollCallback] = None,
    ) -> PollHandle:
        """
        Start polling in a background task.

        A poll already running for the same cell is cancelled first.
        """
        key = (request.sheet_id, request.cell_id)
        previous = self._handles.get(key)
        if previous is not None and not previous.done:
            logger.info(f"Replacing poll for cell {request.cell_id} (job {previous.request.job_id})")
            previous.token.cancel()

        token = CancellationToken()
        task = asyncio.create_task(
            self.poll(request, token, on_progress),
            name=f"poll-{request.sheet_id}-{request.cell_id}",
        )
        handle = PollHandle(request=request, token=token, task=task)
        self._handles[key] = handle

        def _forget(_task: "asyncio.Task[PollOutcome]") -> None:
            if self._handles.get(key) is handle:
                del self._handles[key]

        task.add_done_callback(_forget)
        return handle

    def get_handle(self, sheet_id: str, cell_id: str) -> Optional[PollHandle]:
        return self._handles.get((sheet_id, cell_id))

    def is_polling(self, sheet_id: str, cell_id: str) -> bool:
        handle = self._handles.get((sheet_id, cell_id))
        return handle is not None and not handle.done

    def cancel(self, sheet_id: str, cell_id: str) -> bool:
        """
        Ask a live poll to stop.

        Returns:
            True if a running poll was signalled
        """
        handle = self._handles.get((sheet_id, cell_id))
        if handle is None or handle.done:
            return False
        handle.token.cancel()
        logger.info(f"Cancellation requested for cell {cell_id} (job {handle.request.job_id})")
        return True

    async def resume(self, sheet_ids: Optional[List[str]] = None) -> List[PollHandle]:
        """
        Restart polling for cells left in flight with a job_id.

        Args:
            sheet_ids: Sheets to scan (default: every registered sheet)

        Returns:
            Handles of the polls started
        """
        if sheet_ids is None:
            sheet_ids = [snapshot.sheet_id for snapshot in self.cache.snapshots()]

        handles = []
        for sheet_id in sheet_ids:
            snapshot = await self.cache.get_or_load(sheet_id)
            if snapshot is None:
                continue
            for cell in snapshot.cells.values():
                if not cell.has_pending_job or self.is_polling(sheet_id, cell.cell_id):
                    continue
                pending = cell.find_generation(cell.job_id)
                model_type = (
                    pending.type if pending is not None
                    else GenerationType.for_model(cell.model)
                )
                logger.info(f"Resuming poll for cell {cell.cell_id} (job {cell.job_id})")
                handles.append(self.start(PollRequest(
                    sheet_id=sheet_id,
                    cell_id=cell.cell_id,
                    job_id=cell.job_id,
                    model_type=model_type,
                )))
        return handles

    async def shutdown(self) -> None:
        """Cancel every live poll and wait for the tasks to finish."""
        handles = [h for h in self._handles.values() if not h.done]
        for handle in handles:
            handle.token.cancel()
        if handles:
            await asyncio.gather(*(h.task for h in handles), return_exceptions=True)
        logger.info(f"Poller shut down ({len(handles)} polls stopped)")

    # =========================================================================
    # POLL LOOP
    # =========================================================================

    async def poll(
        self,
        request: PollRequest,
        token: Optional[CancellationToken] = None,
        on_progress: Optional[PollCallback] = None,
    ) -> PollOutcome:
        """
        Poll one job until it reaches a terminal state.

        Returns:
            PollOutcome; never raises
        """
        token = token or CancellationToken()
        outcome = PollOutcome(cell_id=request.cell_id, job_id=request.job_id)

        with log_context(
            user_id=self.cache.user_id,
            project_id=self.cache.project_id,
            sheet_id=request.sheet_id,
            cell_id=request.cell_id,
            job_id=request.job_id,
            component=ComponentType.POLLER.value,
        ):
            log_checkpoint("job_poll_started", {"model_type": request.model_type.value}, logger)
            try:
                output = await self._poll_until_done(request, token, outcome, on_progress)
                await self._finish(request, token, output, outcome, on_progress)
            except Cancelled:
                outcome.cancelled = True
                outcome.error = "Polling cancelled"
                logger.info(f"Polling cancelled for cell {request.cell_id}")
            except CellExecutionError as e:
                outcome.error = str(e)
                await self._record_failure(request, token, str(e))
                if on_progress:
                    on_progress(RunPhase.ERROR, str(e))
            except Exception as e:
                outcome.error = str(e)
                logger.exception(f"Unexpected error polling job {request.job_id}: {e}")
                await self._record_failure(request, token, str(e))
                if on_progress:
                    on_progress(RunPhase.ERROR, str(e))

            log_checkpoint("job_poll_finished", {
                "success": outcome.success,
                "cancelled": outcome.cancelled,
                "attempts": outcome.attempts,
            }, logger)
        return outcome

    async def _poll_until_done(
        self,
        request: PollRequest,
        token: CancellationToken,
        outcome: PollOutcome,
        on_progress: Optional[PollCallback],
    ) -> str:
        """Loop until terminal success; returns the job's output."""
        max_attempts = self.defaults.max_attempts
        while True:
            if token.cancelled:
                raise Cancelled(request.cell_id, request.job_id)
            if outcome.attempts >= max_attempts:
                raise JobTimeout(request.job_id, outcome.attempts)

            outcome.attempts += 1
            status = await self.backend.check_job_status(request.job_id)
            if token.cancelled:
                raise Cancelled(request.cell_id, request.job_id)

            if not status.success:
                raise JobFailed(request.job_id, status.error or "Failed to check job status")

            if status.is_success:
                return status.output or ""

            if status.is_failure:
                raise JobFailed(request.job_id, status.error)

            state = status.state
            if state is not None:
                await self._persist_progress(request, token, state.to_cell_status())
            logger.debug(
                f"Job {request.job_id} status '{status.status}' "
                f"(attempt {outcome.attempts}/{max_attempts})"
            )
            if on_progress:
                on_progress(RunPhase.POLLING, status.status)
            await self.sleep(self.defaults.interval_seconds)

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    async def _load_cell(self, sheet_id: str, cell_id: str) -> Optional[Cell]:
        snapshot = await self.cache.get_or_load(sheet_id)
        if snapshot is None:
            return None
        cell = snapshot.get(cell_id)
        return cell.model_copy(deep=True) if cell is not None else None

    async def _save(self, sheet_id: str, cell: Cell, generation: Optional[Generation]) -> None:
        await self.store.save_cell(self.cache.user_id, self.cache.project_id, sheet_id, cell)
        if generation is not None:
            await self.store.save_generation(
                self.cache.user_id, self.cache.project_id, sheet_id, cell.cell_id, generation
            )
        self.cache.put_cell(sheet_id, cell)

    @staticmethod
    def _is_stale(cell: Cell, request: PollRequest, token: CancellationToken) -> bool:
        """True once this poll may no longer write the cell (cancelled or rerun)."""
        if token.cancelled:
            return True
        if cell.job_id != request.job_id:
            logger.info(
                f"Job {request.job_id} superseded on cell {request.cell_id} "
                f"(outstanding job: {cell.job_id})"
            )
            return True
        return False

    async def _persist_progress(
        self,
        request: PollRequest,
        token: CancellationToken,
        status: CellStatus,
    ) -> None:
        async with self.locks.cell_lock(request.sheet_id, request.cell_id):
            cell = await self._load_cell(request.sheet_id, request.cell_id)
            if cell is None:
                return
            if self._is_stale(cell, request, token):
                raise Cancelled(request.cell_id, request.job_id)
            if cell.status == status:
                return
            cell.mark_progress(status)
            await self._save(request.sheet_id, cell, None)

    async def _pending_generation(self, cell: Cell, request: PollRequest) -> Generation:
        """The generation created for this job, or a fresh one if it is gone."""
        if not cell.generations:
            cell.generations = await self.store.get_generations(
                self.cache.user_id, self.cache.project_id, request.sheet_id, cell.cell_id
            )
        generation = cell.find_generation(request.job_id)
        if generation is not None and generation.status == GenerationStatus.PENDING:
            return generation
        generation = Generation(
            prompt=cell.prompt,
            model=cell.model,
            temperature=cell.temperature,
            type=request.model_type,
            status=GenerationStatus.PENDING,
            job_id=request.job_id,
        )
        cell.append_generation(generation)
        return generation

    async def _finish(
        self,
        request: PollRequest,
        token: CancellationToken,
        output: str,
        outcome: PollOutcome,
        on_progress: Optional[PollCallback],
    ) -> None:
        owner_path = "/".join([
            self.cache.user_id, self.cache.project_id, request.sheet_id, request.cell_id,
        ])

        def media_progress(phase: RunPhase) -> None:
            if on_progress:
                on_progress(phase, None)

        finalized = await self.media.finalize(
            output, request.model_type, owner_path, media_progress
        )
        if finalized.warning:
            outcome.warnings.append(finalized.warning)

        async with self.locks.cell_lock(request.sheet_id, request.cell_id):
            cell = await self._load_cell(request.sheet_id, request.cell_id)
            if cell is None:
                raise JobFailed(request.job_id, f"Cell {request.cell_id} no longer exists")
            if self._is_stale(cell, request, token):
                raise Cancelled(request.cell_id, request.job_id)
            generation = await self._pending_generation(cell, request)
            generation.mark_completed(finalized.output)
            cell.mark_completed(finalized.output)
            await self._save(request.sheet_id, cell, generation)

        if self.credits is not None and request.ticket is not None:
            await self.credits.charge(request.ticket)

        outcome.success = True
        outcome.output = finalized.output
        logger.info(f"Job {request.job_id} completed for cell {request.cell_id}")
        if on_progress:
            on_progress(RunPhase.COMPLETE, finalized.output)

    async def _record_failure(
        self,
        request: PollRequest,
        token: CancellationToken,
        message: str,
    ) -> None:
        """Persist an error generation; persistence errors are logged."""
        try:
            async with self.locks.cell_lock(request.sheet_id, request.cell_id):
                cell = await self._load_cell(request.sheet_id, request.cell_id)
                if cell is None:
                    logger.warning(f"Cannot record failure: cell {request.cell_id} not found")
                    return
                if self._is_stale(cell, request, token):
                    logger.info(f"Dropping failure of job {request.job_id}: {message}")
                    return
                generation = await self._pending_generation(cell, request)
                generation.mark_error(message)
                cell.output = generation.output
                cell.mark_error()
                await self._save(request.sheet_id, cell, generation)
            logger.warning(f"Job {request.job_id} failed for cell {request.cell_id}: {message}")
        except Exception as e:
            logger.exception(f"Failed to record job failure for cell {request.cell_id}: {e}")


__all__ = [
    "CancellationToken",
    "PollRequest",
    "PollOutcome",
    "PollHandle",
    "JobPoller",
]
