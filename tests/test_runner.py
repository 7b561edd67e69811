# ============================================================================
# CELL RUNNER TESTS
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Tests - Single cell and batch execution
# PURPOSE: Verify the run pipeline from template to persisted result
# CREATED: 17 OCT 2026
# ============================================================================
"""
Cell Runner Tests

Covers:
1. Synchronous success (resolution, persistence, credit charge)
2. Admission control blocks the backend call
3. Execution conditions (cell condition and in-prompt directive) skip runs
4. Backend failures are captured as error generations
5. Async hand-off to the poller, credits charged on completion
6. Media finalization (upload, upload failure warning)
7. Batch ordering and auto_run cascade

Uses in-memory stores and an AsyncMock generation backend.

Run with:
    pytest tests/test_runner.py -v
"""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from core.config import CreditDefaults, GenerationDefaults, PollingDefaults
from core.contracts import CellStatus, GenerationStatus, RunPhase
from core.errors import UploadFailure
from core.models import (
    SKIPPED_OUTPUT,
    Cell,
    CreditLedger,
    GenerationResponse,
    JobStatusResponse,
    Sheet,
    Subscription,
)
from infrastructure.locking import CellLockService
from orchestrator.media import MediaFinalizer
from orchestrator.poller import JobPoller
from orchestrator.runner import CellRunner
from repositories.memory_store import InMemoryBillingStore, InMemoryCellStore
from services.credit_service import CreditService
from services.sheet_cache import SheetCache


# ============================================================================
# HELPERS
# ============================================================================

async def _no_sleep(_seconds):
    return None


def _make_backend(output="Hello", **kwargs):
    backend = MagicMock()
    backend.generate = AsyncMock(
        return_value=kwargs.get("response", GenerationResponse(success=True, output=output))
    )
    backend.check_job_status = AsyncMock(return_value=JobStatusResponse(success=True, status="queued"))
    return backend


def _echo_backend():
    """Backend whose output repeats the prompt it was sent."""
    backend = _make_backend()
    backend.generate = AsyncMock(
        side_effect=lambda request: GenerationResponse(success=True, output=f"out:{request.prompt}")
    )
    return backend


async def _make_env(cells, backend, credits=10, storage=None):
    store = InMemoryCellStore()
    store.add_sheet("u1", "p1", Sheet(
        sheet_id="s1", name="Main", cells={c.cell_id: c for c in cells},
    ))
    billing = InMemoryBillingStore()
    billing.add_subscription(Subscription(
        user_id="u1",
        credits=CreditLedger(
            current=credits,
            total=50,
            next_reset=datetime.now(timezone.utc) + timedelta(days=10),
        ),
    ))

    cache = SheetCache(store, "u1", "p1")
    await cache.refresh_sheets()
    locks = CellLockService()
    credit_service = CreditService(billing, CreditDefaults())
    media = MediaFinalizer(storage)
    poller = JobPoller(
        backend=backend,
        store=store,
        cache=cache,
        locks=locks,
        media=media,
        credits=credit_service,
        defaults=PollingDefaults(interval_seconds=0, max_attempts=5),
        sleep=_no_sleep,
    )
    runner = CellRunner(
        store=store,
        cache=cache,
        backend=backend,
        credits=credit_service,
        locks=locks,
        poller=poller,
        media=media,
        defaults=GenerationDefaults(optimize_prompts=False),
    )
    return SimpleNamespace(
        store=store, billing=billing, cache=cache, poller=poller, runner=runner, backend=backend,
    )


async def _stored_cell(env, cell_id):
    cells = await env.store.get_sheet_cells("u1", "p1", "s1")
    return cells[cell_id]


async def _balance(env):
    subscription = await env.billing.get_user_subscription("u1")
    return subscription.credits.current


def _sent_prompt(backend, call=0):
    return backend.generate.await_args_list[call].args[0].prompt


# ============================================================================
# SYNCHRONOUS RUNS
# ============================================================================

class TestSynchronousRun:

    def test_success_persists_and_charges(self):
        backend = _make_backend("Hello there")
        phases = []

        async def scenario():
            env = await _make_env([Cell(cell_id="A1", prompt="Say hi")], backend)
            result = await env.runner.run_cell(
                "s1", "A1", on_progress=lambda cell_id, phase: phases.append(phase)
            )
            return result, await _stored_cell(env, "A1"), await _balance(env)

        result, cell, balance = asyncio.run(scenario())

        assert result.success
        assert result.output == "Hello there"
        assert result.status == CellStatus.COMPLETED
        assert cell.output == "Hello there"
        assert cell.status == CellStatus.COMPLETED
        assert len(cell.generations) == 1
        generation = cell.generations[0]
        assert generation.status == GenerationStatus.COMPLETED
        assert generation.prompt == "Say hi"
        assert generation.resolved_prompt == "Say hi"
        assert generation.model == "gpt-3.5-turbo"
        assert balance == 9
        assert phases == [
            RunPhase.RESOLVING, RunPhase.GENERATING, RunPhase.SAVING, RunPhase.COMPLETE,
        ]

    def test_references_resolved_before_generation(self):
        backend = _make_backend()

        async def scenario():
            env = await _make_env([
                Cell(cell_id="A1", prompt="Write a haiku", output="Leaves fall"),
                Cell(cell_id="B1", prompt="Summarize {{A1}}", model="gpt-4o"),
            ], backend)
            return await env.runner.run_cell("s1", "B1"), await _balance(env)

        result, balance = asyncio.run(scenario())

        assert result.success
        assert _sent_prompt(backend) == "Summarize Leaves fall"
        assert balance == 8

    def test_history_grows_newest_first(self):
        backend = _echo_backend()

        async def scenario():
            env = await _make_env([Cell(cell_id="A1", prompt="x")], backend)
            await env.runner.run_cell("s1", "A1")
            await env.runner.run_cell("s1", "A1")
            return await _stored_cell(env, "A1")

        cell = asyncio.run(scenario())
        assert len(cell.generations) == 2
        assert cell.generations[0].timestamp >= cell.generations[1].timestamp

    def test_cell_not_found(self):
        async def scenario():
            env = await _make_env([], _make_backend())
            return await env.runner.run_cell("s1", "Z9")

        result = asyncio.run(scenario())
        assert result.not_found
        assert not result.success


# ============================================================================
# ADMISSION AND CONDITIONS
# ============================================================================

class TestAdmission:

    def test_insufficient_credits_blocks_backend(self):
        backend = _make_backend()

        async def scenario():
            env = await _make_env([Cell(cell_id="A1", prompt="draw", model="dall-e-3")], backend, credits=4)
            return await env.runner.run_cell("s1", "A1"), await _stored_cell(env, "A1")

        result, cell = asyncio.run(scenario())

        assert not result.success
        assert result.insufficient_credits
        assert result.error_type == "InsufficientCredits"
        backend.generate.assert_not_awaited()
        assert cell.status == CellStatus.ERROR
        assert cell.generations[0].status == GenerationStatus.ERROR
        assert cell.generations[0].output.startswith("Error: Insufficient credits")


class TestConditions:

    def test_false_condition_skips(self):
        backend = _make_backend()

        async def scenario():
            env = await _make_env([
                Cell(cell_id="A1", prompt="p", output="stop"),
                Cell(cell_id="B1", prompt="Continue", condition='A1 == "go"'),
            ], backend)
            return (
                await env.runner.run_cell("s1", "B1"),
                await _stored_cell(env, "B1"),
                await _balance(env),
            )

        result, cell, balance = asyncio.run(scenario())

        assert result.success
        assert result.skipped
        assert result.output == SKIPPED_OUTPUT
        backend.generate.assert_not_awaited()
        assert cell.status == CellStatus.SKIPPED
        assert cell.generations[0].status == GenerationStatus.SKIPPED
        assert cell.generations[0].output == SKIPPED_OUTPUT
        assert balance == 10

    def test_true_directive_runs_without_directive_text(self):
        backend = _make_backend()

        async def scenario():
            env = await _make_env([
                Cell(cell_id="A1", prompt="p", output="go"),
                Cell(cell_id="B1", prompt='{{if:A1 == "go"}}run{{else:skip}} Write a poem'),
            ], backend)
            return await env.runner.run_cell("s1", "B1")

        result = asyncio.run(scenario())

        assert result.success
        assert not result.skipped
        assert _sent_prompt(backend) == "Write a poem"

    def test_false_directive_skips(self):
        backend = _make_backend()

        async def scenario():
            env = await _make_env([
                Cell(cell_id="A1", prompt="p", output="wait"),
                Cell(cell_id="B1", prompt='{{if:A1 == "go"}}run{{else:skip}} Write a poem'),
            ], backend)
            return await env.runner.run_cell("s1", "B1")

        assert asyncio.run(scenario()).skipped
        backend.generate.assert_not_awaited()


# ============================================================================
# FAILURES
# ============================================================================

class TestFailures:

    def test_backend_rejection_recorded(self):
        backend = _make_backend(response=GenerationResponse.failed("model overloaded"))

        async def scenario():
            env = await _make_env([Cell(cell_id="A1", prompt="x", output="old")], backend)
            return (
                await env.runner.run_cell("s1", "A1"),
                await _stored_cell(env, "A1"),
                await _balance(env),
            )

        result, cell, balance = asyncio.run(scenario())

        assert not result.success
        assert result.error == "model overloaded"
        assert result.error_type == "GenerationFailure"
        assert cell.status == CellStatus.ERROR
        assert cell.output == "old"
        assert cell.generations[0].output == "Error: model overloaded"
        assert cell.generations[0].error == "model overloaded"
        assert balance == 10

    def test_unexpected_exception_captured(self):
        backend = _make_backend()
        backend.generate = AsyncMock(side_effect=RuntimeError("socket closed"))

        async def scenario():
            env = await _make_env([Cell(cell_id="A1", prompt="x")], backend)
            return await env.runner.run_cell("s1", "A1"), await _stored_cell(env, "A1")

        result, cell = asyncio.run(scenario())

        assert not result.success
        assert result.error == "socket closed"
        assert result.error_type == "RuntimeError"
        assert cell.status == CellStatus.ERROR

    def test_prompt_empty_after_resolution(self):
        backend = _make_backend()

        async def scenario():
            env = await _make_env([Cell(cell_id="A1", prompt="{{if:B9}}then:text")], backend)
            return await env.runner.run_cell("s1", "A1")

        result = asyncio.run(scenario())
        assert not result.success
        assert result.error_type == "GenerationFailure"
        backend.generate.assert_not_awaited()


# ============================================================================
# ASYNC JOBS
# ============================================================================

class TestAsyncHandOff:

    def test_job_polled_to_completion(self):
        backend = _make_backend(response=GenerationResponse(success=True, job_id="job-1", status="queued"))
        backend.check_job_status = AsyncMock(side_effect=[
            JobStatusResponse(success=True, status="processing"),
            JobStatusResponse(success=True, status="completed", output="https://cdn.openai.com/v.mp4"),
        ])

        async def scenario():
            env = await _make_env([Cell(cell_id="A1", prompt="a cat surfing", model="sora-2")], backend, credits=30)
            result = await env.runner.run_cell("s1", "A1")
            pending = await _stored_cell(env, "A1")
            balance_before = await _balance(env)

            handle = env.poller.get_handle("s1", "A1")
            outcome = await handle.task
            return result, pending, balance_before, outcome, await _stored_cell(env, "A1"), await _balance(env)

        result, pending, balance_before, outcome, cell, balance = asyncio.run(scenario())

        assert result.success
        assert result.needs_polling
        assert result.job_id == "job-1"
        assert pending.status == CellStatus.PENDING
        assert pending.job_id == "job-1"
        assert pending.generations[0].status == GenerationStatus.PENDING
        assert balance_before == 30

        assert outcome.success
        assert outcome.attempts == 2
        assert cell.status == CellStatus.COMPLETED
        assert cell.job_id is None
        assert cell.output == "https://cdn.openai.com/v.mp4"
        assert len(cell.generations) == 1
        assert cell.generations[0].status == GenerationStatus.COMPLETED
        assert cell.generations[0].job_id == "job-1"
        assert balance == 10


# ============================================================================
# MEDIA
# ============================================================================

class TestMedia:

    def _make_storage(self, upload):
        storage = MagicMock()
        storage.is_permanent = MagicMock(return_value=False)
        storage.upload_media_from_url = upload
        return storage

    def test_media_moved_to_permanent_storage(self):
        permanent = "https://acct.blob.core.windows.net/generated-media/images/u1/p1/s1/A1/1.png"
        storage = self._make_storage(AsyncMock(return_value=permanent))
        backend = _make_backend("https://images.example.com/tmp/a.png")
        phases = []

        async def scenario():
            env = await _make_env(
                [Cell(cell_id="A1", prompt="a cat", model="dall-e-3")], backend, storage=storage,
            )
            result = await env.runner.run_cell(
                "s1", "A1", on_progress=lambda cell_id, phase: phases.append(phase)
            )
            return result, await _stored_cell(env, "A1")

        result, cell = asyncio.run(scenario())

        assert result.output == permanent
        assert cell.output == permanent
        assert cell.generations[0].output == permanent
        assert storage.upload_media_from_url.await_args.args[1] == "u1/p1/s1/A1"
        assert RunPhase.UPLOADING in phases
        assert RunPhase.UPLOADED in phases

    def test_upload_failure_keeps_original_url(self):
        original = "https://images.example.com/tmp/a.png"
        storage = self._make_storage(AsyncMock(side_effect=UploadFailure(original, "403")))
        backend = _make_backend(original)

        async def scenario():
            env = await _make_env(
                [Cell(cell_id="A1", prompt="a cat", model="dall-e-3")], backend, storage=storage,
            )
            return await env.runner.run_cell("s1", "A1"), await _balance(env)

        result, balance = asyncio.run(scenario())

        assert result.success
        assert result.output == original
        assert len(result.warnings) == 1
        assert balance == 5

    def test_text_output_not_uploaded(self):
        storage = self._make_storage(AsyncMock())
        backend = _make_backend("just text")

        async def scenario():
            env = await _make_env([Cell(cell_id="A1", prompt="x")], backend, storage=storage)
            return await env.runner.run_cell("s1", "A1")

        assert asyncio.run(scenario()).output == "just text"
        storage.upload_media_from_url.assert_not_awaited()


# ============================================================================
# BATCHES
# ============================================================================

class TestRunMany:

    def test_dependency_order(self):
        backend = _echo_backend()

        async def scenario():
            env = await _make_env([
                Cell(cell_id="A1", prompt="seed"),
                Cell(cell_id="B1", prompt="use {{A1}}"),
            ], backend)
            return await env.runner.run_many("s1", ["B1", "A1"])

        results = asyncio.run(scenario())

        assert [r.cell_id for r in results] == ["A1", "B1"]
        assert results[1].output == "out:use out:seed"

    def test_empty_and_missing_cells_skipped(self):
        backend = _echo_backend()

        async def scenario():
            env = await _make_env([
                Cell(cell_id="A1", prompt="seed"),
                Cell(cell_id="B1", prompt="   "),
            ], backend)
            return await env.runner.run_many("s1", ["A1", "B1", "Z9"])

        results = asyncio.run(scenario())
        assert [r.cell_id for r in results] == ["A1"]

    def test_cycle_still_runs_every_cell(self):
        backend = _echo_backend()

        async def scenario():
            env = await _make_env([
                Cell(cell_id="A1", prompt="{{B1}}x"),
                Cell(cell_id="B1", prompt="{{A1}}y"),
            ], backend)
            return await env.runner.run_many("s1", ["A1", "B1"])

        results = asyncio.run(scenario())
        assert sorted(r.cell_id for r in results) == ["A1", "B1"]

    def test_auto_run_cascade(self):
        backend = _echo_backend()

        async def scenario():
            env = await _make_env([
                Cell(cell_id="A1", prompt="seed", auto_run=True),
                Cell(cell_id="B1", prompt="{{A1}} more", auto_run=True),
                Cell(cell_id="C1", prompt="{{A1}} manual"),
                Cell(cell_id="D1", prompt="{{B1}} last", auto_run=True),
            ], backend)
            return await env.runner.run_many("s1", ["A1"])

        results = asyncio.run(scenario())

        assert [r.cell_id for r in results] == ["A1", "B1", "D1"]
        assert results[2].output == "out:out:out:seed more last"

    def test_cascade_waits_for_incomplete_dependencies(self):
        backend = _echo_backend()

        async def scenario():
            env = await _make_env([
                Cell(cell_id="A1", prompt="seed", auto_run=True),
                Cell(cell_id="B1", prompt="never run"),
                Cell(cell_id="C1", prompt="{{A1}} {{B1}}", auto_run=True),
            ], backend)
            return await env.runner.run_many("s1", ["A1"])

        results = asyncio.run(scenario())
        assert [r.cell_id for r in results] == ["A1"]

    def test_no_cascade_without_auto_run(self):
        backend = _echo_backend()

        async def scenario():
            env = await _make_env([
                Cell(cell_id="A1", prompt="seed"),
                Cell(cell_id="B1", prompt="{{A1}}", auto_run=True),
            ], backend)
            return await env.runner.run_many("s1", ["A1"])

        assert [r.cell_id for r in asyncio.run(scenario())] == ["A1"]
