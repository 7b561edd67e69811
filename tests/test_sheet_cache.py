# ============================================================================
# SHEET CACHE TESTS
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Tests - Lazy, snapshot-based sheet registry
# PURPOSE: Verify load-once, single-flight loads and write merging
# CREATED: 17 OCT 2026
# ============================================================================
"""
Sheet Cache Tests

Tests cover:
1. Lazy loading: a sheet's cells are fetched once, then reused
2. Single-flight: concurrent first readers share one store load
3. Writes made while a load is in flight survive the merge
4. Snapshots are never mutated by later writes

Run with:
    pytest tests/test_sheet_cache.py -v
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from core.models import Cell, Sheet
from orchestrator.engine.resolver import DependencyResolver, ResolutionContext
from services.sheet_cache import SheetCache


# ============================================================================
# HELPERS
# ============================================================================

def _make_store(get_sheet_cells=None):
    """Store mock with two unloaded sheets; Research holds A1 and B1."""
    store = AsyncMock()
    store.list_sheets = AsyncMock(return_value=[
        Sheet(sheet_id="s1", name="Main"),
        Sheet(sheet_id="s2", name="Research"),
    ])
    store.get_sheet_cells = get_sheet_cells or AsyncMock(return_value={
        "A1": Cell(cell_id="A1", prompt="Collect facts", output="Fact list"),
        "B1": Cell(cell_id="B1", prompt="Summarize", output="Summary"),
    })
    return store


async def _make_cache(store):
    cache = SheetCache(store, "u1", "p1")
    await cache.refresh_sheets()
    return cache


# ============================================================================
# LAZY LOADING
# ============================================================================

class TestLazyLoad:

    def test_registered_sheets_start_unloaded(self):
        async def scenario():
            store = _make_store()
            cache = await _make_cache(store)
            return store, cache.peek("s2")

        store, snapshot = asyncio.run(scenario())
        assert snapshot.loaded is False
        assert store.get_sheet_cells.await_count == 0

    def test_cells_loaded_once(self):
        async def scenario():
            store = _make_store()
            cache = await _make_cache(store)
            first = await cache.get_or_load("s2")
            second = await cache.get_or_load("s2")
            return store, first, second

        store, first, second = asyncio.run(scenario())
        assert store.get_sheet_cells.await_count == 1
        store.get_sheet_cells.assert_awaited_with("u1", "p1", "s2")
        assert first is second
        assert first.get("A1").output == "Fact list"

    def test_unknown_sheet_returns_none(self):
        async def scenario():
            store = _make_store()
            cache = await _make_cache(store)
            return store, await cache.get_or_load("missing")

        store, snapshot = asyncio.run(scenario())
        assert snapshot is None
        assert store.get_sheet_cells.await_count == 0

    def test_refresh_keeps_loaded_cells(self):
        async def scenario():
            store = _make_store()
            cache = await _make_cache(store)
            await cache.get_or_load("s2")
            store.list_sheets.return_value = [Sheet(sheet_id="s2", name="Notes")]
            await cache.refresh_sheets()
            snapshot = await cache.get_or_load("s2")
            return store, cache, snapshot

        store, cache, snapshot = asyncio.run(scenario())
        assert store.get_sheet_cells.await_count == 1
        assert snapshot.name == "Notes"
        assert snapshot.get("B1").output == "Summary"
        assert cache.find_sheet_id("notes") == "s2"


# ============================================================================
# SINGLE-FLIGHT
# ============================================================================

class TestSingleFlight:

    def test_concurrent_loads_share_one_fetch(self):
        async def scenario():
            store = _make_store()
            cache = await _make_cache(store)
            return store, await asyncio.gather(
                cache.get_or_load("s2"),
                cache.get_or_load("s2"),
                cache.get_or_load("s2"),
            )

        store, snapshots = asyncio.run(scenario())
        assert store.get_sheet_cells.await_count == 1
        assert all(s is snapshots[0] for s in snapshots)

    def test_concurrent_cross_sheet_references_share_one_fetch(self):
        async def scenario():
            store = _make_store()
            cache = await _make_cache(store)
            resolver = DependencyResolver()
            context = ResolutionContext(cache=cache, sheet_id="s1")
            results = await asyncio.gather(
                resolver.resolve_reference("output:Research!A1", context),
                resolver.resolve_reference("output:Research!B1", context),
            )
            return store, results

        store, results = asyncio.run(scenario())
        assert store.get_sheet_cells.await_count == 1
        assert [r.value for r in results] == ["Fact list", "Summary"]

    def test_failed_load_can_be_retried(self):
        async def scenario():
            fetch = AsyncMock(side_effect=[
                RuntimeError("db down"),
                {"A1": Cell(cell_id="A1", prompt="p", output="recovered")},
            ])
            store = _make_store(get_sheet_cells=fetch)
            cache = await _make_cache(store)
            with pytest.raises(RuntimeError):
                await cache.get_or_load("s2")
            return store, await cache.get_or_load("s2")

        store, snapshot = asyncio.run(scenario())
        assert store.get_sheet_cells.await_count == 2
        assert snapshot.get("A1").output == "recovered"


# ============================================================================
# WRITES
# ============================================================================

class TestWritesDuringLoad:

    def test_write_during_load_survives_merge(self):
        async def scenario():
            started = asyncio.Event()
            release = asyncio.Event()

            async def slow_fetch(user_id, project_id, sheet_id):
                started.set()
                await release.wait()
                return {
                    "A1": Cell(cell_id="A1", prompt="Collect facts", output="stale"),
                    "B1": Cell(cell_id="B1", prompt="Summarize", output="Summary"),
                }

            store = _make_store(get_sheet_cells=AsyncMock(side_effect=slow_fetch))
            cache = await _make_cache(store)

            load = asyncio.create_task(cache.get_or_load("s2"))
            await started.wait()
            cache.put_cell("s2", Cell(cell_id="A1", prompt="Collect facts", output="fresh"))
            release.set()
            return await load

        snapshot = asyncio.run(scenario())
        assert snapshot.loaded is True
        assert snapshot.get("A1").output == "fresh"
        assert snapshot.get("B1").output == "Summary"

    def test_put_cell_leaves_held_snapshot_untouched(self):
        async def scenario():
            cache = await _make_cache(_make_store())
            before = await cache.get_or_load("s2")
            after = cache.put_cell("s2", Cell(cell_id="A1", prompt="Collect facts", output="new"))
            return before, after, cache.peek("s2")

        before, after, current = asyncio.run(scenario())
        assert before.get("A1").output == "Fact list"
        assert after.get("A1").output == "new"
        assert current is after
        assert after.loaded is True

    def test_put_cell_unknown_sheet_raises(self):
        async def scenario():
            cache = await _make_cache(_make_store())
            cache.put_cell("missing", Cell(cell_id="A1", prompt="p"))

        with pytest.raises(KeyError):
            asyncio.run(scenario())
