# ============================================================================
# CELL REPOSITORY
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - Sheet, cell and generation persistence
# PURPOSE: PostgreSQL CellStore
# CREATED: 17 OCT 2026
# ============================================================================
"""
Cell Repository

PostgreSQL implementation of CellStore.

Tables:
- sheets: one row per sheet (name, position)
- cells: one row per cell; configuration and output in a JSONB column,
  status and job_id as columns so in-flight jobs can be queried
- generations: one row per run, upserted by generation_id
"""

import logging
from typing import Any, Dict, List

from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Json
from psycopg_pool import AsyncConnectionPool

from core.contracts import CellStatus
from core.interfaces import CellStore
from core.models import Cell, Generation, Sheet
from .database import TABLE_CELLS, TABLE_GENERATIONS, TABLE_SHEETS

logger = logging.getLogger(__name__)

# Stored in their own rows, not in the cell's JSON
_CELL_EXCLUDE = {"generations", "has_pending_job"}


class PostgresCellStore(CellStore):
    """CellStore backed by PostgreSQL."""

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    # =========================================================================
    # SHEETS
    # =========================================================================

    async def list_sheets(self, user_id: str, project_id: str) -> List[Sheet]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT sheet_id, name FROM {}
                WHERE user_id = %s AND project_id = %s
                ORDER BY position, created_at
                """).format(TABLE_SHEETS),
                (user_id, project_id),
            )
            rows = await result.fetchall()
            return [
                Sheet(sheet_id=row["sheet_id"], name=row["name"], project_id=project_id)
                for row in rows
            ]

    async def save_sheet(self, user_id: str, project_id: str, sheet: Sheet, position: int = 0) -> None:
        """Upsert a sheet row (cells are saved separately)."""
        async with self.pool.connection() as conn:
            await conn.execute(
                sql.SQL("""
                INSERT INTO {} (user_id, project_id, sheet_id, name, position)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (user_id, project_id, sheet_id)
                DO UPDATE SET name = EXCLUDED.name, position = EXCLUDED.position
                """).format(TABLE_SHEETS),
                (user_id, project_id, sheet.sheet_id, sheet.name, position),
            )

    # =========================================================================
    # CELLS
    # =========================================================================

    async def get_sheet_cells(
        self,
        user_id: str,
        project_id: str,
        sheet_id: str,
    ) -> Dict[str, Cell]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT cell_id, status, job_id, data FROM {}
                WHERE user_id = %s AND project_id = %s AND sheet_id = %s
                """).format(TABLE_CELLS),
                (user_id, project_id, sheet_id),
            )
            rows = await result.fetchall()

        cells = {}
        for row in rows:
            cell = self._row_to_cell(row)
            cells[cell.cell_id] = cell
        logger.debug(f"Loaded {len(cells)} cells for sheet {sheet_id}")
        return cells

    async def save_cell(
        self,
        user_id: str,
        project_id: str,
        sheet_id: str,
        cell: Cell,
    ) -> None:
        data = cell.model_dump(mode="json", exclude=_CELL_EXCLUDE)
        async with self.pool.connection() as conn:
            await conn.execute(
                sql.SQL("""
                INSERT INTO {} (user_id, project_id, sheet_id, cell_id, status, job_id, data, updated_at)
                VALUES (%(user_id)s, %(project_id)s, %(sheet_id)s, %(cell_id)s,
                        %(status)s, %(job_id)s, %(data)s, now())
                ON CONFLICT (user_id, project_id, sheet_id, cell_id)
                DO UPDATE SET
                    status = EXCLUDED.status,
                    job_id = EXCLUDED.job_id,
                    data = EXCLUDED.data,
                    updated_at = now()
                """).format(TABLE_CELLS),
                {
                    "user_id": user_id,
                    "project_id": project_id,
                    "sheet_id": sheet_id,
                    "cell_id": cell.cell_id,
                    "status": cell.status.value if cell.status else None,
                    "job_id": cell.job_id,
                    "data": Json(data),
                },
            )
            logger.debug(f"Saved cell {cell.cell_id} status={cell.status}")

    # =========================================================================
    # GENERATIONS
    # =========================================================================

    async def save_generation(
        self,
        user_id: str,
        project_id: str,
        sheet_id: str,
        cell_id: str,
        generation: Generation,
    ) -> None:
        async with self.pool.connection() as conn:
            await conn.execute(
                sql.SQL("""
                INSERT INTO {} (
                    generation_id, user_id, project_id, sheet_id, cell_id,
                    prompt, resolved_prompt, output, model, temperature,
                    type, status, job_id, error, timestamp
                ) VALUES (
                    %(generation_id)s, %(user_id)s, %(project_id)s, %(sheet_id)s, %(cell_id)s,
                    %(prompt)s, %(resolved_prompt)s, %(output)s, %(model)s, %(temperature)s,
                    %(type)s, %(status)s, %(job_id)s, %(error)s, %(timestamp)s
                )
                ON CONFLICT (generation_id) DO UPDATE SET
                    output = EXCLUDED.output,
                    status = EXCLUDED.status,
                    error = EXCLUDED.error,
                    timestamp = EXCLUDED.timestamp
                """).format(TABLE_GENERATIONS),
                {
                    "generation_id": generation.generation_id,
                    "user_id": user_id,
                    "project_id": project_id,
                    "sheet_id": sheet_id,
                    "cell_id": cell_id,
                    "prompt": generation.prompt,
                    "resolved_prompt": generation.resolved_prompt,
                    "output": generation.output,
                    "model": generation.model,
                    "temperature": generation.temperature,
                    "type": generation.type.value,
                    "status": generation.status.value,
                    "job_id": generation.job_id,
                    "error": generation.error,
                    "timestamp": generation.timestamp,
                },
            )
            logger.debug(
                f"Saved generation {generation.generation_id} for cell {cell_id} "
                f"status={generation.status.value}"
            )

    async def get_generations(
        self,
        user_id: str,
        project_id: str,
        sheet_id: str,
        cell_id: str,
    ) -> List[Generation]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT * FROM {}
                WHERE user_id = %s AND project_id = %s AND sheet_id = %s AND cell_id = %s
                ORDER BY timestamp DESC
                """).format(TABLE_GENERATIONS),
                (user_id, project_id, sheet_id, cell_id),
            )
            rows = await result.fetchall()
            return [self._row_to_generation(row) for row in rows]

    # =========================================================================
    # ROW MAPPING
    # =========================================================================

    def _row_to_cell(self, row: Dict[str, Any]) -> Cell:
        data = dict(row["data"] or {})
        data["cell_id"] = row["cell_id"]
        data["status"] = CellStatus(row["status"]) if row["status"] else None
        data["job_id"] = row["job_id"]
        return Cell.model_validate(data)

    def _row_to_generation(self, row: Dict[str, Any]) -> Generation:
        return Generation(
            generation_id=row["generation_id"],
            prompt=row["prompt"],
            resolved_prompt=row["resolved_prompt"],
            output=row["output"],
            model=row["model"],
            temperature=row["temperature"],
            type=row["type"],
            status=row["status"],
            job_id=row["job_id"],
            error=row["error"],
            timestamp=row["timestamp"],
        )


__all__ = ["PostgresCellStore"]
