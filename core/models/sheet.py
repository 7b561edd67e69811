# ============================================================================
# SHEET MODEL
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core model - Named collection of cells
# PURPOSE: Group cells; cross-sheet references address sheets by name
# CREATED: 17 OCT 2026
# EXPORTS: Sheet
# DEPENDENCIES: pydantic
# ============================================================================
"""
Sheet Model

A Sheet is a named collection of cells. Sheet names are matched
case-insensitively by cross-sheet references ({{Research!A1}}).
"""

from typing import Dict, Optional
from pydantic import BaseModel, Field

from core.models.cell import Cell


class Sheet(BaseModel):
    """
    A named collection of cells within a project.

    cells may be empty until the sheet is first loaded.
    """
    sheet_id: str = Field(..., min_length=1, max_length=128)
    name: str = Field(..., min_length=1, max_length=256)
    project_id: Optional[str] = None
    cells: Dict[str, Cell] = Field(default_factory=dict)

    model_config = {"frozen": False}

    def matches_name(self, name: str) -> bool:
        return self.name.strip().lower() == name.strip().lower()


__all__ = ["Sheet"]
