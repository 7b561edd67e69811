# ============================================================================
# CELL & GENERATION MODELS
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core model - Cell configuration, state and history
# PURPOSE: Fixed records for cells and their generation history
# CREATED: 17 OCT 2026
# EXPORTS: Cell, Generation
# DEPENDENCIES: pydantic
# ============================================================================
"""
Cell & Generation Models

A Cell holds a prompt template plus execution configuration. Every run
appends one Generation to the cell's history.

Key concept:
- Cell.generations is stored NEWEST-FIRST (index 0 is the latest run)
- References address generations 1-based OLDEST-FIRST ({{A1-1}} is the
  first run ever); see orchestrator.engine.resolver for the conversion
- Only the single outstanding async Generation changes after append
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional
from pydantic import BaseModel, Field, computed_field

from core.contracts import CellStatus, GenerationStatus, GenerationType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Output text used by the UI before a cell has ever run
NO_GENERATIONS_SENTINEL = "No generations yet"

SKIPPED_OUTPUT = "[Cell execution skipped due to condition]"


class Generation(BaseModel):
    """
    One historical execution record for a cell.

    Lifecycle:
        Synchronous: appended COMPLETED (or ERROR / SKIPPED), never changes
        Asynchronous: appended PENDING with job_id, later completed in place
    """
    generation_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    prompt: str = Field(default="", description="Raw template text as written")
    resolved_prompt: str = Field(default="", description="Prompt after dependency substitution")
    output: str = Field(default="")
    model: Optional[str] = None
    temperature: Optional[float] = None
    type: GenerationType = Field(default=GenerationType.TEXT)
    status: GenerationStatus = Field(default=GenerationStatus.COMPLETED)
    job_id: Optional[str] = Field(default=None, max_length=256)
    error: Optional[str] = Field(default=None, max_length=2000)
    timestamp: datetime = Field(default_factory=_utcnow)

    model_config = {"frozen": False}

    def mark_completed(self, output: str) -> None:
        """Complete a pending entry in place."""
        if self.status.is_terminal():
            raise ValueError(f"Cannot complete generation in status {self.status}")
        self.status = GenerationStatus.COMPLETED
        self.output = output

    def mark_error(self, message: str) -> None:
        """Fail a pending entry in place."""
        if self.status.is_terminal():
            raise ValueError(f"Cannot fail generation in status {self.status}")
        self.status = GenerationStatus.ERROR
        self.error = message[:2000]
        self.output = f"Error: {message}"


class Cell(BaseModel):
    """
    A named unit holding a prompt template and its generation history.

    cell_id is a grid-style name ("A1") and never changes after creation.
    """
    cell_id: str = Field(..., min_length=1, max_length=32, frozen=True)

    # Template
    prompt: str = Field(default="")
    cell_prompt: Optional[str] = Field(
        default=None,
        description="Fixed prefix template prepended to the prompt"
    )

    # Latest result (written only by the runner and poller)
    output: str = Field(default="")

    # Execution configuration
    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    output_format: Optional[str] = None
    character_limit: Optional[int] = Field(default=None, gt=0)
    condition: Optional[str] = Field(
        default=None,
        description="Execution condition; when false the cell is skipped"
    )
    auto_run: bool = False

    # Video settings
    video_seconds: Optional[str] = None
    video_resolution: Optional[str] = None
    video_aspect_ratio: Optional[str] = None

    # Audio settings
    audio_voice: Optional[str] = None
    audio_speed: Optional[float] = None
    audio_format: Optional[str] = None

    # Run state
    status: Optional[CellStatus] = None
    job_id: Optional[str] = Field(default=None, max_length=256)
    generations: List[Generation] = Field(default_factory=list)
    updated_at: Optional[datetime] = None

    model_config = {"frozen": False}

    @computed_field
    @property
    def has_pending_job(self) -> bool:
        """Check if an async job is outstanding."""
        return self.job_id is not None and self.status is not None and self.status.is_in_flight()

    @property
    def latest_generation(self) -> Optional[Generation]:
        return self.generations[0] if self.generations else None

    def effective_template(self) -> str:
        """Fixed prefix (if any) followed by the user prompt."""
        if self.cell_prompt:
            return f"{self.cell_prompt}\n\n{self.prompt}"
        return self.prompt

    def has_valid_output(self) -> bool:
        """True when output holds a real result rather than a placeholder."""
        text = self.output.strip()
        return bool(text) and text != NO_GENERATIONS_SENTINEL

    def append_generation(self, generation: Generation) -> None:
        """Record a new run. Storage order is newest-first."""
        self.generations.insert(0, generation)
        self.updated_at = _utcnow()

    def find_generation(self, job_id: str) -> Optional[Generation]:
        """Find the generation created for an async job."""
        for generation in self.generations:
            if generation.job_id == job_id:
                return generation
        return None

    def mark_pending(self, job_id: str) -> None:
        """Async job submitted."""
        self.status = CellStatus.PENDING
        self.job_id = job_id
        self.updated_at = _utcnow()

    def mark_progress(self, status: CellStatus) -> None:
        """Backend reported a non-terminal job status."""
        self.status = status
        self.updated_at = _utcnow()

    def mark_completed(self, output: str) -> None:
        """Store a finished result and clear any outstanding job."""
        self.output = output
        self.status = CellStatus.COMPLETED
        self.job_id = None
        self.updated_at = _utcnow()

    def mark_error(self) -> None:
        self.status = CellStatus.ERROR
        self.job_id = None
        self.updated_at = _utcnow()

    def mark_skipped(self) -> None:
        self.status = CellStatus.SKIPPED
        self.updated_at = _utcnow()


__all__ = [
    "Cell",
    "Generation",
    "NO_GENERATIONS_SENTINEL",
    "SKIPPED_OUTPUT",
]
