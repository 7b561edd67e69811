# ============================================================================
# BASE CONTRACTS & ENUMS
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Foundation - Core enums
# PURPOSE: Status and type enums shared by models, engine and API
# CREATED: 17 OCT 2026
# EXPORTS: CellStatus, GenerationStatus, GenerationType, ReturnType,
#          JobState, RunPhase
# DEPENDENCIES: enum
# ============================================================================
"""
Base contracts for the cell graph engine.

These enums cross every boundary:
- SQL (PostgreSQL rows store the .value)
- HTTP (generation backend and the public API)
- Python (runner, poller, resolver)
"""

from enum import Enum
from typing import Optional


# ============================================================================
# STATUS ENUMS
# ============================================================================

class CellStatus(str, Enum):
    """
    Cell lifecycle states.

    A cell with no status has never run. State transitions:
        (none) -> PENDING -> QUEUED/RUNNING/PROCESSING/IN_PROGRESS -> COMPLETED
                                                                   -> ERROR
               -> COMPLETED (synchronous generation)
               -> SKIPPED (execution condition false)
    """
    PENDING = "pending"          # Async job submitted
    QUEUED = "queued"            # Backend reported queued
    RUNNING = "running"          # Backend reported running
    PROCESSING = "processing"    # Backend reported processing
    IN_PROGRESS = "in_progress"  # Backend reported in_progress
    COMPLETED = "completed"      # Output available
    ERROR = "error"              # Last run failed
    SKIPPED = "skipped"          # Execution condition evaluated false

    def is_terminal(self) -> bool:
        """Check if this is a terminal state (no job outstanding)."""
        return self in (CellStatus.COMPLETED, CellStatus.ERROR, CellStatus.SKIPPED)

    def is_in_flight(self) -> bool:
        """Check if an async job is outstanding."""
        return not self.is_terminal()


class GenerationStatus(str, Enum):
    """
    Generation record states.

    Only an async entry moves after being appended:
        PENDING -> COMPLETED | ERROR
    """
    PENDING = "pending"
    COMPLETED = "completed"
    ERROR = "error"
    SKIPPED = "skipped"

    def is_terminal(self) -> bool:
        """Check if this is a terminal state."""
        return self != GenerationStatus.PENDING


class JobState(str, Enum):
    """
    Job states reported by the generation backend's status endpoint.
    """
    QUEUED = "queued"
    PENDING = "pending"
    RUNNING = "running"
    PROCESSING = "processing"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ERROR = "error"

    def is_success(self) -> bool:
        return self in (JobState.COMPLETED, JobState.SUCCEEDED)

    def is_failure(self) -> bool:
        return self in (JobState.FAILED, JobState.ERROR)

    def is_terminal(self) -> bool:
        return self.is_success() or self.is_failure()

    def to_cell_status(self) -> CellStatus:
        """Map a backend state onto the cell's status field."""
        if self.is_success():
            return CellStatus.COMPLETED
        if self.is_failure():
            return CellStatus.ERROR
        return CellStatus(self.value)

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["JobState"]:
        """Parse a backend status string; unknown values return None."""
        if not value:
            return None
        try:
            return cls(value.lower())
        except ValueError:
            return None


# ============================================================================
# TYPE ENUMS
# ============================================================================

class GenerationType(str, Enum):
    """Kind of media a model produces."""
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"

    def is_media(self) -> bool:
        return self != GenerationType.TEXT

    @classmethod
    def for_model(cls, model: Optional[str]) -> "GenerationType":
        """Infer the media type from a model id (dall-e-3 -> IMAGE)."""
        name = (model or "").lower()
        if "dall-e" in name or "imagen" in name:
            return cls.IMAGE
        if "sora" in name:
            return cls.VIDEO
        if "tts" in name:
            return cls.AUDIO
        return cls.TEXT


class ReturnType(str, Enum):
    """Which field of a referenced cell a reference reads."""
    PROMPT = "prompt"
    OUTPUT = "output"


class RunPhase(str, Enum):
    """
    Progress phases reported to run callbacks.
    """
    RESOLVING = "resolving"
    SKIPPED = "skipped"
    GENERATING = "generating"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    SAVING = "saving"
    COMPLETE = "complete"
    POLLING = "polling"
    ERROR = "error"


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "CellStatus",
    "GenerationStatus",
    "JobState",
    "GenerationType",
    "ReturnType",
    "RunPhase",
]
