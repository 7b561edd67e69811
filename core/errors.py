# ============================================================================
# ERROR TAXONOMY
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - Resolution error kinds and execution exceptions
# PURPOSE: One place for every failure the engine can report
# CREATED: 17 OCT 2026
# ============================================================================
"""
Error Taxonomy

Two families:

- Resolution errors (ReferenceNotFound, SheetNotFound, EmptyValue,
  GenerationRangeOutOfBounds) are values, not exceptions. The resolver
  returns them inside a Resolution and callers either render them inline
  as sentinel text or raise ReferenceResolutionError.
- Execution errors (InsufficientCredits, GenerationFailure, JobTimeout,
  JobFailed, UploadFailure, Cancelled) are exceptions raised inside the
  runner and poller, then captured into an error Generation.

Usage:
    from core.errors import ResolutionError, InsufficientCredits

    err = ResolutionError.sheet_not_found("Research")
    err.render()  # '[Sheet "Research" not found]'
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


# ============================================================================
# RESOLUTION ERRORS (VALUES)
# ============================================================================

class ResolutionErrorKind(str, Enum):
    """Why a single reference could not produce a value."""
    REFERENCE_NOT_FOUND = "reference_not_found"
    SHEET_NOT_FOUND = "sheet_not_found"
    EMPTY_VALUE = "empty_value"
    GENERATION_RANGE_OUT_OF_BOUNDS = "generation_range_out_of_bounds"


@dataclass(frozen=True)
class ResolutionError:
    """
    A tagged resolution failure.

    message is already in sentinel form so it can be embedded in a prompt
    verbatim.
    """
    kind: ResolutionErrorKind
    message: str
    reference: Optional[str] = None

    def render(self) -> str:
        return self.message

    @classmethod
    def sheet_not_found(cls, sheet_name: str, reference: Optional[str] = None) -> "ResolutionError":
        return cls(
            ResolutionErrorKind.SHEET_NOT_FOUND,
            f'[Sheet "{sheet_name}" not found]',
            reference,
        )

    @classmethod
    def reference_not_found(
        cls,
        cell_id: str,
        sheet_name: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> "ResolutionError":
        where = f' in sheet "{sheet_name}"' if sheet_name else ""
        return cls(
            ResolutionErrorKind.REFERENCE_NOT_FOUND,
            f"[ERROR: Cell {cell_id} not found{where}]",
            reference,
        )

    @classmethod
    def empty_value(cls, cell_id: str, field_name: str, reference: Optional[str] = None) -> "ResolutionError":
        if field_name == "prompt":
            detail = "has no prompt text available"
        else:
            detail = "has no output or prompt available"
        return cls(
            ResolutionErrorKind.EMPTY_VALUE,
            f"[ERROR: Cell {cell_id} {detail}]",
            reference,
        )

    @classmethod
    def no_generations(cls, cell_id: str, reference: Optional[str] = None) -> "ResolutionError":
        return cls(
            ResolutionErrorKind.GENERATION_RANGE_OUT_OF_BOUNDS,
            f"[ERROR: Cell {cell_id} has no generations]",
            reference,
        )

    @classmethod
    def out_of_range(
        cls,
        cell_id: str,
        start: int,
        end: Optional[int],
        available: int,
        reference: Optional[str] = None,
    ) -> "ResolutionError":
        if end is None:
            what = f"generation {start}"
        else:
            what = f"generation range {start}-{end}"
        return cls(
            ResolutionErrorKind.GENERATION_RANGE_OUT_OF_BOUNDS,
            f"[ERROR: Cell {cell_id} {what} not found (has {available} generations)]",
            reference,
        )


class ReferenceResolutionError(Exception):
    """Raised by strict template resolution on the first failed reference."""
    def __init__(self, error: ResolutionError):
        self.error = error
        self.kind = error.kind
        super().__init__(error.message)


# ============================================================================
# EXECUTION ERRORS (EXCEPTIONS)
# ============================================================================

class CellExecutionError(Exception):
    """Base exception for failures while running a cell."""
    pass


class InsufficientCredits(CellExecutionError):
    """Raised when the user's balance cannot cover the generation cost."""
    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient credits. You need {required} credits but only have "
            f"{available}. Please upgrade your subscription."
        )


class GenerationFailure(CellExecutionError):
    """Raised when the backend rejects or fails a generation call."""
    def __init__(self, message: str, model: Optional[str] = None):
        self.model = model
        super().__init__(message)


class JobTimeout(CellExecutionError):
    """Raised when an async job stays non-terminal past the attempt limit."""
    def __init__(self, job_id: str, attempts: int):
        self.job_id = job_id
        self.attempts = attempts
        super().__init__("Generation timed out. The job may still be processing.")


class JobFailed(CellExecutionError):
    """Raised when the backend reports an async job as failed."""
    def __init__(self, job_id: str, detail: Optional[str] = None):
        self.job_id = job_id
        self.detail = detail
        super().__init__(detail or "Generation failed")


class UploadFailure(CellExecutionError):
    """Raised by media storage; the runner keeps the original URL."""
    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to upload media from {url[:100]}: {reason}")


class Cancelled(CellExecutionError):
    """Raised when a poll observes its cancellation token."""
    def __init__(self, cell_id: str, job_id: Optional[str] = None):
        self.cell_id = cell_id
        self.job_id = job_id
        super().__init__(f"Polling cancelled for cell {cell_id}")


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ResolutionErrorKind",
    "ResolutionError",
    "ReferenceResolutionError",
    "CellExecutionError",
    "InsufficientCredits",
    "GenerationFailure",
    "JobTimeout",
    "JobFailed",
    "UploadFailure",
    "Cancelled",
]
