# ============================================================================
# STRUCTURED LOGGING
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - Structured logging with context
# PURPOSE: Consistent, queryable logging across runner, poller and API
# CREATED: 17 OCT 2026
# ============================================================================
"""
Structured Logging

Provides structured, JSON-formatted logging for the cell graph engine.

Features:
- Component-based loggers
- Contextual fields (sheet_id, cell_id, job_id, user_id)
- Context carried per asyncio task via contextvars
- JSON output for log aggregation
- Named checkpoints for tracing a cell run

Usage:
    from core.logging import get_logger, log_context

    logger = get_logger("orchestrator.runner")

    with log_context(sheet_id="sheet-1", cell_id="A1"):
        logger.info("Running cell")
"""

import contextvars
import json
import logging
import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union
from enum import Enum


class ComponentType(str, Enum):
    """Component types for logging categorization."""
    ORCHESTRATOR = "orchestrator"
    POLLER = "poller"
    API = "api"
    REPOSITORY = "repository"
    SERVICE = "service"
    INFRASTRUCTURE = "infrastructure"


@dataclass
class LogContext:
    """
    Context for structured logging.

    One instance per active log_context block, stored in a ContextVar so
    concurrent tasks (one per polled job) keep separate fields.
    """
    user_id: Optional[str] = None
    project_id: Optional[str] = None
    sheet_id: Optional[str] = None
    cell_id: Optional[str] = None
    job_id: Optional[str] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict, excluding None values."""
        result = {}
        for key, value in asdict(self).items():
            if value is not None and key != "extra":
                result[key] = value
        if self.extra:
            result.update(self.extra)
        return result


_current_context: contextvars.ContextVar[Optional[LogContext]] = contextvars.ContextVar(
    "log_context", default=None
)


def get_current_context() -> LogContext:
    """Get current logging context."""
    context = _current_context.get()
    if context is None:
        return LogContext()
    return context


@contextmanager
def log_context(**kwargs):
    """
    Context manager for adding logging context.

    Args:
        **kwargs: Context fields to add

    Example:
        with log_context(sheet_id="sheet-1", cell_id="B2"):
            logger.info("Resolving template")
    """
    parent = get_current_context()
    new_context = LogContext(
        user_id=kwargs.get("user_id", parent.user_id),
        project_id=kwargs.get("project_id", parent.project_id),
        sheet_id=kwargs.get("sheet_id", parent.sheet_id),
        cell_id=kwargs.get("cell_id", parent.cell_id),
        job_id=kwargs.get("job_id", parent.job_id),
        component=kwargs.get("component", parent.component),
        operation=kwargs.get("operation", parent.operation),
        extra={**parent.extra, **kwargs.get("extra", {})},
    )

    token = _current_context.set(new_context)
    try:
        yield new_context
    finally:
        _current_context.reset(token)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StructuredFormatter(logging.Formatter):
    """
    One JSON object per record, for log aggregation.

    Keys: timestamp, level, logger, message, plus cell context, checkpoint
    data and exception text when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": _utc_now().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        cell_context = get_current_context().to_dict()
        if cell_context:
            payload["context"] = cell_context

        data = getattr(record, "extra", None)
        if data:
            payload["data"] = data

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        payload["source"] = f"{record.filename}:{record.lineno}"
        return json.dumps(payload, default=str)


class HumanFormatter(logging.Formatter):
    """Development output with the cell coordinates inline, e.g. ``[sheet=s1, cell=A1]``."""

    _CONTEXT_FIELDS = (("sheet", "sheet_id"), ("cell", "cell_id"), ("job", "job_id"))

    def format(self, record: logging.LogRecord) -> str:
        timestamp = _utc_now().strftime("%Y-%m-%d %H:%M:%S")
        level = record.levelname.ljust(8)

        context = get_current_context()
        context_parts = [
            f"{label}={getattr(context, attr)}"
            for label, attr in self._CONTEXT_FIELDS
            if getattr(context, attr)
        ]

        context_str = f" [{', '.join(context_parts)}]" if context_parts else ""
        message = record.getMessage()

        data = getattr(record, "extra", None)
        extra_str = f" {data}" if data else ""

        result = f"{timestamp} {level} {record.name}{context_str}: {message}{extra_str}"

        if record.exc_info:
            result += f"\n{self.formatException(record.exc_info)}"

        return result


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that includes context in log records.

    Automatically includes the task-local context in all log messages.
    """

    def process(self, msg, kwargs):
        """Process log record to include context."""
        context = get_current_context()

        extra = kwargs.get("extra", {})
        extra.update(context.to_dict())
        if self.extra and self.extra.get("component"):
            extra.setdefault("component", str(self.extra["component"].value))

        kwargs["extra"] = {"extra": extra}

        return msg, kwargs


def get_logger(
    name: str,
    component: Optional[ComponentType] = None,
) -> ContextLogger:
    """
    Get a context-aware logger.

    Args:
        name: Logger name (e.g., "orchestrator.runner")
        component: Optional component type for categorization

    Returns:
        ContextLogger instance
    """
    base_logger = logging.getLogger(name)
    return ContextLogger(base_logger, {"component": component})


def configure_logging(
    level: Union[str, int, None] = None,
    json_output: bool = False,
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to LOG_LEVEL.
        json_output: Use JSON format (for production). LOG_FORMAT=json also
            enables it.
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if json_output or os.getenv("LOG_FORMAT", "").lower() == "json":
        formatter = StructuredFormatter()
    else:
        formatter = HumanFormatter()

    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root.addHandler(handler)

    # httpx logs every request at INFO; the poller makes one per second
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ============================================================================
# CHECKPOINT LOGGING
# ============================================================================

def log_checkpoint(
    name: str,
    data: Optional[Dict[str, Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    """
    Log a named checkpoint in a cell's lifecycle.

    Checkpoints are named markers (e.g. "cell_run_started",
    "job_poll_completed") that can be queried to follow one run.

    Args:
        name: Checkpoint name
        data: Optional checkpoint data
        logger: Optional specific logger to use
    """
    if logger is None:
        logger = logging.getLogger("checkpoint")

    checkpoint_data = {
        "checkpoint": name,
        "timestamp": _utc_now().isoformat(),
    }
    checkpoint_data.update(get_current_context().to_dict())

    if data:
        checkpoint_data["data"] = data

    logger.info(f"CHECKPOINT: {name}", extra={"extra": checkpoint_data})


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ComponentType",
    "LogContext",
    "StructuredFormatter",
    "HumanFormatter",
    "ContextLogger",
    "get_logger",
    "configure_logging",
    "log_context",
    "get_current_context",
    "log_checkpoint",
]
