# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - Default configuration values
# PURPOSE: Centralized defaults for polling, generation, credits, storage
# CREATED: 17 OCT 2026
# ============================================================================
"""
Configuration Defaults

Provides sensible defaults for cell execution.
These can be overridden via environment variables.

Design:
- Immutable dataclasses for defaults
- Environment variable overrides
- Type-safe access
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple
from enum import Enum


class StoreBackend(str, Enum):
    """Persistence backends selectable via STORE_BACKEND."""
    MEMORY = "memory"
    POSTGRES = "postgres"


@dataclass(frozen=True)
class PollingDefaults:
    """
    Defaults for async job polling.

    interval_seconds * max_attempts is the overall job timeout.
    """
    interval_seconds: float = 1.0
    max_attempts: int = 120

    @property
    def timeout_seconds(self) -> float:
        return self.interval_seconds * self.max_attempts

    @classmethod
    def from_env(cls) -> "PollingDefaults":
        """Create from environment variables."""
        return cls(
            interval_seconds=float(os.getenv("POLL_INTERVAL_SECONDS", 1.0)),
            max_attempts=int(os.getenv("POLL_MAX_ATTEMPTS", 120)),
        )


@dataclass(frozen=True)
class GenerationDefaults:
    """
    Defaults for a single cell generation.

    Controls model selection, prompt shaping and per-type media settings.
    """
    default_model: str = "gpt-3.5-turbo"
    default_temperature: float = 0.7

    # Prompt shaping
    chars_per_token: int = 4
    optimize_prompts: bool = True
    optimize_threshold_chars: int = 100

    # Video
    video_seconds_allowed: Tuple[str, ...] = ("4", "8", "12")
    video_seconds: str = "8"
    video_resolution: str = "720p"
    video_aspect_ratio: str = "9:16"

    # Audio
    audio_voice: str = "alloy"
    audio_speed: float = 1.0
    audio_format: str = "mp3"

    @classmethod
    def from_env(cls) -> "GenerationDefaults":
        """Create from environment variables."""
        return cls(
            default_model=os.getenv("DEFAULT_MODEL", "gpt-3.5-turbo"),
            default_temperature=float(os.getenv("DEFAULT_TEMPERATURE", 0.7)),
            optimize_prompts=os.getenv("OPTIMIZE_PROMPTS", "true").lower() == "true",
        )


@dataclass(frozen=True)
class CreditDefaults:
    """
    Defaults for the per-user credit ledger.

    plan_credits maps plan id to its monthly allotment.
    """
    reset_period_days: int = 30
    default_plan: str = "free"
    plan_credits: Dict[str, int] = field(default_factory=lambda: {
        "free": 50,
        "starter": 500,
        "pro": 2000,
        "enterprise": 10000,
    })

    def monthly_credits(self, plan_id: Optional[str]) -> int:
        """Monthly allotment for a plan; unknown plans get the default plan's."""
        if plan_id and plan_id in self.plan_credits:
            return self.plan_credits[plan_id]
        return self.plan_credits[self.default_plan]

    @classmethod
    def from_env(cls) -> "CreditDefaults":
        """Create from environment variables."""
        return cls(
            reset_period_days=int(os.getenv("CREDIT_RESET_DAYS", 30)),
        )


@dataclass(frozen=True)
class BackendDefaults:
    """
    Defaults for the HTTP generation backend.
    """
    base_url: str = "http://localhost:3001"
    timeout_seconds: float = 120.0
    connect_timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> "BackendDefaults":
        """Create from environment variables."""
        return cls(
            base_url=os.getenv("GENERATION_API_URL", "http://localhost:3001").rstrip("/"),
            timeout_seconds=float(os.getenv("GENERATION_TIMEOUT_SECONDS", 120.0)),
        )


@dataclass(frozen=True)
class StorageDefaults:
    """
    Defaults for permanent media storage.

    An empty account_name disables uploads; media URLs are then kept as-is.
    """
    account_name: str = ""
    container_name: str = "generated-media"
    download_timeout_seconds: float = 60.0

    @property
    def account_url(self) -> str:
        return f"https://{self.account_name}.blob.core.windows.net"

    @classmethod
    def from_env(cls) -> "StorageDefaults":
        """Create from environment variables."""
        return cls(
            account_name=os.getenv("MEDIA_STORAGE_ACCOUNT", ""),
            container_name=os.getenv("MEDIA_STORAGE_CONTAINER", "generated-media"),
        )


# ============================================================================
# GLOBAL DEFAULTS INSTANCE
# ============================================================================

@dataclass
class Defaults:
    """Container for all default configurations."""
    polling: PollingDefaults = field(default_factory=PollingDefaults)
    generation: GenerationDefaults = field(default_factory=GenerationDefaults)
    credits: CreditDefaults = field(default_factory=CreditDefaults)
    backend: BackendDefaults = field(default_factory=BackendDefaults)
    storage: StorageDefaults = field(default_factory=StorageDefaults)
    store_backend: StoreBackend = StoreBackend.MEMORY

    @classmethod
    def from_env(cls) -> "Defaults":
        """Create all defaults from environment variables."""
        return cls(
            polling=PollingDefaults.from_env(),
            generation=GenerationDefaults.from_env(),
            credits=CreditDefaults.from_env(),
            backend=BackendDefaults.from_env(),
            storage=StorageDefaults.from_env(),
            store_backend=StoreBackend(os.getenv("STORE_BACKEND", "memory").lower()),
        )


_defaults: Optional[Defaults] = None


def get_defaults() -> Defaults:
    """Get global defaults instance."""
    global _defaults
    if _defaults is None:
        _defaults = Defaults.from_env()
    return _defaults


def reset_defaults() -> None:
    """Reset defaults (for testing)."""
    global _defaults
    _defaults = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "StoreBackend",
    "PollingDefaults",
    "GenerationDefaults",
    "CreditDefaults",
    "BackendDefaults",
    "StorageDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
