# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# CREATED: 17 OCT 2026
# ============================================================================
"""
Configuration Module

Provides centralized configuration and defaults for the cell graph engine.
"""

from core.config.defaults import (
    StoreBackend,
    PollingDefaults,
    GenerationDefaults,
    CreditDefaults,
    BackendDefaults,
    StorageDefaults,
    Defaults,
    get_defaults,
    reset_defaults,
)

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
