# ============================================================================
# VERSION - CELL GRAPH ENGINE
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# ============================================================================
"""
Version information for the Cell Graph Engine.

This is the single source of truth for the application version.
Updated manually for each release.
"""
# Version format: major.minor.patch
# Criteria for 0.2 - Postgres store verified against a live database
__version__ = "0.1.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Build metadata
BUILD_DATE = "2026-10-17"

EPOCH = 1
CODENAME = "Cell Graph Engine"
