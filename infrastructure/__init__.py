# ============================================================================
# INFRASTRUCTURE MODULE
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Infrastructure - External services and locks
# PURPOSE: Generation API client, media storage and per-cell locking
# CREATED: 17 OCT 2026
# ============================================================================
"""
Infrastructure module for the Cell Graph Engine.

Provides:
- HttpGenerationBackend: HTTP client for the generation API
- BlobMediaStorage: Azure Blob Storage uploads for generated media
- CellLockService: per-cell in-process locks

Usage:
    from infrastructure import HttpGenerationBackend, BlobMediaStorage

    backend = HttpGenerationBackend()
    response = await backend.generate(request)
"""

from infrastructure.generation import HttpGenerationBackend
from infrastructure.storage import (
    BlobMediaStorage,
    detect_extension,
    decode_data_url,
)
from infrastructure.locking import CellLockService

__all__ = [
    # Generation
    'HttpGenerationBackend',
    # Blob Storage
    'BlobMediaStorage',
    'detect_extension',
    'decode_data_url',
    # Locking
    'CellLockService',
]
