"""
Core Infrastructure Module

Shared building blocks for the lifecycle services:
- QueryLockRegistry: per-query serialization of call mutations
- AfterCommitEffects: notifications deferred until the commit succeeded
- repositories: fetch-or-raise helpers and filtered lookups

Usage:
    from app.services.core import QueryLockRegistry, AfterCommitEffects
"""

from app.services.core.effects import AfterCommitEffects
from app.services.core.locks import QueryLockRegistry

__all__ = [
    "AfterCommitEffects",
    "QueryLockRegistry",
]
