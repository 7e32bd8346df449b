"""
Duplicate-record consolidation.

Finds rows that share a natural key, keeps the oldest, repoints every
registered foreign key onto it, deletes the rest and verifies the result,
all in one transaction.
"""

from consolidator.deduplication.engine import consolidate, scan
from consolidator.deduplication.exceptions import (
    ConfigurationError,
    ConsolidationError,
    GuardError,
    ReferentialIntegrityError,
    TransientStoreError,
    VerificationError,
)
from consolidator.deduplication.guard import GuardResult, ensure_unique_index
from consolidator.deduplication.selector import build_mapping, select_survivor
from consolidator.deduplication.types import (
    ConsolidationResult,
    DuplicateGroup,
    EntitySpec,
    GroupMember,
    ReferrerSpec,
    RunState,
)

__all__ = [
    # Engine
    "consolidate",
    "scan",
    "ensure_unique_index",
    "GuardResult",
    # Selection
    "select_survivor",
    "build_mapping",
    # Types
    "ConsolidationResult",
    "DuplicateGroup",
    "EntitySpec",
    "GroupMember",
    "ReferrerSpec",
    "RunState",
    # Errors
    "ConsolidationError",
    "ConfigurationError",
    "GuardError",
    "ReferentialIntegrityError",
    "TransientStoreError",
    "VerificationError",
]
