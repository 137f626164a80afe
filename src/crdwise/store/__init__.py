"""
Storage module for crdwise.

Provides SQLite-based persistence for CRD ownership and the operation log.
"""

from crdwise.store.db import (
    OperationRecord,
    StateDB,
    StepRecord,
    compute_hash,
    generate_id,
    now_iso,
)

__all__ = [
    "OperationRecord",
    "StateDB",
    "StepRecord",
    "compute_hash",
    "generate_id",
    "now_iso",
]
