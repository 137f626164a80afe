"""
SQLite storage for crdwise.

This module persists CRD ownership and the operation log. Everything lives
in a single SQLite database file (the --state path).

Design Principles:
    - Ownership: one row per CRD identity, overwritten on each apply
    - Operation log: append-only, one row per plan step, so an interrupted
      operation shows exactly which steps completed
    - Integrity: manifests are stored as SHA-256 digests
    - Atomic: Transactions ensure consistency

Tables:
    - crd_owners: Release and policy per CRD identity
    - operations: Metadata about each install/upgrade/uninstall
    - operation_steps: Outcome of each plan step
"""

import hashlib
import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Generator

from pydantic import BaseModel, ConfigDict

from crdwise.errors import StorageConnectionError, StorageReadError, StorageWriteError
from crdwise.policy.ownership import OwnershipRecord
from crdwise.schema import CrdIdentity, CrdPolicy, OperationKind, OperationStatus, StepStatus

# Schema version for migrations
SCHEMA_VERSION = 2

# SQL for creating tables
CREATE_TABLES_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

-- CRD ownership: one row per CRD identity
CREATE TABLE IF NOT EXISTS crd_owners (
    crd_key TEXT PRIMARY KEY,
    crd_group TEXT NOT NULL,
    crd_kind TEXT NOT NULL,
    crd_name TEXT NOT NULL,
    release TEXT NOT NULL,
    release_namespace TEXT NOT NULL DEFAULT 'default',
    policy TEXT NOT NULL,
    digest TEXT NOT NULL DEFAULT '',
    updated_at TEXT NOT NULL
);

-- Operations table: metadata about each install/upgrade/uninstall
CREATE TABLE IF NOT EXISTS operations (
    operation_id TEXT PRIMARY KEY,
    release TEXT NOT NULL,
    operation TEXT NOT NULL,
    root_pack TEXT NOT NULL,
    created_at TEXT NOT NULL,
    completed_at TEXT,
    status TEXT NOT NULL DEFAULT 'running',
    plan_hash TEXT NOT NULL,
    plan_text TEXT NOT NULL,
    total_steps INTEGER NOT NULL DEFAULT 0,
    completed_steps INTEGER NOT NULL DEFAULT 0,
    failed_steps INTEGER NOT NULL DEFAULT 0,
    error TEXT
);

-- Operation steps table: outcome of each plan step
CREATE TABLE IF NOT EXISTS operation_steps (
    operation_id TEXT NOT NULL,
    step_index INTEGER NOT NULL,
    action TEXT NOT NULL,
    target TEXT NOT NULL,
    status TEXT NOT NULL,
    error TEXT,
    detail_json TEXT,
    started_at TEXT,
    ended_at TEXT,
    PRIMARY KEY (operation_id, step_index),
    FOREIGN KEY (operation_id) REFERENCES operations(operation_id)
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_crd_owners_release ON crd_owners(release);
CREATE INDEX IF NOT EXISTS idx_operations_created_at ON operations(created_at);
"""


def generate_id() -> str:
    """Generate a unique ID for operations."""
    return str(uuid.uuid4())[:8]


def compute_hash(data: Any) -> str:
    """Compute SHA256 hash of data."""
    if data is None:
        return ""
    if isinstance(data, str):
        content = data.encode("utf-8")
    elif isinstance(data, bytes):
        content = data
    else:
        content = json.dumps(data, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def now_iso() -> str:
    """Get current UTC time in ISO format."""
    return datetime.now(UTC).isoformat()


class OperationRecord(BaseModel):
    """A row of the operations table."""

    model_config = ConfigDict(frozen=True)

    operation_id: str
    release: str
    operation: OperationKind
    root_pack: str
    created_at: datetime
    completed_at: datetime | None = None
    status: OperationStatus
    plan_hash: str
    total_steps: int = 0
    completed_steps: int = 0
    failed_steps: int = 0
    error: str | None = None


class StepRecord(BaseModel):
    """A row of the operation_steps table."""

    model_config = ConfigDict(frozen=True)

    operation_id: str
    step_index: int
    action: str
    target: str
    status: StepStatus
    error: str | None = None
    detail: dict[str, Any] | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None


def _parse_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class StateDB:
    """
    SQLite database for crdwise state.

    StateDB is the durable OwnershipStore and also records the operation log.

    Usage:
        db = StateDB("crdwise.db")
        owner = db.get_owner(identity)
        operation_id = db.create_operation("demo", OperationKind.INSTALL, "widgets", plan_text, 5)
        db.record_step(operation_id, 0, "apply_crd", "widgets.example.com", StepStatus.SUCCEEDED)
        db.close()

    Or use as context manager:
        with StateDB("crdwise.db") as db:
            ...
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file.
                     Will be created if it doesn't exist.
        """
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._connect()
        self._init_schema()

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            self._conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as e:
            raise StorageConnectionError(
                db_path=str(self.db_path),
                operation="connect",
                message=f"Failed to connect to database: {e}",
            ) from e

    def _init_schema(self) -> None:
        """Initialize database schema if needed."""
        try:
            cursor = self._conn.executescript(CREATE_TABLES_SQL)
            cursor.close()

            cursor = self._conn.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            )
            row = cursor.fetchone()
            if row is not None and row["version"] < 2:
                # Version 1 databases predate release namespaces
                self._conn.execute(
                    "ALTER TABLE crd_owners ADD COLUMN release_namespace TEXT NOT NULL DEFAULT 'default'"
                )
            if row is None or row["version"] < SCHEMA_VERSION:
                self._conn.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (SCHEMA_VERSION, now_iso()),
                )
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="init_schema",
                underlying_error=str(e),
            ) from e

    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        """Context manager for database transactions."""
        try:
            yield
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "StateDB":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()

    # =========================================================================
    # Ownership Operations
    # =========================================================================

    @staticmethod
    def _row_to_owner(row: sqlite3.Row) -> OwnershipRecord:
        return OwnershipRecord(
            identity=CrdIdentity(group=row["crd_group"], kind=row["crd_kind"]),
            crd_name=row["crd_name"],
            release=row["release"],
            release_namespace=row["release_namespace"],
            policy=CrdPolicy(row["policy"]),
            digest=row["digest"],
            updated_at=row["updated_at"],
        )

    def get_owner(self, identity: CrdIdentity) -> OwnershipRecord | None:
        """
        Get the ownership record for a CRD.

        Returns:
            OwnershipRecord or None if no release owns the CRD
        """
        try:
            cursor = self._conn.execute(
                "SELECT * FROM crd_owners WHERE crd_key = ?",
                (identity.key,),
            )
            row = cursor.fetchone()
            return self._row_to_owner(row) if row is not None else None
        except sqlite3.Error as e:
            raise StorageReadError(
                operation="get_owner",
                underlying_error=str(e),
            ) from e

    def set_owner(self, record: OwnershipRecord) -> None:
        """Insert or replace the ownership record for a CRD."""
        try:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO crd_owners (
                    crd_key, crd_group, crd_kind, crd_name,
                    release, release_namespace, policy, digest, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.identity.key,
                    record.identity.group,
                    record.identity.kind,
                    record.crd_name,
                    record.release,
                    record.release_namespace,
                    record.policy.value,
                    record.digest,
                    record.updated_at or now_iso(),
                ),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="set_owner",
                underlying_error=str(e),
            ) from e

    def clear_owner(self, identity: CrdIdentity) -> bool:
        """
        Remove the ownership record for a CRD.

        Returns:
            True if a record was removed
        """
        try:
            cursor = self._conn.execute(
                "DELETE FROM crd_owners WHERE crd_key = ?",
                (identity.key,),
            )
            self._conn.commit()
            return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="clear_owner",
                underlying_error=str(e),
            ) from e

    def list_owners(self, release: str | None = None) -> list[OwnershipRecord]:
        """
        List ownership records, optionally for one release.

        Returns:
            Records ordered by CRD key
        """
        try:
            if release is None:
                cursor = self._conn.execute("SELECT * FROM crd_owners ORDER BY crd_key")
            else:
                cursor = self._conn.execute(
                    "SELECT * FROM crd_owners WHERE release = ? ORDER BY crd_key",
                    (release,),
                )
            return [self._row_to_owner(row) for row in cursor]
        except sqlite3.Error as e:
            raise StorageReadError(
                operation="list_owners",
                underlying_error=str(e),
            ) from e

    # =========================================================================
    # Operation Log
    # =========================================================================

    def create_operation(
        self,
        release: str,
        operation: OperationKind,
        root_pack: str,
        plan_text: str,
        total_steps: int,
    ) -> str:
        """
        Create a new operation record.

        Args:
            release: Release the operation acts on
            operation: install, upgrade or uninstall
            root_pack: Name of the pack being operated on
            plan_text: InstallationPlan.describe() output
            total_steps: Number of plan steps

        Returns:
            The generated operation_id
        """
        operation_id = generate_id()
        try:
            self._conn.execute(
                """
                INSERT INTO operations (
                    operation_id, release, operation, root_pack, created_at,
                    status, plan_hash, plan_text, total_steps
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    operation_id,
                    release,
                    operation.value,
                    root_pack,
                    now_iso(),
                    OperationStatus.RUNNING.value,
                    compute_hash(plan_text),
                    plan_text,
                    total_steps,
                ),
            )
            self._conn.commit()
            return operation_id
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="create_operation",
                underlying_error=str(e),
            ) from e

    def record_step(
        self,
        operation_id: str,
        step_index: int,
        action: str,
        target: str,
        status: StepStatus,
        error: str | None = None,
        detail: dict[str, Any] | None = None,
        started_at: str | None = None,
        ended_at: str | None = None,
    ) -> None:
        """Record (or overwrite) the outcome of one plan step."""
        try:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO operation_steps (
                    operation_id, step_index, action, target, status,
                    error, detail_json, started_at, ended_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    operation_id,
                    step_index,
                    action,
                    target,
                    status.value,
                    error,
                    json.dumps(detail, default=str) if detail is not None else None,
                    started_at,
                    ended_at,
                ),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="record_step",
                underlying_error=str(e),
            ) from e

    def complete_operation(
        self,
        operation_id: str,
        status: OperationStatus,
        completed_steps: int,
        failed_steps: int,
        error: str | None = None,
    ) -> None:
        """Set the final status and counters of an operation."""
        try:
            self._conn.execute(
                """
                UPDATE operations
                SET status = ?, completed_at = ?, completed_steps = ?,
                    failed_steps = ?, error = ?
                WHERE operation_id = ?
                """,
                (status.value, now_iso(), completed_steps, failed_steps, error, operation_id),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="complete_operation",
                underlying_error=str(e),
            ) from e

    @staticmethod
    def _row_to_operation(row: sqlite3.Row) -> OperationRecord:
        return OperationRecord(
            operation_id=row["operation_id"],
            release=row["release"],
            operation=OperationKind(row["operation"]),
            root_pack=row["root_pack"],
            created_at=datetime.fromisoformat(row["created_at"]),
            completed_at=_parse_time(row["completed_at"]),
            status=OperationStatus(row["status"]),
            plan_hash=row["plan_hash"],
            total_steps=row["total_steps"],
            completed_steps=row["completed_steps"],
            failed_steps=row["failed_steps"],
            error=row["error"],
        )

    def get_operation(self, operation_id: str) -> OperationRecord | None:
        """Get an operation by ID."""
        try:
            cursor = self._conn.execute(
                "SELECT * FROM operations WHERE operation_id = ?",
                (operation_id,),
            )
            row = cursor.fetchone()
            return self._row_to_operation(row) if row is not None else None
        except sqlite3.Error as e:
            raise StorageReadError(
                operation="get_operation",
                underlying_error=str(e),
            ) from e

    def list_operations(self, release: str | None = None, limit: int = 100) -> list[OperationRecord]:
        """
        List recent operations.

        Returns:
            List of OperationRecord objects, most recent first
        """
        try:
            if release is None:
                cursor = self._conn.execute(
                    "SELECT * FROM operations ORDER BY created_at DESC LIMIT ?",
                    (limit,),
                )
            else:
                cursor = self._conn.execute(
                    "SELECT * FROM operations WHERE release = ? ORDER BY created_at DESC LIMIT ?",
                    (release, limit),
                )
            return [self._row_to_operation(row) for row in cursor]
        except sqlite3.Error as e:
            raise StorageReadError(
                operation="list_operations",
                underlying_error=str(e),
            ) from e

    def get_steps(self, operation_id: str) -> list[StepRecord]:
        """Get all recorded steps of an operation, ordered by step index."""
        try:
            cursor = self._conn.execute(
                """
                SELECT * FROM operation_steps
                WHERE operation_id = ?
                ORDER BY step_index
                """,
                (operation_id,),
            )
            return [
                StepRecord(
                    operation_id=row["operation_id"],
                    step_index=row["step_index"],
                    action=row["action"],
                    target=row["target"],
                    status=StepStatus(row["status"]),
                    error=row["error"],
                    detail=json.loads(row["detail_json"]) if row["detail_json"] else None,
                    started_at=_parse_time(row["started_at"]),
                    ended_at=_parse_time(row["ended_at"]),
                )
                for row in cursor
            ]
        except sqlite3.Error as e:
            raise StorageReadError(
                operation="get_steps",
                underlying_error=str(e),
            ) from e
