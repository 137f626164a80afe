"""
Exception hierarchy for crdwise.

All crdwise exceptions inherit from CrdwiseError, allowing callers to catch
all crdwise-specific exceptions with a single except clause.

Exception Categories:
    - ParseError: Malformed CRD, manifest or policy input
    - PlanError: Dependency cycles and other planning failures
    - CrdError: Runtime CRD failures (not ready, breaking change,
      ownership conflict, deletion blocked)
    - PackError: Pack directory could not be loaded or rendered
    - StorageError: Database operation failed
    - ClusterError: The cluster API rejected or failed a request

Design Principles:
    - All errors have error codes for programmatic handling
    - All errors carry the names, counts and timeouts needed to render them
      without re-querying the cluster
    - Parse and plan errors are raised before any cluster mutation
    - CrdError subclasses say whether the operation can be retried
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Parse errors: 1xxx
ERROR_PARSE_MALFORMED_SCHEMA = 1001
ERROR_PARSE_MALFORMED_MANIFEST = 1002
ERROR_PARSE_INVALID_POLICY = 1003

# Plan errors: 2xxx
ERROR_PLAN_DEPENDENCY_CYCLE = 2001
ERROR_PLAN_UNKNOWN_DEPENDENCY = 2002
ERROR_PLAN_DUPLICATE_CRD = 2003

# CRD runtime errors: 3xxx
ERROR_CRD_NOT_READY = 3001
ERROR_CRD_BREAKING_CHANGE = 3002
ERROR_CRD_OWNERSHIP_CONFLICT = 3003
ERROR_CRD_DELETION_BLOCKED = 3004
ERROR_CRD_INVALID_CONFIRMATION = 3005

# Pack errors: 4xxx
ERROR_PACK_NOT_FOUND = 4001
ERROR_PACK_MANIFEST = 4002
ERROR_PACK_MISSING_FILE = 4003
ERROR_PACK_TEMPLATE = 4004

# Storage errors: 5xxx
ERROR_STORAGE_CONNECTION = 5001
ERROR_STORAGE_WRITE = 5002
ERROR_STORAGE_READ = 5003

# Cluster errors: 6xxx
ERROR_CLUSTER_REQUEST = 6001


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class CrdwiseError(Exception):
    """
    Base exception for all crdwise errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Parse Errors
# =============================================================================


@dataclass
class ParseError(CrdwiseError):
    """
    Base class for malformed input.

    Parse errors are fatal: the operation aborts before any cluster mutation.

    Attributes:
        source: File or document the input came from (if known)
    """

    source: str | None = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["source"] = self.source


@dataclass
class MalformedSchemaError(ParseError):
    """Raised when a CRD document cannot be parsed into a schema model."""

    crd_name: str = ""
    reason: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            name = self.crd_name or "<unnamed>"
            self.message = f"Malformed CRD {name}: {self.reason}"
        if self.code == 0:
            self.code = ERROR_PARSE_MALFORMED_SCHEMA
        super().__post_init__()
        self.context.update({
            "crd_name": self.crd_name,
            "reason": self.reason,
        })


@dataclass
class MalformedManifestError(ParseError):
    """Raised when a rendered document is not a valid resource manifest."""

    reason: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Malformed manifest: {self.reason}"
        if self.code == 0:
            self.code = ERROR_PARSE_MALFORMED_MANIFEST
        super().__post_init__()
        self.context["reason"] = self.reason


@dataclass
class InvalidPolicyError(ParseError):
    """Raised when a CRD policy annotation or setting has an unknown value."""

    crd_name: str = ""
    value: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid CRD policy {self.value!r} on {self.crd_name}"
        if self.code == 0:
            self.code = ERROR_PARSE_INVALID_POLICY
        if not self.suggestion:
            self.suggestion = "Use one of: managed, shared, external"
        super().__post_init__()
        self.context.update({
            "crd_name": self.crd_name,
            "value": self.value,
        })


# =============================================================================
# Plan Errors
# =============================================================================


@dataclass
class PlanError(CrdwiseError):
    """
    Base class for planning failures.

    Plan errors are fatal and are always raised before execution starts.
    """

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""


@dataclass
class DependencyCycleError(PlanError):
    """Raised when the pack dependency graph contains a cycle."""

    cycle: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Dependency cycle: {' -> '.join(self.cycle)}"
        if self.code == 0:
            self.code = ERROR_PLAN_DEPENDENCY_CYCLE
        if not self.suggestion:
            self.suggestion = "Remove one of the dependencies in the cycle"
        super().__post_init__()
        self.context["cycle"] = list(self.cycle)


@dataclass
class UnknownDependencyError(PlanError):
    """Raised when a pack depends on a pack that is not in the graph."""

    pack: str = ""
    dependency: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Pack {self.pack} depends on unknown pack {self.dependency}"
        if self.code == 0:
            self.code = ERROR_PLAN_UNKNOWN_DEPENDENCY
        if not self.suggestion:
            self.suggestion = f"Add the pack under packs/{self.dependency}"
        super().__post_init__()
        self.context.update({
            "pack": self.pack,
            "dependency": self.dependency,
        })


@dataclass
class DuplicateCrdError(PlanError):
    """Raised when two packs in one plan declare the same CRD."""

    crd_name: str = ""
    packs: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"CRD {self.crd_name} declared by multiple packs: {', '.join(self.packs)}"
        if self.code == 0:
            self.code = ERROR_PLAN_DUPLICATE_CRD
        if not self.suggestion:
            self.suggestion = "Keep the CRD in one pack and mark it external in the others"
        super().__post_init__()
        self.context.update({
            "crd_name": self.crd_name,
            "packs": list(self.packs),
        })


# =============================================================================
# CRD Runtime Errors
# =============================================================================


@dataclass
class CrdError(CrdwiseError):
    """
    Base class for CRD runtime errors.

    These occur mid-plan, after some steps may already have been applied.

    Attributes:
        crd_name: Name of the CRD (e.g., "widgets.example.com")
        recoverable: Whether retrying the operation can succeed
    """

    crd_name: str = ""
    recoverable: bool = True

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context.update({
            "crd_name": self.crd_name,
            "recoverable": self.recoverable,
        })


@dataclass
class NotReadyError(CrdError):
    """Raised when a CRD does not become Established before the timeout."""

    timeout_seconds: float = 0.0
    state: str = "timed_out"

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            if self.state == "failed":
                self.message = f"CRD {self.crd_name} failed to become established"
            else:
                self.message = (
                    f"CRD {self.crd_name} not established after {self.timeout_seconds:g}s"
                )
        if self.code == 0:
            self.code = ERROR_CRD_NOT_READY
        if not self.suggestion:
            self.suggestion = "Retry the operation or raise wait_timeout_seconds"
        super().__post_init__()
        self.context.update({
            "timeout_seconds": self.timeout_seconds,
            "state": self.state,
        })


@dataclass
class BreakingChangeError(CrdError):
    """Raised when the update strategy aborts a CRD update."""

    reason: str = ""
    changes: list[dict[str, Any]] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Update of CRD {self.crd_name} aborted: {self.reason}"
        if self.code == 0:
            self.code = ERROR_CRD_BREAKING_CHANGE
        if not self.suggestion:
            self.suggestion = "Review the changes, then re-run with --force-crd-update"
        super().__post_init__()
        self.context.update({
            "reason": self.reason,
            "changes": list(self.changes),
        })


@dataclass
class OwnershipConflictError(CrdError):
    """Raised when another release already manages the CRD."""

    owner: str = ""
    current: str = ""
    recoverable: bool = False

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"CRD {self.crd_name} is managed by release {self.owner}, "
                f"not {self.current}"
            )
        if self.code == 0:
            self.code = ERROR_CRD_OWNERSHIP_CONFLICT
        if not self.suggestion:
            self.suggestion = (
                "Mark the CRD external or shared in this pack, "
                "or uninstall the owning release first"
            )
        super().__post_init__()
        self.context.update({
            "owner": self.owner,
            "current": self.current,
        })


@dataclass
class DeletionBlockedError(CrdError):
    """Raised when a CRD still has live instances and no confirmation was given."""

    count: int = 0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Deletion of CRD {self.crd_name} blocked: {self.count} live instance(s)"
        if self.code == 0:
            self.code = ERROR_CRD_DELETION_BLOCKED
        if not self.suggestion:
            self.suggestion = f"Re-run with --confirm-crd-deletion {self.crd_name}"
        super().__post_init__()
        self.context["count"] = self.count


@dataclass
class InvalidConfirmationError(CrdError):
    """Raised when a confirmation token is reused or scoped to another CRD."""

    token_crd: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            if self.token_crd and self.token_crd != self.crd_name:
                self.message = (
                    f"Confirmation token for {self.token_crd} cannot delete {self.crd_name}"
                )
            else:
                self.message = f"Confirmation token for {self.crd_name} was already used"
        if self.code == 0:
            self.code = ERROR_CRD_INVALID_CONFIRMATION
        super().__post_init__()
        self.context["token_crd"] = self.token_crd


# =============================================================================
# Pack Errors
# =============================================================================


@dataclass
class PackError(CrdwiseError):
    """
    Base class for pack loading errors.

    Attributes:
        pack_name: Name of the pack
        pack_path: Path to the pack directory
    """

    pack_name: str = ""
    pack_path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context.update({
            "pack_name": self.pack_name,
            "pack_path": self.pack_path,
        })


@dataclass
class PackNotFoundError(PackError):
    """Raised when a pack directory does not exist."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Pack not found: {self.pack_path or self.pack_name}"
        if self.code == 0:
            self.code = ERROR_PACK_NOT_FOUND
        super().__post_init__()


@dataclass
class PackManifestError(PackError):
    """Raised when pack.yaml is invalid."""

    validation_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid pack.yaml in {self.pack_name}: {self.validation_error}"
        if self.code == 0:
            self.code = ERROR_PACK_MANIFEST
        super().__post_init__()
        self.context["validation_error"] = self.validation_error


@dataclass
class PackMissingFileError(PackError):
    """Raised when a required pack file is missing."""

    missing_file: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Pack {self.pack_name} is missing {self.missing_file}"
        if self.code == 0:
            self.code = ERROR_PACK_MISSING_FILE
        super().__post_init__()
        self.context["missing_file"] = self.missing_file


@dataclass
class PackTemplateError(PackError):
    """Raised when a pack template or document fails to render or decode."""

    template_path: str = ""
    template_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to render {self.template_path}: {self.template_error}"
        if self.code == 0:
            self.code = ERROR_PACK_TEMPLATE
        super().__post_init__()
        self.context.update({
            "template_path": self.template_path,
            "template_error": self.template_error,
        })


# =============================================================================
# Storage Errors
# =============================================================================


@dataclass
class StorageError(CrdwiseError):
    """
    Base class for storage/database errors.

    Attributes:
        operation: The operation that failed (e.g., "set_owner", "list_owners")
    """

    operation: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["operation"] = self.operation


@dataclass
class StorageConnectionError(StorageError):
    """Raised when database connection fails."""

    db_path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to connect to database: {self.db_path}"
        if self.code == 0:
            self.code = ERROR_STORAGE_CONNECTION
        if not self.suggestion:
            self.suggestion = "Check that the --state path is valid and writable"
        super().__post_init__()
        self.context["db_path"] = self.db_path


@dataclass
class StorageWriteError(StorageError):
    """Raised when a write operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database write failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_WRITE
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class StorageReadError(StorageError):
    """Raised when a read operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database read failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_READ
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


# =============================================================================
# Cluster Errors
# =============================================================================


@dataclass
class ClusterError(CrdwiseError):
    """
    Raised when a cluster API request fails.

    Attributes:
        method: HTTP method or abstract operation name
        path: Request path or resource reference
        status_code: Response status code (None when no response arrived)
    """

    method: str = ""
    path: str = ""
    status_code: int | None = None
    detail: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            status = f" ({self.status_code})" if self.status_code is not None else ""
            self.message = f"Cluster request {self.method} {self.path} failed{status}: {self.detail}"
        if self.code == 0:
            self.code = ERROR_CLUSTER_REQUEST
        self.context.update({
            "method": self.method,
            "path": self.path,
            "status_code": self.status_code,
            "detail": self.detail,
        })

    @property
    def not_found(self) -> bool:
        """Whether the request failed because the object does not exist."""
        return self.status_code == 404
