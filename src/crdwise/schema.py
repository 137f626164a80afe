"""
Schema definitions for crdwise.

This module defines the Pydantic models shared across the engine:
- Manifest: A decoded resource document produced by rendering
- ResourceCategory: Semantic category used for apply ordering
- CrdPolicy / CrdIdentity / CrdLocation: Per-CRD intent and provenance
- EngineConfig: Operation-level settings loaded from YAML

Design Decisions:
    - Value objects are frozen (immutable after creation)
    - Unknown fields are rejected (extra="forbid")
    - Enums are str-based so they serialize cleanly to YAML/JSON
"""

from enum import Enum
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from crdwise.crd.strategy import UpdateStrategy
from crdwise.errors import MalformedManifestError


CRD_KIND = "CustomResourceDefinition"


# =============================================================================
# Enums
# =============================================================================


class ResourceCategory(str, Enum):
    """
    Semantic category of a manifest.

    Declaration order is apply order: CRDs first, then namespaces, RBAC,
    configuration, services, workloads, and custom resources last.
    """

    CRD = "crd"
    NAMESPACE = "namespace"
    CLUSTER_SCOPED_RBAC = "cluster_scoped_rbac"
    SERVICE_ACCOUNT = "service_account"
    CONFIG_MAP = "config_map"
    SECRET = "secret"
    SERVICE = "service"
    WORKLOAD = "workload"
    OTHER = "other"
    CUSTOM_RESOURCE = "custom_resource"

    @property
    def rank(self) -> int:
        """Position in apply order (lower applies first)."""
        return list(ResourceCategory).index(self)


class CrdPolicy(str, Enum):
    """
    Declared intent of a release toward a CRD.

    MANAGED: this release creates, updates and may delete the CRD.
    SHARED: this release creates and updates it but never deletes it.
    EXTERNAL: the CRD is provisioned elsewhere; this release only waits for it.
    """

    MANAGED = "managed"
    SHARED = "shared"
    EXTERNAL = "external"

    @property
    def allows_install(self) -> bool:
        return self != CrdPolicy.EXTERNAL

    @property
    def allows_update(self) -> bool:
        return self != CrdPolicy.EXTERNAL

    @property
    def allows_delete(self) -> bool:
        return self == CrdPolicy.MANAGED


class LocationKind(str, Enum):
    """Where a CRD document was found inside a pack."""

    STATIC_DIR = "static_dir"
    TEMPLATE = "template"
    DEPENDENCY = "dependency"


class OperationKind(str, Enum):
    """Kind of release operation."""

    INSTALL = "install"
    UPGRADE = "upgrade"
    UNINSTALL = "uninstall"


class OperationStatus(str, Enum):
    """Status of an operation."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepStatus(str, Enum):
    """Status of one plan step after execution."""

    PENDING = "pending"  # never started
    SUCCEEDED = "succeeded"
    UNCHANGED = "unchanged"  # CRD already matched the pack
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def completed(self) -> bool:
        return self in (StepStatus.SUCCEEDED, StepStatus.UNCHANGED, StepStatus.SKIPPED)


# =============================================================================
# Manifest Models
# =============================================================================


class Manifest(BaseModel):
    """
    A decoded resource document.

    Attributes:
        api_version: The apiVersion field (e.g., "apps/v1")
        kind: The resource kind (e.g., "Deployment")
        name: metadata.name
        namespace: metadata.namespace (None for cluster-scoped or unset)
        body: The full decoded document
        source: Pack-relative file the document came from
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    api_version: str = Field(..., description="Resource apiVersion", min_length=1)
    kind: str = Field(..., description="Resource kind", min_length=1)
    name: str = Field(..., description="metadata.name", min_length=1)
    namespace: str | None = Field(default=None, description="metadata.namespace")
    body: dict[str, Any] = Field(default_factory=dict, description="Full document")
    source: str = Field(default="", description="Pack-relative source file")

    @classmethod
    def from_document(cls, doc: Any, source: str = "") -> "Manifest":
        """
        Build a Manifest from a decoded YAML document.

        Raises:
            MalformedManifestError: If apiVersion, kind or metadata.name is missing
        """
        if not isinstance(doc, dict):
            raise MalformedManifestError(
                source=source,
                reason=f"expected a mapping, got {type(doc).__name__}",
            )
        api_version = doc.get("apiVersion")
        kind = doc.get("kind")
        metadata = doc.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise MalformedManifestError(source=source, reason="metadata must be a mapping")
        name = metadata.get("name")
        for key, value in (("apiVersion", api_version), ("kind", kind), ("metadata.name", name)):
            if not isinstance(value, str) or not value:
                raise MalformedManifestError(source=source, reason=f"missing {key}")
        namespace = metadata.get("namespace")
        return cls(
            api_version=api_version,
            kind=kind,
            name=name,
            namespace=namespace if isinstance(namespace, str) else None,
            body=doc,
            source=source,
        )

    @property
    def group(self) -> str:
        """API group ("" for the core group)."""
        if "/" not in self.api_version:
            return ""
        return self.api_version.split("/", 1)[0]

    @property
    def annotations(self) -> dict[str, str]:
        metadata = self.body.get("metadata") or {}
        return dict(metadata.get("annotations") or {})

    @property
    def is_crd(self) -> bool:
        return self.kind == CRD_KIND

    @property
    def ref(self) -> str:
        """Short reference used in logs and plans (Kind/namespace/name)."""
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"


class CrdIdentity(BaseModel):
    """
    Identity of a CRD: its API group plus the kind it defines.

    Ownership records, waits and deletion checks are keyed by identity.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    group: str = Field(..., description="API group served by the CRD")
    kind: str = Field(..., description="Kind defined by the CRD")

    @property
    def key(self) -> str:
        return f"{self.kind}.{self.group}"

    def __str__(self) -> str:
        return self.key


class CrdLocation(BaseModel):
    """
    Provenance of a CRD document.

    STATIC_DIR locations come from the pack's crds/ directory (templated is
    True when the file was rendered because it contained template syntax).
    TEMPLATE locations come from templates/. DEPENDENCY wraps the location a
    CRD had inside a dependency pack.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: LocationKind
    path: str = ""
    templated: bool = False
    dependency: str | None = None
    inner: Optional["CrdLocation"] = None

    @classmethod
    def static_dir(cls, path: str, templated: bool = False) -> "CrdLocation":
        return cls(kind=LocationKind.STATIC_DIR, path=path, templated=templated)

    @classmethod
    def template(cls, path: str) -> "CrdLocation":
        return cls(kind=LocationKind.TEMPLATE, path=path)

    @classmethod
    def from_dependency(cls, pack: str, inner: "CrdLocation") -> "CrdLocation":
        return cls(
            kind=LocationKind.DEPENDENCY,
            path=inner.path,
            dependency=pack,
            inner=inner,
        )

    @property
    def origin(self) -> "CrdLocation":
        """The innermost non-dependency location."""
        location = self
        while location.kind == LocationKind.DEPENDENCY and location.inner is not None:
            location = location.inner
        return location

    @property
    def rank(self) -> int:
        """Ordering rank: static CRDs sort before template CRDs."""
        return 0 if self.origin.kind == LocationKind.STATIC_DIR else 1

    def describe(self) -> str:
        match self.kind:
            case LocationKind.STATIC_DIR:
                suffix = " (templated)" if self.templated else ""
                return f"crds/{self.path}{suffix}"
            case LocationKind.TEMPLATE:
                return f"templates/{self.path}"
            case LocationKind.DEPENDENCY:
                inner = self.inner.describe() if self.inner else self.path
                return f"{self.dependency}:{inner}"


# =============================================================================
# Engine Configuration
# =============================================================================


class EngineConfig(BaseModel):
    """
    Operation-level configuration.

    Attributes:
        strategy: Update strategy applied to CRDs without a pack override
        wait_timeout_seconds: Default time to wait for a CRD to be Established
        poll_interval_seconds: Interval between CRD status reads
        field_owner: Field manager name used for server-side apply
        max_concurrency: Maximum in-flight cluster calls within one tier
        operation_timeout_seconds: Optional upper bound for a whole operation
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    strategy: UpdateStrategy = Field(
        default=UpdateStrategy.SAFE,
        description="Default CRD update strategy",
    )
    wait_timeout_seconds: float = Field(
        default=120.0,
        description="Default CRD readiness timeout",
        gt=0,
    )
    poll_interval_seconds: float = Field(
        default=0.5,
        description="Interval between CRD status reads",
        gt=0,
    )
    field_owner: str = Field(
        default="crdwise",
        description="Field manager for server-side apply",
        min_length=1,
    )
    max_concurrency: int = Field(
        default=4,
        description="Maximum concurrent cluster calls within a tier",
        ge=1,
        le=64,
    )
    operation_timeout_seconds: float | None = Field(
        default=None,
        description="Upper bound for a whole operation (None = unbounded)",
        gt=0,
    )

    @field_validator("field_owner")
    @classmethod
    def validate_field_owner(cls, v: str) -> str:
        """Field managers must not contain whitespace."""
        if any(ch.isspace() for ch in v):
            msg = f"Invalid field_owner: {v!r}"
            raise ValueError(msg)
        return v


# =============================================================================
# YAML Loading Helpers
# =============================================================================


def load_engine_config(path: Path | str) -> EngineConfig:
    """
    Load engine configuration from a YAML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If the YAML doesn't match the schema
    """
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f)

    return EngineConfig.model_validate(data or {})


def load_engine_config_from_string(content: str) -> EngineConfig:
    """Load engine configuration from a YAML string."""
    data = yaml.safe_load(content)
    return EngineConfig.model_validate(data or {})


def load_manifests_from_string(content: str, source: str = "") -> list[Manifest]:
    """
    Decode a multi-document YAML string into manifests.

    Empty documents are skipped.
    """
    manifests = []
    for doc in yaml.safe_load_all(content):
        if doc is None:
            continue
        manifests.append(Manifest.from_document(doc, source=source))
    return manifests
