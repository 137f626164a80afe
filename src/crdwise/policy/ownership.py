"""
CRD policy and ownership for crdwise.

Every CRD a release touches has a policy (managed, shared or external) and,
once applied, an ownership record naming the release that applied it.

How a policy is resolved (first match wins):
    1. The crdwise.io/crd-policy annotation on the CRD
    2. helm.sh/resource-policy: keep (treated as shared)
    3. The pack's per-CRD override
    4. The pack's default policy
    5. managed

Ownership Rules:
    - One record per CRD identity (group + kind)
    - A release is identified by its name and namespace
    - A release may not take a CRD that another release manages,
      unless it only treats the CRD as external
    - Records are read once per operation and written after each apply
"""

from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from crdwise.errors import InvalidPolicyError, OwnershipConflictError
from crdwise.pack.manifest import CrdSettings
from crdwise.schema import CrdIdentity, CrdPolicy, Manifest


POLICY_ANNOTATION = "crdwise.io/crd-policy"
DEFAULT_NAMESPACE = "default"
HELM_RESOURCE_POLICY = "helm.sh/resource-policy"
HELM_KEEP = "keep"


def resolve_policy(manifest: Manifest, pack_config: CrdSettings | None = None) -> CrdPolicy:
    """
    Resolve the policy for a CRD manifest.

    Args:
        manifest: The CRD manifest
        pack_config: The `crds:` block of the pack that ships it

    Returns:
        The effective CrdPolicy

    Raises:
        InvalidPolicyError: If the policy annotation has an unknown value
    """
    annotations = manifest.annotations

    value = annotations.get(POLICY_ANNOTATION)
    if value is not None:
        try:
            return CrdPolicy(str(value).strip().lower())
        except ValueError as e:
            raise InvalidPolicyError(
                source=manifest.source or None,
                crd_name=manifest.name,
                value=str(value),
            ) from e

    if str(annotations.get(HELM_RESOURCE_POLICY, "")).strip().lower() == HELM_KEEP:
        return CrdPolicy.SHARED

    if pack_config is not None:
        override = pack_config.override_for(manifest.name)
        if override.policy is not None:
            return override.policy
        return pack_config.policy

    return CrdPolicy.MANAGED


# =============================================================================
# Ownership Records
# =============================================================================


class OwnershipRecord(BaseModel):
    """
    Which release owns a CRD, and under which policy.

    Attributes:
        identity: CRD group + kind
        crd_name: CRD metadata.name (e.g., "widgets.example.com")
        release: Release that last applied the CRD
        release_namespace: Namespace of that release
        policy: Policy the release applied it under
        digest: SHA-256 of the last-applied manifest
        updated_at: ISO timestamp of the last apply
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    identity: CrdIdentity
    crd_name: str = Field(..., min_length=1)
    release: str = Field(..., min_length=1)
    release_namespace: str = Field(default=DEFAULT_NAMESPACE, min_length=1)
    policy: CrdPolicy
    digest: str = ""
    updated_at: str = ""

    def owned_by(self, release: str, namespace: str = DEFAULT_NAMESPACE) -> bool:
        return self.release == release and self.release_namespace == namespace

    @property
    def owner(self) -> str:
        """Owning release as namespace/name."""
        return f"{self.release_namespace}/{self.release}"


def check_ownership(
    identity: CrdIdentity,
    release: str,
    existing: OwnershipRecord | None,
    policy: CrdPolicy,
    crd_name: str | None = None,
    namespace: str = DEFAULT_NAMESPACE,
) -> None:
    """
    Check that a release may act on a CRD under the given policy.

    Two releases with the same name in different namespaces are different
    owners.

    Raises:
        OwnershipConflictError: If another release manages the CRD and the
            requested policy is not external
    """
    if existing is None or existing.owned_by(release, namespace):
        return
    if policy == CrdPolicy.EXTERNAL:
        return
    if existing.policy == CrdPolicy.MANAGED:
        same_name = existing.release == release
        raise OwnershipConflictError(
            crd_name=crd_name or existing.crd_name,
            owner=existing.owner if same_name else existing.release,
            current=f"{namespace}/{release}" if same_name else release,
        )


class OwnershipStore(Protocol):
    """Persistence for ownership records, keyed by CRD identity."""

    def get_owner(self, identity: CrdIdentity) -> OwnershipRecord | None:
        ...

    def set_owner(self, record: OwnershipRecord) -> None:
        ...

    def clear_owner(self, identity: CrdIdentity) -> bool:
        ...

    def list_owners(self, release: str | None = None) -> list[OwnershipRecord]:
        ...


class InMemoryOwnershipStore:
    """Dict-backed OwnershipStore, used in tests and dry runs."""

    def __init__(self, records: list[OwnershipRecord] | None = None) -> None:
        self._records: dict[str, OwnershipRecord] = {}
        for record in records or []:
            self.set_owner(record)

    def get_owner(self, identity: CrdIdentity) -> OwnershipRecord | None:
        return self._records.get(identity.key)

    def set_owner(self, record: OwnershipRecord) -> None:
        self._records[record.identity.key] = record

    def clear_owner(self, identity: CrdIdentity) -> bool:
        return self._records.pop(identity.key, None) is not None

    def list_owners(self, release: str | None = None) -> list[OwnershipRecord]:
        records = sorted(self._records.values(), key=lambda r: r.identity.key)
        if release is None:
            return records
        return [r for r in records if r.release == release]
