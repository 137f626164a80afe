"""
Policy and ownership module for crdwise.

Key concepts:
    - CrdPolicy: managed / shared / external intent per CRD
    - resolve_policy: Annotation and pack configuration precedence
    - check_ownership: Rejects a second release managing the same CRD
    - OwnershipStore: get_owner / set_owner / clear_owner / list_owners
"""

from crdwise.policy.ownership import (
    DEFAULT_NAMESPACE,
    HELM_RESOURCE_POLICY,
    POLICY_ANNOTATION,
    InMemoryOwnershipStore,
    OwnershipRecord,
    OwnershipStore,
    check_ownership,
    resolve_policy,
)

__all__ = [
    "DEFAULT_NAMESPACE",
    "HELM_RESOURCE_POLICY",
    "POLICY_ANNOTATION",
    "InMemoryOwnershipStore",
    "OwnershipRecord",
    "OwnershipStore",
    "check_ownership",
    "resolve_policy",
]
