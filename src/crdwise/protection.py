"""
Deletion protection for CRDs.

Deleting a CRD deletes every instance of it. Before a DeleteCrd step the
engine counts live instances; a CRD with instances is deleted only when the
operator supplied a confirmation token for exactly that CRD. Tokens are
single-use and never persisted.
"""

from collections import Counter
from dataclasses import dataclass, field

from crdwise.cluster.base import ClusterClient
from crdwise.errors import ClusterError, DeletionBlockedError, InvalidConfirmationError
from crdwise.schema import CrdIdentity


@dataclass
class DeletionImpact:
    """
    Live instances that deleting a CRD would remove.

    Attributes:
        identity: CRD group + kind
        crd_name: CRD name
        scope: "Namespaced" or "Cluster"
        count: Number of live instances
        by_namespace: Instance count per namespace ("" for cluster-scoped)
    """

    identity: CrdIdentity
    crd_name: str
    scope: str = "Namespaced"
    count: int = 0
    by_namespace: dict[str, int] = field(default_factory=dict)

    @property
    def blocked(self) -> bool:
        return self.count > 0

    def to_dict(self) -> dict:
        return {
            "crd_name": self.crd_name,
            "identity": self.identity.key,
            "scope": self.scope,
            "count": self.count,
            "by_namespace": dict(self.by_namespace),
        }


class ConfirmationToken:
    """
    Single-use confirmation to delete one CRD despite live instances.

    Example:
        token = ConfirmationToken.for_crd("widgets.example.com")
        protection.authorize(impact, token)   # consumes the token
    """

    def __init__(self, crd_name: str) -> None:
        self.crd_name = crd_name
        self._used = False

    @classmethod
    def for_crd(cls, crd_name: str) -> "ConfirmationToken":
        return cls(crd_name)

    @property
    def used(self) -> bool:
        return self._used

    def consume(self, crd_name: str) -> None:
        """
        Spend the token on a CRD.

        Raises:
            InvalidConfirmationError: If the token is for another CRD or was already used
        """
        if self._used or crd_name != self.crd_name:
            raise InvalidConfirmationError(crd_name=crd_name, token_crd=self.crd_name)
        self._used = True

    def __repr__(self) -> str:
        return f"ConfirmationToken(crd_name={self.crd_name!r}, used={self._used})"


class DeletionProtection:
    """
    Computes deletion impact and authorizes CRD deletions.

    Usage:
        protection = DeletionProtection(client)
        impact = await protection.check_deletion(identity, "widgets.example.com")
        protection.authorize(impact, token)  # raises DeletionBlockedError
    """

    def __init__(self, client: ClusterClient) -> None:
        self.client = client

    async def check_deletion(
        self,
        identity: CrdIdentity,
        crd_name: str,
        scope: str = "Namespaced",
    ) -> DeletionImpact:
        """Count live instances of a CRD across all namespaces."""
        try:
            items = await self.client.list(identity.group, identity.kind)
        except ClusterError as e:
            if not e.not_found:
                raise
            # The kind is no longer served, so nothing can be lost
            items = []

        counts = Counter(
            (item.get("metadata") or {}).get("namespace") or ""
            for item in items
        )
        return DeletionImpact(
            identity=identity,
            crd_name=crd_name,
            scope=scope,
            count=sum(counts.values()),
            by_namespace=dict(sorted(counts.items())),
        )

    def authorize(self, impact: DeletionImpact, token: ConfirmationToken | None = None) -> None:
        """
        Allow or block a deletion.

        Raises:
            DeletionBlockedError: If instances exist and no token was given
            InvalidConfirmationError: If the token is for another CRD or already used
        """
        if not impact.blocked:
            return
        if token is None:
            raise DeletionBlockedError(crd_name=impact.crd_name, count=impact.count)
        token.consume(impact.crd_name)
