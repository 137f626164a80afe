"""
Unit tests for CRD deletion protection.

Tests cover:
- Counting live instances
- Blocking deletions without confirmation
- Single-use, CRD-scoped confirmation tokens
"""

import asyncio

import pytest

from crdwise.cluster import InMemoryCluster
from crdwise.errors import ClusterError, DeletionBlockedError, InvalidConfirmationError
from crdwise.protection import ConfirmationToken, DeletionImpact, DeletionProtection
from crdwise.schema import CrdIdentity


WIDGET = CrdIdentity(group="example.com", kind="Widget")


def _widget(name: str, namespace: str | None) -> dict:
    metadata = {"name": name}
    if namespace:
        metadata["namespace"] = namespace
    return {"apiVersion": "example.com/v1", "kind": "Widget", "metadata": metadata}


class _GoneCluster(InMemoryCluster):
    """Cluster whose list endpoint no longer serves the kind."""

    async def list(self, group: str, kind: str) -> list[dict]:
        raise ClusterError(method="GET", path=f"/apis/{group}", status_code=404, detail="not found")


class _BrokenCluster(InMemoryCluster):
    async def list(self, group: str, kind: str) -> list[dict]:
        raise ClusterError(method="GET", path=f"/apis/{group}", status_code=500, detail="boom")


class TestCheckDeletion:
    """Tests for DeletionProtection.check_deletion."""

    def test_counts_by_namespace(self, cluster: InMemoryCluster) -> None:
        cluster.add(_widget("a", "team-b"))
        cluster.add(_widget("b", "team-a"))
        cluster.add(_widget("c", "team-b"))
        cluster.add({"apiVersion": "other.io/v1", "kind": "Widget", "metadata": {"name": "x"}})

        impact = asyncio.run(DeletionProtection(cluster).check_deletion(WIDGET, "widgets.example.com"))

        assert impact.count == 3
        assert impact.by_namespace == {"team-a": 1, "team-b": 2}
        assert impact.blocked
        assert impact.to_dict()["identity"] == "Widget.example.com"

    def test_cluster_scoped_instances(self, cluster: InMemoryCluster) -> None:
        cluster.add(_widget("a", None))
        impact = asyncio.run(
            DeletionProtection(cluster).check_deletion(WIDGET, "widgets.example.com", scope="Cluster")
        )
        assert impact.by_namespace == {"": 1}

    def test_no_instances(self, cluster: InMemoryCluster) -> None:
        impact = asyncio.run(DeletionProtection(cluster).check_deletion(WIDGET, "widgets.example.com"))
        assert impact.count == 0
        assert not impact.blocked

    def test_unserved_kind_counts_zero(self) -> None:
        impact = asyncio.run(DeletionProtection(_GoneCluster()).check_deletion(WIDGET, "widgets.example.com"))
        assert impact.count == 0

    def test_other_errors_propagate(self) -> None:
        with pytest.raises(ClusterError):
            asyncio.run(DeletionProtection(_BrokenCluster()).check_deletion(WIDGET, "widgets.example.com"))


class TestAuthorize:
    """Tests for DeletionProtection.authorize."""

    def _impact(self, count: int) -> DeletionImpact:
        return DeletionImpact(identity=WIDGET, crd_name="widgets.example.com", count=count)

    def test_empty_crd_needs_no_token(self, cluster: InMemoryCluster) -> None:
        DeletionProtection(cluster).authorize(self._impact(0))

    def test_blocked_without_token(self, cluster: InMemoryCluster) -> None:
        with pytest.raises(DeletionBlockedError) as exc_info:
            DeletionProtection(cluster).authorize(self._impact(2))
        assert exc_info.value.count == 2
        assert "--confirm-crd-deletion widgets.example.com" in exc_info.value.suggestion

    def test_token_is_consumed(self, cluster: InMemoryCluster) -> None:
        token = ConfirmationToken.for_crd("widgets.example.com")
        DeletionProtection(cluster).authorize(self._impact(2), token)
        assert token.used

    def test_token_cannot_be_reused(self, cluster: InMemoryCluster) -> None:
        protection = DeletionProtection(cluster)
        token = ConfirmationToken.for_crd("widgets.example.com")
        protection.authorize(self._impact(2), token)
        with pytest.raises(InvalidConfirmationError, match="already used"):
            protection.authorize(self._impact(2), token)

    def test_token_for_another_crd(self, cluster: InMemoryCluster) -> None:
        token = ConfirmationToken.for_crd("gadgets.example.com")
        with pytest.raises(InvalidConfirmationError) as exc_info:
            DeletionProtection(cluster).authorize(self._impact(1), token)
        assert exc_info.value.token_crd == "gadgets.example.com"
        assert not token.used
