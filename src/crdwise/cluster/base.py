"""
Cluster client interface for crdwise.

The engine, readiness waiter and deletion protection talk to the cluster
only through ClusterClient. Implementations:
    - KubeHttpClient: Kubernetes API over httpx
    - InMemoryCluster: In-process cluster for tests and dry runs

Contract:
    - apply() is a server-side apply under a field manager; it never
      replaces fields owned by other managers
    - get() and get_status() return None when the object does not exist
    - delete() returns False when the object does not exist
    - Any other failure raises ClusterError
"""

from abc import ABC, abstractmethod
from typing import Any

from crdwise.schema import Manifest


CRD_API_VERSION = "apiextensions.k8s.io/v1"


class ClusterClient(ABC):
    """
    Abstract base class for cluster clients.

    All methods are coroutines; callers run them concurrently under the
    engine's semaphore.
    """

    @abstractmethod
    async def apply(self, manifest: Manifest, field_owner: str) -> dict[str, Any]:
        """
        Server-side apply a manifest.

        Returns:
            The object as stored by the cluster
        """
        ...

    @abstractmethod
    async def get(
        self,
        kind: str,
        name: str,
        namespace: str | None = None,
        api_version: str | None = None,
    ) -> dict[str, Any] | None:
        """Read an object (None if it does not exist)."""
        ...

    @abstractmethod
    async def get_status(self, kind: str, name: str) -> dict[str, Any] | None:
        """Read the status of a cluster-scoped object (None if it does not exist)."""
        ...

    @abstractmethod
    async def list(self, group: str, kind: str) -> list[dict[str, Any]]:
        """List objects of a kind across all namespaces."""
        ...

    @abstractmethod
    async def delete(
        self,
        kind: str,
        name: str,
        namespace: str | None = None,
        api_version: str | None = None,
    ) -> bool:
        """Delete an object. Returns False if it did not exist."""
        ...

    async def aclose(self) -> None:
        """Release client resources."""
        return None

    async def __aenter__(self) -> "ClusterClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
