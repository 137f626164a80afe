"""
Cluster transport for crdwise.

Key Components:
    - ClusterClient: Async interface used by the engine
    - KubeHttpClient: Kubernetes REST client on httpx
    - InMemoryCluster: In-process implementation for tests and dry runs
"""

from crdwise.cluster.base import CRD_API_VERSION, ClusterClient
from crdwise.cluster.http import ApiResource, KubeHttpClient
from crdwise.cluster.memory import InMemoryCluster

__all__ = [
    "CRD_API_VERSION",
    "ApiResource",
    "ClusterClient",
    "InMemoryCluster",
    "KubeHttpClient",
]
