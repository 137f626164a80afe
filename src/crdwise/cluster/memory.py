"""
In-memory cluster.

A ClusterClient that keeps objects in a dict. CRDs become Established
after a configurable number of status reads, which lets tests drive the
readiness waiter through every state without a real API server.
"""

import copy
from typing import Any

from crdwise.cluster.base import ClusterClient
from crdwise.schema import CRD_KIND, Manifest


def _group(api_version: str) -> str:
    return api_version.split("/", 1)[0] if "/" in api_version else ""


class InMemoryCluster(ClusterClient):
    """
    In-process ClusterClient.

    Attributes:
        establish_after: Status reads before an applied CRD reports Established
        never_establish: CRD names that never become Established
        reject_names: CRD names whose NamesAccepted condition is False
        calls: Log of (method, target) for every call, in order
    """

    def __init__(
        self,
        establish_after: int = 0,
        never_establish: set[str] | None = None,
        reject_names: set[str] | None = None,
    ) -> None:
        self.establish_after = establish_after
        self.never_establish = set(never_establish or ())
        self.reject_names = set(reject_names or ())
        self.calls: list[tuple[str, str]] = []
        self._objects: dict[tuple[str, str, str, str], dict[str, Any]] = {}
        self._status_reads: dict[str, int] = {}

    @staticmethod
    def _key(group: str, kind: str, namespace: str | None, name: str) -> tuple[str, str, str, str]:
        return (group, kind, namespace or "", name)

    def add(self, obj: dict[str, Any]) -> None:
        """Seed an object directly (no apply semantics, no status changes)."""
        metadata = obj.get("metadata") or {}
        key = self._key(
            _group(obj.get("apiVersion", "")),
            obj.get("kind", ""),
            metadata.get("namespace"),
            metadata["name"],
        )
        self._objects[key] = copy.deepcopy(obj)

    def objects(self, kind: str | None = None) -> list[dict[str, Any]]:
        return [
            copy.deepcopy(obj)
            for key, obj in sorted(self._objects.items())
            if kind is None or key[1] == kind
        ]

    def _find(self, kind: str, name: str, namespace: str | None) -> tuple[str, str, str, str] | None:
        for key in self._objects:
            if key[1] == kind and key[3] == name and key[2] == (namespace or ""):
                return key
        return None

    async def apply(self, manifest: Manifest, field_owner: str) -> dict[str, Any]:
        self.calls.append(("apply", manifest.ref))
        key = self._key(manifest.group, manifest.kind, manifest.namespace, manifest.name)
        existing = self._objects.get(key, {})
        obj = copy.deepcopy(manifest.body)
        metadata = obj.setdefault("metadata", {})
        metadata.setdefault("annotations", {})
        metadata["managedFields"] = [{"manager": field_owner, "operation": "Apply"}]
        if manifest.kind == CRD_KIND:
            obj["status"] = copy.deepcopy(existing.get("status") or {})
            self._status_reads.pop(manifest.name, None)
            stored = obj["status"].setdefault("storedVersions", [])
            for version in obj.get("spec", {}).get("versions", []):
                if version.get("storage") and version.get("name") not in stored:
                    stored.append(version["name"])
            # Establishment is reported through get_status
            obj["status"]["conditions"] = []
        self._objects[key] = obj
        return copy.deepcopy(obj)

    async def get(
        self,
        kind: str,
        name: str,
        namespace: str | None = None,
        api_version: str | None = None,
    ) -> dict[str, Any] | None:
        self.calls.append(("get", f"{kind}/{name}"))
        key = self._find(kind, name, namespace)
        return copy.deepcopy(self._objects[key]) if key else None

    async def get_status(self, kind: str, name: str) -> dict[str, Any] | None:
        self.calls.append(("get_status", f"{kind}/{name}"))
        key = self._find(kind, name, None)
        if key is None:
            return None
        obj = self._objects[key]
        status = obj.setdefault("status", {})
        if kind == CRD_KIND:
            reads = self._status_reads.get(name, 0) + 1
            self._status_reads[name] = reads
            if name in self.reject_names:
                status["conditions"] = [
                    {"type": "NamesAccepted", "status": "False", "reason": "NameConflict"},
                ]
            elif name not in self.never_establish and reads > self.establish_after:
                status["conditions"] = [
                    {"type": "NamesAccepted", "status": "True"},
                    {"type": "Established", "status": "True"},
                ]
        return copy.deepcopy(status)

    async def list(self, group: str, kind: str) -> list[dict[str, Any]]:
        self.calls.append(("list", f"{kind}.{group}"))
        return [
            copy.deepcopy(obj)
            for key, obj in sorted(self._objects.items())
            if key[0] == group and key[1] == kind
        ]

    async def delete(
        self,
        kind: str,
        name: str,
        namespace: str | None = None,
        api_version: str | None = None,
    ) -> bool:
        self.calls.append(("delete", f"{kind}/{name}"))
        key = self._find(kind, name, namespace)
        if key is None:
            return False
        del self._objects[key]
        return True
