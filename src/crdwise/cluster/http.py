"""
Kubernetes API client over httpx.

Implements ClusterClient against the Kubernetes REST API:
    - apply: server-side apply (PATCH, application/apply-patch+yaml,
      fieldManager=<owner>, force=true)
    - get / get_status / delete: plain REST on the discovered resource path
    - list: all namespaces, using the group's preferred version

Kinds are mapped to REST resources through API discovery (/api/v1 and
/apis/<group>/<version>); discovery documents are cached per client.
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx
import yaml

from crdwise.cluster.base import CRD_API_VERSION, ClusterClient
from crdwise.errors import ClusterError
from crdwise.schema import Manifest

logger = logging.getLogger(__name__)

APPLY_PATCH_CONTENT_TYPE = "application/apply-patch+yaml"

# apiVersions for kinds the engine reads without a manifest at hand
DEFAULT_API_VERSIONS = {
    "CustomResourceDefinition": CRD_API_VERSION,
    "Namespace": "v1",
}


@dataclass(frozen=True)
class ApiResource:
    """A REST resource found through discovery."""

    group_version: str
    plural: str
    kind: str
    namespaced: bool

    def path(self, name: str | None = None, namespace: str | None = None) -> str:
        if self.group_version == "v1":
            base = "/api/v1"
        else:
            base = f"/apis/{self.group_version}"
        if self.namespaced and namespace:
            base += f"/namespaces/{namespace}"
        base += f"/{self.plural}"
        if name:
            base += f"/{name}"
        return base


class KubeHttpClient(ClusterClient):
    """
    Async Kubernetes API client.

    Example:
        async with KubeHttpClient("https://127.0.0.1:6443", token=token) as client:
            status = await client.get_status("CustomResourceDefinition", "widgets.example.com")

    Attributes:
        base_url: API server URL
        token: Bearer token (optional)
        verify: TLS verification flag or CA bundle path
        timeout_seconds: Per-request timeout
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        verify: bool | str = True,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.verify = verify
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._resources: dict[str, list[ApiResource]] = {}
        self._preferred: dict[str, str] = {}

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                verify=self.verify,
                timeout=self.timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        logger.debug("%s %s", method, path)
        try:
            return await self._get_client().request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ClusterError(method=method, path=path, detail=f"timed out after {self.timeout_seconds:g}s") from e
        except httpx.RequestError as e:
            raise ClusterError(method=method, path=path, detail=str(e)) from e

    @staticmethod
    def _json(response: httpx.Response, method: str, path: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ClusterError(
                method=method,
                path=path,
                status_code=response.status_code,
                detail=f"invalid JSON response: {e}",
            ) from e

    @staticmethod
    def _check(response: httpx.Response, method: str, path: str) -> None:
        if response.status_code < 400:
            return
        try:
            detail = response.json().get("message", "")
        except (AttributeError, ValueError):
            detail = response.text
        raise ClusterError(
            method=method,
            path=path,
            status_code=response.status_code,
            detail=detail or response.reason_phrase,
        )

    # =========================================================================
    # Discovery
    # =========================================================================

    async def _resources_for(self, group_version: str) -> list[ApiResource]:
        if group_version not in self._resources:
            path = "/api/v1" if group_version == "v1" else f"/apis/{group_version}"
            response = await self._request("GET", path)
            self._check(response, "GET", path)
            try:
                self._resources[group_version] = [
                    ApiResource(
                        group_version=group_version,
                        plural=item["name"],
                        kind=item["kind"],
                        namespaced=bool(item.get("namespaced", False)),
                    )
                    for item in self._json(response, "GET", path).get("resources", [])
                    if "/" not in item["name"]
                ]
            except (AttributeError, KeyError, TypeError) as e:
                raise ClusterError(method="GET", path=path, detail=f"malformed discovery document: {e!r}") from e
        return self._resources[group_version]

    async def discover(self, api_version: str, kind: str) -> ApiResource:
        """
        Find the REST resource for a kind.

        Raises:
            ClusterError: If the group version does not serve the kind (404)
        """
        for resource in await self._resources_for(api_version):
            if resource.kind == kind:
                return resource
        raise ClusterError(
            method="GET",
            path=api_version,
            status_code=404,
            detail=f"{api_version} does not serve kind {kind}",
        )

    async def preferred_version(self, group: str) -> str:
        """Preferred group version for an API group ("v1" for the core group)."""
        if not group or group == "v1":
            return "v1"
        if group not in self._preferred:
            path = f"/apis/{group}"
            response = await self._request("GET", path)
            self._check(response, "GET", path)
            try:
                self._preferred[group] = self._json(response, "GET", path)["preferredVersion"]["groupVersion"]
            except (KeyError, TypeError) as e:
                raise ClusterError(method="GET", path=path, detail=f"no preferred version in discovery document: {e!r}") from e
        return self._preferred[group]

    def _default_api_version(self, kind: str) -> str:
        try:
            return DEFAULT_API_VERSIONS[kind]
        except KeyError:
            raise ClusterError(method="GET", path=kind, detail=f"apiVersion required for kind {kind}") from None

    # =========================================================================
    # ClusterClient
    # =========================================================================

    async def apply(self, manifest: Manifest, field_owner: str) -> dict[str, Any]:
        resource = await self.discover(manifest.api_version, manifest.kind)
        namespace = manifest.namespace or ("default" if resource.namespaced else None)
        path = resource.path(manifest.name, namespace)
        response = await self._request(
            "PATCH",
            path,
            params={"fieldManager": field_owner, "force": "true"},
            headers={"Content-Type": APPLY_PATCH_CONTENT_TYPE},
            content=yaml.safe_dump(manifest.body, sort_keys=False),
        )
        self._check(response, "PATCH", path)
        return self._json(response, "PATCH", path)

    async def get(
        self,
        kind: str,
        name: str,
        namespace: str | None = None,
        api_version: str | None = None,
    ) -> dict[str, Any] | None:
        resource = await self.discover(api_version or self._default_api_version(kind), kind)
        path = resource.path(name, namespace)
        response = await self._request("GET", path)
        if response.status_code == 404:
            return None
        self._check(response, "GET", path)
        return self._json(response, "GET", path)

    async def get_status(self, kind: str, name: str) -> dict[str, Any] | None:
        obj = await self.get(kind, name)
        if obj is None:
            return None
        return obj.get("status") or {}

    async def list(self, group: str, kind: str) -> list[dict[str, Any]]:
        resource = await self.discover(await self.preferred_version(group), kind)
        path = resource.path()
        response = await self._request("GET", path)
        self._check(response, "GET", path)
        return list(self._json(response, "GET", path).get("items") or [])

    async def delete(
        self,
        kind: str,
        name: str,
        namespace: str | None = None,
        api_version: str | None = None,
    ) -> bool:
        resource = await self.discover(api_version or self._default_api_version(kind), kind)
        path = resource.path(name, namespace)
        response = await self._request("DELETE", path)
        if response.status_code == 404:
            return False
        self._check(response, "DELETE", path)
        return True
