"""
Pytest configuration and fixtures for crdwise tests.

This module provides shared fixtures used across unit and integration tests:
CRD and manifest builders, in-memory packs, pack directories on disk, an
in-memory cluster and a state database in a temporary directory.
"""

from pathlib import Path
from typing import Any, Callable, Generator

import pytest
import yaml

from crdwise.cluster import InMemoryCluster
from crdwise.pack import CrdSettings, Pack, PackManifest
from crdwise.schema import Manifest
from crdwise.store import StateDB


# spec schema of the widgets.example.com CRD used throughout the tests
WIDGET_SPEC = {
    "type": "object",
    "required": ["size"],
    "properties": {
        "size": {"type": "string"},
        "color": {"type": "string"},
    },
}


def build_crd(
    name: str = "widgets.example.com",
    kind: str = "Widget",
    spec_schema: dict[str, Any] | None = None,
    versions: list[dict[str, Any]] | None = None,
    scope: str = "Namespaced",
    annotations: dict[str, str] | None = None,
    short_names: list[str] | None = None,
) -> dict[str, Any]:
    """Build a CRD document; group and plural come from the name."""
    plural, group = name.split(".", 1)
    if versions is None:
        versions = [
            {
                "name": "v1",
                "served": True,
                "storage": True,
                "schema": {
                    "openAPIV3Schema": {
                        "type": "object",
                        "properties": {"spec": spec_schema if spec_schema is not None else WIDGET_SPEC},
                    },
                },
            },
        ]
    metadata: dict[str, Any] = {"name": name}
    if annotations:
        metadata["annotations"] = dict(annotations)
    names: dict[str, Any] = {"kind": kind, "plural": plural, "singular": kind.lower()}
    if short_names:
        names["shortNames"] = list(short_names)
    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": metadata,
        "spec": {
            "group": group,
            "scope": scope,
            "names": names,
            "versions": versions,
        },
    }


def build_manifest(
    kind: str,
    name: str,
    api_version: str = "v1",
    namespace: str | None = None,
    source: str = "templates/resources.yaml",
    spec: dict[str, Any] | None = None,
) -> Manifest:
    """Build a resource manifest."""
    metadata: dict[str, Any] = {"name": name}
    if namespace:
        metadata["namespace"] = namespace
    doc: dict[str, Any] = {"apiVersion": api_version, "kind": kind, "metadata": metadata}
    if spec is not None:
        doc["spec"] = spec
    return Manifest.from_document(doc, source=source)


def build_pack(
    name: str = "widgets",
    crds: list[tuple[str, dict[str, Any]]] | None = None,
    resources: list[Manifest] | None = None,
    dependencies: list[Pack] | None = None,
    settings: dict[str, Any] | None = None,
) -> Pack:
    """
    Build an in-memory pack.

    Args:
        crds: (source, CRD document) pairs; sources under templates/ are
            template CRDs, anything else is treated as crds/
        resources: Non-CRD manifests
        dependencies: Dependency packs
        settings: The pack's `crds:` block
    """
    manifest = PackManifest(
        name=name,
        version="1.0.0",
        dependencies=[dep.name for dep in dependencies or []],
        crds=CrdSettings.model_validate(settings or {}),
    )
    documents = [Manifest.from_document(doc, source=source) for source, doc in crds or []]
    documents.extend(resources or [])
    return Pack.from_documents(manifest, documents, dependencies)


def write_files(root: Path, files: dict[str, Any]) -> Path:
    """
    Write a directory tree.

    String values are written as-is; mappings and lists are YAML-dumped
    (lists as multi-document YAML).
    """
    root.mkdir(parents=True, exist_ok=True)
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, str):
            path.write_text(content)
        elif isinstance(content, list):
            path.write_text(yaml.safe_dump_all(content, sort_keys=False))
        else:
            path.write_text(yaml.safe_dump(content, sort_keys=False))
    return root


@pytest.fixture
def make_crd() -> Callable[..., dict[str, Any]]:
    """Factory for CRD documents."""
    return build_crd


@pytest.fixture
def make_manifest() -> Callable[..., Manifest]:
    """Factory for resource manifests."""
    return build_manifest


@pytest.fixture
def make_pack() -> Callable[..., Pack]:
    """Factory for in-memory packs."""
    return build_pack


@pytest.fixture
def widget_crd() -> dict[str, Any]:
    """The widgets.example.com CRD with a required `size` field."""
    return build_crd()


@pytest.fixture
def widget_pack(widget_crd: dict[str, Any]) -> Pack:
    """A pack shipping the widgets CRD, a namespace and one Widget."""
    return build_pack(
        crds=[("crds/widgets.yaml", widget_crd)],
        resources=[
            build_manifest("Namespace", "demo"),
            build_manifest(
                "Widget",
                "sample",
                api_version="example.com/v1",
                namespace="demo",
                spec={"size": "small"},
            ),
        ],
    )


@pytest.fixture
def cluster() -> InMemoryCluster:
    """An empty in-memory cluster that establishes CRDs on the first read."""
    return InMemoryCluster()


@pytest.fixture
def state_db(tmp_path: Path) -> Generator[StateDB, None, None]:
    """A state database in a temporary directory."""
    db = StateDB(tmp_path / "state.db")
    yield db
    db.close()


@pytest.fixture
def pack_dir(tmp_path: Path) -> Callable[[dict[str, Any], str], Path]:
    """Factory that writes a pack directory under tmp_path."""

    def _write(files: dict[str, Any], name: str = "pack") -> Path:
        return write_files(tmp_path / name, files)

    return _write
