"""
Unit tests for pack loader.

Tests cover:
- PackLoader initialization
- Manifest and values loading
- Rendering crds/ and templates/
- Local dependency packs and value overlays
- Template and YAML errors
"""

from pathlib import Path
from typing import Any, Callable

import pytest

from crdwise.errors import (
    PackManifestError,
    PackMissingFileError,
    PackNotFoundError,
    PackTemplateError,
)
from crdwise.pack import PackLoader, load_pack
from crdwise.pack.loader import deep_merge
from crdwise.schema import LocationKind


PACK_YAML = {"name": "widgets", "version": "1.0.0"}

RESOURCES = """\
apiVersion: v1
kind: Namespace
metadata:
  name: {{ release.namespace }}
---
apiVersion: example.com/v1
kind: Widget
metadata:
  name: {{ release.name }}-widget
  namespace: {{ release.namespace }}
spec:
  size: {{ values.size }}
"""

TEMPLATED_CRD = """\
apiVersion: apiextensions.k8s.io/v1
kind: CustomResourceDefinition
metadata:
  name: gadgets.example.com
  labels:
    release: {{ release.name }}
spec:
  group: example.com
  scope: Namespaced
  names:
    kind: Gadget
    plural: gadgets
  versions:
    - name: v1
      served: true
      storage: true
"""


@pytest.fixture
def widget_dir(pack_dir: Callable[..., Path], widget_crd: dict[str, Any]) -> Path:
    """A pack directory with a static CRD, a templated CRD and templates."""
    return pack_dir({
        "pack.yaml": PACK_YAML,
        "values.yaml": {"size": "small"},
        "crds/widgets.yaml": widget_crd,
        "crds/gadgets.yaml": TEMPLATED_CRD,
        "templates/resources.yaml": RESOURCES,
        "templates/_helpers.yaml": "{{ not_defined }}",
        "templates/NOTES.txt": "not a manifest",
    })


# =============================================================================
# Initialization
# =============================================================================


class TestPackLoaderInit:
    """Tests for PackLoader initialization."""

    def test_missing_directory(self, tmp_path: Path) -> None:
        with pytest.raises(PackNotFoundError):
            PackLoader(tmp_path / "nope")

    def test_path_is_a_file(self, tmp_path: Path) -> None:
        path = tmp_path / "pack.yaml"
        path.write_text("name: x")
        with pytest.raises(PackNotFoundError, match="not a directory"):
            PackLoader(path)

    def test_missing_pack_yaml(self, pack_dir: Callable[..., Path]) -> None:
        path = pack_dir({"values.yaml": {}})
        with pytest.raises(PackMissingFileError) as exc_info:
            PackLoader(path).load_manifest()
        assert exc_info.value.missing_file == "pack.yaml"


# =============================================================================
# Manifest and Values
# =============================================================================


class TestManifestLoading:
    """Tests for pack.yaml and values.yaml."""

    def test_load_manifest(self, widget_dir: Path) -> None:
        manifest = PackLoader(widget_dir).manifest
        assert manifest.name == "widgets"
        assert manifest.version == "1.0.0"

    def test_empty_pack_yaml(self, pack_dir: Callable[..., Path]) -> None:
        path = pack_dir({"pack.yaml": ""})
        with pytest.raises(PackManifestError, match="Empty pack.yaml"):
            PackLoader(path).load_manifest()

    def test_invalid_pack_yaml(self, pack_dir: Callable[..., Path]) -> None:
        path = pack_dir({"pack.yaml": {"name": "Widgets", "version": "1.0.0"}})
        with pytest.raises(PackManifestError) as exc_info:
            PackLoader(path).load_manifest()
        assert "Invalid pack name" in exc_info.value.validation_error

    def test_values_must_be_a_mapping(self, pack_dir: Callable[..., Path]) -> None:
        path = pack_dir({"pack.yaml": PACK_YAML, "values.yaml": "- a\n- b\n"})
        with pytest.raises(PackManifestError, match="must be a mapping"):
            PackLoader(path).load_values()

    def test_no_values_file(self, pack_dir: Callable[..., Path]) -> None:
        path = pack_dir({"pack.yaml": PACK_YAML})
        assert PackLoader(path).load_values() == {}


# =============================================================================
# Rendering
# =============================================================================


class TestLoad:
    """Tests for PackLoader.load."""

    def test_crds_and_resources(self, widget_dir: Path) -> None:
        pack = load_pack(widget_dir, release="demo", namespace="team-a")

        assert [crd.name for crd in pack.crds] == ["gadgets.example.com", "widgets.example.com"]
        gadgets, widgets = pack.crds
        assert gadgets.location.templated
        assert gadgets.manifest.body["metadata"]["labels"] == {"release": "demo"}
        assert "{{ release.name }}" in gadgets.raw_text
        assert widgets.location.kind == LocationKind.STATIC_DIR
        assert not widgets.location.templated

        assert [m.ref for m in pack.resources] == ["Namespace/team-a", "Widget/team-a/demo-widget"]
        assert pack.resources[1].body["spec"] == {"size": "small"}
        assert pack.resources[1].source == "templates/resources.yaml"

    def test_values_overlay(self, widget_dir: Path) -> None:
        pack = load_pack(widget_dir, values={"size": "large"}, namespace="demo")
        assert pack.values == {"size": "large"}
        assert pack.resources[1].body["spec"] == {"size": "large"}

    def test_crd_in_templates(self, pack_dir: Callable[..., Path], widget_crd: dict[str, Any]) -> None:
        path = pack_dir({"pack.yaml": PACK_YAML, "templates/crds/widgets.yaml": widget_crd})
        pack = load_pack(path)
        assert pack.crds[0].location.kind == LocationKind.TEMPLATE
        assert pack.crds[0].location.describe() == "templates/crds/widgets.yaml"
        assert pack.resources == []

    def test_non_crd_in_crds_dir_is_a_resource(self, pack_dir: Callable[..., Path]) -> None:
        path = pack_dir({
            "pack.yaml": PACK_YAML,
            "crds/namespace.yaml": {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": "demo"}},
        })
        pack = load_pack(path)
        assert pack.crds == []
        assert pack.resources[0].source == "crds/namespace.yaml"

    def test_undefined_value(self, pack_dir: Callable[..., Path]) -> None:
        path = pack_dir({"pack.yaml": PACK_YAML, "templates/resources.yaml": RESOURCES})
        with pytest.raises(PackTemplateError) as exc_info:
            load_pack(path, namespace="demo")
        assert exc_info.value.template_path == "templates/resources.yaml"
        assert "size" in exc_info.value.template_error

    def test_invalid_rendered_yaml(self, pack_dir: Callable[..., Path]) -> None:
        path = pack_dir({"pack.yaml": PACK_YAML, "templates/bad.yaml": "kind: [unterminated"})
        with pytest.raises(PackTemplateError, match="Invalid YAML"):
            load_pack(path)


class TestDependencies:
    """Tests for local dependency packs."""

    def test_loads_dependency_with_overlay(self, pack_dir: Callable[..., Path], make_crd: Callable[..., dict]) -> None:
        path = pack_dir({
            "pack.yaml": {"name": "app", "version": "1.0.0", "dependencies": ["gadgets"]},
            "values.yaml": {"gadgets": {"replicas": 3}},
            "packs/gadgets/pack.yaml": {"name": "gadgets", "version": "0.1.0"},
            "packs/gadgets/values.yaml": {"replicas": 1, "image": "gadget:1"},
            "packs/gadgets/crds/gadgets.yaml": make_crd("gadgets.example.com", "Gadget"),
        })
        pack = load_pack(path)
        assert [p.name for p in pack.walk()] == ["app", "gadgets"]
        dependency = pack.dependencies[0]
        assert dependency.values == {"replicas": 3, "image": "gadget:1"}
        assert dependency.crds[0].pack == "gadgets"

    def test_missing_dependency(self, pack_dir: Callable[..., Path]) -> None:
        path = pack_dir({"pack.yaml": {"name": "app", "version": "1.0.0", "dependencies": ["gadgets"]}})
        with pytest.raises(PackMissingFileError) as exc_info:
            load_pack(path)
        assert exc_info.value.missing_file == "packs/gadgets"


class TestDeepMerge:
    """Tests for deep_merge."""

    def test_nested_merge(self) -> None:
        base = {"a": {"b": 1, "c": 2}, "d": [1]}
        merged = deep_merge(base, {"a": {"c": 3}, "d": [2]})
        assert merged == {"a": {"b": 1, "c": 3}, "d": [2]}
        assert base == {"a": {"b": 1, "c": 2}, "d": [1]}

    def test_scalar_replaces_mapping(self) -> None:
        assert deep_merge({"a": {"b": 1}}, {"a": None}) == {"a": None}
