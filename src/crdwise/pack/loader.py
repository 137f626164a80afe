"""
Pack loader.

Loads a pack directory into rendered manifests:

    my-pack/
        pack.yaml        # PackManifest
        values.yaml      # default values (optional)
        crds/            # static CRDs, rendered only if they contain {{ }}/{% %}
        templates/       # Jinja2 templates, always rendered
        packs/<name>/    # local dependency packs

Design Decisions:
    - Files are read in sorted order so the same directory always yields
      the same manifests in the same order
    - Templates render with StrictUndefined: a missing value is an error
    - Files whose name starts with "_" in templates/ are helpers, not manifests
    - A dependency's values are its own values.yaml overlaid with the parent's
      values under the dependency's name
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

import yaml
from jinja2 import Environment, StrictUndefined, TemplateError
from pydantic import ValidationError

from crdwise.errors import (
    PackManifestError,
    PackMissingFileError,
    PackNotFoundError,
    PackTemplateError,
)
from crdwise.pack.detection import contains_template_syntax
from crdwise.pack.manifest import CrdSettings, PackManifest
from crdwise.schema import CrdLocation, Manifest, load_manifests_from_string


MANIFEST_SUFFIXES = (".yaml", ".yml")


def _get_jinja2_env() -> Environment:
    """Jinja2 environment used for every pack template."""
    return Environment(
        undefined=StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
    )


def deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge overlay into a copy of base."""
    result = copy.deepcopy(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


@dataclass
class CrdDocument:
    """
    A CRD found in a pack.

    Attributes:
        manifest: The decoded CRD
        location: Where it was found
        pack: Name of the pack that ships it
        raw_text: Source text before rendering (used by lint)
    """

    manifest: Manifest
    location: CrdLocation
    pack: str
    raw_text: str = ""

    @property
    def name(self) -> str:
        return self.manifest.name


@dataclass
class Pack:
    """
    A loaded and rendered pack.

    Attributes:
        manifest: Parsed pack.yaml
        path: Pack directory (None for packs built in memory)
        crds: CRDs shipped by this pack (not its dependencies)
        resources: Every other rendered manifest
        dependencies: Loaded dependency packs, in declaration order
        values: Values the pack was rendered with
    """

    manifest: PackManifest
    path: Path | None = None
    crds: list[CrdDocument] = field(default_factory=list)
    resources: list[Manifest] = field(default_factory=list)
    dependencies: list[Pack] = field(default_factory=list)
    values: dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.manifest.name

    @property
    def settings(self) -> CrdSettings:
        return self.manifest.crds

    def walk(self) -> Iterator[Pack]:
        """Yield this pack and every transitive dependency once, depth-first."""
        seen: set[str] = set()
        stack = [self]
        while stack:
            current = stack.pop()
            if current.name in seen:
                continue
            seen.add(current.name)
            yield current
            stack.extend(reversed(current.dependencies))

    @classmethod
    def from_documents(
        cls,
        manifest: PackManifest,
        documents: list[Manifest],
        dependencies: list[Pack] | None = None,
    ) -> Pack:
        """
        Build a pack from already decoded manifests.

        CRDs whose source starts with "templates/" are treated as template
        CRDs; every other CRD is treated as coming from crds/.
        """
        pack = cls(manifest=manifest, dependencies=list(dependencies or []))
        for doc in documents:
            if not doc.is_crd:
                pack.resources.append(doc)
                continue
            if doc.source.startswith("templates/"):
                location = CrdLocation.template(doc.source.removeprefix("templates/"))
            else:
                location = CrdLocation.static_dir(doc.source.removeprefix("crds/"))
            pack.crds.append(CrdDocument(manifest=doc, location=location, pack=manifest.name))
        return pack


class PackLoader:
    """
    Loads and renders pack directories.

    Example:
        >>> loader = PackLoader("./charts/widgets")
        >>> pack = loader.load(values={"replicas": 3}, release="demo")
        >>> [crd.name for crd in pack.crds]
        ['widgets.example.com']
    """

    PACK_FILE = "pack.yaml"
    VALUES_FILE = "values.yaml"
    CRDS_DIR = "crds"
    TEMPLATES_DIR = "templates"
    PACKS_DIR = "packs"

    def __init__(self, pack_path: Path | str) -> None:
        """
        Initialize with path to pack directory.

        Raises:
            PackNotFoundError: If the pack directory doesn't exist
        """
        self.pack_path = Path(pack_path).resolve()
        self._manifest: PackManifest | None = None

        if not self.pack_path.exists():
            raise PackNotFoundError(
                pack_name=self.pack_path.name,
                pack_path=str(self.pack_path),
            )

        if not self.pack_path.is_dir():
            raise PackNotFoundError(
                pack_name=self.pack_path.name,
                pack_path=str(self.pack_path),
                message=f"Pack path is not a directory: {self.pack_path}",
            )

    @property
    def manifest(self) -> PackManifest:
        """The pack manifest, loaded on first access."""
        if self._manifest is None:
            self._manifest = self.load_manifest()
        return self._manifest

    def load_manifest(self) -> PackManifest:
        """
        Load and validate pack.yaml.

        Raises:
            PackMissingFileError: If pack.yaml doesn't exist
            PackManifestError: If pack.yaml is invalid
        """
        manifest_path = self.pack_path / self.PACK_FILE

        if not manifest_path.exists():
            raise PackMissingFileError(
                pack_name=self.pack_path.name,
                pack_path=str(self.pack_path),
                missing_file=self.PACK_FILE,
            )

        try:
            with manifest_path.open() as f:
                data = yaml.safe_load(f)

            if data is None:
                raise PackManifestError(
                    pack_name=self.pack_path.name,
                    pack_path=str(self.pack_path),
                    validation_error="Empty pack.yaml",
                )

            return PackManifest.model_validate(data)

        except yaml.YAMLError as e:
            raise PackManifestError(
                pack_name=self.pack_path.name,
                pack_path=str(self.pack_path),
                validation_error=f"Invalid YAML: {e}",
            ) from e

        except ValidationError as e:
            raise PackManifestError(
                pack_name=self.pack_path.name,
                pack_path=str(self.pack_path),
                validation_error=str(e),
            ) from e

    def load_values(self) -> dict[str, Any]:
        """Load values.yaml (empty when the pack has none)."""
        values_path = self.pack_path / self.VALUES_FILE
        if not values_path.exists():
            return {}
        try:
            with values_path.open() as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise PackManifestError(
                pack_name=self.manifest.name,
                pack_path=str(self.pack_path),
                validation_error=f"Invalid values.yaml: {e}",
            ) from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise PackManifestError(
                pack_name=self.manifest.name,
                pack_path=str(self.pack_path),
                validation_error="values.yaml must be a mapping",
            )
        return data

    def load(
        self,
        values: dict[str, Any] | None = None,
        release: str = "release",
        namespace: str | None = None,
    ) -> Pack:
        """
        Load the pack, render its manifests and load its dependencies.

        Args:
            values: Values overlaid on values.yaml
            release: Release name exposed to templates
            namespace: Release namespace exposed to templates

        Raises:
            PackMissingFileError: If a declared dependency is not under packs/
            PackTemplateError: If a template fails to render or decode
        """
        manifest = self.manifest
        merged = deep_merge(self.load_values(), values or {})

        pack = Pack(manifest=manifest, path=self.pack_path, values=merged)
        context = {
            "values": merged,
            "release": {"name": release, "namespace": namespace},
            "pack": {"name": manifest.name, "version": manifest.version},
        }

        for path in self._files(self.CRDS_DIR):
            rel = path.relative_to(self.pack_path / self.CRDS_DIR).as_posix()
            text = path.read_text()
            templated = contains_template_syntax(text)
            rendered = self._render(text, f"{self.CRDS_DIR}/{rel}", context) if templated else text
            for doc in self._decode(rendered, f"{self.CRDS_DIR}/{rel}"):
                if doc.is_crd:
                    pack.crds.append(CrdDocument(
                        manifest=doc,
                        location=CrdLocation.static_dir(rel, templated=templated),
                        pack=manifest.name,
                        raw_text=text,
                    ))
                else:
                    pack.resources.append(doc)

        for path in self._files(self.TEMPLATES_DIR):
            if path.name.startswith("_"):
                continue
            rel = path.relative_to(self.pack_path / self.TEMPLATES_DIR).as_posix()
            text = path.read_text()
            rendered = self._render(text, f"{self.TEMPLATES_DIR}/{rel}", context)
            for doc in self._decode(rendered, f"{self.TEMPLATES_DIR}/{rel}"):
                if doc.is_crd:
                    pack.crds.append(CrdDocument(
                        manifest=doc,
                        location=CrdLocation.template(rel),
                        pack=manifest.name,
                        raw_text=text,
                    ))
                else:
                    pack.resources.append(doc)

        for dependency in manifest.dependencies:
            dep_path = self.pack_path / self.PACKS_DIR / dependency
            if not dep_path.is_dir():
                raise PackMissingFileError(
                    pack_name=manifest.name,
                    pack_path=str(self.pack_path),
                    missing_file=f"{self.PACKS_DIR}/{dependency}",
                )
            dep_values = merged.get(dependency)
            pack.dependencies.append(
                PackLoader(dep_path).load(
                    values=dep_values if isinstance(dep_values, dict) else None,
                    release=release,
                    namespace=namespace,
                )
            )

        return pack

    def _files(self, directory: str) -> list[Path]:
        root = self.pack_path / directory
        if not root.is_dir():
            return []
        return sorted(
            p for p in root.rglob("*")
            if p.is_file() and p.suffix in MANIFEST_SUFFIXES
        )

    def _render(self, text: str, source: str, context: dict[str, Any]) -> str:
        try:
            return _get_jinja2_env().from_string(text).render(**context)
        except TemplateError as e:
            raise PackTemplateError(
                pack_name=self.manifest.name,
                pack_path=str(self.pack_path),
                template_path=source,
                template_error=str(e),
            ) from e

    def _decode(self, text: str, source: str) -> list[Manifest]:
        try:
            return load_manifests_from_string(text, source=source)
        except yaml.YAMLError as e:
            raise PackTemplateError(
                pack_name=self.manifest.name,
                pack_path=str(self.pack_path),
                template_path=source,
                template_error=f"Invalid YAML: {e}",
            ) from e


def load_pack(
    path: Path | str,
    values: dict[str, Any] | None = None,
    release: str = "release",
    namespace: str | None = None,
) -> Pack:
    """Load a pack directory (shortcut for PackLoader(path).load(...))."""
    return PackLoader(path).load(values=values, release=release, namespace=namespace)
