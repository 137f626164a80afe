"""
Parse CustomResourceDefinition documents into CrdSchema models.

parse() accepts either a decoded mapping or YAML text. Anything that would
make the structural diff meaningless (missing group, no versions, duplicate
version names, a validation tree with the wrong shape) raises
MalformedSchemaError with the path of the offending node.

to_document() goes the other way and produces the canonical wire form, which
is what the tests and the `diff` command use to build CRDs from models.
"""

from typing import Any

import yaml
from pydantic import ValidationError

from crdwise.crd.model import (
    CrdNames,
    CrdSchema,
    CrdScope,
    CrdVersionSchema,
    PrinterColumn,
    SchemaProperty,
)
from crdwise.errors import MalformedSchemaError


CRD_API_VERSION = "apiextensions.k8s.io/v1"

# Scalar keys copied one-to-one between the wire form and SchemaProperty
_SCALAR_KEYS = {
    "type": "type",
    "description": "description",
    "format": "format",
    "pattern": "pattern",
    "minimum": "minimum",
    "maximum": "maximum",
    "minLength": "min_length",
    "maxLength": "max_length",
    "minItems": "min_items",
    "maxItems": "max_items",
    "minProperties": "min_properties",
    "maxProperties": "max_properties",
}

_STRING_KEYS = {"type", "description", "format", "pattern"}


def parse(raw: dict[str, Any] | str) -> CrdSchema:
    """
    Parse a CRD document.

    Args:
        raw: Decoded CRD mapping, or YAML text containing one CRD

    Returns:
        CrdSchema with versions and printer columns in declared order

    Raises:
        MalformedSchemaError: If required fields are missing or the
            validation tree cannot be parsed
    """
    if isinstance(raw, str):
        try:
            raw = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise MalformedSchemaError(reason=f"invalid YAML: {e}") from e

    if not isinstance(raw, dict):
        raise MalformedSchemaError(reason="CRD document must be a mapping")

    metadata = raw.get("metadata") or {}
    name = metadata.get("name") if isinstance(metadata, dict) else None

    kind = raw.get("kind")
    if kind != "CustomResourceDefinition":
        raise MalformedSchemaError(
            crd_name=name or "",
            reason=f"expected kind CustomResourceDefinition, got {kind!r}",
        )
    if not isinstance(name, str) or not name:
        raise MalformedSchemaError(reason="missing metadata.name")

    spec = raw.get("spec")
    if not isinstance(spec, dict):
        raise MalformedSchemaError(crd_name=name, reason="missing spec")

    group = spec.get("group")
    if not isinstance(group, str) or not group:
        raise MalformedSchemaError(crd_name=name, reason="missing spec.group")

    scope_value = spec.get("scope", CrdScope.NAMESPACED.value)
    try:
        scope = CrdScope(scope_value)
    except ValueError as e:
        raise MalformedSchemaError(
            crd_name=name,
            reason=f"spec.scope must be Namespaced or Cluster, got {scope_value!r}",
        ) from e

    names = _parse_names(name, spec.get("names"))

    versions_raw = spec.get("versions")
    if not isinstance(versions_raw, list) or not versions_raw:
        raise MalformedSchemaError(crd_name=name, reason="spec.versions must list at least one version")

    # apiextensions v1beta1 kept one schema for all versions under spec.validation
    validation_raw = spec.get("validation") or {}
    if not isinstance(validation_raw, dict):
        raise MalformedSchemaError(crd_name=name, reason="spec.validation must be a mapping")
    shared_validation = validation_raw.get("openAPIV3Schema")

    versions: list[CrdVersionSchema] = []
    seen: set[str] = set()
    for index, version_raw in enumerate(versions_raw):
        version = _parse_version(name, index, version_raw, shared_validation)
        if version.name in seen:
            raise MalformedSchemaError(
                crd_name=name,
                reason=f"duplicate version name {version.name!r}",
            )
        seen.add(version.name)
        versions.append(version)

    status = raw.get("status") or {}
    stored = status.get("storedVersions") if isinstance(status, dict) else None

    return CrdSchema(
        name=name,
        group=group,
        scope=scope,
        names=names,
        versions=versions,
        stored_versions=[str(v) for v in stored] if isinstance(stored, list) else [],
    )


def _parse_names(crd_name: str, raw: Any) -> CrdNames:
    if not isinstance(raw, dict):
        raise MalformedSchemaError(crd_name=crd_name, reason="missing spec.names")
    kind = raw.get("kind")
    if not isinstance(kind, str) or not kind:
        raise MalformedSchemaError(crd_name=crd_name, reason="missing spec.names.kind")
    plural = raw.get("plural") or crd_name.split(".", 1)[0]
    return CrdNames(
        kind=kind,
        plural=plural,
        singular=raw.get("singular"),
        list_kind=raw.get("listKind"),
        short_names=[str(s) for s in raw.get("shortNames") or []],
        categories=[str(c) for c in raw.get("categories") or []],
    )


def _parse_version(
    crd_name: str,
    index: int,
    raw: Any,
    shared_validation: Any,
) -> CrdVersionSchema:
    if not isinstance(raw, dict):
        raise MalformedSchemaError(crd_name=crd_name, reason=f"spec.versions[{index}] must be a mapping")
    name = raw.get("name")
    if not isinstance(name, str) or not name:
        raise MalformedSchemaError(crd_name=crd_name, reason=f"spec.versions[{index}] has no name")

    path = f"spec.versions[{name}]"
    schema_block = raw.get("schema") or {}
    if not isinstance(schema_block, dict):
        raise MalformedSchemaError(crd_name=crd_name, reason=f"{path}.schema must be a mapping")
    schema_raw = schema_block.get("openAPIV3Schema", shared_validation)
    validation = None
    if schema_raw is not None:
        validation = _parse_property(crd_name, f"{path}.schema.openAPIV3Schema", schema_raw)

    columns = []
    for col_index, col in enumerate(raw.get("additionalPrinterColumns") or []):
        if not isinstance(col, dict) or not isinstance(col.get("name"), str):
            raise MalformedSchemaError(
                crd_name=crd_name,
                reason=f"{path}.additionalPrinterColumns[{col_index}] needs a name",
            )
        try:
            priority = int(col.get("priority", 0))
        except (TypeError, ValueError) as e:
            raise MalformedSchemaError(
                crd_name=crd_name,
                reason=f"{path}.additionalPrinterColumns[{col_index}].priority must be an integer",
            ) from e
        columns.append(
            PrinterColumn(
                name=col["name"],
                type=col.get("type", "string"),
                json_path=col.get("jsonPath", ""),
                description=col.get("description"),
                format=col.get("format"),
                priority=priority,
            )
        )

    subresources = raw.get("subresources") or {}
    if not isinstance(subresources, dict):
        raise MalformedSchemaError(crd_name=crd_name, reason=f"{path}.subresources must be a mapping")

    return CrdVersionSchema(
        name=name,
        served=bool(raw.get("served", True)),
        storage=bool(raw.get("storage", False)),
        deprecated=bool(raw.get("deprecated", False)),
        deprecation_warning=raw.get("deprecationWarning"),
        validation=validation,
        printer_columns=columns,
        subresources=sorted(subresources),
    )


def _parse_property(crd_name: str, path: str, raw: Any) -> SchemaProperty:
    """Recursively parse one validation node."""
    if not isinstance(raw, dict):
        raise MalformedSchemaError(crd_name=crd_name, reason=f"{path} must be a mapping")

    values: dict[str, Any] = {}
    for wire_key, attr in _SCALAR_KEYS.items():
        if wire_key not in raw:
            continue
        value = raw[wire_key]
        if wire_key in _STRING_KEYS and not isinstance(value, str):
            raise MalformedSchemaError(crd_name=crd_name, reason=f"{path}.{wire_key} must be a string")
        values[attr] = value

    if "default" in raw:
        values["default"] = raw["default"]
    if "enum" in raw:
        if not isinstance(raw["enum"], list):
            raise MalformedSchemaError(crd_name=crd_name, reason=f"{path}.enum must be a list")
        values["enum"] = list(raw["enum"])
    values["nullable"] = bool(raw.get("nullable", False))
    values["preserve_unknown_fields"] = bool(raw.get("x-kubernetes-preserve-unknown-fields", False))
    values["int_or_string"] = bool(raw.get("x-kubernetes-int-or-string", False))

    properties = raw.get("properties") or {}
    if not isinstance(properties, dict):
        raise MalformedSchemaError(crd_name=crd_name, reason=f"{path}.properties must be a mapping")
    values["properties"] = {
        str(key): _parse_property(crd_name, f"{path}.properties.{key}", child)
        for key, child in properties.items()
    }

    required = raw.get("required") or []
    if not isinstance(required, list) or not all(isinstance(r, str) for r in required):
        raise MalformedSchemaError(crd_name=crd_name, reason=f"{path}.required must be a list of names")
    values["required"] = list(required)

    if "items" in raw:
        values["items"] = _parse_property(crd_name, f"{path}.items", raw["items"])

    if "additionalProperties" in raw:
        extra = raw["additionalProperties"]
        if isinstance(extra, bool):
            values["additional_properties"] = extra
        else:
            values["additional_properties"] = _parse_property(
                crd_name, f"{path}.additionalProperties", extra
            )

    try:
        return SchemaProperty(**values)
    except ValidationError as e:
        raise MalformedSchemaError(crd_name=crd_name, reason=f"{path}: {e.errors()[0]['msg']}") from e


# =============================================================================
# Serialization
# =============================================================================


def to_document(schema: CrdSchema) -> dict[str, Any]:
    """Serialize a CrdSchema back to a CRD document."""
    names: dict[str, Any] = {"kind": schema.names.kind, "plural": schema.names.plural}
    if schema.names.singular:
        names["singular"] = schema.names.singular
    if schema.names.list_kind:
        names["listKind"] = schema.names.list_kind
    if schema.names.short_names:
        names["shortNames"] = list(schema.names.short_names)
    if schema.names.categories:
        names["categories"] = list(schema.names.categories)

    doc: dict[str, Any] = {
        "apiVersion": CRD_API_VERSION,
        "kind": "CustomResourceDefinition",
        "metadata": {"name": schema.name},
        "spec": {
            "group": schema.group,
            "scope": schema.scope.value,
            "names": names,
            "versions": [_version_document(v) for v in schema.versions],
        },
    }
    if schema.stored_versions:
        doc["status"] = {"storedVersions": list(schema.stored_versions)}
    return doc


def _version_document(version: CrdVersionSchema) -> dict[str, Any]:
    doc: dict[str, Any] = {
        "name": version.name,
        "served": version.served,
        "storage": version.storage,
    }
    if version.deprecated:
        doc["deprecated"] = True
    if version.deprecation_warning:
        doc["deprecationWarning"] = version.deprecation_warning
    if version.validation is not None:
        doc["schema"] = {"openAPIV3Schema": _property_document(version.validation)}
    if version.printer_columns:
        columns = []
        for col in version.printer_columns:
            entry: dict[str, Any] = {"name": col.name, "type": col.type, "jsonPath": col.json_path}
            if col.description:
                entry["description"] = col.description
            if col.format:
                entry["format"] = col.format
            if col.priority:
                entry["priority"] = col.priority
            columns.append(entry)
        doc["additionalPrinterColumns"] = columns
    if version.subresources:
        doc["subresources"] = {name: {} for name in version.subresources}
    return doc


def _property_document(prop: SchemaProperty) -> dict[str, Any]:
    doc: dict[str, Any] = {}
    for wire_key, attr in _SCALAR_KEYS.items():
        value = getattr(prop, attr)
        if value is not None:
            doc[wire_key] = value
    if prop.default is not None:
        doc["default"] = prop.default
    if prop.enum is not None:
        doc["enum"] = list(prop.enum)
    if prop.nullable:
        doc["nullable"] = True
    if prop.preserve_unknown_fields:
        doc["x-kubernetes-preserve-unknown-fields"] = True
    if prop.int_or_string:
        doc["x-kubernetes-int-or-string"] = True
    if prop.properties:
        doc["properties"] = {k: _property_document(v) for k, v in prop.properties.items()}
    if prop.required:
        doc["required"] = list(prop.required)
    if prop.items is not None:
        doc["items"] = _property_document(prop.items)
    if isinstance(prop.additional_properties, bool):
        doc["additionalProperties"] = prop.additional_properties
    elif prop.additional_properties is not None:
        doc["additionalProperties"] = _property_document(prop.additional_properties)
    return doc
