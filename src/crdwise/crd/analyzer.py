"""
CRD change analyzer.

Structurally diffs two CrdSchema models and classifies every difference by
severity:

    SAFE       existing objects stay valid and clients keep working
    WARNING    previously valid objects may be rejected on their next write
    DANGEROUS  existing objects or clients break (data may become unreadable)

The validation tree is walked by one recursive function over an explicit key
path, so every change carries the exact location it was found at. Child
fields are visited in sorted order, which makes the output deterministic and
independent of the key order in the source documents.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from crdwise.crd.model import CrdSchema, CrdVersionSchema, SchemaProperty


class ChangeSeverity(str, Enum):
    """Risk class of a change. Members are declared from least to most severe."""

    SAFE = "safe"
    WARNING = "warning"
    DANGEROUS = "dangerous"

    @property
    def rank(self) -> int:
        return list(ChangeSeverity).index(self)

    @property
    def icon(self) -> str:
        return {"safe": "✓", "warning": "⚠", "dangerous": "✗"}[self.value]


class ChangeKind(str, Enum):
    """Closed set of change kinds the analyzer can report."""

    # Safe
    ADD_OPTIONAL_FIELD = "add_optional_field"
    ADD_VERSION = "add_version"
    ADD_PRINTER_COLUMN = "add_printer_column"
    ADD_SHORT_NAME = "add_short_name"
    ADD_CATEGORY = "add_category"
    ADD_SUBRESOURCE = "add_subresource"
    RELAX_VALIDATION = "relax_validation"
    UPDATE_DESCRIPTION = "update_description"
    ADD_DEFAULT = "add_default"

    # Warning
    REMOVE_OPTIONAL_FIELD = "remove_optional_field"
    REMOVE_PRINTER_COLUMN = "remove_printer_column"
    VALIDATION_CHANGE = "validation_change"
    CHANGE_DEFAULT = "change_default"
    DEPRECATE_VERSION = "deprecate_version"
    UNSERVE_VERSION = "unserve_version"

    # Dangerous
    REMOVE_VERSION = "remove_version"
    REMOVE_REQUIRED_FIELD = "remove_required_field"
    ADD_REQUIRED_FIELD = "add_required_field"
    MAKE_REQUIRED = "make_required"
    FIELD_TYPE_CHANGE = "field_type_change"
    SCOPE_CHANGE = "scope_change"
    REMOVE_SUBRESOURCE = "remove_subresource"
    GROUP_CHANGE = "group_change"
    KIND_NAME_CHANGE = "kind_name_change"
    STORAGE_VERSION_CHANGE = "storage_version_change"

    @property
    def severity(self) -> ChangeSeverity:
        return _SEVERITIES[self]


_SEVERITIES: dict[ChangeKind, ChangeSeverity] = {
    ChangeKind.ADD_OPTIONAL_FIELD: ChangeSeverity.SAFE,
    ChangeKind.ADD_VERSION: ChangeSeverity.SAFE,
    ChangeKind.ADD_PRINTER_COLUMN: ChangeSeverity.SAFE,
    ChangeKind.ADD_SHORT_NAME: ChangeSeverity.SAFE,
    ChangeKind.ADD_CATEGORY: ChangeSeverity.SAFE,
    ChangeKind.ADD_SUBRESOURCE: ChangeSeverity.SAFE,
    ChangeKind.RELAX_VALIDATION: ChangeSeverity.SAFE,
    ChangeKind.UPDATE_DESCRIPTION: ChangeSeverity.SAFE,
    ChangeKind.ADD_DEFAULT: ChangeSeverity.SAFE,
    ChangeKind.REMOVE_OPTIONAL_FIELD: ChangeSeverity.WARNING,
    ChangeKind.REMOVE_PRINTER_COLUMN: ChangeSeverity.WARNING,
    ChangeKind.VALIDATION_CHANGE: ChangeSeverity.WARNING,
    ChangeKind.CHANGE_DEFAULT: ChangeSeverity.WARNING,
    ChangeKind.DEPRECATE_VERSION: ChangeSeverity.WARNING,
    ChangeKind.UNSERVE_VERSION: ChangeSeverity.WARNING,
    ChangeKind.REMOVE_VERSION: ChangeSeverity.DANGEROUS,
    ChangeKind.REMOVE_REQUIRED_FIELD: ChangeSeverity.DANGEROUS,
    ChangeKind.ADD_REQUIRED_FIELD: ChangeSeverity.DANGEROUS,
    ChangeKind.MAKE_REQUIRED: ChangeSeverity.DANGEROUS,
    ChangeKind.FIELD_TYPE_CHANGE: ChangeSeverity.DANGEROUS,
    ChangeKind.SCOPE_CHANGE: ChangeSeverity.DANGEROUS,
    ChangeKind.REMOVE_SUBRESOURCE: ChangeSeverity.DANGEROUS,
    ChangeKind.GROUP_CHANGE: ChangeSeverity.DANGEROUS,
    ChangeKind.KIND_NAME_CHANGE: ChangeSeverity.DANGEROUS,
    ChangeKind.STORAGE_VERSION_CHANGE: ChangeSeverity.DANGEROUS,
}


class CrdChange(BaseModel):
    """
    One detected difference between two CRDs.

    Attributes:
        kind: What changed
        description: Human-readable explanation
        path: Location in the CRD as a key path
            (e.g., ("spec", "versions[v1]", "schema", "openAPIV3Schema", ...))
        old_value: Previous value, when there is a meaningful one
        new_value: New value, when there is a meaningful one
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: ChangeKind
    description: str
    path: tuple[str, ...] = Field(default_factory=tuple)
    old_value: Any = None
    new_value: Any = None

    @property
    def severity(self) -> ChangeSeverity:
        return self.kind.severity

    @property
    def dotted_path(self) -> str:
        return ".".join(self.path)

    @property
    def prefix(self) -> str:
        """Diff-style marker: + for additions, - for removals, ~ otherwise."""
        if self.old_value is None and self.new_value is not None:
            return "+"
        if self.old_value is not None and self.new_value is None:
            return "-"
        return "~"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "severity": self.severity.value,
            "description": self.description,
            "path": self.dotted_path,
            "old_value": self.old_value,
            "new_value": self.new_value,
        }


def max_severity(changes: list[CrdChange]) -> ChangeSeverity:
    """Highest severity in a change list (SAFE when the list is empty)."""
    if not changes:
        return ChangeSeverity.SAFE
    return max((c.severity for c in changes), key=lambda s: s.rank)


def count_by_severity(changes: list[CrdChange]) -> dict[ChangeSeverity, int]:
    counts = {severity: 0 for severity in ChangeSeverity}
    for change in changes:
        counts[change.severity] += 1
    return counts


# =============================================================================
# Analysis
# =============================================================================


def analyze(old: CrdSchema, new: CrdSchema) -> list[CrdChange]:
    """
    Diff two CRDs.

    Args:
        old: The CRD currently on the cluster
        new: The CRD about to be applied

    Returns:
        Every detected change, in a deterministic order. Empty when the two
        CRDs are structurally identical.
    """
    changes: list[CrdChange] = []

    if old.scope != new.scope:
        changes.append(CrdChange(
            kind=ChangeKind.SCOPE_CHANGE,
            description=f"Scope changed from {old.scope.value} to {new.scope.value}",
            path=("spec", "scope"),
            old_value=old.scope.value,
            new_value=new.scope.value,
        ))

    if old.group != new.group:
        changes.append(CrdChange(
            kind=ChangeKind.GROUP_CHANGE,
            description=f"API group changed from '{old.group}' to '{new.group}'",
            path=("spec", "group"),
            old_value=old.group,
            new_value=new.group,
        ))

    if old.kind != new.kind:
        changes.append(CrdChange(
            kind=ChangeKind.KIND_NAME_CHANGE,
            description=f"Kind changed from '{old.kind}' to '{new.kind}'",
            path=("spec", "names", "kind"),
            old_value=old.kind,
            new_value=new.kind,
        ))

    for short_name in sorted(set(new.names.short_names) - set(old.names.short_names)):
        changes.append(CrdChange(
            kind=ChangeKind.ADD_SHORT_NAME,
            description=f"Short name '{short_name}' added",
            path=("spec", "names", "shortNames"),
            new_value=short_name,
        ))

    for category in sorted(set(new.names.categories) - set(old.names.categories)):
        changes.append(CrdChange(
            kind=ChangeKind.ADD_CATEGORY,
            description=f"Category '{category}' added",
            path=("spec", "names", "categories"),
            new_value=category,
        ))

    _diff_versions(old, new, changes)
    return changes


def _diff_versions(old: CrdSchema, new: CrdSchema, changes: list[CrdChange]) -> None:
    old_names = set(old.version_names)
    new_names = set(new.version_names)

    for version in old.versions:
        if version.name in new_names:
            continue
        stored = " (still listed in status.storedVersions)" if version.name in old.stored_versions else ""
        changes.append(CrdChange(
            kind=ChangeKind.REMOVE_VERSION,
            description=f"API version '{version.name}' removed{stored}",
            path=("spec", f"versions[{version.name}]"),
            old_value=version.name,
        ))

    for version in new.versions:
        if version.name not in old_names:
            changes.append(CrdChange(
                kind=ChangeKind.ADD_VERSION,
                description=f"API version '{version.name}' added",
                path=("spec", f"versions[{version.name}]"),
                new_value=version.name,
            ))

    for version in new.versions:
        previous = old.version(version.name)
        if previous is not None:
            _diff_version(previous, version, changes)

    old_storage = old.storage_version
    new_storage = new.storage_version
    if old_storage != new_storage:
        changes.append(CrdChange(
            kind=ChangeKind.STORAGE_VERSION_CHANGE,
            description=(
                f"Storage version changed from '{old_storage or 'none'}' "
                f"to '{new_storage or 'none'}'"
            ),
            path=("spec", "versions[].storage"),
            old_value=old_storage,
            new_value=new_storage,
        ))


def _diff_version(old: CrdVersionSchema, new: CrdVersionSchema, changes: list[CrdChange]) -> None:
    prefix = ("spec", f"versions[{new.name}]")

    if new.deprecated and not old.deprecated:
        warning = f": {new.deprecation_warning}" if new.deprecation_warning else ""
        changes.append(CrdChange(
            kind=ChangeKind.DEPRECATE_VERSION,
            description=f"API version '{new.name}' deprecated{warning}",
            path=prefix + ("deprecated",),
            old_value=False,
            new_value=True,
        ))

    if old.served and not new.served:
        changes.append(CrdChange(
            kind=ChangeKind.UNSERVE_VERSION,
            description=f"API version '{new.name}' is no longer served",
            path=prefix + ("served",),
            old_value=True,
            new_value=False,
        ))

    schema_path = prefix + ("schema", "openAPIV3Schema")
    if old.validation is not None and new.validation is not None:
        _diff_property(old.validation, new.validation, schema_path, changes)
    elif old.validation is None and new.validation is not None:
        changes.append(CrdChange(
            kind=ChangeKind.VALIDATION_CHANGE,
            description=f"Validation schema added to version '{new.name}'",
            path=schema_path,
            new_value="schema",
        ))
    elif old.validation is not None and new.validation is None:
        changes.append(CrdChange(
            kind=ChangeKind.RELAX_VALIDATION,
            description=f"Validation schema removed from version '{new.name}'",
            path=schema_path,
            old_value="schema",
        ))

    old_columns = {c.name for c in old.printer_columns}
    new_columns = {c.name for c in new.printer_columns}
    for column in new.printer_columns:
        if column.name not in old_columns:
            changes.append(CrdChange(
                kind=ChangeKind.ADD_PRINTER_COLUMN,
                description=f"Printer column '{column.name}' added",
                path=prefix + ("additionalPrinterColumns",),
                new_value=column.name,
            ))
    for column in old.printer_columns:
        if column.name not in new_columns:
            changes.append(CrdChange(
                kind=ChangeKind.REMOVE_PRINTER_COLUMN,
                description=f"Printer column '{column.name}' removed",
                path=prefix + ("additionalPrinterColumns",),
                old_value=column.name,
            ))

    for name in sorted(set(new.subresources) - set(old.subresources)):
        changes.append(CrdChange(
            kind=ChangeKind.ADD_SUBRESOURCE,
            description=f"Subresource '{name}' enabled",
            path=prefix + ("subresources", name),
            new_value=name,
        ))
    for name in sorted(set(old.subresources) - set(new.subresources)):
        changes.append(CrdChange(
            kind=ChangeKind.REMOVE_SUBRESOURCE,
            description=f"Subresource '{name}' removed",
            path=prefix + ("subresources", name),
            old_value=name,
        ))


def _diff_property(
    old: SchemaProperty,
    new: SchemaProperty,
    path: tuple[str, ...],
    changes: list[CrdChange],
) -> None:
    """Diff one validation node and recurse into its children."""
    label = _field_label(path)

    if old.type != new.type:
        if old.type == "integer" and new.type == "number":
            changes.append(CrdChange(
                kind=ChangeKind.RELAX_VALIDATION,
                description=f"Field '{label}' widened from integer to number",
                path=path + ("type",),
                old_value=old.type,
                new_value=new.type,
            ))
        else:
            changes.append(CrdChange(
                kind=ChangeKind.FIELD_TYPE_CHANGE,
                description=f"Field '{label}' type changed from {old.type} to {new.type}",
                path=path + ("type",),
                old_value=old.type,
                new_value=new.type,
            ))
            # Children of a retyped field are not comparable
            return

    if old.int_or_string != new.int_or_string:
        if new.int_or_string:
            changes.append(CrdChange(
                kind=ChangeKind.RELAX_VALIDATION,
                description=f"Field '{label}' now accepts integers or strings",
                path=path + ("x-kubernetes-int-or-string",),
                old_value=False,
                new_value=True,
            ))
        else:
            changes.append(CrdChange(
                kind=ChangeKind.FIELD_TYPE_CHANGE,
                description=f"Field '{label}' no longer accepts both integers and strings",
                path=path + ("x-kubernetes-int-or-string",),
                old_value=True,
                new_value=False,
            ))
            return

    if old.description != new.description:
        changes.append(CrdChange(
            kind=ChangeKind.UPDATE_DESCRIPTION,
            description=f"Field '{label}' description updated",
            path=path + ("description",),
        ))

    if old.default != new.default:
        if old.default is None:
            changes.append(CrdChange(
                kind=ChangeKind.ADD_DEFAULT,
                description=f"Field '{label}' default added: {new.default!r}",
                path=path + ("default",),
                new_value=new.default,
            ))
        else:
            changes.append(CrdChange(
                kind=ChangeKind.CHANGE_DEFAULT,
                description=f"Field '{label}' default changed from {old.default!r} to {new.default!r}",
                path=path + ("default",),
                old_value=old.default,
                new_value=new.default,
            ))

    _diff_constraints(old, new, path, label, changes)
    _diff_children(old, new, path, changes)


# Lower bounds tighten when raised; upper bounds tighten when lowered.
_LOWER_BOUNDS = (
    ("minimum", "minimum"),
    ("min_length", "minLength"),
    ("min_items", "minItems"),
    ("min_properties", "minProperties"),
)
_UPPER_BOUNDS = (
    ("maximum", "maximum"),
    ("max_length", "maxLength"),
    ("max_items", "maxItems"),
    ("max_properties", "maxProperties"),
)


def _diff_constraints(
    old: SchemaProperty,
    new: SchemaProperty,
    path: tuple[str, ...],
    label: str,
    changes: list[CrdChange],
) -> None:
    for attr, wire_key in _LOWER_BOUNDS + _UPPER_BOUNDS:
        before = getattr(old, attr)
        after = getattr(new, attr)
        if before == after:
            continue
        is_lower = (attr, wire_key) in _LOWER_BOUNDS
        if before is None:
            tightened = True
            text = f"{wire_key} constraint added ({after})"
        elif after is None:
            tightened = False
            text = f"{wire_key} constraint removed (was {before})"
        else:
            tightened = after > before if is_lower else after < before
            text = f"{wire_key} changed ({before} -> {after})"
        _add_constraint_change(changes, tightened, f"Field '{label}' {text}", path + (wire_key,), before, after)

    for attr in ("pattern", "format"):
        before = getattr(old, attr)
        after = getattr(new, attr)
        if before == after:
            continue
        if after is None:
            _add_constraint_change(
                changes, False, f"Field '{label}' {attr} constraint removed", path + (attr,), before, after
            )
        else:
            verb = "added" if before is None else "changed"
            _add_constraint_change(
                changes, True, f"Field '{label}' {attr} {verb}: {after}", path + (attr,), before, after
            )

    if old.enum != new.enum:
        _diff_enum(old.enum, new.enum, path, label, changes)

    if old.nullable != new.nullable:
        _add_constraint_change(
            changes,
            not new.nullable,
            f"Field '{label}' {'no longer' if old.nullable else 'now'} accepts null",
            path + ("nullable",),
            old.nullable,
            new.nullable,
        )

    if old.preserve_unknown_fields != new.preserve_unknown_fields:
        _add_constraint_change(
            changes,
            not new.preserve_unknown_fields,
            f"Field '{label}' {'no longer' if old.preserve_unknown_fields else 'now'} preserves unknown fields",
            path + ("x-kubernetes-preserve-unknown-fields",),
            old.preserve_unknown_fields,
            new.preserve_unknown_fields,
        )


def _diff_enum(
    before: list[Any] | None,
    after: list[Any] | None,
    path: tuple[str, ...],
    label: str,
    changes: list[CrdChange],
) -> None:
    enum_path = path + ("enum",)
    if before is None:
        _add_constraint_change(
            changes, True, f"Field '{label}' enum constraint added ({len(after)} values)", enum_path, None, after
        )
        return
    if after is None:
        _add_constraint_change(changes, False, f"Field '{label}' enum constraint removed", enum_path, before, None)
        return

    removed = [v for v in before if v not in after]
    added = [v for v in after if v not in before]
    for value in removed:
        _add_constraint_change(changes, True, f"Field '{label}' enum value {value!r} removed", enum_path, value, None)
    if added:
        values = ", ".join(repr(v) for v in added)
        _add_constraint_change(changes, False, f"Field '{label}' enum values added: {values}", enum_path, None, added)


def _add_constraint_change(
    changes: list[CrdChange],
    tightened: bool,
    description: str,
    path: tuple[str, ...],
    old_value: Any,
    new_value: Any,
) -> None:
    changes.append(CrdChange(
        kind=ChangeKind.VALIDATION_CHANGE if tightened else ChangeKind.RELAX_VALIDATION,
        description=description,
        path=path,
        old_value=old_value,
        new_value=new_value,
    ))


def _diff_children(
    old: SchemaProperty,
    new: SchemaProperty,
    path: tuple[str, ...],
    changes: list[CrdChange],
) -> None:
    old_required = set(old.required)
    new_required = set(new.required)

    for name in sorted(set(old.properties) | set(new.properties)):
        child_path = path + ("properties", name)
        child_label = _field_label(child_path)

        if name not in old.properties:
            prop = new.properties[name]
            if name in new_required:
                changes.append(CrdChange(
                    kind=ChangeKind.ADD_REQUIRED_FIELD,
                    description=f"Required field '{child_label}' added ({prop.type or 'any'})",
                    path=child_path,
                    new_value=prop.type,
                ))
            else:
                changes.append(CrdChange(
                    kind=ChangeKind.ADD_OPTIONAL_FIELD,
                    description=f"Optional field '{child_label}' added ({prop.type or 'any'})",
                    path=child_path,
                    new_value=prop.type,
                ))
            continue

        if name not in new.properties:
            prop = old.properties[name]
            if name in old_required:
                changes.append(CrdChange(
                    kind=ChangeKind.REMOVE_REQUIRED_FIELD,
                    description=f"Required field '{child_label}' removed",
                    path=child_path,
                    old_value=prop.type,
                ))
            else:
                changes.append(CrdChange(
                    kind=ChangeKind.REMOVE_OPTIONAL_FIELD,
                    description=f"Optional field '{child_label}' removed",
                    path=child_path,
                    old_value=prop.type,
                ))
            continue

        _diff_property(old.properties[name], new.properties[name], child_path, changes)

        if name in new_required and name not in old_required:
            changes.append(CrdChange(
                kind=ChangeKind.MAKE_REQUIRED,
                description=f"Field '{child_label}' is now required",
                path=child_path,
                old_value="optional",
                new_value="required",
            ))
        elif name in old_required and name not in new_required:
            changes.append(CrdChange(
                kind=ChangeKind.RELAX_VALIDATION,
                description=f"Field '{child_label}' is no longer required",
                path=child_path,
                old_value="required",
                new_value="optional",
            ))

    items_path = path + ("items",)
    if old.items is not None and new.items is not None:
        _diff_property(old.items, new.items, items_path, changes)
    elif old.items is None and new.items is not None:
        _add_constraint_change(
            changes, True, f"Items schema added to '{_field_label(path)}'", items_path, None, new.items.type
        )
    elif old.items is not None and new.items is None:
        _add_constraint_change(
            changes, False, f"Items schema removed from '{_field_label(path)}'", items_path, old.items.type, None
        )

    before = old.additional_properties
    after = new.additional_properties
    extra_path = path + ("additionalProperties",)
    if isinstance(before, SchemaProperty) and isinstance(after, SchemaProperty):
        _diff_property(before, after, extra_path, changes)
    elif before != after:
        tightened = after is False
        if before is False or tightened:
            _add_constraint_change(
                changes,
                tightened,
                f"Field '{_field_label(path)}' {'rejects' if tightened else 'accepts'} additional properties",
                extra_path,
                _describe_extra(before),
                _describe_extra(after),
            )


def _describe_extra(value: bool | SchemaProperty | None) -> Any:
    if isinstance(value, SchemaProperty):
        return value.type or "schema"
    return value


def _field_label(path: tuple[str, ...]) -> str:
    """
    Human-readable field name for a schema path.

    ("spec", "versions[v1]", "schema", "openAPIV3Schema", "properties", "spec",
    "properties", "size") becomes "spec.size"; array items show as "[]".
    """
    try:
        start = path.index("openAPIV3Schema") + 1
    except ValueError:
        start = 0
    parts: list[str] = []
    segments = path[start:]
    index = 0
    while index < len(segments):
        segment = segments[index]
        if segment == "properties" and index + 1 < len(segments):
            parts.append(segments[index + 1])
            index += 2
            continue
        if segment == "items":
            if parts:
                parts[-1] = parts[-1] + "[]"
            else:
                parts.append("[]")
        elif segment == "additionalProperties":
            parts.append("*")
        index += 1
    return ".".join(parts) or "<root>"
