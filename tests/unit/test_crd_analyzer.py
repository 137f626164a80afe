"""
Unit tests for the CRD change analyzer.

Tests cover:
- Identical CRDs produce no changes
- Field additions, removals and requiredness
- Type changes and validation tightening/relaxing
- Version, storage version, scope and identity changes
- Printer columns and subresources
- Deterministic ordering and paths
"""

import copy
from typing import Any, Callable

import pytest

from crdwise.crd import ChangeKind, ChangeSeverity, CrdSchema, analyze, count_by_severity, max_severity, parse


def _parse_spec(make_crd: Callable[..., dict], spec_schema: dict[str, Any]) -> CrdSchema:
    return parse(make_crd(spec_schema=spec_schema))


def _kinds(changes: list) -> list[ChangeKind]:
    return [change.kind for change in changes]


class TestIdentical:
    """analyze(A, A) is always empty."""

    def test_same_document(self, widget_crd: dict[str, Any]) -> None:
        assert analyze(parse(widget_crd), parse(widget_crd)) == []

    def test_key_order_does_not_matter(self, make_crd: Callable[..., dict]) -> None:
        old = _parse_spec(make_crd, {"type": "object", "properties": {"a": {"type": "string"}, "b": {"type": "integer"}}})
        new = _parse_spec(make_crd, {"properties": {"b": {"type": "integer"}, "a": {"type": "string"}}, "type": "object"})
        assert analyze(old, new) == []

    def test_empty_change_list_is_safe(self) -> None:
        assert max_severity([]) == ChangeSeverity.SAFE


class TestFields:
    """Tests for field-level changes."""

    def test_add_optional_field_is_one_safe_change(self, make_crd: Callable[..., dict]) -> None:
        old = _parse_spec(make_crd, {"type": "object", "properties": {"size": {"type": "string"}}})
        new = _parse_spec(make_crd, {
            "type": "object",
            "properties": {"size": {"type": "string"}, "color": {"type": "string"}},
        })
        changes = analyze(old, new)
        assert len(changes) == 1
        assert changes[0].kind == ChangeKind.ADD_OPTIONAL_FIELD
        assert changes[0].severity == ChangeSeverity.SAFE
        assert changes[0].dotted_path == (
            "spec.versions[v1].schema.openAPIV3Schema.properties.spec.properties.color"
        )
        assert "spec.color" in changes[0].description

    def test_add_required_field(self, make_crd: Callable[..., dict]) -> None:
        old = _parse_spec(make_crd, {"type": "object", "properties": {}})
        new = _parse_spec(make_crd, {
            "type": "object",
            "required": ["size"],
            "properties": {"size": {"type": "string"}},
        })
        assert _kinds(analyze(old, new)) == [ChangeKind.ADD_REQUIRED_FIELD]

    def test_make_required(self, make_crd: Callable[..., dict]) -> None:
        old = _parse_spec(make_crd, {"type": "object", "properties": {"size": {"type": "string"}}})
        new = _parse_spec(make_crd, {
            "type": "object",
            "required": ["size"],
            "properties": {"size": {"type": "string"}},
        })
        changes = analyze(old, new)
        assert _kinds(changes) == [ChangeKind.MAKE_REQUIRED]
        assert changes[0].severity == ChangeSeverity.DANGEROUS

    def test_no_longer_required_relaxes(self, make_crd: Callable[..., dict]) -> None:
        old = _parse_spec(make_crd, {
            "type": "object",
            "required": ["size"],
            "properties": {"size": {"type": "string"}},
        })
        new = _parse_spec(make_crd, {"type": "object", "properties": {"size": {"type": "string"}}})
        assert _kinds(analyze(old, new)) == [ChangeKind.RELAX_VALIDATION]

    def test_remove_required_field_widget_scenario(
        self,
        make_crd: Callable[..., dict],
        widget_crd: dict[str, Any],
    ) -> None:
        """Dropping the required `size` field is one dangerous change."""
        new = _parse_spec(make_crd, {"type": "object", "properties": {"color": {"type": "string"}}})
        changes = analyze(parse(widget_crd), new)
        assert _kinds(changes) == [ChangeKind.REMOVE_REQUIRED_FIELD]
        assert changes[0].severity == ChangeSeverity.DANGEROUS
        assert changes[0].path[-2:] == ("properties", "size")
        assert changes[0].prefix == "-"

    def test_remove_optional_field(self, make_crd: Callable[..., dict], widget_crd: dict[str, Any]) -> None:
        new = _parse_spec(make_crd, {
            "type": "object",
            "required": ["size"],
            "properties": {"size": {"type": "string"}},
        })
        changes = analyze(parse(widget_crd), new)
        assert _kinds(changes) == [ChangeKind.REMOVE_OPTIONAL_FIELD]
        assert changes[0].severity == ChangeSeverity.WARNING

    def test_type_change(self, make_crd: Callable[..., dict]) -> None:
        old = _parse_spec(make_crd, {"type": "object", "properties": {"size": {"type": "string"}}})
        new = _parse_spec(make_crd, {"type": "object", "properties": {"size": {"type": "integer"}}})
        changes = analyze(old, new)
        assert _kinds(changes) == [ChangeKind.FIELD_TYPE_CHANGE]
        assert (changes[0].old_value, changes[0].new_value) == ("string", "integer")

    def test_type_change_does_not_report_children(self, make_crd: Callable[..., dict]) -> None:
        old = _parse_spec(make_crd, {
            "type": "object",
            "properties": {"opts": {"type": "object", "properties": {"a": {"type": "string"}}}},
        })
        new = _parse_spec(make_crd, {"type": "object", "properties": {"opts": {"type": "string"}}})
        assert _kinds(analyze(old, new)) == [ChangeKind.FIELD_TYPE_CHANGE]

    def test_integer_to_number_is_widening(self, make_crd: Callable[..., dict]) -> None:
        old = _parse_spec(make_crd, {"type": "object", "properties": {"n": {"type": "integer"}}})
        new = _parse_spec(make_crd, {"type": "object", "properties": {"n": {"type": "number"}}})
        changes = analyze(old, new)
        assert _kinds(changes) == [ChangeKind.RELAX_VALIDATION]
        assert changes[0].severity == ChangeSeverity.SAFE

    def test_nested_array_items(self, make_crd: Callable[..., dict]) -> None:
        old = _parse_spec(make_crd, {
            "type": "object",
            "properties": {"ports": {"type": "array", "items": {"type": "object", "properties": {}}}},
        })
        new = _parse_spec(make_crd, {
            "type": "object",
            "properties": {"ports": {"type": "array", "items": {
                "type": "object",
                "properties": {"port": {"type": "integer"}},
            }}},
        })
        changes = analyze(old, new)
        assert _kinds(changes) == [ChangeKind.ADD_OPTIONAL_FIELD]
        assert "spec.ports[].port" in changes[0].description


class TestValidation:
    """Tests for constraint tightening and relaxing."""

    @pytest.mark.parametrize(
        "before, after, expected",
        [
            ({"maxLength": 10}, {"maxLength": 5}, ChangeKind.VALIDATION_CHANGE),
            ({"maxLength": 5}, {"maxLength": 10}, ChangeKind.RELAX_VALIDATION),
            ({}, {"minLength": 1}, ChangeKind.VALIDATION_CHANGE),
            ({"minLength": 1}, {}, ChangeKind.RELAX_VALIDATION),
            ({}, {"pattern": "^[a-z]+$"}, ChangeKind.VALIDATION_CHANGE),
            ({"pattern": "^[a-z]+$"}, {}, ChangeKind.RELAX_VALIDATION),
            ({"enum": ["a", "b"]}, {"enum": ["a"]}, ChangeKind.VALIDATION_CHANGE),
            ({"enum": ["a"]}, {"enum": ["a", "b"]}, ChangeKind.RELAX_VALIDATION),
            ({"nullable": True}, {}, ChangeKind.VALIDATION_CHANGE),
            ({}, {"nullable": True}, ChangeKind.RELAX_VALIDATION),
            ({}, {"format": "date-time"}, ChangeKind.VALIDATION_CHANGE),
            ({}, {"default": "small"}, ChangeKind.ADD_DEFAULT),
            ({"default": "small"}, {"default": "large"}, ChangeKind.CHANGE_DEFAULT),
            ({"description": "old"}, {"description": "new"}, ChangeKind.UPDATE_DESCRIPTION),
        ],
    )
    def test_string_field_constraints(
        self,
        make_crd: Callable[..., dict],
        before: dict[str, Any],
        after: dict[str, Any],
        expected: ChangeKind,
    ) -> None:
        old = _parse_spec(make_crd, {"type": "object", "properties": {"size": {"type": "string", **before}}})
        new = _parse_spec(make_crd, {"type": "object", "properties": {"size": {"type": "string", **after}}})
        assert _kinds(analyze(old, new)) == [expected]

    def test_numeric_bounds(self, make_crd: Callable[..., dict]) -> None:
        old = _parse_spec(make_crd, {"type": "object", "properties": {"n": {"type": "integer", "minimum": 0, "maximum": 10}}})
        new = _parse_spec(make_crd, {"type": "object", "properties": {"n": {"type": "integer", "minimum": 1, "maximum": 20}}})
        assert _kinds(analyze(old, new)) == [ChangeKind.VALIDATION_CHANGE, ChangeKind.RELAX_VALIDATION]

    def test_additional_properties_false_tightens(self, make_crd: Callable[..., dict]) -> None:
        old = _parse_spec(make_crd, {"type": "object", "properties": {}})
        new = _parse_spec(make_crd, {"type": "object", "properties": {}, "additionalProperties": False})
        changes = analyze(old, new)
        assert _kinds(changes) == [ChangeKind.VALIDATION_CHANGE]
        assert changes[0].severity == ChangeSeverity.WARNING

    def test_preserve_unknown_fields_removed_tightens(self, make_crd: Callable[..., dict]) -> None:
        old = _parse_spec(make_crd, {"type": "object", "x-kubernetes-preserve-unknown-fields": True})
        new = _parse_spec(make_crd, {"type": "object"})
        assert _kinds(analyze(old, new)) == [ChangeKind.VALIDATION_CHANGE]


class TestVersions:
    """Tests for version-level changes."""

    def test_add_version(self, make_crd: Callable[..., dict]) -> None:
        old = parse(make_crd(versions=[{"name": "v1", "served": True, "storage": True}]))
        new = parse(make_crd(versions=[
            {"name": "v1", "served": True, "storage": True},
            {"name": "v2", "served": True, "storage": False},
        ]))
        changes = analyze(old, new)
        assert _kinds(changes) == [ChangeKind.ADD_VERSION]
        assert changes[0].new_value == "v2"

    def test_remove_version_is_dangerous(self, make_crd: Callable[..., dict]) -> None:
        old = parse(make_crd(versions=[
            {"name": "v1alpha1", "served": True, "storage": False},
            {"name": "v1", "served": True, "storage": True},
        ]))
        new = parse(make_crd(versions=[{"name": "v1", "served": True, "storage": True}]))
        changes = analyze(old, new)
        assert _kinds(changes) == [ChangeKind.REMOVE_VERSION]
        assert max_severity(changes) == ChangeSeverity.DANGEROUS

    def test_remove_stored_version_mentions_status(self, make_crd: Callable[..., dict]) -> None:
        doc = make_crd(versions=[
            {"name": "v1alpha1", "served": True, "storage": False},
            {"name": "v1", "served": True, "storage": True},
        ])
        doc["status"] = {"storedVersions": ["v1alpha1", "v1"]}
        new = parse(make_crd(versions=[{"name": "v1", "served": True, "storage": True}]))
        changes = analyze(parse(doc), new)
        assert "storedVersions" in changes[0].description

    def test_storage_version_move_with_same_versions(self, make_crd: Callable[..., dict]) -> None:
        old = parse(make_crd(versions=[
            {"name": "v1", "served": True, "storage": True},
            {"name": "v2", "served": True, "storage": False},
        ]))
        new = parse(make_crd(versions=[
            {"name": "v1", "served": True, "storage": False},
            {"name": "v2", "served": True, "storage": True},
        ]))
        changes = analyze(old, new)
        assert _kinds(changes) == [ChangeKind.STORAGE_VERSION_CHANGE]
        assert (changes[0].old_value, changes[0].new_value) == ("v1", "v2")
        assert changes[0].severity == ChangeSeverity.DANGEROUS

    def test_deprecate_and_unserve(self, make_crd: Callable[..., dict]) -> None:
        old = parse(make_crd(versions=[
            {"name": "v1alpha1", "served": True, "storage": False},
            {"name": "v1", "served": True, "storage": True},
        ]))
        new = parse(make_crd(versions=[
            {
                "name": "v1alpha1",
                "served": False,
                "storage": False,
                "deprecated": True,
                "deprecationWarning": "use v1",
            },
            {"name": "v1", "served": True, "storage": True},
        ]))
        changes = analyze(old, new)
        assert _kinds(changes) == [ChangeKind.DEPRECATE_VERSION, ChangeKind.UNSERVE_VERSION]
        assert "use v1" in changes[0].description
        assert all(c.severity == ChangeSeverity.WARNING for c in changes)

    def test_printer_columns_and_subresources(self, make_crd: Callable[..., dict]) -> None:
        old = parse(make_crd(versions=[{
            "name": "v1",
            "served": True,
            "storage": True,
            "additionalPrinterColumns": [{"name": "Size", "type": "string", "jsonPath": ".spec.size"}],
            "subresources": {"scale": {}},
        }]))
        new = parse(make_crd(versions=[{
            "name": "v1",
            "served": True,
            "storage": True,
            "additionalPrinterColumns": [{"name": "Color", "type": "string", "jsonPath": ".spec.color"}],
            "subresources": {"status": {}},
        }]))
        changes = analyze(old, new)
        assert _kinds(changes) == [
            ChangeKind.ADD_PRINTER_COLUMN,
            ChangeKind.REMOVE_PRINTER_COLUMN,
            ChangeKind.ADD_SUBRESOURCE,
            ChangeKind.REMOVE_SUBRESOURCE,
        ]
        counts = count_by_severity(changes)
        assert counts == {
            ChangeSeverity.SAFE: 2,
            ChangeSeverity.WARNING: 1,
            ChangeSeverity.DANGEROUS: 1,
        }


class TestIdentity:
    """Tests for scope and identity changes."""

    def test_scope_change_reported_once(self, make_crd: Callable[..., dict]) -> None:
        changes = analyze(parse(make_crd(scope="Namespaced")), parse(make_crd(scope="Cluster")))
        assert _kinds(changes) == [ChangeKind.SCOPE_CHANGE]

    def test_group_and_kind_change(self, make_crd: Callable[..., dict], widget_crd: dict[str, Any]) -> None:
        new = make_crd(kind="Gizmo")
        new["spec"]["group"] = "example.org"
        changes = analyze(parse(widget_crd), parse(new))
        assert _kinds(changes) == [ChangeKind.GROUP_CHANGE, ChangeKind.KIND_NAME_CHANGE]

    def test_short_names_added(self, make_crd: Callable[..., dict], widget_crd: dict[str, Any]) -> None:
        changes = analyze(parse(widget_crd), parse(make_crd(short_names=["wd", "wdg"])))
        assert _kinds(changes) == [ChangeKind.ADD_SHORT_NAME, ChangeKind.ADD_SHORT_NAME]
        assert [c.new_value for c in changes] == ["wd", "wdg"]


class TestDeterminism:
    """The analyzer output is stable."""

    def test_sorted_field_order(self, make_crd: Callable[..., dict]) -> None:
        old = _parse_spec(make_crd, {"type": "object", "properties": {}})
        new = _parse_spec(make_crd, {"type": "object", "properties": {
            "zeta": {"type": "string"},
            "alpha": {"type": "string"},
            "mid": {"type": "string"},
        }})
        assert [c.path[-1] for c in analyze(old, new)] == ["alpha", "mid", "zeta"]

    def test_repeated_runs_match(self, make_crd: Callable[..., dict], widget_crd: dict[str, Any]) -> None:
        new = copy.deepcopy(widget_crd)
        new["spec"]["versions"][0]["schema"]["openAPIV3Schema"]["properties"]["spec"] = {
            "type": "object",
            "properties": {"color": {"type": "integer"}, "shape": {"type": "string"}},
        }
        first = analyze(parse(widget_crd), parse(new))
        second = analyze(parse(widget_crd), parse(new))
        assert first == second
        assert [c.to_dict() for c in first] == [c.to_dict() for c in second]
