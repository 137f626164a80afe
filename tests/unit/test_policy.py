"""
Unit tests for CRD policy resolution and ownership.

Tests cover:
- Policy precedence (annotation, helm keep, override, pack default)
- Invalid policy annotations
- Ownership conflict rules
- The in-memory ownership store
"""

from typing import Callable

import pytest

from crdwise.errors import InvalidPolicyError, OwnershipConflictError
from crdwise.pack import CrdSettings
from crdwise.policy import (
    HELM_RESOURCE_POLICY,
    POLICY_ANNOTATION,
    InMemoryOwnershipStore,
    OwnershipRecord,
    check_ownership,
    resolve_policy,
)
from crdwise.schema import CrdIdentity, CrdPolicy, Manifest


WIDGET = CrdIdentity(group="example.com", kind="Widget")


def _crd(make_crd: Callable[..., dict], annotations: dict[str, str] | None = None) -> Manifest:
    return Manifest.from_document(make_crd(annotations=annotations), source="crds/widgets.yaml")


def _record(release: str, policy: CrdPolicy = CrdPolicy.MANAGED) -> OwnershipRecord:
    return OwnershipRecord(identity=WIDGET, crd_name="widgets.example.com", release=release, policy=policy)


class TestResolvePolicy:
    """Tests for resolve_policy precedence."""

    def test_system_default_is_managed(self, make_crd: Callable[..., dict]) -> None:
        assert resolve_policy(_crd(make_crd)) == CrdPolicy.MANAGED

    def test_pack_default(self, make_crd: Callable[..., dict]) -> None:
        settings = CrdSettings(policy=CrdPolicy.SHARED)
        assert resolve_policy(_crd(make_crd), settings) == CrdPolicy.SHARED

    def test_override_beats_pack_default(self, make_crd: Callable[..., dict]) -> None:
        settings = CrdSettings.model_validate({
            "policy": "shared",
            "overrides": {"widgets.example.com": {"policy": "external"}},
        })
        assert resolve_policy(_crd(make_crd), settings) == CrdPolicy.EXTERNAL

    def test_helm_keep_is_shared(self, make_crd: Callable[..., dict]) -> None:
        manifest = _crd(make_crd, {HELM_RESOURCE_POLICY: "keep"})
        settings = CrdSettings(policy=CrdPolicy.MANAGED)
        assert resolve_policy(manifest, settings) == CrdPolicy.SHARED

    def test_annotation_wins(self, make_crd: Callable[..., dict]) -> None:
        manifest = _crd(make_crd, {POLICY_ANNOTATION: "External", HELM_RESOURCE_POLICY: "keep"})
        settings = CrdSettings(policy=CrdPolicy.SHARED)
        assert resolve_policy(manifest, settings) == CrdPolicy.EXTERNAL

    def test_invalid_annotation(self, make_crd: Callable[..., dict]) -> None:
        with pytest.raises(InvalidPolicyError) as exc_info:
            resolve_policy(_crd(make_crd, {POLICY_ANNOTATION: "owned"}))
        assert exc_info.value.crd_name == "widgets.example.com"
        assert exc_info.value.value == "owned"
        assert exc_info.value.source == "crds/widgets.yaml"


class TestCheckOwnership:
    """Tests for check_ownership."""

    def test_unowned_passes(self) -> None:
        check_ownership(WIDGET, "b", None, CrdPolicy.MANAGED)

    def test_same_release_passes(self) -> None:
        check_ownership(WIDGET, "a", _record("a"), CrdPolicy.MANAGED)

    def test_second_managed_release_conflicts(self) -> None:
        with pytest.raises(OwnershipConflictError) as exc_info:
            check_ownership(WIDGET, "b", _record("a"), CrdPolicy.MANAGED)
        assert exc_info.value.owner == "a"
        assert exc_info.value.current == "b"
        assert exc_info.value.crd_name == "widgets.example.com"

    def test_shared_on_managed_conflicts(self) -> None:
        with pytest.raises(OwnershipConflictError):
            check_ownership(WIDGET, "b", _record("a"), CrdPolicy.SHARED)

    @pytest.mark.parametrize("owner_policy", list(CrdPolicy))
    def test_external_always_passes(self, owner_policy: CrdPolicy) -> None:
        check_ownership(WIDGET, "b", _record("a", owner_policy), CrdPolicy.EXTERNAL)

    def test_shared_owner_allows_others(self) -> None:
        check_ownership(WIDGET, "b", _record("a", CrdPolicy.SHARED), CrdPolicy.MANAGED)

    def test_same_name_other_namespace_conflicts(self) -> None:
        owner = _record("a").model_copy(update={"release_namespace": "team-a"})
        check_ownership(WIDGET, "a", owner, CrdPolicy.MANAGED, namespace="team-a")
        with pytest.raises(OwnershipConflictError) as exc_info:
            check_ownership(WIDGET, "a", owner, CrdPolicy.MANAGED, namespace="team-b")
        assert exc_info.value.owner == "team-a/a"
        assert exc_info.value.current == "team-b/a"


class TestInMemoryOwnershipStore:
    """Tests for InMemoryOwnershipStore."""

    def test_set_get_clear(self) -> None:
        store = InMemoryOwnershipStore()
        assert store.get_owner(WIDGET) is None
        store.set_owner(_record("a"))
        assert store.get_owner(WIDGET).release == "a"
        assert store.clear_owner(WIDGET) is True
        assert store.clear_owner(WIDGET) is False
        assert store.get_owner(WIDGET) is None

    def test_one_record_per_identity(self) -> None:
        store = InMemoryOwnershipStore([_record("a")])
        store.set_owner(_record("b", CrdPolicy.SHARED))
        owners = store.list_owners()
        assert len(owners) == 1
        assert owners[0].release == "b"

    def test_list_by_release(self) -> None:
        gadget = OwnershipRecord(
            identity=CrdIdentity(group="example.com", kind="Gadget"),
            crd_name="gadgets.example.com",
            release="b",
            policy=CrdPolicy.MANAGED,
        )
        store = InMemoryOwnershipStore([_record("a"), gadget])
        assert [r.crd_name for r in store.list_owners()] == ["gadgets.example.com", "widgets.example.com"]
        assert [r.crd_name for r in store.list_owners("a")] == ["widgets.example.com"]
