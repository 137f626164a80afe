"""
Installation planner.

Turns a loaded pack tree into an ordered, tiered list of steps. Planning is
pure: the same pack and graph always produce the same plan, so two plans can
be diffed line by line with describe().

Tier layout, for each dependency level (leaves first):
    1. CRD tier: ApplyCrd steps, then WaitCrd steps for the same CRDs
       (and for external CRDs the level's packs rely on)
    2. Resource tier: ApplyResource steps by category rank, source, name

Custom resources whose CRD is applied at a later level move to that
level's resource tier, so no custom resource is applied before its CRD is
Established.
"""

from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath

from pydantic import BaseModel, ConfigDict

from crdwise.categorizer import categorize
from crdwise.crd.parser import parse
from crdwise.crd.strategy import UpdateStrategy
from crdwise.errors import DuplicateCrdError, UnknownDependencyError
from crdwise.pack.detection import detect_crds
from crdwise.pack.loader import CrdDocument, Pack
from crdwise.planner.graph import DependencyGraph
from crdwise.policy.ownership import DEFAULT_NAMESPACE, resolve_policy
from crdwise.schema import (
    CrdIdentity,
    CrdLocation,
    CrdPolicy,
    EngineConfig,
    Manifest,
    OperationKind,
    ResourceCategory,
)


class PlanAction(str, Enum):
    """Kind of plan step."""

    APPLY_CRD = "apply_crd"
    WAIT_CRD = "wait_crd"
    APPLY_RESOURCE = "apply_resource"
    DELETE_CRD = "delete_crd"

    @property
    def is_crd(self) -> bool:
        return self != PlanAction.APPLY_RESOURCE


class PlanStep(BaseModel):
    """
    One step of an installation plan.

    Attributes:
        index: Position in the plan
        action: What the step does
        tier: Barrier group; tiers run strictly in order
        pack: Pack that contributed the step
        manifest: Document to apply (None for waits on external CRDs)
        crd_name: CRD name for CRD steps, and for custom resources the CRD
            that defines them (when it is known or the only external CRD
            of the group)
        identity: CRD group + kind (None for external CRDs known only by name)
        policy: Resolved CRD policy
        location: Where the CRD was found in the pack tree
        category: Resource category for ApplyResource steps
        strategy: Update strategy for ApplyCrd steps
        wait_timeout_seconds: Readiness timeout for WaitCrd steps
        skip_wait: WaitCrd resolves immediately
        crd_known: False for custom resources whose CRD is neither in the
            plan nor declared external
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    index: int
    action: PlanAction
    tier: int
    pack: str
    manifest: Manifest | None = None
    crd_name: str | None = None
    identity: CrdIdentity | None = None
    policy: CrdPolicy | None = None
    location: CrdLocation | None = None
    category: ResourceCategory | None = None
    strategy: UpdateStrategy | None = None
    wait_timeout_seconds: float | None = None
    skip_wait: bool = False
    crd_known: bool = True

    @property
    def target(self) -> str:
        """What the step acts on: a CRD name or a resource reference."""
        if self.action.is_crd:
            return self.crd_name or ""
        return self.manifest.ref if self.manifest else ""

    def describe(self) -> str:
        """One stable line describing the step."""
        parts = [f"{self.index:03d}", f"tier={self.tier}", self.action.value, self.target, f"pack={self.pack}"]
        if self.policy is not None:
            parts.append(f"policy={self.policy.value}")
        if self.location is not None:
            parts.append(f"from={self.location.describe()}")
        if self.strategy is not None:
            parts.append(f"strategy={self.strategy.value}")
        if self.action == PlanAction.WAIT_CRD:
            parts.append("skip-wait" if self.skip_wait else f"timeout={self.wait_timeout_seconds:g}s")
        if self.category is not None:
            parts.append(f"category={self.category.value}")
        if self.action == PlanAction.APPLY_RESOURCE and self.crd_name:
            parts.append(f"crd={self.crd_name}")
        if not self.crd_known:
            parts.append("crd=unknown")
        return " ".join(parts)


class InstallationPlan(BaseModel):
    """
    Ordered steps for one install, upgrade or uninstall.

    Attributes:
        operation: install, upgrade or uninstall
        release: Release name
        namespace: Release namespace; with the name it identifies CRD owners
        root_pack: Pack the operation was planned for
        steps: Steps in execution order
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    operation: OperationKind
    release: str
    namespace: str = DEFAULT_NAMESPACE
    root_pack: str
    steps: tuple[PlanStep, ...] = ()

    @property
    def tiers(self) -> list[int]:
        return sorted({step.tier for step in self.steps})

    def steps_in_tier(self, tier: int) -> list[PlanStep]:
        return [step for step in self.steps if step.tier == tier]

    def steps_for(self, action: PlanAction) -> list[PlanStep]:
        return [step for step in self.steps if step.action == action]

    def describe(self) -> str:
        """Stable text form of the plan, one line per step."""
        lines = [f"{self.operation.value} {self.root_pack} release={self.release} steps={len(self.steps)}"]
        lines.extend(step.describe() for step in self.steps)
        return "\n".join(lines)


# =============================================================================
# Planning
# =============================================================================


@dataclass
class _CrdEntry:
    """A CRD to be placed in the plan."""

    pack: str
    level: int
    name: str
    identity: CrdIdentity | None
    policy: CrdPolicy
    document: CrdDocument | None = None

    @property
    def sort_key(self) -> tuple:
        if self.document is None:
            # External CRDs known only by name sort after shipped ones
            return (2, "", self.name, self.pack)
        location = self.document.location
        return (location.rank, PurePosixPath(location.origin.path).name, self.name, self.pack)


def _crd_entries(pack: Pack, level_of: dict[str, int]) -> list[_CrdEntry]:
    """
    Collect every CRD of the pack tree with its level and policy.

    Raises:
        MalformedSchemaError: If a CRD cannot be parsed
        InvalidPolicyError: If a CRD has an unknown policy annotation
        DuplicateCrdError: If two shipped CRDs share a name
    """
    packs = {p.name: p for p in pack.walk()}
    entries: list[_CrdEntry] = []
    shipped: dict[str, list[str]] = defaultdict(list)

    for doc in detect_crds(pack):
        settings = packs[doc.pack].settings
        schema = parse(doc.manifest.body)
        policy = resolve_policy(doc.manifest, settings)
        entries.append(_CrdEntry(
            pack=doc.pack,
            level=level_of[doc.pack],
            name=schema.name,
            identity=CrdIdentity(group=schema.group, kind=schema.kind),
            policy=policy,
            document=doc,
        ))
        if policy != CrdPolicy.EXTERNAL:
            shipped[schema.name].append(doc.pack)

    for name, owners in sorted(shipped.items()):
        if len(owners) > 1:
            raise DuplicateCrdError(crd_name=name, packs=sorted(owners))

    known = {entry.name for entry in entries}
    externals: dict[str, _CrdEntry] = {}
    for current in packs.values():
        for name in current.settings.external:
            if name in known:
                continue
            entry = _CrdEntry(
                pack=current.name,
                level=level_of[current.name],
                name=name,
                identity=None,
                policy=CrdPolicy.EXTERNAL,
            )
            previous = externals.get(name)
            if previous is None or (entry.level, entry.pack) < (previous.level, previous.pack):
                externals[name] = entry
    entries.extend(externals.values())
    return entries


def _levels(pack: Pack, graph: DependencyGraph | None) -> tuple[DependencyGraph, dict[str, int], int]:
    graph = graph or DependencyGraph.from_pack(pack)
    levels = graph.levels()
    level_of = {name: i for i, names in enumerate(levels) for name in names}
    for current in pack.walk():
        if current.name not in level_of:
            raise UnknownDependencyError(pack=pack.name, dependency=current.name)
    return graph, level_of, len(levels)


def _number(tiers: list[list[dict]]) -> tuple[PlanStep, ...]:
    """Assign consecutive tier numbers (dropping empty tiers) and indexes."""
    steps: list[PlanStep] = []
    tier_number = 0
    for tier in tiers:
        if not tier:
            continue
        for fields in tier:
            steps.append(PlanStep(index=len(steps), tier=tier_number, **fields))
        tier_number += 1
    return tuple(steps)


def plan(
    pack: Pack,
    graph: DependencyGraph | None = None,
    release: str = "release",
    operation: OperationKind = OperationKind.INSTALL,
    config: EngineConfig | None = None,
    strategy: UpdateStrategy | None = None,
    namespace: str = DEFAULT_NAMESPACE,
) -> InstallationPlan:
    """
    Plan an install or upgrade of a pack and its dependencies.

    Args:
        pack: Loaded root pack
        graph: Dependency graph (built from the pack when omitted)
        release: Release name
        operation: install or upgrade
        config: Engine defaults for strategy and wait timeout
        strategy: Strategy that overrides pack settings (from CLI flags)
        namespace: Release namespace

    Raises:
        DependencyCycleError, UnknownDependencyError, DuplicateCrdError,
        MalformedSchemaError, InvalidPolicyError
    """
    config = config or EngineConfig()
    _, level_of, level_count = _levels(pack, graph)
    packs = {p.name: p for p in pack.walk()}
    entries = _crd_entries(pack, level_of)

    crd_by_key = {e.identity.key: e for e in entries if e.identity is not None}
    # External CRDs known only by name match custom resources by group
    external_by_group: dict[str, list[_CrdEntry]] = {}
    for entry in sorted(entries, key=lambda e: e.name):
        if entry.identity is None:
            external_by_group.setdefault(entry.name.split(".", 1)[1], []).append(entry)

    crd_tiers: list[list[dict]] = [[] for _ in range(level_count)]
    resource_tiers: list[list[tuple]] = [[] for _ in range(level_count)]

    for level in range(level_count):
        at_level = sorted((e for e in entries if e.level == level), key=lambda e: e.sort_key)
        for entry in at_level:
            if entry.policy == CrdPolicy.EXTERNAL:
                continue
            settings = packs[entry.pack].settings
            crd_tiers[level].append({
                "action": PlanAction.APPLY_CRD,
                "pack": entry.pack,
                "manifest": entry.document.manifest,
                "crd_name": entry.name,
                "identity": entry.identity,
                "policy": entry.policy,
                "location": entry.document.location,
                "strategy": strategy or settings.strategy_for(entry.name) or config.strategy,
            })
        for entry in at_level:
            settings = packs[entry.pack].settings
            crd_tiers[level].append({
                "action": PlanAction.WAIT_CRD,
                "pack": entry.pack,
                "manifest": entry.document.manifest if entry.document else None,
                "crd_name": entry.name,
                "identity": entry.identity,
                "policy": entry.policy,
                "location": entry.document.location if entry.document else None,
                "wait_timeout_seconds": settings.wait_timeout_for(entry.name) or config.wait_timeout_seconds,
                "skip_wait": settings.skip_wait_for(entry.name),
            })

    for current in packs.values():
        for manifest in current.resources:
            category = categorize(manifest)
            level = level_of[current.name]
            fields = {
                "action": PlanAction.APPLY_RESOURCE,
                "pack": current.name,
                "manifest": manifest,
                "category": category,
            }
            if category == ResourceCategory.CUSTOM_RESOURCE:
                entry = crd_by_key.get(f"{manifest.kind}.{manifest.group}")
                candidates = [entry] if entry is not None else external_by_group.get(manifest.group, [])
                if not candidates:
                    fields["crd_known"] = False
                else:
                    # Several externals in one group: wait for all of them
                    if len(candidates) == 1:
                        fields["crd_name"] = candidates[0].name
                    level = max(level, *(c.level for c in candidates))
            key = (
                category.rank,
                manifest.source,
                manifest.name,
                manifest.kind,
                manifest.namespace or "",
                current.name,
            )
            resource_tiers[level].append((key, fields))

    tiers: list[list[dict]] = []
    for level in range(level_count):
        tiers.append(crd_tiers[level])
        tiers.append([fields for _, fields in sorted(resource_tiers[level], key=lambda item: item[0])])

    return InstallationPlan(
        operation=operation,
        release=release,
        namespace=namespace,
        root_pack=pack.name,
        steps=_number(tiers),
    )


def plan_uninstall(
    pack: Pack,
    graph: DependencyGraph | None = None,
    release: str = "release",
    namespace: str = DEFAULT_NAMESPACE,
) -> InstallationPlan:
    """
    Plan CRD deletion for an uninstall.

    Only managed CRDs are deleted. Dependents go first: levels run in
    reverse, and CRDs within a level in reverse install order.
    """
    _, level_of, level_count = _levels(pack, graph)
    entries = _crd_entries(pack, level_of)

    tiers: list[list[dict]] = []
    for level in reversed(range(level_count)):
        at_level = sorted(
            (e for e in entries if e.level == level and e.policy == CrdPolicy.MANAGED),
            key=lambda e: e.sort_key,
            reverse=True,
        )
        tiers.append([
            {
                "action": PlanAction.DELETE_CRD,
                "pack": entry.pack,
                "manifest": entry.document.manifest,
                "crd_name": entry.name,
                "identity": entry.identity,
                "policy": entry.policy,
                "location": entry.document.location,
            }
            for entry in at_level
        ])

    return InstallationPlan(
        operation=OperationKind.UNINSTALL,
        release=release,
        namespace=namespace,
        root_pack=pack.name,
        steps=_number(tiers),
    )
