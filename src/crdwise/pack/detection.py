"""
CRD detection and lint for packs.

CRDs can live in two places inside a pack: the crds/ directory (static,
rendered only when the file contains template syntax) and templates/
(rendered like every other manifest). Both are installed the same way; the
lint below flags layouts that are legal but likely to surprise.
"""

import dataclasses
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

from crdwise.schema import CrdLocation, CrdPolicy, LocationKind

if TYPE_CHECKING:
    from crdwise.pack.loader import CrdDocument, Pack


TEMPLATE_MARKERS = ("{{", "{%", "{#")


def contains_template_syntax(content: str) -> bool:
    """Whether text contains Jinja2 expression, statement or comment markers."""
    return any(marker in content for marker in TEMPLATE_MARKERS)


def has_control_flow(content: str) -> bool:
    return "{%" in content


class LintSeverity(str, Enum):
    """Severity of a lint finding."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class LintCode(str, Enum):
    """Lint finding codes."""

    CRD_IN_TEMPLATES = "crd-in-templates"
    TEMPLATED_CRD_IN_CRDS_DIR = "templated-crd-in-crds-dir"
    NON_CRD_IN_CRDS_DIR = "non-crd-in-crds-dir"
    NO_POLICY_ANNOTATION = "no-policy-annotation"
    SHARED_CRD_IN_TEMPLATES = "shared-crd-in-templates"
    EXTERNAL_POLICY_IN_PACK = "external-policy-in-pack"

    @property
    def severity(self) -> LintSeverity:
        return {
            LintCode.CRD_IN_TEMPLATES: LintSeverity.INFO,
            LintCode.TEMPLATED_CRD_IN_CRDS_DIR: LintSeverity.INFO,
            LintCode.NON_CRD_IN_CRDS_DIR: LintSeverity.ERROR,
            LintCode.NO_POLICY_ANNOTATION: LintSeverity.INFO,
            LintCode.SHARED_CRD_IN_TEMPLATES: LintSeverity.WARNING,
            LintCode.EXTERNAL_POLICY_IN_PACK: LintSeverity.WARNING,
        }[self]


class LintIssue(BaseModel):
    """One lint finding."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    code: LintCode
    pack: str
    path: str
    message: str
    crd_name: str | None = None
    suggestion: str | None = None

    @property
    def severity(self) -> LintSeverity:
        return self.code.severity


def detect_crds(pack: "Pack") -> list["CrdDocument"]:
    """
    Every CRD shipped by a pack and its dependencies.

    CRDs found in a dependency keep their own location wrapped in a
    DEPENDENCY location naming the pack that ships them.
    """
    found = []
    for current in pack.walk():
        for doc in current.crds:
            if current.name == pack.name:
                found.append(doc)
            else:
                found.append(dataclasses.replace(
                    doc,
                    location=CrdLocation.from_dependency(current.name, doc.location),
                ))
    return found


def lint_crds(pack: "Pack") -> list[LintIssue]:
    """
    Lint the CRD layout of a pack and its dependencies.

    Returns:
        Findings in pack walk order, then file order
    """
    # Imported here to avoid a circular import (policy depends on pack.manifest)
    from crdwise.policy.ownership import POLICY_ANNOTATION, resolve_policy

    issues: list[LintIssue] = []
    for current in pack.walk():
        for doc in current.crds:
            location = doc.location
            policy = resolve_policy(doc.manifest, current.settings)

            if location.kind == LocationKind.TEMPLATE:
                issues.append(LintIssue(
                    code=LintCode.CRD_IN_TEMPLATES,
                    pack=current.name,
                    path=location.describe(),
                    crd_name=doc.name,
                    message="CRD detected in templates/ directory",
                    suggestion="Consider moving it to crds/; it is ordered and protected the same way",
                ))
                if policy == CrdPolicy.SHARED:
                    issues.append(LintIssue(
                        code=LintCode.SHARED_CRD_IN_TEMPLATES,
                        pack=current.name,
                        path=location.describe(),
                        crd_name=doc.name,
                        message="Shared CRD in templates/ may cause confusion",
                        suggestion="Keep shared CRDs in crds/, or use the external policy if another tool manages it",
                    ))
            elif location.templated:
                if has_control_flow(doc.raw_text):
                    suggestion = "File uses control flow; make sure conditionals cannot drop a required CRD"
                else:
                    suggestion = "File uses templating and is rendered before installation"
                issues.append(LintIssue(
                    code=LintCode.TEMPLATED_CRD_IN_CRDS_DIR,
                    pack=current.name,
                    path=location.describe(),
                    crd_name=doc.name,
                    message="Templated CRD in crds/ directory",
                    suggestion=suggestion,
                ))

            if policy == CrdPolicy.EXTERNAL:
                issues.append(LintIssue(
                    code=LintCode.EXTERNAL_POLICY_IN_PACK,
                    pack=current.name,
                    path=location.describe(),
                    crd_name=doc.name,
                    message="CRD has the external policy but is shipped in the pack",
                    suggestion="Remove it from the pack, or use the managed or shared policy",
                ))
            elif POLICY_ANNOTATION not in doc.manifest.annotations:
                issues.append(LintIssue(
                    code=LintCode.NO_POLICY_ANNOTATION,
                    pack=current.name,
                    path=location.describe(),
                    crd_name=doc.name,
                    message=f"No {POLICY_ANNOTATION} annotation; using {policy.value}",
                ))

        for manifest in current.resources:
            if manifest.source.startswith("crds/"):
                issues.append(LintIssue(
                    code=LintCode.NON_CRD_IN_CRDS_DIR,
                    pack=current.name,
                    path=manifest.source,
                    message=f"{manifest.kind} {manifest.name} found in crds/ directory",
                    suggestion="Move non-CRD manifests to templates/",
                ))
    return issues
