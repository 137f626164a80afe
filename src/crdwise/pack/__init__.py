"""
Pack system for crdwise.

Key Components:
    - PackManifest / CrdSettings: pack.yaml models
    - PackLoader / Pack: Load and render a pack directory and its dependencies
    - detect_crds / lint_crds: CRD discovery across dependencies and layout lint
"""

from crdwise.pack.manifest import CrdOverride, CrdSettings, PackManifest
from crdwise.pack.loader import CrdDocument, Pack, PackLoader, load_pack
from crdwise.pack.detection import LintCode, LintIssue, LintSeverity, contains_template_syntax, detect_crds, lint_crds

__all__ = [
    "CrdDocument",
    "CrdOverride",
    "CrdSettings",
    "LintCode",
    "LintIssue",
    "LintSeverity",
    "Pack",
    "PackLoader",
    "PackManifest",
    "contains_template_syntax",
    "detect_crds",
    "lint_crds",
    "load_pack",
]
