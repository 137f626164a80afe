"""
CRD handling for crdwise.

Key Components:
    - CrdSchema and friends: Structural model of a CRD
    - parse / to_document: Wire form <-> model
    - analyze: Severity-classified schema diff
    - UpdateStrategy: safe / force / skip decisions over a change list
"""

from crdwise.crd.analyzer import (
    ChangeKind,
    ChangeSeverity,
    CrdChange,
    analyze,
    count_by_severity,
    max_severity,
)
from crdwise.crd.model import (
    CrdNames,
    CrdSchema,
    CrdScope,
    CrdVersionSchema,
    PrinterColumn,
    SchemaProperty,
)
from crdwise.crd.parser import parse, to_document
from crdwise.crd.strategy import Decision, DecisionAction, UpdateStrategy

__all__ = [
    "ChangeKind",
    "ChangeSeverity",
    "CrdChange",
    "CrdNames",
    "CrdSchema",
    "CrdScope",
    "CrdVersionSchema",
    "Decision",
    "DecisionAction",
    "PrinterColumn",
    "SchemaProperty",
    "UpdateStrategy",
    "analyze",
    "count_by_severity",
    "max_severity",
    "parse",
    "to_document",
]
