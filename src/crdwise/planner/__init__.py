"""
Planner module for crdwise.

Builds deterministic, tiered installation plans from a pack tree.
"""

from crdwise.planner.graph import DependencyGraph
from crdwise.planner.plan import InstallationPlan, PlanAction, PlanStep, plan, plan_uninstall

__all__ = [
    "DependencyGraph",
    "InstallationPlan",
    "PlanAction",
    "PlanStep",
    "plan",
    "plan_uninstall",
]
