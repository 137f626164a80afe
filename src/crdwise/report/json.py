"""
JSON reports for crdwise.

Structured output for programmatic consumption (--json on every command).

Design Principles:
    - Complete data: Every step, change and impact is included
    - Consistent schema: Same structure across operations
    - Human-readable keys: Use descriptive snake_case names
    - ISO timestamps: Standard datetime format
"""

import json
from datetime import UTC, datetime
from typing import Any

from crdwise.crd.analyzer import CrdChange, count_by_severity, max_severity
from crdwise.crd.strategy import Decision
from crdwise.engine import OperationResult
from crdwise.pack.detection import LintIssue
from crdwise.planner.plan import InstallationPlan
from crdwise.policy.ownership import OwnershipRecord

REPORT_VERSION = "1.0"


def to_json(data: Any, indent: int = 2) -> str:
    """Serialize a report dict."""
    return json.dumps(data, indent=indent, default=_json_serializer)


def plan_to_dict(plan: InstallationPlan) -> dict[str, Any]:
    """Serialize a plan."""
    return {
        "report_version": REPORT_VERSION,
        "operation": plan.operation.value,
        "release": plan.release,
        "namespace": plan.namespace,
        "root_pack": plan.root_pack,
        "tiers": len(plan.tiers),
        "steps": [
            {
                "index": step.index,
                "tier": step.tier,
                "action": step.action.value,
                "target": step.target,
                "pack": step.pack,
                "crd_name": step.crd_name,
                "identity": step.identity.key if step.identity else None,
                "policy": step.policy.value if step.policy else None,
                "location": step.location.describe() if step.location else None,
                "category": step.category.value if step.category else None,
                "strategy": step.strategy.value if step.strategy else None,
                "wait_timeout_seconds": step.wait_timeout_seconds,
                "skip_wait": step.skip_wait,
                "crd_known": step.crd_known,
            }
            for step in plan.steps
        ],
    }


def changes_to_dict(
    crd_name: str,
    changes: list[CrdChange],
    decision: Decision | None = None,
) -> dict[str, Any]:
    """Serialize the schema changes of one CRD."""
    counts = count_by_severity(changes)
    data: dict[str, Any] = {
        "crd_name": crd_name,
        "max_severity": max_severity(changes).value,
        "counts": {severity.value: count for severity, count in counts.items()},
        "changes": [change.to_dict() for change in changes],
    }
    if decision is not None:
        data["decision"] = {"action": decision.action.value, "reason": decision.reason}
    return data


def lint_to_dict(issues: list[LintIssue]) -> dict[str, Any]:
    """Serialize lint findings."""
    return {
        "report_version": REPORT_VERSION,
        "issues": [
            {
                "code": issue.code.value,
                "severity": issue.severity.value,
                "pack": issue.pack,
                "path": issue.path,
                "crd_name": issue.crd_name,
                "message": issue.message,
                "suggestion": issue.suggestion,
            }
            for issue in issues
        ],
    }


def result_to_dict(result: OperationResult) -> dict[str, Any]:
    """Serialize an operation result."""
    return {
        "report_version": REPORT_VERSION,
        "generated_at": datetime.now(UTC).isoformat(),
        "operation_id": result.operation_id,
        "operation": result.plan.operation.value,
        "release": result.plan.release,
        "root_pack": result.plan.root_pack,
        "status": result.status.value,
        "success": result.success,
        "error": result.error.to_dict() if result.error else None,
        "statistics": {
            "total_steps": len(result.steps),
            "completed_steps": result.completed_steps,
            "failed_steps": result.failed_steps,
            "pending_steps": result.pending_steps,
            "duration_ms": result.duration_ms,
        },
        "steps": [
            {
                "index": step_result.index,
                "tier": step_result.step.tier,
                "action": step_result.action.value,
                "target": step_result.target,
                "status": step_result.status.value,
                "error": step_result.error.to_dict() if step_result.error else None,
                "started_at": step_result.started_at,
                "ended_at": step_result.ended_at,
                "duration_ms": step_result.duration_ms,
                **step_result.detail(),
            }
            for step_result in result.steps
        ],
    }


def owners_to_dict(records: list[OwnershipRecord]) -> dict[str, Any]:
    """Serialize ownership records."""
    return {
        "report_version": REPORT_VERSION,
        "owners": [
            {
                "crd_name": record.crd_name,
                "identity": record.identity.key,
                "release": record.release,
                "release_namespace": record.release_namespace,
                "policy": record.policy.value,
                "digest": record.digest,
                "updated_at": record.updated_at,
            }
            for record in records
        ],
    }


def _json_serializer(obj: Any) -> Any:
    """Custom JSON serializer for non-standard types."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
