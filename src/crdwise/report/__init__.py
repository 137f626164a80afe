"""
Reporting module for crdwise.

Output formats:
    - Console: Rich tables for plans, CRD diffs, lint, results and owners
    - JSON: Structured output for programmatic consumption

Example:
    from crdwise.report import print_result, result_to_dict, to_json

    print_result(result)
    print(to_json(result_to_dict(result)))
"""

from crdwise.report.console import print_changes, print_lint, print_owners, print_plan, print_result
from crdwise.report.json import (
    changes_to_dict,
    lint_to_dict,
    owners_to_dict,
    plan_to_dict,
    result_to_dict,
    to_json,
)

__all__ = [
    "changes_to_dict",
    "lint_to_dict",
    "owners_to_dict",
    "plan_to_dict",
    "print_changes",
    "print_lint",
    "print_owners",
    "print_plan",
    "print_result",
    "result_to_dict",
    "to_json",
]
