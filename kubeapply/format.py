"""Library for formatting summaries of apply and diff results."""

from tabulate import tabulate

from .apply_result import ApplyResult
from .resource_diff import DiffResult

__all__ = [
    "apply_results_table",
    "diff_results_table",
]

APPLY_HEADERS = [
    "Op",
    "Namespace",
    "Kind",
    "Name",
    "Created",
    "Old Version",
    "New Version",
]
DIFF_HEADERS = ["Operation", "Name", "Added", "Removed"]


def apply_results_table(results: list[ApplyResult]) -> str:
    """Return a table that summarizes the results of an apply."""
    if not results:
        return ""
    rows = [
        [
            result.operation,
            result.namespace,
            result.kind,
            result.name,
            result.created_timestamp,
            result.old_version,
            result.new_version,
        ]
        for result in results
    ]
    return tabulate(
        rows, headers=APPLY_HEADERS, tablefmt="plain", disable_numparse=True
    )


def diff_results_table(results: list[DiffResult]) -> str:
    """Return a table that summarizes the results of a structured diff."""
    if not results:
        return ""
    rows = [
        [
            result.operation.value,
            result.name,
            f"+{result.num_added}",
            f"-{result.num_removed}",
        ]
        for result in results
    ]
    return tabulate(
        rows, headers=DIFF_HEADERS, tablefmt="plain", disable_numparse=True
    )
