"""Reporting utilities for policy suite runs."""
from __future__ import annotations

import json
from typing import Iterable, Sequence

from .resources import Resource, ResourceDescriptor
from .results import FailedResource, PolicyError, PolicySuiteRunResult, RunOutcome


EXIT_OK = 0
EXIT_INVALID = 1
EXIT_ERRORS = 2
EXIT_FAILED_RESOURCES = 3


def _failed_sort_key(failed: FailedResource) -> tuple[str, str, str, str]:
    """Return a tuple used to order failed resources for display."""

    return (failed.policy, failed.region, failed.resource_type, failed.resource_id)


def summarize_results(results: Iterable[PolicySuiteRunResult]) -> RunOutcome:
    return RunOutcome.from_results(list(results))


def exit_code_for(outcome: RunOutcome) -> int:
    """Map a run outcome to the process exit code.

    Errors (compile, load, discovery) take precedence over failed resources so
    automation can tell "policy could not run" apart from "policy found
    violations".
    """

    if outcome.errors:
        return EXIT_ERRORS
    if outcome.failed_resources:
        return EXIT_FAILED_RESOURCES
    return EXIT_OK


def format_outcome_json(outcome: RunOutcome) -> str:
    return json.dumps(outcome.as_dict(), indent=2, default=str)


def print_errors(errors: Iterable[PolicyError]) -> None:
    for error in errors:
        print(f"[{error.kind}] {error.describe()}")


def print_failed_resources(failed_resources: Iterable[FailedResource]) -> None:
    """Pretty-print failed resources to stdout."""

    failed_resources = sorted(failed_resources, key=_failed_sort_key)
    if not failed_resources:
        print("No failed resources detected.")
        return

    header = f"{'Result':<7} {'Region':<15} {'Resource':<40} {'Policy':<30} Detail"
    print(header)
    print("-" * len(header))
    for failed in failed_resources:
        resource = f"{failed.resource_type}:{failed.resource_id}"
        resource = (resource[:37] + "...") if len(resource) > 40 else resource
        policy = (failed.policy[:27] + "...") if len(failed.policy) > 30 else failed.policy
        print(f"{failed.execution.value:<7} {failed.region:<15} {resource:<40} {policy:<30} {failed.detail}")


def print_outcome(outcome: RunOutcome) -> None:
    if outcome.errors:
        print(f"{len(outcome.errors)} policies could not run:")
        print_errors(outcome.errors)
        print()
    print_failed_resources(outcome.failed_resources)
    print(f"\nEvaluated {outcome.evaluated} resources; {len(outcome.failed_resources)} did not pass.")


def print_resources(resources: Sequence[Resource], limit: int = 0) -> None:
    """Print discovered resources as a table of formatted property values."""

    if not resources:
        print("No resources matched.")
        return
    if limit > 0:
        resources = resources[:limit]

    descriptor = resources[0].descriptor
    names = [prop.name for prop in descriptor.sorted_properties()]
    rows = [resource.display_row() for resource in resources]
    widths = {name: min(max([len(name)] + [len(row.get(name, "")) for row in rows]), 40) for name in names}

    print("  ".join(f"{name:<{widths[name]}}" for name in names))
    print("  ".join("-" * widths[name] for name in names))
    for row in rows:
        cells = []
        for name in names:
            value = row.get(name, "")
            if len(value) > widths[name]:
                value = value[: widths[name] - 3] + "..."
            cells.append(f"{value:<{widths[name]}}")
        print("  ".join(cells))


def print_descriptor(descriptor: ResourceDescriptor) -> None:
    """Print the property catalog of one resource kind."""

    print(f"Available properties for input '{descriptor.name}':")
    for prop in descriptor.sorted_properties():
        description = f" - {prop.description}" if prop.description else ""
        print(f"  - {prop.name} ({prop.type.value}){description}")


_EXCEL_HEADERS = ("Policy", "Element", "Region", "Resource Type", "Resource ID", "Result", "Detail")
_EXCEL_MAX_WIDTH = 60


def export_failed_resources_to_excel(failed_resources: Iterable[FailedResource], path: str) -> str:
    """Write *failed_resources* to a ``Failed Resources`` sheet at *path*.

    Rows follow the console table order; the header row stays frozen.
    """

    try:
        from openpyxl import Workbook
        from openpyxl.utils import get_column_letter
    except ImportError as exc:  # pragma: no cover - dependency missing during tests
        raise RuntimeError(
            "The 'openpyxl' package is required to export failed resources to Excel. "
            "Install it with 'pip install cloud-policy-audit[excel]'."
        ) from exc

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Failed Resources"
    sheet.append(list(_EXCEL_HEADERS))
    sheet.freeze_panes = "A2"

    widths = [len(header) for header in _EXCEL_HEADERS]
    for failed in sorted(failed_resources, key=_failed_sort_key):
        row = [
            failed.policy,
            failed.element,
            failed.region,
            failed.resource_type,
            failed.resource_id,
            failed.execution.value,
            failed.detail,
        ]
        sheet.append(row)
        widths = [max(width, len(str(value))) for width, value in zip(widths, row)]

    for column, width in enumerate(widths, start=1):
        sheet.column_dimensions[get_column_letter(column)].width = min(width + 2, _EXCEL_MAX_WIDTH)

    workbook.save(path)
    return path


__all__ = [
    "EXIT_ERRORS",
    "EXIT_FAILED_RESOURCES",
    "EXIT_INVALID",
    "EXIT_OK",
    "exit_code_for",
    "export_failed_resources_to_excel",
    "format_outcome_json",
    "print_descriptor",
    "print_errors",
    "print_failed_resources",
    "print_outcome",
    "print_resources",
    "summarize_results",
]
