"""Data models for policy suite run results."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from .policies.compilation import Diagnostic
from .policies.compiler import ResourcePolicyExecution

ErrorKind = Literal["compile", "discovery", "load"]


@dataclass
class FailedResource:
    """A resource that did not pass a policy."""

    policy: str
    resource_type: str
    resource_id: str
    region: str
    execution: ResourcePolicyExecution
    detail: str = ""
    element: str = ""

    def key(self) -> str:
        """Stable identifier used to de-duplicate (policy, resource) pairs."""

        return f"{self.policy}:{self.resource_type}:{self.region}:{self.resource_id}"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "policy": self.policy,
            "element": self.element,
            "region": self.region,
            "resourceType": self.resource_type,
            "resourceId": self.resource_id,
            "result": self.execution.value,
            "detail": self.detail,
        }


@dataclass
class PolicyError:
    """A policy that could not run: compile, load or discovery failure."""

    kind: ErrorKind
    policy: str
    message: str
    region: str = ""
    element: str = ""
    diagnostics: List[Diagnostic] = field(default_factory=list)

    def describe(self) -> str:
        location = f" [{self.element}/{self.region}]" if self.region else ""
        lines = [f"{self.policy}{location}: {self.message}"]
        lines.extend(f"  {diagnostic.format(self.policy)}" for diagnostic in self.diagnostics)
        return "\n".join(lines)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "policy": self.policy,
            "element": self.element,
            "region": self.region,
            "message": self.message,
            "diagnostics": [diagnostic.as_dict() for diagnostic in self.diagnostics],
        }


@dataclass
class PolicySuiteRunResult:
    """Outcome for one (policy element, region, policy file) combination."""

    element: str
    region: str
    policy: str
    error: Optional[PolicyError] = None
    failed_resources: List[FailedResource] = field(default_factory=list)
    evaluated: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failed_resources


@dataclass
class RunOutcome:
    """Flattened view of a run used for reporting and exit codes."""

    errors: List[PolicyError]
    failed_resources: List[FailedResource]
    evaluated: int = 0

    @classmethod
    def from_results(cls, results: List[PolicySuiteRunResult]) -> "RunOutcome":
        return cls(
            errors=[result.error for result in results if result.error is not None],
            failed_resources=[failed for result in results for failed in result.failed_resources],
            evaluated=sum(result.evaluated for result in results),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "errors": [error.as_dict() for error in self.errors],
            "failedResources": [failed.as_dict() for failed in self.failed_resources],
        }


__all__ = [
    "ErrorKind",
    "FailedResource",
    "PolicyError",
    "PolicySuiteRunResult",
    "ResourcePolicyExecution",
    "RunOutcome",
]
