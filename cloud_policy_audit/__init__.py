"""Policy-as-code auditing of cloud resource inventories."""

from __future__ import annotations

from .core import exit_code_for, summarize_results
from .policies import CompilationUnit, CompiledPolicy, PolicyCompiler, ResourcePolicyExecution
from .providers import CloudProvider, create_providers
from .results import FailedResource, PolicyError, PolicySuiteRunResult, RunOutcome
from .runner import PolicySuiteRunner, run_policy_suite
from .suite import PolicyElement, PolicySuite, load_policy_suite
from .validation import ValidationResult, validate_policy_suite

__all__ = [
    "CloudProvider",
    "CompilationUnit",
    "CompiledPolicy",
    "FailedResource",
    "PolicyCompiler",
    "PolicyElement",
    "PolicyError",
    "PolicySuite",
    "PolicySuiteRunResult",
    "PolicySuiteRunner",
    "ResourcePolicyExecution",
    "RunOutcome",
    "ValidationResult",
    "create_providers",
    "exit_code_for",
    "load_policy_suite",
    "run_policy_suite",
    "summarize_results",
    "validate_policy_suite",
]
