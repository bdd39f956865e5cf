"""Structural validation of policy suites before a run."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Mapping

from .policies.builtin import policy_exists
from .providers import CloudProvider, find_provider
from .suite import PolicySuite


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)


def validate_policy_suite(suite: PolicySuite, providers: Mapping[str, CloudProvider]) -> ValidationResult:
    """Check *suite* against the known *providers*, collecting every violation.

    Policy bodies are not compiled here; compile failures are reported per
    policy during the run.
    """

    errors: List[str] = []
    if not suite.policies:
        errors.append("Policy suite must contain at least one policy element.")

    base_directory = suite.base_directory
    known = ", ".join(sorted(providers)) or "none"
    for index, element in enumerate(suite.policies, start=1):
        label = f"Element {index} ({element.display_name})" if element.name else f"Element {index}"

        provider = find_provider(providers, element.type) if element.type else None
        if not element.type:
            errors.append(f"{label}: provider type is missing.")
        elif provider is None:
            errors.append(f"{label}: unknown provider type '{element.type}'. Known providers: {known}")

        if not element.regions:
            errors.append(f"{label}: at least one region is required.")
        elif provider is not None:
            for region in element.regions:
                if not provider.is_valid_region(region):
                    errors.append(f"{label}: '{region}' is not a valid {provider.name} region.")

        if not element.policies:
            errors.append(f"{label}: at least one policy file is required.")
        for reference in element.policies:
            if not policy_exists(reference, base_directory):
                errors.append(f"{label}: policy file '{reference}' does not exist or is not readable.")

    return ValidationResult(is_valid=not errors, errors=errors)


__all__ = ["ValidationResult", "validate_policy_suite"]
