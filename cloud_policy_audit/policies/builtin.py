"""Built-in policies and suites, policy templates and reference resolution.

Suites refer to policies by file path.  References starting with
``builtin/`` (or ``builtin\\``) resolve to the definitions packaged here.
"""
from __future__ import annotations

from pathlib import Path
from types import MappingProxyType
from typing import List, Mapping, Optional

from ..suite import PolicyElement, PolicySuite
from .compilation import CompilationUnit

BUILTIN_PREFIX = "builtin/"


class PolicyNotFoundError(FileNotFoundError):
    """Raised when a policy or suite reference cannot be resolved."""


_POLICIES = {
    "aws-s3-bucket-protection.policy": """\
resource "AwsS3Bucket"

validate {
    # Buckets must be encrypted at rest and shielded from public access
    input.IsEncrypted == true
    input.IsPublicAccessBlocked == true
}
""",
    "aws-security-group-admin-ports.policy": """\
resource "AwsSecurityGroup"

validate {
    input.AllowsSshFromInternet == false && input.AllowsRdpFromInternet == false
}
""",
    "aws-ec2-instance-hardening.policy": """\
resource "AwsEc2Instance"

validate {
    input.MetadataHttpTokens == "required"
    input.HasIamInstanceProfile == true
}
""",
    "aws-route-table-named.policy": """\
resource "AwsRouteTable"

validate {
    input.Name != null
}
""",
}

BUILTIN_POLICIES: Mapping[str, str] = MappingProxyType(
    {BUILTIN_PREFIX + name: source for name, source in _POLICIES.items()}
)

_DEFAULT_AWS_REGIONS = ["us-east-1"]


def _aws_best_practices() -> PolicySuite:
    return PolicySuite(
        name="AWS Best Practices",
        description="Baseline checks for storage, network and compute resources",
        policies=[
            PolicyElement(
                name="AWS Best Practices",
                description="Built-in AWS policies",
                type="AWS",
                regions=list(_DEFAULT_AWS_REGIONS),
                policies=sorted(BUILTIN_POLICIES),
            )
        ],
    )


_SUITES = {
    BUILTIN_PREFIX + "aws-best-practices.suite": _aws_best_practices,
}


def policy_template(resource: str) -> str:
    """Source text written by ``init`` for a new policy file."""

    return (
        f'resource "{resource}"\n'
        "\n"
        "validate {\n"
        "    # Enter one or more statements like the following that should be validated\n"
        '    input.Property == "something"\n'
        "}\n"
    )


def suite_template() -> PolicySuite:
    """Suite written by ``init --suite``."""

    return PolicySuite(
        name="My Best Practices",
        description="Describe what the policy suite does",
        policies=[
            PolicyElement(
                name="AWS Best Practices",
                description="Describe this section",
                type="AWS",
                regions=["eu-west-1"],
                policies=["policies/MyPolicy.policy"],
            )
        ],
    )


def policy_from_statements(resource: str, statements: str) -> str:
    """Build policy source from ``&&``-separated statements, one per line."""

    lines = [part.strip() for part in statements.split("&&") if part.strip()]
    body = "\n".join(f"    {line}" for line in lines)
    return f'resource "{resource}"\nvalidate {{\n{body}\n}}\n'


def normalize_reference(reference: str) -> str:
    return reference.replace("\\", "/").strip()


def is_builtin_reference(reference: str) -> bool:
    return normalize_reference(reference).lower().startswith(BUILTIN_PREFIX)


def get_builtin_suite(reference: str) -> PolicySuite:
    """Return a fresh copy of the built-in suite named by *reference*."""

    key = normalize_reference(reference).lower()
    try:
        factory = _SUITES[key]
    except KeyError:
        raise PolicyNotFoundError(f"Built-in policy suite '{reference}' does not exist") from None
    return factory()


def builtin_suite_names() -> List[str]:
    return sorted(_SUITES)


def resolve_policy_path(reference: str, base_directory: Optional[Path] = None) -> Path:
    """Resolve a file reference relative to the suite's directory."""

    path = Path(reference).expanduser()
    if not path.is_absolute() and base_directory is not None:
        path = base_directory / path
    return path


def policy_exists(reference: str, base_directory: Optional[Path] = None) -> bool:
    """Return ``True`` when *reference* names a readable policy source."""

    if is_builtin_reference(reference):
        return normalize_reference(reference).lower() in BUILTIN_POLICIES
    path = resolve_policy_path(reference, base_directory)
    try:
        with path.open("rb"):
            return path.is_file()
    except OSError:
        return False


def load_compilation_unit(reference: str, base_directory: Optional[Path] = None) -> CompilationUnit:
    """Load the :class:`CompilationUnit` for a policy reference.

    Raises :class:`PolicyNotFoundError` for unknown built-ins and ``OSError``
    for unreadable files.
    """

    if is_builtin_reference(reference):
        key = normalize_reference(reference).lower()
        try:
            return CompilationUnit(name=key, source=BUILTIN_POLICIES[key])
        except KeyError:
            raise PolicyNotFoundError(f"Built-in policy '{reference}' does not exist") from None
    path = resolve_policy_path(reference, base_directory)
    unit = CompilationUnit.from_file(path)
    return CompilationUnit(name=reference, source=unit.source)


__all__ = [
    "BUILTIN_POLICIES",
    "BUILTIN_PREFIX",
    "PolicyNotFoundError",
    "builtin_suite_names",
    "get_builtin_suite",
    "is_builtin_reference",
    "load_compilation_unit",
    "normalize_reference",
    "policy_exists",
    "policy_from_statements",
    "policy_template",
    "resolve_policy_path",
    "suite_template",
]
