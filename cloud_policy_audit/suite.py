"""Policy suite model and its JSON document form."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union


class PolicySuiteFormatError(ValueError):
    """Raised when a policy suite document is malformed."""


@dataclass
class PolicyElement:
    """One provider/region/policy-file grouping within a suite."""

    type: str
    regions: List[str]
    policies: List[str]
    name: str = ""
    description: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.type

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "regions": list(self.regions),
            "policies": list(self.policies),
        }


@dataclass
class PolicySuite:
    """Named collection of policy elements executed by a single run."""

    name: str
    description: str = ""
    policies: List[PolicyElement] = field(default_factory=list)
    source_path: Optional[Path] = field(default=None, compare=False, repr=False)

    @property
    def base_directory(self) -> Optional[Path]:
        """Directory relative policy references are resolved against."""

        return self.source_path.parent if self.source_path is not None else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "policies": [element.to_dict() for element in self.policies],
        }


def _string_list(value: Any, where: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str) or not isinstance(value, Sequence):
        raise PolicySuiteFormatError(f"{where} must be a list of strings")
    items = []
    for item in value:
        if not isinstance(item, str):
            raise PolicySuiteFormatError(f"{where} must be a list of strings")
        items.append(item)
    return items


def _optional_string(data: Mapping[str, Any], key: str, where: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise PolicySuiteFormatError(f"{where}.{key} must be a string")
    return value


def policy_suite_from_dict(data: Any, *, source_path: Optional[Path] = None) -> PolicySuite:
    """Build a :class:`PolicySuite` from a decoded document."""

    if not isinstance(data, Mapping):
        raise PolicySuiteFormatError("Policy suite document must be an object")

    elements_data = data.get("policies", [])
    if not isinstance(elements_data, list):
        raise PolicySuiteFormatError("'policies' must be a list of policy elements")

    elements: List[PolicyElement] = []
    for index, raw in enumerate(elements_data, start=1):
        where = f"policies[{index}]"
        if not isinstance(raw, Mapping):
            raise PolicySuiteFormatError(f"{where} must be an object")
        elements.append(
            PolicyElement(
                name=_optional_string(raw, "name", where),
                description=_optional_string(raw, "description", where),
                type=_optional_string(raw, "type", where),
                regions=_string_list(raw.get("regions"), f"{where}.regions"),
                policies=_string_list(raw.get("policies"), f"{where}.policies"),
            )
        )

    return PolicySuite(
        name=_optional_string(data, "name", "suite"),
        description=_optional_string(data, "description", "suite"),
        policies=elements,
        source_path=source_path,
    )


def loads_policy_suite(text: str, *, source_path: Optional[Path] = None) -> PolicySuite:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise PolicySuiteFormatError(f"Invalid policy suite document: {exc}") from exc
    return policy_suite_from_dict(data, source_path=source_path)


def load_policy_suite(path: Union[str, Path]) -> PolicySuite:
    """Read the suite document stored at *path*."""

    path = Path(path)
    return loads_policy_suite(path.read_text(encoding="utf-8"), source_path=path.resolve())


def dumps_policy_suite(suite: PolicySuite) -> str:
    return json.dumps(suite.to_dict(), indent=2) + "\n"


__all__ = [
    "PolicyElement",
    "PolicySuite",
    "PolicySuiteFormatError",
    "dumps_policy_suite",
    "load_policy_suite",
    "loads_policy_suite",
    "policy_suite_from_dict",
]
