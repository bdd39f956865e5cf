"""Resource model shared by providers, the policy compiler and reporting."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Tuple


class PropertyType(str, Enum):
    """Semantic type of a resource property."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    STRING_SET = "string-set"


PropertyFormatter = Callable[[Any], str]
PropertyReader = Callable[["Resource", str], Any]


class MissingPropertyError(KeyError):
    """Raised when a resource does not carry a value for a catalogued property."""

    def __init__(self, resource_id: str, name: str) -> None:
        super().__init__(name)
        self.resource_id = resource_id
        self.name = name

    def __str__(self) -> str:
        return f"Resource '{self.resource_id}' has no property '{self.name}'"


@dataclass(frozen=True)
class PropertyDescriptor:
    """Catalog entry describing a single named property."""

    name: str
    type: PropertyType
    description: str = ""
    formatter: Optional[PropertyFormatter] = None

    def format(self, value: Any) -> str:
        """Return the display form of *value*; never used for evaluation."""

        if self.formatter is not None:
            return self.formatter(value)
        if value is None:
            return ""
        if self.type is PropertyType.STRING_SET:
            return ", ".join(sorted(str(item) for item in value))
        if self.type is PropertyType.BOOLEAN:
            return "true" if value else "false"
        return str(value)


def _read_mapping(resource: "Resource", name: str) -> Any:
    try:
        return resource.properties[name]
    except KeyError:
        raise MissingPropertyError(resource.id, name) from None


@dataclass(frozen=True)
class ResourceDescriptor:
    """Property catalog for one resource kind.

    Descriptors are built once per kind and consulted both by the compiler's
    binding phase and by display code, so no discovered instance is needed to
    introspect a resource type.
    """

    name: str
    provider: str
    properties: Tuple[PropertyDescriptor, ...]
    description: str = ""
    reader: PropertyReader = field(default=_read_mapping, compare=False, repr=False)

    def __post_init__(self) -> None:
        seen = set()
        for prop in self.properties:
            if prop.name in seen:
                raise ValueError(f"Duplicate property '{prop.name}' on resource '{self.name}'")
            seen.add(prop.name)

    @property
    def property_names(self) -> Tuple[str, ...]:
        return tuple(prop.name for prop in self.properties)

    def get_property(self, name: str) -> Optional[PropertyDescriptor]:
        """Return the descriptor named *name* (case-sensitive) or ``None``."""

        for prop in self.properties:
            if prop.name == name:
                return prop
        return None

    def sorted_properties(self) -> Tuple[PropertyDescriptor, ...]:
        return tuple(sorted(self.properties, key=lambda prop: prop.name))

    def create(self, resource_id: str, properties: Mapping[str, Any], *, region: str = "") -> "Resource":
        """Build an immutable :class:`Resource` of this kind."""

        return Resource(descriptor=self, id=resource_id, region=region, properties=properties)


@dataclass(frozen=True)
class Resource:
    """A discovered cloud object with named, typed properties."""

    descriptor: ResourceDescriptor
    id: str
    properties: Mapping[str, Any]
    region: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))

    @property
    def kind(self) -> str:
        return self.descriptor.name

    @property
    def identity(self) -> str:
        """Stable identity string: resource kind plus provider-assigned id."""

        return f"{self.descriptor.name}:{self.id}"

    def read(self, name: str) -> Any:
        """Read property *name* through the kind's registered reader."""

        return self.descriptor.reader(self, name)

    def format(self, name: str) -> str:
        prop = self.descriptor.get_property(name)
        try:
            value = self.read(name)
        except MissingPropertyError:
            return ""
        if prop is None:
            return "" if value is None else str(value)
        return prop.format(value)

    def display_row(self) -> Dict[str, str]:
        """Return formatted values keyed by property name, sorted by name."""

        return {prop.name: self.format(prop.name) for prop in self.descriptor.sorted_properties()}


def string_property(name: str, description: str = "") -> PropertyDescriptor:
    return PropertyDescriptor(name, PropertyType.STRING, description)


def number_property(name: str, description: str = "") -> PropertyDescriptor:
    return PropertyDescriptor(name, PropertyType.NUMBER, description)


def boolean_property(name: str, description: str = "") -> PropertyDescriptor:
    return PropertyDescriptor(name, PropertyType.BOOLEAN, description)


def string_set_property(name: str, description: str = "") -> PropertyDescriptor:
    return PropertyDescriptor(name, PropertyType.STRING_SET, description)


__all__ = [
    "MissingPropertyError",
    "PropertyDescriptor",
    "PropertyFormatter",
    "PropertyReader",
    "PropertyType",
    "Resource",
    "ResourceDescriptor",
    "boolean_property",
    "number_property",
    "string_property",
    "string_set_property",
]
