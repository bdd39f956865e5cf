"""Amazon Web Services provider."""
from __future__ import annotations

import importlib
import logging
import pkgutil
import re
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ...config import Settings
from ...resources import Resource, ResourceDescriptor
from ...utils import discovery_error_from_exception, raise_if_cancelled
from .. import CloudProvider, ProgressCallback, log_progress, register_provider

logger = logging.getLogger(__name__)

AWS_REGIONS: Tuple[str, ...] = (
    "af-south-1",
    "ap-east-1",
    "ap-northeast-1",
    "ap-northeast-2",
    "ap-northeast-3",
    "ap-south-1",
    "ap-south-2",
    "ap-southeast-1",
    "ap-southeast-2",
    "ap-southeast-3",
    "ap-southeast-4",
    "ca-central-1",
    "ca-west-1",
    "eu-central-1",
    "eu-central-2",
    "eu-north-1",
    "eu-south-1",
    "eu-south-2",
    "eu-west-1",
    "eu-west-2",
    "eu-west-3",
    "il-central-1",
    "me-central-1",
    "me-south-1",
    "sa-east-1",
    "us-east-1",
    "us-east-2",
    "us-gov-east-1",
    "us-gov-west-1",
    "us-west-1",
    "us-west-2",
)
DEFAULT_REGION = "us-east-1"

# Accepts regions launched after AWS_REGIONS was last updated.
_REGION_RE = re.compile(
    r"^[a-z]{2}(-gov|-iso[a-z]?)?-(north|south|east|west|central|northeast|northwest|southeast|southwest)-\d{1,2}$"
)

SessionFactory = Callable[[Optional[str], Optional[str]], boto3.session.Session]
ResourceExplorer = Callable[
    [boto3.session.Session, str, ProgressCallback, Optional[threading.Event]], List[Resource]
]


@dataclass(frozen=True)
class ExplorerEntry:
    descriptor: ResourceDescriptor
    explorer: ResourceExplorer
    action: str


class ExplorerRegistry:
    """Registry of resource explorers keyed by resource descriptor name."""

    def __init__(self) -> None:
        self._entries: Dict[str, ExplorerEntry] = {}

    def register(self, descriptor: ResourceDescriptor, action: str) -> Callable[[ResourceExplorer], ResourceExplorer]:
        """Return a decorator registering an explorer for *descriptor*.

        ``action`` names the API call in discovery error messages.
        """

        def decorator(func: ResourceExplorer) -> ResourceExplorer:
            existing = self._entries.get(descriptor.name)
            if existing is not None and existing.explorer is not func:
                raise ValueError(f"Resource '{descriptor.name}' is already registered")
            self._entries[descriptor.name] = ExplorerEntry(descriptor, func, action)
            return func

        return decorator

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name in self._entries

    def __getitem__(self, name: str) -> ExplorerEntry:
        return self._entries[name]

    def descriptors(self) -> Mapping[str, ResourceDescriptor]:
        return MappingProxyType({name: entry.descriptor for name, entry in sorted(self._entries.items())})


EXPLORER_REGISTRY = ExplorerRegistry()
register_explorer = EXPLORER_REGISTRY.register


def _default_session_factory(profile: Optional[str], region: Optional[str]) -> boto3.session.Session:
    return boto3.Session(profile_name=profile, region_name=region)


class AwsCloudProvider(CloudProvider):
    """Discovers AWS resources one region at a time.

    A new :class:`boto3.session.Session` is created for every discovery call
    because sessions must not be shared between worker threads.
    """

    name = "AWS"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        session_factory: Optional[SessionFactory] = None,
        explorers: Optional[ExplorerRegistry] = None,
    ) -> None:
        self._settings = settings or Settings()
        self._session_factory = session_factory or _default_session_factory
        self._explorers = explorers or EXPLORER_REGISTRY

    def get_resources(self) -> Mapping[str, ResourceDescriptor]:
        return self._explorers.descriptors()

    def get_all_regions(self) -> Sequence[str]:
        return AWS_REGIONS

    def get_default_regions(self) -> List[str]:
        return [self._settings.aws_default_region or DEFAULT_REGION]

    def is_valid_region(self, region: str) -> bool:
        return region in AWS_REGIONS or bool(_REGION_RE.match(region))

    def discover_resources(
        self,
        region: str,
        descriptor: ResourceDescriptor,
        progress: ProgressCallback = log_progress,
        cancel: Optional[threading.Event] = None,
    ) -> List[Resource]:
        if descriptor.name not in self._explorers:
            raise KeyError(f"AWS provider has no explorer for resource '{descriptor.name}'")
        entry = self._explorers[descriptor.name]

        raise_if_cancelled(cancel)
        progress(f"Discovering {descriptor.name} resources in {region}")
        try:
            session = self._session_factory(self._settings.aws_profile, region)
            resources = entry.explorer(session, region, progress, cancel)
        except (ClientError, BotoCoreError) as exc:
            raise discovery_error_from_exception(f"Failed to {entry.action}", region, exc) from exc
        logger.debug("Discovered %d %s resources in %s", len(resources), descriptor.name, region)
        return resources


@register_provider("AWS")
def create_aws_provider(settings: Settings) -> AwsCloudProvider:
    return AwsCloudProvider(settings)


def tag_values(tags: Optional[Iterable[dict]]) -> Tuple[Optional[str], List[str], List[str]]:
    """Split AWS ``Tags`` into the Name tag, ``Key=Value`` pairs and keys."""

    name: Optional[str] = None
    pairs: List[str] = []
    keys: List[str] = []
    for tag in tags or []:
        key = tag.get("Key")
        if not key:
            continue
        value = tag.get("Value", "")
        if key == "Name":
            name = value
        pairs.append(f"{key}={value}")
        keys.append(key)
    return name, pairs, keys


def _import_explorer_modules() -> None:
    """Import modules that register explorers via decorators."""

    package_paths = getattr(__spec__, "submodule_search_locations", None)
    if not package_paths:
        return

    for module_info in pkgutil.iter_modules(package_paths):
        if module_info.name.startswith("_"):
            continue
        importlib.import_module(f"{__name__}.{module_info.name}")


_import_explorer_modules()


__all__ = [
    "AWS_REGIONS",
    "AwsCloudProvider",
    "DEFAULT_REGION",
    "EXPLORER_REGISTRY",
    "ExplorerRegistry",
    "create_aws_provider",
    "register_explorer",
    "tag_values",
]
