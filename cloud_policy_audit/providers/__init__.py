"""Cloud provider contract and registry helpers."""
from __future__ import annotations

import importlib
import logging
import pkgutil
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..config import Settings
from ..errors import DiscoveryError, OperationCancelled
from ..resources import Resource, ResourceDescriptor
from ..utils import raise_if_cancelled

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]
CancellationSignal = threading.Event


def log_progress(message: str) -> None:
    """Default progress callback: forward provider status messages to the log."""

    logger.info(message)


class CloudProvider(ABC):
    """Capability set every provider exposes to the runner and validator."""

    name: str = ""

    @abstractmethod
    def get_resources(self) -> Mapping[str, ResourceDescriptor]:
        """Return resource descriptors keyed by name, without any discovery."""

    @abstractmethod
    def get_all_regions(self) -> Sequence[str]:
        """Return every region this provider knows about."""

    @abstractmethod
    def get_default_regions(self) -> List[str]:
        """Return the regions used when a run does not name any."""

    def is_valid_region(self, region: str) -> bool:
        return region in self.get_all_regions()

    @abstractmethod
    def discover_resources(
        self,
        region: str,
        descriptor: ResourceDescriptor,
        progress: ProgressCallback = log_progress,
        cancel: Optional[CancellationSignal] = None,
    ) -> List[Resource]:
        """Enumerate resources of ``descriptor``'s kind in *region*.

        Implementations raise :class:`DiscoveryError` for provider faults and
        :class:`OperationCancelled` when *cancel* is observed.
        """


ProviderFactory = Callable[[Settings], CloudProvider]


class ProviderRegistry:
    """Registry that stores available cloud provider factories."""

    def __init__(self) -> None:
        self._factories: Dict[str, ProviderFactory] = {}

    @staticmethod
    def _normalize(name: str) -> str:
        if not name:
            raise ValueError("Provider name must be a non-empty string")
        return name.strip().lower()

    def register(self, name: str) -> Callable[[ProviderFactory], ProviderFactory]:
        """Return a decorator that registers *name* for the wrapped factory."""

        normalized = self._normalize(name)

        def decorator(factory: ProviderFactory) -> ProviderFactory:
            if normalized in self._factories and self._factories[normalized] is not factory:
                raise ValueError(f"Provider '{name}' is already registered")
            self._factories[normalized] = factory
            return factory

        return decorator

    def items(self) -> Iterator[Tuple[str, ProviderFactory]]:
        return iter(self._factories.items())


PROVIDER_REGISTRY = ProviderRegistry()
register_provider = PROVIDER_REGISTRY.register


def create_providers(settings: Optional[Settings] = None) -> Dict[str, CloudProvider]:
    """Instantiate every registered provider keyed by its display name."""

    settings = settings or Settings.from_env()
    providers: Dict[str, CloudProvider] = {}
    for _, factory in PROVIDER_REGISTRY.items():
        provider = factory(settings)
        providers[provider.name] = provider
    return providers


def find_provider(providers: Mapping[str, CloudProvider], name: str) -> Optional[CloudProvider]:
    """Case-insensitive provider lookup."""

    if name in providers:
        return providers[name]
    wanted = name.strip().lower()
    for key, provider in providers.items():
        if key.lower() == wanted:
            return provider
    return None


def _import_provider_modules() -> None:
    """Import subpackages that register providers via decorators."""

    package_paths = getattr(__spec__, "submodule_search_locations", None)
    if not package_paths:
        return

    for module_info in pkgutil.iter_modules(package_paths):
        if module_info.name.startswith("_"):
            continue
        importlib.import_module(f"{__name__}.{module_info.name}")


_import_provider_modules()


__all__ = [
    "CancellationSignal",
    "CloudProvider",
    "DiscoveryError",
    "OperationCancelled",
    "PROVIDER_REGISTRY",
    "ProgressCallback",
    "ProviderFactory",
    "ProviderRegistry",
    "create_providers",
    "find_provider",
    "log_progress",
    "raise_if_cancelled",
    "register_provider",
]
