"""Policy suite runner: discovery, compilation and evaluation across regions."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .config import DEFAULT_MAX_WORKERS
from .errors import DiscoveryError, OperationCancelled
from .policies.builtin import load_compilation_unit, policy_from_statements
from .policies.compilation import CompilationContext, CompilationUnit
from .policies.compiler import CompiledPolicy, PolicyCompiler
from .providers import CloudProvider, ProgressCallback, find_provider, log_progress
from .resources import Resource, ResourceDescriptor
from .results import ErrorKind, FailedResource, PolicyError, PolicySuiteRunResult
from .suite import PolicyElement, PolicySuite

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _WorkUnit:
    """One (policy element, region) pair scheduled on the worker pool."""

    element: PolicyElement
    region: str


_DiscoveryOutcome = Union[List[Resource], DiscoveryError]


def _policy_error(
    unit: _WorkUnit,
    reference: str,
    kind: ErrorKind,
    message: str,
    context: Optional[CompilationContext] = None,
) -> PolicySuiteRunResult:
    element_name = unit.element.display_name
    return PolicySuiteRunResult(
        element=element_name,
        region=unit.region,
        policy=reference,
        error=PolicyError(
            kind=kind,
            policy=reference,
            message=message,
            region=unit.region,
            element=element_name,
            diagnostics=list(context.diagnostics) if context is not None else [],
        ),
    )


def _unit_errors(unit: _WorkUnit, message: str) -> List[PolicySuiteRunResult]:
    """One discovery error per policy file of a unit whose provider is unusable."""

    return [_policy_error(unit, reference, "discovery", message) for reference in unit.element.policies]


class PolicySuiteRunner:
    """Runs every policy of a suite against the resources of each region.

    Work is split into independent (element, region) units executed on a
    bounded thread pool.  Each unit builds its own result list; lists are
    merged in suite order once all units have finished.
    """

    def __init__(
        self,
        providers: Mapping[str, CloudProvider],
        *,
        max_workers: int = DEFAULT_MAX_WORKERS,
        progress: ProgressCallback = log_progress,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._providers = providers
        self._max_workers = max_workers
        self._progress = progress

    def run(
        self, suite: PolicySuite, cancel: Optional[threading.Event] = None
    ) -> List[PolicySuiteRunResult]:
        """Return one result per (element, region, policy file) that ran.

        Setting *cancel* stops new discovery and compilation work; results
        produced before that point are returned.
        """

        cancel = cancel or threading.Event()
        units = [
            _WorkUnit(element=element, region=region)
            for element in suite.policies
            for region in element.regions
        ]
        if not units:
            return []

        base_directory = suite.base_directory
        collected: Dict[int, List[PolicySuiteRunResult]] = {}
        workers = min(self._max_workers, len(units))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="policy-run") as executor:
            futures = {
                executor.submit(self._run_unit, unit, base_directory, cancel): position
                for position, unit in enumerate(units)
            }
            for future in as_completed(futures):
                collected[futures[future]] = future.result()

        return [result for position in sorted(collected) for result in collected[position]]

    def _run_unit(
        self, unit: _WorkUnit, base_directory: Optional[Path], cancel: threading.Event
    ) -> List[PolicySuiteRunResult]:
        if cancel.is_set():
            logger.debug("Skipping %s/%s: run cancelled", unit.element.display_name, unit.region)
            return []

        element = unit.element
        logger.debug("Running %d policies for %s in %s", len(element.policies), element.display_name, unit.region)
        provider = find_provider(self._providers, element.type)
        if provider is None:
            return _unit_errors(unit, f"Unknown provider type '{element.type}'")

        try:
            compiler = PolicyCompiler(provider.get_resources())
        except Exception as exc:  # provider faults never abort the suite
            logger.warning("Provider %s failed to list its resources", element.type, exc_info=True)
            return _unit_errors(unit, f"Failed to list {element.type} resources: {exc}")

        discovered: Dict[str, _DiscoveryOutcome] = {}
        results: List[PolicySuiteRunResult] = []
        for reference in element.policies:
            if cancel.is_set():
                break
            try:
                result = self._run_policy(
                    unit, reference, base_directory, provider, compiler, discovered, cancel
                )
            except OperationCancelled:
                logger.debug("Discovery for %s in %s was cancelled", reference, unit.region)
                break
            except Exception as exc:
                logger.warning("Policy %s raised an unexpected error in %s", reference, unit.region, exc_info=True)
                result = _policy_error(unit, reference, "discovery", f"Unexpected error: {exc}")
            results.append(result)
        logger.debug("Finished %s in %s with %d results", element.display_name, unit.region, len(results))
        return results

    def _run_policy(
        self,
        unit: _WorkUnit,
        reference: str,
        base_directory: Optional[Path],
        provider: CloudProvider,
        compiler: PolicyCompiler,
        discovered: Dict[str, _DiscoveryOutcome],
        cancel: threading.Event,
    ) -> PolicySuiteRunResult:
        element_name = unit.element.display_name
        try:
            compilation_unit = load_compilation_unit(reference, base_directory)
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Unable to load policy %s: %s", reference, exc)
            return _policy_error(unit, reference, "load", f"Unable to load policy: {exc}")

        context = compiler.compile(compilation_unit)
        predicate = context.predicate
        if predicate is None:
            logger.warning("Policy %s failed to compile with %d errors", reference, len(context.errors))
            return _policy_error(unit, reference, "compile", "Policy failed to compile", context)

        outcome = self._discover(provider, unit.region, predicate.descriptor, discovered, cancel)
        if isinstance(outcome, DiscoveryError):
            return _policy_error(unit, reference, "discovery", str(outcome))

        result = PolicySuiteRunResult(element=element_name, region=unit.region, policy=reference)
        result.failed_resources, result.evaluated = evaluate_policy(
            predicate, outcome, element=element_name, region=unit.region
        )
        return result

    def _discover(
        self,
        provider: CloudProvider,
        region: str,
        descriptor: ResourceDescriptor,
        discovered: Dict[str, _DiscoveryOutcome],
        cancel: threading.Event,
    ) -> _DiscoveryOutcome:
        """Discover *descriptor* resources once per unit; failures are cached too."""

        if descriptor.name in discovered:
            return discovered[descriptor.name]

        try:
            outcome: _DiscoveryOutcome = provider.discover_resources(
                region, descriptor, self._progress, cancel
            )
        except OperationCancelled:
            raise
        except DiscoveryError as exc:
            logger.warning("Discovery of %s in %s failed: %s", descriptor.name, region, exc)
            outcome = exc
        except Exception as exc:  # provider faults never abort the suite
            logger.warning(
                "Discovery of %s in %s raised an unexpected error", descriptor.name, region, exc_info=True
            )
            outcome = DiscoveryError(f"Failed to discover {descriptor.name} in {region}: {exc}")
        discovered[descriptor.name] = outcome
        return outcome


def evaluate_policy(
    predicate: CompiledPolicy,
    resources: Sequence[Resource],
    *,
    element: str = "",
    region: str = "",
) -> Tuple[List[FailedResource], int]:
    """Apply *predicate* to *resources* in discovery order.

    Returns the failed/errored resources (one entry per resource) and the
    number of resources evaluated.
    """

    failed: List[FailedResource] = []
    seen = set()
    for resource in resources:
        evaluation = predicate.evaluate(resource)
        if evaluation.passed:
            continue
        entry = FailedResource(
            policy=predicate.name,
            resource_type=resource.kind,
            resource_id=resource.id,
            region=resource.region or region,
            execution=evaluation.execution,
            detail=evaluation.detail,
            element=element,
        )
        if entry.key() in seen:
            continue
        seen.add(entry.key())
        failed.append(entry)
    return failed, len(resources)


def run_policy_suite(
    suite: PolicySuite,
    providers: Mapping[str, CloudProvider],
    cancel: Optional[threading.Event] = None,
    *,
    max_workers: int = DEFAULT_MAX_WORKERS,
    progress: ProgressCallback = log_progress,
) -> List[PolicySuiteRunResult]:
    """Convenience wrapper around :class:`PolicySuiteRunner`."""

    runner = PolicySuiteRunner(providers, max_workers=max_workers, progress=progress)
    return runner.run(suite, cancel)


def build_single_policy_suite(reference: str, providers: Mapping[str, CloudProvider]) -> PolicySuite:
    """Wrap one policy file in a suite covering every provider's default regions."""

    return PolicySuite(
        name=f"Policy: {reference}",
        policies=[
            PolicyElement(
                name=name,
                type=name,
                regions=provider.get_default_regions(),
                policies=[reference],
            )
            for name, provider in providers.items()
        ],
    )


@dataclass
class QueryResult:
    context: CompilationContext
    matched: List[Resource]
    errors: List[str]


def query_resources(
    provider: CloudProvider,
    resource_name: str,
    regions: Sequence[str],
    statements: str,
    *,
    cancel: Optional[threading.Event] = None,
    progress: ProgressCallback = log_progress,
) -> QueryResult:
    """Return the resources of one kind that pass ad hoc ``&&``-joined statements."""

    source = policy_from_statements(resource_name, statements)
    context = PolicyCompiler(provider.get_resources()).compile(CompilationUnit.from_text(source, "<query>"))
    predicate = context.predicate
    if predicate is None:
        return QueryResult(context=context, matched=[], errors=[])

    cancel = cancel or threading.Event()
    matched: List[Resource] = []
    errors: List[str] = []
    for region in regions:
        if cancel.is_set():
            break
        try:
            resources = provider.discover_resources(region, predicate.descriptor, progress, cancel)
        except OperationCancelled:
            break
        except DiscoveryError as exc:
            errors.append(str(exc))
            continue
        matched.extend(resource for resource in resources if predicate.evaluate(resource).passed)
    return QueryResult(context=context, matched=matched, errors=errors)


__all__ = [
    "PolicySuiteRunner",
    "QueryResult",
    "build_single_policy_suite",
    "evaluate_policy",
    "query_resources",
    "run_policy_suite",
]
