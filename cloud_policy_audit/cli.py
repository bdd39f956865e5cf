"""Command line interface for the cloud policy audit tool."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Mapping, Optional

from .config import Settings
from .core import (
    EXIT_ERRORS,
    EXIT_INVALID,
    EXIT_OK,
    exit_code_for,
    export_failed_resources_to_excel,
    format_outcome_json,
    print_descriptor,
    print_outcome,
    print_resources,
    summarize_results,
)
from .logging_config import setup_logging
from .policies.builtin import (
    builtin_suite_names,
    get_builtin_suite,
    is_builtin_reference,
    load_compilation_unit,
    policy_template,
    suite_template,
)
from .policies.compilation import POLICY_FILE_EXTENSION, POLICY_SUITE_EXTENSION
from .policies.compiler import PolicyCompiler
from .providers import CloudProvider, create_providers, find_provider
from .runner import PolicySuiteRunner, build_single_policy_suite, query_resources
from .suite import PolicySuite, dumps_policy_suite, load_policy_suite
from .validation import validate_policy_suite

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Return parsed command line arguments."""

    parser = argparse.ArgumentParser(
        description="Validate cloud resources against policies written in a small rule language."
    )
    parser.add_argument("--profile", help="AWS CLI profile to use", default=None)
    parser.add_argument("--verbose", action="store_true", help="Log progress messages")
    parser.add_argument("--debug", action="store_true", help="Log debug output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run a policy file or policy suite")
    run.add_argument(
        "source",
        help=f"Path to a {POLICY_FILE_EXTENSION} or {POLICY_SUITE_EXTENSION} file, or a builtin/ suite",
    )
    run.add_argument("--max-workers", type=int, default=None, help="Concurrent region discoveries")
    run.add_argument(
        "--format",
        choices=("json", "table"),
        default="json",
        help="Output format for the run report (default: json)",
    )
    run.add_argument("--json", dest="json_path", help="Optional path to export the report as JSON")
    run.add_argument(
        "--excel",
        dest="excel_path",
        help="Optional path to export failed resources as an Excel workbook (.xlsx)",
    )

    validate = subparsers.add_parser("validate", help="Check a policy suite without running it")
    validate.add_argument("source", help=f"Path to a {POLICY_SUITE_EXTENSION} file or a builtin/ suite")

    compile_cmd = subparsers.add_parser("compile", help="Compile a policy file and print diagnostics")
    compile_cmd.add_argument("policy", help=f"Path to a {POLICY_FILE_EXTENSION} file")
    compile_cmd.add_argument("--provider", default="AWS", help="Provider whose resources to bind against")

    init = subparsers.add_parser("init", help="Create a policy or policy suite template")
    init.add_argument("filename", help="File to create")
    init.add_argument("--suite", action="store_true", help="Create a policy suite instead of a policy")
    init.add_argument("--resource", help="Resource type targeted by the new policy")

    resources = subparsers.add_parser("resources", help="List resource types and their properties")
    resources.add_argument("resource", nargs="?", help="Resource type to describe")
    resources.add_argument("--provider", default="AWS", help="Provider to list (default: AWS)")

    query = subparsers.add_parser("query", help="Print the resources that pass ad hoc statements")
    query.add_argument("resource", help="Resource type, e.g. AwsS3Bucket")
    query.add_argument("statements", help="Statements joined with '&&'")
    query.add_argument("--provider", default="AWS", help="Provider to query (default: AWS)")
    query.add_argument(
        "--region",
        dest="regions",
        action="append",
        default=None,
        help="Region to query; repeat for several (default: provider default regions)",
    )
    query.add_argument("--limit", type=int, default=0, help="Show at most this many resources")

    return parser.parse_args(argv)


def load_suite_source(source: str, providers: Mapping[str, CloudProvider]) -> PolicySuite:
    """Resolve a ``run``/``validate`` source to a policy suite.

    ``.suite`` files and ``builtin/`` suites are loaded directly; a single
    ``.policy`` file is wrapped in a suite covering every provider.
    """

    if is_builtin_reference(source):
        if source.lower().endswith(POLICY_FILE_EXTENSION):
            return build_single_policy_suite(source, providers)
        return get_builtin_suite(source)

    path = Path(source)
    suffix = path.suffix.lower()
    if suffix not in (POLICY_FILE_EXTENSION, POLICY_SUITE_EXTENSION):
        raise ValueError(
            f"Filename must end with either '{POLICY_FILE_EXTENSION}' or '{POLICY_SUITE_EXTENSION}'."
        )
    if not path.is_file():
        raise ValueError(f"Specified file '{source}' does not exist.")
    if suffix == POLICY_SUITE_EXTENSION:
        return load_policy_suite(path)
    return build_single_policy_suite(str(path.resolve()), providers)


def _provider_or_error(providers: Mapping[str, CloudProvider], name: str) -> CloudProvider:
    provider = find_provider(providers, name)
    if provider is None:
        raise ValueError(f"Unknown provider '{name}'. Known providers: {', '.join(sorted(providers))}")
    return provider


def _print_validation_errors(source: str, errors: List[str]) -> None:
    print(f"Policy suite '{source}' is invalid:", file=sys.stderr)
    for error in errors:
        print(f"- {error}", file=sys.stderr)


def _cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    providers = create_providers(settings)
    suite = load_suite_source(args.source, providers)
    validation = validate_policy_suite(suite, providers)
    if not validation.is_valid:
        _print_validation_errors(args.source, validation.errors)
        return EXIT_INVALID

    runner = PolicySuiteRunner(providers, max_workers=settings.max_workers)
    outcome = summarize_results(runner.run(suite))

    if args.format == "table":
        print_outcome(outcome)
    else:
        print(format_outcome_json(outcome))

    if args.json_path:
        with open(args.json_path, "w", encoding="utf-8") as fh:
            fh.write(format_outcome_json(outcome))
        print(f"Report exported to {args.json_path}", file=sys.stderr)

    if args.excel_path:
        try:
            path = export_failed_resources_to_excel(outcome.failed_resources, args.excel_path)
        except RuntimeError as exc:
            print(f"Failed to export Excel report: {exc}", file=sys.stderr)
        else:
            print(f"Excel report written to {path}", file=sys.stderr)

    return exit_code_for(outcome)


def _cmd_validate(args: argparse.Namespace, settings: Settings) -> int:
    providers = create_providers(settings)
    suite = load_suite_source(args.source, providers)
    validation = validate_policy_suite(suite, providers)
    if not validation.is_valid:
        _print_validation_errors(args.source, validation.errors)
        return EXIT_INVALID
    print(f"Policy suite '{args.source}' is valid.")
    return EXIT_OK


def _cmd_compile(args: argparse.Namespace, settings: Settings) -> int:
    provider = _provider_or_error(create_providers(settings), args.provider)
    context = PolicyCompiler(provider.get_resources()).compile(load_compilation_unit(args.policy))
    for line in context.format_diagnostics():
        print(line)
    if context.predicate is None:
        return EXIT_ERRORS
    print(f"{args.policy}: compiled for resource '{context.predicate.resource_name}'.")
    return EXIT_OK


def _cmd_init(args: argparse.Namespace, settings: Settings) -> int:
    path = Path(args.filename)
    if path.exists():
        print(f"Error: The file {args.filename} already exists.", file=sys.stderr)
        return EXIT_INVALID

    if args.suite:
        content = dumps_policy_suite(suite_template())
    else:
        if not args.resource:
            print("Error: --resource is required when creating a policy.", file=sys.stderr)
            return EXIT_INVALID
        content = policy_template(args.resource)

    path.write_text(content, encoding="utf-8")
    print(f"Created {args.filename}")
    return EXIT_OK


def _cmd_resources(args: argparse.Namespace, settings: Settings) -> int:
    provider = _provider_or_error(create_providers(settings), args.provider)
    catalog = provider.get_resources()
    if args.resource:
        descriptor = catalog.get(args.resource)
        if descriptor is None:
            print(f"Error: Unknown resource '{args.resource}' for {provider.name}.", file=sys.stderr)
            return EXIT_INVALID
        print_descriptor(descriptor)
        return EXIT_OK

    print(f"Resources available for {provider.name}:")
    for name, descriptor in sorted(catalog.items()):
        suffix = f" - {descriptor.description}" if descriptor.description else ""
        print(f"  - {name}{suffix}")
    print("Built-in suites: " + ", ".join(builtin_suite_names()))
    return EXIT_OK


def _cmd_query(args: argparse.Namespace, settings: Settings) -> int:
    provider = _provider_or_error(create_providers(settings), args.provider)
    regions = args.regions or provider.get_default_regions()
    result = query_resources(provider, args.resource, regions, args.statements)
    if result.context.predicate is None:
        for line in result.context.format_diagnostics():
            print(line, file=sys.stderr)
        return EXIT_ERRORS
    for error in result.errors:
        print(f"Error: {error}", file=sys.stderr)
    print_resources(result.matched, limit=args.limit)
    return EXIT_ERRORS if result.errors else EXIT_OK


_COMMANDS = {
    "run": _cmd_run,
    "validate": _cmd_validate,
    "compile": _cmd_compile,
    "init": _cmd_init,
    "resources": _cmd_resources,
    "query": _cmd_query,
}


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point used by ``python -m cloud_policy_audit``."""

    args = parse_args(argv)
    try:
        settings = Settings.from_env()
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_INVALID

    level = "DEBUG" if args.debug else "INFO" if args.verbose else None
    settings = settings.with_overrides(
        max_workers=getattr(args, "max_workers", None),
        aws_profile=args.profile,
        log_level=level,
    )
    setup_logging(settings.log_level)

    try:
        return _COMMANDS[args.command](args, settings)
    except (OSError, ValueError, RuntimeError) as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_INVALID


__all__ = ["load_suite_source", "main", "parse_args"]
