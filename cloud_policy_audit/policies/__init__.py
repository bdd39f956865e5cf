"""Policy rule language: compilation units, parser and compiler."""
from __future__ import annotations

from .builtin import (
    BUILTIN_POLICIES,
    PolicyNotFoundError,
    get_builtin_suite,
    is_builtin_reference,
    load_compilation_unit,
    policy_exists,
)
from .compilation import (
    POLICY_FILE_EXTENSION,
    POLICY_SUITE_EXTENSION,
    CompilationContext,
    CompilationUnit,
    Diagnostic,
    Severity,
    SourcePosition,
)
from .compiler import (
    CompiledPolicy,
    Evaluation,
    PolicyCompiler,
    PropertyCoercionError,
    ResourcePolicyExecution,
    compile_policy,
)

__all__ = [
    "BUILTIN_POLICIES",
    "CompilationContext",
    "CompilationUnit",
    "CompiledPolicy",
    "Diagnostic",
    "Evaluation",
    "POLICY_FILE_EXTENSION",
    "POLICY_SUITE_EXTENSION",
    "PolicyCompiler",
    "PolicyNotFoundError",
    "PropertyCoercionError",
    "ResourcePolicyExecution",
    "Severity",
    "SourcePosition",
    "compile_policy",
    "get_builtin_suite",
    "is_builtin_reference",
    "load_compilation_unit",
    "policy_exists",
]
