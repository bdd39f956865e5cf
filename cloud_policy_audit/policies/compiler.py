"""Policy compiler: binds parsed rules to a resource catalog and evaluates them.

Compilation runs in three steps over a single :class:`CompilationContext`:

1. the lexer and parser build a :class:`~.syntax.PolicyDocument`;
2. binding resolves the ``resource "<name>"`` header to a
   :class:`~cloud_policy_audit.resources.ResourceDescriptor`, checks every
   ``input.<Property>`` reference against its catalog and coerces literals to
   the declared property types;
3. when no error diagnostic was recorded, the bound statements are wrapped in a
   :class:`CompiledPolicy` and stored on the context.

Evaluation is a direct walk over the bound statements.  Statements are
implicitly ANDed and evaluation stops at the first comparison that is false.
"""
from __future__ import annotations

import difflib
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple, Union

from ..resources import PropertyDescriptor, PropertyType, Resource, ResourceDescriptor
from .compilation import CompilationContext, CompilationUnit, SourcePosition
from .lexer import NUMBER_RE
from .parser import parse
from .syntax import Comparison, Conjunction, Expression, Literal, PolicyDocument, PropertyPath


class ResourcePolicyExecution(str, Enum):
    """Outcome of applying one compiled policy to one resource."""

    PASSED = "Passed"
    FAILED = "Failed"
    ERROR = "Error"


class PropertyCoercionError(TypeError):
    """Raised when a runtime value cannot be read as its declared type."""


@dataclass(frozen=True)
class Evaluation:
    """Execution outcome plus the detail needed to explain it."""

    execution: ResourcePolicyExecution
    detail: str = ""
    line: Optional[int] = None

    @property
    def passed(self) -> bool:
        return self.execution is ResourcePolicyExecution.PASSED


EQUALITY_OPERATORS = frozenset({"==", "!="})
CASE_INSENSITIVE_OPERATORS = frozenset({"~=", "!~="})
ORDERING_OPERATORS = frozenset({"<", "<=", ">", ">="})

ALLOWED_OPERATORS: Dict[PropertyType, FrozenSet[str]] = {
    PropertyType.STRING: EQUALITY_OPERATORS
    | CASE_INSENSITIVE_OPERATORS
    | ORDERING_OPERATORS
    | {"in", "contains"},
    PropertyType.NUMBER: EQUALITY_OPERATORS | ORDERING_OPERATORS | {"in"},
    PropertyType.BOOLEAN: EQUALITY_OPERATORS,
    PropertyType.STRING_SET: EQUALITY_OPERATORS | {"contains"},
}

_TRUE_STRINGS = {"true": True, "false": False}


# -- runtime coercion --------------------------------------------------------

def _parse_number(text: str) -> Union[int, float]:
    if NUMBER_RE.fullmatch(text) is None:
        raise ValueError(f"{text!r} is not a number")
    try:
        return int(text)
    except ValueError:
        return float(text)


def coerce_value(value: Any, prop: PropertyDescriptor) -> Any:
    """Coerce a property value read from a resource to ``prop.type``.

    ``None`` passes through unchanged.  Raises :class:`PropertyCoercionError`
    when the value cannot represent the declared type.
    """

    if value is None:
        return None
    ptype = prop.type
    if ptype is PropertyType.STRING:
        if isinstance(value, str):
            return value
        if isinstance(value, Enum):
            return str(value.value)
    elif ptype is PropertyType.NUMBER:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            try:
                return _parse_number(value.strip())
            except ValueError:
                pass
    elif ptype is PropertyType.BOOLEAN:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in _TRUE_STRINGS:
            return _TRUE_STRINGS[value.strip().lower()]
    elif ptype is PropertyType.STRING_SET:
        if isinstance(value, (list, tuple, set, frozenset)) and all(isinstance(v, str) for v in value):
            return frozenset(value)
    raise PropertyCoercionError(
        f"Property '{prop.name}' value {value!r} cannot be read as {ptype.value}"
    )


# -- bound tree --------------------------------------------------------------

@dataclass(frozen=True)
class _Constant:
    value: Any

    def resolve(self, resource: Resource) -> Any:
        return self.value


@dataclass(frozen=True)
class _PropertyRead:
    prop: PropertyDescriptor

    def resolve(self, resource: Resource) -> Any:
        return coerce_value(resource.read(self.prop.name), self.prop)


_Operand = Union[_Constant, _PropertyRead]


def _require_value(operator: str, value: Any, name: str) -> None:
    if value is None:
        raise PropertyCoercionError(f"Property '{name}' has no value to compare with '{operator}'")


def _apply(operator: str, left: Any, right: Any, name: str) -> bool:
    if operator == "==":
        return left == right
    if operator == "!=":
        return left != right
    _require_value(operator, left, name)
    _require_value(operator, right, name)
    if operator == "~=":
        return left.casefold() == right.casefold()
    if operator == "!~=":
        return left.casefold() != right.casefold()
    if operator == "<":
        return left < right
    if operator == "<=":
        return left <= right
    if operator == ">":
        return left > right
    if operator == ">=":
        return left >= right
    if operator == "in":
        return left in right
    if operator == "contains":
        return right in left
    raise ValueError(f"Unsupported operator '{operator}'")


@dataclass(frozen=True)
class BoundComparison:
    text: str
    line: int
    left: _PropertyRead
    operator: str
    right: _Operand

    def evaluate(self, resource: Resource) -> Optional["BoundComparison"]:
        """Return ``None`` when the comparison holds, otherwise ``self``."""

        left = self.left.resolve(resource)
        right = self.right.resolve(resource)
        if _apply(self.operator, left, right, self.left.prop.name):
            return None
        return self


@dataclass(frozen=True)
class BoundConjunction:
    terms: Tuple["BoundExpression", ...]

    def evaluate(self, resource: Resource) -> Optional[BoundComparison]:
        for term in self.terms:
            failed = term.evaluate(resource)
            if failed is not None:
                return failed
        return None


BoundExpression = Union[BoundComparison, BoundConjunction]


@dataclass(frozen=True)
class BoundStatement:
    text: str
    line: int
    expression: BoundExpression


class CompiledPolicy:
    """Executable form of a policy for one resource kind."""

    def __init__(
        self, name: str, descriptor: ResourceDescriptor, statements: Sequence[BoundStatement]
    ) -> None:
        self.name = name
        self.descriptor = descriptor
        self.statements = tuple(statements)

    @property
    def resource_name(self) -> str:
        return self.descriptor.name

    def evaluate(self, resource: Resource) -> Evaluation:
        """Apply every statement to *resource*, stopping at the first failure."""

        for statement in self.statements:
            try:
                failed = statement.expression.evaluate(resource)
            except Exception as exc:  # any fault in reading or comparing is an Error outcome
                return Evaluation(ResourcePolicyExecution.ERROR, str(exc), statement.line)
            if failed is not None:
                return Evaluation(ResourcePolicyExecution.FAILED, failed.text, failed.line)
        return Evaluation(ResourcePolicyExecution.PASSED)

    def __call__(self, resource: Resource) -> ResourcePolicyExecution:
        return self.evaluate(resource).execution

    def __repr__(self) -> str:
        return f"CompiledPolicy(name={self.name!r}, resource={self.resource_name!r})"


# -- binding -----------------------------------------------------------------

class _Binder:
    def __init__(self, context: CompilationContext, descriptor: ResourceDescriptor) -> None:
        self._context = context
        self._descriptor = descriptor

    def bind(self, document: PolicyDocument) -> List[BoundStatement]:
        bound: List[BoundStatement] = []
        for statement in document.statements:
            expression = self._bind_expression(statement.expression)
            if expression is not None:
                bound.append(
                    BoundStatement(
                        text=str(statement), line=statement.position.line, expression=expression
                    )
                )
        return bound

    def _bind_expression(self, expression: Expression) -> Optional[BoundExpression]:
        if isinstance(expression, Conjunction):
            terms = [self._bind_expression(term) for term in expression.terms]
            if any(term is None for term in terms):
                return None
            return BoundConjunction(terms=tuple(terms))  # type: ignore[arg-type]
        return self._bind_comparison(expression)

    def _lookup(self, path: PropertyPath) -> Optional[PropertyDescriptor]:
        prop = self._descriptor.get_property(path.name)
        if prop is None:
            message = f"Unknown property '{path.name}' on resource '{self._descriptor.name}'"
            suggestions = difflib.get_close_matches(path.name, self._descriptor.property_names, n=1)
            if suggestions:
                message += f"; did you mean '{suggestions[0]}'?"
            self._context.error("PA2001", message, path.position)
        return prop

    def _bind_comparison(self, node: Comparison) -> Optional[BoundComparison]:
        left = self._lookup(node.left)
        right_prop = self._lookup(node.right) if isinstance(node.right, PropertyPath) else None
        if left is None or (isinstance(node.right, PropertyPath) and right_prop is None):
            return None

        operator = node.operator
        if operator not in ALLOWED_OPERATORS[left.type]:
            self._context.error(
                "PA2002",
                f"Operator '{operator}' cannot be applied to {left.type.value} property '{left.name}'",
                node.position,
            )
            return None

        right: Optional[_Operand]
        if right_prop is not None:
            right = self._bind_path_operand(left, operator, right_prop, node.right.position)
        else:
            right = self._bind_literal(left, operator, node.right)  # type: ignore[arg-type]
        if right is None:
            return None
        return BoundComparison(
            text=str(node), line=node.position.line, left=_PropertyRead(left), operator=operator, right=right
        )

    def _bind_path_operand(
        self, left: PropertyDescriptor, operator: str, right: PropertyDescriptor, position: SourcePosition
    ) -> Optional[_PropertyRead]:
        if operator == "in":
            compatible = left.type is PropertyType.STRING and right.type is PropertyType.STRING_SET
        elif operator == "contains":
            compatible = right.type is PropertyType.STRING
        else:
            compatible = left.type is right.type
        if not compatible:
            self._context.error(
                "PA2005",
                f"Cannot compare {left.type.value} property '{left.name}' with "
                f"{right.type.value} property '{right.name}' using '{operator}'",
                position,
            )
            return None
        return _PropertyRead(right)

    def _bind_literal(self, left: PropertyDescriptor, operator: str, literal: Literal) -> Optional[_Constant]:
        if literal.value is None:
            if operator not in EQUALITY_OPERATORS:
                self._context.error(
                    "PA2004", "null can only be compared using '==' or '!='", literal.position
                )
                return None
            return _Constant(None)

        if operator == "in":
            if not literal.is_list:
                self._type_error(left, operator, literal, "a list")
                return None
            items = [self._coerce_scalar(left, operator, item) for item in literal.value]  # type: ignore[union-attr]
            if any(item is None for item in items):
                return None
            return _Constant(frozenset(item.value for item in items))  # type: ignore[union-attr]

        if operator == "contains":
            if literal.kind != "string":
                self._type_error(left, operator, literal, "a string")
                return None
            return _Constant(literal.value)

        if left.type is PropertyType.STRING_SET:
            if not literal.is_list or any(item.kind != "string" for item in literal.value):  # type: ignore[union-attr]
                self._type_error(left, operator, literal, "a list of strings")
                return None
            return _Constant(frozenset(item.value for item in literal.value))  # type: ignore[union-attr]

        return self._coerce_scalar(left, operator, literal)

    def _coerce_scalar(self, left: PropertyDescriptor, operator: str, literal: Literal) -> Optional[_Constant]:
        kind = literal.kind
        ptype = left.type
        if ptype is PropertyType.STRING and kind == "string":
            return _Constant(literal.value)
        if ptype is PropertyType.NUMBER:
            if kind == "number":
                return _Constant(literal.value)
            if kind == "string":
                try:
                    value = _parse_number(str(literal.value).strip())
                except ValueError:
                    pass
                else:
                    self._context.warning(
                        "PA2101",
                        f"String literal {literal} was converted to the number {value} "
                        f"to match property '{left.name}'",
                        literal.position,
                    )
                    return _Constant(value)
        if ptype is PropertyType.BOOLEAN:
            if kind == "boolean":
                return _Constant(literal.value)
            if kind == "string" and str(literal.value).lower() in _TRUE_STRINGS:
                value = _TRUE_STRINGS[str(literal.value).lower()]
                self._context.warning(
                    "PA2102",
                    f"String literal {literal} was converted to {str(value).lower()} "
                    f"to match property '{left.name}'",
                    literal.position,
                )
                return _Constant(value)
        expected = {
            PropertyType.STRING: "a string",
            PropertyType.NUMBER: "a number",
            PropertyType.BOOLEAN: "true or false",
            PropertyType.STRING_SET: "a list of strings",
        }[ptype]
        self._type_error(left, operator, literal, expected)
        return None

    def _type_error(self, left: PropertyDescriptor, operator: str, literal: Literal, expected: str) -> None:
        self._context.error(
            "PA2003",
            f"Cannot compare {left.type.value} property '{left.name}' with {literal.kind} "
            f"{literal} using '{operator}'; expected {expected}",
            literal.position,
        )


# -- entry points ------------------------------------------------------------

def _finish(context: CompilationContext, document: PolicyDocument, descriptor: ResourceDescriptor) -> CompilationContext:
    statements = _Binder(context, descriptor).bind(document)
    if not context.has_errors:
        context.predicate = CompiledPolicy(context.unit.name, descriptor, statements)
    return context


def compile_policy(unit: CompilationUnit, descriptor: ResourceDescriptor) -> CompilationContext:
    """Compile *unit* against an explicit resource descriptor."""

    context = CompilationContext(unit)
    document = parse(context)
    if document is None:
        return context
    if document.resource != descriptor.name:
        context.error(
            "PA2006",
            f"Policy targets resource '{document.resource}' but was compiled for '{descriptor.name}'",
            document.resource_position,
        )
        return context
    return _finish(context, document, descriptor)


class PolicyCompiler:
    """Compiles policies against a provider's resource catalog."""

    def __init__(self, resources: Mapping[str, ResourceDescriptor]) -> None:
        self._resources = resources

    def compile(self, unit: CompilationUnit) -> CompilationContext:
        context = CompilationContext(unit)
        document = parse(context)
        if document is None:
            return context

        descriptor = self._resources.get(document.resource)
        if descriptor is None:
            message = f"Unknown resource '{document.resource}'"
            suggestions = difflib.get_close_matches(document.resource, sorted(self._resources), n=1)
            if suggestions:
                message += f"; did you mean '{suggestions[0]}'?"
            context.error("PA2007", message, document.resource_position)
            return context
        return _finish(context, document, descriptor)


__all__ = [
    "ALLOWED_OPERATORS",
    "CompiledPolicy",
    "Evaluation",
    "PolicyCompiler",
    "PropertyCoercionError",
    "ResourcePolicyExecution",
    "coerce_value",
    "compile_policy",
]
