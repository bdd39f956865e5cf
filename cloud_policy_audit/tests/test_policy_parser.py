"""Tests for the policy lexer and parser."""

from __future__ import annotations

import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


from cloud_policy_audit.policies.compilation import CompilationContext, CompilationUnit
from cloud_policy_audit.policies.lexer import TokenKind, tokenize
from cloud_policy_audit.policies.parser import parse
from cloud_policy_audit.policies.syntax import Comparison, Conjunction, PropertyPath


def _context(source: str) -> CompilationContext:
    return CompilationContext(CompilationUnit.from_text(source, "test.policy"))


def _codes(context: CompilationContext) -> list:
    return [diagnostic.code for diagnostic in context.diagnostics]


def test_tokenize_reads_longest_operator_first() -> None:
    """Multi-character operators are not split into shorter ones."""

    context = _context('input.A !~= "x" <= >= && # trailing comment')
    tokens = tokenize(context)

    kinds = [token.kind for token in tokens]
    texts = [token.text for token in tokens]
    assert kinds[-1] is TokenKind.EOF
    assert texts[:-1] == ["input", ".", "A", "!~=", '"x"', "<=", ">=", "&&"]
    assert not context.diagnostics


def test_tokenize_tracks_lines_and_columns() -> None:
    """Token positions are 1-based and advance across newlines."""

    tokens = tokenize(_context('resource "X"\n  validate'))

    validate = tokens[2]
    assert validate.text == "validate"
    assert (validate.position.line, validate.position.column) == (2, 3)


def test_tokenize_decodes_string_escapes_and_numbers() -> None:
    """String escapes are decoded and numbers keep their numeric type."""

    tokens = tokenize(_context(r'"a\"b\n" 42 -1.5 1e3'))

    assert tokens[0].value == 'a"b\n'
    assert tokens[1].value == 42 and isinstance(tokens[1].value, int)
    assert tokens[2].value == -1.5
    assert tokens[3].value == 1000.0


def test_tokenize_reports_bad_input() -> None:
    """Unexpected characters, bad escapes and unterminated strings are diagnostics."""

    context = _context('$ "a\\q" "open')
    tokenize(context)

    assert _codes(context) == ["PA1001", "PA1003", "PA1002"]


def test_parse_builds_statements_with_conjunctions() -> None:
    """Each statement becomes a comparison or a conjunction of comparisons."""

    context = _context(
        'resource "AwsS3Bucket"\n'
        "validate {\n"
        "    # comment line\n"
        "    input.IsEncrypted == true\n"
        '    input.Name != "logs" && (input.VersioningStatus in ["Enabled", "Suspended"])\n'
        "}\n"
    )
    document = parse(context)

    assert not context.diagnostics
    assert document is not None
    assert document.resource == "AwsS3Bucket"
    assert len(document.statements) == 2

    first = document.statements[0].expression
    assert isinstance(first, Comparison)
    assert first.left == PropertyPath("IsEncrypted", first.left.position)
    assert first.right.value is True
    assert first.position.line == 4

    second = document.statements[1].expression
    assert isinstance(second, Conjunction)
    assert [term.operator for term in second.terms] == ["!=", "in"]
    assert str(second) == 'input.Name != "logs" && input.VersioningStatus in ["Enabled", "Suspended"]'


def test_parse_rejects_malformed_header() -> None:
    """A missing resource name stops parsing with an expected-token error."""

    context = _context("resource validate { input.A == 1 }")

    assert parse(context) is None
    assert _codes(context) == ["PA1010"]


def test_parse_reports_empty_block() -> None:
    """A validate block needs at least one statement."""

    context = _context('resource "X" validate { }')
    document = parse(context)

    assert document is not None
    assert _codes(context) == ["PA1012"]


def test_parse_reports_missing_closing_brace() -> None:
    """Running out of input before '}' is reported at the end of the file."""

    context = _context('resource "X" validate {\n  input.A == 1\n')
    parse(context)

    assert _codes(context) == ["PA1011"]
    assert context.diagnostics[0].position.line == 3


def test_parse_recovers_after_a_bad_statement() -> None:
    """A malformed statement does not hide errors in the following ones."""

    context = _context(
        'resource "X"\n'
        "validate {\n"
        "    input.A 1\n"
        "    input.B == 2\n"
        '    "x" == input.C\n'
        "    input.D == \n"
        "}\n"
    )
    document = parse(context)

    assert document is not None
    assert _codes(context) == ["PA1014", "PA1013", "PA1017"]
    assert [str(statement) for statement in document.statements] == ["input.B == 2"]
    assert [diagnostic.position.line for diagnostic in context.diagnostics] == [3, 5, 7]


def test_parse_reports_unclosed_parenthesis_and_list() -> None:
    """Missing ')' and ']' carry their own codes."""

    context = _context('resource "X" validate {\n (input.A == 1\n input.B in [1, 2\n}')
    parse(context)

    assert _codes(context) == ["PA1016", "PA1018"]


def test_parse_reports_trailing_tokens() -> None:
    """Text after the validate block is an error."""

    context = _context('resource "X" validate { input.A == 1 } extra')
    parse(context)

    assert _codes(context) == ["PA1015"]
