"""Tests for reporting helpers, settings and the command line interface."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


import pytest

from cloud_policy_audit import cli
from cloud_policy_audit.config import MAX_WORKERS_LIMIT, Settings
from cloud_policy_audit.core import (
    EXIT_ERRORS,
    EXIT_FAILED_RESOURCES,
    EXIT_INVALID,
    EXIT_OK,
    exit_code_for,
    export_failed_resources_to_excel,
    format_outcome_json,
    print_descriptor,
    print_outcome,
)
from cloud_policy_audit.logging_config import setup_logging
from cloud_policy_audit.providers.aws.s3 import S3_BUCKET
from cloud_policy_audit.results import FailedResource, PolicyError, ResourcePolicyExecution, RunOutcome
from cloud_policy_audit.suite import load_policy_suite


def _failed(resource_id: str = "logs") -> FailedResource:
    return FailedResource(
        policy="s3.policy",
        resource_type="AwsS3Bucket",
        resource_id=resource_id,
        region="eu-west-1",
        execution=ResourcePolicyExecution.FAILED,
        detail="input.IsEncrypted == true",
        element="Storage",
    )


def test_exit_codes_prefer_errors_over_failures() -> None:
    """Errors map to 2, failed resources to 3 and a clean run to 0."""

    error = PolicyError(kind="discovery", policy="s3.policy", message="denied", region="eu-west-1")

    assert exit_code_for(RunOutcome(errors=[], failed_resources=[])) == EXIT_OK
    assert exit_code_for(RunOutcome(errors=[], failed_resources=[_failed()])) == EXIT_FAILED_RESOURCES
    assert exit_code_for(RunOutcome(errors=[error], failed_resources=[_failed()])) == EXIT_ERRORS


def test_outcome_json_uses_report_field_names() -> None:
    """The JSON report lists errors and failed resources with camelCase keys."""

    outcome = RunOutcome(errors=[], failed_resources=[_failed()])

    document = json.loads(format_outcome_json(outcome))

    assert document == {
        "errors": [],
        "failedResources": [
            {
                "policy": "s3.policy",
                "element": "Storage",
                "region": "eu-west-1",
                "resourceType": "AwsS3Bucket",
                "resourceId": "logs",
                "result": "Failed",
                "detail": "input.IsEncrypted == true",
            }
        ],
    }


def test_print_outcome_table(capsys: pytest.CaptureFixture[str]) -> None:
    """The table report lists errors first, then failed resources."""

    error = PolicyError(kind="compile", policy="bad.policy", message="Policy failed to compile")
    print_outcome(RunOutcome(errors=[error], failed_resources=[_failed()], evaluated=4))

    out = capsys.readouterr().out
    assert "1 policies could not run:" in out
    assert "[compile] bad.policy: Policy failed to compile" in out
    assert "AwsS3Bucket:logs" in out
    assert "Evaluated 4 resources; 1 did not pass." in out


def test_print_descriptor_lists_properties(capsys: pytest.CaptureFixture[str]) -> None:
    """Descriptor introspection prints property names with their types."""

    print_descriptor(S3_BUCKET)

    out = capsys.readouterr().out
    assert out.splitlines()[0] == "Available properties for input 'AwsS3Bucket':"
    assert "  - IsEncrypted (boolean)" in out


def test_settings_from_env() -> None:
    """Environment variables configure workers, logging and AWS defaults."""

    settings = Settings.from_env(
        {
            "CLOUD_POLICY_MAX_WORKERS": "100",
            "CLOUD_POLICY_LOG_LEVEL": "info",
            "AWS_PROFILE": "audit",
            "AWS_DEFAULT_REGION": "eu-west-1",
        }
    )

    assert settings == Settings(
        max_workers=MAX_WORKERS_LIMIT, log_level="INFO", aws_profile="audit", aws_default_region="eu-west-1"
    )
    assert Settings.from_env({}) == Settings()
    assert settings.with_overrides(max_workers=0, log_level="debug").max_workers == 1
    with pytest.raises(ValueError):
        Settings.from_env({"CLOUD_POLICY_MAX_WORKERS": "many"})


def test_setup_logging_installs_single_handler() -> None:
    """Logging setup is idempotent unless forced."""

    logger = logging.getLogger("cloud_policy_audit.tests.logging")
    setup_logging("debug", logger=logger)
    setup_logging("info", logger=logger)

    assert len(logger.handlers) == 1
    assert logger.level == logging.DEBUG

    setup_logging("error", logger=logger, force=True)
    assert len(logger.handlers) == 1
    assert logger.level == logging.ERROR


def test_init_creates_policy_and_refuses_overwrite(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """``init`` writes a template once and then refuses to overwrite it."""

    target = tmp_path / "new.policy"

    assert cli.main(["init", str(target), "--resource", "AwsS3Bucket"]) == EXIT_OK
    assert target.read_text(encoding="utf-8").startswith('resource "AwsS3Bucket"')

    assert cli.main(["init", str(target), "--resource", "AwsS3Bucket"]) == EXIT_INVALID
    assert "already exists" in capsys.readouterr().err


def test_init_suite_writes_loadable_document(tmp_path: Path) -> None:
    """``init --suite`` writes a JSON suite that loads back."""

    target = tmp_path / "my.suite"

    assert cli.main(["init", str(target), "--suite"]) == EXIT_OK
    assert load_policy_suite(target).policies[0].type == "AWS"


def test_compile_command_prints_diagnostics(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """``compile`` prints positioned diagnostics and exits non-zero on errors."""

    policy = tmp_path / "bad.policy"
    policy.write_text('resource "AwsS3Bucket"\nvalidate {\n    input.IsEncryted == true\n}\n', encoding="utf-8")

    assert cli.main(["compile", str(policy)]) == EXIT_ERRORS
    out = capsys.readouterr().out
    assert f"{policy}(3,11): error PA2001:" in out
    assert "did you mean 'IsEncrypted'" in out

    policy.write_text('resource "AwsS3Bucket"\nvalidate {\n    input.IsEncrypted == "true"\n}\n', encoding="utf-8")
    assert cli.main(["compile", str(policy)]) == EXIT_OK
    assert "warning PA2102" in capsys.readouterr().out


def test_validate_command_reports_invalid_suite(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """``validate`` lists every violation and exits with 1."""

    suite = tmp_path / "bad.suite"
    suite.write_text(
        json.dumps({"name": "Bad", "policies": [{"type": "AWS", "regions": ["nowhere"], "policies": []}]}),
        encoding="utf-8",
    )

    assert cli.main(["validate", str(suite)]) == EXIT_INVALID
    err = capsys.readouterr().err
    assert "'nowhere' is not a valid AWS region." in err
    assert "at least one policy file is required." in err


def test_validate_builtin_suite(capsys: pytest.CaptureFixture[str]) -> None:
    """The packaged suite is valid as shipped."""

    assert cli.main(["validate", "builtin/aws-best-practices.suite"]) == EXIT_OK
    assert "is valid" in capsys.readouterr().out


def test_run_rejects_unknown_extension(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """Sources must be ``.policy`` or ``.suite`` files."""

    source = tmp_path / "rules.txt"
    source.write_text("", encoding="utf-8")

    assert cli.main(["run", str(source)]) == EXIT_INVALID
    assert "must end with either '.policy' or '.suite'" in capsys.readouterr().err


def test_resources_command_lists_catalog(capsys: pytest.CaptureFixture[str]) -> None:
    """``resources`` lists kinds and describes a single kind on request."""

    assert cli.main(["resources"]) == EXIT_OK
    out = capsys.readouterr().out
    assert "  - AwsS3Bucket - S3 bucket located in the region" in out
    assert "builtin/aws-best-practices.suite" in out

    assert cli.main(["resources", "AwsSecurityGroup"]) == EXIT_OK
    assert "AllowsSshFromInternet (boolean)" in capsys.readouterr().out

    assert cli.main(["resources", "AwsNothing"]) == EXIT_INVALID


def test_export_failed_resources_to_excel(tmp_path: Path) -> None:
    """Failed resources are written sorted under a frozen header row."""

    openpyxl = pytest.importorskip("openpyxl")
    target = tmp_path / "failed.xlsx"

    written = export_failed_resources_to_excel([_failed("logs"), _failed("assets")], str(target))

    assert written == str(target)
    sheet = openpyxl.load_workbook(target).active
    rows = [list(row) for row in sheet.iter_rows(values_only=True)]
    assert sheet.title == "Failed Resources"
    assert sheet.freeze_panes == "A2"
    assert rows[0] == ["Policy", "Element", "Region", "Resource Type", "Resource ID", "Result", "Detail"]
    assert [row[4] for row in rows[1:]] == ["assets", "logs"]
    assert rows[1][5] == "Failed"
