"""Tests for the AWS provider and its explorers using :mod:`botocore.stub`."""

from __future__ import annotations

import sys
import threading
from datetime import datetime, timezone
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


import boto3
import pytest
from botocore.stub import Stubber

from cloud_policy_audit.config import Settings
from cloud_policy_audit.errors import DiscoveryError, OperationCancelled
from cloud_policy_audit.policies.builtin import load_compilation_unit
from cloud_policy_audit.policies.compiler import PolicyCompiler, ResourcePolicyExecution
from cloud_policy_audit.providers import create_providers
from cloud_policy_audit.providers.aws import AwsCloudProvider, tag_values
from cloud_policy_audit.providers.aws.ec2 import EC2_INSTANCE, ROUTE_TABLE, SECURITY_GROUP
from cloud_policy_audit.providers.aws.s3 import S3_BUCKET, bucket_region
from cloud_policy_audit.resources import ResourceDescriptor, string_property


REGION = "eu-west-1"


class StubbedSession:
    """Session stand-in handing out one pre-stubbed client."""

    def __init__(self, client) -> None:
        self._client = client

    def client(self, service_name: str, region_name: str = None):
        return self._client


def _client(service: str):
    return boto3.client(
        service,
        region_name=REGION,
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


def _provider(client) -> AwsCloudProvider:
    return AwsCloudProvider(Settings(), session_factory=lambda profile, region: StubbedSession(client))


def _builtin_policy(name: str):
    compiler = PolicyCompiler(AwsCloudProvider().get_resources())
    context = compiler.compile(load_compilation_unit(f"builtin/{name}.policy"))
    assert context.predicate is not None
    return context.predicate


def test_route_tables_are_summarised() -> None:
    """Route table associations, routes and tags become typed properties."""

    ec2 = _client("ec2")
    stubber = Stubber(ec2)
    stubber.add_response(
        "describe_route_tables",
        {
            "RouteTables": [
                {
                    "RouteTableId": "rtb-1",
                    "VpcId": "vpc-1",
                    "OwnerId": "123456789012",
                    "Associations": [
                        {"Main": True, "RouteTableAssociationId": "rtbassoc-1"},
                        {"Main": False, "RouteTableAssociationId": "rtbassoc-2", "SubnetId": "subnet-1"},
                    ],
                    "Routes": [
                        {"DestinationCidrBlock": "10.0.0.0/16", "GatewayId": "local", "State": "active"},
                        {"DestinationCidrBlock": "0.0.0.0/0", "GatewayId": "igw-1", "State": "active"},
                    ],
                    "Tags": [{"Key": "Name", "Value": "public"}, {"Key": "env", "Value": "prod"}],
                }
            ]
        },
    )

    with stubber:
        resources = _provider(ec2).discover_resources(REGION, ROUTE_TABLE, progress=lambda message: None)

    assert len(resources) == 1
    table = resources[0]
    assert table.id == "rtb-1"
    assert table.region == REGION
    assert table.read("Name") == "public"
    assert table.read("IsMain") is True
    assert table.read("SubnetIds") == ["subnet-1"]
    assert table.read("RouteCount") == 2
    assert table.read("HasInternetGatewayRoute") is True
    assert table.read("HasDefaultRoute") is True
    assert table.read("Tags") == ["Name=public", "env=prod"]
    assert _builtin_policy("aws-route-table-named")(table) is ResourcePolicyExecution.PASSED


def test_security_groups_flag_internet_exposure() -> None:
    """Inbound rules open to 0.0.0.0/0 drive the exposure properties."""

    ec2 = _client("ec2")
    stubber = Stubber(ec2)
    stubber.add_response(
        "describe_security_groups",
        {
            "SecurityGroups": [
                {
                    "GroupId": "sg-1",
                    "GroupName": "web",
                    "Description": "web tier",
                    "VpcId": "vpc-1",
                    "OwnerId": "123456789012",
                    "IpPermissions": [
                        {
                            "IpProtocol": "tcp",
                            "FromPort": 20,
                            "ToPort": 25,
                            "IpRanges": [{"CidrIp": "0.0.0.0/0"}],
                        },
                        {
                            "IpProtocol": "tcp",
                            "FromPort": 443,
                            "ToPort": 443,
                            "IpRanges": [{"CidrIp": "10.0.0.0/8"}],
                        },
                    ],
                    "IpPermissionsEgress": [{"IpProtocol": "-1", "IpRanges": [{"CidrIp": "0.0.0.0/0"}]}],
                }
            ]
        },
    )

    with stubber:
        resources = _provider(ec2).discover_resources(REGION, SECURITY_GROUP, progress=lambda message: None)

    group = resources[0]
    assert group.read("OpenToInternet") is True
    assert group.read("InternetOpenPorts") == ["tcp/20-25"]
    assert group.read("AllowsSshFromInternet") is True
    assert group.read("AllowsRdpFromInternet") is False
    assert group.read("AllowsAllTrafficFromInternet") is False
    assert group.read("IngressCidrs") == ["0.0.0.0/0", "10.0.0.0/8"]

    evaluation = _builtin_policy("aws-security-group-admin-ports").evaluate(group)
    assert evaluation.execution is ResourcePolicyExecution.FAILED
    assert evaluation.detail == "input.AllowsSshFromInternet == false"


def test_instances_include_volume_encryption() -> None:
    """Instances are joined with the encryption state of their EBS volumes."""

    ec2 = _client("ec2")
    stubber = Stubber(ec2)
    stubber.add_response(
        "describe_instances",
        {
            "Reservations": [
                {
                    "Instances": [
                        {
                            "InstanceId": "i-1",
                            "InstanceType": "t3.micro",
                            "State": {"Code": 16, "Name": "running"},
                            "MetadataOptions": {"HttpTokens": "required"},
                            "IamInstanceProfile": {"Arn": "arn:aws:iam::123456789012:instance-profile/app", "Id": "AIPA1"},
                            "SecurityGroups": [{"GroupId": "sg-1", "GroupName": "web"}],
                            "BlockDeviceMappings": [
                                {"DeviceName": "/dev/xvda", "Ebs": {"VolumeId": "vol-1"}},
                                {"DeviceName": "/dev/xvdb", "Ebs": {"VolumeId": "vol-2"}},
                            ],
                        }
                    ]
                }
            ]
        },
    )
    stubber.add_response(
        "describe_volumes",
        {"Volumes": [{"VolumeId": "vol-1", "Encrypted": True}, {"VolumeId": "vol-2", "Encrypted": False}]},
        {"VolumeIds": ["vol-1", "vol-2"]},
    )

    with stubber:
        resources = _provider(ec2).discover_resources(REGION, EC2_INSTANCE, progress=lambda message: None)

    instance = resources[0]
    assert instance.read("State") == "running"
    assert instance.read("VolumeIds") == ["vol-1", "vol-2"]
    assert instance.read("HasUnencryptedVolumes") is True
    assert instance.read("HasIamInstanceProfile") is True
    assert instance.read("SecurityGroupIds") == ["sg-1"]
    assert _builtin_policy("aws-ec2-instance-hardening")(instance) is ResourcePolicyExecution.PASSED


def test_buckets_are_filtered_by_region() -> None:
    """Only buckets located in the requested region are returned."""

    s3 = _client("s3")
    stubber = Stubber(s3)
    created = datetime(2024, 1, 1, tzinfo=timezone.utc)
    stubber.add_response(
        "list_buckets",
        {"Buckets": [{"Name": "logs", "CreationDate": created}, {"Name": "other", "CreationDate": created}]},
    )
    stubber.add_response("get_bucket_location", {"LocationConstraint": REGION}, {"Bucket": "logs"})
    stubber.add_client_error(
        "get_public_access_block",
        service_error_code="NoSuchPublicAccessBlockConfiguration",
        http_status_code=404,
        expected_params={"Bucket": "logs"},
    )
    stubber.add_response(
        "get_bucket_acl",
        {
            "Grants": [
                {
                    "Grantee": {"Type": "Group", "URI": "http://acs.amazonaws.com/groups/global/AllUsers"},
                    "Permission": "READ",
                }
            ]
        },
        {"Bucket": "logs"},
    )
    stubber.add_response(
        "get_bucket_encryption",
        {
            "ServerSideEncryptionConfiguration": {
                "Rules": [{"ApplyServerSideEncryptionByDefault": {"SSEAlgorithm": "AES256"}}]
            }
        },
        {"Bucket": "logs"},
    )
    stubber.add_response("get_bucket_versioning", {"Status": "Enabled"}, {"Bucket": "logs"})
    stubber.add_response("get_bucket_location", {"LocationConstraint": "us-west-2"}, {"Bucket": "other"})

    with stubber:
        resources = _provider(s3).discover_resources(REGION, S3_BUCKET, progress=lambda message: None)
        stubber.assert_no_pending_responses()

    assert [bucket.id for bucket in resources] == ["logs"]
    bucket = resources[0]
    assert bucket.read("IsPublicAccessBlocked") is False
    assert bucket.read("HasPublicAclGrant") is True
    assert bucket.read("IsEncrypted") is True
    assert bucket.read("EncryptionAlgorithm") == "AES256"
    assert bucket.read("VersioningStatus") == "Enabled"
    assert bucket.read("CreationDate") == "2024-01-01T00:00:00+00:00"

    evaluation = _builtin_policy("aws-s3-bucket-protection").evaluate(bucket)
    assert evaluation.execution is ResourcePolicyExecution.FAILED
    assert evaluation.detail == "input.IsPublicAccessBlocked == true"


def test_client_errors_become_discovery_errors() -> None:
    """AWS API faults surface as :class:`DiscoveryError` naming the action and region."""

    ec2 = _client("ec2")
    stubber = Stubber(ec2)
    stubber.add_client_error(
        "describe_security_groups",
        service_error_code="UnauthorizedOperation",
        service_message="You are not authorized",
        http_status_code=403,
    )

    with stubber, pytest.raises(DiscoveryError) as excinfo:
        _provider(ec2).discover_resources(REGION, SECURITY_GROUP, progress=lambda message: None)

    assert str(excinfo.value).startswith(f"Failed to describe security groups in {REGION}:")
    assert "UnauthorizedOperation" in str(excinfo.value)


def test_cancelled_discovery_makes_no_calls() -> None:
    """A set cancellation signal stops discovery before any session is created."""

    cancel = threading.Event()
    cancel.set()
    sessions = []
    provider = AwsCloudProvider(Settings(), session_factory=lambda profile, region: sessions.append(region))

    with pytest.raises(OperationCancelled):
        provider.discover_resources(REGION, S3_BUCKET, progress=lambda message: None, cancel=cancel)
    assert sessions == []


def test_unknown_resource_kind_is_rejected() -> None:
    """Descriptors without a registered explorer cannot be discovered."""

    unknown = ResourceDescriptor(name="AwsLambda", provider="AWS", properties=(string_property("Name"),))

    with pytest.raises(KeyError):
        AwsCloudProvider().discover_resources(REGION, unknown)


def test_provider_catalog_and_regions() -> None:
    """The AWS provider is registered and exposes its catalog without discovery."""

    providers = create_providers(Settings(aws_default_region="eu-central-1"))
    aws = providers["AWS"]

    assert set(aws.get_resources()) == {"AwsEc2Instance", "AwsRouteTable", "AwsS3Bucket", "AwsSecurityGroup"}
    assert aws.get_default_regions() == ["eu-central-1"]
    assert aws.is_valid_region("us-east-1")
    assert aws.is_valid_region("eu-west-9")
    assert not aws.is_valid_region("mars-north-1")


def test_bucket_region_and_tag_helpers() -> None:
    """Legacy location constraints and tag lists are normalised."""

    assert bucket_region(None) == "us-east-1"
    assert bucket_region("EU") == "eu-west-1"
    assert bucket_region("ap-south-1") == "ap-south-1"
    assert tag_values([{"Key": "Name", "Value": "web"}, {"Key": "team"}]) == (
        "web",
        ["Name=web", "team="],
        ["Name", "team"],
    )
    assert tag_values(None) == (None, [], [])
