"""Explorer for Amazon S3 buckets."""
from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

import boto3
from botocore.client import BaseClient
from botocore.exceptions import ClientError, EndpointConnectionError

from ...resources import Resource, ResourceDescriptor, boolean_property, string_property
from ...utils import error_code, raise_if_cancelled
from .. import ProgressCallback
from . import register_explorer

logger = logging.getLogger(__name__)

PUBLIC_ACCESS_FLAGS = (
    "BlockPublicAcls",
    "IgnorePublicAcls",
    "BlockPublicPolicy",
    "RestrictPublicBuckets",
)
PUBLIC_GRANTEE_SUFFIXES = ("AllUsers", "AuthenticatedUsers")

S3_BUCKET = ResourceDescriptor(
    name="AwsS3Bucket",
    provider="AWS",
    description="S3 bucket located in the region",
    properties=(
        string_property("Name"),
        string_property("Region"),
        string_property("CreationDate", "ISO 8601 timestamp"),
        boolean_property("BlockPublicAcls"),
        boolean_property("IgnorePublicAcls"),
        boolean_property("BlockPublicPolicy"),
        boolean_property("RestrictPublicBuckets"),
        boolean_property("IsPublicAccessBlocked", "All four public access block flags are set"),
        boolean_property("HasPublicAclGrant", "ACL grants AllUsers or AuthenticatedUsers"),
        boolean_property("IsEncrypted"),
        string_property("EncryptionAlgorithm", "Default SSE algorithm, e.g. AES256 or aws:kms"),
        string_property("VersioningStatus", "Enabled, Suspended or Disabled"),
    ),
)


def bucket_region(location_constraint: Optional[str]) -> str:
    """Map a ``LocationConstraint`` to a region name."""

    if not location_constraint:
        return "us-east-1"
    if location_constraint == "EU":
        return "eu-west-1"
    return location_constraint


@register_explorer(S3_BUCKET, "list S3 buckets")
def discover_buckets(
    session: boto3.session.Session,
    region: str,
    progress: ProgressCallback,
    cancel: Optional[threading.Event],
) -> List[Resource]:
    """Return the buckets located in *region*.

    Buckets are listed globally and filtered by location.  A bucket attribute
    that cannot be read is left out of the resource so that policies relying on
    it evaluate to an error instead of a silent pass or fail.
    """

    s3 = session.client("s3", region_name=region)
    buckets = s3.list_buckets().get("Buckets", [])

    resources: List[Resource] = []
    for bucket in buckets:
        raise_if_cancelled(cancel)
        name = bucket["Name"]
        try:
            location = s3.get_bucket_location(Bucket=name).get("LocationConstraint")
        except (ClientError, EndpointConnectionError) as exc:
            logger.warning("Skipping bucket %s: unable to determine its region: %s", name, exc)
            continue
        if bucket_region(location) != region:
            continue

        created = bucket.get("CreationDate")
        properties: Dict[str, Any] = {
            "Name": name,
            "Region": region,
            "CreationDate": created.isoformat() if hasattr(created, "isoformat") else created,
        }
        properties.update(_public_access_block(s3, name))
        properties.update(_acl_exposure(s3, name))
        properties.update(_encryption(s3, name))
        properties.update(_versioning(s3, name))
        resources.append(S3_BUCKET.create(name, properties, region=region))

    progress(f"Found {len(resources)} S3 buckets in {region}")
    return resources


def _public_access_block(s3: BaseClient, name: str) -> Dict[str, Any]:
    try:
        response = s3.get_public_access_block(Bucket=name)
    except (ClientError, EndpointConnectionError) as exc:
        if error_code(exc) == "NoSuchPublicAccessBlockConfiguration":
            config: Dict[str, Any] = {}
        else:
            logger.warning("Failed to retrieve public access block for %s: %s", name, exc)
            return {}
    else:
        config = response.get("PublicAccessBlockConfiguration", {})

    values = {flag: bool(config.get(flag, False)) for flag in PUBLIC_ACCESS_FLAGS}
    values["IsPublicAccessBlocked"] = all(values.values())
    return values


def _acl_exposure(s3: BaseClient, name: str) -> Dict[str, Any]:
    try:
        acl = s3.get_bucket_acl(Bucket=name)
    except (ClientError, EndpointConnectionError) as exc:
        logger.warning("Failed to retrieve bucket ACL for %s: %s", name, exc)
        return {}

    public = False
    for grant in acl.get("Grants", []):
        uri = grant.get("Grantee", {}).get("URI", "")
        if uri.endswith(PUBLIC_GRANTEE_SUFFIXES):
            public = True
            break
    return {"HasPublicAclGrant": public}


def _encryption(s3: BaseClient, name: str) -> Dict[str, Any]:
    try:
        response = s3.get_bucket_encryption(Bucket=name)
    except (ClientError, EndpointConnectionError) as exc:
        if error_code(exc) == "ServerSideEncryptionConfigurationNotFoundError":
            return {"IsEncrypted": False, "EncryptionAlgorithm": None}
        logger.warning("Failed to retrieve encryption settings for %s: %s", name, exc)
        return {}

    rules = response.get("ServerSideEncryptionConfiguration", {}).get("Rules", [])
    algorithm = None
    for rule in rules:
        default = rule.get("ApplyServerSideEncryptionByDefault", {})
        if default.get("SSEAlgorithm"):
            algorithm = default["SSEAlgorithm"]
            break
    return {"IsEncrypted": algorithm is not None, "EncryptionAlgorithm": algorithm}


def _versioning(s3: BaseClient, name: str) -> Dict[str, Any]:
    try:
        response = s3.get_bucket_versioning(Bucket=name)
    except (ClientError, EndpointConnectionError) as exc:
        logger.warning("Failed to retrieve versioning for %s: %s", name, exc)
        return {}
    return {"VersioningStatus": response.get("Status") or "Disabled"}


__all__ = ["S3_BUCKET", "bucket_region", "discover_buckets"]
