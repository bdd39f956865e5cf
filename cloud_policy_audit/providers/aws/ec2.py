"""Explorers for Amazon EC2 and VPC networking resources."""
from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

import boto3
from botocore.client import BaseClient
from botocore.exceptions import ClientError, EndpointConnectionError

from ...resources import (
    Resource,
    ResourceDescriptor,
    boolean_property,
    number_property,
    string_property,
    string_set_property,
)
from ...utils import batch_iterable, raise_if_cancelled, safe_paginate
from .. import ProgressCallback
from . import register_explorer, tag_values

logger = logging.getLogger(__name__)

VOLUME_BATCH_SIZE = 200  # describe_volumes allows up to 500 IDs
INTERNET_CIDRS = frozenset({"0.0.0.0/0", "::/0"})

ROUTE_TABLE = ResourceDescriptor(
    name="AwsRouteTable",
    provider="AWS",
    description="VPC route table",
    properties=(
        string_property("RouteTableId"),
        string_property("VpcId"),
        string_property("OwnerId"),
        string_property("Region"),
        string_property("Name", "Value of the Name tag"),
        string_set_property("Tags", "Tags as Key=Value pairs"),
        string_set_property("TagKeys"),
        boolean_property("IsMain", "Route table is the VPC's main route table"),
        string_set_property("SubnetIds", "Explicitly associated subnets"),
        number_property("RouteCount"),
        string_set_property("DestinationCidrs"),
        boolean_property("HasInternetGatewayRoute"),
        boolean_property("HasNatGatewayRoute"),
        boolean_property("HasDefaultRoute", "Route to 0.0.0.0/0 or ::/0"),
        boolean_property("HasBlackholeRoute"),
    ),
)

SECURITY_GROUP = ResourceDescriptor(
    name="AwsSecurityGroup",
    provider="AWS",
    description="VPC security group",
    properties=(
        string_property("GroupId"),
        string_property("GroupName"),
        string_property("Description"),
        string_property("VpcId"),
        string_property("OwnerId"),
        string_property("Region"),
        string_property("Name", "Value of the Name tag"),
        string_set_property("Tags", "Tags as Key=Value pairs"),
        string_set_property("TagKeys"),
        number_property("IngressRuleCount"),
        number_property("EgressRuleCount"),
        string_set_property("IngressCidrs"),
        boolean_property("OpenToInternet", "Any inbound rule allows 0.0.0.0/0 or ::/0"),
        string_set_property("InternetOpenPorts", "protocol/port ranges open to the internet"),
        boolean_property("AllowsSshFromInternet"),
        boolean_property("AllowsRdpFromInternet"),
        boolean_property("AllowsAllTrafficFromInternet"),
    ),
)

EC2_INSTANCE = ResourceDescriptor(
    name="AwsEc2Instance",
    provider="AWS",
    description="EC2 instance",
    properties=(
        string_property("InstanceId"),
        string_property("InstanceType"),
        string_property("State"),
        string_property("ImageId"),
        string_property("VpcId"),
        string_property("SubnetId"),
        string_property("Region"),
        string_property("AvailabilityZone"),
        string_property("Name", "Value of the Name tag"),
        string_set_property("Tags", "Tags as Key=Value pairs"),
        string_set_property("TagKeys"),
        string_property("PrivateIpAddress"),
        string_property("PublicIpAddress"),
        boolean_property("HasPublicIp"),
        string_property("IamInstanceProfileArn"),
        boolean_property("HasIamInstanceProfile"),
        string_property("MetadataHttpTokens", "'required' when IMDSv2 is enforced"),
        boolean_property("EbsOptimized"),
        string_property("MonitoringState"),
        string_set_property("SecurityGroupIds"),
        string_property("LaunchTime", "ISO 8601 timestamp"),
        number_property("CpuCoreCount"),
        string_set_property("VolumeIds"),
        boolean_property("HasUnencryptedVolumes"),
    ),
)


def _ec2_client(session: boto3.session.Session, region: str) -> BaseClient:
    return session.client("ec2", region_name=region)


@register_explorer(ROUTE_TABLE, "describe route tables")
def discover_route_tables(
    session: boto3.session.Session,
    region: str,
    progress: ProgressCallback,
    cancel: Optional[threading.Event],
) -> List[Resource]:
    """Describe route tables in *region*."""

    ec2 = _ec2_client(session, region)
    resources: List[Resource] = []
    for table in safe_paginate(ec2, "describe_route_tables", "RouteTables", cancel=cancel):
        name, pairs, keys = tag_values(table.get("Tags"))
        associations = table.get("Associations", [])
        routes = table.get("Routes", [])
        destinations = [
            route.get("DestinationCidrBlock") or route.get("DestinationIpv6CidrBlock") or route.get("DestinationPrefixListId")
            for route in routes
        ]
        destinations = [destination for destination in destinations if destination]
        resources.append(
            ROUTE_TABLE.create(
                table["RouteTableId"],
                {
                    "RouteTableId": table["RouteTableId"],
                    "VpcId": table.get("VpcId"),
                    "OwnerId": table.get("OwnerId"),
                    "Region": region,
                    "Name": name,
                    "Tags": pairs,
                    "TagKeys": keys,
                    "IsMain": any(assoc.get("Main", False) for assoc in associations),
                    "SubnetIds": [assoc["SubnetId"] for assoc in associations if assoc.get("SubnetId")],
                    "RouteCount": len(routes),
                    "DestinationCidrs": destinations,
                    "HasInternetGatewayRoute": any(
                        str(route.get("GatewayId", "")).startswith("igw-") for route in routes
                    ),
                    "HasNatGatewayRoute": any(route.get("NatGatewayId") for route in routes),
                    "HasDefaultRoute": any(destination in INTERNET_CIDRS for destination in destinations),
                    "HasBlackholeRoute": any(route.get("State") == "blackhole" for route in routes),
                },
                region=region,
            )
        )
    progress(f"Found {len(resources)} route tables in {region}")
    return resources


def _permission_cidrs(permission: dict) -> List[str]:
    cidrs = [ip_range.get("CidrIp") for ip_range in permission.get("IpRanges", [])]
    cidrs.extend(ip_range.get("CidrIpv6") for ip_range in permission.get("Ipv6Ranges", []))
    return [cidr for cidr in cidrs if cidr]


def _permission_label(permission: dict) -> str:
    proto = str(permission.get("IpProtocol", "-1"))
    if proto == "-1":
        return "all"
    from_port = permission.get("FromPort")
    to_port = permission.get("ToPort")
    if from_port is None or from_port == -1:
        return f"{proto}/*"
    if from_port == to_port or to_port is None:
        return f"{proto}/{from_port}"
    return f"{proto}/{from_port}-{to_port}"


def _permission_covers(permission: dict, port: int) -> bool:
    """Return ``True`` when *permission* admits TCP traffic on *port*."""

    proto = str(permission.get("IpProtocol", "-1"))
    if proto == "-1":
        return True
    if proto not in ("tcp", "6"):
        return False
    from_port = permission.get("FromPort")
    to_port = permission.get("ToPort")
    if from_port is None or from_port == -1:
        return True
    return from_port <= port <= (to_port if to_port is not None else from_port)


@register_explorer(SECURITY_GROUP, "describe security groups")
def discover_security_groups(
    session: boto3.session.Session,
    region: str,
    progress: ProgressCallback,
    cancel: Optional[threading.Event],
) -> List[Resource]:
    """Describe security groups in *region* and summarise internet exposure."""

    ec2 = _ec2_client(session, region)
    resources: List[Resource] = []
    for sg in safe_paginate(ec2, "describe_security_groups", "SecurityGroups", cancel=cancel):
        name, pairs, keys = tag_values(sg.get("Tags"))
        ingress = sg.get("IpPermissions", [])
        egress = sg.get("IpPermissionsEgress", [])

        ingress_cidrs: List[str] = []
        open_permissions: List[dict] = []
        for permission in ingress:
            cidrs = _permission_cidrs(permission)
            ingress_cidrs.extend(cidrs)
            if INTERNET_CIDRS.intersection(cidrs):
                open_permissions.append(permission)

        resources.append(
            SECURITY_GROUP.create(
                sg["GroupId"],
                {
                    "GroupId": sg["GroupId"],
                    "GroupName": sg.get("GroupName"),
                    "Description": sg.get("Description"),
                    "VpcId": sg.get("VpcId"),
                    "OwnerId": sg.get("OwnerId"),
                    "Region": region,
                    "Name": name,
                    "Tags": pairs,
                    "TagKeys": keys,
                    "IngressRuleCount": len(ingress),
                    "EgressRuleCount": len(egress),
                    "IngressCidrs": ingress_cidrs,
                    "OpenToInternet": bool(open_permissions),
                    "InternetOpenPorts": [_permission_label(p) for p in open_permissions],
                    "AllowsSshFromInternet": any(_permission_covers(p, 22) for p in open_permissions),
                    "AllowsRdpFromInternet": any(_permission_covers(p, 3389) for p in open_permissions),
                    "AllowsAllTrafficFromInternet": any(
                        str(p.get("IpProtocol", "-1")) == "-1" for p in open_permissions
                    ),
                },
                region=region,
            )
        )
    progress(f"Found {len(resources)} security groups in {region}")
    return resources


@register_explorer(EC2_INSTANCE, "describe EC2 instances")
def discover_instances(
    session: boto3.session.Session,
    region: str,
    progress: ProgressCallback,
    cancel: Optional[threading.Event],
) -> List[Resource]:
    """Describe EC2 instances in *region* including EBS encryption state."""

    ec2 = _ec2_client(session, region)
    instances: List[dict] = []
    for reservation in safe_paginate(ec2, "describe_instances", "Reservations", cancel=cancel):
        instances.extend(reservation.get("Instances", []))

    volume_ids: List[str] = []
    for instance in instances:
        volume_ids.extend(_instance_volume_ids(instance))
    progress(f"Checking encryption of {len(volume_ids)} EBS volumes in {region}")
    volume_cache = _describe_volume_encryption(ec2, list(dict.fromkeys(volume_ids)), cancel)

    resources: List[Resource] = []
    for instance in instances:
        instance_id = instance["InstanceId"]
        name, pairs, keys = tag_values(instance.get("Tags"))
        instance_volumes = _instance_volume_ids(instance)
        profile_arn = (instance.get("IamInstanceProfile") or {}).get("Arn")
        launch_time = instance.get("LaunchTime")
        properties = {
            "InstanceId": instance_id,
            "InstanceType": instance.get("InstanceType"),
            "State": (instance.get("State") or {}).get("Name"),
            "ImageId": instance.get("ImageId"),
            "VpcId": instance.get("VpcId"),
            "SubnetId": instance.get("SubnetId"),
            "Region": region,
            "AvailabilityZone": (instance.get("Placement") or {}).get("AvailabilityZone"),
            "Name": name,
            "Tags": pairs,
            "TagKeys": keys,
            "PrivateIpAddress": instance.get("PrivateIpAddress"),
            "PublicIpAddress": instance.get("PublicIpAddress"),
            "HasPublicIp": bool(instance.get("PublicIpAddress")),
            "IamInstanceProfileArn": profile_arn,
            "HasIamInstanceProfile": profile_arn is not None,
            "MetadataHttpTokens": (instance.get("MetadataOptions") or {}).get("HttpTokens"),
            "EbsOptimized": bool(instance.get("EbsOptimized", False)),
            "MonitoringState": (instance.get("Monitoring") or {}).get("State"),
            "SecurityGroupIds": [
                group["GroupId"] for group in instance.get("SecurityGroups", []) if group.get("GroupId")
            ],
            "LaunchTime": launch_time.isoformat() if hasattr(launch_time, "isoformat") else launch_time,
            "CpuCoreCount": (instance.get("CpuOptions") or {}).get("CoreCount"),
            "VolumeIds": instance_volumes,
        }
        # Volumes whose encryption state could not be read leave the property
        # unset so policies referencing it report an evaluation error.
        if all(volume_id in volume_cache for volume_id in instance_volumes):
            properties["HasUnencryptedVolumes"] = any(
                not volume_cache[volume_id] for volume_id in instance_volumes
            )
        resources.append(EC2_INSTANCE.create(instance_id, properties, region=region))
    progress(f"Found {len(resources)} EC2 instances in {region}")
    return resources


def _instance_volume_ids(instance: dict) -> List[str]:
    volume_ids = []
    for mapping in instance.get("BlockDeviceMappings", []):
        ebs = mapping.get("Ebs")
        if not ebs:
            continue
        volume_id = ebs.get("VolumeId")
        if volume_id:
            volume_ids.append(volume_id)
    return list(dict.fromkeys(volume_ids))


def _describe_volume_encryption(
    ec2: BaseClient, volume_ids: List[str], cancel: Optional[threading.Event]
) -> Dict[str, bool]:
    """Return encryption status keyed by volume id for ``volume_ids``."""

    volume_cache: Dict[str, bool] = {}
    for batch in batch_iterable(volume_ids, VOLUME_BATCH_SIZE):
        raise_if_cancelled(cancel)
        try:
            response = ec2.describe_volumes(VolumeIds=list(batch))
        except (ClientError, EndpointConnectionError) as exc:
            logger.warning("Failed to describe %d EBS volumes: %s", len(batch), exc)
            continue

        for volume in response.get("Volumes", []):
            volume_id = volume.get("VolumeId")
            if volume_id:
                volume_cache[volume_id] = volume.get("Encrypted", False)
    return volume_cache


__all__ = [
    "EC2_INSTANCE",
    "ROUTE_TABLE",
    "SECURITY_GROUP",
    "discover_instances",
    "discover_route_tables",
    "discover_security_groups",
]
