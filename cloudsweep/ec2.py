"""EC2 instances, default VPCs and default security group rules."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, ClassVar, Iterable, Sequence

from cloudsweep.core import AwsSession, Config, Resource, ServiceError, logger, should_include

SessionFactory = Callable[[str], AwsSession]

_LIVE_INSTANCE_STATES = ["running", "pending", "stopped", "stopping"]
_PERMISSION_NOT_FOUND = "InvalidPermission.NotFound"

#: How often, and how far apart, VPC endpoints are checked after deletion.
ENDPOINT_DELETE_ATTEMPTS = 30
ENDPOINT_DELETE_INTERVAL = 20.0


class VPCEndpointDeleteTimeoutError(Exception):
    """Raised when VPC endpoints are still being deleted after all checks."""

    def __init__(self) -> None:
        super().__init__("Timed out waiting for VPC endpoints to be successfully deleted")


def get_ec2_resource_name_tag_value(tags: Iterable[dict] | None) -> str:
    """Return the value of the ``Name`` tag; raise LookupError when there is none."""
    values = {tag.get("Key", ""): tag.get("Value", "") for tag in tags or ()}
    try:
        return values["Name"]
    except KeyError:
        raise LookupError("Resource does not have Name tag") from None


def _name_or_empty(tags: Iterable[dict] | None) -> str:
    try:
        return get_ec2_resource_name_tag_value(tags)
    except LookupError:
        return ""


def should_include_instance_id(
    instance: dict | None, exclude_after: datetime, protected: bool, config: Config
) -> bool:
    """Tell whether an instance is old enough, unprotected and passes the name filters."""
    if instance is None:
        return False
    if exclude_after < instance["LaunchTime"]:
        return False
    if protected:
        return False
    rules = config.ec2
    return should_include(
        _name_or_empty(instance.get("Tags")),
        rules.include_rule.names_regexp,
        rules.exclude_rule.names_regexp,
    )


def filter_out_protected_instances(
    client: Any, reservations: Iterable[dict], exclude_after: datetime, config: Config
) -> list[str]:
    """IDs of the instances in ``reservations`` that are not termination-protected."""
    selected = []
    for reservation in reservations:
        for instance in reservation.get("Instances", []):
            instance_id = instance["InstanceId"]
            attr = client.describe_instance_attribute(
                Attribute="disableApiTermination", InstanceId=instance_id
            )
            protected = bool(attr["DisableApiTermination"]["Value"])
            if should_include_instance_id(instance, exclude_after, protected, config):
                selected.append(instance_id)
    return selected


def get_all_ec2_instances(
    session: AwsSession, exclude_after: datetime, config: Config
) -> list[str]:
    """IDs of the live, unprotected instances that should be terminated."""
    client = session.client("ec2")
    output = client.describe_instances(
        Filters=[{"Name": "instance-state-name", "Values": list(_LIVE_INSTANCE_STATES)}]
    )
    return filter_out_protected_instances(
        client, output.get("Reservations", []), exclude_after, config
    )


def nuke_all_ec2_instances(session: AwsSession, instance_ids: Sequence[str]) -> None:
    """Terminate the given instances and wait until they are terminated."""
    ids = list(instance_ids)
    if not ids:
        logger.info("No EC2 instances to nuke in region %s", session.region)
        return

    client = session.client("ec2")
    logger.info("Terminating all EC2 instances in region %s", session.region)
    try:
        client.terminate_instances(InstanceIds=ids)
    except Exception as err:
        logger.error("[Failed] %s", err)
        raise

    wait_error: Exception | None = None
    try:
        client.get_waiter("instance_terminated").wait(
            Filters=[{"Name": "instance-id", "Values": ids}]
        )
    except Exception as err:
        wait_error = err

    for instance_id in ids:
        logger.info("Terminated EC2 Instance: %s", instance_id)

    if wait_error is not None:
        logger.error("[Failed] %s", wait_error)
        raise wait_error

    logger.info("[OK] %d instance(s) terminated in %s", len(ids), session.region)


@dataclass
class EC2Instances(Resource):
    """EC2 instances found in one region."""

    resource_name: ClassVar[str] = "ec2"
    max_batch_size: ClassVar[int] = 200

    def nuke(self, session: AwsSession, identifiers: list[str]) -> None:
        nuke_all_ec2_instances(session, identifiers)


@dataclass
class Vpc:
    """A VPC in a region, together with the EC2 client used to delete it."""

    region: str
    vpc_id: str = ""
    client: Any = field(default=None, repr=False, compare=False)

    def _vpc_filter(self) -> dict:
        return {"Name": "vpc-id", "Values": [self.vpc_id]}

    def _nuke_internet_gateway(self) -> None:
        result = self.client.describe_internet_gateways(
            Filters=[{"Name": "attachment.vpc-id", "Values": [self.vpc_id]}]
        )
        gateways = result.get("InternetGateways", [])
        if len(gateways) != 1:
            logger.info("...no Internet Gateway found")
            return
        gateway_id = gateways[0]["InternetGatewayId"]
        logger.info("...detaching Internet Gateway %s", gateway_id)
        self.client.detach_internet_gateway(InternetGatewayId=gateway_id, VpcId=self.vpc_id)
        logger.info("...deleting Internet Gateway %s", gateway_id)
        self.client.delete_internet_gateway(InternetGatewayId=gateway_id)

    def _nuke_endpoints(self) -> None:
        result = self.client.describe_vpc_endpoints(Filters=[self._vpc_filter()])
        endpoint_ids = [e["VpcEndpointId"] for e in result.get("VpcEndpoints", [])]
        for endpoint_id in endpoint_ids:
            logger.info("...deleting VPC endpoint %s", endpoint_id)
        if not endpoint_ids:
            logger.info("...no endpoints found")
            return
        self.client.delete_vpc_endpoints(VpcEndpointIds=endpoint_ids)
        self._wait_for_endpoints_deleted()

    def _wait_for_endpoints_deleted(self) -> None:
        filters = [self._vpc_filter(), {"Name": "vpc-endpoint-state", "Values": ["deleting"]}]
        for _ in range(ENDPOINT_DELETE_ATTEMPTS):
            result = self.client.describe_vpc_endpoints(Filters=filters)
            if not result.get("VpcEndpoints"):
                return
            time.sleep(ENDPOINT_DELETE_INTERVAL)
            logger.debug("Waiting for VPC endpoints to be deleted...")
        raise VPCEndpointDeleteTimeoutError()

    def _nuke_subnets(self) -> None:
        result = self.client.describe_subnets(Filters=[self._vpc_filter()])
        subnets = result.get("Subnets", [])
        if not subnets:
            logger.info("...no subnets found")
            return
        for subnet in subnets:
            logger.info("...deleting subnet %s", subnet["SubnetId"])
            self.client.delete_subnet(SubnetId=subnet["SubnetId"])

    def _nuke_route_tables(self) -> None:
        result = self.client.describe_route_tables(Filters=[self._vpc_filter()])
        for table in result.get("RouteTables", []):
            associations = table.get("Associations") or []
            if associations and associations[0].get("Main"):
                continue
            logger.info("...deleting route table %s", table["RouteTableId"])
            self.client.delete_route_table(RouteTableId=table["RouteTableId"])

    def _nuke_nacls(self) -> None:
        result = self.client.describe_network_acls(
            Filters=[{"Name": "default", "Values": ["false"]}, self._vpc_filter()]
        )
        for acl in result.get("NetworkAcls", []):
            logger.info("...deleting Network ACL %s", acl["NetworkAclId"])
            self.client.delete_network_acl(NetworkAclId=acl["NetworkAclId"])

    def _nuke_security_groups(self) -> None:
        result = self.client.describe_security_groups(Filters=[self._vpc_filter()])
        for group in result.get("SecurityGroups", []):
            logger.info("...deleting Security Group %s", group["GroupId"])
            if group.get("GroupName") != "default":
                self.client.delete_security_group(GroupId=group["GroupId"])

    def _nuke_vpc(self) -> None:
        logger.info("...deleting VPC %s", self.vpc_id)
        self.client.delete_vpc(VpcId=self.vpc_id)

    def nuke(self) -> None:
        """Delete the VPC after removing everything that depends on it."""
        logger.info("Nuking VPC %s in region %s", self.vpc_id, self.region)
        steps = [
            (self._nuke_internet_gateway, "Internet Gateway"),
            (self._nuke_endpoints, "Endpoints"),
            (self._nuke_subnets, "Subnets"),
            (self._nuke_route_tables, "Route Tables"),
            (self._nuke_nacls, "Network ACLs"),
            (self._nuke_security_groups, "Security Groups"),
        ]
        for step, what in steps:
            try:
                step()
            except Exception as err:
                logger.error("Error cleaning up %s for VPC %s: %s", what, self.vpc_id, err)
                raise
        try:
            self._nuke_vpc()
        except Exception as err:
            logger.info("Error deleting VPC %s: %s ", self.vpc_id, err)
            raise


def new_vpc_per_region(session_factory: SessionFactory, regions: Iterable[str]) -> list[Vpc]:
    """One VPC handle per region, holding an EC2 client but no VPC id yet."""
    return [Vpc(region=region, client=session_factory(region).client("ec2")) for region in regions]


def get_default_vpc_id(vpc: Vpc) -> str:
    """ID of the default VPC in the handle's region, or "" when there is none."""
    try:
        result = vpc.client.describe_vpcs(Filters=[{"Name": "isDefault", "Values": ["true"]}])
    except Exception as err:
        logger.error("[Failed] %s", err)
        raise
    vpcs = result.get("Vpcs", [])
    if len(vpcs) > 1:
        raise RuntimeError(f"Impossible - more than one default VPC found in region {vpc.region}")
    return vpcs[0].get("VpcId", "") if vpcs else ""


def get_default_vpcs(vpcs: Iterable[Vpc]) -> list[Vpc]:
    """The default VPCs of the given handles' regions, with their ids filled in."""
    found = []
    for vpc in vpcs:
        vpc_id = get_default_vpc_id(vpc)
        if vpc_id:
            found.append(replace(vpc, vpc_id=vpc_id))
    return found


def nuke_vpcs(vpcs: Iterable[Vpc]) -> None:
    """Delete each VPC; a failure moves on to the next one."""
    for vpc in vpcs:
        try:
            vpc.nuke()
        except Exception:
            logger.error("Skipping to the next default VPC")
    logger.info("Finished nuking default VPCs in all regions")


@dataclass
class DefaultSecurityGroup:
    """A default security group whose default rules are to be revoked."""

    group_name: str
    group_id: str
    region: str
    client: Any = field(default=None, repr=False, compare=False)

    def ingress_rule(self) -> dict:
        """Arguments revoking the default self-referencing ingress rule."""
        return {
            "GroupId": self.group_id,
            "IpPermissions": [
                {
                    "IpProtocol": "-1",
                    "FromPort": 0,
                    "ToPort": 0,
                    "UserIdGroupPairs": [{"GroupId": self.group_id}],
                }
            ],
        }

    def egress_rule(self) -> dict:
        """Arguments revoking the default allow-all egress rule."""
        return {
            "GroupId": self.group_id,
            "IpPermissions": [
                {
                    "IpProtocol": "-1",
                    "FromPort": 0,
                    "ToPort": 0,
                    "IpRanges": [{"CidrIp": "0.0.0.0/0"}],
                }
            ],
        }

    def nuke(self) -> None:
        """Revoke the default rules; rules already absent are fine."""
        logger.info("...revoking default rules from Security Group %s", self.group_id)
        if self.group_name != "default":
            return
        try:
            self.client.revoke_security_group_ingress(**self.ingress_rule())
        except ServiceError as err:
            if err.code != _PERMISSION_NOT_FOUND:
                raise RuntimeError(f"error deleting ingress rule: {err}") from err
            logger.info("Egress rule not present (ok)")
        try:
            self.client.revoke_security_group_egress(**self.egress_rule())
        except ServiceError as err:
            if err.code != _PERMISSION_NOT_FOUND:
                raise RuntimeError(f"error deleting eggress rule: {err}") from err
            logger.info("Ingress rule not present (ok)")


def describe_default_security_groups(client: Any) -> list[str]:
    """IDs of the security groups named ``default``."""
    result = client.describe_security_groups()
    return [
        group["GroupId"]
        for group in result.get("SecurityGroups", [])
        if group.get("GroupName") == "default"
    ]


def get_default_security_groups(
    session_factory: SessionFactory, regions: Iterable[str]
) -> list[DefaultSecurityGroup]:
    """The default security groups of every given region."""
    groups = []
    for region in regions:
        client = session_factory(region).client("ec2")
        for group_id in describe_default_security_groups(client):
            groups.append(
                DefaultSecurityGroup(
                    group_name="default", group_id=group_id, region=region, client=client
                )
            )
    return groups


def nuke_default_security_group_rules(sgs: Iterable[DefaultSecurityGroup]) -> None:
    """Revoke default rules in each group; a failure moves on to the next one."""
    for sg in sgs:
        try:
            sg.nuke()
        except Exception as err:
            logger.error("Error: %s", err)
            logger.error("Skipping to the next default Security Group")
    logger.info("Finished nuking default Security Groups in all regions")