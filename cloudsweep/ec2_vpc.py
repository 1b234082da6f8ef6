"""Non-default VPCs: first-seen tagging, filtering and deletion."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Iterable, Sequence

from cloudsweep.core import (
    FIRST_SEEN_TAG_KEY,
    AwsSession,
    Config,
    Resource,
    logger,
    should_include,
)
from cloudsweep.ec2 import Vpc, get_ec2_resource_name_tag_value
from cloudsweep.ecs_cluster import format_timestamp_tag, parse_timestamp_tag


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.astimezone()


def set_first_seen_vpc_tag(client: Any, vpc: dict, key: str, value: datetime) -> None:
    """Tag ``vpc`` with the time it was first seen, since VPCs carry no creation time."""
    client.create_tags(
        Resources=[vpc["VpcId"]],
        Tags=[{"Key": key, "Value": format_timestamp_tag(value)}],
    )


def get_first_seen_vpc_tag(vpc: dict, key: str) -> datetime | None:
    """The time stored under tag ``key``, or None when the tag is absent.

    Raises ValueError when the tag holds a malformed timestamp.
    """
    for tag in vpc.get("Tags") or []:
        if tag.get("Key") == key:
            return parse_timestamp_tag(tag.get("Value", ""))
    return None


def _vpc_name(vpc: dict) -> str:
    try:
        return get_ec2_resource_name_tag_value(vpc.get("Tags"))
    except LookupError:
        return ""


def should_include_vpc(
    vpc: dict | None, exclude_after: datetime, first_seen_time: datetime, config: Config
) -> bool:
    """Tell whether a VPC was first seen early enough and passes the name filters."""
    if vpc is None:
        return False
    if _aware(exclude_after) < _aware(first_seen_time):
        return False
    rules = config.vpc
    return should_include(
        _vpc_name(vpc),
        rules.include_rule.names_regexp,
        rules.exclude_rule.names_regexp,
    )


def get_all_vpcs(
    session: AwsSession, exclude_after: datetime, config: Config
) -> tuple[list[str], list[Vpc]]:
    """IDs and handles of the non-default VPCs that should be deleted.

    VPCs seen for the first time are tagged with the current time.
    """
    client = session.client("ec2")
    # Default VPCs are handled separately.
    result = client.describe_vpcs(Filters=[{"Name": "is-default", "Values": ["false"]}])

    ids: list[str] = []
    vpcs: list[Vpc] = []
    for vpc in result.get("Vpcs", []):
        try:
            first_seen = get_first_seen_vpc_tag(vpc, FIRST_SEEN_TAG_KEY)
        except ValueError:
            logger.error("Unable to retrieve tags")
            raise
        if first_seen is None:
            first_seen = datetime.now(timezone.utc)
            set_first_seen_vpc_tag(client, vpc, FIRST_SEEN_TAG_KEY, first_seen)

        if should_include_vpc(vpc, exclude_after, first_seen, config):
            ids.append(vpc["VpcId"])
            vpcs.append(Vpc(region=session.region, vpc_id=vpc["VpcId"], client=client))
    return ids, vpcs


def nuke_all_vpcs(vpc_ids: Sequence[str], vpcs: Iterable[Vpc]) -> int:
    """Delete each VPC; failures are logged and skipped.

    Returns the number of VPCs deleted.
    """
    if not vpc_ids:
        logger.info("No VPCs to nuke")
        return 0

    logger.info("Deleting all VPCs")
    deleted = 0
    for vpc in vpcs:
        try:
            vpc.nuke()
        except Exception as err:
            logger.error("[Failed] %s", err)
        else:
            deleted += 1
            logger.info("Deleted VPC: %s", vpc.vpc_id)

    logger.info("[OK] %d VPC terminated", deleted)
    return deleted


@dataclass
class EC2VPCs(Resource):
    """Non-default VPCs found in one region."""

    vpcs: list[Vpc] = field(default_factory=list)

    resource_name: ClassVar[str] = "vpc"
    max_batch_size: ClassVar[int] = 200

    def nuke(self, session: AwsSession, identifiers: list[str]) -> None:
        nuke_all_vpcs(identifiers, self.vpcs)