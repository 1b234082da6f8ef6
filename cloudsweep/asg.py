"""Auto Scaling Groups: discovery, filtering and deletion."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar, Sequence

from cloudsweep.core import AwsSession, Config, Resource, ServiceError, logger, should_include


def get_all_auto_scaling_groups(
    session: AwsSession, exclude_after: datetime, config: Config
) -> list[str]:
    """Names of the groups in the session's region that should be deleted."""
    client = session.client("autoscaling")
    result = client.describe_auto_scaling_groups()
    return [
        group["AutoScalingGroupName"]
        for group in result.get("AutoScalingGroups", [])
        if should_include_auto_scaling_group(group, exclude_after, config)
    ]


def should_include_auto_scaling_group(
    group: dict | None, exclude_after: datetime, config: Config
) -> bool:
    """Tell whether a group passes the time and name filters."""
    if group is None:
        return False
    created = group.get("CreatedTime")
    if created is not None and exclude_after < created:
        return False
    rules = config.auto_scaling_group
    return should_include(
        group.get("AutoScalingGroupName", ""),
        rules.include_rule.names_regexp,
        rules.exclude_rule.names_regexp,
    )


def nuke_all_auto_scaling_groups(session: AwsSession, group_names: Sequence[str]) -> None:
    """Force-delete the given groups and wait until they are gone."""
    if not group_names:
        logger.info("No Auto Scaling Groups to nuke in region %s", session.region)
        return

    client = session.client("autoscaling")
    logger.info("Deleting all Auto Scaling Groups in region %s", session.region)

    deleted: list[str] = []
    for name in group_names:
        try:
            client.delete_auto_scaling_group(AutoScalingGroupName=name, ForceDelete=True)
        except ServiceError as err:
            logger.error("[Failed] %s", err)
        else:
            deleted.append(name)
            logger.info("Deleted Auto Scaling Group: %s", name)

    if deleted:
        try:
            client.get_waiter("group_not_exists").wait(AutoScalingGroupNames=deleted)
        except Exception as err:
            logger.error("[Failed] %s", err)
            raise

    logger.info("[OK] %d Auto Scaling Group(s) deleted in %s", len(deleted), session.region)


@dataclass
class ASGroups(Resource):
    """Auto Scaling Groups found in one region."""

    resource_name: ClassVar[str] = "asg"
    max_batch_size: ClassVar[int] = 200

    def nuke(self, session: AwsSession, identifiers: list[str]) -> None:
        nuke_all_auto_scaling_groups(session, identifiers)