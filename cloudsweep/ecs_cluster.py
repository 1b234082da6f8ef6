"""ECS clusters: first-seen tagging, filtering and deletion."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, ClassVar, Iterator, Sequence

from cloudsweep.core import (
    FIRST_SEEN_TAG_KEY,
    AwsSession,
    Config,
    Resource,
    logger,
    should_include,
    split,
)

#: Only clusters in this state can be tagged, so only these are considered.
ACTIVE_ECS_CLUSTER_STATUS = "ACTIVE"

#: Most clusters accepted by one DescribeClusters call.
DESCRIBE_CLUSTERS_BATCH_SIZE = 100

_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})"
)


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.astimezone()


def format_timestamp_tag(timestamp: datetime) -> str:
    """Format as RFC 3339 to the second; a naive time is taken as local time."""
    moment = _aware(timestamp).replace(microsecond=0)
    if moment.utcoffset() == timedelta(0):
        return moment.strftime("%Y-%m-%dT%H:%M:%S") + "Z"
    return moment.isoformat()


def parse_timestamp_tag(timestamp: str) -> datetime:
    """Parse an RFC 3339 timestamp; raise ValueError when it is malformed."""
    match = _RFC3339.fullmatch(timestamp)
    if match is None:
        logger.error("Error parsing the timestamp into a `RFC3339` Time format")
        raise ValueError(f"invalid RFC 3339 timestamp: {timestamp!r}")
    year, month, day, hour, minute, second = (int(match.group(i)) for i in range(1, 7))
    micro = int((match.group(7) or "0")[:6].ljust(6, "0"))
    zone = match.group(8)
    if zone.upper() == "Z":
        tz = timezone.utc
    else:
        sign = -1 if zone[0] == "-" else 1
        offset = timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6]))
        tz = timezone(sign * offset)
    try:
        return datetime(year, month, day, hour, minute, second, micro, tzinfo=tz)
    except ValueError:
        logger.error("Error parsing the timestamp into a `RFC3339` Time format")
        raise


def _iter_cluster_arns(client: Any) -> Iterator[str]:
    kwargs: dict[str, str] = {}
    while True:
        page = client.list_clusters(**kwargs)
        yield from page.get("clusterArns", [])
        token = page.get("nextToken")
        if not token:
            return
        kwargs = {"nextToken": token}


def should_include_ecs_cluster(cluster: dict | None, config: Config) -> bool:
    """Tell whether a cluster is active and passes the name filters."""
    if cluster is None:
        return False
    logger.debug(
        "Status for ECS Cluster %s is %s", cluster.get("clusterArn"), cluster.get("status")
    )
    if cluster.get("status") != ACTIVE_ECS_CLUSTER_STATUS:
        return False
    rules = config.ecs_cluster
    return should_include(
        cluster.get("clusterName", ""),
        rules.include_rule.names_regexp,
        rules.exclude_rule.names_regexp,
    )


def get_all_active_ecs_cluster_arns(session: AwsSession, config: Config) -> list[str]:
    """ARNs of the active clusters that pass the name filters."""
    client = session.client("ecs")
    selected: list[str] = []
    for batch in split(_iter_cluster_arns(client), DESCRIBE_CLUSTERS_BATCH_SIZE):
        try:
            described = client.describe_clusters(clusters=batch)
        except Exception:
            logger.error("Error describing ECS clusters from input %s", batch)
            raise
        selected.extend(
            cluster["clusterArn"]
            for cluster in described.get("clusters", [])
            if should_include_ecs_cluster(cluster, config)
        )
    return selected


def tag_ecs_cluster_when_first_seen(
    session: AwsSession, cluster_arn: str, timestamp: datetime
) -> None:
    """Record ``timestamp`` as the time the cluster was first seen."""
    client = session.client("ecs")
    client.tag_resource(
        resourceArn=cluster_arn,
        tags=[{"key": FIRST_SEEN_TAG_KEY, "value": format_timestamp_tag(timestamp)}],
    )


def get_first_seen_ecs_cluster_tag(session: AwsSession, cluster_arn: str) -> datetime | None:
    """The first-seen time of a cluster, or None when it was never tagged."""
    client = session.client("ecs")
    try:
        result = client.list_tags_for_resource(resourceArn=cluster_arn)
    except Exception:
        logger.error("Error getting the tags for ECS cluster with ARN %s", cluster_arn)
        raise
    for tag in result.get("tags", []):
        if tag.get("key") == FIRST_SEEN_TAG_KEY:
            try:
                return parse_timestamp_tag(tag.get("value", ""))
            except ValueError:
                logger.error(
                    "Error parsing the `%s` tag for ECS cluster with ARN %s",
                    FIRST_SEEN_TAG_KEY,
                    cluster_arn,
                )
                raise
    return None


def get_all_ecs_clusters_older_than(
    session: AwsSession, exclude_after: datetime, config: Config
) -> list[str]:
    """ARNs of active clusters first seen before ``exclude_after``.

    Clusters seen for the first time are tagged now and left out.
    """
    selected: list[str] = []
    for arn in get_all_active_ecs_cluster_arns(session, config):
        first_seen = get_first_seen_ecs_cluster_tag(session, arn)
        if first_seen is None:
            tag_ecs_cluster_when_first_seen(session, arn, datetime.now(timezone.utc))
        elif _aware(exclude_after) > first_seen:
            selected.append(arn)
    return selected


def nuke_ecs_clusters(session: AwsSession, cluster_arns: Sequence[str]) -> None:
    """Delete the given clusters, stopping at the first failure."""
    arns = list(cluster_arns)
    region = session.region
    if not arns:
        logger.info("No ECS clusters to nuke in region %s", region)
        return

    client = session.client("ecs")
    logger.info("Deleting %d ECS clusters in region %s", len(arns), region)
    nuked = 0
    for arn in arns:
        try:
            client.delete_cluster(cluster=arn)
        except Exception:
            logger.error("Error, failed to delete cluster with ARN %s", arn)
            raise
        logger.info("Success, deleted cluster: %s", arn)
        nuked += 1

    logger.info("[OK] %d of %d ECS cluster(s) deleted in %s", nuked, len(arns), region)


@dataclass
class ECSClusters(Resource):
    """ECS clusters found in one region."""

    resource_name: ClassVar[str] = "ecscluster"
    # No documented limit exists; 100 is a safe maximum.
    max_batch_size: ClassVar[int] = 100

    def nuke(self, session: AwsSession, identifiers: list[str]) -> None:
        nuke_ecs_clusters(session, identifiers)