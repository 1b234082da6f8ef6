"""Collecting the resources of an account across regions, and deleting them."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Sequence

from cloudsweep.access_analyzer import AccessAnalyzers, get_all_access_analyzers
from cloudsweep.acmpca import ACMPCA, get_all_acmpca
from cloudsweep.ami import AMIs, get_all_amis
from cloudsweep.asg import ASGroups, get_all_auto_scaling_groups
from cloudsweep.cloudwatch_dashboard import (
    CloudWatchDashboards,
    get_all_cloudwatch_dashboards,
)
from cloudsweep.cloudwatch_loggroup import (
    CloudWatchLogGroups,
    get_all_cloudwatch_log_groups,
)
from cloudsweep.core import AwsSession, Config, Resource, logger, split
from cloudsweep.dynamodb import DynamoDB, get_all_dynamo_tables
from cloudsweep.ebs import EBSVolumes, get_all_ebs_volumes
from cloudsweep.ec2 import EC2Instances, get_all_ec2_instances
from cloudsweep.ec2_vpc import EC2VPCs, get_all_vpcs
from cloudsweep.ecs_cluster import ECSClusters, get_all_ecs_clusters_older_than
from cloudsweep.regions import DEFAULT_REGION, GLOBAL_REGION, is_nukeable

SessionFactory = Callable[[str], AwsSession]

#: Pause after the API reports its request limit was reached.
REQUEST_LIMIT_PAUSE = 60.0
#: Pause between two batches of the same kind of resource.
BATCH_PAUSE = 10.0

# Every kind of resource this package knows, in the order they are deleted:
# the order matters because of dependencies between resources.
_RESOURCE_CLASSES: tuple[type[Resource], ...] = (
    ACMPCA,
    ASGroups,
    EC2Instances,
    EBSVolumes,
    AMIs,
    ECSClusters,
    AccessAnalyzers,
    CloudWatchDashboards,
    CloudWatchLogGroups,
    DynamoDB,
    EC2VPCs,
)


@dataclass
class AccountResources:
    """Resources found in an account, grouped by region."""

    resources: dict[str, list[Resource]] = field(default_factory=dict)


def _collect(
    kind: type[Resource], session: AwsSession, exclude_after: datetime, config: Config
) -> Resource | None:
    """Gather one kind of resource in the session's region, or None when none qualify."""
    if kind is EC2VPCs:
        ids, vpcs = get_all_vpcs(session, exclude_after, config)
        return EC2VPCs(identifiers=ids, vpcs=vpcs) if ids else None

    if kind is ACMPCA:
        ids = get_all_acmpca(session, exclude_after)
    elif kind is ASGroups:
        ids = get_all_auto_scaling_groups(session, exclude_after, config)
    elif kind is EC2Instances:
        ids = get_all_ec2_instances(session, exclude_after, config)
    elif kind is EBSVolumes:
        ids = get_all_ebs_volumes(session, exclude_after, config)
    elif kind is AMIs:
        ids = get_all_amis(session, exclude_after)
    elif kind is ECSClusters:
        ids = get_all_ecs_clusters_older_than(session, exclude_after, config)
    elif kind is AccessAnalyzers:
        ids = get_all_access_analyzers(session, exclude_after, config)
    elif kind is CloudWatchDashboards:
        ids = get_all_cloudwatch_dashboards(session, exclude_after, config)
    elif kind is CloudWatchLogGroups:
        ids = get_all_cloudwatch_log_groups(session, exclude_after, config)
    elif kind is DynamoDB:
        ids = get_all_dynamo_tables(session, exclude_after, config, DynamoDB())
    else:
        raise TypeError(f"unknown resource kind: {kind.__name__}")
    return kind(identifiers=list(ids)) if ids else None


def get_all_resources(
    session_factory: SessionFactory,
    target_regions: Sequence[str],
    exclude_after: datetime,
    resource_types: Sequence[str],
    config: Config,
) -> AccountResources:
    """Find every resource of the requested types in the target regions."""
    account = AccountResources()
    total = len(target_regions)
    count = 1

    for region in target_regions:
        if region == GLOBAL_REGION:
            continue
        logger.info("Checking region [%d/%d]: %s", count, total, region)
        session = session_factory(region)

        found = [
            resource
            for kind in _RESOURCE_CLASSES
            if is_nukeable(kind.resource_name, resource_types)
            for resource in [_collect(kind, session, exclude_after, config)]
            if resource is not None
        ]
        if found:
            account.resources[region] = found
        count += 1

    if GLOBAL_REGION in target_regions:
        # No global resource kinds are known to this package.
        logger.info("Checking region [%d/%d]: %s", count, total, GLOBAL_REGION)

    return account


def list_resource_types() -> list[str]:
    """Sorted names of the resource types that can be selected."""
    return sorted(kind.resource_name for kind in _RESOURCE_CLASSES)


def nuke_all_resources_in_region(
    account: AccountResources, region: str, session: AwsSession
) -> None:
    """Delete the resources recorded for ``region``, in batches."""
    for resource in account.resources.get(region, []):
        logger.info("Terminating %d resources in batches", len(resource.identifiers))
        batches = split(resource.identifiers, resource.max_batch_size)
        for index, batch in enumerate(batches):
            try:
                resource.nuke(session, batch)
            except Exception as err:
                if "RequestLimitExceeded" in str(err):
                    logger.info(
                        "Request limit reached. Waiting 1 minute before making new requests"
                    )
                    time.sleep(REQUEST_LIMIT_PAUSE)
                    continue
                raise
            if index != len(batches) - 1:
                logger.info("Sleeping for 10 seconds before processing next batch...")
                time.sleep(BATCH_PAUSE)


def nuke_all_resources(
    account: AccountResources, regions: Sequence[str], session_factory: SessionFactory
) -> None:
    """Delete the recorded resources of every given region."""
    for region in regions:
        session_region = DEFAULT_REGION if region == GLOBAL_REGION else region
        session = session_factory(session_region)
        nuke_all_resources_in_region(account, region, session)