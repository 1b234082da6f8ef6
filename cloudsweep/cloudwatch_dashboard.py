"""CloudWatch Dashboards: discovery, filtering and bulk deletion."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Iterator, Sequence

from cloudsweep.core import AwsSession, Config, Resource, logger, should_include

#: Upper bound of dashboards deleted in one call, to stay under API rate limits.
MAX_DASHBOARDS_PER_CALL = 100


class TooManyCloudWatchDashboardsError(Exception):
    """Raised when more dashboards are requested for deletion than allowed at once."""

    def __init__(self) -> None:
        super().__init__("Too many CloudWatch Dashboards requested at once.")


def _iter_dashboards(client: Any) -> Iterator[dict]:
    kwargs: dict[str, str] = {}
    while True:
        page = client.list_dashboards(**kwargs)
        yield from page.get("DashboardEntries", [])
        token = page.get("NextToken")
        if not token:
            return
        kwargs = {"NextToken": token}


def get_all_cloudwatch_dashboards(
    session: AwsSession, exclude_after: datetime, config: Config
) -> list[str]:
    """Names of the dashboards in the session's region that should be deleted."""
    client = session.client("cloudwatch")
    return [
        dashboard["DashboardName"]
        for dashboard in _iter_dashboards(client)
        if should_include_cloudwatch_dashboard(dashboard, exclude_after, config)
    ]


def should_include_cloudwatch_dashboard(
    dashboard: dict | None, exclude_after: datetime, config: Config
) -> bool:
    """Tell whether a dashboard entry passes the time and name filters."""
    if dashboard is None:
        return False
    modified = dashboard.get("LastModified")
    if modified is not None and exclude_after < modified:
        return False
    rules = config.cloudwatch_dashboard
    return should_include(
        dashboard.get("DashboardName", ""),
        rules.include_rule.names_regexp,
        rules.exclude_rule.names_regexp,
    )


def nuke_all_cloudwatch_dashboards(session: AwsSession, identifiers: Sequence[str]) -> None:
    """Delete the named dashboards in a single call."""
    names = list(identifiers)
    region = session.region
    if not names:
        logger.info("No CloudWatch Dashboards to nuke in region %s", region)
        return
    if len(names) > MAX_DASHBOARDS_PER_CALL:
        logger.error(
            "Nuking too many CloudWatch Dashboards at once (100): "
            "halting to avoid hitting AWS API rate limiting"
        )
        raise TooManyCloudWatchDashboardsError()

    logger.info("Deleting CloudWatch Dashboards in region %s", region)
    client = session.client("cloudwatch")
    try:
        client.delete_dashboards(DashboardNames=names)
    except Exception as err:
        logger.error("[Failed] %s", err)
        raise

    for name in names:
        logger.info("[OK] CloudWatch Dashboard %s was deleted in %s", name, region)


@dataclass
class CloudWatchDashboards(Resource):
    """CloudWatch Dashboards found in one region."""

    resource_name: ClassVar[str] = "cloudwatch-dashboard"
    max_batch_size: ClassVar[int] = 100

    def nuke(self, session: AwsSession, identifiers: list[str]) -> None:
        nuke_all_cloudwatch_dashboards(session, identifiers)