"""CloudWatch Log Groups: discovery, filtering and concurrent deletion."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, ClassVar, Iterator, Sequence

from cloudsweep.core import (
    AwsSession,
    Config,
    MultiError,
    Resource,
    ServiceError,
    logger,
    should_include,
)

#: Upper bound of concurrent delete calls, to stay under API rate limits.
MAX_CONCURRENT_DELETES = 100

# Raised when a group is already being deleted; not treated as a failure.
_ALREADY_DELETING = "OperationAbortedException"


class TooManyLogGroupsError(Exception):
    """Raised when more log groups are requested for deletion than allowed at once."""

    def __init__(self) -> None:
        super().__init__("Too many LogGroups requested at once.")


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.astimezone()


def _iter_log_groups(client: Any) -> Iterator[dict]:
    kwargs: dict[str, str] = {}
    while True:
        page = client.describe_log_groups(**kwargs)
        yield from page.get("logGroups", [])
        token = page.get("nextToken")
        if not token:
            return
        kwargs = {"nextToken": token}


def get_all_cloudwatch_log_groups(
    session: AwsSession, exclude_after: datetime, config: Config
) -> list[str]:
    """Names of the log groups in the session's region that should be deleted."""
    client = session.client("logs")
    return [
        group["logGroupName"]
        for group in _iter_log_groups(client)
        if should_include_cloudwatch_log_group(group, exclude_after, config)
    ]


def should_include_cloudwatch_log_group(
    log_group: dict | None, exclude_after: datetime, config: Config
) -> bool:
    """Tell whether a log group passes the time and name filters.

    The creation time is given in milliseconds since the epoch; a naive
    ``exclude_after`` is taken as local time.
    """
    if log_group is None:
        return False
    millis = log_group.get("creationTime")
    if millis is not None:
        created = datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
        if _aware(exclude_after) < created:
            return False
    rules = config.cloudwatch_log_group
    return should_include(
        log_group.get("logGroupName", ""),
        rules.include_rule.names_regexp,
        rules.exclude_rule.names_regexp,
    )


def nuke_all_cloudwatch_log_groups(session: AwsSession, identifiers: Sequence[str]) -> None:
    """Delete the named log groups concurrently, one call per group."""
    names = list(identifiers)
    region = session.region
    if not names:
        logger.info("No CloudWatch Log Groups to nuke in region %s", region)
        return
    if len(names) > MAX_CONCURRENT_DELETES:
        logger.error(
            "Nuking too many CloudWatch LogGroups at once (100): "
            "halting to avoid hitting AWS API rate limiting"
        )
        raise TooManyLogGroupsError()

    logger.info("Deleting CloudWatch Log Groups in region %s", region)
    client = session.client("logs")

    def delete(name: str) -> Exception | None:
        try:
            client.delete_log_group(logGroupName=name)
        except Exception as err:  # gathered and filtered below
            logger.error(
                "[Failed] Error deleting CloudWatch Log Group %s in %s: %s", name, region, err
            )
            return err
        logger.info("[OK] CloudWatch Log Group %s deleted in %s", name, region)
        return None

    with ThreadPoolExecutor(max_workers=len(names)) as pool:
        results = list(pool.map(delete, names))

    errors = [
        err
        for err in results
        if isinstance(err, ServiceError) and err.code != _ALREADY_DELETING
    ]
    if errors:
        raise MultiError(errors)


@dataclass
class CloudWatchLogGroups(Resource):
    """CloudWatch Log Groups found in one region."""

    resource_name: ClassVar[str] = "cloudwatch-loggroup"
    # No bulk delete exists; half of what the web console deletes in parallel.
    max_batch_size: ClassVar[int] = 35

    def nuke(self, session: AwsSession, identifiers: list[str]) -> None:
        nuke_all_cloudwatch_log_groups(session, identifiers)