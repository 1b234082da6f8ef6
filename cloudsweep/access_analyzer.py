"""IAM Access Analyzers: discovery, filtering and concurrent deletion."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Iterator, Sequence

from cloudsweep.core import AwsSession, Config, MultiError, Resource, logger, should_include

#: Upper bound of concurrent delete calls, to stay under API rate limits.
MAX_CONCURRENT_DELETES = 100


class TooManyAccessAnalyzersError(Exception):
    """Raised when more analyzers are requested for deletion than allowed at once."""

    def __init__(self) -> None:
        super().__init__("Too many Access Analyzers requested at once.")


def _iter_analyzers(client: Any) -> Iterator[dict]:
    kwargs: dict[str, str] = {}
    while True:
        page = client.list_analyzers(**kwargs)
        yield from page.get("analyzers", [])
        token = page.get("nextToken")
        if not token:
            return
        kwargs = {"nextToken": token}


def get_all_access_analyzers(
    session: AwsSession, exclude_after: datetime, config: Config
) -> list[str]:
    """Names of the analyzers in the session's region that should be deleted."""
    client = session.client("accessanalyzer")
    return [
        analyzer["name"]
        for analyzer in _iter_analyzers(client)
        if should_include_access_analyzer(analyzer, exclude_after, config)
    ]


def should_include_access_analyzer(
    analyzer: dict | None, exclude_after: datetime, config: Config
) -> bool:
    """Tell whether an analyzer summary passes the time and name filters."""
    if analyzer is None:
        return False
    created = analyzer.get("createdAt")
    if created is not None and exclude_after < created:
        return False
    rules = config.access_analyzer
    return should_include(
        analyzer.get("name", ""),
        rules.include_rule.names_regexp,
        rules.exclude_rule.names_regexp,
    )


def nuke_all_access_analyzers(session: AwsSession, names: Sequence[str]) -> None:
    """Delete the named analyzers concurrently, one call per analyzer."""
    names = list(names)
    if not names:
        logger.info("No IAM Access Analyzers to nuke in region %s", session.region)
        return
    if len(names) > MAX_CONCURRENT_DELETES:
        logger.error(
            "Nuking too many Access Analyzers at once (100): "
            "halting to avoid hitting AWS API rate limiting"
        )
        raise TooManyAccessAnalyzersError()

    logger.info("Deleting all Access Analyzers in region %s", session.region)
    client = session.client("accessanalyzer")

    def delete(name: str) -> Exception | None:
        try:
            client.delete_analyzer(analyzerName=name)
        except Exception as err:  # gathered and reported together below
            return err
        return None

    with ThreadPoolExecutor(max_workers=len(names)) as pool:
        results = list(pool.map(delete, names))

    errors = [err for err in results if err is not None]
    for err in errors:
        logger.error("[Failed] %s", err)
    if errors:
        raise MultiError(errors)


@dataclass
class AccessAnalyzers(Resource):
    """IAM Access Analyzers found in one region."""

    resource_name: ClassVar[str] = "accessanalyzer"
    # No bulk delete exists, so this many are deleted in parallel.
    max_batch_size: ClassVar[int] = 10

    def nuke(self, session: AwsSession, identifiers: list[str]) -> None:
        nuke_all_access_analyzers(session, identifiers)