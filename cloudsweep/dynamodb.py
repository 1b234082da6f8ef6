"""DynamoDB tables: discovery, filtering and deletion."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Iterator, Sequence

from cloudsweep.core import AwsSession, Config, Resource, logger, should_include


def _iter_table_names(client: Any, limit: int) -> Iterator[str]:
    start: str | None = None
    while True:
        kwargs: dict[str, Any] = {"Limit": limit}
        if start is not None:
            kwargs["ExclusiveStartTableName"] = start
        result = client.list_tables(**kwargs)
        names = result.get("TableNames", [])
        yield from names
        start = result.get("LastEvaluatedTableName")
        if len(names) != limit or start is None:
            return
        logger.info("The tables detected exceed the %d. Running more than once", limit)


def get_all_dynamo_tables(
    session: AwsSession, exclude_after: datetime, config: Config, db: "DynamoDB"
) -> list[str]:
    """Names of the tables in the session's region that should be deleted.

    Tables are listed in pages of ``db.max_batch_size``.
    """
    client = session.client("dynamodb")
    selected = []
    for name in _iter_table_names(client, db.max_batch_size):
        table = client.describe_table(TableName=name).get("Table")
        if should_include_table(table, exclude_after, config):
            selected.append(name)
    return selected


def should_include_table(table: dict | None, exclude_after: datetime, config: Config) -> bool:
    """Tell whether a table description passes the time and name filters."""
    if table is None:
        return False
    created = table.get("CreationDateTime")
    if created is not None and exclude_after < created:
        return False
    rules = config.dynamodb
    return should_include(
        table.get("TableName", ""),
        rules.include_rule.names_regexp,
        rules.exclude_rule.names_regexp,
    )


def nuke_all_dynamodb_tables(session: AwsSession, tables: Sequence[str]) -> None:
    """Delete the given tables one by one, stopping at the first failure."""
    if not tables:
        logger.info("No DynamoDB tables to nuke in region %s", session.region)
        return

    client = session.client("dynamodb")
    logger.info("Deleting all DynamoDB tables in region %s", session.region)
    for name in tables:
        client.delete_table(TableName=name)


@dataclass
class DynamoDB(Resource):
    """DynamoDB tables found in one region."""

    resource_name: ClassVar[str] = "dynamodb"
    max_batch_size: ClassVar[int] = 100

    def nuke(self, session: AwsSession, identifiers: list[str]) -> None:
        nuke_all_dynamodb_tables(session, identifiers)