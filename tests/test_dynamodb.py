from datetime import datetime, timedelta, timezone

import pytest

from cloudsweep.core import AwsSession, Config, FilterRule, ResourceType, ServiceError
from cloudsweep.dynamodb import (
    DynamoDB,
    get_all_dynamo_tables,
    nuke_all_dynamodb_tables,
    should_include_table,
)

NOW = datetime.now(timezone.utc)
OLD = NOW - timedelta(days=2)


class FakeDynamo:
    def __init__(self, pages=None, created=None, list_error=None, delete_errors=None):
        self.pages = pages or [{"TableNames": []}]
        self.created = created or {}
        self.list_calls = []
        self.deleted = []
        self.list_error = list_error
        self.delete_errors = delete_errors or {}

    def list_tables(self, **kwargs):
        if self.list_error is not None:
            raise self.list_error
        self.list_calls.append(kwargs)
        return self.pages[len(self.list_calls) - 1]

    def describe_table(self, TableName):
        return {
            "Table": {
                "TableName": TableName,
                "CreationDateTime": self.created.get(TableName, OLD),
            }
        }

    def delete_table(self, TableName):
        if TableName in self.delete_errors:
            raise self.delete_errors[TableName]
        self.deleted.append(TableName)
        return {}


def make_session(client):
    services = []

    def factory(service, region):
        services.append(service)
        return client

    return AwsSession("us-west-2", factory), services


MOCK_TABLE = {"TableName": "cloud-nuke-test", "CreationDateTime": NOW}


@pytest.mark.parametrize(
    "config, exclude_after, expected",
    [
        (
            Config(dynamodb=ResourceType(exclude_rule=FilterRule(["^cloud-nuke-*"]))),
            NOW + timedelta(hours=1),
            False,
        ),
        (
            Config(dynamodb=ResourceType(include_rule=FilterRule(["^cloud-nuke-*"]))),
            NOW + timedelta(hours=1),
            True,
        ),
        (Config(), NOW - timedelta(hours=1), False),
    ],
    ids=["ConfigExclude", "ConfigInclude", "NotOlderThan"],
)
def test_should_include_table(config, exclude_after, expected):
    assert should_include_table(MOCK_TABLE, exclude_after, config) is expected


def test_should_include_none_table_is_false():
    assert should_include_table(None, NOW, Config()) is False


def test_get_tables_filters_by_age():
    client = FakeDynamo(pages=[{"TableNames": ["old", "new"]}], created={"new": NOW})
    session, services = make_session(client)
    names = get_all_dynamo_tables(session, NOW - timedelta(hours=1), Config(), DynamoDB())
    assert names == ["old"]
    assert client.list_calls == [{"Limit": 100}]
    assert services == ["dynamodb"]


def test_get_tables_runs_again_when_page_is_full():
    first = [f"t{i:03d}" for i in range(100)]
    client = FakeDynamo(
        pages=[
            {"TableNames": first, "LastEvaluatedTableName": "t099"},
            {"TableNames": ["t100"]},
        ]
    )
    session, _ = make_session(client)
    names = get_all_dynamo_tables(session, NOW, Config(), DynamoDB())
    assert names == first + ["t100"]
    assert client.list_calls == [
        {"Limit": 100},
        {"Limit": 100, "ExclusiveStartTableName": "t099"},
    ]


def test_get_tables_error_propagates():
    client = FakeDynamo(list_error=ServiceError("InternalServerError"))
    session, _ = make_session(client)
    with pytest.raises(ServiceError) as info:
        get_all_dynamo_tables(session, NOW, Config(), DynamoDB())
    assert info.value.code == "InternalServerError"


def test_nuke_all_tables():
    client = FakeDynamo()
    session, _ = make_session(client)
    nuke_all_dynamodb_tables(session, ["cloud-nuke-test-a", "cloud-nuke-test-b"])
    assert client.deleted == ["cloud-nuke-test-a", "cloud-nuke-test-b"]


def test_nuke_stops_at_first_error():
    client = FakeDynamo(delete_errors={"b": ServiceError("ResourceInUseException")})
    session, _ = make_session(client)
    with pytest.raises(ServiceError) as info:
        nuke_all_dynamodb_tables(session, ["a", "b", "c"])
    assert info.value.code == "ResourceInUseException"
    assert client.deleted == ["a"]


def test_nuke_nothing_makes_no_client():
    client = FakeDynamo()
    session, services = make_session(client)
    nuke_all_dynamodb_tables(session, [])
    assert services == []


def test_resource_nuke_deletes_given_batch():
    client = FakeDynamo()
    session, _ = make_session(client)
    DynamoDB(identifiers=["x", "y"]).nuke(session, ["y"])
    assert client.deleted == ["y"]