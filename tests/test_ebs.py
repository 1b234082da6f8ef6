from datetime import datetime, timedelta, timezone

import pytest

from cloudsweep.core import AwsSession, Config, FilterRule, ResourceType, ServiceError
from cloudsweep.ebs import (
    EBSVolumes,
    get_all_ebs_volumes,
    nuke_all_ebs_volumes,
    should_include_ebs_volume,
)

NOW = datetime.now(timezone.utc)


class FakeWaiter:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def wait(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error


class FakeEC2:
    def __init__(self, volumes=None, failures=None, waiter_error=None):
        self.volumes = volumes or []
        self.failures = failures or {}
        self.deleted = []
        self.waiter = FakeWaiter(waiter_error)
        self.waiter_names = []

    def describe_volumes(self):
        return {"Volumes": self.volumes}

    def delete_volume(self, VolumeId):
        if VolumeId in self.failures:
            raise self.failures[VolumeId]
        self.deleted.append(VolumeId)
        return {}

    def get_waiter(self, name):
        self.waiter_names.append(name)
        return self.waiter


def make_session(client):
    services = []

    def factory(service, region):
        services.append(service)
        return client

    return AwsSession("us-east-2", factory), services


def volume(volume_id, name=None, created=NOW):
    tags = [{"Key": "Name", "Value": name}] if name is not None else []
    return {"VolumeId": volume_id, "CreateTime": created, "Tags": tags}


def test_list_volumes_respects_time_filter():
    client = FakeEC2(volumes=[volume("vol-1", "cloud-nuke-test-x")])
    session, services = make_session(client)
    assert get_all_ebs_volumes(session, NOW - timedelta(hours=1), Config()) == []
    assert get_all_ebs_volumes(session, NOW + timedelta(hours=1), Config()) == ["vol-1"]
    assert services == ["ec2", "ec2"]


def test_list_volumes_with_config_file():
    client = FakeEC2(
        volumes=[
            volume("vol-included", "cloud-nuke-test-include-abc"),
            volume("vol-excluded", "cloud-nuke-test-abc"),
        ]
    )
    session, _ = make_session(client)
    config = Config(
        ebs_volume=ResourceType(include_rule=FilterRule(["^cloud-nuke-test-include-.*"]))
    )
    ids = get_all_ebs_volumes(session, NOW + timedelta(hours=1), config)
    assert ids == ["vol-included"]


def test_exclude_rule_on_name_tag():
    config = Config(ebs_volume=ResourceType(exclude_rule=FilterRule(["^cloud-nuke-*"])))
    later = NOW + timedelta(hours=1)
    assert should_include_ebs_volume(volume("v", "cloud-nuke-test"), later, config) is False
    assert should_include_ebs_volume(volume("v", "keep-me"), later, config) is True


def test_volume_without_name_tag_matches_empty_name():
    config = Config(ebs_volume=ResourceType(include_rule=FilterRule(["^$"])))
    assert should_include_ebs_volume(volume("v"), NOW + timedelta(hours=1), config) is True


def test_last_name_tag_wins_and_none_tags_are_skipped():
    vol = {
        "VolumeId": "v",
        "CreateTime": NOW,
        "Tags": [{"Key": "Name", "Value": "first"}, None, {"Key": "Name", "Value": "second"}],
    }
    config = Config(ebs_volume=ResourceType(include_rule=FilterRule(["^second$"])))
    assert should_include_ebs_volume(vol, NOW + timedelta(hours=1), config) is True


def test_should_include_none_volume_is_false():
    assert should_include_ebs_volume(None, NOW, Config()) is False


def test_nuke_volumes_waits_for_deleted():
    client = FakeEC2()
    session, _ = make_session(client)
    nuke_all_ebs_volumes(session, ["vol-1", "vol-2"])
    assert client.deleted == ["vol-1", "vol-2"]
    assert client.waiter_names == ["volume_deleted"]
    assert client.waiter.calls == [{"VolumeIds": ["vol-1", "vol-2"]}]


def test_nuke_volume_in_use_is_skipped():
    client = FakeEC2(failures={"vol-busy": ServiceError("VolumeInUse", "attached")})
    session, _ = make_session(client)
    nuke_all_ebs_volumes(session, ["vol-busy", "vol-free"])
    assert client.deleted == ["vol-free"]
    assert client.waiter.calls == [{"VolumeIds": ["vol-free"]}]


def test_nuke_without_any_deleted_does_not_wait():
    client = FakeEC2(
        failures={
            "vol-busy": ServiceError("VolumeInUse"),
            "vol-gone": ServiceError("InvalidVolume.NotFound"),
            "vol-bad": ServiceError("UnauthorizedOperation"),
        }
    )
    session, _ = make_session(client)
    nuke_all_ebs_volumes(session, ["vol-busy", "vol-gone", "vol-bad"])
    assert client.deleted == []
    assert client.waiter_names == []


def test_nuke_waiter_error_propagates():
    client = FakeEC2(waiter_error=RuntimeError("timed out"))
    session, _ = make_session(client)
    with pytest.raises(RuntimeError, match="timed out"):
        nuke_all_ebs_volumes(session, ["vol-1"])


def test_nuke_nothing_makes_no_client():
    client = FakeEC2()
    session, services = make_session(client)
    nuke_all_ebs_volumes(session, [])
    assert services == []


def test_resource_nuke_deletes_given_batch():
    client = FakeEC2()
    session, _ = make_session(client)
    EBSVolumes(identifiers=["vol-1", "vol-2"]).nuke(session, ["vol-2"])
    assert client.deleted == ["vol-2"]