"""EBS volumes: discovery, filtering and deletion."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar, Sequence

from cloudsweep.core import AwsSession, Config, Resource, ServiceError, logger, should_include


def get_all_ebs_volumes(
    session: AwsSession, exclude_after: datetime, config: Config
) -> list[str]:
    """IDs of the volumes in the session's region that should be deleted."""
    client = session.client("ec2")
    result = client.describe_volumes()
    return [
        volume["VolumeId"]
        for volume in result.get("Volumes", [])
        if should_include_ebs_volume(volume, exclude_after, config)
    ]


def _name_tag(volume: dict) -> str:
    name = ""
    for tag in volume.get("Tags") or []:
        if tag is not None and tag.get("Key") == "Name":
            name = tag.get("Value", "")
    return name


def should_include_ebs_volume(volume: dict | None, exclude_after: datetime, config: Config) -> bool:
    """Tell whether a volume passes the time filter and the filters on its Name tag."""
    if volume is None:
        return False
    created = volume.get("CreateTime")
    if created is not None and exclude_after < created:
        return False
    rules = config.ebs_volume
    return should_include(
        _name_tag(volume),
        rules.include_rule.names_regexp,
        rules.exclude_rule.names_regexp,
    )


def nuke_all_ebs_volumes(session: AwsSession, volume_ids: Sequence[str]) -> None:
    """Delete the given volumes and wait until the deleted ones are gone.

    Volumes that are in use or already gone are skipped with a message.
    """
    if not volume_ids:
        logger.info("No EBS volumes to nuke in region %s", session.region)
        return

    client = session.client("ec2")
    logger.info("Deleting all EBS volumes in region %s", session.region)

    deleted: list[str] = []
    for volume_id in volume_ids:
        try:
            client.delete_volume(VolumeId=volume_id)
        except Exception as err:
            code = err.code if isinstance(err, ServiceError) else None
            if code == "VolumeInUse":
                logger.warning(
                    "EBS volume %s can't be deleted, it is still attached to an active resource",
                    volume_id,
                )
            elif code == "InvalidVolume.NotFound":
                logger.info("EBS volume %s has already been deleted", volume_id)
            else:
                logger.error("[Failed] %s", err)
        else:
            deleted.append(volume_id)
            logger.info("Deleted EBS Volume: %s", volume_id)

    if deleted:
        try:
            client.get_waiter("volume_deleted").wait(VolumeIds=deleted)
        except Exception as err:
            logger.error("[Failed] %s", err)
            raise

    logger.info("[OK] %d EBS volumes(s) terminated in %s", len(deleted), session.region)


@dataclass
class EBSVolumes(Resource):
    """EBS volumes found in one region."""

    resource_name: ClassVar[str] = "ebs"
    max_batch_size: ClassVar[int] = 200

    def nuke(self, session: AwsSession, identifiers: list[str]) -> None:
        nuke_all_ebs_volumes(session, identifiers)