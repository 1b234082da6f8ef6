"""Machine images owned by the account: discovery and deregistration."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import ClassVar, Sequence

from cloudsweep.core import AwsSession, Resource, ServiceError, logger

_CREATION_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class ImageAvailableError(Exception):
    """Raised when an image does not become available in time."""

    def __init__(self) -> None:
        super().__init__("Image didn't become available within wait attempts")


def _parse_creation_date(value: str) -> datetime:
    return datetime.strptime(value, _CREATION_DATE_FORMAT).replace(tzinfo=timezone.utc)


def get_all_amis(session: AwsSession, exclude_after: datetime) -> list[str]:
    """IDs of the account's own images created before ``exclude_after``.

    Raises ValueError when an image carries a malformed creation date.
    """
    client = session.client("ec2")
    output = client.describe_images(Owners=["self"])
    return [
        image["ImageId"]
        for image in output.get("Images", [])
        if exclude_after > _parse_creation_date(image["CreationDate"])
    ]


def nuke_all_amis(session: AwsSession, image_ids: Sequence[str]) -> None:
    """Deregister the given images; failures are logged, not raised."""
    if not image_ids:
        logger.info("No AMIs to nuke in region %s", session.region)
        return

    client = session.client("ec2")
    logger.info("Deleting all AMIs in region %s", session.region)

    deleted = 0
    for image_id in image_ids:
        try:
            client.deregister_image(ImageId=image_id)
        except ServiceError as err:
            logger.error("[Failed] %s", err)
        else:
            deleted += 1
            logger.info("Deleted AMI: %s", image_id)

    logger.info("[OK] %d AMI(s) terminated in %s", deleted, session.region)


@dataclass
class AMIs(Resource):
    """Images owned by the account in one region."""

    resource_name: ClassVar[str] = "ami"
    max_batch_size: ClassVar[int] = 200

    def nuke(self, session: AwsSession, identifiers: list[str]) -> None:
        nuke_all_amis(session, identifiers)