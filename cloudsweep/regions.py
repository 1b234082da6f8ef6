"""Discovery and selection of the regions to work on."""

from __future__ import annotations

import random
from typing import Callable, Iterable, Sequence

from cloudsweep.core import AwsSession, logger

SessionFactory = Callable[[str], AwsSession]

#: Regions enabled by default on new accounts.
OPT_IN_NOT_REQUIRED_REGIONS = (
    "eu-north-1",
    "ap-south-1",
    "eu-west-3",
    "eu-west-2",
    "eu-west-1",
    "ap-northeast-3",
    "ap-northeast-2",
    "ap-northeast-1",
    "sa-east-1",
    "ca-central-1",
    "ap-southeast-1",
    "ap-southeast-2",
    "eu-central-1",
    "us-east-1",
    "us-east-2",
    "us-west-1",
    "us-west-2",
)

#: The only regions available in GovCloud accounts.
GOV_CLOUD_REGIONS = ("us-gov-east-1", "us-gov-west-1")

GLOBAL_REGION = "global"
DEFAULT_REGION = "us-east-1"


def _describe_regions(session_factory: SessionFactory) -> dict:
    for region in (*OPT_IN_NOT_REQUIRED_REGIONS, *GOV_CLOUD_REGIONS):
        try:
            return session_factory(region).client("ec2").describe_regions()
        except Exception:  # a disabled region fails; try the next one
            continue
    raise RuntimeError("could not find any enabled regions")


def get_enabled_regions(session_factory: SessionFactory) -> list[str]:
    """List the regions enabled in the account.

    Regions enabled by default are tried in turn until one answers.
    """
    response = _describe_regions(session_factory)
    return [region.get("RegionName", "") for region in response.get("Regions", [])]


def get_random_region(
    session_factory: SessionFactory, exclude: Iterable[str] | None = None
) -> str:
    """Pick a random enabled region that is not in ``exclude``."""
    excluded = set(exclude or ())
    candidates = [r for r in get_enabled_regions(session_factory) if r not in excluded]
    if not candidates:
        raise ValueError("no enabled region left to choose from")
    chosen = random.choice(candidates)
    logger.info("Random region chosen: %s", chosen)
    return chosen


def get_target_regions(
    enabled_regions: Sequence[str],
    selected_regions: Sequence[str],
    excluded_regions: Sequence[str],
) -> list[str]:
    """Combine enabled, selected and excluded regions into the final list."""
    if not enabled_regions:
        raise ValueError("Cannot have empty enabled regions")
    if not selected_regions and not excluded_regions:
        return list(enabled_regions)
    if selected_regions and excluded_regions:
        raise ValueError("Cannot specify both selected and excluded regions")

    if selected_regions:
        invalid = [r for r in selected_regions if r not in enabled_regions]
        if invalid:
            raise ValueError(f"Invalid values for region: [{' '.join(invalid)}]")
        return list(selected_regions)

    invalid = [r for r in excluded_regions if r not in enabled_regions]
    if invalid:
        raise ValueError(f"Invalid values for exclude-region: [{' '.join(invalid)}]")

    targets = [r for r in enabled_regions if r not in excluded_regions]
    if not targets:
        raise ValueError(f"Cannot exclude all regions: [{' '.join(excluded_regions)}]")
    return targets


def is_valid_resource_type(resource_type: str, all_resource_types: Iterable[str]) -> bool:
    """Tell whether ``resource_type`` is one of the known types."""
    return resource_type in all_resource_types


def is_nukeable(resource_type: str, resource_types: Sequence[str]) -> bool:
    """Tell whether resources of ``resource_type`` were asked to be deleted."""
    return (
        not resource_types
        or "all" in resource_types
        or resource_type in resource_types
    )