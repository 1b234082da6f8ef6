"""Private certificate authorities: discovery, filtering and deletion."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Iterator, Sequence

from cloudsweep.core import AwsSession, MultiError, Resource, logger, should_include

STATUS_CREATING = "CREATING"
STATUS_PENDING_CERTIFICATE = "PENDING_CERTIFICATE"
STATUS_DISABLED = "DISABLED"
STATUS_DELETED = "DELETED"

# States in which a CA can be deleted without disabling it first.
_DELETABLE_AS_IS = frozenset(
    {STATUS_CREATING, STATUS_PENDING_CERTIFICATE, STATUS_DISABLED, STATUS_DELETED}
)

# The allowed range is 7 to 30 days; the shortest is used.
PERMANENT_DELETION_DAYS = 7


def _iter_certificate_authorities(client: Any) -> Iterator[dict]:
    kwargs: dict[str, str] = {}
    while True:
        page = client.list_certificate_authorities(**kwargs)
        yield from page.get("CertificateAuthorities", [])
        token = page.get("NextToken")
        if not token:
            return
        kwargs = {"NextToken": token}


def get_all_acmpca(session: AwsSession, exclude_after: datetime) -> list[str]:
    """ARNs of the certificate authorities that may be deleted."""
    client = session.client("acm-pca")
    return [
        ca["Arn"]
        for ca in _iter_certificate_authorities(client)
        if should_include_acmpca(ca, exclude_after)
    ]


def should_include_acmpca(ca: dict | None, exclude_after: datetime) -> bool:
    """Tell whether a CA is not deleted yet and old enough.

    Age is measured from the last state change, or from creation when the
    state never changed.
    """
    if ca is None:
        return False
    if ca.get("Status") == STATUS_DELETED:
        return False
    reference = ca.get("LastStateChangeAt")
    if reference is None:
        reference = ca.get("CreatedAt")
    if reference is not None and exclude_after < reference:
        return False
    return should_include(ca.get("Arn", ""), None, None)


def _delete_certificate_authority(client: Any, arn: str, region: str) -> None:
    logger.info("Fetching details of CA to be deleted for ACMPCA %s in region %s", arn, region)
    details = client.describe_certificate_authority(CertificateAuthorityArn=arn)
    ca = details.get("CertificateAuthority")
    if ca is None:
        raise LookupError(f"could not find CA {arn}")
    status = ca.get("Status")
    if status is None:
        raise LookupError(f"could not fetch status for CA {arn}")

    if status not in _DELETABLE_AS_IS:
        logger.info("Setting status to 'DISABLED' for ACMPCA %s in region %s", arn, region)
        client.update_certificate_authority(CertificateAuthorityArn=arn, Status=STATUS_DISABLED)
        logger.info("Did set status to 'DISABLED' for ACMPCA: %s in region %s", arn, region)

    client.delete_certificate_authority(
        CertificateAuthorityArn=arn,
        PermanentDeletionTimeInDays=PERMANENT_DELETION_DAYS,
    )
    logger.info("Deleted ACMPCA: %s successfully", arn)


def nuke_all_acmpca(session: AwsSession, arns: Sequence[str]) -> None:
    """Delete the given certificate authorities concurrently."""
    arns = list(arns)
    if not arns:
        logger.info("No ACMPCA to nuke in region %s", session.region)
        return

    client = session.client("acm-pca")
    logger.info("Deleting all ACMPCA in region %s", session.region)

    def delete(arn: str) -> Exception | None:
        try:
            _delete_certificate_authority(client, arn, session.region)
        except Exception as err:  # gathered and reported together below
            return err
        return None

    with ThreadPoolExecutor(max_workers=len(arns)) as pool:
        results = list(pool.map(delete, arns))

    errors = [err for err in results if err is not None]
    for err in errors:
        logger.error("[Failed] %s", err)
    if errors:
        raise MultiError(errors)


@dataclass
class ACMPCA(Resource):
    """Private certificate authorities found in one region."""

    resource_name: ClassVar[str] = "acmpca"
    max_batch_size: ClassVar[int] = 10

    def nuke(self, session: AwsSession, identifiers: list[str]) -> None:
        nuke_all_acmpca(session, identifiers)