"""
Managed ledgers.

A managed ledger is an active table that the archiver keeps bounded by
moving old rows to its archive twin. Both tables share one column set.
"""

from dataclasses import dataclass

from cardkeeper.models.db import (
    AUDIT_FIELDS,
    DISTRIBUTION_FIELDS,
    AuditLogArchiveDB,
    AuditLogDB,
    DistributionArchiveDB,
    DistributionRecordDB,
)


@dataclass(frozen=True)
class ManagedLedger:
    """
    An active ledger and its archive.

    Attributes:
        name: Stable identifier used in logs and reports
        active: ORM model of the active table
        archive: ORM model of the archive table
        fields: Columns copied verbatim on archival, in column order
    """

    name: str
    active: type[DistributionRecordDB] | type[AuditLogDB]
    archive: type[DistributionArchiveDB] | type[AuditLogArchiveDB]
    fields: tuple[str, ...]


DISTRIBUTION_LEDGER = ManagedLedger(
    name="distribution",
    active=DistributionRecordDB,
    archive=DistributionArchiveDB,
    fields=DISTRIBUTION_FIELDS,
)

AUDIT_LEDGER = ManagedLedger(
    name="audit",
    active=AuditLogDB,
    archive=AuditLogArchiveDB,
    fields=AUDIT_FIELDS,
)

MANAGED_LEDGERS: tuple[ManagedLedger, ...] = (DISTRIBUTION_LEDGER, AUDIT_LEDGER)
