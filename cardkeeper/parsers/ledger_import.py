"""
Parser for spreadsheet exports of the distribution ledger and audit log.

Column positions are resolved from the header row through the ledger's
layout, then each data row is validated into a typed record. Blank rows
are skipped; any other malformed row fails the whole parse with its row
number, so a partial import never happens.
"""

import csv
from io import StringIO
from typing import TypeVar

from cardkeeper.models.failure import ValidationError
from cardkeeper.models.ledger import (
    AUDIT_LAYOUT,
    DISTRIBUTION_LAYOUT,
    AuditRow,
    DistributionRow,
    LedgerLayout,
)

RecordT = TypeVar("RecordT", DistributionRow, AuditRow)


def _parse(text: str, layout: LedgerLayout, record_type: type[RecordT]) -> list[RecordT]:
    reader = csv.reader(StringIO(text.strip()))
    header = next(reader, None)
    if not header:
        raise ValidationError(f"{layout.name} export is empty")

    mapping = layout.resolve(header)
    records: list[RecordT] = []

    # Row 1 is the header, matching spreadsheet numbering
    for row_number, row in enumerate(reader, start=2):
        if not any(cell.strip() for cell in row):
            continue
        records.append(record_type.from_cells(row, mapping, row_number))

    return records


def parse_distribution_csv(text: str) -> list[DistributionRow]:
    """
    Parse a distribution ledger export.

    Expected columns (flexible ordering, case-insensitive):
        - Timestamp / Date
        - Client Name / Client
        - Card Type / Type
        - Card Number / Card #
        - Issued By / Staff
        - Mode, Signature, Notes (optional)

    Raises:
        ValidationError: If a required column is missing or a row is malformed
    """
    return _parse(text, DISTRIBUTION_LAYOUT, DistributionRow)


def parse_audit_csv(text: str) -> list[AuditRow]:
    """
    Parse an audit log export.

    Expected columns: Timestamp, Actor, Action, Card Type, Card Number,
    Detail (optional).

    Raises:
        ValidationError: If a required column is missing or a row is malformed
    """
    return _parse(text, AUDIT_LAYOUT, AuditRow)
