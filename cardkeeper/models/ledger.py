"""
Typed ledger records and column layouts.

Ledger rows arrive from spreadsheet exports as positional cell lists.
A LedgerLayout maps named fields to column positions, resolved once per
header, and every row is validated into a typed record at that boundary.
Nothing past this module indexes a row by number.

INVARIANTS:
- Records carry CardKey, so card numbers are normalized on construction
- Records are frozen (immutable after construction)
"""

from dataclasses import dataclass
from datetime import UTC, datetime

from cardkeeper.models.card import CardKey, IssueMode
from cardkeeper.models.failure import ValidationError


@dataclass(frozen=True, slots=True)
class ColumnSpec:
    """
    One named column of a ledger.

    Attributes:
        field: Record attribute the column feeds
        aliases: Accepted header spellings (compared case-insensitively)
        required: Whether the header must contain this column
    """

    field: str
    aliases: tuple[str, ...]
    required: bool = True


@dataclass(frozen=True, slots=True)
class LedgerLayout:
    """Column layout of one ledger."""

    name: str
    columns: tuple[ColumnSpec, ...]

    def resolve(self, header: list[str]) -> dict[str, int]:
        """
        Build the field -> column index mapping for a header row.

        Raises:
            ValidationError: If a required column is missing
        """
        normalized = [cell.strip().lower() for cell in header]
        mapping: dict[str, int] = {}
        missing: list[str] = []

        for spec in self.columns:
            index = next(
                (i for i, cell in enumerate(normalized) if cell in spec.aliases),
                None,
            )
            if index is not None:
                mapping[spec.field] = index
            elif spec.required:
                missing.append(spec.aliases[0])

        if missing:
            raise ValidationError(
                f"{self.name} header is missing required columns",
                detail="missing: " + ", ".join(missing),
            )
        return mapping


DISTRIBUTION_LAYOUT = LedgerLayout(
    name="Distribution ledger",
    columns=(
        ColumnSpec("recorded_at", ("timestamp", "date", "recorded at")),
        ColumnSpec("client_name", ("client name", "client", "name")),
        ColumnSpec("card_type", ("card type", "type")),
        ColumnSpec("card_number", ("card number", "card #", "number")),
        ColumnSpec("issued_by", ("issued by", "staff", "user")),
        ColumnSpec("mode", ("mode", "issue mode"), required=False),
        ColumnSpec("signature_ref", ("signature", "signature ref"), required=False),
        ColumnSpec("notes", ("notes", "comment"), required=False),
    ),
)

AUDIT_LAYOUT = LedgerLayout(
    name="Audit log",
    columns=(
        ColumnSpec("recorded_at", ("timestamp", "date", "recorded at")),
        ColumnSpec("actor", ("actor", "user", "issued by")),
        ColumnSpec("action", ("action",)),
        ColumnSpec("card_type", ("card type", "type")),
        ColumnSpec("card_number", ("card number", "card #", "number")),
        ColumnSpec("detail", ("detail", "details", "notes"), required=False),
    ),
)

AUDIT_ACTIONS = frozenset({"issue", "undo", "add", "remove"})


def parse_timestamp(value: str) -> datetime:
    """
    Parse an exported timestamp cell.

    Accepts ISO 8601 and the spreadsheet's "M/D/YYYY H:MM:SS" form.
    Naive values are taken as UTC.

    Raises:
        ValueError: If the value matches no accepted form
    """
    text = value.strip()
    parsed: datetime | None = None
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        for fmt in ("%m/%d/%Y %H:%M:%S", "%m/%d/%Y %H:%M", "%m/%d/%Y"):
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        raise ValueError(f"Unrecognized timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _cell(row: list[str], mapping: dict[str, int], field: str) -> str:
    index = mapping.get(field)
    if index is None or index >= len(row):
        return ""
    return row[index].strip()


@dataclass(frozen=True, slots=True)
class DistributionRow:
    """One issuance, as stored in the distribution ledger."""

    recorded_at: datetime
    client_name: str
    card_key: CardKey
    issued_by: str
    mode: IssueMode = IssueMode.NORMAL
    signature_ref: str | None = None
    notes: str | None = None

    @classmethod
    def from_cells(
        cls, row: list[str], mapping: dict[str, int], row_number: int
    ) -> "DistributionRow":
        """
        Validate a positional row into a record.

        Raises:
            ValidationError: If any required cell is blank or malformed
        """
        try:
            recorded_at = parse_timestamp(_cell(row, mapping, "recorded_at"))
            card_key = CardKey.of(
                _cell(row, mapping, "card_type"), _cell(row, mapping, "card_number")
            )
            mode_text = _cell(row, mapping, "mode").lower().replace("-", "_").replace(" ", "_")
            mode = IssueMode(mode_text) if mode_text else IssueMode.NORMAL
        except (ValueError, ValidationError) as e:
            raise ValidationError(f"Invalid distribution row {row_number}", detail=str(e)) from e

        client_name = _cell(row, mapping, "client_name")
        issued_by = _cell(row, mapping, "issued_by")
        if not client_name or not issued_by:
            raise ValidationError(
                f"Invalid distribution row {row_number}",
                detail="client name and issued by are required",
            )

        return cls(
            recorded_at=recorded_at,
            client_name=client_name,
            card_key=card_key,
            issued_by=issued_by,
            mode=mode,
            signature_ref=_cell(row, mapping, "signature_ref") or None,
            notes=_cell(row, mapping, "notes") or None,
        )


@dataclass(frozen=True, slots=True)
class AuditRow:
    """One audit entry, as stored in the audit log."""

    recorded_at: datetime
    actor: str
    action: str
    card_key: CardKey
    detail: str | None = None

    @classmethod
    def from_cells(
        cls, row: list[str], mapping: dict[str, int], row_number: int
    ) -> "AuditRow":
        """
        Validate a positional row into a record.

        Raises:
            ValidationError: If any required cell is blank or malformed
        """
        try:
            recorded_at = parse_timestamp(_cell(row, mapping, "recorded_at"))
            card_key = CardKey.of(
                _cell(row, mapping, "card_type"), _cell(row, mapping, "card_number")
            )
        except (ValueError, ValidationError) as e:
            raise ValidationError(f"Invalid audit row {row_number}", detail=str(e)) from e

        action = _cell(row, mapping, "action").lower()
        actor = _cell(row, mapping, "actor")
        if action not in AUDIT_ACTIONS or not actor:
            raise ValidationError(
                f"Invalid audit row {row_number}",
                detail=f"action must be one of {sorted(AUDIT_ACTIONS)} and actor is required",
            )

        return cls(
            recorded_at=recorded_at,
            actor=actor,
            action=action,
            card_key=card_key,
            detail=_cell(row, mapping, "detail") or None,
        )


# --- Issuance request/response ---


@dataclass(frozen=True, slots=True)
class IssuanceRequest:
    """
    Untrusted request to hand one card to one client.

    Validated by the issuance service before any store access.
    """

    client_name: str
    card_type: str
    card_number: str
    issued_by: str
    mode: IssueMode = IssueMode.NORMAL
    signature_ref: str | None = None
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class IssuedCard:
    """A committed issuance."""

    record_id: int
    card_key: CardKey
    client_name: str
    issued_by: str
    recorded_at: datetime
    mode: IssueMode
