"""
SQLAlchemy ORM models for the ledger store.

Each ledger is a table. Managed ledgers (distribution records, audit log)
have an archive twin with the same columns plus provenance fields; the
archiver moves rows from the active table to its twin.
"""

from datetime import datetime

from sqlalchemy import (
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class CardInventoryDB(Base):
    """
    One physical card known to exist.

    Authoritative ledger for the inventory cache. Numbers are stored
    normalized.
    """

    __tablename__ = "card_inventory"
    __table_args__ = (UniqueConstraint("card_type", "card_number", name="uq_inventory_card"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    card_type: Mapped[str] = mapped_column(String(32), index=True)
    card_number: Mapped[str] = mapped_column(String(64))
    added_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<CardInventoryDB(type={self.card_type}, number={self.card_number})>"


# --- Commit locks ---


class CommitLockDB(Base):
    """
    One row per store-level lock.

    A commit unit writes its row first, so the row stays locked until the
    transaction ends and other workers queue behind it.
    """

    __tablename__ = "commit_locks"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    holder: Mapped[str | None] = mapped_column(String(255), nullable=True)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    def __repr__(self) -> str:
        return f"<CommitLockDB(name={self.name}, holder={self.holder})>"


# --- Distribution ledger ---


class DistributionColumns:
    """Columns shared by the active and archived distribution ledgers."""

    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    client_name: Mapped[str] = mapped_column(String(255))
    card_type: Mapped[str] = mapped_column(String(32))
    card_number: Mapped[str] = mapped_column(String(64), index=True)
    issued_by: Mapped[str] = mapped_column(String(255))
    mode: Mapped[str] = mapped_column(String(16), default="normal")
    signature_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class DistributionRecordDB(DistributionColumns, Base):
    """Active issuance record: one card handed to one client."""

    __tablename__ = "distribution_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    def __repr__(self) -> str:
        return f"<DistributionRecordDB(id={self.id}, card={self.card_type}#{self.card_number})>"


class DistributionArchiveDB(DistributionColumns, Base):
    """Archived issuance record. Still counts as used."""

    __tablename__ = "distribution_archive"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_row_id: Mapped[int] = mapped_column(Integer)
    archived_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<DistributionArchiveDB(id={self.id}, card={self.card_type}#{self.card_number})>"


# --- Audit ledger ---


class AuditColumns:
    """Columns shared by the active and archived audit logs."""

    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    actor: Mapped[str] = mapped_column(String(255))
    action: Mapped[str] = mapped_column(String(16))
    card_type: Mapped[str] = mapped_column(String(32))
    card_number: Mapped[str] = mapped_column(String(64))
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)


class AuditLogDB(AuditColumns, Base):
    """Active audit entry for one mutation."""

    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    def __repr__(self) -> str:
        return f"<AuditLogDB(id={self.id}, action={self.action})>"


class AuditLogArchiveDB(AuditColumns, Base):
    """Archived audit entry."""

    __tablename__ = "audit_log_archive"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_row_id: Mapped[int] = mapped_column(Integer)
    archived_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<AuditLogArchiveDB(id={self.id}, action={self.action})>"


DISTRIBUTION_FIELDS = (
    "recorded_at",
    "client_name",
    "card_type",
    "card_number",
    "issued_by",
    "mode",
    "signature_ref",
    "notes",
)

AUDIT_FIELDS = (
    "recorded_at",
    "actor",
    "action",
    "card_type",
    "card_number",
    "detail",
)
