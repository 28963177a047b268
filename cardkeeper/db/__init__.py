from cardkeeper.db.database import get_session, init_db
from cardkeeper.db.ledgers import AUDIT_LEDGER, DISTRIBUTION_LEDGER, MANAGED_LEDGERS, ManagedLedger
from cardkeeper.db.operations import (
    append_audit_entries,
    copy_rows_to_archive,
    count_rows,
    delete_distribution_record,
    delete_inventory_cards,
    delete_row_range,
    ensure_archive_table,
    find_inventory_numbers,
    find_issued_keys,
    get_distribution_record,
    insert_distribution_rows,
    insert_inventory_cards,
    list_row_ids,
    load_inventory_rows,
    read_usage_batch,
    select_aged_row_ids,
    select_oldest_row_ids,
)

__all__ = [
    "AUDIT_LEDGER",
    "DISTRIBUTION_LEDGER",
    "MANAGED_LEDGERS",
    "ManagedLedger",
    "append_audit_entries",
    "copy_rows_to_archive",
    "count_rows",
    "delete_distribution_record",
    "delete_inventory_cards",
    "delete_row_range",
    "ensure_archive_table",
    "find_inventory_numbers",
    "find_issued_keys",
    "get_distribution_record",
    "get_session",
    "init_db",
    "insert_distribution_rows",
    "insert_inventory_cards",
    "list_row_ids",
    "load_inventory_rows",
    "read_usage_batch",
    "select_aged_row_ids",
    "select_oldest_row_ids",
]
