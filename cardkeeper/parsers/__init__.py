from cardkeeper.parsers.ledger_import import parse_audit_csv, parse_distribution_csv

__all__ = [
    "parse_audit_csv",
    "parse_distribution_csv",
]
