"""
CardKeeper services.

Caching, availability, issuance, inventory administration and archival.
Import from the individual modules; this package does not re-export.
"""
