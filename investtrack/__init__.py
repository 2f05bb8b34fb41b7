"""InvestTrack local data store.

Emulates the managed table service used in production with an embedded
DuckDB database, and carries the one-shot migration that upgrades the
legacy ``userData.json`` snapshot into that schema.
"""
