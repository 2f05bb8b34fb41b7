"""InvestTrack database layer.

A DuckDB-backed stand-in for the managed table service used in
production. Callers address the ``Users`` and ``Portfolios`` tables by
name through :class:`investtrack.db.datastore.LocalDataStore` and never
write SQL themselves.
"""
