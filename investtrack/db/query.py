"""Query translation for the data store's search sub-grammar.

The store answers exactly two access patterns:

- ``Users`` by ``email`` (single-row lookup)
- ``Portfolios`` by ``owner_email``, newest ``last_updated`` first

Callers describe a lookup with a :class:`TableFilter`; :func:`translate`
turns it into a parameterized statement where every value is bound as a
placeholder. Anything outside the two patterns raises
:class:`~investtrack.errors.UnsupportedQueryError`.

Query strings written against the managed service
(``SELECT * FROM Users WHERE email='a@x.com'``) are still accepted and
parsed into the same descriptor. Unrecognized strings become a
:class:`RawQuery`, which the store only runs in transitional mode.

"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any

from investtrack.db.schema import TableName
from investtrack.errors import UnsupportedQueryError

_EQUALS = "="

# Legacy column names used by the managed service's query strings
_LEGACY_FIELDS: dict[str, str] = {
    "email": "email",
    "user_id": "owner_email",
    "owner_email": "owner_email",
}

_LEGACY_FROM = re.compile(r"\bFROM\s+(\w+)", re.IGNORECASE)
_LEGACY_WHERE = re.compile(
    r"\bWHERE\s+(\w+)\s*=\s*'([^']+)'\s*;?\s*$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class TableFilter:
    """Structured lookup against one table.

    Attributes:
        table: Caller-facing table name ("Users" or "Portfolios").
        field: Column the filter applies to.
        value: Value to compare against.
        op: Comparison operator. Only "=" is translated.
        order_by: Optional ordering column.
        limit: Optional cap on the number of rows returned.

    """

    table: str
    field: str
    value: Any
    op: str = _EQUALS
    order_by: str | None = None
    limit: int | None = None

    @classmethod
    def by_email(cls, email: str) -> TableFilter:
        """Filter for a single account."""
        return cls(table=TableName.USERS.value, field="email", value=email)

    @classmethod
    def by_owner(cls, owner_email: str, limit: int | None = 1) -> TableFilter:
        """Filter for an owner's snapshots, newest first.

        The default limit of 1 returns only the current snapshot; pass
        ``limit=None`` to get the full history.
        """
        return cls(
            table=TableName.PORTFOLIOS.value,
            field="owner_email",
            value=owner_email,
            order_by="last_updated",
            limit=limit,
        )


@dataclass(frozen=True)
class RawQuery:
    """Untranslated SQL, honored only in transitional mode."""

    sql: str
    params: tuple[Any, ...] = ()


@dataclass(frozen=True)
class NativeQuery:
    """A parameterized DuckDB statement."""

    sql: str
    params: tuple[Any, ...]


def _check_limit(limit: Any) -> None:
    if limit is None:
        return
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        msg = f"limit must be a positive integer, got {limit!r}"
        raise UnsupportedQueryError(msg)


def translate(flt: TableFilter) -> NativeQuery:
    """Translate a filter descriptor into a parameterized query.

    Args:
        flt: The filter to translate.

    Returns:
        The native statement and its bound parameters.

    Raises:
        UnsupportedTableError: If the filter names an unknown table.
        UnsupportedQueryError: If the filter shape is not recognized.

    """
    table = TableName.resolve(flt.table)

    if flt.op != _EQUALS:
        msg = f"Operator {flt.op!r} is not supported; only equality filters are"
        raise UnsupportedQueryError(msg)
    if not isinstance(flt.value, str):
        msg = f"Filter value for {flt.field!r} must be a string"
        raise UnsupportedQueryError(msg)
    _check_limit(flt.limit)

    if table is TableName.USERS and flt.field == "email":
        if flt.order_by is not None:
            msg = "Account lookups by email do not support ordering"
            raise UnsupportedQueryError(msg)
        return NativeQuery(
            sql="SELECT * FROM users WHERE email = ? LIMIT 1",
            params=(flt.value,),
        )

    if table is TableName.PORTFOLIOS and flt.field == "owner_email":
        if flt.order_by not in (None, "last_updated"):
            msg = f"Portfolios are ordered by last_updated only, not {flt.order_by!r}"
            raise UnsupportedQueryError(msg)
        sql = (
            "SELECT * FROM portfolios WHERE owner_email = ? "
            "ORDER BY last_updated DESC, row_id DESC"
        )
        params: list[Any] = [flt.value]
        if flt.limit is not None:
            sql += " LIMIT ?"
            params.append(flt.limit)
        return NativeQuery(sql=sql, params=tuple(params))

    msg = f"No query pattern for {table.value}.{flt.field}"
    raise UnsupportedQueryError(msg)


def parse_legacy_query(table: TableName, text: str) -> TableFilter | None:
    """Parse a managed-service query string into a filter.

    Recognizes a trailing ``WHERE <column>='<value>'`` clause on the
    ``email`` and ``user_id`` columns.

    Args:
        table: Table the query was issued against.
        text: The legacy query string.

    Returns:
        The equivalent filter, or None if the string is not recognized.

    Raises:
        UnsupportedQueryError: If the string names a different table.

    """
    from_match = _LEGACY_FROM.search(text)
    if from_match and from_match.group(1).lower() != table.native:
        msg = f"Query reads {from_match.group(1)!r} but was issued on {table.value}"
        raise UnsupportedQueryError(msg)

    where = _LEGACY_WHERE.search(text)
    if not where:
        return None
    field = _LEGACY_FIELDS.get(where.group(1).lower())
    if field is None:
        return None

    if table is TableName.PORTFOLIOS and field == "owner_email":
        return TableFilter.by_owner(where.group(2))
    return TableFilter(table=table.value, field=field, value=where.group(2))


_FILTER_KEYS = {f.name for f in fields(TableFilter)} - {"table"}


def _filter_from_mapping(table: TableName, query: Mapping[str, Any]) -> TableFilter:
    unknown = set(query) - _FILTER_KEYS - {"table"}
    if unknown:
        msg = f"Unknown filter keys: {sorted(unknown)}"
        raise UnsupportedQueryError(msg)
    if "field" not in query or "value" not in query:
        msg = "A filter needs both 'field' and 'value'"
        raise UnsupportedQueryError(msg)
    if query.get("table", table.value) != table.value:
        msg = f"Filter names table {query['table']!r} but was issued on {table.value}"
        raise UnsupportedQueryError(msg)
    options = {key: query[key] for key in _FILTER_KEYS if key in query}
    # Owner lookups return only the current snapshot unless "limit" is given
    if table is TableName.PORTFOLIOS:
        options.setdefault("limit", 1)
    return TableFilter(table=table.value, **options)


def coerce_query(table: TableName, query: Any) -> TableFilter | RawQuery:
    """Normalize the accepted query inputs into a filter or raw query.

    Args:
        table: Table the search was issued against.
        query: A TableFilter, RawQuery, mapping of TableFilter fields,
            or legacy query string.

    Returns:
        A TableFilter bound to ``table``, or a RawQuery.

    Raises:
        UnsupportedQueryError: If the input cannot be interpreted.

    """
    if isinstance(query, TableFilter):
        if TableName.resolve(query.table) is not table:
            msg = f"Filter targets {query.table} but was issued on {table.value}"
            raise UnsupportedQueryError(msg)
        return query
    if isinstance(query, RawQuery):
        return query
    if isinstance(query, Mapping):
        return _filter_from_mapping(table, query)
    if isinstance(query, str):
        return parse_legacy_query(table, query) or RawQuery(sql=query)

    msg = f"Unsupported query type: {type(query).__name__}"
    raise UnsupportedQueryError(msg)
