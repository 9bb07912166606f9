"""
SQL plugin.

Queries run against sqlite (stdlib sqlite3) or postgres (psycopg). Column
types are inferred from the first non-null value of each column, and row
values are converted to JSON-safe equivalents so responses persist as-is.
"""

import base64
import logging
import sqlite3
from contextlib import closing
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, ClassVar

from apiary.plugins.base import Plugin, PluginContext, require_payload
from apiary.schema import EntryData, Kind, NullAsEmpty

logger = logging.getLogger(__name__)


class Database(str, Enum):
    """Database engines a SQL request can target."""

    POSTGRES = "postgres"
    MYSQL = "mysql"
    SQLITE = "sqlite"
    CLICKHOUSE = "clickhouse"


class ColumnType(str, Enum):
    """Coarse column types reported with query results."""

    STRING = "string"
    NUMBER = "number"
    TIME = "time"
    BOOLEAN = "boolean"


class SQLRequest(EntryData):
    """A query against a database identified by engine and DSN."""

    KIND: ClassVar[str] = Kind.SQL.value

    dsn: str = ""
    database: str = Database.POSTGRES.value
    query: str = ""


class SQLResponse(EntryData):
    """Result set of a query."""

    KIND: ClassVar[str] = Kind.SQL.value

    columns: Annotated[tuple[str, ...], NullAsEmpty] = ()
    types: Annotated[tuple[str, ...], NullAsEmpty] = ()
    rows: Annotated[tuple[tuple[Any, ...], ...], NullAsEmpty] = ()


# =============================================================================
# Result conversion
# =============================================================================


def column_type(value: Any) -> str:
    """Classify a non-null value. Unknown types report their Python type name."""
    # bool is a subclass of int
    if isinstance(value, bool):
        return ColumnType.BOOLEAN.value
    if isinstance(value, (int, float, Decimal)):
        return ColumnType.NUMBER.value
    if isinstance(value, (datetime, date, time)):
        return ColumnType.TIME.value
    if isinstance(value, str):
        return ColumnType.STRING.value
    return type(value).__name__


def convert_types(columns: int, rows: list[tuple[Any, ...]]) -> tuple[str, ...]:
    """Infer one type per column; all-null columns get an empty type."""
    types = [""] * columns
    for i in range(columns):
        for row in rows:
            if row[i] is not None:
                types[i] = column_type(row[i])
                break
    return tuple(types)


def json_safe(value: Any) -> Any:
    """Convert a driver value to something json.dumps accepts."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            return base64.b64encode(raw).decode("ascii")
    if isinstance(value, (list, tuple)):
        return [json_safe(v) for v in value]
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    return str(value)


def build_response(columns: list[str], rows: list[tuple[Any, ...]]) -> SQLResponse:
    return SQLResponse(
        columns=tuple(columns),
        types=convert_types(len(columns), rows),
        rows=tuple(tuple(json_safe(v) for v in row) for row in rows),
    )


# =============================================================================
# Engines
# =============================================================================


def query_sqlite(dsn: str, query: str, timeout: float | None = None) -> SQLResponse:
    """Run a query against a sqlite file (or a file: URI)."""
    with closing(sqlite3.connect(dsn, timeout=timeout or 5.0, uri=dsn.startswith("file:"))) as conn:
        cursor = conn.execute(query)
        columns = [d[0] for d in cursor.description] if cursor.description else []
        rows = [tuple(row) for row in cursor.fetchall()] if columns else []
        conn.commit()
    return build_response(columns, rows)


def query_postgres(dsn: str, query: str, timeout: float | None = None) -> SQLResponse:
    """Run a query against postgres."""
    import psycopg

    connect_kwargs: dict[str, Any] = {}
    if timeout:
        connect_kwargs["connect_timeout"] = max(1, int(timeout))
    with psycopg.connect(dsn, **connect_kwargs) as conn:
        with conn.cursor() as cur:
            cur.execute(query)
            if cur.description is None:
                return build_response([], [])
            columns = [d.name for d in cur.description]
            rows = [tuple(row) for row in cur.fetchall()]
    return build_response(columns, rows)


def run_query(database: str, dsn: str, query: str, timeout: float | None = None) -> SQLResponse:
    """
    Dispatch a query to the engine named by database.

    Raises:
        ValueError: If the engine is not supported by this build
    """
    if database == Database.SQLITE.value:
        return query_sqlite(dsn, query, timeout)
    if database == Database.POSTGRES.value:
        return query_postgres(dsn, query, timeout)
    msg = f"unsupported database: {database}"
    raise ValueError(msg)


def send_sql(context: PluginContext, payload: EntryData) -> EntryData:
    """Perform a SQL request."""
    payload = require_payload(payload, SQLRequest)
    logger.debug("query %s database", payload.database)
    return run_query(payload.database, payload.dsn, payload.query, context.timeout_seconds)


plugin_sql = Plugin(
    kind=Kind.SQL.value,
    title="SQL",
    request_type=SQLRequest,
    response_type=SQLResponse,
    perform=send_sql,
)
