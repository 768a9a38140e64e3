"""
WCA Query Backend - Database Access
===================================

Owns the SQLAlchemy engine for the WCA mirror and runs user statements.

The engine (and its bounded connection pool) is created once at startup and
disposed at shutdown; every call checks a connection out of the pool for the
duration of that call only. There is no statement timeout and no way to
cancel a running statement.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

logger = logging.getLogger(__name__)

METADATA_TABLE = "wca_statistics_metadata"

# User SQL goes to the driver untouched: no bind-parameter parsing of ':name'
# and no '%' escaping.
_RAW_SQL_OPTIONS = {"no_parameters": True}


class QueryExecutionError(Exception):
    """The store rejected a statement. The message is the store's own text."""
    pass


class StoreUnavailableError(Exception):
    """No connection to the store could be obtained."""
    pass


@dataclass
class StatementResult:
    """Rows of one executed statement. columns keeps duplicate names."""
    columns: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


def _json_value(value: Any) -> Any:
    """
    Make one driver value JSON-safe without losing information.

    Binary values become {"type": "Buffer", "data": [byte, ...]} and DECIMAL
    values their exact string form, the shapes the web UI already renders.
    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {"type": "Buffer", "data": list(bytes(value))}
    if isinstance(value, Decimal):
        return str(value)
    return value


def _store_message(error: DBAPIError) -> str:
    """
    Extract the driver's message from a wrapped DBAPI error.

    PyMySQL errors carry (code, message); sqlite3 and most others a single
    message string.
    """
    orig = error.orig
    if orig is None:
        return str(error)
    args = getattr(orig, "args", ())
    if len(args) == 2 and isinstance(args[0], int):
        return str(args[1])
    return str(orig)


class WcaDatabase:
    """Manages the connection pool and catalog lookups for the WCA mirror"""

    EXPORT_TIMESTAMP_QUERY = (
        f"SELECT field, value FROM {METADATA_TABLE} "
        f"WHERE field = 'export_timestamp' LIMIT 1"
    )

    def __init__(self, engine: Engine):
        self.engine = engine

    @classmethod
    def from_url(cls, database_url: str, pool_size: int = 10) -> "WcaDatabase":
        """Create the engine with a fixed-size pool (no overflow connections)."""
        engine = create_engine(
            database_url,
            pool_size=pool_size,
            max_overflow=0,
            pool_pre_ping=True,
        )
        logger.info(f"Database engine created (pool_size={pool_size}, dialect={engine.dialect.name})")
        return cls(engine)

    def dispose(self) -> None:
        """Close every pooled connection."""
        self.engine.dispose()
        logger.info("Database engine disposed")

    def _connect(self) -> Connection:
        try:
            return self.engine.connect()
        except SQLAlchemyError as e:
            logger.error(f"Could not connect to database: {e}")
            raise StoreUnavailableError("Database unavailable") from e

    # -------------------------------------------------------------------------
    # User statements
    # -------------------------------------------------------------------------

    def run_statement(self, sql: str) -> StatementResult:
        """
        Execute one statement and fetch all rows.

        Raises:
            StoreUnavailableError: If no connection could be acquired
            QueryExecutionError: If the store rejected the statement
        """
        with self._connect() as conn:
            try:
                result = conn.exec_driver_sql(sql, execution_options=_RAW_SQL_OPTIONS)
                if not result.returns_rows:
                    return StatementResult()
                columns = list(result.keys())
                rows = [
                    dict(zip(columns, (_json_value(value) for value in row)))
                    for row in result.fetchall()
                ]
            except DBAPIError as e:
                message = _store_message(e)
                logger.warning(f"Statement rejected by store: {message}")
                raise QueryExecutionError(message) from e

        logger.info(f"Query executed: {len(rows)} rows returned")
        return StatementResult(columns=columns, rows=rows)

    def count_rows(self, count_sql: str) -> int:
        """Run a COUNT wrapper and return its single 'count' value."""
        with self._connect() as conn:
            try:
                row = conn.exec_driver_sql(
                    count_sql, execution_options=_RAW_SQL_OPTIONS
                ).mappings().first()
            except DBAPIError as e:
                message = _store_message(e)
                logger.warning(f"Count statement rejected by store: {message}")
                raise QueryExecutionError(message) from e

        if row is None:
            return 0
        return int(row["count"])

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------

    def get_schema(self) -> Dict[str, Dict[str, List[Dict[str, str]]]]:
        """
        Describe every table of the connected database.

        Returns:
            {table_name: {"columns": [{"name": ..., "type": ...}, ...]}}
        """
        with self._connect() as conn:
            inspector = inspect(conn)
            schema: Dict[str, Dict[str, List[Dict[str, str]]]] = {}
            for table in inspector.get_table_names():
                schema[table] = {
                    "columns": [
                        {"name": col["name"], "type": str(col["type"])}
                        for col in inspector.get_columns(table)
                    ]
                }

        logger.debug(f"Schema loaded: {len(schema)} tables")
        return schema

    def get_export_timestamp(self) -> Optional[str]:
        """
        Timestamp of the last imported WCA export.

        Returns None when the metadata table or its row does not exist yet
        (no refresh has completed).
        """
        with self._connect() as conn:
            if not inspect(conn).has_table(METADATA_TABLE):
                return None
            row = conn.execute(text(self.EXPORT_TIMESTAMP_QUERY)).mappings().first()

        if row is None:
            return None
        return str(row["value"])

    def ping(self) -> bool:
        """True if a trivial query succeeds."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning(f"Database ping failed: {e}")
            return False
