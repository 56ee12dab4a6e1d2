"""Metadata and row access for a live database."""
import logging
import re
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import MetaData, Table, create_engine, delete, func, insert, inspect, literal_column, select, table, text, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from schemaseed.core.errors import ConnectivityError, QueryError, ReadOnlyClientError

logger = logging.getLogger(__name__)

TRIGGER_FUNCTION_PATTERN = re.compile(r"EXECUTE\s+(?:PROCEDURE|FUNCTION)\s+([^(\s]+)", re.IGNORECASE)
TRIGGER_TIMING_PATTERN = re.compile(r"\b(BEFORE|AFTER|INSTEAD\s+OF)\b", re.IGNORECASE)
TRIGGER_EVENT_PATTERN = re.compile(r"\b(INSERT|UPDATE|DELETE|TRUNCATE)\b", re.IGNORECASE)


class MetadataClient(ABC):
    """
    Query surface over a database catalog plus simple row operations.

    Raw catalog rows use the same dictionary shapes as SQLAlchemy's
    inspector so any provider can stand in for a live connection.
    """

    dialect: str = "generic"
    schema: Optional[str] = None

    @abstractmethod
    def ping(self) -> None:
        """Raise ConnectivityError when the database cannot be reached."""

    @abstractmethod
    def list_tables(self) -> List[str]:
        ...

    @abstractmethod
    def get_columns(self, table_name: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def get_primary_key(self, table_name: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def get_foreign_keys(self, table_name: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def get_unique_constraints(self, table_name: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def get_check_constraints(self, table_name: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def get_indexes(self, table_name: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def get_triggers(self, table_name: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def count_rows(self, table_name: str) -> int:
        ...

    @abstractmethod
    def table_exists(self, table_name: str) -> bool:
        ...

    @abstractmethod
    def select_rows(
        self,
        table_name: str,
        filters: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        ...

    def insert_row(self, table_name: str, row: Dict[str, Any]) -> Dict[str, Any]:
        raise ReadOnlyClientError(f"{type(self).__name__} cannot insert into {table_name}")

    def insert_rows(self, table_name: str, rows: List[Dict[str, Any]]) -> int:
        raise ReadOnlyClientError(f"{type(self).__name__} cannot insert into {table_name}")

    def update_rows(self, table_name: str, values: Dict[str, Any], filters: Dict[str, Any]) -> int:
        raise ReadOnlyClientError(f"{type(self).__name__} cannot update {table_name}")

    def delete_rows(self, table_name: str, filters: Dict[str, Any]) -> int:
        raise ReadOnlyClientError(f"{type(self).__name__} cannot delete from {table_name}")

    def scalar(self, sql: str, params: Optional[Dict[str, Any]] = None) -> Any:
        raise ReadOnlyClientError(f"{type(self).__name__} cannot run SQL")

    def close(self) -> None:
        """Release any held resources."""


class SQLAlchemyMetadataClient(MetadataClient):
    """MetadataClient backed by a SQLAlchemy engine."""

    def __init__(self, connection_string: str, schema: Optional[str] = None, **engine_kwargs: Any):
        """
        Initialize and verify the connection.

        Args:
            connection_string: SQLAlchemy database URL
            schema: Schema to introspect; the dialect default when omitted
            **engine_kwargs: Passed through to ``create_engine``
        """
        self.connection_string = connection_string
        self.engine: Optional[Engine] = None
        self.dialect = ""
        self._tables: Dict[str, Table] = {}
        self._tables_lock = threading.Lock()
        self._connect(engine_kwargs)
        self.schema = schema if schema is not None else self._default_schema()

    def _connect(self, engine_kwargs: Dict[str, Any]) -> None:
        """Establish database connection."""
        try:
            self.engine = create_engine(self.connection_string, **engine_kwargs)
            self.dialect = self.engine.dialect.name
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise ConnectivityError(f"Failed to connect to database: {str(e)}")

    def _default_schema(self) -> Optional[str]:
        # SQLite exposes a single "main" schema that must be addressed as None
        if self.dialect == "sqlite":
            return None
        return inspect(self._engine()).default_schema_name

    def _engine(self) -> Engine:
        if self.engine is None:
            raise ConnectivityError("Not connected to database")
        return self.engine

    @contextmanager
    def _query(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            raise QueryError(f"{operation} failed: {str(e)}")

    def ping(self) -> None:
        try:
            with self._engine().connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise ConnectivityError(f"Database unreachable: {str(e)}")

    # ==================== Catalog ====================

    def list_tables(self) -> List[str]:
        with self._query("Listing tables"):
            return sorted(inspect(self._engine()).get_table_names(schema=self.schema))

    def get_columns(self, table_name: str) -> List[Dict[str, Any]]:
        with self._query(f"Reading columns of {table_name}"):
            return inspect(self._engine()).get_columns(table_name, schema=self.schema)

    def get_primary_key(self, table_name: str) -> Dict[str, Any]:
        with self._query(f"Reading primary key of {table_name}"):
            return inspect(self._engine()).get_pk_constraint(table_name, schema=self.schema) or {}

    def get_foreign_keys(self, table_name: str) -> List[Dict[str, Any]]:
        with self._query(f"Reading foreign keys of {table_name}"):
            return inspect(self._engine()).get_foreign_keys(table_name, schema=self.schema)

    def get_unique_constraints(self, table_name: str) -> List[Dict[str, Any]]:
        with self._query(f"Reading unique constraints of {table_name}"):
            try:
                return inspect(self._engine()).get_unique_constraints(table_name, schema=self.schema)
            except NotImplementedError:
                return []

    def get_check_constraints(self, table_name: str) -> List[Dict[str, Any]]:
        with self._query(f"Reading check constraints of {table_name}"):
            try:
                return inspect(self._engine()).get_check_constraints(table_name, schema=self.schema)
            except NotImplementedError:
                return []

    def get_indexes(self, table_name: str) -> List[Dict[str, Any]]:
        with self._query(f"Reading indexes of {table_name}"):
            return inspect(self._engine()).get_indexes(table_name, schema=self.schema)

    def get_triggers(self, table_name: str) -> List[Dict[str, Any]]:
        """Read trigger names and their function provenance."""
        if self.dialect == "postgresql":
            return self._postgres_triggers(table_name)
        if self.dialect == "sqlite":
            return self._sqlite_triggers(table_name)
        return []

    def _postgres_triggers(self, table_name: str) -> List[Dict[str, Any]]:
        query = text(
            """
            SELECT trigger_name, action_timing, event_manipulation, action_statement
            FROM information_schema.triggers
            WHERE event_object_schema = :schema AND event_object_table = :table
            ORDER BY trigger_name
            """
        )
        triggers: Dict[str, Dict[str, Any]] = {}
        with self._query(f"Reading triggers of {table_name}"):
            with self._engine().connect() as conn:
                rows = conn.execute(query, {"schema": self.schema or "public", "table": table_name})
                for row in rows.mappings():
                    entry = triggers.setdefault(row["trigger_name"], {
                        "name": row["trigger_name"],
                        "timing": row["action_timing"],
                        "events": [],
                        "function_name": _function_name(row["action_statement"] or ""),
                    })
                    entry["events"].append(row["event_manipulation"])
        return list(triggers.values())

    def _sqlite_triggers(self, table_name: str) -> List[Dict[str, Any]]:
        query = text("SELECT name, sql FROM sqlite_master WHERE type = 'trigger' AND tbl_name = :table ORDER BY name")
        triggers = []
        with self._query(f"Reading triggers of {table_name}"):
            with self._engine().connect() as conn:
                for row in conn.execute(query, {"table": table_name}).mappings():
                    triggers.append(parse_trigger_definition(row["name"], row["sql"] or ""))
        return triggers

    def count_rows(self, table_name: str) -> int:
        with self._query(f"Counting rows of {table_name}"):
            with self._engine().connect() as conn:
                stmt = select(func.count()).select_from(self._table(table_name))
                return int(conn.execute(stmt).scalar() or 0)

    def table_exists(self, table_name: str) -> bool:
        """Probe a table with a zero-row select."""
        stmt = select(literal_column("1")).select_from(table(table_name, schema=self.schema)).limit(0)
        try:
            with self._engine().connect() as conn:
                conn.execute(stmt)
            return True
        except SQLAlchemyError:
            return False

    # ==================== Rows ====================

    def _table(self, table_name: str) -> Table:
        with self._tables_lock:
            if table_name not in self._tables:
                self._tables[table_name] = Table(
                    table_name, MetaData(), autoload_with=self._engine(), schema=self.schema
                )
            return self._tables[table_name]

    def _where(self, tbl: Table, filters: Optional[Dict[str, Any]]) -> List[Any]:
        clauses = []
        for name, value in (filters or {}).items():
            column = tbl.c[name]
            clauses.append(column.is_(None) if value is None else column == value)
        return clauses

    def _known_columns(self, tbl: Table, row: Dict[str, Any]) -> Dict[str, Any]:
        known = {k: v for k, v in row.items() if k in tbl.c}
        dropped = set(row) - set(known)
        if dropped:
            logger.debug(f"Ignoring unknown columns for {tbl.name}: {sorted(dropped)}")
        return known

    def select_rows(
        self,
        table_name: str,
        filters: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        with self._query(f"Selecting from {table_name}"):
            tbl = self._table(table_name)
            stmt = select(tbl).where(*self._where(tbl, filters))
            if limit is not None:
                stmt = stmt.limit(limit)
            with self._engine().connect() as conn:
                return [dict(row) for row in conn.execute(stmt).mappings()]

    def insert_row(self, table_name: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert one row and return it as stored, including generated keys."""
        with self._query(f"Inserting into {table_name}"):
            tbl = self._table(table_name)
            values = self._known_columns(tbl, row)
            with self._engine().begin() as conn:
                result = conn.execute(insert(tbl).values(**values))
                pk_columns = list(tbl.primary_key.columns)
                inserted = result.inserted_primary_key
                if not pk_columns or inserted is None:
                    return dict(values)

                key = {col.name: inserted[i] for i, col in enumerate(pk_columns)}
                if any(v is None for v in key.values()):
                    return dict(values)
                stored = conn.execute(select(tbl).where(*self._where(tbl, key))).mappings().first()
                return dict(stored) if stored else {**values, **key}

    def insert_rows(self, table_name: str, rows: List[Dict[str, Any]]) -> int:
        """Insert a batch of rows in one transaction."""
        if not rows:
            return 0
        with self._query(f"Batch insert into {table_name}"):
            tbl = self._table(table_name)
            values = [self._known_columns(tbl, row) for row in rows]
            with self._engine().begin() as conn:
                conn.execute(insert(tbl), values)
            return len(values)

    def update_rows(self, table_name: str, values: Dict[str, Any], filters: Dict[str, Any]) -> int:
        with self._query(f"Updating {table_name}"):
            tbl = self._table(table_name)
            stmt = update(tbl).where(*self._where(tbl, filters)).values(**self._known_columns(tbl, values))
            with self._engine().begin() as conn:
                return conn.execute(stmt).rowcount

    def delete_rows(self, table_name: str, filters: Dict[str, Any]) -> int:
        if not filters:
            raise QueryError(f"Refusing to delete from {table_name} without filters")
        with self._query(f"Deleting from {table_name}"):
            tbl = self._table(table_name)
            with self._engine().begin() as conn:
                return conn.execute(delete(tbl).where(*self._where(tbl, filters))).rowcount

    def scalar(self, sql: str, params: Optional[Dict[str, Any]] = None) -> Any:
        with self._query("Scalar query"):
            with self._engine().connect() as conn:
                return conn.execute(text(sql), params or {}).scalar()

    def close(self) -> None:
        """Close database connection."""
        if self.engine:
            self.engine.dispose()
            self.engine = None


def _function_name(action_statement: str) -> Optional[str]:
    match = TRIGGER_FUNCTION_PATTERN.search(action_statement)
    return match.group(1).strip() if match else None


def parse_trigger_definition(name: str, definition: str) -> Dict[str, Any]:
    """Pull timing, events and the executed function out of CREATE TRIGGER text."""
    timing = TRIGGER_TIMING_PATTERN.search(definition)
    header = re.split(r"\bON\b", definition, maxsplit=1, flags=re.IGNORECASE)[0]
    return {
        "name": name,
        "timing": " ".join(timing.group(1).upper().split()) if timing else None,
        "events": [event.upper() for event in TRIGGER_EVENT_PATTERN.findall(header)],
        "function_name": _function_name(definition),
    }
