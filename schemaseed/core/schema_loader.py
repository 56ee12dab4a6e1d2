"""Offline metadata client built from a SQL schema dump using SQLGlot."""
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from schemaseed.core.db_connector import MetadataClient, parse_trigger_definition

logger = logging.getLogger(__name__)

ON_DELETE_PATTERN = re.compile(r"ON\s+DELETE\s+(CASCADE|SET\s+NULL|SET\s+DEFAULT|RESTRICT|NO\s+ACTION)", re.IGNORECASE)
TRIGGER_PATTERN = re.compile(
    r"CREATE\s+(?:OR\s+REPLACE\s+)?(?:CONSTRAINT\s+)?TRIGGER\s+\"?([\w]+)\"?(.*?)\bON\s+([\w.\"]+)(.*?);",
    re.IGNORECASE | re.DOTALL,
)
INDEX_PATTERN = re.compile(
    r"CREATE\s+(UNIQUE\s+)?INDEX\s+(?:CONCURRENTLY\s+)?(?:IF\s+NOT\s+EXISTS\s+)?\"?(\w+)\"?\s+ON\s+(?:ONLY\s+)?([\w.\"]+)\s*(?:USING\s+\w+\s*)?\(([^)]*)\)",
    re.IGNORECASE,
)


def _bare_name(qualified: str) -> str:
    return qualified.replace('"', "").split(".")[-1]


def _column_name(node: exp.Expression) -> str:
    if isinstance(node, exp.Ordered):
        node = node.this
    if isinstance(node, (exp.Column, exp.Identifier)):
        return node.name
    return node.sql()


@dataclass
class ParsedTable:
    """Catalog rows for one CREATE TABLE statement, in inspector shapes."""
    name: str
    schema: Optional[str] = None
    columns: List[Dict[str, Any]] = field(default_factory=list)
    primary_key: Dict[str, Any] = field(default_factory=dict)
    foreign_keys: List[Dict[str, Any]] = field(default_factory=list)
    unique_constraints: List[Dict[str, Any]] = field(default_factory=list)
    check_constraints: List[Dict[str, Any]] = field(default_factory=list)
    indexes: List[Dict[str, Any]] = field(default_factory=list)
    triggers: List[Dict[str, Any]] = field(default_factory=list)


class SchemaLoader:
    """Load and parse SQL schema files."""

    def __init__(self, dialect: str = "postgres"):
        """Initialize schema loader with the dump's dialect."""
        self.dialect = dialect or None

    def load_from_file(self, file_path: Path) -> Dict[str, ParsedTable]:
        """Load schema from a SQL file."""
        with open(file_path, "r", encoding="utf-8") as f:
            sql_content = f.read()

        return self.parse_schema(sql_content)

    def parse_schema(self, sql_content: str) -> Dict[str, ParsedTable]:
        """Parse SQL schema content into per-table catalog rows."""
        tables: Dict[str, ParsedTable] = {}

        for statement in self._parse_statements(sql_content):
            if isinstance(statement, exp.Create) and str(statement.args.get("kind", "")).upper() == "TABLE":
                parsed = self._parse_create_table(statement)
                if parsed:
                    tables[parsed.name] = parsed

        for match in TRIGGER_PATTERN.finditer(sql_content):
            table_name = _bare_name(match.group(3))
            if table_name in tables:
                tables[table_name].triggers.append(parse_trigger_definition(match.group(1), match.group(0)))

        for match in INDEX_PATTERN.finditer(sql_content):
            table_name = _bare_name(match.group(3))
            if table_name in tables:
                tables[table_name].indexes.append({
                    "name": match.group(2),
                    "column_names": [c.strip().strip('"').split()[0] for c in match.group(4).split(",") if c.strip()],
                    "unique": bool(match.group(1)),
                })

        return tables

    def _parse_statements(self, sql_content: str) -> List[exp.Expression]:
        try:
            return [s for s in sqlglot.parse(sql_content, read=self.dialect) if s is not None]
        except SqlglotError as e:
            logger.debug(f"Whole-file parse failed, parsing statement by statement: {e}")

        # Function bodies and other unsupported statements are skipped one by one
        statements = []
        for chunk in re.split(r";\s*\n", sql_content):
            if not chunk.strip():
                continue
            try:
                statements.extend(s for s in sqlglot.parse(chunk, read=self.dialect) if s is not None)
            except SqlglotError:
                logger.debug(f"Skipping unparseable statement: {chunk.strip()[:60]}")
        return statements

    def _parse_create_table(self, statement: exp.Create) -> Optional[ParsedTable]:
        """Parse a CREATE TABLE statement."""
        schema_node = statement.this
        if not isinstance(schema_node, exp.Schema) or not isinstance(schema_node.this, exp.Table):
            return None

        table_node = schema_node.this
        parsed = ParsedTable(name=table_node.name, schema=table_node.db or None)
        pk_columns: List[str] = []

        for expr in schema_node.expressions:
            if isinstance(expr, exp.ColumnDef):
                self._parse_column(expr, parsed, pk_columns)
            elif isinstance(expr, exp.Constraint):
                for inner in expr.expressions:
                    self._parse_table_constraint(inner, expr.name or None, parsed, pk_columns)
            else:
                self._parse_table_constraint(expr, None, parsed, pk_columns)

        if pk_columns:
            parsed.primary_key = {"name": f"{parsed.name}_pkey", "constrained_columns": pk_columns}
            for column in parsed.columns:
                if column["name"] in pk_columns:
                    column["nullable"] = False

        for index, check in enumerate(parsed.check_constraints):
            if not check.get("name"):
                check["name"] = f"{parsed.name}_check{index + 1 if index else ''}"

        return parsed

    def _parse_column(self, column_def: exp.ColumnDef, parsed: ParsedTable, pk_columns: List[str]) -> None:
        """Parse a column definition and its inline constraints."""
        name = column_def.name
        kind = column_def.args.get("kind")
        column = {
            "name": name,
            "type": kind.sql(dialect=self.dialect) if kind else "UNKNOWN",
            "nullable": True,
            "default": None,
        }

        for constraint in column_def.constraints:
            constraint_name = constraint.name or None if isinstance(constraint, exp.ColumnConstraint) else None
            kind_node = constraint.args.get("kind") if isinstance(constraint, exp.ColumnConstraint) else constraint

            if isinstance(kind_node, exp.NotNullColumnConstraint):
                column["nullable"] = bool(kind_node.args.get("allow_null"))
            elif isinstance(kind_node, exp.PrimaryKeyColumnConstraint):
                pk_columns.append(name)
            elif isinstance(kind_node, exp.DefaultColumnConstraint):
                column["default"] = kind_node.this.sql(dialect=self.dialect) if kind_node.this else None
            elif isinstance(kind_node, exp.UniqueColumnConstraint):
                parsed.unique_constraints.append({
                    "name": constraint_name or f"{parsed.name}_{name}_key",
                    "column_names": [name],
                })
            elif isinstance(kind_node, exp.CheckColumnConstraint):
                parsed.check_constraints.append({
                    "name": constraint_name or f"{parsed.name}_{name}_check",
                    "sqltext": kind_node.this.sql(dialect=self.dialect),
                })
            elif isinstance(kind_node, exp.Reference):
                parsed.foreign_keys.append(
                    self._foreign_key(constraint_name or f"{parsed.name}_{name}_fkey", [name], kind_node)
                )

        parsed.columns.append(column)

    def _parse_table_constraint(
        self,
        node: exp.Expression,
        name: Optional[str],
        parsed: ParsedTable,
        pk_columns: List[str],
    ) -> None:
        if isinstance(node, exp.PrimaryKey):
            pk_columns.extend(_column_name(e) for e in node.expressions)
        elif isinstance(node, exp.ForeignKey):
            columns = [_column_name(e) for e in node.expressions]
            reference = node.args.get("reference")
            if reference is not None:
                fk = self._foreign_key(name or f"{parsed.name}_{'_'.join(columns)}_fkey", columns, reference)
                if fk["options"].get("ondelete") is None:
                    fk["options"] = self._options(node.sql(dialect=self.dialect))
                parsed.foreign_keys.append(fk)
        elif isinstance(node, exp.CheckColumnConstraint):
            parsed.check_constraints.append({"name": name, "sqltext": node.this.sql(dialect=self.dialect)})
        elif isinstance(node, exp.UniqueColumnConstraint):
            columns = [_column_name(e) for e in node.find_all(exp.Identifier)]
            parsed.unique_constraints.append({
                "name": name or f"{parsed.name}_{'_'.join(columns)}_key",
                "column_names": columns,
            })

    def _foreign_key(self, name: str, columns: List[str], reference: exp.Reference) -> Dict[str, Any]:
        target = reference.this
        if isinstance(target, exp.Schema):
            ref_table = target.this
            ref_columns = [_column_name(e) for e in target.expressions]
        else:
            ref_table = target
            ref_columns = []

        return {
            "name": name,
            "constrained_columns": columns,
            "referred_schema": ref_table.db or None if isinstance(ref_table, exp.Table) else None,
            "referred_table": ref_table.name,
            "referred_columns": ref_columns or ["id"],
            "options": self._options(reference.sql(dialect=self.dialect)),
        }

    @staticmethod
    def _options(sql: str) -> Dict[str, Any]:
        match = ON_DELETE_PATTERN.search(sql)
        return {"ondelete": " ".join(match.group(1).upper().split())} if match else {}


class SchemaFileClient(MetadataClient):
    """Read-only MetadataClient over a schema dump, for planning without a live database."""

    def __init__(self, sql_content: str, schema: Optional[str] = None, dialect: str = "postgres"):
        self.schema = schema
        self.dialect = "postgresql" if dialect == "postgres" else dialect
        self.tables = {
            name: table
            for name, table in SchemaLoader(dialect).parse_schema(sql_content).items()
            if schema is None or table.schema in (None, schema)
        }

    @classmethod
    def from_file(cls, file_path: Path, schema: Optional[str] = None, dialect: str = "postgres") -> "SchemaFileClient":
        with open(file_path, "r", encoding="utf-8") as f:
            return cls(f.read(), schema=schema, dialect=dialect)

    def _get(self, table_name: str) -> ParsedTable:
        try:
            return self.tables[table_name]
        except KeyError:
            raise KeyError(f"Table {table_name} not found in schema file")

    def ping(self) -> None:
        return None

    def list_tables(self) -> List[str]:
        return sorted(self.tables)

    def get_columns(self, table_name: str) -> List[Dict[str, Any]]:
        return [dict(c) for c in self._get(table_name).columns]

    def get_primary_key(self, table_name: str) -> Dict[str, Any]:
        return dict(self._get(table_name).primary_key)

    def get_foreign_keys(self, table_name: str) -> List[Dict[str, Any]]:
        return list(self._get(table_name).foreign_keys)

    def get_unique_constraints(self, table_name: str) -> List[Dict[str, Any]]:
        return list(self._get(table_name).unique_constraints)

    def get_check_constraints(self, table_name: str) -> List[Dict[str, Any]]:
        return list(self._get(table_name).check_constraints)

    def get_indexes(self, table_name: str) -> List[Dict[str, Any]]:
        return list(self._get(table_name).indexes)

    def get_triggers(self, table_name: str) -> List[Dict[str, Any]]:
        return list(self._get(table_name).triggers)

    def count_rows(self, table_name: str) -> int:
        self._get(table_name)
        return 0

    def table_exists(self, table_name: str) -> bool:
        return table_name in self.tables

    def select_rows(
        self,
        table_name: str,
        filters: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        self._get(table_name)
        return []
