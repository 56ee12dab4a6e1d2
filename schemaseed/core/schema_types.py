"""Typed snapshots of database schema produced by introspection."""
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from schemaseed.core.constraint_types import (
    BusinessRule,
    CheckConstraint,
    Constraint,
    ForeignKeyConstraint,
    TableDependency,
)


TIMESTAMP_COLUMNS = {"created_at", "updated_at", "timestamp"}

TableRole = Literal["user", "content", "association", "system", "auth"]


class Column(BaseModel):
    """Information about a database column."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str
    data_type: str = "UNKNOWN"
    nullable: bool = True
    default: Optional[str] = None
    is_primary_key: bool = False
    is_foreign_key: bool = False
    max_length: Optional[int] = None
    enum_values: Optional[List[str]] = None


class Index(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    columns: List[str] = Field(default_factory=list)
    unique: bool = False


class Trigger(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    table: str
    timing: Optional[str] = None
    events: List[str] = Field(default_factory=list)
    function_name: Optional[str] = None


class Table(BaseModel):
    """
    Immutable snapshot of one table.

    A new introspection pass builds a new Table; nothing mutates one in place.
    """
    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str
    table_schema: Optional[str] = None
    columns: List[Column] = Field(default_factory=list)
    constraints: List[Constraint] = Field(default_factory=list)
    indexes: List[Index] = Field(default_factory=list)
    triggers: List[Trigger] = Field(default_factory=list)
    row_count: Optional[int] = None

    @property
    def qualified_name(self) -> str:
        return f"{self.table_schema}.{self.name}" if self.table_schema else self.name

    @property
    def column_names(self) -> List[str]:
        return [col.name for col in self.columns]

    def column(self, name: str) -> Optional[Column]:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def constraints_of(self, kind: str) -> List[Constraint]:
        return [c for c in self.constraints if c.kind == kind]

    @property
    def primary_key_columns(self) -> List[str]:
        return [col.name for col in self.columns if col.is_primary_key]

    @property
    def foreign_keys(self) -> List[ForeignKeyConstraint]:
        return self.constraints_of("foreign_key")

    @property
    def check_constraints(self) -> List[CheckConstraint]:
        return self.constraints_of("check")

    @property
    def foreign_key_columns(self) -> List[str]:
        columns: List[str] = []
        for fk in self.foreign_keys:
            columns.extend(c for c in fk.columns if c not in columns)
        return columns

    @property
    def non_key_columns(self) -> List[str]:
        keys = set(self.primary_key_columns) | set(self.foreign_key_columns)
        return [col.name for col in self.columns if col.name not in keys]

    @property
    def has_timestamps(self) -> bool:
        return any(col.name in TIMESTAMP_COLUMNS for col in self.columns)

    def to_text(self) -> str:
        """Render the table as an indented, human-readable outline."""
        lines = [f"Table: {self.qualified_name}"]
        for col in self.columns:
            pk = " PRIMARY KEY" if col.is_primary_key else ""
            nullable = "" if col.nullable else " NOT NULL"
            lines.append(f"  - {col.name} ({col.data_type}){pk}{nullable}")
        for fk in self.foreign_keys:
            refs = ", ".join(fk.referenced_columns)
            lines.append(f"  FK {', '.join(fk.columns)} -> {fk.referenced_table}({refs})")
        for check in self.check_constraints:
            lines.append(f"  CHECK {check.name}: {check.check_clause}")
        return "\n".join(lines)


class SchemaRelationship(BaseModel):
    from_table: str
    from_column: str
    to_table: str
    to_column: str
    relationship_type: Literal["one_to_one", "one_to_many"] = "one_to_many"
    cascade_delete: bool = False
    is_required: bool = False


class TablePattern(BaseModel):
    """Role inferred for a table from its column names and keys."""
    table: str
    confidence: float = Field(ge=0.0, le=1.0)
    evidence: List[str] = Field(default_factory=list)
    suggested_role: TableRole = "system"
    column_mappings: Dict[str, List[str]] = Field(default_factory=dict)


class FrameworkGuess(BaseModel):
    type: str = "custom"
    version: Optional[str] = None
    confidence: float = 0.0
    evidence: List[str] = Field(default_factory=list)


class ConstraintRule(BaseModel):
    table: str
    column: Optional[str] = None
    rule_type: Literal["required_relationship", "conditional_insert", "business_rule"]
    description: str
    constraint_name: Optional[str] = None


class ConstraintRules(BaseModel):
    user_creation: List[ConstraintRule] = Field(default_factory=list)
    data_integrity: List[ConstraintRule] = Field(default_factory=list)
    business_logic: List[ConstraintRule] = Field(default_factory=list)


class Recommendation(BaseModel):
    type: str
    priority: Literal["high", "medium", "low"]
    message: str
    tables: List[str] = Field(default_factory=list)


class SchemaIntrospectionResult(BaseModel):
    tables: List[Table] = Field(default_factory=list)
    relationships: List[SchemaRelationship] = Field(default_factory=list)
    patterns: List[TablePattern] = Field(default_factory=list)
    constraints: ConstraintRules = Field(default_factory=ConstraintRules)
    framework: FrameworkGuess = Field(default_factory=FrameworkGuess)
    recommendations: List[Recommendation] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    cancelled: bool = False

    def table(self, name: str) -> Optional[Table]:
        for table in self.tables:
            if table.name == name:
                return table
        return None


class TableConstraints(BaseModel):
    """Discovery output for one table."""
    table: Table
    rule_ids: List[str] = Field(default_factory=list)


class ConstraintMetadata(BaseModel):
    """
    Everything discovery learned about a set of tables.

    Cached by table-name set; callers treat it as read-only.
    """
    business_rules: List[BusinessRule] = Field(default_factory=list)
    dependencies: List[TableDependency] = Field(default_factory=list)
    tables: List[TableConstraints] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    discovery_timestamp: datetime = Field(default_factory=datetime.now)
    warnings: List[str] = Field(default_factory=list)

    def table(self, name: str) -> Optional[Table]:
        for entry in self.tables:
            if entry.table.name == name:
                return entry.table
        return None

    def rule(self, rule_id: str) -> Optional[BusinessRule]:
        for rule in self.business_rules:
            if rule.id == rule_id:
                return rule
        return None

    def rules_for(self, table_name: str) -> List[BusinessRule]:
        return [rule for rule in self.business_rules if rule.table == table_name]
