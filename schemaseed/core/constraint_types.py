"""Constraint shapes, business rules and handler results."""
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


CONSTRAINT_TYPES = ("check", "foreign_key", "unique", "primary_key", "not_null")

ConstraintType = Literal["check", "foreign_key", "unique", "primary_key", "not_null"]


class ConstraintBase(BaseModel):
    """Fields shared by every constraint kind."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str
    table: str
    columns: List[str] = Field(default_factory=list)


class PrimaryKeyConstraint(ConstraintBase):
    kind: Literal["primary_key"] = "primary_key"


class ForeignKeyConstraint(ConstraintBase):
    kind: Literal["foreign_key"] = "foreign_key"
    referenced_table: str
    referenced_schema: Optional[str] = None
    referenced_columns: List[str] = Field(default_factory=list)
    on_delete: Optional[str] = None
    nullable: bool = True

    @property
    def cascade_delete(self) -> bool:
        return (self.on_delete or "").upper() == "CASCADE"


class UniqueConstraint(ConstraintBase):
    kind: Literal["unique"] = "unique"


class CheckConstraint(ConstraintBase):
    kind: Literal["check"] = "check"
    check_clause: str


class NotNullConstraint(ConstraintBase):
    kind: Literal["not_null"] = "not_null"
    has_default: bool = False


Constraint = Annotated[
    Union[
        PrimaryKeyConstraint,
        ForeignKeyConstraint,
        UniqueConstraint,
        CheckConstraint,
        NotNullConstraint,
    ],
    Field(discriminator="kind"),
]


class ConstraintFix(BaseModel):
    """A single change a handler made, or wants made, to a row."""
    type: Literal[
        "set_field", "remove_field", "transform_value", "add_dependency", "bypass_constraint"
    ]
    field: Optional[str] = None
    value: Any = None
    description: str = ""
    dependency: Optional[str] = None


class ConstraintHandlingResult(BaseModel):
    """Outcome of running one or more handlers against a row."""
    success: bool
    original_data: Dict[str, Any] = Field(default_factory=dict)
    modified_data: Dict[str, Any] = Field(default_factory=dict)
    applied_fixes: List[ConstraintFix] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    bypass_required: bool = False
    handler_id: Optional[str] = None


class AutoFixSuggestion(BaseModel):
    """A remediation the discovery engine proposes for a business rule."""
    type: Literal["set_field", "create_dependency", "skip_operation", "modify_workflow"]
    description: str = ""
    table: str
    field: Optional[str] = None
    value: Any = None


class BusinessRule(BaseModel):
    """A higher-level invariant inferred from a constraint or trigger."""
    id: str
    name: str
    kind: Literal["validation", "dependency", "business_logic"]
    category: Literal["required_relationship", "conditional_insert", "business_rule"]
    table: str
    condition: str
    action: Literal["deny", "default", "require"]
    error_message: str = ""
    confidence: float = Field(ge=0.0, le=1.0)
    sql_pattern: str = ""
    source_constraint: Optional[str] = None
    dependencies: List[str] = Field(default_factory=list)
    auto_fix: Optional[AutoFixSuggestion] = None


class TableDependency(BaseModel):
    """A directed foreign-key edge: from_table depends on to_table."""
    model_config = ConfigDict(frozen=True)

    from_table: str
    from_column: str
    to_table: str
    to_column: str
    required: bool = False
    cascade_delete: bool = False
    constraint_name: Optional[str] = None
