"""Workflow plan and execution result models."""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from schemaseed.core.constraint_types import AutoFixSuggestion, ConstraintFix


StepOperation = Literal["insert", "update", "validate", "skip"]
StepState = Literal[
    "pending", "validating", "auto_fixing", "executing", "succeeded", "skipped", "failed"
]


class ConstraintCondition(BaseModel):
    """A precondition evaluated before a step runs."""
    type: Literal["exists", "equals", "custom", "business_rule"]
    table: Optional[str] = None
    field: Optional[str] = None
    value: Any = None
    rule_id: Optional[str] = None
    sql: Optional[str] = None
    required: bool = True
    description: str = ""


class FieldMapping(BaseModel):
    """
    Where a column value comes from.

    ``source`` is one of ``input.<field>``, ``generated.<kind>``,
    ``<step_id>.<field>``, ``constant`` or ``auto_fix``. For the last two the
    literal ``value`` is used. With ``fallback_to_value`` an unresolved source
    falls back to ``value``.
    """
    name: str
    source: str
    value: Any = None
    fallback_to_value: bool = False
    required: bool = False


class ErrorAction(BaseModel):
    type: Literal["fail", "skip", "retry", "auto_fix"] = "fail"
    max_retries: int = 1


class WorkflowStep(BaseModel):
    id: str
    table: str
    operation: StepOperation = "insert"
    required: bool = False
    description: str = ""
    conditions: List[ConstraintCondition] = Field(default_factory=list)
    field_mappings: List[FieldMapping] = Field(default_factory=list)
    on_error: ErrorAction = Field(default_factory=ErrorAction)
    dependencies: List[str] = Field(default_factory=list)
    auto_fixes: List[AutoFixSuggestion] = Field(default_factory=list)
    key_fields: List[str] = Field(default_factory=lambda: ["id"])

    def mapping(self, name: str) -> Optional[FieldMapping]:
        for mapping in self.field_mappings:
            if mapping.name == name:
                return mapping
        return None


class ErrorHandlingPolicy(BaseModel):
    strategy: Literal["fail_fast", "graceful_degradation", "best_effort"] = "graceful_degradation"
    max_failures: int = 1


class RollbackPolicy(BaseModel):
    enabled: bool = True
    on_critical_failure: bool = True
    preserve_successful_steps: bool = False


class ValidationPolicy(BaseModel):
    pre_execution: bool = True
    post_execution: bool = False


class WorkflowGenerationOptions(BaseModel):
    framework_type: Optional[str] = None
    user_creation_strategy: Literal["comprehensive", "minimal", "adaptive"] = "adaptive"
    constraint_handling: Literal["strict", "permissive", "auto_fix"] = "auto_fix"
    generate_optional_steps: bool = True
    include_dependency_creation: bool = True
    enable_auto_fixes: bool = False

    @model_validator(mode="after")
    def _auto_fix_mode_enables_fixes(self) -> "WorkflowGenerationOptions":
        if self.constraint_handling == "auto_fix":
            self.enable_auto_fixes = True
        return self


class Workflow(BaseModel):
    name: str
    description: str = ""
    version: str = "1.0"
    steps: List[WorkflowStep] = Field(default_factory=list)
    error_handling: ErrorHandlingPolicy = Field(default_factory=ErrorHandlingPolicy)
    rollback: RollbackPolicy = Field(default_factory=RollbackPolicy)
    validation: ValidationPolicy = Field(default_factory=ValidationPolicy)
    options: WorkflowGenerationOptions = Field(default_factory=WorkflowGenerationOptions)
    created_at: datetime = Field(default_factory=datetime.now)

    def step(self, step_id: str) -> Optional[WorkflowStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    @property
    def tables(self) -> List[str]:
        tables: List[str] = []
        for step in self.steps:
            if step.table not in tables:
                tables.append(step.table)
        return tables


# ==================== Execution results ====================


class ConstraintViolation(BaseModel):
    step_id: str
    table: str
    type: Literal["dependency", "validation", "business_rule", "condition"]
    message: str
    rule_id: Optional[str] = None
    field: Optional[str] = None
    required: bool = True
    fixes: List[ConstraintFix] = Field(default_factory=list)

    @property
    def can_auto_fix(self) -> bool:
        return any(fix.type == "set_field" for fix in self.fixes)


class AutoFixApplied(BaseModel):
    step_id: str
    table: str
    field: str
    old_value: Any = None
    new_value: Any = None
    description: str = ""
    rule_id: Optional[str] = None


class RollbackAction(BaseModel):
    """One entry in the compensation log."""
    step_id: str
    table: str
    action: Literal["delete", "restore"]
    key: Dict[str, Any] = Field(default_factory=dict)
    previous: List[Dict[str, Any]] = Field(default_factory=list)
    completed: bool = False
    error: Optional[str] = None


class StepResult(BaseModel):
    step_id: str
    table: str
    state: StepState = "pending"
    success: bool = False
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    violations: List[ConstraintViolation] = Field(default_factory=list)
    auto_fixes: List[AutoFixApplied] = Field(default_factory=list)
    duration_ms: float = 0.0
    attempts: int = 0
    rollback: Optional[RollbackAction] = None


class SkippedStep(BaseModel):
    step_id: str
    table: str
    reason: str
    violations: List[ConstraintViolation] = Field(default_factory=list)


class ExecutionSummary(BaseModel):
    total_steps: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    violations: int = 0
    auto_fixes: int = 0
    rollbacks: int = 0
    rules_discovered: int = 0
    confidence: float = 0.0
    duration_ms: float = 0.0
    aborted: bool = False


class ExecutionResult(BaseModel):
    workflow: str
    success: bool = False
    aborted: bool = False
    steps_executed: List[StepResult] = Field(default_factory=list)
    steps_failed: List[StepResult] = Field(default_factory=list)
    steps_skipped: List[SkippedStep] = Field(default_factory=list)
    constraint_violations: List[ConstraintViolation] = Field(default_factory=list)
    auto_fixes_applied: List[AutoFixApplied] = Field(default_factory=list)
    rollback_actions: List[RollbackAction] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    summary: ExecutionSummary = Field(default_factory=ExecutionSummary)

    def step_result(self, step_id: str) -> Optional[StepResult]:
        for result in self.steps_executed + self.steps_failed:
            if result.step_id == step_id:
                return result
        return None
