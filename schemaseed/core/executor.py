"""Constraint-aware workflow execution with auto-fix and compensation rollback."""
import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from schemaseed.core.check_parser import CheckExpressionParser
from schemaseed.core.constraint_discovery import ConstraintDiscoveryEngine
from schemaseed.core.constraint_types import CheckConstraint, ConstraintFix
from schemaseed.core.db_connector import MetadataClient
from schemaseed.core.errors import (
    SchemaSeedError,
    UnsupportedCheckExpression,
    WorkflowAbortedError,
    WorkflowExecutionError,
)
from schemaseed.core.handlers.registry import ConstraintRegistry
from schemaseed.core.schema_types import ConstraintMetadata, Table
from schemaseed.core.workflow_types import (
    AutoFixApplied,
    ConstraintCondition,
    ConstraintViolation,
    ExecutionResult,
    ExecutionSummary,
    RollbackAction,
    SkippedStep,
    StepResult,
    Workflow,
    WorkflowStep,
)

logger = logging.getLogger(__name__)

MISSING = object()

GENERATORS = {
    "uuid": lambda: str(uuid.uuid4()),
    "now": datetime.now,
    "today": date.today,
    "true": lambda: True,
    "false": lambda: False,
    "null": lambda: None,
}


class ExecutionContext:
    """Mutable state of one workflow run. Writes are serialized with a lock."""

    def __init__(
        self,
        input_data: Optional[Dict[str, Any]] = None,
        constraints: Optional[ConstraintMetadata] = None,
        total_steps: int = 0,
    ):
        self.input_data = input_data or {}
        self.constraints = constraints
        self.generated: Dict[str, Any] = {}
        self.step_results: Dict[str, StepResult] = {}
        self.compensation_log: List[RollbackAction] = []
        self.current_step = 0
        self.total_steps = total_steps
        self._lock = threading.Lock()

    def input_value(self, table: str, name: str) -> Any:
        scoped = self.input_data.get(table)
        if isinstance(scoped, dict) and name in scoped:
            return scoped[name]
        if name in self.input_data:
            return self.input_data[name]
        return MISSING

    def remember_generated(self, key: str, value: Any) -> None:
        with self._lock:
            self.generated[key] = value

    def step_data(self, step_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            result = self.step_results.get(step_id)
            return dict(result.data) if result is not None else None

    def succeeded(self, step_id: str) -> bool:
        with self._lock:
            result = self.step_results.get(step_id)
            return result is not None and result.success

    def record(self, result: StepResult) -> None:
        with self._lock:
            self.step_results[result.step_id] = result
            self.current_step += 1
            if result.success and result.rollback is not None:
                self.compensation_log.append(result.rollback)


@dataclass
class StepOutcome:
    result: StepResult
    skip_reason: Optional[str] = None
    abort: bool = False


@dataclass
class _RunState:
    failures: int = 0
    aborted: bool = False
    critical: bool = False
    warnings: List[str] = field(default_factory=list)


class ConstraintAwareExecutor:
    """
    Runs workflows step by step against the database.

    Each step moves pending -> validating -> (auto_fixing) -> executing ->
    succeeded | skipped | failed. The workflow passed in is copied; field
    mapping changes made by auto-fixes only affect the copy.
    """

    def __init__(
        self,
        client: MetadataClient,
        registry: Optional[ConstraintRegistry] = None,
        discovery: Optional[ConstraintDiscoveryEngine] = None,
        max_workers: int = 1,
        raise_on_abort: bool = False,
    ):
        self.client = client
        self.registry = registry or ConstraintRegistry.with_default_handlers()
        self.discovery = discovery
        self.max_workers = max(1, max_workers)
        self.raise_on_abort = raise_on_abort
        self.parser = CheckExpressionParser()

    def execute(
        self,
        workflow: Workflow,
        input_data: Optional[Dict[str, Any]] = None,
        constraints: Optional[ConstraintMetadata] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ExecutionResult:
        """
        Execute a workflow.

        Args:
            workflow: Plan to run; never mutated
            input_data: Values for ``input.*`` mappings, flat or keyed by table
            constraints: Metadata the workflow was generated from; discovered
                when omitted and a discovery engine is available
            cancel_event: Checked between steps

        Returns:
            ExecutionResult with a summary, even on partial failure

        Raises:
            ConnectivityError: constraint discovery could not reach the database
            WorkflowAbortedError: the run aborted and ``raise_on_abort`` is set
        """
        started = time.perf_counter()
        workflow = workflow.model_copy(deep=True)
        if constraints is None and self.discovery is not None:
            constraints = self.discovery.discover(workflow.tables)

        ctx = ExecutionContext(input_data, constraints, total_steps=len(workflow.steps))
        result = ExecutionResult(workflow=workflow.name)
        state = _RunState()
        logger.info(f"Executing workflow {workflow.name} ({len(workflow.steps)} steps)")

        if self.max_workers > 1:
            self._run_waves(workflow, ctx, result, state, cancel_event)
        else:
            for step in workflow.steps:
                if self._should_stop(state, cancel_event):
                    break
                self._collect(self._run_step(step, ctx, workflow), workflow, result, state)

        self._skip_unrun(workflow, ctx, result, state)

        if state.critical and workflow.rollback.enabled and workflow.rollback.on_critical_failure:
            if workflow.rollback.preserve_successful_steps:
                result.warnings.append("Rollback skipped; successful steps are preserved")
            else:
                self._rollback(ctx, result)

        if workflow.validation.post_execution and not state.critical:
            self._post_validate(result)

        result.warnings.extend(state.warnings)
        result.aborted = state.aborted
        result.success = bool(result.steps_executed) and not result.steps_failed and not state.aborted
        result.summary = ExecutionSummary(
            total_steps=len(workflow.steps),
            succeeded=len(result.steps_executed),
            skipped=len(result.steps_skipped),
            failed=len(result.steps_failed),
            violations=len(result.constraint_violations),
            auto_fixes=len(result.auto_fixes_applied),
            rollbacks=sum(1 for a in result.rollback_actions if a.completed),
            rules_discovered=len(constraints.business_rules) if constraints else 0,
            confidence=constraints.confidence if constraints else 0.0,
            duration_ms=(time.perf_counter() - started) * 1000,
            aborted=state.aborted,
        )
        logger.info(
            f"Workflow {workflow.name} finished: {result.summary.succeeded} succeeded, "
            f"{result.summary.skipped} skipped, {result.summary.failed} failed"
        )

        if state.aborted and self.raise_on_abort:
            raise WorkflowAbortedError(f"Workflow {workflow.name} aborted", result=result)
        return result

    # ==================== Scheduling ====================

    def _should_stop(self, state: _RunState, cancel_event: Optional[threading.Event]) -> bool:
        if state.aborted:
            return True
        if cancel_event is not None and cancel_event.is_set():
            state.aborted = True
            state.warnings.append("Execution cancelled")
            return True
        return False

    def _run_waves(
        self,
        workflow: Workflow,
        ctx: ExecutionContext,
        result: ExecutionResult,
        state: _RunState,
        cancel_event: Optional[threading.Event],
    ) -> None:
        """Run steps whose dependencies are settled concurrently, wave by wave."""
        pending = list(workflow.steps)
        settled: set = set()
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            while pending and not self._should_stop(state, cancel_event):
                wave = [s for s in pending if all(d in settled for d in s.dependencies)]
                if not wave:
                    # Unknown or circular dependencies; the step is skipped for unmet dependencies
                    wave = [pending[0]]
                logger.debug(f"Running wave: {', '.join(s.id for s in wave)}")
                outcomes = list(pool.map(lambda s: self._run_step(s, ctx, workflow), wave))
                for step, outcome in zip(wave, outcomes):
                    pending.remove(step)
                    settled.add(step.id)
                    self._collect(outcome, workflow, result, state)

    def _collect(self, outcome: StepOutcome, workflow: Workflow, result: ExecutionResult, state: _RunState) -> None:
        step_result = outcome.result
        result.constraint_violations.extend(step_result.violations)
        result.auto_fixes_applied.extend(step_result.auto_fixes)
        result.warnings.extend(w for w in dict.fromkeys(step_result.warnings) if w not in result.warnings)

        if step_result.state == "succeeded":
            result.steps_executed.append(step_result)
        elif step_result.state == "skipped":
            result.steps_skipped.append(SkippedStep(
                step_id=step_result.step_id,
                table=step_result.table,
                reason=outcome.skip_reason or "skipped",
                violations=step_result.violations,
            ))
        else:
            result.steps_failed.append(step_result)
            state.failures += 1

        policy = workflow.error_handling
        if outcome.abort:
            state.aborted = state.critical = True
            logger.warning(f"Aborting workflow {workflow.name} after step {step_result.step_id}")
        elif policy.strategy != "fail_fast" and state.failures >= policy.max_failures:
            state.aborted = state.critical = True
            state.warnings.append(f"Stopped after {state.failures} failed steps")

    @staticmethod
    def _skip_unrun(workflow: Workflow, ctx: ExecutionContext, result: ExecutionResult, state: _RunState) -> None:
        if not state.aborted:
            return
        for step in workflow.steps:
            if step.id not in ctx.step_results:
                result.steps_skipped.append(SkippedStep(
                    step_id=step.id,
                    table=step.table,
                    reason="Workflow stopped before this step ran",
                ))

    # ==================== Steps ====================

    def _run_step(self, step: WorkflowStep, ctx: ExecutionContext, workflow: Workflow) -> StepOutcome:
        started = time.perf_counter()
        result = StepResult(step_id=step.id, table=step.table, state="validating")
        outcome = self._advance(step, ctx, workflow, result)
        result.duration_ms = (time.perf_counter() - started) * 1000
        ctx.record(result)
        logger.debug(f"Step {step.id} -> {result.state}")
        return outcome

    def _advance(self, step: WorkflowStep, ctx: ExecutionContext, workflow: Workflow, result: StepResult) -> StepOutcome:
        unmet = [d for d in step.dependencies if not ctx.succeeded(d)]
        if unmet:
            result.state = "skipped"
            return StepOutcome(result, skip_reason=f"Dependencies did not succeed: {', '.join(unmet)}")

        if step.operation == "skip":
            result.state, result.success = "succeeded", True
            return StepOutcome(result)

        snapshot = ctx.constraints.table(step.table) if ctx.constraints else None
        row = self._build_row(step, ctx, result)
        violations = self._validate(step, row, ctx, workflow, snapshot, result)

        if violations and step.on_error.type == "auto_fix" and any(v.can_auto_fix for v in violations):
            result.state = "auto_fixing"
            row = self._apply_fixes(step, row, violations, result)
            violations = self._validate(step, row, ctx, workflow, snapshot, result)
            if violations:
                result.violations.extend(violations)
                result.state = "failed"
                result.error = "Constraint violations remain after auto-fix"
                return StepOutcome(result, abort=self._is_fatal(step, workflow))

        if violations:
            result.violations.extend(violations)
            if self._is_fatal(step, workflow):
                result.state = "failed"
                result.error = violations[0].message
                return StepOutcome(result, abort=True)
            result.state = "skipped"
            return StepOutcome(result, skip_reason=violations[0].message)

        if step.operation == "validate":
            result.state, result.success = "succeeded", True
            return StepOutcome(result)

        result.state = "executing"
        attempts = 1 + (step.on_error.max_retries if step.on_error.type == "retry" else 0)
        for attempt in range(1, attempts + 1):
            result.attempts = attempt
            try:
                result.data, result.rollback = self._write(step, row)
                result.state, result.success = "succeeded", True
                return StepOutcome(result)
            except SchemaSeedError as e:
                result.error = str(e)
                logger.warning(f"Step {step.id} attempt {attempt}/{attempts} failed: {e}")

        result.state = "failed"
        return StepOutcome(result, abort=self._is_fatal(step, workflow))

    @staticmethod
    def _is_fatal(step: WorkflowStep, workflow: Workflow) -> bool:
        return workflow.error_handling.strategy == "fail_fast" and step.required

    # ==================== Field mappings ====================

    def _build_row(self, step: WorkflowStep, ctx: ExecutionContext, result: StepResult) -> Dict[str, Any]:
        row: Dict[str, Any] = {}
        for mapping in step.field_mappings:
            if mapping.source in ("constant", "auto_fix"):
                value = mapping.value
            else:
                value = self._resolve(mapping.source, step, ctx)
                if value is MISSING and mapping.fallback_to_value:
                    value = mapping.value
            if value is MISSING:
                if mapping.required:
                    result.warnings.append(f"{step.id}: no value for required field {mapping.name}")
                continue
            row[mapping.name] = value
        return row

    def _resolve(self, source: str, step: WorkflowStep, ctx: ExecutionContext) -> Any:
        prefix, _, name = source.partition(".")
        if not name:
            return MISSING
        if prefix == "input":
            return ctx.input_value(step.table, name)
        if prefix == "generated":
            generator = GENERATORS.get(name)
            if generator is None:
                logger.warning(f"{step.id}: unknown generator {name}")
                return MISSING
            value = generator()
            ctx.remember_generated(f"{step.id}.{name}", value)
            return value
        data = ctx.step_data(prefix)
        if data is None:
            return MISSING
        return data.get(name, MISSING)

    # ==================== Validation ====================

    def _validate(
        self,
        step: WorkflowStep,
        row: Dict[str, Any],
        ctx: ExecutionContext,
        workflow: Workflow,
        snapshot: Optional[Table],
        result: StepResult,
    ) -> List[ConstraintViolation]:
        """Blocking violations for the row; non-blocking ones become warnings."""
        found: List[ConstraintViolation] = []
        covered = set()
        for condition in step.conditions:
            if condition.type == "business_rule" and ctx.constraints is not None:
                rule = ctx.constraints.rule(condition.rule_id or "")
                if rule is not None and rule.source_constraint:
                    covered.add(rule.source_constraint)
            violation = self._check_condition(condition, step, row, ctx, snapshot, result)
            if violation is not None:
                found.append(violation)

        if workflow.validation.pre_execution and snapshot is not None and step.operation in ("insert", "update"):
            constraints = [
                c for c in snapshot.constraints
                if c.kind not in ("check", "primary_key") and c.name not in covered
            ]
            if step.operation == "update":
                constraints = [c for c in constraints if any(col in row for col in c.columns)]
            folded = self.registry.handle_table_constraints(constraints, row)
            result.warnings.extend(folded.warnings)
            found.extend(
                ConstraintViolation(step_id=step.id, table=step.table, type="validation", message=error)
                for error in folded.errors
            )

        blocking = []
        for violation in found:
            if violation.required:
                blocking.append(violation)
            else:
                result.warnings.append(f"{step.id}: {violation.message}")
        return blocking

    def _check_condition(
        self,
        condition: ConstraintCondition,
        step: WorkflowStep,
        row: Dict[str, Any],
        ctx: ExecutionContext,
        snapshot: Optional[Table],
        result: StepResult,
    ) -> Optional[ConstraintViolation]:
        def violation(kind: str, message: str, **kwargs: Any) -> ConstraintViolation:
            return ConstraintViolation(
                step_id=step.id,
                table=step.table,
                type=kind,
                message=message,
                required=condition.required,
                **kwargs,
            )

        try:
            if condition.type == "exists":
                return self._check_exists(condition, step, ctx, violation)
            if condition.type == "equals":
                if row.get(condition.field) == condition.value:
                    return None
                return violation(
                    "condition",
                    condition.description or f"{condition.field} must equal {condition.value!r}",
                    field=condition.field,
                    fixes=[ConstraintFix(type="set_field", field=condition.field, value=condition.value)],
                )
            if condition.type == "custom":
                sql = condition.sql or ""
                params = {k: v for k, v in row.items() if f":{k}" in sql}
                if self.client.scalar(sql, params):
                    return None
                return violation("condition", condition.description or f"Custom check failed: {sql}")
            return self._check_rule(condition, step, row, ctx, snapshot, result, violation)
        except SchemaSeedError as e:
            return violation("condition", f"Could not evaluate {condition.type} condition: {e}")

    def _check_exists(self, condition: ConstraintCondition, step: WorkflowStep, ctx: ExecutionContext, violation):
        if not condition.field:
            if self.client.select_rows(condition.table, limit=1):
                return None
            return violation("dependency", condition.description or f"{condition.table} has no rows")

        # For exists conditions ``value`` names a mapping source, not a literal
        value = condition.value
        if isinstance(value, str):
            value = self._resolve(value, step, ctx)
        if value is MISSING or value is None:
            return violation(
                "dependency",
                f"No {condition.table}.{condition.field} value to reference",
                field=condition.field,
            )
        if self.client.select_rows(condition.table, {condition.field: value}, limit=1):
            return None
        return violation(
            "dependency",
            condition.description or f"{condition.table}.{condition.field}={value!r} does not exist",
            field=condition.field,
        )

    def _check_rule(self, condition, step, row, ctx, snapshot, result, violation) -> Optional[ConstraintViolation]:
        rule = ctx.constraints.rule(condition.rule_id or "") if ctx.constraints else None
        if rule is None:
            result.warnings.append(f"{step.id}: business rule {condition.rule_id} is unknown; not checked")
            return None
        constraint = None
        if rule.source_constraint and snapshot is not None:
            constraint = next((c for c in snapshot.constraints if c.name == rule.source_constraint), None)
        if constraint is None:
            result.warnings.append(f"{step.id}: rule {rule.id} cannot be checked before writing")
            return None

        if isinstance(constraint, CheckConstraint) and self._check_holds(constraint, row):
            return None

        handled = self.registry.handle(constraint, constraint.kind, row)
        result.warnings.extend(handled.warnings)
        if handled.success and not handled.applied_fixes:
            return None
        if handled.bypass_required and not handled.errors and not handled.applied_fixes:
            return None

        message = "; ".join(handled.errors) or rule.error_message or rule.condition
        return violation(
            "business_rule",
            message,
            rule_id=rule.id,
            field=handled.applied_fixes[0].field if handled.applied_fixes else None,
            fixes=handled.applied_fixes,
        )

    def _check_holds(self, constraint: CheckConstraint, row: Dict[str, Any]) -> bool:
        """True only when the clause is decidably satisfied by the row as given."""
        try:
            return self.parser.evaluate(constraint.check_clause, row) is True
        except UnsupportedCheckExpression:
            return False

    # ==================== Auto-fix ====================

    def _apply_fixes(
        self,
        step: WorkflowStep,
        row: Dict[str, Any],
        violations: List[ConstraintViolation],
        result: StepResult,
    ) -> Dict[str, Any]:
        fixed = dict(row)
        for violation in violations:
            for fix in violation.fixes:
                if not fix.field:
                    continue
                if fix.type == "remove_field":
                    fixed.pop(fix.field, None)
                    continue
                if fix.type != "set_field":
                    continue
                if fix.field in fixed and fixed[fix.field] == fix.value:
                    continue

                old = row.get(fix.field)
                fixed[fix.field] = fix.value
                mapping = step.mapping(fix.field)
                if mapping is not None:
                    mapping.source, mapping.value = "auto_fix", fix.value
                result.auto_fixes.append(AutoFixApplied(
                    step_id=step.id,
                    table=step.table,
                    field=fix.field,
                    old_value=old,
                    new_value=fix.value,
                    description=fix.description,
                    rule_id=violation.rule_id,
                ))
                logger.debug(f"{step.id}: auto-fixed {fix.field} {old!r} -> {fix.value!r}")
        return fixed

    # ==================== Writes and rollback ====================

    def _write(self, step: WorkflowStep, row: Dict[str, Any]) -> Tuple[Dict[str, Any], RollbackAction]:
        if step.operation == "insert":
            stored = self.client.insert_row(step.table, row)
            key = {k: stored[k] for k in step.key_fields if stored.get(k) is not None}
            if not key:
                key = {k: v for k, v in stored.items() if v is not None}
            return stored, RollbackAction(step_id=step.id, table=step.table, action="delete", key=key)

        filters = {k: row[k] for k in step.key_fields if k in row}
        if not filters:
            raise WorkflowExecutionError(f"Update step {step.id} has no values for key fields {step.key_fields}")
        previous = self.client.select_rows(step.table, filters)
        values = {k: v for k, v in row.items() if k not in filters}
        self.client.update_rows(step.table, values, filters)
        data = {**previous[0], **row} if previous else dict(row)
        return data, RollbackAction(step_id=step.id, table=step.table, action="restore", key=filters, previous=previous)

    def _rollback(self, ctx: ExecutionContext, result: ExecutionResult) -> None:
        """Replay the compensation log in reverse. Best effort: failures are logged."""
        for action in reversed(ctx.compensation_log):
            try:
                if action.action == "delete":
                    self.client.delete_rows(action.table, action.key)
                else:
                    for previous in action.previous:
                        self.client.update_rows(action.table, previous, action.key)
                action.completed = True
            except SchemaSeedError as e:
                action.error = str(e)
                logger.warning(f"Rollback of {action.step_id} on {action.table} failed: {e}")
            result.rollback_actions.append(action)
        logger.info(f"Rolled back {sum(1 for a in result.rollback_actions if a.completed)} steps")

    def _post_validate(self, result: ExecutionResult) -> None:
        for step_result in result.steps_executed:
            action = step_result.rollback
            if action is None or action.action != "delete" or not action.key:
                continue
            try:
                if not self.client.select_rows(action.table, action.key, limit=1):
                    result.warnings.append(f"{step_result.step_id}: written row is no longer present")
            except SchemaSeedError as e:
                result.warnings.append(f"{step_result.step_id}: could not verify written row: {e}")
