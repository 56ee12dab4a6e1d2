"""Compile discovered constraints into an ordered, conditioned seeding workflow."""
import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

from schemaseed.core.constraint_discovery import ConstraintDiscoveryEngine
from schemaseed.core.constraint_types import BusinessRule
from schemaseed.core.dependency_graph import DependencyGraph, DependencyGraphBuilder
from schemaseed.core.errors import WorkflowGenerationError
from schemaseed.core.schema_types import TIMESTAMP_COLUMNS, ConstraintMetadata, Table
from schemaseed.core.workflow_types import (
    ConstraintCondition,
    ErrorAction,
    ErrorHandlingPolicy,
    FieldMapping,
    RollbackPolicy,
    ValidationPolicy,
    Workflow,
    WorkflowGenerationOptions,
    WorkflowStep,
)

logger = logging.getLogger(__name__)

SYSTEM_SCHEMAS = {"auth", "storage", "pg_catalog", "information_schema"}
SYSTEM_PREFIXES = ("pg_", "_")
BOOKKEEPING_TABLES = {
    "schema_migrations", "ar_internal_metadata", "django_migrations",
    "django_content_type", "spatial_ref_sys",
}
DEFAULT_ALWAYS_REQUIRED = ("users", "accounts", "profiles")
GENERATED_KEY_TYPES = ("uuid", "char", "text", "string")

# Semantic fields filled from caller input, per table role
ROLE_FIELDS = {
    "user": ("email", "name", "avatar", "bio"),
    "content": ("title", "content", "author"),
}

RULE_BOOST = 0.2
GRAPH_BOOST = 0.1


class GenerationMetadata(BaseModel):
    tables_analyzed: int = 0
    steps_generated: int = 0
    rules_applied: int = 0
    creation_order: List[str] = Field(default_factory=list)
    skipped_tables: Dict[str, str] = Field(default_factory=dict)
    cycles: List[List[str]] = Field(default_factory=list)
    confidence: float = 0.0
    warnings: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


def step_id_for(table: str) -> str:
    return f"create_{table}"


def is_system_table(name: str, schema: Optional[str] = None) -> bool:
    """True for catalog, auth and migration-bookkeeping tables that are never seeded."""
    if schema and schema.lower() in SYSTEM_SCHEMAS:
        return True
    return name.startswith(SYSTEM_PREFIXES) or name in BOOKKEEPING_TABLES


class WorkflowGenerator:
    """
    Turns a set of table names into a Workflow.

    Steps follow the dependency graph's creation order. Field mappings are
    layered: id/timestamp baseline, role fields, input passthrough, foreign
    key references, then rule-driven defaults; later layers win.
    """

    def __init__(
        self,
        discovery: ConstraintDiscoveryEngine,
        graph_builder: Optional[DependencyGraphBuilder] = None,
        always_required_tables: Iterable[str] = DEFAULT_ALWAYS_REQUIRED,
        low_confidence_rule_threshold: float = 0.7,
        low_confidence_workflow_threshold: float = 0.8,
    ):
        self.discovery = discovery
        self.graph_builder = graph_builder or DependencyGraphBuilder()
        self.always_required_tables = set(always_required_tables)
        self.low_confidence_rule_threshold = low_confidence_rule_threshold
        self.low_confidence_workflow_threshold = low_confidence_workflow_threshold

    def generate(
        self,
        table_names: Iterable[str],
        options: Optional[WorkflowGenerationOptions] = None,
        metadata: Optional[ConstraintMetadata] = None,
    ) -> Tuple[Workflow, GenerationMetadata]:
        """
        Generate a workflow for ``table_names``.

        Args:
            table_names: Tables to seed
            options: Strategy and constraint-handling mode
            metadata: Previously discovered metadata; discovered when omitted

        Returns:
            (workflow, generation metadata)

        Raises:
            WorkflowGenerationError: no table names were given
        """
        requested = sorted(set(table_names))
        if not requested:
            raise WorkflowGenerationError("At least one table name is required to generate a workflow")
        options = options or WorkflowGenerationOptions()

        if metadata is None:
            metadata = self._discover(requested, options.include_dependency_creation)
        graph = self.graph_builder.build(metadata)

        info = GenerationMetadata(
            tables_analyzed=len(metadata.tables),
            creation_order=list(graph.creation_order),
            cycles=graph.cycles,
        )

        plan: List[Table] = []
        for name in graph.creation_order:
            table = metadata.table(name)
            if table is None:
                info.skipped_tables[name] = "no snapshot; assumed to exist"
            elif is_system_table(name, table.table_schema):
                info.skipped_tables[name] = "system table"
            else:
                plan.append(table)

        order = {table.name: index for index, table in enumerate(plan)}
        steps = [self._step(table, graph, metadata, order, options) for table in plan]
        steps = self._apply_strategy(steps, options)
        if options.user_creation_strategy == "comprehensive" and steps:
            steps.append(self._validation_step(steps))

        workflow = Workflow(
            name=f"seed_{'_'.join(requested)}" if len(requested) <= 3 else f"seed_{len(requested)}_tables",
            description=f"Seed {', '.join(requested)} in dependency order",
            steps=steps,
            error_handling=self._error_policy(options),
            rollback=RollbackPolicy(
                enabled=True,
                on_critical_failure=True,
                preserve_successful_steps=options.constraint_handling == "permissive",
            ),
            validation=ValidationPolicy(
                pre_execution=True,
                post_execution=options.user_creation_strategy == "comprehensive",
            ),
            options=options,
        )

        info.steps_generated = len(steps)
        info.rules_applied = sum(
            1 for step in steps for c in step.conditions if c.type == "business_rule"
        )
        self._assess(info, metadata, graph)
        logger.info(
            f"Generated workflow {workflow.name}: {len(steps)} steps, "
            f"{len(info.skipped_tables)} skipped, confidence {info.confidence:.2f}"
        )
        return workflow, info

    # ==================== Discovery ====================

    def _discover(self, requested: List[str], include_dependencies: bool) -> ConstraintMetadata:
        names: Set[str] = set(requested)
        metadata = self.discovery.discover(names)
        if not include_dependencies:
            return metadata

        attempted = set(names)
        while True:
            referenced = self._referenced_tables(metadata) - attempted
            if not referenced:
                return metadata
            logger.debug(f"Adding referenced tables to discovery: {', '.join(sorted(referenced))}")
            attempted |= referenced
            names |= referenced
            metadata = self.discovery.discover(names)

    @staticmethod
    def _referenced_tables(metadata: ConstraintMetadata) -> Set[str]:
        referenced = set()
        for entry in metadata.tables:
            for fk in entry.table.foreign_keys:
                if not is_system_table(fk.referenced_table, fk.referenced_schema):
                    referenced.add(fk.referenced_table)
        return referenced

    # ==================== Steps ====================

    def _step(
        self,
        table: Table,
        graph: DependencyGraph,
        metadata: ConstraintMetadata,
        order: Dict[str, int],
        options: WorkflowGenerationOptions,
    ) -> WorkflowStep:
        position = order[table.name]
        rules = metadata.rules_for(table.name)
        mappings: Dict[str, FieldMapping] = {}

        self._baseline_mappings(table, mappings)
        self._role_mappings(table, mappings)
        for column in table.columns:
            if column.name not in mappings and not column.is_primary_key:
                mappings[column.name] = FieldMapping(
                    name=column.name,
                    source=f"input.{column.name}",
                    required=not column.nullable and column.default is None,
                )

        conditions: List[ConstraintCondition] = []
        dependencies: List[str] = []
        for edge in graph.edges_from(table.name):
            if edge.to_table == table.name:
                continue
            ref_position = order.get(edge.to_table)
            forward = ref_position is not None and ref_position < position
            if forward:
                ref_step = step_id_for(edge.to_table)
                mappings[edge.from_column] = FieldMapping(
                    name=edge.from_column,
                    source=f"{ref_step}.{edge.to_column}",
                    required=edge.type == "required",
                )
                if ref_step not in dependencies:
                    dependencies.append(ref_step)
            source = mappings.get(edge.from_column)
            conditions.append(ConstraintCondition(
                type="exists",
                table=edge.to_table,
                field=edge.to_column,
                value=source.source if source else f"input.{edge.from_column}",
                required=edge.type == "required" and (forward or ref_position is None),
                description=f"{table.name}.{edge.from_column} must reference an existing {edge.to_table}.{edge.to_column}",
            ))

        auto_fixes = []
        for rule in rules:
            if rule.kind in ("validation", "business_logic"):
                conditions.append(self._rule_condition(rule))
            fix = rule.auto_fix
            if fix is not None and fix.type == "set_field" and fix.field and table.column(fix.field):
                auto_fixes.append(fix)
                mappings[fix.field] = FieldMapping(
                    name=fix.field,
                    source=f"input.{fix.field}",
                    value=fix.value,
                    fallback_to_value=True,
                )

        node = graph.node(table.name)
        dependents = [d for d in (node.dependents if node else []) if d != table.name]
        return WorkflowStep(
            id=step_id_for(table.name),
            table=table.name,
            operation="insert",
            required=bool(dependents) or table.name in self.always_required_tables,
            description=f"Create a {table.name} row",
            conditions=conditions,
            field_mappings=[mappings[c] for c in table.column_names if c in mappings],
            on_error=self._error_action(options),
            dependencies=dependencies,
            auto_fixes=auto_fixes,
            key_fields=table.primary_key_columns or ["id"],
        )

    @staticmethod
    def _baseline_mappings(table: Table, mappings: Dict[str, FieldMapping]) -> None:
        pk = table.primary_key_columns
        if len(pk) == 1:
            column = table.column(pk[0])
            if (
                column.default is None
                and not column.is_foreign_key
                and any(t in column.data_type.lower() for t in GENERATED_KEY_TYPES)
            ):
                mappings[column.name] = FieldMapping(name=column.name, source="generated.uuid", required=True)

        for column in table.columns:
            if column.name in TIMESTAMP_COLUMNS and column.default is None:
                mappings[column.name] = FieldMapping(name=column.name, source="generated.now")

    def _role_mappings(self, table: Table, mappings: Dict[str, FieldMapping]) -> None:
        pattern = self.discovery.introspector.analyze_table_pattern(table)
        if pattern is None:
            return
        for field in ROLE_FIELDS.get(pattern.suggested_role, ()):
            candidates = pattern.column_mappings.get(field, [])
            if not candidates:
                continue
            column = table.column(candidates[0])
            if column is None or column.is_primary_key or column.is_foreign_key:
                continue
            mappings[column.name] = FieldMapping(
                name=column.name,
                source=f"input.{field}" if field != column.name else f"input.{column.name}",
                required=not column.nullable and column.default is None,
            )

    @staticmethod
    def _rule_condition(rule: BusinessRule) -> ConstraintCondition:
        return ConstraintCondition(
            type="business_rule",
            table=rule.table,
            rule_id=rule.id,
            required=rule.kind != "business_logic",
            description=rule.condition,
        )

    @staticmethod
    def _error_action(options: WorkflowGenerationOptions) -> ErrorAction:
        if options.enable_auto_fixes:
            return ErrorAction(type="auto_fix", max_retries=1)
        if options.constraint_handling == "permissive":
            return ErrorAction(type="skip")
        return ErrorAction(type="fail")

    @staticmethod
    def _error_policy(options: WorkflowGenerationOptions) -> ErrorHandlingPolicy:
        if options.constraint_handling == "strict":
            return ErrorHandlingPolicy(strategy="fail_fast", max_failures=1)
        if options.constraint_handling == "permissive":
            return ErrorHandlingPolicy(strategy="best_effort", max_failures=10)
        return ErrorHandlingPolicy(strategy="graceful_degradation", max_failures=10)

    @staticmethod
    def _apply_strategy(steps: List[WorkflowStep], options: WorkflowGenerationOptions) -> List[WorkflowStep]:
        strategy = options.user_creation_strategy
        if strategy == "comprehensive" or (strategy == "adaptive" and options.generate_optional_steps):
            return steps

        kept = [step for step in steps if step.required]
        kept_ids = {step.id for step in kept}
        return [
            step.model_copy(update={"dependencies": [d for d in step.dependencies if d in kept_ids]})
            for step in kept
        ]

    @staticmethod
    def _validation_step(steps: List[WorkflowStep]) -> WorkflowStep:
        inserts = [step for step in steps if step.operation == "insert"]
        return WorkflowStep(
            id="validate_workflow",
            table=inserts[-1].table if inserts else steps[-1].table,
            operation="validate",
            required=False,
            description="Check that every seeded table received rows",
            conditions=[
                ConstraintCondition(
                    type="exists",
                    table=step.table,
                    required=True,
                    description=f"{step.table} has at least one row",
                )
                for step in inserts
            ],
            on_error=ErrorAction(type="skip"),
            dependencies=[step.id for step in inserts],
        )

    # ==================== Assessment ====================

    def _assess(self, info: GenerationMetadata, metadata: ConstraintMetadata, graph: DependencyGraph) -> None:
        confidence = metadata.confidence
        if metadata.business_rules:
            confidence += RULE_BOOST
        if graph.nodes:
            confidence += GRAPH_BOOST
        info.confidence = min(confidence, 1.0)

        info.warnings.extend(metadata.warnings)
        info.warnings.extend(graph.warnings)
        for rule in metadata.business_rules:
            if rule.confidence < self.low_confidence_rule_threshold:
                info.warnings.append(f"Rule {rule.id} has low confidence ({rule.confidence:.2f})")

        info.recommendations.extend(graph.recommendations)
        if info.confidence < self.low_confidence_workflow_threshold:
            info.recommendations.append(
                f"Workflow confidence is {info.confidence:.2f}; review the steps before running against shared data"
            )
        if not info.steps_generated:
            info.warnings.append("No steps were generated; every table was skipped or missing")
