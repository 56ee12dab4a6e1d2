"""Business-rule and dependency discovery from constraints and triggers."""
import logging
import re
import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from schemaseed.core.cache.manager import MetadataCache
from schemaseed.core.check_parser import CheckExpressionParser
from schemaseed.core.constraint_types import AutoFixSuggestion, BusinessRule, CheckConstraint, TableDependency
from schemaseed.core.db_connector import MetadataClient
from schemaseed.core.schema_introspector import SchemaIntrospector
from schemaseed.core.schema_types import ConstraintMetadata, Table, TableConstraints

logger = logging.getLogger(__name__)

# Constraint names known from SaaS scaffolds, with the confidence they earn
FRAMEWORK_CONSTRAINT_PATTERNS = [
    (re.compile(r"slug_null_if_personal_account|personal_account.*slug", re.IGNORECASE), 0.95),
    (re.compile(r"(organization|account)s?_members?.*(unique|_key)|memberships?_.*_key", re.IGNORECASE), 0.85),
    (re.compile(r"subscriptions?_status", re.IGNORECASE), 0.80),
]

NOT_NULL_CONFIDENCE = 0.9
DEFAULTED_CONFIDENCE = 0.95
CHECK_CONFIDENCE = 0.8
UNPARSED_CHECK_CONFIDENCE = 0.6
TRIGGER_CONFIDENCE = 0.5


class ConstraintDiscoveryEngine:
    """Derives BusinessRules and TableDependencies for a set of tables."""

    def __init__(
        self,
        client: MetadataClient,
        introspector: Optional[SchemaIntrospector] = None,
        cache: Optional[MetadataCache] = None,
        parser: Optional[CheckExpressionParser] = None,
    ):
        self.client = client
        self.introspector = introspector or SchemaIntrospector(client)
        self.cache = cache
        self.parser = parser or CheckExpressionParser()

    def discover(
        self,
        table_names: Iterable[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> ConstraintMetadata:
        """
        Discover rules and dependencies for the given tables.

        Args:
            table_names: Tables to analyze; order does not matter
            cancel_event: Checked between tables

        Returns:
            ConstraintMetadata; served from the cache when this exact table
            set was discovered before and the entry is still fresh

        Raises:
            ConnectivityError: the metadata client is unreachable
        """
        names = sorted(set(table_names))
        if self.cache is not None:
            cached = self.cache.get_constraint_metadata(names)
            if cached is not None:
                logger.debug(f"Constraint metadata cache hit for {MetadataCache.table_set_key(names)}")
                return cached

        self.client.ping()
        tables, warnings = self.introspector.describe_tables(names, cancel_event)
        found = {t.name for t in tables}
        for missing in names:
            if missing not in found:
                warnings.append(f"Table {missing} was not found or could not be read")

        rules: List[BusinessRule] = []
        dependencies: List[TableDependency] = []
        entries: List[TableConstraints] = []
        for table in tables:
            table_rules = self.rules_for_table(table)
            rules.extend(table_rules)
            dependencies.extend(self.dependencies_for_table(table))
            entries.append(TableConstraints(table=table, rule_ids=[r.id for r in table_rules]))

        confidence = sum(r.confidence for r in rules) / len(rules) if rules else 0.0
        metadata = ConstraintMetadata(
            business_rules=rules,
            dependencies=dependencies,
            tables=entries,
            confidence=min(max(confidence, 0.0), 1.0),
            discovery_timestamp=datetime.now(),
            warnings=warnings,
        )
        logger.info(
            f"Discovered {len(rules)} rules and {len(dependencies)} dependencies "
            f"across {len(tables)} tables (confidence {metadata.confidence:.2f})"
        )

        if self.cache is not None:
            self.cache.set_constraint_metadata(names, metadata)
        return metadata

    def clear_cache(self) -> None:
        if self.cache is not None:
            self.cache.clear_all()

    # ==================== Rule derivation ====================

    def rules_for_table(self, table: Table) -> List[BusinessRule]:
        rules = self._not_null_rules(table)
        not_null_ids: Dict[str, str] = {r.sql_pattern.split()[0]: r.id for r in rules}
        rules.extend(self._check_rule(table, check, not_null_ids) for check in table.check_constraints)
        rules.extend(self._trigger_rules(table))
        return rules

    def _not_null_rules(self, table: Table) -> List[BusinessRule]:
        fk_columns = set(table.foreign_key_columns)
        rules = []
        for constraint in table.constraints_of("not_null"):
            column = constraint.columns[0]
            is_fk = column in fk_columns
            rules.append(BusinessRule(
                id=f"{table.name}.{column}.not_null",
                name=f"{table.name}.{column} is required",
                kind="dependency" if is_fk else "validation",
                category="required_relationship",
                table=table.name,
                condition=f"{column} must be provided" if not constraint.has_default else f"{column} defaults when omitted",
                action="default" if constraint.has_default else "require",
                error_message=f"{table.name}.{column} cannot be null",
                confidence=DEFAULTED_CONFIDENCE if constraint.has_default else NOT_NULL_CONFIDENCE,
                sql_pattern=f"{column} NOT NULL",
                source_constraint=constraint.name,
            ))
        return rules

    def _check_rule(self, table: Table, check: CheckConstraint, not_null_ids: Dict[str, str]) -> BusinessRule:
        analysis = self.parser.analyze(check.check_clause)

        auto_fix = None
        if analysis.null_fixes:
            field = analysis.null_fixes[0]
            auto_fix = AutoFixSuggestion(
                type="set_field",
                table=table.name,
                field=field,
                value=None,
                description=f"Set {field} to NULL to satisfy {check.name}",
            )
        elif analysis.allowed_values:
            field, values = next(iter(analysis.allowed_values.items()))
            if values:
                auto_fix = AutoFixSuggestion(
                    type="set_field",
                    table=table.name,
                    field=field,
                    value=values[0],
                    description=f"Set {field} to {values[0]!r} to satisfy {check.name}",
                )

        confidence = CHECK_CONFIDENCE if analysis.parsed else UNPARSED_CHECK_CONFIDENCE
        for pattern, pattern_confidence in FRAMEWORK_CONSTRAINT_PATTERNS:
            if pattern.search(check.name):
                confidence = max(confidence, pattern_confidence)

        return BusinessRule(
            id=f"{table.name}.{check.name}",
            name=check.name,
            kind="validation",
            category="conditional_insert",
            table=table.name,
            condition=analysis.description,
            action="default" if auto_fix else "deny",
            error_message=f"Row violates {check.name}: {analysis.description}",
            confidence=confidence,
            sql_pattern=check.check_clause,
            source_constraint=check.name,
            dependencies=[not_null_ids[c] for c in analysis.columns if c in not_null_ids],
            auto_fix=auto_fix,
        )

    def _trigger_rules(self, table: Table) -> List[BusinessRule]:
        rules = []
        for trigger in table.triggers:
            events = " or ".join(e.lower() for e in trigger.events) or "write"
            function = trigger.function_name or "an unknown function"
            rules.append(BusinessRule(
                id=f"{table.name}.trigger.{trigger.name}",
                name=trigger.name,
                kind="business_logic",
                category="business_rule",
                table=table.name,
                condition=f"{(trigger.timing or '').lower()} {events} runs {function}".strip(),
                action="deny",
                error_message=f"Trigger {trigger.name} may reject the row",
                confidence=TRIGGER_CONFIDENCE,
                sql_pattern=trigger.function_name or "",
            ))
        return rules

    def dependencies_for_table(self, table: Table) -> List[TableDependency]:
        dependencies = []
        for fk in table.foreign_keys:
            for index, column in enumerate(fk.columns):
                dependencies.append(TableDependency(
                    from_table=table.name,
                    from_column=column,
                    to_table=fk.referenced_table,
                    to_column=fk.referenced_columns[index] if index < len(fk.referenced_columns) else "id",
                    required=not fk.nullable,
                    cascade_delete=fk.cascade_delete,
                    constraint_name=fk.name,
                ))
        return dependencies
