"""Typed schema introspection with table-role and framework inference."""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional, Tuple

from schemaseed.core.constraint_types import (
    CheckConstraint,
    ForeignKeyConstraint,
    NotNullConstraint,
    PrimaryKeyConstraint,
    UniqueConstraint,
)
from schemaseed.core.db_connector import MetadataClient
from schemaseed.core.errors import ConnectivityError, IntrospectionError, SchemaSeedError
from schemaseed.core.schema_types import (
    Column,
    ConstraintRule,
    ConstraintRules,
    FrameworkGuess,
    Index,
    Recommendation,
    SchemaIntrospectionResult,
    SchemaRelationship,
    Table,
    TablePattern,
    Trigger,
)

logger = logging.getLogger(__name__)

# Probed one by one when the catalog cannot be listed
COMMON_TABLES = [
    "profiles", "accounts", "users", "setups", "posts", "categories", "teams",
    "organizations", "memberships", "subscriptions", "roles", "invitations",
    "notifications", "media_attachments", "gear_items", "base_templates",
    "reviews", "trips", "modifications",
]

USER_COLUMNS = {"email", "name", "username", "display_name", "full_name"}
CONTENT_COLUMNS = {"title", "content", "body", "description"}
FRAMEWORK_COLUMNS = {"primary_owner_user_id", "is_personal_account", "slug"}
AUTH_SCHEMAS = {"auth"}

ROLE_WEIGHTS = {
    "auth": 40,
    "user": 30,
    "content": 25,
    "association": 20,
    "framework": 15,
}

COLUMN_MAPPINGS = {
    "email": ["email", "email_address", "user_email"],
    "name": ["name", "full_name", "display_name", "username"],
    "avatar": ["avatar_url", "picture_url", "profile_image_url", "image_url"],
    "bio": ["bio", "description", "about"],
    "title": ["title", "name", "subject"],
    "content": ["content", "body", "text", "description"],
    "author": ["user_id", "author_id", "created_by", "owner_id", "account_id"],
}

# (framework, version, tables that must all exist, columns as table.column, weight)
FRAMEWORK_SIGNATURES: List[Tuple[str, Optional[str], List[str], List[str], int]] = [
    ("makerkit", None, ["accounts", "memberships"], [], 40),
    ("makerkit", "v3", ["role_permissions", "billing_customers"], [], 20),
    ("makerkit", "v2", ["subscriptions", "roles"], [], 15),
    ("makerkit", None, [], ["accounts.primary_owner_user_id"], 15),
    ("makerkit", None, [], ["accounts.is_personal_account"], 10),
    ("django", None, ["django_migrations"], [], 60),
    ("django", None, ["auth_user", "django_content_type"], [], 20),
    ("rails", None, ["schema_migrations", "ar_internal_metadata"], [], 60),
    ("prisma", None, ["_prisma_migrations"], [], 60),
]


class SchemaIntrospector:
    """Turns raw catalog rows into Table snapshots and infers table roles."""

    def __init__(
        self,
        client: MetadataClient,
        max_workers: int = 4,
        pattern_min_score: int = 10,
    ):
        """
        Initialize introspector.

        Args:
            client: Metadata source
            max_workers: Bound on concurrent per-table fetches
            pattern_min_score: Minimum role score for a pattern to be reported
        """
        self.client = client
        self.max_workers = max(1, max_workers)
        self.pattern_min_score = pattern_min_score

    def introspect(self, cancel_event: Optional[threading.Event] = None) -> SchemaIntrospectionResult:
        """
        Introspect every base table visible to the client.

        Raises:
            IntrospectionError: the client itself is unreachable
        """
        try:
            self.client.ping()
        except ConnectivityError as e:
            raise IntrospectionError(str(e)) from e

        warnings: List[str] = []
        table_names = self._enumerate_tables(warnings)
        tables, cancelled = self._describe_all(table_names, warnings, cancel_event)

        relationships = self.build_relationships(tables)
        patterns = [
            pattern for pattern in (self.analyze_table_pattern(t) for t in tables)
            if pattern is not None
        ]
        result = SchemaIntrospectionResult(
            tables=tables,
            relationships=relationships,
            patterns=patterns,
            constraints=self.collect_constraint_rules(tables, patterns),
            framework=self.detect_framework(tables),
            recommendations=self.recommend(tables, relationships, patterns),
            warnings=warnings,
            cancelled=cancelled,
        )
        logger.info(
            f"Introspected {len(tables)} tables, {len(relationships)} relationships, "
            f"framework={result.framework.type}"
        )
        return result

    def describe_tables(
        self,
        table_names: Iterable[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> Tuple[List[Table], List[str]]:
        """Snapshot the named tables; returns the tables and any warnings."""
        warnings: List[str] = []
        tables, cancelled = self._describe_all(sorted(set(table_names)), warnings, cancel_event)
        if cancelled:
            warnings.append("Table description cancelled before completion")
        return tables, warnings

    # ==================== Enumeration ====================

    def _enumerate_tables(self, warnings: List[str]) -> List[str]:
        try:
            return sorted(self.client.list_tables())
        except SchemaSeedError as e:
            logger.warning(f"Catalog listing failed, probing common tables: {e}")
            warnings.append(f"Catalog listing failed; tried common table names instead ({e})")

        return sorted(name for name in COMMON_TABLES if self.client.table_exists(name))

    def _describe_all(
        self,
        table_names: List[str],
        warnings: List[str],
        cancel_event: Optional[threading.Event],
    ) -> Tuple[List[Table], bool]:
        warnings_lock = threading.Lock()
        cancelled = False

        def describe(name: str) -> Optional[Table]:
            if cancel_event is not None and cancel_event.is_set():
                return None
            table_warnings: List[str] = []
            table = self.describe_table(name, table_warnings)
            with warnings_lock:
                warnings.extend(table_warnings)
            return table

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            described = list(pool.map(describe, table_names))

        if cancel_event is not None and cancel_event.is_set():
            cancelled = True
            logger.info("Introspection cancelled")

        tables = [t for t in described if t is not None]
        tables.sort(key=lambda t: t.name)
        return tables, cancelled

    # ==================== Per-table snapshot ====================

    def describe_table(self, table_name: str, warnings: Optional[List[str]] = None) -> Optional[Table]:
        """
        Build a Table snapshot. Each catalog fetch fails independently.

        Returns None when not even the columns of the table can be read.
        """
        warnings = warnings if warnings is not None else []

        def fetch(label: str, call, default):
            try:
                return call(table_name)
            except (SchemaSeedError, KeyError) as e:
                message = f"Could not read {label} of {table_name}: {e}"
                logger.warning(message)
                warnings.append(message)
                return default

        raw_columns = fetch("columns", self.client.get_columns, None)
        if raw_columns is None:
            return None

        pk = fetch("primary key", self.client.get_primary_key, {}) or {}
        raw_fks = fetch("foreign keys", self.client.get_foreign_keys, [])
        raw_uniques = fetch("unique constraints", self.client.get_unique_constraints, [])
        raw_checks = fetch("check constraints", self.client.get_check_constraints, [])
        raw_indexes = fetch("indexes", self.client.get_indexes, [])
        raw_triggers = fetch("triggers", self.client.get_triggers, [])
        row_count = fetch("row count", self.client.count_rows, None)

        pk_columns = list(pk.get("constrained_columns") or [])
        fk_columns = {c for fk in raw_fks for c in fk.get("constrained_columns") or []}
        columns = [self._column(raw, pk_columns, fk_columns) for raw in raw_columns]
        nullable = {col.name: col.nullable for col in columns}

        constraints: List[Any] = []
        if pk_columns:
            constraints.append(PrimaryKeyConstraint(
                name=pk.get("name") or f"{table_name}_pkey", table=table_name, columns=pk_columns,
            ))
        for fk in raw_fks:
            fk_cols = list(fk.get("constrained_columns") or [])
            constraints.append(ForeignKeyConstraint(
                name=fk.get("name") or f"{table_name}_{'_'.join(fk_cols)}_fkey",
                table=table_name,
                columns=fk_cols,
                referenced_table=fk.get("referred_table", ""),
                referenced_schema=fk.get("referred_schema"),
                referenced_columns=list(fk.get("referred_columns") or []),
                on_delete=(fk.get("options") or {}).get("ondelete"),
                nullable=all(nullable.get(c, True) for c in fk_cols),
            ))
        for unique in raw_uniques:
            unique_cols = list(unique.get("column_names") or [])
            constraints.append(UniqueConstraint(
                name=unique.get("name") or f"{table_name}_{'_'.join(unique_cols)}_key",
                table=table_name,
                columns=unique_cols,
            ))
        for index, check in enumerate(raw_checks):
            constraints.append(CheckConstraint(
                name=check.get("name") or f"{table_name}_check_{index}",
                table=table_name,
                check_clause=str(check.get("sqltext", "")),
            ))
        for col in columns:
            if not col.nullable and not col.is_primary_key:
                constraints.append(NotNullConstraint(
                    name=f"{table_name}_{col.name}_not_null",
                    table=table_name,
                    columns=[col.name],
                    has_default=col.default is not None,
                ))

        return Table(
            name=table_name,
            table_schema=self.client.schema,
            columns=columns,
            constraints=constraints,
            indexes=[
                Index(name=idx["name"], columns=[c for c in idx.get("column_names") or [] if c], unique=bool(idx.get("unique")))
                for idx in raw_indexes if idx.get("name")
            ],
            triggers=[
                Trigger(
                    name=trg["name"],
                    table=table_name,
                    timing=trg.get("timing"),
                    events=list(trg.get("events") or []),
                    function_name=trg.get("function_name"),
                )
                for trg in raw_triggers
            ],
            row_count=row_count,
        )

    @staticmethod
    def _column(raw: Dict[str, Any], pk_columns: List[str], fk_columns: set) -> Column:
        column_type = raw.get("type")
        default = raw.get("default")
        return Column(
            name=raw["name"],
            data_type=str(column_type) if column_type is not None else "UNKNOWN",
            nullable=bool(raw.get("nullable", True)) and raw["name"] not in pk_columns,
            default=str(default) if default is not None else None,
            is_primary_key=raw["name"] in pk_columns,
            is_foreign_key=raw["name"] in fk_columns,
            max_length=getattr(column_type, "length", None),
            enum_values=list(getattr(column_type, "enums", None) or []) or None,
        )

    # ==================== Relationships ====================

    def build_relationships(self, tables: List[Table]) -> List[SchemaRelationship]:
        relationships = []
        for table in tables:
            unique_sets = [set(c.columns) for c in table.constraints if c.kind in ("unique", "primary_key")]
            for fk in table.foreign_keys:
                one_to_one = set(fk.columns) in unique_sets
                for index, column in enumerate(fk.columns):
                    relationships.append(SchemaRelationship(
                        from_table=table.name,
                        from_column=column,
                        to_table=fk.referenced_table,
                        to_column=fk.referenced_columns[index] if index < len(fk.referenced_columns) else "id",
                        relationship_type="one_to_one" if one_to_one else "one_to_many",
                        cascade_delete=fk.cascade_delete,
                        is_required=not fk.nullable,
                    ))
        return relationships

    # ==================== Role patterns ====================

    def score_roles(self, table: Table) -> Tuple[Dict[str, int], List[str]]:
        """Score each candidate role by column-name evidence."""
        columns = {name.lower() for name in table.column_names}
        scores: Dict[str, int] = {}
        evidence: List[str] = []

        if (table.table_schema or "") in AUTH_SCHEMAS or "auth" in table.name.lower():
            scores["auth"] = ROLE_WEIGHTS["auth"]
            evidence.append("auth schema or auth table name")

        user_matches = sorted(columns & USER_COLUMNS)
        if user_matches:
            scores["user"] = ROLE_WEIGHTS["user"]
            evidence.append(f"user columns: {', '.join(user_matches)}")

        content_matches = sorted(columns & CONTENT_COLUMNS)
        if content_matches:
            scores["content"] = ROLE_WEIGHTS["content"]
            evidence.append(f"content columns: {', '.join(content_matches)}")

        if len(table.foreign_keys) >= 2:
            scores["association"] = ROLE_WEIGHTS["association"]
            evidence.append(f"{len(table.foreign_keys)} outgoing foreign keys")

        framework_matches = sorted(columns & FRAMEWORK_COLUMNS)
        if framework_matches:
            scores["framework"] = ROLE_WEIGHTS["framework"]
            evidence.append(f"framework columns: {', '.join(framework_matches)}")

        return scores, evidence

    def analyze_table_pattern(self, table: Table) -> Optional[TablePattern]:
        """Infer a table's role; None when the evidence is below threshold."""
        scores, evidence = self.score_roles(table)
        total = sum(scores.values())
        if total < self.pattern_min_score:
            return None

        roles = {role: score for role, score in scores.items() if role != "framework"}
        role = max(roles, key=lambda r: (roles[r], r == "auth")) if roles else "system"

        columns = {name.lower(): name for name in table.column_names}
        mappings = {
            field: [columns[c] for c in candidates if c in columns]
            for field, candidates in COLUMN_MAPPINGS.items()
        }
        return TablePattern(
            table=table.name,
            confidence=min(total / 100, 1.0),
            evidence=evidence,
            suggested_role=role,
            column_mappings={k: v for k, v in mappings.items() if v},
        )

    # ==================== Framework fingerprint ====================

    def detect_framework(self, tables: List[Table]) -> FrameworkGuess:
        """Weighted-evidence guess at the scaffold that generated the schema."""
        table_names = {t.name for t in tables}
        columns = {f"{t.name}.{c}" for t in tables for c in t.column_names}

        scores: Dict[str, int] = {}
        versions: Dict[str, str] = {}
        evidence: Dict[str, List[str]] = {}

        for framework, version, needed_tables, needed_columns, weight in FRAMEWORK_SIGNATURES:
            if needed_tables and not set(needed_tables) <= table_names:
                continue
            if needed_columns and not set(needed_columns) <= columns:
                continue
            if version and framework not in scores:
                continue
            scores[framework] = scores.get(framework, 0) + weight
            evidence.setdefault(framework, []).append(
                f"found {', '.join(needed_tables + needed_columns)}"
            )
            if version and framework not in versions:
                versions[framework] = version

        if not scores:
            return FrameworkGuess(type="custom", confidence=0.0)

        best = max(scores, key=lambda f: scores[f])
        if best == "makerkit" and best not in versions:
            versions[best] = "v1"
            scores[best] += 10
            evidence[best].append("no v2/v3 tables present")

        return FrameworkGuess(
            type=best,
            version=versions.get(best),
            confidence=min(scores[best] / 100, 1.0),
            evidence=evidence[best],
        )

    # ==================== Rules and recommendations ====================

    def collect_constraint_rules(self, tables: List[Table], patterns: List[TablePattern]) -> ConstraintRules:
        user_tables = {p.table for p in patterns if p.suggested_role == "user"}
        rules = ConstraintRules()

        for table in tables:
            for col in table.columns:
                if not col.nullable and not col.is_primary_key:
                    rules.data_integrity.append(ConstraintRule(
                        table=table.name,
                        column=col.name,
                        rule_type="required_relationship",
                        description=f"{table.name}.{col.name} is required",
                    ))
            for check in table.check_constraints:
                rule = ConstraintRule(
                    table=table.name,
                    rule_type="conditional_insert",
                    description=check.check_clause,
                    constraint_name=check.name,
                )
                if table.name in user_tables:
                    rules.user_creation.append(rule)
                else:
                    rules.data_integrity.append(rule)
            for trigger in table.triggers:
                rules.business_logic.append(ConstraintRule(
                    table=table.name,
                    rule_type="business_rule",
                    description=f"trigger {trigger.name} runs {trigger.function_name or 'an unknown function'}",
                    constraint_name=trigger.name,
                ))
        return rules

    def recommend(
        self,
        tables: List[Table],
        relationships: List[SchemaRelationship],
        patterns: List[TablePattern],
    ) -> List[Recommendation]:
        recommendations = []
        user_tables = [p.table for p in patterns if p.suggested_role == "user"]

        if not user_tables:
            recommendations.append(Recommendation(
                type="user_tables",
                priority="high",
                message="No user-like tables found; seed users through caller input or a custom table mapping",
            ))
        elif len(user_tables) > 1:
            recommendations.append(Recommendation(
                type="user_tables",
                priority="medium",
                message="Several tables look like user tables; confirm which one owns identities",
                tables=user_tables,
            ))

        related = {r.from_table for r in relationships} | {r.to_table for r in relationships}
        orphans = [t.name for t in tables if t.name not in related]
        if orphans and len(tables) > 1:
            recommendations.append(Recommendation(
                type="orphan_tables",
                priority="low",
                message="Tables without relationships can be seeded independently",
                tables=orphans,
            ))
        return recommendations
