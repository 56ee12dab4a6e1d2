"""
Caller-facing facade over the discovery, planning and execution pipeline.

Every operation is synchronous; the ``a``-prefixed variants run the same work
on a worker thread so async callers can await them.
"""
import asyncio
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from schemaseed.core.cache.manager import MetadataCache
from schemaseed.core.constraint_discovery import ConstraintDiscoveryEngine
from schemaseed.core.db_connector import MetadataClient, SQLAlchemyMetadataClient
from schemaseed.core.dependency_graph import DependencyGraph, DependencyGraphBuilder
from schemaseed.core.errors import SchemaSeedError
from schemaseed.core.executor import ConstraintAwareExecutor
from schemaseed.core.handlers.registry import ConstraintRegistry
from schemaseed.core.junction_tables import (
    JunctionScoring,
    JunctionSeedingOptions,
    JunctionSeedingResult,
    JunctionTableHandler,
    JunctionTableInfo,
)
from schemaseed.core.schema_introspector import SchemaIntrospector
from schemaseed.core.schema_loader import SchemaFileClient
from schemaseed.core.schema_types import ConstraintMetadata, SchemaIntrospectionResult
from schemaseed.core.workflow_generator import GenerationMetadata, WorkflowGenerator
from schemaseed.core.workflow_types import ExecutionResult, Workflow, WorkflowGenerationOptions
from schemaseed.utils.config_manager import Settings
from schemaseed.utils.helpers import normalize_dialect

logger = logging.getLogger(__name__)


class SeedEngine:
    """Wires the pipeline components together from one client and one Settings."""

    def __init__(
        self,
        client: MetadataClient,
        settings: Optional[Settings] = None,
        cache: Optional[MetadataCache] = None,
        registry: Optional[ConstraintRegistry] = None,
    ):
        self.client = client
        self.settings = settings or Settings()
        self.cache = cache
        self.registry = registry or ConstraintRegistry.with_default_handlers(self.settings.framework_keywords)

        self.introspector = SchemaIntrospector(
            client,
            max_workers=self.settings.max_workers,
            pattern_min_score=self.settings.pattern_min_score,
        )
        self.discovery = ConstraintDiscoveryEngine(client, introspector=self.introspector, cache=cache)
        self.graph_builder = DependencyGraphBuilder()
        self.generator = WorkflowGenerator(
            self.discovery,
            graph_builder=self.graph_builder,
            always_required_tables=self.settings.always_required_tables,
            low_confidence_rule_threshold=self.settings.low_confidence_rule_threshold,
            low_confidence_workflow_threshold=self.settings.low_confidence_workflow_threshold,
        )
        self.junctions = JunctionTableHandler(
            client,
            scoring=JunctionScoring(),
            min_confidence=self.settings.junction_min_confidence,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        schema_file: Optional[Path] = None,
        dialect: str = "postgres",
    ) -> "SeedEngine":
        """
        Build an engine from configuration.

        With ``schema_file`` the engine plans offline from a DDL dump;
        otherwise it connects to ``settings.database_url``.

        Raises:
            ConnectivityError: the database cannot be reached
        """
        settings = settings or Settings()
        if schema_file is not None:
            client: MetadataClient = SchemaFileClient.from_file(
                schema_file, schema=settings.db_schema, dialect=normalize_dialect(dialect)
            )
        else:
            if not settings.database_url:
                raise SchemaSeedError("No database URL configured; set SCHEMASEED_DATABASE_URL or pass --url")
            client = SQLAlchemyMetadataClient(settings.database_url, schema=settings.db_schema)

        cache = MetadataCache(
            cache_dir=settings.cache_dir,
            default_ttl=settings.cache_ttl,
            max_cache_size=settings.cache_max_entries,
        )
        return cls(client, settings=settings, cache=cache)

    def __enter__(self) -> "SeedEngine":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self.client.close()

    @property
    def _scope(self) -> str:
        return f"{self.client.dialect}:{self.client.schema or 'default'}"

    # ==================== Pipeline ====================

    def introspect(self, cancel_event: Optional[threading.Event] = None, use_cache: bool = True) -> SchemaIntrospectionResult:
        if use_cache and self.cache is not None:
            cached = self.cache.get_introspection(self._scope)
            if cached is not None:
                return cached

        result = self.introspector.introspect(cancel_event)
        if self.cache is not None and not result.cancelled:
            self.cache.set_introspection(self._scope, result)
        return result

    def discover_constraints(
        self,
        table_names: Iterable[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> ConstraintMetadata:
        return self.discovery.discover(table_names, cancel_event)

    def build_dependency_graph(self, metadata: ConstraintMetadata) -> DependencyGraph:
        return self.graph_builder.build(metadata)

    def generate_workflow(
        self,
        table_names: Iterable[str],
        options: Optional[WorkflowGenerationOptions] = None,
        metadata: Optional[ConstraintMetadata] = None,
    ) -> Tuple[Workflow, GenerationMetadata]:
        return self.generator.generate(table_names, options, metadata)

    def execute(
        self,
        workflow: Workflow,
        input_data: Optional[Dict[str, Any]] = None,
        constraints: Optional[ConstraintMetadata] = None,
        cancel_event: Optional[threading.Event] = None,
        max_workers: int = 1,
        raise_on_abort: bool = False,
    ) -> ExecutionResult:
        executor = ConstraintAwareExecutor(
            self.client,
            registry=self.registry,
            discovery=self.discovery,
            max_workers=max_workers,
            raise_on_abort=raise_on_abort,
        )
        return executor.execute(workflow, input_data, constraints, cancel_event)

    # ==================== Junction tables ====================

    def detect_junction_tables(
        self,
        table_names: Optional[Iterable[str]] = None,
        graph: Optional[DependencyGraph] = None,
    ) -> List[JunctionTableInfo]:
        if graph is None:
            names = list(table_names) if table_names is not None else self.client.list_tables()
            graph = self.build_dependency_graph(self.discover_constraints(names))
        return self.junctions.detect(graph)

    def seed_junction_table(
        self,
        table: str,
        options: Optional[JunctionSeedingOptions] = None,
        info: Optional[JunctionTableInfo] = None,
    ) -> JunctionSeedingResult:
        """
        Link existing rows of the two referenced tables through ``table``.

        Raises:
            SchemaSeedError: ``table`` is not detected as a junction table
        """
        if info is None:
            metadata = self.discover_constraints([table])
            referenced = {d.to_table for d in metadata.dependencies if d.from_table == table}
            graph = self.build_dependency_graph(self.discover_constraints({table} | referenced))
            info = next((i for i in self.junctions.detect(graph) if i.table == table), None)
            if info is None:
                raise SchemaSeedError(f"{table} does not look like a junction table")

        if options is None:
            options = JunctionSeedingOptions(batch_size=self.settings.junction_batch_size)
        return self.junctions.seed(info, options)

    def clear_cache(self) -> None:
        if self.cache is not None:
            self.cache.clear_all()

    # ==================== Async variants ====================

    async def aintrospect(self, cancel_event: Optional[threading.Event] = None, use_cache: bool = True) -> SchemaIntrospectionResult:
        return await asyncio.to_thread(self.introspect, cancel_event, use_cache)

    async def adiscover_constraints(
        self,
        table_names: Iterable[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> ConstraintMetadata:
        return await asyncio.to_thread(self.discover_constraints, list(table_names), cancel_event)

    async def abuild_dependency_graph(self, metadata: ConstraintMetadata) -> DependencyGraph:
        return await asyncio.to_thread(self.build_dependency_graph, metadata)

    async def agenerate_workflow(
        self,
        table_names: Iterable[str],
        options: Optional[WorkflowGenerationOptions] = None,
        metadata: Optional[ConstraintMetadata] = None,
    ) -> Tuple[Workflow, GenerationMetadata]:
        return await asyncio.to_thread(self.generate_workflow, list(table_names), options, metadata)

    async def aexecute(
        self,
        workflow: Workflow,
        input_data: Optional[Dict[str, Any]] = None,
        constraints: Optional[ConstraintMetadata] = None,
        cancel_event: Optional[threading.Event] = None,
        max_workers: int = 1,
        raise_on_abort: bool = False,
    ) -> ExecutionResult:
        return await asyncio.to_thread(
            self.execute, workflow, input_data, constraints, cancel_event, max_workers, raise_on_abort
        )

    async def aseed_junction_table(
        self,
        table: str,
        options: Optional[JunctionSeedingOptions] = None,
        info: Optional[JunctionTableInfo] = None,
    ) -> JunctionSeedingResult:
        return await asyncio.to_thread(self.seed_junction_table, table, options, info)
