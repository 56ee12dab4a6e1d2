"""Foreign-key dependency graph: cycles, creation order, junction flags."""
import logging
from typing import Dict, Generator, List, Literal, Optional, Set, Tuple

from pydantic import BaseModel, Field

from schemaseed.core.schema_types import ConstraintMetadata, Table

logger = logging.getLogger(__name__)

MAX_JUNCTION_NON_KEY_COLUMNS = 2
DEEP_CHAIN_DEPTH = 5


class NodeMetadata(BaseModel):
    columns: List[str] = Field(default_factory=list)
    primary_key_columns: List[str] = Field(default_factory=list)
    foreign_key_columns: List[str] = Field(default_factory=list)
    non_key_columns: List[str] = Field(default_factory=list)
    foreign_key_count: int = 0
    unique_column_sets: List[List[str]] = Field(default_factory=list)
    has_timestamps: bool = False
    row_count: Optional[int] = None


class DependencyNode(BaseModel):
    table: str
    dependencies: List[str] = Field(default_factory=list)
    dependents: List[str] = Field(default_factory=list)
    depth: int = 0
    is_junction_table: bool = False
    is_circular: bool = False
    metadata: NodeMetadata = Field(default_factory=NodeMetadata)


class DependencyEdge(BaseModel):
    from_table: str
    from_column: str
    to_table: str
    to_column: str
    type: Literal["required", "optional"] = "optional"
    cascade_delete: bool = False
    constraint_name: Optional[str] = None


class DependencyGraph(BaseModel):
    nodes: Dict[str, DependencyNode] = Field(default_factory=dict)
    edges: List[DependencyEdge] = Field(default_factory=list)
    cycles: List[List[str]] = Field(default_factory=list)
    creation_order: List[str] = Field(default_factory=list)
    deletion_order: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)

    def node(self, table: str) -> Optional[DependencyNode]:
        return self.nodes.get(table)

    def edges_from(self, table: str) -> List[DependencyEdge]:
        return [edge for edge in self.edges if edge.from_table == table]

    def edges_to(self, table: str) -> List[DependencyEdge]:
        return [edge for edge in self.edges if edge.to_table == table]

    @property
    def junction_tables(self) -> List[str]:
        return sorted(name for name, node in self.nodes.items() if node.is_junction_table)


def _walk(adjacency: Dict[str, List[str]], start: str) -> Generator[Tuple[str, Optional[str], List[str]], bool, None]:
    """
    Iterative DFS from ``start``.

    Yields ``(node, neighbour, path)`` for every edge examined; the caller
    answers with ``send(True)`` to descend into the neighbour. Yields
    ``(node, None, path)`` once a node's neighbours are exhausted.
    """
    stack = [(start, iter(adjacency.get(start, [])))]
    path = [start]
    while stack:
        node, neighbours = stack[-1]
        nxt = next(neighbours, None)
        if nxt is None:
            stack.pop()
            yield node, None, path
            path.pop()
            continue
        descend = yield node, nxt, path
        if descend:
            stack.append((nxt, iter(adjacency.get(nxt, []))))
            path.append(nxt)


class DependencyGraphBuilder:
    """Builds a DependencyGraph from discovered constraint metadata."""

    def build(self, metadata: ConstraintMetadata) -> DependencyGraph:
        """
        Build the graph.

        Nodes cover every table with a snapshot in ``metadata`` plus every
        table named by a dependency edge. Creation order places each table
        after the tables it references; tables on a cycle are still emitted
        once, in discovery order, and flagged.
        """
        snapshots: Dict[str, Table] = {entry.table.name: entry.table for entry in metadata.tables}
        names: Set[str] = set(snapshots)
        for dep in metadata.dependencies:
            names.update((dep.from_table, dep.to_table))

        edges = [
            DependencyEdge(
                from_table=dep.from_table,
                from_column=dep.from_column,
                to_table=dep.to_table,
                to_column=dep.to_column,
                type="required" if dep.required else "optional",
                cascade_delete=dep.cascade_delete,
                constraint_name=dep.constraint_name,
            )
            for dep in metadata.dependencies
        ]

        adjacency: Dict[str, List[str]] = {name: [] for name in sorted(names)}
        for edge in edges:
            if edge.to_table not in adjacency[edge.from_table]:
                adjacency[edge.from_table].append(edge.to_table)
        for deps in adjacency.values():
            deps.sort()

        cycles = self.detect_cycles(adjacency)
        creation_order = self.creation_order(adjacency)
        circular = {name for cycle in cycles for name in cycle}

        nodes = {
            name: self._node(name, snapshots.get(name), adjacency, edges, name in circular)
            for name in adjacency
        }
        self._assign_depths(nodes, creation_order)

        graph = DependencyGraph(
            nodes=nodes,
            edges=edges,
            cycles=cycles,
            creation_order=creation_order,
            deletion_order=list(reversed(creation_order)),
        )
        self._annotate(graph)
        logger.info(
            f"Dependency graph: {len(nodes)} tables, {len(edges)} edges, {len(cycles)} cycles"
        )
        return graph

    def _node(
        self,
        name: str,
        table: Optional[Table],
        adjacency: Dict[str, List[str]],
        edges: List[DependencyEdge],
        is_circular: bool,
    ) -> DependencyNode:
        outgoing = [e for e in edges if e.from_table == name]
        if table is not None:
            meta = NodeMetadata(
                columns=table.column_names,
                primary_key_columns=table.primary_key_columns,
                foreign_key_columns=table.foreign_key_columns,
                non_key_columns=table.non_key_columns,
                foreign_key_count=len(table.foreign_keys),
                unique_column_sets=[list(c.columns) for c in table.constraints if c.kind in ("unique", "primary_key")],
                has_timestamps=table.has_timestamps,
                row_count=table.row_count,
            )
        else:
            meta = NodeMetadata(
                foreign_key_columns=sorted({e.from_column for e in outgoing}),
                foreign_key_count=len({e.constraint_name or e.from_column for e in outgoing}),
            )

        return DependencyNode(
            table=name,
            dependencies=list(adjacency[name]),
            dependents=sorted(other for other, deps in adjacency.items() if name in deps),
            is_junction_table=(
                table is not None
                and meta.foreign_key_count >= 2
                and len(meta.non_key_columns) <= MAX_JUNCTION_NON_KEY_COLUMNS
            ),
            is_circular=is_circular,
            metadata=meta,
        )

    def detect_cycles(self, adjacency: Dict[str, List[str]]) -> List[List[str]]:
        """Every cycle closed by a back edge, each reported once."""
        visited: Set[str] = set()
        seen: Set[Tuple[str, ...]] = set()
        cycles: List[List[str]] = []

        for start in sorted(adjacency):
            if start in visited:
                continue
            walker = _walk(adjacency, start)
            on_path = {start}
            step = next(walker, None)
            while step is not None:
                node, nxt, path = step
                descend = False
                if nxt is None:
                    on_path.discard(node)
                    visited.add(node)
                elif nxt in on_path:
                    cycle = path[path.index(nxt):]
                    key = self._normalize(cycle)
                    if key not in seen:
                        seen.add(key)
                        cycles.append(list(key))
                elif nxt not in visited:
                    on_path.add(nxt)
                    descend = True
                try:
                    step = walker.send(descend) if nxt is not None else next(walker)
                except StopIteration:
                    step = None
        return cycles

    def creation_order(self, adjacency: Dict[str, List[str]]) -> List[str]:
        """Post-order DFS over dependencies; visiting nodes short-circuit cycles."""
        placed: Set[str] = set()
        order: List[str] = []

        for start in sorted(adjacency):
            if start in placed:
                continue
            walker = _walk(adjacency, start)
            visiting = {start}
            step = next(walker, None)
            while step is not None:
                node, nxt, _ = step
                descend = False
                if nxt is None:
                    visiting.discard(node)
                    if node not in placed:
                        placed.add(node)
                        order.append(node)
                elif nxt not in placed and nxt not in visiting:
                    visiting.add(nxt)
                    descend = True
                try:
                    step = walker.send(descend) if nxt is not None else next(walker)
                except StopIteration:
                    step = None
        return order

    @staticmethod
    def _normalize(cycle: List[str]) -> Tuple[str, ...]:
        pivot = cycle.index(min(cycle))
        return tuple(cycle[pivot:] + cycle[:pivot])

    @staticmethod
    def _assign_depths(nodes: Dict[str, DependencyNode], creation_order: List[str]) -> None:
        position = {name: index for index, name in enumerate(creation_order)}
        for name in creation_order:
            node = nodes[name]
            earlier = [nodes[d].depth for d in node.dependencies if d != name and position[d] < position[name]]
            node.depth = 1 + max(earlier) if earlier else 0

    @staticmethod
    def _annotate(graph: DependencyGraph) -> None:
        for cycle in graph.cycles:
            path = " -> ".join(cycle + [cycle[0]])
            graph.warnings.append(f"Circular dependency: {path}")
        if graph.cycles:
            graph.recommendations.append(
                "Seed circular tables in two passes: insert with nullable references unset, then update them"
            )
        if graph.junction_tables:
            graph.recommendations.append(
                f"Populate junction tables after their parents: {', '.join(graph.junction_tables)}"
            )
        deepest = max((node.depth for node in graph.nodes.values()), default=0)
        if deepest > DEEP_CHAIN_DEPTH:
            graph.recommendations.append(
                f"Dependency chains reach depth {deepest}; consider seeding in phases"
            )
