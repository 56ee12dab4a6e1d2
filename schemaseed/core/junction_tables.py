"""Many-to-many junction table detection and relationship generation."""
import logging
import math
import random
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Pattern, Sequence, Tuple

from pydantic import BaseModel, Field

from schemaseed.core.db_connector import MetadataClient
from schemaseed.core.dependency_graph import DependencyEdge, DependencyGraph, DependencyNode
from schemaseed.core.errors import SchemaSeedError
from schemaseed.core.schema_types import TIMESTAMP_COLUMNS

logger = logging.getLogger(__name__)

DEFAULT_JUNCTION_PATTERNS = [
    (r"^(user|account)_roles?$", "user/account roles"),
    (r"^(user|member)_teams?$", "team membership"),
    (r"^products?_categories$", "product categories"),
    (r"^posts?_tags?$", "post tags"),
    (r"^(organization|org)_members?$", "organization members"),
]

Pair = Tuple[Dict[str, Any], Dict[str, Any]]


@dataclass
class JunctionScoring:
    """Confidence contributions for junction detection."""
    base: float = 0.5
    two_foreign_keys: float = 0.3
    few_columns: float = 0.2
    timestamps: float = 0.1
    name_pattern: float = 0.2
    max_non_key_columns: int = 2
    # Applied after capping so extra columns always lower the score
    extra_column_penalty: float = 0.05


class JunctionCardinality(BaseModel):
    left: Literal["one", "many"] = "many"
    right: Literal["one", "many"] = "many"
    estimated_density: float = 0.3


class JunctionTableInfo(BaseModel):
    table: str
    left_table: str
    left_column: str
    left_reference: str = "id"
    right_table: str
    right_column: str
    right_reference: str = "id"
    additional_columns: List[str] = Field(default_factory=list)
    has_timestamps: bool = False
    cardinality: JunctionCardinality = Field(default_factory=JunctionCardinality)
    confidence: float = 0.0
    matched_pattern: Optional[str] = None


class JunctionSeedingOptions(BaseModel):
    density: float = Field(default=0.3, gt=0.0, le=1.0)
    avoid_orphans: bool = True
    strategy: Literal["random", "even", "clustered"] = "random"
    popular_fraction: float = Field(default=0.3, gt=0.0, le=1.0)
    popular_share: float = Field(default=0.7, ge=0.0, le=1.0)
    batch_size: int = Field(default=100, ge=1)
    include_timestamps: bool = True
    generate_metadata: bool = True
    max_source_rows: Optional[int] = 1000
    seed: Optional[int] = None


class JunctionSeedingResult(BaseModel):
    table: str
    target_count: int = 0
    relationships_created: int = 0
    relationships_skipped: int = 0
    batches_processed: int = 0
    batches_failed: int = 0
    orphans_avoided: int = 0
    actual_density: float = 0.0
    errors: List[str] = Field(default_factory=list)


class JunctionTableHandler:
    """Classifies junction tables and fills them with relationship rows."""

    def __init__(
        self,
        client: Optional[MetadataClient] = None,
        scoring: Optional[JunctionScoring] = None,
        min_confidence: float = 0.7,
    ):
        self.client = client
        self.scoring = scoring or JunctionScoring()
        self.min_confidence = min_confidence
        self.patterns: List[Tuple[Pattern[str], str]] = [
            (re.compile(p, re.IGNORECASE), d) for p, d in DEFAULT_JUNCTION_PATTERNS
        ]

    def add_pattern(self, pattern: str, description: str = "") -> None:
        """Register an extra junction-table naming pattern."""
        self.patterns.append((re.compile(pattern, re.IGNORECASE), description or pattern))

    # ==================== Detection ====================

    def score(self, node: DependencyNode) -> Tuple[float, Optional[str]]:
        """Detection confidence for a table and the naming pattern it matched."""
        s = self.scoring
        meta = node.metadata
        non_key = [c for c in meta.non_key_columns if c not in TIMESTAMP_COLUMNS]

        confidence = s.base
        if meta.foreign_key_count == 2:
            confidence += s.two_foreign_keys
        if len(non_key) <= s.max_non_key_columns:
            confidence += s.few_columns
        if meta.has_timestamps:
            confidence += s.timestamps

        matched = None
        for pattern, description in self.patterns:
            if pattern.search(node.table):
                matched = description
                confidence += s.name_pattern
                break

        confidence = min(confidence, 1.0)
        extra = max(0, len(non_key) - s.max_non_key_columns)
        confidence -= extra * s.extra_column_penalty
        return max(confidence, 0.0), matched

    def detect(self, graph: DependencyGraph) -> List[JunctionTableInfo]:
        """Junction tables in the graph whose confidence clears the threshold."""
        found = []
        for name in sorted(graph.nodes):
            node = graph.nodes[name]
            if node.metadata.foreign_key_count < 2 or not node.metadata.columns:
                continue

            sides = self._sides(name, graph.edges_from(name))
            if sides is None:
                continue

            confidence, matched = self.score(node)
            if confidence < self.min_confidence:
                logger.debug(f"{name} is not a junction table (confidence {confidence:.2f})")
                continue

            left, right = sides
            found.append(JunctionTableInfo(
                table=name,
                left_table=left.to_table,
                left_column=left.from_column,
                left_reference=left.to_column,
                right_table=right.to_table,
                right_column=right.from_column,
                right_reference=right.to_column,
                additional_columns=list(node.metadata.non_key_columns),
                has_timestamps=node.metadata.has_timestamps,
                cardinality=self._cardinality(node, left, right, graph),
                confidence=confidence,
                matched_pattern=matched,
            ))
        return found

    @staticmethod
    def _sides(name: str, edges: List[DependencyEdge]) -> Optional[Tuple[DependencyEdge, DependencyEdge]]:
        """Pick left/right edges; the table named first in the junction name is left."""
        by_column: Dict[str, DependencyEdge] = {}
        for edge in edges:
            by_column.setdefault(edge.from_column, edge)
        if len(by_column) < 2:
            return None

        def position(edge: DependencyEdge) -> Tuple[int, str]:
            stem = edge.to_table.lower().rstrip("s")
            index = name.lower().find(stem) if stem else -1
            return (index if index >= 0 else len(name) + 1, edge.from_column)

        ordered = sorted(by_column.values(), key=position)
        return ordered[0], ordered[1]

    @staticmethod
    def _cardinality(
        node: DependencyNode,
        left: DependencyEdge,
        right: DependencyEdge,
        graph: DependencyGraph,
    ) -> JunctionCardinality:
        unique_sets = [set(cols) for cols in node.metadata.unique_column_sets]
        left_side = "one" if {left.from_column} in unique_sets else "many"
        right_side = "one" if {right.from_column} in unique_sets else "many"

        density = JunctionCardinality().estimated_density
        left_node, right_node = graph.node(left.to_table), graph.node(right.to_table)
        left_rows = left_node.metadata.row_count if left_node else None
        right_rows = right_node.metadata.row_count if right_node else None
        if node.metadata.row_count and left_rows and right_rows:
            density = min(node.metadata.row_count / (left_rows * right_rows), 1.0)

        return JunctionCardinality(left=left_side, right=right_side, estimated_density=density)

    # ==================== Relationship generation ====================

    def generate_relationships(
        self,
        info: JunctionTableInfo,
        left_rows: List[Dict[str, Any]],
        right_rows: List[Dict[str, Any]],
        options: Optional[JunctionSeedingOptions] = None,
    ) -> List[Pair]:
        """
        Choose distinct (left, right) row pairs.

        Target count is ``floor(len(left) * len(right) * density)``; with
        orphan avoidance every row of both sides is paired at least once
        first, which can raise the count above the target.
        """
        pairs, _ = self._generate(left_rows, right_rows, options or JunctionSeedingOptions())
        return pairs

    def _generate(
        self,
        left_rows: List[Dict[str, Any]],
        right_rows: List[Dict[str, Any]],
        options: JunctionSeedingOptions,
    ) -> Tuple[List[Pair], int]:
        left_count, right_count = len(left_rows), len(right_rows)
        if not left_count or not right_count:
            return [], 0

        rng = random.Random(options.seed)
        target = min(int(left_count * right_count * options.density), left_count * right_count)
        chosen: List[int] = []
        used = set()

        def add(i: int, j: int) -> bool:
            key = i * right_count + j
            if key in used:
                return False
            used.add(key)
            chosen.append(key)
            return True

        coverage = 0
        if options.avoid_orphans:
            lefts = list(range(left_count))
            rights = list(range(right_count))
            rng.shuffle(lefts)
            rng.shuffle(rights)
            for n in range(max(left_count, right_count)):
                if add(lefts[n % left_count], rights[n % right_count]):
                    coverage += 1
            target = max(target, len(chosen))

        if options.strategy == "even":
            self._fill_even(rng, left_count, right_count, target, chosen, add)
        elif options.strategy == "clustered":
            self._fill_clustered(rng, left_count, right_count, target, chosen, used, options)
        else:
            self._fill_random(rng, left_count, right_count, target, chosen, used)

        pairs = [(left_rows[k // right_count], right_rows[k % right_count]) for k in chosen]
        return pairs, coverage

    @staticmethod
    def _sample_pairs(
        rng: random.Random,
        lefts: Sequence[int],
        right_count: int,
        count: int,
        used: set,
    ) -> List[int]:
        """Draw up to ``count`` unused keys whose left index is in ``lefts``."""
        if count <= 0 or not lefts:
            return []
        left_set = set(lefts)
        free = len(lefts) * right_count - sum(1 for k in used if k // right_count in left_set)
        count = min(count, free)
        if count <= 0:
            return []

        if count * 2 > free:
            pool = [i * right_count + j for i in lefts for j in range(right_count) if i * right_count + j not in used]
            picks = rng.sample(pool, count)
        else:
            # Sparse: rejection-sample instead of enumerating every pair
            picks = []
            taken = set()
            while len(picks) < count:
                key = rng.choice(lefts) * right_count + rng.randrange(right_count)
                if key in used or key in taken:
                    continue
                taken.add(key)
                picks.append(key)
        used.update(picks)
        return picks

    def _fill_random(
        self,
        rng: random.Random,
        left_count: int,
        right_count: int,
        target: int,
        chosen: List[int],
        used: set,
    ) -> None:
        needed = target - len(chosen)
        chosen.extend(self._sample_pairs(rng, range(left_count), right_count, needed, used))

    @staticmethod
    def _fill_even(rng: random.Random, left_count: int, right_count: int, target: int, chosen: List[int], add) -> None:
        per_left = math.ceil(target / left_count)
        counts = [0] * left_count
        for key in chosen:
            counts[key // right_count] += 1

        lefts = list(range(left_count))
        rng.shuffle(lefts)
        for i in lefts:
            partners = list(range(right_count))
            rng.shuffle(partners)
            for j in partners:
                if len(chosen) >= target or counts[i] >= per_left:
                    break
                if add(i, j):
                    counts[i] += 1
            if len(chosen) >= target:
                break

    def _fill_clustered(
        self,
        rng: random.Random,
        left_count: int,
        right_count: int,
        target: int,
        chosen: List[int],
        used: set,
        options: JunctionSeedingOptions,
    ) -> None:
        needed = target - len(chosen)
        if needed <= 0:
            return

        lefts = list(range(left_count))
        rng.shuffle(lefts)
        popular_count = max(1, int(left_count * options.popular_fraction))
        popular, regular = lefts[:popular_count], lefts[popular_count:]
        popular_set = set(popular)

        # The popular share applies to every link, including those placed for coverage
        placed = sum(1 for k in chosen if k // right_count in popular_set)
        quota = min(max(round(target * options.popular_share) - placed, 0), needed)

        chosen.extend(self._sample_pairs(rng, popular, right_count, quota, used))
        chosen.extend(self._sample_pairs(rng, regular, right_count, target - len(chosen), used))
        # Spill into whatever is left when one side ran dry
        self._fill_random(rng, left_count, right_count, target, chosen, used)

    # ==================== Seeding ====================

    def build_records(
        self,
        info: JunctionTableInfo,
        pairs: List[Pair],
        options: JunctionSeedingOptions,
    ) -> List[Dict[str, Any]]:
        rng = random.Random(options.seed)
        now = datetime.now(timezone.utc)
        extra = set(info.additional_columns)
        records = []
        for left, right in pairs:
            record = {
                info.left_column: left.get(info.left_reference),
                info.right_column: right.get(info.right_reference),
            }
            if options.include_timestamps:
                for column in ("created_at", "updated_at"):
                    if column in extra:
                        record[column] = now
            if options.generate_metadata:
                if "status" in extra:
                    record["status"] = "active"
                if "priority" in extra:
                    record["priority"] = rng.randint(1, 10)
            records.append(record)
        return records

    def seed(self, info: JunctionTableInfo, options: Optional[JunctionSeedingOptions] = None) -> JunctionSeedingResult:
        """
        Generate and insert relationship rows in fixed-size batches.

        A failing batch is counted and skipped; later batches still run.
        """
        if self.client is None:
            raise SchemaSeedError("Junction seeding needs a metadata client")
        options = options or JunctionSeedingOptions()

        left_rows = self.client.select_rows(info.left_table, limit=options.max_source_rows)
        right_rows = self.client.select_rows(info.right_table, limit=options.max_source_rows)
        result = JunctionSeedingResult(table=info.table)
        if not left_rows or not right_rows:
            result.errors.append(f"{info.left_table} or {info.right_table} has no rows to link")
            return result

        existing = {
            (row.get(info.left_column), row.get(info.right_column))
            for row in self.client.select_rows(info.table)
        }
        pairs, coverage = self._generate(left_rows, right_rows, options)
        result.target_count = len(pairs)
        result.orphans_avoided = coverage

        fresh = []
        for left, right in pairs:
            key = (left.get(info.left_reference), right.get(info.right_reference))
            if key in existing:
                result.relationships_skipped += 1
            else:
                fresh.append((left, right))

        records = self.build_records(info, fresh, options)
        for start in range(0, len(records), options.batch_size):
            batch = records[start:start + options.batch_size]
            result.batches_processed += 1
            try:
                result.relationships_created += self.client.insert_rows(info.table, batch)
            except SchemaSeedError as e:
                result.batches_failed += 1
                result.relationships_skipped += len(batch)
                result.errors.append(f"Batch {result.batches_processed} failed: {e}")
                logger.warning(f"Junction batch for {info.table} failed: {e}")

        linked = len(existing) + result.relationships_created
        result.actual_density = min(linked / (len(left_rows) * len(right_rows)), 1.0)
        logger.info(
            f"Seeded {result.relationships_created} rows into {info.table} "
            f"({result.batches_failed} failed batches)"
        )
        return result
