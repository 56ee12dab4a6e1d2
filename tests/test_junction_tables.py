"""Tests for junction table detection and relationship generation."""
import math

from schemaseed.core.db_connector import MetadataClient
from schemaseed.core.dependency_graph import DependencyNode, NodeMetadata
from schemaseed.core.errors import QueryError
from schemaseed.core.junction_tables import JunctionSeedingOptions, JunctionTableHandler, JunctionTableInfo

INFO = JunctionTableInfo(
    table="user_roles",
    left_table="users",
    left_column="user_id",
    right_table="roles",
    right_column="role_id",
)


def rows(count):
    return [{"id": i} for i in range(1, count + 1)]


def node(name, non_key, fk_count=2, timestamps=False):
    return DependencyNode(
        table=name,
        metadata=NodeMetadata(
            columns=["a_id", "b_id"] + non_key,
            foreign_key_columns=["a_id", "b_id"],
            non_key_columns=non_key,
            foreign_key_count=fk_count,
            has_timestamps=timestamps,
        ),
    )


def test_two_foreign_keys_score_high():
    """Two foreign keys and no payload columns clear 0.8."""
    confidence, matched = JunctionTableHandler().score(node("links", []))

    assert confidence >= 0.8
    assert matched is None


def test_extra_columns_lower_the_score():
    """Payload columns beyond the allowance are penalized."""
    handler = JunctionTableHandler()

    one_extra, _ = handler.score(node("links", ["note"]))
    five_extra, _ = handler.score(node("links", ["c1", "c2", "c3", "c4", "c5"]))

    assert five_extra < one_extra


def test_name_pattern_and_custom_pattern():
    """Known names and registered patterns are reported."""
    handler = JunctionTableHandler()
    _, matched = handler.score(node("user_roles", []))
    assert matched == "user/account roles"

    handler.add_pattern(r"^enrollments$", "course enrollments")
    _, matched = handler.score(node("enrollments", []))
    assert matched == "course enrollments"


def test_random_pairs_are_distinct():
    """Random generation never repeats a pair and honours density."""
    options = JunctionSeedingOptions(density=0.4, avoid_orphans=False, seed=7)

    pairs = JunctionTableHandler().generate_relationships(INFO, rows(10), rows(5), options)

    keys = [(left["id"], right["id"]) for left, right in pairs]
    assert len(keys) == len(set(keys)) == 20


def test_orphan_avoidance_covers_every_row():
    """Every row on both sides appears at least once."""
    options = JunctionSeedingOptions(density=0.1, avoid_orphans=True, seed=3)

    pairs = JunctionTableHandler().generate_relationships(INFO, rows(10), rows(3), options)

    assert {left["id"] for left, _ in pairs} == set(range(1, 11))
    assert {right["id"] for _, right in pairs} == {1, 2, 3}
    assert len(pairs) == 10


def test_even_distribution_caps_per_left_row():
    """No left row receives more than ceil(target / left rows) links."""
    options = JunctionSeedingOptions(density=0.5, avoid_orphans=False, strategy="even", seed=11)

    pairs = JunctionTableHandler().generate_relationships(INFO, rows(6), rows(4), options)

    target = int(6 * 4 * 0.5)
    counts = {}
    for left, _ in pairs:
        counts[left["id"]] = counts.get(left["id"], 0) + 1
    assert len(pairs) == target
    assert max(counts.values()) <= math.ceil(target / 6)


def test_clustered_distribution_favours_popular_rows():
    """The popular fraction of left rows gets most of the links."""
    options = JunctionSeedingOptions(
        density=0.3, avoid_orphans=False, strategy="clustered", popular_fraction=0.2, popular_share=0.7, seed=5,
    )

    pairs = JunctionTableHandler().generate_relationships(INFO, rows(20), rows(10), options)

    counts = {}
    for left, _ in pairs:
        counts[left["id"]] = counts.get(left["id"], 0) + 1
    top_four = sum(sorted(counts.values(), reverse=True)[:4])
    assert len(pairs) == 60
    assert top_four >= 0.5 * len(pairs)


def test_clustered_share_counts_coverage_links():
    """Links placed for coverage count towards the popular rows' share."""
    options = JunctionSeedingOptions(
        density=0.1, avoid_orphans=True, strategy="clustered", popular_fraction=0.2, popular_share=0.7, seed=11,
    )

    pairs = JunctionTableHandler().generate_relationships(INFO, rows(50), rows(50), options)

    counts = {}
    for left, _ in pairs:
        counts[left["id"]] = counts.get(left["id"], 0) + 1
    top_ten = sum(sorted(counts.values(), reverse=True)[:10])
    keys = {(left["id"], right["id"]) for left, right in pairs}
    assert len(pairs) == 250
    assert len(keys) == 250
    assert top_ten >= 0.7 * 250
    assert {a for a, _ in keys} == set(range(1, 51))
    assert {b for _, b in keys} == set(range(1, 51))


def test_sparse_density_on_large_sides():
    """A tiny density over a huge cross product yields distinct pairs."""
    options = JunctionSeedingOptions(density=0.00001, avoid_orphans=False, seed=3)

    pairs = JunctionTableHandler().generate_relationships(INFO, rows(100000), rows(1000), options)

    keys = {(left["id"], right["id"]) for left, right in pairs}
    assert len(pairs) == 1000
    assert len(keys) == 1000


def test_empty_side_gives_no_pairs():
    """Nothing can be linked when one side has no rows."""
    assert JunctionTableHandler().generate_relationships(INFO, rows(3), []) == []


class FlakyClient(MetadataClient):
    """In-memory client whose second batch insert fails."""

    def __init__(self):
        self.inserted = []
        self.calls = 0

    def ping(self):
        return None

    def list_tables(self):
        return ["users", "roles", "user_roles"]

    def get_columns(self, table_name):
        return []

    def get_primary_key(self, table_name):
        return {}

    def get_foreign_keys(self, table_name):
        return []

    def get_unique_constraints(self, table_name):
        return []

    def get_check_constraints(self, table_name):
        return []

    def get_indexes(self, table_name):
        return []

    def get_triggers(self, table_name):
        return []

    def count_rows(self, table_name):
        return 0

    def table_exists(self, table_name):
        return True

    def select_rows(self, table_name, filters=None, limit=None):
        if table_name == "users":
            return rows(4)
        if table_name == "roles":
            return rows(2)
        return []

    def insert_rows(self, table_name, batch):
        self.calls += 1
        if self.calls == 2:
            raise QueryError("duplicate key")
        self.inserted.extend(batch)
        return len(batch)


def test_seed_counts_failed_batches():
    """A failing batch is counted and the remaining batches still run."""
    client = FlakyClient()
    options = JunctionSeedingOptions(density=1.0, batch_size=3, seed=1)

    result = JunctionTableHandler(client).seed(INFO, options)

    assert result.target_count == 8
    assert result.batches_processed == 3
    assert result.batches_failed == 1
    assert result.relationships_created == 5
    assert result.relationships_skipped == 3
    assert len(client.inserted) == 5
    assert result.errors and "duplicate key" in result.errors[0]
