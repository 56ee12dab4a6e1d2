"""Tests for the metadata cache."""
from schemaseed.core.cache.manager import MetadataCache
from schemaseed.core.constraint_types import TableDependency
from schemaseed.core.schema_types import ConstraintMetadata, SchemaIntrospectionResult


def sample_metadata():
    return ConstraintMetadata(
        dependencies=[TableDependency(from_table="posts", from_column="author_id", to_table="authors", to_column="id")],
        confidence=0.8,
        warnings=["Table drafts was not found or could not be read"],
    )


def test_table_set_key_ignores_order():
    assert MetadataCache.table_set_key(["posts", "authors", "posts"]) == "authors,posts"


def test_constraint_metadata_round_trip():
    cache = MetadataCache()
    cache.set_constraint_metadata(["posts", "authors"], sample_metadata())

    cached = cache.get_constraint_metadata(["authors", "posts"])

    assert cached is not None
    assert cached.confidence == 0.8
    assert cached.dependencies[0].to_table == "authors"
    assert cache.get_constraint_metadata(["posts"]) is None


def test_entries_persist_across_instances(tmp_path):
    """A second cache over the same directory reuses fresh entries."""
    MetadataCache(cache_dir=tmp_path).set_constraint_metadata(["posts"], sample_metadata())
    MetadataCache(cache_dir=tmp_path).set_introspection("sqlite:default", SchemaIntrospectionResult(warnings=["w"]))

    reloaded = MetadataCache(cache_dir=tmp_path)

    assert (tmp_path / "constraints.json").exists()
    assert reloaded.get_constraint_metadata(["posts"]).warnings == sample_metadata().warnings
    assert reloaded.get_introspection("sqlite:default").warnings == ["w"]


def test_expired_entries_are_dropped():
    cache = MetadataCache()
    cache.set_constraint_metadata(["posts"], sample_metadata(), ttl=-1)

    assert cache.get_constraint_metadata(["posts"]) is None
    assert cache.get_stats()["constraint_entries"] == 0


def test_clear_expired_counts_entries():
    cache = MetadataCache()
    cache.set_constraint_metadata(["posts"], sample_metadata(), ttl=-1)
    cache.set_constraint_metadata(["authors"], sample_metadata())

    assert cache.clear_expired() == 1
    assert cache.get_constraint_metadata(["authors"]) is not None


def test_unreadable_cache_file_is_ignored(tmp_path):
    (tmp_path / "constraints.json").write_text("{not json")

    cache = MetadataCache(cache_dir=tmp_path)

    assert cache.get_stats()["constraint_entries"] == 0


def test_clear_all(tmp_path):
    cache = MetadataCache(cache_dir=tmp_path)
    cache.set_constraint_metadata(["posts"], sample_metadata())
    cache.set_introspection("sqlite:default", SchemaIntrospectionResult())

    cache.clear_all()

    assert cache.get_stats()["total_entries"] == 0
    assert MetadataCache(cache_dir=tmp_path).get_constraint_metadata(["posts"]) is None


def test_size_limit_and_stats():
    cache = MetadataCache(max_cache_size=2)
    for name in ("authors", "notes", "posts"):
        cache.set_constraint_metadata([name], sample_metadata())

    stats = cache.get_stats()

    assert stats["constraint_entries"] == 2
    assert stats["introspection_entries"] == 0
    assert stats["total_entries"] == 2
    assert len(stats["table_sets"]) == 2
    assert stats["cache_dir"] is None
