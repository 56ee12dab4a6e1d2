"""Tests for dependency graph construction and ordering."""
from schemaseed.core.constraint_discovery import ConstraintDiscoveryEngine
from schemaseed.core.constraint_types import TableDependency
from schemaseed.core.dependency_graph import DependencyGraphBuilder
from schemaseed.core.schema_types import ConstraintMetadata


def dep(from_table, to_table, column=None, required=True):
    return TableDependency(
        from_table=from_table,
        from_column=column or f"{to_table}_id",
        to_table=to_table,
        to_column="id",
        required=required,
    )


def test_acyclic_creation_order():
    """Referenced tables come before the tables that reference them."""
    metadata = ConstraintMetadata(dependencies=[
        dep("comments", "posts"),
        dep("comments", "users"),
        dep("posts", "users"),
    ])

    graph = DependencyGraphBuilder().build(metadata)

    order = graph.creation_order
    assert order.index("users") < order.index("posts") < order.index("comments")
    assert graph.deletion_order == list(reversed(order))
    assert graph.cycles == []
    assert graph.nodes["users"].depth == 0
    assert graph.nodes["comments"].depth == 2
    assert graph.nodes["users"].dependents == ["comments", "posts"]


def test_self_reference_is_a_cycle():
    """A table referencing itself is reported but still ordered once."""
    metadata = ConstraintMetadata(dependencies=[dep("employees", "employees", "manager_id", required=False)])

    graph = DependencyGraphBuilder().build(metadata)

    assert graph.cycles == [["employees"]]
    assert graph.creation_order == ["employees"]
    assert graph.nodes["employees"].is_circular


def test_two_table_cycle():
    """Mutual references produce one cycle, a warning and a recommendation."""
    metadata = ConstraintMetadata(dependencies=[dep("a", "b"), dep("b", "a", required=False)])

    graph = DependencyGraphBuilder().build(metadata)

    assert graph.cycles == [["a", "b"]]
    assert sorted(graph.creation_order) == ["a", "b"]
    assert graph.warnings == ["Circular dependency: a -> b -> a"]
    assert any("two passes" in r for r in graph.recommendations)


def test_edges_carry_requiredness(accounts_client):
    """Edges built from live metadata keep the NOT NULL information."""
    metadata = ConstraintDiscoveryEngine(accounts_client).discover(["accounts", "profiles"])

    graph = DependencyGraphBuilder().build(metadata)

    assert graph.creation_order == ["accounts", "profiles"]
    edge = graph.edges_from("profiles")[0]
    assert edge.type == "required"
    assert graph.edges_to("accounts") == [edge]
    assert graph.nodes["accounts"].metadata.columns == ["id", "name", "is_personal_account", "slug"]


def test_junction_flag(roles_client):
    """A table with two foreign keys and no payload is flagged as a junction."""
    metadata = ConstraintDiscoveryEngine(roles_client).discover(["users", "roles", "user_roles"])

    graph = DependencyGraphBuilder().build(metadata)

    assert graph.junction_tables == ["user_roles"]
    assert graph.creation_order[-1] == "user_roles"
