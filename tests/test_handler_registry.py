"""Tests for the constraint handler registry and built-in handlers."""
import pytest

from schemaseed.core.constraint_types import (
    CheckConstraint,
    ForeignKeyConstraint,
    NotNullConstraint,
    UniqueConstraint,
)
from schemaseed.core.errors import HandlerRegistrationError
from schemaseed.core.handlers import (
    ConstraintHandler,
    ConstraintRegistry,
    GenericCheckHandler,
    PersonalAccountSlugHandler,
    SubscriptionStatusHandler,
)

SLUG_CHECK = CheckConstraint(
    name="accounts_slug_null_if_personal_account_true",
    table="accounts",
    columns=["is_personal_account", "slug"],
    check_clause="NOT is_personal_account OR slug IS NULL",
)


class StubHandler(ConstraintHandler):
    def __init__(self, handler_id, priority=10, type="check", applies=True, fail=False):
        self.id = handler_id
        self.priority = priority
        self.type = type
        self.applies = applies
        self.fail = fail

    def can_handle(self, constraint, data):
        return self.applies

    def handle(self, constraint, data):
        if self.fail:
            raise RuntimeError("boom")
        return self._result(data, success=True)


def test_duplicate_id_is_rejected():
    """Registering the same id twice raises."""
    registry = ConstraintRegistry()
    registry.register(StubHandler("h1"))

    with pytest.raises(HandlerRegistrationError):
        registry.register(StubHandler("h1"))


@pytest.mark.parametrize("handler", [
    StubHandler(""),
    StubHandler("bad_type", type="trigger"),
    StubHandler("bad_priority", priority="high"),
    StubHandler("bool_priority", priority=True),
])
def test_invalid_handlers_are_rejected(handler):
    """Handlers without an id, a known type or a numeric priority are refused."""
    with pytest.raises(HandlerRegistrationError):
        ConstraintRegistry().register(handler)


def test_no_handler_for_type():
    """An empty type yields no match and a bypass result."""
    registry = ConstraintRegistry()

    assert registry.find_handler(SLUG_CHECK, "check", {}) is None
    result = registry.handle(SLUG_CHECK, "check", {"slug": "x"})
    assert not result.success
    assert result.bypass_required
    assert result.warnings == [
        "No handler available for check constraint accounts_slug_null_if_personal_account_true"
    ]


def test_priority_order_and_unregister():
    """Higher priority wins; unregistering falls back to the next handler."""
    registry = ConstraintRegistry(framework_keywords=["nothing"])
    registry.register(StubHandler("low", priority=10))
    registry.register(StubHandler("high", priority=90))

    assert [h.id for h in registry.handlers_for("check")] == ["high", "low"]
    assert registry.find_handler(SLUG_CHECK, "check", {}).handler.id == "high"

    assert registry.unregister("high")
    assert not registry.unregister("high")
    assert registry.find_handler(SLUG_CHECK, "check", {}).handler.id == "low"


def test_keyword_boost_beats_priority():
    """A framework keyword shared by handler id and constraint outranks plain priority."""
    registry = ConstraintRegistry(framework_keywords=["personal_account"])
    registry.register(StubHandler("generic_high", priority=50))
    registry.register(StubHandler("personal_account_fixer", priority=40))

    match = registry.find_handler(SLUG_CHECK, "check", {})

    assert match.handler.id == "personal_account_fixer"
    assert "personal_account" in match.reason
    assert match.confidence == pytest.approx(0.7)


def test_can_handle_errors_are_skipped():
    """A handler whose can_handle raises is ignored."""
    class Broken(StubHandler):
        def can_handle(self, constraint, data):
            raise ValueError("nope")

    registry = ConstraintRegistry()
    registry.register(Broken("broken", priority=99))
    registry.register(StubHandler("fallback"))

    assert registry.find_handler(SLUG_CHECK, "check", {}).handler.id == "fallback"


def test_handler_exception_becomes_bypass():
    """A handler that raises produces an error result, not an exception."""
    registry = ConstraintRegistry()
    registry.register(StubHandler("exploding", fail=True))

    result = registry.handle(SLUG_CHECK, "check", {})

    assert not result.success
    assert result.bypass_required
    assert result.errors == ["Handler error: boom"]
    assert result.handler_id == "exploding"


def test_default_registry_prefers_framework_handler():
    """The MakerKit slug handler wins over the generic CHECK handler."""
    registry = ConstraintRegistry.with_default_handlers()

    result = registry.handle(SLUG_CHECK, "check", {"is_personal_account": True, "slug": "acme"})

    assert result.handler_id == "makerkit_personal_account_slug"
    assert result.modified_data["slug"] is None
    assert [f.field for f in result.applied_fixes] == ["slug"]
    stats = registry.get_stats()
    assert stats["total_handlers"] == 7
    assert stats["handlers_by_type"]["check"] == 3


def test_personal_account_handler_team_slug():
    """Team accounts without a slug get one derived from their name."""
    result = PersonalAccountSlugHandler().handle(SLUG_CHECK, {"is_personal_account": False, "name": "Acme Corp"})

    assert result.modified_data["slug"] == "acme-corp"


def test_personal_account_handler_leaves_flag_unset():
    """An omitted flag is left to the column default; only the slug is cleared."""
    result = PersonalAccountSlugHandler().handle(SLUG_CHECK, {"name": "Acme", "slug": "acme"})

    assert [f.field for f in result.applied_fixes] == ["slug"]
    assert result.modified_data["slug"] is None
    assert "is_personal_account" not in result.modified_data


def test_subscription_status_handler():
    """Unknown subscription statuses are replaced with 'active'."""
    check = CheckConstraint(
        name="subscriptions_status_check", table="subscriptions", check_clause="status IN ('active', 'canceled')",
    )
    handler = SubscriptionStatusHandler()

    assert handler.can_handle(check, {})
    assert handler.handle(check, {"status": "bogus"}).modified_data["status"] == "active"
    assert not handler.handle(check, {"status": "canceled"}).applied_fixes


def test_generic_check_handler_repairs_row():
    """The generic handler finds a single-field fix from the clause."""
    check = CheckConstraint(name="posts_status_check", table="posts", check_clause="status IN ('draft', 'published')")

    result = GenericCheckHandler().handle(check, {"status": "archived"})

    assert result.success
    assert result.modified_data["status"] == "draft"


def test_generic_check_handler_unsupported_clause():
    """Clauses that cannot be evaluated are left to the database."""
    check = CheckConstraint(name="weird", table="t", check_clause="my_func(a) > 1")

    result = GenericCheckHandler().handle(check, {"a": 1})

    assert result.success
    assert result.bypass_required
    assert result.warnings


def test_fold_table_constraints():
    """Constraints fold in check, foreign key, unique, not-null order."""
    registry = ConstraintRegistry.with_default_handlers()
    constraints = [
        NotNullConstraint(name="accounts_name_not_null", table="accounts", columns=["name"]),
        UniqueConstraint(name="accounts_slug_key", table="accounts", columns=["slug"]),
        ForeignKeyConstraint(
            name="accounts_owner_fkey", table="accounts", columns=["owner_id"],
            referenced_table="users", nullable=True,
        ),
        SLUG_CHECK,
    ]

    result = registry.handle_table_constraints(constraints, {"is_personal_account": True, "slug": "acme"})

    assert not result.success
    assert result.modified_data["slug"] is None
    assert result.errors == ["accounts.name cannot be null"]
    assert [f.field for f in result.applied_fixes] == ["slug"]


def test_test_handler_unknown_id():
    """Direct handler testing requires a registered id."""
    with pytest.raises(KeyError):
        ConstraintRegistry().test_handler("missing", SLUG_CHECK, {})
