"""Tests for CHECK clause analysis and evaluation."""
import pytest

from schemaseed.core.check_parser import CheckExpressionParser
from schemaseed.core.errors import UnsupportedCheckExpression

SLUG_CLAUSE = "NOT is_personal_account OR slug IS NULL"


@pytest.fixture
def parser():
    return CheckExpressionParser()


def test_evaluate_personal_account_slug(parser):
    """A personal account with a slug violates the clause."""
    assert parser.evaluate(SLUG_CLAUSE, {"is_personal_account": True, "slug": "acme"}) is False
    assert parser.evaluate(SLUG_CLAUSE, {"is_personal_account": True, "slug": None}) is True
    assert parser.evaluate(SLUG_CLAUSE, {"is_personal_account": False, "slug": "acme"}) is True


def test_unknown_result_passes(parser):
    """NULL operands give an unknown result, which a CHECK accepts."""
    clause = "status IN ('active', 'canceled')"

    assert parser.evaluate(clause, {}) is None
    assert parser.is_satisfied(clause, {})
    assert parser.is_satisfied(clause, {"status": "active"})
    assert not parser.is_satisfied(clause, {"status": "gone"})


def test_comparisons(parser):
    """Test numeric comparisons and length()."""
    assert parser.evaluate("price > 0", {"price": -1}) is False
    assert parser.evaluate("price > 0", {"price": 5}) is True
    assert parser.evaluate("length(name) >= 3", {"name": "ab"}) is False


def test_analyze_null_fix(parser):
    """IS NULL branches become null fixes."""
    analysis = parser.analyze(SLUG_CLAUSE)

    assert analysis.parsed
    assert analysis.columns == ["is_personal_account", "slug"]
    assert analysis.null_fixes == ["slug"]
    assert analysis.fixes[0] == ("slug", None)
    assert analysis.description == "slug must be null when is_personal_account"


def test_analyze_allowed_values(parser):
    """IN lists become allowed values."""
    analysis = parser.analyze("status IN ('draft', 'published')")

    assert analysis.allowed_values == {"status": ["draft", "published"]}
    assert analysis.fixes == [("status", "draft")]


def test_negated_null_is_not_a_fix(parser):
    """IS NOT NULL must not suggest nulling the column."""
    assert parser.analyze("slug IS NOT NULL").null_fixes == []


def test_unsupported_expression(parser):
    """Unknown functions raise instead of guessing."""
    with pytest.raises(UnsupportedCheckExpression):
        parser.evaluate("my_func(price) > 1", {"price": 3})
