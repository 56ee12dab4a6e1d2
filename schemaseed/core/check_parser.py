"""CHECK constraint analysis and evaluation using SQLGlot."""
import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from schemaseed.core.errors import UnsupportedCheckExpression

logger = logging.getLogger(__name__)

# Regex fallbacks for clauses SQLGlot cannot parse
NULL_PATTERN = re.compile(r"(?<!NOT\s)\b([a-z_][a-z0-9_]*)\s+IS\s+NULL\b", re.IGNORECASE)
IN_PATTERN = re.compile(r"\b([a-z_][a-z0-9_]*)\s+IN\s*\(([^)]*)\)", re.IGNORECASE)
IDENTIFIER_PATTERN = re.compile(r"\b([a-z_][a-z0-9_]*)\b", re.IGNORECASE)
SQL_WORDS = {
    "and", "or", "not", "is", "null", "in", "true", "false", "any", "array",
    "text", "length", "char_length", "character", "varying", "between", "like",
}

Fix = Tuple[str, Any]


@dataclass
class CheckAnalysis:
    """What a CHECK clause says about the columns it touches."""
    clause: str
    columns: List[str] = field(default_factory=list)
    null_fixes: List[str] = field(default_factory=list)
    allowed_values: Dict[str, List[Any]] = field(default_factory=dict)
    description: str = ""
    parsed: bool = False

    @property
    def fixes(self) -> List[Fix]:
        """Candidate single-field repairs, most specific first."""
        candidates: List[Fix] = [(column, None) for column in self.null_fixes]
        for column, values in self.allowed_values.items():
            if values:
                candidates.append((column, values[0]))
        return candidates


@lru_cache(maxsize=512)
def _parse(clause: str, dialect: str) -> Optional[exp.Expression]:
    try:
        return sqlglot.parse_one(clause, read=dialect)
    except SqlglotError as e:
        logger.debug(f"Could not parse check clause {clause!r}: {e}")
        return None


def _and(left: Optional[bool], right: Optional[bool]) -> Optional[bool]:
    if left is False or right is False:
        return False
    if left is None or right is None:
        return None
    return True


def _or(left: Optional[bool], right: Optional[bool]) -> Optional[bool]:
    if left is True or right is True:
        return True
    if left is None or right is None:
        return None
    return False


def _unwrap(node: exp.Expression) -> exp.Expression:
    while isinstance(node, exp.Paren):
        node = node.this
    return node


def _is_negated(node: exp.Expression) -> bool:
    parent = node.parent
    while isinstance(parent, exp.Paren):
        parent = parent.parent
    return isinstance(parent, exp.Not)


class CheckExpressionParser:
    """Analyzes and evaluates CHECK clauses against candidate rows."""

    COMPARISONS = {
        exp.EQ: lambda a, b: a == b,
        exp.NEQ: lambda a, b: a != b,
        exp.GT: lambda a, b: a > b,
        exp.GTE: lambda a, b: a >= b,
        exp.LT: lambda a, b: a < b,
        exp.LTE: lambda a, b: a <= b,
    }

    def __init__(self, dialect: str = "postgres"):
        """Initialize parser with the dialect CHECK bodies are written in."""
        self.dialect = dialect

    def parse(self, clause: str) -> Optional[exp.Expression]:
        return _parse(clause.strip(), self.dialect)

    # ==================== Analysis ====================

    def analyze(self, clause: str) -> CheckAnalysis:
        """Extract referenced columns, nullability and enumeration hints."""
        parsed = self.parse(clause)
        if parsed is None:
            return self._analyze_with_regex(clause)

        analysis = CheckAnalysis(clause=clause, parsed=True)
        analysis.columns = sorted({col.name for col in parsed.find_all(exp.Column)})

        for node in parsed.find_all(exp.Is):
            if isinstance(node.expression, exp.Null) and not _is_negated(node):
                target = _unwrap(node.this)
                if isinstance(target, exp.Column) and target.name not in analysis.null_fixes:
                    analysis.null_fixes.append(target.name)

        for node in parsed.find_all(exp.In):
            target = _unwrap(node.this)
            if isinstance(target, exp.Column) and not _is_negated(node):
                values = [self._literal(e) for e in node.expressions]
                analysis.allowed_values.setdefault(target.name, []).extend(v for v in values if v is not None)

        for node in parsed.find_all(exp.EQ):
            target = _unwrap(node.left)
            if not isinstance(target, exp.Column) or _is_negated(node):
                continue
            right = _unwrap(node.right)
            if isinstance(right, exp.Any):
                values = [self._literal(e) for e in self._array_items(right.this)]
                analysis.allowed_values.setdefault(target.name, []).extend(v for v in values if v is not None)

        analysis.description = self._describe(analysis)
        return analysis

    def _analyze_with_regex(self, clause: str) -> CheckAnalysis:
        analysis = CheckAnalysis(clause=clause)
        analysis.columns = sorted({
            word for word in IDENTIFIER_PATTERN.findall(clause)
            if word.lower() not in SQL_WORDS and not word.isdigit()
        })
        analysis.null_fixes = list(dict.fromkeys(NULL_PATTERN.findall(clause)))
        for column, values in IN_PATTERN.findall(clause):
            options = [v.strip().split("::")[0].strip("'\" ") for v in values.split(",")]
            analysis.allowed_values[column] = [v for v in options if v]
        analysis.description = self._describe(analysis)
        return analysis

    def _describe(self, analysis: CheckAnalysis) -> str:
        if analysis.null_fixes:
            column = analysis.null_fixes[0]
            guards = [c for c in analysis.columns if c != column]
            if guards:
                return f"{column} must be null when {' and '.join(guards)}"
            return f"{column} must be null"
        if analysis.allowed_values:
            column, values = next(iter(analysis.allowed_values.items()))
            return f"{column} must be one of {', '.join(str(v) for v in values)}"
        return f"CHECK ({analysis.clause})"

    def _array_items(self, node: exp.Expression) -> List[exp.Expression]:
        node = _unwrap(node)
        if isinstance(node, exp.Array):
            return list(node.expressions)
        return [node]

    def _literal(self, node: exp.Expression) -> Any:
        node = _unwrap(node)
        if isinstance(node, exp.Cast):
            return self._literal(node.this)
        if isinstance(node, exp.Literal):
            return self._literal_value(node)
        if isinstance(node, exp.Boolean):
            return node.this
        return None

    @staticmethod
    def _literal_value(node: exp.Literal) -> Any:
        if node.is_string:
            return node.this
        text = node.this
        try:
            return int(text)
        except ValueError:
            return float(text)

    # ==================== Evaluation ====================

    def evaluate(self, clause: str, row: Dict[str, Any]) -> Optional[bool]:
        """
        Evaluate a CHECK clause with SQL three-valued logic.

        Args:
            clause: CHECK body without the surrounding ``CHECK (...)``
            row: Candidate column values; absent columns read as NULL

        Returns:
            True or False when decidable, None when the result is unknown
            (a CHECK constraint passes on unknown)

        Raises:
            UnsupportedCheckExpression: clause cannot be parsed or uses
                unsupported syntax
        """
        parsed = self.parse(clause)
        if parsed is None:
            raise UnsupportedCheckExpression(f"Cannot parse check clause: {clause}")
        return self._predicate(parsed, row)

    def is_satisfied(self, clause: str, row: Dict[str, Any]) -> bool:
        """True unless the clause evaluates to a definite False."""
        return self.evaluate(clause, row) is not False

    def _predicate(self, node: exp.Expression, row: Dict[str, Any]) -> Optional[bool]:
        node = _unwrap(node)

        if isinstance(node, exp.And):
            return _and(self._predicate(node.left, row), self._predicate(node.right, row))
        if isinstance(node, exp.Or):
            return _or(self._predicate(node.left, row), self._predicate(node.right, row))
        if isinstance(node, exp.Not):
            inner = self._predicate(node.this, row)
            return None if inner is None else not inner

        if isinstance(node, exp.Is):
            value = self._value(node.this, row)
            target = _unwrap(node.expression)
            if isinstance(target, exp.Null):
                return value is None
            if isinstance(target, exp.Boolean):
                return value is not None and bool(value) == target.this
            raise UnsupportedCheckExpression(f"Unsupported IS target: {target.sql()}")

        if isinstance(node, exp.In):
            value = self._value(node.this, row)
            options = [self._value(e, row) for e in node.expressions]
            return self._membership(value, options)

        compare = self.COMPARISONS.get(type(node))
        if compare is not None:
            left = self._value(node.left, row)
            right_node = _unwrap(node.right)
            if isinstance(right_node, exp.Any) and isinstance(node, exp.EQ):
                options = [self._value(e, row) for e in self._array_items(right_node.this)]
                return self._membership(left, options)
            right = self._value(right_node, row)
            if left is None or right is None:
                return None
            try:
                return bool(compare(left, right))
            except TypeError:
                return None

        if isinstance(node, (exp.Column, exp.Boolean, exp.Null)):
            value = self._value(node, row)
            return None if value is None else bool(value)

        raise UnsupportedCheckExpression(f"Unsupported check expression: {node.sql()}")

    def _membership(self, value: Any, options: List[Any]) -> Optional[bool]:
        if value is None:
            return None
        if value in [o for o in options if o is not None]:
            return True
        if any(o is None for o in options):
            return None
        return False

    def _value(self, node: exp.Expression, row: Dict[str, Any]) -> Any:
        node = _unwrap(node)

        if isinstance(node, exp.Column):
            return row.get(node.name)
        if isinstance(node, exp.Literal):
            return self._literal_value(node)
        if isinstance(node, exp.Boolean):
            return node.this
        if isinstance(node, exp.Null):
            return None
        if isinstance(node, exp.Cast):
            return self._value(node.this, row)
        if isinstance(node, exp.Neg):
            inner = self._value(node.this, row)
            return None if inner is None else -inner
        if isinstance(node, exp.Length):
            inner = self._value(node.this, row)
            return None if inner is None else len(str(inner))
        if isinstance(node, exp.Anonymous) and node.name.lower() in ("length", "char_length"):
            inner = self._value(node.expressions[0], row)
            return None if inner is None else len(str(inner))
        if isinstance(node, exp.Lower):
            inner = self._value(node.this, row)
            return None if inner is None else str(inner).lower()
        if isinstance(node, exp.Upper):
            inner = self._value(node.this, row)
            return None if inner is None else str(inner).upper()
        if isinstance(node, (exp.And, exp.Or, exp.Not, exp.Is, exp.In)) or type(node) in self.COMPARISONS:
            return self._predicate(node, row)

        raise UnsupportedCheckExpression(f"Unsupported check value: {node.sql()}")
