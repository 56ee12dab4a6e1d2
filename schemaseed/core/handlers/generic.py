"""Fallback handlers for every constraint kind."""
import logging
from typing import Any, Dict, List, Optional

from schemaseed.core.check_parser import CheckExpressionParser
from schemaseed.core.constraint_types import (
    CheckConstraint,
    ConstraintFix,
    ConstraintHandlingResult,
    ForeignKeyConstraint,
    NotNullConstraint,
    UniqueConstraint,
)
from schemaseed.core.errors import UnsupportedCheckExpression
from schemaseed.core.handlers.registry import ConstraintHandler

logger = logging.getLogger(__name__)

GENERIC_PRIORITY = 10


class GenericCheckHandler(ConstraintHandler):
    """Evaluates the CHECK clause and tries single-field repairs derived from it."""

    id = "generic_check"
    type = "check"
    priority = GENERIC_PRIORITY
    description = "Evaluate CHECK clauses and repair rows with a single field change"

    def __init__(self, parser: Optional[CheckExpressionParser] = None):
        self.parser = parser or CheckExpressionParser()

    def can_handle(self, constraint: Any, data: Dict[str, Any]) -> bool:
        return isinstance(constraint, CheckConstraint)

    def handle(self, constraint: CheckConstraint, data: Dict[str, Any]) -> ConstraintHandlingResult:
        clause = constraint.check_clause
        try:
            outcome = self.parser.evaluate(clause, data)
        except UnsupportedCheckExpression as e:
            return self._result(
                data,
                success=True,
                bypass_required=True,
                warnings=[f"Could not evaluate {constraint.name}; leaving it to the database ({e})"],
            )

        if outcome is not False:
            return self._result(data, success=True)

        for field, value in self.parser.analyze(clause).fixes:
            candidate = {**data, field: value}
            if self.parser.is_satisfied(clause, candidate):
                fix = ConstraintFix(
                    type="set_field",
                    field=field,
                    value=value,
                    description=f"Set {field} to {value!r} to satisfy {constraint.name}",
                )
                return self._result(data, candidate, success=True, applied_fixes=[fix])

        return self._result(data, success=False, errors=[f"Check constraint {constraint.name} violated: {clause}"])


class GenericForeignKeyHandler(ConstraintHandler):
    id = "generic_foreign_key"
    type = "foreign_key"
    priority = GENERIC_PRIORITY
    description = "Require a reference value for non-nullable foreign keys"

    def can_handle(self, constraint: Any, data: Dict[str, Any]) -> bool:
        return isinstance(constraint, ForeignKeyConstraint)

    def handle(self, constraint: ForeignKeyConstraint, data: Dict[str, Any]) -> ConstraintHandlingResult:
        missing = [c for c in constraint.columns if data.get(c) is None]
        if not missing:
            return self._result(data, success=True)
        if constraint.nullable:
            return self._result(data, success=True)
        return self._result(
            data,
            success=False,
            errors=[f"{constraint.table}.{', '.join(missing)} requires a reference to {constraint.referenced_table}"],
        )


class GenericUniqueHandler(ConstraintHandler):
    id = "generic_unique"
    type = "unique"
    priority = GENERIC_PRIORITY
    description = "Flag unique constraints that cannot be checked before insert"

    def can_handle(self, constraint: Any, data: Dict[str, Any]) -> bool:
        return isinstance(constraint, UniqueConstraint)

    def handle(self, constraint: UniqueConstraint, data: Dict[str, Any]) -> ConstraintHandlingResult:
        missing = [c for c in constraint.columns if data.get(c) is None]
        warnings: List[str] = []
        if missing and len(missing) < len(constraint.columns):
            warnings.append(f"{constraint.name}: {', '.join(missing)} missing, uniqueness only partially enforced")
        return self._result(data, success=True, warnings=warnings)


class GenericNotNullHandler(ConstraintHandler):
    id = "generic_not_null"
    type = "not_null"
    priority = GENERIC_PRIORITY
    description = "Reject missing values for NOT NULL columns without a default"

    def can_handle(self, constraint: Any, data: Dict[str, Any]) -> bool:
        return isinstance(constraint, NotNullConstraint)

    def handle(self, constraint: NotNullConstraint, data: Dict[str, Any]) -> ConstraintHandlingResult:
        if constraint.has_default:
            return self._result(data, success=True)
        missing = [c for c in constraint.columns if data.get(c) is None]
        if missing:
            return self._result(data, success=False, errors=[f"{constraint.table}.{missing[0]} cannot be null"])
        return self._result(data, success=True)


def generic_handlers() -> List[ConstraintHandler]:
    return [GenericCheckHandler(), GenericForeignKeyHandler(), GenericUniqueHandler(), GenericNotNullHandler()]
