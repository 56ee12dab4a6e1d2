"""Prioritized registry of pluggable constraint handlers."""
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Any, Dict, Iterable, List, Optional, Sequence

from schemaseed.core.constraint_types import CONSTRAINT_TYPES, ConstraintFix, ConstraintHandlingResult
from schemaseed.core.errors import HandlerRegistrationError

logger = logging.getLogger(__name__)

TABLE_FOLD_ORDER = ("check", "foreign_key", "unique", "not_null")
DEFAULT_FRAMEWORK_KEYWORDS = ("makerkit", "supabase", "personal_account", "membership")


class ConstraintHandler(ABC):
    """A strategy that validates, and where it can repairs, one constraint shape."""

    id: str = ""
    type: str = ""
    priority: int = 10
    description: str = ""

    @abstractmethod
    def can_handle(self, constraint: Any, data: Dict[str, Any]) -> bool:
        ...

    @abstractmethod
    def handle(self, constraint: Any, data: Dict[str, Any]) -> ConstraintHandlingResult:
        ...

    def generate_fix(self, constraint: Any, data: Dict[str, Any]) -> Optional[ConstraintFix]:
        return None

    def _result(self, data: Dict[str, Any], modified: Optional[Dict[str, Any]] = None, **kwargs: Any) -> ConstraintHandlingResult:
        return ConstraintHandlingResult(
            original_data=dict(data),
            modified_data=dict(modified if modified is not None else data),
            handler_id=self.id,
            **kwargs,
        )


@dataclass
class HandlerMatch:
    handler: Any
    confidence: float
    score: float
    reason: str


class ConstraintRegistry:
    """
    Handlers keyed by constraint type, chosen by priority and keyword fit.

    Register handlers explicitly at startup; ``with_default_handlers`` builds
    the standard set.
    """

    KEYWORD_BOOST = 0.3
    TIE_MARGIN = 0.1

    def __init__(self, framework_keywords: Optional[Iterable[str]] = None):
        self.framework_keywords = [k.lower() for k in (framework_keywords or DEFAULT_FRAMEWORK_KEYWORDS)]
        self._handlers: Dict[str, Any] = {}
        self._by_type: Dict[str, List[Any]] = {t: [] for t in CONSTRAINT_TYPES}
        self._lock = threading.Lock()

    @classmethod
    def with_default_handlers(cls, framework_keywords: Optional[Iterable[str]] = None) -> "ConstraintRegistry":
        from schemaseed.core.handlers.framework import framework_handlers
        from schemaseed.core.handlers.generic import generic_handlers

        registry = cls(framework_keywords)
        for handler in framework_handlers() + generic_handlers():
            registry.register(handler)
        return registry

    # ==================== Registration ====================

    def _validate(self, handler: Any) -> None:
        handler_id = getattr(handler, "id", None)
        if not isinstance(handler_id, str) or not handler_id.strip():
            raise HandlerRegistrationError("Handler id must be a non-empty string")
        if handler_id in self._handlers:
            raise HandlerRegistrationError(f"Handler {handler_id} is already registered")
        if getattr(handler, "type", None) not in CONSTRAINT_TYPES:
            raise HandlerRegistrationError(
                f"Handler {handler_id} has invalid type {getattr(handler, 'type', None)!r}; "
                f"expected one of {', '.join(CONSTRAINT_TYPES)}"
            )
        priority = getattr(handler, "priority", None)
        if isinstance(priority, bool) or not isinstance(priority, (int, float)):
            raise HandlerRegistrationError(f"Handler {handler_id} priority must be numeric")
        for method in ("can_handle", "handle"):
            if not callable(getattr(handler, method, None)):
                raise HandlerRegistrationError(f"Handler {handler_id} is missing {method}()")

    def register(self, handler: Any) -> None:
        """
        Register a handler.

        Raises:
            HandlerRegistrationError: invalid handler or duplicate id
        """
        with self._lock:
            self._validate(handler)
            self._handlers[handler.id] = handler
            handlers = self._by_type[handler.type]
            handlers.append(handler)
            handlers.sort(key=lambda h: h.priority, reverse=True)
        logger.debug(f"Registered handler {handler.id} ({handler.type}, priority {handler.priority})")

    def unregister(self, handler_id: str) -> bool:
        with self._lock:
            handler = self._handlers.pop(handler_id, None)
            if handler is None:
                return False
            self._by_type[handler.type].remove(handler)
            return True

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()
            for handlers in self._by_type.values():
                handlers.clear()

    def get(self, handler_id: str) -> Optional[Any]:
        return self._handlers.get(handler_id)

    def handlers_for(self, constraint_type: str) -> List[Any]:
        return list(self._by_type.get(constraint_type, []))

    # ==================== Selection ====================

    def _keyword_boost(self, handler: Any, constraint: Any) -> Optional[str]:
        text = f"{getattr(constraint, 'name', '')} {getattr(constraint, 'check_clause', '')}".lower()
        handler_id = handler.id.lower()
        for keyword in self.framework_keywords:
            if keyword in handler_id and keyword in text:
                return keyword
        return None

    def find_handler(self, constraint: Any, constraint_type: str, data: Dict[str, Any]) -> Optional[HandlerMatch]:
        """Best handler for a constraint, or None when no handler of that type applies."""
        matches = []
        for handler in self.handlers_for(constraint_type):
            try:
                applicable = handler.can_handle(constraint, data)
            except Exception as e:
                logger.warning(f"Handler {handler.id} can_handle() raised: {e}")
                continue
            if not applicable:
                continue

            score = min(handler.priority / 100, 1.0)
            reason = f"priority {handler.priority}"
            keyword = self._keyword_boost(handler, constraint)
            if keyword:
                score += self.KEYWORD_BOOST
                reason += f", matches '{keyword}'"
            matches.append(HandlerMatch(handler=handler, confidence=min(score, 1.0), score=score, reason=reason))

        if not matches:
            return None

        def compare(a: HandlerMatch, b: HandlerMatch) -> int:
            if abs(a.score - b.score) < self.TIE_MARGIN:
                return (b.handler.priority > a.handler.priority) - (b.handler.priority < a.handler.priority)
            return -1 if a.score > b.score else 1

        matches.sort(key=cmp_to_key(compare))
        return matches[0]

    # ==================== Handling ====================

    def handle(self, constraint: Any, constraint_type: str, data: Dict[str, Any]) -> ConstraintHandlingResult:
        """Run the best handler; never raises on handler failure."""
        match = self.find_handler(constraint, constraint_type, data)
        if match is None:
            return ConstraintHandlingResult(
                success=False,
                original_data=dict(data),
                modified_data=dict(data),
                warnings=[f"No handler available for {constraint_type} constraint {getattr(constraint, 'name', '')}".rstrip()],
                bypass_required=True,
            )

        handler = match.handler
        try:
            result = handler.handle(constraint, dict(data))
        except Exception as e:
            logger.warning(f"Handler {handler.id} failed on {getattr(constraint, 'name', constraint_type)}: {e}")
            return ConstraintHandlingResult(
                success=False,
                original_data=dict(data),
                modified_data=dict(data),
                errors=[f"Handler error: {e}"],
                bypass_required=True,
                handler_id=handler.id,
            )

        if result.handler_id is None:
            result.handler_id = handler.id
        return result

    def handle_table_constraints(
        self,
        constraints: Sequence[Any],
        data: Dict[str, Any],
        order: Sequence[str] = TABLE_FOLD_ORDER,
    ) -> ConstraintHandlingResult:
        """
        Fold a table's constraints through their handlers in ``order``.

        Each handler sees the row as modified by the previous one. Success is
        the AND of all results; ``bypass_required`` is the OR.
        """
        current = dict(data)
        merged = ConstraintHandlingResult(success=True, original_data=dict(data), modified_data=dict(data))
        for constraint_type in order:
            for constraint in constraints:
                if getattr(constraint, "kind", None) != constraint_type:
                    continue
                result = self.handle(constraint, constraint_type, current)
                current = dict(result.modified_data)
                merged = self._merge(merged, result)
        return merged

    @staticmethod
    def _merge(merged: ConstraintHandlingResult, result: ConstraintHandlingResult) -> ConstraintHandlingResult:
        return ConstraintHandlingResult(
            success=merged.success and result.success,
            original_data=merged.original_data,
            modified_data=dict(result.modified_data),
            applied_fixes=merged.applied_fixes + result.applied_fixes,
            warnings=merged.warnings + result.warnings,
            errors=merged.errors + result.errors,
            bypass_required=merged.bypass_required or result.bypass_required,
        )

    # ==================== Diagnostics ====================

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_handlers": len(self._handlers),
            "handlers_by_type": {t: len(h) for t, h in self._by_type.items()},
            "handler_ids": sorted(self._handlers),
        }

    def test_handler(self, handler_id: str, constraint: Any, data: Dict[str, Any]) -> Dict[str, Any]:
        """Run one handler directly, bypassing selection."""
        handler = self._handlers.get(handler_id)
        if handler is None:
            raise KeyError(f"Handler {handler_id} is not registered")

        can_handle = bool(handler.can_handle(constraint, data))
        result = handler.handle(constraint, dict(data)) if can_handle else None
        return {"handler_id": handler_id, "can_handle": can_handle, "result": result}
