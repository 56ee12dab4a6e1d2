"""Exception types raised by schemaseed."""
from typing import Any, Optional


class SchemaSeedError(Exception):
    """Base class for all schemaseed errors."""


class ConnectivityError(SchemaSeedError, ConnectionError):
    """The metadata client cannot reach the database."""


class IntrospectionError(SchemaSeedError):
    """Introspection could not run at all."""


class ConstraintDiscoveryError(SchemaSeedError):
    """Constraint discovery could not run at all."""


class HandlerRegistrationError(SchemaSeedError, ValueError):
    """A constraint handler failed registration checks."""


class WorkflowGenerationError(SchemaSeedError):
    """A workflow could not be compiled from the discovered metadata."""


class WorkflowExecutionError(SchemaSeedError):
    """A workflow run failed in a way the caller asked to see as an exception."""

    def __init__(self, message: str, result: Optional[Any] = None):
        super().__init__(message)
        self.result = result


class WorkflowAbortedError(WorkflowExecutionError):
    """A fail_fast workflow stopped at a required step."""


class ReadOnlyClientError(SchemaSeedError):
    """A write was attempted through a metadata-only client."""


class UnsupportedCheckExpression(SchemaSeedError):
    """A CHECK clause uses syntax the evaluator does not understand."""


class QueryError(SchemaSeedError):
    """A catalog query or row operation failed."""
