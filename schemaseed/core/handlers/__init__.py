"""Constraint handlers and the registry that dispatches to them."""
from .registry import ConstraintHandler, ConstraintRegistry, HandlerMatch, TABLE_FOLD_ORDER
from .generic import (
    GenericCheckHandler,
    GenericForeignKeyHandler,
    GenericNotNullHandler,
    GenericUniqueHandler,
    generic_handlers,
)
from .framework import (
    OrganizationMemberHandler,
    PersonalAccountSlugHandler,
    SubscriptionStatusHandler,
    framework_handlers,
)

__all__ = [
    'ConstraintHandler',
    'ConstraintRegistry',
    'HandlerMatch',
    'TABLE_FOLD_ORDER',
    'GenericCheckHandler',
    'GenericForeignKeyHandler',
    'GenericNotNullHandler',
    'GenericUniqueHandler',
    'OrganizationMemberHandler',
    'PersonalAccountSlugHandler',
    'SubscriptionStatusHandler',
    'framework_handlers',
    'generic_handlers',
]
