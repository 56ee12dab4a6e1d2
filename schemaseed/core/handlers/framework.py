"""Handlers for constraints that SaaS scaffolds (MakerKit, Supabase starters) add."""
import logging
import re
from typing import Any, Dict, List

from schemaseed.core.constraint_types import (
    CheckConstraint,
    ConstraintFix,
    ConstraintHandlingResult,
    UniqueConstraint,
)
from schemaseed.core.handlers.registry import ConstraintHandler

logger = logging.getLogger(__name__)

SUBSCRIPTION_STATUSES = ("active", "canceled", "past_due", "trialing", "incomplete")
MEMBERSHIP_TABLES = {"accounts_memberships", "memberships", "organization_members", "account_members"}


def _slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


class PersonalAccountSlugHandler(ConstraintHandler):
    """
    Personal accounts carry no slug; team accounts need one.

    Mirrors MakerKit's ``accounts_slug_null_if_personal_account_true`` check.
    """

    id = "makerkit_personal_account_slug"
    type = "check"
    priority = 100
    description = "Null the slug of personal accounts and derive one for team accounts"

    def can_handle(self, constraint: Any, data: Dict[str, Any]) -> bool:
        if not isinstance(constraint, CheckConstraint):
            return False
        clause = constraint.check_clause.lower()
        return "personal_account" in constraint.name.lower() or (
            "is_personal_account" in clause and "slug" in clause
        )

    def handle(self, constraint: CheckConstraint, data: Dict[str, Any]) -> ConstraintHandlingResult:
        modified = dict(data)
        fixes: List[ConstraintFix] = []
        warnings: List[str] = []

        # An omitted flag is left to the column default, which marks the account personal
        personal = modified.get("is_personal_account")
        if personal is None or bool(personal):
            if modified.get("slug") is not None:
                modified["slug"] = None
                fixes.append(ConstraintFix(
                    type="set_field",
                    field="slug",
                    value=None,
                    description="Personal accounts must not have a slug",
                ))
        elif not modified.get("slug"):
            name = modified.get("name")
            if name:
                modified["slug"] = _slugify(str(name))
                fixes.append(ConstraintFix(
                    type="set_field",
                    field="slug",
                    value=modified["slug"],
                    description="Team accounts need a slug; derived from the account name",
                ))
            else:
                warnings.append("Team account has neither a slug nor a name to derive one from")

        return self._result(data, modified, success=True, applied_fixes=fixes, warnings=warnings)


class SubscriptionStatusHandler(ConstraintHandler):
    id = "makerkit_subscription_status"
    type = "check"
    priority = 85
    description = "Keep subscription status within the billing provider's states"

    def can_handle(self, constraint: Any, data: Dict[str, Any]) -> bool:
        if not isinstance(constraint, CheckConstraint):
            return False
        text = f"{constraint.table} {constraint.name}".lower()
        return "subscription" in text and "status" in f"{constraint.name} {constraint.check_clause}".lower()

    def handle(self, constraint: CheckConstraint, data: Dict[str, Any]) -> ConstraintHandlingResult:
        status = data.get("status")
        if status in SUBSCRIPTION_STATUSES:
            return self._result(data, success=True)

        modified = {**data, "status": SUBSCRIPTION_STATUSES[0]}
        fix = ConstraintFix(
            type="set_field",
            field="status",
            value=SUBSCRIPTION_STATUSES[0],
            description=f"Replaced subscription status {status!r} with {SUBSCRIPTION_STATUSES[0]!r}",
        )
        return self._result(data, modified, success=True, applied_fixes=[fix])


class OrganizationMemberHandler(ConstraintHandler):
    id = "makerkit_membership_unique"
    type = "unique"
    priority = 90
    description = "Membership rows need both the account and the user"

    def can_handle(self, constraint: Any, data: Dict[str, Any]) -> bool:
        if not isinstance(constraint, UniqueConstraint):
            return False
        return constraint.table in MEMBERSHIP_TABLES or "member" in constraint.name.lower()

    def handle(self, constraint: UniqueConstraint, data: Dict[str, Any]) -> ConstraintHandlingResult:
        missing = [c for c in constraint.columns if data.get(c) is None]
        if missing:
            return self._result(
                data,
                success=False,
                errors=[f"Membership {constraint.name} requires {', '.join(missing)}"],
            )

        warnings = []
        if "account_role" in data and not data["account_role"]:
            warnings.append("Membership has an empty account_role")
        return self._result(data, success=True, warnings=warnings)


def framework_handlers() -> List[ConstraintHandler]:
    return [PersonalAccountSlugHandler(), SubscriptionStatusHandler(), OrganizationMemberHandler()]
