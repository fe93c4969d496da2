"""
Business settings, plan tier and usage limits.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from backend.config import settings
from backend.db.gateway import Entity, PersistenceGateway
from backend.schemas.chat import ToolResult

logger = logging.getLogger(__name__)

PREMIUM_TIERS = {"premium", "grandfathered"}

BUSINESS_SETTING_FIELDS = (
    "business_name",
    "business_email",
    "business_phone",
    "business_address",
    "default_tax_rate",
    "auto_apply_tax",
    "currency_code",
    "default_payment_terms_days",
    "invoice_reference_format",
    "default_invoice_design",
    "default_accent_color",
)


@dataclass(frozen=True)
class UsageStatus:
    plan: str
    items_created: int
    limit: Optional[int]

    @property
    def is_premium(self) -> bool:
        return self.plan == "premium"

    @property
    def can_create(self) -> bool:
        return self.limit is None or self.items_created < self.limit

    @property
    def remaining(self) -> Optional[int]:
        return None if self.limit is None else max(self.limit - self.items_created, 0)


def plan_from_profile(profile: Optional[Dict[str, Any]]) -> str:
    """'premium' for premium or grandfathered subscribers, else 'free'."""
    tier = str((profile or {}).get("subscription_tier") or "free").lower()
    return "premium" if tier in PREMIUM_TIERS else "free"


async def get_user_plan(gateway: PersistenceGateway, user_id: str) -> str:
    profile = await gateway.find_one(Entity.USER, {"id": user_id}, columns="subscription_tier")
    return plan_from_profile(profile)


async def count_created_items(gateway: PersistenceGateway, user_id: str) -> int:
    """Invoices and estimates both count towards the free-plan cap."""
    items = await gateway.count(Entity.INVOICE, {"user_id": user_id})
    return items + await gateway.count(Entity.ESTIMATE, {"user_id": user_id})


def build_usage_status(plan: str, items_created: int) -> UsageStatus:
    limit = None if plan == "premium" else settings.FREE_PLAN_ITEM_LIMIT
    return UsageStatus(plan=plan, items_created=items_created, limit=limit)


async def get_usage_status(gateway: PersistenceGateway, user_id: str) -> UsageStatus:
    plan = await get_user_plan(gateway, user_id)
    return build_usage_status(plan, await count_created_items(gateway, user_id))


def usage_limit_message(usage: UsageStatus) -> str:
    return (
        f"You've used all {usage.limit} free invoices and estimates on the free plan. "
        "Upgrade to premium to keep creating them. You can still view and edit your existing ones."
    )


async def check_usage_limits(gateway: PersistenceGateway, user_id: str) -> ToolResult:
    usage = await get_usage_status(gateway, user_id)
    if usage.limit is None:
        message = "You're on the premium plan with unlimited invoices and estimates."
    elif usage.can_create:
        message = (
            f"You've created {usage.items_created} of {usage.limit} free items; "
            f"{usage.remaining} remaining."
        )
    else:
        message = usage_limit_message(usage)

    return ToolResult(
        success=True,
        message=message,
        data={
            "plan": usage.plan,
            "items_created": usage.items_created,
            "limit": usage.limit,
            "can_create": usage.can_create,
        },
    )


async def get_business_settings(gateway: PersistenceGateway, user_id: str) -> ToolResult:
    row = await gateway.find_one(Entity.BUSINESS_SETTINGS, {"user_id": user_id})
    if not row:
        return ToolResult(
            success=True,
            message="You haven't set up your business details yet.",
            data={"settings": {}},
        )

    values = {field: row.get(field) for field in BUSINESS_SETTING_FIELDS}
    name = values.get("business_name") or "Your business"
    tax = values.get("default_tax_rate")
    message = f"{name}: currency {values.get('currency_code') or 'USD'}"
    if tax is not None:
        message += f", default tax {float(tax):g}%" + ("" if values.get("auto_apply_tax") else " (not auto-applied)")
    return ToolResult(success=True, message=message + ".", data={"settings": values})


async def update_business_settings(
    gateway: PersistenceGateway,
    user_id: str,
    **fields: Any,
) -> ToolResult:
    """Update (or create) the user's business settings row with the supplied fields."""
    changes = {k: v for k, v in fields.items() if k in BUSINESS_SETTING_FIELDS and v is not None}
    if not changes:
        return ToolResult.failure("Which business detail would you like to change?")

    if "default_tax_rate" in changes and "auto_apply_tax" not in changes:
        changes["auto_apply_tax"] = True

    existing = await gateway.find_one(Entity.BUSINESS_SETTINGS, {"user_id": user_id})
    if existing:
        row = await gateway.update(Entity.BUSINESS_SETTINGS, existing["id"], changes) or {**existing, **changes}
    else:
        row = (await gateway.insert(Entity.BUSINESS_SETTINGS, {"user_id": user_id, **changes}))[0]

    logger.info(f"Updated business settings {sorted(changes)} for user {user_id[:8]}")
    readable = ", ".join(field.replace("_", " ") for field in sorted(changes))
    return ToolResult(
        success=True,
        message=f"I've updated your business settings ({readable}). New invoices will use them.",
        data={"settings": {field: row.get(field) for field in BUSINESS_SETTING_FIELDS}},
    )
