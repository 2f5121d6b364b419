from datetime import datetime
from typing import Literal

from pydantic import BaseModel

PlanId = Literal["FREE", "STARTER", "PROFESSIONAL", "ENTERPRISE"]


class SubscriptionStatusOut(BaseModel):
    is_active: bool
    current_plan: str
    status: str
    trial_ends_at: datetime | None = None
    is_trial_expired: bool
    trial_days_remaining: int | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool
    next_billing_date: datetime | None = None


class TrialStatusOut(BaseModel):
    is_trialing: bool
    is_trial_expired: bool
    trial_ends_at: datetime | None = None
    days_remaining: int | None = None
    can_perform_paid_action: bool
    reason: str | None = None


class UpgradeRequest(BaseModel):
    plan: PlanId


class PlanChangeOut(BaseModel):
    success: bool
    message: str
    requires_checkout: bool = False
    plan: str | None = None
    status: str | None = None


class InvoiceOut(BaseModel):
    id: str
    invoice_number: str
    amount: float
    currency: str
    status: str
    plan: str | None = None
    plan_change: str | None = None
    description: str | None = None
    billing_period_start: datetime | None = None
    billing_period_end: datetime | None = None
    created_at: datetime

    class Config:
        from_attributes = True
