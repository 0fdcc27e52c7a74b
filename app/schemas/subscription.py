# app/schemas/subscription.py
from pydantic import BaseModel, validator
from typing import Optional, List, Literal
from datetime import date, datetime, timezone

PlanCode = Literal["300", "500", "flexible", "growth", "trial"]
BillingCycle = Literal["monthly", "yearly"]


def as_utc(value: datetime) -> datetime:
    """Hasura may return timestamps without offset; treat those as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PartnerSubscription(BaseModel):
    id: str
    partner_id: Optional[str] = None
    plan: PlanCode
    type: BillingCycle
    created_at: datetime
    expiry_date: datetime

    @validator('created_at', 'expiry_date')
    def timestamps_are_aware(cls, v):
        return as_utc(v)

    def is_active(self, now: datetime) -> bool:
        return self.expiry_date > now


class SubscriptionCreate(BaseModel):
    """Admin form for adding a subscription"""
    partner_id: str
    plan: PlanCode = "300"
    type: BillingCycle = "monthly"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    use_custom_dates: bool = False

    # Optional payment recorded with the subscription
    include_payment: bool = False
    payment_amount: float = 0
    payment_date: Optional[date] = None

    @validator('start_date', 'end_date')
    def dates_are_aware(cls, v):
        if v is None:
            return v
        return as_utc(v)

    @validator('payment_amount')
    def amount_not_negative(cls, v):
        if v < 0:
            raise ValueError('Payment amount cannot be negative')
        return v


class RepeatPlanRequest(BaseModel):
    include_payment: bool = False


class SubscriptionPage(BaseModel):
    subscriptions: List[PartnerSubscription]
    offset: int
    has_more: bool
