# app/schemas/billing.py
from pydantic import BaseModel, validator
from typing import Optional, List
from datetime import datetime

from .subscription import PartnerSubscription, as_utc
from .payment import PartnerPayment


class BillableOrder(BaseModel):
    """Order row as returned by the orders query"""
    id: str
    status: str
    created_at: datetime
    total_price: Optional[float] = None
    type: Optional[str] = None


class OrderCalculation(BaseModel):
    order_count: int = 0
    order_amount: int = 0
    total_amount: int = 0


class OrderCalculationResult(BaseModel):
    """
    Outcome of an order-based billing calculation.

    A failed calculation carries an error message and a zeroed
    calculation, so callers can tell "no orders" apart from "failed".
    """
    success: bool
    calculation: OrderCalculation
    error: Optional[str] = None
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None

    @classmethod
    def ok(cls, calculation: OrderCalculation, window_start=None, window_end=None) -> "OrderCalculationResult":
        return cls(success=True, calculation=calculation, window_start=window_start, window_end=window_end)

    @classmethod
    def failed(cls, error: str) -> "OrderCalculationResult":
        return cls(success=False, calculation=OrderCalculation(), error=error)


class BillingSummary(BaseModel):
    """Partner-facing billing overview"""
    current_subscription: Optional[PartnerSubscription] = None
    plan_name: Optional[str] = None
    amount_due: float = 0
    estimate: Optional[OrderCalculationResult] = None
    recent_payments: List[PartnerPayment] = []
    payment_count: int = 0
    subscriptions: List[PartnerSubscription] = []


class BillingPeriodRequest(BaseModel):
    start_date: datetime
    end_date: datetime

    @validator('start_date', 'end_date')
    def dates_are_aware(cls, v):
        return as_utc(v)

    @validator('end_date')
    def end_not_before_start(cls, v, values):
        start = values.get('start_date')
        if start is not None and v < start:
            raise ValueError('end_date must not be before start_date')
        return v


class PaymentPrefill(BaseModel):
    """Suggested amount for the admin "add payment" form"""
    partner_id: str
    plan: Optional[str] = None
    amount: float = 0
    calculation: Optional[OrderCalculationResult] = None
