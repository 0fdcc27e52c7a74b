# app/services/billing_calculator.py
"""
Order-based billing for metered partner plans

Flexible partners pay a fixed rate per qualifying order; Growth partners pay
the same per-order rate plus a flat base fee. Orders are counted inside a
billing window that runs from the later of (last payment, subscription start)
to the earlier of (now, subscription expiry).

Nothing here touches the network: the service layer fetches the data and the
orders, this module only decides the window, the filter and the arithmetic.
"""
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional, Tuple, Dict, Any

from app.schemas.billing import OrderCalculation

PER_ORDER_RATE = 10  # ₹ per qualifying order
GROWTH_BASE_FEE = 500  # ₹ flat fee on the growth plan

METERED_PLANS = ("flexible", "growth")

# Plans billed a fixed amount per cycle
FIXED_PLAN_AMOUNTS = {
    "300": 300,
    "500": 500,
    "trial": 0,
}

PLAN_NAMES = {
    "300": "₹300 - Basic Plan",
    "500": "₹500 - Premium Plan",
    "flexible": "Flexible - Pay per Order",
    "growth": "Growth - Orders + ₹500",
    "trial": "Trial Plan",
}


def plan_display_name(plan: str) -> str:
    return PLAN_NAMES.get(plan, plan)


def is_metered_plan(plan: str) -> bool:
    return plan in METERED_PLANS


def nominal_plan_amount(plan: str) -> int:
    """Fixed amount for non-metered plans ("300" -> 300, "trial" -> 0)."""
    if plan in FIXED_PLAN_AMOUNTS:
        return FIXED_PLAN_AMOUNTS[plan]
    if is_metered_plan(plan):
        raise ValueError(f"Plan '{plan}' is metered and has no nominal amount")
    try:
        return int(plan)
    except ValueError:
        return 0


# ============================================
# BILLING WINDOW
# ============================================

def payment_datetime(value: date) -> datetime:
    """Payment dates carry no time; they count from UTC midnight"""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)


def to_iso_millis(value: datetime) -> str:
    """UTC timestamp with millisecond precision, e.g. 2024-01-15T10:30:00.000Z"""
    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class BillingWindow:
    start: datetime
    end: datetime

    @property
    def is_empty(self) -> bool:
        return self.start > self.end

    def day_bounds(self) -> Tuple[str, str]:
        """Whole-day bounds: start of the first day to end of the last day"""
        start = self.start.astimezone(timezone.utc).strftime("%Y-%m-%dT00:00:00.000Z")
        end = self.end.astimezone(timezone.utc).strftime("%Y-%m-%dT23:59:59.999Z")
        return start, end

    def exact_bounds(self) -> Tuple[str, str]:
        return to_iso_millis(self.start), to_iso_millis(self.end)


def compute_billing_window(
    subscription_start: datetime,
    subscription_expiry: datetime,
    last_payment_date: Optional[datetime],
    now: datetime,
) -> BillingWindow:
    """
    Window for counting billable orders.

    The result may be empty (start after end) when the data is inconsistent,
    e.g. a payment recorded after the subscription expired. Callers treat an
    empty window as zero orders.
    """
    if last_payment_date is not None and last_payment_date > subscription_start:
        start = last_payment_date
    else:
        start = subscription_start

    end = now if subscription_expiry > now else subscription_expiry

    return BillingWindow(start=start, end=end)


# ============================================
# AMOUNTS
# ============================================

def calculate_order_amount(order_count: int, plan: str) -> OrderCalculation:
    if order_count < 0:
        raise ValueError("order_count cannot be negative")
    if not is_metered_plan(plan):
        raise ValueError(f"Plan '{plan}' is not billed per order")

    order_amount = order_count * PER_ORDER_RATE
    total_amount = order_amount
    if plan == "growth":
        total_amount = order_amount + GROWTH_BASE_FEE

    return OrderCalculation(
        order_count=order_count,
        order_amount=order_amount,
        total_amount=total_amount,
    )


# ============================================
# QUALIFYING ORDERS
# ============================================

@dataclass(frozen=True)
class OrderFilterPolicy:
    """
    Which orders count toward a bill.

    Exactly one of status_in / status_eq / status_not_in is expected.
    """
    name: str
    status_in: Optional[Tuple[str, ...]] = None
    status_eq: Optional[str] = None
    status_not_in: Optional[Tuple[str, ...]] = None
    order_type: Optional[str] = None
    whole_day_bounds: bool = False

    def bounds(self, window: BillingWindow) -> Tuple[str, str]:
        if self.whole_day_bounds:
            return window.day_bounds()
        return window.exact_bounds()

    def where(self, partner_id: str, window: BillingWindow) -> Dict[str, Any]:
        """Hasura orders_bool_exp for this policy"""
        start, end = self.bounds(window)
        clause: Dict[str, Any] = {
            "partner_id": {"_eq": partner_id},
            "created_at": {"_gte": start, "_lte": end},
        }
        if self.status_in is not None:
            clause["status"] = {"_in": list(self.status_in)}
        elif self.status_eq is not None:
            clause["status"] = {"_eq": self.status_eq}
        elif self.status_not_in is not None:
            clause["status"] = {"_nin": list(self.status_not_in)}
        if self.order_type is not None:
            clause["type"] = {"_eq": self.order_type}
        return clause


# Partner billing page: running estimate shown to the partner
CUSTOMER_ESTIMATE = OrderFilterPolicy(
    name="customer_estimate",
    status_in=("completed", "pending"),
    order_type="delivery",
    whole_day_bounds=True,
)

# Admin tool: amount pre-filled when recording a payment
ADMIN_SETTLEMENT = OrderFilterPolicy(
    name="admin_settlement",
    status_eq="completed",
)

# Admin tool: orders in an arbitrary period chosen by the operator
ADMIN_PERIOD_REVIEW = OrderFilterPolicy(
    name="admin_period_review",
    status_not_in=("pending", "cancelled"),
)
