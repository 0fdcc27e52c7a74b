# app/services/billing_service.py
"""
Partner billing service

Loads subscriptions, payments and qualifying orders from Hasura and turns
them into amounts due for the partner billing page and the admin tool.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, List

from pydantic import ValidationError

from app.core.hasura import HasuraClient, HasuraError
from app.schemas.billing import BillableOrder, BillingSummary, OrderCalculation, OrderCalculationResult
from app.schemas.payment import PartnerPayment
from app.schemas.subscription import PartnerSubscription
from app.services.billing_calculator import (
    ADMIN_PERIOD_REVIEW,
    CUSTOMER_ESTIMATE,
    PER_ORDER_RATE,
    BillingWindow,
    OrderFilterPolicy,
    calculate_order_amount,
    compute_billing_window,
    is_metered_plan,
    nominal_plan_amount,
    payment_datetime,
    plan_display_name,
)

logger = logging.getLogger(__name__)

RECENT_PAYMENTS_SHOWN = 10

SUBSCRIPTIONS_QUERY = """
query GetPartnerSubscriptions($partnerId: uuid!) {
  partner_subscriptions(
    where: {partner_id: {_eq: $partnerId}},
    order_by: {created_at: desc}
  ) {
    id
    plan
    type
    created_at
    expiry_date
  }
}
"""

PAYMENTS_QUERY = """
query GetPartnerPayments($partnerId: uuid!) {
  partner_payments(
    where: {partner_id: {_eq: $partnerId}},
    order_by: {date: desc}
  ) {
    id
    amount
    date
  }
}
"""

ORDERS_QUERY = """
query GetPartnerOrdersForBilling($where: orders_bool_exp!) {
  orders(where: $where) {
    id
    status
    created_at
    total_price
  }
}
"""


def select_current_subscription(
    subscriptions: List[PartnerSubscription],
    now: Optional[datetime] = None,
) -> Optional[PartnerSubscription]:
    """First active subscription, most recently created first"""
    now = now or datetime.now(timezone.utc)
    ordered = sorted(subscriptions, key=lambda s: s.created_at, reverse=True)
    for subscription in ordered:
        if subscription.is_active(now):
            return subscription
    return None


def last_payment_date(payments: List[PartnerPayment]) -> Optional[datetime]:
    if not payments:
        return None
    return max(payment_datetime(p.date) for p in payments)


class BillingService:
    """Order-based billing backed by Hasura"""

    def __init__(self, hasura: HasuraClient):
        self.hasura = hasura

    async def fetch_subscriptions(self, partner_id: str) -> List[PartnerSubscription]:
        data = await self.hasura.execute(SUBSCRIPTIONS_QUERY, {"partnerId": partner_id})
        return [PartnerSubscription(**row) for row in data.get("partner_subscriptions") or []]

    async def fetch_payments(self, partner_id: str) -> List[PartnerPayment]:
        data = await self.hasura.execute(PAYMENTS_QUERY, {"partnerId": partner_id})
        return [PartnerPayment(**row) for row in data.get("partner_payments") or []]

    async def fetch_qualifying_orders(
        self,
        partner_id: str,
        window: BillingWindow,
        policy: OrderFilterPolicy,
    ) -> List[BillableOrder]:
        where = policy.where(partner_id, window)
        logger.debug(f"[Billing] Orders query ({policy.name}) for {partner_id}: {where['created_at']}")
        data = await self.hasura.execute(ORDERS_QUERY, {"where": where})
        return [BillableOrder(**row) for row in data.get("orders") or []]

    async def calculate_order_billing(
        self,
        partner_id: str,
        subscription: PartnerSubscription,
        payments: List[PartnerPayment],
        policy: OrderFilterPolicy,
        now: Optional[datetime] = None,
    ) -> OrderCalculationResult:
        """
        Amount owed on a metered subscription since the last payment.

        Never raises: upstream or data failures come back as a failed
        result with zeroed amounts.
        """
        now = now or datetime.now(timezone.utc)

        try:
            if not is_metered_plan(subscription.plan):
                return OrderCalculationResult.failed(f"Plan '{subscription.plan}' is not billed per order")

            window = compute_billing_window(
                subscription_start=subscription.created_at,
                subscription_expiry=subscription.expiry_date,
                last_payment_date=last_payment_date(payments),
                now=now,
            )

            if window.is_empty:
                logger.info(f"[Billing] Empty billing window for {partner_id}: {window.start} > {window.end}")
                return OrderCalculationResult.ok(OrderCalculation(), window.start, window.end)

            orders = await self.fetch_qualifying_orders(partner_id, window, policy)
            calculation = calculate_order_amount(len(orders), subscription.plan)

            logger.info(
                f"[Billing] {partner_id} ({subscription.plan}, {policy.name}): "
                f"{calculation.order_count} orders -> ₹{calculation.total_amount}"
            )
            return OrderCalculationResult.ok(calculation, window.start, window.end)

        except HasuraError as e:
            logger.error(f"[Billing] ❌ Error calculating order billing for {partner_id}: {e.message}")
            return OrderCalculationResult.failed(e.message)
        except (ValidationError, ValueError) as e:
            logger.error(f"[Billing] ❌ Invalid billing data for {partner_id}: {str(e)}")
            return OrderCalculationResult.failed(f"Invalid billing data: {str(e)}")

    async def calculate_orders_for_period(
        self,
        partner_id: str,
        start_date: datetime,
        end_date: datetime,
    ) -> OrderCalculationResult:
        """Orders in an operator-chosen period, without any plan fee"""
        window = BillingWindow(start=start_date, end=end_date)
        if window.is_empty:
            return OrderCalculationResult.ok(OrderCalculation(), start_date, end_date)

        try:
            orders = await self.fetch_qualifying_orders(partner_id, window, ADMIN_PERIOD_REVIEW)
        except HasuraError as e:
            logger.error(f"[Billing] ❌ Error calculating orders for period: {e.message}")
            return OrderCalculationResult.failed(e.message)
        except ValidationError as e:
            logger.error(f"[Billing] ❌ Invalid orders payload: {str(e)}")
            return OrderCalculationResult.failed(f"Invalid billing data: {str(e)}")

        order_amount = len(orders) * PER_ORDER_RATE
        calculation = OrderCalculation(
            order_count=len(orders),
            order_amount=order_amount,
            total_amount=order_amount,
        )
        return OrderCalculationResult.ok(calculation, start_date, end_date)

    async def get_partner_billing(self, partner_id: str, now: Optional[datetime] = None) -> BillingSummary:
        """
        Everything the partner billing page shows.

        Loading subscriptions or payments propagates HasuraError; only the
        order estimate is folded into the summary as a result object.
        """
        now = now or datetime.now(timezone.utc)

        subscriptions = await self.fetch_subscriptions(partner_id)
        payments = await self.fetch_payments(partner_id)
        payments = sorted(payments, key=lambda p: p.date, reverse=True)

        summary = BillingSummary(
            recent_payments=payments[:RECENT_PAYMENTS_SHOWN],
            payment_count=len(payments),
            subscriptions=subscriptions,
        )

        current = select_current_subscription(subscriptions, now)
        if current is None:
            return summary

        summary.current_subscription = current
        summary.plan_name = plan_display_name(current.plan)

        if is_metered_plan(current.plan):
            estimate = await self.calculate_order_billing(
                partner_id, current, payments, CUSTOMER_ESTIMATE, now
            )
            summary.estimate = estimate
            summary.amount_due = estimate.calculation.total_amount
        else:
            summary.amount_due = nominal_plan_amount(current.plan)

        return summary
