import asyncio

import httpx

from app.schemas.payment import PartnerPayment
from app.schemas.subscription import PartnerSubscription
from app.services.billing_calculator import ADMIN_SETTLEMENT, CUSTOMER_ESTIMATE
from app.services.billing_service import BillingService, last_payment_date, select_current_subscription
from conftest import order_rows, payment_row, subscription_row, utc


def subscription(**kwargs) -> PartnerSubscription:
    return PartnerSubscription(**subscription_row(**kwargs))


def run(coro):
    return asyncio.run(coro)


# ============================================
# HELPERS
# ============================================

def test_current_subscription_is_most_recent_active():
    subs = [
        subscription(id="old", created_at="2023-01-01T00:00:00Z", expiry_date="2023-02-01T00:00:00Z"),
        subscription(id="a", created_at="2024-01-01T00:00:00Z", expiry_date="2024-03-01T00:00:00Z"),
        subscription(id="b", created_at="2024-01-10T00:00:00Z", expiry_date="2024-02-10T00:00:00Z"),
    ]
    assert select_current_subscription(subs, utc(2024, 1, 15)).id == "b"
    assert select_current_subscription(subs, utc(2024, 2, 20)).id == "a"
    assert select_current_subscription(subs, utc(2024, 4, 1)) is None


def test_last_payment_date_is_latest():
    payments = [PartnerPayment(**payment_row(id="x", date="2024-01-03")),
                PartnerPayment(**payment_row(id="y", date="2024-01-10"))]
    assert last_payment_date(payments) == utc(2024, 1, 10)
    assert last_payment_date([]) is None


# ============================================
# ORDER BILLING
# ============================================

def test_flexible_estimate_without_payments(hasura):
    hasura.on("GetPartnerOrdersForBilling", {"orders": order_rows(7)})
    service = BillingService(hasura.client())

    result = run(service.calculate_order_billing(
        "p1", subscription(plan="flexible"), [], CUSTOMER_ESTIMATE, utc(2024, 1, 15, 12)
    ))

    assert result.success
    assert result.calculation.order_count == 7
    assert result.calculation.order_amount == 70
    assert result.calculation.total_amount == 70
    where = hasura.variables("GetPartnerOrdersForBilling")[0]["where"]
    assert where["created_at"] == {"_gte": "2024-01-01T00:00:00.000Z", "_lte": "2024-01-15T23:59:59.999Z"}
    assert where["type"] == {"_eq": "delivery"}


def test_growth_estimate_adds_base_fee(hasura):
    hasura.on("GetPartnerOrdersForBilling", {"orders": order_rows(7)})
    service = BillingService(hasura.client())

    result = run(service.calculate_order_billing(
        "p1", subscription(plan="growth"), [], CUSTOMER_ESTIMATE, utc(2024, 1, 15)
    ))
    assert result.calculation.total_amount == 570


def test_window_starts_at_last_payment(hasura):
    hasura.on("GetPartnerOrdersForBilling", {"orders": order_rows(3)})
    service = BillingService(hasura.client())
    payments = [PartnerPayment(**payment_row(date="2024-01-10"))]

    result = run(service.calculate_order_billing(
        "p1", subscription(plan="flexible"), payments, ADMIN_SETTLEMENT, utc(2024, 1, 20)
    ))

    assert result.calculation.order_amount == 30
    assert result.window_start == utc(2024, 1, 10)
    assert result.window_end == utc(2024, 1, 20)
    where = hasura.variables("GetPartnerOrdersForBilling")[0]["where"]
    assert where["status"] == {"_eq": "completed"}
    assert where["created_at"]["_gte"] == "2024-01-10T00:00:00.000Z"


def test_empty_window_is_zero_without_query(hasura):
    service = BillingService(hasura.client())
    payments = [PartnerPayment(**payment_row(date="2024-03-01"))]

    result = run(service.calculate_order_billing(
        "p1",
        subscription(created_at="2024-01-01T00:00:00Z", expiry_date="2024-02-01T00:00:00Z"),
        payments,
        CUSTOMER_ESTIMATE,
        utc(2024, 4, 1),
    ))

    assert result.success
    assert result.calculation.model_dump() == {"order_count": 0, "order_amount": 0, "total_amount": 0}
    assert hasura.calls == []


def test_upstream_failure_returns_failed_result(hasura):
    hasura.on("GetPartnerOrdersForBilling", httpx.Response(200, json={"errors": [{"message": "permission denied"}]}))
    service = BillingService(hasura.client())

    result = run(service.calculate_order_billing(
        "p1", subscription(), [], CUSTOMER_ESTIMATE, utc(2024, 1, 15)
    ))

    assert not result.success
    assert result.error == "permission denied"
    assert result.calculation.total_amount == 0


def test_malformed_orders_return_failed_result(hasura):
    hasura.on("GetPartnerOrdersForBilling", {"orders": [{"id": "o1"}]})
    service = BillingService(hasura.client())

    result = run(service.calculate_order_billing(
        "p1", subscription(), [], CUSTOMER_ESTIMATE, utc(2024, 1, 15)
    ))

    assert not result.success
    assert "Invalid billing data" in result.error


def test_fixed_plan_is_not_calculated(hasura):
    service = BillingService(hasura.client())
    result = run(service.calculate_order_billing(
        "p1", subscription(plan="300"), [], CUSTOMER_ESTIMATE, utc(2024, 1, 15)
    ))
    assert not result.success
    assert hasura.calls == []


def test_orders_for_period(hasura):
    hasura.on("GetPartnerOrdersForBilling", {"orders": order_rows(4)})
    service = BillingService(hasura.client())

    result = run(service.calculate_orders_for_period("p1", utc(2024, 1, 1), utc(2024, 1, 31)))

    assert result.calculation.order_count == 4
    assert result.calculation.total_amount == 40
    where = hasura.variables("GetPartnerOrdersForBilling")[0]["where"]
    assert where["status"] == {"_nin": ["pending", "cancelled"]}


# ============================================
# BILLING SUMMARY
# ============================================

def test_summary_for_metered_plan(hasura):
    hasura.on("GetPartnerSubscriptions", {"partner_subscriptions": [subscription_row(plan="growth")]})
    hasura.on("GetPartnerPayments", {"partner_payments": []})
    hasura.on("GetPartnerOrdersForBilling", {"orders": order_rows(2)})
    service = BillingService(hasura.client())

    summary = run(service.get_partner_billing("p1", utc(2024, 1, 15)))

    assert summary.current_subscription.plan == "growth"
    assert summary.plan_name == "Growth - Orders + ₹500"
    assert summary.amount_due == 520
    assert summary.estimate.calculation.order_count == 2


def test_summary_for_fixed_and_trial_plans(hasura):
    hasura.on("GetPartnerPayments", {"partner_payments": []})
    service = BillingService(hasura.client())

    hasura.on("GetPartnerSubscriptions", {"partner_subscriptions": [subscription_row(plan="500")]})
    summary = run(service.get_partner_billing("p1", utc(2024, 1, 15)))
    assert summary.amount_due == 500
    assert summary.estimate is None

    hasura.on("GetPartnerSubscriptions", {"partner_subscriptions": [subscription_row(plan="trial")]})
    summary = run(service.get_partner_billing("p1", utc(2024, 1, 15)))
    assert summary.amount_due == 0
    assert "GetPartnerOrdersForBilling" not in hasura.operations()


def test_summary_without_active_subscription(hasura):
    hasura.on("GetPartnerSubscriptions", {"partner_subscriptions": [subscription_row()]})
    hasura.on("GetPartnerPayments", {"partner_payments": [
        payment_row(id=f"pay{i}", date=f"2023-12-{i + 1:02d}") for i in range(12)
    ]})
    service = BillingService(hasura.client())

    summary = run(service.get_partner_billing("p1", utc(2024, 5, 1)))

    assert summary.current_subscription is None
    assert summary.amount_due == 0
    assert summary.payment_count == 12
    assert len(summary.recent_payments) == 10
    assert str(summary.recent_payments[0].date) == "2023-12-12"
    assert len(summary.subscriptions) == 1
