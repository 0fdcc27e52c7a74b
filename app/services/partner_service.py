# app/services/partner_service.py
"""
Partner subscription management (superadmin tool)

Partners, their subscriptions and their payments live in Hasura. This
service lists and edits them, and pre-fills payment amounts from the
billing calculation.
"""
import calendar
import logging
from datetime import date, datetime, timezone
from typing import Optional, List, Dict, Any

from app.core.config import settings
from app.core.hasura import HasuraClient
from app.schemas.billing import PaymentPrefill
from app.schemas.partner import Partner, PartnerListResponse
from app.schemas.payment import PartnerPayment, PaymentCreate, PaymentPage, today_utc
from app.schemas.subscription import PartnerSubscription, SubscriptionCreate, SubscriptionPage
from app.services.billing_calculator import (
    ADMIN_SETTLEMENT,
    is_metered_plan,
    nominal_plan_amount,
    to_iso_millis,
)
from app.services.billing_service import BillingService, select_current_subscription

logger = logging.getLogger(__name__)


class PartnerServiceError(Exception):
    """Request cannot be carried out as asked"""


class RecordNotFound(PartnerServiceError):
    pass


# ============================================
# QUERIES
# ============================================

SUBSCRIPTION_FIELDS = """
    id
    partner_id
    plan
    type
    created_at
    expiry_date
"""

PAYMENT_FIELDS = """
    id
    partner_id
    amount
    date
"""

PARTNERS_QUERY = """
query Partners($limit: Int!, $offset: Int!, $where: partners_bool_exp!, $orderBy: [partners_order_by!]!) {
  partners(limit: $limit, offset: $offset, where: $where, order_by: $orderBy) {
    id
    phone
    status
    store_name
  }
}
"""

ALL_SUBSCRIPTIONS_QUERY = """
query AllPartnerSubscriptions($partnerIds: [uuid!]!, $limit: Int!) {
  partner_subscriptions(
    where: {partner_id: {_in: $partnerIds}},
    limit: $limit,
    order_by: {created_at: desc}
  ) {%s}
}
""" % SUBSCRIPTION_FIELDS

SUBSCRIPTIONS_PAGE_QUERY = """
query PartnerSubscriptions($partnerId: uuid!, $limit: Int, $offset: Int!) {
  partner_subscriptions(
    where: {partner_id: {_eq: $partnerId}},
    limit: $limit,
    offset: $offset,
    order_by: {created_at: desc}
  ) {%s}
}
""" % SUBSCRIPTION_FIELDS

PAYMENTS_PAGE_QUERY = """
query PartnerPayments($partnerId: uuid!, $limit: Int, $offset: Int!) {
  partner_payments(
    where: {partner_id: {_eq: $partnerId}},
    limit: $limit,
    offset: $offset,
    order_by: {date: desc}
  ) {%s}
}
""" % PAYMENT_FIELDS

UPDATE_PARTNER_STATUS = """
mutation UpdatePartnerStatus($partnerId: uuid!, $status: String!) {
  update_partners_by_pk(pk_columns: {id: $partnerId}, _set: {status: $status}) {
    id
    phone
    status
    store_name
  }
}
"""

ADD_SUBSCRIPTION = """
mutation AddSubscription($object: partner_subscriptions_insert_input!) {
  insert_partner_subscriptions_one(object: $object) {%s}
}
""" % SUBSCRIPTION_FIELDS

ADD_PAYMENT = """
mutation AddPayment($object: partner_payments_insert_input!) {
  insert_partner_payments_one(object: $object) {%s}
}
""" % PAYMENT_FIELDS

UPDATE_PAYMENT_DATE = """
mutation UpdatePaymentDate($paymentId: uuid!, $newDate: date!) {
  update_partner_payments_by_pk(pk_columns: {id: $paymentId}, _set: {date: $newDate}) {%s}
}
""" % PAYMENT_FIELDS

DELETE_SUBSCRIPTION = """
mutation DeleteSubscription($subscriptionId: uuid!) {
  delete_partner_subscriptions_by_pk(id: $subscriptionId) {
    id
  }
}
"""

DELETE_PAYMENT = """
mutation DeletePayment($paymentId: uuid!) {
  delete_partner_payments_by_pk(id: $paymentId) {
    id
  }
}
"""


# ============================================
# DATE HELPERS
# ============================================

def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamped to the last day of the target month"""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def add_years(value: datetime, years: int) -> datetime:
    return add_months(value, 12 * years)


def cycle_end(start: datetime, cycle: str) -> datetime:
    if cycle == "monthly":
        return add_months(start, 1)
    return add_years(start, 1)


# ============================================
# SUBSCRIPTION HELPERS
# ============================================

def get_active_subscriptions(subscriptions: List[PartnerSubscription], now: datetime) -> List[PartnerSubscription]:
    return [s for s in subscriptions if s.is_active(now)]


def get_last_subscription(subscriptions: List[PartnerSubscription]) -> Optional[PartnerSubscription]:
    """Subscription with the latest expiry"""
    if not subscriptions:
        return None
    return max(subscriptions, key=lambda s: s.expiry_date)


def nearest_expiry_date(subscriptions: List[PartnerSubscription], now: datetime) -> Optional[datetime]:
    active = get_active_subscriptions(subscriptions, now)
    if not active:
        return None
    return min(s.expiry_date for s in active)


def has_trial_overlap(
    subscriptions: List[PartnerSubscription],
    start: datetime,
    end: datetime,
) -> bool:
    """True if [start, end] touches any existing trial period (inclusive)"""
    for sub in subscriptions:
        if sub.plan != "trial":
            continue
        if start <= sub.expiry_date and sub.created_at <= end:
            return True
    return False


def sort_partners(
    partners: List[Partner],
    subscriptions: Dict[str, List[PartnerSubscription]],
    now: datetime,
) -> List[Partner]:
    """
    Order for the admin list: expired partners first, then inactive before
    active, then by latest expiry (partners with no subscription last).
    """
    def sort_key(partner: Partner):
        last = get_last_subscription(subscriptions.get(partner.id, []))
        status_rank = 0 if partner.status == "inactive" else 1
        if last is None:
            return (1, status_rank, 1, datetime.max.replace(tzinfo=timezone.utc))
        expired_rank = 0 if last.expiry_date < now else 1
        return (expired_rank, status_rank, 0, last.expiry_date)

    return sorted(partners, key=sort_key)


class PartnerService:
    """Superadmin operations over partners, subscriptions and payments"""

    def __init__(self, hasura: HasuraClient, page_limit: Optional[int] = None):
        self.hasura = hasura
        self.page_limit = page_limit or settings.PAGE_LIMIT
        self.billing = BillingService(hasura)

    # ------------------------------------------
    # Listings
    # ------------------------------------------

    async def list_partners(
        self,
        search: str = "",
        status_filter: str = "all",
        expiry_sort: str = "nearest",
        offset: int = 0,
    ) -> PartnerListResponse:
        where: Dict[str, Any] = {}
        if search:
            where["_or"] = [
                {"store_name": {"_ilike": f"%{search}%"}},
                {"phone": {"_ilike": f"%{search}%"}},
            ]
        if status_filter != "all":
            where["status"] = {"_eq": status_filter}

        direction = "asc_nulls_last" if expiry_sort == "nearest" else "desc_nulls_last"
        order_by = [{"partner_subscriptions_aggregate": {"max": {"expiry_date": direction}}}]

        data = await self.hasura.execute(PARTNERS_QUERY, {
            "limit": self.page_limit,
            "offset": offset,
            "where": where,
            "orderBy": order_by,
        })
        partners = [Partner(**row) for row in data.get("partners") or []]

        subscriptions: Dict[str, List[PartnerSubscription]] = {}
        if partners:
            subscriptions = await self.fetch_subscriptions_for(
                [p.id for p in partners]
            )

        return PartnerListResponse(
            partners=partners,
            subscriptions=subscriptions,
            offset=offset,
            has_more=len(partners) == self.page_limit,
        )

    async def fetch_subscriptions_for(self, partner_ids: List[str]) -> Dict[str, List[PartnerSubscription]]:
        """Recent subscriptions for several partners, grouped by partner id"""
        data = await self.hasura.execute(ALL_SUBSCRIPTIONS_QUERY, {
            "partnerIds": partner_ids,
            "limit": self.page_limit,
        })
        grouped: Dict[str, List[PartnerSubscription]] = {}
        for row in data.get("partner_subscriptions") or []:
            sub = PartnerSubscription(**row)
            grouped.setdefault(sub.partner_id, []).append(sub)
        return grouped

    async def get_subscriptions(self, partner_id: str, offset: int = 0) -> SubscriptionPage:
        data = await self.hasura.execute(SUBSCRIPTIONS_PAGE_QUERY, {
            "partnerId": partner_id,
            "limit": self.page_limit,
            "offset": offset,
        })
        rows = [PartnerSubscription(**row) for row in data.get("partner_subscriptions") or []]
        return SubscriptionPage(subscriptions=rows, offset=offset, has_more=len(rows) == self.page_limit)

    async def get_payments(self, partner_id: str, offset: int = 0) -> PaymentPage:
        data = await self.hasura.execute(PAYMENTS_PAGE_QUERY, {
            "partnerId": partner_id,
            "limit": self.page_limit,
            "offset": offset,
        })
        rows = [PartnerPayment(**row) for row in data.get("partner_payments") or []]
        return PaymentPage(payments=rows, offset=offset, has_more=len(rows) == self.page_limit)

    async def _all_subscriptions(self, partner_id: str) -> List[PartnerSubscription]:
        data = await self.hasura.execute(SUBSCRIPTIONS_PAGE_QUERY, {
            "partnerId": partner_id,
            "limit": None,
            "offset": 0,
        })
        return [PartnerSubscription(**row) for row in data.get("partner_subscriptions") or []]

    async def _all_payments(self, partner_id: str) -> List[PartnerPayment]:
        data = await self.hasura.execute(PAYMENTS_PAGE_QUERY, {
            "partnerId": partner_id,
            "limit": None,
            "offset": 0,
        })
        return [PartnerPayment(**row) for row in data.get("partner_payments") or []]

    # ------------------------------------------
    # Partners
    # ------------------------------------------

    async def update_partner_status(self, partner_id: str, status: str) -> Partner:
        data = await self.hasura.execute(UPDATE_PARTNER_STATUS, {
            "partnerId": partner_id,
            "status": status,
        })
        row = data.get("update_partners_by_pk")
        if not row:
            raise RecordNotFound(f"Partner {partner_id} not found")
        logger.info(f"[Partners] Status of {partner_id} set to {status}")
        return Partner(**row)

    # ------------------------------------------
    # Subscriptions
    # ------------------------------------------

    async def add_subscription(
        self,
        request: SubscriptionCreate,
        now: Optional[datetime] = None,
    ) -> PartnerSubscription:
        now = now or datetime.now(timezone.utc)

        if request.plan == "trial":
            if not request.start_date or not request.end_date:
                raise PartnerServiceError("Please select both trial start and end dates")
            if request.end_date <= request.start_date:
                raise PartnerServiceError("Trial end date must be after its start date")
            existing = await self._all_subscriptions(request.partner_id)
            if has_trial_overlap(existing, request.start_date, request.end_date):
                raise PartnerServiceError("Trial period overlaps an existing trial")
            start_date, expiry_date = request.start_date, request.end_date
        elif request.use_custom_dates and request.start_date and request.end_date:
            start_date, expiry_date = request.start_date, request.end_date
        else:
            start_date = request.start_date or now
            expiry_date = cycle_end(start_date, request.type)

        subscription = await self._insert_subscription(
            request.partner_id, request.plan, request.type, start_date, expiry_date
        )

        if request.include_payment and request.payment_amount > 0:
            await self.add_payment(PaymentCreate(
                partner_id=request.partner_id,
                amount=request.payment_amount,
                date=request.payment_date or today_utc(),
            ))

        return subscription

    async def _insert_subscription(
        self,
        partner_id: str,
        plan: str,
        cycle: str,
        start_date: datetime,
        expiry_date: datetime,
    ) -> PartnerSubscription:
        data = await self.hasura.execute(ADD_SUBSCRIPTION, {
            "object": {
                "partner_id": partner_id,
                "plan": plan,
                "type": cycle,
                "created_at": to_iso_millis(start_date),
                "expiry_date": to_iso_millis(expiry_date),
            }
        })
        subscription = PartnerSubscription(**data["insert_partner_subscriptions_one"])
        logger.info(f"[Partners] ✅ Subscription {subscription.id} ({plan}/{cycle}) added for {partner_id}")
        return subscription

    async def delete_subscription(self, subscription_id: str) -> str:
        data = await self.hasura.execute(DELETE_SUBSCRIPTION, {"subscriptionId": subscription_id})
        if not data.get("delete_partner_subscriptions_by_pk"):
            raise RecordNotFound(f"Subscription {subscription_id} not found")
        return subscription_id

    async def repeat_last_plan(
        self,
        partner_id: str,
        include_payment: bool = False,
        now: Optional[datetime] = None,
    ) -> PartnerSubscription:
        """Renew the partner's most recent plan starting now"""
        now = now or datetime.now(timezone.utc)

        subscriptions = await self._all_subscriptions(partner_id)
        last = get_last_subscription(subscriptions)
        if last is None:
            raise RecordNotFound("No previous subscription found")

        payment_amount = 0.0
        if include_payment:
            if is_metered_plan(last.plan):
                # Settle orders on the outgoing subscription before it is superseded
                payments = await self._all_payments(partner_id)
                result = await self.billing.calculate_order_billing(
                    partner_id, last, payments, ADMIN_SETTLEMENT, now
                )
                if not result.success:
                    raise PartnerServiceError(f"Could not calculate payment: {result.error}")
                payment_amount = result.calculation.total_amount
            else:
                payment_amount = nominal_plan_amount(last.plan)

        subscription = await self._insert_subscription(
            partner_id, last.plan, last.type, now, cycle_end(now, last.type)
        )

        if payment_amount > 0:
            await self.add_payment(PaymentCreate(
                partner_id=partner_id,
                amount=payment_amount,
                date=now.date(),
            ))

        return subscription

    # ------------------------------------------
    # Payments
    # ------------------------------------------

    async def add_payment(self, request: PaymentCreate) -> PartnerPayment:
        data = await self.hasura.execute(ADD_PAYMENT, {
            "object": {
                "partner_id": request.partner_id,
                "amount": request.amount,
                "date": (request.date or today_utc()).isoformat(),
            }
        })
        payment = PartnerPayment(**data["insert_partner_payments_one"])
        logger.info(f"[Partners] ✅ Payment of ₹{payment.amount} recorded for {request.partner_id}")
        return payment

    async def update_payment_date(self, payment_id: str, new_date: date) -> PartnerPayment:
        data = await self.hasura.execute(UPDATE_PAYMENT_DATE, {
            "paymentId": payment_id,
            "newDate": new_date.isoformat(),
        })
        row = data.get("update_partner_payments_by_pk")
        if not row:
            raise RecordNotFound(f"Payment {payment_id} not found")
        return PartnerPayment(**row)

    async def delete_payment(self, payment_id: str) -> str:
        data = await self.hasura.execute(DELETE_PAYMENT, {"paymentId": payment_id})
        if not data.get("delete_partner_payments_by_pk"):
            raise RecordNotFound(f"Payment {payment_id} not found")
        return payment_id

    async def default_payment_amount(
        self,
        partner_id: str,
        now: Optional[datetime] = None,
    ) -> PaymentPrefill:
        """
        Amount to pre-fill when recording a payment.

        Metered plans use completed orders since the last payment; trial is
        free; fixed plans charge their nominal price. Without an active
        subscription the suggestion is 0.
        """
        now = now or datetime.now(timezone.utc)

        subscriptions = await self._all_subscriptions(partner_id)
        current = select_current_subscription(subscriptions, now)
        if current is None:
            return PaymentPrefill(partner_id=partner_id)

        if not is_metered_plan(current.plan):
            return PaymentPrefill(
                partner_id=partner_id,
                plan=current.plan,
                amount=nominal_plan_amount(current.plan),
            )

        payments = await self._all_payments(partner_id)
        result = await self.billing.calculate_order_billing(
            partner_id, current, payments, ADMIN_SETTLEMENT, now
        )
        return PaymentPrefill(
            partner_id=partner_id,
            plan=current.plan,
            amount=result.calculation.total_amount,
            calculation=result,
        )
