# app/api/v1/partners.py
"""
Partner subscription management (superadmin)
Partners, subscriptions, payments and payment pre-fill
"""
import logging
from datetime import datetime, timezone
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.dependencies import CurrentUser, require_superadmin
from app.core.hasura import HasuraClient, HasuraError, get_hasura_client
from app.schemas.billing import BillingPeriodRequest, OrderCalculationResult, PaymentPrefill
from app.schemas.partner import Partner, PartnerListResponse, PartnerStatusUpdate
from app.schemas.payment import PartnerPayment, PaymentCreate, PaymentDateUpdate, PaymentPage
from app.schemas.subscription import PartnerSubscription, RepeatPlanRequest, SubscriptionCreate, SubscriptionPage
from app.services.partner_service import PartnerService, PartnerServiceError, RecordNotFound, sort_partners

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/partners", tags=["partners"])


def get_partner_service(hasura: HasuraClient = Depends(get_hasura_client)) -> PartnerService:
    return PartnerService(hasura)


def to_http_error(e: Exception) -> HTTPException:
    if isinstance(e, RecordNotFound):
        return HTTPException(404, str(e))
    if isinstance(e, PartnerServiceError):
        return HTTPException(400, str(e))
    logger.error(f"[Partners] Upstream error: {e}")
    return HTTPException(502, f"Hasura error: {e}")


# ============================================
# PARTNERS
# ============================================

@router.get("", response_model=PartnerListResponse)
async def list_partners(
    search: str = "",
    status: Literal["all", "active", "inactive"] = "all",
    expiry_sort: Literal["nearest", "oldest"] = "nearest",
    priority: bool = False,
    offset: int = Query(0, ge=0),
    service: PartnerService = Depends(get_partner_service),
    current_user: CurrentUser = Depends(require_superadmin)
):
    """
    Paginated partner list with their subscriptions.

    With priority=true the page is reordered: expired first, then
    inactive, then by expiry.
    """
    try:
        result = await service.list_partners(search, status, expiry_sort, offset)
    except HasuraError as e:
        raise to_http_error(e)

    if priority:
        result.partners = sort_partners(result.partners, result.subscriptions, datetime.now(timezone.utc))
    return result


@router.patch("/{partner_id}/status", response_model=Partner)
async def update_partner_status(
    partner_id: str,
    data: PartnerStatusUpdate,
    service: PartnerService = Depends(get_partner_service),
    current_user: CurrentUser = Depends(require_superadmin)
):
    try:
        return await service.update_partner_status(partner_id, data.status)
    except (PartnerServiceError, HasuraError) as e:
        raise to_http_error(e)


@router.get("/{partner_id}/subscriptions", response_model=SubscriptionPage)
async def get_partner_subscriptions(
    partner_id: str,
    offset: int = Query(0, ge=0),
    service: PartnerService = Depends(get_partner_service),
    current_user: CurrentUser = Depends(require_superadmin)
):
    try:
        return await service.get_subscriptions(partner_id, offset)
    except HasuraError as e:
        raise to_http_error(e)


@router.get("/{partner_id}/payments", response_model=PaymentPage)
async def get_partner_payments(
    partner_id: str,
    offset: int = Query(0, ge=0),
    service: PartnerService = Depends(get_partner_service),
    current_user: CurrentUser = Depends(require_superadmin)
):
    try:
        return await service.get_payments(partner_id, offset)
    except HasuraError as e:
        raise to_http_error(e)


@router.get("/{partner_id}/payment-prefill", response_model=PaymentPrefill)
async def get_payment_prefill(
    partner_id: str,
    service: PartnerService = Depends(get_partner_service),
    current_user: CurrentUser = Depends(require_superadmin)
):
    """Suggested amount for the next payment of this partner"""
    try:
        return await service.default_payment_amount(partner_id)
    except HasuraError as e:
        raise to_http_error(e)


@router.post("/{partner_id}/orders/period", response_model=OrderCalculationResult)
async def calculate_orders_for_period(
    partner_id: str,
    data: BillingPeriodRequest,
    service: PartnerService = Depends(get_partner_service),
    current_user: CurrentUser = Depends(require_superadmin)
):
    result = await service.billing.calculate_orders_for_period(partner_id, data.start_date, data.end_date)
    if not result.success:
        raise HTTPException(502, f"Failed to calculate orders for billing period: {result.error}")
    return result


@router.post("/{partner_id}/subscriptions/repeat", response_model=PartnerSubscription)
async def repeat_last_plan(
    partner_id: str,
    data: RepeatPlanRequest,
    service: PartnerService = Depends(get_partner_service),
    current_user: CurrentUser = Depends(require_superadmin)
):
    try:
        return await service.repeat_last_plan(partner_id, data.include_payment)
    except (PartnerServiceError, HasuraError) as e:
        raise to_http_error(e)


# ============================================
# SUBSCRIPTIONS
# ============================================

@router.post("/subscriptions", response_model=PartnerSubscription, status_code=201)
async def add_subscription(
    data: SubscriptionCreate,
    service: PartnerService = Depends(get_partner_service),
    current_user: CurrentUser = Depends(require_superadmin)
):
    try:
        return await service.add_subscription(data)
    except (PartnerServiceError, HasuraError) as e:
        raise to_http_error(e)


@router.delete("/subscriptions/{subscription_id}")
async def delete_subscription(
    subscription_id: str,
    service: PartnerService = Depends(get_partner_service),
    current_user: CurrentUser = Depends(require_superadmin)
):
    try:
        deleted = await service.delete_subscription(subscription_id)
    except (PartnerServiceError, HasuraError) as e:
        raise to_http_error(e)
    return {"success": True, "id": deleted}


# ============================================
# PAYMENTS
# ============================================

@router.post("/payments", response_model=PartnerPayment, status_code=201)
async def add_payment(
    data: PaymentCreate,
    service: PartnerService = Depends(get_partner_service),
    current_user: CurrentUser = Depends(require_superadmin)
):
    try:
        return await service.add_payment(data)
    except HasuraError as e:
        raise to_http_error(e)


@router.patch("/payments/{payment_id}", response_model=PartnerPayment)
async def update_payment_date(
    payment_id: str,
    data: PaymentDateUpdate,
    service: PartnerService = Depends(get_partner_service),
    current_user: CurrentUser = Depends(require_superadmin)
):
    try:
        return await service.update_payment_date(payment_id, data.date)
    except (PartnerServiceError, HasuraError) as e:
        raise to_http_error(e)


@router.delete("/payments/{payment_id}")
async def delete_payment(
    payment_id: str,
    service: PartnerService = Depends(get_partner_service),
    current_user: CurrentUser = Depends(require_superadmin)
):
    try:
        deleted = await service.delete_payment(payment_id)
    except (PartnerServiceError, HasuraError) as e:
        raise to_http_error(e)
    return {"success": True, "id": deleted}
