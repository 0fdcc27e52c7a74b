# app/api/v1/billing.py
"""
Partner billing router
Current subscription, amount due and payment history for the logged-in partner
"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from app.api.dependencies import CurrentUser, require_partner
from app.core.hasura import HasuraClient, HasuraError, get_hasura_client
from app.schemas.billing import BillingSummary, OrderCalculationResult
from app.services.billing_calculator import CUSTOMER_ESTIMATE, is_metered_plan
from app.services.billing_service import BillingService, select_current_subscription

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


def get_billing_service(hasura: HasuraClient = Depends(get_hasura_client)) -> BillingService:
    return BillingService(hasura)


@router.get("/summary", response_model=BillingSummary)
async def get_billing_summary(
    service: BillingService = Depends(get_billing_service),
    current_user: CurrentUser = Depends(require_partner)
):
    """Billing page data: current plan, amount due, payments, history"""
    try:
        return await service.get_partner_billing(current_user.id)
    except HasuraError as e:
        logger.error(f"[Billing] Failed to load billing for {current_user.id}: {e.message}")
        raise HTTPException(502, "Failed to load billing information")


@router.get("/estimate", response_model=OrderCalculationResult)
async def get_order_estimate(
    service: BillingService = Depends(get_billing_service),
    current_user: CurrentUser = Depends(require_partner)
):
    """Orders counted since the last payment on a pay-per-order plan"""
    try:
        subscriptions = await service.fetch_subscriptions(current_user.id)
        payments = await service.fetch_payments(current_user.id)
    except HasuraError as e:
        raise HTTPException(502, f"Failed to load billing information: {e.message}")

    current = select_current_subscription(subscriptions)
    if current is None or not is_metered_plan(current.plan):
        raise HTTPException(404, "No active pay-per-order subscription")

    result = await service.calculate_order_billing(
        current_user.id, current, payments, CUSTOMER_ESTIMATE
    )
    if not result.success:
        raise HTTPException(502, f"Failed to calculate orders: {result.error}")
    return result
