from .partner import Partner, PartnerStatusUpdate, PartnerListResponse
from .subscription import PartnerSubscription, SubscriptionCreate, SubscriptionPage, RepeatPlanRequest
from .payment import PartnerPayment, PaymentCreate, PaymentDateUpdate, PaymentPage
from .billing import (
    BillableOrder,
    OrderCalculation,
    OrderCalculationResult,
    BillingSummary,
    BillingPeriodRequest,
    PaymentPrefill,
)
