# app/schemas/payment.py
import datetime as dt
from pydantic import BaseModel, validator
from typing import Optional, List


def today_utc() -> dt.date:
    return dt.datetime.now(dt.timezone.utc).date()


class PartnerPayment(BaseModel):
    id: str
    partner_id: Optional[str] = None
    amount: float
    date: dt.date


class PaymentCreate(BaseModel):
    partner_id: str
    amount: float
    date: Optional[dt.date] = None

    @validator('amount')
    def amount_must_be_positive(cls, v):
        if v <= 0:
            raise ValueError('Payment amount must be greater than 0')
        return v


class PaymentDateUpdate(BaseModel):
    date: dt.date


class PaymentPage(BaseModel):
    payments: List[PartnerPayment]
    offset: int
    has_more: bool
