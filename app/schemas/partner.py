# app/schemas/partner.py
from pydantic import BaseModel
from typing import Optional, List, Dict, Literal

from .subscription import PartnerSubscription

PartnerStatus = Literal["active", "inactive"]


class Partner(BaseModel):
    id: str
    phone: Optional[str] = None
    status: str
    store_name: str


class PartnerStatusUpdate(BaseModel):
    status: PartnerStatus


class PartnerListResponse(BaseModel):
    partners: List[Partner]
    subscriptions: Dict[str, List[PartnerSubscription]]
    offset: int
    has_more: bool
