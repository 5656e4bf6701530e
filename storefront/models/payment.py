# storefront/models/payment.py
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel
from .order import PaymentMode

class OutcomeStatus(str, Enum):
    SETTLED = "settled"
    PENDING = "pending"
    FAILED = "failed"

class PaymentOutcome(BaseModel):
    """Single provider-independent result handed to settlement"""
    status: OutcomeStatus
    mode: PaymentMode
    provider_ref: Optional[str] = None
    provider_order_id: Optional[str] = None
    raw: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def settled(self) -> bool:
        return self.status == OutcomeStatus.SETTLED

    @property
    def failed(self) -> bool:
        return self.status == OutcomeStatus.FAILED
