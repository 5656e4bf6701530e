# storefront/models/voucher.py
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, ConfigDict

class Voucher(BaseModel):
    """Single-use percentage discount code"""
    voucher_id: int
    code: str
    discount_percent: int
    min_spend: Decimal = Decimal("0")
    expires_at: Optional[datetime] = None
    is_used: bool = False
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
