# storefront/models/wallet.py
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from enum import Enum
from pydantic import BaseModel, ConfigDict
from .base import TimeStampedModel

class TransactionType(str, Enum):
    TOPUP = "TOPUP"
    PAYMENT = "PAYMENT"

class TransactionStatus(str, Enum):
    CREATED = "CREATED"
    PROVIDER_ORDER_CREATED = "PROVIDER_ORDER_CREATED"
    PROVIDER_QR_CREATED = "PROVIDER_QR_CREATED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

class WalletTransaction(TimeStampedModel):
    """Wallet ledger row: one per top-up attempt or order payment"""
    transaction_id: int
    user_id: int
    type: TransactionType
    amount: Decimal
    status: TransactionStatus
    related_order_id: Optional[int] = None
    provider_order_id: Optional[str] = None
    provider_capture_id: Optional[str] = None
    provider_txn_ref: Optional[str] = None
    raw_json: Optional[Dict[str, Any]] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (TransactionStatus.COMPLETED, TransactionStatus.FAILED)

class Wallet(BaseModel):
    """Stored-value balance of a user"""
    user_id: int
    balance: Decimal = Decimal(0)
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
