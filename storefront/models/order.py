# storefront/models/order.py
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum
from typing import List, Optional

class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"

class PaymentMode(str, Enum):
    CASH = "CASH"
    CARD = "CARD"
    QR = "QR"
    WALLET = "WALLET"

class OrderLine(BaseModel):
    """Product copy frozen into an order at checkout"""
    product_id: int
    product_name: str
    unit_price: Decimal
    quantity: int = Field(gt=0)

    @property
    def subtotal(self) -> Decimal:
        return (self.unit_price * self.quantity).quantize(Decimal("0.01"))

class PricingSnapshot(BaseModel):
    """Totals and lines handed to the order ledger"""
    currency: str
    subtotal: Decimal
    tax: Decimal = Decimal("0.00")
    shipping_fee: Decimal = Decimal("0.00")
    discount: Decimal = Decimal("0.00")
    total: Decimal
    voucher_code: Optional[str] = None
    payment_mode: PaymentMode = PaymentMode.CASH
    lines: List[OrderLine]

class OrderItem(BaseModel):
    """Individual item in an order"""
    product_id: int
    product_name: str
    unit_price: Decimal
    quantity: int
    subtotal: Decimal

    model_config = ConfigDict(from_attributes=True)

class Order(BaseModel):
    """Order header with its item snapshots"""
    order_id: int
    user_id: int
    reference_id: str
    provider_order_id: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_mode: PaymentMode
    status: OrderStatus
    currency: str
    subtotal: Decimal
    tax: Decimal
    shipping_fee: Decimal
    discount: Decimal
    total: Decimal
    voucher_code: Optional[str] = None
    created_at: datetime
    captured_at: Optional[datetime] = None
    items: List[OrderItem] = []

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_paid(self) -> bool:
        return self.status == OrderStatus.PAID
