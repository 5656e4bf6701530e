# storefront/models/cart.py
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, ConfigDict

class CartLine(BaseModel):
    """A cart row joined with the live product price and stock"""
    product_id: int
    name: str
    price: Decimal
    quantity: int
    stock: int
    image_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def line_subtotal(self) -> Decimal:
        return self.price * self.quantity

    @property
    def exceeds_stock(self) -> bool:
        return self.quantity > self.stock
