# storefront/models/product.py
from decimal import Decimal
from typing import Optional
from .base import TimeStampedModel

class Product(TimeStampedModel):
    """Catalogue product with on-hand stock"""
    product_id: int
    name: str
    price: Decimal
    quantity: int = 0
    image_url: Optional[str] = None

    @property
    def in_stock(self) -> bool:
        return self.quantity > 0
