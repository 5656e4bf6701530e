# storefront/services/checkout_service.py
import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
from ..config import Config
from ..models.errors import ErrorKind, failure
from ..models.order import OrderLine, PricingSnapshot
from ..services.cart_service import CartService
from ..services.order_service import OrderService
from ..services.product_service import ProductService
from ..services.voucher_service import VoucherService, compute_discount, normalize_code
from ..utils.formatters import CENT
from ..utils.messages import Messages

class _CheckoutAborted(Exception):
    """Carries a failure result out of the checkout transaction so it rolls back"""

    def __init__(self, result: Dict[str, Any]):
        super().__init__(result.get("message"))
        self.result = result

def build_snapshot(lines: List[Dict[str, Any]], discount_percent: Optional[int] = None,
                   voucher_code: Optional[str] = None) -> PricingSnapshot:
    """Freeze cart lines and totals into a pricing snapshot"""
    order_lines = [
        OrderLine(
            product_id=line["product_id"],
            product_name=line["name"],
            unit_price=Decimal(line["price"]),
            quantity=line["quantity"]
        )
        for line in lines
    ]
    subtotal = sum((line.subtotal for line in order_lines), Decimal("0.00")).quantize(CENT)
    discount = compute_discount(subtotal, discount_percent) if discount_percent else Decimal("0.00")
    tax = (subtotal * Config.TAX_RATE).quantize(CENT)
    shipping_fee = Config.SHIPPING_FEE.quantize(CENT)

    return PricingSnapshot(
        currency=Config.CURRENCY,
        subtotal=subtotal,
        tax=tax,
        shipping_fee=shipping_fee,
        discount=discount,
        total=subtotal + tax + shipping_fee - discount,
        voucher_code=voucher_code if discount_percent else None,
        lines=order_lines
    )

class CheckoutService:
    """Turns a cart selection into a PENDING order with stock taken off the shelf"""

    def __init__(self, db):
        self.db = db
        self.cart_service = CartService(db)
        self.product_service = ProductService(db)
        self.voucher_service = VoucherService(db)
        self.order_service = OrderService(db)
        self.logger = logging.getLogger(__name__)

    async def checkout(self, user_id: int, selected_ids: Iterable[int],
                       voucher_code: Optional[str] = None) -> Dict[str, Any]:
        """Validate the selection, price it and create the order"""
        selected = list(dict.fromkeys(selected_ids))
        if not selected:
            return failure(ErrorKind.VALIDATION, Messages.SELECT_ITEMS)

        cart = await self.cart_service.get_cart(user_id)
        if not cart:
            return failure(ErrorKind.VALIDATION, Messages.CART_EMPTY)

        lines = [line for line in cart if line["product_id"] in selected]
        if not lines:
            return failure(ErrorKind.VALIDATION, Messages.SELECTION_NOT_IN_CART)

        for line in lines:
            if line["quantity"] > line["stock"]:
                return failure(
                    ErrorKind.INSUFFICIENT_STOCK,
                    Messages.insufficient_stock(line["name"], line["stock"], line["quantity"]),
                    product_id=line["product_id"]
                )

        discount_percent = None
        code = normalize_code(voucher_code)
        if code:
            undiscounted = build_snapshot(lines)
            validation = await self.voucher_service.validate(code, undiscounted.subtotal)
            if not validation["valid"]:
                return failure(ErrorKind.VALIDATION, validation["message"], code=code)
            discount_percent = validation["discount_percent"]

        snapshot = build_snapshot(lines, discount_percent, code or None)

        try:
            async with self.db.pool.acquire() as conn:
                async with conn.transaction():
                    order = await self._create_with_stock(conn, user_id, snapshot)
        except _CheckoutAborted as aborted:
            return aborted.result

        self.logger.info(
            f"Checkout for user {user_id}: order {order['order_id']} with "
            f"{len(snapshot.lines)} line(s), total {snapshot.total}"
        )
        return order

    async def _create_with_stock(self, conn, user_id: int, snapshot: PricingSnapshot) -> Dict[str, Any]:
        """Lock, decrement and insert; any failure aborts the enclosing transaction"""
        locked = await self.product_service.lock_products(conn, [line.product_id for line in snapshot.lines])

        for line in snapshot.lines:
            product = locked.get(line.product_id)
            if product is None:
                raise _CheckoutAborted(failure(
                    ErrorKind.NOT_FOUND, Messages.PRODUCT_NOT_FOUND, product_id=line.product_id
                ))
            if line.quantity > product["quantity"]:
                raise _CheckoutAborted(failure(
                    ErrorKind.INSUFFICIENT_STOCK,
                    Messages.insufficient_stock(line.product_name, product["quantity"], line.quantity),
                    product_id=line.product_id
                ))

            decremented = await self.product_service.decrement_stock(line.product_id, line.quantity, conn=conn)
            if not decremented["success"]:
                raise _CheckoutAborted(decremented)

        order = await self.order_service.create_order(user_id, snapshot, conn=conn)
        if not order["success"]:
            raise _CheckoutAborted(order)
        return order
