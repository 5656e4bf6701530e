# storefront/services/order_service.py
import logging
import secrets
import string
import time
from typing import Dict, List, Optional, Any
import asyncpg
from ..models.errors import ErrorKind, failure
from ..models.order import OrderStatus, PaymentMode, PricingSnapshot
from ..models.session import CurrentUser
from ..utils.messages import Messages

_BASE36 = string.digits + string.ascii_uppercase

def _to_base36(value: int) -> str:
    digits = ""
    while value:
        value, remainder = divmod(value, 36)
        digits = _BASE36[remainder] + digits
    return digits or "0"

def generate_reference() -> str:
    """Readable unique order reference, e.g. REF-MB8F5NK0-7Q2D"""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"REF-{_to_base36(int(time.time() * 1000))}-{suffix}"

class OrderService:
    """Order headers, item snapshots and the PENDING -> PAID transition"""

    def __init__(self, db):
        self.db = db
        self.logger = logging.getLogger(__name__)

    async def create_order(self, user_id: int, snapshot: PricingSnapshot, conn=None) -> Dict[str, Any]:
        """Insert a PENDING order header and its items as one unit"""
        if not snapshot.lines:
            return failure(ErrorKind.VALIDATION, Messages.SELECT_ITEMS)

        reference_id = generate_reference()
        order_id = None

        async with self.db.connection(conn) as conn:
            try:
                async with conn.transaction():
                    order_id = await conn.fetchval("""
                        INSERT INTO orders (
                            user_id, reference_id, payment_mode, status, currency,
                            subtotal, tax, shipping_fee, discount, total, voucher_code
                        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
                        RETURNING order_id
                    """,
                        user_id,
                        reference_id,
                        snapshot.payment_mode.value,
                        OrderStatus.PENDING.value,
                        snapshot.currency,
                        snapshot.subtotal,
                        snapshot.tax,
                        snapshot.shipping_fee,
                        snapshot.discount,
                        snapshot.total,
                        snapshot.voucher_code
                    )

                    await conn.executemany("""
                        INSERT INTO order_items (
                            order_id, product_id, product_name, unit_price, quantity, subtotal
                        ) VALUES ($1, $2, $3, $4, $5, $6)
                    """, [
                        (order_id, line.product_id, line.product_name,
                         line.unit_price, line.quantity, line.subtotal)
                        for line in snapshot.lines
                    ])
            except asyncpg.PostgresError as e:
                if order_id is None:
                    raise
                self.logger.error(
                    f"Order {order_id} ({reference_id}) header written but items failed, rolled back: {e}"
                )
                return failure(
                    ErrorKind.INCONSISTENCY,
                    Messages.ORDER_CREATE_FAILED,
                    reference_id=reference_id
                )

        self.logger.info(f"Order {order_id} ({reference_id}) created for user {user_id}, total {snapshot.total}")
        return {
            "success": True,
            "order_id": order_id,
            "reference_id": reference_id,
            "status": OrderStatus.PENDING.value,
            "currency": snapshot.currency,
            "subtotal": snapshot.subtotal,
            "tax": snapshot.tax,
            "shipping_fee": snapshot.shipping_fee,
            "discount": snapshot.discount,
            "total": snapshot.total,
            "voucher_code": snapshot.voucher_code
        }

    async def mark_paid(self, order_id: int, user_id: int, payment_mode: PaymentMode,
                        transaction_ref: Optional[str], provider_order_id: Optional[str] = None,
                        conn=None) -> Dict[str, Any]:
        """PENDING -> PAID; an order that is already PAID is left untouched"""
        async with self.db.connection(conn) as conn:
            updated = await conn.fetchrow("""
                UPDATE orders
                SET status = $1,
                    payment_mode = $2,
                    transaction_id = $3,
                    provider_order_id = COALESCE($4, provider_order_id),
                    captured_at = NOW()
                WHERE order_id = $5 AND user_id = $6 AND status = $7
                RETURNING order_id, captured_at
            """,
                OrderStatus.PAID.value,
                payment_mode.value,
                transaction_ref,
                provider_order_id,
                order_id,
                user_id,
                OrderStatus.PENDING.value
            )

            if updated:
                self.logger.info(f"Order {order_id} marked PAID via {payment_mode.value} ({transaction_ref})")
                return {
                    "success": True,
                    "order_id": order_id,
                    "already_paid": False,
                    "captured_at": updated["captured_at"]
                }

            current = await conn.fetchrow("""
                SELECT user_id, status, captured_at FROM orders WHERE order_id = $1
            """, order_id)

        if not current:
            return failure(ErrorKind.NOT_FOUND, Messages.ORDER_NOT_FOUND)
        if current["user_id"] != user_id:
            return failure(ErrorKind.FORBIDDEN, Messages.ORDER_FORBIDDEN)

        self.logger.info(f"Order {order_id} already PAID, settlement call ignored")
        return {
            "success": True,
            "order_id": order_id,
            "already_paid": True,
            "captured_at": current["captured_at"]
        }

    async def set_provider_order(self, order_id: int, user_id: int, provider_order_id: str) -> bool:
        """Remember the card processor order issued for a PENDING order"""
        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE orders
                SET provider_order_id = $1
                WHERE order_id = $2 AND user_id = $3 AND status = $4
            """, provider_order_id, order_id, user_id, OrderStatus.PENDING.value)
            return result == "UPDATE 1"

    async def get_order(self, order_id: int, user: Optional[CurrentUser] = None,
                        require_owner: bool = True) -> Dict[str, Any]:
        """Order header with items, checked against the requesting user"""
        async with self.db.pool.acquire() as conn:
            order = await conn.fetchrow("""
                SELECT order_id, user_id, reference_id, provider_order_id, transaction_id,
                       payment_mode, status, currency, subtotal, tax, shipping_fee,
                       discount, total, voucher_code, created_at, captured_at
                FROM orders
                WHERE order_id = $1
            """, order_id)

            if not order:
                return failure(ErrorKind.NOT_FOUND, Messages.ORDER_NOT_FOUND)

            if require_owner and (user is None or (order["user_id"] != user.id and not user.is_admin)):
                return failure(ErrorKind.FORBIDDEN, Messages.ORDER_FORBIDDEN)

            items = await conn.fetch("""
                SELECT product_id, product_name, unit_price, quantity, subtotal
                FROM order_items
                WHERE order_id = $1
                ORDER BY order_item_id
            """, order_id)

        result = dict(order)
        result["items"] = [dict(item) for item in items]
        return {"success": True, "order": result}

    async def get_order_product_ids(self, order_id: int) -> List[int]:
        """Distinct products on an order"""
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT DISTINCT product_id
                FROM order_items
                WHERE order_id = $1
            """, order_id)
            return sorted(row["product_id"] for row in rows)

    async def list_user_orders(self, user_id: int, limit: int = 50) -> List[Dict[str, Any]]:
        """Order history, newest first"""
        async with self.db.pool.acquire() as conn:
            orders = await conn.fetch("""
                SELECT order_id, reference_id, payment_mode, status, total, currency, created_at
                FROM orders
                WHERE user_id = $1
                ORDER BY created_at DESC, order_id DESC
                LIMIT $2
            """, user_id, limit)
            return [dict(order) for order in orders]
