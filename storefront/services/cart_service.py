# storefront/services/cart_service.py
import logging
from decimal import Decimal
from typing import Dict, List, Any, Iterable
from ..models.errors import ErrorKind, failure
from ..utils.messages import Messages

class CartService:
    """Per-user product -> quantity lines, checked against live stock on write"""

    def __init__(self, db):
        self.db = db
        self.logger = logging.getLogger(__name__)

    async def get_cart(self, user_id: int) -> List[Dict[str, Any]]:
        """Cart lines joined with the live product price and stock"""
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT ci.product_id, ci.quantity, ci.created_at, ci.updated_at,
                       p.name, p.price, p.quantity AS stock, p.image_url
                FROM cart_items ci
                JOIN products p ON p.product_id = ci.product_id
                WHERE ci.user_id = $1
                ORDER BY ci.created_at DESC, ci.cart_item_id DESC
            """, user_id)

            lines = []
            for row in rows:
                line = dict(row)
                line["line_subtotal"] = Decimal(line["price"]) * line["quantity"]
                lines.append(line)
            return lines

    async def add_item(self, user_id: int, product_id: int, quantity: int) -> Dict[str, Any]:
        """Add `quantity` to the line, creating it if absent"""
        if quantity is None or quantity <= 0:
            return failure(ErrorKind.VALIDATION, Messages.INVALID_QUANTITY)

        async with self.db.pool.acquire() as conn:
            product = await conn.fetchrow("""
                SELECT product_id, name, quantity FROM products WHERE product_id = $1
            """, product_id)
            if not product:
                return failure(ErrorKind.NOT_FOUND, Messages.PRODUCT_NOT_FOUND)

            existing = await conn.fetchval("""
                SELECT quantity FROM cart_items
                WHERE user_id = $1 AND product_id = $2
            """, user_id, product_id) or 0

            new_quantity = existing + quantity
            if new_quantity > product["quantity"]:
                return failure(
                    ErrorKind.INSUFFICIENT_STOCK,
                    Messages.insufficient_stock(product["name"], product["quantity"], new_quantity),
                    available=product["quantity"]
                )

            await conn.execute("""
                INSERT INTO cart_items (user_id, product_id, quantity, updated_at)
                VALUES ($1, $2, $3, NOW())
                ON CONFLICT (user_id, product_id)
                DO UPDATE SET quantity = EXCLUDED.quantity, updated_at = NOW()
            """, user_id, product_id, new_quantity)

            return {"success": True, "product_id": product_id, "quantity": new_quantity}

    async def set_quantity(self, user_id: int, product_id: int, quantity: int) -> Dict[str, Any]:
        """Overwrite a line's quantity; zero or less removes the line"""
        if quantity is None or quantity <= 0:
            await self.remove_item(user_id, product_id)
            return {"success": True, "product_id": product_id, "quantity": 0, "removed": True}

        async with self.db.pool.acquire() as conn:
            product = await conn.fetchrow("""
                SELECT product_id, name, quantity FROM products WHERE product_id = $1
            """, product_id)
            if not product:
                return failure(ErrorKind.NOT_FOUND, Messages.PRODUCT_NOT_FOUND)

            if quantity > product["quantity"]:
                return failure(
                    ErrorKind.INSUFFICIENT_STOCK,
                    Messages.insufficient_stock(product["name"], product["quantity"], quantity),
                    available=product["quantity"]
                )

            result = await conn.execute("""
                UPDATE cart_items
                SET quantity = $1, updated_at = NOW()
                WHERE user_id = $2 AND product_id = $3
            """, quantity, user_id, product_id)
            if result != "UPDATE 1":
                return failure(ErrorKind.NOT_FOUND, Messages.SELECTION_NOT_IN_CART)

            return {"success": True, "product_id": product_id, "quantity": quantity}

    async def remove_item(self, user_id: int, product_id: int) -> bool:
        """Delete one line"""
        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                DELETE FROM cart_items
                WHERE user_id = $1 AND product_id = $2
            """, user_id, product_id)
            return result == "DELETE 1"

    async def clear_all(self, user_id: int) -> int:
        """Empty the cart"""
        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                DELETE FROM cart_items WHERE user_id = $1
            """, user_id)
            return _affected(result)

    async def clear_subset(self, user_id: int, product_ids: Iterable[int]) -> int:
        """Delete only the given products' lines; absent lines are ignored"""
        ids = sorted(set(product_ids))
        if not ids:
            return 0

        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                DELETE FROM cart_items
                WHERE user_id = $1 AND product_id = ANY($2::int[])
            """, user_id, ids)
            return _affected(result)

def _affected(status: str) -> int:
    """Row count from an asyncpg status string such as 'DELETE 3'"""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0
