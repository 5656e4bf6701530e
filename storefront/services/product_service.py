# storefront/services/product_service.py
import logging
from typing import List, Dict, Optional, Any, Iterable
from decimal import Decimal
from ..models.errors import ErrorKind, failure
from ..utils.formatters import to_money
from ..utils.messages import Messages

class ProductService:
    """Catalogue reads, admin CRUD and the stock counter used by checkout"""

    def __init__(self, db):
        self.db = db
        self.logger = logging.getLogger(__name__)

    async def add_product(self, product_data: Dict[str, Any]) -> Dict[str, Any]:
        """Create a product"""
        checked = self._validate_product(product_data)
        if not checked["success"]:
            return checked

        async with self.db.pool.acquire() as conn:
            product_id = await conn.fetchval("""
                INSERT INTO products (name, price, quantity, image_url)
                VALUES ($1, $2, $3, $4)
                RETURNING product_id
            """,
                checked["name"],
                checked["price"],
                checked["quantity"],
                product_data.get("image_url")
            )
            return {"success": True, "product_id": product_id}

    async def update_product(self, product_id: int, product_data: Dict[str, Any]) -> Dict[str, Any]:
        """Replace a product's editable fields"""
        checked = self._validate_product(product_data)
        if not checked["success"]:
            return checked

        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE products
                SET name = $1, price = $2, quantity = $3,
                    image_url = $4, updated_at = NOW()
                WHERE product_id = $5
            """,
                checked["name"],
                checked["price"],
                checked["quantity"],
                product_data.get("image_url"),
                product_id
            )
            if result != "UPDATE 1":
                return failure(ErrorKind.NOT_FOUND, Messages.PRODUCT_NOT_FOUND)
            return {"success": True, "product_id": product_id}

    async def delete_product(self, product_id: int) -> Dict[str, Any]:
        """Remove a product; order items keep their snapshots"""
        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                DELETE FROM products WHERE product_id = $1
            """, product_id)
            if result != "DELETE 1":
                return failure(ErrorKind.NOT_FOUND, Messages.PRODUCT_NOT_FOUND)
            return {"success": True, "product_id": product_id}

    async def get_product(self, product_id: int, conn=None) -> Optional[Dict[str, Any]]:
        """Fetch one product"""
        async with self.db.connection(conn) as conn:
            product = await conn.fetchrow("""
                SELECT product_id, name, price, quantity, image_url, created_at, updated_at
                FROM products
                WHERE product_id = $1
            """, product_id)
            return dict(product) if product else None

    async def list_products(self) -> List[Dict[str, Any]]:
        """Fetch the whole catalogue"""
        async with self.db.pool.acquire() as conn:
            products = await conn.fetch("""
                SELECT product_id, name, price, quantity, image_url, created_at, updated_at
                FROM products
                ORDER BY name, product_id
            """)
            return [dict(p) for p in products]

    async def get_stock(self, product_id: int, conn=None) -> Optional[int]:
        """Current on-hand quantity, None for an unknown product"""
        async with self.db.connection(conn) as conn:
            return await conn.fetchval("""
                SELECT quantity FROM products WHERE product_id = $1
            """, product_id)

    async def lock_products(self, conn, product_ids: Iterable[int]) -> Dict[int, Dict[str, Any]]:
        """Row-lock products in ascending id order inside the caller's transaction"""
        ordered = sorted(set(product_ids))
        rows = await conn.fetch("""
            SELECT product_id, name, price, quantity
            FROM products
            WHERE product_id = ANY($1::int[])
            ORDER BY product_id
            FOR UPDATE
        """, ordered)
        return {row["product_id"]: dict(row) for row in rows}

    async def decrement_stock(self, product_id: int, amount: int, conn=None) -> Dict[str, Any]:
        """Take `amount` units off the shelf; refuses to go below zero"""
        if amount <= 0:
            return failure(ErrorKind.VALIDATION, Messages.INVALID_QUANTITY)

        async with self.db.connection(conn) as conn:
            remaining = await conn.fetchval("""
                UPDATE products
                SET quantity = quantity - $1, updated_at = NOW()
                WHERE product_id = $2 AND quantity >= $1
                RETURNING quantity
            """, amount, product_id)

            if remaining is not None:
                return {"success": True, "product_id": product_id, "quantity": remaining}

            stock = await conn.fetchval("""
                SELECT quantity FROM products WHERE product_id = $1
            """, product_id)
            if stock is None:
                return failure(ErrorKind.NOT_FOUND, Messages.PRODUCT_NOT_FOUND, product_id=product_id)

            self.logger.warning(
                f"Stock decrement refused for product {product_id}: requested {amount}, available {stock}"
            )
            return failure(
                ErrorKind.INSUFFICIENT_STOCK,
                f"Not enough stock. Available: {stock}, requested: {amount}.",
                product_id=product_id,
                available=stock
            )

    @staticmethod
    def _validate_product(product_data: Dict[str, Any]) -> Dict[str, Any]:
        """Check admin input before it reaches the table"""
        name = str(product_data.get("name") or "").strip()
        price = to_money(product_data.get("price"))
        try:
            quantity = int(product_data.get("quantity", 0))
        except (TypeError, ValueError):
            quantity = -1

        if not name:
            return failure(ErrorKind.VALIDATION, "Product name is required.")
        if price is None or price < Decimal("0"):
            return failure(ErrorKind.VALIDATION, "Price must be a non-negative amount.")
        if quantity < 0:
            return failure(ErrorKind.VALIDATION, "Quantity must be a non-negative whole number.")

        return {"success": True, "name": name, "price": price, "quantity": quantity}
