# tests/test_cart_service.py
from datetime import datetime, timezone
from decimal import Decimal
import pytest
from conftest import calls_matching, sql_router
from storefront.services.cart_service import CartService

ADDED = datetime(2024, 6, 1, tzinfo=timezone.utc)

def product(quantity=5, name="Tea"):
    return {"product_id": 3, "name": name, "quantity": quantity}

def wire(conn, stock=5, in_cart=None):
    conn.fetchrow.side_effect = sql_router({"FROM products": product(stock)})
    conn.fetchval.side_effect = sql_router({"FROM cart_items": in_cart})

async def test_add_creates_line(db, conn):
    wire(conn)

    result = await CartService(db).add_item(1, 3, 2)

    assert result == {"success": True, "product_id": 3, "quantity": 2}
    upsert = calls_matching(conn.execute, "INSERT INTO cart_items")[0]
    assert upsert.args[1:] == (1, 3, 2)

async def test_add_counts_what_is_already_in_cart(db, conn):
    wire(conn, stock=5, in_cart=3)

    result = await CartService(db).add_item(1, 3, 3)

    assert result["error"] == "insufficient_stock"
    assert result["message"] == "Not enough stock for Tea. Available: 5, in cart: 6."
    assert result["available"] == 5
    conn.execute.assert_not_awaited()

async def test_add_up_to_stock_is_allowed(db, conn):
    wire(conn, stock=5, in_cart=3)

    result = await CartService(db).add_item(1, 3, 2)

    assert result["quantity"] == 5
    assert calls_matching(conn.execute, "INSERT INTO cart_items")[0].args[3] == 5

async def test_add_unknown_product(db, conn):
    conn.fetchrow.return_value = None
    result = await CartService(db).add_item(1, 3, 1)
    assert result["error"] == "not_found"
    conn.execute.assert_not_awaited()

@pytest.mark.parametrize("quantity", [0, -2, None])
async def test_add_rejects_non_positive_quantity(db, conn, quantity):
    result = await CartService(db).add_item(1, 3, quantity)
    assert result["message"] == "Invalid quantity."
    conn.fetchrow.assert_not_awaited()

class FakeCart:
    """In-memory cart_items table for one user, answering CartService's queries"""

    def __init__(self, conn, stock):
        self.lines = {}
        self.stock = stock
        conn.fetchrow.side_effect = sql_router({"FROM products": product(stock)})
        conn.fetchval.side_effect = sql_router({"FROM cart_items": self.current})
        conn.execute.side_effect = sql_router({"INSERT INTO cart_items": self.upsert})
        conn.fetch.side_effect = sql_router({"FROM cart_items ci": self.rows})

    def current(self, user_id, product_id):
        return self.lines.get(product_id)

    def upsert(self, user_id, product_id, quantity):
        self.lines[product_id] = quantity
        return "INSERT 0 1"

    def rows(self, user_id):
        return [
            {"product_id": product_id, "quantity": quantity, "created_at": ADDED, "updated_at": None,
             "name": "Tea", "price": Decimal("4.50"), "stock": self.stock, "image_url": None}
            for product_id, quantity in self.lines.items()
        ]

async def test_repeated_adds_never_exceed_stock(db, conn):
    cart = FakeCart(conn, stock=5)
    service = CartService(db)

    outcomes = [await service.add_item(1, 3, 2) for _ in range(4)]

    assert [o["success"] for o in outcomes] == [True, True, False, False]
    lines = await service.get_cart(1)
    assert lines[0]["quantity"] == 4
    assert all(line["quantity"] <= line["stock"] for line in lines)
    assert lines[0]["line_subtotal"] == Decimal("18.00")
    assert cart.lines == {3: 4}

async def test_set_quantity_checks_absolute_amount(db, conn):
    wire(conn, stock=5)

    over = await CartService(db).set_quantity(1, 3, 6)
    assert over["error"] == "insufficient_stock"
    assert over["message"] == "Not enough stock for Tea. Available: 5, in cart: 6."

    within = await CartService(db).set_quantity(1, 3, 4)
    assert within == {"success": True, "product_id": 3, "quantity": 4}
    update = calls_matching(conn.execute, "UPDATE cart_items")[0]
    assert update.args[1:] == (4, 1, 3)

async def test_set_quantity_of_line_not_in_cart(db, conn):
    wire(conn)
    conn.execute.return_value = "UPDATE 0"

    result = await CartService(db).set_quantity(1, 3, 2)

    assert result["error"] == "not_found"

@pytest.mark.parametrize("quantity", [0, -1])
async def test_set_quantity_zero_or_less_deletes(db, conn, quantity):
    conn.execute.return_value = "DELETE 1"

    result = await CartService(db).set_quantity(1, 3, quantity)

    assert result == {"success": True, "product_id": 3, "quantity": 0, "removed": True}
    delete = calls_matching(conn.execute, "DELETE FROM cart_items")[0]
    assert delete.args[1:] == (1, 3)
    conn.fetchrow.assert_not_awaited()

async def test_remove_item_reports_whether_a_line_went(db, conn):
    conn.execute.return_value = "DELETE 1"
    assert await CartService(db).remove_item(1, 3) is True
    conn.execute.return_value = "DELETE 0"
    assert await CartService(db).remove_item(1, 3) is False

async def test_clear_all_returns_count(db, conn):
    conn.execute.return_value = "DELETE 3"
    assert await CartService(db).clear_all(1) == 3
    assert conn.execute.await_args.args[1:] == (1,)

async def test_clear_subset_with_no_ids_touches_nothing(db, conn):
    assert await CartService(db).clear_subset(1, []) == 0
    conn.execute.assert_not_awaited()

async def test_clear_subset_dedupes_and_sorts(db, conn):
    conn.execute.return_value = "DELETE 2"

    cleared = await CartService(db).clear_subset(1, [5, 2, 5])

    assert cleared == 2
    assert conn.execute.await_args.args[1:] == (1, [2, 5])
