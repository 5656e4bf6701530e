# tests/test_checkout_service.py
from datetime import datetime, timezone
from decimal import Decimal
import asyncpg
from conftest import calls_matching, raises, sql_router
from storefront.config import Config
from storefront.services.checkout_service import CheckoutService, build_snapshot

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)

def cart_row(product_id=1, price="10.00", quantity=2, stock=5, name="A"):
    return {
        "product_id": product_id,
        "quantity": quantity,
        "name": name,
        "price": Decimal(price),
        "stock": stock,
        "image_url": None,
        "created_at": NOW,
        "updated_at": NOW,
        "line_subtotal": Decimal(price) * quantity,
    }

def locked_row(product_id=1, quantity=5, name="A", price="10.00"):
    return {"product_id": product_id, "name": name, "price": Decimal(price), "quantity": quantity}

def wire(conn, cart, locked, remaining=3, order_id=101):
    conn.fetch.side_effect = sql_router({
        "FROM cart_items": cart,
        "FOR UPDATE": locked,
    })
    conn.fetchval.side_effect = sql_router({
        "UPDATE products": remaining,
        "INSERT INTO orders": order_id,
    })

def test_build_snapshot_totals(monkeypatch):
    monkeypatch.setattr(Config, "TAX_RATE", Decimal("0.07"))
    monkeypatch.setattr(Config, "SHIPPING_FEE", Decimal("5"))

    snapshot = build_snapshot([cart_row(quantity=2)], discount_percent=10, voucher_code="SAVE10")

    assert snapshot.subtotal == Decimal("20.00")
    assert snapshot.tax == Decimal("1.40")
    assert snapshot.shipping_fee == Decimal("5.00")
    assert snapshot.discount == Decimal("2.00")
    assert snapshot.total == Decimal("24.40")
    assert snapshot.voucher_code == "SAVE10"
    assert snapshot.lines[0].product_name == "A"

def test_build_snapshot_without_discount_drops_code():
    snapshot = build_snapshot([cart_row()], discount_percent=None, voucher_code="SAVE10")
    assert snapshot.discount == Decimal("0.00")
    assert snapshot.voucher_code is None

async def test_checkout_creates_pending_order_and_takes_stock(db, conn):
    wire(conn, [cart_row(quantity=2, stock=5)], [locked_row(quantity=5)])

    result = await CheckoutService(db).checkout(1, [1])

    assert result["success"] is True
    assert result["order_id"] == 101
    assert result["status"] == "PENDING"
    assert result["total"] == Decimal("20.00")
    assert result["reference_id"].startswith("REF-")

    decrement = calls_matching(conn.fetchval, "UPDATE products")[0]
    assert decrement.args[1:] == (2, 1)

    items = conn.executemany.await_args.args[1]
    assert items == [(101, 1, "A", Decimal("10.00"), 2, Decimal("20.00"))]
    assert conn.rollbacks == 0
    assert conn.commits == 2

async def test_checkout_refuses_more_than_stock(db, conn):
    wire(conn, [cart_row(quantity=6, stock=5)], [locked_row(quantity=5)])

    result = await CheckoutService(db).checkout(1, [1])

    assert result["success"] is False
    assert result["error"] == "insufficient_stock"
    assert result["message"] == "Not enough stock for A. Available: 5, in cart: 6."
    assert conn.transactions == 0
    assert calls_matching(conn.fetchval, "UPDATE products") == []
    conn.executemany.assert_not_awaited()

async def test_used_voucher_aborts_checkout(db, conn):
    wire(conn, [cart_row()], [locked_row()])
    conn.fetchrow.side_effect = sql_router({
        "FROM vouchers": {
            "voucher_id": 1, "code": "SAVE10", "discount_percent": 10,
            "min_spend": Decimal("0"), "expires_at": None, "is_used": True, "created_at": NOW,
        }
    })

    result = await CheckoutService(db).checkout(1, [1], "save10")

    assert result["success"] is False
    assert result["error"] == "validation_error"
    assert result["message"] == "This voucher has already been used."
    assert calls_matching(conn.fetchval, "INSERT INTO orders") == []
    assert conn.transactions == 0

async def test_voucher_discount_is_frozen_into_order(db, conn):
    wire(conn, [cart_row()], [locked_row()])
    conn.fetchrow.side_effect = sql_router({
        "FROM vouchers": {
            "voucher_id": 1, "code": "SAVE10", "discount_percent": 10,
            "min_spend": Decimal("0"), "expires_at": None, "is_used": False, "created_at": NOW,
        }
    })

    result = await CheckoutService(db).checkout(1, [1], "save10")

    assert result["discount"] == Decimal("2.00")
    assert result["total"] == Decimal("18.00")
    assert result["voucher_code"] == "SAVE10"

async def test_stock_sold_meanwhile_rolls_back(db, conn):
    wire(conn, [cart_row(quantity=4, stock=5)], [locked_row(quantity=3)])

    result = await CheckoutService(db).checkout(1, [1])

    assert result["error"] == "insufficient_stock"
    assert result["message"] == "Not enough stock for A. Available: 3, in cart: 4."
    assert conn.rollbacks == 1
    assert calls_matching(conn.fetchval, "UPDATE products") == []

async def test_items_failure_reports_inconsistency_and_rolls_back(db, conn):
    wire(conn, [cart_row()], [locked_row()])
    conn.executemany.side_effect = raises(asyncpg.exceptions.ForeignKeyViolationError("no product"))

    result = await CheckoutService(db).checkout(1, [1])

    assert result["success"] is False
    assert result["error"] == "inconsistency_error"
    assert result["message"] == "Order created but failed to save items."
    assert result["reference_id"].startswith("REF-")
    assert conn.rollbacks == 2
    assert conn.commits == 0

async def test_empty_selection(db, conn):
    result = await CheckoutService(db).checkout(1, [])
    assert result["message"] == "Please select at least one item to checkout."
    conn.fetch.assert_not_awaited()

async def test_selection_not_in_cart(db, conn):
    wire(conn, [cart_row(product_id=1)], [])
    result = await CheckoutService(db).checkout(1, [7])
    assert result["message"] == "Selected items were not found in cart."

async def test_empty_cart(db, conn):
    wire(conn, [], [])
    result = await CheckoutService(db).checkout(1, [1])
    assert result["message"] == "Your cart is empty."
