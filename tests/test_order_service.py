# tests/test_order_service.py
import re
from datetime import datetime, timezone
from decimal import Decimal
from conftest import answers, calls_matching, sql_router
from storefront.models.order import PaymentMode
from storefront.models.session import CurrentUser, UserRole
from storefront.services.order_service import OrderService, _to_base36, generate_reference

CAPTURED = datetime(2024, 6, 1, 9, 30, tzinfo=timezone.utc)

def order_row(**overrides):
    row = {
        "order_id": 7, "user_id": 1, "reference_id": "REF-ABC-1234",
        "provider_order_id": None, "transaction_id": None,
        "payment_mode": "CASH", "status": "PENDING", "currency": "SGD",
        "subtotal": Decimal("20.00"), "tax": Decimal("0.00"), "shipping_fee": Decimal("0.00"),
        "discount": Decimal("0.00"), "total": Decimal("20.00"), "voucher_code": None,
        "created_at": CAPTURED, "captured_at": None,
    }
    row.update(overrides)
    return row

def test_base36():
    assert _to_base36(0) == "0"
    assert _to_base36(35) == "Z"
    assert _to_base36(36) == "10"

def test_reference_format():
    assert re.fullmatch(r"REF-[0-9A-Z]+-[0-9A-Z]{4}", generate_reference())
    assert generate_reference() != generate_reference()

async def test_mark_paid_moves_pending_to_paid(db, conn):
    conn.fetchrow.side_effect = sql_router({"UPDATE orders": {"order_id": 7, "captured_at": CAPTURED}})

    result = await OrderService(db).mark_paid(7, 1, PaymentMode.CARD, "CAP-1", "PP-1")

    assert result == {"success": True, "order_id": 7, "already_paid": False, "captured_at": CAPTURED}
    update = calls_matching(conn.fetchrow, "UPDATE orders")[0]
    assert "status = $7" in update.args[0]
    assert update.args[1:] == ("PAID", "CARD", "CAP-1", "PP-1", 7, 1, "PENDING")

async def test_mark_paid_twice_keeps_first_capture(db, conn):
    conn.fetchrow.side_effect = sql_router({
        "UPDATE orders": answers({"order_id": 7, "captured_at": CAPTURED}, None),
        "SELECT user_id, status": {"user_id": 1, "status": "PAID", "captured_at": CAPTURED},
    })
    service = OrderService(db)

    first = await service.mark_paid(7, 1, PaymentMode.QR, "TXN-1")
    second = await service.mark_paid(7, 1, PaymentMode.QR, "TXN-1")

    assert first["already_paid"] is False
    assert second["success"] is True
    assert second["already_paid"] is True
    assert second["captured_at"] == CAPTURED

async def test_mark_paid_other_users_order(db, conn):
    conn.fetchrow.side_effect = sql_router({
        "UPDATE orders": None,
        "SELECT user_id, status": {"user_id": 2, "status": "PENDING", "captured_at": None},
    })
    result = await OrderService(db).mark_paid(7, 1, PaymentMode.CASH, "CASH-1")
    assert result["error"] == "forbidden"

async def test_mark_paid_unknown_order(db, conn):
    conn.fetchrow.return_value = None
    result = await OrderService(db).mark_paid(7, 1, PaymentMode.CASH, "CASH-1")
    assert result["error"] == "not_found"

async def test_get_order_checks_owner(db, conn):
    conn.fetchrow.return_value = order_row(user_id=2)
    conn.fetch.return_value = []
    service = OrderService(db)

    denied = await service.get_order(7, CurrentUser(id=1))
    allowed = await service.get_order(7, CurrentUser(id=99, role=UserRole.ADMIN))

    assert denied["error"] == "forbidden"
    assert allowed["success"] is True
    assert allowed["order"]["items"] == []

async def test_get_order_includes_items(db, conn):
    conn.fetchrow.return_value = order_row()
    conn.fetch.return_value = [{
        "product_id": 1, "product_name": "A", "unit_price": Decimal("10.00"),
        "quantity": 2, "subtotal": Decimal("20.00"),
    }]

    result = await OrderService(db).get_order(7, CurrentUser(id=1))

    assert result["order"]["reference_id"] == "REF-ABC-1234"
    assert result["order"]["items"][0]["product_name"] == "A"

async def test_order_product_ids_are_sorted(db, conn):
    conn.fetch.return_value = [{"product_id": 3}, {"product_id": 1}]
    assert await OrderService(db).get_order_product_ids(7) == [1, 3]

async def test_provider_order_is_stored_on_pending_order(db, conn):
    assert await OrderService(db).set_provider_order(7, 1, "PP-1") is True

    query, *params = conn.execute.await_args.args
    assert "SET provider_order_id = $1" in query
    assert params == ["PP-1", 7, 1, "PENDING"]

async def test_provider_order_not_stored_on_paid_order(db, conn):
    conn.execute.return_value = "UPDATE 0"
    assert await OrderService(db).set_provider_order(7, 1, "PP-1") is False
