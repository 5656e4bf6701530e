# tests/test_payment_service.py
from decimal import Decimal
from unittest.mock import AsyncMock
import pytest
from storefront.models.errors import ProviderError
from storefront.models.payment import OutcomeStatus
from storefront.models.session import CorrelationKind, CurrentUser, SessionContext, UserRole
from storefront.services.payment_service import PaymentService

USER = CurrentUser(id=1)

def order(**overrides):
    row = {
        "order_id": 7, "user_id": 1, "reference_id": "ORD-ABC", "provider_order_id": None,
        "transaction_id": None, "payment_mode": "CARD", "status": "PENDING", "currency": "SGD",
        "total": Decimal("20.00"), "voucher_code": None,
        "items": [{"product_name": "Tea", "unit_price": Decimal("10.00"), "quantity": 2}],
    }
    row.update(overrides)
    return row

def settled(**extra):
    result = {"success": True, "order_id": 7, "already_settled": False, "warnings": [], "message": "ok"}
    result.update(extra)
    return result

@pytest.fixture
def paypal():
    return AsyncMock()

@pytest.fixture
def nets():
    return AsyncMock()

@pytest.fixture
def service(db, paypal, nets):
    service = PaymentService(db, paypal=paypal, nets=nets)
    service.order_service.get_order = AsyncMock(return_value={"success": True, "order": order()})
    service.order_service.set_provider_order = AsyncMock(return_value=True)
    service.settlement.finalize = AsyncMock(return_value=settled())
    service.wallet_service.debit_for_order = AsyncMock()
    return service

async def test_card_order_uses_stored_total(service, paypal):
    paypal.create_order.return_value = "PP-1"

    result = await service.create_card_order(7, USER, client_amount="1.00")

    assert result == {"success": True, "id": "PP-1", "order_id": 7, "amount": "20.00"}
    assert paypal.create_order.await_args.args == ("20.00", "SGD", "ORD-ABC")
    service.order_service.set_provider_order.assert_awaited_once_with(7, 1, "PP-1")

async def test_card_order_failure_offers_retry(service, paypal):
    paypal.create_order.side_effect = ProviderError("PayPal create order failed", raw={"name": "X"})

    result = await service.create_card_order(7, USER)

    assert result["error"] == "provider_error"
    assert result["retry_order_id"] == 7
    service.order_service.set_provider_order.assert_not_awaited()

def issued(provider_order_id="PP-1", **overrides):
    return {"success": True, "order": order(provider_order_id=provider_order_id, **overrides)}

async def test_capture_of_another_provider_order_is_refused(service, paypal):
    service.order_service.get_order.return_value = issued("PP-BIG", total=Decimal("1000.00"))

    result = await service.capture_card_order(7, USER, "PP-CHEAP")

    assert result["error"] == "validation_error"
    assert result["message"] == "This payment does not belong to the order being paid."
    paypal.capture_order.assert_not_awaited()
    service.settlement.finalize.assert_not_awaited()

async def test_capture_before_any_card_order_is_refused(service, paypal):
    result = await service.capture_card_order(7, USER, "PP-1")
    assert result["error"] == "validation_error"
    paypal.capture_order.assert_not_awaited()

async def test_capture_not_completed_leaves_order_pending(service, paypal):
    service.order_service.get_order.return_value = issued()
    paypal.capture_order.return_value = {"id": "PP-1", "status": "PAYER_ACTION_REQUIRED"}

    result = await service.capture_card_order(7, USER, "PP-1")

    assert result["error"] == "provider_error"
    assert result["message"] == "Payment not completed."
    assert result["retry_order_id"] == 7
    service.settlement.finalize.assert_not_awaited()

async def test_capture_settles_with_capture_reference(service, paypal):
    service.order_service.get_order.return_value = issued()
    paypal.capture_order.return_value = {
        "id": "PP-1",
        "status": "COMPLETED",
        "purchase_units": [{"payments": {"captures": [{"id": "CAP-1", "status": "COMPLETED"}]}}],
    }

    result = await service.capture_card_order(7, USER, "PP-1")

    assert result["success"] is True
    order_id, user_id, outcome = service.settlement.finalize.await_args.args
    assert (order_id, user_id) == (7, 1)
    assert outcome.provider_ref == "CAP-1"
    assert outcome.provider_order_id == "PP-1"

async def test_capture_requires_reference(service, paypal):
    result = await service.capture_card_order(7, USER, "")
    assert result["message"] == "Missing payment reference."
    paypal.capture_order.assert_not_awaited()

async def test_capture_of_paid_order_resettles_without_provider(service, paypal):
    service.order_service.get_order.return_value = {
        "success": True,
        "order": order(status="PAID", transaction_id="CAP-1", provider_order_id="PP-1"),
    }

    result = await service.capture_card_order(7, USER, "PP-1")

    assert result["success"] is True
    paypal.capture_order.assert_not_awaited()
    outcome = service.settlement.finalize.await_args.args[2]
    assert outcome.status == OutcomeStatus.SETTLED
    assert outcome.provider_ref == "CAP-1"

async def test_admin_cannot_pay_someone_elses_order(service, paypal):
    admin = CurrentUser(id=99, role=UserRole.ADMIN)
    result = await service.create_card_order(7, admin)
    assert result["error"] == "forbidden"
    paypal.create_order.assert_not_awaited()

async def test_zero_total_is_not_payable_by_card_or_qr(service, paypal, nets):
    service.order_service.get_order.return_value = {"success": True, "order": order(total=Decimal("0.00"))}

    assert (await service.create_card_order(7, USER))["message"] == "Invalid order total."
    assert (await service.start_qr_payment(7, SessionContext(user=USER)))["message"] == "Invalid order total."
    paypal.create_order.assert_not_awaited()
    nets.request_qr.assert_not_awaited()

async def test_fully_discounted_order_settles_by_confirmation(service):
    service.order_service.get_order.return_value = {
        "success": True,
        "order": order(payment_mode="CASH", total=Decimal("0.00"), discount=Decimal("20.00"), voucher_code="FREE"),
    }

    result = await service.confirm_cash(7, USER)

    assert result["success"] is True
    order_id, user_id, outcome = service.settlement.finalize.await_args.args
    assert (order_id, user_id) == (7, 1)
    assert outcome.settled

async def test_negative_total_is_refused_even_for_cash(service):
    service.order_service.get_order.return_value = {"success": True, "order": order(total=Decimal("-1.00"))}
    result = await service.confirm_cash(7, USER)
    assert result["message"] == "Invalid order total."
    service.settlement.finalize.assert_not_awaited()

async def test_cash_confirmation_settles(service):
    result = await service.confirm_cash(7, USER)

    assert result["success"] is True
    outcome = service.settlement.finalize.await_args.args[2]
    assert outcome.provider_ref.startswith("CASH-")

def qr_raw():
    return {"result": {"data": {"response_code": "00", "qr_code": "aW1n", "txn_retrieval_ref": "TXN-1"}}}

async def test_qr_success_settles_and_forgets_reference(service, nets):
    nets.request_qr.return_value = qr_raw()
    context = SessionContext(user=USER)

    started = await service.start_qr_payment(7, context)
    assert started["txn_ref"] == "TXN-1"
    assert context.correlations["TXN-1"].kind == CorrelationKind.ORDER

    result = await service.qr_success(context, "TXN-1")

    assert result["success"] is True
    outcome = service.settlement.finalize.await_args.args[2]
    assert outcome.mode.value == "QR"
    assert outcome.provider_ref == "TXN-1"
    assert "TXN-1" not in context.correlations

async def test_qr_success_with_unknown_reference(service):
    result = await service.qr_success(SessionContext(user=USER), "TXN-9")
    assert result["error"] == "not_found"
    service.settlement.finalize.assert_not_awaited()

async def test_qr_stream_needs_known_reference(service):
    context = SessionContext(user=USER)
    assert service.stream_qr_status(context, "TXN-9")["error"] == "not_found"

    service.correlations.register(context, "TXN-1", CorrelationKind.TOPUP, 5)
    opened = service.stream_qr_status(context, "TXN-1")
    assert opened["success"] is True
    await opened["stream"].aclose()

async def test_qr_fail_points_back_to_order(service, nets):
    nets.request_qr.return_value = qr_raw()
    context = SessionContext(user=USER)
    await service.start_qr_payment(7, context)

    result = await service.qr_fail(context, "TXN-1")

    assert result["message"] == "Payment failed or timed out. Please try again."
    assert result["retry_order_id"] == 7
    assert context.correlations == {}

async def test_wallet_shortfall_is_returned(service):
    shortfall = {"success": False, "error": "insufficient_funds", "insufficient": True,
                 "balance": "5.00", "message": "Insufficient balance."}
    service.wallet_service.debit_for_order.return_value = shortfall

    result = await service.pay_with_wallet(7, USER)

    assert result == shortfall
    service.settlement.finalize.assert_not_awaited()

async def test_wallet_success_settles_marked_order(service):
    service.wallet_service.debit_for_order.return_value = {
        "success": True, "transaction_ref": "WALLET-1-7", "balance": "30.00"
    }

    result = await service.pay_with_wallet(7, USER)

    assert result["balance"] == "30.00"
    service.wallet_service.debit_for_order.assert_awaited_once_with(1, 7, Decimal("20.00"))
    assert service.settlement.finalize.await_args.kwargs == {"order_marked": True}

async def test_wallet_race_with_other_payment_resettles(service):
    service.wallet_service.debit_for_order.return_value = {
        "success": False, "error": "validation_error", "already_paid": True, "message": "Order is already paid."
    }
    service.order_service.get_order.side_effect = [
        {"success": True, "order": order(payment_mode="WALLET")},
        {"success": True, "order": order(status="PAID", payment_mode="CARD", transaction_id="CAP-1")},
    ]

    result = await service.pay_with_wallet(7, USER)

    assert result["success"] is True
    outcome = service.settlement.finalize.await_args.args[2]
    assert outcome.provider_ref == "CAP-1"
    assert service.settlement.finalize.await_args.kwargs == {}
