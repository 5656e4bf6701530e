# storefront/services/payment_service.py
import logging
from typing import Any, AsyncIterator, Dict, Optional
from ..models.errors import ErrorKind, failure
from ..models.order import OrderStatus, PaymentMode
from ..models.payment import OutcomeStatus, PaymentOutcome
from ..models.session import CorrelationKind, CurrentUser, SessionContext
from ..services.correlation_service import CorrelationService
from ..services.nets_client import NetsQrClient
from ..services.order_service import OrderService
from ..services.payment_orchestrators import (
    CardOrchestrator, CashOrchestrator, QrOrchestrator, WalletOrchestrator
)
from ..services.paypal_client import PayPalClient
from ..services.settlement_service import SettlementService
from ..services.wallet_service import WalletService
from ..utils.formatters import to_money
from ..utils.messages import Messages

class PaymentService:
    """Pays a PENDING order through one of the payment modes and settles it"""

    def __init__(self, db, paypal: Optional[PayPalClient] = None, nets: Optional[NetsQrClient] = None,
                 correlations: Optional[CorrelationService] = None):
        self.db = db
        self.order_service = OrderService(db)
        self.wallet_service = WalletService(db)
        self.settlement = SettlementService(db)
        self.correlations = correlations or CorrelationService()
        self.cash = CashOrchestrator()
        self.card = CardOrchestrator(paypal)
        self.qr = QrOrchestrator(nets)
        self.wallet = WalletOrchestrator(self.wallet_service)
        self.logger = logging.getLogger(__name__)

    async def _load_payable(self, order_id: int, user: CurrentUser, allow_paid: bool = False,
                            allow_zero: bool = False) -> Dict[str, Any]:
        """Order owned by the user with a usable total; only cash accepts a zero total"""
        loaded = await self.order_service.get_order(order_id, user)
        if not loaded["success"]:
            return loaded

        order = loaded["order"]
        if order["user_id"] != user.id:
            return failure(ErrorKind.FORBIDDEN, Messages.ORDER_PAY_FORBIDDEN)
        if order["status"] == OrderStatus.PAID.value and not allow_paid:
            return failure(ErrorKind.VALIDATION, Messages.ORDER_ALREADY_PAID, order_id=order_id)

        total = to_money(order["total"])
        if total is None or total < 0 or (total == 0 and not allow_zero):
            return failure(ErrorKind.VALIDATION, Messages.INVALID_TOTAL)
        return loaded

    async def _resettle(self, order: Dict[str, Any], user: CurrentUser) -> Dict[str, Any]:
        """Repeat settlement for an order that is already PAID"""
        outcome = PaymentOutcome(
            status=OutcomeStatus.SETTLED,
            mode=PaymentMode(order["payment_mode"]),
            provider_ref=order["transaction_id"],
            provider_order_id=order["provider_order_id"]
        )
        return await self.settlement.finalize(order["order_id"], user.id, outcome)

    async def confirm_cash(self, order_id: int, user: CurrentUser) -> Dict[str, Any]:
        """Cash on confirmation; also settles orders fully covered by a voucher"""
        loaded = await self._load_payable(order_id, user, allow_paid=True, allow_zero=True)
        if not loaded["success"]:
            return loaded
        order = loaded["order"]
        if order["status"] == OrderStatus.PAID.value:
            return await self._resettle(order, user)

        handle = await self.cash.initiate({"order_id": order_id}, order["total"])
        outcome = await self.cash.confirm(handle)
        return await self.settlement.finalize(order_id, user.id, outcome)

    async def create_card_order(self, order_id: int, user: CurrentUser,
                                client_amount: Any = None) -> Dict[str, Any]:
        """Open a card processor order for the stored order total"""
        loaded = await self._load_payable(order_id, user)
        if not loaded["success"]:
            return loaded
        order = loaded["order"]

        created = await self.card.initiate({
            "reference": order["reference_id"] or f"ORDER-{order_id}",
            "currency": order["currency"]
        }, order["total"], client_amount)

        if not created["success"]:
            created["retry_order_id"] = order_id
            return created

        await self.order_service.set_provider_order(order_id, user.id, created["provider_order_id"])
        return {
            "success": True,
            "id": created["provider_order_id"],
            "order_id": order_id,
            "amount": created["amount"]
        }

    async def capture_card_order(self, order_id: int, user: CurrentUser,
                                 provider_order_id: Optional[str]) -> Dict[str, Any]:
        """Capture an approved card order and settle"""
        if not provider_order_id:
            return failure(ErrorKind.VALIDATION, Messages.MISSING_REFERENCE)

        loaded = await self._load_payable(order_id, user, allow_paid=True)
        if not loaded["success"]:
            return loaded
        order = loaded["order"]
        if order["status"] == OrderStatus.PAID.value:
            return await self._resettle(order, user)
        if order["provider_order_id"] != provider_order_id:
            self.logger.warning(
                f"Capture of {provider_order_id} refused for order {order_id}, "
                f"which was issued {order['provider_order_id']}"
            )
            return failure(ErrorKind.VALIDATION, Messages.PROVIDER_ORDER_MISMATCH, retry_order_id=order_id)

        outcome = await self.card.confirm({"provider_order_id": provider_order_id})
        if not outcome.settled:
            return failure(
                ErrorKind.PROVIDER,
                Messages.PAYMENT_NOT_COMPLETED,
                retry_order_id=order_id,
                raw=outcome.raw
            )

        return await self.settlement.finalize(order_id, user.id, outcome)

    async def start_qr_payment(self, order_id: int, context: SessionContext) -> Dict[str, Any]:
        """Request a QR code for the order and remember its reference"""
        loaded = await self._load_payable(order_id, context.user)
        if not loaded["success"]:
            return loaded
        order = loaded["order"]

        requested = await self.qr.initiate({"order_id": order_id}, order["total"])
        if not requested["success"]:
            requested["retry_order_id"] = order_id
            return requested

        self.correlations.register(context, requested["txn_ref"], CorrelationKind.ORDER, order_id)
        return {
            "success": True,
            "order_id": order_id,
            "txn_ref": requested["txn_ref"],
            "qr_code_url": requested["qr_code_url"],
            "amount": requested["amount"],
            "timer": requested["timer"]
        }

    def stream_qr_status(self, context: SessionContext, txn_ref: str,
                         timed_out: bool = False) -> Dict[str, Any]:
        """Status stream for a reference this session issued"""
        resolved = self.correlations.resolve(context, txn_ref)
        if not resolved["success"]:
            return resolved
        stream: AsyncIterator[Dict[str, Any]] = self.qr.stream_status(txn_ref, timed_out)
        return {"success": True, "stream": stream}

    async def qr_success(self, context: SessionContext, txn_ref: Optional[str]) -> Dict[str, Any]:
        """Settle the order behind a QR reference"""
        resolved = self.correlations.resolve(context, txn_ref, CorrelationKind.ORDER)
        if not resolved["success"]:
            return resolved

        order_id = resolved["target_id"]
        outcome = PaymentOutcome(status=OutcomeStatus.SETTLED, mode=PaymentMode.QR, provider_ref=txn_ref)
        result = await self.settlement.finalize(order_id, context.user.id, outcome)
        if result["success"]:
            self.correlations.discard(context, txn_ref)
        return result

    async def qr_fail(self, context: SessionContext, txn_ref: Optional[str] = None,
                      order_id: Optional[int] = None) -> Dict[str, Any]:
        """Forget the reference and point back at the order for a retry"""
        if txn_ref:
            resolved = self.correlations.resolve(context, txn_ref, CorrelationKind.ORDER)
            if resolved["success"]:
                order_id = order_id or resolved["target_id"]
                self.correlations.discard(context, txn_ref)

        self.logger.info(f"QR payment {txn_ref} reported failed for order {order_id}")
        return failure(ErrorKind.PROVIDER, Messages.PAYMENT_FAILED, retry_order_id=order_id)

    async def pay_with_wallet(self, order_id: int, user: CurrentUser) -> Dict[str, Any]:
        """Debit the wallet and settle"""
        loaded = await self._load_payable(order_id, user, allow_paid=True)
        if not loaded["success"]:
            return loaded
        order = loaded["order"]
        if order["status"] == OrderStatus.PAID.value:
            return await self._resettle(order, user)

        handle = await self.wallet.initiate({"order_id": order_id, "user_id": user.id}, order["total"])
        outcome = await self.wallet.confirm(handle)

        if outcome.failed:
            debit = outcome.raw or {}
            if debit.get("already_paid"):
                reloaded = await self.order_service.get_order(order_id, user)
                if reloaded["success"]:
                    return await self._resettle(reloaded["order"], user)
            return debit

        settled = await self.settlement.finalize(order_id, user.id, outcome, order_marked=True)
        settled["balance"] = (outcome.raw or {}).get("balance")
        return settled
