# storefront/services/topup_service.py
import logging
from typing import Any, Dict, Optional
import asyncpg
from ..config import Config
from ..models.errors import ErrorKind, failure
from ..models.order import PaymentMode
from ..models.session import CorrelationKind, CurrentUser, SessionContext
from ..models.wallet import TransactionStatus
from ..services.correlation_service import CorrelationService
from ..services.nets_client import NetsQrClient
from ..services.payment_orchestrators import CardOrchestrator, QrOrchestrator
from ..services.paypal_client import PayPalClient
from ..services.wallet_service import WalletService
from ..utils.formatters import format_money
from ..utils.messages import Messages

class TopupService:
    """Wallet top-ups funded by the card processor or the QR bank"""

    def __init__(self, db, paypal: Optional[PayPalClient] = None, nets: Optional[NetsQrClient] = None,
                 correlations: Optional[CorrelationService] = None):
        self.db = db
        self.wallet_service = WalletService(db)
        self.correlations = correlations or CorrelationService()
        self.card = CardOrchestrator(paypal)
        self.qr = QrOrchestrator(nets)
        self.logger = logging.getLogger(__name__)

    async def create(self, user: CurrentUser, amount: Any) -> Dict[str, Any]:
        """Open a top-up for a later card payment"""
        created = await self.wallet_service.create_topup(user.id, amount)
        if created["success"]:
            created["amount"] = format_money(created["amount"])
        return created

    async def create_card_order(self, user: CurrentUser, transaction_id: int,
                                client_amount: Any = None) -> Dict[str, Any]:
        """Card processor order for the stored top-up amount"""
        owned = await self.wallet_service.get_owned_topup(transaction_id, user.id)
        if not owned["success"]:
            return owned
        tx = owned["transaction"]
        if tx["status"] == TransactionStatus.COMPLETED.value:
            return failure(ErrorKind.VALIDATION, Messages.TRANSACTION_COMPLETED)

        created = await self.card.initiate({
            "reference": f"WALLET-TOPUP-{user.id}-{transaction_id}",
            "currency": Config.CURRENCY
        }, tx["amount"], client_amount)
        if not created["success"]:
            return created

        await self.wallet_service.mark_provider_order_created(
            transaction_id, user.id, created["provider_order_id"]
        )
        return {
            "success": True,
            "id": created["provider_order_id"],
            "transaction_id": transaction_id,
            "amount": created["amount"]
        }

    async def capture_card_order(self, user: CurrentUser, transaction_id: int,
                                 provider_order_id: Optional[str]) -> Dict[str, Any]:
        """Capture and credit; an incomplete capture marks the top-up FAILED"""
        if not provider_order_id:
            return failure(ErrorKind.VALIDATION, Messages.MISSING_REFERENCE)

        owned = await self.wallet_service.get_owned_topup(transaction_id, user.id)
        if not owned["success"]:
            return owned
        tx = owned["transaction"]
        if tx["status"] == TransactionStatus.COMPLETED.value:
            return {"success": True, "already_completed": True, "transaction_id": transaction_id,
                    "message": Messages.TOPUP_SUCCESS}
        if tx.get("provider_order_id") != provider_order_id:
            self.logger.warning(
                f"Capture of {provider_order_id} refused for top-up {transaction_id}, "
                f"which was issued {tx.get('provider_order_id')}"
            )
            return failure(ErrorKind.VALIDATION, Messages.PROVIDER_ORDER_MISMATCH)

        outcome = await self.card.confirm({"provider_order_id": provider_order_id})
        if not outcome.settled:
            await self._mark_failed(transaction_id, user.id, outcome.raw or {"error": outcome.error})
            return failure(ErrorKind.PROVIDER, Messages.PAYMENT_NOT_COMPLETED, raw=outcome.raw)

        completed = await self.wallet_service.complete_topup(
            transaction_id, user.id, outcome.provider_ref, outcome.raw, PaymentMode.CARD
        )
        if completed["success"]:
            completed["message"] = Messages.TOPUP_SUCCESS
        return completed

    async def start_qr(self, context: SessionContext, amount: Any) -> Dict[str, Any]:
        """Create a top-up and request its QR code"""
        user_id = context.user.id
        created = await self.wallet_service.create_topup(user_id, amount)
        if not created["success"]:
            return created
        transaction_id = created["transaction_id"]

        requested = await self.qr.initiate({"transaction_id": transaction_id}, created["amount"])
        if not requested["success"]:
            await self._mark_failed(transaction_id, user_id, requested.get("raw"))
            return requested

        await self.wallet_service.mark_qr_created(
            transaction_id, user_id, requested["txn_ref"], requested["raw"]
        )
        self.correlations.register(context, requested["txn_ref"], CorrelationKind.TOPUP, transaction_id)
        return {
            "success": True,
            "transaction_id": transaction_id,
            "txn_ref": requested["txn_ref"],
            "qr_code_url": requested["qr_code_url"],
            "amount": requested["amount"],
            "timer": requested["timer"]
        }

    async def qr_success(self, context: SessionContext, txn_ref: Optional[str]) -> Dict[str, Any]:
        """Credit the top-up behind a QR reference"""
        resolved = self.correlations.resolve(context, txn_ref, CorrelationKind.TOPUP)
        if not resolved["success"]:
            return resolved

        completed = await self.wallet_service.complete_topup(
            resolved["target_id"], context.user.id, txn_ref, {"txn": txn_ref}, PaymentMode.QR
        )
        if completed["success"]:
            self.correlations.discard(context, txn_ref)
            completed["message"] = Messages.TOPUP_SUCCESS
        return completed

    async def qr_fail(self, context: SessionContext, txn_ref: Optional[str]) -> Dict[str, Any]:
        """Mark the mapped top-up FAILED if the reference is known"""
        resolved = self.correlations.resolve(context, txn_ref, CorrelationKind.TOPUP)
        if resolved["success"]:
            await self._mark_failed(resolved["target_id"], context.user.id, {"txn": txn_ref, "fail": True})
            self.correlations.discard(context, txn_ref)
        return failure(ErrorKind.PROVIDER, Messages.TOPUP_FAILED)

    async def _mark_failed(self, transaction_id: int, user_id: int, raw_payload: Any) -> None:
        try:
            await self.wallet_service.mark_failed(transaction_id, user_id, raw_payload)
        except (asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            self.logger.warning(f"Top-up {transaction_id} could not be marked FAILED: {e}")
