# storefront/services/settlement_service.py
import logging
from typing import Any, Dict, List
import asyncpg
from ..models.payment import PaymentOutcome
from ..services.cart_service import CartService
from ..services.order_service import OrderService
from ..services.voucher_service import VoucherService
from ..utils.messages import Messages

class SettlementService:
    """Finalizes a settled payment: order to PAID, voucher consumed, cart cleared"""

    def __init__(self, db):
        self.db = db
        self.order_service = OrderService(db)
        self.voucher_service = VoucherService(db)
        self.cart_service = CartService(db)
        self.logger = logging.getLogger(__name__)

    async def finalize(self, order_id: int, user_id: int, outcome: PaymentOutcome,
                       order_marked: bool = False) -> Dict[str, Any]:
        """Apply a settled outcome to an order.

        Marking the order PAID is the only step that can fail the call. The
        voucher and cart follow-ups are retried on every call and their
        failures are reported back as warnings. `order_marked` is set by
        callers that moved the order to PAID themselves (wallet debit).
        """
        if order_marked:
            paid = {"success": True, "already_paid": False}
        else:
            paid = await self.order_service.mark_paid(
                order_id, user_id, outcome.mode, outcome.provider_ref, outcome.provider_order_id
            )
            if not paid["success"]:
                return paid

        warnings: List[str] = []

        try:
            await self.voucher_service.mark_used_for_order(order_id)
        except (asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            self.logger.warning(f"Order {order_id}: voucher could not be marked used: {e}")
            warnings.append("voucher")

        try:
            product_ids = await self.order_service.get_order_product_ids(order_id)
            if product_ids:
                await self.cart_service.clear_subset(user_id, product_ids)
        except (asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            self.logger.warning(f"Order {order_id}: purchased items could not be cleared from cart: {e}")
            warnings.append("cart")

        self.logger.info(
            f"Order {order_id} settled via {outcome.mode.value} ({outcome.provider_ref})"
            + (" [repeat]" if paid["already_paid"] else "")
        )
        return {
            "success": True,
            "order_id": order_id,
            "already_settled": paid["already_paid"],
            "transaction_ref": outcome.provider_ref,
            "warnings": warnings,
            "message": Messages.settled(outcome.mode, warnings)
        }
