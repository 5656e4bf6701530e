# storefront/handlers/order_handler.py
from aiohttp import web
from ..models.order import Order
from ..services.order_service import OrderService
from ..services.payment_service import PaymentService
from ..utils.messages import Messages
from .base_handler import BaseHandler

class OrderHandler(BaseHandler):
    """Order history, detail and cash confirmation"""
    def __init__(self, db, payment_service: PaymentService):
        super().__init__(db)
        self.order_service = OrderService(db)
        self.payment_service = payment_service

    async def list_orders(self, request: web.Request) -> web.Response:
        user = self.current_user(request)
        orders = await self.order_service.list_user_orders(user.id)
        return self.respond({"success": True, "orders": orders})

    async def get_order(self, request: web.Request) -> web.Response:
        order_id = self.path_id(request, "order_id")
        if order_id is None:
            return self.invalid(Messages.INVALID_ORDER)

        result = await self.order_service.get_order(order_id, self.current_user(request))
        if not result["success"]:
            return self.respond(result)
        return self.respond({"success": True, "order": Order.model_validate(result["order"])})

    async def confirm(self, request: web.Request) -> web.Response:
        """Cash settlement"""
        order_id = self.path_id(request, "order_id")
        if order_id is None:
            return self.invalid(Messages.INVALID_ORDER)
        result = await self.payment_service.confirm_cash(order_id, self.current_user(request))
        return self.respond(result)
