# storefront/handlers/payment_handler.py
from aiohttp import web
from ..services.payment_service import PaymentService
from ..utils.formatters import parse_id
from ..utils.messages import Messages
from .base_handler import BaseHandler, dumps

class PaymentHandler(BaseHandler):
    """Card, QR and wallet payment of an order"""
    def __init__(self, db, payment_service: PaymentService):
        super().__init__(db)
        self.payment_service = payment_service

    async def create_card_order(self, request: web.Request) -> web.Response:
        """Server decides the amount; a client amount is only compared"""
        body = await self.read_json(request)
        order_id = parse_id(body.get("order_id"))
        if order_id is None:
            return self.invalid(Messages.INVALID_ORDER)
        result = await self.payment_service.create_card_order(
            order_id, self.current_user(request), body.get("amount")
        )
        return self.respond(result)

    async def capture_card_order(self, request: web.Request) -> web.Response:
        body = await self.read_json(request)
        order_id = parse_id(body.get("order_id"))
        if order_id is None:
            return self.invalid(Messages.INVALID_ORDER)
        result = await self.payment_service.capture_card_order(
            order_id, self.current_user(request), body.get("provider_order_id")
        )
        return self.respond(result)

    async def start_qr(self, request: web.Request) -> web.Response:
        order_id = self.path_id(request, "order_id")
        if order_id is None:
            return self.invalid(Messages.INVALID_ORDER)
        result = await self.payment_service.start_qr_payment(order_id, self.session(request))
        return self.respond(result)

    async def qr_status(self, request: web.Request) -> web.StreamResponse:
        """Server-sent events: every raw status response, then one terminal event"""
        txn_ref = request.match_info["txn_ref"]
        timed_out = request.query.get("timed_out") in ("1", "true")

        opened = self.payment_service.stream_qr_status(self.session(request), txn_ref, timed_out)
        if not opened["success"]:
            return self.respond(opened)

        response = web.StreamResponse(headers={
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive"
        })
        await response.prepare(request)

        stream = opened["stream"]
        try:
            async for event in stream:
                await response.write(f"data: {dumps(event)}\n\n".encode())
        except ConnectionResetError:
            self.logger.info(f"QR status client for {txn_ref} disconnected")
            return response
        finally:
            await stream.aclose()

        await response.write_eof()
        return response

    async def qr_success(self, request: web.Request) -> web.Response:
        result = await self.payment_service.qr_success(self.session(request), request.query.get("txn"))
        return self.respond(result)

    async def qr_fail(self, request: web.Request) -> web.Response:
        result = await self.payment_service.qr_fail(
            self.session(request), request.query.get("txn"), parse_id(request.query.get("order_id"))
        )
        return self.respond(result)

    async def pay_with_wallet(self, request: web.Request) -> web.Response:
        order_id = self.path_id(request, "order_id")
        if order_id is None:
            return self.invalid(Messages.INVALID_ORDER)
        result = await self.payment_service.pay_with_wallet(order_id, self.current_user(request))
        return self.respond(result)
