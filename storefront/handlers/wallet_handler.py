# storefront/handlers/wallet_handler.py
from aiohttp import web
from ..models.wallet import Wallet, WalletTransaction
from ..services.topup_service import TopupService
from ..services.wallet_service import WalletService
from ..utils.formatters import parse_id
from ..utils.messages import Messages
from .base_handler import BaseHandler

class WalletHandler(BaseHandler):
    """Wallet balance, history and top-ups"""

    def __init__(self, db, topup_service: TopupService):
        super().__init__(db)
        self.wallet_service = WalletService(db)
        self.topup_service = topup_service

    async def show_wallet(self, request: web.Request) -> web.Response:
        """Balance and the latest transactions"""
        user = self.current_user(request)
        wallet = await self.wallet_service.get_wallet(user.id)
        transactions = await self.wallet_service.list_transactions(user.id)
        return self.respond({
            "success": True,
            "wallet": Wallet.model_validate(wallet),
            "transactions": [WalletTransaction.model_validate(tx) for tx in transactions]
        })

    async def create_topup(self, request: web.Request) -> web.Response:
        body = await self.read_json(request)
        result = await self.topup_service.create(self.current_user(request), body.get("amount"))
        return self.respond(result, 201 if result["success"] else None)

    async def create_card_order(self, request: web.Request) -> web.Response:
        body = await self.read_json(request)
        transaction_id = parse_id(body.get("transaction_id"))
        if transaction_id is None:
            return self.invalid(Messages.TRANSACTION_NOT_FOUND)
        result = await self.topup_service.create_card_order(
            self.current_user(request), transaction_id, body.get("amount")
        )
        return self.respond(result)

    async def capture_card_order(self, request: web.Request) -> web.Response:
        body = await self.read_json(request)
        transaction_id = parse_id(body.get("transaction_id"))
        if transaction_id is None:
            return self.invalid(Messages.TRANSACTION_NOT_FOUND)
        result = await self.topup_service.capture_card_order(
            self.current_user(request), transaction_id, body.get("provider_order_id")
        )
        return self.respond(result)

    async def start_qr(self, request: web.Request) -> web.Response:
        body = await self.read_json(request)
        result = await self.topup_service.start_qr(self.session(request), body.get("amount"))
        return self.respond(result)

    async def qr_success(self, request: web.Request) -> web.Response:
        result = await self.topup_service.qr_success(self.session(request), request.query.get("txn"))
        return self.respond(result)

    async def qr_fail(self, request: web.Request) -> web.Response:
        result = await self.topup_service.qr_fail(self.session(request), request.query.get("txn"))
        return self.respond(result)
