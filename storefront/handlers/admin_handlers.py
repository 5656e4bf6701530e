# storefront/handlers/admin_handlers.py
from datetime import datetime, timezone
from aiohttp import web
from ..models.voucher import Voucher
from ..services.product_service import ProductService
from ..services.voucher_service import VoucherService
from ..utils.messages import Messages
from .base_handler import BaseHandler

class AdminHandler(BaseHandler):
    """Admin-only product and voucher management"""

    def __init__(self, db):
        super().__init__(db)
        self.product_service = ProductService(db)
        self.voucher_service = VoucherService(db)

    async def list_vouchers(self, request: web.Request) -> web.Response:
        if not self.is_admin(request):
            return self.forbidden()
        vouchers = await self.voucher_service.list_vouchers()
        return self.respond({
            "success": True,
            "vouchers": [Voucher.model_validate(voucher) for voucher in vouchers]
        })

    async def create_voucher(self, request: web.Request) -> web.Response:
        """Create a voucher; `expires_at` is an ISO 8601 timestamp, UTC if naive"""
        if not self.is_admin(request):
            return self.forbidden()

        body = await self.read_json(request)
        expires_at = body.get("expires_at")
        if expires_at:
            try:
                expires_at = datetime.fromisoformat(str(expires_at))
            except ValueError:
                return self.invalid("Expiry must be an ISO 8601 date.")
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
        body["expires_at"] = expires_at or None

        result = await self.voucher_service.create_voucher(body)
        if result["success"]:
            self.logger.info(f"Admin {self.current_user(request).id} created voucher {result['code']}")
        return self.respond(result, 201 if result["success"] else None)

    async def add_product(self, request: web.Request) -> web.Response:
        if not self.is_admin(request):
            return self.forbidden()
        result = await self.product_service.add_product(await self.read_json(request))
        return self.respond(result, 201 if result["success"] else None)

    async def update_product(self, request: web.Request) -> web.Response:
        if not self.is_admin(request):
            return self.forbidden()
        product_id = self.path_id(request, "product_id")
        if product_id is None:
            return self.invalid(Messages.INVALID_PRODUCT)
        result = await self.product_service.update_product(product_id, await self.read_json(request))
        return self.respond(result)

    async def delete_product(self, request: web.Request) -> web.Response:
        if not self.is_admin(request):
            return self.forbidden()
        product_id = self.path_id(request, "product_id")
        if product_id is None:
            return self.invalid(Messages.INVALID_PRODUCT)
        result = await self.product_service.delete_product(product_id)
        if result["success"]:
            self.logger.info(f"Admin {self.current_user(request).id} deleted product {product_id}")
        return self.respond(result)
