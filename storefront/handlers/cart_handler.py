# storefront/handlers/cart_handler.py
from decimal import Decimal
from aiohttp import web
from ..models.cart import CartLine
from ..models.product import Product
from ..services.cart_service import CartService
from ..services.checkout_service import CheckoutService
from ..services.product_service import ProductService
from ..services.voucher_service import VoucherService
from ..utils.formatters import parse_id, parse_id_list, parse_int
from ..utils.messages import Messages
from .base_handler import BaseHandler

class CartHandler(BaseHandler):
    """Catalogue, cart, voucher quote and checkout"""
    def __init__(self, db):
        super().__init__(db)
        self.product_service = ProductService(db)
        self.cart_service = CartService(db)
        self.voucher_service = VoucherService(db)
        self.checkout_service = CheckoutService(db)

    async def list_products(self, request: web.Request) -> web.Response:
        products = await self.product_service.list_products()
        return self.respond({
            "success": True,
            "products": [Product.model_validate(product) for product in products]
        })

    async def view_cart(self, request: web.Request) -> web.Response:
        """Cart lines with their subtotals and the cart total"""
        user = self.current_user(request)
        lines = await self.cart_service.get_cart(user.id)
        items = []
        for row in lines:
            line = CartLine.model_validate(row)
            items.append({
                **line.model_dump(),
                "line_subtotal": line.line_subtotal,
                "exceeds_stock": line.exceeds_stock
            })
        return self.respond({
            "success": True,
            "items": items,
            "total": sum((row["line_subtotal"] for row in lines), Decimal("0.00"))
        })

    async def add_item(self, request: web.Request) -> web.Response:
        user = self.current_user(request)
        body = await self.read_json(request)
        product_id = parse_id(body.get("product_id"))
        if product_id is None:
            return self.invalid(Messages.INVALID_PRODUCT)
        quantity = parse_id(body.get("quantity", 1))
        if quantity is None:
            return self.invalid(Messages.INVALID_QUANTITY)
        return self.respond(await self.cart_service.add_item(user.id, product_id, quantity))

    async def set_quantity(self, request: web.Request) -> web.Response:
        user = self.current_user(request)
        product_id = self.path_id(request, "product_id")
        if product_id is None:
            return self.invalid(Messages.INVALID_PRODUCT)
        body = await self.read_json(request)
        quantity = parse_int(body.get("quantity"))
        if quantity is None:
            return self.invalid(Messages.INVALID_QUANTITY)
        return self.respond(await self.cart_service.set_quantity(user.id, product_id, quantity))

    async def remove_item(self, request: web.Request) -> web.Response:
        user = self.current_user(request)
        product_id = self.path_id(request, "product_id")
        if product_id is None:
            return self.invalid(Messages.INVALID_PRODUCT)
        removed = await self.cart_service.remove_item(user.id, product_id)
        return self.respond({"success": True, "removed": removed})

    async def clear_cart(self, request: web.Request) -> web.Response:
        user = self.current_user(request)
        cleared = await self.cart_service.clear_all(user.id)
        return self.respond({"success": True, "cleared": cleared})

    async def voucher_quote(self, request: web.Request) -> web.Response:
        """Preview a voucher against the selected lines"""
        user = self.current_user(request)
        body = await self.read_json(request)
        quote = await self.voucher_service.quote(
            user.id, parse_id_list(body.get("selected")), body.get("code")
        )
        return self.respond(quote)

    async def checkout(self, request: web.Request) -> web.Response:
        user = self.current_user(request)
        body = await self.read_json(request)
        order = await self.checkout_service.checkout(
            user.id, parse_id_list(body.get("selected")), body.get("voucher_code")
        )
        return self.respond(order, 201 if order["success"] else None)
