# storefront/app.py
import logging
from typing import Optional
from aiohttp import web
from .config import Config
from .database.database import Database
from .handlers import (
    SESSIONS,
    auth_middleware,
    error_middleware,
    AdminHandler,
    CartHandler,
    OrderHandler,
    PaymentHandler,
    WalletHandler
)
from .services.correlation_service import CorrelationService, SessionRegistry
from .services.nets_client import NetsQrClient
from .services.payment_service import PaymentService
from .services.paypal_client import PayPalClient
from .services.topup_service import TopupService

class StorefrontApp:
    def __init__(self, db: Optional[Database] = None, paypal: Optional[PayPalClient] = None,
                 nets: Optional[NetsQrClient] = None, connect: bool = True):
        """Build the web application; `connect=False` leaves the pool to the caller"""
        self.db = db or Database()
        self.connect = connect
        self.logger = logging.getLogger(__name__)

        correlations = CorrelationService()
        self.payment_service = PaymentService(self.db, paypal, nets, correlations)
        self.topup_service = TopupService(self.db, paypal, nets, correlations)

        self.application = web.Application(middlewares=[error_middleware, auth_middleware])
        self.application[SESSIONS] = SessionRegistry()
        self.application.on_startup.append(self.on_startup)
        self.application.on_cleanup.append(self.on_cleanup)
        self.setup_handlers()

    def setup_handlers(self):
        """Register the routes"""
        cart = CartHandler(self.db)
        orders = OrderHandler(self.db, self.payment_service)
        payments = PaymentHandler(self.db, self.payment_service)
        wallet = WalletHandler(self.db, self.topup_service)
        admin = AdminHandler(self.db)

        self.application.add_routes([
            # Catalogue and cart
            web.get("/products", cart.list_products),
            web.get("/cart", cart.view_cart),
            web.get("/cart/items", cart.view_cart),
            web.post("/cart/items", cart.add_item),
            web.post("/cart/items/{product_id}", cart.set_quantity),
            web.delete("/cart/items/{product_id}", cart.remove_item),
            web.delete("/cart", cart.clear_cart),
            web.post("/cart/voucher", cart.voucher_quote),
            web.post("/checkout", cart.checkout),

            # Orders
            web.get("/orders", orders.list_orders),
            web.get("/orders/{order_id}", orders.get_order),
            web.post("/orders/{order_id}/confirm", orders.confirm),

            # Order payments
            web.post("/payments/card/create", payments.create_card_order),
            web.post("/payments/card/capture", payments.capture_card_order),
            web.get("/payments/qr/status/{txn_ref}", payments.qr_status),
            web.get("/payments/qr/success", payments.qr_success),
            web.get("/payments/qr/fail", payments.qr_fail),
            web.post("/payments/qr/{order_id}", payments.start_qr),
            web.post("/payments/wallet/{order_id}", payments.pay_with_wallet),

            # Wallet
            web.get("/wallet", wallet.show_wallet),
            web.post("/wallet/topup", wallet.create_topup),
            web.post("/wallet/topup/card/create", wallet.create_card_order),
            web.post("/wallet/topup/card/capture", wallet.capture_card_order),
            web.post("/wallet/topup/qr", wallet.start_qr),
            web.get("/wallet/topup/qr/success", wallet.qr_success),
            web.get("/wallet/topup/qr/fail", wallet.qr_fail),

            # Admin
            web.get("/admin/vouchers", admin.list_vouchers),
            web.post("/admin/vouchers", admin.create_voucher),
            web.post("/admin/products", admin.add_product),
            web.put("/admin/products/{product_id}", admin.update_product),
            web.delete("/admin/products/{product_id}", admin.delete_product),
        ])

    async def on_startup(self, app: web.Application):
        if self.connect:
            await self.db.connect()
        self.logger.info("Storefront started")

    async def on_cleanup(self, app: web.Application):
        if self.connect:
            await self.db.close()
        self.logger.info("Storefront stopped")

    def run(self):
        """Serve until interrupted"""
        web.run_app(self.application, host=Config.HOST, port=Config.PORT)
