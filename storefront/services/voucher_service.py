# storefront/services/voucher_service.py
import logging
from typing import Dict, List, Optional, Any, Iterable
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from ..models.errors import ErrorKind, failure
from ..services.cart_service import CartService
from ..utils.formatters import CENT, to_money
from ..utils.messages import Messages

def normalize_code(code: Any) -> str:
    """Vouchers are matched trimmed and upper-cased"""
    return code.strip().upper() if isinstance(code, str) else ""

def is_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if expires_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at < now

def compute_discount(subtotal: Decimal, discount_percent: int) -> Decimal:
    """Discount in cents, half-up"""
    return (Decimal(subtotal) * Decimal(discount_percent) / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)

def validate_voucher(voucher: Optional[Dict[str, Any]], amount: Decimal,
                     now: Optional[datetime] = None) -> Dict[str, Any]:
    """Check a voucher row against a candidate amount.

    Rejections are reported in a fixed priority: unknown code, already used,
    expired, misconfigured percentage, then minimum spend.
    """
    if not voucher:
        return _reject(Messages.VOUCHER_INVALID)
    if voucher["is_used"]:
        return _reject(Messages.VOUCHER_USED)
    if is_expired(voucher.get("expires_at"), now):
        return _reject(Messages.VOUCHER_EXPIRED)

    discount_percent = int(voucher.get("discount_percent") or 0)
    if not 0 < discount_percent <= 100:
        return _reject(Messages.VOUCHER_MISCONFIGURED)

    min_spend = Decimal(voucher.get("min_spend") or 0)
    if Decimal(amount) < min_spend:
        return _reject(Messages.minimum_spend(min_spend), shortfall=min_spend - Decimal(amount))

    return {
        "valid": True,
        "code": voucher["code"],
        "discount_percent": discount_percent,
        "min_spend": min_spend
    }

def _reject(message: str, **extra: Any) -> Dict[str, Any]:
    result = {"valid": False, "error": ErrorKind.VALIDATION.value, "message": message}
    result.update(extra)
    return result

class VoucherService:
    """Discount code lookup, validation, pricing and consumption"""

    def __init__(self, db):
        self.db = db
        self.cart_service = CartService(db)
        self.logger = logging.getLogger(__name__)

    async def get_by_code(self, code: str) -> Optional[Dict[str, Any]]:
        """Fetch a voucher by its normalised code"""
        normalized = normalize_code(code)
        if not normalized:
            return None

        async with self.db.pool.acquire() as conn:
            voucher = await conn.fetchrow("""
                SELECT voucher_id, code, discount_percent, min_spend,
                       expires_at, is_used, created_at
                FROM vouchers
                WHERE code = $1
            """, normalized)
            return dict(voucher) if voucher else None

    async def validate(self, code: str, amount: Decimal) -> Dict[str, Any]:
        """Validate a code against a candidate subtotal"""
        if not normalize_code(code):
            return _reject(Messages.VOUCHER_REQUIRED)
        voucher = await self.get_by_code(code)
        return validate_voucher(voucher, amount)

    async def quote(self, user_id: int, selected_ids: Iterable[int], code: str) -> Dict[str, Any]:
        """Price a voucher against the selected cart lines without creating anything"""
        normalized = normalize_code(code)
        if not normalized:
            return failure(ErrorKind.VALIDATION, Messages.VOUCHER_REQUIRED)

        selected = set(selected_ids)
        if not selected:
            return failure(ErrorKind.VALIDATION, Messages.SELECT_ITEMS)

        cart = await self.cart_service.get_cart(user_id)
        if not cart:
            return failure(ErrorKind.VALIDATION, Messages.CART_EMPTY)

        subtotal = sum(
            (line["line_subtotal"] for line in cart if line["product_id"] in selected),
            Decimal("0.00")
        ).quantize(CENT)
        if subtotal <= 0:
            return failure(ErrorKind.VALIDATION, Messages.SELECTION_NOT_IN_CART)

        validation = await self.validate(normalized, subtotal)
        if not validation["valid"]:
            return failure(
                ErrorKind.VALIDATION,
                validation["message"],
                code=normalized,
                subtotal=subtotal,
                discount=Decimal("0.00"),
                total=subtotal
            )

        discount = compute_discount(subtotal, validation["discount_percent"])
        return {
            "success": True,
            "code": normalized,
            "subtotal": subtotal,
            "discount_percent": validation["discount_percent"],
            "min_spend": validation["min_spend"],
            "discount": discount,
            "total": subtotal - discount
        }

    async def mark_used(self, code: str, conn=None) -> bool:
        """Consume a voucher; a second call is a no-op"""
        normalized = normalize_code(code)
        if not normalized:
            return False

        async with self.db.connection(conn) as conn:
            result = await conn.execute("""
                UPDATE vouchers
                SET is_used = TRUE
                WHERE code = $1 AND is_used = FALSE
            """, normalized)
            return result == "UPDATE 1"

    async def mark_used_for_order(self, order_id: int) -> bool:
        """Consume the voucher an order was priced with, if any"""
        async with self.db.pool.acquire() as conn:
            code = await conn.fetchval("""
                SELECT voucher_code FROM orders WHERE order_id = $1
            """, order_id)
            if not code:
                return False
            return await self.mark_used(code, conn=conn)

    async def create_voucher(self, voucher_data: Dict[str, Any]) -> Dict[str, Any]:
        """Create a voucher (admin)"""
        code = normalize_code(voucher_data.get("code"))
        if not code:
            return failure(ErrorKind.VALIDATION, Messages.VOUCHER_REQUIRED)

        try:
            discount_percent = int(voucher_data.get("discount_percent") or 0)
        except (TypeError, ValueError):
            discount_percent = 0
        if not 0 < discount_percent <= 100:
            return failure(ErrorKind.VALIDATION, "Discount percent must be between 1 and 100.")

        min_spend = to_money(voucher_data.get("min_spend") or 0)
        if min_spend is None or min_spend < 0:
            return failure(ErrorKind.VALIDATION, "Minimum spend must be a non-negative amount.")

        async with self.db.pool.acquire() as conn:
            voucher_id = await conn.fetchval("""
                INSERT INTO vouchers (code, discount_percent, min_spend, expires_at, is_used)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (code) DO NOTHING
                RETURNING voucher_id
            """,
                code,
                discount_percent,
                min_spend,
                voucher_data.get("expires_at"),
                bool(voucher_data.get("is_used", False))
            )
            if voucher_id is None:
                return failure(ErrorKind.VALIDATION, f"Voucher code {code} already exists.")
            return {"success": True, "voucher_id": voucher_id, "code": code}

    async def list_vouchers(self) -> List[Dict[str, Any]]:
        """All vouchers, newest first"""
        async with self.db.pool.acquire() as conn:
            vouchers = await conn.fetch("""
                SELECT voucher_id, code, discount_percent, min_spend,
                       expires_at, is_used, created_at
                FROM vouchers
                ORDER BY created_at DESC, voucher_id DESC
            """)
            return [dict(v) for v in vouchers]
