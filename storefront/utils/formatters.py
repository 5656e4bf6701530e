# storefront/utils/formatters.py
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional
import pytz
from ..config import Config

CENT = Decimal("0.01")

def to_money(value: Any) -> Optional[Decimal]:
    """Parse a user or provider amount into a 2dp Decimal, None if not a finite number"""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)

def format_money(amount: Any) -> str:
    """Format an amount as a 2dp string, e.g. 15 -> '15.00'"""
    value = to_money(amount)
    return f"{value if value is not None else Decimal('0.00'):.2f}"

def format_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Render a timestamp in the storefront timezone"""
    if dt is None:
        return None
    local_tz = pytz.timezone(Config.TIMEZONE)
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    return dt.astimezone(local_tz).strftime("%Y-%m-%d %H:%M:%S")

def parse_id(value: Any) -> Optional[int]:
    """Parse a positive integer identifier"""
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None

def parse_int(value: Any) -> Optional[int]:
    """Parse a whole number, zero and negatives included; 1.7 and "1.7" are rejected"""
    if isinstance(value, (bool, float)):
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None

def parse_id_list(raw: Any) -> list:
    """Parse '1, 2,x,3' or [1, '2'] into [1, 2, 3], dropping anything malformed"""
    if not raw:
        return []
    parts = raw if isinstance(raw, (list, tuple)) else str(raw).split(",")
    ids = []
    for part in parts:
        parsed = parse_id(part)
        if parsed is not None and parsed not in ids:
            ids.append(parsed)
    return ids
