# storefront/models/errors.py
from enum import Enum
from typing import Any, Dict, Optional

class ErrorKind(str, Enum):
    """Failure kinds reported by the ledgers and orchestrators"""
    VALIDATION = "validation_error"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    INSUFFICIENT_STOCK = "insufficient_stock"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    PROVIDER = "provider_error"
    INCONSISTENCY = "inconsistency_error"

class ProviderError(Exception):
    """Raised by provider clients when a call fails or is rejected"""

    def __init__(self, message: str, raw: Optional[Any] = None, status: Optional[int] = None):
        super().__init__(message)
        self.raw = raw
        self.status = status

def failure(kind: ErrorKind, message: str, **extra: Any) -> Dict[str, Any]:
    """Build a tagged failure result"""
    result = {
        "success": False,
        "error": kind.value,
        "message": message
    }
    result.update(extra)
    return result
