# storefront/config.py
import os
import logging
from decimal import Decimal
from pathlib import Path
from dotenv import load_dotenv
from typing import List

# Load environment variables
load_dotenv()

# Base directory of the project
BASE_DIR = Path(__file__).resolve().parent.parent

class Config:
    """Configuration settings for the storefront"""

    # Database settings
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    # Server settings
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8080"))

    # Admin settings
    ADMIN_IDS: List[int] = [
        int(id_) for id_ in os.getenv("ADMIN_IDS", "").split(",")
        if id_.strip().isdigit()
    ]

    # Pricing settings
    CURRENCY: str = os.getenv("CURRENCY", "SGD")
    TAX_RATE: Decimal = Decimal(os.getenv("TAX_RATE", "0"))
    SHIPPING_FEE: Decimal = Decimal(os.getenv("SHIPPING_FEE", "0"))

    # Card processor (PayPal REST)
    PAYPAL_CLIENT_ID: str = os.getenv("PAYPAL_CLIENT_ID", "")
    PAYPAL_CLIENT_SECRET: str = os.getenv("PAYPAL_CLIENT_SECRET", "")
    PAYPAL_API: str = os.getenv("PAYPAL_API", "https://api.sandbox.paypal.com")

    # QR bank (NETS QR)
    NETS_API_KEY: str = os.getenv("NETS_API_KEY", "")
    NETS_PROJECT_ID: str = os.getenv("NETS_PROJECT_ID", "")
    NETS_REQUEST_URL: str = os.getenv(
        "NETS_REQUEST_URL",
        "https://sandbox.nets.openapipaas.com/api/v1/common/payments/nets-qr/request"
    )
    NETS_QUERY_URL: str = os.getenv(
        "NETS_QUERY_URL",
        "https://sandbox.nets.openapipaas.com/api/v1/common/payments/nets-qr/query"
    )
    NETS_TXN_ID: str = os.getenv(
        "NETS_TXN_ID", "sandbox_nets|m|8ff8e5b6-d43e-4786-8ac5-7accf8c5bd9b"
    )

    # Payment timing
    PROVIDER_TIMEOUT: float = float(os.getenv("PROVIDER_TIMEOUT", "10"))
    QR_POLL_INTERVAL: float = float(os.getenv("QR_POLL_INTERVAL", "5"))
    QR_MAX_POLLS: int = int(os.getenv("QR_MAX_POLLS", "60"))
    CORRELATION_TTL: int = int(os.getenv("CORRELATION_TTL", "600"))

    # Wallet settings
    TOPUP_MIN: Decimal = Decimal(os.getenv("TOPUP_MIN", "1.00"))
    TOPUP_MAX: Decimal = Decimal(os.getenv("TOPUP_MAX", "1000.00"))

    # Other settings
    TIMEZONE: str = os.getenv("TZ", "Asia/Singapore")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Paths
    LOG_DIR = Path(os.getenv("LOG_DIR", str(BASE_DIR / "logs")))

    @classmethod
    def validate(cls):
        """Fail fast on missing required settings"""
        if not cls.DATABASE_URL:
            raise ValueError("No DATABASE_URL set in environment")
        if cls.TOPUP_MIN <= 0 or cls.TOPUP_MIN > cls.TOPUP_MAX:
            raise ValueError("TOPUP_MIN must be positive and not above TOPUP_MAX")

def setup_logging():
    """Configure logging settings"""
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    Config.LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_file = Config.LOG_DIR / "storefront.log"

    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL),
        format=log_format,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )
