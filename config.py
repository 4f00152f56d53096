"""
Runtime configuration, read from the environment once at import.
"""
import os
from decimal import Decimal

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

PAYMONGO_SECRET_KEY = os.getenv("PAYMONGO_SECRET_KEY", "")
PAYMONGO_LINKS_URL = os.getenv("PAYMONGO_LINKS_URL", "https://api.paymongo.com/v1/links")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "PHP")
PAYMENT_SUCCESS_URL = os.getenv("PAYMENT_SUCCESS_URL", "http://localhost:8000/payments/success")
PAYMENT_FAILED_URL = os.getenv("PAYMENT_FAILED_URL", "http://localhost:8000/payments/failed")
PAYMENT_TIMEOUT = float(os.getenv("PAYMENT_TIMEOUT", "10"))

PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")

# currency units spent per loyalty point, and points consumed per redemption
POINTS_RATE = Decimal(os.getenv("POINTS_RATE", "5000"))
REDEEM_COST = int(os.getenv("REDEEM_COST", "5"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
