"""
Runtime configuration

Everything is read from the environment once, at import time.
"""
import json
import os
from typing import Dict

from pricing import Coupon

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "usd")

CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:3000")
COUPONS_FILE = os.getenv("COUPONS_FILE")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))

SEED_ADMIN_EMAIL = os.getenv("SEED_ADMIN_EMAIL")
SEED_ADMIN_PASSWORD = os.getenv("SEED_ADMIN_PASSWORD")

LOW_STOCK_THRESHOLD = 5

# checkouts still reserving stock after this long are treated as dead
RESERVATION_TIMEOUT_SECONDS = int(os.getenv("RESERVATION_TIMEOUT_SECONDS", 15 * 60))

DEFAULT_COUPONS = {
    "WELCOME10": {"kind": "percentage", "amount": 10, "description": "10% off your first order"},
    "ATTAR20": {"kind": "percentage", "amount": 20, "description": "20% discount"},
    "FREESHIP": {"kind": "free_shipping", "amount": 0, "description": "Free shipping"},
    "ROYAL50": {"kind": "fixed", "amount": 50, "description": "$50 off orders over $200", "min_subtotal": 200},
}


def load_coupons(path: str = None) -> Dict[str, Coupon]:
    """Build a fresh coupon table, from ``COUPONS_FILE`` when it is set."""
    path = path or COUPONS_FILE
    raw = DEFAULT_COUPONS
    if path:
        with open(path, encoding="utf-8") as fh:
            raw = json.load(fh)
    return {
        code.upper(): Coupon(
            code=code.upper(),
            kind=entry["kind"],
            amount=entry.get("amount", 0),
            description=entry.get("description", ""),
            min_subtotal=entry.get("min_subtotal", 0),
        )
        for code, entry in raw.items()
    }
