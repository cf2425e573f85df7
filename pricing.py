"""
Order pricing

Pure functions: the same lines and coupon always price the same way, and
nothing here reads the database or the environment.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, Optional, Tuple

from errors import InvalidCoupon

FREE_SHIPPING_THRESHOLD = Decimal("100")
FLAT_SHIPPING_FEE = Decimal("9.99")
TAX_RATE = Decimal("0.05")

COUPON_KINDS = ("percentage", "fixed", "free_shipping")

_CENT = Decimal("0.01")
_ZERO = Decimal("0")


@dataclass(frozen=True)
class Coupon:
    code: str
    kind: str  # percentage | fixed | free_shipping
    amount: float = 0
    description: str = ""
    min_subtotal: float = 0


@dataclass(frozen=True)
class Pricing:
    subtotal: float
    shipping: float
    tax: float
    discount: float
    total: float

    def as_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "shipping": self.shipping,
            "tax": self.tax,
            "discount": self.discount,
            "total": self.total,
        }


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


def resolve_coupon(code: Optional[str], coupons: Dict[str, Coupon]) -> Optional[Coupon]:
    """Look a code up in the coupon table; blank codes mean no coupon."""
    if code is None or not code.strip():
        return None
    coupon = coupons.get(code.strip().upper())
    if coupon is None:
        raise InvalidCoupon(code)
    return coupon


def _discount_for(coupon: Coupon, subtotal: Decimal, shipping: Decimal) -> Decimal:
    if subtotal < Decimal(str(coupon.min_subtotal)):
        raise InvalidCoupon(coupon.code, f"requires a subtotal of at least {coupon.min_subtotal}")
    if coupon.kind == "percentage":
        return _money(subtotal * Decimal(str(coupon.amount)) / Decimal("100"))
    if coupon.kind == "fixed":
        return _money(coupon.amount)
    if coupon.kind == "free_shipping":
        return shipping
    raise InvalidCoupon(coupon.code, f"unknown coupon kind {coupon.kind}")


def calculate_pricing(lines: Iterable[Tuple[float, int]], coupon: Optional[Coupon] = None) -> Pricing:
    """
    Price a list of ``(unit_price, quantity)`` lines.

    The discount is capped at subtotal + shipping + tax, which keeps the
    total at or above zero while ``total == subtotal + shipping + tax - discount``
    still holds exactly.
    """
    subtotal = _ZERO
    for unit_price, quantity in lines:
        subtotal += Decimal(str(unit_price)) * int(quantity)
    subtotal = _money(subtotal)

    shipping = _ZERO if subtotal >= FREE_SHIPPING_THRESHOLD else FLAT_SHIPPING_FEE
    tax = _money(subtotal * TAX_RATE)

    discount = _ZERO
    if coupon is not None:
        discount = min(_discount_for(coupon, subtotal, shipping), subtotal + shipping + tax)

    total = _money(subtotal + shipping + tax - discount)
    return Pricing(
        subtotal=float(subtotal),
        shipping=float(shipping),
        tax=float(tax),
        discount=float(discount),
        total=float(total),
    )
