"""
Cart pricing.

Amounts are whole currency units. Rounding is half-up at two points: the
effective unit price of a discounted product, and the coupon amount. A
product's own sale percentage is applied first; a coupon then applies to the
already discounted subtotal.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from pydantic import BaseModel

from schemas import CartItem, DiscountCode


class CartPricing(BaseModel):
    subtotal: int
    discount_amount: int = 0
    total: int
    item_count: int
    discount_code: Optional[str] = None
    discount_percentage: Optional[float] = None


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _percent(value) -> Decimal:
    # str() keeps floats like 12.5 exact
    return Decimal(str(value or 0))


def effective_unit_price(price: int, discount: Optional[float] = None) -> int:
    """Unit price after the product's own sale percentage."""
    pct = _percent(discount)
    if pct <= 0:
        return int(price)
    if pct >= 100:
        return 0
    return round_half_up(Decimal(price) * (100 - pct) / 100)


def line_total(item: CartItem) -> int:
    return effective_unit_price(item.price, item.discount) * item.quantity


def cart_subtotal(items: Iterable[CartItem]) -> int:
    return sum(line_total(item) for item in items)


def item_count(items: Iterable[CartItem]) -> int:
    """Badge count: total units, not distinct lines."""
    return sum(item.quantity for item in items)


def coupon_discount_amount(subtotal: int, percentage: float) -> int:
    amount = round_half_up(Decimal(subtotal) * _percent(percentage) / 100)
    return min(max(amount, 0), max(subtotal, 0))


def price_cart(items: Iterable[CartItem], discount_code: Optional[DiscountCode] = None) -> CartPricing:
    items = list(items)
    subtotal = cart_subtotal(items)

    discount_amount = 0
    if discount_code is not None:
        discount_amount = coupon_discount_amount(subtotal, discount_code.discount_percentage)

    return CartPricing(
        subtotal=subtotal,
        discount_amount=discount_amount,
        total=max(0, subtotal - discount_amount),
        item_count=item_count(items),
        discount_code=discount_code.code if discount_code else None,
        discount_percentage=discount_code.discount_percentage if discount_code else None,
    )
