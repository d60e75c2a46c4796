"""
Discount code evaluation.

Deciding whether a code can be used never touches stored state; the usage
counter is only bumped by the checkout path once an order exists
(see DiscountCodeRepository.increment_usage).

Checks run in a fixed order and the first failure is reported:

    empty input -> unknown/inactive -> expired -> usage cap -> minimum amount -> scope
"""

import secrets
import string
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable, Optional

from pydantic import BaseModel

import config
from pricing import cart_subtotal
from schemas import CartItem, DiscountCode

CODE_ALPHABET = string.ascii_uppercase + string.digits

CodeLookup = Callable[[str], Optional[DiscountCode]]


class ValidationKind(str, Enum):
    VALID = "valid"
    EMPTY_INPUT = "empty_input"
    INVALID = "invalid"
    EXPIRED = "expired"
    EXHAUSTED_USES = "exhausted_uses"
    BELOW_MINIMUM = "below_minimum"
    NOT_APPLICABLE = "not_applicable"


class DiscountValidation(BaseModel):
    kind: ValidationKind
    message: str
    discount_code: Optional[DiscountCode] = None
    shortfall: Optional[int] = None

    @property
    def valid(self) -> bool:
        return self.kind is ValidationKind.VALID


def format_amount(amount: int) -> str:
    return f"{config.CURRENCY} {amount:,}"


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def generate_code(length: Optional[int] = None) -> str:
    length = length or config.DISCOUNT_CODE_LENGTH
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def _reject(kind: ValidationKind, message: str, **extra) -> DiscountValidation:
    return DiscountValidation(kind=kind, message=message, **extra)


def evaluate_code(
    discount_code: Optional[DiscountCode],
    cart_subtotal: int,
    product_ids: Iterable[str] = (),
    categories: Iterable[str] = (),
    now: Optional[datetime] = None,
) -> DiscountValidation:
    """Run the rule checks against an already fetched code record."""
    if discount_code is None or not discount_code.is_active:
        return _reject(ValidationKind.INVALID, "Invalid discount code")

    now = now or datetime.now(timezone.utc)

    # Exactly at the expiry instant counts as expired
    if discount_code.expires_at is not None and discount_code.expires_at <= now:
        return _reject(ValidationKind.EXPIRED, "Discount code has expired")

    if discount_code.max_uses is not None and discount_code.uses_count >= discount_code.max_uses:
        return _reject(ValidationKind.EXHAUSTED_USES, "Discount code has reached maximum uses")

    if discount_code.minimum_amount is not None and cart_subtotal < discount_code.minimum_amount:
        return _reject(
            ValidationKind.BELOW_MINIMUM,
            f"Minimum order amount of {format_amount(discount_code.minimum_amount)} required",
            shortfall=discount_code.minimum_amount - cart_subtotal,
        )

    if not discount_code.is_store_wide:
        in_scope = bool(set(product_ids) & set(discount_code.applicable_products)) or bool(
            set(categories) & set(discount_code.applicable_categories)
        )
        if not in_scope:
            return _reject(ValidationKind.NOT_APPLICABLE, "Discount code not applicable to these products")

    return DiscountValidation(
        kind=ValidationKind.VALID,
        message=f"{discount_code.code} applied: {discount_code.discount_percentage:g}% off",
        discount_code=discount_code,
    )


def validate_code(
    code: Optional[str],
    cart_subtotal: int,
    product_ids: Iterable[str],
    lookup: CodeLookup,
    categories: Iterable[str] = (),
    now: Optional[datetime] = None,
) -> DiscountValidation:
    """
    Check whether `code` can be used on a cart.

    `lookup` receives the normalized code and returns the matching active
    record or None. It is the only I/O involved and may raise
    repository.TransientFailure; rule failures are returned, never raised.
    """
    normalized = normalize_code(code)
    if not normalized:
        return _reject(ValidationKind.EMPTY_INPUT, "Please enter a discount code")

    return evaluate_code(lookup(normalized), cart_subtotal, product_ids, categories, now)


def validate_cart(
    code: Optional[str],
    items: Iterable[CartItem],
    lookup: CodeLookup,
    now: Optional[datetime] = None,
) -> DiscountValidation:
    items = list(items)
    return validate_code(
        code,
        cart_subtotal(items),
        {item.product_id for item in items},
        lookup,
        categories={item.category for item in items if item.category},
        now=now,
    )
