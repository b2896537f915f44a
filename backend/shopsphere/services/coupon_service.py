# Overview: Service-layer operations for discount coupons; issuance, validation and consumption.

"""
Discount Coupon Ledger

WHY: Coupons are single-use tokens minted by redeeming loyalty points. Each one
takes a fixed amount off one future order above a tier minimum.

CODE FORMAT: REWARD-{rupees}OFF-{epoch_ms}, e.g. REWARD-150OFF-1760000000000

TIERS (paise):
- ₹50 off  -> minimum order ₹500
- ₹150 off -> minimum order ₹500
- ₹500 off -> minimum order ₹750

CONSUMPTION:
- A coupon is used once an Order carries its code. orders.discount_code is UNIQUE,
  so two orders racing on one code cannot both commit; the loser surfaces as
  CouponAlreadyUsedError.
- DiscountCoupon.consumed is set in the same transaction for cheap lookups.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from ..extensions import db
from ..models import DiscountCoupon, Order
from ..time_utils import utcnow, epoch_millis
from ..validation import ValidationError, NotFoundError, ConflictError
from .concurrency import lock_for_update


COUPON_CODE_PATTERN = re.compile(r"^REWARD-(\d+)OFF-(\d+)$")

# rupee value -> (discount paise, minimum order paise)
COUPON_TIERS = {
    50: (5_000, 50_000),
    150: (15_000, 50_000),
    500: (50_000, 75_000),
}

REWARD_CATALOG = [
    {"name": "₹50 Off", "points": 500, "discount_rupees": 50, "description": "Save ₹50 on your next purchase"},
    {"name": "₹150 Off", "points": 1500, "discount_rupees": 150, "description": "Save ₹150 on your next purchase"},
    {"name": "₹500 Off", "points": 5000, "discount_rupees": 500, "description": "Save ₹500 on your next purchase"},
]


class InvalidCouponFormatError(ValidationError):
    pass


class CouponAlreadyUsedError(ConflictError):
    pass


class CouponNotFoundError(NotFoundError):
    pass


class CouponBelowMinimumError(ValidationError):
    pass


@dataclass(frozen=True)
class CouponQuote:
    """Result of a successful validation."""
    code: str
    discount_amount_paise: int
    minimum_order_amount_paise: int

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "discount_amount_paise": self.discount_amount_paise,
            "minimum_order_amount_paise": self.minimum_order_amount_paise,
        }


def parse_reward_amount(reward_name: str) -> int:
    """
    Extract the rupee value from a reward name such as "₹150 Off".

    Only catalogue tiers are accepted; the whole number is matched, so
    "₹150 Off" can never be mistaken for the ₹50 tier.
    """
    match = re.search(r"(\d+)", reward_name or "")
    if not match:
        raise ValidationError(f"Reward name does not contain an amount: {reward_name!r}")
    rupees = int(match.group(1))
    if rupees not in COUPON_TIERS:
        raise ValidationError(
            f"Unsupported reward amount: {rupees}",
            details={"supported_amounts": sorted(COUPON_TIERS)},
        )
    return rupees


def code_is_attached_to_order(code: str) -> bool:
    return db.session.query(Order.id).filter(Order.discount_code == code).first() is not None


def validate_coupon(code: str, order_total_paise: int, *, lock: bool = False) -> CouponQuote:
    """
    Check that code can be applied to an order of order_total_paise.

    Raises:
        InvalidCouponFormatError: code does not match REWARD-{n}OFF-{ts}
        CouponAlreadyUsedError: an order already carries the code
        CouponNotFoundError: no coupon was ever issued with the code
        CouponBelowMinimumError: order total under the tier minimum
    """
    code = (code or "").strip()
    if not COUPON_CODE_PATTERN.match(code):
        raise InvalidCouponFormatError("Invalid discount code format", details={"code": code})

    if code_is_attached_to_order(code):
        raise CouponAlreadyUsedError("This discount code has already been used", details={"code": code})

    query = db.session.query(DiscountCoupon).filter_by(code=code)
    if lock:
        query = lock_for_update(query)
    coupon = query.first()
    if coupon is None:
        raise CouponNotFoundError("Discount code not found", details={"code": code})

    if coupon.consumed:
        raise CouponAlreadyUsedError("This discount code has already been used", details={"code": code})

    if order_total_paise < coupon.minimum_order_amount_paise:
        raise CouponBelowMinimumError(
            "Order total is below the minimum required for this discount code",
            details={
                "code": code,
                "order_total_paise": order_total_paise,
                "minimum_order_amount_paise": coupon.minimum_order_amount_paise,
            },
        )

    return CouponQuote(
        code=code,
        discount_amount_paise=coupon.discount_amount_paise,
        minimum_order_amount_paise=coupon.minimum_order_amount_paise,
    )


def _next_free_code(rupees: int) -> str:
    stamp = epoch_millis()
    code = f"REWARD-{rupees}OFF-{stamp}"
    while db.session.query(DiscountCoupon.id).filter_by(code=code).first() is not None:
        stamp += 1
        code = f"REWARD-{rupees}OFF-{stamp}"
    return code


def issue_coupon(*, user_id: int, rupees: int) -> DiscountCoupon:
    """Mint a coupon for a catalogue tier inside the caller's transaction."""
    if rupees not in COUPON_TIERS:
        raise ValidationError(f"Unsupported reward amount: {rupees}")

    discount_paise, minimum_paise = COUPON_TIERS[rupees]
    coupon = DiscountCoupon(
        code=_next_free_code(rupees),
        user_id=user_id,
        discount_amount_paise=discount_paise,
        minimum_order_amount_paise=minimum_paise,
        consumed=False,
    )
    db.session.add(coupon)
    db.session.flush()
    return coupon


def consume_coupon(code: str, order: Order) -> None:
    """Mark the coupon used by order; caller commits."""
    coupon = lock_for_update(db.session.query(DiscountCoupon).filter_by(code=code)).first()
    if coupon is None:
        raise CouponNotFoundError("Discount code not found", details={"code": code})
    if coupon.consumed:
        raise CouponAlreadyUsedError("This discount code has already been used", details={"code": code})
    coupon.consumed = True
    coupon.consumed_order_id = order.id
    coupon.consumed_at = utcnow()


def get_active_coupon_for_user(user_id: int) -> DiscountCoupon | None:
    """Oldest coupon of the user that no order has used yet."""
    candidates = (
        db.session.query(DiscountCoupon)
        .filter_by(user_id=user_id, consumed=False)
        .order_by(DiscountCoupon.created_at, DiscountCoupon.id)
        .all()
    )
    for coupon in candidates:
        if not code_is_attached_to_order(coupon.code):
            return coupon
    return None
