"""
Discount coupon tests: code format, tiers, minimums and single use.
"""

import pytest

from shopsphere.models import Order
from shopsphere.services import coupon_service
from shopsphere.services.coupon_service import (
    InvalidCouponFormatError,
    CouponAlreadyUsedError,
    CouponNotFoundError,
    CouponBelowMinimumError,
)
from shopsphere.validation import ValidationError


def _issue(db_session, user_id, rupees):
    coupon = coupon_service.issue_coupon(user_id=user_id, rupees=rupees)
    db_session.commit()
    return coupon


@pytest.mark.parametrize("reward_name,rupees", [
    ("₹50 Off", 50),
    ("₹150 Off", 150),
    ("₹500 Off", 500),
])
def test_parse_reward_amount_matches_whole_number(reward_name, rupees):
    assert coupon_service.parse_reward_amount(reward_name) == rupees


@pytest.mark.parametrize("reward_name", ["₹75 Off", "Free shipping", ""])
def test_parse_reward_amount_rejects_unknown_tiers(reward_name):
    with pytest.raises(ValidationError):
        coupon_service.parse_reward_amount(reward_name)


def test_issued_code_format_and_tier_values(db_session, customer):
    coupon = _issue(db_session, customer.id, 500)

    match = coupon_service.COUPON_CODE_PATTERN.match(coupon.code)
    assert match is not None
    assert match.group(1) == "500"
    assert coupon.discount_amount_paise == 50_000
    assert coupon.minimum_order_amount_paise == 75_000
    assert coupon.consumed is False


def test_codes_issued_in_same_millisecond_are_distinct(db_session, customer, monkeypatch):
    monkeypatch.setattr(coupon_service, "epoch_millis", lambda: 1_760_000_000_000)

    first = _issue(db_session, customer.id, 50)
    second = _issue(db_session, customer.id, 50)

    assert first.code == "REWARD-50OFF-1760000000000"
    assert second.code == "REWARD-50OFF-1760000000001"


@pytest.mark.parametrize("code", ["SAVE50", "REWARD-50-OFF", "REWARD-ABCOFF-123", "reward-50off-123"])
def test_validate_rejects_malformed_codes(db_session, code):
    with pytest.raises(InvalidCouponFormatError):
        coupon_service.validate_coupon(code, 100_000)


def test_validate_rejects_unknown_code(db_session):
    with pytest.raises(CouponNotFoundError):
        coupon_service.validate_coupon("REWARD-150OFF-1234567890", 100_000)


def test_validate_enforces_tier_minimum(db_session, customer):
    coupon = _issue(db_session, customer.id, 500)

    with pytest.raises(CouponBelowMinimumError) as exc:
        coupon_service.validate_coupon(coupon.code, 74_999)
    assert exc.value.details["minimum_order_amount_paise"] == 75_000

    quote = coupon_service.validate_coupon(coupon.code, 75_000)
    assert quote.discount_amount_paise == 50_000


def test_validate_returns_quote(db_session, customer):
    coupon = _issue(db_session, customer.id, 150)

    quote = coupon_service.validate_coupon(coupon.code, 100_000)

    assert quote.to_dict() == {
        "code": coupon.code,
        "discount_amount_paise": 15_000,
        "minimum_order_amount_paise": 50_000,
    }


def test_code_on_an_order_is_always_rejected(db_session, customer):
    coupon = _issue(db_session, customer.id, 50)
    order = Order(
        customer_id=customer.id,
        channel="ONLINE",
        shipping_address="1 Test Road",
        subtotal_paise=60_000,
        discount_code=coupon.code,
        discount_amount_paise=5_000,
        total_amount_paise=55_000,
    )
    db_session.add(order)
    db_session.commit()

    for _ in range(2):
        with pytest.raises(CouponAlreadyUsedError):
            coupon_service.validate_coupon(coupon.code, 100_000)


def test_consume_marks_coupon_and_clears_active(db_session, customer):
    coupon = _issue(db_session, customer.id, 50)
    assert coupon_service.get_active_coupon_for_user(customer.id).code == coupon.code

    order = Order(customer_id=customer.id, channel="ONLINE", shipping_address="1 Test Road")
    db_session.add(order)
    db_session.flush()
    coupon_service.consume_coupon(coupon.code, order)
    db_session.commit()

    assert coupon.consumed is True
    assert coupon.consumed_order_id == order.id
    assert coupon_service.get_active_coupon_for_user(customer.id) is None

    with pytest.raises(CouponAlreadyUsedError):
        coupon_service.consume_coupon(coupon.code, order)
