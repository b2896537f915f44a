"""
Loyalty tests: point calculation, exactly-once accrual, redemption and the accrual outbox.
"""

import pytest

from shopsphere.models import LoyaltyAccount, LoyaltyTransaction, LoyaltyAccrualOutbox, Order, User
from shopsphere.services import loyalty_service, coupon_service
from shopsphere.services.loyalty_service import InsufficientPointsError, ActiveCouponExistsError
from shopsphere.validation import ValidationError, NotFoundError

from conftest import give_points


def _balance(db_session, user_id):
    return db_session.query(LoyaltyAccount).filter_by(user_id=user_id).one().points_balance


@pytest.mark.parametrize("amount_paise,points", [
    (None, 0),
    (0, 0),
    (9_999, 0),
    (10_000, 1),
    (19_999, 1),
    (85_000, 8),
    (1_999_999, 199),
])
def test_points_are_one_per_hundred_whole_rupees(amount_paise, points):
    assert loyalty_service.calculate_points_for_amount(amount_paise) == points


def _order(db_session, customer_id, total_paise):
    order = Order(
        customer_id=customer_id,
        channel="ONLINE",
        shipping_address="1 Test Road",
        subtotal_paise=total_paise,
        total_amount_paise=total_paise,
    )
    db_session.add(order)
    db_session.commit()
    return order


def test_earning_twice_for_one_order_credits_once(db_session, customer):
    order = _order(db_session, customer.id, 250_000)

    first = loyalty_service.earn_points_from_order(user_id=customer.id, order_id=order.id, amount_paise=250_000)
    second = loyalty_service.earn_points_from_order(user_id=customer.id, order_id=order.id, amount_paise=250_000)

    assert first is not None and first.points == 25
    assert second is None
    assert db_session.query(LoyaltyTransaction).filter_by(order_id=order.id).count() == 1

    account = loyalty_service.get_or_create_account(customer.id)
    assert account.points_balance == 25
    assert account.total_earned == 25


def test_earning_below_one_point_records_nothing(db_session, customer):
    order = _order(db_session, customer.id, 9_900)

    assert loyalty_service.earn_points_from_order(
        user_id=customer.id, order_id=order.id, amount_paise=9_900
    ) is None
    assert db_session.query(LoyaltyTransaction).count() == 0


def test_earning_for_unknown_user_fails(db_session):
    order = _order(db_session, 777, 100_000)

    with pytest.raises(NotFoundError):
        loyalty_service.earn_points_from_order(user_id=777, order_id=order.id, amount_paise=100_000)


def test_redeem_more_than_balance_fails_and_keeps_balance(db_session, customer):
    give_points(customer.id, 30)

    with pytest.raises(InsufficientPointsError):
        loyalty_service.redeem_reward(user_id=customer.id, points=50, reward_name="₹50 Off")

    assert _balance(db_session, customer.id) == 30
    assert coupon_service.get_active_coupon_for_user(customer.id) is None


def test_redeem_issues_coupon_and_records_transaction(db_session, customer):
    give_points(customer.id, 2_000)

    coupon = loyalty_service.redeem_reward(user_id=customer.id, points=1_500, reward_name="₹150 Off")

    assert coupon.code.startswith("REWARD-150OFF-")
    assert coupon.discount_amount_paise == 15_000
    assert _balance(db_session, customer.id) == 500

    txn = db_session.query(LoyaltyTransaction).filter_by(transaction_type="REDEEMED").one()
    assert txn.points == -1_500
    assert coupon.code in txn.description
    assert coupon.loyalty_transaction_id == txn.id


def test_redeem_refused_while_coupon_active(db_session, customer):
    give_points(customer.id, 5_000)
    loyalty_service.redeem_reward(user_id=customer.id, points=500, reward_name="₹50 Off")

    with pytest.raises(ActiveCouponExistsError):
        loyalty_service.redeem_reward(user_id=customer.id, points=500, reward_name="₹50 Off")

    assert _balance(db_session, customer.id) == 4_500


def test_redeem_rejects_unknown_reward_without_spending(db_session, customer):
    give_points(customer.id, 1_000)

    with pytest.raises(ValidationError):
        loyalty_service.redeem_reward(user_id=customer.id, points=750, reward_name="₹75 Off")

    assert _balance(db_session, customer.id) == 1_000


@pytest.mark.parametrize("points", [0, -5])
def test_redeem_requires_positive_points(db_session, customer, points):
    with pytest.raises(ValidationError):
        loyalty_service.redeem_reward(user_id=customer.id, points=points, reward_name="₹50 Off")


def test_account_details_open_account_lazily(db_session, customer):
    details = loyalty_service.get_account_details(customer.id)

    assert details["account"]["points_balance"] == 0
    assert details["user"]["email"] == customer.email
    assert details["active_coupon"] is None
    assert details["transactions"] == []


def test_accrual_failure_stays_pending_until_retried(db_session):
    order = _order(db_session, 4242, 300_000)
    loyalty_service.enqueue_order_accrual(order)
    db_session.commit()

    entry = loyalty_service.process_order_accrual(order.id)
    assert entry.status == "PENDING"
    assert entry.attempts == 1
    assert "User not found" in entry.last_error

    db_session.add(User(id=4242, name="Late Signup", email="late@example.com"))
    db_session.commit()

    result = loyalty_service.process_pending_accruals()
    assert result == {"processed": 1, "failed": 0}

    entry = db_session.query(LoyaltyAccrualOutbox).filter_by(order_id=order.id).one()
    assert entry.status == "DONE"
    assert entry.attempts == 2
    assert entry.last_error is None
    assert _balance(db_session, 4242) == 30


def test_processed_accrual_is_not_applied_again(db_session, customer):
    order = _order(db_session, customer.id, 100_000)
    loyalty_service.enqueue_order_accrual(order)
    db_session.commit()

    loyalty_service.process_order_accrual(order.id)
    loyalty_service.process_order_accrual(order.id)

    assert _balance(db_session, customer.id) == 10
    assert [e.status for e in loyalty_service.list_accruals()] == ["DONE"]


def test_list_accounts_includes_owner_and_balances(db_session, customer, other_customer):
    give_points(customer.id, 40)
    give_points(other_customer.id, 900)

    accounts = loyalty_service.list_accounts()

    assert [a["user_id"] for a in accounts] == [other_customer.id, customer.id]
    assert accounts[0]["user_name"] == "Rahul Nair"
    assert accounts[0]["user_email"] == "rahul@example.com"
    assert accounts[0]["points_balance"] == 900
    assert accounts[1]["total_earned"] == 40


def test_loyalty_stats_count_members_and_points(db_session, customer, other_customer):
    assert loyalty_service.get_loyalty_stats() == {"total_members": 0, "total_points_in_circulation": 0}

    give_points(customer.id, 40)
    give_points(other_customer.id, 900)

    assert loyalty_service.get_loyalty_stats() == {"total_members": 2, "total_points_in_circulation": 940}
