# Overview: Service-layer operations for loyalty points; accrual, redemption and the accrual outbox.

"""
Loyalty Points Service

RULES:
- ₹100 spent = 1 point, on whole rupees: floor(floor(paise / 100) / 100).
- An order accrues points at most once. The existence check before insert is
  backed by UNIQUE(loyalty_transactions.order_id).
- Redemption is refused while the user still holds an unused coupon, and never
  takes the balance below zero.

ACCRUAL OUTBOX:
Order creation writes a PENDING LoyaltyAccrualOutbox row in its own transaction,
then asks this module to process it. A failed accrual never fails the order;
the row stays PENDING with attempts/last_error and is retried by
`flask loyalty retry-accruals`.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import LoyaltyAccount, LoyaltyTransaction, LoyaltyAccrualOutbox, Order, User
from ..time_utils import utcnow
from ..validation import DomainError, ValidationError, ConflictError
from .catalog_service import get_user
from .concurrency import lock_for_update, run_with_retry, begin_write_transaction
from . import coupon_service


POINTS_PER_HUNDRED_RUPEES = 1

TRANSACTION_EARNED = "EARNED"
TRANSACTION_REDEEMED = "REDEEMED"

ACCRUAL_PENDING = "PENDING"
ACCRUAL_DONE = "DONE"


class InsufficientPointsError(ValidationError):
    """Raised when a redemption asks for more points than the balance holds."""


class ActiveCouponExistsError(ConflictError):
    """Raised when the user already holds an unused coupon."""


def calculate_points_for_amount(amount_paise: int | None) -> int:
    if not amount_paise or amount_paise <= 0:
        return 0
    rupees = amount_paise // 100
    return (rupees // 100) * POINTS_PER_HUNDRED_RUPEES


# =============================================================================
# ACCOUNTS
# =============================================================================

def _get_or_create_account_locked(user_id: int) -> LoyaltyAccount:
    get_user(user_id)
    account = lock_for_update(db.session.query(LoyaltyAccount).filter_by(user_id=user_id)).first()
    if account is None:
        account = LoyaltyAccount(user_id=user_id, points_balance=0, total_earned=0)
        db.session.add(account)
        db.session.flush()
    return account


def get_or_create_account(user_id: int) -> LoyaltyAccount:
    """
    Fetch the user's account, opening an empty one on first access.

    Raises:
        NotFoundError: the user does not exist
    """
    def _op():
        account = _get_or_create_account_locked(user_id)
        db.session.commit()
        return account

    return run_with_retry(_op)


def list_transactions(user_id: int) -> list[LoyaltyTransaction]:
    return (
        db.session.query(LoyaltyTransaction)
        .filter_by(user_id=user_id)
        .order_by(LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc())
        .all()
    )


def get_account_details(user_id: int) -> dict:
    user = get_user(user_id)
    account = get_or_create_account(user_id)
    active = coupon_service.get_active_coupon_for_user(user_id)
    return {
        "account": account.to_dict(),
        "user": {"id": user.id, "name": user.name, "email": user.email},
        "active_coupon": active.to_dict() if active else None,
        "transactions": [t.to_dict() for t in list_transactions(user_id)],
    }


def list_accounts() -> list[dict]:
    """Every loyalty account with its owner's name and email, highest balance first."""
    rows = (
        db.session.query(LoyaltyAccount, User)
        .join(User, User.id == LoyaltyAccount.user_id)
        .order_by(LoyaltyAccount.points_balance.desc(), LoyaltyAccount.id)
        .all()
    )
    accounts = []
    for account, user in rows:
        entry = account.to_dict()
        entry["user_name"] = user.name
        entry["user_email"] = user.email
        accounts.append(entry)
    return accounts


def get_loyalty_stats() -> dict:
    total_members, total_points = db.session.query(
        db.func.count(LoyaltyAccount.id),
        db.func.coalesce(db.func.sum(LoyaltyAccount.points_balance), 0),
    ).one()
    return {
        "total_members": int(total_members),
        "total_points_in_circulation": int(total_points),
    }


# =============================================================================
# EARNING
# =============================================================================

def _earn_inner(user_id: int, order_id: int, amount_paise: int) -> LoyaltyTransaction | None:
    existing = db.session.query(LoyaltyTransaction.id).filter_by(
        order_id=order_id,
        transaction_type=TRANSACTION_EARNED,
    ).first()
    if existing is not None:
        current_app.logger.warning("Points already awarded for order %s", order_id)
        return None

    points = calculate_points_for_amount(amount_paise)
    if points <= 0:
        current_app.logger.info("No points to award for order %s (amount too low)", order_id)
        return None

    account = _get_or_create_account_locked(user_id)
    account.points_balance += points
    account.total_earned += points

    txn = LoyaltyTransaction(
        user_id=user_id,
        order_id=order_id,
        transaction_type=TRANSACTION_EARNED,
        points=points,
        description=f"Points earned from Order #{order_id}",
    )
    db.session.add(txn)
    db.session.flush()

    current_app.logger.info("Awarded %s points to user %s for order %s", points, user_id, order_id)
    return txn


def earn_points_from_order(
    *,
    user_id: int,
    order_id: int,
    amount_paise: int,
    commit: bool = True,
) -> LoyaltyTransaction | None:
    """
    Accrue points for an order exactly once.

    Returns the EARNED transaction, or None when nothing was awarded
    (already accrued, or amount below ₹100).
    """
    if not commit:
        return _earn_inner(user_id, order_id, amount_paise)

    def _op():
        txn = _earn_inner(user_id, order_id, amount_paise)
        db.session.commit()
        return txn

    return run_with_retry(_op)


# =============================================================================
# REDEMPTION
# =============================================================================

def redeem_reward(*, user_id: int, points: int, reward_name: str):
    """
    Exchange points for a coupon and return the issued DiscountCoupon.

    Raises:
        NotFoundError: the user does not exist
        ActiveCouponExistsError: an unused coupon is still held
        InsufficientPointsError: balance < points
        ValidationError: points not positive, or reward amount not a catalogue tier
    """
    if not isinstance(points, int) or isinstance(points, bool) or points <= 0:
        raise ValidationError("points must be a positive integer")

    def _op():
        begin_write_transaction()
        account = _get_or_create_account_locked(user_id)

        active = coupon_service.get_active_coupon_for_user(user_id)
        if active is not None:
            raise ActiveCouponExistsError(
                "You already have an active coupon. Use it before redeeming another reward.",
                details={"active_coupon": active.code},
            )

        if not account.has_enough_points(points):
            raise InsufficientPointsError(
                f"Insufficient points balance. Required: {points}, Available: {account.points_balance}",
                details={"required": points, "available": account.points_balance},
            )

        rupees = coupon_service.parse_reward_amount(reward_name)

        account.points_balance -= points
        coupon = coupon_service.issue_coupon(user_id=user_id, rupees=rupees)

        txn = LoyaltyTransaction(
            user_id=user_id,
            order_id=None,
            transaction_type=TRANSACTION_REDEEMED,
            points=-points,
            description=f"Redeemed: {reward_name} (Code: {coupon.code})",
        )
        db.session.add(txn)
        db.session.flush()
        coupon.loyalty_transaction_id = txn.id

        db.session.commit()
        current_app.logger.info("User %s redeemed %s points; issued coupon %s", user_id, points, coupon.code)
        return coupon

    return run_with_retry(_op)


# =============================================================================
# ACCRUAL OUTBOX
# =============================================================================

def enqueue_order_accrual(order: Order) -> LoyaltyAccrualOutbox:
    """Record the points owed for order inside the caller's transaction."""
    entry = LoyaltyAccrualOutbox(
        order_id=order.id,
        user_id=order.customer_id,
        amount_paise=order.total_amount_paise,
        status=ACCRUAL_PENDING,
        attempts=0,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def process_order_accrual(order_id: int) -> LoyaltyAccrualOutbox | None:
    """
    Try to settle the outbox row for order_id.

    Business and database failures are recorded on the row and logged; they
    are not raised, so the row stays PENDING for a later retry.
    """
    entry = db.session.query(LoyaltyAccrualOutbox).filter_by(order_id=order_id).first()
    if entry is None or entry.status == ACCRUAL_DONE:
        return entry
    entry_id = entry.id

    def _op():
        locked = lock_for_update(db.session.query(LoyaltyAccrualOutbox).filter_by(id=entry_id)).first()
        if locked.status == ACCRUAL_DONE:
            return locked
        _earn_inner(locked.user_id, locked.order_id, locked.amount_paise)
        locked.status = ACCRUAL_DONE
        locked.attempts += 1
        locked.last_error = None
        locked.processed_at = utcnow()
        db.session.commit()
        return locked

    try:
        return run_with_retry(_op)
    except (DomainError, SQLAlchemyError) as exc:
        entry = db.session.get(LoyaltyAccrualOutbox, entry_id)
        entry.attempts += 1
        entry.last_error = str(exc)[:255]
        db.session.commit()
        current_app.logger.warning(
            "Loyalty accrual for order %s failed (attempt %s): %s", order_id, entry.attempts, exc
        )
        return entry


def process_pending_accruals(limit: int = 100) -> dict:
    order_ids = [
        row.order_id
        for row in db.session.query(LoyaltyAccrualOutbox.order_id)
        .filter_by(status=ACCRUAL_PENDING)
        .order_by(LoyaltyAccrualOutbox.id)
        .limit(limit)
        .all()
    ]
    processed = 0
    failed = 0
    for order_id in order_ids:
        entry = process_order_accrual(order_id)
        if entry is not None and entry.status == ACCRUAL_DONE:
            processed += 1
        else:
            failed += 1
    return {"processed": processed, "failed": failed}


def list_accruals(status: str | None = None, limit: int = 200) -> list[LoyaltyAccrualOutbox]:
    query = db.session.query(LoyaltyAccrualOutbox)
    if status:
        query = query.filter_by(status=status.upper())
    return query.order_by(LoyaltyAccrualOutbox.id.desc()).limit(limit).all()
