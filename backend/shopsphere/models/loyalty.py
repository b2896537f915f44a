from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class LoyaltyAccount(db.Model):
    """
    Loyalty points account, one per user, created lazily on first access.

    INVARIANTS:
    - points_balance >= 0
    - total_earned only ever increases
    """
    __tablename__ = "loyalty_accounts"
    __table_args__ = (
        db.UniqueConstraint("user_id", name="uq_loyalty_accounts_user"),
        db.CheckConstraint("points_balance >= 0", name="ck_loyalty_accounts_balance_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    points_balance = db.Column(db.Integer, nullable=False, default=0)
    total_earned = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", backref=db.backref("loyalty_account", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def has_enough_points(self, points: int) -> bool:
        return self.points_balance >= points

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "points_balance": self.points_balance,
            "total_earned": self.total_earned,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class LoyaltyTransaction(db.Model):
    """
    Append-only ledger of point events.

    TRANSACTION TYPES:
    - EARNED: Points accrued from an order (order_id set, points > 0)
    - REDEEMED: Points exchanged for a coupon (order_id NULL, points < 0;
      the description embeds the coupon code)

    IMMUTABLE: Records are never updated or deleted.
    order_id is UNIQUE, so an order can accrue points at most once.
    """
    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_loyalty_transactions_order"),
        db.Index("ix_loyalty_txns_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)  # EARNED, REDEEMED
    points = db.Column(db.Integer, nullable=False)  # Positive for earned, negative for redeemed
    description = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "order_id": self.order_id,
            "transaction_type": self.transaction_type,
            "points": self.points,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }


class DiscountCoupon(db.Model):
    """
    Structured coupon issued by a points redemption.

    WHY: Discount tier and minimum order live in columns instead of being
    recovered from free text. `consumed` mirrors the orders.discount_code
    uniqueness constraint, which remains the authority under concurrency.
    """
    __tablename__ = "discount_coupons"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_discount_coupons_code"),
        db.Index("ix_discount_coupons_user_consumed", "user_id", "consumed"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    discount_amount_paise = db.Column(db.Integer, nullable=False)
    minimum_order_amount_paise = db.Column(db.Integer, nullable=False)

    consumed = db.Column(db.Boolean, nullable=False, default=False)
    consumed_order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)
    consumed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    loyalty_transaction_id = db.Column(db.Integer, db.ForeignKey("loyalty_transactions.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "user_id": self.user_id,
            "discount_amount_paise": self.discount_amount_paise,
            "minimum_order_amount_paise": self.minimum_order_amount_paise,
            "consumed": self.consumed,
            "consumed_order_id": self.consumed_order_id,
            "consumed_at": to_utc_z(self.consumed_at),
            "created_at": to_utc_z(self.created_at),
        }


class LoyaltyAccrualOutbox(db.Model):
    """
    Durable record of points owed for an order.

    Written in the order's own transaction, so an accrual can never be
    silently lost: it is either DONE, or still PENDING with attempts and
    last_error showing why.
    """
    __tablename__ = "loyalty_accrual_outbox"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_loyalty_outbox_order"),
        db.Index("ix_loyalty_outbox_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    user_id = db.Column(db.Integer, nullable=False)
    amount_paise = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="PENDING")  # PENDING, DONE
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "user_id": self.user_id,
            "amount_paise": self.amount_paise,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": to_utc_z(self.created_at),
            "processed_at": to_utc_z(self.processed_at),
        }
