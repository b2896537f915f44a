from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Payment(db.Model):
    """
    Payment attempt against an order.

    STATUS FLOW:
    - UPI: INITIATED -> PROCESSING -> SUCCESS | FAILED (OTP verified)
    - COD: INITIATED -> SUCCESS once the order is delivered

    transaction_id is assigned only on SUCCESS.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_order", "order_id"),
        db.Index("ix_payments_customer", "customer_id"),
        db.Index("ix_payments_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    customer_id = db.Column(db.Integer, nullable=False)

    amount_paise = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(16), nullable=False)  # UPI, COD
    status = db.Column(db.String(16), nullable=False, default="INITIATED")

    transaction_id = db.Column(db.String(64), nullable=True, unique=True)
    upi_id = db.Column(db.String(128), nullable=True)
    failure_reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("payments", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "amount_paise": self.amount_paise,
            "method": self.method,
            "status": self.status,
            "transaction_id": self.transaction_id,
            "upi_id": self.upi_id,
            "failure_reason": self.failure_reason,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
