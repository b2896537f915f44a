from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Order(db.Model):
    """
    Customer order document.

    WHY: The order is the auditable record of a fulfillment request. Its
    items are an immutable snapshot taken at creation; only status,
    tracking, payment status and notes change afterwards.

    COUPONS: discount_code is UNIQUE (NULLs allowed). The constraint is
    what actually consumes a coupon: a second order carrying the same code
    is rejected at commit even if both passed validation concurrently.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("discount_code", name="uq_orders_discount_code"),
        db.Index("ix_orders_customer_created", "customer_id", "created_at"),
        db.Index("ix_orders_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, nullable=False, index=True)

    channel = db.Column(db.String(16), nullable=False)  # ONLINE, IN_STORE
    status = db.Column(db.String(16), nullable=False, default="CONFIRMED")

    subtotal_paise = db.Column(db.Integer, nullable=False, default=0)
    discount_code = db.Column(db.String(64), nullable=True)
    discount_amount_paise = db.Column(db.Integer, nullable=False, default=0)
    total_amount_paise = db.Column(db.Integer, nullable=False, default=0)

    shipping_address = db.Column(db.Text, nullable=True)  # ONLINE
    store_location = db.Column(db.String(128), nullable=True)  # IN_STORE
    tracking_number = db.Column(db.String(64), nullable=True)

    payment_method = db.Column(db.String(16), nullable=True)  # UPI, COD (set at payment initiation)
    payment_status = db.Column(db.String(16), nullable=False, default="PENDING")  # PENDING, COMPLETED, FAILED

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "OrderItem",
        backref="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status} total_paise={self.total_amount_paise}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "customer_id": self.customer_id,
            "channel": self.channel,
            "status": self.status,
            "subtotal_paise": self.subtotal_paise,
            "discount_code": self.discount_code,
            "discount_amount_paise": self.discount_amount_paise,
            "total_amount_paise": self.total_amount_paise,
            "shipping_address": self.shipping_address,
            "store_location": self.store_location,
            "tracking_number": self.tracking_number,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    Line item snapshot: product name/sku/price are copied at order time
    so later catalog edits never rewrite history.

    store_location is set when the whole quantity came from one store and
    left NULL for items split across stores; the allocations list always
    records the exact per-store breakdown.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    product_sku = db.Column(db.String(64), nullable=False)
    unit_price_paise = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    subtotal_paise = db.Column(db.Integer, nullable=False)

    store_location = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    allocations = db.relationship(
        "OrderItemAllocation",
        backref="order_item",
        cascade="all, delete-orphan",
        order_by="OrderItemAllocation.sequence",
        lazy=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "unit_price_paise": self.unit_price_paise,
            "quantity": self.quantity,
            "subtotal_paise": self.subtotal_paise,
            "store_location": self.store_location,
            "allocations": [a.to_dict() for a in self.allocations],
        }


class OrderItemAllocation(db.Model):
    """Units of one order item drawn from one store, in reservation order."""
    __tablename__ = "order_item_allocations"
    __table_args__ = (
        db.UniqueConstraint("order_item_id", "sequence", name="uq_item_allocations_item_sequence"),
        db.CheckConstraint("quantity >= 1", name="ck_item_allocations_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_item_id = db.Column(
        db.Integer, db.ForeignKey("order_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sequence = db.Column(db.Integer, nullable=False)
    store_location = db.Column(db.String(128), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "store_location": self.store_location,
            "quantity": self.quantity,
        }
