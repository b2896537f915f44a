from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class StoreInventoryRecord(db.Model):
    """
    Per-(product, store) stock counter.

    The single source of truth for stock. A product's total stock is the
    SUM over its records, computed on read.

    INVARIANT: stock_quantity never goes negative. Reservations fail
    closed (InsufficientStock) instead; the CHECK constraint backs this up
    at the storage layer.
    """
    __tablename__ = "store_inventory"
    __table_args__ = (
        db.UniqueConstraint("product_id", "store_location", name="uq_store_inventory_product_store"),
        db.CheckConstraint("stock_quantity >= 0", name="ck_store_inventory_non_negative"),
        db.Index("ix_store_inventory_store", "store_location"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    store_location = db.Column(db.String(128), nullable=False)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    is_available = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", backref=db.backref("store_inventory", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<StoreInventoryRecord product_id={self.product_id} "
            f"store={self.store_location!r} qty={self.stock_quantity}>"
        )

    def has_stock(self, quantity: int) -> bool:
        return bool(self.is_available) and self.stock_quantity >= quantity

    def is_low_stock(self, threshold: int) -> bool:
        return self.stock_quantity <= threshold

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "store_location": self.store_location,
            "stock_quantity": self.stock_quantity,
            "is_available": self.is_available,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
