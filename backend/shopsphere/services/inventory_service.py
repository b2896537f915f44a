# Overview: Service-layer operations for per-store inventory; reservation, release and allocation.

"""
Store Inventory Invariants (authoritative)

Stock model:
- Stock lives only in StoreInventoryRecord rows keyed by (product_id, store_location).
- A product's total stock is SUM(stock_quantity) over its records, computed on read.
  There is no denormalized counter to keep in sync.

Business invariants:
- stock_quantity may never go negative. reserve fails closed with
  InsufficientStockError instead of decrementing past zero.
- A record with is_available=False can never be reserved from, whatever its quantity.
- release always increments (cancellations restore exactly what was reserved).

Allocation:
- IN_STORE: the whole quantity must come from the requested store.
- ONLINE: records are scanned in (store_location, id) order. The first store that
  can cover the full quantity wins; otherwise quantities are taken greedily from
  each available store in scan order. If supply runs out, every partial
  reservation made by that call is released before InsufficientStockAcrossStoresError
  is raised.

Transactions:
- reserve/release/allocate called with commit=False join the caller's transaction
  (order creation and cancellation). Row locks are taken with lock_for_update().
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import StoreInventoryRecord
from ..validation import ValidationError, NotFoundError, ResourceError
from .catalog_service import get_product
from .concurrency import lock_for_update, run_with_retry


CHANNEL_ONLINE = "ONLINE"
CHANNEL_IN_STORE = "IN_STORE"

VALID_CHANNELS = [CHANNEL_ONLINE, CHANNEL_IN_STORE]


class InsufficientStockError(ResourceError):
    """Raised when a single store cannot cover a reservation."""


class InsufficientStockAcrossStoresError(InsufficientStockError):
    """Raised when all stores combined cannot cover an ONLINE allocation."""


@dataclass(frozen=True)
class Allocation:
    """Units reserved at one store for one line item."""
    store_location: str
    quantity: int

    def to_dict(self) -> dict:
        return {"store_location": self.store_location, "quantity": self.quantity}


def _validate_quantity(quantity: int) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValidationError("quantity must be a positive integer")


def _get_record(product_id: int, store_location: str, *, lock: bool = False) -> StoreInventoryRecord | None:
    query = db.session.query(StoreInventoryRecord).filter_by(
        product_id=product_id,
        store_location=store_location,
    )
    if lock:
        query = lock_for_update(query)
    return query.first()


# =============================================================================
# RESERVE / RELEASE
# =============================================================================

def _reserve_locked(record: StoreInventoryRecord, quantity: int) -> StoreInventoryRecord:
    if not record.has_stock(quantity):
        raise InsufficientStockError(
            f"Insufficient stock at store {record.store_location}",
            details={
                "product_id": record.product_id,
                "store_location": record.store_location,
                "requested_quantity": quantity,
                "on_hand": record.stock_quantity,
                "is_available": record.is_available,
            },
        )
    record.stock_quantity -= quantity
    return record


def _reserve_inner(product_id: int, store_location: str, quantity: int) -> StoreInventoryRecord:
    _validate_quantity(quantity)
    record = _get_record(product_id, store_location, lock=True)
    if record is None:
        raise InsufficientStockError(
            f"Product {product_id} is not stocked at store {store_location}",
            details={
                "product_id": product_id,
                "store_location": store_location,
                "requested_quantity": quantity,
                "on_hand": 0,
            },
        )
    return _reserve_locked(record, quantity)


def _release_inner(product_id: int, store_location: str, quantity: int) -> StoreInventoryRecord:
    _validate_quantity(quantity)
    record = _get_record(product_id, store_location, lock=True)
    if record is None:
        # The record was deleted after the reservation; recreate it so the
        # returned units are not lost.
        record = StoreInventoryRecord(
            product_id=product_id,
            store_location=store_location,
            stock_quantity=0,
            is_available=True,
        )
        db.session.add(record)
    record.stock_quantity += quantity
    db.session.flush()
    return record


def reserve_stock(
    *,
    product_id: int,
    store_location: str,
    quantity: int,
    commit: bool = True,
) -> StoreInventoryRecord:
    """
    Decrement stock at one store if it is available and covers quantity.

    Raises:
        InsufficientStockError: record missing, unavailable, or short
    """
    if not commit:
        record = _reserve_inner(product_id, store_location, quantity)
        db.session.flush()
        return record

    def _op():
        record = _reserve_inner(product_id, store_location, quantity)
        db.session.commit()
        return record

    return run_with_retry(_op)


def release_stock(
    *,
    product_id: int,
    store_location: str,
    quantity: int,
    commit: bool = True,
) -> StoreInventoryRecord:
    """Increment stock at one store unconditionally (used on cancellation)."""
    if not commit:
        return _release_inner(product_id, store_location, quantity)

    def _op():
        record = _release_inner(product_id, store_location, quantity)
        db.session.commit()
        return record

    return run_with_retry(_op)


# =============================================================================
# ORDER ALLOCATION
# =============================================================================

def allocate_for_order(
    *,
    product_id: int,
    channel: str,
    quantity: int,
    store_location: str | None = None,
) -> list[Allocation]:
    """
    Reserve stock for one order line inside the caller's transaction.

    Returns the ordered per-store breakdown of what was reserved so the
    order item can record it and cancellation can restore it exactly.
    """
    _validate_quantity(quantity)

    if channel == CHANNEL_IN_STORE:
        if not store_location:
            raise ValidationError("Store location is required for in-store orders")
        _reserve_inner(product_id, store_location, quantity)
        db.session.flush()
        return [Allocation(store_location=store_location, quantity=quantity)]

    if channel != CHANNEL_ONLINE:
        raise ValidationError(f"Invalid channel: {channel}. Must be one of {VALID_CHANNELS}")

    records = lock_for_update(
        db.session.query(StoreInventoryRecord)
        .filter_by(product_id=product_id)
        .order_by(StoreInventoryRecord.store_location, StoreInventoryRecord.id)
    ).all()

    for record in records:
        if record.has_stock(quantity):
            _reserve_locked(record, quantity)
            db.session.flush()
            return [Allocation(store_location=record.store_location, quantity=quantity)]

    allocations: list[Allocation] = []
    remaining = quantity
    for record in records:
        if remaining == 0:
            break
        if not record.is_available or record.stock_quantity <= 0:
            continue
        take = min(record.stock_quantity, remaining)
        _reserve_locked(record, take)
        allocations.append(Allocation(store_location=record.store_location, quantity=take))
        remaining -= take

    if remaining > 0:
        for allocation in allocations:
            _release_inner(product_id, allocation.store_location, allocation.quantity)
        raise InsufficientStockAcrossStoresError(
            f"Insufficient stock across stores for product {product_id}",
            details={
                "product_id": product_id,
                "requested_quantity": quantity,
                "available_quantity": quantity - remaining,
            },
        )

    db.session.flush()
    current_app.logger.info(
        "Split allocation for product %s: %s",
        product_id,
        ", ".join(f"{a.store_location}={a.quantity}" for a in allocations),
    )
    return allocations


# =============================================================================
# STOCK QUERIES
# =============================================================================

def get_total_stock(product_id: int) -> int:
    """Total stock across every store, derived from the per-store records."""
    total = db.session.query(
        func.coalesce(func.sum(StoreInventoryRecord.stock_quantity), 0)
    ).filter(
        StoreInventoryRecord.product_id == product_id,
    ).scalar()
    return int(total or 0)


def get_stock_summary(product_id: int) -> dict:
    product = get_product(product_id)
    records = list_inventory_for_product(product_id)
    return {
        "product_id": product.id,
        "product_name": product.name,
        "total_stock": get_total_stock(product_id),
        "stores": [r.to_dict() for r in records],
    }


def list_inventory_for_product(product_id: int) -> list[StoreInventoryRecord]:
    get_product(product_id)
    return (
        db.session.query(StoreInventoryRecord)
        .filter_by(product_id=product_id)
        .order_by(StoreInventoryRecord.store_location, StoreInventoryRecord.id)
        .all()
    )


def list_inventory_for_store(store_location: str) -> list[StoreInventoryRecord]:
    return (
        db.session.query(StoreInventoryRecord)
        .filter_by(store_location=store_location)
        .order_by(StoreInventoryRecord.product_id)
        .all()
    )


def get_inventory_record(product_id: int, store_location: str) -> StoreInventoryRecord:
    get_product(product_id)
    record = _get_record(product_id, store_location)
    if record is None:
        raise NotFoundError(
            f"Inventory not found for product {product_id} at store {store_location}",
            details={"product_id": product_id, "store_location": store_location},
        )
    return record


def list_stores_with_product(product_id: int) -> list[str]:
    """Stores that currently have sellable units of the product."""
    get_product(product_id)
    rows = (
        db.session.query(StoreInventoryRecord.store_location)
        .filter(
            StoreInventoryRecord.product_id == product_id,
            StoreInventoryRecord.is_available.is_(True),
            StoreInventoryRecord.stock_quantity > 0,
        )
        .order_by(StoreInventoryRecord.store_location)
        .all()
    )
    return [row.store_location for row in rows]


def is_product_available_at_store(product_id: int, store_location: str, quantity: int = 1) -> bool:
    """Is this store/product combination valid for a reservation of quantity?"""
    record = _get_record(product_id, store_location)
    return record is not None and record.has_stock(quantity)


def list_low_stock_at_store(store_location: str, threshold: int | None = None) -> list[StoreInventoryRecord]:
    if threshold is None:
        threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 10)
    return (
        db.session.query(StoreInventoryRecord)
        .filter(
            StoreInventoryRecord.store_location == store_location,
            StoreInventoryRecord.stock_quantity <= threshold,
        )
        .order_by(StoreInventoryRecord.stock_quantity, StoreInventoryRecord.product_id)
        .all()
    )


def list_store_locations() -> list[str]:
    rows = (
        db.session.query(StoreInventoryRecord.store_location)
        .distinct()
        .order_by(StoreInventoryRecord.store_location)
        .all()
    )
    return [row.store_location for row in rows]


# =============================================================================
# RECORD MAINTENANCE
# =============================================================================

def upsert_store_inventory(
    *,
    product_id: int,
    store_location: str,
    stock_quantity: int,
    is_available: bool | None = None,
) -> StoreInventoryRecord:
    """Create or overwrite the stock record for a product at a store."""
    if stock_quantity < 0:
        raise ValidationError("stock_quantity must be >= 0")

    def _op():
        get_product(product_id)
        record = _get_record(product_id, store_location, lock=True)
        if record is None:
            record = StoreInventoryRecord(product_id=product_id, store_location=store_location)
            db.session.add(record)

        record.stock_quantity = stock_quantity
        record.is_available = True if is_available is None else bool(is_available)

        db.session.commit()
        current_app.logger.info(
            "Stock for product %s at %s set to %s", product_id, store_location, stock_quantity
        )
        return record

    return run_with_retry(_op)


def set_stock_quantity(*, product_id: int, store_location: str, stock_quantity: int) -> StoreInventoryRecord:
    """Overwrite the quantity of an existing record."""
    if stock_quantity < 0:
        raise ValidationError("stock_quantity must be >= 0")

    def _op():
        record = _get_record(product_id, store_location, lock=True)
        if record is None:
            raise NotFoundError(
                f"Inventory not found for product {product_id} at store {store_location}",
                details={"product_id": product_id, "store_location": store_location},
            )
        record.stock_quantity = stock_quantity
        db.session.commit()
        return record

    return run_with_retry(_op)


def delete_inventory_record(inventory_id: int) -> None:
    def _op():
        record = db.session.get(StoreInventoryRecord, inventory_id)
        if record is None:
            raise NotFoundError(f"Inventory not found with id: {inventory_id}")
        db.session.delete(record)
        db.session.commit()

    run_with_retry(_op)
