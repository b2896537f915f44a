# Overview: Service-layer operations for orders; creation, lifecycle transitions and cancellation.

"""
Order Lifecycle Service

WHY: The order is the coordinator of fulfillment. Creating one reserves stock,
applies at most one coupon, persists an auditable snapshot and owes loyalty
points; transitions move it through a restricted lifecycle.

STATE MACHINE:
    PLACED    -> CONFIRMED, CANCELLED   (legacy pre-confirmation state)
    CONFIRMED -> SHIPPED, CANCELLED     (new orders start here)
    SHIPPED   -> DELIVERED, CANCELLED
    DELIVERED -> (terminal)
    CANCELLED -> (terminal)

ATOMICITY:
- Allocation of every line, coupon validation + consumption, order/item rows and
  the loyalty outbox row commit together or not at all. A line that runs out of
  stock rolls back the reservations of every earlier line.
- Points are accrued right after commit via the outbox; failures there are
  logged and left PENDING, never surfaced to the caller.

SIDE EFFECTS OF TRANSITIONS:
- SHIPPED: tracking number taken from the request, else kept, else generated.
- CANCELLED: every allocation of every item is released at its store.
- DELIVERED: outstanding Cash-on-Delivery payments are settled.
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import Order, OrderItem, OrderItemAllocation
from ..time_utils import utcnow, compact_stamp, to_utc_z
from ..validation import ValidationError, NotFoundError, coerce_int, clean_str, MAX_AMOUNT_PAISE
from .catalog_service import get_product
from .concurrency import lock_for_update, run_with_retry, begin_write_transaction
from .inventory_service import (
    allocate_for_order,
    release_stock,
    CHANNEL_ONLINE,
    CHANNEL_IN_STORE,
    VALID_CHANNELS,
)
from . import coupon_service
from . import loyalty_service


# =============================================================================
# ORDER STATUS (CONSTANTS)
# =============================================================================

ORDER_STATUS_PLACED = "PLACED"
ORDER_STATUS_CONFIRMED = "CONFIRMED"
ORDER_STATUS_SHIPPED = "SHIPPED"
ORDER_STATUS_DELIVERED = "DELIVERED"
ORDER_STATUS_CANCELLED = "CANCELLED"

ALLOWED_TRANSITIONS = {
    ORDER_STATUS_PLACED: {ORDER_STATUS_CONFIRMED, ORDER_STATUS_CANCELLED},
    ORDER_STATUS_CONFIRMED: {ORDER_STATUS_SHIPPED, ORDER_STATUS_CANCELLED},
    ORDER_STATUS_SHIPPED: {ORDER_STATUS_DELIVERED, ORDER_STATUS_CANCELLED},
    ORDER_STATUS_DELIVERED: set(),
    ORDER_STATUS_CANCELLED: set(),
}

VALID_ORDER_STATUSES = list(ALLOWED_TRANSITIONS)


# =============================================================================
# PAYMENT STATUS (CONSTANTS)
# =============================================================================

PAYMENT_STATUS_PENDING = "PENDING"
PAYMENT_STATUS_COMPLETED = "COMPLETED"
PAYMENT_STATUS_FAILED = "FAILED"

VALID_PAYMENT_STATUSES = [PAYMENT_STATUS_PENDING, PAYMENT_STATUS_COMPLETED, PAYMENT_STATUS_FAILED]


class InvalidTransitionError(ValidationError):
    """Raised for a status change the state machine does not allow."""


def is_valid_transition(current_status: str, new_status: str) -> bool:
    return new_status in ALLOWED_TRANSITIONS.get(current_status, set())


def generate_tracking_number(order: Order, now=None) -> str:
    """Deterministic in channel, order id and timestamp."""
    prefix = "ONL" if order.channel == CHANNEL_ONLINE else "STR"
    return f"TRK-{prefix}-{order.id:06d}-{compact_stamp(now)}"


# =============================================================================
# CREATION
# =============================================================================

def _validate_request(
    channel: str | None,
    shipping_address: str | None,
    store_location: str | None,
    items,
) -> tuple[str, list[tuple[int, int]]]:
    channel = str(channel or "").strip().upper()
    if channel not in VALID_CHANNELS:
        raise ValidationError("Order type must be either ONLINE or IN_STORE")

    if channel == CHANNEL_ONLINE and not shipping_address:
        raise ValidationError("Shipping address is required for online orders")

    if channel == CHANNEL_IN_STORE and not store_location:
        raise ValidationError("Store location is required for in-store orders")

    if not items or not isinstance(items, list):
        raise ValidationError("Order must contain at least one item")

    lines = []
    for i, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{i}] must be an object")
        product_id = coerce_int(raw.get("product_id"), f"items[{i}].product_id", minimum=1)
        quantity = coerce_int(raw.get("quantity"), f"items[{i}].quantity", minimum=1)
        lines.append((product_id, quantity))
    return channel, lines


def create_order(
    *,
    customer_id: int,
    channel: str,
    items: list[dict],
    shipping_address: str | None = None,
    store_location: str | None = None,
    discount_code: str | None = None,
    discount_amount_paise: int | None = None,
    notes: str | None = None,
) -> Order:
    """
    Create a CONFIRMED order, reserving stock for every line.

    Raises:
        ValidationError: bad channel, missing address/store, empty items,
            discount amount that disagrees with the coupon
        NotFoundError: unknown product
        InsufficientStockError / InsufficientStockAcrossStoresError
        Coupon errors from coupon_service (format, used, not found, minimum)
    """
    shipping_address = clean_str(shipping_address, "shipping_address")
    store_location = clean_str(store_location, "store_location", max_length=128)
    discount_code = clean_str(discount_code, "discount_code", max_length=64)
    channel, lines = _validate_request(channel, shipping_address, store_location, items)

    if discount_amount_paise is not None and not discount_code:
        raise ValidationError("discount_amount_paise requires a discount_code")

    def _op():
        begin_write_transaction()

        order = Order(
            customer_id=customer_id,
            channel=channel,
            status=ORDER_STATUS_CONFIRMED,
            payment_status=PAYMENT_STATUS_PENDING,
            shipping_address=shipping_address if channel == CHANNEL_ONLINE else None,
            store_location=store_location if channel == CHANNEL_IN_STORE else None,
            notes=notes,
        )

        subtotal = 0
        for product_id, quantity in lines:
            product = get_product(product_id)
            allocations = allocate_for_order(
                product_id=product.id,
                channel=channel,
                quantity=quantity,
                store_location=store_location,
            )

            item = OrderItem(
                product_id=product.id,
                product_name=product.name,
                product_sku=product.sku,
                unit_price_paise=product.price_paise,
                quantity=quantity,
                subtotal_paise=product.price_paise * quantity,
                store_location=allocations[0].store_location if len(allocations) == 1 else None,
            )
            for seq, allocation in enumerate(allocations, start=1):
                item.allocations.append(OrderItemAllocation(
                    sequence=seq,
                    store_location=allocation.store_location,
                    quantity=allocation.quantity,
                ))
            order.items.append(item)
            subtotal += item.subtotal_paise

        if subtotal > MAX_AMOUNT_PAISE:
            raise ValidationError("Order total exceeds the maximum allowed amount")

        discount = 0
        if discount_code:
            quote = coupon_service.validate_coupon(discount_code, subtotal, lock=True)
            if discount_amount_paise is not None and discount_amount_paise != quote.discount_amount_paise:
                raise ValidationError(
                    "discount_amount_paise does not match the discount code",
                    details={
                        "requested_paise": discount_amount_paise,
                        "coupon_paise": quote.discount_amount_paise,
                    },
                )
            discount = quote.discount_amount_paise
            order.discount_code = discount_code

        order.subtotal_paise = subtotal
        order.discount_amount_paise = discount
        order.total_amount_paise = max(0, subtotal - discount)

        db.session.add(order)
        try:
            db.session.flush()
        except IntegrityError as exc:
            if discount_code:
                raise coupon_service.CouponAlreadyUsedError(
                    "This discount code has already been used",
                    details={"code": discount_code},
                ) from exc
            raise

        if discount_code:
            coupon_service.consume_coupon(discount_code, order)

        loyalty_service.enqueue_order_accrual(order)

        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info(
        "Order %s created for customer %s (%s, total_paise=%s)",
        order.id, order.customer_id, order.channel, order.total_amount_paise,
    )

    _accrue_points(order.id)
    return order


def _accrue_points(order_id: int) -> None:
    try:
        loyalty_service.process_order_accrual(order_id)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Loyalty accrual for order %s left pending", order_id)


# =============================================================================
# QUERIES
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order not found with id: {order_id}", details={"order_id": order_id})
    return order


def list_orders(
    *,
    customer_id: int | None = None,
    status: str | None = None,
    days: int | None = None,
) -> list[Order]:
    query = db.session.query(Order)
    if customer_id is not None:
        query = query.filter(Order.customer_id == customer_id)
    if status:
        query = query.filter(Order.status == status.upper())
    if days is not None:
        query = query.filter(Order.created_at >= utcnow() - timedelta(days=days))
    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()


# =============================================================================
# TRANSITIONS
# =============================================================================

def _restore_stock(order: Order) -> None:
    for item in order.items:
        if item.allocations:
            for allocation in item.allocations:
                release_stock(
                    product_id=item.product_id,
                    store_location=allocation.store_location,
                    quantity=allocation.quantity,
                    commit=False,
                )
        elif item.store_location:
            release_stock(
                product_id=item.product_id,
                store_location=item.store_location,
                quantity=item.quantity,
                commit=False,
            )
        else:
            current_app.logger.warning(
                "Order %s item %s has no recorded store; stock not restored", order.id, item.id
            )


def update_order_status(
    order_id: int,
    *,
    status: str,
    tracking_number: str | None = None,
    notes: str | None = None,
) -> Order:
    """
    Apply one lifecycle transition.

    Raises:
        ValidationError: unknown status
        NotFoundError: order missing
        InvalidTransitionError: transition not allowed from the current state
    """
    new_status = str(status or "").strip().upper()
    if new_status not in VALID_ORDER_STATUSES:
        raise ValidationError(f"Invalid status: {status}. Must be one of {VALID_ORDER_STATUSES}")
    tracking_number = clean_str(tracking_number, "tracking_number", max_length=64)
    notes = clean_str(notes, "notes")

    def _op():
        begin_write_transaction()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise NotFoundError(f"Order not found with id: {order_id}", details={"order_id": order_id})

        previous = order.status
        if not is_valid_transition(previous, new_status):
            raise InvalidTransitionError(
                f"Invalid status transition from {previous} to {new_status}",
                details={"from": previous, "to": new_status},
            )

        order.status = new_status

        if new_status == ORDER_STATUS_SHIPPED:
            if tracking_number:
                order.tracking_number = tracking_number
            elif not order.tracking_number:
                order.tracking_number = generate_tracking_number(order)

        if new_status == ORDER_STATUS_CANCELLED:
            _restore_stock(order)

        if new_status == ORDER_STATUS_DELIVERED:
            from .payment_service import settle_cod_payments_for_order
            settle_cod_payments_for_order(order)

        if notes:
            existing = f"{order.notes}\n" if order.notes else ""
            order.notes = f"{existing}{to_utc_z(utcnow())}: {notes}"

        db.session.commit()
        current_app.logger.info("Order %s status %s -> %s", order.id, previous, new_status)
        return order

    return run_with_retry(_op)


def cancel_order(order_id: int) -> Order:
    """Cancel an order and release all of its reserved stock."""
    return update_order_status(order_id, status=ORDER_STATUS_CANCELLED)


def apply_payment_outcome(order: Order, payment_status: str) -> None:
    """
    Reflect a settlement on the order inside the caller's transaction.

    A COMPLETED payment also confirms an order still in PLACED.
    """
    order.payment_status = payment_status
    if payment_status == PAYMENT_STATUS_COMPLETED and order.status == ORDER_STATUS_PLACED:
        order.status = ORDER_STATUS_CONFIRMED


def update_payment_status(order_id: int, payment_status: str) -> Order:
    """Manually set an order's payment status (PENDING, COMPLETED, FAILED)."""
    payment_status = str(payment_status or "").strip().upper()
    if payment_status not in VALID_PAYMENT_STATUSES:
        raise ValidationError(
            f"Invalid payment status: {payment_status}. Must be one of {VALID_PAYMENT_STATUSES}"
        )

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise NotFoundError(f"Order not found with id: {order_id}", details={"order_id": order_id})
        apply_payment_outcome(order, payment_status)
        db.session.commit()
        return order

    return run_with_retry(_op)
