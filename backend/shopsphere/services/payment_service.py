# Overview: Service-layer operations for payments; initiation, OTP processing and COD settlement.

"""
Payment Processing Service

WHY: Orders are settled by a payment attempt, either UPI (verified by a
one-time passcode against a simulated gateway) or Cash-on-Delivery.

STATE MACHINE:
    UPI: INITIATED -> PROCESSING -> SUCCESS | FAILED
    COD: INITIATED -> SUCCESS (only once the order is DELIVERED)
    INITIATED/PROCESSING -> FAILED via cancel_payment

OTP PROCESSING:
- Phase 1 commits PROCESSING and releases every lock.
- The simulated gateway delay runs outside any transaction, so other payments
  and orders are never blocked by it.
- Phase 2 re-locks only this payment. If it is no longer PROCESSING (cancelled
  meanwhile) it is returned untouched; otherwise it resolves to SUCCESS or FAILED
  and the owning order's payment_status follows.
- An OTP mismatch is a business outcome, not an error: the FAILED payment is
  returned normally with failure_reason populated.
"""

from __future__ import annotations

import time
import uuid

from flask import current_app

from ..extensions import db
from ..models import Order, Payment
from ..time_utils import epoch_millis
from ..validation import ValidationError, NotFoundError, ConflictError, MAX_AMOUNT_PAISE, clean_str
from .concurrency import lock_for_update, run_with_retry, begin_write_transaction
from .order_service import (
    apply_payment_outcome,
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_DELIVERED,
    PAYMENT_STATUS_COMPLETED,
    PAYMENT_STATUS_FAILED,
)


class PaymentError(ValidationError):
    """Raised for malformed payment requests."""


class InvalidPaymentStateError(ConflictError):
    """Raised when a payment operation does not fit the payment's current state."""


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_UPI = "UPI"
METHOD_COD = "COD"

VALID_METHODS = [METHOD_UPI, METHOD_COD]


# =============================================================================
# PAYMENT STATUS (CONSTANTS)
# =============================================================================

STATUS_INITIATED = "INITIATED"
STATUS_PROCESSING = "PROCESSING"
STATUS_SUCCESS = "SUCCESS"
STATUS_FAILED = "FAILED"

VALID_STATUSES = [STATUS_INITIATED, STATUS_PROCESSING, STATUS_SUCCESS, STATUS_FAILED]

# The only passcode the simulated gateway accepts.
MOCK_OTP = "123456"

OTP_FAILURE_REASON = "Invalid OTP. Payment failed."

COD_DEFAULT_NOTE = "Cash on Delivery - Payment will be collected at delivery"


def generate_transaction_id() -> str:
    return f"TXN{epoch_millis()}{uuid.uuid4().hex[:8].upper()}"


def _get_payment_locked(payment_id: int) -> Payment:
    payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
    if payment is None:
        raise NotFoundError(f"Payment not found with id: {payment_id}", details={"payment_id": payment_id})
    return payment


def _lock_order(order_id: int) -> Order:
    return lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()


def _mark_success(payment: Payment, order: Order) -> None:
    payment.status = STATUS_SUCCESS
    payment.transaction_id = generate_transaction_id()
    payment.failure_reason = None
    apply_payment_outcome(order, PAYMENT_STATUS_COMPLETED)


# =============================================================================
# INITIATION
# =============================================================================

def initiate_payment(
    *,
    order_id: int,
    customer_id: int,
    amount_paise: int,
    method: str,
    upi_id: str | None = None,
    notes: str | None = None,
) -> Payment:
    """
    Open a payment attempt in INITIATED.

    COD payments are never settled here; they wait for delivery.

    Raises:
        PaymentError: unknown method or non-positive amount
        NotFoundError: order missing
        InvalidPaymentStateError: order cancelled or already paid
    """
    method = str(method or "").strip().upper()
    if method not in VALID_METHODS:
        raise PaymentError(f"Invalid payment method: {method}. Must be one of {VALID_METHODS}")

    if amount_paise <= 0 or amount_paise > MAX_AMOUNT_PAISE:
        raise PaymentError("Payment amount must be positive")

    upi_id = clean_str(upi_id, "upi_id", max_length=128)
    if method == METHOD_COD and not notes:
        notes = COD_DEFAULT_NOTE

    def _op():
        order = _lock_order(order_id)
        if order is None:
            raise NotFoundError(f"Order not found with id: {order_id}", details={"order_id": order_id})

        if order.status == ORDER_STATUS_CANCELLED:
            raise InvalidPaymentStateError("Cannot pay for a cancelled order", details={"order_id": order_id})
        if order.payment_status == PAYMENT_STATUS_COMPLETED:
            raise InvalidPaymentStateError("Order is already paid", details={"order_id": order_id})

        if amount_paise != order.total_amount_paise:
            current_app.logger.warning(
                "Payment amount %s differs from order %s total %s",
                amount_paise, order.id, order.total_amount_paise,
            )

        payment = Payment(
            order_id=order.id,
            customer_id=customer_id,
            amount_paise=amount_paise,
            method=method,
            status=STATUS_INITIATED,
            upi_id=upi_id if method == METHOD_UPI else None,
            notes=notes,
        )
        db.session.add(payment)
        order.payment_method = method

        db.session.commit()
        current_app.logger.info("Payment %s initiated for order %s via %s", payment.id, order.id, method)
        return payment

    return run_with_retry(_op)


# =============================================================================
# OTP PROCESSING (UPI)
# =============================================================================

def process_payment(payment_id: int, otp: str | None) -> Payment:
    """
    Verify the OTP of a UPI payment and settle it.

    Returns the payment in SUCCESS or FAILED; FAILED is a normal outcome.

    Raises:
        NotFoundError: payment missing
        InvalidPaymentStateError: not UPI, or not INITIATED
    """
    def _start():
        begin_write_transaction()
        payment = _get_payment_locked(payment_id)
        if payment.method != METHOD_UPI:
            raise InvalidPaymentStateError(
                "OTP processing is only available for UPI payments",
                details={"payment_id": payment_id, "method": payment.method},
            )
        if payment.status != STATUS_INITIATED:
            raise InvalidPaymentStateError(
                f"Payment cannot be processed in status {payment.status}",
                details={"payment_id": payment_id, "status": payment.status},
            )
        payment.status = STATUS_PROCESSING
        db.session.commit()
        return payment

    run_with_retry(_start)

    delay = float(current_app.config.get("OTP_PROCESSING_DELAY_SECONDS", 0) or 0)
    if delay > 0:
        time.sleep(delay)

    def _resolve():
        begin_write_transaction()
        payment = _get_payment_locked(payment_id)
        if payment.status != STATUS_PROCESSING:
            current_app.logger.info(
                "Payment %s left %s while awaiting OTP resolution", payment.id, payment.status
            )
            db.session.commit()
            return payment

        order = _lock_order(payment.order_id)
        if (otp or "").strip() == MOCK_OTP:
            _mark_success(payment, order)
            current_app.logger.info(
                "Payment %s succeeded (transaction %s)", payment.id, payment.transaction_id
            )
        else:
            payment.status = STATUS_FAILED
            payment.failure_reason = OTP_FAILURE_REASON
            apply_payment_outcome(order, PAYMENT_STATUS_FAILED)
            current_app.logger.warning("Payment %s failed: OTP mismatch", payment.id)

        db.session.commit()
        return payment

    return run_with_retry(_resolve)


# =============================================================================
# COD SETTLEMENT / CANCELLATION
# =============================================================================

def settle_cod_payments_for_order(order: Order) -> list[Payment]:
    """Settle outstanding COD payments of a delivered order; caller commits."""
    pending = lock_for_update(
        db.session.query(Payment)
        .filter_by(order_id=order.id, method=METHOD_COD, status=STATUS_INITIATED)
        .order_by(Payment.id)
    ).all()
    for payment in pending:
        _mark_success(payment, order)
        current_app.logger.info("COD payment %s settled on delivery of order %s", payment.id, order.id)
    return pending


def settle_cod_payment(payment_id: int) -> Payment:
    """
    Mark a COD payment collected.

    Raises:
        InvalidPaymentStateError: not COD, not INITIATED, or order not yet DELIVERED
    """
    def _op():
        begin_write_transaction()
        payment = _get_payment_locked(payment_id)
        if payment.method != METHOD_COD:
            raise InvalidPaymentStateError(
                "Only COD payments are settled on delivery",
                details={"payment_id": payment_id, "method": payment.method},
            )
        if payment.status != STATUS_INITIATED:
            raise InvalidPaymentStateError(
                f"Payment cannot be settled in status {payment.status}",
                details={"payment_id": payment_id, "status": payment.status},
            )

        order = _lock_order(payment.order_id)
        if order.status != ORDER_STATUS_DELIVERED:
            raise InvalidPaymentStateError(
                "COD payment can only be settled once the order is delivered",
                details={"order_id": order.id, "order_status": order.status},
            )

        _mark_success(payment, order)
        db.session.commit()
        current_app.logger.info("COD payment %s settled for order %s", payment.id, order.id)
        return payment

    return run_with_retry(_op)


def cancel_payment(payment_id: int, reason: str | None = None) -> Payment:
    """Abandon an unresolved payment; the order's payment_status is left as is."""
    reason = clean_str(reason, "reason", max_length=255) or "Payment cancelled"

    def _op():
        payment = _get_payment_locked(payment_id)
        if payment.status not in (STATUS_INITIATED, STATUS_PROCESSING):
            raise InvalidPaymentStateError(
                f"Payment cannot be cancelled in status {payment.status}",
                details={"payment_id": payment_id, "status": payment.status},
            )
        payment.status = STATUS_FAILED
        payment.failure_reason = reason
        db.session.commit()
        current_app.logger.info("Payment %s cancelled: %s", payment.id, reason)
        return payment

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_payment(payment_id: int) -> Payment:
    payment = db.session.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError(f"Payment not found with id: {payment_id}", details={"payment_id": payment_id})
    return payment


def list_payments_for_order(order_id: int) -> list[Payment]:
    return db.session.query(Payment).filter_by(order_id=order_id).order_by(Payment.id).all()


def list_payments_for_customer(customer_id: int) -> list[Payment]:
    return (
        db.session.query(Payment)
        .filter_by(customer_id=customer_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .all()
    )


def list_payments(status: str | None = None) -> list[Payment]:
    query = db.session.query(Payment)
    if status:
        status = status.upper()
        if status not in VALID_STATUSES:
            raise ValidationError(f"Invalid payment status: {status}. Must be one of {VALID_STATUSES}")
        query = query.filter_by(status=status)
    return query.order_by(Payment.id.desc()).all()
