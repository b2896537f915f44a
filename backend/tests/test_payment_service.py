"""
Payment tests: UPI OTP flow, COD deferred settlement, cancellation.
"""

import pytest

from shopsphere.services import order_service, payment_service
from shopsphere.services.payment_service import PaymentError, InvalidPaymentStateError
from shopsphere.validation import NotFoundError

from conftest import stock


@pytest.fixture
def order(db_session, customer, product):
    stock(product.id, "Store A", 10)
    return order_service.create_order(
        customer_id=customer.id,
        channel="ONLINE",
        shipping_address="12 MG Road, Pune",
        items=[{"product_id": product.id, "quantity": 1}],
    )


def _initiate(order, method="UPI", **kwargs):
    return payment_service.initiate_payment(
        order_id=order.id,
        customer_id=order.customer_id,
        amount_paise=order.total_amount_paise,
        method=method,
        **kwargs,
    )


def test_initiate_records_payment_and_method(db_session, order):
    payment = _initiate(order, upi_id="asha@okbank")

    assert payment.status == "INITIATED"
    assert payment.transaction_id is None
    assert payment.upi_id == "asha@okbank"
    assert order_service.get_order(order.id).payment_method == "UPI"


def test_initiate_rejects_unknown_method(db_session, order):
    with pytest.raises(PaymentError):
        _initiate(order, method="BITCOIN")


def test_initiate_requires_existing_order(db_session):
    with pytest.raises(NotFoundError):
        payment_service.initiate_payment(order_id=999, customer_id=1, amount_paise=100, method="UPI")


def test_initiate_refused_for_cancelled_order(db_session, order):
    order_service.cancel_order(order.id)
    with pytest.raises(InvalidPaymentStateError):
        _initiate(order)


def test_correct_otp_succeeds_and_completes_order(db_session, order):
    payment = _initiate(order)

    result = payment_service.process_payment(payment.id, "123456")

    assert result.status == "SUCCESS"
    assert result.transaction_id.startswith("TXN")
    assert result.failure_reason is None
    refreshed = order_service.get_order(order.id)
    assert refreshed.payment_status == "COMPLETED"
    assert refreshed.status == "CONFIRMED"


def test_wrong_otp_fails_payment_and_order_payment_status(db_session, order):
    payment = _initiate(order)

    result = payment_service.process_payment(payment.id, "000000")

    assert result.status == "FAILED"
    assert result.failure_reason
    assert result.transaction_id is None
    refreshed = order_service.get_order(order.id)
    assert refreshed.payment_status == "FAILED"
    assert refreshed.status == "CONFIRMED"


def test_success_confirms_placed_order(db_session, order):
    order.status = "PLACED"
    db_session.commit()
    payment = _initiate(order)

    payment_service.process_payment(payment.id, "123456")

    assert order_service.get_order(order.id).status == "CONFIRMED"


def test_payment_is_processed_once(db_session, order):
    payment = _initiate(order)
    payment_service.process_payment(payment.id, "000000")

    with pytest.raises(InvalidPaymentStateError):
        payment_service.process_payment(payment.id, "123456")
    assert payment_service.get_payment(payment.id).status == "FAILED"


def test_cod_cannot_be_processed_with_otp(db_session, order):
    payment = _initiate(order, method="COD")

    with pytest.raises(InvalidPaymentStateError):
        payment_service.process_payment(payment.id, "123456")
    assert payment_service.get_payment(payment.id).status == "INITIATED"


def test_cod_settles_only_after_delivery(db_session, order):
    payment = _initiate(order, method="COD")
    assert payment.status == "INITIATED"

    with pytest.raises(InvalidPaymentStateError):
        payment_service.settle_cod_payment(payment.id)

    order_service.update_order_status(order.id, status="SHIPPED")
    order_service.update_order_status(order.id, status="DELIVERED")

    settled = payment_service.get_payment(payment.id)
    assert settled.status == "SUCCESS"
    assert settled.transaction_id
    assert order_service.get_order(order.id).payment_status == "COMPLETED"

    with pytest.raises(InvalidPaymentStateError):
        payment_service.settle_cod_payment(payment.id)


def test_cod_payment_gets_collection_note(db_session, order):
    cod = _initiate(order, method="COD")
    upi = _initiate(order)
    annotated = _initiate(order, method="COD", notes="Call before delivery")

    assert cod.notes == payment_service.COD_DEFAULT_NOTE
    assert upi.notes is None
    assert annotated.notes == "Call before delivery"


def test_cancel_payment_marks_failed(db_session, order):
    payment = _initiate(order)

    cancelled = payment_service.cancel_payment(payment.id, "Customer abandoned checkout")

    assert cancelled.status == "FAILED"
    assert cancelled.failure_reason == "Customer abandoned checkout"
    with pytest.raises(InvalidPaymentStateError):
        payment_service.cancel_payment(payment.id)


def test_payment_cancelled_during_otp_wait_is_left_cancelled(app, db_session, order, monkeypatch):
    payment = _initiate(order)
    payment_id = payment.id

    def cancel_while_waiting(_seconds):
        payment_service.cancel_payment(payment_id, "Timed out")

    monkeypatch.setitem(app.config, "OTP_PROCESSING_DELAY_SECONDS", 0.01)
    monkeypatch.setattr(payment_service.time, "sleep", cancel_while_waiting)

    result = payment_service.process_payment(payment_id, "123456")

    assert result.status == "FAILED"
    assert result.failure_reason == "Timed out"
    assert order_service.get_order(order.id).payment_status == "PENDING"


def test_payment_queries(db_session, order):
    first = _initiate(order)
    payment_service.process_payment(first.id, "000000")
    second = _initiate(order)

    assert [p.id for p in payment_service.list_payments_for_order(order.id)] == [first.id, second.id]
    assert {p.id for p in payment_service.list_payments_for_customer(order.customer_id)} == {first.id, second.id}
    assert [p.id for p in payment_service.list_payments(status="failed")] == [first.id]

    with pytest.raises(NotFoundError):
        payment_service.get_payment(123456)
