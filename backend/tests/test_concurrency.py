"""
Transaction helper tests.
"""

import pytest

from shopsphere.extensions import db
from shopsphere.models import StoreInventoryRecord
from shopsphere.services.concurrency import begin_write_transaction, run_with_retry

from conftest import stock, on_hand


def test_begin_write_transaction_opens_a_transaction(db_session):
    db_session.commit()
    assert not db.session().in_transaction()

    begin_write_transaction()
    assert db.session().in_transaction()

    # Second call inside the open transaction is a no-op.
    begin_write_transaction()
    assert db.session().in_transaction()
    db_session.rollback()


def test_run_with_retry_rolls_back_on_failure(db_session, product):
    stock(product.id, "Store A", 5)

    def _op():
        begin_write_transaction()
        record = db.session.query(StoreInventoryRecord).filter_by(product_id=product.id).one()
        record.stock_quantity = 1
        db.session.flush()
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        run_with_retry(_op)

    assert on_hand(product.id, "Store A") == 5
