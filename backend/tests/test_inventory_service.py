"""
Store inventory tests: reserve/release, allocation across stores, derived totals.
"""

import pytest

from shopsphere.services import inventory_service
from shopsphere.services.inventory_service import (
    CHANNEL_ONLINE,
    CHANNEL_IN_STORE,
    InsufficientStockError,
    InsufficientStockAcrossStoresError,
)
from shopsphere.validation import ValidationError, NotFoundError

from conftest import stock, on_hand


def test_reserve_then_release_restores_exact_quantity(db_session, product):
    stock(product.id, "Store A", 7)

    inventory_service.reserve_stock(product_id=product.id, store_location="Store A", quantity=4)
    assert on_hand(product.id, "Store A") == 3

    inventory_service.release_stock(product_id=product.id, store_location="Store A", quantity=4)
    assert on_hand(product.id, "Store A") == 7


def test_reserve_more_than_on_hand_fails_without_change(db_session, product):
    stock(product.id, "Store A", 2)

    with pytest.raises(InsufficientStockError) as exc:
        inventory_service.reserve_stock(product_id=product.id, store_location="Store A", quantity=3)

    assert exc.value.details["on_hand"] == 2
    assert on_hand(product.id, "Store A") == 2


def test_reserve_from_unavailable_record_fails(db_session, product):
    stock(product.id, "Store A", 50, is_available=False)

    with pytest.raises(InsufficientStockError):
        inventory_service.reserve_stock(product_id=product.id, store_location="Store A", quantity=1)
    assert on_hand(product.id, "Store A") == 50


def test_reserve_at_store_without_record_fails(db_session, product):
    with pytest.raises(InsufficientStockError):
        inventory_service.reserve_stock(product_id=product.id, store_location="Nowhere", quantity=1)


def test_release_recreates_deleted_record(db_session, product):
    record = stock(product.id, "Store A", 1)
    inventory_service.delete_inventory_record(record.id)

    inventory_service.release_stock(product_id=product.id, store_location="Store A", quantity=2)
    assert on_hand(product.id, "Store A") == 2


def test_in_store_allocation_uses_requested_store_only(db_session, product):
    stock(product.id, "Store A", 10)
    stock(product.id, "Store B", 1)

    with pytest.raises(InsufficientStockError):
        inventory_service.allocate_for_order(
            product_id=product.id, channel=CHANNEL_IN_STORE, quantity=2, store_location="Store B",
        )
    db_session.rollback()
    assert on_hand(product.id, "Store A") == 10

    allocations = inventory_service.allocate_for_order(
        product_id=product.id, channel=CHANNEL_IN_STORE, quantity=2, store_location="Store A",
    )
    db_session.commit()
    assert [a.to_dict() for a in allocations] == [{"store_location": "Store A", "quantity": 2}]


def test_in_store_allocation_requires_store(db_session, product):
    with pytest.raises(ValidationError):
        inventory_service.allocate_for_order(product_id=product.id, channel=CHANNEL_IN_STORE, quantity=1)


def test_online_allocation_prefers_single_store(db_session, product):
    stock(product.id, "Store A", 3)
    stock(product.id, "Store B", 10)

    allocations = inventory_service.allocate_for_order(
        product_id=product.id, channel=CHANNEL_ONLINE, quantity=5,
    )
    db_session.commit()

    assert [(a.store_location, a.quantity) for a in allocations] == [("Store B", 5)]
    assert on_hand(product.id, "Store A") == 3
    assert on_hand(product.id, "Store B") == 5


def test_online_allocation_splits_across_stores(db_session, product):
    stock(product.id, "Store A", 5)
    stock(product.id, "Store B", 3)

    allocations = inventory_service.allocate_for_order(
        product_id=product.id, channel=CHANNEL_ONLINE, quantity=6,
    )
    db_session.commit()

    assert [(a.store_location, a.quantity) for a in allocations] == [("Store A", 5), ("Store B", 1)]
    assert on_hand(product.id, "Store A") == 0
    assert on_hand(product.id, "Store B") == 2


def test_online_allocation_skips_unavailable_stores(db_session, product):
    stock(product.id, "Store A", 5, is_available=False)
    stock(product.id, "Store B", 2)
    stock(product.id, "Store C", 2)

    allocations = inventory_service.allocate_for_order(
        product_id=product.id, channel=CHANNEL_ONLINE, quantity=3,
    )
    db_session.commit()

    assert [(a.store_location, a.quantity) for a in allocations] == [("Store B", 2), ("Store C", 1)]
    assert on_hand(product.id, "Store A") == 5


def test_online_allocation_shortfall_restores_partial_reservations(db_session, product):
    stock(product.id, "Store A", 2)
    stock(product.id, "Store B", 1)

    with pytest.raises(InsufficientStockAcrossStoresError) as exc:
        inventory_service.allocate_for_order(product_id=product.id, channel=CHANNEL_ONLINE, quantity=4)
    db_session.commit()

    assert exc.value.details["available_quantity"] == 3
    assert on_hand(product.id, "Store A") == 2
    assert on_hand(product.id, "Store B") == 1


def test_total_stock_is_derived_from_store_records(db_session, product):
    assert inventory_service.get_total_stock(product.id) == 0

    stock(product.id, "Store A", 4)
    stock(product.id, "Store B", 6)
    assert inventory_service.get_total_stock(product.id) == 10

    inventory_service.reserve_stock(product_id=product.id, store_location="Store B", quantity=5)
    summary = inventory_service.get_stock_summary(product.id)
    assert summary["total_stock"] == 5
    assert [s["store_location"] for s in summary["stores"]] == ["Store A", "Store B"]


def test_store_queries(db_session, product, cheap_product):
    stock(product.id, "Store A", 4)
    stock(product.id, "Store B", 0)
    stock(cheap_product.id, "Store A", 50)

    assert inventory_service.list_store_locations() == ["Store A", "Store B"]
    assert inventory_service.list_stores_with_product(product.id) == ["Store A"]
    assert inventory_service.is_product_available_at_store(product.id, "Store A", 4) is True
    assert inventory_service.is_product_available_at_store(product.id, "Store A", 5) is False
    assert inventory_service.is_product_available_at_store(product.id, "Store B") is False

    low = inventory_service.list_low_stock_at_store("Store A", threshold=10)
    assert [r.product_id for r in low] == [product.id]

    assert len(inventory_service.list_inventory_for_store("Store A")) == 2


def test_set_stock_quantity_requires_existing_record(db_session, product):
    with pytest.raises(NotFoundError):
        inventory_service.set_stock_quantity(product_id=product.id, store_location="Store A", stock_quantity=5)

    stock(product.id, "Store A", 1)
    inventory_service.set_stock_quantity(product_id=product.id, store_location="Store A", stock_quantity=9)
    assert on_hand(product.id, "Store A") == 9


def test_upsert_rejects_unknown_product(db_session):
    with pytest.raises(NotFoundError):
        stock(9999, "Store A", 1)
