# Overview: Flask API routes for per-store inventory; parses input and returns JSON responses.

# backend/shopsphere/routes/inventory.py
"""
Store inventory routes.

Stock is held per (product, store_location). A product's total is the sum of
its store records and is computed on read.
"""
from flask import Blueprint, request, jsonify, current_app

from ..services import inventory_service
from ..validation import DomainError, ValidationError, coerce_int, optional_int, clean_str, require_json_object


inventory_bp = Blueprint("store_inventory", __name__, url_prefix="/api/store-inventory")


def _parse_bool(value, field: str):
    if value is None or isinstance(value, bool):
        return value
    raise ValidationError(f"{field} must be a boolean")


@inventory_bp.post("")
def upsert_inventory_route():
    """
    Create or overwrite the stock record for a product at a store.

    Request body:
    {
        "product_id": 1,
        "store_location": "PUNE-01",
        "stock_quantity": 25,
        "is_available": true      (optional, default true)
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True))

        record = inventory_service.upsert_store_inventory(
            product_id=coerce_int(data.get("product_id"), "product_id", minimum=1),
            store_location=clean_str(data.get("store_location"), "store_location", required=True, max_length=128),
            stock_quantity=coerce_int(data.get("stock_quantity"), "stock_quantity", minimum=0),
            is_available=_parse_bool(data.get("is_available"), "is_available"),
        )
        return jsonify({"inventory": record.to_dict()}), 201

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to save store inventory")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/product/<int:product_id>")
def product_inventory_route(product_id: int):
    try:
        records = inventory_service.list_inventory_for_product(product_id)
        return jsonify({"inventory": [r.to_dict() for r in records]}), 200

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list product inventory")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/product/<int:product_id>/total")
def product_total_route(product_id: int):
    try:
        return jsonify(inventory_service.get_stock_summary(product_id)), 200

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to compute total stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/product/<int:product_id>/stores")
def product_stores_route(product_id: int):
    """Stores that currently have sellable units of the product."""
    try:
        stores = inventory_service.list_stores_with_product(product_id)
        return jsonify({"product_id": product_id, "stores": stores}), 200

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list stores for product")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/product/<int:product_id>/store/<store_location>")
def product_at_store_route(product_id: int, store_location: str):
    try:
        record = inventory_service.get_inventory_record(product_id, store_location)
        return jsonify({"inventory": record.to_dict()}), 200

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get store inventory")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/product/<int:product_id>/store/<store_location>/available")
def availability_route(product_id: int, store_location: str):
    """
    Query params:
    - quantity: units wanted (default 1)
    """
    try:
        quantity = optional_int(request.args.get("quantity"), "quantity", minimum=1) or 1
        available = inventory_service.is_product_available_at_store(product_id, store_location, quantity)
        return jsonify({
            "product_id": product_id,
            "store_location": store_location,
            "quantity": quantity,
            "available": available,
        }), 200

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to check availability")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.patch("/product/<int:product_id>/store/<store_location>/stock")
def set_stock_route(product_id: int, store_location: str):
    """
    Request body:
    {
        "stock_quantity": 40
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True))

        record = inventory_service.set_stock_quantity(
            product_id=product_id,
            store_location=store_location,
            stock_quantity=coerce_int(data.get("stock_quantity"), "stock_quantity", minimum=0),
        )
        return jsonify({"inventory": record.to_dict()}), 200

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to set stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/store/<store_location>")
def store_inventory_route(store_location: str):
    try:
        records = inventory_service.list_inventory_for_store(store_location)
        return jsonify({"store_location": store_location, "inventory": [r.to_dict() for r in records]}), 200

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list store inventory")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/store/<store_location>/low-stock")
def low_stock_route(store_location: str):
    """
    Query params:
    - threshold: stock at or below this is low (default LOW_STOCK_THRESHOLD)
    """
    try:
        threshold = optional_int(request.args.get("threshold"), "threshold", minimum=0)
        records = inventory_service.list_low_stock_at_store(store_location, threshold)
        return jsonify({"store_location": store_location, "inventory": [r.to_dict() for r in records]}), 200

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list low stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/stores")
def stores_route():
    try:
        return jsonify({"stores": inventory_service.list_store_locations()}), 200
    except Exception:
        current_app.logger.exception("Failed to list stores")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.delete("/<int:inventory_id>")
def delete_inventory_route(inventory_id: int):
    try:
        inventory_service.delete_inventory_record(inventory_id)
        return jsonify({"deleted": inventory_id}), 200

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete store inventory")
        return jsonify({"error": "Internal server error"}), 500
