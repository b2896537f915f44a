# Overview: Flask API routes for orders; parses input and returns JSON responses.

# backend/shopsphere/routes/orders.py
"""
Order API Routes

DESIGN:
- Create orders (ONLINE ships to an address, IN_STORE is picked up at a store)
- Drive the lifecycle: CONFIRMED -> SHIPPED -> DELIVERED, or CANCELLED
- DELETE cancels (releases stock); orders are never physically removed

Amounts are integer paise throughout.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import order_service
from ..validation import DomainError, coerce_int, optional_int, require_json_object


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


# =============================================================================
# CREATION
# =============================================================================

@orders_bp.post("")
def create_order_route():
    """
    Create an order.

    Request body:
    {
        "customer_id": 7,
        "channel": "ONLINE",                      (ONLINE | IN_STORE)
        "items": [{"product_id": 1, "quantity": 2}],
        "shipping_address": "12 MG Road, Pune",   (required for ONLINE)
        "store_location": "PUNE-01",              (required for IN_STORE)
        "discount_code": "REWARD-150OFF-...",     (optional)
        "discount_amount_paise": 15000,           (optional, must match the code)
        "notes": "Leave at the door"              (optional)
    }

    Returns:
        201: Order created
        400: Invalid input or coupon rule violated
        404: Product not found
        409: Insufficient stock, or coupon already used
    """
    try:
        data = require_json_object(request.get_json(silent=True))

        order = order_service.create_order(
            customer_id=coerce_int(data.get("customer_id"), "customer_id", minimum=1),
            channel=data.get("channel"),
            items=data.get("items"),
            shipping_address=data.get("shipping_address"),
            store_location=data.get("store_location"),
            discount_code=data.get("discount_code"),
            discount_amount_paise=optional_int(data.get("discount_amount_paise"), "discount_amount_paise", minimum=0),
            notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict()}), 201

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# QUERIES
# =============================================================================

@orders_bp.get("")
def list_orders_route():
    """
    List orders, newest first.

    Query params:
    - customer_id: only this customer's orders
    - status: only orders in this status
    - days: only orders created in the last N days
    """
    try:
        orders = order_service.list_orders(
            customer_id=optional_int(request.args.get("customer_id"), "customer_id", minimum=1),
            status=request.args.get("status"),
            days=optional_int(request.args.get("days"), "days", minimum=1),
        )
        return jsonify({
            "orders": [o.to_dict(include_items=False) for o in orders],
            "count": len(orders),
        }), 200

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        return jsonify({"order": order.to_dict()}), 200

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# LIFECYCLE
# =============================================================================

@orders_bp.patch("/<int:order_id>/status")
def update_order_status_route(order_id: int):
    """
    Apply a status transition.

    Request body:
    {
        "status": "SHIPPED",
        "tracking_number": "BLR123456",   (optional, generated when omitted)
        "notes": "Handed to courier"      (optional, appended with a timestamp)
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True))

        if not data.get("status"):
            return jsonify({"error": "status required"}), 400

        order = order_service.update_order_status(
            order_id,
            status=data.get("status"),
            tracking_number=data.get("tracking_number"),
            notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict()}), 200

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/payment-status")
def update_payment_status_route(order_id: int):
    """Manually set payment_status (PENDING, COMPLETED, FAILED)."""
    try:
        data = require_json_object(request.get_json(silent=True))

        if not data.get("payment_status"):
            return jsonify({"error": "payment_status required"}), 400

        order = order_service.update_payment_status(order_id, data.get("payment_status"))
        return jsonify({"order": order.to_dict()}), 200

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order payment status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>")
def cancel_order_route(order_id: int):
    """Cancel an order and restore its reserved stock."""
    try:
        order = order_service.cancel_order(order_id)
        return jsonify({"order": order.to_dict()}), 200

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500
