# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

# backend/shopsphere/routes/payments.py
"""
Payment Processing API Routes

DESIGN:
- UPI: initiate, then process with the OTP (mock gateway accepts 123456)
- COD: initiate, then settle once the order is delivered
- An OTP mismatch is returned as 200 with the FAILED payment
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import payment_service
from ..validation import DomainError, coerce_int, require_json_object


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


# =============================================================================
# PAYMENT CREATION / PROCESSING
# =============================================================================

@payments_bp.post("/initiate")
def initiate_payment_route():
    """
    Open a payment attempt.

    Request body:
    {
        "order_id": 12,
        "customer_id": 7,
        "amount_paise": 85000,
        "method": "UPI",              (UPI | COD)
        "upi_id": "name@bank"         (optional)
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True))

        payment = payment_service.initiate_payment(
            order_id=coerce_int(data.get("order_id"), "order_id", minimum=1),
            customer_id=coerce_int(data.get("customer_id"), "customer_id", minimum=1),
            amount_paise=coerce_int(data.get("amount_paise"), "amount_paise", minimum=1),
            method=data.get("method"),
            upi_id=data.get("upi_id"),
            notes=data.get("notes"),
        )
        return jsonify({"payment": payment.to_dict()}), 201

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to initiate payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/process")
def process_payment_route(payment_id: int):
    """
    Request body:
    {
        "otp": "123456"
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True))

        if not data.get("otp"):
            return jsonify({"error": "otp required"}), 400

        payment = payment_service.process_payment(payment_id, str(data.get("otp")))
        return jsonify({
            "payment": payment.to_dict(),
            "success": payment.status == payment_service.STATUS_SUCCESS,
        }), 200

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to process payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/settle")
def settle_payment_route(payment_id: int):
    """Collect a COD payment for a delivered order."""
    try:
        payment = payment_service.settle_cod_payment(payment_id)
        return jsonify({"payment": payment.to_dict()}), 200

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to settle payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/cancel")
def cancel_payment_route(payment_id: int):
    """
    Request body (optional):
    {
        "reason": "Customer abandoned checkout"
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        payment = payment_service.cancel_payment(payment_id, data.get("reason"))
        return jsonify({"payment": payment.to_dict()}), 200

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENT QUERIES
# =============================================================================

@payments_bp.get("/<int:payment_id>")
def get_payment_route(payment_id: int):
    try:
        payment = payment_service.get_payment(payment_id)
        return jsonify({"payment": payment.to_dict()}), 200

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/order/<int:order_id>")
def order_payments_route(order_id: int):
    try:
        payments = payment_service.list_payments_for_order(order_id)
        return jsonify({"payments": [p.to_dict() for p in payments]}), 200
    except Exception:
        current_app.logger.exception("Failed to list order payments")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/customer/<int:customer_id>")
def customer_payments_route(customer_id: int):
    try:
        payments = payment_service.list_payments_for_customer(customer_id)
        return jsonify({"payments": [p.to_dict() for p in payments]}), 200
    except Exception:
        current_app.logger.exception("Failed to list customer payments")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("")
def list_payments_route():
    """
    Query params:
    - status: INITIATED, PROCESSING, SUCCESS, FAILED
    """
    try:
        payments = payment_service.list_payments(status=request.args.get("status"))
        return jsonify({"payments": [p.to_dict() for p in payments], "count": len(payments)}), 200

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list payments")
        return jsonify({"error": "Internal server error"}), 500
