# Overview: Flask API routes for loyalty points and reward coupons.

# backend/shopsphere/routes/loyalty.py
"""
Loyalty API Routes

- ₹100 spent earns 1 point, credited once per order
- Points are redeemed for single-use coupons (one unused coupon per user)
- validate-code answers 200 with valid=false for coupon rule failures so the
  checkout page can show the message inline
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import loyalty_service, coupon_service
from ..validation import DomainError, coerce_int, clean_str, require_json_object


loyalty_bp = Blueprint("loyalty", __name__, url_prefix="/api/loyalty")


@loyalty_bp.get("/rewards")
def rewards_route():
    """Catalogue of rewards that can be redeemed for points."""
    return jsonify({"rewards": coupon_service.REWARD_CATALOG}), 200


@loyalty_bp.get("/admin/all")
def all_accounts_route():
    """Every loyalty account with owner name/email and balances."""
    try:
        accounts = loyalty_service.list_accounts()
        return jsonify({"accounts": accounts, "count": len(accounts)}), 200

    except Exception:
        current_app.logger.exception("Failed to list loyalty accounts")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.get("/admin/stats")
def stats_route():
    """Member count and points currently held across all accounts."""
    try:
        return jsonify(loyalty_service.get_loyalty_stats()), 200

    except Exception:
        current_app.logger.exception("Failed to load loyalty stats")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.get("/<int:user_id>")
def account_route(user_id: int):
    """Account balance, active coupon and transaction history (newest first)."""
    try:
        return jsonify(loyalty_service.get_account_details(user_id)), 200

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load loyalty account")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.post("/redeem")
def redeem_route():
    """
    Exchange points for a coupon.

    Request body:
    {
        "user_id": 7,
        "points": 1500,
        "reward_name": "₹150 Off"
    }

    Returns:
        201: {"discount_code": "...", "coupon": {...}, "points_balance": n}
        400: Insufficient points or unknown reward
        404: User not found
        409: An unused coupon is still active
    """
    try:
        data = require_json_object(request.get_json(silent=True))

        user_id = coerce_int(data.get("user_id"), "user_id", minimum=1)
        coupon = loyalty_service.redeem_reward(
            user_id=user_id,
            points=coerce_int(data.get("points"), "points", minimum=1),
            reward_name=clean_str(data.get("reward_name"), "reward_name", required=True, max_length=64),
        )
        account = loyalty_service.get_or_create_account(user_id)
        return jsonify({
            "discount_code": coupon.code,
            "coupon": coupon.to_dict(),
            "points_balance": account.points_balance,
        }), 201

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to redeem reward")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.route("/validate-code", methods=["GET", "POST"])
def validate_code_route():
    """
    Check a coupon against an order total.

    Accepts query params or a JSON body with code and order_total_paise.
    """
    try:
        if request.method == "POST":
            data = require_json_object(request.get_json(silent=True))
        else:
            data = request.args

        code = clean_str(data.get("code"), "code", required=True, max_length=64)
        order_total = coerce_int(data.get("order_total_paise"), "order_total_paise", minimum=0)

        try:
            quote = coupon_service.validate_coupon(code, order_total)
        except DomainError as e:
            return jsonify({"valid": False, "message": str(e), "details": e.details}), 200

        return jsonify({
            "valid": True,
            "discount_amount_paise": quote.discount_amount_paise,
            "minimum_order_amount_paise": quote.minimum_order_amount_paise,
            "message": "Discount code is valid",
        }), 200

    except DomainError as e:
        return jsonify({"error": str(e), "details": e.details}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to validate discount code")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.get("/active-coupon/<int:user_id>")
def active_coupon_route(user_id: int):
    try:
        coupon = coupon_service.get_active_coupon_for_user(user_id)
        return jsonify({
            "has_active_coupon": coupon is not None,
            "coupon": coupon.to_dict() if coupon else None,
        }), 200

    except Exception:
        current_app.logger.exception("Failed to load active coupon")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.get("/accruals")
def accruals_route():
    """
    Query params:
    - status: PENDING or DONE
    """
    try:
        entries = loyalty_service.list_accruals(status=request.args.get("status"))
        return jsonify({"accruals": [e.to_dict() for e in entries], "count": len(entries)}), 200

    except Exception:
        current_app.logger.exception("Failed to list loyalty accruals")
        return jsonify({"error": "Internal server error"}), 500
