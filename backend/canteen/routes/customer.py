# Overview: Flask API routes for the customer app; parses input and returns JSON responses.

# backend/canteen/routes/customer.py
"""
Customer API routes (role CUSTOMER).

All money values are integer paise. Errors are returned as
{"error", "code", "details"} with the status of the raised CanteenError.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import CanteenError, ValidationError
from ..models.auth import ROLE_CUSTOMER
from ..services import (
    cart_service,
    coupon_service,
    feedback_service,
    menu_service,
    order_service,
    pricing_service,
    quota_service,
    wallet_service,
)
from ..services.payment_service import PaymentDetails


customer_bp = Blueprint("customer", __name__, url_prefix="/api/customer")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


@customer_bp.post("/orders")
@require_auth
@require_role(ROLE_CUSTOMER)
def place_order_route():
    """
    Checkout.

    Body: payment_method, delivery_slot, outlet_id, coupon_code?,
    items [{product_id, quantity, unit_price_paise?}], payment_details?
    (gateway_order_id, gateway_payment_id, gateway_signature) for UPI/CARD.
    """
    try:
        placed = order_service.place_order(g.current_user.id, _json_body())
        body = placed.to_dict()
        body["message"] = "Order placed successfully"
        return jsonify(body), 201

    except CanteenError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to place order")
        return jsonify({"error": "Internal server error"}), 500


@customer_bp.get("/orders/ongoing")
@require_auth
@require_role(ROLE_CUSTOMER)
def ongoing_orders_route():
    orders = order_service.list_customer_orders(g.current_user.id, ongoing=True)
    return jsonify({"orders": [o.to_dict() for o in orders]}), 200


@customer_bp.get("/orders/history")
@require_auth
@require_role(ROLE_CUSTOMER)
def order_history_route():
    orders = order_service.list_customer_orders(g.current_user.id, ongoing=False)
    return jsonify({"orders": [o.to_dict() for o in orders]}), 200


@customer_bp.get("/orders/<int:order_id>")
@require_auth
@require_role(ROLE_CUSTOMER)
def get_order_route(order_id: int):
    try:
        order = order_service.get_customer_order(g.current_user.id, order_id)
        return jsonify({"order": order.to_dict()}), 200
    except CanteenError as e:
        return jsonify(e.to_dict()), e.status_code


@customer_bp.put("/orders/<int:order_id>/cancel")
@require_auth
@require_role(ROLE_CUSTOMER)
def cancel_order_route(order_id: int):
    try:
        result = order_service.cancel_order(g.current_user.id, order_id)
        return jsonify(result.to_dict()), 200

    except CanteenError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@customer_bp.get("/cart")
@require_auth
@require_role(ROLE_CUSTOMER)
def get_cart_route():
    cart = cart_service.get_cart(g.current_user.id)
    return jsonify({"cart": cart.to_dict() if cart else None}), 200


@customer_bp.post("/cart/items")
@require_auth
@require_role(ROLE_CUSTOMER)
def update_cart_route():
    """Body: product_id, quantity, action ("add" | "remove")."""
    try:
        data = _json_body()
        product_id = data.get("product_id")
        if not isinstance(product_id, int):
            raise ValidationError("product_id is required")

        cart, message = cart_service.update_item(
            g.current_user.id, product_id, data.get("quantity"), data.get("action")
        )
        return jsonify({"message": message, "cart": cart.to_dict()}), 200

    except CanteenError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update cart")
        return jsonify({"error": "Internal server error"}), 500


@customer_bp.get("/outlets")
@require_auth
@require_role(ROLE_CUSTOMER)
def list_outlets_route():
    outlets = menu_service.list_outlets()
    return jsonify({"outlets": [o.to_dict() for o in outlets]}), 200


@customer_bp.get("/outlets/<int:outlet_id>/menu")
@require_auth
@require_role(ROLE_CUSTOMER)
def outlet_menu_route(outlet_id: int):
    try:
        return jsonify(menu_service.get_menu(g.current_user.id, outlet_id)), 200
    except CanteenError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load menu")
        return jsonify({"error": "Internal server error"}), 500


@customer_bp.get("/wallet")
@require_auth
@require_role(ROLE_CUSTOMER)
def wallet_route():
    wallet = wallet_service.get_wallet(g.current_user.id)
    return jsonify({"wallet": wallet.to_dict()}), 200


@customer_bp.get("/wallet/transactions")
@require_auth
@require_role(ROLE_CUSTOMER)
def wallet_transactions_route():
    limit = request.args.get("limit", default=50, type=int)
    txn_type = request.args.get("type")
    txns = wallet_service.list_transactions(g.current_user.id, limit=max(1, min(limit, 200)), txn_type=txn_type)
    return jsonify({"transactions": [t.to_dict() for t in txns]}), 200


@customer_bp.post("/wallet/recharge")
@require_auth
@require_role(ROLE_CUSTOMER)
def wallet_recharge_route():
    """
    Credit a completed gateway checkout.

    Body: amount_paise, gateway_order_id, gateway_payment_id, gateway_signature.
    """
    try:
        data = _json_body()
        wallet, txn = wallet_service.recharge(
            g.current_user.id,
            data.get("amount_paise"),
            PaymentDetails.from_dict(data),
        )
        current_app.logger.info("Wallet recharge for user %s: %s paise", g.current_user.id, txn.amount_paise)
        return jsonify({
            "message": "Wallet recharged successfully",
            "wallet": wallet.to_dict(),
            "transaction": txn.to_dict(),
        }), 200

    except CanteenError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to recharge wallet")
        return jsonify({"error": "Internal server error"}), 500


@customer_bp.get("/coupons")
@require_auth
@require_role(ROLE_CUSTOMER)
def list_coupons_route():
    outlet_id = request.args.get("outlet_id", type=int)
    if not outlet_id:
        return jsonify({"error": "outlet_id is required", "code": "VALIDATION_ERROR", "details": {}}), 400
    coupons = coupon_service.list_available_coupons(g.current_user.id, outlet_id)
    return jsonify({"coupons": [c.to_dict() for c in coupons]}), 200


@customer_bp.post("/coupons/apply")
@require_auth
@require_role(ROLE_CUSTOMER)
def apply_coupon_route():
    """Body: code, current_total_paise, outlet_id. Read-only preview."""
    try:
        data = _json_body()
        code = data.get("code")
        outlet_id = data.get("outlet_id")
        if not code or not isinstance(outlet_id, int):
            raise ValidationError("code, current_total_paise and outlet_id are required")

        preview = pricing_service.preview_coupon(
            g.current_user.id, outlet_id, code, data.get("current_total_paise")
        )
        preview["message"] = "Coupon applied successfully"
        return jsonify(preview), 200

    except CanteenError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to apply coupon")
        return jsonify({"error": "Internal server error"}), 500


@customer_bp.get("/quota")
@require_auth
@require_role(ROLE_CUSTOMER)
def quota_route():
    return jsonify(quota_service.get_quota_status(g.current_user.id)), 200


@customer_bp.post("/feedback")
@require_auth
@require_role(ROLE_CUSTOMER)
def submit_feedback_route():
    """
    Body: order_id, items [{product_id, rating_overall, rating_taste?,
    rating_quality?, rating_quantity?, comment?}]. DELIVERED orders only.
    """
    try:
        data = _json_body()
        order_id = data.get("order_id")
        if not isinstance(order_id, int):
            raise ValidationError("order_id is required")

        rows = feedback_service.submit_feedback(g.current_user.id, order_id, data.get("items"))
        return jsonify({
            "message": "Feedback submitted successfully",
            "feedback": [row.to_dict() for row in rows],
        }), 201

    except CanteenError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to submit feedback")
        return jsonify({"error": "Internal server error"}), 500


@customer_bp.get("/feedback/pending")
@require_auth
@require_role(ROLE_CUSTOMER)
def pending_feedback_route():
    return jsonify({"pending": feedback_service.pending_feedback(g.current_user.id)}), 200
