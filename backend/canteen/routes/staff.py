# Overview: Flask API routes for outlet staff; order handling, walk-in orders and stock.

# backend/canteen/routes/staff.py
"""
Staff API routes (roles STAFF and ADMIN).

Staff can only act on the outlet they are assigned to (403 otherwise).
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import CanteenError, ValidationError
from ..models.auth import ROLE_ADMIN, ROLE_STAFF
from ..services import inventory_service, order_service, wallet_service
from canteen.time_utils import parse_iso_date


staff_bp = Blueprint("staff", __name__, url_prefix="/api/staff")

STAFF_ROLES = (ROLE_STAFF, ROLE_ADMIN)


def _date_arg(name: str, required: bool = False):
    raw = request.args.get(name)
    if not raw:
        if required:
            raise ValidationError(f"{name} is required (YYYY-MM-DD)", code="INVALID_DATE")
        return None
    try:
        return parse_iso_date(raw)
    except ValueError:
        raise ValidationError(f"Invalid {name} format. Use YYYY-MM-DD", code="INVALID_DATE")


@staff_bp.put("/orders/status")
@require_auth
@require_role(*STAFF_ROLES)
def update_order_status_route():
    """Body: order_id, status, outlet_id, order_item_ids (PARTIALLY_DELIVERED)."""
    try:
        data = request.get_json(silent=True) or {}
        order_id = data.get("order_id")
        outlet_id = data.get("outlet_id")
        order_item_ids = data.get("order_item_ids")

        if not isinstance(order_id, int) or not isinstance(outlet_id, int) or not data.get("status"):
            raise ValidationError("order_id, status and outlet_id are required")
        if order_item_ids is not None and (
            not isinstance(order_item_ids, list) or not all(isinstance(i, int) for i in order_item_ids)
        ):
            raise ValidationError("order_item_ids must be a list of integers")

        result = order_service.update_order_status(
            g.current_user, order_id, data["status"], outlet_id, order_item_ids
        )
        return jsonify(result.to_dict()), 200

    except CanteenError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@staff_bp.get("/outlets/<int:outlet_id>/orders")
@require_auth
@require_role(*STAFF_ROLES)
def list_outlet_orders_route(outlet_id: int):
    """Query: status, type, start_date, end_date (YYYY-MM-DD), limit."""
    try:
        order_service.ensure_staff_outlet(g.current_user, outlet_id)
        orders = order_service.list_outlet_orders(
            outlet_id,
            status=request.args.get("status"),
            order_type=request.args.get("type"),
            start_date=_date_arg("start_date"),
            end_date=_date_arg("end_date"),
            limit=max(1, min(request.args.get("limit", default=100, type=int), 500)),
        )
        return jsonify({"orders": [o.to_dict() for o in orders]}), 200

    except CanteenError as e:
        return jsonify(e.to_dict()), e.status_code


@staff_bp.get("/outlets/<int:outlet_id>/orders/<int:order_id>")
@require_auth
@require_role(*STAFF_ROLES)
def get_outlet_order_route(outlet_id: int, order_id: int):
    try:
        order_service.ensure_staff_outlet(g.current_user, outlet_id)
        order = order_service.get_outlet_order(outlet_id, order_id)
        return jsonify({"order": order.to_dict()}), 200

    except CanteenError as e:
        return jsonify(e.to_dict()), e.status_code


@staff_bp.post("/orders/manual")
@require_auth
@require_role(*STAFF_ROLES)
def manual_order_route():
    """Body: outlet_id, payment_method (CASH|UPI|CARD), items [{product_id, quantity}]."""
    try:
        order = order_service.create_manual_order(g.current_user, request.get_json(silent=True) or {})
        return jsonify({"message": "Manual order created", "order": order.to_dict()}), 201

    except CanteenError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create manual order")
        return jsonify({"error": "Internal server error"}), 500


@staff_bp.get("/outlets/<int:outlet_id>/stock")
@require_auth
@require_role(*STAFF_ROLES)
def stock_levels_route(outlet_id: int):
    try:
        order_service.ensure_staff_outlet(g.current_user, outlet_id)
        return jsonify({"stocks": inventory_service.get_stock_levels(outlet_id)}), 200
    except CanteenError as e:
        return jsonify(e.to_dict()), e.status_code


def _stock_change(operation):
    data = request.get_json(silent=True) or {}
    outlet_id = data.get("outlet_id")
    product_id = data.get("product_id")
    if not isinstance(outlet_id, int) or not isinstance(product_id, int):
        raise ValidationError("outlet_id, product_id and quantity are required")
    order_service.ensure_staff_outlet(g.current_user, outlet_id)
    return operation(outlet_id, product_id, data.get("quantity"))


@staff_bp.post("/stock/add")
@require_auth
@require_role(*STAFF_ROLES)
def add_stock_route():
    """Body: outlet_id, product_id, quantity."""
    try:
        update = _stock_change(inventory_service.add_stock)
        return jsonify({"message": "Stock added successfully", "stock": update.to_dict()}), 200

    except CanteenError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add stock")
        return jsonify({"error": "Internal server error"}), 500


@staff_bp.post("/stock/remove")
@require_auth
@require_role(*STAFF_ROLES)
def remove_stock_route():
    """Body: outlet_id, product_id, quantity."""
    try:
        update = _stock_change(inventory_service.remove_stock)
        return jsonify({"message": "Stock deducted successfully", "stock": update.to_dict()}), 200

    except CanteenError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to remove stock")
        return jsonify({"error": "Internal server error"}), 500


@staff_bp.get("/outlets/<int:outlet_id>/stock-history")
@require_auth
@require_role(*STAFF_ROLES)
def stock_history_route(outlet_id: int):
    """Query: start_date, end_date (YYYY-MM-DD, inclusive)."""
    try:
        order_service.ensure_staff_outlet(g.current_user, outlet_id)
        history = inventory_service.get_stock_history(
            outlet_id, _date_arg("start_date", required=True), _date_arg("end_date", required=True)
        )
        return jsonify({"history": [h.to_dict() for h in history]}), 200

    except CanteenError as e:
        return jsonify(e.to_dict()), e.status_code


@staff_bp.post("/wallet/recharge")
@require_auth
@require_role(*STAFF_ROLES)
def wallet_recharge_route():
    """Body: outlet_id, customer_id, amount_paise (cash collected at the counter)."""
    try:
        data = request.get_json(silent=True) or {}
        outlet_id = data.get("outlet_id")
        customer_id = data.get("customer_id")
        if not isinstance(outlet_id, int) or not isinstance(customer_id, int):
            raise ValidationError("outlet_id and customer_id are required")

        wallet, txn = wallet_service.staff_recharge(
            g.current_user, outlet_id, customer_id, data.get("amount_paise")
        )
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


@staff_bp.get("/outlets/<int:outlet_id>/wallet/recharges")
@require_auth
@require_role(*STAFF_ROLES)
def recharge_history_route(outlet_id: int):
    try:
        order_service.ensure_staff_outlet(g.current_user, outlet_id)
        limit = max(1, min(request.args.get("limit", default=100, type=int), 500))
        return jsonify({"transactions": wallet_service.recharge_history(outlet_id, limit=limit)}), 200
    except CanteenError as e:
        return jsonify(e.to_dict()), e.status_code
