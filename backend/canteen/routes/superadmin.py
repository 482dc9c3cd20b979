# Overview: Flask API routes for superadmins; coupon management.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import CanteenError
from ..models.auth import ROLE_SUPERADMIN
from ..services import coupon_service


superadmin_bp = Blueprint("superadmin", __name__, url_prefix="/api/superadmin")


@superadmin_bp.post("/coupons")
@require_auth
@require_role(ROLE_SUPERADMIN)
def create_coupon_route():
    """
    Body: code, reward_value ("10%" or rupee amount), valid_from, valid_until
    (ISO-8601), min_order_value_paise?, usage_limit?, outlet_id?, description?,
    is_active?
    """
    try:
        coupon = coupon_service.create_coupon(request.get_json(silent=True) or {})
        return jsonify({"message": "Coupon created successfully", "coupon": coupon.to_dict()}), 201

    except CanteenError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create coupon")
        return jsonify({"error": "Internal server error"}), 500


@superadmin_bp.get("/coupons")
@require_auth
@require_role(ROLE_SUPERADMIN)
def list_coupons_route():
    outlet_id = request.args.get("outlet_id", type=int)
    coupons = coupon_service.list_coupons(outlet_id)
    return jsonify({"coupons": [c.to_dict() for c in coupons]}), 200


@superadmin_bp.delete("/coupons/<int:coupon_id>")
@require_auth
@require_role(ROLE_SUPERADMIN)
def delete_coupon_route(coupon_id: int):
    try:
        outcome = coupon_service.delete_coupon(coupon_id)
        return jsonify({"message": f"Coupon {outcome}", "result": outcome}), 200

    except CanteenError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete coupon")
        return jsonify({"error": "Internal server error"}), 500
