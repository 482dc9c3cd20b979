from __future__ import annotations

from ..extensions import db
from canteen.time_utils import to_utc_z


class Coupon(db.Model):
    """
    Discount codes redeemable once per customer.

    reward_value below 1 is a fraction of the cart total (0.10 = 10%);
    otherwise it is a fixed amount in rupees, capped at the cart total.
    outlet_id NULL means the coupon is valid at every outlet.
    """
    __tablename__ = "coupons"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True)
    description = db.Column(db.String(255), nullable=True)

    reward_value = db.Column(db.Numeric(10, 4), nullable=False)
    min_order_value_paise = db.Column(db.Integer, nullable=False, default=0)

    valid_from = db.Column(db.DateTime(timezone=True), nullable=False)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    usage_limit = db.Column(db.Integer, nullable=True)
    used_count = db.Column(db.Integer, nullable=False, default=0)

    outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    outlet = db.relationship("Outlet")

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "description": self.description,
            "reward_value": str(self.reward_value),
            "min_order_value_paise": self.min_order_value_paise,
            "valid_from": to_utc_z(self.valid_from),
            "valid_until": to_utc_z(self.valid_until),
            "is_active": self.is_active,
            "usage_limit": self.usage_limit,
            "used_count": self.used_count,
            "outlet_id": self.outlet_id,
        }


class CouponUsage(db.Model):
    """Redemption record; one per (coupon, customer)."""
    __tablename__ = "coupon_usages"
    __table_args__ = (
        db.UniqueConstraint("coupon_id", "user_id", name="uq_coupon_usages_coupon_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    amount_paise = db.Column(db.Integer, nullable=False)
    used_at = db.Column(db.DateTime(timezone=True), nullable=False)

    coupon = db.relationship("Coupon", backref=db.backref("usages", lazy=True))

    def to_dict(self):
        return {
            "id": self.id,
            "coupon_id": self.coupon_id,
            "user_id": self.user_id,
            "order_id": self.order_id,
            "amount_paise": self.amount_paise,
            "used_at": to_utc_z(self.used_at),
        }
