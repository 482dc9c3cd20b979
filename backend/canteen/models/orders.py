from __future__ import annotations

from ..extensions import db
from canteen.time_utils import to_utc_z

STATUS_PENDING = "PENDING"
STATUS_DELIVERED = "DELIVERED"
STATUS_PARTIALLY_DELIVERED = "PARTIALLY_DELIVERED"
STATUS_CANCELLED = "CANCELLED"
# Staff action on a partially delivered order; never stored as an order status
STATUS_PARTIAL_CANCEL = "PARTIAL_CANCEL"

ITEM_NOT_DELIVERED = "NOT_DELIVERED"
ITEM_DELIVERED = "DELIVERED"

TYPE_APP = "APP"
TYPE_MANUAL = "MANUAL"

PAYMENT_METHODS = ("WALLET", "UPI", "CARD", "CASH")

DELIVERY_SLOTS = (
    "SLOT_11_12",
    "SLOT_12_13",
    "SLOT_13_14",
    "SLOT_14_15",
    "SLOT_15_16",
    "SLOT_16_17",
)


def format_order_number(order_id: int | None) -> str | None:
    if order_id is None:
        return None
    return f"#ORD-{order_id:06d}"


class Order(db.Model):
    """
    Customer (APP) or walk-in (MANUAL) order.

    Lifecycle:
    PENDING -> DELIVERED | PARTIALLY_DELIVERED | CANCELLED
    PARTIALLY_DELIVERED -> DELIVERED (all items handed over or remainder cancelled)

    total_amount_paise is what the customer was charged, after the coupon
    discount.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_outlet_status_created", "outlet_id", "status", "created_at"),
        db.Index("ix_orders_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False)

    total_amount_paise = db.Column(db.Integer, nullable=False)
    coupon_discount_paise = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(16), nullable=False)
    gateway_payment_id = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(24), nullable=False, default=STATUS_PENDING, index=True)
    order_type = db.Column(db.String(16), nullable=False, default=TYPE_APP)

    delivery_date = db.Column(db.Date, nullable=False)
    delivery_slot = db.Column(db.String(16), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("User", backref=db.backref("orders", lazy=True))
    outlet = db.relationship("Outlet", backref=db.backref("orders", lazy=True))
    items = db.relationship("OrderItem", backref="order", lazy=True, order_by="OrderItem.id")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def order_number(self) -> str | None:
        return format_order_number(self.id)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "outlet_id": self.outlet_id,
            "total_amount_paise": self.total_amount_paise,
            "coupon_discount_paise": self.coupon_discount_paise,
            "payment_method": self.payment_method,
            "gateway_payment_id": self.gateway_payment_id,
            "status": self.status,
            "type": self.order_type,
            "delivery_date": self.delivery_date.isoformat() if self.delivery_date else None,
            "delivery_slot": self.delivery_slot,
            "created_at": to_utc_z(self.created_at),
            "delivered_at": to_utc_z(self.delivered_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    Order line.

    unit_price_paise is a snapshot taken at checkout; free_quantity is how
    many of the units were covered by the daily company-paid quota.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_paise = db.Column(db.Integer, nullable=False)
    free_quantity = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=ITEM_NOT_DELIVERED)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price_paise": self.unit_price_paise,
            "free_quantity": self.free_quantity,
            "status": self.status,
        }


class UserFreeQuota(db.Model):
    """Company-paid units consumed by a customer on one business day."""
    __tablename__ = "user_free_quota"
    __table_args__ = (
        db.UniqueConstraint("user_id", "consumption_date", name="uq_user_free_quota_user_date"),
        db.CheckConstraint("quantity_used >= 0", name="ck_user_free_quota_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    consumption_date = db.Column(db.Date, nullable=False)
    quantity_used = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "consumption_date": self.consumption_date.isoformat(),
            "quantity_used": self.quantity_used,
        }
