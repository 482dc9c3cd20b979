from __future__ import annotations

from ..extensions import db
from canteen.time_utils import to_utc_z

CATEGORIES = ("Meals", "Starters", "Desserts", "Beverages", "SpecialFoods")

STOCK_ACTION_ADD = "ADD"
STOCK_ACTION_REMOVE = "REMOVE"
STOCK_ACTION_UPDATE = "UPDATE"


class Product(db.Model):
    """
    Menu item sold at a single outlet.

    company_paid products are eligible for the daily free quota; units past
    the quota are charged at price_paise like any other product.
    Rating columns are derived from Feedback and rewritten by
    feedback_service.recompute_product_stats.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_outlet_name", "outlet_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(32), nullable=False, default="Meals")
    is_veg = db.Column(db.Boolean, nullable=False, default=True)

    # Authoritative storage in paise
    price_paise = db.Column(db.Integer, nullable=False)
    company_paid = db.Column(db.Boolean, nullable=False, default=False)

    rating_sum_30d = db.Column(db.Float, nullable=False, default=0.0)
    rating_count_30d = db.Column(db.Integer, nullable=False, default=0)
    trend_score = db.Column(db.Float, nullable=False, default=0.0)
    rating_sum_lifetime = db.Column(db.Float, nullable=False, default=0.0)
    rating_count_lifetime = db.Column(db.Integer, nullable=False, default=0)
    average_rating_lifetime = db.Column(db.Float, nullable=False, default=0.0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    outlet = db.relationship("Outlet", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} outlet_id={self.outlet_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "outlet_id": self.outlet_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "is_veg": self.is_veg,
            "price_paise": self.price_paise,
            "company_paid": self.company_paid,
            "trend_score": self.trend_score,
            "rating_count_30d": self.rating_count_30d,
            "average_rating_lifetime": self.average_rating_lifetime,
            "rating_count_lifetime": self.rating_count_lifetime,
        }


class Inventory(db.Model):
    """
    Current stock of one product at one outlet.

    quantity never goes negative; every change appends a StockHistory row.
    """
    __tablename__ = "inventory"
    __table_args__ = (
        db.UniqueConstraint("product_id", "outlet_id", name="uq_inventory_product_outlet"),
        db.CheckConstraint("quantity >= 0", name="ck_inventory_quantity_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    threshold = db.Column(db.Integer, nullable=False, default=10)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", backref=db.backref("inventory", uselist=False, lazy=True))
    outlet = db.relationship("Outlet")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low(self) -> bool:
        return self.quantity <= self.threshold

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "outlet_id": self.outlet_id,
            "quantity": self.quantity,
            "threshold": self.threshold,
            "is_low_stock": self.is_low,
            "updated_at": to_utc_z(self.updated_at),
        }


class StockHistory(db.Model):
    """Append-only stock movement log (ADD, REMOVE, UPDATE)."""
    __tablename__ = "stock_history"
    __table_args__ = (
        db.Index("ix_stock_history_outlet_time", "outlet_id", "timestamp"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(16), nullable=False)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "outlet_id": self.outlet_id,
            "quantity": self.quantity,
            "action": self.action,
            "timestamp": to_utc_z(self.timestamp),
        }
