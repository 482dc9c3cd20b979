from __future__ import annotations

from ..extensions import db
from canteen.time_utils import to_utc_z


class Feedback(db.Model):
    """Customer rating of one product from one delivered order."""
    __tablename__ = "feedback"
    __table_args__ = (
        db.UniqueConstraint("user_id", "order_id", "product_id", name="uq_feedback_user_order_product"),
        db.Index("ix_feedback_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    rating_overall = db.Column(db.Float, nullable=False)
    rating_taste = db.Column(db.Float, nullable=False, default=0.0)
    rating_quality = db.Column(db.Float, nullable=False, default=0.0)
    rating_quantity = db.Column(db.Float, nullable=False, default=0.0)
    comment = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    order = db.relationship("Order", backref=db.backref("feedback", lazy=True))

    @property
    def weighted_score(self) -> float:
        return (
            self.rating_overall * 0.4
            + self.rating_taste * 0.3
            + self.rating_quality * 0.2
            + self.rating_quantity * 0.1
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "rating_overall": self.rating_overall,
            "rating_taste": self.rating_taste,
            "rating_quality": self.rating_quality,
            "rating_quantity": self.rating_quantity,
            "comment": self.comment,
            "created_at": to_utc_z(self.created_at),
        }
