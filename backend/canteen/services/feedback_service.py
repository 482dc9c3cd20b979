# Overview: Service-layer operations for product feedback and rating statistics.

"""
Feedback

Customers rate the products of their DELIVERED orders, once per
(order, product). After a submission commits, each rated product's
statistics are recomputed in the background:

weighted score = overall*0.4 + taste*0.3 + quality*0.2 + quantity*0.1

- rating_sum_30d / rating_count_30d / trend_score (mean) over the last 30 days
- rating_sum_lifetime / rating_count_lifetime / average_rating_lifetime
"""

from __future__ import annotations

import logging
from datetime import timedelta

from ..errors import BusinessRuleViolation, NotFoundError, ValidationError
from ..extensions import db
from ..models import Feedback, Order, Product
from ..models.orders import STATUS_DELIVERED
from .background_tasks import BackgroundTaskRunner, get_runner
from .concurrency import run_with_retry
from canteen.time_utils import utcnow

logger = logging.getLogger(__name__)

RATING_FIELDS = ("rating_overall", "rating_taste", "rating_quality", "rating_quantity")
TREND_WINDOW = timedelta(days=30)
PENDING_WINDOW = timedelta(hours=48)


def _rating(raw: dict, name: str, required: bool) -> float:
    value = raw.get(name)
    if value is None:
        if required:
            raise ValidationError(f"{name} is required", code="INVALID_RATING")
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value <= 5:
        raise ValidationError(f"{name} must be a number between 0 and 5", code="INVALID_RATING")
    return float(value)


def submit_feedback(
    user_id: int,
    order_id: int,
    items: list[dict],
    runner: BackgroundTaskRunner | None = None,
) -> list[Feedback]:
    if not isinstance(items, list) or not items:
        raise ValidationError("No feedback items provided", code="EMPTY_FEEDBACK")

    parsed = []
    for raw in items:
        if not isinstance(raw, dict) or not isinstance(raw.get("product_id"), int):
            raise ValidationError("Each feedback item needs a product_id")
        comment = raw.get("comment")
        parsed.append({
            "product_id": raw["product_id"],
            "rating_overall": _rating(raw, "rating_overall", required=True),
            "rating_taste": _rating(raw, "rating_taste", required=False),
            "rating_quality": _rating(raw, "rating_quality", required=False),
            "rating_quantity": _rating(raw, "rating_quantity", required=False),
            "comment": comment.strip() if isinstance(comment, str) and comment.strip() else None,
        })
    product_ids = [entry["product_id"] for entry in parsed]
    if len(set(product_ids)) != len(product_ids):
        raise ValidationError("Each product can only be rated once per submission", code="DUPLICATE_PRODUCT")

    def _op():
        order = db.session.get(Order, order_id)
        if order is None or order.customer_id != user_id:
            raise NotFoundError("Order not found", code="ORDER_NOT_FOUND")
        if order.status != STATUS_DELIVERED:
            raise BusinessRuleViolation("Only delivered orders can be rated", code="ORDER_NOT_DELIVERED")

        ordered = {item.product_id for item in order.items}
        not_ordered = sorted(set(product_ids) - ordered)
        if not_ordered:
            raise ValidationError(
                "Some products are not part of this order",
                code="PRODUCT_NOT_IN_ORDER",
                details={"product_ids": not_ordered},
            )

        already = [
            row.product_id
            for row in db.session.query(Feedback.product_id).filter(
                Feedback.order_id == order_id,
                Feedback.user_id == user_id,
                Feedback.product_id.in_(product_ids),
            )
        ]
        if already:
            raise BusinessRuleViolation(
                "Some products have already been rated",
                code="FEEDBACK_EXISTS",
                details={"already_rated_product_ids": sorted(already)},
            )

        now = utcnow()
        rows = [Feedback(user_id=user_id, order_id=order_id, created_at=now, **entry) for entry in parsed]
        db.session.add_all(rows)
        db.session.commit()
        return rows

    rows = run_with_retry(_op)

    runner = runner or get_runner()
    for product_id in product_ids:
        runner.submit(f"product-stats:{product_id}", recompute_product_stats, product_id)
    return rows


def recompute_product_stats(product_id: int) -> Product | None:
    product = db.session.get(Product, product_id)
    if product is None:
        logger.warning("Rating recompute skipped: product %s no longer exists", product_id)
        return None

    since = utcnow() - TREND_WINDOW
    lifetime = db.session.query(Feedback).filter(Feedback.product_id == product_id).all()
    recent = [f for f in lifetime if f.created_at >= since]

    lifetime_sum = sum(f.weighted_score for f in lifetime)
    recent_sum = sum(f.weighted_score for f in recent)

    product.rating_sum_lifetime = lifetime_sum
    product.rating_count_lifetime = len(lifetime)
    product.average_rating_lifetime = lifetime_sum / len(lifetime) if lifetime else 0.0
    product.rating_sum_30d = recent_sum
    product.rating_count_30d = len(recent)
    product.trend_score = recent_sum / len(recent) if recent else 0.0
    db.session.commit()
    return product


def pending_feedback(user_id: int) -> dict | None:
    """
    Most recent order delivered in the last 48 hours that still has unrated
    products, or None.
    """
    since = utcnow() - PENDING_WINDOW
    orders = (
        db.session.query(Order)
        .filter(
            Order.customer_id == user_id,
            Order.status == STATUS_DELIVERED,
            Order.delivered_at >= since,
        )
        .order_by(Order.delivered_at.desc())
        .limit(5)
        .all()
    )
    for order in orders:
        rated = {f.product_id for f in order.feedback}
        unrated = [
            {"product_id": item.product_id, "name": item.product.name if item.product else None}
            for item in order.items
            if item.product_id not in rated
        ]
        if unrated:
            return {
                "order_id": order.id,
                "order_number": order.order_number,
                "delivered_at": order.to_dict(include_items=False)["delivered_at"],
                "items": unrated,
            }
    return None
