# Overview: Service-layer operations for coupons; eligibility rules, redemption bookkeeping and admin CRUD.

"""
Coupons

Eligibility is checked in a fixed order so the customer always sees the
first rule that fails:

INVALID_COUPON -> COUPON_EXPIRED -> COUPON_WRONG_OUTLET ->
COUPON_ALREADY_USED -> COUPON_LIMIT_REACHED -> BELOW_MIN_ORDER

reward_value below 1 is a fraction of the order total; anything else is a
fixed rupee amount capped at the total.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from ..errors import BusinessRuleViolation, NotFoundError, ValidationError
from ..extensions import db
from ..models import Coupon, CouponUsage, Outlet
from .concurrency import lock_for_update, run_with_retry
from canteen.time_utils import parse_iso_datetime, to_utc_z, utcnow

logger = logging.getLogger(__name__)


def compute_discount(reward_value, total_paise: int) -> int:
    """
    Discount in paise for an order total.

    >>> compute_discount(Decimal("0.10"), 50000)
    5000
    >>> compute_discount(Decimal("100"), 8000)
    8000
    """
    if total_paise <= 0:
        return 0
    reward = Decimal(str(reward_value))
    if reward < 1:
        discount = (Decimal(total_paise) * reward).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return max(0, min(int(discount), total_paise))
    return min(int(reward * 100), total_paise)


def check_eligibility(
    code: str,
    user_id: int,
    outlet_id: int,
    total_paise: int,
    *,
    lock: bool = False,
    now: datetime | None = None,
) -> Coupon:
    """
    Return the coupon for `code` if `user_id` may redeem it on an order of
    `total_paise` at `outlet_id`; raise BusinessRuleViolation otherwise.
    """
    query = db.session.query(Coupon).filter_by(code=(code or "").strip())
    coupon = (lock_for_update(query) if lock else query).first()
    if not coupon or not coupon.is_active:
        raise BusinessRuleViolation("Invalid or inactive coupon", code="INVALID_COUPON")

    now = now or utcnow()
    if now < coupon.valid_from or now > coupon.valid_until:
        raise BusinessRuleViolation(
            "Coupon is not valid at this time",
            code="COUPON_EXPIRED",
            details={"valid_from": to_utc_z(coupon.valid_from), "valid_until": to_utc_z(coupon.valid_until)},
        )

    if coupon.outlet_id is not None and coupon.outlet_id != outlet_id:
        raise BusinessRuleViolation("Coupon is not valid for the selected outlet", code="COUPON_WRONG_OUTLET")

    already_used = db.session.query(CouponUsage.id).filter_by(
        coupon_id=coupon.id, user_id=user_id
    ).first()
    if already_used:
        raise BusinessRuleViolation("Coupon already used by this customer", code="COUPON_ALREADY_USED")

    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        raise BusinessRuleViolation("Coupon usage limit reached", code="COUPON_LIMIT_REACHED")

    if total_paise < coupon.min_order_value_paise:
        raise BusinessRuleViolation(
            "Order total is below the coupon minimum",
            code="BELOW_MIN_ORDER",
            details={
                "min_order_value_paise": coupon.min_order_value_paise,
                "current_total_paise": total_paise,
            },
        )

    return coupon


def record_usage(coupon: Coupon, user_id: int, order_id: int, amount_paise: int) -> CouponUsage:
    """Redeem inside the caller's transaction."""
    usage = CouponUsage(
        coupon_id=coupon.id,
        user_id=user_id,
        order_id=order_id,
        amount_paise=amount_paise,
        used_at=utcnow(),
    )
    db.session.add(usage)
    coupon.used_count = (coupon.used_count or 0) + 1
    db.session.flush()
    return usage


def reverse_usage(order_id: int) -> bool:
    """
    Undo the redemption tied to an order (cancellation path).

    Deletes the usage row and decrements used_count so the customer can
    redeem the coupon again. Runs inside the caller's transaction.
    """
    usage = db.session.query(CouponUsage).filter_by(order_id=order_id).first()
    if usage is None:
        return False
    coupon = lock_for_update(db.session.query(Coupon).filter_by(id=usage.coupon_id)).first()
    if coupon is not None and coupon.used_count > 0:
        coupon.used_count -= 1
    db.session.delete(usage)
    db.session.flush()
    return True


def list_available_coupons(user_id: int, outlet_id: int) -> list[Coupon]:
    """Active, in-window coupons for the outlet the customer has not redeemed yet."""
    now = utcnow()
    used_ids = db.select(CouponUsage.coupon_id).where(CouponUsage.user_id == user_id)
    coupons = (
        db.session.query(Coupon)
        .filter(
            Coupon.is_active.is_(True),
            Coupon.valid_from <= now,
            Coupon.valid_until >= now,
            db.or_(Coupon.outlet_id == outlet_id, Coupon.outlet_id.is_(None)),
            Coupon.id.notin_(used_ids),
        )
        .order_by(Coupon.valid_until.asc())
        .all()
    )
    return [c for c in coupons if c.usage_limit is None or c.used_count < c.usage_limit]


def parse_reward_value(raw) -> Decimal:
    """
    "10%" -> Decimal("0.10"); "100" or 100 -> Decimal("100") (rupees).

    Percentages must lie in (0, 100]; fixed amounts must be at least 1 rupee.
    """
    text = str(raw if raw is not None else "").strip()
    if not text:
        raise ValidationError("reward_value is required", code="INVALID_REWARD_VALUE")
    try:
        if text.endswith("%"):
            percent = Decimal(text[:-1].strip())
            if percent <= 0 or percent > 100:
                raise ValidationError(
                    "reward_value must be a percentage between 1% and 100%",
                    code="INVALID_REWARD_VALUE",
                )
            return (percent / 100).quantize(Decimal("0.0001"))
        amount = Decimal(text)
    except InvalidOperation:
        raise ValidationError("reward_value must be a percentage like '10%' or a rupee amount", code="INVALID_REWARD_VALUE")
    if amount < 1:
        raise ValidationError("Fixed reward_value must be at least 1 rupee", code="INVALID_REWARD_VALUE")
    return amount


def create_coupon(data: dict) -> Coupon:
    """Superadmin coupon creation. Duplicate codes raise COUPON_CODE_EXISTS (409)."""
    code = (data.get("code") or "").strip()
    if not code:
        raise ValidationError("code is required")

    reward_value = parse_reward_value(data.get("reward_value"))

    try:
        valid_from = parse_iso_datetime(data.get("valid_from"))
        valid_until = parse_iso_datetime(data.get("valid_until"))
    except ValueError:
        raise ValidationError("valid_from and valid_until must be ISO-8601 datetimes", code="INVALID_DATE")
    if not valid_from or not valid_until:
        raise ValidationError("valid_from and valid_until are required", code="INVALID_DATE")
    if valid_until < valid_from:
        raise ValidationError("valid_until must not be before valid_from", code="INVALID_DATE")

    min_order = data.get("min_order_value_paise", 0)
    if not isinstance(min_order, int) or isinstance(min_order, bool) or min_order < 0:
        raise ValidationError("min_order_value_paise must be a non-negative integer")

    usage_limit = data.get("usage_limit")
    if usage_limit is not None and (not isinstance(usage_limit, int) or isinstance(usage_limit, bool) or usage_limit < 1):
        raise ValidationError("usage_limit must be a positive integer")

    outlet_id = data.get("outlet_id")
    if outlet_id is not None and not db.session.get(Outlet, outlet_id):
        raise NotFoundError("Outlet not found", code="OUTLET_NOT_FOUND")

    def _op():
        if db.session.query(Coupon.id).filter_by(code=code).first():
            raise BusinessRuleViolation("A coupon with this code already exists", code="COUPON_CODE_EXISTS")
        coupon = Coupon(
            code=code,
            description=data.get("description"),
            reward_value=reward_value,
            min_order_value_paise=min_order,
            valid_from=valid_from,
            valid_until=valid_until,
            is_active=bool(data.get("is_active", True)),
            usage_limit=usage_limit,
            used_count=0,
            outlet_id=outlet_id,
        )
        db.session.add(coupon)
        db.session.commit()
        return coupon

    coupon = run_with_retry(_op)
    logger.info("Coupon %s created (reward=%s)", coupon.code, coupon.reward_value)
    return coupon


def list_coupons(outlet_id: int | None = None) -> list[Coupon]:
    query = db.session.query(Coupon)
    if outlet_id is not None:
        query = query.filter(Coupon.outlet_id == outlet_id)
    return query.order_by(Coupon.id.desc()).all()


def delete_coupon(coupon_id: int) -> str:
    """
    Hard-delete a never-redeemed coupon; deactivate one that has usages so
    redemption history stays intact. Returns "deleted" or "deactivated".
    """
    def _op():
        coupon = lock_for_update(db.session.query(Coupon).filter_by(id=coupon_id)).first()
        if not coupon:
            raise NotFoundError("Coupon not found", code="COUPON_NOT_FOUND")
        has_usage = db.session.query(CouponUsage.id).filter_by(coupon_id=coupon.id).first()
        if has_usage:
            coupon.is_active = False
            outcome = "deactivated"
        else:
            db.session.delete(coupon)
            outcome = "deleted"
        db.session.commit()
        return outcome

    return run_with_retry(_op)
