# Overview: Service-layer operations for the daily free quota on company-paid products.

"""
Daily free quota

Each customer may take DAILY_FREE_LIMIT (default 5) units of company-paid
products per business day at no charge. Units beyond the allowance are
charged at the product price. Allocation is greedy in request order.

allocate_free and restore_free run inside the caller's transaction and never
commit; order_service owns the commit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from flask import current_app

from ..errors import ValidationError
from ..extensions import db
from ..models import UserFreeQuota
from .concurrency import lock_for_update
from canteen.time_utils import business_today


@dataclass
class QuotaAllocation:
    free_by_line: list[int] = field(default_factory=list)
    paid_by_line: list[int] = field(default_factory=list)

    @property
    def free_total(self) -> int:
        return sum(self.free_by_line)

    @property
    def paid_total(self) -> int:
        return sum(self.paid_by_line)


def daily_free_limit() -> int:
    return int(current_app.config.get("DAILY_FREE_LIMIT", 5))


def _locked_quota_row(user_id: int, day: date) -> UserFreeQuota | None:
    return lock_for_update(
        db.session.query(UserFreeQuota).filter_by(user_id=user_id, consumption_date=day)
    ).first()


def split_free(remaining: int, lines: list[int]) -> QuotaAllocation:
    """Greedy split of requested quantities against `remaining` free units."""
    allocation = QuotaAllocation()
    left = max(0, remaining)
    for qty in lines:
        if qty < 0:
            raise ValidationError("Quantity must not be negative", code="INVALID_QUANTITY")
        free = min(qty, left)
        left -= free
        allocation.free_by_line.append(free)
        allocation.paid_by_line.append(qty - free)
    return allocation


def allocate_free(user_id: int, day: date | None, lines: list[int]) -> QuotaAllocation:
    """
    Consume free units for the company-paid quantities in `lines`.

    The quota row for (user, day) is read under a row lock and created on
    first use. Nothing is written when no free unit is granted.
    """
    day = day or business_today()
    limit = daily_free_limit()

    row = _locked_quota_row(user_id, day)
    used = row.quantity_used if row else 0
    allocation = split_free(limit - used, lines)

    granted = allocation.free_total
    if granted > 0:
        if row is None:
            row = UserFreeQuota(user_id=user_id, consumption_date=day, quantity_used=0)
            db.session.add(row)
        row.quantity_used = used + granted
        db.session.flush()

    return allocation


def restore_free(user_id: int, day: date, qty: int) -> bool:
    """
    Give back `qty` free units for (user, day).

    Only applied when the recorded usage covers the full amount; returns
    whether a restore happened.
    """
    if qty <= 0:
        return False
    row = _locked_quota_row(user_id, day)
    if row is None or row.quantity_used < qty:
        return False
    row.quantity_used -= qty
    db.session.flush()
    return True


def get_quota_status(user_id: int, day: date | None = None) -> dict:
    day = day or business_today()
    limit = daily_free_limit()
    row = db.session.query(UserFreeQuota).filter_by(user_id=user_id, consumption_date=day).first()
    used = row.quantity_used if row else 0
    return {
        "date": day.isoformat(),
        "quantity_used": used,
        "remaining_quota": max(0, limit - used),
        "total_quota": limit,
    }
