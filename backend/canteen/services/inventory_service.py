# Overview: Service-layer operations for outlet inventory; all-or-nothing deductions, restocks and stock history.

"""
Inventory deduction

deduct() is two-phase:

1. Validate every line under row locks and collect every problem
   (PRODUCT_NOT_IN_INVENTORY, INSUFFICIENT_STOCK) into a single
   STOCK_VALIDATION_FAILED error. Nothing is mutated if any line fails.
2. Decrement each row and append a REMOVE StockHistory entry.

Repeated product ids are summed before validation so two lines for the same
product cannot jointly overdraw stock.

deduct/restock run inside the caller's transaction. add_stock/remove_stock
are standalone staff operations and commit.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date

from ..errors import BusinessRuleViolation, NotFoundError, ValidationError
from ..extensions import db
from ..models import Inventory, Product, StockHistory
from ..models.catalog import STOCK_ACTION_ADD, STOCK_ACTION_REMOVE
from .concurrency import lock_for_update, run_with_retry
from canteen.time_utils import business_day_bounds, utcnow

logger = logging.getLogger(__name__)


@dataclass
class StockUpdate:
    product_id: int
    quantity: int
    previous_quantity: int
    new_quantity: int
    low_stock: bool = False

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "low_stock": self.low_stock,
        }


@dataclass
class DeductionResult:
    lines: list[StockUpdate] = field(default_factory=list)

    def to_dict(self) -> list[dict]:
        return [line.to_dict() for line in self.lines]


def aggregate_quantities(items) -> "OrderedDict[int, int]":
    """
    Sum quantities per product id, keeping first-seen order.

    `items` are (product_id, quantity) pairs or objects with those attributes.
    """
    totals: OrderedDict[int, int] = OrderedDict()
    for item in items:
        if isinstance(item, tuple):
            product_id, qty = item
        else:
            product_id, qty = item.product_id, item.quantity
        totals[product_id] = totals.get(product_id, 0) + qty
    return totals


def _locked_inventory(product_id: int, outlet_id: int) -> Inventory | None:
    return lock_for_update(
        db.session.query(Inventory).filter_by(product_id=product_id, outlet_id=outlet_id)
    ).first()


def _history(product_id: int, outlet_id: int, quantity: int, action: str) -> StockHistory:
    entry = StockHistory(
        product_id=product_id,
        outlet_id=outlet_id,
        quantity=quantity,
        action=action,
        timestamp=utcnow(),
    )
    db.session.add(entry)
    return entry


def deduct(outlet_id: int, items) -> DeductionResult:
    totals = aggregate_quantities(items)

    # Phase 1: validate all
    rows: dict[int, Inventory] = {}
    problems = []
    for product_id, qty in totals.items():
        if qty <= 0:
            raise ValidationError("Quantity must be positive", code="INVALID_QUANTITY",
                                  details={"product_id": product_id})
        inventory = _locked_inventory(product_id, outlet_id)
        if inventory is None:
            problems.append({
                "product_id": product_id,
                "code": "PRODUCT_NOT_IN_INVENTORY",
                "requested": qty,
            })
            continue
        if inventory.quantity < qty:
            problems.append({
                "product_id": product_id,
                "code": "INSUFFICIENT_STOCK",
                "available": inventory.quantity,
                "requested": qty,
            })
            continue
        rows[product_id] = inventory

    if problems:
        raise BusinessRuleViolation(
            "Some items are unavailable",
            code="STOCK_VALIDATION_FAILED",
            details={"items": problems},
        )

    # Phase 2: mutate all
    result = DeductionResult()
    for product_id, qty in totals.items():
        inventory = rows[product_id]
        previous = inventory.quantity
        inventory.quantity = previous - qty
        _history(product_id, outlet_id, qty, STOCK_ACTION_REMOVE)
        update = StockUpdate(product_id, qty, previous, inventory.quantity, low_stock=inventory.is_low)
        if update.low_stock:
            logger.warning(
                "Low stock for product %s at outlet %s: %d left (threshold %d)",
                product_id, outlet_id, inventory.quantity, inventory.threshold,
            )
        result.lines.append(update)

    db.session.flush()
    return result


def restock(outlet_id: int, items) -> list[StockUpdate]:
    """Return quantities to stock (ADD history); rows that no longer exist are skipped."""
    updates = []
    for product_id, qty in aggregate_quantities(items).items():
        if qty <= 0:
            continue
        inventory = _locked_inventory(product_id, outlet_id)
        if inventory is None:
            logger.warning("Restock skipped: no inventory row for product %s at outlet %s", product_id, outlet_id)
            continue
        previous = inventory.quantity
        inventory.quantity = previous + qty
        _history(product_id, outlet_id, qty, STOCK_ACTION_ADD)
        updates.append(StockUpdate(product_id, qty, previous, inventory.quantity, low_stock=inventory.is_low))
    db.session.flush()
    return updates


def _require_positive(quantity) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError("Quantity must be greater than 0", code="INVALID_QUANTITY")


def add_stock(outlet_id: int, product_id: int, quantity: int) -> StockUpdate:
    _require_positive(quantity)

    def _op():
        inventory = _locked_inventory(product_id, outlet_id)
        if inventory is None:
            raise NotFoundError("Product inventory not found", code="PRODUCT_NOT_IN_INVENTORY")
        previous = inventory.quantity
        inventory.quantity = previous + quantity
        _history(product_id, outlet_id, quantity, STOCK_ACTION_ADD)
        db.session.commit()
        return StockUpdate(product_id, quantity, previous, inventory.quantity, low_stock=inventory.is_low)

    return run_with_retry(_op)


def remove_stock(outlet_id: int, product_id: int, quantity: int) -> StockUpdate:
    _require_positive(quantity)

    def _op():
        inventory = _locked_inventory(product_id, outlet_id)
        if inventory is None:
            raise NotFoundError("Inventory record not found", code="PRODUCT_NOT_IN_INVENTORY")
        if inventory.quantity < quantity:
            raise BusinessRuleViolation(
                "Insufficient stock available",
                code="INSUFFICIENT_STOCK",
                details={"available": inventory.quantity, "requested": quantity},
            )
        previous = inventory.quantity
        inventory.quantity = previous - quantity
        _history(product_id, outlet_id, quantity, STOCK_ACTION_REMOVE)
        db.session.commit()
        return StockUpdate(product_id, quantity, previous, inventory.quantity, low_stock=inventory.is_low)

    return run_with_retry(_op)


def get_stock_levels(outlet_id: int) -> list[dict]:
    """Every product of the outlet with its quantity (0 when it has no inventory row)."""
    products = (
        db.session.query(Product)
        .filter(Product.outlet_id == outlet_id)
        .order_by(Product.name.asc())
        .all()
    )
    rows = {
        inv.product_id: inv
        for inv in db.session.query(Inventory).filter(Inventory.outlet_id == outlet_id).all()
    }
    levels = []
    for product in products:
        inventory = rows.get(product.id)
        quantity = inventory.quantity if inventory else 0
        threshold = inventory.threshold if inventory else 0
        levels.append({
            "product_id": product.id,
            "name": product.name,
            "category": product.category,
            "quantity": quantity,
            "threshold": threshold,
            "is_low_stock": inventory.is_low if inventory else True,
        })
    return levels


def get_stock_history(outlet_id: int, start: date, end: date) -> list[StockHistory]:
    if end < start:
        raise ValidationError("end_date must not be before start_date", code="INVALID_DATE_RANGE")
    lower, upper = business_day_bounds(start, end)
    return (
        db.session.query(StockHistory)
        .filter(
            StockHistory.outlet_id == outlet_id,
            StockHistory.action.in_((STOCK_ACTION_ADD, STOCK_ACTION_REMOVE)),
            StockHistory.timestamp >= lower,
            StockHistory.timestamp < upper,
        )
        .order_by(StockHistory.timestamp.desc(), StockHistory.id.desc())
        .all()
    )
