# Overview: Service-layer pricing for carts and orders; quota split, coupon discount and totals.

"""
Pricing engine

price_cart partitions the requested lines into:
- free_items: company-paid units covered by today's free quota (price 0)
- paid_company_items: company-paid units beyond the quota (product price)
- regular_items: everything else (product price)

original_total = paid_company_amount + regular_amount
final_total = max(0, original_total - coupon_discount)

Unit prices always come from the Product row. The only write is the quota
consumption done by quota_service.allocate_free, inside the caller's
transaction.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Coupon, Product
from . import coupon_service, quota_service


@dataclass
class CartLine:
    product_id: int
    quantity: int


@dataclass
class PricedLine:
    product_id: int
    name: str
    quantity: int
    unit_price_paise: int
    free: bool = False

    @property
    def amount_paise(self) -> int:
        if self.free:
            return 0
        return self.quantity * self.unit_price_paise

    def to_dict(self) -> dict:
        data = asdict(self)
        data["amount_paise"] = self.amount_paise
        return data


@dataclass
class PricingBreakdown:
    free_items: list[PricedLine] = field(default_factory=list)
    paid_company_items: list[PricedLine] = field(default_factory=list)
    regular_items: list[PricedLine] = field(default_factory=list)
    coupon: Coupon | None = None
    coupon_discount: int = 0

    @property
    def free_amount(self) -> int:
        return sum(line.amount_paise for line in self.free_items)

    @property
    def free_value(self) -> int:
        # Catalogue value of the units the company covered
        return sum(line.quantity * line.unit_price_paise for line in self.free_items)

    @property
    def paid_company_amount(self) -> int:
        return sum(line.amount_paise for line in self.paid_company_items)

    @property
    def regular_amount(self) -> int:
        return sum(line.amount_paise for line in self.regular_items)

    @property
    def original_total(self) -> int:
        return self.paid_company_amount + self.regular_amount

    @property
    def final_total(self) -> int:
        return max(0, self.original_total - self.coupon_discount)

    @property
    def total_company_paid_qty(self) -> int:
        return sum(line.quantity for line in self.free_items) + sum(
            line.quantity for line in self.paid_company_items
        )

    @property
    def total_free_qty(self) -> int:
        return sum(line.quantity for line in self.free_items)

    def free_quantity_for(self, product_id: int) -> int:
        return sum(line.quantity for line in self.free_items if line.product_id == product_id)

    def to_dict(self) -> dict:
        return {
            "free_items": [line.to_dict() for line in self.free_items],
            "paid_company_items": [line.to_dict() for line in self.paid_company_items],
            "regular_items": [line.to_dict() for line in self.regular_items],
            "free_amount_paise": self.free_amount,
            "free_value_paise": self.free_value,
            "paid_company_amount_paise": self.paid_company_amount,
            "regular_amount_paise": self.regular_amount,
            "total_company_paid_qty": self.total_company_paid_qty,
            "original_total_paise": self.original_total,
            "coupon_code": self.coupon.code if self.coupon else None,
            "coupon_discount_paise": self.coupon_discount,
            "final_total_paise": self.final_total,
        }


def _load_products(outlet_id: int, lines: list[CartLine]) -> dict[int, Product]:
    ids = {line.product_id for line in lines}
    products = {p.id: p for p in db.session.query(Product).filter(Product.id.in_(ids)).all()}

    missing = sorted(ids - set(products))
    if missing:
        raise NotFoundError(
            "Product not found",
            code="PRODUCT_NOT_FOUND",
            details={"product_ids": missing},
        )

    foreign = sorted(pid for pid, p in products.items() if p.outlet_id != outlet_id)
    if foreign:
        raise ValidationError(
            "Product does not belong to the selected outlet",
            code="PRODUCT_WRONG_OUTLET",
            details={"product_ids": foreign, "outlet_id": outlet_id},
        )
    return products


def price_cart(
    user_id: int,
    outlet_id: int,
    items: list[CartLine],
    coupon_code: str | None = None,
    day: date | None = None,
    *,
    lock_coupon: bool = False,
) -> PricingBreakdown:
    """
    Price `items` for `user_id` at `outlet_id`.

    Consumes free quota for company-paid lines (greedy, request order) and
    validates the coupon against the original total. Raises NotFoundError,
    ValidationError or BusinessRuleViolation; the caller rolls back.
    """
    if not items:
        raise ValidationError("Order must contain at least one item", code="EMPTY_ORDER")

    products = _load_products(outlet_id, items)
    breakdown = PricingBreakdown()

    company_lines = [line for line in items if products[line.product_id].company_paid]
    allocation = quota_service.allocate_free(user_id, day, [line.quantity for line in company_lines])

    for line, free, paid in zip(company_lines, allocation.free_by_line, allocation.paid_by_line):
        product = products[line.product_id]
        if free:
            breakdown.free_items.append(PricedLine(product.id, product.name, free, product.price_paise, free=True))
        if paid:
            breakdown.paid_company_items.append(PricedLine(product.id, product.name, paid, product.price_paise))

    for line in items:
        product = products[line.product_id]
        if not product.company_paid:
            breakdown.regular_items.append(PricedLine(product.id, product.name, line.quantity, product.price_paise))

    if coupon_code:
        coupon = coupon_service.check_eligibility(
            coupon_code, user_id, outlet_id, breakdown.original_total, lock=lock_coupon
        )
        breakdown.coupon = coupon
        breakdown.coupon_discount = coupon_service.compute_discount(coupon.reward_value, breakdown.original_total)

    return breakdown


def preview_coupon(user_id: int, outlet_id: int, code: str, current_total: int) -> dict:
    """
    Dry-run coupon check for the cart screen; mutates nothing.
    """
    if not isinstance(current_total, int) or isinstance(current_total, bool) or current_total < 0:
        raise ValidationError("current_total_paise must be a non-negative integer")
    coupon = coupon_service.check_eligibility(code, user_id, outlet_id, current_total)
    discount = coupon_service.compute_discount(coupon.reward_value, current_total)
    return {
        "coupon": coupon.to_dict(),
        "discount_paise": discount,
        "final_total_paise": max(0, current_total - discount),
    }
