# Overview: Service-layer operations for orders; checkout, cancellation, staff status updates and reads.

"""
Order commit

place_order runs the whole checkout in one transaction:

1. validate outlet (exists, active) and customer
2. price the lines (free quota split + coupon)
3. settle payment for the final total
4. deduct stock for every line (free units included)
5. insert Order + OrderItems (price snapshot, free_quantity)
6. clear the cart
7. record coupon usage
8. commit

Any error rolls everything back: no order, stock, quota, wallet or coupon
change survives a failed checkout.

Status machine:
PENDING -> DELIVERED | PARTIALLY_DELIVERED | CANCELLED
PARTIALLY_DELIVERED -> DELIVERED, or PARTIAL_CANCEL (closes as DELIVERED)

Customer and staff cancellation share _reverse_order: restock, wallet refund
for WALLET orders, coupon usage reversal and quota restore.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date

from ..errors import (
    BusinessRuleViolation,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import CustomerDetails, Order, OrderItem, Outlet, Product, User
from ..models.orders import (
    DELIVERY_SLOTS,
    ITEM_DELIVERED,
    ITEM_NOT_DELIVERED,
    PAYMENT_METHODS,
    STATUS_CANCELLED,
    STATUS_DELIVERED,
    STATUS_PARTIAL_CANCEL,
    STATUS_PARTIALLY_DELIVERED,
    STATUS_PENDING,
    TYPE_APP,
    TYPE_MANUAL,
)
from . import cart_service, coupon_service, inventory_service, payment_service, pricing_service, quota_service
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .inventory_service import DeductionResult, aggregate_quantities
from .payment_gateway import SignatureVerifier
from .payment_service import PaymentDetails, SettlementResult
from .pricing_service import CartLine, PricingBreakdown
from canteen.time_utils import business_day_bounds, business_today, utcnow

logger = logging.getLogger(__name__)

ONGOING_STATUSES = (STATUS_PENDING, STATUS_PARTIALLY_DELIVERED)
HISTORY_STATUSES = (STATUS_DELIVERED, STATUS_CANCELLED)
STAFF_STATUSES = (STATUS_CANCELLED, STATUS_DELIVERED, STATUS_PARTIALLY_DELIVERED, STATUS_PARTIAL_CANCEL)
MANUAL_PAYMENT_METHODS = ("CASH", "UPI", "CARD")


@dataclass
class OrderLineRequest:
    product_id: int
    quantity: int
    unit_price_paise: int | None = None


@dataclass
class OrderRequest:
    outlet_id: int
    payment_method: str
    items: list[OrderLineRequest]
    delivery_slot: str | None = None
    coupon_code: str | None = None
    payment_details: PaymentDetails = field(default_factory=PaymentDetails)


@dataclass
class PlacedOrder:
    order: Order
    pricing: PricingBreakdown
    settlement: SettlementResult
    deduction: DeductionResult

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "pricing_breakdown": self.pricing.to_dict(),
            "coupon_discount_paise": self.pricing.coupon_discount,
            "stock_updates": self.deduction.to_dict(),
            "wallet_transaction": (
                self.settlement.wallet_transaction.to_dict() if self.settlement.wallet_transaction else None
            ),
            "gateway_payment_id": self.settlement.gateway_payment_id,
        }


@dataclass
class StatusUpdateResult:
    order: Order
    message: str
    refund_paise: int = 0
    restocked: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "order": self.order.to_dict(),
            "refund_paise": self.refund_paise,
            "restocked": [u.to_dict() for u in self.restocked],
        }


def _positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _parse_items(raw_items, *, allow_price: bool = True) -> list[OrderLineRequest]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list", code="EMPTY_ORDER")
    lines = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object", details={"index": index})
        product_id = raw.get("product_id")
        quantity = raw.get("quantity")
        if not _positive_int(product_id):
            raise ValidationError("product_id must be a positive integer", details={"index": index})
        if not _positive_int(quantity):
            raise ValidationError(
                "quantity must be a positive integer", code="INVALID_QUANTITY", details={"index": index}
            )
        unit_price = raw.get("unit_price_paise") if allow_price else None
        if unit_price is not None and (not isinstance(unit_price, int) or isinstance(unit_price, bool) or unit_price < 0):
            raise ValidationError("unit_price_paise must be a non-negative integer", details={"index": index})
        lines.append(OrderLineRequest(product_id, quantity, unit_price))
    return lines


def parse_order_request(payload: dict | None) -> OrderRequest:
    """Validate a customer checkout payload before any transaction starts."""
    payload = payload or {}

    method = payload.get("payment_method")
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            "Invalid payment method",
            code="INVALID_PAYMENT_METHOD",
            details={"allowed": list(PAYMENT_METHODS)},
        )

    slot = payload.get("delivery_slot")
    if slot not in DELIVERY_SLOTS:
        raise ValidationError(
            "Invalid delivery slot",
            code="INVALID_DELIVERY_SLOT",
            details={"allowed": list(DELIVERY_SLOTS)},
        )

    outlet_id = payload.get("outlet_id")
    if not _positive_int(outlet_id):
        raise ValidationError("outlet_id must be a positive integer", code="INVALID_OUTLET")

    coupon_code = payload.get("coupon_code")
    if coupon_code is not None and not isinstance(coupon_code, str):
        raise ValidationError("coupon_code must be a string")

    return OrderRequest(
        outlet_id=outlet_id,
        payment_method=method,
        items=_parse_items(payload.get("items")),
        delivery_slot=slot,
        coupon_code=(coupon_code or "").strip() or None,
        payment_details=PaymentDetails.from_dict(payload.get("payment_details")),
    )


def _require_active_outlet(outlet_id: int) -> Outlet:
    outlet = db.session.get(Outlet, outlet_id)
    if outlet is None:
        raise NotFoundError("Outlet not found", code="OUTLET_NOT_FOUND")
    if not outlet.is_active:
        raise BusinessRuleViolation("Selected outlet is currently inactive", code="OUTLET_INACTIVE")
    return outlet


def _require_customer(user_id: int) -> CustomerDetails:
    details = db.session.query(CustomerDetails).filter_by(user_id=user_id).first()
    if details is None:
        raise NotFoundError("Customer not found", code="CUSTOMER_NOT_FOUND")
    return details


def _merge_lines(lines: list[OrderLineRequest]) -> list[CartLine]:
    return [CartLine(pid, qty) for pid, qty in aggregate_quantities(lines).items()]


def _check_client_prices(lines: list[OrderLineRequest], prices: dict[int, int]) -> None:
    mismatched = [
        {"product_id": line.product_id, "submitted": line.unit_price_paise, "current": prices[line.product_id]}
        for line in lines
        if line.unit_price_paise is not None and line.unit_price_paise != prices[line.product_id]
    ]
    if mismatched:
        raise BusinessRuleViolation(
            "Product prices have changed; refresh the cart",
            code="PRICE_MISMATCH",
            details={"items": mismatched},
        )


def place_order(user_id: int, payload: dict | OrderRequest, verifier: SignatureVerifier | None = None) -> PlacedOrder:
    request = payload if isinstance(payload, OrderRequest) else parse_order_request(payload)
    cart_lines = _merge_lines(request.items)

    def _op():
        begin_write_transaction()

        _require_active_outlet(request.outlet_id)
        customer = _require_customer(user_id)
        day = business_today()

        pricing = pricing_service.price_cart(
            user_id, request.outlet_id, cart_lines, request.coupon_code, day, lock_coupon=True
        )
        prices = {
            line.product_id: line.unit_price_paise
            for line in pricing.free_items + pricing.paid_company_items + pricing.regular_items
        }
        _check_client_prices(request.items, prices)

        settlement = payment_service.settle(
            request.payment_method,
            pricing.final_total,
            user_id,
            request.payment_details,
            verifier,
        )

        deduction = inventory_service.deduct(request.outlet_id, cart_lines)

        order = Order(
            customer_id=user_id,
            outlet_id=request.outlet_id,
            total_amount_paise=pricing.final_total,
            coupon_discount_paise=pricing.coupon_discount,
            payment_method=request.payment_method,
            gateway_payment_id=settlement.gateway_payment_id,
            status=STATUS_PENDING,
            order_type=TYPE_APP,
            delivery_date=day,
            delivery_slot=request.delivery_slot,
            created_at=utcnow(),
        )
        db.session.add(order)
        db.session.flush()

        for line in cart_lines:
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price_paise=prices[line.product_id],
                free_quantity=pricing.free_quantity_for(line.product_id),
                status=ITEM_NOT_DELIVERED,
            ))

        if settlement.wallet_transaction is not None:
            settlement.wallet_transaction.order_id = order.id
            settlement.wallet_transaction.description = f"Payment for order {order.order_number}"

        cart_service.clear_cart(user_id)

        if pricing.coupon is not None:
            coupon_service.record_usage(pricing.coupon, user_id, order.id, pricing.coupon_discount)

        customer.order_count = (customer.order_count or 0) + 1

        db.session.commit()
        return PlacedOrder(order=order, pricing=pricing, settlement=settlement, deduction=deduction)

    placed = run_with_retry(_op)
    logger.info(
        "Order %s placed by user %s at outlet %s: %d paise via %s",
        placed.order.order_number, user_id, request.outlet_id,
        placed.order.total_amount_paise, placed.order.payment_method,
    )
    return placed


def _restore_quota(order: Order, items: list[OrderItem]) -> bool:
    free_qty = sum(item.free_quantity or 0 for item in items)
    if order.customer_id is None or free_qty <= 0:
        return False
    return quota_service.restore_free(order.customer_id, order.delivery_date, free_qty)


def _reverse_order(order: Order, reason: str) -> StatusUpdateResult:
    """Full cancellation of a PENDING order inside the caller's transaction."""
    items = list(order.items)
    restocked = inventory_service.restock(order.outlet_id, [(i.product_id, i.quantity) for i in items])

    refund = 0
    if order.order_type == TYPE_APP and order.payment_method == "WALLET" and order.total_amount_paise > 0:
        txn = payment_service.credit_wallet(
            order.customer_id,
            order.total_amount_paise,
            f"Refund for cancelled order {order.order_number}",
            order_id=order.id,
        )
        refund = txn.amount_paise if txn else 0

    coupon_service.reverse_usage(order.id)
    _restore_quota(order, items)

    order.status = STATUS_CANCELLED
    return StatusUpdateResult(order=order, message=reason, refund_paise=refund, restocked=restocked)


def _locked_order(order_id: int) -> Order | None:
    return lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()


def cancel_order(user_id: int, order_id: int) -> StatusUpdateResult:
    """Customer cancellation; only PENDING orders can be cancelled."""
    def _op():
        order = _locked_order(order_id)
        if order is None or order.customer_id != user_id:
            raise NotFoundError("Order not found", code="ORDER_NOT_FOUND")
        if order.status != STATUS_PENDING:
            raise InvalidTransitionError(
                "Only pending orders can be cancelled",
                code="ORDER_NOT_CANCELLABLE",
                details={"status": order.status},
            )
        result = _reverse_order(order, "Order cancelled successfully")
        db.session.commit()
        return result

    result = run_with_retry(_op)
    logger.info("Order %s cancelled by customer %s (refund %d paise)",
                result.order.order_number, user_id, result.refund_paise)
    return result


def ensure_staff_outlet(staff_user: User, outlet_id: int) -> None:
    """Staff may only act on the outlet they are assigned to."""
    if staff_user.outlet_id != outlet_id:
        raise ForbiddenError("You are not assigned to this outlet", code="OUTLET_FORBIDDEN")


def _mark_delivered(order: Order, items: list[OrderItem]) -> None:
    for item in items:
        item.status = ITEM_DELIVERED
    order.status = STATUS_DELIVERED
    order.delivered_at = utcnow()


def update_order_status(
    staff_user: User,
    order_id: int,
    status: str,
    outlet_id: int,
    order_item_ids: list[int] | None = None,
) -> StatusUpdateResult:
    if status not in STAFF_STATUSES:
        raise ValidationError(
            "Invalid status",
            code="INVALID_STATUS",
            details={"allowed": list(STAFF_STATUSES)},
        )
    ensure_staff_outlet(staff_user, outlet_id)

    def _op():
        order = _locked_order(order_id)
        if order is None or order.outlet_id != outlet_id:
            raise NotFoundError("Order not found for this outlet", code="ORDER_NOT_FOUND")

        if status == STATUS_CANCELLED:
            if order.status != STATUS_PENDING:
                raise InvalidTransitionError(
                    "Only pending orders can be cancelled",
                    code="ORDER_NOT_CANCELLABLE",
                    details={"status": order.status},
                )
            result = _reverse_order(order, "Order cancelled and stock updated")

        elif status == STATUS_DELIVERED:
            if order.status == STATUS_CANCELLED:
                raise InvalidTransitionError("Cannot mark a cancelled order as delivered.",
                                             code="CANNOT_DELIVER_CANCELLED")
            if order.status == STATUS_DELIVERED:
                raise InvalidTransitionError("Order is already delivered", code="ORDER_ALREADY_DELIVERED")
            _mark_delivered(order, [i for i in order.items if i.status != ITEM_DELIVERED])
            result = StatusUpdateResult(order=order, message="Order marked as delivered")

        elif status == STATUS_PARTIALLY_DELIVERED:
            if order.status not in ONGOING_STATUSES:
                raise InvalidTransitionError(
                    "Only pending or partially delivered orders can be partially delivered",
                    code="INVALID_TRANSITION",
                    details={"status": order.status},
                )
            ids = set(order_item_ids or [])
            if not ids:
                raise ValidationError("order_item_ids are required for partial delivery",
                                      code="ORDER_ITEMS_REQUIRED")
            by_id = {item.id: item for item in order.items}
            unknown = sorted(ids - set(by_id))
            if unknown:
                raise ValidationError("Some order items do not belong to this order",
                                      code="INVALID_ORDER_ITEMS", details={"order_item_ids": unknown})
            for item_id in ids:
                by_id[item_id].status = ITEM_DELIVERED
            if all(item.status == ITEM_DELIVERED for item in order.items):
                _mark_delivered(order, [])
                result = StatusUpdateResult(order=order, message="All items delivered; order marked as delivered")
            else:
                order.status = STATUS_PARTIALLY_DELIVERED
                result = StatusUpdateResult(order=order, message="Order partially delivered")

        else:  # PARTIAL_CANCEL
            if order.status != STATUS_PARTIALLY_DELIVERED:
                raise InvalidTransitionError(
                    "Only partially delivered orders can be partially cancelled",
                    code="INVALID_TRANSITION",
                    details={"status": order.status},
                )
            pending = [item for item in order.items if item.status != ITEM_DELIVERED]
            restocked = inventory_service.restock(
                order.outlet_id, [(i.product_id, i.quantity) for i in pending]
            )
            refund_due = min(
                sum((i.quantity - (i.free_quantity or 0)) * i.unit_price_paise for i in pending),
                order.total_amount_paise,
            )
            refund = 0
            if order.order_type == TYPE_APP and refund_due > 0:
                txn = payment_service.credit_wallet(
                    order.customer_id,
                    refund_due,
                    f"Refund for undelivered items of order {order.order_number}",
                    order_id=order.id,
                )
                refund = txn.amount_paise if txn else 0
            _restore_quota(order, pending)
            order.status = STATUS_DELIVERED
            order.delivered_at = utcnow()
            result = StatusUpdateResult(
                order=order,
                message="Remaining items cancelled; order closed",
                refund_paise=refund,
                restocked=restocked,
            )

        db.session.commit()
        return result

    result = run_with_retry(_op)
    logger.info("Order %s -> %s by staff %s", result.order.order_number, status, staff_user.id)
    return result


def create_manual_order(staff_user: User, payload: dict | None) -> Order:
    """
    Walk-in order recorded by staff: no customer, type MANUAL, delivered on
    the spot. Stock is deducted all-or-nothing like app orders.
    """
    payload = payload or {}
    outlet_id = payload.get("outlet_id")
    if not _positive_int(outlet_id):
        raise ValidationError("outlet_id must be a positive integer", code="INVALID_OUTLET")
    method = payload.get("payment_method")
    if method not in MANUAL_PAYMENT_METHODS:
        raise ValidationError(
            "Invalid payment method",
            code="INVALID_PAYMENT_METHOD",
            details={"allowed": list(MANUAL_PAYMENT_METHODS)},
        )
    lines = _merge_lines(_parse_items(payload.get("items"), allow_price=False))
    ensure_staff_outlet(staff_user, outlet_id)

    def _op():
        begin_write_transaction()
        _require_active_outlet(outlet_id)

        products = {
            p.id: p for p in db.session.query(Product).filter(Product.id.in_([line.product_id for line in lines])).all()
        }
        missing = sorted({line.product_id for line in lines} - set(products))
        if missing:
            raise NotFoundError("Product not found", code="PRODUCT_NOT_FOUND", details={"product_ids": missing})
        foreign = sorted(pid for pid, p in products.items() if p.outlet_id != outlet_id)
        if foreign:
            raise ValidationError("Product does not belong to the selected outlet",
                                  code="PRODUCT_WRONG_OUTLET", details={"product_ids": foreign})

        inventory_service.deduct(outlet_id, lines)

        now = utcnow()
        order = Order(
            customer_id=None,
            outlet_id=outlet_id,
            total_amount_paise=sum(products[line.product_id].price_paise * line.quantity for line in lines),
            coupon_discount_paise=0,
            payment_method=method,
            status=STATUS_DELIVERED,
            order_type=TYPE_MANUAL,
            delivery_date=business_today(),
            created_at=now,
            delivered_at=now,
        )
        db.session.add(order)
        db.session.flush()
        for line in lines:
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price_paise=products[line.product_id].price_paise,
                free_quantity=0,
                status=ITEM_DELIVERED,
            ))
        db.session.commit()
        return order

    order = run_with_retry(_op)
    logger.info("Manual order %s recorded by staff %s", order.order_number, staff_user.id)
    return order


def list_customer_orders(user_id: int, ongoing: bool = True, limit: int = 50) -> list[Order]:
    statuses = ONGOING_STATUSES if ongoing else HISTORY_STATUSES
    return (
        db.session.query(Order)
        .filter(Order.customer_id == user_id, Order.status.in_(statuses))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .all()
    )


def get_customer_order(user_id: int, order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None or order.customer_id != user_id:
        raise NotFoundError("Order not found", code="ORDER_NOT_FOUND")
    return order


def get_outlet_order(outlet_id: int, order_id: int) -> Order:
    order = db.session.query(Order).filter_by(id=order_id, outlet_id=outlet_id).first()
    if order is None:
        raise NotFoundError("Order not found for this outlet", code="ORDER_NOT_FOUND")
    return order


def list_outlet_orders(
    outlet_id: int,
    status: str | None = None,
    order_type: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = 100,
) -> list[Order]:
    query = db.session.query(Order).filter(Order.outlet_id == outlet_id)
    if status:
        query = query.filter(Order.status == status)
    if order_type:
        query = query.filter(Order.order_type == order_type)
    if start_date or end_date:
        start = start_date or end_date
        end = end_date or start_date
        if end < start:
            raise ValidationError("end_date must not be before start_date", code="INVALID_DATE_RANGE")
        lower, upper = business_day_bounds(start, end)
        query = query.filter(Order.created_at >= lower, Order.created_at < upper)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()
