# Overview: Pytest coverage for checkout, cancellation, staff status updates and walk-in orders.

"""
Order lifecycle tests

Covers:
- Checkout totals, stock, quota, wallet and coupon effects
- All-or-nothing rollback when any checkout step fails
- Customer cancellation reversal (refund, restock, coupon, quota)
- Staff status machine including partial delivery and partial cancel
- Walk-in (MANUAL) orders
"""

import pytest

from canteen.errors import (
    BusinessRuleViolation,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PaymentVerificationError,
    ValidationError,
)
from canteen.models import (
    Cart,
    CartItem,
    Coupon,
    CouponUsage,
    CustomerDetails,
    Inventory,
    Order,
    UserFreeQuota,
    WalletTransaction,
)
from canteen.models.wallets import TXN_CREDIT, TXN_DEDUCT
from canteen.services import coupon_service, order_service, quota_service
from canteen.time_utils import business_today

from conftest import fund_wallet, gateway_details, make_coupon, order_payload, stock_of, wallet_balance


def _quota_used(user_id):
    return quota_service.get_quota_status(user_id)["quantity_used"]


# =============================================================================
# CHECKOUT
# =============================================================================


class TestPlaceOrder:
    def test_wallet_checkout(self, db_session, outlet, customer, biryani, jamun):
        fund_wallet(customer.id, 100000)

        placed = order_service.place_order(
            customer.id, order_payload(outlet.id, [(biryani.id, 2), (jamun.id, 1)])
        )

        order = placed.order
        assert order.status == "PENDING"
        assert order.order_type == "APP"
        assert order.total_amount_paise == 24000
        assert order.delivery_date == business_today()
        assert order.order_number == f"#ORD-{order.id:06d}"
        assert wallet_balance(customer.id) == 76000
        assert stock_of(biryani.id) == 18
        assert stock_of(jamun.id) == 9

        txn = db_session.query(WalletTransaction).filter_by(txn_type=TXN_DEDUCT).one()
        assert txn.amount_paise == -24000
        assert txn.order_id == order.id

        assert db_session.query(CustomerDetails).filter_by(user_id=customer.id).one().order_count == 1

    def test_free_quota_units_recorded_on_items(self, db_session, outlet, customer, thali):
        """3 of 5 used; 4 thalis -> 2 free and 2 charged at 5000."""
        db_session.add(UserFreeQuota(user_id=customer.id, consumption_date=business_today(), quantity_used=3))
        db_session.commit()
        fund_wallet(customer.id, 20000)

        placed = order_service.place_order(customer.id, order_payload(outlet.id, [(thali.id, 4)]))

        assert placed.order.total_amount_paise == 10000
        assert placed.order.items[0].free_quantity == 2
        assert placed.order.items[0].unit_price_paise == 5000
        assert _quota_used(customer.id) == 5
        # Free units still leave the shelf
        assert stock_of(thali.id) == 46
        assert wallet_balance(customer.id) == 10000

    def test_quota_conserved_across_orders(self, db_session, outlet, customer, thali):
        fund_wallet(customer.id, 100000)

        orders = [
            order_service.place_order(customer.id, order_payload(outlet.id, [(thali.id, qty)])).order
            for qty in (2, 2, 3)
        ]

        free_units = [order.items[0].free_quantity for order in orders]
        assert free_units == [2, 2, 1]
        assert sum(free_units) == _quota_used(customer.id) == 5
        assert orders[2].total_amount_paise == 10000

    def test_fully_free_order(self, db_session, outlet, customer, thali):
        placed = order_service.place_order(customer.id, order_payload(outlet.id, [(thali.id, 2)]))
        assert placed.order.total_amount_paise == 0
        assert wallet_balance(customer.id) == 0

    def test_percentage_coupon_checkout(self, db_session, outlet, customer, biryani):
        fund_wallet(customer.id, 100000)
        coupon = make_coupon("SAVE10", "0.10", min_order_value_paise=20000)

        placed = order_service.place_order(
            customer.id, order_payload(outlet.id, [(biryani.id, 5)], coupon_code="SAVE10")
        )

        assert placed.order.total_amount_paise == 45000
        assert placed.order.coupon_discount_paise == 5000
        assert wallet_balance(customer.id) == 55000
        usage = db_session.query(CouponUsage).one()
        assert usage.order_id == placed.order.id
        assert usage.amount_paise == 5000
        assert db_session.get(Coupon, coupon.id).used_count == 1

    def test_fixed_coupon_brings_total_to_zero(self, db_session, outlet, customer, jamun):
        make_coupon("FLAT100", "100")

        placed = order_service.place_order(
            customer.id, order_payload(outlet.id, [(jamun.id, 2)], coupon_code="FLAT100")
        )

        assert placed.order.total_amount_paise == 0
        assert placed.order.coupon_discount_paise == 8000

    def test_gateway_checkout(self, db_session, outlet, customer, biryani):
        placed = order_service.place_order(
            customer.id,
            order_payload(outlet.id, [(biryani.id, 1)], payment_method="UPI",
                          payment_details=gateway_details(payment_id="pay_upi_1")),
        )

        assert placed.order.gateway_payment_id == "pay_upi_1"
        assert placed.settlement.wallet_transaction is None
        assert db_session.query(WalletTransaction).count() == 0

    def test_cart_cleared(self, db_session, outlet, customer, biryani):
        fund_wallet(customer.id, 100000)
        cart = Cart(customer_id=customer.id)
        db_session.add(cart)
        db_session.flush()
        db_session.add(CartItem(cart_id=cart.id, product_id=biryani.id, quantity=2))
        db_session.commit()

        order_service.place_order(customer.id, order_payload(outlet.id, [(biryani.id, 2)]))

        assert db_session.query(CartItem).count() == 0

    def test_duplicate_lines_merged(self, db_session, outlet, customer, jamun):
        fund_wallet(customer.id, 100000)

        placed = order_service.place_order(
            customer.id, order_payload(outlet.id, [(jamun.id, 1), (jamun.id, 2)])
        )

        assert len(placed.order.items) == 1
        assert placed.order.items[0].quantity == 3
        assert stock_of(jamun.id) == 7

    def test_to_dict_shape(self, db_session, outlet, customer, thali, biryani):
        fund_wallet(customer.id, 100000)

        body = order_service.place_order(
            customer.id, order_payload(outlet.id, [(thali.id, 1), (biryani.id, 1)])
        ).to_dict()

        assert body["order"]["type"] == "APP"
        assert body["pricing_breakdown"]["free_amount_paise"] == 0
        assert body["pricing_breakdown"]["free_value_paise"] == 5000
        assert body["pricing_breakdown"]["final_total_paise"] == 10000
        assert body["wallet_transaction"]["type"] == "DEDUCT"
        assert {u["product_id"] for u in body["stock_updates"]} == {thali.id, biryani.id}


# =============================================================================
# CHECKOUT FAILURES ROLL EVERYTHING BACK
# =============================================================================


class TestPlaceOrderAtomicity:
    def test_insufficient_stock(self, db_session, outlet, customer, thali, jamun):
        fund_wallet(customer.id, 100000)
        db_session.query(Inventory).filter_by(product_id=jamun.id).update({"quantity": 3})
        db_session.commit()
        make_coupon("SAVE10", "0.10")

        with pytest.raises(BusinessRuleViolation) as exc:
            order_service.place_order(
                customer.id,
                order_payload(outlet.id, [(thali.id, 2), (jamun.id, 5)], coupon_code="SAVE10"),
            )

        assert exc.value.code == "STOCK_VALIDATION_FAILED"
        assert stock_of(jamun.id) == 3
        assert stock_of(thali.id) == 50
        assert db_session.query(Order).count() == 0
        assert wallet_balance(customer.id) == 100000
        assert db_session.query(WalletTransaction).count() == 0
        assert db_session.query(CouponUsage).count() == 0
        assert _quota_used(customer.id) == 0

    def test_insufficient_balance(self, db_session, outlet, customer, thali, biryani):
        fund_wallet(customer.id, 500)

        with pytest.raises(BusinessRuleViolation) as exc:
            order_service.place_order(customer.id, order_payload(outlet.id, [(thali.id, 1), (biryani.id, 1)]))

        assert exc.value.code == "INSUFFICIENT_BALANCE"
        assert stock_of(biryani.id) == 20
        assert _quota_used(customer.id) == 0
        assert db_session.query(Order).count() == 0

    def test_bad_gateway_signature(self, db_session, outlet, customer, biryani):
        details = gateway_details()
        details["gateway_signature"] = "bad"

        with pytest.raises(PaymentVerificationError):
            order_service.place_order(
                customer.id,
                order_payload(outlet.id, [(biryani.id, 1)], payment_method="CARD", payment_details=details),
            )
        assert db_session.query(Order).count() == 0
        assert stock_of(biryani.id) == 20

    def test_price_mismatch(self, db_session, outlet, customer, biryani):
        fund_wallet(customer.id, 100000)
        payload = order_payload(outlet.id, [(biryani.id, 1)])
        payload["items"][0]["unit_price_paise"] = 9000

        with pytest.raises(BusinessRuleViolation) as exc:
            order_service.place_order(customer.id, payload)

        assert exc.value.code == "PRICE_MISMATCH"
        assert wallet_balance(customer.id) == 100000

    def test_matching_client_price_accepted(self, db_session, outlet, customer, biryani):
        fund_wallet(customer.id, 100000)
        payload = order_payload(outlet.id, [(biryani.id, 1)])
        payload["items"][0]["unit_price_paise"] = 10000

        assert order_service.place_order(customer.id, payload).order.total_amount_paise == 10000

    def test_inactive_outlet(self, db_session, outlet, customer, biryani):
        outlet.is_active = False
        db_session.commit()

        with pytest.raises(BusinessRuleViolation) as exc:
            order_service.place_order(customer.id, order_payload(outlet.id, [(biryani.id, 1)]))
        assert exc.value.code == "OUTLET_INACTIVE"

    def test_unknown_outlet(self, db_session, customer):
        with pytest.raises(NotFoundError) as exc:
            order_service.place_order(customer.id, order_payload(4242, [(1, 1)]))
        assert exc.value.code == "OUTLET_NOT_FOUND"

    def test_coupon_already_used(self, db_session, outlet, customer, biryani):
        fund_wallet(customer.id, 100000)
        make_coupon("ONCE", "0.10")
        order_service.place_order(customer.id, order_payload(outlet.id, [(biryani.id, 1)], coupon_code="ONCE"))

        with pytest.raises(BusinessRuleViolation) as exc:
            order_service.place_order(customer.id, order_payload(outlet.id, [(biryani.id, 1)], coupon_code="ONCE"))

        assert exc.value.code == "COUPON_ALREADY_USED"
        assert db_session.query(Order).count() == 1


class TestParseOrderRequest:
    @pytest.mark.parametrize(
        "override,code",
        [
            ({"payment_method": "GOLD"}, "INVALID_PAYMENT_METHOD"),
            ({"delivery_slot": "SLOT_09_10"}, "INVALID_DELIVERY_SLOT"),
            ({"outlet_id": "1"}, "INVALID_OUTLET"),
            ({"items": []}, "EMPTY_ORDER"),
            ({"items": [{"product_id": 1, "quantity": 0}]}, "INVALID_QUANTITY"),
        ],
    )
    def test_rejected(self, override, code):
        payload = order_payload(1, [(1, 1)])
        payload.update(override)
        with pytest.raises(ValidationError) as exc:
            order_service.parse_order_request(payload)
        assert exc.value.code == code


# =============================================================================
# CUSTOMER CANCELLATION
# =============================================================================


class TestCancelOrder:
    def test_wallet_refund_and_restock(self, db_session, outlet, customer, biryani):
        fund_wallet(customer.id, 100000)
        order = order_service.place_order(customer.id, order_payload(outlet.id, [(biryani.id, 3)])).order
        assert wallet_balance(customer.id) == 70000

        result = order_service.cancel_order(customer.id, order.id)

        assert result.order.status == "CANCELLED"
        assert result.refund_paise == 30000
        assert wallet_balance(customer.id) == 100000
        assert stock_of(biryani.id) == 20
        credit = db_session.query(WalletTransaction).filter_by(txn_type=TXN_CREDIT).one()
        assert credit.amount_paise == 30000
        assert credit.order_id == order.id

    def test_coupon_redeemable_again(self, db_session, outlet, customer, biryani):
        fund_wallet(customer.id, 100000)
        coupon = make_coupon("ONCE", "0.10")
        order = order_service.place_order(
            customer.id, order_payload(outlet.id, [(biryani.id, 1)], coupon_code="ONCE")
        ).order

        order_service.cancel_order(customer.id, order.id)

        assert db_session.get(Coupon, coupon.id).used_count == 0
        coupon_service.check_eligibility("ONCE", customer.id, outlet.id, 10000)

    def test_free_quota_restored(self, db_session, outlet, customer, thali):
        order = order_service.place_order(customer.id, order_payload(outlet.id, [(thali.id, 3)])).order
        assert _quota_used(customer.id) == 3

        order_service.cancel_order(customer.id, order.id)

        assert _quota_used(customer.id) == 0
        assert stock_of(thali.id) == 50

    def test_gateway_order_not_refunded_to_wallet(self, db_session, outlet, customer, biryani):
        order = order_service.place_order(
            customer.id,
            order_payload(outlet.id, [(biryani.id, 1)], payment_method="UPI", payment_details=gateway_details()),
        ).order

        result = order_service.cancel_order(customer.id, order.id)

        assert result.refund_paise == 0
        assert wallet_balance(customer.id) == 0
        assert stock_of(biryani.id) == 20

    def test_only_pending(self, db_session, outlet, customer, staff, biryani):
        fund_wallet(customer.id, 100000)
        order = order_service.place_order(customer.id, order_payload(outlet.id, [(biryani.id, 1)])).order
        order_service.update_order_status(staff, order.id, "DELIVERED", outlet.id)

        with pytest.raises(InvalidTransitionError) as exc:
            order_service.cancel_order(customer.id, order.id)
        assert exc.value.code == "ORDER_NOT_CANCELLABLE"
        assert wallet_balance(customer.id) == 90000

    def test_twice(self, db_session, outlet, customer, biryani):
        fund_wallet(customer.id, 100000)
        order = order_service.place_order(customer.id, order_payload(outlet.id, [(biryani.id, 1)])).order
        order_service.cancel_order(customer.id, order.id)

        with pytest.raises(InvalidTransitionError):
            order_service.cancel_order(customer.id, order.id)
        assert wallet_balance(customer.id) == 100000

    def test_someone_elses_order(self, db_session, outlet, customer, other_customer, biryani):
        fund_wallet(customer.id, 100000)
        order = order_service.place_order(customer.id, order_payload(outlet.id, [(biryani.id, 1)])).order

        with pytest.raises(NotFoundError):
            order_service.cancel_order(other_customer.id, order.id)


# =============================================================================
# STAFF STATUS UPDATES
# =============================================================================


class TestStaffStatus:
    @pytest.fixture
    def pending_order(self, db_session, outlet, customer, biryani, jamun):
        fund_wallet(customer.id, 100000)
        return order_service.place_order(
            customer.id, order_payload(outlet.id, [(biryani.id, 2), (jamun.id, 2)])
        ).order

    def test_deliver(self, db_session, outlet, staff, pending_order):
        result = order_service.update_order_status(staff, pending_order.id, "DELIVERED", outlet.id)

        assert result.order.status == "DELIVERED"
        assert result.order.delivered_at is not None
        assert all(item.status == "DELIVERED" for item in result.order.items)

    def test_deliver_twice(self, db_session, outlet, staff, pending_order):
        order_service.update_order_status(staff, pending_order.id, "DELIVERED", outlet.id)
        with pytest.raises(InvalidTransitionError) as exc:
            order_service.update_order_status(staff, pending_order.id, "DELIVERED", outlet.id)
        assert exc.value.code == "ORDER_ALREADY_DELIVERED"

    def test_cannot_deliver_cancelled(self, db_session, outlet, staff, customer, pending_order):
        order_service.cancel_order(customer.id, pending_order.id)
        with pytest.raises(InvalidTransitionError) as exc:
            order_service.update_order_status(staff, pending_order.id, "DELIVERED", outlet.id)
        assert exc.value.code == "CANNOT_DELIVER_CANCELLED"

    def test_staff_cancel_refunds(self, db_session, outlet, staff, customer, biryani, pending_order):
        result = order_service.update_order_status(staff, pending_order.id, "CANCELLED", outlet.id)

        assert result.order.status == "CANCELLED"
        assert result.refund_paise == 28000
        assert wallet_balance(customer.id) == 100000
        assert stock_of(biryani.id) == 20

    def test_partial_delivery_then_partial_cancel(self, db_session, outlet, staff, customer, jamun, pending_order):
        biryani_item, jamun_item = pending_order.items

        result = order_service.update_order_status(
            staff, pending_order.id, "PARTIALLY_DELIVERED", outlet.id, [biryani_item.id]
        )
        assert result.order.status == "PARTIALLY_DELIVERED"

        result = order_service.update_order_status(staff, pending_order.id, "PARTIAL_CANCEL", outlet.id)

        assert result.order.status == "DELIVERED"
        assert result.refund_paise == 8000
        assert wallet_balance(customer.id) == 100000 - 28000 + 8000
        assert stock_of(jamun.id) == 10

    def test_partial_cancel_of_free_units_refunds_nothing(self, db_session, outlet, staff, customer, biryani, thali):
        fund_wallet(customer.id, 100000)
        order = order_service.place_order(
            customer.id, order_payload(outlet.id, [(biryani.id, 1), (thali.id, 2)])
        ).order
        assert order.total_amount_paise == 10000
        biryani_item = next(i for i in order.items if i.product_id == biryani.id)

        order_service.update_order_status(staff, order.id, "PARTIALLY_DELIVERED", outlet.id, [biryani_item.id])
        result = order_service.update_order_status(staff, order.id, "PARTIAL_CANCEL", outlet.id)

        assert result.refund_paise == 0
        assert wallet_balance(customer.id) == 90000
        assert _quota_used(customer.id) == 0
        assert stock_of(thali.id) == 50

    def test_partial_cancel_of_mixed_line_refunds_paid_units(self, db_session, outlet, staff, customer, biryani, thali):
        """3 of 5 used; 4 thalis -> 2 free, 2 charged. Cancelling the thalis refunds the 2 charged."""
        db_session.add(UserFreeQuota(user_id=customer.id, consumption_date=business_today(), quantity_used=3))
        db_session.commit()
        fund_wallet(customer.id, 100000)
        order = order_service.place_order(
            customer.id, order_payload(outlet.id, [(biryani.id, 1), (thali.id, 4)])
        ).order
        assert order.total_amount_paise == 20000
        biryani_item = next(i for i in order.items if i.product_id == biryani.id)

        order_service.update_order_status(staff, order.id, "PARTIALLY_DELIVERED", outlet.id, [biryani_item.id])
        result = order_service.update_order_status(staff, order.id, "PARTIAL_CANCEL", outlet.id)

        assert result.refund_paise == 10000
        assert wallet_balance(customer.id) == 100000 - 20000 + 10000
        assert _quota_used(customer.id) == 3

    def test_partial_delivery_of_every_item_closes_order(self, db_session, outlet, staff, pending_order):
        ids = [item.id for item in pending_order.items]
        result = order_service.update_order_status(staff, pending_order.id, "PARTIALLY_DELIVERED", outlet.id, ids)
        assert result.order.status == "DELIVERED"

    def test_partial_delivery_needs_items(self, db_session, outlet, staff, pending_order):
        with pytest.raises(ValidationError) as exc:
            order_service.update_order_status(staff, pending_order.id, "PARTIALLY_DELIVERED", outlet.id, [])
        assert exc.value.code == "ORDER_ITEMS_REQUIRED"

    def test_partial_delivery_foreign_items(self, db_session, outlet, staff, pending_order):
        with pytest.raises(ValidationError) as exc:
            order_service.update_order_status(staff, pending_order.id, "PARTIALLY_DELIVERED", outlet.id, [99999])
        assert exc.value.code == "INVALID_ORDER_ITEMS"

    def test_partial_cancel_requires_partial_delivery(self, db_session, outlet, staff, pending_order):
        with pytest.raises(InvalidTransitionError):
            order_service.update_order_status(staff, pending_order.id, "PARTIAL_CANCEL", outlet.id)

    def test_unknown_status(self, db_session, outlet, staff, pending_order):
        with pytest.raises(ValidationError) as exc:
            order_service.update_order_status(staff, pending_order.id, "LOST", outlet.id)
        assert exc.value.code == "INVALID_STATUS"

    def test_other_outlet_staff_forbidden(self, db_session, outlet, other_staff, pending_order):
        with pytest.raises(ForbiddenError):
            order_service.update_order_status(other_staff, pending_order.id, "DELIVERED", outlet.id)

    def test_order_from_other_outlet(self, db_session, other_outlet, other_staff, pending_order):
        with pytest.raises(NotFoundError):
            order_service.update_order_status(other_staff, pending_order.id, "DELIVERED", other_outlet.id)


# =============================================================================
# WALK-IN ORDERS AND READS
# =============================================================================


class TestManualOrders:
    def test_manual_order(self, db_session, outlet, staff, biryani, jamun):
        order = order_service.create_manual_order(staff, {
            "outlet_id": outlet.id,
            "payment_method": "CASH",
            "items": [{"product_id": biryani.id, "quantity": 1}, {"product_id": jamun.id, "quantity": 2}],
        })

        assert order.order_type == "MANUAL"
        assert order.status == "DELIVERED"
        assert order.customer_id is None
        assert order.total_amount_paise == 18000
        assert stock_of(jamun.id) == 8

    def test_wallet_not_allowed(self, db_session, outlet, staff, biryani):
        with pytest.raises(ValidationError):
            order_service.create_manual_order(staff, {
                "outlet_id": outlet.id,
                "payment_method": "WALLET",
                "items": [{"product_id": biryani.id, "quantity": 1}],
            })

    def test_out_of_stock(self, db_session, outlet, staff, jamun):
        with pytest.raises(BusinessRuleViolation):
            order_service.create_manual_order(staff, {
                "outlet_id": outlet.id,
                "payment_method": "CASH",
                "items": [{"product_id": jamun.id, "quantity": 11}],
            })
        assert db_session.query(Order).count() == 0


class TestReads:
    def test_ongoing_and_history(self, db_session, outlet, customer, staff, biryani):
        fund_wallet(customer.id, 100000)
        first = order_service.place_order(customer.id, order_payload(outlet.id, [(biryani.id, 1)])).order
        second = order_service.place_order(customer.id, order_payload(outlet.id, [(biryani.id, 1)])).order
        order_service.update_order_status(staff, first.id, "DELIVERED", outlet.id)

        ongoing = order_service.list_customer_orders(customer.id, ongoing=True)
        history = order_service.list_customer_orders(customer.id, ongoing=False)

        assert [o.id for o in ongoing] == [second.id]
        assert [o.id for o in history] == [first.id]

    def test_outlet_orders_filters(self, db_session, outlet, customer, staff, biryani):
        fund_wallet(customer.id, 100000)
        order_service.place_order(customer.id, order_payload(outlet.id, [(biryani.id, 1)]))
        order_service.create_manual_order(staff, {
            "outlet_id": outlet.id,
            "payment_method": "CASH",
            "items": [{"product_id": biryani.id, "quantity": 1}],
        })

        today = business_today()
        assert len(order_service.list_outlet_orders(outlet.id, start_date=today, end_date=today)) == 2
        assert len(order_service.list_outlet_orders(outlet.id, order_type="MANUAL")) == 1
        assert len(order_service.list_outlet_orders(outlet.id, status="PENDING")) == 1

    def test_customer_cannot_read_other_order(self, db_session, outlet, customer, other_customer, biryani):
        fund_wallet(customer.id, 100000)
        order = order_service.place_order(customer.id, order_payload(outlet.id, [(biryani.id, 1)])).order

        with pytest.raises(NotFoundError):
            order_service.get_customer_order(other_customer.id, order.id)
