# Overview: Pytest coverage for cart pricing (quota split, coupon discount, totals).

from decimal import Decimal

import pytest

from canteen.errors import BusinessRuleViolation, NotFoundError, ValidationError
from canteen.models import UserFreeQuota
from canteen.services import pricing_service
from canteen.services.pricing_service import CartLine
from canteen.time_utils import business_today

from conftest import make_coupon


class TestPriceCart:
    def test_regular_items_only(self, db_session, outlet, customer, biryani, jamun):
        breakdown = pricing_service.price_cart(
            customer.id, outlet.id, [CartLine(biryani.id, 2), CartLine(jamun.id, 1)]
        )

        assert breakdown.regular_amount == 24000
        assert breakdown.original_total == 24000
        assert breakdown.final_total == 24000
        assert breakdown.free_items == []

    def test_company_paid_within_quota_is_free(self, db_session, outlet, customer, thali):
        breakdown = pricing_service.price_cart(customer.id, outlet.id, [CartLine(thali.id, 3)])

        assert breakdown.total_free_qty == 3
        assert breakdown.free_amount == 0
        assert breakdown.free_value == 15000
        assert all(line.amount_paise == 0 for line in breakdown.free_items)
        assert breakdown.to_dict()["free_items"][0]["amount_paise"] == 0
        assert breakdown.final_total == 0

    def test_quota_overflow_is_charged(self, db_session, outlet, customer, thali):
        """3 of 5 already used today; 4 thalis -> 2 free, 2 at 5000."""
        db_session.add(UserFreeQuota(user_id=customer.id, consumption_date=business_today(), quantity_used=3))
        db_session.commit()

        breakdown = pricing_service.price_cart(customer.id, outlet.id, [CartLine(thali.id, 4)])

        assert breakdown.total_free_qty == 2
        assert breakdown.paid_company_amount == 10000
        assert breakdown.original_total == 10000
        assert breakdown.total_company_paid_qty == 4
        assert breakdown.free_quantity_for(thali.id) == 2

    def test_percentage_coupon(self, db_session, outlet, customer, biryani):
        make_coupon("SAVE10", "0.10", min_order_value_paise=20000)

        breakdown = pricing_service.price_cart(
            customer.id, outlet.id, [CartLine(biryani.id, 5)], coupon_code="SAVE10"
        )

        assert breakdown.original_total == 50000
        assert breakdown.coupon_discount == 5000
        assert breakdown.final_total == 45000
        assert breakdown.to_dict()["coupon_code"] == "SAVE10"

    def test_fixed_coupon_capped_at_total(self, db_session, outlet, customer, jamun):
        make_coupon("FLAT100", "100")

        breakdown = pricing_service.price_cart(
            customer.id, outlet.id, [CartLine(jamun.id, 2)], coupon_code="FLAT100"
        )

        assert breakdown.original_total == 8000
        assert breakdown.coupon_discount == 8000
        assert breakdown.final_total == 0

    def test_empty_items(self, db_session, outlet, customer):
        with pytest.raises(ValidationError) as exc:
            pricing_service.price_cart(customer.id, outlet.id, [])
        assert exc.value.code == "EMPTY_ORDER"

    def test_unknown_product(self, db_session, outlet, customer):
        with pytest.raises(NotFoundError) as exc:
            pricing_service.price_cart(customer.id, outlet.id, [CartLine(9999, 1)])
        assert exc.value.code == "PRODUCT_NOT_FOUND"

    def test_product_from_other_outlet(self, db_session, outlet, customer, samosa_elsewhere):
        with pytest.raises(ValidationError) as exc:
            pricing_service.price_cart(customer.id, outlet.id, [CartLine(samosa_elsewhere.id, 1)])
        assert exc.value.code == "PRODUCT_WRONG_OUTLET"

    def test_coupon_minimum_checked_against_original_total(self, db_session, outlet, customer, jamun):
        make_coupon("BIG", "0.20", min_order_value_paise=10000)

        with pytest.raises(BusinessRuleViolation) as exc:
            pricing_service.price_cart(customer.id, outlet.id, [CartLine(jamun.id, 2)], coupon_code="BIG")
        assert exc.value.code == "BELOW_MIN_ORDER"


class TestPreviewCoupon:
    def test_preview(self, db_session, outlet, customer):
        make_coupon("SAVE10", Decimal("0.10"), min_order_value_paise=20000)

        preview = pricing_service.preview_coupon(customer.id, outlet.id, "SAVE10", 50000)

        assert preview["discount_paise"] == 5000
        assert preview["final_total_paise"] == 45000
        assert preview["coupon"]["code"] == "SAVE10"

    def test_preview_rejects_negative_total(self, db_session, outlet, customer):
        make_coupon("SAVE10", "0.10")
        with pytest.raises(ValidationError):
            pricing_service.preview_coupon(customer.id, outlet.id, "SAVE10", -1)
