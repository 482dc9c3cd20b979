# Overview: Pytest coverage for carts, account creation and session tokens.

from datetime import timedelta

import pytest

from canteen.errors import BusinessRuleViolation, NotFoundError, ValidationError
from canteen.models import CustomerDetails, SessionToken, Wallet
from canteen.models.auth import ROLE_STAFF
from canteen.services import auth_service, cart_service, session_service
from canteen.services.auth_service import PasswordValidationError


class TestCart:
    def test_add_merges_quantities(self, db_session, customer, biryani):
        cart_service.update_item(customer.id, biryani.id, 1, "add")
        cart, message = cart_service.update_item(customer.id, biryani.id, 2, "add")

        assert message == "Product added to cart"
        assert [(i.product_id, i.quantity) for i in cart.items] == [(biryani.id, 3)]

    def test_remove_partially_then_fully(self, db_session, customer, biryani):
        cart_service.update_item(customer.id, biryani.id, 3, "add")

        cart, message = cart_service.update_item(customer.id, biryani.id, 1, "remove")
        assert message == "Item quantity reduced"
        assert cart.items[0].quantity == 2

        cart, message = cart_service.update_item(customer.id, biryani.id, 2, "remove")
        assert message == "Item completely removed from cart"
        assert cart.items == []

    def test_remove_missing(self, db_session, customer, biryani):
        with pytest.raises(NotFoundError):
            cart_service.update_item(customer.id, biryani.id, 1, "remove")

    def test_remove_too_many(self, db_session, customer, biryani):
        cart_service.update_item(customer.id, biryani.id, 1, "add")
        with pytest.raises(BusinessRuleViolation):
            cart_service.update_item(customer.id, biryani.id, 2, "remove")

    def test_unknown_product(self, db_session, customer):
        with pytest.raises(NotFoundError):
            cart_service.update_item(customer.id, 4242, 1, "add")

    @pytest.mark.parametrize("quantity,action", [(0, "add"), (1, "swap"), ("1", "add")])
    def test_invalid_input(self, db_session, customer, biryani, quantity, action):
        with pytest.raises(ValidationError):
            cart_service.update_item(customer.id, biryani.id, quantity, action)

    def test_clear(self, db_session, customer, biryani, jamun):
        cart_service.update_item(customer.id, biryani.id, 1, "add")
        cart_service.update_item(customer.id, jamun.id, 1, "add")

        assert cart_service.clear_cart(customer.id) == 2
        db_session.commit()
        assert cart_service.get_cart(customer.id).items == []


class TestAccounts:
    def test_customer_gets_profile_and_wallet(self, db_session, customer):
        assert customer.email == "customer@test.local"
        assert db_session.query(CustomerDetails).filter_by(user_id=customer.id).count() == 1
        assert db_session.query(Wallet).filter_by(customer_id=customer.id).one().balance_paise == 0

    def test_email_taken(self, db_session, customer):
        with pytest.raises(BusinessRuleViolation) as exc:
            auth_service.create_user("CUSTOMER@test.local", "Again", "Password123")
        assert exc.value.code == "EMAIL_TAKEN"

    def test_staff_needs_outlet(self, db_session):
        with pytest.raises(ValidationError) as exc:
            auth_service.create_user("s@test.local", "Staff", "Password123", role=ROLE_STAFF)
        assert exc.value.code == "OUTLET_REQUIRED"

    def test_unknown_role(self, db_session):
        with pytest.raises(ValidationError):
            auth_service.create_user("x@test.local", "X", "Password123", role="CHEF")

    @pytest.mark.parametrize("password", ["short1", "lettersonly", "12345678"])
    def test_weak_password(self, password):
        with pytest.raises(PasswordValidationError):
            auth_service.validate_password_strength(password)

    def test_hash_and_verify(self):
        hashed = auth_service.hash_password("Password123")
        assert auth_service.verify_password("Password123", hashed)
        assert not auth_service.verify_password("Password124", hashed)
        assert not auth_service.verify_password("Password123", "not-a-bcrypt-hash")

    def test_authenticate(self, db_session, customer):
        assert auth_service.authenticate("customer@test.local", "Password123").id == customer.id
        assert auth_service.authenticate("customer@test.local", "Password999") is None

    def test_inactive_user_cannot_authenticate(self, db_session, customer):
        customer.is_active = False
        db_session.commit()
        assert auth_service.authenticate("customer@test.local", "Password123") is None


class TestSessions:
    def test_only_hash_stored(self, db_session, customer):
        session, token = session_service.create_session(customer.id)
        assert session.token_hash == session_service.hash_token(token)
        assert session.token_hash != token

    def test_validate(self, db_session, customer):
        _, token = session_service.create_session(customer.id)
        context = session_service.validate_session(token)
        assert context.user.id == customer.id

    def test_expired(self, db_session, customer):
        session, token = session_service.create_session(customer.id)
        session.expires_at = session.expires_at - timedelta(days=2)
        db_session.commit()
        assert session_service.validate_session(token) is None

    def test_idle_timeout_revokes(self, db_session, customer):
        session, token = session_service.create_session(customer.id)
        session.last_used_at = session.last_used_at - timedelta(hours=3)
        db_session.commit()

        assert session_service.validate_session(token) is None
        assert db_session.get(SessionToken, session.id).revoked_reason == "Idle timeout"

    def test_deactivated_user(self, db_session, customer):
        _, token = session_service.create_session(customer.id)
        customer.is_active = False
        db_session.commit()
        assert session_service.validate_session(token) is None

    def test_revoke(self, db_session, customer):
        _, token = session_service.create_session(customer.id)
        assert session_service.revoke_session(token) is True
        assert session_service.revoke_session(token) is False
