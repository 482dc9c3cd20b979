# Overview: Service-layer operations for customer carts.

from __future__ import annotations

from ..errors import BusinessRuleViolation, NotFoundError, ValidationError
from ..extensions import db
from ..models import Cart, CartItem, Product
from .concurrency import run_with_retry


def get_or_create_cart(customer_id: int) -> Cart:
    cart = db.session.query(Cart).filter_by(customer_id=customer_id).first()
    if cart is None:
        cart = Cart(customer_id=customer_id)
        db.session.add(cart)
        db.session.flush()
    return cart


def get_cart(customer_id: int) -> Cart | None:
    return db.session.query(Cart).filter_by(customer_id=customer_id).first()


def update_item(customer_id: int, product_id: int, quantity: int, action: str) -> tuple[Cart, str]:
    """
    action "add" increments (creating the line); "remove" decrements and
    drops the line when it reaches zero. Returns (cart, message).
    """
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer", code="INVALID_QUANTITY")
    if action not in ("add", "remove"):
        raise ValidationError("action must be 'add' or 'remove'", code="INVALID_ACTION")

    def _op():
        cart = get_or_create_cart(customer_id)
        item = db.session.query(CartItem).filter_by(cart_id=cart.id, product_id=product_id).first()

        if action == "add":
            if not db.session.get(Product, product_id):
                raise NotFoundError("Product not found", code="PRODUCT_NOT_FOUND")
            if item is None:
                db.session.add(CartItem(cart_id=cart.id, product_id=product_id, quantity=quantity))
            else:
                item.quantity += quantity
            message = "Product added to cart"
        else:
            if item is None:
                raise NotFoundError("Item not found in cart", code="CART_ITEM_NOT_FOUND")
            if quantity > item.quantity:
                raise BusinessRuleViolation(
                    f"Cannot remove {quantity} item(s), only {item.quantity} in cart",
                    code="CART_QUANTITY_EXCEEDED",
                )
            if quantity == item.quantity:
                db.session.delete(item)
                message = "Item completely removed from cart"
            else:
                item.quantity -= quantity
                message = "Item quantity reduced"

        db.session.commit()
        db.session.refresh(cart)
        return cart, message

    return run_with_retry(_op)


def clear_cart(customer_id: int) -> int:
    """Delete all lines of the customer's cart inside the caller's transaction."""
    cart = get_cart(customer_id)
    if cart is None:
        return 0
    removed = db.session.query(CartItem).filter_by(cart_id=cart.id).delete(synchronize_session="fetch")
    db.session.flush()
    return removed
