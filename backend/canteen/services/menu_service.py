# Overview: Service-layer reads for the customer home screen; active outlets and the outlet menu with stock.

from __future__ import annotations

from ..errors import NotFoundError
from ..extensions import db
from ..models import Inventory, Outlet, Product
from . import quota_service


def list_outlets() -> list[Outlet]:
    return db.session.query(Outlet).filter(Outlet.is_active.is_(True)).order_by(Outlet.name.asc()).all()


def get_menu(user_id: int, outlet_id: int) -> dict:
    """
    Products of an active outlet with current stock and the caller's
    remaining free quota for today.
    """
    outlet = db.session.get(Outlet, outlet_id)
    if outlet is None or not outlet.is_active:
        raise NotFoundError("Outlet not found", code="OUTLET_NOT_FOUND")

    products = (
        db.session.query(Product)
        .filter(Product.outlet_id == outlet_id)
        .order_by(Product.category.asc(), Product.name.asc())
        .all()
    )
    stock = {
        inv.product_id: inv.quantity
        for inv in db.session.query(Inventory).filter(Inventory.outlet_id == outlet_id).all()
    }
    remaining = quota_service.get_quota_status(user_id)["remaining_quota"]

    items = []
    for product in products:
        available = stock.get(product.id, 0)
        items.append({
            **product.to_dict(),
            "available_quantity": available,
            "is_available": available > 0,
        })
    return {"outlet": outlet.to_dict(), "remaining_quota": remaining, "products": items}
