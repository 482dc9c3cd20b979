from __future__ import annotations

from ..extensions import db
from canteen.time_utils import to_utc_z

TXN_RECHARGE = "RECHARGE"
TXN_DEDUCT = "DEDUCT"
TXN_CREDIT = "CREDIT"


class Wallet(db.Model):
    """
    Prepaid customer balance.

    balance_paise is never negative. total_recharged_paise and
    total_used_paise are lifetime counters; refunds only touch the balance.
    """
    __tablename__ = "wallets"
    __table_args__ = (
        db.CheckConstraint("balance_paise >= 0", name="ck_wallets_balance_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True)

    balance_paise = db.Column(db.Integer, nullable=False, default=0)
    total_recharged_paise = db.Column(db.Integer, nullable=False, default=0)
    total_used_paise = db.Column(db.Integer, nullable=False, default=0)
    last_recharged_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_order_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("User", backref=db.backref("wallet", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "balance_paise": self.balance_paise,
            "total_recharged_paise": self.total_recharged_paise,
            "total_used_paise": self.total_used_paise,
            "last_recharged_at": to_utc_z(self.last_recharged_at),
            "last_order_at": to_utc_z(self.last_order_at),
        }


class WalletTransaction(db.Model):
    """
    Append-only wallet ledger.

    amount_paise is signed: positive for RECHARGE and CREDIT, negative for
    DEDUCT.
    """
    __tablename__ = "wallet_transactions"
    __table_args__ = (
        db.Index("ix_wallet_transactions_wallet_created", "wallet_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    wallet_id = db.Column(db.Integer, db.ForeignKey("wallets.id"), nullable=False, index=True)
    amount_paise = db.Column(db.Integer, nullable=False)
    txn_type = db.Column(db.String(16), nullable=False)
    method = db.Column(db.String(16), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    gateway_order_id = db.Column(db.String(64), nullable=True)
    gateway_payment_id = db.Column(db.String(64), nullable=True, unique=True)
    # Outlet that collected a cash recharge
    outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    wallet = db.relationship("Wallet", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "wallet_id": self.wallet_id,
            "amount_paise": self.amount_paise,
            "type": self.txn_type,
            "method": self.method,
            "description": self.description,
            "order_id": self.order_id,
            "gateway_order_id": self.gateway_order_id,
            "gateway_payment_id": self.gateway_payment_id,
            "outlet_id": self.outlet_id,
            "created_at": to_utc_z(self.created_at),
        }
