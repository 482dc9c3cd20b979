# Overview: Service-layer operations for customer wallets; balance reads, history, gateway and cash recharges.

from __future__ import annotations

import logging

from ..errors import BusinessRuleViolation, NotFoundError, ValidationError
from ..extensions import db
from ..models import User, Wallet, WalletTransaction
from ..models.auth import ROLE_CUSTOMER
from ..models.wallets import TXN_RECHARGE
from .concurrency import run_with_retry
from .order_service import ensure_staff_outlet
from .payment_gateway import SignatureVerifier
from .payment_service import PaymentDetails, lock_wallet, verify_gateway_payment
from canteen.time_utils import utcnow

logger = logging.getLogger(__name__)


def _check_amount(amount_paise) -> None:
    if not isinstance(amount_paise, int) or isinstance(amount_paise, bool) or amount_paise <= 0:
        raise ValidationError("amount_paise must be a positive integer", code="INVALID_AMOUNT")


def _credit_recharge(customer_id: int, amount_paise: int, method: str, **txn_fields) -> tuple[Wallet, WalletTransaction]:
    """Add a RECHARGE to the locked wallet (created on first use). Flushes only."""
    wallet = lock_wallet(customer_id)
    if wallet is None:
        wallet = Wallet(customer_id=customer_id, balance_paise=0)
        db.session.add(wallet)
        db.session.flush()

    now = utcnow()
    wallet.balance_paise += amount_paise
    wallet.total_recharged_paise = (wallet.total_recharged_paise or 0) + amount_paise
    wallet.last_recharged_at = now

    txn = WalletTransaction(
        wallet_id=wallet.id,
        amount_paise=amount_paise,
        txn_type=TXN_RECHARGE,
        method=method,
        description=txn_fields.pop("description", "Wallet recharge"),
        created_at=now,
        **txn_fields,
    )
    db.session.add(txn)
    db.session.flush()
    return wallet, txn


def get_wallet(customer_id: int) -> Wallet:
    """Wallet for the customer, created empty on first access."""
    wallet = db.session.query(Wallet).filter_by(customer_id=customer_id).first()
    if wallet is None:
        wallet = Wallet(customer_id=customer_id, balance_paise=0)
        db.session.add(wallet)
        db.session.commit()
    return wallet


def list_transactions(customer_id: int, limit: int = 50, txn_type: str | None = None) -> list[WalletTransaction]:
    query = (
        db.session.query(WalletTransaction)
        .join(Wallet, Wallet.id == WalletTransaction.wallet_id)
        .filter(Wallet.customer_id == customer_id)
    )
    if txn_type:
        query = query.filter(WalletTransaction.txn_type == txn_type)
    return query.order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc()).limit(limit).all()


def recharge(
    customer_id: int,
    amount_paise: int,
    payment_details: PaymentDetails | dict,
    verifier: SignatureVerifier | None = None,
    method: str = "UPI",
) -> tuple[Wallet, WalletTransaction]:
    """
    Credit a verified gateway payment to the wallet.

    The same gateway payment id can only be credited once
    (PAYMENT_ALREADY_PROCESSED, 409).
    """
    _check_amount(amount_paise)
    if not isinstance(payment_details, PaymentDetails):
        payment_details = PaymentDetails.from_dict(payment_details)

    payment_id = verify_gateway_payment(payment_details, verifier)

    def _op():
        duplicate = db.session.query(WalletTransaction.id).filter_by(gateway_payment_id=payment_id).first()
        if duplicate:
            raise BusinessRuleViolation("Payment already processed", code="PAYMENT_ALREADY_PROCESSED")

        wallet, txn = _credit_recharge(
            customer_id,
            amount_paise,
            method,
            gateway_order_id=payment_details.gateway_order_id,
            gateway_payment_id=payment_id,
        )
        db.session.commit()
        return wallet, txn

    wallet, txn = run_with_retry(_op)
    logger.info("Wallet %s recharged with %d paise (payment %s)", wallet.id, amount_paise, payment_id)
    return wallet, txn


def staff_recharge(staff_user: User, outlet_id: int, customer_id: int, amount_paise: int) -> tuple[Wallet, WalletTransaction]:
    """
    Cash handed over at the counter, credited by staff of `outlet_id`.

    Recorded as a CASH RECHARGE tagged with the collecting outlet.
    """
    ensure_staff_outlet(staff_user, outlet_id)
    _check_amount(amount_paise)

    def _op():
        customer = db.session.get(User, customer_id)
        if customer is None or customer.role != ROLE_CUSTOMER:
            raise NotFoundError("Customer not found", code="CUSTOMER_NOT_FOUND")
        wallet, txn = _credit_recharge(
            customer_id,
            amount_paise,
            "CASH",
            description="Cash recharge at counter",
            outlet_id=outlet_id,
        )
        db.session.commit()
        return wallet, txn

    wallet, txn = run_with_retry(_op)
    logger.info("Staff %s recharged wallet %s with %d paise cash", staff_user.id, wallet.id, amount_paise)
    return wallet, txn


def recharge_history(outlet_id: int, limit: int = 100) -> list[dict]:
    """Cash recharges collected at the outlet, newest first, with the customer's name."""
    rows = (
        db.session.query(WalletTransaction, User)
        .join(Wallet, Wallet.id == WalletTransaction.wallet_id)
        .join(User, User.id == Wallet.customer_id)
        .filter(WalletTransaction.outlet_id == outlet_id, WalletTransaction.txn_type == TXN_RECHARGE)
        .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        .limit(limit)
        .all()
    )
    return [{**txn.to_dict(), "customer_id": user.id, "customer_name": user.name} for txn, user in rows]
