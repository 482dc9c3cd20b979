# Overview: Service-layer payment settlement for orders; wallet debits, gateway verification and refunds.

"""
Payment settlement

settle() finalizes payment for an order total:

- WALLET: debit the customer's wallet under a row lock and append a DEDUCT
  transaction. Fails INSUFFICIENT_BALANCE without touching the wallet.
- UPI / CARD: the gateway checkout must carry order id, payment id and
  signature, and the signature must verify. The payment id is recorded on
  the order; no wallet row is written.
- CASH: staff-recorded payment, nothing to do.

Everything runs inside the caller's transaction so a later failure (e.g.
out of stock) rolls the debit back with the rest of the order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import BusinessRuleViolation, NotFoundError, PaymentVerificationError, ValidationError
from ..extensions import db
from ..models import Wallet, WalletTransaction
from ..models.orders import PAYMENT_METHODS
from ..models.wallets import TXN_CREDIT, TXN_DEDUCT
from .concurrency import lock_for_update
from .payment_gateway import SignatureVerifier, default_verifier
from canteen.time_utils import utcnow

logger = logging.getLogger(__name__)

GATEWAY_METHODS = ("UPI", "CARD")


@dataclass
class PaymentDetails:
    gateway_order_id: str | None = None
    gateway_payment_id: str | None = None
    gateway_signature: str | None = None

    @classmethod
    def from_dict(cls, data: dict | None) -> "PaymentDetails":
        data = data or {}
        return cls(
            gateway_order_id=data.get("gateway_order_id"),
            gateway_payment_id=data.get("gateway_payment_id"),
            gateway_signature=data.get("gateway_signature"),
        )

    @property
    def is_complete(self) -> bool:
        return bool(self.gateway_order_id and self.gateway_payment_id and self.gateway_signature)


@dataclass
class SettlementResult:
    method: str
    amount_paise: int
    wallet_transaction: WalletTransaction | None = None
    gateway_payment_id: str | None = None
    balance_after_paise: int | None = None

    def to_dict(self) -> dict:
        return {
            "method": self.method,
            "amount_paise": self.amount_paise,
            "gateway_payment_id": self.gateway_payment_id,
            "balance_after_paise": self.balance_after_paise,
            "wallet_transaction": self.wallet_transaction.to_dict() if self.wallet_transaction else None,
        }


def lock_wallet(customer_id: int) -> Wallet | None:
    return lock_for_update(db.session.query(Wallet).filter_by(customer_id=customer_id)).first()


def verify_gateway_payment(
    details: PaymentDetails,
    verifier: SignatureVerifier | None = None,
) -> str:
    """Return the verified gateway payment id or raise PaymentVerificationError."""
    if not details.is_complete:
        raise PaymentVerificationError(
            "gateway_order_id, gateway_payment_id and gateway_signature are required",
            code="MISSING_PAYMENT_DETAILS",
        )
    verifier = verifier or default_verifier()
    if not verifier.verify(details.gateway_order_id, details.gateway_payment_id, details.gateway_signature):
        raise PaymentVerificationError("Payment signature verification failed", code="SIGNATURE_INVALID")
    return details.gateway_payment_id


def settle(
    method: str,
    amount_paise: int,
    customer_id: int | None,
    payment_details: PaymentDetails | dict | None = None,
    verifier: SignatureVerifier | None = None,
    *,
    description: str = "Order payment",
) -> SettlementResult:
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Unsupported payment method: {method}",
            code="INVALID_PAYMENT_METHOD",
            details={"allowed": list(PAYMENT_METHODS)},
        )
    if amount_paise < 0:
        raise ValidationError("Amount must not be negative", code="INVALID_AMOUNT")

    if method == "WALLET":
        wallet = lock_wallet(customer_id)
        if wallet is None:
            raise NotFoundError("Wallet not found", code="WALLET_NOT_FOUND")
        if wallet.balance_paise < amount_paise:
            raise BusinessRuleViolation(
                "Insufficient wallet balance",
                code="INSUFFICIENT_BALANCE",
                details={"available_paise": wallet.balance_paise, "required_paise": amount_paise},
            )

        now = utcnow()
        wallet.balance_paise -= amount_paise
        wallet.total_used_paise = (wallet.total_used_paise or 0) + amount_paise
        wallet.last_order_at = now

        txn = WalletTransaction(
            wallet_id=wallet.id,
            amount_paise=-amount_paise,
            txn_type=TXN_DEDUCT,
            method="WALLET",
            description=description,
            created_at=now,
        )
        db.session.add(txn)
        db.session.flush()
        return SettlementResult(
            method=method,
            amount_paise=amount_paise,
            wallet_transaction=txn,
            balance_after_paise=wallet.balance_paise,
        )

    if method in GATEWAY_METHODS:
        if not isinstance(payment_details, PaymentDetails):
            payment_details = PaymentDetails.from_dict(payment_details)
        payment_id = verify_gateway_payment(payment_details, verifier)
        return SettlementResult(method=method, amount_paise=amount_paise, gateway_payment_id=payment_id)

    return SettlementResult(method=method, amount_paise=amount_paise)


def credit_wallet(
    customer_id: int | None,
    amount_paise: int,
    description: str,
    order_id: int | None = None,
    method: str = "WALLET",
) -> WalletTransaction | None:
    """
    Refund into the customer's wallet (CREDIT row).

    Only the balance moves; lifetime recharge and usage counters are left
    alone. No-op for zero amounts or customers without a wallet.
    """
    if customer_id is None or amount_paise <= 0:
        return None
    wallet = lock_wallet(customer_id)
    if wallet is None:
        logger.warning("Refund of %d paise skipped: customer %s has no wallet", amount_paise, customer_id)
        return None

    wallet.balance_paise += amount_paise
    txn = WalletTransaction(
        wallet_id=wallet.id,
        amount_paise=amount_paise,
        txn_type=TXN_CREDIT,
        method=method,
        description=description,
        order_id=order_id,
        created_at=utcnow(),
    )
    db.session.add(txn)
    db.session.flush()
    return txn
