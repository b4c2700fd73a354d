"""Balance service — per-user, per-club account balance ledger.

The balance column only moves by appending a BalanceTransaction with
balance_after = balance_before + amount, in the same transaction. Credits
carry a positive amount, booking charges a negative one. Writers flush; the
caller (run_in_transaction or the webhook dispatcher) commits.
"""

import logging

from flask import current_app

from courtly.errors import InsufficientBalance, ValidationError
from courtly.extensions import db
from courtly.models.balance import AccountBalance, BalanceTransaction

logger = logging.getLogger(__name__)


def get_balance(user_id, club_id):
    return AccountBalance.query.filter_by(user_id=user_id, club_id=club_id).first()


def _get_or_create_locked_balance(user_id, club_id, currency):
    balance = (
        AccountBalance.query
        .filter_by(user_id=user_id, club_id=club_id)
        .with_for_update()
        .first()
    )
    if balance is None:
        balance = AccountBalance(
            user_id=user_id,
            club_id=club_id,
            balance_cents=0,
            currency=currency,
        )
        db.session.add(balance)
        db.session.flush()
    return balance


def credit_balance(user_id, club_id, amount, description="",
                   payment_reference=None, payment_method=None,
                   currency="usd"):
    """Append a credit and move the balance.

    A payment_reference already in the ledger means this payment was
    credited before; the existing transaction is returned unchanged.
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Credit amount must be a positive number of cents.")

    existing = _existing_transaction(payment_reference)
    if existing:
        logger.info(f"Payment {payment_reference} already credited, skipping")
        return existing

    balance = _get_or_create_locked_balance(user_id, club_id, currency)
    txn = _append_transaction(
        balance, "credit", amount, description, payment_reference, payment_method
    )
    logger.info(
        f"Credited {amount} cents to user {user_id} at club {club_id} "
        f"({txn.balance_before} -> {txn.balance_after})"
    )
    return txn


def debit_balance(user_id, club_id, amount, description="",
                  payment_reference=None, payment_method="balance",
                  currency="usd", max_negative=None):
    """Charge `amount` cents to the balance as a negative ledger entry.

    The balance may go below zero, down to -max_negative
    (MAX_NEGATIVE_BALANCE_CENTS by default). A payment_reference already in
    the ledger returns the existing transaction unchanged.

    Raises InsufficientBalance when the charge would pass that limit.
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Debit amount must be a positive number of cents.")
    if max_negative is None:
        max_negative = current_app.config["MAX_NEGATIVE_BALANCE_CENTS"]

    existing = _existing_transaction(payment_reference)
    if existing:
        logger.info(f"Charge {payment_reference} already debited, skipping")
        return existing

    balance = _get_or_create_locked_balance(user_id, club_id, currency)
    if balance.balance_cents - amount < -abs(max_negative):
        logger.info(
            f"Insufficient balance for user {user_id} at club {club_id}: "
            f"{balance.balance_cents} available, {amount} required"
        )
        raise InsufficientBalance()

    txn = _append_transaction(
        balance, "debit", -amount, description, payment_reference, payment_method
    )
    logger.info(
        f"Debited {amount} cents from user {user_id} at club {club_id} "
        f"({txn.balance_before} -> {txn.balance_after})"
    )
    return txn


def _existing_transaction(payment_reference):
    if not payment_reference:
        return None
    return BalanceTransaction.query.filter_by(
        payment_reference=payment_reference
    ).first()


def _append_transaction(balance, type_, amount, description,
                        payment_reference, payment_method):
    before = balance.balance_cents
    after = before + amount
    txn = BalanceTransaction(
        balance_id=balance.id,
        type=type_,
        amount=amount,
        balance_before=before,
        balance_after=after,
        description=description or "",
        payment_reference=payment_reference,
        payment_method=payment_method,
    )
    balance.balance_cents = after
    db.session.add(txn)
    db.session.flush()
    return txn


def balance_summary(user_id, club_id, limit=50):
    """Balance plus most recent transactions, for the balance endpoint."""
    balance = get_balance(user_id, club_id)
    if balance is None:
        return {
            "user_id": user_id,
            "club_id": club_id,
            "balance_cents": 0,
            "transactions": [],
        }
    data = balance.to_dict()
    data["transactions"] = [t.to_dict() for t in balance.transactions.limit(limit)]
    return data
