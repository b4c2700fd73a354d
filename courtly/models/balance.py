"""Account balance models.

- AccountBalance: running balance per (user, club), in cents.
- BalanceTransaction: append-only ledger behind the balance.
  balance_after == balance_before + amount on every row, and the balance
  column is only ever moved by appending a row (services.balance_service).
"""

import uuid

from courtly.extensions import db


class AccountBalance(db.Model):
    __tablename__ = "account_balances"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    club_id = db.Column(
        db.String(36), db.ForeignKey("clubs.id"), nullable=False
    )
    balance_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="usd")
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.UniqueConstraint("user_id", "club_id", name="uq_balance_user_club"),
    )

    # --- Relationships ---
    transactions = db.relationship(
        "BalanceTransaction",
        back_populates="balance",
        lazy="dynamic",
        order_by="BalanceTransaction.created_at.desc()",
    )

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "club_id": self.club_id,
            "balance_cents": self.balance_cents,
            "currency": self.currency,
        }

    def __repr__(self):
        return f"<AccountBalance user={self.user_id} club={self.club_id} {self.balance_cents}>"


class BalanceTransaction(db.Model):
    __tablename__ = "balance_transactions"

    TYPES = ["credit", "debit"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    balance_id = db.Column(
        db.String(36), db.ForeignKey("account_balances.id"), nullable=False
    )
    type = db.Column(db.String(20), nullable=False)  # credit | debit
    amount = db.Column(db.Integer, nullable=False)
    balance_before = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(500), default="")
    # One ledger row per Stripe payment: a replayed credit is a no-op.
    payment_reference = db.Column(db.String(255), unique=True, nullable=True)
    payment_method = db.Column(db.String(50), nullable=True)  # card | checkout | balance
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    balance = db.relationship("AccountBalance", back_populates="transactions")

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "amount": self.amount,
            "balance_before": self.balance_before,
            "balance_after": self.balance_after,
            "description": self.description,
            "payment_reference": self.payment_reference,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<BalanceTransaction {self.type} {self.amount}>"
