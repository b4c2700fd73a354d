"""Membership subscription model.

Tracks a user's purchase of a club MembershipPlan, synced from Stripe
webhooks. Created as `incomplete` when a checkout session is opened;
promoted to `active` by checkout.session.completed / invoice.paid,
demoted to `past_due` by invoice.payment_failed.

Only events carrying this record's own checkout session id or external
subscription id may change it.
"""

import uuid

from courtly.extensions import db


class MembershipSubscription(db.Model):
    __tablename__ = "membership_subscriptions"

    STATUSES = ["incomplete", "active", "past_due", "canceled"]
    PAYMENT_STATUSES = ["requires_payment", "paid", "failed"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    club_id = db.Column(
        db.String(36), db.ForeignKey("clubs.id"), nullable=False
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    plan_id = db.Column(
        db.String(36), db.ForeignKey("membership_plans.id"), nullable=False
    )
    status = db.Column(
        db.String(50), nullable=False, default="incomplete"
    )  # incomplete | active | past_due | canceled
    payment_status = db.Column(
        db.String(50), nullable=False, default="requires_payment"
    )  # requires_payment | paid | failed
    price_cents = db.Column(db.Integer, nullable=False)
    interval = db.Column(db.String(20), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="usd")

    # --- Stripe ---
    checkout_session_id = db.Column(db.String(255), unique=True, nullable=True)
    external_subscription_id = db.Column(db.String(255), unique=True, nullable=True)
    external_customer_id = db.Column(db.String(255), nullable=True)
    latest_invoice_id = db.Column(db.String(255), nullable=True)
    cancel_at_period_end = db.Column(db.Boolean, default=False)

    activated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    club = db.relationship("Club")
    user = db.relationship("User")
    plan = db.relationship("MembershipPlan")

    def to_dict(self):
        return {
            "id": self.id,
            "club_id": self.club_id,
            "user_id": self.user_id,
            "plan_id": self.plan_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "price_cents": self.price_cents,
            "interval": self.interval,
            "currency": self.currency,
            "cancel_at_period_end": bool(self.cancel_at_period_end),
        }

    def __repr__(self):
        return f"<MembershipSubscription {self.id} ({self.status})>"
