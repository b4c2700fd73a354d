"""Webhook event model (dedup ledger).

Every applied Stripe webhook event is recorded by its Stripe event ID, in
the same database transaction as the event's side effects. A row for an
event id means its effects are already applied; a redelivery returns 200
without touching anything. The unique constraint makes a concurrent
redelivery fail its commit instead of applying twice.

Rows are write-once: never updated or deleted.
"""

import uuid

from courtly.extensions import db


class WebhookEvent(db.Model):
    __tablename__ = "webhook_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "evt_1Abc..."
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "checkout.session.completed"
    processed_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<WebhookEvent {self.stripe_event_id} ({self.event_type})>"
