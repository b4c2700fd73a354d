"""User model.

Stores authentication credentials, profile info and the Stripe customer
that holds the user's saved payment method.
Flask-Login integration via UserMixin.
"""

import uuid

from flask_login import UserMixin

from courtly.extensions import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(255))
    is_admin = db.Column(db.Boolean, default=False)  # platform admin
    is_active = db.Column(db.Boolean, default=True)
    # Cleared when Stripe reports the customer missing, so charges fail fast.
    stripe_customer_id = db.Column(db.String(255), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    club_memberships = db.relationship(
        "ClubMember", back_populates="user", lazy="dynamic"
    )
    bookings = db.relationship("Booking", back_populates="user", lazy="dynamic")
    audit_events = db.relationship(
        "AuditEvent", back_populates="actor", lazy="dynamic"
    )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "is_admin": bool(self.is_admin),
            "has_payment_method": bool(self.stripe_customer_id),
        }

    def __repr__(self):
        return f"<User {self.email}>"
