"""Club models.

- Club: the tenant (one per tennis club), linked to a Stripe connected account.
- ClubMember: join table linking users to clubs with a role.
- Court: a bookable court belonging to a club.
- MembershipPlan: a membership a club sells (recurring or one-time).
"""

import uuid

from courtly.extensions import db


class Club(db.Model):
    __tablename__ = "clubs"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name = db.Column(db.String(255), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="usd")

    # --- Stripe Connect ---
    stripe_account_id = db.Column(db.String(255), unique=True, nullable=True)
    stripe_status = db.Column(
        db.String(50), nullable=False, default="not_created"
    )  # not_created | onboarding | active
    charges_enabled = db.Column(db.Boolean, default=False)
    payouts_enabled = db.Column(db.Boolean, default=False)
    onboarding_complete = db.Column(db.Boolean, default=False)
    # Overrides PLATFORM_FEE_BASIS_POINTS when set.
    platform_fee_bps = db.Column(db.Integer, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    members = db.relationship("ClubMember", back_populates="club", lazy="dynamic")
    courts = db.relationship("Court", back_populates="club", lazy="dynamic")
    plans = db.relationship("MembershipPlan", back_populates="club", lazy="dynamic")
    bookings = db.relationship("Booking", back_populates="club", lazy="dynamic")

    @property
    def can_accept_payments(self):
        return bool(self.stripe_account_id) and bool(self.charges_enabled)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "currency": self.currency,
            "stripe_account_id": self.stripe_account_id,
            "stripe_status": self.stripe_status,
            "charges_enabled": bool(self.charges_enabled),
            "payouts_enabled": bool(self.payouts_enabled),
            "onboarding_complete": bool(self.onboarding_complete),
        }

    def __repr__(self):
        return f"<Club {self.name}>"


class ClubMember(db.Model):
    __tablename__ = "club_members"

    ROLES = ["owner", "admin", "member"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    club_id = db.Column(
        db.String(36), db.ForeignKey("clubs.id"), nullable=False
    )
    role = db.Column(db.String(50), default="member")  # owner | admin | member
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    __table_args__ = (
        db.UniqueConstraint("user_id", "club_id", name="uq_user_club"),
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="club_memberships")
    club = db.relationship("Club", back_populates="members")

    @property
    def is_club_admin(self):
        return self.role in ("owner", "admin")

    def __repr__(self):
        return f"<ClubMember user={self.user_id} club={self.club_id} ({self.role})>"


class Court(db.Model):
    __tablename__ = "courts"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    club_id = db.Column(
        db.String(36), db.ForeignKey("clubs.id"), nullable=False
    )
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    club = db.relationship("Club", back_populates="courts")

    def __repr__(self):
        return f"<Court {self.name}>"


class MembershipPlan(db.Model):
    __tablename__ = "membership_plans"

    INTERVALS = ["month", "year", "one_time"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    club_id = db.Column(
        db.String(36), db.ForeignKey("clubs.id"), nullable=False
    )
    name = db.Column(db.String(255), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    interval = db.Column(db.String(20), nullable=False, default="month")
    active = db.Column(db.Boolean, default=True)
    # Created lazily on first recurring checkout, then reused.
    stripe_price_id = db.Column(db.String(255), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    club = db.relationship("Club", back_populates="plans")

    @property
    def is_recurring(self):
        return self.interval != "one_time"

    def __repr__(self):
        return f"<MembershipPlan {self.name} ({self.interval})>"
