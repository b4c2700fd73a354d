"""Booking model.

One reservation of a court for a [start, end) interval on a calendar day.
The submitted "HH:MM" strings are kept for display; start_minute/end_minute
hold the canonical minutes-since-midnight used for conflict checks.

Payment lifecycle: unpaid -> in progress -> paid (or failed -> unpaid again).
`paid` flips false -> true at most once; all writes to the payment columns
go through services.booking_service and services.stripe_service.
"""

from courtly.extensions import db


class Booking(db.Model):
    __tablename__ = "bookings"

    STATUSES = ["confirmed", "cancelled"]
    PAYMENT_STATUSES = ["unpaid", "paid", "failed"]

    # "{user}_{court}_{date}_{start}_{epoch_ms}", built by create_booking()
    id = db.Column(db.String(255), primary_key=True)
    club_id = db.Column(
        db.String(36), db.ForeignKey("clubs.id"), nullable=False
    )
    court_id = db.Column(
        db.String(36), db.ForeignKey("courts.id"), nullable=False
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.String(5), nullable=False)  # e.g. "09:00"
    end_time = db.Column(db.String(5), nullable=False)
    start_minute = db.Column(db.Integer, nullable=False)
    end_minute = db.Column(db.Integer, nullable=False)

    user_name = db.Column(db.String(255), default="")
    notes = db.Column(db.Text, default="")
    cost_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(
        db.String(20), nullable=False, default="confirmed"
    )  # confirmed | cancelled

    # --- Payment ---
    paid = db.Column(db.Boolean, nullable=False, default=False)
    payment_in_progress = db.Column(db.Boolean, nullable=False, default=False)
    payment_status = db.Column(
        db.String(20), nullable=False, default="unpaid"
    )  # unpaid | paid | failed
    payment_method = db.Column(db.String(50), nullable=True)  # charged | balance | checkout ...
    payment_reference = db.Column(db.String(255), nullable=True)  # pi_... / txn id
    checkout_session_id = db.Column(db.String(255), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    payment_attempted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_failed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.Index("ix_bookings_slot", "club_id", "court_id", "date", "status"),
    )

    # --- Relationships ---
    club = db.relationship("Club", back_populates="bookings")
    court = db.relationship("Court")
    user = db.relationship("User", back_populates="bookings")

    def to_dict(self):
        return {
            "id": self.id,
            "club_id": self.club_id,
            "court_id": self.court_id,
            "court_name": self.court.name if self.court else None,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "date": self.date.isoformat(),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "notes": self.notes,
            "cost_cents": self.cost_cents,
            "status": self.status,
            "paid": bool(self.paid),
            "payment_in_progress": bool(self.payment_in_progress),
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
        }

    def __repr__(self):
        return f"<Booking {self.id} ({self.status}, paid={self.paid})>"
