"""Booking service — slot conflict resolution and the booking payment gates.

Responsible for:
- Creating bookings without double-booking a court (create_booking)
- Admission control for payment attempts (begin_payment)
- Marking a booking paid exactly once, debiting the club balance when it
  pays (complete_payment)
- Releasing a failed or abandoned attempt (abort_payment,
  release_stale_payment_locks)

Every mutation runs inside run_in_transaction(). The payment gates are
conditional UPDATEs (WHERE paid = false ...), so the check and the write are
one statement and two racing callers cannot both pass.
"""

import logging
import time
from datetime import date, datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import or_

from courtly.errors import (
    AlreadyPaid,
    ConflictError,
    MissingField,
    NotFoundError,
    PaymentInProgress,
    SlotConflict,
    ValidationError,
)
from courtly.extensions import db
from courtly.models.booking import Booking
from courtly.models.club import Club, Court
from courtly.models.user import User
from courtly.services.audit_service import log_audit
from courtly.services.balance_service import debit_balance
from courtly.services.timeslots import (
    format_time_of_day,
    intervals_overlap,
    parse_time_of_day,
)
from courtly.services.transactions import run_in_transaction

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("charged", "balance", "card", "cash", "checkout")


def build_booking_id(user_id, court_id, booking_date, start_time):
    """Unique id from user + court + date + start + submission time (ms)."""
    return (
        f"{user_id}_{court_id}_{booking_date.isoformat()}_{start_time}_"
        f"{int(time.time() * 1000)}"
    )


def _coerce_date(value):
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"Invalid date '{value}'. Use YYYY-MM-DD.")


def find_conflict(club_id, court_id, booking_date, start_minute, end_minute,
                  exclude_booking_id=None):
    """Return the first confirmed booking overlapping [start, end), or None."""
    existing = Booking.query.filter_by(
        club_id=club_id,
        court_id=court_id,
        date=booking_date,
        status="confirmed",
    ).all()
    for other in existing:
        if other.id == exclude_booking_id:
            continue
        if intervals_overlap(
            start_minute, end_minute, other.start_minute, other.end_minute
        ):
            return other
    return None


# ──────────────────────────────────────────────
# Booking creation
# ──────────────────────────────────────────────

def create_booking(club_id, court_id, booking_date, start_time, end_time,
                   user_id, cost_cents=0, user_name="", notes="",
                   actor_user_id=None):
    """Atomically validate and create a confirmed, unpaid booking.

    Inside one transaction: lock the court row, load the confirmed bookings
    for club + court + date, reject any overlap, insert the new row. Two
    concurrent requests for overlapping slots serialize on the court lock
    (on SQLite, on the write lock taken at BEGIN), so at most one of them
    commits.

    Raises MissingField, ValidationError, NotFoundError, SlotConflict,
    TransientStoreError.
    """
    required = {
        "club_id": club_id,
        "court_id": court_id,
        "date": booking_date,
        "start_time": start_time,
        "end_time": end_time,
        "user_id": user_id,
    }
    missing = [name for name, value in required.items() if not value]
    if missing:
        raise MissingField(f"Missing required fields: {', '.join(missing)}")

    booking_date = _coerce_date(booking_date)
    start_minute = parse_time_of_day(start_time)
    end_minute = parse_time_of_day(end_time)
    if end_minute <= start_minute:
        raise ValidationError("End time must be after start time.")

    if cost_cents is None:
        cost_cents = 0
    if isinstance(cost_cents, bool) or not isinstance(cost_cents, int) or cost_cents < 0:
        raise ValidationError("Cost must be a non-negative whole number of cents.")

    normalized_start = format_time_of_day(start_minute)
    normalized_end = format_time_of_day(end_minute)

    def _create():
        if db.session.get(Club, club_id) is None:
            raise NotFoundError("Club not found")
        if db.session.get(User, user_id) is None:
            raise NotFoundError("User not found")

        court = (
            Court.query
            .filter_by(id=court_id, club_id=club_id)
            .with_for_update()
            .first()
        )
        if court is None:
            raise NotFoundError("Court not found")
        if not court.is_active:
            raise ValidationError("This court is not available for booking.")

        conflict = find_conflict(
            club_id, court_id, booking_date, start_minute, end_minute
        )
        if conflict is not None:
            logger.info(
                f"Slot conflict on court {court_id} {booking_date} "
                f"{normalized_start}-{normalized_end} with booking {conflict.id}"
            )
            raise SlotConflict()

        booking = Booking(
            id=build_booking_id(user_id, court_id, booking_date, normalized_start),
            club_id=club_id,
            court_id=court_id,
            user_id=user_id,
            date=booking_date,
            start_time=normalized_start,
            end_time=normalized_end,
            start_minute=start_minute,
            end_minute=end_minute,
            user_name=user_name or "",
            notes=notes or "",
            cost_cents=cost_cents,
            status="confirmed",
            paid=False,
            payment_in_progress=False,
            payment_status="unpaid",
        )
        db.session.add(booking)
        db.session.flush()

        log_audit(club_id, "booking.created", {
            "booking_id": booking.id,
            "court_id": court_id,
            "date": booking_date.isoformat(),
            "start_time": normalized_start,
            "end_time": normalized_end,
        }, actor_user_id=actor_user_id or user_id)
        return booking

    booking = run_in_transaction("create_booking", _create)
    logger.info(f"Created booking {booking.id}")
    return booking


def list_bookings(club_id, booking_date, court_id=None):
    """Confirmed bookings for a club day, ordered by court and start."""
    query = Booking.query.filter_by(
        club_id=club_id, date=_coerce_date(booking_date), status="confirmed"
    )
    if court_id:
        query = query.filter_by(court_id=court_id)
    return query.order_by(Booking.court_id, Booking.start_minute).all()


def get_booking(club_id, booking_id):
    booking = db.session.get(Booking, booking_id, populate_existing=True)
    if booking is None or booking.club_id != club_id:
        raise NotFoundError("Booking not found")
    return booking


# ──────────────────────────────────────────────
# Payment gates
# ──────────────────────────────────────────────

def _raise_gate_error(club_id, booking_id):
    """Explain why a conditional payment update matched no row."""
    booking = get_booking(club_id, booking_id)
    if booking.paid:
        raise AlreadyPaid()
    if booking.payment_in_progress:
        raise PaymentInProgress()
    if booking.status != "confirmed":
        raise ConflictError("This booking has been cancelled.")
    raise ConflictError("The booking changed while processing. Please try again.")


def begin_payment(club_id, booking_id):
    """unpaid -> in progress. Rejects paid or already-started bookings."""
    if not club_id or not booking_id:
        raise MissingField()

    def _begin():
        updated = (
            Booking.query
            .filter_by(
                id=booking_id,
                club_id=club_id,
                status="confirmed",
                paid=False,
                payment_in_progress=False,
            )
            .update(
                {
                    "payment_in_progress": True,
                    "payment_attempted_at": datetime.now(timezone.utc),
                },
                synchronize_session=False,
            )
        )
        if not updated:
            _raise_gate_error(club_id, booking_id)
        return get_booking(club_id, booking_id)

    booking = run_in_transaction("begin_payment", _begin)
    logger.info(f"Payment started for booking {booking_id}")
    return booking


def complete_payment(club_id, booking_id, method, external_ref=None,
                     actor_user_id=None):
    """unpaid/in progress -> paid, exactly once.

    A replay after success raises AlreadyPaid instead of re-applying. A
    cancelled booking cannot be paid here: its slot may already be taken.
    With method "balance" the booking's cost is debited from the member's
    club balance in the same transaction, so the booking is paid if and
    only if the debit is in the ledger.
    """
    if not club_id or not booking_id or not method:
        raise MissingField()
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"Unsupported payment method '{method}'.")

    def _complete():
        updated = (
            Booking.query
            .filter_by(
                id=booking_id, club_id=club_id, status="confirmed", paid=False
            )
            .update(
                {
                    "paid": True,
                    "payment_in_progress": False,
                    "payment_status": "paid",
                    "payment_method": method,
                    "payment_reference": external_ref or None,
                    "payment_completed_at": datetime.now(timezone.utc),
                },
                synchronize_session=False,
            )
        )
        booking = get_booking(club_id, booking_id)
        if not updated:
            if booking.paid:
                raise AlreadyPaid()
            if booking.status != "confirmed":
                raise ConflictError("This booking has been cancelled.")
            raise ConflictError("The booking changed while processing. Please try again.")

        if method == "balance" and booking.cost_cents > 0:
            club = db.session.get(Club, club_id)
            txn = debit_balance(
                user_id=booking.user_id,
                club_id=club_id,
                amount=booking.cost_cents,
                description=(
                    f"Court booking {booking.date.isoformat()} "
                    f"{booking.start_time}-{booking.end_time}"
                ),
                payment_reference=f"booking:{booking.id}",
                currency=club.currency,
            )
            if not external_ref:
                booking.payment_reference = txn.payment_reference

        log_audit(club_id, "booking.paid", {
            "booking_id": booking_id,
            "payment_method": method,
            "payment_reference": booking.payment_reference,
        }, actor_user_id=actor_user_id)
        return booking

    booking = run_in_transaction("complete_payment", _complete)
    logger.info(f"Payment completed for booking {booking_id} via {method}")
    return booking


def abort_payment(club_id, booking_id):
    """in progress -> unpaid after a declined or abandoned attempt.

    No-op for bookings that are not in progress; AlreadyPaid for paid ones.
    """
    def _abort():
        updated = (
            Booking.query
            .filter_by(
                id=booking_id,
                club_id=club_id,
                paid=False,
                payment_in_progress=True,
            )
            .update(
                {
                    "payment_in_progress": False,
                    "payment_failed_at": datetime.now(timezone.utc),
                },
                synchronize_session=False,
            )
        )
        booking = get_booking(club_id, booking_id)
        if not updated and booking.paid:
            raise AlreadyPaid()
        return booking

    return run_in_transaction("abort_payment", _abort)


def release_stale_payment_locks(max_age_minutes=None):
    """Clear payment_in_progress on unpaid bookings stuck past the timeout.

    A request that dies mid-charge leaves the flag set forever otherwise.
    Returns the number of bookings released.
    """
    if max_age_minutes is None:
        max_age_minutes = current_app.config["PAYMENT_LOCK_TIMEOUT_MINUTES"]
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=max_age_minutes)

    def _release():
        return (
            Booking.query
            .filter(
                Booking.paid.is_(False),
                Booking.payment_in_progress.is_(True),
                or_(
                    Booking.payment_attempted_at.is_(None),
                    Booking.payment_attempted_at < cutoff,
                ),
            )
            .update({"payment_in_progress": False}, synchronize_session=False)
        )

    released = run_in_transaction("release_stale_payment_locks", _release)
    if released:
        logger.info(f"Released {released} stale booking payment lock(s)")
    return released
