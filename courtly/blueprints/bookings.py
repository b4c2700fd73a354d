"""Bookings blueprint — /api/clubs/<club_id>/bookings/*

Court reservations and the booking payment gates. Members of a club book
for themselves; club admins may book on behalf of another user.

Route Map:
  GET  /api/clubs/<club_id>/bookings?date=&court_id=            — day schedule
  POST /api/clubs/<club_id>/bookings                            — create booking
  GET  /api/clubs/<club_id>/bookings/<booking_id>               — one booking
  POST /api/clubs/<club_id>/bookings/<booking_id>/payment/start    — begin payment
  POST /api/clubs/<club_id>/bookings/<booking_id>/payment/complete — mark paid
  POST /api/clubs/<club_id>/bookings/<booking_id>/payment/abort    — release attempt
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user

from courtly.decorators import club_access_required
from courtly.errors import ForbiddenError, MissingField, ValidationError
from courtly.extensions import db, limiter
from courtly.models.user import User
from courtly.services import booking_service
from courtly.services.auth_service import is_club_admin
from courtly.validation import cents_field, json_body, require_fields

logger = logging.getLogger(__name__)

bookings_bp = Blueprint("bookings", __name__, url_prefix="/api/clubs/<club_id>/bookings")

# "checkout" is only ever set by the checkout.session.completed webhook.
CLIENT_PAYMENT_METHODS = ("charged", "balance", "card", "cash")


def _get_accessible_booking(club_id, booking_id):
    """The booking, if the caller owns it or administers the club."""
    booking = booking_service.get_booking(club_id, booking_id)
    if booking.user_id != current_user.id and not is_club_admin(current_user, club_id):
        raise ForbiddenError("Unauthorized: Reservation does not belong to user")
    return booking


# ──────────────────────────────────────────────
# GET /api/clubs/<club_id>/bookings
# ──────────────────────────────────────────────

@bookings_bp.route("", methods=["GET"])
@club_access_required
def list_bookings(club_id):
    """Confirmed bookings for one day, optionally for one court."""
    booking_date = request.args.get("date")
    if not booking_date:
        raise MissingField("Missing required fields: date")

    bookings = booking_service.list_bookings(
        club_id, booking_date, court_id=request.args.get("court_id")
    )
    return jsonify({"bookings": [b.to_dict() for b in bookings]})


# ──────────────────────────────────────────────
# POST /api/clubs/<club_id>/bookings
# ──────────────────────────────────────────────

@bookings_bp.route("", methods=["POST"])
@club_access_required
@limiter.limit("30 per minute")
def create_booking(club_id):
    """Reserve a court slot. 409 when it overlaps a confirmed booking."""
    data = json_body()
    require_fields(data, "court_id", "date", "start_time", "end_time")

    user_id = data.get("user_id") or current_user.id
    if user_id != current_user.id:
        if not is_club_admin(current_user, club_id):
            raise ForbiddenError("Only club admins can book for another member.")
        if db.session.get(User, user_id) is None:
            raise ValidationError("Unknown user for this booking.")

    booking = booking_service.create_booking(
        club_id=club_id,
        court_id=data["court_id"],
        booking_date=data["date"],
        start_time=str(data["start_time"]),
        end_time=str(data["end_time"]),
        user_id=user_id,
        cost_cents=cents_field(data, "cost_cents", required=False, default=0),
        user_name=(data.get("user_name") or "").strip(),
        notes=(data.get("notes") or "").strip(),
        actor_user_id=current_user.id,
    )
    return jsonify({"success": True, "booking": booking.to_dict()}), 201


# ──────────────────────────────────────────────
# GET /api/clubs/<club_id>/bookings/<booking_id>
# ──────────────────────────────────────────────

@bookings_bp.route("/<booking_id>", methods=["GET"])
@club_access_required
def get_booking(club_id, booking_id):
    booking = _get_accessible_booking(club_id, booking_id)
    return jsonify(booking.to_dict())


# ──────────────────────────────────────────────
# Payment gates
# ──────────────────────────────────────────────

@bookings_bp.route("/<booking_id>/payment/start", methods=["POST"])
@club_access_required
def start_payment(club_id, booking_id):
    """Claim the booking for one payment attempt."""
    _get_accessible_booking(club_id, booking_id)
    booking = booking_service.begin_payment(club_id, booking_id)
    return jsonify({"success": True, "booking": booking.to_dict()})


@bookings_bp.route("/<booking_id>/payment/complete", methods=["POST"])
@club_access_required
def complete_payment(club_id, booking_id):
    """Mark the booking paid. A second call returns 409."""
    _get_accessible_booking(club_id, booking_id)
    data = json_body()
    require_fields(data, "method")

    method = data["method"]
    if method not in CLIENT_PAYMENT_METHODS:
        raise ValidationError(
            f"method must be one of: {', '.join(CLIENT_PAYMENT_METHODS)}"
        )

    booking = booking_service.complete_payment(
        club_id,
        booking_id,
        method,
        external_ref=data.get("external_ref"),
        actor_user_id=current_user.id,
    )
    return jsonify({"success": True, "booking": booking.to_dict()})


@bookings_bp.route("/<booking_id>/payment/abort", methods=["POST"])
@club_access_required
def abort_payment(club_id, booking_id):
    """Release a declined or abandoned attempt so the client can retry."""
    _get_accessible_booking(club_id, booking_id)
    booking = booking_service.abort_payment(club_id, booking_id)
    return jsonify({"success": True, "booking": booking.to_dict()})
