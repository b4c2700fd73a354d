"""Payments blueprint — /api/clubs/<club_id>/*

Stripe Checkout, off-session charges, memberships, account balance and
Stripe Connect onboarding for a club.

Route Map:
  POST /api/clubs/<club_id>/bookings/<booking_id>/checkout — booking Checkout Session
  POST /api/clubs/<club_id>/charges                        — charge saved card
  POST /api/clubs/<club_id>/payment-method/setup           — SetupIntent to save a card
  GET  /api/clubs/<club_id>/memberships                    — caller's memberships
  POST /api/clubs/<club_id>/memberships/checkout           — membership Checkout Session
  POST /api/clubs/<club_id>/memberships/<id>/cancel        — cancel membership
  GET  /api/clubs/<club_id>/balance                        — balance + transactions
  POST /api/clubs/<club_id>/balance/checkout               — account credit Checkout Session
  POST /api/clubs/<club_id>/connect/start                  — Connect onboarding link
  GET  /api/clubs/<club_id>/connect/status                 — refresh Connect status
"""

import logging

from flask import Blueprint, jsonify
from flask_login import current_user

from courtly.decorators import club_access_required, club_admin_required
from courtly.extensions import limiter
from courtly.models.membership import MembershipSubscription
from courtly.services import stripe_service
from courtly.services.balance_service import balance_summary
from courtly.validation import bool_field, cents_field, json_body, require_fields

logger = logging.getLogger(__name__)

payments_bp = Blueprint("payments", __name__, url_prefix="/api/clubs/<club_id>")


# ──────────────────────────────────────────────
# POST /api/clubs/<club_id>/bookings/<booking_id>/checkout
# ──────────────────────────────────────────────

@payments_bp.route("/bookings/<booking_id>/checkout", methods=["POST"])
@club_access_required
@limiter.limit("10 per minute")
def booking_checkout(club_id, booking_id):
    """Create a Checkout Session for the caller's own booking."""
    result = stripe_service.create_booking_checkout(club_id, booking_id, current_user)
    return jsonify(result)


# ──────────────────────────────────────────────
# POST /api/clubs/<club_id>/charges
# ──────────────────────────────────────────────

@payments_bp.route("/charges", methods=["POST"])
@club_access_required
@limiter.limit("10 per minute")
def charge(club_id):
    """Charge the caller's saved payment method off-session.

    Body: {"amount": cents, "description"?: str, "booking_id"?: str}
    """
    data = json_body()
    amount = cents_field(data, "amount")

    metadata = {}
    if data.get("booking_id"):
        metadata["booking_id"] = data["booking_id"]

    result = stripe_service.charge_saved_method(
        user_id=current_user.id,
        club_id=club_id,
        amount=amount,
        description=data.get("description"),
        metadata=metadata,
    )
    return jsonify(result)


# ──────────────────────────────────────────────
# POST /api/clubs/<club_id>/payment-method/setup
# ──────────────────────────────────────────────

@payments_bp.route("/payment-method/setup", methods=["POST"])
@club_access_required
@limiter.limit("10 per minute")
def payment_method_setup(club_id):
    """Start saving a card for off-session charges; returns a client_secret."""
    result = stripe_service.create_payment_method_setup(club_id, current_user)
    return jsonify(result)


# ──────────────────────────────────────────────
# Memberships
# ──────────────────────────────────────────────

@payments_bp.route("/memberships", methods=["GET"])
@club_access_required
def list_memberships(club_id):
    memberships = (
        MembershipSubscription.query
        .filter_by(club_id=club_id, user_id=current_user.id)
        .order_by(MembershipSubscription.created_at.desc())
        .all()
    )
    return jsonify({"memberships": [m.to_dict() for m in memberships]})


@payments_bp.route("/memberships/checkout", methods=["POST"])
@club_access_required
@limiter.limit("10 per minute")
def membership_checkout(club_id):
    """Body: {"plan_id": str}"""
    data = json_body()
    require_fields(data, "plan_id")
    result = stripe_service.create_membership_checkout(
        club_id, data["plan_id"], current_user
    )
    return jsonify(result)


@payments_bp.route("/memberships/<membership_id>/cancel", methods=["POST"])
@club_access_required
def cancel_membership(club_id, membership_id):
    """Body: {"immediately"?: bool}. Default cancels at period end."""
    data = json_body()
    membership = stripe_service.cancel_membership(
        club_id,
        membership_id,
        current_user,
        immediately=bool_field(data, "immediately"),
    )
    return jsonify({"success": True, "membership": membership.to_dict()})


# ──────────────────────────────────────────────
# Account balance
# ──────────────────────────────────────────────

@payments_bp.route("/balance", methods=["GET"])
@club_access_required
def balance(club_id):
    return jsonify(balance_summary(current_user.id, club_id))


@payments_bp.route("/balance/checkout", methods=["POST"])
@club_access_required
@limiter.limit("10 per minute")
def balance_checkout(club_id):
    """Body: {"amount": cents}"""
    data = json_body()
    amount = cents_field(data, "amount")
    result = stripe_service.create_account_credit_checkout(club_id, current_user, amount)
    return jsonify(result)


# ──────────────────────────────────────────────
# Stripe Connect
# ──────────────────────────────────────────────

@payments_bp.route("/connect/start", methods=["POST"])
@club_admin_required
def connect_start(club_id):
    result = stripe_service.start_connect_onboarding(club_id, current_user)
    return jsonify(result)


@payments_bp.route("/connect/status", methods=["GET"])
@club_admin_required
def connect_status(club_id):
    return jsonify(stripe_service.refresh_connect_status(club_id))
