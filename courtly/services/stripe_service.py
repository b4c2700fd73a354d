"""Stripe service — all Stripe API calls and webhook handling.

Responsible for:
- Creating Stripe Checkout Sessions for bookings, memberships and
  account-balance top-ups, as destination charges to the club's
  connected account net of the platform fee
- Saving a payment method (SetupIntent) and charging it off-session
- Stripe Connect onboarding and account status sync
- Verifying and dispatching incoming webhooks
- Idempotency via the webhook_events table
"""

import json
import logging
from datetime import datetime, timezone
from urllib.parse import quote

import stripe
from flask import current_app
from sqlalchemy.exc import IntegrityError

from courtly.errors import (
    AlreadyPaid,
    ForbiddenError,
    MissingField,
    MissingMetadata,
    NotFoundError,
    PaymentDeclined,
    PaymentInProgress,
    SignatureError,
    UpstreamError,
    ValidationError,
)
from courtly.extensions import db
from courtly.models.booking import Booking
from courtly.models.club import Club, Court, MembershipPlan
from courtly.models.membership import MembershipSubscription
from courtly.models.user import User
from courtly.models.webhook_event import WebhookEvent
from courtly.services.audit_service import log_audit
from courtly.services.auth_service import get_club_or_404, is_club_admin, require_club_admin
from courtly.services.balance_service import credit_balance
from courtly.services.booking_service import find_conflict, get_booking
from courtly.services.payment_metadata import (
    AccountCreditPayment,
    BookingPayment,
    MembershipPayment,
    parse_payment_metadata,
)
from courtly.services.pricing import calculate_platform_fee, fee_basis_points_for
from courtly.services.transactions import run_in_transaction

logger = logging.getLogger(__name__)


def _configure_stripe():
    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]


def _field(obj, name, default=None):
    """Read a field from a webhook dict or a Stripe SDK object."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _upstream_error(action, e):
    """Map a Stripe SDK error onto our error taxonomy."""
    if isinstance(e, stripe.CardError):
        logger.warning(f"Card declined during {action}: {e}")
        return PaymentDeclined(f"Payment failed: {e.user_message or e}")
    logger.error(f"Stripe error during {action}: {e}")
    return UpstreamError(e.user_message or f"Failed to {action}")


def _require_payable_club(club):
    """The club must have a connected account that can take charges."""
    if not club.stripe_account_id:
        raise ValidationError("Club has no connected Stripe account")
    if not club.charges_enabled:
        raise ValidationError("Club cannot accept payments yet")


def _app_url(path):
    return f"{current_app.config['APP_BASE_URL']}{path}"


# ──────────────────────────────────────────────
# Checkout Sessions
# ──────────────────────────────────────────────

def create_booking_checkout(club_id, booking_id, user):
    """Create a payment-mode Checkout Session for a court booking.

    The caller must own the booking. The full amount is collected by the
    platform; Stripe transfers amount - fee to the club's account.

    Returns {"session_id", "url"}.
    """
    club = get_club_or_404(club_id)
    booking = get_booking(club_id, booking_id)

    if booking.user_id != user.id:
        raise ForbiddenError("Unauthorized: Reservation does not belong to user")
    _require_payable_club(club)

    if booking.paid:
        raise AlreadyPaid()
    if booking.payment_in_progress:
        raise PaymentInProgress()
    if booking.status != "confirmed":
        raise ValidationError("This booking has been cancelled.")
    if booking.cost_cents <= 0:
        raise ValidationError("This booking has nothing to pay.")

    _configure_stripe()
    amount = booking.cost_cents
    fee = calculate_platform_fee(amount, fee_basis_points_for(club))
    metadata = BookingPayment(
        club_id=club.id, booking_id=booking.id, user_id=user.id
    ).to_metadata()
    court_name = booking.court.name if booking.court else "Court"
    return_path = f"/club/{club.id}/my-bookings?booking={quote(booking.id, safe='')}"

    try:
        session = stripe.checkout.Session.create(
            mode="payment",
            line_items=[
                {
                    "price_data": {
                        "currency": club.currency,
                        "product_data": {
                            "name": f"Court Reservation - {court_name}",
                            "description": (
                                f"{booking.date.isoformat()} "
                                f"{booking.start_time}-{booking.end_time}"
                            ),
                        },
                        "unit_amount": amount,
                    },
                    "quantity": 1,
                }
            ],
            payment_intent_data={
                "application_fee_amount": fee,
                "transfer_data": {"destination": club.stripe_account_id},
                "metadata": metadata,
            },
            customer_email=user.email,
            client_reference_id=booking.id,
            success_url=_app_url(f"{return_path}&success=1"),
            cancel_url=_app_url(f"{return_path}&canceled=1"),
            metadata=metadata,
        )
    except stripe.StripeError as e:
        raise _upstream_error("create checkout session", e) from e

    booking.checkout_session_id = session.id
    db.session.commit()

    logger.info(f"Created checkout session {session.id} for booking {booking.id}")
    return {"session_id": session.id, "url": session.url}


def _get_or_create_plan_price(plan, club):
    """Recurring Stripe Price for a plan, created on first use and cached."""
    if plan.stripe_price_id:
        return plan.stripe_price_id

    price = stripe.Price.create(
        unit_amount=plan.price_cents,
        currency=club.currency,
        recurring={"interval": plan.interval},
        product_data={"name": f"{club.name} - {plan.name}"},
        metadata={"club_id": club.id, "plan_id": plan.id},
    )
    plan.stripe_price_id = price.id
    db.session.flush()
    logger.info(f"Created Stripe price {price.id} for plan {plan.id}")
    return price.id


def create_membership_checkout(club_id, plan_id, user):
    """Create a Checkout Session for a membership plan.

    One-time plans use a payment-mode session; recurring plans use a
    subscription-mode session whose invoices carry the same destination
    transfer and platform fee. A MembershipSubscription row is created as
    `incomplete` and finished by webhooks.

    Returns {"session_id", "url", "membership_id"}.
    """
    if not plan_id:
        raise MissingField("Missing clubId or planId")

    club = get_club_or_404(club_id)
    _require_payable_club(club)

    plan = MembershipPlan.query.filter_by(id=plan_id, club_id=club.id).first()
    if plan is None:
        raise NotFoundError("Membership plan not found")
    if not plan.active:
        raise ValidationError("Membership plan is not active")

    _configure_stripe()
    basis_points = fee_basis_points_for(club)

    membership = MembershipSubscription(
        club_id=club.id,
        user_id=user.id,
        plan_id=plan.id,
        status="incomplete",
        payment_status="requires_payment",
        price_cents=plan.price_cents,
        interval=plan.interval,
        currency=club.currency,
    )
    db.session.add(membership)
    db.session.flush()

    metadata = MembershipPayment(
        club_id=club.id,
        plan_id=plan.id,
        user_id=user.id,
        membership_id=membership.id,
    ).to_metadata()
    success_url = _app_url(f"/club/{club.id}/membership?success=1")
    cancel_url = _app_url(f"/club/{club.id}/membership?canceled=1")

    try:
        if plan.is_recurring:
            price_id = _get_or_create_plan_price(plan, club)
            session = stripe.checkout.Session.create(
                mode="subscription",
                line_items=[{"price": price_id, "quantity": 1}],
                subscription_data={
                    "application_fee_percent": basis_points / 100,
                    "transfer_data": {"destination": club.stripe_account_id},
                    "metadata": metadata,
                },
                customer_email=user.email,
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
            )
        else:
            session = stripe.checkout.Session.create(
                mode="payment",
                line_items=[
                    {
                        "price_data": {
                            "currency": club.currency,
                            "product_data": {
                                "name": plan.name,
                                "description": "One-time membership payment",
                            },
                            "unit_amount": plan.price_cents,
                        },
                        "quantity": 1,
                    }
                ],
                payment_intent_data={
                    "application_fee_amount": calculate_platform_fee(
                        plan.price_cents, basis_points
                    ),
                    "transfer_data": {"destination": club.stripe_account_id},
                    "metadata": metadata,
                },
                customer_email=user.email,
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
            )
    except stripe.StripeError as e:
        db.session.rollback()
        raise _upstream_error("create checkout session", e) from e

    membership.checkout_session_id = session.id
    db.session.commit()

    logger.info(
        f"Created checkout session {session.id} for membership {membership.id} "
        f"(plan {plan.id})"
    )
    return {
        "session_id": session.id,
        "url": session.url,
        "membership_id": membership.id,
    }


def create_account_credit_checkout(club_id, user, amount):
    """Checkout Session that tops up the user's balance at a club.

    The ledger is credited when checkout.session.completed arrives.
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("Amount must be a whole number of cents.")
    minimum = current_app.config["MIN_ACCOUNT_CREDIT_CENTS"]
    if amount < minimum:
        raise ValidationError(f"Minimum credit amount is ${minimum / 100:.2f}")

    club = get_club_or_404(club_id)
    _require_payable_club(club)

    _configure_stripe()
    fee = calculate_platform_fee(amount, fee_basis_points_for(club))
    metadata = AccountCreditPayment(
        club_id=club.id, user_id=user.id, amount=amount
    ).to_metadata()

    try:
        session = stripe.checkout.Session.create(
            mode="payment",
            line_items=[
                {
                    "price_data": {
                        "currency": club.currency,
                        "product_data": {
                            "name": "Account Balance Credit",
                            "description": (
                                f"Add ${amount / 100:.2f} to your {club.name} account"
                            ),
                        },
                        "unit_amount": amount,
                    },
                    "quantity": 1,
                }
            ],
            payment_intent_data={
                "application_fee_amount": fee,
                "transfer_data": {"destination": club.stripe_account_id},
                "metadata": metadata,
            },
            customer_email=user.email,
            success_url=_app_url(f"/club/{club.id}/dashboard?payment=success"),
            cancel_url=_app_url(f"/club/{club.id}/dashboard?payment=canceled"),
            metadata=metadata,
        )
    except stripe.StripeError as e:
        raise _upstream_error("create checkout session", e) from e

    logger.info(
        f"Created account credit checkout {session.id} for user {user.id} "
        f"at club {club.id} ({amount} cents, fee {fee})"
    )
    return {"session_id": session.id, "url": session.url}


def cancel_membership(club_id, membership_id, user, immediately=False):
    """Cancel a membership's Stripe subscription.

    By default the subscription runs to the end of the paid period;
    `immediately` cancels it now.
    """
    membership = db.session.get(MembershipSubscription, membership_id)
    if membership is None or membership.club_id != club_id:
        raise NotFoundError("Membership not found")
    if membership.user_id != user.id and not is_club_admin(user, club_id):
        raise ForbiddenError("Only the member or a club admin can cancel this membership")
    if not membership.external_subscription_id or membership.status == "canceled":
        raise ValidationError("No active subscription found")

    _configure_stripe()
    sub_id = membership.external_subscription_id
    try:
        if immediately:
            stripe.Subscription.cancel(sub_id)
        else:
            stripe.Subscription.modify(sub_id, cancel_at_period_end=True)
    except stripe.StripeError as e:
        raise _upstream_error("cancel subscription", e) from e

    if immediately:
        membership.status = "canceled"
        membership.cancel_at_period_end = False
    else:
        membership.cancel_at_period_end = True
    log_audit(club_id, "membership.cancel_requested", {
        "membership_id": membership.id,
        "stripe_subscription_id": sub_id,
        "immediately": bool(immediately),
    }, actor_user_id=user.id)
    db.session.commit()

    logger.info(
        f"Subscription {sub_id} "
        + ("canceled immediately" if immediately else "set to cancel at period end")
    )
    return membership


# ──────────────────────────────────────────────
# Stripe Connect
# ──────────────────────────────────────────────

def _apply_account_status(club, account):
    """Copy a connected account's capability flags onto the club."""
    charges_enabled = bool(_field(account, "charges_enabled", False))
    payouts_enabled = bool(_field(account, "payouts_enabled", False))
    details_submitted = bool(_field(account, "details_submitted", False))

    club.charges_enabled = charges_enabled
    club.payouts_enabled = payouts_enabled
    club.onboarding_complete = details_submitted
    club.stripe_status = (
        "active"
        if details_submitted and charges_enabled and payouts_enabled
        else "onboarding"
    )
    db.session.flush()


def start_connect_onboarding(club_id, user):
    """Create (once) the club's Express account and return an onboarding link."""
    club = get_club_or_404(club_id)
    require_club_admin(user, club.id)
    _configure_stripe()

    try:
        if not club.stripe_account_id:
            account = stripe.Account.create(
                type="express",
                country=current_app.config["CONNECT_COUNTRY"],
                email=user.email,
                metadata={
                    "club_id": club.id,
                    "club_name": club.name,
                    "user_id": user.id,
                },
                capabilities={
                    "card_payments": {"requested": True},
                    "transfers": {"requested": True},
                },
            )
            club.stripe_account_id = account.id
            club.stripe_status = "onboarding"
            club.onboarding_complete = False
            club.charges_enabled = False
            club.payouts_enabled = False
            log_audit(club.id, "connect.account_created", {
                "stripe_account_id": account.id,
            }, actor_user_id=user.id)
            db.session.commit()
            logger.info(f"Created Stripe Express account {account.id} for club {club.id}")
        else:
            logger.info(f"Using existing Stripe account {club.stripe_account_id}")

        link = stripe.AccountLink.create(
            account=club.stripe_account_id,
            refresh_url=_app_url(f"/club/{club.id}/stripe-setup?refresh=1"),
            return_url=_app_url(f"/club/{club.id}/stripe-setup?connected=1"),
            type="account_onboarding",
        )
    except stripe.StripeError as e:
        db.session.rollback()
        raise _upstream_error("create account link", e) from e

    return {"url": link.url, "stripe_account_id": club.stripe_account_id}


def refresh_connect_status(club_id):
    """Pull the connected account from Stripe and sync the club's flags."""
    club = get_club_or_404(club_id)
    if not club.stripe_account_id:
        return {
            "connected": False,
            "status": "not_created",
            "message": "Stripe account not created yet",
        }

    _configure_stripe()
    try:
        account = stripe.Account.retrieve(club.stripe_account_id)
    except stripe.StripeError as e:
        raise _upstream_error("check account status", e) from e

    _apply_account_status(club, account)
    db.session.commit()

    return {
        "connected": club.stripe_status == "active",
        "status": club.stripe_status,
        "stripe_account_id": club.stripe_account_id,
        "charges_enabled": club.charges_enabled,
        "payouts_enabled": club.payouts_enabled,
        "details_submitted": club.onboarding_complete,
        "requires_action": club.stripe_status != "active",
    }


# ──────────────────────────────────────────────
# Off-session charges
# ──────────────────────────────────────────────

def _clear_stripe_customer(user, reason):
    logger.warning(
        f"Clearing Stripe customer {user.stripe_customer_id} for user {user.id}: {reason}"
    )
    user.stripe_customer_id = None
    db.session.commit()


def create_payment_method_setup(club_id, user):
    """Start saving a card for later off-session charges.

    Creates the user's Stripe Customer on first use and stores its id on
    the user. The frontend confirms the returned SetupIntent; the
    setup_intent.succeeded webhook then makes the card the customer's
    default payment method.

    Returns {"client_secret", "setup_intent_id", "customer_id"}.
    """
    club = get_club_or_404(club_id)
    _configure_stripe()

    customer_id = user.stripe_customer_id
    if not customer_id:
        try:
            customer = stripe.Customer.create(
                email=user.email,
                name=user.full_name or None,
                metadata={"user_id": user.id},
            )
        except stripe.StripeError as e:
            raise _upstream_error("create customer", e) from e
        customer_id = customer.id
        user.stripe_customer_id = customer_id
        db.session.commit()
        logger.info(f"Created Stripe customer {customer_id} for user {user.id}")

    try:
        intent = stripe.SetupIntent.create(
            customer=customer_id,
            payment_method_types=["card"],
            usage="off_session",
            metadata={"user_id": user.id, "club_id": club.id},
        )
    except stripe.StripeError as e:
        raise _upstream_error("create setup intent", e) from e

    logger.info(f"Created SetupIntent {intent.id} for customer {customer_id}")
    return {
        "client_secret": intent.client_secret,
        "setup_intent_id": intent.id,
        "customer_id": customer_id,
    }


def charge_saved_method(user_id, club_id, amount, description=None, metadata=None):
    """Charge the user's default saved card and credit their club balance.

    Destination charge: the platform keeps the fee, the club's connected
    account receives amount - fee. On success the balance ledger gets a
    credit keyed by the PaymentIntent id.

    Returns {"success", "payment_intent_id", "status", "amount", "fee"}.
    """
    if not user_id or not club_id or not amount:
        raise MissingField()
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("Amount must be a whole number of cents.")
    minimum = current_app.config["MIN_CHARGE_CENTS"]
    if amount < minimum:
        raise ValidationError(f"Minimum charge amount is ${minimum / 100:.2f}")

    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    if not user.stripe_customer_id:
        raise ValidationError(
            "No payment method on file. Please add a payment method first."
        )

    club = get_club_or_404(club_id)
    _require_payable_club(club)

    _configure_stripe()
    customer_id = user.stripe_customer_id

    try:
        customer = stripe.Customer.retrieve(customer_id)
    except stripe.InvalidRequestError as e:
        if e.code == "resource_missing":
            _clear_stripe_customer(user, "customer missing in Stripe")
            raise NotFoundError(
                "Customer account not found. Please add a payment method."
            ) from e
        raise _upstream_error("retrieve customer", e) from e
    except stripe.StripeError as e:
        raise _upstream_error("retrieve customer", e) from e

    if _field(customer, "deleted", False):
        _clear_stripe_customer(user, "customer deleted in Stripe")
        raise NotFoundError("Customer account not found. Please add a payment method.")

    payment_method = _field(_field(customer, "invoice_settings"), "default_payment_method")
    if payment_method and not isinstance(payment_method, str):
        payment_method = _field(payment_method, "id")
    if not payment_method:
        raise ValidationError(
            "No default payment method set. Please add a payment method."
        )

    fee = calculate_platform_fee(amount, fee_basis_points_for(club))
    intent_metadata = {"user_id": user.id, "club_id": club.id}
    for key, value in (metadata or {}).items():
        if value is not None and key != "kind":
            intent_metadata[str(key)] = str(value)

    try:
        intent = stripe.PaymentIntent.create(
            amount=amount,
            currency=club.currency,
            customer=customer_id,
            payment_method=payment_method,
            off_session=True,
            confirm=True,
            description=description or "Court booking charge",
            metadata=intent_metadata,
            application_fee_amount=fee,
            transfer_data={"destination": club.stripe_account_id},
        )
    except stripe.InvalidRequestError as e:
        if e.code == "resource_missing" and e.param in ("customer", "payment_method"):
            _clear_stripe_customer(user, f"{e.param} missing in Stripe")
            raise NotFoundError(
                "Customer account not found. Please add a payment method."
            ) from e
        raise _upstream_error("charge payment method", e) from e
    except stripe.StripeError as e:
        raise _upstream_error("charge payment method", e) from e

    logger.info(
        f"PaymentIntent {intent.id} for user {user.id} at club {club.id}: "
        f"{amount} cents, fee {fee}, status {intent.status}"
    )

    succeeded = intent.status == "succeeded"
    if succeeded:
        def _credit():
            credit_balance(
                user_id=user.id,
                club_id=club.id,
                amount=amount,
                description=description or "Automatic charge for court booking",
                payment_reference=intent.id,
                payment_method="card",
                currency=club.currency,
            )
            log_audit(club.id, "balance.charged", {
                "payment_intent_id": intent.id,
                "amount": amount,
                "fee": fee,
            }, actor_user_id=user.id)

        run_in_transaction("charge_saved_method", _credit)

    return {
        "success": succeeded,
        "payment_intent_id": intent.id,
        "status": intent.status,
        "amount": amount,
        "fee": fee,
    }


# ──────────────────────────────────────────────
# Webhook Handling
# ──────────────────────────────────────────────

def verify_webhook_signature(payload, sig_header):
    """Verify the Stripe-Signature header and parse the event JSON.

    Returns the event as a plain dict.
    Raises SignatureError before anything else looks at the payload.
    """
    if not sig_header:
        raise SignatureError("Missing signature")

    webhook_secret = current_app.config["STRIPE_WEBHOOK_SECRET"]
    try:
        stripe.WebhookSignature.verify_header(
            payload,
            sig_header,
            webhook_secret,
            tolerance=stripe.Webhook.DEFAULT_TOLERANCE,
        )
    except stripe.SignatureVerificationError as e:
        raise SignatureError("Invalid signature") from e

    try:
        event = json.loads(payload)
    except ValueError as e:
        raise SignatureError("Invalid payload") from e
    if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
        raise SignatureError("Invalid payload")
    return event


def handle_webhook_event(event):
    """Process a verified Stripe webhook event.

    Idempotency: an event already in webhook_events returns immediately.
    Otherwise the handler's writes and the ledger row commit together, so
    a crash before commit leaves the event unrecorded for redelivery, and
    a concurrent redelivery loses on the unique event id.

    Returns (success: bool, message: str).
    """
    event_id = event["id"]
    event_type = event["type"]

    # --- Idempotency check ---
    existing = WebhookEvent.query.filter_by(stripe_event_id=event_id).first()
    if existing:
        logger.info(f"Duplicate webhook event {event_id}, skipping")
        return True, "already_processed"

    # --- Route to handler ---
    handler = WEBHOOK_HANDLERS.get(event_type)
    message = "processed"
    if handler is None:
        logger.info(f"Unhandled event type {event_type} ({event_id})")
        message = "ignored"
    else:
        try:
            handler(event)
        except (MissingMetadata, NotFoundError) as e:
            # Not ours, or from another environment: record and move on.
            db.session.rollback()
            logger.warning(f"{event_type} {event_id}: {e.message}")
            message = "skipped"
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error handling {event_type} {event_id}: {e}", exc_info=True)
            return True, "handler_error"

    # --- Record event for idempotency ---
    db.session.add(WebhookEvent(stripe_event_id=event_id, event_type=event_type))
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        if WebhookEvent.query.filter_by(stripe_event_id=event_id).first():
            logger.info(f"Webhook event {event_id} was processed concurrently, skipping")
            return True, "already_processed"
        # The handler's own writes broke a constraint; nothing was recorded.
        logger.error(f"Error committing {event_type} {event_id}: {e}", exc_info=True)
        return True, "handler_error"

    return True, message


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _handle_checkout_completed(event):
    """Handle checkout.session.completed and async_payment_succeeded.

    Routes on the session's payment metadata: booking -> paid, membership
    -> active, account credit -> ledger credit. A session that completes
    with payment still pending is left alone; its
    checkout.session.async_payment_succeeded event settles it later.
    """
    session = event["data"]["object"]
    if session.get("payment_status") == "unpaid":
        logger.info(f"Checkout {session.get('id')} completed with payment pending")
        return

    payment = parse_payment_metadata(session.get("metadata"))
    if isinstance(payment, BookingPayment):
        _mark_booking_paid_from_checkout(payment, session)
    elif isinstance(payment, MembershipPayment):
        _activate_membership_from_checkout(payment, session)
    elif isinstance(payment, AccountCreditPayment):
        _credit_balance_from_checkout(payment, session)


def _lock_booking(payment):
    booking = (
        Booking.query
        .filter_by(id=payment.booking_id)
        .with_for_update()
        .first()
    )
    if booking is None or booking.club_id != payment.club_id:
        raise NotFoundError(f"Booking {payment.booking_id} not found")
    return booking


def _mark_booking_paid_from_checkout(payment, session):
    booking = _lock_booking(payment)
    payment_intent_id = session.get("payment_intent")

    if booking.paid:
        logger.warning(
            f"Booking {booking.id} already paid; checkout {session.get('id')} "
            f"(payment {payment_intent_id}) needs review for refund"
        )
        return

    if booking.status != "confirmed":
        # A failed attempt cancelled it; only take the slot back if still free.
        Court.query.filter_by(id=booking.court_id).with_for_update().first()
        conflict = find_conflict(
            booking.club_id,
            booking.court_id,
            booking.date,
            booking.start_minute,
            booking.end_minute,
            exclude_booking_id=booking.id,
        )
        if conflict is None:
            booking.status = "confirmed"
        else:
            logger.error(
                f"Booking {booking.id} paid after its slot went to {conflict.id}; "
                f"left cancelled, payment {payment_intent_id} needs refund"
            )

    booking.paid = True
    booking.payment_in_progress = False
    booking.payment_status = "paid"
    booking.payment_method = "checkout"
    booking.payment_reference = payment_intent_id
    booking.checkout_session_id = session.get("id")
    booking.payment_completed_at = datetime.now(timezone.utc)
    db.session.flush()

    log_audit(booking.club_id, "booking.paid", {
        "booking_id": booking.id,
        "payment_method": "checkout",
        "checkout_session_id": session.get("id"),
        "payment_intent_id": payment_intent_id,
    })
    logger.info(f"Booking {booking.id} paid via checkout {session.get('id')}")


def _activate_membership_from_checkout(payment, session):
    membership = (
        MembershipSubscription.query
        .filter_by(id=payment.membership_id)
        .with_for_update()
        .first()
    )
    if membership is None or membership.club_id != payment.club_id:
        raise NotFoundError(f"Membership {payment.membership_id} not found")

    session_id = session.get("id")
    if membership.checkout_session_id != session_id:
        logger.warning(
            f"Checkout {session_id} does not belong to membership {membership.id} "
            f"(expected {membership.checkout_session_id}), ignoring"
        )
        return

    stripe_subscription_id = session.get("subscription")
    if (
        stripe_subscription_id
        and membership.external_subscription_id
        and membership.external_subscription_id != stripe_subscription_id
    ):
        logger.warning(
            f"Membership {membership.id} is bound to subscription "
            f"{membership.external_subscription_id}, not {stripe_subscription_id}"
        )
        return

    if stripe_subscription_id:
        membership.external_subscription_id = stripe_subscription_id
    if session.get("customer") and not membership.external_customer_id:
        membership.external_customer_id = session.get("customer")

    if membership.status == "incomplete":
        membership.status = "active"
        membership.payment_status = "paid"
        membership.activated_at = datetime.now(timezone.utc)
    db.session.flush()

    log_audit(membership.club_id, "membership.checkout_completed", {
        "membership_id": membership.id,
        "checkout_session_id": session_id,
        "stripe_subscription_id": stripe_subscription_id,
        "status": membership.status,
    })
    logger.info(f"Membership {membership.id} checkout completed ({membership.status})")


def _credit_balance_from_checkout(payment, session):
    payment_intent_id = session.get("payment_intent") or session.get("id")
    amount = session.get("amount_total") or payment.amount
    club = db.session.get(Club, payment.club_id)
    if club is None:
        raise NotFoundError(f"Club {payment.club_id} not found")

    credit_balance(
        user_id=payment.user_id,
        club_id=club.id,
        amount=int(amount),
        description="Account balance credit",
        payment_reference=payment_intent_id,
        payment_method="checkout",
        currency=club.currency,
    )
    log_audit(club.id, "balance.credited", {
        "user_id": payment.user_id,
        "amount": int(amount),
        "payment_intent_id": payment_intent_id,
    })


def _handle_payment_intent_failed(event):
    """Handle payment_intent.payment_failed.

    Cancels the unpaid booking the intent was for and releases its
    payment lock. Paid bookings are left alone.
    """
    intent = event["data"]["object"]
    payment = parse_payment_metadata(intent.get("metadata"))
    if not isinstance(payment, BookingPayment):
        logger.info(f"payment_failed for {payment.kind} payment {intent.get('id')}, nothing to update")
        return

    booking = _lock_booking(payment)
    if booking.paid:
        logger.info(f"Ignoring payment failure for already-paid booking {booking.id}")
        return

    booking.status = "cancelled"
    booking.payment_status = "failed"
    booking.payment_in_progress = False
    booking.payment_reference = intent.get("id")
    booking.payment_failed_at = datetime.now(timezone.utc)
    db.session.flush()

    error = intent.get("last_payment_error") or {}
    log_audit(booking.club_id, "booking.payment_failed", {
        "booking_id": booking.id,
        "payment_intent_id": intent.get("id"),
        "decline_message": error.get("message"),
    })
    logger.info(f"Booking {booking.id} cancelled after failed payment {intent.get('id')}")


def _handle_account_updated(event):
    """Handle account.updated — sync the connected club's flags."""
    account = event["data"]["object"]
    club = Club.query.filter_by(stripe_account_id=account.get("id")).first()
    if club is None:
        logger.info(f"No club found for account {account.get('id')}")
        return

    _apply_account_status(club, account)
    logger.info(
        f"Updated club {club.id} account status: {club.stripe_status} "
        f"(charges={club.charges_enabled}, payouts={club.payouts_enabled})"
    )


def _invoice_subscription(invoice):
    """(subscription id, subscription metadata) from an invoice.

    Newer API versions moved both under parent.subscription_details.
    """
    parent_details = (invoice.get("parent") or {}).get("subscription_details") or {}
    subscription_id = invoice.get("subscription") or parent_details.get("subscription")
    metadata = (
        (invoice.get("subscription_details") or {}).get("metadata")
        or parent_details.get("metadata")
        or {}
    )
    return subscription_id, metadata


def _find_membership_for_invoice(invoice):
    """Locate (and lock) the membership an invoice belongs to.

    Matches on the recorded subscription id. An invoice can arrive before
    checkout.session.completed recorded that id; then the membership named
    in the subscription metadata adopts it, but only if it has none yet.
    """
    subscription_id, metadata = _invoice_subscription(invoice)
    if not subscription_id:
        logger.info(f"Invoice {invoice.get('id')} is not for a subscription")
        return None

    membership = (
        MembershipSubscription.query
        .filter_by(external_subscription_id=subscription_id)
        .with_for_update()
        .first()
    )
    if membership is not None:
        return membership

    payment = parse_payment_metadata(metadata)
    if not isinstance(payment, MembershipPayment):
        raise NotFoundError(f"No membership for subscription {subscription_id}")

    membership = (
        MembershipSubscription.query
        .filter_by(id=payment.membership_id)
        .with_for_update()
        .first()
    )
    if membership is None or membership.club_id != payment.club_id:
        raise NotFoundError(f"Membership {payment.membership_id} not found")
    if membership.external_subscription_id is not None:
        logger.warning(
            f"Membership {membership.id} is bound to subscription "
            f"{membership.external_subscription_id}, not {subscription_id}"
        )
        return None

    membership.external_subscription_id = subscription_id
    return membership


def _handle_invoice_paid(event):
    """Handle invoice.paid — the membership is (again) active."""
    invoice = event["data"]["object"]
    membership = _find_membership_for_invoice(invoice)
    if membership is None:
        return
    if membership.status == "canceled":
        logger.info(f"Ignoring invoice.paid for canceled membership {membership.id}")
        return

    if membership.activated_at is None:
        membership.activated_at = datetime.now(timezone.utc)
    if invoice.get("customer") and not membership.external_customer_id:
        membership.external_customer_id = invoice.get("customer")
    membership.status = "active"
    membership.payment_status = "paid"
    membership.latest_invoice_id = invoice.get("id")
    db.session.flush()

    log_audit(membership.club_id, "invoice.paid", {
        "membership_id": membership.id,
        "invoice_id": invoice.get("id"),
        "amount_paid": invoice.get("amount_paid"),
    })
    logger.info(f"Membership {membership.id} active after invoice {invoice.get('id')}")


def _handle_invoice_payment_failed(event):
    """Handle invoice.payment_failed — the membership goes past_due."""
    invoice = event["data"]["object"]
    membership = _find_membership_for_invoice(invoice)
    if membership is None:
        return
    if membership.status == "canceled":
        logger.info(f"Ignoring invoice.payment_failed for canceled membership {membership.id}")
        return

    membership.status = "past_due"
    membership.payment_status = "failed"
    membership.latest_invoice_id = invoice.get("id")
    db.session.flush()

    log_audit(membership.club_id, "invoice.payment_failed", {
        "membership_id": membership.id,
        "invoice_id": invoice.get("id"),
        "amount_due": invoice.get("amount_due"),
    })
    logger.info(f"Membership {membership.id} past_due after invoice {invoice.get('id')}")


def _handle_subscription_deleted(event):
    """Handle customer.subscription.deleted — the membership is canceled."""
    sub_data = event["data"]["object"]
    membership = MembershipSubscription.query.filter_by(
        external_subscription_id=sub_data.get("id")
    ).first()
    if membership is None:
        logger.info(f"subscription.deleted: no membership for sub={sub_data.get('id')}")
        return

    membership.status = "canceled"
    membership.cancel_at_period_end = False
    db.session.flush()

    log_audit(membership.club_id, "membership.canceled", {
        "membership_id": membership.id,
        "stripe_subscription_id": sub_data.get("id"),
    })


def _handle_setup_intent_succeeded(event):
    """Handle setup_intent.succeeded: the saved card becomes the default.

    charge_saved_method charges the customer's default payment method.
    """
    intent = event["data"]["object"]
    customer_id = intent.get("customer")
    payment_method = intent.get("payment_method")
    if not customer_id or not payment_method:
        raise MissingMetadata("SetupIntent has no customer or payment method")

    user = User.query.filter_by(stripe_customer_id=customer_id).first()
    if user is None:
        raise NotFoundError(f"No user for Stripe customer {customer_id}")

    _configure_stripe()
    stripe.Customer.modify(
        customer_id,
        invoice_settings={"default_payment_method": payment_method},
    )

    log_audit((intent.get("metadata") or {}).get("club_id"), "payment_method.saved", {
        "setup_intent_id": intent.get("id"),
        "payment_method": payment_method,
    }, actor_user_id=user.id)
    logger.info(f"Default payment method {payment_method} set for customer {customer_id}")


WEBHOOK_HANDLERS = {
    "checkout.session.completed": _handle_checkout_completed,
    # Delayed payment methods settle after the session completes.
    "checkout.session.async_payment_succeeded": _handle_checkout_completed,
    "payment_intent.payment_failed": _handle_payment_intent_failed,
    "account.updated": _handle_account_updated,
    "invoice.paid": _handle_invoice_paid,
    "invoice.payment_failed": _handle_invoice_payment_failed,
    "customer.subscription.deleted": _handle_subscription_deleted,
    "setup_intent.succeeded": _handle_setup_intent_succeeded,
}
