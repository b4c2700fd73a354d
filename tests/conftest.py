"""Shared test fixtures for the Courtly test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, Stripe keys faked)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: a club with a connected Stripe account, courts, plans, an
  owner, a member and a user from outside the club
- auth_headers: builds `Authorization: Bearer` headers for a user
- post_event: posts a webhook event with signature verification patched
"""

import json
from unittest.mock import patch

import pytest
from flask import g
from flask.testing import FlaskClient
from werkzeug.security import generate_password_hash

from courtly import create_app
from courtly.extensions import db as _db
from courtly.models.club import Club, ClubMember, Court, MembershipPlan
from courtly.models.user import User
from courtly.services.auth_service import issue_api_token


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


class BearerClient(FlaskClient):
    """Test client that re-resolves the user on every request.

    Requests share the fixture's app context, so Flask-Login's cached
    user would otherwise leak from one request into the next.
    """

    def open(self, *args, **kwargs):
        g.pop("_login_user", None)
        return super().open(*args, **kwargs)


@pytest.fixture
def client(app):
    """Flask test client."""
    app.test_client_class = BearerClient
    return app.test_client()


@pytest.fixture
def seed_data(app, db_session):
    """Seed the database with users, a payable club, courts and plans.

    Returns a dict with all created objects for easy access in tests.
    """
    # --- Users ---
    owner = User(
        email="owner@courtly.local",
        password_hash=generate_password_hash("owner1234"),
        full_name="Olivia Owner",
    )
    member = User(
        email="member@courtly.local",
        password_hash=generate_password_hash("member1234"),
        full_name="Max Member",
        stripe_customer_id="cus_member_123",
    )
    outsider = User(
        email="outsider@courtly.local",
        password_hash=generate_password_hash("outsider1234"),
        full_name="Oscar Outsider",
    )
    _db.session.add_all([owner, member, outsider])
    _db.session.flush()

    # --- Club with an active connected account ---
    club = Club(
        name="Riverside Tennis Club",
        currency="usd",
        stripe_account_id="acct_club_123",
        stripe_status="active",
        charges_enabled=True,
        payouts_enabled=True,
        onboarding_complete=True,
    )
    _db.session.add(club)
    _db.session.flush()

    _db.session.add_all([
        ClubMember(user_id=owner.id, club_id=club.id, role="owner"),
        ClubMember(user_id=member.id, club_id=club.id, role="member"),
    ])

    # --- Courts ---
    court_1 = Court(club_id=club.id, name="Court 1")
    court_2 = Court(club_id=club.id, name="Court 2")
    closed_court = Court(club_id=club.id, name="Court 3", is_active=False)
    _db.session.add_all([court_1, court_2, closed_court])

    # --- Plans ---
    monthly_plan = MembershipPlan(
        club_id=club.id, name="Monthly", price_cents=5000, interval="month"
    )
    one_time_plan = MembershipPlan(
        club_id=club.id, name="Summer Pass", price_cents=12000, interval="one_time"
    )
    _db.session.add_all([monthly_plan, one_time_plan])

    _db.session.commit()

    return {
        "owner": owner,
        "member": member,
        "outsider": outsider,
        "club": club,
        "club_id": club.id,
        "court_1": court_1,
        "court_2": court_2,
        "closed_court": closed_court,
        "monthly_plan": monthly_plan,
        "one_time_plan": one_time_plan,
    }


@pytest.fixture
def auth_headers(app):
    """Return a function building bearer headers for a user."""

    def _headers(user):
        return {"Authorization": f"Bearer {issue_api_token(user)}"}

    return _headers


@pytest.fixture
def post_event(client):
    """Post a Stripe event to /stripe/webhooks with a valid signature."""

    def _post(event):
        with patch(
            "courtly.services.stripe_service.stripe.WebhookSignature.verify_header"
        ) as mock_verify:
            mock_verify.return_value = True
            return client.post(
                "/stripe/webhooks",
                data=json.dumps(event),
                content_type="application/json",
                headers={"Stripe-Signature": "t=1,v1=valid"},
            )

    return _post
