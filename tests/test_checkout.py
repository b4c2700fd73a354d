"""Tests for Checkout Sessions, membership cancellation and Stripe Connect.

Covers:
- Booking checkout (ownership, fee, destination, metadata, club readiness)
- Membership checkout (recurring vs one-time, price caching, inactive plans)
- Account credit checkout (minimum amount)
- Membership cancellation (period end vs immediate)
- Connect onboarding and status refresh
"""

from unittest.mock import MagicMock, patch

import stripe

from courtly.extensions import db
from courtly.models.club import Club, ClubMember, MembershipPlan
from courtly.models.membership import MembershipSubscription
from courtly.services import booking_service

SESSION_CREATE = "courtly.services.stripe_service.stripe.checkout.Session.create"


def _session(session_id="cs_test_1"):
    return MagicMock(id=session_id, url=f"https://checkout.stripe.com/c/pay/{session_id}")


def _booking(seed_data, user="member", cost_cents=10000):
    return booking_service.create_booking(
        club_id=seed_data["club_id"],
        court_id=seed_data["court_1"].id,
        booking_date="2026-11-02",
        start_time="10:00",
        end_time="11:00",
        user_id=seed_data[user].id,
        cost_cents=cost_cents,
    )


class TestBookingCheckout:
    """Tests for POST /api/clubs/<club_id>/bookings/<booking_id>/checkout."""

    def _url(self, seed_data, booking):
        return f"/api/clubs/{seed_data['club_id']}/bookings/{booking.id}/checkout"

    @patch(SESSION_CREATE)
    def test_creates_destination_charge_session(self, mock_create, client, seed_data, auth_headers):
        mock_create.return_value = _session()
        booking = _booking(seed_data)

        resp = client.post(self._url(seed_data, booking), headers=auth_headers(seed_data["member"]))

        assert resp.status_code == 200
        assert resp.get_json() == {
            "session_id": "cs_test_1",
            "url": "https://checkout.stripe.com/c/pay/cs_test_1",
        }

        kwargs = mock_create.call_args[1]
        assert kwargs["mode"] == "payment"
        assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 10000
        intent_data = kwargs["payment_intent_data"]
        assert intent_data["application_fee_amount"] == 300
        assert intent_data["transfer_data"] == {"destination": "acct_club_123"}
        assert intent_data["metadata"]["kind"] == "booking"
        assert intent_data["metadata"]["booking_id"] == booking.id
        assert kwargs["metadata"] == intent_data["metadata"]

        assert booking_service.get_booking(seed_data["club_id"], booking.id).checkout_session_id == "cs_test_1"

    @patch(SESSION_CREATE)
    def test_club_fee_override(self, mock_create, client, seed_data, auth_headers):
        mock_create.return_value = _session()
        seed_data["club"].platform_fee_bps = 500
        db.session.commit()
        booking = _booking(seed_data)

        client.post(self._url(seed_data, booking), headers=auth_headers(seed_data["member"]))

        assert mock_create.call_args[1]["payment_intent_data"]["application_fee_amount"] == 500

    @patch(SESSION_CREATE)
    def test_not_owner_forbidden(self, mock_create, client, seed_data, auth_headers):
        booking = _booking(seed_data, user="owner")

        resp = client.post(self._url(seed_data, booking), headers=auth_headers(seed_data["member"]))

        assert resp.status_code == 403
        assert "does not belong" in resp.get_json()["error"]
        mock_create.assert_not_called()

    @patch(SESSION_CREATE)
    def test_paid_booking_conflict(self, mock_create, client, seed_data, auth_headers):
        booking = _booking(seed_data)
        booking_service.complete_payment(seed_data["club_id"], booking.id, "cash")

        resp = client.post(self._url(seed_data, booking), headers=auth_headers(seed_data["member"]))

        assert resp.status_code == 409
        mock_create.assert_not_called()

    @patch(SESSION_CREATE)
    def test_club_without_charges_enabled(self, mock_create, client, seed_data, auth_headers):
        seed_data["club"].charges_enabled = False
        db.session.commit()
        booking = _booking(seed_data)

        resp = client.post(self._url(seed_data, booking), headers=auth_headers(seed_data["member"]))

        assert resp.status_code == 400
        assert "cannot accept payments" in resp.get_json()["error"]
        mock_create.assert_not_called()

    @patch(SESSION_CREATE)
    def test_club_without_account(self, mock_create, client, seed_data, auth_headers):
        seed_data["club"].stripe_account_id = None
        db.session.commit()
        booking = _booking(seed_data)

        resp = client.post(self._url(seed_data, booking), headers=auth_headers(seed_data["member"]))

        assert resp.status_code == 400
        assert "no connected Stripe account" in resp.get_json()["error"]

    @patch(SESSION_CREATE)
    def test_stripe_error_returns_500(self, mock_create, client, seed_data, auth_headers):
        mock_create.side_effect = stripe.APIConnectionError("Network down")
        booking = _booking(seed_data)

        resp = client.post(self._url(seed_data, booking), headers=auth_headers(seed_data["member"]))

        assert resp.status_code == 500
        assert "error" in resp.get_json()


class TestMembershipCheckout:
    """Tests for POST /api/clubs/<club_id>/memberships/checkout."""

    def _url(self, seed_data):
        return f"/api/clubs/{seed_data['club_id']}/memberships/checkout"

    @patch("courtly.services.stripe_service.stripe.Price.create")
    @patch(SESSION_CREATE)
    def test_recurring_plan(self, mock_create, mock_price, client, seed_data, auth_headers):
        mock_price.return_value = MagicMock(id="price_monthly")
        mock_create.return_value = _session("cs_mem_1")
        plan = seed_data["monthly_plan"]

        resp = client.post(
            self._url(seed_data),
            json={"plan_id": plan.id},
            headers=auth_headers(seed_data["member"]),
        )

        assert resp.status_code == 200
        membership_id = resp.get_json()["membership_id"]

        kwargs = mock_create.call_args[1]
        assert kwargs["mode"] == "subscription"
        assert kwargs["line_items"] == [{"price": "price_monthly", "quantity": 1}]
        sub_data = kwargs["subscription_data"]
        assert sub_data["application_fee_percent"] == 3
        assert sub_data["transfer_data"] == {"destination": "acct_club_123"}
        assert sub_data["metadata"]["membership_id"] == membership_id

        assert mock_price.call_args[1]["recurring"] == {"interval": "month"}

        membership = db.session.get(MembershipSubscription, membership_id)
        assert membership.status == "incomplete"
        assert membership.payment_status == "requires_payment"
        assert membership.checkout_session_id == "cs_mem_1"
        assert db.session.get(MembershipPlan, plan.id).stripe_price_id == "price_monthly"

    @patch("courtly.services.stripe_service.stripe.Price.create")
    @patch(SESSION_CREATE)
    def test_price_is_reused(self, mock_create, mock_price, client, seed_data, auth_headers):
        seed_data["monthly_plan"].stripe_price_id = "price_existing"
        db.session.commit()
        mock_create.return_value = _session("cs_mem_2")

        client.post(
            self._url(seed_data),
            json={"plan_id": seed_data["monthly_plan"].id},
            headers=auth_headers(seed_data["member"]),
        )

        mock_price.assert_not_called()
        assert mock_create.call_args[1]["line_items"][0]["price"] == "price_existing"

    @patch(SESSION_CREATE)
    def test_one_time_plan(self, mock_create, client, seed_data, auth_headers):
        mock_create.return_value = _session("cs_pass_1")

        resp = client.post(
            self._url(seed_data),
            json={"plan_id": seed_data["one_time_plan"].id},
            headers=auth_headers(seed_data["member"]),
        )

        assert resp.status_code == 200
        kwargs = mock_create.call_args[1]
        assert kwargs["mode"] == "payment"
        assert kwargs["payment_intent_data"]["application_fee_amount"] == 360
        assert kwargs["payment_intent_data"]["metadata"]["kind"] == "membership"

    def test_unknown_plan(self, client, seed_data, auth_headers):
        resp = client.post(
            self._url(seed_data),
            json={"plan_id": "no-such-plan"},
            headers=auth_headers(seed_data["member"]),
        )
        assert resp.status_code == 404

    def test_inactive_plan(self, client, seed_data, auth_headers):
        seed_data["monthly_plan"].active = False
        db.session.commit()

        resp = client.post(
            self._url(seed_data),
            json={"plan_id": seed_data["monthly_plan"].id},
            headers=auth_headers(seed_data["member"]),
        )
        assert resp.status_code == 400

    @patch(SESSION_CREATE)
    def test_stripe_error_leaves_no_membership(self, mock_create, client, seed_data, auth_headers):
        mock_create.side_effect = stripe.InvalidRequestError("Bad request", "line_items")

        resp = client.post(
            self._url(seed_data),
            json={"plan_id": seed_data["one_time_plan"].id},
            headers=auth_headers(seed_data["member"]),
        )

        assert resp.status_code == 500
        assert MembershipSubscription.query.count() == 0


class TestAccountCreditCheckout:
    """Tests for POST /api/clubs/<club_id>/balance/checkout."""

    @patch(SESSION_CREATE)
    def test_creates_session(self, mock_create, client, seed_data, auth_headers):
        mock_create.return_value = _session("cs_credit_1")

        resp = client.post(
            f"/api/clubs/{seed_data['club_id']}/balance/checkout",
            json={"amount": 2000},
            headers=auth_headers(seed_data["member"]),
        )

        assert resp.status_code == 200
        metadata = mock_create.call_args[1]["metadata"]
        assert metadata == {
            "kind": "account_credit",
            "club_id": seed_data["club_id"],
            "user_id": seed_data["member"].id,
            "amount": "2000",
        }
        assert mock_create.call_args[1]["payment_intent_data"]["application_fee_amount"] == 60

    def test_below_minimum(self, client, seed_data, auth_headers):
        resp = client.post(
            f"/api/clubs/{seed_data['club_id']}/balance/checkout",
            json={"amount": 500},
            headers=auth_headers(seed_data["member"]),
        )
        assert resp.status_code == 400
        assert "$10.00" in resp.get_json()["error"]


class TestCancelMembership:
    """Tests for POST /api/clubs/<club_id>/memberships/<id>/cancel."""

    def _active_membership(self, seed_data):
        membership = MembershipSubscription(
            club_id=seed_data["club_id"],
            user_id=seed_data["member"].id,
            plan_id=seed_data["monthly_plan"].id,
            status="active",
            payment_status="paid",
            price_cents=5000,
            interval="month",
            checkout_session_id="cs_active",
            external_subscription_id="sub_active",
        )
        db.session.add(membership)
        db.session.commit()
        return membership

    @patch("courtly.services.stripe_service.stripe.Subscription.modify")
    def test_cancel_at_period_end(self, mock_modify, client, seed_data, auth_headers):
        membership = self._active_membership(seed_data)

        resp = client.post(
            f"/api/clubs/{seed_data['club_id']}/memberships/{membership.id}/cancel",
            json={},
            headers=auth_headers(seed_data["member"]),
        )

        assert resp.status_code == 200
        mock_modify.assert_called_once_with("sub_active", cancel_at_period_end=True)
        data = resp.get_json()["membership"]
        assert data["status"] == "active"
        assert data["cancel_at_period_end"] is True

    @patch("courtly.services.stripe_service.stripe.Subscription.cancel")
    def test_cancel_immediately(self, mock_cancel, client, seed_data, auth_headers):
        membership = self._active_membership(seed_data)

        resp = client.post(
            f"/api/clubs/{seed_data['club_id']}/memberships/{membership.id}/cancel",
            json={"immediately": True},
            headers=auth_headers(seed_data["member"]),
        )

        assert resp.status_code == 200
        mock_cancel.assert_called_once_with("sub_active")
        assert resp.get_json()["membership"]["status"] == "canceled"

    def test_other_member_forbidden(self, client, seed_data, auth_headers):
        membership = self._active_membership(seed_data)
        other = seed_data["outsider"]
        db.session.add(ClubMember(user_id=other.id, club_id=seed_data["club_id"], role="member"))
        db.session.commit()

        resp = client.post(
            f"/api/clubs/{seed_data['club_id']}/memberships/{membership.id}/cancel",
            headers=auth_headers(other),
        )
        assert resp.status_code == 403

    def test_list_own_memberships(self, client, seed_data, auth_headers):
        membership = self._active_membership(seed_data)

        resp = client.get(
            f"/api/clubs/{seed_data['club_id']}/memberships",
            headers=auth_headers(seed_data["member"]),
        )

        assert resp.status_code == 200
        listed = resp.get_json()["memberships"]
        assert [m["id"] for m in listed] == [membership.id]
        assert listed[0]["status"] == "active"

        resp = client.get(
            f"/api/clubs/{seed_data['club_id']}/memberships",
            headers=auth_headers(seed_data["owner"]),
        )
        assert resp.get_json()["memberships"] == []


class TestConnect:
    """Tests for Stripe Connect onboarding and status."""

    def _new_club(self, seed_data):
        club = Club(name="Hilltop Tennis")
        db.session.add(club)
        db.session.flush()
        db.session.add(ClubMember(user_id=seed_data["owner"].id, club_id=club.id, role="owner"))
        db.session.commit()
        return club

    @patch("courtly.services.stripe_service.stripe.AccountLink.create")
    @patch("courtly.services.stripe_service.stripe.Account.create")
    def test_start_creates_express_account(self, mock_account, mock_link, client, seed_data, auth_headers):
        mock_account.return_value = MagicMock(id="acct_new_1")
        mock_link.return_value = MagicMock(url="https://connect.stripe.com/setup/e/acct_new_1")
        club = self._new_club(seed_data)

        resp = client.post(
            f"/api/clubs/{club.id}/connect/start",
            headers=auth_headers(seed_data["owner"]),
        )

        assert resp.status_code == 200
        assert resp.get_json()["url"].startswith("https://connect.stripe.com/")
        account_kwargs = mock_account.call_args[1]
        assert account_kwargs["type"] == "express"
        assert account_kwargs["capabilities"] == {
            "card_payments": {"requested": True},
            "transfers": {"requested": True},
        }
        assert mock_link.call_args[1]["type"] == "account_onboarding"

        reloaded = db.session.get(Club, club.id, populate_existing=True)
        assert reloaded.stripe_account_id == "acct_new_1"
        assert reloaded.stripe_status == "onboarding"

    @patch("courtly.services.stripe_service.stripe.AccountLink.create")
    @patch("courtly.services.stripe_service.stripe.Account.create")
    def test_start_reuses_existing_account(self, mock_account, mock_link, client, seed_data, auth_headers):
        mock_link.return_value = MagicMock(url="https://connect.stripe.com/setup/e/acct_club_123")

        resp = client.post(
            f"/api/clubs/{seed_data['club_id']}/connect/start",
            headers=auth_headers(seed_data["owner"]),
        )

        assert resp.status_code == 200
        mock_account.assert_not_called()
        assert mock_link.call_args[1]["account"] == "acct_club_123"

    def test_member_cannot_onboard(self, client, seed_data, auth_headers):
        resp = client.post(
            f"/api/clubs/{seed_data['club_id']}/connect/start",
            headers=auth_headers(seed_data["member"]),
        )
        assert resp.status_code == 403
        assert "Must be club admin" in resp.get_json()["error"]

    @patch("courtly.services.stripe_service.stripe.Account.retrieve")
    def test_status_refresh(self, mock_retrieve, client, seed_data, auth_headers):
        mock_retrieve.return_value = {
            "id": "acct_club_123",
            "charges_enabled": True,
            "payouts_enabled": False,
            "details_submitted": True,
        }

        resp = client.get(
            f"/api/clubs/{seed_data['club_id']}/connect/status",
            headers=auth_headers(seed_data["owner"]),
        )

        data = resp.get_json()
        assert resp.status_code == 200
        assert data["status"] == "onboarding"
        assert data["charges_enabled"] is True
        assert data["payouts_enabled"] is False
        assert data["requires_action"] is True

    def test_status_without_account(self, client, seed_data, auth_headers):
        club = self._new_club(seed_data)
        resp = client.get(
            f"/api/clubs/{club.id}/connect/status",
            headers=auth_headers(seed_data["owner"]),
        )
        assert resp.get_json()["status"] == "not_created"
