"""Tests for the bookings blueprint and the conflict resolver.

Covers:
- Creating bookings (success, required fields, bad times, negative cost)
- Overlap rejection, adjacency, other courts and other days
- Cancelled bookings free their slot
- Booking on behalf of another member (admins only)
- Day schedule listing
- Club access control
"""

from datetime import date

import pytest

from courtly.errors import NotFoundError, SlotConflict, ValidationError
from courtly.extensions import db
from courtly.models.audit import AuditEvent
from courtly.models.booking import Booking
from courtly.services import booking_service

DAY = "2026-11-02"


def _book(seed_data, start, end, court="court_1", user="member", **kwargs):
    return booking_service.create_booking(
        club_id=seed_data["club_id"],
        court_id=seed_data[court].id,
        booking_date=DAY,
        start_time=start,
        end_time=end,
        user_id=seed_data[user].id,
        **kwargs,
    )


class TestCreateBookingService:
    """Tests for booking_service.create_booking()."""

    def test_creates_confirmed_unpaid_booking(self, seed_data):
        booking = _book(seed_data, "10:00", "11:00", cost_cents=2500)

        assert booking.status == "confirmed"
        assert booking.paid is False
        assert booking.payment_in_progress is False
        assert booking.cost_cents == 2500
        assert booking.date == date(2026, 11, 2)
        assert booking.start_minute == 600
        assert booking.end_minute == 660

    def test_id_format(self, seed_data):
        booking = _book(seed_data, "10:00", "11:00")
        prefix = f"{seed_data['member'].id}_{seed_data['court_1'].id}_{DAY}_10:00_"
        assert booking.id.startswith(prefix)
        assert booking.id[len(prefix):].isdigit()

    def test_single_digit_hour_is_normalized(self, seed_data):
        booking = _book(seed_data, "9:00", "9:30")
        assert booking.start_time == "09:00"
        assert booking.start_minute == 540

    def test_overlap_rejected(self, seed_data):
        _book(seed_data, "10:00", "11:00")
        with pytest.raises(SlotConflict):
            _book(seed_data, "10:30", "11:30", user="owner")

    def test_contained_overlap_rejected(self, seed_data):
        _book(seed_data, "9:00", "12:00")
        with pytest.raises(SlotConflict):
            _book(seed_data, "10:00", "10:30", user="owner")

    def test_numeric_not_lexical_comparison(self, seed_data):
        """'9:30'-'10:30' overlaps '10:00'-'11:00' even though '9:30' > '10:00' as text."""
        _book(seed_data, "10:00", "11:00")
        with pytest.raises(SlotConflict):
            _book(seed_data, "9:30", "10:30", user="owner")

    def test_adjacent_slots_allowed(self, seed_data):
        _book(seed_data, "10:00", "11:00")
        later = _book(seed_data, "11:00", "12:00", user="owner")
        earlier = _book(seed_data, "9:00", "10:00", user="owner")
        assert later.status == "confirmed"
        assert earlier.status == "confirmed"

    def test_other_court_same_time_allowed(self, seed_data):
        _book(seed_data, "10:00", "11:00")
        other = _book(seed_data, "10:00", "11:00", court="court_2", user="owner")
        assert other.status == "confirmed"

    def test_other_day_same_time_allowed(self, seed_data):
        _book(seed_data, "10:00", "11:00")
        other = booking_service.create_booking(
            club_id=seed_data["club_id"],
            court_id=seed_data["court_1"].id,
            booking_date="2026-11-03",
            start_time="10:00",
            end_time="11:00",
            user_id=seed_data["owner"].id,
        )
        assert other.status == "confirmed"

    def test_cancelled_booking_frees_slot(self, seed_data):
        first = _book(seed_data, "10:00", "11:00")
        first.status = "cancelled"
        db.session.commit()

        second = _book(seed_data, "10:00", "11:00", user="owner")
        assert second.status == "confirmed"

    def test_conflict_leaves_no_row(self, seed_data):
        _book(seed_data, "10:00", "11:00")
        with pytest.raises(SlotConflict):
            _book(seed_data, "10:00", "11:00", user="owner")
        assert Booking.query.count() == 1

    def test_end_before_start_rejected(self, seed_data):
        with pytest.raises(ValidationError):
            _book(seed_data, "11:00", "10:00")

    def test_zero_length_rejected(self, seed_data):
        with pytest.raises(ValidationError):
            _book(seed_data, "11:00", "11:00")

    def test_negative_cost_rejected(self, seed_data):
        with pytest.raises(ValidationError):
            _book(seed_data, "10:00", "11:00", cost_cents=-100)

    def test_inactive_court_rejected(self, seed_data):
        with pytest.raises(ValidationError):
            _book(seed_data, "10:00", "11:00", court="closed_court")

    def test_unknown_court(self, seed_data):
        with pytest.raises(NotFoundError):
            booking_service.create_booking(
                club_id=seed_data["club_id"],
                court_id="no-such-court",
                booking_date=DAY,
                start_time="10:00",
                end_time="11:00",
                user_id=seed_data["member"].id,
            )

    def test_audit_event_written(self, seed_data):
        booking = _book(seed_data, "10:00", "11:00")
        audit = AuditEvent.query.filter_by(action="booking.created").first()
        assert audit is not None
        assert audit.metadata_["booking_id"] == booking.id


class TestBookingRoutes:
    """Tests for /api/clubs/<club_id>/bookings."""

    def _url(self, seed_data):
        return f"/api/clubs/{seed_data['club_id']}/bookings"

    def _payload(self, seed_data, **overrides):
        payload = {
            "court_id": seed_data["court_1"].id,
            "date": DAY,
            "start_time": "10:00",
            "end_time": "11:00",
            "cost_cents": 2500,
        }
        payload.update(overrides)
        return payload

    def test_create_booking(self, client, seed_data, auth_headers):
        resp = client.post(
            self._url(seed_data),
            json=self._payload(seed_data),
            headers=auth_headers(seed_data["member"]),
        )
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["success"] is True
        assert data["booking"]["status"] == "confirmed"
        assert data["booking"]["user_id"] == seed_data["member"].id

    def test_conflict_returns_409(self, client, seed_data, auth_headers):
        headers = auth_headers(seed_data["member"])
        client.post(self._url(seed_data), json=self._payload(seed_data), headers=headers)

        resp = client.post(
            self._url(seed_data),
            json=self._payload(seed_data, start_time="10:30", end_time="11:30"),
            headers=auth_headers(seed_data["owner"]),
        )
        assert resp.status_code == 409
        assert "already booked" in resp.get_json()["error"]

    def test_missing_fields_returns_400(self, client, seed_data, auth_headers):
        resp = client.post(
            self._url(seed_data),
            json={"court_id": seed_data["court_1"].id},
            headers=auth_headers(seed_data["member"]),
        )
        assert resp.status_code == 400
        assert "date" in resp.get_json()["error"]

    def test_bad_time_returns_400(self, client, seed_data, auth_headers):
        resp = client.post(
            self._url(seed_data),
            json=self._payload(seed_data, start_time="ten"),
            headers=auth_headers(seed_data["member"]),
        )
        assert resp.status_code == 400

    def test_float_cost_returns_400(self, client, seed_data, auth_headers):
        resp = client.post(
            self._url(seed_data),
            json=self._payload(seed_data, cost_cents=25.5),
            headers=auth_headers(seed_data["member"]),
        )
        assert resp.status_code == 400

    def test_requires_token(self, client, seed_data):
        resp = client.post(self._url(seed_data), json=self._payload(seed_data))
        assert resp.status_code == 401

    def test_outsider_forbidden(self, client, seed_data, auth_headers):
        resp = client.post(
            self._url(seed_data),
            json=self._payload(seed_data),
            headers=auth_headers(seed_data["outsider"]),
        )
        assert resp.status_code == 403

    def test_unknown_club_404(self, client, seed_data, auth_headers):
        resp = client.post(
            "/api/clubs/no-such-club/bookings",
            json=self._payload(seed_data),
            headers=auth_headers(seed_data["member"]),
        )
        assert resp.status_code == 404

    def test_admin_books_for_member(self, client, seed_data, auth_headers):
        resp = client.post(
            self._url(seed_data),
            json=self._payload(seed_data, user_id=seed_data["member"].id),
            headers=auth_headers(seed_data["owner"]),
        )
        assert resp.status_code == 201
        assert resp.get_json()["booking"]["user_id"] == seed_data["member"].id

    def test_member_cannot_book_for_someone_else(self, client, seed_data, auth_headers):
        resp = client.post(
            self._url(seed_data),
            json=self._payload(seed_data, user_id=seed_data["owner"].id),
            headers=auth_headers(seed_data["member"]),
        )
        assert resp.status_code == 403

    def test_list_day_schedule(self, client, seed_data, auth_headers):
        _book(seed_data, "11:00", "12:00")
        _book(seed_data, "9:00", "10:00", user="owner")
        _book(seed_data, "9:00", "10:00", court="court_2")

        resp = client.get(
            f"{self._url(seed_data)}?date={DAY}&court_id={seed_data['court_1'].id}",
            headers=auth_headers(seed_data["member"]),
        )
        assert resp.status_code == 200
        bookings = resp.get_json()["bookings"]
        assert [b["start_time"] for b in bookings] == ["09:00", "11:00"]

    def test_list_requires_date(self, client, seed_data, auth_headers):
        resp = client.get(self._url(seed_data), headers=auth_headers(seed_data["member"]))
        assert resp.status_code == 400

    def test_get_other_members_booking_forbidden(self, client, seed_data, auth_headers, app):
        booking = _book(seed_data, "10:00", "11:00", user="owner")
        resp = client.get(
            f"{self._url(seed_data)}/{booking.id}",
            headers=auth_headers(seed_data["member"]),
        )
        assert resp.status_code == 403
