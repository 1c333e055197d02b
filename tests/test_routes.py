import json

import pytest

from courtside.models.booking import Booking
from courtside.models.enums import BookingStatus
from courtside.models.webhook_event import WebhookEvent
from tests.factories import (
    OTHER_USER_ID, OWNER_ID, auth_header, future_day, make_court, payment_payload, sign,
)


@pytest.fixture
def court(db):
    return make_court(db)


@pytest.fixture
def day():
    return future_day()


def _book(client, court, day, start="10:00", duration=1, user_headers=None, **extra):
    body = {
        "court_id": court.id,
        "date": day.isoformat(),
        "start_time": start,
        "duration_hours": duration,
        **extra,
    }
    return client.post("/bookings", json=body, headers=user_headers or auth_header())


def _deliver(client, payload, signature=None, event_id=None):
    raw = json.dumps(payload).encode()
    headers = {"Content-Type": "application/json"}
    if signature is not False:
        headers["X-Razorpay-Signature"] = signature or sign(raw)
    if event_id:
        headers["X-Razorpay-Event-Id"] = event_id
    return client.post("/payments/webhook", content=raw, headers=headers)


def _captured_payload(order):
    return payment_payload("payment.captured", order["gateway_order_id"], "pay_1", order["total_amount"])


class TestAvailabilityRoute:
    def test_lists_slots(self, client, court, day):
        res = client.get(f"/courts/{court.id}/availability", params={"date": day.isoformat()})

        assert res.status_code == 200
        body = res.json()
        assert len(body["slots"]) == 16
        assert body["slots"][0] == {
            "start_time": "06:00", "end_time": "07:00", "available": True, "status": "available", "reason": None,
        }

    def test_unknown_court(self, client, day):
        res = client.get("/courts/999/availability", params={"date": day.isoformat()})
        assert res.status_code == 404
        assert res.json()["detail"]["error"] == "NotFound"


class TestBookingRoutes:
    def test_create_returns_order(self, client, gateway, court, day):
        res = _book(client, court, day)

        assert res.status_code == 201
        body = res.json()
        assert body["booking"]["status"] == "PENDING"
        assert body["booking"]["end_time"] == "11:00:00"
        assert body["order"]["gateway_order_id"] == gateway.orders[0]["id"]
        assert body["order"]["key_id"] == "rzp_test_key"
        assert body["order"]["total_amount"] == "517.64"

    def test_conflict_is_distinguishable(self, client, court, day):
        assert _book(client, court, day).status_code == 201

        res = _book(client, court, day, start="10:30", user_headers=auth_header(OTHER_USER_ID))
        assert res.status_code == 409
        assert res.json()["detail"]["error"] == "SlotUnavailable"

    def test_invalid_window(self, client, court, day):
        res = _book(client, court, day, duration=9)
        assert res.status_code == 422
        assert res.json()["detail"]["error"] == "InvalidWindow"

    def test_requires_token(self, client, court, day):
        res = client.post("/bookings", json={
            "court_id": court.id, "date": day.isoformat(), "start_time": "10:00", "duration_hours": 1,
        })
        assert res.status_code in (401, 403)

    def test_rejects_bad_token(self, client, court, day):
        res = _book(client, court, day, user_headers={"Authorization": "Bearer not-a-token"})
        assert res.status_code == 401

    def test_my_bookings_and_detail(self, client, court, day):
        booking_id = _book(client, court, day).json()["booking"]["id"]

        mine = client.get("/bookings/my", headers=auth_header())
        assert [b["id"] for b in mine.json()] == [booking_id]

        assert client.get("/bookings/my", headers=auth_header(OTHER_USER_ID)).json() == []
        assert client.get(f"/bookings/{booking_id}", headers=auth_header(OTHER_USER_ID)).status_code == 404
        assert client.get(f"/bookings/{booking_id}", headers=auth_header(OWNER_ID, "owner")).status_code == 200

    def test_cancel(self, client, court, day):
        booking_id = _book(client, court, day).json()["booking"]["id"]

        res = client.post(f"/bookings/{booking_id}/cancel", json={"reason": "rain"}, headers=auth_header())
        assert res.status_code == 200
        assert res.json()["booking"]["status"] == "CANCELLED"
        assert res.json()["refund_id"] is None

        again = client.post(f"/bookings/{booking_id}/cancel", headers=auth_header())
        assert again.status_code == 422

    def test_order_is_idempotent(self, client, gateway, court, day):
        created = _book(client, court, day).json()

        res = client.post(f"/bookings/{created['booking']['id']}/order", headers=auth_header())
        assert res.status_code == 200
        assert res.json()["gateway_order_id"] == created["order"]["gateway_order_id"]
        assert len(gateway.orders) == 1


class TestWebhookRoute:
    def test_wrong_secret_is_rejected_before_any_write(self, client, db, court, day):
        order = _book(client, court, day).json()["order"]
        raw = json.dumps(_captured_payload(order)).encode()

        res = _deliver(client, _captured_payload(order), signature=sign(raw, secret="wrong"))

        assert res.status_code == 401
        assert db.query(WebhookEvent).count() == 0
        db.expire_all()
        assert db.query(Booking).one().status == BookingStatus.PENDING

    def test_missing_signature(self, client, db, court, day):
        order = _book(client, court, day).json()["order"]
        res = _deliver(client, _captured_payload(order), signature=False)

        assert res.status_code == 400
        assert db.query(WebhookEvent).count() == 0

    def test_capture_confirms_and_redelivery_is_acknowledged(self, client, db, court, day):
        order = _book(client, court, day).json()["order"]

        first = _deliver(client, _captured_payload(order), event_id="evt_1")
        assert first.status_code == 200
        assert first.json()["outcome"] == "processed"
        assert first.json()["duplicate"] is False

        second = _deliver(client, _captured_payload(order), event_id="evt_1")
        assert second.status_code == 200
        assert second.json()["duplicate"] is True

        db.expire_all()
        assert db.query(Booking).one().status == BookingStatus.CONFIRMED
        assert db.query(WebhookEvent).count() == 1

    def test_unknown_event_is_acknowledged(self, client):
        res = _deliver(client, {"event": "order.paid", "payload": {}})
        assert res.status_code == 200
        assert res.json()["outcome"] == "ignored"

    def test_malformed_payload(self, client):
        res = _deliver(client, {"event": "payment.captured", "payload": {}})
        assert res.status_code == 400

    def test_verify_checkout_is_read_only(self, client, db, court, day):
        order = _book(client, court, day).json()["order"]
        body = f"{order['gateway_order_id']}|pay_1".encode()

        res = client.post("/payments/verify", headers=auth_header(), json={
            "razorpay_order_id": order["gateway_order_id"],
            "razorpay_payment_id": "pay_1",
            "razorpay_signature": sign(body, secret="test-key-secret"),
        })

        assert res.status_code == 200
        assert res.json()["verified"] is True
        assert res.json()["booking_status"] == "PENDING"

        bad = client.post("/payments/verify", headers=auth_header(), json={
            "razorpay_order_id": order["gateway_order_id"],
            "razorpay_payment_id": "pay_1",
            "razorpay_signature": "0" * 64,
        })
        assert bad.status_code == 400


class TestRefundRoutes:
    @pytest.fixture
    def payment_id(self, client, court, day):
        order = _book(client, court, day).json()["order"]
        _deliver(client, _captured_payload(order))
        return order["payment_id"]

    def test_owner_partial_refund_and_listing(self, client, payment_id):
        res = client.post(
            f"/payments/{payment_id}/refunds",
            json={"amount": "100.00", "reason": "lights out"},
            headers=auth_header(OWNER_ID, "owner"),
        )
        assert res.status_code == 201
        assert res.json()["status"] == "PENDING"

        listing = client.get(f"/payments/{payment_id}/refunds", headers=auth_header())
        assert listing.status_code == 200
        body = listing.json()
        assert body["pending_total"] == "100.00"
        assert body["remaining_balance"] == "417.64"
        assert len(body["refunds"]) == 1

    def test_refund_over_balance_conflicts(self, client, payment_id):
        res = client.post(
            f"/payments/{payment_id}/refunds",
            json={"amount": "600.00"},
            headers=auth_header(1000, "admin"),
        )
        assert res.status_code == 409
        assert res.json()["detail"]["error"] == "RefundExceedsBalance"

    def test_users_cannot_issue_refunds(self, client, payment_id):
        res = client.post(f"/payments/{payment_id}/refunds", json={}, headers=auth_header())
        assert res.status_code == 403

    def test_other_users_cannot_see_refunds(self, client, payment_id):
        res = client.get(f"/payments/{payment_id}/refunds", headers=auth_header(OTHER_USER_ID))
        assert res.status_code == 404


class TestBlockSlotRoutes:
    def test_block_conflicts_with_booking_and_shows_in_availability(self, client, court, day):
        assert _book(client, court, day).status_code == 201
        owner = auth_header(OWNER_ID, "owner")

        clash = client.post(f"/courts/{court.id}/block-slots", headers=owner, json={
            "date": day.isoformat(), "start_time": "10:00", "end_time": "12:00",
        })
        assert clash.status_code == 409

        blocked = client.post(f"/courts/{court.id}/block-slots", headers=owner, json={
            "date": day.isoformat(), "start_time": "14:00", "end_time": "16:00", "reason": "Coaching",
        })
        assert blocked.status_code == 201

        summary = client.get(f"/courts/{court.id}/availability", params={"date": day.isoformat()}).json()["summary"]
        assert summary["blocked"] == 2
        assert summary["booked"] == 1

        assert _book(client, court, day, start="15:00", user_headers=auth_header(OTHER_USER_ID)).status_code == 409

        slot_id = blocked.json()["id"]
        assert client.delete(f"/courts/{court.id}/block-slots/{slot_id}", headers=owner).status_code == 200
        assert _book(client, court, day, start="15:00", user_headers=auth_header(OTHER_USER_ID)).status_code == 201

    def test_only_the_facility_owner(self, client, court, day):
        res = client.post(f"/courts/{court.id}/block-slots", headers=auth_header(555, "owner"), json={
            "date": day.isoformat(), "start_time": "14:00", "end_time": "16:00",
        })
        assert res.status_code == 403

    def test_users_cannot_block(self, client, court, day):
        res = client.post(f"/courts/{court.id}/block-slots", headers=auth_header(), json={
            "date": day.isoformat(), "start_time": "14:00", "end_time": "16:00",
        })
        assert res.status_code == 403


class TestAdminRoutes:
    def test_review_queue_lists_flagged_payments(self, client, court, day):
        order = _book(client, court, day).json()["order"]
        _deliver(client, payment_payload("payment.captured", order["gateway_order_id"], "pay_1", "450.00"))

        res = client.get("/admin/payments/review", headers=auth_header(1000, "admin"))
        assert res.status_code == 200
        [flagged] = res.json()
        assert flagged["captured_amount"] == "450.00"
        assert "AmountMismatchError" in flagged["review_reason"]

    def test_admin_only(self, client):
        assert client.get("/admin/payments/review", headers=auth_header(OWNER_ID, "owner")).status_code == 403

    def test_manual_sweep(self, client):
        res = client.post("/admin/sweep", headers=auth_header(1000, "admin"))
        assert res.status_code == 200
        assert res.json() == {"expired": [], "completed": []}


class TestVenueRoutes:
    def test_popular_venues(self, client, db, court):
        make_court(db, facility=court.facility, name="Court 2")

        res = client.get("/venues/popular", params={"order": "by_court_count_then_bookings"})
        assert res.status_code == 200
        assert res.json()[0]["court_count"] == 2

    def test_unknown_policy(self, client):
        assert client.get("/venues/popular", params={"order": "by_vibes"}).status_code == 422
