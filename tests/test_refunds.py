from datetime import datetime, time, timedelta
from decimal import Decimal

import pytest

from courtside.core.auth_utils import Principal
from courtside.core.exceptions import ErrorKind
from courtside.models.enums import ActorRole, PaymentStatus, RefundStatus
from courtside.services.refunds import RefundService, refund_eligibility
from tests.factories import OWNER_ID, USER_ID, as_event, future_day, make_court, payment_payload

OWNER = Principal(OWNER_ID, ActorRole.OWNER)
ADMIN = Principal(1000, ActorRole.ADMIN)


@pytest.fixture
def refunds(db, gateway, settings):
    return RefundService(db, gateway, settings)


@pytest.fixture
def payment(db, service, reconciler):
    court = make_court(db)
    day = future_day()
    now = datetime.combine(day - timedelta(days=1), time(20, 0))
    created = service.create(USER_ID, court.id, day, time(10, 0), 1, now=now).value

    event, raw = as_event(payment_payload(
        "payment.captured", created.payment.gateway_order_id, "pay_1", created.payment.total_amount,
    ))
    reconciler.apply(event, raw)
    assert created.payment.status == PaymentStatus.CAPTURED
    return created.payment


class TestEligibility:
    @pytest.mark.parametrize("hours, percentage", [
        (48, 100),
        (24, 100),
        (23.5, 50),
        (12, 50),
        (11, 0),
        (-1, 0),
    ])
    def test_tiers(self, hours, percentage):
        now = datetime(2030, 5, 1, 8, 0)
        starts_at = now + timedelta(hours=hours)
        assert refund_eligibility(starts_at, now)["percentage"] == percentage


class TestOpenRefund:
    def test_defaults_to_remaining_balance(self, db, refunds, payment):
        refund = refunds.open_refund(payment, reason="goodwill").value
        db.commit()

        assert refund.amount == Decimal("517.64")
        assert refund.status == RefundStatus.PENDING
        assert payment.refundable_balance == Decimal("0")

    def test_partial_refunds_cannot_exceed_captured_total(self, db, refunds, payment):
        assert refunds.open_refund(payment, Decimal("300")).ok
        assert refunds.open_refund(payment, Decimal("200")).ok

        over = refunds.open_refund(payment, Decimal("17.65"))
        assert over.failure.kind == ErrorKind.REFUND_EXCEEDS_BALANCE
        assert over.failure.details["remaining"] == "17.64"

        assert refunds.open_refund(payment, Decimal("17.64")).ok

    def test_rejects_non_positive_amount(self, refunds, payment):
        assert refunds.open_refund(payment, Decimal("0")).failure.kind == ErrorKind.INVALID_AMOUNT

    def test_only_captured_payments(self, db, service, refunds):
        court = make_court(db)
        day = future_day()
        created = service.create(USER_ID, court.id, day, time(10, 0), 1, now=datetime.combine(day, time(0, 0))).value

        result = refunds.open_refund(created.payment)
        assert result.failure.kind == ErrorKind.INVALID_TRANSITION


class TestRequestRefund:
    def test_owner_refund_is_submitted(self, refunds, gateway, payment):
        refund = refunds.request_refund(payment.id, OWNER, Decimal("100"), "late start").value

        assert refund.gateway_refund_id == gateway.refunds[0]["id"]
        assert gateway.refunds[0]["amount"] == Decimal("100.00")
        assert gateway.refunds[0]["payment_id"] == "pay_1"

    def test_other_owner_is_forbidden(self, refunds, payment):
        stranger = Principal(999, ActorRole.OWNER)
        assert refunds.request_refund(payment.id, stranger).failure.kind == ErrorKind.FORBIDDEN

    def test_unknown_payment(self, refunds):
        assert refunds.request_refund(404, ADMIN).failure.kind == ErrorKind.NOT_FOUND

    def test_gateway_failure_marks_refund_failed(self, refunds, gateway, payment):
        gateway.fail_refunds = True
        refund = refunds.request_refund(payment.id, ADMIN).value

        assert refund.status == RefundStatus.FAILED
        assert "gateway down" in refund.failure_reason
        assert payment.refundable_balance == Decimal("517.64")


class TestSettle:
    def test_completed_total_never_exceeds_capture(self, db, refunds, payment):
        first = refunds.open_refund(payment, Decimal("500")).value
        db.commit()
        assert refunds.settle(first, succeeded=True).ok

        # Dashboard refund that exactly fills the remainder
        stray = refunds.record_external(payment, "rfnd_x", 1764).value
        assert stray.status == RefundStatus.COMPLETED
        assert payment.refunded_total() == Decimal("517.64")

        assert refunds.record_external(payment, "rfnd_y", 1).failure.kind == ErrorKind.REFUND_EXCEEDS_BALANCE

    def test_settling_twice_changes_nothing(self, db, refunds, payment):
        refund = refunds.open_refund(payment, Decimal("50")).value
        refunds.settle(refund, succeeded=False, failure_reason="bank rejected")
        refunds.settle(refund, succeeded=True)

        assert refund.status == RefundStatus.FAILED
        assert refund.failure_reason == "bank rejected"


class TestListRefunds:
    def test_running_totals(self, db, refunds, payment):
        a = refunds.open_refund(payment, Decimal("100")).value
        b = refunds.open_refund(payment, Decimal("50")).value
        c = refunds.open_refund(payment, Decimal("25")).value
        refunds.settle(a, succeeded=True)
        refunds.settle(b, succeeded=False)
        refunds.settle(c, succeeded=True)
        db.commit()

        body = refunds.list_refunds(payment.id).value

        assert body["total_amount"] == Decimal("517.64")
        assert body["refunded_total"] == Decimal("125.00")
        assert body["pending_total"] == Decimal("0")
        assert body["remaining_balance"] == Decimal("392.64")
        assert [r["refunded_to_date"] for r in body["refunds"]] == [
            Decimal("100.00"), Decimal("100.00"), Decimal("125.00"),
        ]
        assert [r["status"] for r in body["refunds"]] == ["COMPLETED", "FAILED", "COMPLETED"]

    def test_unknown_payment(self, refunds):
        assert refunds.list_refunds(404).failure.kind == ErrorKind.NOT_FOUND
