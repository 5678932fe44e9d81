import threading
from datetime import date, datetime
from decimal import Decimal

import pytest

from services import click_protocol as cp
from services import click_signature
from services.booking_lifecycle import BookingLifecycle
from services.errors import GatewayConfigError
from tests.fakes import FakeBookingRepository, FakeLedger, make_place

SECRET = "click-secret"
NOW = datetime(2025, 6, 1, 12, 0)


@pytest.fixture
def repo():
    repo = FakeBookingRepository()
    repo.add_place(make_place(1, owner_user_id=10))
    return repo


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def lifecycle(repo, ledger):
    return BookingLifecycle(repo, ledger, local_now=lambda: NOW)


@pytest.fixture
def handler(repo, ledger, lifecycle):
    return cp.ClickProtocolHandler(repo, ledger, lifecycle, secret_key=SECRET, service_id="12345",
                                   clock=lambda: NOW)


@pytest.fixture
def booking(repo):
    return repo.seed_booking(
        user_id=20, place_id=1, status="selected", unique_request_id="REQ-MDEKEZCM-PL1R2",
        check_in_date=date(2025, 7, 1), final_total=Decimal("150000.00"),
        time_slots=[{"date": "2025-07-01", "startTime": "09:00", "endTime": "11:00"}],
    )


def signed(**fields):
    params = {
        "click_trans_id": "9001",
        "service_id": "12345",
        "merchant_trans_id": "REQ-MDEKEZCM-PL1R2",
        "amount": "150000",
        "action": "0",
        "sign_time": "2025-06-01 12:00:00",
    }
    params.update(fields)
    params["sign_string"] = click_signature.sign(params, SECRET)
    return params


def complete_params(prepare_id, error="0", **fields):
    return signed(action="1", merchant_prepare_id=prepare_id, error=error, **fields)


def _prepare(handler, **fields):
    body = handler.prepare(signed(**fields))
    assert body["error"] == cp.SUCCESS, body
    return body["merchant_prepare_id"]


# ---------- prepare ----------
def test_prepare_creates_pending_transaction(handler, ledger, booking):
    body = handler.prepare(signed())

    assert body["error"] == 0
    assert body["click_trans_id"] == "9001"
    assert body["merchant_trans_id"] == "REQ-MDEKEZCM-PL1R2"
    [tx] = ledger.transactions
    assert tx.state == "PENDING" and body["merchant_prepare_id"] == tx.prepare_id
    assert tx.amount == Decimal("150000.00")
    assert booking.payment_response["kind"] == "PREPARE"


def test_replayed_prepare_returns_same_prepare_id_without_new_row(handler, ledger, booking):
    params = signed()
    first = handler.prepare(dict(params))
    second = handler.prepare(dict(params))

    assert first == second
    assert len(ledger.transactions) == 1


def test_prepare_missing_fields_is_bad_request(handler, booking):
    params = signed()
    del params["sign_time"]
    del params["amount"]
    body = handler.prepare(params)
    assert body["error"] == cp.BAD_REQUEST
    assert "amount" in body["error_note"] and "sign_time" in body["error_note"]


def test_prepare_unknown_booking(handler, booking):
    body = handler.prepare(signed(merchant_trans_id="REQ-NOPE"))
    assert body["error"] == cp.TRANSACTION_NOT_FOUND


def test_prepare_with_missing_user(handler, repo, booking):
    repo.users.pop(booking.user_id)
    assert handler.prepare(signed())["error"] == cp.USER_NOT_FOUND


def test_prepare_bad_signature(handler, ledger, booking):
    params = signed()
    params["amount"] = "1"
    body = handler.prepare(params)
    assert body["error"] == cp.SIGN_FAILED
    assert ledger.transactions == []


def test_prepare_amount_mismatch_reports_both_values(handler, booking):
    body = handler.prepare(signed(amount="149999.99"))
    assert body["error"] == cp.INVALID_AMOUNT
    assert "150000.00" in body["error_note"] and "149999.99" in body["error_note"]


def test_prepare_wrong_action(handler, booking):
    assert handler.prepare(signed(action="1"))["error"] == cp.ACTION_NOT_FOUND


def test_prepare_requires_selected_booking(handler, booking):
    booking.status = "pending"
    assert handler.prepare(signed())["error"] == cp.BAD_REQUEST


def test_prepare_on_rejected_booking_is_canceled(handler, booking):
    booking.status = "rejected"
    assert handler.prepare(signed())["error"] == cp.TRANSACTION_CANCELED


def test_missing_secret_is_an_infrastructure_error(repo, ledger, lifecycle, booking):
    handler = cp.ClickProtocolHandler(repo, ledger, lifecycle, secret_key=None)
    with pytest.raises(GatewayConfigError):
        handler.prepare(signed())


# ---------- complete ----------
def test_complete_approves_booking(handler, ledger, booking):
    prepare_id = _prepare(handler)
    body = handler.complete(complete_params(prepare_id))

    assert body["error"] == cp.SUCCESS
    [tx] = ledger.transactions
    assert body["merchant_confirm_id"] == tx.id
    assert tx.state == "PAID" and tx.perform_date == NOW
    assert booking.status == "approved"
    assert booking.payment_status == "paid" and booking.paid_at == NOW


def test_negative_gateway_error_never_approves(handler, ledger, booking):
    prepare_id = _prepare(handler)
    body = handler.complete(complete_params(prepare_id, error="-5017"))

    assert body["error"] == cp.TRANSACTION_NOT_FOUND
    assert ledger.transactions[0].state == "CANCELED"
    assert booking.status == "selected"
    assert booking.payment_status == "unpaid"
    assert ledger.events_for(booking.id, "COMPLETE")[0].error_code == -5017


def test_complete_for_paid_transaction_is_already_paid_and_changes_nothing(handler, booking):
    prepare_id = _prepare(handler)
    assert handler.complete(complete_params(prepare_id))["error"] == cp.SUCCESS
    final_total, approved_at = booking.final_total, booking.approved_at

    body = handler.complete(complete_params(prepare_id, sign_time="2025-06-01 12:05:00"))
    assert body["error"] == cp.ALREADY_PAID
    assert booking.final_total == final_total
    assert booking.approved_at == approved_at


def test_complete_with_unknown_prepare_id(handler, booking):
    _prepare(handler)
    assert handler.complete(complete_params("123"))["error"] == cp.TRANSACTION_NOT_FOUND


def test_complete_with_mismatched_click_trans_id(handler, booking):
    prepare_id = _prepare(handler)
    body = handler.complete(complete_params(prepare_id, click_trans_id="9002"))
    assert body["error"] == cp.TRANSACTION_NOT_FOUND


def test_complete_after_rejection_cancels(handler, ledger, booking):
    prepare_id = _prepare(handler)
    booking.status = "rejected"

    body = handler.complete(complete_params(prepare_id))
    assert body["error"] == cp.TRANSACTION_CANCELED
    assert ledger.transactions[0].state == "CANCELED"


def test_complete_on_agent_approved_booking_records_payment(handler, booking):
    prepare_id = _prepare(handler)
    booking.status = "approved"
    booking.approved_at = datetime(2025, 5, 30)

    assert handler.complete(complete_params(prepare_id))["error"] == cp.SUCCESS
    assert booking.approved_at == datetime(2025, 5, 30)
    assert booking.payment_status == "paid"


def test_complete_missing_error_field(handler, booking):
    prepare_id = _prepare(handler)
    params = complete_params(prepare_id)
    del params["error"]
    body = handler.complete(params)
    assert body["error"] == cp.BAD_REQUEST and "error" in body["error_note"]


def test_concurrent_completes_yield_one_paid(handler, ledger, booking):
    prepare_id = _prepare(handler)
    barrier = threading.Barrier(2)
    results = []

    def run():
        barrier.wait()
        results.append(handler.complete(complete_params(prepare_id))["error"])

    threads = [threading.Thread(target=run) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results) == [cp.ALREADY_PAID, cp.SUCCESS]
    assert [t.state for t in ledger.transactions] == ["PAID"]


def test_second_transaction_cannot_pay_an_already_paid_booking(handler, ledger, booking):
    first = _prepare(handler)
    second = _prepare(handler, click_trans_id="9002")
    assert handler.complete(complete_params(first))["error"] == cp.SUCCESS

    body = handler.complete(complete_params(second, click_trans_id="9002"))
    assert body["error"] == cp.ALREADY_PAID
    assert [t.state for t in ledger.transactions] == ["PAID", "PENDING"]


def test_amount_normalization():
    assert cp.normalize_amount("150000") == cp.normalize_amount("150000.00")
    assert cp.normalize_amount("abc") is None
    assert cp.normalize_amount("NaN") is None
