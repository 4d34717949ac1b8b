from datetime import date, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from alerts.recorder import DeliveryRecorder
from alerts.rules import AlertRuleType
from models.alert import LOG_STATUS_FAILED, LOG_STATUS_PENDING, LOG_STATUS_SENT, AlertLog
from services.notification_service import NotificationResult

DUE = date(2026, 3, 17)


@pytest.fixture()
def ledger(db_session, make_tenant, make_subscription, make_channel, now):
    tenant = make_tenant("acme")
    subscription = make_subscription(tenant, now + timedelta(days=7))
    channel = make_channel(tenant)
    return DeliveryRecorder(db_session), tenant, subscription, channel


def _reserve(recorder, tenant, subscription, channel, now, rule_type=AlertRuleType.DAYS_7):
    return recorder.reserve(tenant.id, subscription.id, rule_type, DUE, channel.id, now=now)


def test_reserve_creates_pending_row(ledger, db_session, now):
    recorder, tenant, subscription, channel = ledger

    reservation = _reserve(recorder, tenant, subscription, channel, now)

    assert reservation.reserved is True
    log = db_session.get(AlertLog, reservation.log_id)
    assert log.status == LOG_STATUS_PENDING
    assert log.rule_type == "DAYS_7"
    assert log.due_date == DUE
    assert log.is_terminal is False


def test_finalize_marks_sent_and_blocks_further_reservations(ledger, db_session, now):
    recorder, tenant, subscription, channel = ledger
    reservation = _reserve(recorder, tenant, subscription, channel, now)

    assert recorder.finalize(
        reservation.log_id,
        NotificationResult(status="delivered", status_code=200, response_body="ok"),
        now=now,
    )

    log = db_session.get(AlertLog, reservation.log_id)
    assert log.status == LOG_STATUS_SENT
    assert log.response_code == 200
    assert log.sent_at is not None
    second = _reserve(recorder, tenant, subscription, channel, now)
    assert second.reserved is False
    assert second.existing_status == LOG_STATUS_SENT
    assert recorder.count_sent(tenant.id, subscription.id, AlertRuleType.DAYS_7, DUE) == 1


def test_pending_row_blocks_reservation(ledger, now):
    recorder, tenant, subscription, channel = ledger
    _reserve(recorder, tenant, subscription, channel, now)

    again = _reserve(recorder, tenant, subscription, channel, now)

    assert again.reserved is False
    assert again.existing_status == LOG_STATUS_PENDING


def test_failed_row_does_not_block_retry(ledger, db_session, now):
    recorder, tenant, subscription, channel = ledger
    first = _reserve(recorder, tenant, subscription, channel, now)
    recorder.finalize(first.log_id, NotificationResult(status="failed", status_code=500, error="HTTP 500"), now=now)

    retry = _reserve(recorder, tenant, subscription, channel, now + timedelta(hours=1))

    assert db_session.get(AlertLog, first.log_id).status == LOG_STATUS_FAILED
    assert db_session.get(AlertLog, first.log_id).error_message == "HTTP 500"
    assert retry.reserved is True
    assert recorder.count_sent(tenant.id, subscription.id, AlertRuleType.DAYS_7, DUE) == 0


def test_different_rule_or_channel_is_a_different_key(ledger, make_channel, now):
    recorder, tenant, subscription, channel = ledger
    _reserve(recorder, tenant, subscription, channel, now)
    other_channel = make_channel(tenant, name="Second")

    assert _reserve(recorder, tenant, subscription, channel, now, rule_type=AlertRuleType.DAYS_3).reserved
    assert _reserve(recorder, tenant, subscription, other_channel, now).reserved


def test_tenant_level_rows_use_null_subscription(ledger, now):
    recorder, tenant, _subscription, channel = ledger
    first = recorder.reserve(tenant.id, None, AlertRuleType.DATA_QUALITY, DUE, channel.id, now=now)
    second = recorder.reserve(tenant.id, None, AlertRuleType.DATA_QUALITY, DUE, channel.id, now=now)

    assert first.reserved is True
    assert second.reserved is False
    assert recorder.last_logged_at(tenant.id, AlertRuleType.DATA_QUALITY) == now


def test_finalize_twice_returns_false(ledger, now):
    recorder, tenant, subscription, channel = ledger
    reservation = _reserve(recorder, tenant, subscription, channel, now)
    delivered = NotificationResult(status="delivered", status_code=200)

    assert recorder.finalize(reservation.log_id, delivered, now=now) is True
    assert recorder.finalize(reservation.log_id, delivered, now=now) is False


def test_finalize_storage_error_is_swallowed(ledger, db_session, monkeypatch, now):
    recorder, tenant, subscription, channel = ledger
    reservation = _reserve(recorder, tenant, subscription, channel, now)

    def broken_commit():
        raise OperationalError("UPDATE alert_logs", {}, Exception("database is locked"))

    monkeypatch.setattr(db_session, "commit", broken_commit)

    assert recorder.finalize(reservation.log_id, NotificationResult(status="delivered"), now=now) is False


def test_reserve_storage_error_propagates(ledger, db_session, monkeypatch, now):
    recorder, tenant, subscription, channel = ledger

    def broken_commit():
        raise OperationalError("INSERT INTO alert_logs", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db_session, "commit", broken_commit)

    with pytest.raises(OperationalError):
        _reserve(recorder, tenant, subscription, channel, now)


def test_response_body_is_truncated(ledger, db_session, monkeypatch, now):
    import alerts.recorder as recorder_module

    monkeypatch.setattr(recorder_module, "RESPONSE_BODY_LIMIT", 10)
    recorder, tenant, subscription, channel = ledger
    reservation = _reserve(recorder, tenant, subscription, channel, now)

    recorder.finalize(reservation.log_id, NotificationResult(status="delivered", response_body="x" * 50), now=now)

    assert db_session.get(AlertLog, reservation.log_id).response_body == "x" * 10


def test_list_alert_logs_paginates_newest_first(ledger, now):
    recorder, tenant, subscription, channel = ledger
    for offset in range(5):
        recorder.reserve(
            tenant.id,
            subscription.id,
            AlertRuleType.DAYS_7,
            DUE + timedelta(days=offset),
            channel.id,
            now=now + timedelta(minutes=offset),
        )

    page = recorder.list_alert_logs(tenant.id, page=2, limit=2)

    assert page["meta"] == {"total": 5, "page": 2, "limit": 2, "pageCount": 3}
    assert [row.due_date for row in page["data"]] == [DUE + timedelta(days=2), DUE + timedelta(days=1)]
