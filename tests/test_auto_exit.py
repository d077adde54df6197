from __future__ import annotations

import datetime

import pytest
from sqlalchemy.exc import OperationalError

from kiosk_api.auto_exit import close_todays_open_visits, sweep_open_visits, system_exit_time_for
from kiosk_api.errors import AutoExitUpdateFailure
from kiosk_api.models import Visit
from kiosk_api.tz_clock import as_utc
from tests.helpers.fakes import FakeAuditSink

UTC = datetime.timezone.utc
WARSAW = "Europe/Warsaw"


def utc(*args):
    return datetime.datetime(*args, tzinfo=UTC)


def _visit(db, visit_id):
    db.expire_all()
    return db.get(Visit, visit_id)


# ---- system_exit_time_for ----

def test_morning_entry_closes_at_cutoff_same_day():
    assert system_exit_time_for(utc(2026, 10, 12, 9, 0), 14) == utc(2026, 10, 12, 14, 0)


def test_entry_after_cutoff_closes_at_end_of_day():
    assert system_exit_time_for(utc(2026, 10, 12, 15, 0), 14) == utc(2026, 10, 12, 23, 59, 59)


def test_entry_exactly_at_cutoff_still_closes_after_entry():
    entry = utc(2026, 10, 12, 14, 0)
    assert system_exit_time_for(entry, 14) > entry


def test_entry_in_last_second_of_day_still_closes_after_entry():
    entry = utc(2026, 10, 12, 23, 59, 59, 500000)
    exit_time = system_exit_time_for(entry, 14)
    assert exit_time > entry
    assert exit_time.date() == entry.date()


def test_naive_entry_is_read_as_utc():
    assert system_exit_time_for(datetime.datetime(2026, 10, 12, 9, 30), 14) == utc(2026, 10, 12, 14, 0)


# ---- sweep_open_visits ----

def test_sweep_closes_each_open_visit_on_its_entry_day(db, add_visit):
    early = add_visit(utc(2026, 10, 12, 9, 0))
    late = add_visit(utc(2026, 10, 12, 15, 0))
    older = add_visit(utc(2026, 10, 9, 7, 45))

    result = sweep_open_visits(db, 14, now=utc(2026, 10, 13, 1, 0))

    assert result.count == 3
    assert sorted(result.visit_ids) == sorted([early, late, older])
    assert as_utc(_visit(db, early).exit_time) == utc(2026, 10, 12, 14, 0)
    assert as_utc(_visit(db, late).exit_time) == utc(2026, 10, 12, 23, 59, 59)
    assert as_utc(_visit(db, older).exit_time) == utc(2026, 10, 9, 14, 0)
    for visit_id in (early, late, older):
        visit = _visit(db, visit_id)
        assert visit.is_system_exit is True
        assert as_utc(visit.exit_time) > as_utc(visit.entry_time)


def test_sweep_leaves_closed_visits_and_other_fields_alone(db, add_visit, staff):
    checked_out_at = utc(2026, 10, 12, 11, 0)
    closed = add_visit(utc(2026, 10, 12, 9, 0), exit_time=checked_out_at)
    open_id = add_visit(utc(2026, 10, 12, 10, 0), visitor_name="Marek", notes="delivery", signature="sig-data")

    sweep_open_visits(db, 14)

    untouched = _visit(db, closed)
    assert as_utc(untouched.exit_time) == checked_out_at
    assert untouched.is_system_exit is False
    swept = _visit(db, open_id)
    assert swept.visitor_name == "Marek"
    assert swept.notes == "delivery"
    assert swept.signature == "sig-data"
    assert swept.employee_id == staff["user"].id
    assert swept.exit_employee_id is None


def test_sweep_is_idempotent(db, add_visit):
    add_visit(utc(2026, 10, 12, 9, 0))
    add_visit(utc(2026, 10, 12, 10, 0))

    first = sweep_open_visits(db, 14)
    second = sweep_open_visits(db, 14)

    assert first.count == 2
    assert second.count == 0
    assert second.visit_ids == []


def test_sweep_with_no_open_visits_is_success(db):
    result = sweep_open_visits(db, 14, now=utc(2026, 10, 13, 1, 0))
    assert result.count == 0
    assert result.timestamp == utc(2026, 10, 13, 1, 0)


def test_sweep_audits_closures(db, add_visit):
    sink = FakeAuditSink()
    visit_id = add_visit(utc(2026, 10, 12, 9, 0))
    sweep_open_visits(db, 14, audit_sink=sink)
    sweep_open_visits(db, 14, audit_sink=sink)
    assert len(sink.events) == 1
    event = sink.events[0]
    assert event.event_type == "visit.auto_exit"
    assert event.source == "server"
    assert event.context["visit_ids"] == [visit_id]


def test_sweep_store_failure_raises_and_rolls_back(db, add_visit, monkeypatch):
    add_visit(utc(2026, 10, 12, 9, 0))

    def broken_execute(*_a, **_k):
        raise OperationalError("UPDATE visits", {}, Exception("database is locked"))

    monkeypatch.setattr(db, "execute", broken_execute)
    with pytest.raises(AutoExitUpdateFailure):
        sweep_open_visits(db, 14)
    monkeypatch.undo()
    assert db.query(Visit).filter(Visit.exit_time.is_(None)).count() == 1


# ---- close_todays_open_visits ----

def test_trigger_before_cutoff_changes_nothing(db, add_visit):
    visit_id = add_visit(utc(2026, 10, 12, 7, 0))
    # 14:59 in Warsaw (CEST, UTC+2)
    closed = close_todays_open_visits(db, WARSAW, 15, now=utc(2026, 10, 12, 12, 59))
    assert closed == 0
    assert _visit(db, visit_id).exit_time is None


def test_trigger_after_cutoff_closes_only_todays_open_visits(db, add_visit):
    today_open = add_visit(utc(2026, 10, 12, 7, 0))
    today_early = add_visit(utc(2026, 10, 11, 22, 30))            # 00:30 local on the 12th
    yesterday_open = add_visit(utc(2026, 10, 11, 21, 30))         # 23:30 local on the 11th
    today_closed = add_visit(utc(2026, 10, 12, 8, 0), exit_time=utc(2026, 10, 12, 9, 0))

    closed = close_todays_open_visits(db, WARSAW, 15, now=utc(2026, 10, 12, 13, 0))

    assert closed == 2
    cutoff = utc(2026, 10, 12, 13, 0)                             # 15:00 local
    for visit_id in (today_open, today_early):
        visit = _visit(db, visit_id)
        assert as_utc(visit.exit_time) == cutoff
        assert visit.is_system_exit is True
    assert _visit(db, yesterday_open).exit_time is None
    untouched = _visit(db, today_closed)
    assert as_utc(untouched.exit_time) == utc(2026, 10, 12, 9, 0)
    assert untouched.is_system_exit is False


def test_trigger_is_idempotent(db, add_visit):
    add_visit(utc(2026, 10, 12, 7, 0))
    now = utc(2026, 10, 12, 14, 0)
    assert close_todays_open_visits(db, WARSAW, 15, now=now) == 1
    assert close_todays_open_visits(db, WARSAW, 15, now=now) == 0


def test_trigger_on_fall_back_day_uses_winter_offset(db, add_visit):
    # 2026-10-25: Warsaw falls back to CET (UTC+1); the local day starts 22:00 UTC on the 24th.
    first_minute = add_visit(utc(2026, 10, 24, 22, 5))
    previous_day = add_visit(utc(2026, 10, 24, 21, 55))

    closed = close_todays_open_visits(db, WARSAW, 15, now=utc(2026, 10, 25, 14, 30))

    assert closed == 1
    assert as_utc(_visit(db, first_minute).exit_time) == utc(2026, 10, 25, 14, 0)
    assert _visit(db, previous_day).exit_time is None


def test_trigger_on_spring_forward_day(db, add_visit):
    # 2026-03-29: Warsaw moves to CEST (UTC+2); the local day ends 22:00 UTC.
    late_evening = add_visit(utc(2026, 3, 29, 21, 30))
    next_day = add_visit(utc(2026, 3, 29, 22, 30))

    closed = close_todays_open_visits(db, WARSAW, 15, now=utc(2026, 3, 29, 21, 45))

    assert closed == 1
    assert as_utc(_visit(db, late_evening).exit_time) == utc(2026, 3, 29, 13, 0)
    assert _visit(db, next_day).exit_time is None


def test_trigger_audits_only_when_something_closed(db, add_visit):
    sink = FakeAuditSink()
    now = utc(2026, 10, 12, 14, 0)
    close_todays_open_visits(db, WARSAW, 15, now=now, audit_sink=sink)
    assert sink.events == []
    add_visit(utc(2026, 10, 12, 7, 0))
    close_todays_open_visits(db, WARSAW, 15, now=now, audit_sink=sink)
    assert [e.event_type for e in sink.events] == ["visit.auto_exit"]
    assert sink.events[0].source == "client"


def _before_first_update(db, monkeypatch, action):
    real_execute = db.execute
    fired = []

    def execute(statement, *args, **kwargs):
        if getattr(statement, "is_dml", False) and not fired:
            fired.append(True)
            action()
        return real_execute(statement, *args, **kwargs)

    monkeypatch.setattr(db, "execute", execute)


def test_sweep_does_not_claim_visit_checked_out_mid_run(db, add_visit, session_factory, monkeypatch):
    raced = add_visit(utc(2026, 10, 12, 9, 0))
    other = add_visit(utc(2026, 10, 12, 10, 0))
    checked_out_at = utc(2026, 10, 12, 11, 30)

    def human_checkout():
        s = session_factory()
        try:
            s.get(Visit, raced).exit_time = checked_out_at
            s.commit()
        finally:
            s.close()

    _before_first_update(db, monkeypatch, human_checkout)
    sink = FakeAuditSink()
    result = sweep_open_visits(db, 14, audit_sink=sink)

    assert result.count == 1
    assert result.visit_ids == [other]
    assert sink.events[0].context["visit_ids"] == [other]
    monkeypatch.undo()
    visit = _visit(db, raced)
    assert as_utc(visit.exit_time) == checked_out_at
    assert visit.is_system_exit is False


def test_overlapping_sweeps_close_each_visit_once(db, add_visit, session_factory, monkeypatch):
    add_visit(utc(2026, 10, 12, 9, 0))
    add_visit(utc(2026, 10, 12, 10, 0))
    results = []

    def concurrent_sweep():
        s = session_factory()
        try:
            results.append(sweep_open_visits(s, 14))
        finally:
            s.close()

    _before_first_update(db, monkeypatch, concurrent_sweep)
    late = sweep_open_visits(db, 14)

    assert results[0].count == 2
    assert late.count == 0
    assert late.visit_ids == []
