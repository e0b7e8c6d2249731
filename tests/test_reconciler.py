"""Tests for the reconciliation engine."""

from __future__ import annotations

import itertools
from datetime import datetime

import pytest
import pytz

from calsync.ics_parser import parse_ics
from calsync.models import CalendarEventRecord, EventTime
from calsync.reconciler import ReconciliationEngine
from calsync.sync_executor import SyncExecutor
from calsync.timezone_utils import OUT_OF_RANGE
from conftest import make_record, make_remote

pytestmark = pytest.mark.unit


@pytest.fixture
def engine(resolver) -> ReconciliationEngine:
    return ReconciliationEngine(resolver)


def test_single_new_event_is_created(engine):
    text = (
        "BEGIN:VCALENDAR\nBEGIN:VEVENT\nUID:e1@x\nDTSTART:20241201T090000Z\n"
        "DTEND:20241201T100000Z\nSUMMARY:Test\nEND:VEVENT\nEND:VCALENDAR\n"
    )
    plan = engine.reconcile(parse_ics(text), [])

    assert len(plan.creates) == 1
    assert plan.creates[0].summary == "Test"
    assert plan.creates[0].start.value == pytz.UTC.localize(datetime(2024, 12, 1, 9, 0))
    assert plan.updates == []
    assert plan.deletes == []
    assert plan.skips == []
    assert plan.unchanged == []


def test_identical_pair_is_unchanged(engine):
    source = make_record("a@x", start=(2024, 5, 1, 10), end=(2024, 5, 1, 11), location="Hall")
    remote = make_remote("a@x", start=(2024, 5, 1, 10), end=(2024, 5, 1, 11), location="Hall")

    plan = engine.reconcile([source], [remote])

    assert plan.unchanged == [(source, remote)]
    assert plan.is_empty


def test_uid_match_is_case_insensitive(engine):
    plan = engine.reconcile(
        [make_record("Event-1@X", start=(2024, 5, 1, 10))],
        [make_remote("event-1@x", start=(2024, 5, 1, 10))],
    )
    assert len(plan.unchanged) == 1


def test_uid_match_wins_over_summary_and_time(engine):
    source = make_record("a@x", "Standup", start=(2024, 5, 1, 10))
    by_uid = make_remote("a@x", "Something else", start=(2025, 1, 1, 18))
    by_summary = make_remote("b@x", "Standup", start=(2024, 5, 1, 10))

    plan = engine.reconcile([source], [by_summary, by_uid])

    assert [u.remote for u in plan.updates] == [by_uid]
    assert plan.deletes == [by_summary]
    assert plan.creates == []


def test_uid_match_of_later_source_is_not_stolen_by_fallback(engine):
    first = make_record("s1@x", "Lecture", start=(2024, 5, 1, 10))
    second = make_record("s2@x", "Seminar", start=(2024, 5, 1, 12))
    remote = make_remote("s2@x", "Lecture", start=(2024, 5, 1, 10))

    plan = engine.reconcile([first, second], [remote])

    assert plan.creates == [first]
    assert len(plan.updates) == 1
    assert plan.updates[0].source is second
    assert plan.updates[0].remote is remote


def test_summary_and_time_fallback_within_tolerance(engine):
    source = make_record("new@x", "Standup", start=(2024, 5, 1, 10, 0))
    remote = make_remote("old@x", "  standup ", start=(2024, 5, 1, 10, 20))

    plan = engine.reconcile([source], [remote])

    assert plan.creates == []
    assert len(plan.updates) == 1
    assert plan.updates[0].changed_fields == ("start",)


def test_summary_fallback_outside_tolerance_creates_and_deletes(engine):
    source = make_record("new@x", "Standup", start=(2024, 5, 1, 10, 0))
    remote = make_remote("old@x", "Standup", start=(2024, 5, 1, 10, 40))

    plan = engine.reconcile([source], [remote])

    assert plan.creates == [source]
    assert plan.deletes == [remote]


def test_match_tolerance_is_configurable(engine):
    source = make_record("new@x", "Standup", start=(2024, 5, 1, 10, 0))
    remote = make_remote("old@x", "Standup", start=(2024, 5, 1, 10, 40))

    plan = engine.reconcile([source], [remote], match_tolerance_minutes=60)

    assert plan.creates == []
    assert len(plan.updates) == 1


def test_source_without_start_is_only_matched_by_uid(engine):
    source = make_record("x@x", "Standup")
    remote = make_remote("y@x", "Standup", start=(2024, 5, 1, 10))

    plan = engine.reconcile([source], [remote])

    assert plan.creates == [source]
    assert plan.deletes == [remote]


def test_each_remote_event_is_matched_once(engine):
    sources = [
        make_record("a@x", "Standup", start=(2024, 5, 1, 10)),
        make_record("b@x", "Standup", start=(2024, 5, 1, 10)),
    ]
    remote = make_remote("r@x", "Standup", start=(2024, 5, 1, 10))

    plan = engine.reconcile(sources, [remote])

    assert len(plan.unchanged) == 1
    assert plan.creates == [sources[1]]


def test_small_time_drift_is_not_an_update(engine):
    source = make_record("a@x", start=(2024, 5, 1, 10, 0), end=(2024, 5, 1, 11, 0))
    remote = make_remote("a@x", start=(2024, 5, 1, 10, 4), end=(2024, 5, 1, 10, 56))

    assert engine.reconcile([source], [remote]).is_empty


@pytest.mark.parametrize("remote_kwargs, expected", [
    ({"summary": "Other"}, ("summary",)),
    ({"start": (2024, 5, 1, 10, 30)}, ("start",)),
    ({"end": None}, ("end",)),
    ({"location": "Room 2"}, ("location",)),
    ({"description": "New text"}, ("description",)),
])
def test_changed_fields(engine, remote_kwargs, expected):
    base = {"summary": "Meeting", "start": (2024, 5, 1, 10), "end": (2024, 5, 1, 11), "location": "Room 1"}
    source = make_record("a@x", **base)
    remote = make_remote("a@x", **{**base, **remote_kwargs})

    assert engine.changed_fields(source, remote, 5) == expected


def test_text_comparison_normalizes_whitespace_and_line_endings(engine):
    source = make_record("a@x", description="line one\nline two")
    remote = make_remote("a@x", description="line one\r\nline two  ")
    assert engine.changed_fields(source, remote, 5) == ()


def test_times_compared_as_instants(engine, resolver):
    source = CalendarEventRecord(
        uid="a@x",
        summary="Meeting",
        start=EventTime.civil(datetime(2024, 7, 1, 10, 0), "Europe/Berlin"),
    )
    remote = make_remote("a@x", start=(2024, 7, 1, 8, 0))

    assert engine.reconcile([source], [remote]).is_empty


def test_update_payload_keeps_remote_identity(engine):
    source = make_record("a@x", "New title", start=(2024, 5, 1, 10))
    remote = make_remote("a@x", "Old title", start=(2024, 5, 1, 10), remote_id="href-1",
                         remote_version_token="etag-7")

    (update,) = engine.reconcile([source], [remote]).updates

    assert update.payload.remote_id == "href-1"
    assert update.payload.remote_version_token == "etag-7"
    assert update.payload.is_managed is True
    assert update.payload.summary == "New title"


# ---------------------------------------------------------------------------
# Unmanaged remote events
# ---------------------------------------------------------------------------


def test_unmatched_unmanaged_event_is_skipped(engine):
    foreign = make_remote("foreign@x", start=(2024, 5, 1, 10), is_managed=False)

    plan = engine.reconcile([], [foreign])

    assert plan.deletes == []
    assert plan.skips == [foreign]


def test_matched_unmanaged_event_is_never_updated(engine):
    source = make_record("a@x", "New title", start=(2024, 5, 1, 10))
    foreign = make_remote("a@x", "Old title", start=(2024, 5, 1, 10), is_managed=False)

    plan = engine.reconcile([source], [foreign])

    assert plan.updates == []
    assert plan.creates == []
    assert plan.skips == [foreign]


def test_unmanaged_events_never_updated_or_deleted(engine):
    summaries = ["Standup", "Review"]
    starts = [(2024, 5, 1, 10), (2024, 5, 1, 10, 20), (2024, 5, 2, 9)]
    sources = [
        make_record(f"s{i}@x", summary, start=start)
        for i, (summary, start) in enumerate(itertools.product(summaries, starts))
    ]
    remotes = [
        make_remote(uid, summary, start=start, is_managed=managed, remote_id=f"r{i}")
        for i, (uid, summary, start, managed) in enumerate(
            itertools.product(["s0@x", "s3@x", "zz@x"], summaries, starts, [True, False])
        )
    ]

    for n in range(len(sources) + 1):
        plan = engine.reconcile(sources[:n], remotes)
        touched = [u.remote for u in plan.updates] + plan.deletes
        assert all(r.is_managed for r in touched)
        # every remote event ends up in exactly one bucket
        bucketed = touched + plan.skips + [remote for _, remote in plan.unchanged]
        assert sorted(r.remote_id for r in bucketed) == sorted(r.remote_id for r in remotes)


# ---------------------------------------------------------------------------
# Whole-plan properties
# ---------------------------------------------------------------------------


def test_reconcile_is_deterministic(engine, sample_ics):
    sources = parse_ics(sample_ics)
    remotes = [make_remote("lecture-1@example.com", "Old", start=(2024, 1, 15, 9)),
               make_remote("gone@x", start=(2024, 1, 16, 9))]

    assert engine.reconcile(sources, remotes) == engine.reconcile(sources, remotes)


def test_second_run_after_applying_plan_is_empty(engine, memory_client, sample_ics):
    sources = parse_ics(sample_ics)
    window = (pytz.UTC.localize(datetime(2024, 1, 1)), pytz.UTC.localize(datetime(2024, 2, 1)))

    first = engine.reconcile(sources, memory_client.list_events(*window))
    SyncExecutor(memory_client).execute(first)
    second = engine.reconcile(sources, memory_client.list_events(*window))

    assert len(first.creates) == 3
    assert second.creates == []
    assert second.updates == []
    assert second.deletes == []
    assert len(second.unchanged) == 3


def test_inputs_are_not_modified(engine):
    sources = [make_record("a@x", "New", start=(2024, 5, 1, 10))]
    remotes = [make_remote("a@x", "Old", start=(2024, 5, 1, 10)), make_remote("b@x")]
    before = (list(sources), list(remotes))

    engine.reconcile(sources, remotes)

    assert (sources, remotes) == before
    assert remotes[0].summary == "Old"


def test_unrepresentable_dates_do_not_escape_reconcile(engine, resolver):
    text = (
        "BEGIN:VCALENDAR\nBEGIN:VEVENT\nUID:old@x\nSUMMARY:Ancient\nDTSTART:00010101T000000\n"
        "END:VEVENT\nBEGIN:VEVENT\nUID:far@x\nSUMMARY:Distant\nDTSTART;TZID=America/New_York:99991231T230000\n"
        "END:VEVENT\nEND:VCALENDAR\n"
    )
    remotes = [
        make_remote("other@x", "Ancient", start=(2024, 5, 1, 10)),
        make_remote("another@x", "Distant", start=(2024, 5, 1, 10)),
    ]

    plan = engine.reconcile(parse_ics(text), remotes)

    assert sorted(r.uid for r in plan.creates) == ["far@x", "old@x"]
    assert sorted(r.uid for r in plan.deletes) == ["another@x", "other@x"]
    assert resolver.fallbacks[OUT_OF_RANGE] == 2
