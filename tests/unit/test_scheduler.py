from __future__ import annotations

import threading
from typing import List

import pytest

from common.remote import InMemoryRemoteCollection
from state.models import Quote
from state.storage import MemoryStorage
from state.store import QuoteStore
from sync.engine import SyncEngine, SyncReport
from sync.scheduler import JOB_ID, PeriodicSync


def _engine(remote=None) -> SyncEngine:
    store = QuoteStore(MemoryStorage(), defaults=())
    return SyncEngine(store, remote or InMemoryRemoteCollection([Quote(text="A", category="X")]))


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        PeriodicSync(_engine(), 0)


def test_trigger_runs_cycle_in_caller_thread_and_reports():
    reports: List[SyncReport] = []
    sched = PeriodicSync(_engine(), 60.0, on_report=reports.append)

    report = sched.trigger()

    assert report.added_from_remote == 1
    assert reports == [report]
    assert not sched.running


def test_start_schedules_single_interval_job():
    sched = PeriodicSync(_engine(), 60.0, on_report=lambda r: None, run_immediately=False)
    sched.start()
    try:
        jobs = sched._scheduler.get_jobs()
        assert [j.id for j in jobs] == [JOB_ID]
        assert jobs[0].max_instances == 1
        assert jobs[0].coalesce is True
    finally:
        sched.stop()


def test_start_runs_periodically_until_stopped():
    ticks = threading.Event()
    reports: List[SyncReport] = []

    def on_report(report: SyncReport) -> None:
        reports.append(report)
        if len(reports) >= 3:
            ticks.set()

    sched = PeriodicSync(_engine(), 0.05, on_report=on_report)
    sched.start()
    sched.start()  # idempotent
    try:
        assert ticks.wait(5.0)
    finally:
        sched.stop()

    assert not sched.running
    count = len(reports)
    assert count >= 3
    threading.Event().wait(0.2)
    assert len(reports) == count


def test_restart_after_non_waiting_stop_leaves_one_timer():
    entered = threading.Event()
    release = threading.Event()
    fetches = {"count": 0}

    class _SlowRemote(InMemoryRemoteCollection):
        def fetch(self):
            fetches["count"] += 1
            entered.set()
            release.wait(5.0)
            return super().fetch()

    sched = PeriodicSync(_engine(_SlowRemote()), 0.05, on_report=lambda r: None)
    sched.start()
    assert entered.wait(5.0)
    first = sched._scheduler

    sched.stop(wait=False)
    sched.start()
    release.set()
    second = sched._scheduler

    assert first is not second
    assert not first.running
    assert second.running

    sched.stop()
    count = fetches["count"]
    threading.Event().wait(0.3)
    assert fetches["count"] == count


def test_errors_in_a_job_are_logged_and_the_timer_keeps_running():
    calls = {"count": 0}
    done = threading.Event()

    class _Flaky(InMemoryRemoteCollection):
        def fetch(self):
            calls["count"] += 1
            if calls["count"] == 1:
                raise KeyError("unexpected")
            done.set()
            return super().fetch()

    with PeriodicSync(_engine(_Flaky()), 0.05, on_report=lambda r: None) as sched:
        assert done.wait(5.0)
        assert sched.running

    assert calls["count"] >= 2
    assert isinstance(sched.last_error, KeyError)


def test_without_run_immediately_first_cycle_waits_for_interval():
    reports: List[SyncReport] = []
    sched = PeriodicSync(_engine(), 30.0, on_report=reports.append, run_immediately=False)
    sched.start()
    sched.stop()
    assert reports == []
