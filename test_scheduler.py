"""
Tests for the scheduler tick: reminders, summaries and failure isolation.
"""

import datetime
import logging

import pytest
import pytz
from apscheduler.schedulers.background import BackgroundScheduler

from config import Config
from error_handler import StorageError
from models import Response, SessionStatus
from scheduler import OrchestratorContext, SchedulerRunner, TickReport, run_tick, start_daily_sessions
from time_window import Weekday

DATE = '2024-03-04'


def _utc(hour, minute, second=0, day=4):
    return datetime.datetime(2024, 3, day, hour, minute, second, tzinfo=pytz.UTC)


def _respond(store, channel_id, participant_id, date=DATE):
    store.save_response(Response(
        session_id='s-1',
        channel_id=channel_id,
        date=date,
        participant_id=participant_id,
        answers={'What are you working on today?': 'Tests'},
        submitted_at=_utc(14, 5)
    ))


def test_summary_posted_exactly_once_over_five_ticks(store, notifier, ctx, make_schedule):
    """Several ticks inside the summary minute post the summary once."""
    store.save_channel_schedule(make_schedule())
    _respond(store, 'C1', '102')

    reports = [run_tick(ctx, _utc(14, 30, second)) for second in (0, 10, 20, 40, 59)]

    assert len(notifier.summaries) == 1
    assert sum(report.summaries_posted for report in reports) == 1
    summary = notifier.summaries[0]
    assert summary['date'] == DATE
    assert summary['submitted'] == ['102']
    assert summary['missing'] == ['101', '103']

    session = store.get_session('C1', DATE)
    assert session.summary_posted
    assert session.status == 'completed'
    assert session.completed_at is not None


def test_summary_not_posted_outside_window(store, notifier, ctx, make_schedule):
    store.save_channel_schedule(make_schedule())

    run_tick(ctx, _utc(14, 29, 59))
    run_tick(ctx, _utc(14, 31))

    assert notifier.summaries == []


def test_failed_summary_post_is_retried_next_tick(store, notifier, ctx, make_schedule):
    """The flag stays unset when the post fails so the next tick tries again."""
    store.save_channel_schedule(make_schedule())
    notifier.fail_summaries_for.add('C1')

    report = run_tick(ctx, _utc(14, 30, 0))
    assert 'C1' in report.failed_channels
    assert not store.get_session('C1', DATE).summary_posted

    notifier.fail_summaries_for.clear()
    report = run_tick(ctx, _utc(14, 30, 30))
    assert report.summaries_posted == 1
    assert store.get_session('C1', DATE).summary_posted


@pytest.mark.parametrize('max_workers', [1, 3])
def test_failing_channel_does_not_block_others(store, notifier, clock, make_schedule, max_workers):
    """A channel whose summary post fails is isolated from the rest of the tick."""
    for channel_id in ('A', 'B', 'C'):
        store.save_channel_schedule(make_schedule(channel_id))
    notifier.fail_summaries_for.add('B')
    ctx = OrchestratorContext(store, notifier, clock=clock, max_workers=max_workers)

    report = run_tick(ctx, _utc(14, 30))

    assert sorted(summary['channel_id'] for summary in notifier.summaries) == ['A', 'C']
    assert list(report.failed_channels) == ['B']
    assert report.channels_seen == 3
    assert report.channels_evaluated == 3
    assert report.summaries_posted == 2
    assert not store.get_session('B', DATE).summary_posted


def test_reminders_deduplicated_across_ticks(store, notifier, ctx, make_schedule):
    store.save_channel_schedule(make_schedule())

    first = run_tick(ctx, _utc(14, 0, 0))
    second = run_tick(ctx, _utc(14, 0, 30))

    assert first.reminders_sent == 3
    assert second.reminders_sent == 0
    assert sorted(notifier.reminded()) == ['101', '102', '103']

    # 102 responds before the second trigger and is no longer reminded
    _respond(store, 'C1', '102')
    third = run_tick(ctx, _utc(14, 15))

    assert third.reminders_sent == 2
    assert notifier.reminders[-2:] == [('C1', '101', '09:15'), ('C1', '103', '09:15')]
    assert store.get_reminder_count('C1', DATE, '101') == 2
    assert store.get_reminder_count('C1', DATE, '102') == 1
    assert len(store.list_reminder_records('C1', DATE)) == 5


def test_reminded_participant_is_not_counted_as_respondent(store, ctx, make_schedule):
    store.save_channel_schedule(make_schedule())

    run_tick(ctx, _utc(14, 0))

    assert store.list_responses('C1', DATE) == []
    assert ctx.ledger.missing_participants('C1', DATE, ['101', '102', '103']) == {'101', '102', '103'}


def test_partial_reminder_batch_is_completed_next_tick(store, notifier, ctx, make_schedule):
    """One participant's failure doesn't stop the batch; only they are retried."""
    store.save_channel_schedule(make_schedule())
    notifier.fail_reminders_for.add('102')

    report = run_tick(ctx, _utc(14, 0, 0))
    assert report.reminders_sent == 2
    assert report.reminder_failures == 1
    assert report.failed_channels == {}

    notifier.fail_reminders_for.clear()
    report = run_tick(ctx, _utc(14, 0, 40))
    assert report.reminders_sent == 1
    assert notifier.reminded() == ['101', '103', '102']


def test_inactive_weekday_is_skipped(store, notifier, ctx, make_schedule):
    store.save_channel_schedule(make_schedule())

    # Saturday 2024-03-09, 09:30 in New York
    report = run_tick(ctx, _utc(14, 30, day=9))

    assert report.channels_skipped == 1
    assert report.channels_evaluated == 0
    assert notifier.summaries == []
    assert store.get_session('C1', '2024-03-09') is None


def test_public_holiday_is_skipped(store, notifier, ctx, make_schedule):
    store.save_channel_schedule(make_schedule(holiday_country='US'))

    # Independence Day 2024 is a Thursday; 09:30 EDT is 13:30 UTC
    report = run_tick(ctx, datetime.datetime(2024, 7, 4, 13, 30, tzinfo=pytz.UTC))

    assert report.channels_skipped == 1
    assert notifier.summaries == []


def test_session_date_follows_channel_timezone(store, notifier, ctx, make_schedule):
    """A Tokyo channel's Tuesday starts while it is still Monday in UTC."""
    store.save_channel_schedule(make_schedule(
        'T1', timezone='Asia/Tokyo', summary_time='00:30', reminder_times=[]
    ))

    run_tick(ctx, _utc(15, 30))

    assert notifier.summaries[0]['date'] == '2024-03-05'
    assert store.get_session('T1', '2024-03-05') is not None
    assert store.get_session('T1', DATE) is None


def test_unknown_timezone_falls_back_to_utc(store, notifier, ctx, make_schedule):
    store.save_channel_schedule(make_schedule(timezone='Mars/Olympus_Mons', summary_time='14:30',
                                              reminder_times=[]))

    report = run_tick(ctx, _utc(14, 30))

    assert report.summaries_posted == 1
    assert report.failed_channels == {}


def test_malformed_trigger_times_are_logged_and_skipped(store, notifier, ctx, make_schedule, caplog):
    """A bad stored time never fires, and says so, while valid triggers still work."""
    store.save_channel_schedule(make_schedule(summary_time='9h30', reminder_times=['09:00', 'nine']))

    with caplog.at_level(logging.WARNING, logger='standup_bot.scheduler'):
        reminder_report = run_tick(ctx, _utc(14, 0))
        summary_report = run_tick(ctx, _utc(14, 30))

    assert reminder_report.reminders_sent == 3
    assert summary_report.summaries_posted == 0
    assert notifier.summaries == []
    assert summary_report.failed_channels == {}
    assert "malformed summary time '9h30'" in caplog.text
    assert "malformed reminder time 'nine'" in caplog.text


def test_completion_retried_after_summary_already_posted(store, notifier, ctx, make_schedule, monkeypatch):
    """If completion fails on the posting tick, a later tick in the minute completes the session."""
    store.save_channel_schedule(make_schedule())
    real_mark_completed = ctx.session_manager.mark_completed

    def broken(*args, **kwargs):
        raise StorageError("write timed out")

    monkeypatch.setattr(ctx.session_manager, 'mark_completed', broken)
    run_tick(ctx, _utc(14, 30, 0))
    assert store.get_session('C1', DATE).summary_posted
    assert store.get_session('C1', DATE).status != SessionStatus.COMPLETED

    monkeypatch.setattr(ctx.session_manager, 'mark_completed', real_mark_completed)
    report = run_tick(ctx, _utc(14, 30, 30))

    assert store.get_session('C1', DATE).status == SessionStatus.COMPLETED
    assert report.summaries_posted == 0
    assert len(notifier.summaries) == 1


def test_listing_failure_aborts_tick(ctx, monkeypatch):
    def broken():
        raise StorageError("database unavailable")

    monkeypatch.setattr(ctx.store, 'list_active_channel_schedules', broken)

    with pytest.raises(StorageError):
        run_tick(ctx, _utc(14, 30))


def test_disabled_channel_is_ignored(store, notifier, ctx, make_schedule):
    store.save_channel_schedule(make_schedule(enabled=False))

    report = run_tick(ctx, _utc(14, 30))

    assert report.channels_seen == 0
    assert notifier.summaries == []


def test_cancelled_tick_sends_nothing(store, notifier, ctx, make_schedule):
    store.save_channel_schedule(make_schedule())
    ctx.cancel_event.set()

    report = run_tick(ctx, _utc(14, 0))

    assert report.cancelled
    assert notifier.reminders == []


def test_tick_uses_context_clock(store, notifier, ctx, clock, make_schedule):
    store.save_channel_schedule(make_schedule())
    clock.set(_utc(14, 30, 15))

    report = run_tick(ctx)

    assert isinstance(report, TickReport)
    assert report.now == clock.now
    assert report.summaries_posted == 1


def test_start_daily_sessions_only_for_active_channels(store, ctx, make_schedule):
    store.save_channel_schedule(make_schedule('C1'))
    store.save_channel_schedule(make_schedule('C2', active_days={Weekday.SATURDAY}))

    started = start_daily_sessions(ctx, _utc(12, 0))

    assert started == 1
    assert store.get_session('C1', DATE) is not None
    assert store.get_session('C2', DATE) is None

    # Running it again reuses the same session
    session_id = store.get_session('C1', DATE).session_id
    start_daily_sessions(ctx, _utc(12, 15))
    assert store.get_session('C1', DATE).session_id == session_id


def test_runner_registers_jobs(ctx, store):
    config = Config()
    runner = SchedulerRunner(ctx, config, blocking=False)

    assert isinstance(runner.scheduler, BackgroundScheduler)
    job_ids = {job.id for job in runner.get_jobs()}
    assert job_ids == {
        SchedulerRunner.TICK_JOB_ID,
        SchedulerRunner.SESSIONS_JOB_ID,
        SchedulerRunner.MAINTENANCE_JOB_ID
    }


def test_runner_tick_logs_storage_failure(ctx, monkeypatch, caplog):
    def broken():
        raise StorageError("database unavailable")

    monkeypatch.setattr(ctx.store, 'list_active_channel_schedules', broken)
    runner = SchedulerRunner(ctx, Config(), blocking=False)

    runner._tick()

    assert runner.last_report is None
    assert "Tick aborted" in caplog.text
