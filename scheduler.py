from typing import Dict, Any, List, Callable, Optional
import threading
import datetime
import logging
from concurrent.futures import ThreadPoolExecutor as FutureThreadPool, as_completed

import pytz
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from error_handler import ErrorHandler, StandupError, StorageError
from models import ChannelSchedule, ReminderRecord
from notifier import Notifier
from reminder_service import ReminderService
from response_ledger import ResponseLedger
from session_manager import SessionManager
from storage_manager import StorageManager
from time_window import (
    format_hhmm, is_active_weekday, is_due, is_holiday, local_date, parse_hhmm,
    localize_now, resolve_timezone, utc_now
)


class TickReport:
    """What one scheduler tick did. Safe to update from worker threads."""

    def __init__(self, now: datetime.datetime):
        self.now = now
        self.channels_seen = 0
        self.channels_evaluated = 0
        self.channels_skipped = 0
        self.reminders_sent = 0
        self.reminder_failures = 0
        self.summaries_posted = 0
        self.failed_channels: Dict[str, str] = {}
        self.cancelled = False
        self._lock = threading.Lock()

    def add(self, field: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self, field, getattr(self, field) + amount)

    def fail(self, channel_id: str, error: Exception) -> None:
        with self._lock:
            self.failed_channels[channel_id] = str(error) or type(error).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {
            'now': self.now.isoformat(),
            'channels_seen': self.channels_seen,
            'channels_evaluated': self.channels_evaluated,
            'channels_skipped': self.channels_skipped,
            'reminders_sent': self.reminders_sent,
            'reminder_failures': self.reminder_failures,
            'summaries_posted': self.summaries_posted,
            'failed_channels': dict(self.failed_channels),
            'cancelled': self.cancelled
        }

    def __repr__(self) -> str:
        return (f"TickReport(seen={self.channels_seen}, evaluated={self.channels_evaluated}, "
                f"reminders={self.reminders_sent}, summaries={self.summaries_posted}, "
                f"failed={len(self.failed_channels)})")


class OrchestratorContext:
    """
    Everything a tick needs, built once at process start and passed explicitly.
    """

    def __init__(self, store: StorageManager, notifier: Notifier,
                 clock: Callable[[], datetime.datetime] = utc_now,
                 session_manager: Optional[SessionManager] = None,
                 ledger: Optional[ResponseLedger] = None,
                 reminders: Optional[ReminderService] = None,
                 error_handler: Optional[ErrorHandler] = None,
                 max_workers: int = 1,
                 cancel_event: Optional[threading.Event] = None,
                 logger: Optional[logging.Logger] = None):
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.logger = logger or logging.getLogger('standup_bot.scheduler')
        self.error_handler = error_handler or ErrorHandler(self.logger)
        self.session_manager = session_manager or SessionManager(store)
        self.ledger = ledger or ResponseLedger(store, self.error_handler)
        self.reminders = reminders or ReminderService(store, self.error_handler)
        self.max_workers = max(1, max_workers)
        self.cancel_event = cancel_event or threading.Event()

    @classmethod
    def build(cls, store: StorageManager, notifier: Notifier, config=None,
              clock: Callable[[], datetime.datetime] = utc_now) -> 'OrchestratorContext':
        """Wire the scheduler components from a store, a notifier and a Config"""
        max_workers = config.max_workers if config is not None else 1
        return cls(store, notifier, clock=clock, max_workers=max_workers)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


def run_tick(ctx: OrchestratorContext, now: Optional[datetime.datetime] = None) -> TickReport:
    """
    Evaluate every active channel against one instant and fire what is due.

    A failure in one channel is logged and recorded in the report; the other
    channels are still processed.

    Args:
        ctx: The orchestrator context
        now: The tick instant (defaults to ctx.clock())

    Returns:
        TickReport describing the work done

    Raises:
        StorageError: if the active channel list cannot be read
    """
    now = now or ctx.clock()
    report = TickReport(now)

    try:
        schedules = ctx.store.list_active_channel_schedules()
    except StorageError:
        raise
    except Exception as e:
        raise StorageError(f"Failed to list active channel schedules: {e}") from e

    report.channels_seen = len(schedules)
    ctx.logger.debug(f"Tick at {now.isoformat()}: {len(schedules)} active channels")

    if ctx.max_workers > 1 and len(schedules) > 1:
        with FutureThreadPool(max_workers=ctx.max_workers) as pool:
            futures = {
                pool.submit(_process_channel, ctx, schedule, now, report): schedule
                for schedule in schedules
            }
            for future in as_completed(futures):
                schedule = futures[future]
                try:
                    future.result()
                except Exception as e:
                    _channel_failed(ctx, report, schedule, e)
    else:
        for schedule in schedules:
            if ctx.cancelled:
                report.cancelled = True
                break
            try:
                _process_channel(ctx, schedule, now, report)
            except Exception as e:
                _channel_failed(ctx, report, schedule, e)

    if ctx.cancelled:
        report.cancelled = True

    if report.reminders_sent or report.summaries_posted or report.failed_channels:
        ctx.logger.info(
            f"Tick complete: {report.reminders_sent} reminders, {report.summaries_posted} summaries, "
            f"{len(report.failed_channels)} failed channels"
        )
    return report


def _channel_failed(ctx: OrchestratorContext, report: TickReport,
                    schedule: ChannelSchedule, e: Exception) -> None:
    ctx.logger.error(f"Failed to process channel {schedule.channel_id}: {e}", exc_info=True)
    report.fail(schedule.channel_id, e)


def _process_channel(ctx: OrchestratorContext, schedule: ChannelSchedule,
                     now: datetime.datetime, report: TickReport) -> None:
    if ctx.cancelled:
        report.cancelled = True
        return

    if resolve_timezone(schedule.timezone) is None:
        ctx.logger.warning(
            f"Channel {schedule.channel_id} has unknown timezone '{schedule.timezone}', using UTC"
        )
    local_now = localize_now(now, schedule.timezone)

    if not is_active_weekday(local_now, schedule.active_days):
        report.add('channels_skipped')
        return
    if is_holiday(local_now, schedule.holiday_country):
        ctx.logger.debug(f"Skipping {schedule.channel_id}: public holiday in {schedule.holiday_country}")
        report.add('channels_skipped')
        return

    report.add('channels_evaluated')
    current_time = format_hhmm(local_now)
    date = local_date(local_now)

    for trigger_time in schedule.reminder_times:
        if not _valid_trigger(ctx, schedule, 'reminder', trigger_time):
            continue
        if is_due(current_time, trigger_time):
            _send_reminders(ctx, schedule, date, trigger_time, now, report)
            if ctx.cancelled:
                return

    if not _valid_trigger(ctx, schedule, 'summary', schedule.summary_time):
        return
    if is_due(current_time, schedule.summary_time):
        _post_summary(ctx, schedule, date, now, report)


def _valid_trigger(ctx: OrchestratorContext, schedule: ChannelSchedule, kind: str, trigger_time: str) -> bool:
    if parse_hhmm(trigger_time) is None:
        ctx.logger.warning(
            f"Channel {schedule.channel_id} has malformed {kind} time {trigger_time!r}; it will never fire"
        )
        return False
    return True


def _send_reminders(ctx: OrchestratorContext, schedule: ChannelSchedule, date: str,
                    trigger_time: str, now: datetime.datetime, report: TickReport) -> None:
    """Remind every participant who has neither responded nor been reminded for this trigger"""
    channel_id = schedule.channel_id
    ctx.session_manager.ensure_session(channel_id, date, now=now)

    missing = ctx.ledger.missing_participants(channel_id, date, schedule.participants)
    recipients = ctx.reminders.pending_recipients(channel_id, date, trigger_time, missing)
    if not recipients:
        return

    ctx.logger.info(f"Sending {trigger_time} reminders for {channel_id} on {date} to {len(recipients)} participants")
    context = {'date': date, 'trigger_time': trigger_time}

    for participant_id in recipients:
        if ctx.cancelled:
            report.cancelled = True
            ctx.logger.info(f"Reminder batch for {channel_id} cancelled before {participant_id}")
            return

        try:
            message_ref = ctx.notifier.send_reminder(participant_id, schedule, context)
        except Exception as e:
            ctx.logger.error(
                f"Failed to send reminder to {participant_id} in {channel_id}: {e}", exc_info=True
            )
            report.add('reminder_failures')
            continue

        report.add('reminders_sent')
        ctx.reminders.record_reminder(ReminderRecord(
            channel_id=channel_id,
            date=date,
            trigger_time=trigger_time,
            participant_id=participant_id,
            sent_at=now,
            message_ref=message_ref
        ))
        ctx.ledger.increment_reminder_count(channel_id, date, participant_id)


def _post_summary(ctx: OrchestratorContext, schedule: ChannelSchedule, date: str,
                  now: datetime.datetime, report: TickReport) -> None:
    """Post the daily summary unless it was already posted for this day"""
    channel_id = schedule.channel_id
    session = ctx.session_manager.ensure_session(channel_id, date, now=now)
    if session.summary_posted:
        if not session.is_completed:
            # Completion failed on the tick that posted
            ctx.error_handler.best_effort(
                ctx.session_manager.mark_completed, channel_id, date, now=now,
                context=f"Failed to mark session completed for {channel_id} on {date}"
            )
        return

    breakdown = ctx.ledger.breakdown(channel_id, date, schedule.participants)
    ctx.notifier.post_summary(schedule, breakdown.submitted, breakdown.missing, {'date': date})

    if ctx.session_manager.mark_summary_posted(channel_id, date):
        report.add('summaries_posted')
        ctx.logger.info(
            f"Posted summary for {channel_id} on {date}: "
            f"{len(breakdown.submitted)} submitted, {len(breakdown.missing)} missing"
        )
    else:
        ctx.logger.warning(f"Summary for {channel_id} on {date} was posted concurrently by another tick")

    ctx.error_handler.best_effort(
        ctx.session_manager.mark_completed, channel_id, date, now=now,
        context=f"Failed to mark session completed for {channel_id} on {date}"
    )


def start_daily_sessions(ctx: OrchestratorContext, now: Optional[datetime.datetime] = None) -> int:
    """
    Create today's session for every channel that is active today.

    Returns:
        Number of channels with a session for their local today
    """
    now = now or ctx.clock()
    started = 0
    schedules = ctx.store.list_active_channel_schedules()

    for schedule in schedules:
        local_now = localize_now(now, schedule.timezone)
        if not is_active_weekday(local_now, schedule.active_days):
            continue
        if is_holiday(local_now, schedule.holiday_country):
            continue
        try:
            ctx.session_manager.ensure_session(schedule.channel_id, local_date(local_now), now=now)
        except StandupError as e:
            ctx.logger.error(f"Failed to start standup session for {schedule.channel_id}: {e}")
            continue
        started += 1

    ctx.logger.info(f"Started daily standup sessions: {started} of {len(schedules)} channels")
    return started


class SchedulerRunner:
    """
    Drives run_tick once a minute with APScheduler, plus daily maintenance.
    """

    TICK_JOB_ID = 'standup_tick'
    SESSIONS_JOB_ID = 'start_daily_sessions'
    MAINTENANCE_JOB_ID = 'daily_maintenance'

    def __init__(self, ctx: OrchestratorContext, config, blocking: bool = True):
        self.ctx = ctx
        self.config = config
        self.logger = logging.getLogger('standup_bot.scheduler')
        self.last_report: Optional[TickReport] = None

        executors = {
            'default': ThreadPoolExecutor(max_workers=3)
        }

        job_defaults = {
            'coalesce': True,  # Combine multiple pending executions
            'max_instances': 1,  # Prevent overlapping ticks
            'misfire_grace_time': config.misfire_grace_time
        }

        scheduler_class = BlockingScheduler if blocking else BackgroundScheduler
        self.scheduler = scheduler_class(
            executors=executors,
            job_defaults=job_defaults,
            timezone=pytz.UTC
        )
        self._add_jobs()

    def _add_jobs(self) -> None:
        self.scheduler.add_job(
            self._tick,
            CronTrigger(second=0, timezone=pytz.UTC),
            id=self.TICK_JOB_ID,
            replace_existing=True
        )

        # Local midnights fall on quarter hours
        self.scheduler.add_job(
            self._start_sessions,
            CronTrigger(minute='0,15,30,45', second=5, timezone=pytz.UTC),
            id=self.SESSIONS_JOB_ID,
            replace_existing=True
        )

        self.scheduler.add_job(
            self._daily_maintenance,
            CronTrigger(hour=2, minute=0, second=30, timezone=pytz.UTC),
            id=self.MAINTENANCE_JOB_ID,
            replace_existing=True
        )

    def _tick(self) -> None:
        try:
            self.last_report = run_tick(self.ctx)
        except StorageError as e:
            self.logger.error(f"Tick aborted: {e}", exc_info=True)

    def _start_sessions(self) -> None:
        try:
            start_daily_sessions(self.ctx)
        except StorageError as e:
            self.logger.error(f"Daily session bootstrap failed: {e}")

    def _daily_maintenance(self) -> None:
        """Remove data older than the configured retention"""
        try:
            self.ctx.store.cleanup_old_data(days_to_keep=self.config.retention_days)
        except StorageError as e:
            self.logger.error(f"Daily maintenance failed: {e}")

    def get_jobs(self) -> List[Any]:
        return self.scheduler.get_jobs()

    def start(self) -> None:
        """Start the scheduler. Blocks when built with blocking=True."""
        self.logger.info("Scheduler started")
        self.scheduler.start()

    def shutdown(self, wait: bool = True) -> None:
        """Signal in-flight ticks to stop at the next participant and stop the scheduler"""
        self.ctx.cancel_event.set()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
        self.logger.info("Scheduler stopped")
