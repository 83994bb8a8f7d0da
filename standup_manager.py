from typing import Dict, Any, Callable, Optional
import datetime
import logging

from error_handler import ErrorHandler, NotFoundError, ScheduleConfigError
from models import ChannelSchedule, Response
from notifier import Notifier
from response_ledger import ResponseLedger
from session_manager import SessionManager
from storage_manager import StorageManager
from time_window import local_date, localize_now, utc_now


class StandupManager:
    """
    Handles the interactive side of a standup: a participant opens today's
    standup for a channel and submits answers.
    """

    def __init__(self, storage_manager: StorageManager,
                 session_manager: Optional[SessionManager] = None,
                 ledger: Optional[ResponseLedger] = None,
                 clock: Callable[[], datetime.datetime] = utc_now,
                 notifier: Optional[Notifier] = None,
                 error_handler: Optional[ErrorHandler] = None):
        self.storage = storage_manager
        self.session_manager = session_manager or SessionManager(storage_manager)
        self.ledger = ledger or ResponseLedger(storage_manager)
        self.clock = clock
        self.notifier = notifier
        self.logger = logging.getLogger('standup_bot.standup_manager')
        self.error_handler = error_handler or ErrorHandler(self.logger)

    def _enabled_schedule(self, channel_id: str) -> ChannelSchedule:
        schedule = self.storage.get_channel_schedule(channel_id)
        if schedule is None:
            raise NotFoundError(f"Channel not configured: {channel_id}")
        if not schedule.enabled:
            raise ScheduleConfigError(f"Standups not enabled for channel {channel_id}")
        return schedule

    def open_standup(self, channel_id: str, now: Optional[datetime.datetime] = None) -> Dict[str, Any]:
        """
        Open today's standup for a channel, creating the session if needed

        Args:
            channel_id: The channel ID
            now: The current instant (defaults to the clock)

        Returns:
            Dictionary with session_id, channel_id, date and questions

        Raises:
            NotFoundError: the channel is not configured
            ScheduleConfigError: standups are disabled for the channel
        """
        schedule = self._enabled_schedule(channel_id)
        now = now or self.clock()
        date = local_date(localize_now(now, schedule.timezone))

        session = self.session_manager.ensure_session(channel_id, date, now=now)
        return {
            'session_id': session.session_id,
            'channel_id': channel_id,
            'date': date,
            'questions': list(schedule.questions)
        }

    def submit_response(self, channel_id: str, participant_id: str, answers: Dict[str, str],
                        participant_name: Optional[str] = None, date: Optional[str] = None,
                        now: Optional[datetime.datetime] = None) -> Response:
        """
        Record a participant's answers for a channel and day.

        Resubmitting replaces the earlier answers. The session moves from
        pending to in progress on the first response. Channels with
        post_responses set also get the answers posted, best-effort.

        Args:
            channel_id: The channel ID
            participant_id: The responding participant
            answers: Mapping of question to answer
            participant_name: Display name for the summary
            date: Channel-local day; defaults to today in the channel's timezone
            now: Submission instant (defaults to the clock)

        Returns:
            The stored response
        """
        schedule = self._enabled_schedule(channel_id)
        if not answers or not any(str(answer).strip() for answer in answers.values()):
            raise ValueError("A standup response needs at least one answer")

        now = now or self.clock()
        date = date or local_date(localize_now(now, schedule.timezone))
        session = self.session_manager.ensure_session(channel_id, date, now=now)

        if str(participant_id) not in schedule.participants:
            self.logger.warning(f"Response from {participant_id} who is not on the roster of {channel_id}")

        response = Response(
            session_id=session.session_id,
            channel_id=channel_id,
            date=date,
            participant_id=participant_id,
            participant_name=participant_name or schedule.participant_name(participant_id),
            answers={question: str(answer).strip() for question, answer in answers.items()},
            submitted_at=now
        )
        self.ledger.record_response(response)
        self.session_manager.mark_in_progress(channel_id, date)

        if session.summary_posted:
            self.logger.info(f"Late response from {participant_id} for {channel_id} on {date}")
        else:
            self.logger.info(f"Saved standup response from {participant_id} for {channel_id} on {date}")

        if schedule.post_responses and self.notifier is not None:
            # The response is already stored; a failed post must not undo it
            self.error_handler.best_effort(
                self.notifier.post_response, schedule, response, {'date': date},
                context=f"Failed to post response from {participant_id} to {channel_id}"
            )
        return response
