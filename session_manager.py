import uuid
import logging
import datetime
from typing import Optional

import pytz

from error_handler import ConflictError, NotFoundError
from models import Session, SessionStatus
from storage_manager import StorageManager


class SessionManager:
    """
    Owns the lifecycle of one channel-day standup session:
    pending -> in_progress (advisory) -> completed.

    The summary_posted flag, not the status, is what guards against posting
    the daily summary twice.
    """

    def __init__(self, storage_manager: StorageManager):
        self.storage = storage_manager
        self.logger = logging.getLogger('standup_bot.session_manager')

    def ensure_session(self, channel_id: str, date: str,
                       now: Optional[datetime.datetime] = None) -> Session:
        """
        Get the session for a channel and day, creating it if absent.

        Safe under concurrent callers: the store's conditional create lets
        exactly one caller win, the others read the winner's record.

        Args:
            channel_id: The channel ID
            date: The channel-local day in format 'YYYY-MM-DD'
            now: Creation timestamp (defaults to the current UTC time)

        Returns:
            The one session for (channel_id, date)
        """
        existing = self.storage.get_session(channel_id, date)
        if existing:
            return existing

        session = Session(
            session_id=str(uuid.uuid4()),
            channel_id=channel_id,
            date=date,
            status=SessionStatus.PENDING,
            summary_posted=False,
            created_at=now or datetime.datetime.now(pytz.UTC)
        )

        try:
            self.storage.create_session(session)
        except ConflictError:
            # Another caller created it between our read and our write
            winner = self.storage.get_session(channel_id, date)
            if winner is None:
                raise
            self.logger.debug(f"Lost session creation race for {channel_id} on {date}")
            return winner

        self.logger.info(f"Started new standup session {session.session_id} for {channel_id} on {date}")
        return session

    def get_session(self, channel_id: str, date: str) -> Optional[Session]:
        return self.storage.get_session(channel_id, date)

    def mark_in_progress(self, channel_id: str, date: str) -> bool:
        """Mark a pending session as in progress. Never moves a session backwards."""
        session = self.storage.get_session(channel_id, date)
        if session is None or session.status != SessionStatus.PENDING:
            return False
        return self.storage.update_session_status(channel_id, date, SessionStatus.IN_PROGRESS)

    def mark_completed(self, channel_id: str, date: str,
                       now: Optional[datetime.datetime] = None) -> bool:
        """
        Transition a session to completed and stamp the completion time.

        Returns:
            True if the session changed, False if it was already completed

        Raises:
            NotFoundError: no session exists for the channel and day
        """
        session = self.storage.get_session(channel_id, date)
        if session is None:
            raise NotFoundError(f"No session for {channel_id} on {date}")
        if session.is_completed:
            return False

        return self.storage.update_session_status(
            channel_id, date, SessionStatus.COMPLETED,
            completed_at=now or datetime.datetime.now(pytz.UTC)
        )

    def mark_summary_posted(self, channel_id: str, date: str) -> bool:
        """
        Set the summary_posted flag if it is not set yet.

        Returns:
            True if this caller set the flag, False if someone already had

        Raises:
            NotFoundError: no session exists for the channel and day
        """
        if self.storage.mark_summary_posted(channel_id, date):
            return True

        if self.storage.get_session(channel_id, date) is None:
            raise NotFoundError(f"No session for {channel_id} on {date}")

        self.logger.info(f"Summary flag for {channel_id} on {date} was already set")
        return False
