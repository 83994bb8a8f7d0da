import logging
import datetime
from pathlib import Path
from typing import Dict, Any, Optional, List, Iterator
from contextlib import contextmanager

import pytz
import sqlalchemy as sa
from sqlalchemy import create_engine, Column, Integer, String, JSON, Boolean, DateTime
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker, scoped_session

from error_handler import ConflictError, StorageError
from models import ChannelSchedule, Session, Response, ReminderRecord, SessionStatus

DEFAULT_DATABASE_URL = 'sqlite:///data/standup.db'

# Define the SQLAlchemy Base
Base = declarative_base()


# Define the database schema
class ChannelRow(Base):
    """Channel standup schedule"""
    __tablename__ = 'channels'

    channel_id = Column(String, primary_key=True)
    channel_name = Column(String, nullable=False)
    timezone = Column(String, nullable=False, default='UTC')
    summary_time = Column(String, nullable=False)
    reminder_times = Column(JSON, nullable=False)
    active_days = Column(JSON, nullable=False)
    participants = Column(JSON, nullable=False)
    participant_names = Column(JSON, nullable=True)
    questions = Column(JSON, nullable=True)
    templates = Column(JSON, nullable=True)
    topic = Column(String, nullable=True)
    holiday_country = Column(String, nullable=True)
    enabled = Column(Boolean, default=True)
    post_responses = Column(Boolean, default=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class SessionRow(Base):
    """Standup session for one channel and day"""
    __tablename__ = 'standup_sessions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String, nullable=False, unique=True)
    channel_id = Column(String, nullable=False)
    date = Column(String, nullable=False)
    status = Column(String, nullable=False, default=SessionStatus.PENDING)
    summary_posted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Conditional creation relies on this constraint
    __table_args__ = (sa.UniqueConstraint('channel_id', 'date', name='_session_channel_date_uc'),)


class ResponseRow(Base):
    """Participant response for one channel and day"""
    __tablename__ = 'standup_responses'

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String, nullable=False)
    channel_id = Column(String, nullable=False)
    date = Column(String, nullable=False)
    participant_id = Column(String, nullable=False)
    participant_name = Column(String, nullable=True)
    answers = Column(JSON, nullable=False)
    submitted_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        sa.UniqueConstraint('channel_id', 'date', 'participant_id', name='_response_channel_date_user_uc'),
    )


class ReminderCountRow(Base):
    """Reminders sent to a participant for one channel and day"""
    __tablename__ = 'reminder_counts'

    id = Column(Integer, primary_key=True, autoincrement=True)
    channel_id = Column(String, nullable=False)
    date = Column(String, nullable=False)
    participant_id = Column(String, nullable=False)
    count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        sa.UniqueConstraint('channel_id', 'date', 'participant_id', name='_count_channel_date_user_uc'),
    )


class ReminderRow(Base):
    """Audit record of a reminder sent to one participant"""
    __tablename__ = 'reminder_records'

    id = Column(Integer, primary_key=True, autoincrement=True)
    channel_id = Column(String, nullable=False)
    date = Column(String, nullable=False)
    trigger_time = Column(String, nullable=False)
    participant_id = Column(String, nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=False)
    message_ref = Column(String, nullable=True)

    __table_args__ = (
        sa.UniqueConstraint('channel_id', 'date', 'trigger_time', 'participant_id',
                            name='_reminder_channel_date_time_user_uc'),
    )


def _to_utc(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC)


class StorageManager:
    """
    Manages persistent storage for the standup scheduler.
    Uses SQLAlchemy; SQLite by default, PostgreSQL when DATABASE_URL points at it.

    Every failure of the database surfaces as StorageError. Violations of a
    uniqueness constraint on create surface as ConflictError.
    """

    def __init__(self, database_url: Optional[str] = None, echo: bool = False):
        self.database_url = database_url or DEFAULT_DATABASE_URL
        self.logger = logging.getLogger('standup_bot.storage')
        self.db_engine = self._create_engine(self.database_url, echo)
        self.DBSession = scoped_session(sessionmaker(bind=self.db_engine, expire_on_commit=False))

    def _create_engine(self, database_url: str, echo: bool):
        url = sa.engine.make_url(database_url)
        connect_args = {}
        if url.get_backend_name() == 'sqlite':
            connect_args = {'check_same_thread': False, 'timeout': 30}
            if url.database and url.database != ':memory:':
                # Ensure directory exists
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(database_url, echo=echo, connect_args=connect_args)

    def init_db(self) -> None:
        """Create tables if they don't exist"""
        try:
            Base.metadata.create_all(self.db_engine)
            self.logger.info("Database initialized successfully")
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to initialize database: {e}") from e

    def close(self) -> None:
        self.DBSession.remove()
        self.db_engine.dispose()

    @contextmanager
    def _session_scope(self) -> Iterator[Any]:
        """Transactional scope around a series of operations."""
        session = self.DBSession()
        try:
            yield session
            session.commit()
        except IntegrityError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError(str(e)) from e
        finally:
            self.DBSession.remove()

    # Channel schedules

    def save_channel_schedule(self, schedule: ChannelSchedule) -> None:
        """Insert or update a channel schedule"""
        data = schedule.to_dict()
        with self._session_scope() as session:
            row = session.get(ChannelRow, schedule.channel_id)
            if row is None:
                row = ChannelRow(channel_id=schedule.channel_id)
                session.add(row)
            for key, value in data.items():
                if key != 'channel_id':
                    setattr(row, key, value)
            row.updated_at = datetime.datetime.now(pytz.UTC)
        self.logger.debug(f"Saved schedule for channel {schedule.channel_id}")

    def get_channel_schedule(self, channel_id: str) -> Optional[ChannelSchedule]:
        with self._session_scope() as session:
            row = session.get(ChannelRow, str(channel_id))
            return self._schedule_from_row(row) if row else None

    def list_active_channel_schedules(self) -> List[ChannelSchedule]:
        """
        Get all enabled channel schedules.

        Rows that can no longer be parsed (e.g. an unknown weekday name) are
        logged and left out rather than failing the whole listing.
        """
        with self._session_scope() as session:
            rows = session.query(ChannelRow).filter(ChannelRow.enabled.is_(True)) \
                .order_by(ChannelRow.channel_id).all()

            schedules = []
            for row in rows:
                try:
                    schedules.append(self._schedule_from_row(row))
                except (KeyError, ValueError) as e:
                    self.logger.warning(f"Skipping malformed schedule for channel {row.channel_id}: {e}")
            return schedules

    def _schedule_from_row(self, row: ChannelRow) -> ChannelSchedule:
        data = {c.name: getattr(row, c.name) for c in row.__table__.columns}
        return ChannelSchedule.from_dict(data)

    # Sessions

    def create_session(self, standup_session: Session) -> Session:
        """
        Create a session only if none exists for its (channel, date).

        Raises:
            ConflictError: a session for that channel and date already exists
        """
        try:
            with self._session_scope() as session:
                session.add(SessionRow(
                    session_id=standup_session.session_id,
                    channel_id=standup_session.channel_id,
                    date=standup_session.date,
                    status=standup_session.status,
                    summary_posted=standup_session.summary_posted,
                    created_at=_to_utc(standup_session.created_at) or datetime.datetime.now(pytz.UTC),
                    completed_at=_to_utc(standup_session.completed_at)
                ))
        except IntegrityError as e:
            raise ConflictError(
                f"Session already exists for {standup_session.channel_id} on {standup_session.date}"
            ) from e
        return standup_session

    def get_session(self, channel_id: str, date: str) -> Optional[Session]:
        with self._session_scope() as session:
            row = session.query(SessionRow).filter(
                SessionRow.channel_id == str(channel_id),
                SessionRow.date == date
            ).first()
            return self._session_from_row(row) if row else None

    def _session_from_row(self, row: SessionRow) -> Session:
        return Session(
            session_id=row.session_id,
            channel_id=row.channel_id,
            date=row.date,
            status=row.status,
            summary_posted=bool(row.summary_posted),
            created_at=_to_utc(row.created_at),
            completed_at=_to_utc(row.completed_at)
        )

    def update_session_status(self, channel_id: str, date: str, status: str,
                              completed_at: Optional[datetime.datetime] = None) -> bool:
        """
        Set a session's status. Returns False if no session matched.
        """
        values = {'status': status}
        if completed_at is not None:
            values['completed_at'] = _to_utc(completed_at)

        with self._session_scope() as session:
            updated = session.query(SessionRow).filter(
                SessionRow.channel_id == str(channel_id),
                SessionRow.date == date
            ).update(values, synchronize_session=False)
        return updated > 0

    def mark_summary_posted(self, channel_id: str, date: str) -> bool:
        """
        Set the summary_posted flag only if it is not set yet.

        Returns:
            True if this call set the flag, False if it was already set or
            no session exists
        """
        with self._session_scope() as session:
            updated = session.query(SessionRow).filter(
                SessionRow.channel_id == str(channel_id),
                SessionRow.date == date,
                SessionRow.summary_posted.is_(False)
            ).update({'summary_posted': True}, synchronize_session=False)
        return updated > 0

    # Responses

    def save_response(self, response: Response) -> None:
        """Upsert a response by (channel, date, participant)"""
        try:
            self._upsert_response(response)
        except IntegrityError:
            # A concurrent first submission won the insert; overwrite it
            self._upsert_response(response)

    def _upsert_response(self, response: Response) -> None:
        with self._session_scope() as session:
            row = session.query(ResponseRow).filter(
                ResponseRow.channel_id == response.channel_id,
                ResponseRow.date == response.date,
                ResponseRow.participant_id == response.participant_id
            ).first()

            if row is None:
                row = ResponseRow(
                    channel_id=response.channel_id,
                    date=response.date,
                    participant_id=response.participant_id
                )
                session.add(row)

            row.session_id = response.session_id
            row.participant_name = response.participant_name
            row.answers = response.answers
            row.submitted_at = _to_utc(response.submitted_at) or datetime.datetime.now(pytz.UTC)

        self.logger.debug(
            f"Saved response for {response.participant_id} in {response.channel_id} on {response.date}"
        )

    def get_response(self, channel_id: str, date: str, participant_id: str) -> Optional[Response]:
        with self._session_scope() as session:
            row = session.query(ResponseRow).filter(
                ResponseRow.channel_id == str(channel_id),
                ResponseRow.date == date,
                ResponseRow.participant_id == str(participant_id)
            ).first()
            if row is None:
                return None
            counts = self._reminder_counts(session, channel_id, date)
            return self._response_from_row(row, counts)

    def list_responses(self, channel_id: str, date: str) -> List[Response]:
        """Get all responses for a channel on a specific date"""
        with self._session_scope() as session:
            rows = session.query(ResponseRow).filter(
                ResponseRow.channel_id == str(channel_id),
                ResponseRow.date == date
            ).order_by(ResponseRow.submitted_at, ResponseRow.id).all()
            counts = self._reminder_counts(session, channel_id, date)
            return [self._response_from_row(row, counts) for row in rows]

    def _reminder_counts(self, session, channel_id: str, date: str) -> Dict[str, int]:
        rows = session.query(ReminderCountRow).filter(
            ReminderCountRow.channel_id == str(channel_id),
            ReminderCountRow.date == date
        ).all()
        return {row.participant_id: row.count for row in rows}

    def _response_from_row(self, row: ResponseRow, counts: Dict[str, int]) -> Response:
        return Response(
            session_id=row.session_id,
            channel_id=row.channel_id,
            date=row.date,
            participant_id=row.participant_id,
            answers=row.answers,
            submitted_at=_to_utc(row.submitted_at),
            reminder_count=counts.get(row.participant_id, 0),
            participant_name=row.participant_name
        )

    def increment_reminder_count(self, channel_id: str, date: str, participant_id: str) -> int:
        """
        Bump the reminder counter for a participant.

        The counter lives apart from the response so that a participant who
        has only been reminded never appears as having responded.

        Returns:
            The new count
        """
        try:
            return self._increment(channel_id, date, participant_id)
        except IntegrityError:
            # Counter row was created concurrently; the update path now applies
            return self._increment(channel_id, date, participant_id)

    def _increment(self, channel_id: str, date: str, participant_id: str) -> int:
        with self._session_scope() as session:
            updated = session.query(ReminderCountRow).filter(
                ReminderCountRow.channel_id == str(channel_id),
                ReminderCountRow.date == date,
                ReminderCountRow.participant_id == str(participant_id)
            ).update({'count': ReminderCountRow.count + 1}, synchronize_session=False)

            if not updated:
                session.add(ReminderCountRow(
                    channel_id=str(channel_id),
                    date=date,
                    participant_id=str(participant_id),
                    count=1
                ))
                return 1

        return self.get_reminder_count(channel_id, date, participant_id)

    def get_reminder_count(self, channel_id: str, date: str, participant_id: str) -> int:
        with self._session_scope() as session:
            row = session.query(ReminderCountRow).filter(
                ReminderCountRow.channel_id == str(channel_id),
                ReminderCountRow.date == date,
                ReminderCountRow.participant_id == str(participant_id)
            ).first()
            return row.count if row else 0

    # Reminder records

    def save_reminder_record(self, record: ReminderRecord) -> None:
        """
        Insert a reminder record.

        Raises:
            ConflictError: the same (channel, date, time, participant) is already recorded
        """
        try:
            with self._session_scope() as session:
                session.add(ReminderRow(
                    channel_id=record.channel_id,
                    date=record.date,
                    trigger_time=record.trigger_time,
                    participant_id=record.participant_id,
                    sent_at=_to_utc(record.sent_at) or datetime.datetime.now(pytz.UTC),
                    message_ref=record.message_ref
                ))
        except IntegrityError as e:
            raise ConflictError(
                f"Reminder already recorded for {record.participant_id} "
                f"in {record.channel_id} at {record.trigger_time} on {record.date}"
            ) from e

    def list_reminder_records(self, channel_id: str, date: str) -> List[ReminderRecord]:
        with self._session_scope() as session:
            rows = session.query(ReminderRow).filter(
                ReminderRow.channel_id == str(channel_id),
                ReminderRow.date == date
            ).order_by(ReminderRow.sent_at, ReminderRow.id).all()
            return [
                ReminderRecord(
                    channel_id=row.channel_id,
                    date=row.date,
                    trigger_time=row.trigger_time,
                    participant_id=row.participant_id,
                    sent_at=_to_utc(row.sent_at),
                    message_ref=row.message_ref
                )
                for row in rows
            ]

    # Maintenance

    def cleanup_old_data(self, days_to_keep: int = 90,
                         today: Optional[datetime.date] = None) -> Dict[str, int]:
        """
        Delete sessions, responses and reminder data older than days_to_keep.

        Returns:
            Number of deleted rows per table
        """
        today = today or datetime.datetime.now(pytz.UTC).date()
        cutoff = (today - datetime.timedelta(days=days_to_keep)).strftime('%Y-%m-%d')

        deleted = {}
        with self._session_scope() as session:
            for model in (SessionRow, ResponseRow, ReminderCountRow, ReminderRow):
                deleted[model.__tablename__] = session.query(model).filter(
                    model.date < cutoff
                ).delete(synchronize_session=False)

        self.logger.info(f"Cleaned up data older than {cutoff}: {deleted}")
        return deleted
