"""
Domain records for channel schedules, sessions, responses and reminders.
"""

import datetime
from typing import Dict, Any, List, Optional, Set

from time_window import Weekday

DEFAULT_QUESTIONS = [
    "What did you work on yesterday?",
    "What are you working on today?",
    "Any blockers or concerns?"
]

DEFAULT_TEMPLATES = {
    'reminder': "Hey {user_name}! Don't forget to submit your standup update for #{channel_name}",
    'summary_header': "Daily Standup Summary for {date}",
    'user_completed': "{user_name} - submitted at {time}",
    'user_missing': "{user_name} - No update",
}


class SessionStatus:
    """Enum-like class for session lifecycle states"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    ALL = (PENDING, IN_PROGRESS, COMPLETED)


def _isoformat(value: Optional[datetime.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_datetime(value) -> Optional[datetime.datetime]:
    if value is None or isinstance(value, datetime.datetime):
        return value
    return datetime.datetime.fromisoformat(value)


class ChannelSchedule:
    """Standup schedule and roster for one channel"""

    def __init__(
        self,
        channel_id: str,
        timezone: str,
        summary_time: str,
        reminder_times: Optional[List[str]] = None,
        active_days: Optional[Set[Weekday]] = None,
        participants: Optional[List[str]] = None,
        channel_name: Optional[str] = None,
        enabled: bool = True,
        questions: Optional[List[str]] = None,
        templates: Optional[Dict[str, str]] = None,
        participant_names: Optional[Dict[str, str]] = None,
        topic: Optional[str] = None,
        holiday_country: Optional[str] = None,
        post_responses: bool = False
    ):
        self.channel_id = str(channel_id)
        self.channel_name = channel_name or self.channel_id
        self.timezone = timezone
        self.summary_time = summary_time
        self.reminder_times = list(reminder_times or [])
        self.active_days = set(active_days or [])
        self.participants = [str(p) for p in (participants or [])]
        self.enabled = enabled
        self.questions = list(questions or DEFAULT_QUESTIONS)
        self.templates = dict(DEFAULT_TEMPLATES)
        self.templates.update(templates or {})
        self.participant_names = {str(k): v for k, v in (participant_names or {}).items()}
        self.topic = topic or "Daily Standup"
        self.holiday_country = holiday_country
        self.post_responses = post_responses

    def participant_name(self, participant_id: str) -> str:
        return self.participant_names.get(str(participant_id), str(participant_id))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {
            'channel_id': self.channel_id,
            'channel_name': self.channel_name,
            'timezone': self.timezone,
            'summary_time': self.summary_time,
            'reminder_times': self.reminder_times,
            'active_days': sorted(day.short_name for day in self.active_days),
            'participants': self.participants,
            'enabled': self.enabled,
            'questions': self.questions,
            'templates': self.templates,
            'participant_names': self.participant_names,
            'topic': self.topic,
            'holiday_country': self.holiday_country,
            'post_responses': self.post_responses
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChannelSchedule':
        """Create from dictionary. Raises ValueError on unknown weekday names."""
        return cls(
            channel_id=data['channel_id'],
            channel_name=data.get('channel_name'),
            timezone=data.get('timezone', 'UTC'),
            summary_time=data['summary_time'],
            reminder_times=data.get('reminder_times') or [],
            active_days={Weekday.from_name(day) for day in data.get('active_days') or []},
            participants=data.get('participants') or [],
            enabled=data.get('enabled', True),
            questions=data.get('questions'),
            templates=data.get('templates'),
            participant_names=data.get('participant_names'),
            topic=data.get('topic'),
            holiday_country=data.get('holiday_country'),
            post_responses=bool(data.get('post_responses'))
        )

    def __repr__(self) -> str:
        return f"ChannelSchedule({self.channel_id!r}, tz={self.timezone!r}, summary={self.summary_time!r})"


class Session:
    """One channel's standup for one calendar day"""

    def __init__(
        self,
        session_id: str,
        channel_id: str,
        date: str,
        status: str = SessionStatus.PENDING,
        summary_posted: bool = False,
        created_at: Optional[datetime.datetime] = None,
        completed_at: Optional[datetime.datetime] = None
    ):
        self.session_id = session_id
        self.channel_id = str(channel_id)
        self.date = date
        self.status = status
        self.summary_posted = summary_posted
        self.created_at = created_at
        self.completed_at = completed_at

    @property
    def is_completed(self) -> bool:
        return self.status == SessionStatus.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'session_id': self.session_id,
            'channel_id': self.channel_id,
            'date': self.date,
            'status': self.status,
            'summary_posted': self.summary_posted,
            'created_at': _isoformat(self.created_at),
            'completed_at': _isoformat(self.completed_at)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Session':
        return cls(
            session_id=data['session_id'],
            channel_id=data['channel_id'],
            date=data['date'],
            status=data.get('status', SessionStatus.PENDING),
            summary_posted=bool(data.get('summary_posted', False)),
            created_at=_parse_datetime(data.get('created_at')),
            completed_at=_parse_datetime(data.get('completed_at'))
        )

    def __repr__(self) -> str:
        return f"Session({self.channel_id!r}, {self.date!r}, {self.status!r}, summary_posted={self.summary_posted})"


class Response:
    """One participant's submission for a (channel, date) pair"""

    def __init__(
        self,
        session_id: str,
        channel_id: str,
        date: str,
        participant_id: str,
        answers: Optional[Dict[str, str]] = None,
        submitted_at: Optional[datetime.datetime] = None,
        reminder_count: int = 0,
        participant_name: Optional[str] = None
    ):
        self.session_id = session_id
        self.channel_id = str(channel_id)
        self.date = date
        self.participant_id = str(participant_id)
        self.answers = dict(answers or {})
        self.submitted_at = submitted_at
        self.reminder_count = reminder_count
        self.participant_name = participant_name

    def to_dict(self) -> Dict[str, Any]:
        return {
            'session_id': self.session_id,
            'channel_id': self.channel_id,
            'date': self.date,
            'participant_id': self.participant_id,
            'participant_name': self.participant_name,
            'answers': self.answers,
            'submitted_at': _isoformat(self.submitted_at),
            'reminder_count': self.reminder_count
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Response':
        return cls(
            session_id=data['session_id'],
            channel_id=data['channel_id'],
            date=data['date'],
            participant_id=data['participant_id'],
            answers=data.get('answers'),
            submitted_at=_parse_datetime(data.get('submitted_at')),
            reminder_count=data.get('reminder_count', 0),
            participant_name=data.get('participant_name')
        )

    def __repr__(self) -> str:
        return f"Response({self.channel_id!r}, {self.date!r}, {self.participant_id!r})"


class ReminderRecord:
    """Evidence that a reminder was sent. Never mutated after creation."""

    def __init__(
        self,
        channel_id: str,
        date: str,
        trigger_time: str,
        participant_id: str,
        sent_at: Optional[datetime.datetime] = None,
        message_ref: Optional[str] = None
    ):
        self.channel_id = str(channel_id)
        self.date = date
        self.trigger_time = trigger_time
        self.participant_id = str(participant_id)
        self.sent_at = sent_at
        self.message_ref = message_ref

    def to_dict(self) -> Dict[str, Any]:
        return {
            'channel_id': self.channel_id,
            'date': self.date,
            'trigger_time': self.trigger_time,
            'participant_id': self.participant_id,
            'sent_at': _isoformat(self.sent_at),
            'message_ref': self.message_ref
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReminderRecord':
        return cls(
            channel_id=data['channel_id'],
            date=data['date'],
            trigger_time=data['trigger_time'],
            participant_id=data['participant_id'],
            sent_at=_parse_datetime(data.get('sent_at')),
            message_ref=data.get('message_ref')
        )

    def __repr__(self) -> str:
        return (f"ReminderRecord({self.channel_id!r}, {self.date!r}, "
                f"{self.trigger_time!r}, {self.participant_id!r})")
