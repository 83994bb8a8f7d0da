import datetime

import pytest
import pytz

from error_handler import NotifierError
from models import ChannelSchedule
from notifier import Notifier
from scheduler import OrchestratorContext
from storage_manager import StorageManager
from time_window import Weekday

WEEKDAYS = {Weekday.MONDAY, Weekday.TUESDAY, Weekday.WEDNESDAY, Weekday.THURSDAY, Weekday.FRIDAY}

# Monday 2024-03-04, 09:00 in New York (EST, UTC-5)
MONDAY_0900_NY = datetime.datetime(2024, 3, 4, 14, 0, tzinfo=pytz.UTC)


class FrozenClock:
    """Clock that only moves when told to"""

    def __init__(self, now: datetime.datetime):
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def set(self, now: datetime.datetime) -> None:
        self.now = now

    def advance(self, **kwargs) -> datetime.datetime:
        self.now = self.now + datetime.timedelta(**kwargs)
        return self.now


class RecordingNotifier(Notifier):
    """Notifier that records every call and fails on demand"""

    def __init__(self):
        self.reminders = []
        self.summaries = []
        self.fail_reminders_for = set()
        self.fail_summaries_for = set()
        self.responses = []
        self.fail_responses_for = set()

    def send_reminder(self, participant_id, schedule, context):
        if participant_id in self.fail_reminders_for:
            raise NotifierError(f"reminder to {participant_id} failed")
        self.reminders.append((schedule.channel_id, participant_id, context.get('trigger_time')))
        return f"msg-{len(self.reminders)}"

    def post_summary(self, schedule, submitted, missing, context):
        if schedule.channel_id in self.fail_summaries_for:
            raise NotifierError(f"summary for {schedule.channel_id} failed")
        self.summaries.append({
            'channel_id': schedule.channel_id,
            'date': context.get('date'),
            'submitted': [response.participant_id for response in submitted],
            'missing': list(missing)
        })

    def post_response(self, schedule, response, context):
        if response.participant_id in self.fail_responses_for:
            raise NotifierError(f"response post for {response.participant_id} failed")
        self.responses.append((schedule.channel_id, response.participant_id, context.get('date')))

    def reminded(self, channel_id=None):
        return [participant for channel, participant, _ in self.reminders
                if channel_id is None or channel == channel_id]


@pytest.fixture
def store(tmp_path):
    storage = StorageManager(f"sqlite:///{tmp_path / 'standup.db'}")
    storage.init_db()
    yield storage
    storage.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def clock():
    return FrozenClock(MONDAY_0900_NY)


@pytest.fixture
def make_schedule():
    def _make(channel_id='C1', **overrides):
        values = {
            'channel_id': channel_id,
            'channel_name': f"team-{channel_id.lower()}",
            'timezone': 'America/New_York',
            'summary_time': '09:30',
            'reminder_times': ['09:00', '09:15'],
            'active_days': set(WEEKDAYS),
            'participants': ['101', '102', '103'],
            'participant_names': {'101': 'Alice', '102': 'Bob', '103': 'Charlie'},
        }
        values.update(overrides)
        return ChannelSchedule(**values)
    return _make


@pytest.fixture
def ctx(store, notifier, clock):
    return OrchestratorContext(store, notifier, clock=clock)
